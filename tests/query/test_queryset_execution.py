from datetime import datetime

import pytest

from emberorm.query import MultipleResults, NotFound, Q
from examples.blog_app import Article, Author, Comment, Tag

TITLES = ["Cascade and restrict", "Introducing EmberORM", "Loading strategies"]


def titles(articles):
    return [article.title for article in articles]


def test_list_and_iteration(blog_session):
    assert titles(blog_session.query(Article).order_by("title").list()) == TITLES
    assert titles(blog_session.query(Article).order_by("-title")) == TITLES[::-1]


def test_second_order_by_replaces_first(blog_session):
    result = blog_session.query(Article).order_by("author__name").order_by("-title").list()
    assert titles(result) == TITLES[::-1]


def test_then_by_adds_secondary_key(blog_session):
    result = blog_session.query(Article).order_by("-author__name").then_by("title").list()
    assert titles(result) == ["Cascade and restrict", "Introducing EmberORM", "Loading strategies"]
    result = blog_session.query(Article).order_by("author__name").then_by("-title").list()
    assert titles(result) == ["Loading strategies", "Introducing EmberORM", "Cascade and restrict"]


def test_filters_execute(blog_session, author_ids):
    alice = author_ids["Alice Carter"]
    assert blog_session.query(Article).filter(author_id=alice).count() == 2
    assert blog_session.query(Article).filter(author__name__startswith="Brian").count() == 1
    assert blog_session.query(Article).filter(title__icontains="LOADING").count() == 1
    assert blog_session.query(Article).filter(title__contains="loading").count() == 0
    assert blog_session.query(Article).exclude(author_id=alice).count() == 1
    either = Q(title="Loading strategies") | Q(title="Cascade and restrict")
    assert blog_session.query(Article).filter(either).count() == 2
    assert blog_session.query(Tag).filter(name__in=[]).count() == 0
    assert blog_session.query(Tag).filter(name__iexact="PYTHON").count() == 1
    assert blog_session.query(Article).filter(title__isnull=False).count() == 3


def test_filter_by_related_instance(blog_session, author_ids):
    alice = blog_session.get(Author, author_ids["Alice Carter"])
    assert blog_session.query(Article).filter(author=alice).count() == 2


def test_pagination_requires_sort_key(blog_session):
    with pytest.raises(ValueError):
        blog_session.query(Article).take(1).list()
    with pytest.raises(ValueError):
        blog_session.query(Article).skip(1).first()
    page = blog_session.query(Article).order_by("title").skip(1).take(1).list()
    assert titles(page) == ["Introducing EmberORM"]
    assert blog_session.query(Article).order_by("title").take(2).count() == 2


def test_single_result_operators(blog_session):
    query = blog_session.query(Article).order_by("title")
    assert query.first().title == "Cascade and restrict"
    assert query.filter(title="nope").first_or_default() is None
    assert query.filter(title="nope").first_or_default("fallback") == "fallback"
    with pytest.raises(NotFound):
        query.filter(title="nope").first()
    with pytest.raises(NotFound):
        query.filter(title="nope").single()
    with pytest.raises(MultipleResults):
        query.single()
    assert query.filter(title="Loading strategies").single().title == "Loading strategies"


def test_single_fetches_at_most_two_rows(blog_session):
    with pytest.raises(MultipleResults):
        blog_session.query(Comment).single()
    assert blog_session.performance.last.rows == 2


def test_exists_issues_one_round_trip_reading_one_row(counting_session):
    session, adapter = counting_session
    assert session.query(Article).filter(author__name="Alice Carter").exists()
    assert len(adapter.reads) == 1
    assert adapter.rows == [1]
    assert "LIMIT 1" in adapter.reads[0]
    assert not session.query(Article).filter(title="nope").exists()
    assert adapter.rows == [1, 0]


def test_count_is_computed_by_storage(counting_session):
    session, adapter = counting_session
    assert session.query(Comment).count() == 3
    assert adapter.rows == [1]
    assert "COUNT(*)" in adapter.reads[0]


def test_values_projection(blog_session):
    rows = blog_session.query(Article).values("title", "author__name").order_by("title").list()
    assert rows[0] == {"title": "Cascade and restrict", "author__name": "Brian Kim"}
    created = blog_session.query(Article).values("created_at").first()
    assert isinstance(created["created_at"], datetime)
    names = blog_session.query(Article).values("author__name").distinct().order_by("author__name")
    assert [row["author__name"] for row in names] == ["Alice Carter", "Brian Kim"]
    assert blog_session.query(Article).values("author__name").distinct().count() == 2
    assert len(blog_session.tracker) == 0


def test_as_no_tracking_skips_identity_map(blog_session):
    untracked = blog_session.query(Author).as_no_tracking().order_by("name").list()
    assert len(blog_session.tracker) == 0
    again = blog_session.query(Author).as_no_tracking().order_by("name").list()
    assert untracked[0] is not again[0]
    assert untracked[0]._session is None

    tracked = blog_session.query(Author).order_by("name").list()
    assert blog_session.query(Author).order_by("name").list()[0] is tracked[0]
