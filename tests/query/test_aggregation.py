from datetime import datetime

import pytest

from emberorm.query import Avg, Count, Max, Min
from examples.blog_app import Article, Comment, article_counts, comment_totals


def test_aggregate_runs_in_storage(blog_session):
    result = blog_session.query(Article).aggregate(
        total=Count(),
        authors=Count("author_id", distinct=True),
        first_title=Min("title"),
        last_title=Max("title"),
    )
    assert result == {
        "total": 3,
        "authors": 2,
        "first_title": "Cascade and restrict",
        "last_title": "Loading strategies",
    }
    assert blog_session.round_trips == 1
    assert blog_session.performance.last.rows == 1


def test_aggregate_converts_field_values(blog_session):
    result = blog_session.query(Article).aggregate(newest=Max("created_at"))
    assert isinstance(result["newest"], datetime)


def test_aggregate_respects_filters_and_joins(blog_session):
    result = blog_session.query(Comment).filter(article__author__name="Alice Carter").aggregate(
        comments=Count()
    )
    assert result == {"comments": 3}
    empty = blog_session.query(Article).filter(title="nope").aggregate(
        total=Count(), first_title=Min("title")
    )
    assert empty == {"total": 0, "first_title": None}


def test_avg_of_nothing_is_none(blog_session):
    result = blog_session.query(Article).filter(title="nope").aggregate(average=Avg("title"))
    assert result == {"average": None}


def test_aggregate_rejects_pagination_and_projection(blog_session):
    with pytest.raises(ValueError):
        blog_session.query(Article).order_by("title").take(1).aggregate(total=Count())
    with pytest.raises(ValueError):
        blog_session.query(Article).values("title").aggregate(total=Count())
    with pytest.raises(ValueError):
        blog_session.query(Article).aggregate()


def test_grouped_counts_with_having(blog_session):
    assert article_counts(blog_session) == [{"author__name": "Alice Carter", "articles": 2}]
    assert article_counts(blog_session, minimum=0) == [
        {"author__name": "Alice Carter", "articles": 2},
        {"author__name": "Brian Kim", "articles": 1},
    ]


def test_grouped_counts_by_foreign_key(blog_session):
    rows = (
        blog_session.query(Comment)
        .values("article__title")
        .annotate(comments=Count())
        .order_by("-comments")
        .list()
    )
    assert rows == [
        {"article__title": "Introducing EmberORM", "comments": 2},
        {"article__title": "Loading strategies", "comments": 1},
    ]


def test_collection_sizes_aggregate_with_empty_parents_as_zero(blog_session):
    result = blog_session.query(Article).aggregate(
        most=Max("comments"),
        fewest=Min("comments"),
        total=Count("comments"),
        links=Count("tags"),
    )
    assert result == {"most": 2, "fewest": 0, "total": 3, "links": 4}
    assert blog_session.round_trips == 1


def test_collection_count_per_group_keeps_uncommented_articles(blog_session):
    rows = (
        blog_session.query(Article)
        .values("title")
        .annotate(comments=Count("comments"))
        .order_by("title")
        .list()
    )
    assert rows == [
        {"title": "Cascade and restrict", "comments": 0},
        {"title": "Introducing EmberORM", "comments": 2},
        {"title": "Loading strategies", "comments": 1},
    ]


def test_comment_totals_per_author(blog_session):
    assert comment_totals(blog_session) == {
        "most_comments": 2,
        "per_author": [
            {"author__name": "Alice Carter", "comments": 3},
            {"author__name": "Brian Kim", "comments": 0},
        ],
    }


def test_distinct_collection_aggregate_is_rejected(blog_session):
    with pytest.raises(ValueError):
        blog_session.query(Article).aggregate(total=Count("comments", distinct=True))
