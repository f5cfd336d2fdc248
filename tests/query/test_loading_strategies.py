import logging

import pytest

from emberorm.core import RelationshipNotLoaded
from examples.blog_app import Article, Author, bootstrap_session

INTRO = "Introducing EmberORM"


def graph(article):
    return (
        article.pk,
        article.author.name,
        sorted(comment.content for comment in article.comments),
        sorted(tag.name for tag in article.tags),
    )


def test_combined_include_multiplies_rows(blog_session):
    article = (
        blog_session.query(Article)
        .include("author", "comments", "tags")
        .filter(title=INTRO)
        .single()
    )
    assert blog_session.round_trips == 1
    # 2 comments x 2 tags, collapsed by identity
    assert blog_session.performance.last.rows == 4
    assert len(article.comments) == 2
    assert len(article.tags) == 2
    assert article.author.name == "Alice Carter"
    assert blog_session.round_trips == 1


def test_split_include_issues_one_round_trip_per_path(blog_session):
    article = (
        blog_session.query(Article)
        .include("comments", "tags")
        .split()
        .filter(title=INTRO)
        .single()
    )
    assert blog_session.round_trips == 3
    assert [trip.rows for trip in blog_session.performance.history] == [1, 2, 2]
    assert len(article.comments) == 2
    assert len(article.tags) == 2


def test_all_strategies_produce_the_same_graph(blog_session):
    combined = blog_session.query(Article).include("author", "comments", "tags").filter(title=INTRO).single()
    expected = graph(combined)

    blog_session.clear()
    split = (
        blog_session.query(Article)
        .include("author", "comments", "tags")
        .split()
        .filter(title=INTRO)
        .single()
    )
    assert split is not combined
    assert graph(split) == expected

    blog_session.clear()
    explicit = blog_session.query(Article).filter(title=INTRO).single()
    for relation in ("author", "comments", "tags"):
        blog_session.load(explicit, relation)
    assert graph(explicit) == expected

    blog_session.clear()
    lazy = blog_session.query(Article).filter(title=INTRO).single()
    assert graph(lazy) == expected


def test_collections_are_ordered_by_identity(blog_session):
    article = blog_session.query(Article).include("comments").filter(title=INTRO).single()
    pks = [comment.pk for comment in article.comments]
    assert pks == sorted(pks)


def test_nested_include_paths(blog_session):
    articles = (
        blog_session.query(Article)
        .include("author__articles")
        .order_by("title")
        .list()
    )
    assert blog_session.round_trips == 1
    counts = {article.title: len(article.author.articles) for article in articles}
    assert counts == {
        "Cascade and restrict": 1,
        "Introducing EmberORM": 2,
        "Loading strategies": 2,
    }
    assert blog_session.round_trips == 1

    blog_session.clear()
    blog_session.performance.reset()
    split = blog_session.query(Article).include("author__articles").split().order_by("title").list()
    assert blog_session.round_trips == 3
    assert {article.title: len(article.author.articles) for article in split} == counts


def test_paginated_include_keeps_whole_collections(blog_session):
    page = (
        blog_session.query(Article)
        .include("comments")
        .order_by("title")
        .skip(1)
        .take(1)
        .list()
    )
    assert [article.title for article in page] == [INTRO]
    assert len(page[0].comments) == 2


def test_lazy_loading_costs_one_round_trip_per_parent(blog_session):
    articles = blog_session.query(Article).order_by("title").list()
    assert blog_session.round_trips == 1
    for article in articles:
        _ = article.comments
    assert blog_session.round_trips == 1 + len(articles)

    # cached for the rest of the session
    for article in articles:
        _ = article.comments
    assert blog_session.round_trips == 1 + len(articles)


def test_eager_loading_is_constant(blog_session):
    articles = blog_session.query(Article).include("comments").order_by("title").list()
    for article in articles:
        _ = article.comments
    assert blog_session.round_trips == 1


def test_lazy_n_plus_one_is_reported(blog_dsn, blog, caplog):
    caplog.set_level(logging.WARNING, logger="emberorm.performance")
    session = bootstrap_session(dsn=blog_dsn, n_plus_one_threshold=3)
    try:
        for article in session.query(Article).order_by("title"):
            _ = article.comments
        assert any("Potential N+1 detected" in record.message for record in caplog.records)
    finally:
        session.close()


def test_lazy_loading_disabled(blog_dsn, blog):
    session = bootstrap_session(dsn=blog_dsn, lazy_loading=False)
    try:
        article = session.query(Article).order_by("title").first()
        with pytest.raises(RelationshipNotLoaded):
            _ = article.comments
        assert len(session.load(article, "comments")) == 0
        assert article.comments == []
    finally:
        session.close()


def test_untracked_results_cannot_lazy_load(blog_session):
    article = blog_session.query(Article).as_no_tracking().order_by("title").first()
    with pytest.raises(RelationshipNotLoaded):
        _ = article.author
    eager = blog_session.query(Article).as_no_tracking().include("author").order_by("title").first()
    assert eager.author.name == "Brian Kim"


def test_resolved_collections_include_pending_children(blog_session):
    article = blog_session.query(Article).filter(title=INTRO).single()
    from examples.blog_app import Comment

    pending = Comment(content="Pending", article_id=article.pk)
    blog_session.add(pending)
    assert pending in article.comments
    assert len(article.comments) == 3


def test_identity_map_wins_over_fresh_rows(blog_session):
    author = blog_session.query(Author).filter(name="Alice Carter").single()
    author.name = "Unsaved edit"
    articles = blog_session.query(Article).include("author").filter(author_id=author.pk).order_by("title").list()
    assert all(article.author is author for article in articles)
    assert author.name == "Unsaved edit"
