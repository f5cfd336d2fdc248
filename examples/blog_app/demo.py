"""
Utility helpers for running the EmberORM blog example end-to-end.
"""

from __future__ import annotations

from typing import Any, Dict, List

from emberorm.adapters import SQLiteAdapter
from emberorm.persistence import Session
from emberorm.query import Count, Max, Sum
from emberorm.schema import create_schema

from .models import Article, Author, Comment, Tag

MODELS = (Author, Tag, Article, Comment)


def bootstrap_session(dsn: str = "sqlite:///:memory:", **options: Any) -> Session:
    """
    Create a SQLite-backed session and ensure the blog schema exists.
    """

    session = Session(SQLiteAdapter(), dsn=dsn, **options)
    create_schema(session, MODELS)
    session.performance.reset()
    return session


def seed_sample_data(session: Session) -> Dict[str, List[Dict[str, Any]]]:
    """
    Populate two authors, three articles (two by the first author), comments
    and tags, and commit them in one save.
    """

    alice = Author.create("Alice Carter")
    brian = Author.create("Brian Kim")
    python = Tag.create("python")
    orm = Tag.create("orm")

    intro = Article.create(
        "Introducing EmberORM",
        "Sessions, identity maps and change tracking in one place.",
        alice.pk,
    )
    intro.add_comment("Great overview.")
    intro.add_comment("Looking forward to the loading guide.")
    intro.add_tag(python)
    intro.add_tag(orm)

    loading = Article.create(
        "Loading strategies",
        "Combined joins, split queries, explicit and lazy loading compared.",
        alice.pk,
    )
    loading.add_comment("The split strategy saved my dashboard.")
    loading.add_tag(orm)

    deletes = Article.create(
        "Cascade and restrict",
        "How owned children and restricted parents behave on delete.",
        brian.pk,
    )
    deletes.add_tag(python)

    for entity in (alice, brian, python, orm, intro, loading, deletes):
        session.add(entity)
    session.save()

    return {
        "authors": [author.to_dict() for author in (alice, brian)],
        "tags": [tag.to_dict() for tag in (python, orm)],
        "articles": [article.to_dict() for article in (intro, loading, deletes)],
    }


def article_counts(session: Session, minimum: int = 1) -> List[Dict[str, Any]]:
    """
    Authors with more than ``minimum`` articles, grouped by author name.
    """

    return (
        session.query(Article)
        .values("author__name")
        .annotate(articles=Count("*"))
        .having(articles__gt=minimum)
        .order_by("author__name")
        .list()
    )


def comment_totals(session: Session) -> Dict[str, Any]:
    """
    Comment statistics computed in storage: the busiest article's comment
    count and the comment total per author. Articles without comments count 0.
    """

    most = session.query(Article).aggregate(most=Max("comments"))["most"]
    per_author = (
        session.query(Article)
        .values("author__name")
        .annotate(comments=Sum("comments"))
        .order_by("author__name")
        .list()
    )
    return {"most_comments": most or 0, "per_author": per_author}


def recent_articles(session: Session, limit: int = 5) -> List[Dict[str, Any]]:
    """
    Newest articles with their author, comments and tags loaded eagerly.
    """

    articles = (
        session.query(Article)
        .include("author", "comments", "tags")
        .order_by("-created_at")
        .then_by("title")
        .take(limit)
        .list()
    )
    return [
        {
            "title": article.title,
            "author": article.author.name,
            "comments": len(article.comments),
            "tags": sorted(tag.name for tag in article.tags),
        }
        for article in articles
    ]


def run_demo(dsn: str = "sqlite:///:memory:") -> List[Dict[str, Any]]:
    """
    Bootstrap the database, seed data, and return a rendered feed.
    """

    session = bootstrap_session(dsn=dsn)
    try:
        seed_sample_data(session)
        session.clear()
        return recent_articles(session)
    finally:
        session.close()


if __name__ == "__main__":
    for entry in run_demo("sqlite:///blog_demo.db"):
        print(f"{entry['title']} by {entry['author']} ({entry['comments']} comments, tags: {', '.join(entry['tags'])})")
