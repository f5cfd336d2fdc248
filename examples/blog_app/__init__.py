"""
Blog-style sample application showcasing EmberORM capabilities.
"""

from .demo import (
    article_counts,
    bootstrap_session,
    comment_totals,
    recent_articles,
    run_demo,
    seed_sample_data,
)
from .models import Article, Author, Comment, Tag

__all__ = [
    "Article",
    "Author",
    "Comment",
    "Tag",
    "article_counts",
    "bootstrap_session",
    "comment_totals",
    "recent_articles",
    "run_demo",
    "seed_sample_data",
]
