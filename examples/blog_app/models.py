"""
Data models for the EmberORM blog example.

Authors and tags are independent aggregate roots. Articles reference their
author with a restrict policy, own their comments and share tags through the
``article_tag`` link table.
"""

from __future__ import annotations

from typing import Any

from emberorm.core import (
    CASCADE,
    RESTRICT,
    DateTimeField,
    ForeignKey,
    ManyToManyField,
    Model,
    StringField,
)
from emberorm.validation import require_text


class Author(Model):
    name = StringField(nullable=False, blank=False, max_length=120)

    class Meta:
        indexes = ["name"]

    @classmethod
    def create(cls, name: str) -> "Author":
        require_text("name", name)
        author = cls(name=name)
        author.full_clean()
        author._resolve_relation("articles", [])
        return author


class Tag(Model):
    name = StringField(nullable=False, blank=False, unique=True, max_length=50)

    @classmethod
    def create(cls, name: str) -> "Tag":
        require_text("name", name)
        tag = cls(name=name)
        tag.full_clean()
        return tag


class Article(Model):
    title = StringField(nullable=False, blank=False, max_length=200)
    content = StringField(nullable=False, blank=False, max_length=None)
    created_at = DateTimeField(auto_now_add=True, nullable=False, immutable=True)
    author_id = ForeignKey(
        Author, on_delete=RESTRICT, navigation="author", related_name="articles"
    )
    tags = ManyToManyField(Tag, related_name="articles", through="article_tag")

    class Meta:
        indexes = ["title", "created_at", ("author_id", "created_at")]

    @classmethod
    def create(cls, title: str, content: str, author_id: Any) -> "Article":
        """
        Build a new article owned by ``author_id`` with empty comment and tag
        collections.
        """
        require_text("title", title)
        require_text("content", content)
        article = cls(title=title, content=content, author_id=author_id)
        article.full_clean()
        article._resolve_relation("comments", [])
        article._resolve_relation("tags", [])
        return article

    def add_comment(self, content: str) -> "Comment":
        require_text("content", content)
        comment = Comment(content=content, article=self)
        comment.full_clean()
        self.comments.append(comment)
        return comment

    def remove_comment(self, comment: "Comment") -> None:
        """
        Detach ``comment``; the owned child is deleted on the next save.
        """
        self.comments.remove(comment)

    def add_tag(self, tag: Tag) -> None:
        if any(existing.pk == tag.pk for existing in self.tags):
            return
        self.tags.append(tag)

    def remove_tag(self, tag: Tag) -> None:
        self.tags[:] = [existing for existing in self.tags if existing.pk != tag.pk]


class Comment(Model):
    content = StringField(nullable=False, blank=False, max_length=None)
    article_id = ForeignKey(
        Article, on_delete=CASCADE, navigation="article", related_name="comments"
    )

    class Meta:
        indexes = ["article_id"]
