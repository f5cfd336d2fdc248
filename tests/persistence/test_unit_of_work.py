import pytest

from emberorm.dialects import SQLiteDialect
from emberorm.persistence import ChangeSet, DeletePlan, LinkRow, UnitOfWork
from emberorm.validation import ValidationError
from examples.blog_app import Article, Author, Comment, Tag


def build_graph():
    author = Author.create("Ordering")
    article = Article.create("Ordered", "Parents first", author.pk)
    comment = article.add_comment("Child last")
    return author, article, comment


def test_inserts_are_ordered_parents_first():
    author, article, comment = build_graph()
    changes = ChangeSet(inserts=[comment, article, author])
    batch = UnitOfWork(SQLiteDialect()).build(changes)
    assert [statement.description.split()[:2] for statement in batch] == [
        ["insert", "Author"],
        ["insert", "Article"],
        ["insert", "Comment"],
    ]
    assert batch[0].sql == 'INSERT INTO "author" ("id", "name") VALUES (?, ?)'
    assert batch[0].params == (str(author.pk), "Ordering")


def test_updates_write_changed_columns_only():
    author = Author._from_db({"id": "00000000-0000-0000-0000-000000000001", "name": "Old"})
    author.name = "New"
    changes = ChangeSet(updates=[(author, author.changed_fields())])
    batch = UnitOfWork(SQLiteDialect()).build(changes)
    assert len(batch) == 1
    assert batch[0].sql == 'UPDATE "author" SET "name" = ? WHERE "id" = ?'
    assert batch[0].params == ("New", "00000000-0000-0000-0000-000000000001")


def test_batch_order_deletes_then_inserts_then_links():
    author, article, comment = build_graph()
    stale = Article.create("Stale", "Gone", author.pk)
    stale_comment = stale.add_comment("Gone too")
    tag = Tag.create("order")

    plan = DeletePlan()
    plan.add(Article, stale.pk, stale)
    plan.add(Comment, stale_comment.pk, stale_comment)
    link = LinkRow("article_tag", "article_id", article.pk, "tag_id", tag.pk)
    old_link = LinkRow("article_tag", "article_id", article.pk, "tag_id", "old")
    changes = ChangeSet(
        inserts=[author, article, comment, tag],
        deletes=[stale],
        link_inserts=[link],
        link_deletes=[old_link],
    )
    batch = UnitOfWork(SQLiteDialect()).build(changes, plan)
    kinds = [statement.description.split()[0] for statement in batch]
    assert kinds == [
        "unlink",  # explicit link delete
        "unlink",  # cleanup of the deleted article's tag links
        "delete",
        "delete",
        "insert",
        "insert",
        "insert",
        "insert",
        "link",
    ]
    assert batch[2].description.startswith("delete Comment")
    assert batch[3].description.startswith("delete Article")


def test_link_inserts_for_deleted_entities_are_skipped():
    author, article, _ = build_graph()
    tag = Tag.create("skip")
    plan = DeletePlan()
    plan.add(Tag, tag.pk, tag)
    changes = ChangeSet(
        link_inserts=[LinkRow("article_tag", "article_id", article.pk, "tag_id", tag.pk)]
    )
    batch = UnitOfWork(SQLiteDialect()).build(changes, plan)
    assert all(statement.description.split()[0] != "link" for statement in batch)


def test_validation_errors_are_aggregated_per_model():
    bad_author = Author(name=" ")
    bad_tag = Tag(name="")
    changes = ChangeSet(inserts=[bad_author, bad_tag])
    with pytest.raises(ValidationError) as excinfo:
        UnitOfWork(SQLiteDialect()).build(changes)
    assert set(excinfo.value.errors) == {"Author.name", "Tag.name"}
