import pytest

from emberorm.persistence import EntityState
from emberorm.validation import ValidationError
from examples.blog_app import Article, Author, Comment, Tag


def test_lifecycle_transitions(blog_session):
    author = Author.create("Dana")
    assert blog_session.state_of(author) is EntityState.DETACHED

    blog_session.add(author)
    assert blog_session.state_of(author) is EntityState.ADDED

    blog_session.save()
    assert blog_session.state_of(author) is EntityState.UNCHANGED

    author.name = "Dana Scully"
    assert blog_session.state_of(author) is EntityState.MODIFIED
    author.name = "Dana"
    assert blog_session.state_of(author) is EntityState.UNCHANGED

    blog_session.delete(author)
    assert blog_session.state_of(author) is EntityState.DELETED
    blog_session.save()
    assert blog_session.state_of(author) is EntityState.DETACHED
    assert blog_session.get(Author, author.pk) is None


def test_readding_deleted_entity_restores_previous_state(blog_session, author_ids):
    author = blog_session.get(Author, author_ids["Brian Kim"])
    author.name = "Brian K."
    blog_session.delete(author)
    blog_session.add(author)
    assert blog_session.state_of(author) is EntityState.MODIFIED
    blog_session.save()
    assert blog_session.query(Author).filter(name="Brian K.").count() == 1


def test_deleting_never_saved_entity_skips_storage(blog_session):
    author = Author.create("Transient")
    blog_session.add(author)
    blog_session.delete(author)
    assert blog_session.save() == 0
    assert blog_session.round_trips == 0
    assert blog_session.state_of(author) is EntityState.DETACHED


def test_compute_changes_is_pure(blog_session, author_ids):
    author = blog_session.get(Author, author_ids["Alice Carter"])
    author.name = "Alice C."
    newcomer = Author.create("Eve")
    blog_session.add(newcomer)

    first = blog_session.tracker.compute_changes()
    second = blog_session.tracker.compute_changes()
    assert first.summary() == second.summary() == {
        "inserts": 1,
        "updates": 1,
        "deletes": 0,
        "link_inserts": 0,
        "link_deletes": 0,
    }
    assert first.updates[0] == (author, ["name"])
    assert blog_session.state_of(newcomer) is EntityState.ADDED


def test_add_stages_aggregate_graph(blog_session, author_ids):
    article = Article.create("Graph", "Staged together", author_ids["Brian Kim"])
    comment = article.add_comment("First!")
    tag = Tag.create("graphs")
    article.add_tag(tag)

    blog_session.add(article)
    assert blog_session.state_of(comment) is EntityState.ADDED
    assert blog_session.state_of(tag) is EntityState.ADDED

    blog_session.save()
    blog_session.clear()
    stored = blog_session.query(Article).include("comments", "tags").filter(title="Graph").single()
    assert [c.content for c in stored.comments] == ["First!"]
    assert [t.name for t in stored.tags] == ["graphs"]


def test_new_children_on_loaded_aggregate_are_discovered(blog_session, article_ids):
    article = blog_session.get(Article, article_ids["Cascade and restrict"])
    comment = article.add_comment("Discovered at save time")
    assert blog_session.state_of(comment) is EntityState.DETACHED

    changes = blog_session.tracker.compute_changes()
    assert changes.discovered == [comment]

    blog_session.save()
    assert blog_session.state_of(comment) is EntityState.UNCHANGED
    assert blog_session.query(Comment).filter(article_id=article.pk).count() == 1


def test_removed_owned_child_is_deleted(blog_session, article_ids):
    article = (
        blog_session.query(Article)
        .include("comments")
        .filter(pk=article_ids["Introducing EmberORM"])
        .single()
    )
    doomed = article.comments[0]
    article.remove_comment(doomed)

    blog_session.save()
    assert blog_session.state_of(doomed) is EntityState.DETACHED
    assert blog_session.query(Comment).filter(article_id=article.pk).count() == 1
    assert len(article.comments) == 1


def test_many_to_many_changes_touch_links_only(blog_session, article_ids):
    article = blog_session.get(Article, article_ids["Introducing EmberORM"])
    python = next(tag for tag in article.tags if tag.name == "python")
    article.remove_tag(python)
    fresh = Tag.create("tracking")
    article.add_tag(fresh)

    changes = blog_session.tracker.compute_changes()
    assert len(changes.link_deletes) == 1
    assert len(changes.link_inserts) == 1
    assert changes.inserts == [fresh]

    blog_session.save()
    blog_session.clear()
    reloaded = blog_session.get(Article, article.pk)
    assert sorted(tag.name for tag in reloaded.tags) == ["orm", "tracking"]
    assert blog_session.query(Tag).filter(name="python").exists()


def test_clear_detaches_everything(blog_session, author_ids):
    author = blog_session.get(Author, author_ids["Alice Carter"])
    blog_session.clear()
    assert blog_session.state_of(author) is EntityState.DETACHED
    assert len(blog_session.tracker) == 0
    assert author._session is None


def test_staged_articles_join_resolved_author_collection(blog_session):
    ivy = Author.create("Ivy")
    blog_session.add(ivy)
    first = Article.create("First steps", "Body", ivy.pk)
    blog_session.add(first)
    assert ivy.articles == [first]

    jo = Author.create("Jo")
    early = Article.create("Staged before author", "Body", jo.pk)
    blog_session.add(early)
    blog_session.add(jo)
    assert jo.articles == [early]

    assert blog_session.save() == 4
    assert first in ivy.articles
    assert blog_session.query(Article).filter(author__name="Ivy").count() == 1


def test_rejected_graph_leaves_tracker_untouched(blog_session, author_ids):
    existing = blog_session.query(Comment).first()
    tracked = len(blog_session.tracker)
    article = Article.create("Conflicted", "Body", author_ids["Brian Kim"])
    fresh = article.add_comment("Fine")
    clash = Comment(id=existing.pk, content="Same identity", article=article)
    article.comments.append(clash)

    with pytest.raises(ValidationError):
        blog_session.add(article)
    assert blog_session.state_of(article) is EntityState.DETACHED
    assert blog_session.state_of(fresh) is EntityState.DETACHED
    assert len(blog_session.tracker) == tracked
    assert blog_session.save() == 0
