from examples.blog_app import (
    Article,
    article_counts,
    bootstrap_session,
    recent_articles,
    run_demo,
    seed_sample_data,
)


def test_blog_example_bootstrap_and_seed(tmp_path):
    db_path = tmp_path / "blog_example.db"
    session = bootstrap_session(dsn=f"sqlite:///{db_path}")
    try:
        seeded = seed_sample_data(session)
        assert len(seeded["authors"]) == 2
        assert len(seeded["tags"]) == 2
        assert len(seeded["articles"]) == 3
        assert session.round_trips == 1

        session.clear()
        assert session.query(Article).count() == 3
        assert article_counts(session) == [{"author__name": "Alice Carter", "articles": 2}]

        feed = recent_articles(session, limit=2)
        assert len(feed) == 2
        assert {"title", "author", "comments", "tags"} <= feed[0].keys()
    finally:
        session.close()


def test_run_demo_returns_feed():
    feed = run_demo()
    by_title = {entry["title"]: entry for entry in feed}
    assert by_title["Introducing EmberORM"] == {
        "title": "Introducing EmberORM",
        "author": "Alice Carter",
        "comments": 2,
        "tags": ["orm", "python"],
    }
    assert by_title["Cascade and restrict"]["comments"] == 0
    assert by_title["Loading strategies"]["tags"] == ["orm"]
