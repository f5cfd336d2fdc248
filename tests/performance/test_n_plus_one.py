import logging

from examples.blog_app import Article, bootstrap_session, seed_sample_data


def test_lazy_loop_triggers_n_plus_one_warning(caplog):
    caplog.set_level(logging.WARNING, logger="emberorm.performance")
    session = bootstrap_session(n_plus_one_threshold=3)
    try:
        seed_sample_data(session)
        session.clear()
        session.performance.reset()

        for article in session.query(Article).order_by("title"):
            _ = article.author
            _ = article.comments

        assert session.round_trips == 7
        assert any("Potential N+1 detected" in record.message for record in caplog.records)
        stats = {stat["sql"]: stat for stat in session.query_stats()}
        assert max(stat["count"] for stat in stats.values()) == 3
    finally:
        session.close()


def test_eager_loading_avoids_warning(caplog):
    caplog.set_level(logging.WARNING, logger="emberorm.performance")
    session = bootstrap_session(n_plus_one_threshold=3)
    try:
        seed_sample_data(session)
        session.clear()
        session.performance.reset()

        for article in session.query(Article).include("author", "comments").order_by("title"):
            _ = article.author
            _ = article.comments

        assert session.round_trips == 1
        assert not any("Potential N+1" in record.message for record in caplog.records)
    finally:
        session.close()
