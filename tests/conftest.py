from typing import Any, Dict, List

import pytest

from emberorm.adapters import SQLiteAdapter
from emberorm.persistence import Session
from examples.blog_app import bootstrap_session, seed_sample_data


class CountingAdapter(SQLiteAdapter):
    """
    SQLite adapter recording every read and write batch that reaches storage.
    """

    def __init__(self) -> None:
        super().__init__()
        self.reads: List[str] = []
        self.rows: List[int] = []
        self.writes = 0

    def execute_read(self, sql, params=None, *, cancel=None):
        rows = super().execute_read(sql, params, cancel=cancel)
        self.reads.append(sql)
        self.rows.append(len(rows))
        return rows

    def execute_write(self, batch, *, cancel=None):
        self.writes += 1
        return super().execute_write(batch, cancel=cancel)

    def reset(self) -> None:
        self.reads.clear()
        self.rows.clear()
        self.writes = 0


@pytest.fixture
def blog_dsn(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'blog.db'}"


@pytest.fixture
def blog(blog_dsn):
    """
    Seeded blog database; the session starts with no tracked state and no
    recorded round trips.
    """
    session = bootstrap_session(dsn=blog_dsn)
    seeded = seed_sample_data(session)
    session.clear()
    session.performance.reset()
    yield session, seeded
    session.close()


@pytest.fixture
def blog_session(blog):
    return blog[0]


@pytest.fixture
def seeded(blog) -> Dict[str, List[Dict[str, Any]]]:
    return blog[1]


@pytest.fixture
def article_ids(seeded) -> Dict[str, Any]:
    return {article["title"]: article["id"] for article in seeded["articles"]}


@pytest.fixture
def author_ids(seeded) -> Dict[str, Any]:
    return {author["name"]: author["id"] for author in seeded["authors"]}


@pytest.fixture
def counting_session(blog, blog_dsn):
    """
    Second session over the seeded database whose adapter counts reads.
    """
    adapter = CountingAdapter()
    session = Session(adapter, dsn=blog_dsn)
    yield session, adapter
    session.close()
