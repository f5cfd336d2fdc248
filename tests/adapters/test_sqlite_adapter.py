import pytest

from emberorm.adapters import (
    AdapterConfigurationError,
    AdapterConnectionError,
    AdapterExecutionError,
    ConnectionConfig,
    ConstraintViolation,
    OperationCancelled,
    SQLiteAdapter,
    Statement,
    transaction,
)
from emberorm.utils import CancellationToken


@pytest.fixture
def adapter():
    adapter = SQLiteAdapter()
    adapter.connect(ConnectionConfig(url="sqlite:///:memory:"))
    adapter.execute('CREATE TABLE "item" ("id" INTEGER PRIMARY KEY, "name" TEXT NOT NULL UNIQUE)')
    yield adapter
    adapter.close()


def test_execute_read_returns_mappings(adapter):
    adapter.execute_write(
        [
            Statement('INSERT INTO "item" ("name") VALUES (?)', ("alpha",)),
            Statement('INSERT INTO "item" ("name") VALUES (?)', ("beta",)),
        ]
    )
    rows = adapter.execute_read('SELECT "name" FROM "item" ORDER BY "name" DESC')
    assert rows == [{"name": "beta"}, {"name": "alpha"}]


def test_execute_write_reports_affected_rows(adapter):
    affected = adapter.execute_write(
        [
            Statement('INSERT INTO "item" ("name") VALUES (?)', ("alpha",)),
            Statement('UPDATE "item" SET "name" = ? WHERE "name" = ?', ("gamma", "missing")),
        ]
    )
    assert affected == 1


def test_integrity_errors_become_constraint_violations(adapter):
    adapter.execute('INSERT INTO "item" ("name") VALUES (?)', ["alpha"])
    with pytest.raises(ConstraintViolation):
        adapter.execute_write([Statement('INSERT INTO "item" ("name") VALUES (?)', ("alpha",))])


def test_bad_sql_raises_execution_error(adapter):
    with pytest.raises(AdapterExecutionError):
        adapter.execute_read('SELECT * FROM "missing"')


def test_requires_connection():
    with pytest.raises(AdapterConnectionError):
        SQLiteAdapter().execute_read("SELECT 1")


def test_close_is_idempotent(adapter):
    adapter.close()
    adapter.close()
    with pytest.raises(AdapterConnectionError):
        adapter.execute("SELECT 1")


def test_cancelled_token_short_circuits(adapter):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        adapter.execute_read("SELECT 1", cancel=token)
    with pytest.raises(OperationCancelled):
        adapter.execute_write([Statement("SELECT 1")], cancel=token)


def test_transaction_context_manager(adapter):
    with transaction(adapter):
        adapter.execute('INSERT INTO "item" ("name") VALUES (?)', ["kept"])
    with pytest.raises(RuntimeError):
        with transaction(adapter):
            adapter.execute('INSERT INTO "item" ("name") VALUES (?)', ["discarded"])
            raise RuntimeError("boom")
    assert not adapter.in_transaction
    rows = adapter.execute_read('SELECT "name" FROM "item"')
    assert rows == [{"name": "kept"}]


def test_rollback_without_transaction_is_noop(adapter):
    adapter.rollback()
    assert not adapter.in_transaction


def test_foreign_keys_are_enforced(adapter):
    rows = adapter.execute_read("PRAGMA foreign_keys")
    assert list(rows[0].values()) == [1]


def test_isolation_level_validation():
    adapter = SQLiteAdapter()
    with pytest.raises(AdapterConfigurationError):
        adapter.connect(ConnectionConfig(url="sqlite:///:memory:", isolation_level="serializable"))
    adapter.connect(ConnectionConfig(url="sqlite:///:memory:", isolation_level="immediate"))
    adapter.begin()
    assert adapter.in_transaction
    adapter.rollback()
    adapter.close()
