"""
Nested transaction scopes for one session.

The outermost scope owns the backend transaction; every inner scope is a
savepoint, so rolling back an inner scope undoes only its own writes.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import List, Optional

from ..adapters.base import DatabaseAdapter
from ..dialects.base import Dialect
from ..utils import get_logger


class TransactionError(RuntimeError):
    pass


@dataclass(frozen=True)
class Scope:
    savepoint: Optional[str] = None

    @property
    def outermost(self) -> bool:
        return self.savepoint is None


class TransactionManager:
    def __init__(self, adapter: DatabaseAdapter, dialect: Dialect) -> None:
        self.adapter = adapter
        self.dialect = dialect
        self._scopes: List[Scope] = []
        self._names = (f"ember_sp_{n}" for n in itertools.count(1))
        self.logger = get_logger("persistence.transaction")

    @property
    def depth(self) -> int:
        return len(self._scopes)

    @property
    def active(self) -> bool:
        return bool(self._scopes)

    def begin(self) -> None:
        if not self._scopes:
            self.adapter.begin()
            self._scopes.append(Scope())
            self.logger.debug("Transaction started")
            return
        if not self.dialect.capabilities.supports_savepoints:
            raise TransactionError(f"{self.dialect.name} does not support nested transactions.")
        scope = Scope(next(self._names))
        self._savepoint("SAVEPOINT", scope)
        self._scopes.append(scope)
        self.logger.debug("Savepoint %s opened at depth %s", scope.savepoint, self.depth)

    def commit(self) -> None:
        scope = self._pop("commit")
        if not scope.outermost:
            self._savepoint("RELEASE SAVEPOINT", scope)
            return
        try:
            self.adapter.commit()
        except Exception:
            # A failed COMMIT leaves the backend transaction open.
            self.adapter.rollback()
            self.logger.warning("Commit failed; transaction rolled back", exc_info=True)
            raise
        self.logger.debug("Transaction committed")

    def rollback(self) -> None:
        scope = self._pop("roll back")
        if scope.outermost:
            self.adapter.rollback()
            self.logger.debug("Transaction rolled back")
            return
        self._savepoint("ROLLBACK TO SAVEPOINT", scope)
        self._savepoint("RELEASE SAVEPOINT", scope)
        self.logger.debug("Rolled back to savepoint %s", scope.savepoint)

    def _pop(self, action: str) -> Scope:
        if not self._scopes:
            raise TransactionError(f"No active transaction to {action}.")
        return self._scopes.pop()

    def _savepoint(self, command: str, scope: Scope) -> None:
        self.adapter.execute(f"{command} {self.dialect.quote_identifier(scope.savepoint or '')}")
