"""
Persistence layer components: sessions, change tracking, unit of work.
"""

from .delete_resolver import DeletePlan, DeleteResolver
from .identity_map import IdentityMap
from .session import Session
from .tracker import ChangeSet, ChangeTracker, EntityState, LinkRow
from .transaction import TransactionError, TransactionManager
from .unit_of_work import UnitOfWork

__all__ = [
    "ChangeSet",
    "ChangeTracker",
    "DeletePlan",
    "DeleteResolver",
    "EntityState",
    "IdentityMap",
    "LinkRow",
    "Session",
    "TransactionError",
    "TransactionManager",
    "UnitOfWork",
]
