"""
Identity map ensuring a single in-memory instance per (model, identity).
"""

from __future__ import annotations

from collections import defaultdict
from threading import RLock
from typing import Any, DefaultDict, Dict, List, Type

from ..core.model import Model
from ..validation import ValidationError


class IdentityMap:
    """
    Per-session store of materialized instances, bucketed by model.

    Lookups never touch storage. Registering a second, different instance
    under an identity that is already taken raises ``ValidationError``.
    """

    def __init__(self) -> None:
        self._buckets: DefaultDict[Type[Model], Dict[Any, Model]] = defaultdict(dict)
        self._lock = RLock()

    def register(self, instance: Model) -> None:
        pk = instance.pk
        if pk is None:
            raise ValidationError(f"Cannot register {type(instance).__name__} without an identity.")
        with self._lock:
            bucket = self._buckets[type(instance)]
            current = bucket.setdefault(pk, instance)
        if current is not instance:
            raise ValidationError(
                f"Another {type(instance).__name__} instance with identity {pk} is already tracked."
            )

    def get(self, model: Type[Model], pk: Any) -> Model | None:
        with self._lock:
            bucket = self._buckets.get(model)
            return bucket.get(pk) if bucket else None

    def remove(self, instance: Model) -> None:
        with self._lock:
            bucket = self._buckets.get(type(instance))
            if bucket and bucket.get(instance.pk) is instance:
                del bucket[instance.pk]

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()

    def values(self) -> List[Model]:
        with self._lock:
            return [instance for bucket in self._buckets.values() for instance in bucket.values()]

    def __contains__(self, instance: Model) -> bool:
        return self.get(type(instance), instance.pk) is instance

    def __len__(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._buckets.values())
