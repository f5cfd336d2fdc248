"""
Cancellation tokens honored at storage round-trip boundaries.
"""

from __future__ import annotations

import threading
import time


class CancellationToken:
    """
    Cooperative cancellation signal with an optional deadline.

    A token is considered cancelled once :meth:`cancel` has been called or
    once ``timeout`` seconds have elapsed since it was created.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self.timeout = timeout
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def timed_out(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.timed_out

    def reason(self) -> str:
        if self._event.is_set():
            return "cancelled"
        if self.timed_out:
            return f"timed out after {self.timeout}s"
        return "active"

    def raise_if_cancelled(self, operation: str) -> None:
        if not self.cancelled:
            return
        from ..adapters.base import OperationCancelled

        raise OperationCancelled(f"{operation} {self.reason()}")
