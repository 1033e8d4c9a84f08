"""Per-account mutual exclusion with bounded waits.

Every balance-mutating operation for an affiliate runs inside
``locks.hold(affiliate_id)``. Different affiliates use different locks
and never contend. Acquisition waits at most ``timeout_seconds`` per
attempt and makes ``retry_attempts`` attempts before raising
LockTimeout. A caller-supplied cancel event is honoured only before the
lock is acquired; once held, the critical section runs to completion.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from payout_ledger.errors import LockTimeout, OperationCancelled

logger = logging.getLogger(__name__)


class AccountLockManager:
    """Lazily created lock per affiliate id.

    Usage:
        locks = AccountLockManager(timeout_seconds=2.0, retry_attempts=3)
        with locks.hold("aff1"):
            ...  # read-validate-mutate the account
    """

    def __init__(
        self,
        timeout_seconds: float = 2.0,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.05,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError(f"Lock timeout must be positive, got {timeout_seconds}")
        self._timeout = timeout_seconds
        self._attempts = max(1, retry_attempts)
        self._backoff = max(0.0, retry_backoff_seconds)
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def _lock_for(self, affiliate_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(affiliate_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[affiliate_id] = lock
            return lock

    def is_locked(self, affiliate_id: str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(affiliate_id)
        return lock is not None and lock.locked()

    @contextmanager
    def hold(
        self,
        affiliate_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[None]:
        """Hold the affiliate's lock for the duration of the block.

        Raises:
            OperationCancelled: cancel_event was set before acquisition.
            LockTimeout: every attempt timed out.
        """
        lock = self._lock_for(affiliate_id)
        acquired = False
        for attempt in range(1, self._attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled(affiliate_id)
            if lock.acquire(timeout=self._timeout):
                acquired = True
                break
            logger.warning(
                "Account lock busy",
                extra={"affiliate_id": affiliate_id, "attempt": attempt,
                       "max_attempts": self._attempts},
            )
            if attempt < self._attempts and self._backoff:
                time.sleep(self._backoff * attempt)
        if not acquired:
            raise LockTimeout(affiliate_id, self._timeout)

        logger.debug("Account lock acquired", extra={"affiliate_id": affiliate_id})
        try:
            yield
        finally:
            lock.release()
