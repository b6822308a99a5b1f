from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from orderflow.core.config import CONVERSATION_MUTEX_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class ConversationBusyError(RuntimeError):
    """Raised when another message for the same conversation holds the mutex too long."""


class InMemoryConversationMutex:
    """Serializes read-compute-write per (tenant, customer) inside one process."""

    def __init__(self, timeout_seconds: float = CONVERSATION_MUTEX_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[tuple[int, str], threading.Lock] = {}
        self._waiters: dict[tuple[int, str], int] = {}

    def _checkout(self, key: tuple[int, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._waiters[key] = self._waiters.get(key, 0) + 1
            return lock

    def _checkin(self, key: tuple[int, str]) -> None:
        with self._guard:
            remaining = self._waiters.get(key, 1) - 1
            if remaining <= 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._waiters[key] = remaining

    @contextmanager
    def hold(self, tenant_id: int, customer_phone: str) -> Iterator[None]:
        key = (tenant_id, customer_phone)
        lock = self._checkout(key)
        acquired = lock.acquire(timeout=self.timeout_seconds)
        if not acquired:
            self._checkin(key)
            logger.warning("Conversation mutex timeout: tenant=%s phone=%s", tenant_id, customer_phone)
            raise ConversationBusyError(f"conversation busy: tenant={tenant_id}")
        try:
            yield
        finally:
            lock.release()
            self._checkin(key)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


conversation_mutex = InMemoryConversationMutex()
