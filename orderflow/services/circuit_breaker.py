from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Callable


@dataclass
class BreakerDecision:
    allowed: bool
    consecutive_failures: int
    retry_after_seconds: float = 0.0


class TenantCircuitBreaker(ABC):
    @abstractmethod
    def before_request(self, *, tenant_id: int, integration: str) -> BreakerDecision:
        """Diz se a chamada externa pode ser feita agora."""

    @abstractmethod
    def register_success(self, *, tenant_id: int, integration: str) -> None:
        """Fecha o circuito e zera as falhas."""

    @abstractmethod
    def register_failure(self, *, tenant_id: int, integration: str) -> int:
        """Incrementa falhas consecutivas e retorna total atual."""


class InMemoryTenantCircuitBreaker(TenantCircuitBreaker):
    """Opens after ``threshold`` consecutive failures; one trial call is let through after ``cooldown_seconds``."""

    def __init__(
        self,
        *,
        threshold: int = 3,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._failures: dict[tuple[int, str], int] = {}
        self._opened_at: dict[tuple[int, str], float] = {}
        self._lock = Lock()

    def before_request(self, *, tenant_id: int, integration: str) -> BreakerDecision:
        key = (tenant_id, integration)
        with self._lock:
            failures = self._failures.get(key, 0)
            opened_at = self._opened_at.get(key)
            if opened_at is None:
                return BreakerDecision(allowed=True, consecutive_failures=failures)

            elapsed = self._clock() - opened_at
            if elapsed >= self.cooldown_seconds:
                # half-open: libera uma tentativa e reabre se falhar
                self._opened_at[key] = self._clock()
                return BreakerDecision(allowed=True, consecutive_failures=failures)
            return BreakerDecision(
                allowed=False,
                consecutive_failures=failures,
                retry_after_seconds=round(self.cooldown_seconds - elapsed, 2),
            )

    def register_success(self, *, tenant_id: int, integration: str) -> None:
        key = (tenant_id, integration)
        with self._lock:
            self._failures.pop(key, None)
            self._opened_at.pop(key, None)

    def register_failure(self, *, tenant_id: int, integration: str) -> int:
        key = (tenant_id, integration)
        with self._lock:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
            if failures >= self.threshold:
                self._opened_at[key] = self._clock()
            return failures

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()
            self._opened_at.clear()
