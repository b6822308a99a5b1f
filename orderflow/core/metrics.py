from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class EndpointMetric:
    total_requests: int = 0
    total_duration_ms: float = 0.0
    error_count: int = 0


@dataclass
class ExtractionMetric:
    calls: int = 0
    total_duration_ms: float = 0.0
    outcomes: Counter = field(default_factory=Counter)


class InMemoryRequestMetrics:
    def __init__(self) -> None:
        self._metrics: dict[tuple[str, str], EndpointMetric] = {}
        self._lock = Lock()

    def observe(self, endpoint: str, method: str, status_code: int, duration_ms: float) -> None:
        key = (endpoint, method)
        with self._lock:
            metric = self._metrics.setdefault(key, EndpointMetric())
            metric.total_requests += 1
            metric.total_duration_ms += duration_ms
            if status_code >= 400:
                metric.error_count += 1

    def snapshot(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            result: dict[str, dict[str, float | int]] = {}
            for (endpoint, method), metric in self._metrics.items():
                avg = metric.total_duration_ms / metric.total_requests if metric.total_requests else 0.0
                result[f"{method} {endpoint}"] = {
                    "total_requests": metric.total_requests,
                    "avg_duration_ms": round(avg, 2),
                    "error_count": metric.error_count,
                }
            return result


class InMemoryFlowMetrics:
    """Per-tenant counters for the ordering flow (extraction outcomes and latency)."""

    def __init__(self) -> None:
        self._extraction: dict[str, ExtractionMetric] = {}
        self._transitions: Counter = Counter()
        self._lock = Lock()

    def observe_extraction(self, tenant_id: int, outcome: str, duration_ms: float = 0.0) -> None:
        with self._lock:
            metric = self._extraction.setdefault(str(tenant_id), ExtractionMetric())
            metric.calls += 1
            metric.total_duration_ms += duration_ms
            metric.outcomes[outcome] += 1

    def observe_transition(self, from_phase: str, to_phase: str) -> None:
        with self._lock:
            self._transitions[f"{from_phase}->{to_phase}"] += 1

    def snapshot(self) -> dict[str, dict]:
        with self._lock:
            extraction = {}
            for tenant_id, metric in self._extraction.items():
                avg = metric.total_duration_ms / metric.calls if metric.calls else 0.0
                extraction[tenant_id] = {
                    "calls": metric.calls,
                    "avg_duration_ms": round(avg, 2),
                    "outcomes": dict(metric.outcomes),
                }
            return {"extraction": extraction, "transitions": dict(self._transitions)}


request_metrics = InMemoryRequestMetrics()
flow_metrics = InMemoryFlowMetrics()
