"""Usage counter store contract and an in-process implementation."""
from __future__ import annotations

from threading import Lock
from typing import Dict, Protocol, Tuple

CounterKey = Tuple[str, str, str]


class UsageCounterStore(Protocol):
    """Persistence contract for per-period consumable counters.

    ``increment_if_below_limit`` must be a single atomic operation: it adds
    ``amount`` only when the result stays within ``limit`` and otherwise
    leaves the counter untouched. It returns the value the counter would have
    after the increment together with whether that value exceeds ``limit``.
    """

    def increment_if_below_limit(
        self,
        organization_id: str,
        metric_key: str,
        period_key: str,
        limit: int,
        amount: int = 1,
    ) -> Tuple[int, bool]:
        ...

    def read_usage(self, organization_id: str, metric_key: str, period_key: str) -> int:
        ...

    def record_usage(
        self,
        organization_id: str,
        metric_key: str,
        period_key: str,
        amount: int,
    ) -> int:
        ...


class InMemoryUsageCounterStore:
    """Lock-guarded counter store suitable for tests and local development."""

    def __init__(self) -> None:
        self._counts: Dict[CounterKey, int] = {}
        self._lock = Lock()

    def increment_if_below_limit(
        self,
        organization_id: str,
        metric_key: str,
        period_key: str,
        limit: int,
        amount: int = 1,
    ) -> Tuple[int, bool]:
        if amount < 1:
            raise ValueError("amount must be >= 1")
        key = (organization_id, metric_key, period_key)
        with self._lock:
            current = self._counts.get(key, 0)
            attempted = current + amount
            if attempted > limit:
                return attempted, True
            self._counts[key] = attempted
            return attempted, False

    def read_usage(self, organization_id: str, metric_key: str, period_key: str) -> int:
        with self._lock:
            return self._counts.get((organization_id, metric_key, period_key), 0)

    def record_usage(
        self,
        organization_id: str,
        metric_key: str,
        period_key: str,
        amount: int,
    ) -> int:
        if amount < 0:
            raise ValueError("amount must be >= 0")
        key = (organization_id, metric_key, period_key)
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + amount
            return self._counts[key]

    def set_usage(self, organization_id: str, metric_key: str, period_key: str, count: int) -> None:
        """Seed a counter directly; intended for fixtures."""

        with self._lock:
            self._counts[(organization_id, metric_key, period_key)] = count
