"""Cache abstractions for resolved feature access decisions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Iterable, Optional, Protocol, Set

from .models import FeatureAccess


class EntitlementCache(Protocol):
    """Protocol describing cache operations used by the entitlement resolver."""

    def get(self, key: str) -> Optional[FeatureAccess]:
        ...

    def set(self, key: str, value: FeatureAccess, expires_at: datetime, tags: Set[str]) -> None:
        ...

    def invalidate(self, tags: Iterable[str]) -> None:
        ...


def decision_cache_key(organization_id: str, feature_slug: str) -> str:
    return f"organization:{organization_id}|feature:{feature_slug}"


def decision_cache_tags(organization_id: str, feature_slug: str) -> Set[str]:
    return {f"organization:{organization_id}", f"feature:{feature_slug}"}


@dataclass
class _CacheEntry:
    value: FeatureAccess
    expires_at: datetime
    tags: Set[str]

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class InMemoryEntitlementCache:
    """Process-local cache suitable for tests, local development and request scope."""

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._entries: Dict[str, _CacheEntry] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = Lock()

    def get(self, key: str) -> Optional[FeatureAccess]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            if entry.is_expired(now):
                self._entries.pop(key, None)
                return None
            return entry.value

    def set(
        self,
        key: str,
        value: FeatureAccess,
        expires_at: datetime,
        tags: Set[str],
    ) -> None:
        now = self._clock()
        if expires_at <= now:
            return
        # A decision must not outlive the grant it came from.
        if value.expires_at is not None and value.expires_at < expires_at:
            expires_at = value.expires_at
            if expires_at <= now:
                return
        with self._lock:
            self._entries[key] = _CacheEntry(value=value, expires_at=expires_at, tags=set(tags))

    def invalidate(self, tags: Iterable[str]) -> None:
        tag_set = set(tags)
        if not tag_set:
            return
        with self._lock:
            keys_to_delete = [
                key
                for key, entry in self._entries.items()
                if entry.tags.intersection(tag_set)
            ]
            for key in keys_to_delete:
                self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
