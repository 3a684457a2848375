"""In-process entitlement store for tests and local development."""
from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Dict, Optional, Tuple

from .models import BetaGrant, OrganizationOverride, SubscriptionRecord

GrantKey = Tuple[str, str]


class InMemoryEntitlementStore:
    """Lock-guarded implementation of the entitlement read and admin contracts."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, SubscriptionRecord] = {}
        self._overrides: Dict[GrantKey, OrganizationOverride] = {}
        self._grants: Dict[GrantKey, BetaGrant] = {}
        self._lock = Lock()

    def set_subscription(self, record: SubscriptionRecord) -> None:
        with self._lock:
            self._subscriptions[record.organization_id] = record

    def get_subscription(self, organization_id: str) -> Optional[SubscriptionRecord]:
        with self._lock:
            return self._subscriptions.get(organization_id)

    def get_active_override(
        self, organization_id: str, feature_slug: str, now: datetime
    ) -> Optional[OrganizationOverride]:
        with self._lock:
            override = self._overrides.get((organization_id, feature_slug))
        if override is None or not override.is_active(now):
            return None
        return override

    def get_active_beta_grant(
        self, organization_id: str, feature_slug: str, now: datetime
    ) -> Optional[BetaGrant]:
        with self._lock:
            grant = self._grants.get((organization_id, feature_slug))
        if grant is None or not grant.is_active(now):
            return None
        return grant

    def upsert_override(self, override: OrganizationOverride) -> OrganizationOverride:
        with self._lock:
            self._overrides[(override.organization_id, override.feature_slug)] = override
        return override

    def delete_override(self, organization_id: str, feature_slug: str) -> bool:
        with self._lock:
            return self._overrides.pop((organization_id, feature_slug), None) is not None

    def upsert_beta_grant(self, grant: BetaGrant) -> BetaGrant:
        with self._lock:
            self._grants[(grant.organization_id, grant.feature_slug)] = grant
        return grant

    def delete_beta_grant(self, organization_id: str, feature_slug: str) -> bool:
        with self._lock:
            return self._grants.pop((organization_id, feature_slug), None) is not None
