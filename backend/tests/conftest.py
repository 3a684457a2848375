from __future__ import annotations

import pathlib
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.entitlements import (  # noqa: E402
    EntitlementResolver,
    InMemoryEntitlementCache,
    InMemoryEntitlementStore,
    PlanTier,
    StoreUnavailableError,
    SubscriptionRecord,
    SubscriptionStatus,
)
from backend.app.feature_gates import FeatureGate  # noqa: E402
from backend.app.usage import InMemoryUsageCounterStore, QuotaGuard  # noqa: E402


class FixedClock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> None:
        self.moment = self.moment + timedelta(**kwargs)


class FakeEntitlementStore(InMemoryEntitlementStore):
    def __init__(self) -> None:
        super().__init__()
        self.unavailable = False
        self.subscription_reads = 0

    def set_plan(
        self,
        organization_id: str,
        plan: PlanTier,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> None:
        self.set_subscription(
            SubscriptionRecord(organization_id=organization_id, plan=plan, status=status)
        )

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailableError("entitlement store offline")

    def get_subscription(self, organization_id):
        self._check()
        self.subscription_reads += 1
        return super().get_subscription(organization_id)

    def get_active_override(self, organization_id, feature_slug, now):
        self._check()
        return super().get_active_override(organization_id, feature_slug, now)

    def get_active_beta_grant(self, organization_id, feature_slug, now):
        self._check()
        return super().get_active_beta_grant(organization_id, feature_slug, now)

    def upsert_override(self, override):
        self._check()
        return super().upsert_override(override)

    def delete_override(self, organization_id, feature_slug):
        self._check()
        return super().delete_override(organization_id, feature_slug)

    def upsert_beta_grant(self, grant):
        self._check()
        return super().upsert_beta_grant(grant)

    def delete_beta_grant(self, organization_id, feature_slug):
        self._check()
        return super().delete_beta_grant(organization_id, feature_slug)


class RecordingUsageStore(InMemoryUsageCounterStore):
    def __init__(self) -> None:
        super().__init__()
        self.increments: List[Tuple[str, str, str, int, int]] = []
        self.unavailable = False

    def increment_if_below_limit(self, organization_id, metric_key, period_key, limit, amount=1):
        if self.unavailable:
            raise StoreUnavailableError("usage store offline")
        self.increments.append((organization_id, metric_key, period_key, limit, amount))
        return super().increment_if_below_limit(organization_id, metric_key, period_key, limit, amount)

    def read_usage(self, organization_id, metric_key, period_key):
        if self.unavailable:
            raise StoreUnavailableError("usage store offline")
        return super().read_usage(organization_id, metric_key, period_key)

    def record_usage(self, organization_id, metric_key, period_key, amount):
        if self.unavailable:
            raise StoreUnavailableError("usage store offline")
        return super().record_usage(organization_id, metric_key, period_key, amount)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def entitlement_store() -> FakeEntitlementStore:
    return FakeEntitlementStore()


@pytest.fixture
def usage_store() -> RecordingUsageStore:
    return RecordingUsageStore()


@pytest.fixture
def resolver(entitlement_store, clock) -> EntitlementResolver:
    return EntitlementResolver(entitlement_store, clock=clock)


@pytest.fixture
def quota_guard(usage_store, clock) -> QuotaGuard:
    return QuotaGuard(usage_store, clock=clock)


@pytest.fixture
def feature_gate(resolver, quota_guard) -> FeatureGate:
    return FeatureGate(resolver, quota_guard)


@pytest.fixture
def cached_resolver(entitlement_store, clock) -> EntitlementResolver:
    return EntitlementResolver(
        entitlement_store,
        clock=clock,
        cache=InMemoryEntitlementCache(clock=clock),
        cache_ttl_seconds=30,
    )
