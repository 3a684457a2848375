"""Resolver combining the plan matrix with per-organization grants."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import AbstractSet, Callable, Optional, Protocol

from .cache import EntitlementCache, decision_cache_key, decision_cache_tags
from .catalog import DEFAULT_FEATURE_MATRIX, PlanFeatureMatrix
from .models import (
    DEFAULT_ACTIVE_STATUSES,
    DEFAULT_TIER,
    DENIED,
    UNLIMITED,
    AccessSource,
    BetaGrant,
    FeatureAccess,
    OrganizationOverride,
    PlanTier,
    SubscriptionRecord,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)

UNKNOWN_FEATURE_REASON = "unknown feature"


class EntitlementStore(Protocol):
    """Read contract for per-organization subscription and grant records."""

    def get_subscription(self, organization_id: str) -> Optional[SubscriptionRecord]:
        ...

    def get_active_override(
        self, organization_id: str, feature_slug: str, now: datetime
    ) -> Optional[OrganizationOverride]:
        ...

    def get_active_beta_grant(
        self, organization_id: str, feature_slug: str, now: datetime
    ) -> Optional[BetaGrant]:
        ...


class EntitlementAdminStore(EntitlementStore, Protocol):
    """Write contract used by administrative tooling."""

    def upsert_override(self, override: OrganizationOverride) -> OrganizationOverride:
        ...

    def delete_override(self, organization_id: str, feature_slug: str) -> bool:
        ...

    def upsert_beta_grant(self, grant: BetaGrant) -> BetaGrant:
        ...

    def delete_beta_grant(self, organization_id: str, feature_slug: str) -> bool:
        ...


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EntitlementResolver:
    """Decides what an organization may do with a feature.

    Precedence, first live rule wins:

    1. an unexpired :class:`OrganizationOverride`;
    2. an unexpired :class:`BetaGrant`, which is always unlimited;
    3. the plan matrix row for the organization's effective tier.

    The effective tier is the subscribed plan when the subscription status is
    one of ``active_statuses``; otherwise it is :data:`DEFAULT_TIER`.
    """

    def __init__(
        self,
        store: EntitlementStore,
        *,
        matrix: PlanFeatureMatrix = DEFAULT_FEATURE_MATRIX,
        clock: Optional[Callable[[], datetime]] = None,
        active_statuses: AbstractSet[SubscriptionStatus] = DEFAULT_ACTIVE_STATUSES,
        cache: Optional[EntitlementCache] = None,
        cache_ttl_seconds: int = 0,
    ) -> None:
        self._store = store
        self._matrix = matrix
        self._clock = clock
        self._active_statuses = frozenset(active_statuses)
        self._cache = cache if cache_ttl_seconds > 0 else None
        self._cache_ttl = timedelta(seconds=max(cache_ttl_seconds, 0))

    @property
    def matrix(self) -> PlanFeatureMatrix:
        return self._matrix

    def now(self) -> datetime:
        return _current_time(self._clock)

    def effective_tier(self, organization_id: str) -> PlanTier:
        """Return the tier whose matrix row applies to the organization."""

        subscription = self._store.get_subscription(organization_id)
        return self._tier_for(subscription)

    def resolve(self, organization_id: str, feature_slug: str, *, use_cache: bool = True) -> FeatureAccess:
        """Return the access decision for ``feature_slug``.

        Unknown features fail closed. Store failures propagate. With
        ``use_cache=False`` the store is always read and the fresh decision
        replaces any cached one.
        """

        if feature_slug not in self._matrix:
            logger.error(
                "Entitlement check for undeclared feature %s org=%s",
                feature_slug,
                organization_id,
                extra={"organization_id": organization_id, "feature_slug": feature_slug},
            )
            return FeatureAccess(
                feature_slug=feature_slug,
                allowed=False,
                limit=DENIED,
                source=AccessSource.PLAN,
                tier=DEFAULT_TIER,
                reason=UNKNOWN_FEATURE_REASON,
            )

        cache_key = decision_cache_key(organization_id, feature_slug)
        if self._cache is not None and use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        now = self.now()
        decision = self._resolve_uncached(organization_id, feature_slug, now)

        if self._cache is not None:
            self._cache.set(
                cache_key,
                decision,
                now + self._cache_ttl,
                decision_cache_tags(organization_id, feature_slug),
            )
        return decision

    def invalidate_organization(self, organization_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate({f"organization:{organization_id}"})

    def _resolve_uncached(self, organization_id: str, feature_slug: str, now: datetime) -> FeatureAccess:
        tier = self.effective_tier(organization_id)

        override = self._store.get_active_override(organization_id, feature_slug, now)
        if override is not None and override.is_active(now):
            return self._from_override(override, tier)

        grant = self._store.get_active_beta_grant(organization_id, feature_slug, now)
        if grant is not None and grant.is_active(now):
            return FeatureAccess(
                feature_slug=feature_slug,
                allowed=True,
                limit=UNLIMITED,
                source=AccessSource.BETA,
                tier=tier,
                reason=grant.reason or "beta access",
                expires_at=grant.expires_at,
            )

        return self._from_matrix(feature_slug, tier)

    def _tier_for(self, subscription: Optional[SubscriptionRecord]) -> PlanTier:
        if subscription is None:
            return DEFAULT_TIER
        if subscription.status not in self._active_statuses:
            return DEFAULT_TIER
        return subscription.plan

    def _from_matrix(self, feature_slug: str, tier: PlanTier) -> FeatureAccess:
        access = self._matrix.access_for(feature_slug, tier)
        limit = access.as_limit()
        return FeatureAccess(
            feature_slug=feature_slug,
            allowed=limit != DENIED,
            limit=limit,
            source=AccessSource.PLAN,
            tier=tier,
            reason=None if limit != DENIED else f"not included in the {tier.value} plan",
        )

    def _from_override(self, override: OrganizationOverride, tier: PlanTier) -> FeatureAccess:
        if override.is_enabled is False:
            limit = DENIED
        elif override.limit_override is not None:
            limit = override.limit_override
        elif override.is_enabled is True:
            limit = UNLIMITED
        else:
            limit = self._matrix.access_for(override.feature_slug, tier).as_limit()

        return FeatureAccess(
            feature_slug=override.feature_slug,
            allowed=limit != DENIED,
            limit=limit,
            source=AccessSource.OVERRIDE,
            tier=tier,
            reason=override.reason or None,
            expires_at=override.expires_at,
        )


def resolve_feature(
    store: EntitlementStore,
    organization_id: str,
    feature_slug: str,
    *,
    matrix: PlanFeatureMatrix = DEFAULT_FEATURE_MATRIX,
    now: Optional[datetime] = None,
) -> FeatureAccess:
    """One-shot resolution helper for scripts and tests."""

    resolver = EntitlementResolver(
        store,
        matrix=matrix,
        clock=(lambda: now) if now is not None else None,
    )
    return resolver.resolve(organization_id, feature_slug)

