"""Application wiring for the entitlement engine."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..entitlements import EntitlementResolver, InMemoryEntitlementCache, PREMIUM_AI_FEATURE
from ..entitlements.repository import PostgresEntitlementStore
from ..feature_gates.gate import FeatureGate
from ..usage import QuotaGuard, TokenUsageTracker
from ..usage.repository import PostgresUsageCounterStore

try:  # pragma: no cover - resolve configuration when imported from FastAPI app
    from backend.config import EntitlementConfig, load_entitlement_config
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...config import EntitlementConfig, load_entitlement_config  # type: ignore[no-redef]


logger = logging.getLogger("entitlements")


@lru_cache(maxsize=1)
def get_entitlement_config() -> EntitlementConfig:
    return load_entitlement_config()


@lru_cache(maxsize=1)
def get_entitlement_store() -> PostgresEntitlementStore:
    return PostgresEntitlementStore()


@lru_cache(maxsize=1)
def get_usage_store() -> PostgresUsageCounterStore:
    return PostgresUsageCounterStore()


@lru_cache(maxsize=1)
def get_feature_gate() -> FeatureGate:
    config = get_entitlement_config()
    resolver = EntitlementResolver(
        get_entitlement_store(),
        active_statuses=config.active_statuses,
        cache=InMemoryEntitlementCache(),
        cache_ttl_seconds=config.cache_ttl_seconds,
    )
    gate = FeatureGate(
        resolver,
        QuotaGuard(get_usage_store()),
        metric_overrides={PREMIUM_AI_FEATURE: config.premium_ai_metric_key},
    )
    logger.info(
        "Feature gate initialised cache_ttl=%s active_statuses=%s",
        config.cache_ttl_seconds,
        ",".join(status.value for status in config.active_statuses),
    )
    return gate


@lru_cache(maxsize=1)
def get_token_tracker() -> TokenUsageTracker:
    return TokenUsageTracker(get_usage_store())


def ensure_entitlement_schema() -> None:
    """Create the subscription, override, grant and usage tables if missing."""

    get_entitlement_store().ensure_schema()
    get_usage_store().ensure_schema()


__all__ = [
    "ensure_entitlement_schema",
    "get_entitlement_config",
    "get_entitlement_store",
    "get_feature_gate",
    "get_token_tracker",
    "get_usage_store",
]
