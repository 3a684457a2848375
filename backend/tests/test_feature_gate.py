from __future__ import annotations

from datetime import timedelta

import pytest

from backend.app.entitlements import (
    PREMIUM_AI_METRIC,
    AccessSource,
    EntitlementResolver,
    OrganizationOverride,
    PlanTier,
    SubscriptionStatus,
)
from backend.app.feature_gates import DenialCode, FeatureGate
from backend.app.usage import QuotaGuard


def test_starter_premium_quota_allows_last_message_then_denies(feature_gate, entitlement_store, usage_store):
    entitlement_store.set_plan("org-s", PlanTier.STARTER)
    usage_store.set_usage("org-s", PREMIUM_AI_METRIC, "2025-03", 99)

    allowed = feature_gate.gate("org-s", "premium_ai_models", consume_amount=1)
    denied = feature_gate.gate("org-s", "premium_ai_models", consume_amount=1)

    assert allowed.allowed is True
    assert allowed.used == 100
    assert denied.allowed is False
    assert denied.code == DenialCode.QUOTA_EXCEEDED
    assert denied.used == 100
    assert denied.limit == 100
    assert denied.upgrade.required_plan == PlanTier.PRO
    assert feature_gate.current_usage("org-s", PREMIUM_AI_METRIC) == 100


def test_free_plan_webhooks_are_restricted_with_upgrade_hint(feature_gate, usage_store):
    result = feature_gate.gate("org-free", "webhooks")

    assert result.allowed is False
    assert result.code == DenialCode.FEATURE_RESTRICTED
    assert result.current_plan == PlanTier.FREE
    payload = result.denial_payload()
    assert payload["upgrade"]["requiredPlan"] == "pro"
    assert payload["currentPlan"] == "free"
    assert payload["allowed"] is False
    assert usage_store.increments == []


def test_restricted_consume_call_never_touches_usage(feature_gate, usage_store):
    result = feature_gate.gate("org-free", "webhooks", consume_amount=1)

    assert result.code == DenialCode.FEATURE_RESTRICTED
    assert usage_store.increments == []
    assert feature_gate.current_usage("org-free", "webhooks") == 0


def test_unlimited_feature_never_touches_usage_store(feature_gate, entitlement_store, usage_store):
    entitlement_store.set_plan("org-p", PlanTier.PRO)

    for _ in range(5):
        result = feature_gate.gate("org-p", "premium_ai_models", consume_amount=1)
        assert result.allowed is True
        assert result.limit == -1

    assert usage_store.increments == []


def test_check_only_gate_does_not_consume(feature_gate, entitlement_store, usage_store):
    entitlement_store.set_plan("org-p", PlanTier.PRO)

    for _ in range(10):
        assert feature_gate.gate("org-p", "webhooks").allowed is True

    assert usage_store.increments == []
    assert feature_gate.current_usage("org-p", "webhooks") == 0


def test_consuming_gate_reserves_capacity(feature_gate, entitlement_store):
    entitlement_store.set_plan("org-p", PlanTier.PRO)

    result = feature_gate.gate("org-p", "webhooks", consume_amount=2)

    assert result.allowed is True
    assert result.used == 2
    assert result.limit == 5
    assert result.source == AccessSource.PLAN


def test_quota_exceeded_without_higher_tier_suggests_sales(feature_gate, entitlement_store):
    entitlement_store.set_plan("org-e", PlanTier.ENTERPRISE)

    feature_gate.gate("org-e", "team_members", consume_amount=250)
    result = feature_gate.gate("org-e", "team_members", consume_amount=1)

    assert result.code == DenialCode.QUOTA_EXCEEDED
    assert result.upgrade.required_plan is None
    assert "Contact sales" in result.upgrade.message
    assert result.denial_payload()["upgrade"]["requiredPlan"] is None


def test_override_disabled_feature_has_no_plan_upgrade(feature_gate, entitlement_store):
    entitlement_store.set_plan("org-e", PlanTier.ENTERPRISE)
    entitlement_store.upsert_override(
        OrganizationOverride(organization_id="org-e", feature_slug="webhooks", is_enabled=False)
    )

    result = feature_gate.gate("org-e", "webhooks")

    assert result.code == DenialCode.FEATURE_RESTRICTED
    assert result.source == AccessSource.OVERRIDE
    assert result.upgrade.required_plan is None


def test_override_limit_is_enforced(feature_gate, entitlement_store):
    entitlement_store.set_plan("org-p", PlanTier.PRO)
    entitlement_store.upsert_override(
        OrganizationOverride(organization_id="org-p", feature_slug="webhooks", limit_override=1)
    )

    assert feature_gate.gate("org-p", "webhooks", consume_amount=1).allowed is True
    denied = feature_gate.gate("org-p", "webhooks", consume_amount=1)
    assert denied.code == DenialCode.QUOTA_EXCEEDED
    assert denied.source == AccessSource.OVERRIDE


def test_unknown_feature_is_restricted_without_upgrade(feature_gate):
    result = feature_gate.gate("org-1", "teleportation", consume_amount=1)

    assert result.allowed is False
    assert result.code == DenialCode.FEATURE_RESTRICTED
    assert result.upgrade is None


def test_entitlement_store_outage_is_service_unavailable(feature_gate, entitlement_store):
    entitlement_store.unavailable = True

    result = feature_gate.gate("org-1", "webhooks", consume_amount=1)

    assert result.allowed is False
    assert result.code == DenialCode.SERVICE_UNAVAILABLE
    assert result.upgrade is None
    assert result.is_infrastructure_failure is True
    assert result.denial_payload()["upgrade"] is None


def test_usage_store_outage_is_service_unavailable(feature_gate, entitlement_store, usage_store):
    entitlement_store.set_plan("org-p", PlanTier.PRO)
    usage_store.unavailable = True

    result = feature_gate.gate("org-p", "webhooks", consume_amount=1)

    assert result.code == DenialCode.SERVICE_UNAVAILABLE
    assert result.current_plan == PlanTier.PRO
    assert result.upgrade is None


def test_consume_amount_must_be_positive(feature_gate):
    with pytest.raises(ValueError):
        feature_gate.gate("org-1", "webhooks", consume_amount=0)


def test_allowed_results_have_no_denial_payload(feature_gate):
    result = feature_gate.gate("org-1", "basic_ai_models")

    assert result.allowed is True
    with pytest.raises(ValueError):
        result.denial_payload()


def test_denials_are_logged_as_warnings(feature_gate, caplog):
    with caplog.at_level("WARNING"):
        feature_gate.gate("org-free", "white_label")

    assert "org-free" in caplog.text
    assert "FEATURE_RESTRICTED" in caplog.text


def test_expired_override_is_not_used_by_gate(feature_gate, entitlement_store, clock):
    entitlement_store.set_plan("org-b", PlanTier.BUSINESS)
    entitlement_store.upsert_override(
        OrganizationOverride(
            organization_id="org-b",
            feature_slug="white_label",
            is_enabled=True,
            expires_at=clock() + timedelta(hours=1),
        )
    )
    assert feature_gate.gate("org-b", "white_label").allowed is True

    clock.advance(hours=2)
    result = feature_gate.gate("org-b", "white_label")

    assert result.allowed is False
    assert result.upgrade.required_plan == PlanTier.ENTERPRISE


def test_usage_summary_uses_feature_metric(feature_gate, entitlement_store, usage_store):
    entitlement_store.set_plan("org-s", PlanTier.STARTER)
    usage_store.set_usage("org-s", PREMIUM_AI_METRIC, "2025-03", 85)

    summary = feature_gate.usage_summary("org-s", "premium_ai_models")

    assert summary.metric_key == PREMIUM_AI_METRIC
    assert summary.used == 85
    assert summary.limit == 100
    assert summary.status.value == "approaching_limit"


def test_metric_override_redirects_premium_counter(entitlement_store, usage_store, clock):
    gate = FeatureGate(
        EntitlementResolver(entitlement_store, clock=clock),
        QuotaGuard(usage_store, clock=clock),
        metric_overrides={"premium_ai_models": "premium_messages"},
    )
    entitlement_store.set_plan("org-s", PlanTier.STARTER)

    gate.gate("org-s", "premium_ai_models", consume_amount=1)

    assert gate.current_usage("org-s", "premium_messages") == 1
    assert gate.current_usage("org-s", PREMIUM_AI_METRIC) == 0


def test_consuming_gate_sees_cancellation_through_cache(cached_resolver, quota_guard, entitlement_store, clock):
    gate = FeatureGate(cached_resolver, quota_guard)
    entitlement_store.set_plan("org-c", PlanTier.PRO)

    assert gate.gate("org-c", "webhooks", consume_amount=1).allowed is True

    entitlement_store.set_plan("org-c", PlanTier.PRO, SubscriptionStatus.CANCELED)
    clock.advance(seconds=20)
    result = gate.gate("org-c", "webhooks", consume_amount=1)

    assert result.allowed is False
    assert result.code == DenialCode.FEATURE_RESTRICTED
    assert result.current_plan == PlanTier.FREE
    assert quota_guard.current_usage("org-c", "webhooks") == 1


def test_check_only_gate_reuses_cached_decision(cached_resolver, quota_guard, entitlement_store):
    gate = FeatureGate(cached_resolver, quota_guard)
    entitlement_store.set_plan("org-c", PlanTier.PRO)

    gate.gate("org-c", "webhooks")
    gate.gate("org-c", "webhooks")

    assert entitlement_store.subscription_reads == 1
