from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.entitlements import StoreUnavailableError
from backend.app.usage import (
    AI_COST_METRIC,
    AI_INPUT_TOKENS_METRIC,
    AI_OUTPUT_TOKENS_METRIC,
    InMemoryUsageCounterStore,
    QuotaGuard,
    TokenUsageTracker,
    UsageStatus,
    UsageSummary,
    period_key_for,
)


def test_period_key_is_utc_calendar_month():
    assert period_key_for(datetime(2025, 3, 31, 23, 30, tzinfo=timezone.utc)) == "2025-03"
    eastern = timezone(timedelta(hours=-5))
    assert period_key_for(datetime(2025, 3, 31, 20, 0, tzinfo=eastern)) == "2025-04"
    assert period_key_for(datetime(2025, 12, 1)) == "2025-12"


def test_reserve_increments_until_limit(quota_guard):
    first = quota_guard.check_and_reserve("org-1", "webhooks", limit=2)
    second = quota_guard.check_and_reserve("org-1", "webhooks", limit=2)
    third = quota_guard.check_and_reserve("org-1", "webhooks", limit=2)

    assert (first.allowed, first.used) == (True, 1)
    assert (second.allowed, second.used) == (True, 2)
    assert (third.allowed, third.used) == (False, 2)
    assert third.remaining == 0
    assert quota_guard.current_usage("org-1", "webhooks") == 2


def test_reservation_never_partially_applies(quota_guard, usage_store):
    usage_store.set_usage("org-1", "ai_agents", "2025-03", 4)

    result = quota_guard.check_and_reserve("org-1", "ai_agents", limit=5, amount=3)

    assert result.allowed is False
    assert result.used == 4
    assert quota_guard.current_usage("org-1", "ai_agents") == 4


def test_reservation_at_exact_limit_succeeds(quota_guard, usage_store):
    usage_store.set_usage("org-1", "ai_agents", "2025-03", 2)

    result = quota_guard.check_and_reserve("org-1", "ai_agents", limit=5, amount=3)

    assert result.allowed is True
    assert result.used == 5


@pytest.mark.parametrize("limit", [0, -1])
def test_non_positive_limits_are_not_metered(quota_guard, limit):
    with pytest.raises(ValueError):
        quota_guard.check_and_reserve("org-1", "webhooks", limit=limit)


def test_amount_must_be_positive(quota_guard):
    with pytest.raises(ValueError):
        quota_guard.check_and_reserve("org-1", "webhooks", limit=5, amount=0)


def test_current_usage_is_read_only(quota_guard, usage_store):
    quota_guard.check_and_reserve("org-1", "webhooks", limit=10, amount=3)

    for _ in range(1000):
        assert quota_guard.current_usage("org-1", "webhooks") == 3

    assert len(usage_store.increments) == 1


def test_counters_roll_over_with_the_period(quota_guard, clock):
    quota_guard.check_and_reserve("org-1", "webhooks", limit=1)
    assert quota_guard.check_and_reserve("org-1", "webhooks", limit=1).allowed is False

    clock.moment = datetime(2025, 4, 1, 0, 0, tzinfo=timezone.utc)

    assert quota_guard.current_period() == "2025-04"
    assert quota_guard.current_usage("org-1", "webhooks") == 0
    assert quota_guard.check_and_reserve("org-1", "webhooks", limit=1).allowed is True


def test_counters_are_isolated_per_organization(quota_guard):
    quota_guard.check_and_reserve("org-1", "webhooks", limit=1)

    assert quota_guard.check_and_reserve("org-2", "webhooks", limit=1).allowed is True
    assert quota_guard.current_usage("org-1", "webhooks") == 1


@pytest.mark.parametrize("workers, limit", [(50, 20), (10, 20), (64, 64)])
def test_concurrent_reservations_never_exceed_limit(workers, limit):
    store = InMemoryUsageCounterStore()
    guard = QuotaGuard(store)
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def reserve() -> None:
        barrier.wait()
        reservation = guard.check_and_reserve("org-1", "premium_ai_messages", limit=limit)
        with lock:
            results.append(reservation.allowed)

    threads = [threading.Thread(target=reserve) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == min(workers, limit)
    assert guard.current_usage("org-1", "premium_ai_messages") == min(workers, limit)


def test_store_failure_propagates_from_guard(quota_guard, usage_store):
    usage_store.unavailable = True

    with pytest.raises(StoreUnavailableError):
        quota_guard.check_and_reserve("org-1", "webhooks", limit=5)


@pytest.mark.parametrize(
    "used, limit, status",
    [
        (10, 100, UsageStatus.OK),
        (80, 100, UsageStatus.APPROACHING_LIMIT),
        (99, 100, UsageStatus.APPROACHING_LIMIT),
        (100, 100, UsageStatus.AT_LIMIT),
        (42, -1, UsageStatus.UNLIMITED),
        (0, 0, UsageStatus.DISABLED),
    ],
)
def test_usage_summary_status(used, limit, status):
    summary = UsageSummary.build(metric_key="webhooks", period_key="2025-03", used=used, limit=limit)

    assert summary.status == status


def test_usage_summary_reports_remaining(quota_guard):
    quota_guard.check_and_reserve("org-1", "webhooks", limit=20, amount=5)

    summary = quota_guard.usage_summary("org-1", "webhooks", 20)

    assert summary.used == 5
    assert summary.remaining == 15
    assert summary.percent_used == 25.0
    assert summary.period_key == "2025-03"


def test_token_tracker_records_tokens_and_cost(usage_store, clock):
    tracker = TokenUsageTracker(usage_store, clock=clock)

    cost = tracker.track("org-1", "gpt-4o", input_tokens=1000, output_tokens=500)

    assert cost == pytest.approx(0.0025 + 0.005)
    assert usage_store.read_usage("org-1", AI_INPUT_TOKENS_METRIC, "2025-03") == 1000
    assert usage_store.read_usage("org-1", AI_OUTPUT_TOKENS_METRIC, "2025-03") == 500
    assert usage_store.read_usage("org-1", AI_COST_METRIC, "2025-03") == 7500


def test_token_tracker_unknown_model_costs_nothing(usage_store, clock):
    tracker = TokenUsageTracker(usage_store, clock=clock)

    cost = tracker.track("org-1", "homebrew-llm", input_tokens=10, output_tokens=10)

    assert cost == 0.0
    assert usage_store.read_usage("org-1", AI_INPUT_TOKENS_METRIC, "2025-03") == 10


def test_token_tracker_swallows_store_failures(usage_store, clock, caplog):
    usage_store.unavailable = True
    tracker = TokenUsageTracker(usage_store, clock=clock)

    with caplog.at_level("ERROR"):
        cost = tracker.track("org-1", "gpt-4o", input_tokens=10, output_tokens=10)

    assert cost is None
    assert "Failed to track token usage" in caplog.text


def test_repeated_reads_leave_counter_unchanged(quota_guard, usage_store):
    usage_store.set_usage("org-1", "webhooks", "2025-03", 7)

    readings = {quota_guard.current_usage("org-1", "webhooks") for _ in range(1000)}

    assert readings == {7}
    assert usage_store.increments == []
    assert usage_store.read_usage("org-1", "webhooks", "2025-03") == 7
