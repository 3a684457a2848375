"""Usage counters, quota reservation and consumption tracking."""

from .alerts import AlertSeverity, UsageAlert, evaluate_usage_alerts
from .models import QuotaReservation, UsageStatus, UsageSummary, period_key_for
from .service import (
    AI_COST_METRIC,
    AI_INPUT_TOKENS_METRIC,
    AI_OUTPUT_TOKENS_METRIC,
    QuotaGuard,
    TokenUsageTracker,
)
from .store import InMemoryUsageCounterStore, UsageCounterStore

__all__ = [
    "AI_COST_METRIC",
    "AI_INPUT_TOKENS_METRIC",
    "AI_OUTPUT_TOKENS_METRIC",
    "AlertSeverity",
    "InMemoryUsageCounterStore",
    "QuotaGuard",
    "QuotaReservation",
    "TokenUsageTracker",
    "UsageAlert",
    "UsageCounterStore",
    "UsageStatus",
    "UsageSummary",
    "evaluate_usage_alerts",
    "period_key_for",
]
