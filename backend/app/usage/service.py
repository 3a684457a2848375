"""Quota enforcement and best-effort usage tracking."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..entitlements.catalog import DEFAULT_MODEL_CATALOG, ModelCatalog
from ..entitlements.exceptions import UnknownModelError
from .models import QuotaReservation, UsageSummary, period_key_for
from .store import UsageCounterStore

logger = logging.getLogger(__name__)

AI_INPUT_TOKENS_METRIC = "ai_input_tokens"
AI_OUTPUT_TOKENS_METRIC = "ai_output_tokens"
AI_COST_METRIC = "ai_cost_microdollars"


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class QuotaGuard:
    """Reserves consumable quota through the store's atomic primitive.

    Capacity is reserved before the consuming action is attempted and is not
    returned if that action later fails.
    """

    def __init__(
        self,
        store: UsageCounterStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._clock = clock

    def current_period(self) -> str:
        return period_key_for(_current_time(self._clock))

    def check_and_reserve(
        self,
        organization_id: str,
        metric_key: str,
        limit: int,
        amount: int = 1,
    ) -> QuotaReservation:
        """Atomically consume ``amount`` units if the counter stays within ``limit``.

        Raises :class:`ValueError` for non-positive limits, which are never
        metered. Store failures propagate as
        :class:`~backend.app.entitlements.exceptions.StoreUnavailableError`.
        """

        if limit <= 0:
            raise ValueError("check_and_reserve requires a positive limit")
        if amount < 1:
            raise ValueError("amount must be >= 1")

        period_key = self.current_period()
        new_value, exceeded = self._store.increment_if_below_limit(
            organization_id, metric_key, period_key, limit, amount
        )
        if exceeded:
            used = max(new_value - amount, 0)
            logger.info(
                "Quota exhausted org=%s metric=%s used=%s limit=%s",
                organization_id,
                metric_key,
                used,
                limit,
                extra={
                    "organization_id": organization_id,
                    "metric_key": metric_key,
                    "period_key": period_key,
                },
            )
            return QuotaReservation(allowed=False, used=used, limit=limit)

        logger.debug(
            "Quota reserved org=%s metric=%s used=%s limit=%s",
            organization_id,
            metric_key,
            new_value,
            limit,
        )
        return QuotaReservation(allowed=True, used=new_value, limit=limit)

    def current_usage(self, organization_id: str, metric_key: str) -> int:
        """Return consumption in the current period without mutating it."""

        return self._store.read_usage(organization_id, metric_key, self.current_period())

    def usage_summary(self, organization_id: str, metric_key: str, limit: int) -> UsageSummary:
        period_key = self.current_period()
        used = self._store.read_usage(organization_id, metric_key, period_key)
        return UsageSummary.build(
            metric_key=metric_key,
            period_key=period_key,
            used=used,
            limit=limit,
        )


class TokenUsageTracker:
    """Records raw token counts and provider cost after a model call completes.

    Tracking never blocks or reverses a request: failures are logged and
    swallowed.
    """

    def __init__(
        self,
        store: UsageCounterStore,
        *,
        catalog: ModelCatalog = DEFAULT_MODEL_CATALOG,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._clock = clock

    def track(
        self,
        organization_id: str,
        model_id: str,
        input_tokens: int,
        output_tokens: int,
    ) -> Optional[float]:
        """Record token usage, returning the computed cost in dollars or ``None`` on failure."""

        try:
            period_key = period_key_for(_current_time(self._clock))
            try:
                cost = self._catalog.get(model_id).cost_for(input_tokens, output_tokens)
            except UnknownModelError:
                logger.warning("Tracking tokens for undeclared model %s", model_id)
                cost = 0.0

            self._store.record_usage(organization_id, AI_INPUT_TOKENS_METRIC, period_key, max(input_tokens, 0))
            self._store.record_usage(organization_id, AI_OUTPUT_TOKENS_METRIC, period_key, max(output_tokens, 0))
            self._store.record_usage(organization_id, AI_COST_METRIC, period_key, round(cost * 1_000_000))
        except Exception:
            logger.exception(
                "Failed to track token usage org=%s model=%s",
                organization_id,
                model_id,
                extra={"organization_id": organization_id, "model_id": model_id},
            )
            return None

        logger.info(
            "Usage tracked org=%s model=%s tokens=%s cost=%.6f",
            organization_id,
            model_id,
            input_tokens + output_tokens,
            cost,
        )
        return cost
