"""Convenience wrapper binding the feature gate to a single organization."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from ..usage.models import UsageSummary
from .enforcement import raise_for_denial
from .gate import FeatureGate, GateResult


@dataclass(frozen=True)
class EntitlementContext:
    """Per-request facade exposing gating helpers for one organization.

    Check-only decisions are memoized for the lifetime of the context;
    consuming calls always reach the gate.
    """

    gate: FeatureGate
    organization_id: str
    _checks: Dict[str, GateResult] = field(default_factory=dict, repr=False, compare=False)

    def check(self, feature_slug: str) -> GateResult:
        cached = self._checks.get(feature_slug)
        if cached is not None:
            return cached
        result = self.gate.gate(self.organization_id, feature_slug)
        if not result.is_infrastructure_failure:
            self._checks[feature_slug] = result
        return result

    def can(self, feature_slug: str) -> bool:
        """Return whether the feature is currently available; never consumes quota."""

        return self.check(feature_slug).allowed

    def require(self, feature_slug: str, *, consume_amount: Optional[int] = None) -> GateResult:
        """Gate ``feature_slug`` and raise :class:`FeatureGateError` on denial."""

        if consume_amount is None:
            return raise_for_denial(self.check(feature_slug))
        result = self.gate.gate(self.organization_id, feature_slug, consume_amount=consume_amount)
        return raise_for_denial(result)

    def require_model(self, model_id: str, *, consume: bool = True) -> GateResult:
        result = self.gate.check_model_access(self.organization_id, model_id, consume=consume)
        return raise_for_denial(result)

    def usage(self, metric_key: str) -> int:
        return self.gate.current_usage(self.organization_id, metric_key)

    def usage_summary(self, feature_slug: str) -> UsageSummary:
        return self.gate.usage_summary(self.organization_id, feature_slug)
