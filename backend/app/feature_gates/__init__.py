"""Feature gating utilities coordinating entitlement enforcement."""
from .ai import ModelRequestOutcome, run_model_request
from .context import EntitlementContext
from .enforcement import raise_for_denial, require_feature
from .exceptions import FeatureGateError
from .gate import DenialCode, FeatureGate, GateResult, UpgradeSuggestion

__all__ = [
    "DenialCode",
    "EntitlementContext",
    "FeatureGate",
    "FeatureGateError",
    "GateResult",
    "ModelRequestOutcome",
    "UpgradeSuggestion",
    "raise_for_denial",
    "require_feature",
    "run_model_request",
]
