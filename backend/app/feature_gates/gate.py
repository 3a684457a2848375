"""Single decision point for feature, quota and model access."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from ..entitlements.catalog import (
    DEFAULT_MODEL_CATALOG,
    PREMIUM_AI_FEATURE,
    ModelCatalog,
    PlanFeatureMatrix,
)
from ..entitlements.exceptions import StoreUnavailableError, UnknownModelError
from ..entitlements.models import (
    DENIED,
    UNLIMITED,
    AccessSource,
    FeatureAccess,
    ModelDefinition,
    PlanTier,
)
from ..entitlements.service import UNKNOWN_FEATURE_REASON, EntitlementResolver
from ..usage.models import UsageSummary
from ..usage.service import QuotaGuard

logger = logging.getLogger(__name__)

UNKNOWN_MODEL_REASON = "unknown model"


class DenialCode(str, Enum):
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    FEATURE_RESTRICTED = "FEATURE_RESTRICTED"
    MODEL_RESTRICTED = "MODEL_RESTRICTED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class UpgradeSuggestion(BaseModel):
    required_plan: Optional[PlanTier] = None
    message: str

    model_config = ConfigDict(frozen=True)


class GateResult(BaseModel):
    """Allow/deny outcome returned to calling code."""

    allowed: bool
    feature_slug: Optional[str] = None
    model_id: Optional[str] = None
    code: Optional[DenialCode] = None
    reason: Optional[str] = None
    current_plan: Optional[PlanTier] = None
    limit: int = DENIED
    used: Optional[int] = None
    source: Optional[AccessSource] = None
    upgrade: Optional[UpgradeSuggestion] = None

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    @property
    def is_infrastructure_failure(self) -> bool:
        return self.code == DenialCode.SERVICE_UNAVAILABLE

    def denial_payload(self) -> Dict[str, Any]:
        """Return the stable denial shape consumed by the UI layer."""

        if self.allowed:
            raise ValueError("Allowed results do not carry a denial payload")
        payload: Dict[str, Any] = {
            "allowed": False,
            "code": self.code.value if self.code else None,
            "reason": self.reason,
            "currentPlan": self.current_plan.value if self.current_plan else None,
            "upgrade": None,
        }
        if self.upgrade is not None:
            payload["upgrade"] = {
                "requiredPlan": self.upgrade.required_plan.value if self.upgrade.required_plan else None,
                "message": self.upgrade.message,
            }
        if self.code == DenialCode.QUOTA_EXCEEDED:
            payload["used"] = self.used
            payload["limit"] = self.limit
        return payload


class FeatureGate:
    """Façade over the entitlement resolver and quota guard.

    Only calls that pass ``consume_amount`` for a metered feature mutate
    usage; everything else is read only.
    """

    def __init__(
        self,
        resolver: EntitlementResolver,
        quota_guard: QuotaGuard,
        *,
        models: ModelCatalog = DEFAULT_MODEL_CATALOG,
        metric_overrides: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._resolver = resolver
        self._quota_guard = quota_guard
        self._models = models
        self._metric_overrides = dict(metric_overrides or {})

    @property
    def matrix(self) -> PlanFeatureMatrix:
        return self._resolver.matrix

    @property
    def resolver(self) -> EntitlementResolver:
        return self._resolver

    @property
    def models(self) -> ModelCatalog:
        return self._models

    def metric_for(self, feature_slug: str) -> str:
        if feature_slug in self._metric_overrides:
            return self._metric_overrides[feature_slug]
        if feature_slug in self.matrix:
            return self.matrix.get(feature_slug).usage_metric
        return feature_slug

    def gate(
        self,
        organization_id: str,
        feature_slug: str,
        consume_amount: Optional[int] = None,
    ) -> GateResult:
        """Decide whether the organization may use ``feature_slug``.

        With ``consume_amount`` on a metered feature, capacity is reserved
        atomically; without it the call only checks.
        """

        if consume_amount is not None and consume_amount < 1:
            raise ValueError("consume_amount must be >= 1")

        try:
            access = self._resolver.resolve(
                organization_id, feature_slug, use_cache=consume_amount is None
            )
        except StoreUnavailableError:
            return self._unavailable(organization_id, feature_slug=feature_slug)

        if not access.allowed:
            return self._restricted(organization_id, access)

        allowed = GateResult(
            allowed=True,
            feature_slug=feature_slug,
            current_plan=access.tier,
            limit=access.limit,
            source=access.source,
        )
        if access.limit == UNLIMITED or consume_amount is None:
            return allowed

        metric_key = self.metric_for(feature_slug)
        try:
            reservation = self._quota_guard.check_and_reserve(
                organization_id, metric_key, access.limit, consume_amount
            )
        except StoreUnavailableError:
            return self._unavailable(organization_id, feature_slug=feature_slug, tier=access.tier)

        if not reservation.allowed:
            return self._quota_exceeded(organization_id, access, reservation.used)

        return allowed.model_copy(update={"used": reservation.used})

    def check_model_access(
        self,
        organization_id: str,
        model_id: str,
        *,
        consume: bool = True,
    ) -> GateResult:
        """Check the model's tier gate and, for premium models, the premium quota.

        ``consume=False`` performs the same checks without reserving quota.
        """

        try:
            model = self._models.get(model_id)
        except UnknownModelError:
            logger.error(
                "Model access check for undeclared model %s org=%s",
                model_id,
                organization_id,
                extra={"organization_id": organization_id, "model_id": model_id},
            )
            return self._deny(
                organization_id,
                GateResult(
                    allowed=False,
                    model_id=model_id,
                    code=DenialCode.MODEL_RESTRICTED,
                    reason=UNKNOWN_MODEL_REASON,
                ),
            )

        try:
            tier = self._resolver.effective_tier(organization_id)
        except StoreUnavailableError:
            return self._unavailable(organization_id, model_id=model_id)

        if tier.is_below(model.minimum_tier):
            return self._model_restricted(organization_id, model, tier)

        if not model.premium:
            return GateResult(
                allowed=True,
                model_id=model_id,
                current_plan=tier,
                limit=UNLIMITED,
                source=AccessSource.PLAN,
            )

        result = self.gate(
            organization_id,
            PREMIUM_AI_FEATURE,
            consume_amount=1 if consume else None,
        )
        return result.model_copy(update={"model_id": model_id})

    def current_period(self) -> str:
        return self._quota_guard.current_period()

    def current_usage(self, organization_id: str, metric_key: str) -> int:
        """Return current-period consumption; never mutates state."""

        return self._quota_guard.current_usage(organization_id, metric_key)

    def usage_summary(self, organization_id: str, feature_slug: str) -> UsageSummary:
        access = self._resolver.resolve(organization_id, feature_slug)
        return self._quota_guard.usage_summary(
            organization_id, self.metric_for(feature_slug), access.limit
        )

    def _restricted(self, organization_id: str, access: FeatureAccess) -> GateResult:
        slug = access.feature_slug
        if access.reason == UNKNOWN_FEATURE_REASON:
            return self._deny(
                organization_id,
                GateResult(
                    allowed=False,
                    feature_slug=slug,
                    code=DenialCode.FEATURE_RESTRICTED,
                    reason=access.reason,
                    current_plan=access.tier,
                    source=access.source,
                ),
            )

        feature = self.matrix.get(slug)
        required = self.matrix.minimum_tier(slug)
        if required is not None and access.tier.is_below(required):
            upgrade = UpgradeSuggestion(
                required_plan=required,
                message=f"Upgrade to {required.display_name} to unlock {feature.display_name}.",
            )
        else:
            upgrade = UpgradeSuggestion(
                required_plan=None,
                message=f"Contact sales to enable {feature.display_name}.",
            )

        return self._deny(
            organization_id,
            GateResult(
                allowed=False,
                feature_slug=slug,
                code=DenialCode.FEATURE_RESTRICTED,
                reason=access.reason or f"{feature.display_name} is not available on your plan",
                current_plan=access.tier,
                source=access.source,
                upgrade=upgrade,
            ),
        )

    def _quota_exceeded(self, organization_id: str, access: FeatureAccess, used: int) -> GateResult:
        feature = self.matrix.get(access.feature_slug)
        next_tier = self.matrix.next_tier_with_more(access.feature_slug, access.tier)
        if next_tier is not None:
            message = f"Upgrade to {next_tier.display_name} for a higher {feature.display_name} limit."
        else:
            message = f"Contact sales to raise your {feature.display_name} limit."

        return self._deny(
            organization_id,
            GateResult(
                allowed=False,
                feature_slug=access.feature_slug,
                code=DenialCode.QUOTA_EXCEEDED,
                reason=f"{feature.display_name} limit of {access.limit} reached for this billing period",
                current_plan=access.tier,
                limit=access.limit,
                used=used,
                source=access.source,
                upgrade=UpgradeSuggestion(required_plan=next_tier, message=message),
            ),
        )

    def _model_restricted(self, organization_id: str, model: ModelDefinition, tier: PlanTier) -> GateResult:
        return self._deny(
            organization_id,
            GateResult(
                allowed=False,
                model_id=model.model_id,
                code=DenialCode.MODEL_RESTRICTED,
                reason=f"{model.display_name} is not available on the {tier.display_name} plan",
                current_plan=tier,
                source=AccessSource.PLAN,
                upgrade=UpgradeSuggestion(
                    required_plan=model.minimum_tier,
                    message=f"Upgrade to {model.minimum_tier.display_name} to use {model.display_name}.",
                ),
            ),
        )

    def _unavailable(
        self,
        organization_id: str,
        *,
        feature_slug: Optional[str] = None,
        model_id: Optional[str] = None,
        tier: Optional[PlanTier] = None,
    ) -> GateResult:
        logger.exception(
            "Entitlement store unavailable org=%s feature=%s model=%s",
            organization_id,
            feature_slug,
            model_id,
        )
        return GateResult(
            allowed=False,
            feature_slug=feature_slug,
            model_id=model_id,
            code=DenialCode.SERVICE_UNAVAILABLE,
            reason="Usage and entitlement service is temporarily unavailable. Please try again shortly.",
            current_plan=tier,
        )

    def _deny(self, organization_id: str, result: GateResult) -> GateResult:
        logger.warning(
            "Gate denied org=%s feature=%s model=%s code=%s",
            organization_id,
            result.feature_slug,
            result.model_id,
            result.code.value if result.code else None,
            extra={
                "organization_id": organization_id,
                "feature_slug": result.feature_slug,
                "model_id": result.model_id,
                "denial_code": result.code.value if result.code else None,
            },
        )
        return result
