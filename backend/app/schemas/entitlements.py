"""API schemas for entitlement endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements import (
    AccessSource,
    BetaGrant,
    FeatureDefinition,
    ModelDefinition,
    OrganizationOverride,
    PlanTier,
)
from ..feature_gates.gate import DenialCode, GateResult
from ..usage import UsageAlert, UsageStatus, UsageSummary


class UpgradeSuggestionResponse(BaseModel):
    required_plan: Optional[PlanTier] = Field(alias="requiredPlan", default=None)
    message: str

    model_config = ConfigDict(populate_by_name=True)


class GateResultResponse(BaseModel):
    allowed: bool
    feature_slug: Optional[str] = Field(alias="featureSlug", default=None)
    model_id: Optional[str] = Field(alias="modelId", default=None)
    code: Optional[DenialCode] = None
    reason: Optional[str] = None
    current_plan: Optional[PlanTier] = Field(alias="currentPlan", default=None)
    limit: int
    used: Optional[int] = None
    source: Optional[AccessSource] = None
    upgrade: Optional[UpgradeSuggestionResponse] = None

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    @classmethod
    def from_result(cls, result: GateResult) -> "GateResultResponse":
        upgrade = None
        if result.upgrade is not None:
            upgrade = UpgradeSuggestionResponse(
                required_plan=result.upgrade.required_plan,
                message=result.upgrade.message,
            )
        return cls(
            allowed=result.allowed,
            feature_slug=result.feature_slug,
            model_id=result.model_id,
            code=result.code,
            reason=result.reason,
            current_plan=result.current_plan,
            limit=result.limit,
            used=result.used,
            source=result.source,
            upgrade=upgrade,
        )


class UsageAlertResponse(BaseModel):
    threshold: int
    current_percentage: float = Field(alias="currentPercentage")
    severity: str
    message: str

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_alert(cls, alert: UsageAlert) -> "UsageAlertResponse":
        return cls(
            threshold=alert.threshold,
            current_percentage=alert.current_percentage,
            severity=alert.severity.value,
            message=alert.message,
        )


class UsageSummaryResponse(BaseModel):
    metric_key: str = Field(alias="metricKey")
    period_key: str = Field(alias="periodKey")
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    percent_used: Optional[float] = Field(alias="percentUsed", default=None)
    status: Optional[UsageStatus] = None
    alerts: List[UsageAlertResponse] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(
        cls, summary: UsageSummary, alerts: Optional[List[UsageAlert]] = None
    ) -> "UsageSummaryResponse":
        return cls(
            metric_key=summary.metric_key,
            period_key=summary.period_key,
            used=summary.used,
            limit=summary.limit,
            remaining=summary.remaining,
            percent_used=summary.percent_used,
            status=summary.status,
            alerts=[UsageAlertResponse.from_alert(alert) for alert in alerts or []],
        )


class FeatureSummary(BaseModel):
    slug: str
    display_name: str = Field(alias="displayName")
    category: str
    limit: int
    required_plan: Optional[PlanTier] = Field(alias="requiredPlan", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_definition(
        cls, feature: FeatureDefinition, tier: PlanTier, required_plan: Optional[PlanTier] = None
    ) -> "FeatureSummary":
        return cls(
            slug=feature.slug,
            display_name=feature.display_name,
            category=feature.category,
            limit=feature.tier_access[tier].as_limit(),
            required_plan=required_plan,
        )


class ModelSummary(BaseModel):
    model_id: str = Field(alias="modelId")
    provider: str
    display_name: str = Field(alias="displayName")
    minimum_tier: PlanTier = Field(alias="minimumTier")
    premium: bool

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    @classmethod
    def from_definition(cls, model: ModelDefinition) -> "ModelSummary":
        return cls(
            model_id=model.model_id,
            provider=model.provider,
            display_name=model.display_name,
            minimum_tier=model.minimum_tier,
            premium=model.premium,
        )


class PlanOverviewResponse(BaseModel):
    organization_id: str = Field(alias="organizationId")
    current_plan: PlanTier = Field(alias="currentPlan")
    enabled_features: List[FeatureSummary] = Field(alias="enabledFeatures", default_factory=list)
    upgrade_features: List[FeatureSummary] = Field(alias="upgradeFeatures", default_factory=list)
    models: List[ModelSummary] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class OverrideRequest(BaseModel):
    is_enabled: Optional[bool] = Field(alias="isEnabled", default=None)
    limit_override: Optional[int] = Field(alias="limitOverride", default=None, ge=-1)
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)
    reason: str = ""

    model_config = ConfigDict(populate_by_name=True)


class OverrideResponse(BaseModel):
    organization_id: str = Field(alias="organizationId")
    feature_slug: str = Field(alias="featureSlug")
    is_enabled: Optional[bool] = Field(alias="isEnabled", default=None)
    limit_override: Optional[int] = Field(alias="limitOverride", default=None)
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)
    reason: str = ""
    granted_by: Optional[str] = Field(alias="grantedBy", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_override(cls, override: OrganizationOverride) -> "OverrideResponse":
        return cls(
            organization_id=override.organization_id,
            feature_slug=override.feature_slug,
            is_enabled=override.is_enabled,
            limit_override=override.limit_override,
            expires_at=override.expires_at,
            reason=override.reason,
            granted_by=override.granted_by,
        )


class BetaGrantRequest(BaseModel):
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)
    reason: str = ""

    model_config = ConfigDict(populate_by_name=True)


class BetaGrantResponse(BaseModel):
    organization_id: str = Field(alias="organizationId")
    feature_slug: str = Field(alias="featureSlug")
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)
    reason: str = ""
    granted_by: Optional[str] = Field(alias="grantedBy", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_grant(cls, grant: BetaGrant) -> "BetaGrantResponse":
        return cls(
            organization_id=grant.organization_id,
            feature_slug=grant.feature_slug,
            expires_at=grant.expires_at,
            reason=grant.reason,
            granted_by=grant.granted_by,
        )
