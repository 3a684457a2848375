"""API routes exposing entitlement checks, usage and admin overrides."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ..entitlements import BetaGrant, OrganizationOverride, StoreUnavailableError
from ..feature_gates.enforcement import get_current_user, raise_for_denial
from ..feature_gates.exceptions import FeatureGateError
from ..feature_gates.gate import GateResult
from ..schemas.entitlements import (
    BetaGrantRequest,
    BetaGrantResponse,
    FeatureSummary,
    GateResultResponse,
    ModelSummary,
    OverrideRequest,
    OverrideResponse,
    PlanOverviewResponse,
    UsageSummaryResponse,
)
from ..services.entitlements import get_entitlement_config, get_entitlement_store, get_feature_gate
from ..usage import UsageSummary, evaluate_usage_alerts

logger = logging.getLogger("entitlements")

router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])

_UNAVAILABLE_DETAIL = "Entitlement service is temporarily unavailable"


def _organization_id(current_user) -> str:
    organization_id = getattr(current_user, "organization_id", None)
    if not organization_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is not a member of an organization")
    return str(organization_id)


def _require_admin(current_user) -> str:
    if not getattr(current_user, "is_admin", False):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return str(current_user.id)


def _require_known_feature(feature_slug: str) -> None:
    if feature_slug not in get_feature_gate().matrix:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown feature '{feature_slug}'")


def _respond(result: GateResult) -> GateResultResponse:
    if result.is_infrastructure_failure:
        try:
            raise_for_denial(result)
        except FeatureGateError as exc:
            raise exc.to_http_exception() from exc
    return GateResultResponse.from_result(result)


@router.get("/features/{feature_slug}", response_model=GateResultResponse)
def check_feature(
    feature_slug: str,
    *,
    current_user=Depends(get_current_user),
) -> GateResultResponse:
    result = get_feature_gate().gate(_organization_id(current_user), feature_slug)
    return _respond(result)


@router.get("/models/{model_id}", response_model=GateResultResponse)
def check_model(
    model_id: str,
    *,
    current_user=Depends(get_current_user),
) -> GateResultResponse:
    result = get_feature_gate().check_model_access(_organization_id(current_user), model_id, consume=False)
    return _respond(result)


@router.get("/usage/{metric_key}", response_model=UsageSummaryResponse)
def get_usage(
    metric_key: str,
    feature_slug: Optional[str] = Query(default=None, alias="featureSlug"),
    *,
    current_user=Depends(get_current_user),
) -> UsageSummaryResponse:
    organization_id = _organization_id(current_user)
    gate = get_feature_gate()

    try:
        if feature_slug is None:
            used = gate.current_usage(organization_id, metric_key)
            return UsageSummaryResponse(
                metric_key=metric_key,
                period_key=gate.current_period(),
                used=used,
            )

        _require_known_feature(feature_slug)
        if gate.metric_for(feature_slug) != metric_key:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Feature '{feature_slug}' is not metered by '{metric_key}'",
            )
        summary: UsageSummary = gate.usage_summary(organization_id, feature_slug)
    except StoreUnavailableError as exc:
        logger.exception("Usage lookup failed org=%s metric=%s", organization_id, metric_key)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_UNAVAILABLE_DETAIL) from exc

    alerts = evaluate_usage_alerts(
        metric_key=summary.metric_key,
        used=summary.used,
        limit=summary.limit,
        thresholds=get_entitlement_config().alert_thresholds,
    )
    return UsageSummaryResponse.from_summary(summary, alerts)


@router.get("/plan", response_model=PlanOverviewResponse)
def get_plan(
    *,
    current_user=Depends(get_current_user),
) -> PlanOverviewResponse:
    organization_id = _organization_id(current_user)
    gate = get_feature_gate()
    try:
        tier = gate.resolver.effective_tier(organization_id)
    except StoreUnavailableError as exc:
        logger.exception("Plan lookup failed org=%s", organization_id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_UNAVAILABLE_DETAIL) from exc

    matrix = gate.matrix
    enabled = [FeatureSummary.from_definition(matrix.get(slug), tier) for slug in matrix.features_for_tier(tier)]
    upgrades = [
        FeatureSummary.from_definition(matrix.get(slug), tier, matrix.minimum_tier(slug))
        for slug in matrix.upgrade_features(tier)
    ]
    models = [ModelSummary.from_definition(gate.models.get(model_id)) for model_id in gate.models.models_for_tier(tier)]
    return PlanOverviewResponse(
        organization_id=organization_id,
        current_plan=tier,
        enabled_features=enabled,
        upgrade_features=upgrades,
        models=models,
    )


@router.put(
    "/admin/organizations/{organization_id}/overrides/{feature_slug}",
    response_model=OverrideResponse,
)
def put_override(
    organization_id: str,
    feature_slug: str,
    payload: OverrideRequest,
    *,
    current_user=Depends(get_current_user),
) -> OverrideResponse:
    admin_id = _require_admin(current_user)
    _require_known_feature(feature_slug)
    try:
        override = OrganizationOverride(
            organization_id=organization_id,
            feature_slug=feature_slug,
            is_enabled=payload.is_enabled,
            limit_override=payload.limit_override,
            expires_at=payload.expires_at,
            reason=payload.reason,
            granted_by=admin_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        saved = get_entitlement_store().upsert_override(override)
    except StoreUnavailableError as exc:
        logger.exception("Override write failed org=%s feature=%s", organization_id, feature_slug)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_UNAVAILABLE_DETAIL) from exc

    get_feature_gate().resolver.invalidate_organization(organization_id)
    logger.info(
        "Override saved org=%s feature=%s enabled=%s limit=%s by=%s",
        organization_id,
        feature_slug,
        saved.is_enabled,
        saved.limit_override,
        admin_id,
    )
    return OverrideResponse.from_override(saved)


@router.delete(
    "/admin/organizations/{organization_id}/overrides/{feature_slug}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_override(
    organization_id: str,
    feature_slug: str,
    *,
    current_user=Depends(get_current_user),
) -> Response:
    admin_id = _require_admin(current_user)
    try:
        deleted = get_entitlement_store().delete_override(organization_id, feature_slug)
    except StoreUnavailableError as exc:
        logger.exception("Override delete failed org=%s feature=%s", organization_id, feature_slug)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_UNAVAILABLE_DETAIL) from exc
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Override not found")

    get_feature_gate().resolver.invalidate_organization(organization_id)
    logger.info("Override removed org=%s feature=%s by=%s", organization_id, feature_slug, admin_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put(
    "/admin/organizations/{organization_id}/beta/{feature_slug}",
    response_model=BetaGrantResponse,
)
def put_beta_grant(
    organization_id: str,
    feature_slug: str,
    payload: BetaGrantRequest,
    *,
    current_user=Depends(get_current_user),
) -> BetaGrantResponse:
    admin_id = _require_admin(current_user)
    _require_known_feature(feature_slug)
    grant = BetaGrant(
        organization_id=organization_id,
        feature_slug=feature_slug,
        expires_at=payload.expires_at,
        reason=payload.reason,
        granted_by=admin_id,
    )
    try:
        saved = get_entitlement_store().upsert_beta_grant(grant)
    except StoreUnavailableError as exc:
        logger.exception("Beta grant write failed org=%s feature=%s", organization_id, feature_slug)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_UNAVAILABLE_DETAIL) from exc

    get_feature_gate().resolver.invalidate_organization(organization_id)
    logger.info("Beta grant saved org=%s feature=%s by=%s", organization_id, feature_slug, admin_id)
    return BetaGrantResponse.from_grant(saved)


@router.delete(
    "/admin/organizations/{organization_id}/beta/{feature_slug}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_beta_grant(
    organization_id: str,
    feature_slug: str,
    *,
    current_user=Depends(get_current_user),
) -> Response:
    admin_id = _require_admin(current_user)
    try:
        deleted = get_entitlement_store().delete_beta_grant(organization_id, feature_slug)
    except StoreUnavailableError as exc:
        logger.exception("Beta grant delete failed org=%s feature=%s", organization_id, feature_slug)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_UNAVAILABLE_DETAIL) from exc
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Beta grant not found")

    get_feature_gate().resolver.invalidate_organization(organization_id)
    logger.info("Beta grant removed org=%s feature=%s by=%s", organization_id, feature_slug, admin_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
