"""Helpers for enforcing entitlement checks on API and service layers."""
from __future__ import annotations

import logging
import os
from typing import Any, Callable, Optional

from fastapi import Cookie, Depends

from .exceptions import FeatureGateError
from .gate import FeatureGate, GateResult

try:  # pragma: no cover - resolve dependency helpers when imported from FastAPI app
    from backend.app_context import get_current_user as _context_current_user
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_current_user as _context_current_user  # type: ignore[no-redef]


logger = logging.getLogger(__name__)

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return _context_current_user(session_token=session_token)


def _default_gate() -> FeatureGate:
    from ..services.entitlements import get_feature_gate

    return get_feature_gate()


def raise_for_denial(result: GateResult) -> GateResult:
    """Raise :class:`FeatureGateError` when ``result`` is a denial.

    Infrastructure failures map to ``503`` so callers can tell an outage
    apart from a plan restriction.
    """

    if result.allowed:
        return result
    raise FeatureGateError.from_result(result)


def require_feature(
    feature_slug: str,
    *,
    consume_amount: Optional[int] = None,
    gate_provider: Optional[Callable[[], FeatureGate]] = None,
    current_user_dependency: Optional[Callable[..., Any]] = None,
) -> Callable[..., GateResult]:
    """Build a FastAPI dependency that gates a route on ``feature_slug``.

    Parameters
    ----------
    feature_slug:
        Feature declared in the plan matrix.
    consume_amount:
        When set, the dependency reserves this many units of the feature's
        metered quota before the route body runs.
    gate_provider:
        Optional factory returning the :class:`FeatureGate`. Defaults to the
        application-wide gate.
    current_user_dependency:
        Optional dependency resolving the authenticated user. The user must
        expose ``organization_id``.
    """

    provider = gate_provider or _default_gate
    user_dependency = current_user_dependency or get_current_user

    def dependency(current_user=Depends(user_dependency)) -> GateResult:
        organization_id = str(current_user.organization_id)
        result = provider().gate(organization_id, feature_slug, consume_amount=consume_amount)
        try:
            return raise_for_denial(result)
        except FeatureGateError as exc:
            raise exc.to_http_exception() from exc

    dependency.__name__ = f"require_{feature_slug}"
    return dependency
