import pathlib
import sys
from datetime import timedelta

import pytest
from fastapi import HTTPException


ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import backend.main as backend_main


def test_get_current_user_missing_cookie_is_unauthorized():
    with pytest.raises(HTTPException) as exc:
        backend_main.get_current_user(None)

    assert exc.value.status_code == 401


def test_get_current_user_invalid_token_is_unauthorized():
    with pytest.raises(HTTPException) as exc:
        backend_main.get_current_user("not-a-valid-token")

    assert exc.value.status_code == 401


def test_expired_token_does_not_hit_database(monkeypatch):
    expired_token = backend_main.create_access_token(
        subject="42", expires_delta=timedelta(minutes=-5)
    )

    def _unexpected_get_user_by_id(_uid: int):
        raise AssertionError("get_user_by_id should not be called for expired tokens")

    monkeypatch.setattr(backend_main, "get_user_by_id", _unexpected_get_user_by_id)

    assert backend_main.resolve_user_from_session_token(expired_token) is None


def test_valid_token_returns_user_with_organization(monkeypatch):
    user = backend_main.CurrentUser(id=123, username="alice", role="admin", organization_id="org-1")

    monkeypatch.setattr(backend_main, "get_user_by_id", lambda uid: user if uid == 123 else None)

    token = backend_main.create_access_token(subject=str(user.id))

    result = backend_main.get_current_user(token)

    assert result is user
    assert result.is_admin is True
    assert result.organization_id == "org-1"


def test_members_are_not_admins():
    user = backend_main.CurrentUser(id=5, username="bob", role="member", organization_id="org-1")

    assert user.is_admin is False


def test_app_exposes_entitlement_routes():
    paths = {route.path for route in backend_main.app.routes}

    assert "/api/entitlements/features/{feature_slug}" in paths
    assert "/api/entitlements/admin/organizations/{organization_id}/overrides/{feature_slug}" in paths


def test_feature_dependencies_resolve_user_through_app_context(monkeypatch):
    from backend.app.feature_gates import enforcement

    user = backend_main.CurrentUser(id=9, username="carol", role="member", organization_id="org-9")
    monkeypatch.setattr(backend_main, "get_user_by_id", lambda uid: user if uid == 9 else None)

    token = backend_main.create_access_token(subject="9")

    assert enforcement.get_current_user(session_token=token) is user
