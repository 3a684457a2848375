"""Entitlement engine configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple
import math
import os

try:
    from backend.app.entitlements.catalog import PREMIUM_AI_METRIC
    from backend.app.entitlements.models import DEFAULT_ACTIVE_STATUSES, SubscriptionStatus
    from backend.app.usage.alerts import DEFAULT_ALERT_THRESHOLDS
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    from app.entitlements.catalog import PREMIUM_AI_METRIC  # type: ignore[no-redef]
    from app.entitlements.models import DEFAULT_ACTIVE_STATUSES, SubscriptionStatus  # type: ignore[no-redef]
    from app.usage.alerts import DEFAULT_ALERT_THRESHOLDS  # type: ignore[no-redef]


@dataclass(frozen=True)
class EntitlementConfig:
    """Configuration for entitlement resolution, quotas and persistence."""

    cache_ttl_seconds: int
    active_statuses: Tuple[SubscriptionStatus, ...]
    alert_thresholds: Tuple[int, ...]
    premium_ai_metric_key: str
    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    db_connect_timeout: int
    jwt_secret_key: str
    session_cookie_name: str

    @property
    def cache_enabled(self) -> bool:
        return self.cache_ttl_seconds > 0

    def db_settings(self) -> dict:
        return dict(
            host=self.db_host,
            port=self.db_port,
            dbname=self.db_name,
            user=self.db_user,
            password=self.db_password,
            connect_timeout=self.db_connect_timeout,
        )


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_timeout(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        timeout = float(value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def _to_statuses(value: Optional[str]) -> Tuple[SubscriptionStatus, ...]:
    if value is None or not value.strip():
        return tuple(sorted(DEFAULT_ACTIVE_STATUSES, key=lambda status: status.value))
    statuses = []
    for raw in value.split(","):
        item = raw.strip().lower()
        if not item:
            continue
        try:
            statuses.append(SubscriptionStatus(item))
        except ValueError as exc:
            raise ValueError(f"Unknown subscription status {item!r} in ENTITLEMENT_ACTIVE_STATUSES") from exc
        if statuses[-1] == SubscriptionStatus.UNKNOWN:
            raise ValueError("ENTITLEMENT_ACTIVE_STATUSES cannot include 'unknown'")
    return tuple(statuses)


def _to_thresholds(value: Optional[str]) -> Tuple[int, ...]:
    if value is None or not value.strip():
        return tuple(DEFAULT_ALERT_THRESHOLDS)
    thresholds = sorted({_to_int(raw.strip(), default=0) for raw in value.split(",") if raw.strip()})
    if any(threshold <= 0 for threshold in thresholds):
        raise ValueError("USAGE_ALERT_THRESHOLDS must be positive percentages")
    return tuple(thresholds)


def load_entitlement_config(env: Optional[Mapping[str, str]] = None) -> EntitlementConfig:
    """Load :class:`EntitlementConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    cache_ttl_seconds = max(0, _to_int(env_mapping.get("ENTITLEMENT_CACHE_TTL_SECONDS"), default=0))
    active_statuses = _to_statuses(env_mapping.get("ENTITLEMENT_ACTIVE_STATUSES"))
    alert_thresholds = _to_thresholds(env_mapping.get("USAGE_ALERT_THRESHOLDS"))
    premium_ai_metric_key = (env_mapping.get("PREMIUM_AI_METRIC_KEY") or PREMIUM_AI_METRIC).strip()

    return EntitlementConfig(
        cache_ttl_seconds=cache_ttl_seconds,
        active_statuses=active_statuses,
        alert_thresholds=alert_thresholds,
        premium_ai_metric_key=premium_ai_metric_key,
        db_host=env_mapping.get("DB_HOST", "127.0.0.1"),
        db_port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        db_name=env_mapping.get("DB_NAME", "entitlements_db"),
        db_user=env_mapping.get("DB_USER", "entitlements_user"),
        db_password=env_mapping.get("DB_PASSWORD", "entitlements_pass"),
        db_connect_timeout=_to_timeout(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5),
        jwt_secret_key=env_mapping.get("JWT_SECRET_KEY", "dev-secret-change-me"),
        session_cookie_name=env_mapping.get("SESSION_COOKIE_NAME", "session"),
    )
