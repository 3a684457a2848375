"""Persistence layer for subscriptions, overrides and beta grants."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .exceptions import StoreUnavailableError
from .models import (
    DEFAULT_TIER,
    BetaGrant,
    OrganizationOverride,
    PlanTier,
    SubscriptionRecord,
    SubscriptionStatus,
)

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]

logger = logging.getLogger(__name__)


ENTITLEMENT_SCHEMA = """
CREATE TABLE IF NOT EXISTS organization_subscriptions (
    organization_id TEXT PRIMARY KEY,
    plan TEXT NOT NULL,
    status TEXT NOT NULL,
    current_period_end TIMESTAMPTZ,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS organization_feature_overrides (
    organization_id TEXT NOT NULL,
    feature_slug TEXT NOT NULL,
    is_enabled BOOLEAN,
    limit_override INTEGER CHECK (limit_override IS NULL OR limit_override >= -1),
    expires_at TIMESTAMPTZ,
    reason TEXT NOT NULL DEFAULT '',
    granted_by TEXT,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (organization_id, feature_slug)
);

CREATE TABLE IF NOT EXISTS organization_beta_grants (
    organization_id TEXT NOT NULL,
    feature_slug TEXT NOT NULL,
    expires_at TIMESTAMPTZ,
    reason TEXT NOT NULL DEFAULT '',
    granted_by TEXT,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (organization_id, feature_slug)
);
"""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    try:
        connection = get_conn()
    except psycopg2.Error as exc:
        raise StoreUnavailableError("Could not connect to the entitlement database") from exc
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _parse_plan(organization_id: str, value: Any) -> PlanTier:
    try:
        return PlanTier(value)
    except ValueError:
        logger.error(
            "Unrecognised plan %r for org=%s; using %s",
            value,
            organization_id,
            DEFAULT_TIER.value,
            extra={"organization_id": organization_id, "plan": value},
        )
        return DEFAULT_TIER


def _parse_status(organization_id: str, value: Any) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(value)
    except ValueError:
        logger.error(
            "Unrecognised subscription status %r for org=%s",
            value,
            organization_id,
            extra={"organization_id": organization_id, "status": value},
        )
        return SubscriptionStatus.UNKNOWN


def _row_to_subscription(row: dict) -> SubscriptionRecord:
    organization_id = row["organization_id"]
    return SubscriptionRecord(
        organization_id=organization_id,
        plan=_parse_plan(organization_id, row["plan"]),
        status=_parse_status(organization_id, row["status"]),
        current_period_end=row.get("current_period_end"),
    )


def _row_to_override(row: dict) -> OrganizationOverride:
    return OrganizationOverride(
        organization_id=row["organization_id"],
        feature_slug=row["feature_slug"],
        is_enabled=row.get("is_enabled"),
        limit_override=row.get("limit_override"),
        expires_at=row.get("expires_at"),
        reason=row.get("reason") or "",
        granted_by=row.get("granted_by"),
    )


def _row_to_beta_grant(row: dict) -> BetaGrant:
    return BetaGrant(
        organization_id=row["organization_id"],
        feature_slug=row["feature_slug"],
        expires_at=row.get("expires_at"),
        reason=row.get("reason") or "",
        granted_by=row.get("granted_by"),
    )


class PostgresEntitlementStore:
    """Concrete entitlement store backed by PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        try:
            with managed_connection(self._conn) as (connection, managed):
                cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                try:
                    yield cursor
                    if managed:
                        connection.commit()
                except Exception:
                    if managed:
                        connection.rollback()
                    raise
                finally:
                    cursor.close()
        except psycopg2.Error as exc:
            raise StoreUnavailableError("Entitlement store query failed") from exc

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(ENTITLEMENT_SCHEMA)

    def get_subscription(self, organization_id: str) -> Optional[SubscriptionRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT organization_id, plan, status, current_period_end
                FROM organization_subscriptions
                WHERE organization_id = %s
                """,
                (organization_id,),
            )
            row = cursor.fetchone()
        return _row_to_subscription(row) if row else None

    def get_active_override(
        self, organization_id: str, feature_slug: str, now: datetime
    ) -> Optional[OrganizationOverride]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT organization_id, feature_slug, is_enabled, limit_override,
                       expires_at, reason, granted_by
                FROM organization_feature_overrides
                WHERE organization_id = %s
                  AND feature_slug = %s
                  AND (expires_at IS NULL OR expires_at > %s)
                """,
                (organization_id, feature_slug, now),
            )
            row = cursor.fetchone()
        return _row_to_override(row) if row else None

    def get_active_beta_grant(
        self, organization_id: str, feature_slug: str, now: datetime
    ) -> Optional[BetaGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT organization_id, feature_slug, expires_at, reason, granted_by
                FROM organization_beta_grants
                WHERE organization_id = %s
                  AND feature_slug = %s
                  AND (expires_at IS NULL OR expires_at > %s)
                """,
                (organization_id, feature_slug, now),
            )
            row = cursor.fetchone()
        return _row_to_beta_grant(row) if row else None

    def upsert_override(self, override: OrganizationOverride) -> OrganizationOverride:
        """Insert or replace the single override row for the organization and feature."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO organization_feature_overrides (
                    organization_id,
                    feature_slug,
                    is_enabled,
                    limit_override,
                    expires_at,
                    reason,
                    granted_by
                )
                VALUES (%(organization_id)s, %(feature_slug)s, %(is_enabled)s,
                        %(limit_override)s, %(expires_at)s, %(reason)s, %(granted_by)s)
                ON CONFLICT (organization_id, feature_slug) DO UPDATE SET
                    is_enabled = EXCLUDED.is_enabled,
                    limit_override = EXCLUDED.limit_override,
                    expires_at = EXCLUDED.expires_at,
                    reason = EXCLUDED.reason,
                    granted_by = EXCLUDED.granted_by,
                    updated_at = NOW()
                RETURNING organization_id, feature_slug, is_enabled, limit_override,
                          expires_at, reason, granted_by
                """,
                override.model_dump(),
            )
            row = cursor.fetchone()
        return _row_to_override(row)

    def delete_override(self, organization_id: str, feature_slug: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                DELETE FROM organization_feature_overrides
                WHERE organization_id = %s AND feature_slug = %s
                """,
                (organization_id, feature_slug),
            )
            return cursor.rowcount > 0

    def upsert_beta_grant(self, grant: BetaGrant) -> BetaGrant:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO organization_beta_grants (
                    organization_id,
                    feature_slug,
                    expires_at,
                    reason,
                    granted_by
                )
                VALUES (%(organization_id)s, %(feature_slug)s, %(expires_at)s,
                        %(reason)s, %(granted_by)s)
                ON CONFLICT (organization_id, feature_slug) DO UPDATE SET
                    expires_at = EXCLUDED.expires_at,
                    reason = EXCLUDED.reason,
                    granted_by = EXCLUDED.granted_by,
                    updated_at = NOW()
                RETURNING organization_id, feature_slug, expires_at, reason, granted_by
                """,
                grant.model_dump(),
            )
            row = cursor.fetchone()
        return _row_to_beta_grant(row)

    def delete_beta_grant(self, organization_id: str, feature_slug: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                DELETE FROM organization_beta_grants
                WHERE organization_id = %s AND feature_slug = %s
                """,
                (organization_id, feature_slug),
            )
            return cursor.rowcount > 0
