"""PostgreSQL persistence for usage counters."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..entitlements.exceptions import StoreUnavailableError
from ..entitlements.repository import managed_connection

USAGE_SCHEMA = """
CREATE TABLE IF NOT EXISTS usage_counters (
    organization_id TEXT NOT NULL,
    metric_key TEXT NOT NULL,
    period_key TEXT NOT NULL,
    count BIGINT NOT NULL DEFAULT 0 CHECK (count >= 0),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (organization_id, metric_key, period_key)
);
"""

# Both the insert of a fresh period row and the update of an existing one are
# guarded by the limit, so a denied attempt writes nothing.
_INCREMENT_IF_BELOW_LIMIT_SQL = """
INSERT INTO usage_counters (organization_id, metric_key, period_key, count)
SELECT %(organization_id)s, %(metric_key)s, %(period_key)s, %(amount)s
WHERE %(amount)s <= %(limit)s
ON CONFLICT (organization_id, metric_key, period_key) DO UPDATE SET
    count = usage_counters.count + EXCLUDED.count,
    updated_at = NOW()
WHERE usage_counters.count + EXCLUDED.count <= %(limit)s
RETURNING count
"""

_RECORD_USAGE_SQL = """
INSERT INTO usage_counters (organization_id, metric_key, period_key, count)
VALUES (%(organization_id)s, %(metric_key)s, %(period_key)s, %(amount)s)
ON CONFLICT (organization_id, metric_key, period_key) DO UPDATE SET
    count = usage_counters.count + EXCLUDED.count,
    updated_at = NOW()
RETURNING count
"""

_READ_USAGE_SQL = """
SELECT count
FROM usage_counters
WHERE organization_id = %s AND metric_key = %s AND period_key = %s
"""


class PostgresUsageCounterStore:
    """Counter store using a single conditional upsert per reservation."""

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
            raise StoreUnavailableError("Usage counter store query failed") from exc

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(USAGE_SCHEMA)

    def increment_if_below_limit(
        self,
        organization_id: str,
        metric_key: str,
        period_key: str,
        limit: int,
        amount: int = 1,
    ) -> Tuple[int, bool]:
        if amount < 1:
            raise ValueError("amount must be >= 1")
        params = {
            "organization_id": organization_id,
            "metric_key": metric_key,
            "period_key": period_key,
            "amount": amount,
            "limit": limit,
        }
        with self._cursor() as cursor:
            cursor.execute(_INCREMENT_IF_BELOW_LIMIT_SQL, params)
            row = cursor.fetchone()
            if row is not None:
                return int(row["count"]), False
            cursor.execute(_READ_USAGE_SQL, (organization_id, metric_key, period_key))
            current = cursor.fetchone()
        used = int(current["count"]) if current else 0
        return used + amount, True

    def read_usage(self, organization_id: str, metric_key: str, period_key: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(_READ_USAGE_SQL, (organization_id, metric_key, period_key))
            row = cursor.fetchone()
        return int(row["count"]) if row else 0

    def record_usage(
        self,
        organization_id: str,
        metric_key: str,
        period_key: str,
        amount: int,
    ) -> int:
        if amount < 0:
            raise ValueError("amount must be >= 0")
        with self._cursor() as cursor:
            cursor.execute(
                _RECORD_USAGE_SQL,
                {
                    "organization_id": organization_id,
                    "metric_key": metric_key,
                    "period_key": period_key,
                    "amount": amount,
                },
            )
            row = cursor.fetchone()
        return int(row["count"])
