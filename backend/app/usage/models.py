"""Domain models for usage counters and quota reservations."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..entitlements.models import DENIED, UNLIMITED

APPROACHING_LIMIT_RATIO = 0.8


def period_key_for(moment: datetime) -> str:
    """Return the calendar billing period (``YYYY-MM``, UTC) containing ``moment``."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


class QuotaReservation(BaseModel):
    """Outcome of an atomic check-and-reserve against a counter."""

    allowed: bool
    used: int
    limit: int

    model_config = ConfigDict(frozen=True)

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


class UsageStatus(str, Enum):
    OK = "ok"
    APPROACHING_LIMIT = "approaching_limit"
    AT_LIMIT = "at_limit"
    UNLIMITED = "unlimited"
    DISABLED = "disabled"


class UsageSummary(BaseModel):
    """Read-only view of consumption suitable for "42 of 100 used" displays."""

    metric_key: str
    period_key: str
    used: int
    limit: int
    remaining: Optional[int] = None
    percent_used: Optional[float] = None
    status: UsageStatus

    model_config = ConfigDict(frozen=True)

    @classmethod
    def build(cls, *, metric_key: str, period_key: str, used: int, limit: int) -> "UsageSummary":
        if limit == UNLIMITED:
            return cls(
                metric_key=metric_key,
                period_key=period_key,
                used=used,
                limit=limit,
                status=UsageStatus.UNLIMITED,
            )
        if limit == DENIED:
            return cls(
                metric_key=metric_key,
                period_key=period_key,
                used=used,
                limit=limit,
                remaining=0,
                status=UsageStatus.DISABLED,
            )

        if used >= limit:
            status = UsageStatus.AT_LIMIT
        elif used >= limit * APPROACHING_LIMIT_RATIO:
            status = UsageStatus.APPROACHING_LIMIT
        else:
            status = UsageStatus.OK
        return cls(
            metric_key=metric_key,
            period_key=period_key,
            used=used,
            limit=limit,
            remaining=max(limit - used, 0),
            percent_used=round(used / limit * 100, 2),
            status=status,
        )
