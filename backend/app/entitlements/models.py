"""Domain models for plan tiers, feature access and entitlement decisions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PlanTier(str, Enum):
    """Canonical subscription tiers, declared from cheapest to most expensive."""

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    TEAM = "team"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def ordered(cls) -> tuple["PlanTier", ...]:
        return _TIER_ORDER

    def is_below(self, other: "PlanTier") -> bool:
        return self.rank < other.rank

    def next_tiers(self) -> tuple["PlanTier", ...]:
        """Return every tier strictly above this one, cheapest first."""

        return _TIER_ORDER[self.rank + 1 :]


_TIER_ORDER: tuple[PlanTier, ...] = tuple(PlanTier)

DEFAULT_TIER = PlanTier.FREE

UNLIMITED = -1
DENIED = 0


class AccessKind(str, Enum):
    DENIED = "denied"
    UNLIMITED = "unlimited"
    LIMIT = "limit"


@dataclass(frozen=True)
class Access:
    """Access granted to a feature on a tier: denied, unlimited or a positive cap."""

    kind: AccessKind
    amount: Optional[int] = None

    def __post_init__(self) -> None:
        if self.kind == AccessKind.LIMIT:
            if self.amount is None or isinstance(self.amount, bool) or self.amount < 1:
                raise ValueError("limit access requires an amount >= 1")
        elif self.amount is not None:
            raise ValueError(f"{self.kind.value} access does not carry an amount")

    @classmethod
    def denied(cls) -> "Access":
        return cls(AccessKind.DENIED)

    @classmethod
    def unlimited(cls) -> "Access":
        return cls(AccessKind.UNLIMITED)

    @classmethod
    def limit(cls, amount: int) -> "Access":
        return cls(AccessKind.LIMIT, amount)

    @classmethod
    def parse(cls, value: Union["Access", bool, int]) -> "Access":
        """Build access from matrix shorthand.

        ``False`` is denied, ``True`` and ``-1`` are unlimited and a positive
        integer is a consumption cap. ``0`` is rejected so a denial is always
        spelled explicitly.
        """

        if isinstance(value, Access):
            return value
        if isinstance(value, bool):
            return cls.unlimited() if value else cls.denied()
        if isinstance(value, int):
            if value == UNLIMITED:
                return cls.unlimited()
            if value >= 1:
                return cls.limit(value)
        raise ValueError(f"Unsupported access value: {value!r}")

    @property
    def is_denied(self) -> bool:
        return self.kind == AccessKind.DENIED

    @property
    def is_unlimited(self) -> bool:
        return self.kind == AccessKind.UNLIMITED

    def as_limit(self) -> int:
        """Return the numeric limit: ``-1`` unlimited, ``0`` denied, else the cap."""

        if self.kind == AccessKind.UNLIMITED:
            return UNLIMITED
        if self.kind == AccessKind.DENIED:
            return DENIED
        return int(self.amount or 0)


class SubscriptionStatus(str, Enum):
    """Lifecycle state for subscriptions as reported by the payment processor."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"
    PAUSED = "paused"
    UNKNOWN = "unknown"


DEFAULT_ACTIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


class SubscriptionRecord(BaseModel):
    """The organization's current plan as stored by the billing integration."""

    organization_id: str
    plan: PlanTier
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class OrganizationOverride(BaseModel):
    """Manual per-organization exception to the plan matrix."""

    organization_id: str
    feature_slug: str
    is_enabled: Optional[bool] = None
    limit_override: Optional[int] = None
    expires_at: Optional[datetime] = None
    reason: str = ""
    granted_by: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("limit_override")
    @classmethod
    def _validate_limit(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < UNLIMITED:
            raise ValueError("limit_override must be -1, 0 or a positive integer")
        return value

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


class BetaGrant(BaseModel):
    """Time-bounded early access to a feature regardless of the plan gate."""

    organization_id: str
    feature_slug: str
    expires_at: Optional[datetime] = None
    reason: str = ""
    granted_by: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


class AccessSource(str, Enum):
    PLAN = "plan"
    OVERRIDE = "override"
    BETA = "beta"


class FeatureAccess(BaseModel):
    """Resolved access decision for one organization and one feature."""

    feature_slug: str
    allowed: bool
    limit: int
    source: AccessSource
    tier: PlanTier
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_consistency(self) -> "FeatureAccess":
        if self.allowed and self.limit == DENIED:
            raise ValueError("an allowed decision cannot carry a zero limit")
        if not self.allowed and self.limit != DENIED:
            raise ValueError("a denied decision must carry a zero limit")
        return self

    @property
    def is_unlimited(self) -> bool:
        return self.allowed and self.limit == UNLIMITED

    @property
    def is_metered(self) -> bool:
        return self.allowed and self.limit > 0


class ModelDefinition(BaseModel):
    """An AI model that can be requested, with its plan gate and pricing."""

    model_id: str
    provider: str
    display_name: str
    minimum_tier: PlanTier
    premium: bool = False
    input_cost_per_1m: float = Field(default=0.0, ge=0)
    output_cost_per_1m: float = Field(default=0.0, ge=0)

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    def cost_for(self, input_tokens: int, output_tokens: int) -> float:
        """Return the provider cost in dollars for a completed request."""

        return (
            input_tokens / 1_000_000 * self.input_cost_per_1m
            + output_tokens / 1_000_000 * self.output_cost_per_1m
        )
