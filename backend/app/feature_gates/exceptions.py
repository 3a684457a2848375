"""Custom exceptions used for feature gating enforcement."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from fastapi import HTTPException, status

if TYPE_CHECKING:  # pragma: no cover
    from .gate import GateResult


@dataclass
class FeatureGateError(Exception):
    """A gate denial surfaced to API callers with its denial payload."""

    code: str
    message: str
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        payload: Dict[str, Any] = {"allowed": False, "code": self.code, "reason": self.message}
        if self.detail:
            payload.update(self.detail)
        object.__setattr__(self, "_payload", payload)
        super().__init__(self.message)

    @classmethod
    def from_result(cls, result: "GateResult") -> "FeatureGateError":
        """Build the error for a denied :class:`GateResult`.

        Outages map to ``503``; plan, quota and model denials map to ``403``.
        """

        if result.allowed:
            raise ValueError("Cannot raise a gate error for an allowed result")
        status_code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if result.is_infrastructure_failure
            else status.HTTP_403_FORBIDDEN
        )
        return cls(
            code=result.code.value if result.code else "FEATURE_RESTRICTED",
            message=result.reason or "Access denied",
            status_code=status_code,
            detail=result.denial_payload(),
        )

    @property
    def payload(self) -> Mapping[str, Any]:
        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))
