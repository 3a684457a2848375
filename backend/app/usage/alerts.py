"""Threshold alerts for metered usage."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Sequence

DEFAULT_ALERT_THRESHOLDS: Sequence[int] = (80, 90, 100)


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class UsageAlert:
    metric_key: str
    threshold: int
    current_percentage: float
    severity: AlertSeverity
    message: str

    def to_dict(self) -> dict[str, object]:
        return {
            "metric_key": self.metric_key,
            "threshold": self.threshold,
            "current_percentage": self.current_percentage,
            "severity": self.severity.value,
            "message": self.message,
        }


def severity_for(threshold: int) -> AlertSeverity:
    if threshold >= 100:
        return AlertSeverity.EXCEEDED
    if threshold >= 90:
        return AlertSeverity.CRITICAL
    return AlertSeverity.WARNING


def _label(metric_key: str) -> str:
    return metric_key.replace("_", " ")


def evaluate_usage_alerts(
    *,
    metric_key: str,
    used: int,
    limit: int,
    thresholds: Iterable[int] = DEFAULT_ALERT_THRESHOLDS,
    already_sent: Iterable[int] = (),
) -> List[UsageAlert]:
    """Return alerts for thresholds crossed in this period and not yet sent.

    Only positive limits are metered; unlimited (``-1``) and denied (``0``)
    features never alert.
    """

    if limit <= 0:
        return []

    percentage = used / limit * 100
    sent = set(already_sent)
    alerts: List[UsageAlert] = []
    for threshold in sorted(set(thresholds)):
        if threshold in sent or percentage < threshold:
            continue
        if threshold >= 100:
            message = f"You've reached your {_label(metric_key)} quota for this billing period."
        else:
            message = f"You've used {percentage:.0f}% of your {_label(metric_key)} quota."
        alerts.append(
            UsageAlert(
                metric_key=metric_key,
                threshold=threshold,
                current_percentage=round(percentage, 2),
                severity=severity_for(threshold),
                message=message,
            )
        )
    return alerts
