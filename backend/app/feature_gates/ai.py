"""Gate and meter calls to AI models."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, TypeVar

from ..usage.service import TokenUsageTracker
from .enforcement import raise_for_denial
from .gate import FeatureGate, GateResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

ModelCall = Callable[[], Tuple[T, int, int]]


@dataclass(frozen=True)
class ModelRequestOutcome(Generic[T]):
    result: T
    gate: GateResult
    input_tokens: int
    output_tokens: int
    cost: Optional[float]


def run_model_request(
    gate: FeatureGate,
    tracker: TokenUsageTracker,
    organization_id: str,
    model_id: str,
    call: ModelCall,
) -> ModelRequestOutcome:
    """Run ``call`` if the organization may use ``model_id``.

    ``call`` returns ``(result, input_tokens, output_tokens)``. The gate is
    consulted first and raises :class:`FeatureGateError` on denial, so the
    model is never invoked for a refused request. Token accounting happens
    afterwards and never fails the request. Quota reserved for the attempt
    is kept when ``call`` raises.
    """

    decision = raise_for_denial(gate.check_model_access(organization_id, model_id))
    result, input_tokens, output_tokens = call()
    cost = tracker.track(organization_id, model_id, input_tokens, output_tokens)
    logger.debug(
        "Model request complete org=%s model=%s input=%s output=%s",
        organization_id,
        model_id,
        input_tokens,
        output_tokens,
    )
    return ModelRequestOutcome(
        result=result,
        gate=decision,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost=cost,
    )
