"""Exceptions raised by the entitlement and usage subsystems."""
from __future__ import annotations


class EntitlementError(Exception):
    """Base class for entitlement engine failures."""


class MatrixConfigurationError(EntitlementError, ValueError):
    """Raised when a feature matrix or model catalog is incomplete or invalid."""


class UnknownFeatureError(EntitlementError, LookupError):
    """Raised when a feature slug is not declared in the matrix."""

    def __init__(self, feature_slug: str) -> None:
        super().__init__(f"Unknown feature: {feature_slug}")
        self.feature_slug = feature_slug


class UnknownModelError(EntitlementError, LookupError):
    """Raised when a model identifier is not declared in the model catalog."""

    def __init__(self, model_id: str) -> None:
        super().__init__(f"Unknown model: {model_id}")
        self.model_id = model_id


class StoreUnavailableError(EntitlementError):
    """Raised when a backing store cannot be reached or fails mid-operation."""
