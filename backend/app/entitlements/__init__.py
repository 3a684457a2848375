"""Entitlements domain models and services."""

from .catalog import (
    DEFAULT_FEATURE_MATRIX,
    DEFAULT_MODEL_CATALOG,
    FEATURE_CATEGORIES,
    PREMIUM_AI_FEATURE,
    PREMIUM_AI_METRIC,
    FeatureCategory,
    FeatureDefinition,
    ModelCatalog,
    PlanFeatureMatrix,
    get_feature_definition,
    get_model_definition,
)
from .cache import EntitlementCache, InMemoryEntitlementCache
from .exceptions import (
    EntitlementError,
    MatrixConfigurationError,
    StoreUnavailableError,
    UnknownFeatureError,
    UnknownModelError,
)
from .models import (
    DEFAULT_TIER,
    DENIED,
    UNLIMITED,
    Access,
    AccessKind,
    AccessSource,
    BetaGrant,
    FeatureAccess,
    ModelDefinition,
    OrganizationOverride,
    PlanTier,
    SubscriptionRecord,
    SubscriptionStatus,
)
from .service import (
    UNKNOWN_FEATURE_REASON,
    EntitlementAdminStore,
    EntitlementResolver,
    EntitlementStore,
    resolve_feature,
)
from .store import InMemoryEntitlementStore

__all__ = [
    "DEFAULT_FEATURE_MATRIX",
    "DEFAULT_MODEL_CATALOG",
    "DEFAULT_TIER",
    "DENIED",
    "FEATURE_CATEGORIES",
    "PREMIUM_AI_FEATURE",
    "PREMIUM_AI_METRIC",
    "UNKNOWN_FEATURE_REASON",
    "UNLIMITED",
    "Access",
    "AccessKind",
    "AccessSource",
    "BetaGrant",
    "EntitlementAdminStore",
    "EntitlementCache",
    "EntitlementError",
    "EntitlementResolver",
    "EntitlementStore",
    "FeatureAccess",
    "FeatureCategory",
    "FeatureDefinition",
    "InMemoryEntitlementCache",
    "InMemoryEntitlementStore",
    "MatrixConfigurationError",
    "ModelCatalog",
    "ModelDefinition",
    "OrganizationOverride",
    "PlanFeatureMatrix",
    "PlanTier",
    "StoreUnavailableError",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "UnknownFeatureError",
    "UnknownModelError",
    "get_feature_definition",
    "get_model_definition",
    "resolve_feature",
]
