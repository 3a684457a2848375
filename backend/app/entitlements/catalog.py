"""Static catalog definitions for the plan feature matrix and AI models."""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from .exceptions import MatrixConfigurationError, UnknownFeatureError, UnknownModelError
from .models import Access, ModelDefinition, PlanTier

AccessValue = Union[Access, bool, int]


@dataclass(frozen=True)
class FeatureCategory:
    """UI grouping for features. Has no effect on resolution."""

    key: str
    name: str
    description: str


@dataclass(frozen=True)
class FeatureDefinition:
    """Describes a gateable capability and its access on every tier."""

    slug: str
    category: str
    tier_access: Mapping[PlanTier, Access]
    display_name: str = ""
    metric_key: Optional[str] = None

    @classmethod
    def build(
        cls,
        slug: str,
        category: str,
        tier_access: Mapping[Union[PlanTier, str], AccessValue],
        *,
        display_name: str = "",
        metric_key: Optional[str] = None,
    ) -> "FeatureDefinition":
        """Create a definition from matrix shorthand, validating every tier."""

        normalized: Dict[PlanTier, Access] = {}
        for raw_tier, raw_access in tier_access.items():
            try:
                tier = PlanTier(raw_tier)
            except ValueError as exc:
                raise MatrixConfigurationError(
                    f"Feature '{slug}' references unknown tier {raw_tier!r}"
                ) from exc
            try:
                normalized[tier] = Access.parse(raw_access)
            except ValueError as exc:
                raise MatrixConfigurationError(
                    f"Feature '{slug}' has invalid access for tier '{tier.value}': {exc}"
                ) from exc

        missing = [tier.value for tier in PlanTier.ordered() if tier not in normalized]
        if missing:
            raise MatrixConfigurationError(
                f"Feature '{slug}' is missing access for tiers: {', '.join(missing)}"
            )

        return cls(
            slug=slug,
            category=category,
            tier_access=MappingProxyType(normalized),
            display_name=display_name or slug.replace("_", " ").title(),
            metric_key=metric_key,
        )

    @property
    def usage_metric(self) -> str:
        """Counter key consumed by this feature; defaults to the slug."""

        return self.metric_key or self.slug


class PlanFeatureMatrix:
    """Immutable (feature x tier) access table validated at construction."""

    def __init__(
        self,
        features: Iterable[FeatureDefinition],
        categories: Iterable[FeatureCategory] = (),
    ) -> None:
        by_slug: Dict[str, FeatureDefinition] = {}
        for feature in features:
            if feature.slug in by_slug:
                raise MatrixConfigurationError(f"Duplicate feature slug: {feature.slug}")
            missing = [tier.value for tier in PlanTier.ordered() if tier not in feature.tier_access]
            if missing:
                raise MatrixConfigurationError(
                    f"Feature '{feature.slug}' is missing access for tiers: {', '.join(missing)}"
                )
            by_slug[feature.slug] = feature

        category_map = {category.key: category for category in categories}
        if category_map:
            unknown = sorted(
                {feature.category for feature in by_slug.values()} - set(category_map)
            )
            if unknown:
                raise MatrixConfigurationError(
                    f"Features reference undeclared categories: {', '.join(unknown)}"
                )

        self._features: Mapping[str, FeatureDefinition] = MappingProxyType(by_slug)
        self._categories: Mapping[str, FeatureCategory] = MappingProxyType(category_map)

    def __contains__(self, slug: object) -> bool:
        return slug in self._features

    def __len__(self) -> int:
        return len(self._features)

    @property
    def slugs(self) -> Tuple[str, ...]:
        return tuple(self._features)

    @property
    def categories(self) -> Tuple[FeatureCategory, ...]:
        return tuple(self._categories.values())

    def get(self, slug: str) -> FeatureDefinition:
        try:
            return self._features[slug]
        except KeyError as exc:
            raise UnknownFeatureError(slug) from exc

    def access_for(self, slug: str, tier: PlanTier) -> Access:
        return self.get(slug).tier_access[tier]

    def minimum_tier(self, slug: str) -> Optional[PlanTier]:
        """Return the cheapest tier that is not denied the feature, if any."""

        feature = self.get(slug)
        for tier in PlanTier.ordered():
            if not feature.tier_access[tier].is_denied:
                return tier
        return None

    def next_tier_with_more(self, slug: str, tier: PlanTier) -> Optional[PlanTier]:
        """Return the cheapest tier above ``tier`` offering a larger allowance."""

        feature = self.get(slug)
        current = feature.tier_access[tier]
        if current.is_unlimited:
            return None
        for candidate in tier.next_tiers():
            access = feature.tier_access[candidate]
            if access.is_unlimited or access.as_limit() > current.as_limit():
                return candidate
        return None

    def features_for_tier(self, tier: PlanTier) -> Tuple[str, ...]:
        return tuple(
            slug
            for slug, feature in self._features.items()
            if not feature.tier_access[tier].is_denied
        )

    def upgrade_features(self, tier: PlanTier) -> Tuple[str, ...]:
        """Return features the tier does not include."""

        available = set(self.features_for_tier(tier))
        return tuple(slug for slug in self._features if slug not in available)

    def additional_features(self, from_tier: PlanTier, to_tier: PlanTier) -> Tuple[str, ...]:
        """Return features gained by moving from one tier to another."""

        current = set(self.features_for_tier(from_tier))
        return tuple(slug for slug in self.features_for_tier(to_tier) if slug not in current)

    def features_in_category(self, category: str) -> Tuple[str, ...]:
        return tuple(slug for slug, feature in self._features.items() if feature.category == category)


class ModelCatalog:
    """Immutable mapping of model identifiers to their plan gate."""

    def __init__(self, models: Iterable[ModelDefinition]) -> None:
        by_id: Dict[str, ModelDefinition] = {}
        for model in models:
            if model.model_id in by_id:
                raise MatrixConfigurationError(f"Duplicate model id: {model.model_id}")
            by_id[model.model_id] = model
        self._models: Mapping[str, ModelDefinition] = MappingProxyType(by_id)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def get(self, model_id: str) -> ModelDefinition:
        try:
            return self._models[model_id]
        except KeyError as exc:
            raise UnknownModelError(model_id) from exc

    def models_for_tier(self, tier: PlanTier) -> Tuple[str, ...]:
        return tuple(
            model_id
            for model_id, model in self._models.items()
            if not tier.is_below(model.minimum_tier)
        )


PREMIUM_AI_FEATURE = "premium_ai_models"
PREMIUM_AI_METRIC = "premium_ai_messages"


def _tiers(
    free: AccessValue,
    starter: AccessValue,
    pro: AccessValue,
    team: AccessValue,
    business: AccessValue,
    enterprise: AccessValue,
) -> Dict[PlanTier, AccessValue]:
    return {
        PlanTier.FREE: free,
        PlanTier.STARTER: starter,
        PlanTier.PRO: pro,
        PlanTier.TEAM: team,
        PlanTier.BUSINESS: business,
        PlanTier.ENTERPRISE: enterprise,
    }


FEATURE_CATEGORIES: Tuple[FeatureCategory, ...] = (
    FeatureCategory("ai", "AI Features", "AI models, agents, and training"),
    FeatureCategory("integrations", "Integrations", "Connect with external tools and services"),
    FeatureCategory("team", "Team & Security", "Team management and security features"),
    FeatureCategory("storage", "Storage & Documents", "Document management and storage"),
    FeatureCategory("automation", "Automation", "Workflow automation tools"),
    FeatureCategory("branding", "Branding", "White-label and customization"),
    FeatureCategory("support", "Support", "Customer support options"),
)

_FEATURES: Tuple[FeatureDefinition, ...] = (
    # AI
    FeatureDefinition.build("basic_ai_models", "ai", _tiers(True, True, True, True, True, True)),
    FeatureDefinition.build(
        PREMIUM_AI_FEATURE,
        "ai",
        _tiers(False, 100, -1, -1, -1, -1),
        display_name="Premium AI Models",
        metric_key=PREMIUM_AI_METRIC,
    ),
    FeatureDefinition.build("ai_agents", "ai", _tiers(False, 1, 5, 10, 50, -1), display_name="AI Agents"),
    FeatureDefinition.build("custom_training", "ai", _tiers(False, False, False, False, True, True)),
    # Integrations
    FeatureDefinition.build("custom_bots", "integrations", _tiers(False, False, 3, 10, 50, -1)),
    FeatureDefinition.build(
        "api_access", "integrations", _tiers(False, False, True, True, True, True), display_name="API Access"
    ),
    FeatureDefinition.build("webhooks", "integrations", _tiers(False, False, 5, 20, 100, -1)),
    FeatureDefinition.build("email_integration", "integrations", _tiers(False, True, True, True, True, True)),
    FeatureDefinition.build("calendar_integration", "integrations", _tiers(False, True, True, True, True, True)),
    FeatureDefinition.build(
        "whatsapp", "integrations", _tiers(False, False, False, False, True, True), display_name="WhatsApp"
    ),
    FeatureDefinition.build("slack_integration", "integrations", _tiers(False, False, False, True, True, True)),
    # Team & security
    FeatureDefinition.build("team_members", "team", _tiers(1, 1, 1, 10, 50, 250)),
    FeatureDefinition.build(
        "sso_saml", "team", _tiers(False, False, False, True, True, True), display_name="SSO / SAML"
    ),
    FeatureDefinition.build(
        "rbac", "team", _tiers(False, False, False, True, True, True), display_name="Role-Based Access Control"
    ),
    FeatureDefinition.build("audit_logs", "team", _tiers(False, False, False, False, True, True)),
    # Storage
    FeatureDefinition.build(
        "document_storage_gb", "storage", _tiers(1, 10, 50, 200, 1000, -1), display_name="Document Storage (GB)"
    ),
    FeatureDefinition.build("document_upload", "storage", _tiers(5, -1, -1, -1, -1, -1)),
    # Automation
    FeatureDefinition.build("workflows", "automation", _tiers(5, -1, -1, -1, -1, -1)),
    # Branding
    FeatureDefinition.build("white_label", "branding", _tiers(False, False, False, False, False, True)),
    FeatureDefinition.build("custom_domain", "branding", _tiers(False, False, False, False, False, True)),
    FeatureDefinition.build("custom_logo", "branding", _tiers(False, False, False, False, True, True)),
    # Support
    FeatureDefinition.build("priority_support", "support", _tiers(False, True, True, True, True, True)),
    FeatureDefinition.build(
        "dedicated_csm",
        "support",
        _tiers(False, False, False, True, True, True),
        display_name="Dedicated Customer Success Manager",
    ),
    FeatureDefinition.build("phone_support", "support", _tiers(False, False, False, False, True, True)),
    FeatureDefinition.build(
        "support_24_7", "support", _tiers(False, False, False, False, False, True), display_name="24/7 Support"
    ),
)

DEFAULT_FEATURE_MATRIX = PlanFeatureMatrix(_FEATURES, FEATURE_CATEGORIES)

DEFAULT_MODEL_CATALOG = ModelCatalog(
    (
        ModelDefinition(
            model_id="gpt-4o-mini",
            provider="openai",
            display_name="GPT-4o Mini",
            minimum_tier=PlanTier.FREE,
            input_cost_per_1m=0.15,
            output_cost_per_1m=0.60,
        ),
        ModelDefinition(
            model_id="gemini-2.0-flash-exp",
            provider="google",
            display_name="Gemini 2.0 Flash",
            minimum_tier=PlanTier.FREE,
        ),
        ModelDefinition(
            model_id="deepseek-chat",
            provider="deepseek",
            display_name="DeepSeek V3",
            minimum_tier=PlanTier.FREE,
            input_cost_per_1m=0.14,
            output_cost_per_1m=0.28,
        ),
        ModelDefinition(
            model_id="gpt-4o",
            provider="openai",
            display_name="GPT-4o",
            minimum_tier=PlanTier.STARTER,
            premium=True,
            input_cost_per_1m=2.50,
            output_cost_per_1m=10.0,
        ),
        ModelDefinition(
            model_id="claude-sonnet-4",
            provider="anthropic",
            display_name="Claude Sonnet 4",
            minimum_tier=PlanTier.STARTER,
            premium=True,
            input_cost_per_1m=3.0,
            output_cost_per_1m=15.0,
        ),
        ModelDefinition(
            model_id="gamma",
            provider="gamma",
            display_name="Gamma",
            minimum_tier=PlanTier.PRO,
        ),
        ModelDefinition(
            model_id="claude-opus-4",
            provider="anthropic",
            display_name="Claude Opus 4",
            minimum_tier=PlanTier.BUSINESS,
            premium=True,
            input_cost_per_1m=15.0,
            output_cost_per_1m=75.0,
        ),
    )
)


def get_feature_definition(slug: str, matrix: PlanFeatureMatrix = DEFAULT_FEATURE_MATRIX) -> FeatureDefinition:
    """Return a feature definition, raising if undeclared."""

    return matrix.get(slug)


def get_model_definition(model_id: str, catalog: ModelCatalog = DEFAULT_MODEL_CATALOG) -> ModelDefinition:
    """Return a model definition, raising if undeclared."""

    return catalog.get(model_id)
