"""Rules package."""

from collections.abc import Callable
from dataclasses import dataclass

from api_conform.rules.base import Rule, RuleContext
from api_conform.rules.contract_coverage import ContractCoverageRule
from api_conform.rules.error_shape import ErrorShapeRule
from api_conform.rules.http_semantics import HttpSemanticsRule
from api_conform.rules.naming import NamingRule
from api_conform.rules.parameter_drift import ParameterDriftRule
from api_conform.rules.security import SecurityRule

CATEGORY_RANKS = {
    "security": 0,
    "contract": 1,
    "semantics": 2,
    "consistency": 3,
    "style": 4,
    "engine": 5,
}

# Findings produced by the loader, extractor, matcher, or engine rather than a rule.
ENGINE_RULE_IDS = ("spec_extension", "duplicate_route", "extraction_warning", "rule_fault")


@dataclass(frozen=True, slots=True)
class RuleInfo:
    """Rule metadata for listing and selection."""

    rule_id: str
    name: str
    description: str
    category: str
    default_enabled: bool


@dataclass(frozen=True, slots=True)
class _RuleSpec:
    rule_id: str
    factory: Callable[[], Rule]
    name: str
    description: str
    category: str


def default_rules() -> list[Rule]:
    """Return the default rule set."""
    return build_rules()


def build_rules(
    *,
    enabled_rule_ids: list[str] | None = None,
    disabled_rule_ids: list[str] | None = None,
) -> list[Rule]:
    """Build rule instances applying enable/disable filters.

    When ``enabled_rule_ids`` is given only those rules run; disablement always wins.
    """
    specs = _ordered_rule_specs()
    registry = {spec.rule_id: spec for spec in specs}
    disabled_set = set(disabled_rule_ids or [])
    validate_rule_ids([*(enabled_rule_ids or []), *(disabled_rule_ids or [])])

    if enabled_rule_ids is None:
        selected_ids = [spec.rule_id for spec in specs if spec.rule_id not in disabled_set]
    else:
        selected_ids = [
            rule_id for rule_id in dict.fromkeys(enabled_rule_ids) if rule_id not in disabled_set
        ]
    return [registry[rule_id].factory() for rule_id in selected_ids]


def validate_rule_ids(rule_ids: list[str]) -> None:
    """Raise ``ValueError`` naming any id that is not a registered rule."""
    known = {spec.rule_id for spec in _ordered_rule_specs()}
    unknown = sorted({rule_id for rule_id in rule_ids if rule_id not in known})
    if unknown:
        joined = ", ".join(unknown)
        raise ValueError(f"Unknown rule ids: {joined}")


def list_rule_info(
    *,
    enabled_rule_ids: list[str] | None = None,
    disabled_rule_ids: list[str] | None = None,
) -> list[RuleInfo]:
    """Return metadata for all known rules with their effective enabled state."""
    enabled = {rule.rule_id for rule in build_rules(
        enabled_rule_ids=enabled_rule_ids,
        disabled_rule_ids=disabled_rule_ids,
    )}
    return [
        RuleInfo(
            rule_id=spec.rule_id,
            name=spec.name,
            description=spec.description,
            category=spec.category,
            default_enabled=spec.rule_id in enabled,
        )
        for spec in _ordered_rule_specs()
    ]


def rule_categories() -> dict[str, str]:
    """Map every rule id, including engine-produced ids, to its category."""
    categories = {spec.rule_id: spec.category for spec in _ordered_rule_specs()}
    for rule_id in ENGINE_RULE_IDS:
        categories[rule_id] = "engine"
    return categories


def _ordered_rule_specs() -> list[_RuleSpec]:
    return [
        _spec(SecurityRule, category="security"),
        _spec(ContractCoverageRule, category="contract"),
        _spec(ParameterDriftRule, category="contract"),
        _spec(HttpSemanticsRule, category="semantics"),
        _spec(ErrorShapeRule, category="consistency"),
        _spec(NamingRule, category="style"),
    ]


def _spec(rule_cls: Callable[[], Rule], *, category: str) -> _RuleSpec:
    instance = rule_cls()
    return _RuleSpec(
        rule_id=instance.rule_id,
        factory=rule_cls,
        name=rule_cls.__name__,
        description=(rule_cls.__doc__ or "").strip(),
        category=category,
    )


__all__ = [
    "CATEGORY_RANKS",
    "ENGINE_RULE_IDS",
    "Rule",
    "RuleContext",
    "RuleInfo",
    "build_rules",
    "default_rules",
    "list_rule_info",
    "rule_categories",
    "validate_rule_ids",
]
