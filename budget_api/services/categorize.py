"""
Keyword Rule Categorization Engine

Tier 1: Keyword Rules — enabled rules of the row's kind, highest priority
        first (older rule wins a tie); first rule with a keyword found in
        the normalized description assigns its category
Tier 2: Fallback — the default category of the kind ("Divers"/"Autres"
        preferred, else any category of that kind)

Once a rule matches, processing STOPS. A row with no category at all is
still imported; categorization never blocks insertion.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..models import Rule
from .statement.normalize import normalize_label

logger = logging.getLogger(__name__)

FALLBACK_PREFERENCES = {
    "income": ["Divers", "Autres"],
    "expense": ["Divers", "Autres"],
    "transfer": ["Divers"],
}


@dataclass(frozen=True)
class RuleSpec:
    id: int
    target_kind: str
    category_id: int
    keywords: tuple[str, ...]  # already normalized
    priority: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CategoryMatch:
    kind: str
    category_id: Optional[int] = None
    rule_id: Optional[int] = None
    tier: Optional[str] = None  # "rule", "fallback" or None


def kind_for_amount(amount: float) -> str:
    return "income" if amount >= 0 else "expense"


def to_rule_spec(rule) -> RuleSpec:
    keywords = tuple(kw for kw in (normalize_label(k) for k in (rule.keywords or [])) if kw)
    return RuleSpec(
        id=rule.id,
        target_kind=rule.target_kind,
        category_id=rule.category_id,
        keywords=keywords,
        priority=rule.priority or 0,
        created_at=rule.created_at,
    )


def order_rules(rules: Iterable[RuleSpec]) -> list[RuleSpec]:
    """Priority descending, then creation order ascending."""
    return sorted(
        rules,
        key=lambda r: (-r.priority, r.created_at or datetime.min, r.id),
    )


def load_rules(db: Session) -> list[RuleSpec]:
    """Enabled rules, ordered the way they are evaluated."""
    rules = db.query(Rule).filter(Rule.enabled.is_(True)).all()
    return order_rules(to_rule_spec(rule) for rule in rules)


def build_fallback_categories(categories) -> dict:
    """kind → fallback category; a preferred name beats the first category seen."""
    by_kind = {}
    for category in categories:
        if category.kind not in by_kind:
            by_kind[category.kind] = category
        if category.name in FALLBACK_PREFERENCES.get(category.kind, []):
            current = by_kind[category.kind]
            if current.name not in FALLBACK_PREFERENCES[category.kind] or (
                FALLBACK_PREFERENCES[category.kind].index(category.name)
                < FALLBACK_PREFERENCES[category.kind].index(current.name)
            ):
                by_kind[category.kind] = category
    return by_kind


def match_rule(normalized_description: str, kind: str, rules: list[RuleSpec]) -> Optional[RuleSpec]:
    for rule in rules:
        if rule.target_kind != kind or not rule.keywords:
            continue
        if any(kw in normalized_description for kw in rule.keywords):
            return rule
    return None


def categorize(
    description: str,
    amount: float,
    rules: list[RuleSpec],
    fallbacks: dict,
) -> CategoryMatch:
    """
    Run a row through the rules, then the fallback.

    `rules` must already be in evaluation order (see load_rules/order_rules).
    """
    kind = kind_for_amount(amount)
    normalized = normalize_label(description)

    # ── TIER 1: Keyword Rules ──
    rule = match_rule(normalized, kind, rules)
    if rule:
        logger.debug(f"Rule {rule.id} match: {description} → category {rule.category_id}")
        return CategoryMatch(kind=kind, category_id=rule.category_id, rule_id=rule.id, tier="rule")

    # ── TIER 2: Fallback category ──
    fallback = fallbacks.get(kind)
    if fallback is not None:
        logger.debug(f"Fallback: {description} → {fallback.name}")
        return CategoryMatch(kind=kind, category_id=fallback.id, tier="fallback")

    logger.debug(f"No category for {kind}: {description}")
    return CategoryMatch(kind=kind)
