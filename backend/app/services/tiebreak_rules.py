"""
Tie-break rule catalogue.

Each sport offers a set of comparator types; a block carries an ordered list of them,
e.g. [{"type": "points", "order": 1}, {"type": "goal_difference", "order": 2}, ...].
A trailing "lottery" rule means irreducible ties are settled by a draw (manual or automatic,
see TiePolicy in tie_breaker).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from app.services.errors import ValidationError

MAX_RULES = 5

_SOCCER = ("points", "goal_difference", "goals_for", "head_to_head", "wins", "lottery")
_WIN_RATE_SPORTS = {
    "baseball": ("win_rate", "win_count", "run_difference", "runs_scored", "head_to_head", "lottery"),
    "basketball": ("win_rate", "win_count", "point_difference", "points_scored", "head_to_head", "lottery"),
}

SPORT_RULE_TYPES: Dict[str, tuple] = {
    "soccer": _SOCCER,
    "pk_championship": _SOCCER,
    **_WIN_RATE_SPORTS,
}

# Aliases resolve to the comparator that actually computes them
RULE_ALIASES = {
    "run_difference": "goal_difference",
    "point_difference": "goal_difference",
    "runs_scored": "goals_for",
    "points_scored": "goals_for",
    "win_count": "wins",
}

RULE_LABELS = {
    "points": "Points",
    "goal_difference": "Goal difference",
    "goals_for": "Goals scored",
    "head_to_head": "Head-to-head",
    "wins": "Wins",
    "win_rate": "Win rate",
    "win_count": "Wins",
    "run_difference": "Run difference",
    "runs_scored": "Runs scored",
    "point_difference": "Point difference",
    "points_scored": "Points scored",
    "lottery": "Lottery",
}


@dataclass(frozen=True)
class TieBreakRule:
    type: str
    order: int

    @property
    def comparator(self) -> str:
        return RULE_ALIASES.get(self.type, self.type)


def _rules(*types: str) -> List[TieBreakRule]:
    return [TieBreakRule(type=t, order=i) for i, t in enumerate(types, start=1)]


DEFAULT_RULES: Dict[str, List[TieBreakRule]] = {
    "soccer": _rules("points", "goal_difference", "goals_for", "head_to_head", "lottery"),
    "pk_championship": _rules("points", "goal_difference", "goals_for", "head_to_head", "lottery"),
    "baseball": _rules("win_rate", "run_difference", "runs_scored", "head_to_head", "lottery"),
    "basketball": _rules("win_rate", "point_difference", "points_scored", "head_to_head", "lottery"),
}


def available_rule_types(sport_code: str) -> tuple:
    return SPORT_RULE_TYPES.get(sport_code, SPORT_RULE_TYPES["soccer"])


def default_rules(sport_code: str) -> List[TieBreakRule]:
    return list(DEFAULT_RULES.get(sport_code, DEFAULT_RULES["soccer"]))


def parse_rules(raw: Optional[Sequence[Dict[str, Any]]]) -> List[TieBreakRule]:
    """Convert stored JSON into rules sorted by order. Raises ValidationError on malformed entries."""
    if not raw:
        return []
    rules: List[TieBreakRule] = []
    for entry in raw:
        try:
            rules.append(TieBreakRule(type=str(entry["type"]), order=int(entry["order"])))
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"Malformed tie-break rule: {entry!r}", code="invalid_tie_break_rules")
    return sorted(rules, key=lambda r: r.order)


def validate_rules(rules: Sequence[TieBreakRule], sport_code: str) -> None:
    """Raise ValidationError listing every problem with a configured rule list."""
    errors: List[str] = []
    if not rules:
        raise ValidationError("No tie-break rules configured", code="invalid_tie_break_rules")

    if len(rules) > MAX_RULES:
        errors.append(f"At most {MAX_RULES} tie-break rules are allowed")

    types = [r.type for r in rules]
    if len(types) != len(set(types)):
        errors.append("The same rule type may not appear twice")

    available = available_rule_types(sport_code)
    for rule in rules:
        if rule.type not in available:
            errors.append(f"'{rule.type}' is not available for {sport_code}")

    orders = sorted(r.order for r in rules)
    if orders != list(range(1, len(orders) + 1)):
        errors.append("Rule orders must be contiguous starting at 1")

    lottery_orders = [r.order for r in rules if r.type == "lottery"]
    if lottery_orders and lottery_orders[0] != max(orders):
        errors.append("'lottery' must be the last rule")

    if errors:
        raise ValidationError("; ".join(errors), code="invalid_tie_break_rules", context={"errors": errors})


def requires_lottery(rules: Sequence[TieBreakRule]) -> bool:
    if not rules:
        return False
    return max(rules, key=lambda r: r.order).type == "lottery"


def rules_to_json(rules: Sequence[TieBreakRule]) -> List[Dict[str, Any]]:
    return [{"type": r.type, "order": r.order} for r in sorted(rules, key=lambda r: r.order)]


def effective_rules(raw: Optional[Sequence[Dict[str, Any]]], sport_code: str) -> List[TieBreakRule]:
    """Block rules if configured, otherwise the sport default."""
    rules = parse_rules(raw)
    return rules if rules else default_rules(sport_code)
