"""Tie-break rule catalogue: per-sport defaults, parsing and validation."""
import pytest

from app.services.errors import ValidationError
from app.services.tiebreak_rules import (
    TieBreakRule,
    available_rule_types,
    default_rules,
    effective_rules,
    parse_rules,
    requires_lottery,
    rules_to_json,
    validate_rules,
)


def _rules(*types):
    return [TieBreakRule(type=t, order=i) for i, t in enumerate(types, start=1)]


def test_soccer_default_order():
    assert [r.type for r in default_rules("soccer")] == [
        "points",
        "goal_difference",
        "goals_for",
        "head_to_head",
        "lottery",
    ]


def test_unknown_sport_falls_back_to_soccer():
    assert default_rules("curling") == default_rules("soccer")
    assert available_rule_types("curling") == available_rule_types("soccer")


def test_aliases_map_to_comparators():
    assert TieBreakRule("run_difference", 1).comparator == "goal_difference"
    assert TieBreakRule("points_scored", 1).comparator == "goals_for"
    assert TieBreakRule("win_count", 1).comparator == "wins"
    assert TieBreakRule("points", 1).comparator == "points"


def test_parse_sorts_by_order():
    rules = parse_rules([{"type": "goals_for", "order": 2}, {"type": "points", "order": 1}])
    assert [r.type for r in rules] == ["points", "goals_for"]
    assert parse_rules(None) == []


def test_parse_rejects_malformed_entries():
    with pytest.raises(ValidationError) as exc:
        parse_rules([{"type": "points"}])
    assert exc.value.code == "invalid_tie_break_rules"


def test_effective_rules_prefers_block_configuration():
    raw = [{"type": "points", "order": 1}, {"type": "head_to_head", "order": 2}]
    assert [r.type for r in effective_rules(raw, "soccer")] == ["points", "head_to_head"]
    assert effective_rules(None, "baseball") == default_rules("baseball")


def test_rules_to_json_round_trip_shape():
    assert rules_to_json(_rules("points", "lottery")) == [
        {"type": "points", "order": 1},
        {"type": "lottery", "order": 2},
    ]


def test_requires_lottery_only_when_last():
    assert requires_lottery(_rules("points", "lottery"))
    assert not requires_lottery(_rules("points", "goal_difference"))
    assert not requires_lottery([])


class TestValidateRules:
    def test_valid_list_passes(self):
        validate_rules(_rules("points", "goal_difference", "goals_for", "head_to_head", "lottery"), "soccer")

    def test_empty_list(self):
        with pytest.raises(ValidationError):
            validate_rules([], "soccer")

    def test_collects_every_problem(self):
        rules = [
            TieBreakRule("points", 1),
            TieBreakRule("points", 2),
            TieBreakRule("win_rate", 4),
        ]
        with pytest.raises(ValidationError) as exc:
            validate_rules(rules, "soccer")
        errors = exc.value.context["errors"]
        assert any("twice" in e for e in errors)
        assert any("win_rate" in e for e in errors)
        assert any("contiguous" in e for e in errors)

    def test_too_many_rules(self):
        rules = _rules("points", "goal_difference", "goals_for", "head_to_head", "wins", "lottery")
        with pytest.raises(ValidationError) as exc:
            validate_rules(rules, "soccer")
        assert any("At most 5" in e for e in exc.value.context["errors"])

    def test_lottery_must_be_last(self):
        with pytest.raises(ValidationError) as exc:
            validate_rules(_rules("lottery", "points"), "soccer")
        assert any("last" in e for e in exc.value.context["errors"])

    def test_baseball_catalogue(self):
        validate_rules(_rules("win_rate", "run_difference", "runs_scored"), "baseball")
        with pytest.raises(ValidationError):
            validate_rules(_rules("points"), "baseball")
