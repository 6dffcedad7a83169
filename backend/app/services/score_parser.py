"""
Score parser for period-based match scores.

Supports formats like:
  "2-1"             → one period, goals 2-1
  "1-0 0-1 1-1"     → three periods, goals summed (2-2)
  "1-0, 0-1, 1-1"   → comma-separated variant
  {"periods": [{"a": 1, "b": 0}, ...]} → structured periods
  {"team_a": "1,0,2", "team_b": "0,0,1"} → per-side period lists (summed)
  {"display": "2-1"} → extracts display string first

Returns None on parse failure; callers decide whether that is fatal.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union


@dataclass
class ParsedScore:
    periods: List[Tuple[int, int]]  # (team_a_goals, team_b_goals) per period
    team_a_goals: int
    team_b_goals: int


def parse_score(score_json: Optional[Union[str, Dict[str, Any]]]) -> Optional[ParsedScore]:
    """Parse a score blob into per-period and total goal counts.

    Returns None if the score cannot be parsed.
    """
    if not score_json:
        return None

    raw: Optional[str] = None
    if isinstance(score_json, str):
        raw = score_json
    elif isinstance(score_json, dict):
        if "periods" in score_json and isinstance(score_json["periods"], list):
            return _parse_structured_periods(score_json["periods"])
        if "team_a" in score_json and "team_b" in score_json:
            return _parse_side_lists(score_json["team_a"], score_json["team_b"])
        raw = str(score_json.get("display") or score_json.get("score") or "")
    if not raw or not raw.strip():
        return None

    return _parse_score_string(raw.strip())


def _period_values(value: Any) -> Optional[List[int]]:
    if isinstance(value, (list, tuple)):
        items = list(value)
    else:
        items = [p for p in str(value).replace(" ", "").split(",") if p != ""]
    try:
        values = [int(v) for v in items]
    except (TypeError, ValueError):
        return None
    if any(v < 0 for v in values):
        return None
    return values


def _build(periods: List[Tuple[int, int]]) -> Optional[ParsedScore]:
    if not periods:
        return None
    return ParsedScore(
        periods=periods,
        team_a_goals=sum(a for a, _ in periods),
        team_b_goals=sum(b for _, b in periods),
    )


def _parse_side_lists(team_a: Any, team_b: Any) -> Optional[ParsedScore]:
    a_values = _period_values(team_a)
    b_values = _period_values(team_b)
    if a_values is None or b_values is None or len(a_values) != len(b_values):
        return None
    return _build(list(zip(a_values, b_values)))


def _parse_structured_periods(periods_list: list) -> Optional[ParsedScore]:
    periods: List[Tuple[int, int]] = []
    for p in periods_list:
        try:
            a = int(p.get("a", 0))
            b = int(p.get("b", 0))
        except (AttributeError, TypeError, ValueError):
            return None
        if a < 0 or b < 0:
            return None
        periods.append((a, b))
    return _build(periods)


def _parse_score_string(raw: str) -> Optional[ParsedScore]:
    """Parse strings like '2-1', '1-0 0-1 1-1', '1-0, 0-1, 1-1'."""
    # Normalize: replace commas with spaces, collapse whitespace
    normalized = raw.replace(",", " ").strip()
    parts = normalized.split()

    periods: List[Tuple[int, int]] = []
    for part in parts:
        pair = part.split("-")
        if len(pair) != 2:
            return None
        try:
            a = int(pair[0])
            b = int(pair[1])
        except ValueError:
            return None
        periods.append((a, b))

    return _build(periods)
