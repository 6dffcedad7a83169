"""
Tie-Break Resolver

Orders a block's teams by an ordered list of comparator stages using recursive grouping:

  1. Start with one group holding every team.
  2. For each stage, split every group of size > 1 into maximal runs of equal stage value
     (best first). The stage only ever sees the teams of the group it is splitting, so
     head-to-head is evaluated among exactly the still-tied subset.
  3. Groups still larger than one after the last stage are irreducible.

Irreducible groups share one rank under TiePolicy.manual (the default): a manual decision is
required before any slot depending on their exact order may resolve. TiePolicy.lottery
settles them with a deterministic draw seeded by the block, so recomputation is idempotent,
but only for rule lists ending in "lottery"; without that rule the groups stay irreducible.

Ranks follow standard competition ranking: 1, 2, 2, 4.
"""
from __future__ import annotations

import hashlib
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Any, Callable, Dict, List, Protocol, Sequence, Tuple

from app.services.errors import ValidationError
from app.services.results import MatchResult, PointSystem
from app.services.tiebreak_rules import TieBreakRule, requires_lottery


class TiePolicy(str, Enum):
    manual = "manual"
    lottery = "lottery"


class Rankable(Protocol):
    team_id: int
    points: int
    wins: int
    matches_played: int
    goals_for: int
    goal_difference: int


@dataclass(frozen=True)
class StageRecord:
    """One application of one stage to one tied group."""

    rule_type: str
    team_ids: Tuple[int, ...]
    resolved: bool
    groups_after: int


@dataclass
class TieBreakOutcome:
    groups: List[List[Any]]  # ordered best first; each inner list shares a rank unless drawn
    irreducible: List[Tuple[int, ...]] = field(default_factory=list)
    lottery_drawn: List[Tuple[int, ...]] = field(default_factory=list)
    trace: List[StageRecord] = field(default_factory=list)

    @property
    def requires_manual_ranking(self) -> bool:
        return bool(self.irreducible)


StageKey = Callable[[Sequence[Rankable], Sequence[MatchResult], PointSystem], Dict[int, Any]]


def _points(group, results, points):
    return {t.team_id: t.points for t in group}


def _goal_difference(group, results, points):
    return {t.team_id: t.goal_difference for t in group}


def _goals_for(group, results, points):
    return {t.team_id: t.goals_for for t in group}


def _wins(group, results, points):
    return {t.team_id: t.wins for t in group}


def _win_rate(group, results, points):
    return {
        t.team_id: Fraction(t.wins, t.matches_played) if t.matches_played else Fraction(0)
        for t in group
    }


def _head_to_head(group, results, points):
    """Mini-league among the group only: (points, goal difference, goals for)."""
    members = {t.team_id for t in group}
    pts: Dict[int, int] = defaultdict(int)
    gf: Dict[int, int] = defaultdict(int)
    ga: Dict[int, int] = defaultdict(int)
    for r in results:
        if r.team_a_id not in members or r.team_b_id not in members:
            continue
        for team_id in r.teams:
            gf[team_id] += r.goals_for(team_id)
            ga[team_id] += r.goals_against(team_id)
            if r.is_draw:
                pts[team_id] += points.draw
            elif r.winner_team_id == team_id:
                pts[team_id] += points.win
            else:
                pts[team_id] += points.loss
    return {tid: (pts[tid], gf[tid] - ga[tid], gf[tid]) for tid in members}


STAGES: Dict[str, StageKey] = {
    "points": _points,
    "goal_difference": _goal_difference,
    "goals_for": _goals_for,
    "wins": _wins,
    "win_rate": _win_rate,
    "head_to_head": _head_to_head,
}


def _partition(group: List[Any], keys: Dict[int, Any]) -> List[List[Any]]:
    ordered = sorted(group, key=lambda t: (keys[t.team_id],), reverse=True)
    runs: List[List[Any]] = []
    for team in ordered:
        if runs and keys[runs[-1][0].team_id] == keys[team.team_id]:
            runs[-1].append(team)
        else:
            runs.append([team])
    # Stable, id-ordered listing inside each run
    return [sorted(run, key=lambda t: t.team_id) for run in runs]


def _lottery_order(group: List[Any], salt: str) -> List[Any]:
    def draw(team):
        return hashlib.sha256(f"{salt}:{team.team_id}".encode()).hexdigest()

    return sorted(group, key=draw)


def resolve_order(
    teams: Sequence[Rankable],
    results: Sequence[MatchResult],
    rules: Sequence[TieBreakRule],
    point_system: PointSystem,
    tie_policy: TiePolicy = TiePolicy.manual,
    lottery_salt: str = "",
) -> TieBreakOutcome:
    """Apply the rule stages in order and return ordered groups plus irreducible ties."""
    stages = [r for r in sorted(rules, key=lambda r: r.order) if r.comparator != "lottery"]
    for rule in stages:
        if rule.comparator not in STAGES:
            raise ValidationError(f"Unknown tie-break rule '{rule.type}'", code="invalid_tie_break_rules")

    outcome = TieBreakOutcome(groups=[sorted(teams, key=lambda t: t.team_id)] if teams else [])

    for rule in stages:
        next_groups: List[List[Any]] = []
        for group in outcome.groups:
            if len(group) == 1:
                next_groups.append(group)
                continue
            keys = STAGES[rule.comparator](group, results, point_system)
            split = _partition(group, keys)
            outcome.trace.append(
                StageRecord(
                    rule_type=rule.type,
                    team_ids=tuple(t.team_id for t in group),
                    resolved=len(split) == len(group),
                    groups_after=len(split),
                )
            )
            next_groups.extend(split)
        outcome.groups = next_groups

    tied = [g for g in outcome.groups if len(g) > 1]
    if tie_policy == TiePolicy.lottery and tied and requires_lottery(rules):
        drawn_groups: List[List[Any]] = []
        for group in outcome.groups:
            if len(group) > 1:
                outcome.lottery_drawn.append(tuple(t.team_id for t in group))
                drawn_groups.extend([t] for t in _lottery_order(group, lottery_salt))
            else:
                drawn_groups.append(group)
        outcome.groups = drawn_groups
    else:
        outcome.irreducible = [tuple(t.team_id for t in g) for g in tied]

    return outcome


def competition_ranks(groups: Sequence[Sequence[Any]]) -> List[Tuple[int, Sequence[Any]]]:
    """Pair each group with its rank: the next group's rank is previous rank + previous size."""
    ranked = []
    rank = 1
    for group in groups:
        ranked.append((rank, group))
        rank += len(group)
    return ranked
