"""
Standings Calculator

Pure functions: confirmed results for one block → ranked BlockStandings.

- League blocks (calculate_standings): counters aggregated from confirmed results only, then
  ordered by the tie-break resolver.
- Knockout blocks (calculate_placement_standings): ranks come from the template placement
  rules of confirmed matches (winner_position / loser_position_start).
- Manual override (apply_manual_order): an administrator-pinned total order applied on top
  of freshly computed counters.

BlockStandings is a derived cache value. It can only be produced by this module; the
persisted JSON form (to_cache) is never read back as a source of truth.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from app.services.errors import ValidationError
from app.services.results import MatchResult, PointSystem, WalkoverScore
from app.services.tie_breaker import TiePolicy, competition_ranks, resolve_order
from app.services.tiebreak_rules import TieBreakRule, default_rules

logger = logging.getLogger(__name__)

_CONSTRUCTION_KEY = object()


@dataclass(frozen=True)
class OpponentRecord:
    opponent_id: int
    played: int
    points: int
    goals_for: int
    goals_against: int


@dataclass(frozen=True)
class TeamStanding:
    team_id: int
    rank: Optional[int]
    points: int = 0
    matches_played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_difference: int = 0
    opponents: Tuple[OpponentRecord, ...] = ()
    tied: bool = False  # member of an irreducible tie group
    drawn_by_lottery: bool = False
    rank_range_end: Optional[int] = None  # knockout: worst place still open; None once final

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "rank": self.rank,
            "points": self.points,
            "matches_played": self.matches_played,
            "wins": self.wins,
            "draws": self.draws,
            "losses": self.losses,
            "goals_for": self.goals_for,
            "goals_against": self.goals_against,
            "goal_difference": self.goal_difference,
            "tied": self.tied,
            "drawn_by_lottery": self.drawn_by_lottery,
            "rank_range_end": self.rank_range_end,
        }


@dataclass(frozen=True)
class PlacementRule:
    """Final ranks granted by one knockout match; later priorities override earlier ones."""

    match_code: str
    execution_priority: int = 0
    winner_position: Optional[int] = None
    loser_position_start: Optional[int] = None
    loser_position_end: Optional[int] = None


class BlockStandings:
    """Ranked rows for one block. Only constructible by the functions in this module."""

    __slots__ = ("block_id", "rows", "irreducible_groups", "manual", "skipped_match_ids", "trace")

    def __init__(
        self,
        block_id: int,
        rows: Sequence[TeamStanding],
        irreducible_groups: Sequence[Tuple[int, ...]] = (),
        manual: bool = False,
        skipped_match_ids: Sequence[int] = (),
        trace: Sequence[Any] = (),
        *,
        _key: object = None,
    ):
        if _key is not _CONSTRUCTION_KEY:
            raise TypeError("BlockStandings is produced by the standings calculator only")
        self.block_id = block_id
        self.rows = tuple(rows)
        self.irreducible_groups = tuple(tuple(g) for g in irreducible_groups)
        self.manual = manual
        self.skipped_match_ids = tuple(skipped_match_ids)
        self.trace = tuple(trace)

    def __eq__(self, other) -> bool:
        if not isinstance(other, BlockStandings):
            return NotImplemented
        return (
            self.block_id == other.block_id
            and self.rows == other.rows
            and self.irreducible_groups == other.irreducible_groups
            and self.manual == other.manual
        )

    def __repr__(self) -> str:
        ranks = ", ".join(f"{r.team_id}:{r.rank}" for r in self.rows)
        return f"BlockStandings(block_id={self.block_id}, manual={self.manual}, [{ranks}])"

    @property
    def requires_manual_ranking(self) -> bool:
        return bool(self.irreducible_groups)

    def teams_at_rank(self, rank: int) -> List[int]:
        return [r.team_id for r in self.rows if r.rank == rank]

    def group_spanning(self, rank: int) -> List[int]:
        """Teams of the shared-rank group covering ``rank`` (e.g. rank 3 in 1, 2, 2, 4 → the two 2nds)."""
        ranked = [r for r in self.rows if r.rank is not None]
        for row in ranked:
            size = sum(1 for r in ranked if r.rank == row.rank)
            if row.rank <= rank < row.rank + size:
                return [r.team_id for r in ranked if r.rank == row.rank]
        return []

    def to_cache(self) -> List[Dict[str, Any]]:
        return [dict(row.to_dict(), manual=self.manual) for row in self.rows]


class _Aggregate:
    __slots__ = ("team_id", "points", "matches_played", "wins", "draws", "losses", "goals_for", "goals_against", "opponents")

    def __init__(self, team_id: int):
        self.team_id = team_id
        self.points = 0
        self.matches_played = 0
        self.wins = 0
        self.draws = 0
        self.losses = 0
        self.goals_for = 0
        self.goals_against = 0
        self.opponents: Dict[int, List[int]] = {}  # opponent -> [played, points, gf, ga]

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

    def add(self, goals_for: int, goals_against: int, outcome: str, opponent: int, points: PointSystem) -> None:
        earned = {"win": points.win, "draw": points.draw, "loss": points.loss}[outcome]
        self.matches_played += 1
        self.goals_for += goals_for
        self.goals_against += goals_against
        self.points += earned
        if outcome == "win":
            self.wins += 1
        elif outcome == "draw":
            self.draws += 1
        else:
            self.losses += 1
        record = self.opponents.setdefault(opponent, [0, 0, 0, 0])
        record[0] += 1
        record[1] += earned
        record[2] += goals_for
        record[3] += goals_against

    def standing(self, rank: Optional[int], tied: bool = False, drawn: bool = False) -> TeamStanding:
        return TeamStanding(
            team_id=self.team_id,
            rank=rank,
            points=self.points,
            matches_played=self.matches_played,
            wins=self.wins,
            draws=self.draws,
            losses=self.losses,
            goals_for=self.goals_for,
            goals_against=self.goals_against,
            goal_difference=self.goal_difference,
            opponents=tuple(
                OpponentRecord(opp, *values) for opp, values in sorted(self.opponents.items())
            ),
            tied=tied,
            drawn_by_lottery=drawn,
        )


def effective_result(result: MatchResult, walkover: WalkoverScore) -> MatchResult:
    """Walkovers count with the configured walkover score, never the live score."""
    if not result.is_walkover or result.winner_team_id is None:
        return result
    if result.winner_team_id == result.team_a_id:
        return replace(result, team_a_goals=walkover.winner_goals, team_b_goals=walkover.loser_goals, is_draw=False)
    return replace(result, team_a_goals=walkover.loser_goals, team_b_goals=walkover.winner_goals, is_draw=False)


def _inconsistency(result: MatchResult, members: Iterable[int]) -> Optional[str]:
    member_set = set(members)
    if result.team_a_id == result.team_b_id:
        return "both sides reference the same team"
    for team_id in result.teams:
        if team_id not in member_set:
            return f"team {team_id} is not a member of the block"
    if result.is_walkover and result.winner_team_id is None:
        return "walkover without a winner"
    if result.winner_team_id is not None and result.winner_team_id not in result.teams:
        return f"winner {result.winner_team_id} did not play the match"
    if result.is_draw and result.winner_team_id is not None:
        return "draw with a winner"
    if not result.is_draw and result.winner_team_id is None and result.team_a_goals == result.team_b_goals:
        return "level score without a draw flag or winner"
    return None


def _counted_results(
    block_id: int,
    members: Sequence[int],
    results: Sequence[MatchResult],
    walkover: WalkoverScore,
) -> Tuple[List[MatchResult], List[int]]:
    counted: List[MatchResult] = []
    skipped: List[int] = []
    for result in sorted(results, key=lambda r: r.match_id):
        if result.both_absent:
            continue
        problem = _inconsistency(result, members)
        if problem:
            logger.warning(
                "Skipping inconsistent result for match %s (%s) in block %s: %s",
                result.match_id,
                result.match_code,
                block_id,
                problem,
            )
            skipped.append(result.match_id)
            continue
        counted.append(effective_result(result, walkover))
    return counted, skipped


def _outcome_for(result: MatchResult, team_id: int) -> str:
    if result.is_draw:
        return "draw"
    winner = result.winner_team_id
    if winner is None:
        winner = result.team_a_id if result.team_a_goals > result.team_b_goals else result.team_b_id
    return "win" if winner == team_id else "loss"


def _aggregate(members: Sequence[int], counted: Sequence[MatchResult], point_system: PointSystem) -> Dict[int, _Aggregate]:
    aggregates = {team_id: _Aggregate(team_id) for team_id in members}
    for result in counted:
        for team_id in result.teams:
            aggregates[team_id].add(
                result.goals_for(team_id),
                result.goals_against(team_id),
                _outcome_for(result, team_id),
                result.opponent(team_id),
                point_system,
            )
    return aggregates


def calculate_standings(
    block_id: int,
    members: Sequence[int],
    results: Sequence[MatchResult],
    point_system: PointSystem = PointSystem(),
    walkover: WalkoverScore = WalkoverScore(),
    rules: Optional[Sequence[TieBreakRule]] = None,
    tie_policy: TiePolicy = TiePolicy.manual,
) -> BlockStandings:
    """Rank a league block from its confirmed results.

    A result referencing a team outside ``members`` is skipped and logged; the rest of the
    block is still ranked.
    """
    members = sorted(set(members))
    rules = list(rules) if rules else default_rules("soccer")
    counted, skipped = _counted_results(block_id, members, results, walkover)
    aggregates = _aggregate(members, counted, point_system)

    outcome = resolve_order(
        list(aggregates.values()),
        counted,
        rules,
        point_system,
        tie_policy=tie_policy,
        lottery_salt=f"block:{block_id}",
    )
    drawn = {tid for group in outcome.lottery_drawn for tid in group}
    tied = {tid for group in outcome.irreducible for tid in group}

    rows: List[TeamStanding] = []
    for rank, group in competition_ranks(outcome.groups):
        for agg in group:
            rows.append(agg.standing(rank, tied=agg.team_id in tied, drawn=agg.team_id in drawn))

    return BlockStandings(
        block_id,
        rows,
        irreducible_groups=outcome.irreducible,
        skipped_match_ids=skipped,
        trace=outcome.trace,
        _key=_CONSTRUCTION_KEY,
    )


def calculate_placement_standings(
    block_id: int,
    members: Sequence[int],
    results: Sequence[MatchResult],
    placements: Sequence[PlacementRule],
    point_system: PointSystem = PointSystem(),
    walkover: WalkoverScore = WalkoverScore(),
) -> BlockStandings:
    """Rank a knockout block by the placement rules of its confirmed matches.

    Teams without a decided placement have no rank yet (rank None, listed last).
    """
    members = sorted(set(members))
    counted, skipped = _counted_results(block_id, members, results, walkover)
    aggregates = _aggregate(members, counted, point_system)
    by_code = {r.match_code: r for r in counted}

    ranks: Dict[int, int] = {}
    open_until: Dict[int, int] = {}
    for rule in sorted(placements, key=lambda p: (p.execution_priority, p.match_code)):
        result = by_code.get(rule.match_code)
        if result is None or result.is_draw:
            continue
        winner = result.winner_team_id
        if winner is None:
            winner = result.team_a_id if result.team_a_goals > result.team_b_goals else result.team_b_id
        loser = result.opponent(winner)
        if rule.winner_position is not None:
            ranks[winner] = rule.winner_position
            open_until.pop(winner, None)
        if rule.loser_position_start is not None:
            ranks[loser] = rule.loser_position_start
            end = rule.loser_position_end
            if end is not None and end > rule.loser_position_start:
                open_until[loser] = end
            else:
                open_until.pop(loser, None)

    ordered = sorted(members, key=lambda tid: (ranks.get(tid) is None, ranks.get(tid, 0), tid))
    rows = [replace(aggregates[tid].standing(ranks.get(tid)), rank_range_end=open_until.get(tid)) for tid in ordered]
    return BlockStandings(block_id, rows, skipped_match_ids=skipped, _key=_CONSTRUCTION_KEY)


def apply_manual_order(standings: BlockStandings, order: Sequence[int]) -> BlockStandings:
    """Pin an administrator-supplied total order (ranks 1..n) onto computed counters.

    Raises ValidationError unless ``order`` is a permutation of the block's teams.
    """
    by_team = {row.team_id: row for row in standings.rows}
    if len(order) != len(set(order)) or set(order) != set(by_team):
        raise ValidationError(
            "Manual ranking must list every team of the block exactly once",
            code="invalid_manual_ranking",
            context={"expected": sorted(by_team), "received": list(order)},
        )
    rows = [
        replace(by_team[team_id], rank=position, tied=False, drawn_by_lottery=False, rank_range_end=None)
        for position, team_id in enumerate(order, start=1)
    ]
    return BlockStandings(
        standings.block_id,
        rows,
        manual=True,
        skipped_match_ids=standings.skipped_match_ids,
        _key=_CONSTRUCTION_KEY,
    )
