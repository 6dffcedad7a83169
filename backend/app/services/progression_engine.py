"""
Bracket Progression Engine

Orchestrates standings, tie-breaks and promotion in response to match lifecycle events:

  scheduled ──result──▶ completed_unconfirmed ──confirm──▶ confirmed
      ▲                        ▲      │                       │
      │                        └──────┼──────unconfirm────────┘
      └──────uncancel──── cancelled ◀─┴──cancel (also from scheduled / confirmed)

Every mutating operation runs one cascade under the tournament's exclusivity token:
  1. apply the transition
  2. recompute the affected block's standings (respecting a manual ranking)
  3. re-resolve the slots sourced from that block or that match
  4. write changed participants into dependent matches; when that changes the members of
     another block, recurse into it
The cascade walks the static dependency graph only and commits once; any failure rolls the
whole cascade back. Absorbed conditions (ambiguous ties, bad records) are returned as issues
in the CascadeReport.
"""
from __future__ import annotations

import logging
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from app.models.block import Block
from app.models.match import CancellationType, Match, MatchStatus
from app.models.match_source_override import MatchSourceOverride
from app.models.promotion_override import PromotionOverride
from app.models.tournament import Tournament
from app.services.dependency_graph import DependencyGraph, MatchSources
from app.services.errors import (
    AmbiguousTieError,
    InconsistentStateError,
    InvalidTransitionError,
    NotFoundError,
    ProgressionError,
    ValidationError,
)
from app.services.match_store import SqlMatchResultStore
from app.services.placeholders import MatchLoser, MatchWinner, SlotRef, parse_source
from app.services.promotion_resolver import (
    ParticipantSlot,
    ResolutionContext,
    SlotOutcome,
    SlotStatus,
    SourceMatchState,
    plan_assignments,
    resolve_slot,
)
from app.services.results import PointSystem, WalkoverScore
from app.services.score_parser import parse_score
from app.services.standings_calculator import (
    BlockStandings,
    PlacementRule,
    apply_manual_order,
    calculate_placement_standings,
    calculate_standings,
)
from app.services.tie_breaker import TiePolicy
from app.services.tiebreak_rules import effective_rules

logger = logging.getLogger(__name__)

# Upper bound on processed nodes per graph node; only reachable with a cyclic graph
_MAX_VISITS_PER_NODE = 8


@dataclass
class Issue:
    code: str
    message: str
    block_id: Optional[int] = None
    match_id: Optional[int] = None
    slot_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "block_id": self.block_id,
            "match_id": self.match_id,
            "slot_key": self.slot_key,
        }


@dataclass
class CascadeReport:
    tournament_id: int
    operation: str
    changed_blocks: List[int] = field(default_factory=list)
    changed_matches: List[int] = field(default_factory=list)
    slots: Dict[str, SlotOutcome] = field(default_factory=dict)
    issues: List[Issue] = field(default_factory=list)

    def block_changed(self, block_id: int) -> None:
        if block_id not in self.changed_blocks:
            self.changed_blocks.append(block_id)

    def match_changed(self, match_id: int) -> None:
        if match_id not in self.changed_matches:
            self.changed_matches.append(match_id)

    def add_issue(self, issue: Issue) -> None:
        if issue not in self.issues:
            self.issues.append(issue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "operation": self.operation,
            "changed_blocks": sorted(self.changed_blocks),
            "changed_matches": sorted(self.changed_matches),
            "slots": [self.slots[k].to_dict() for k in sorted(self.slots)],
            "issues": [i.to_dict() for i in self.issues],
        }


@dataclass(frozen=True)
class ScoreEntry:
    """Result submitted for a match. ``periods`` (e.g. "1-0 0-1") is summed when given."""

    team_a_goals: Optional[int] = None
    team_b_goals: Optional[int] = None
    team_a_pk: Optional[int] = None
    team_b_pk: Optional[int] = None
    periods: Optional[Any] = None

    def totals(self) -> Tuple[int, int, Optional[Dict[str, Any]]]:
        if self.periods is not None:
            blob = self.periods if isinstance(self.periods, dict) else {"display": self.periods}
            parsed = parse_score(blob)
            if parsed is None:
                raise ValidationError(f"Unparseable score '{self.periods}'", code="invalid_score")
            score_json = {"periods": [{"a": a, "b": b} for a, b in parsed.periods]}
            return parsed.team_a_goals, parsed.team_b_goals, score_json
        if self.team_a_goals is None or self.team_b_goals is None:
            raise ValidationError("Both sides need a score", code="invalid_score")
        if self.team_a_goals < 0 or self.team_b_goals < 0:
            raise ValidationError("Scores cannot be negative", code="invalid_score")
        return self.team_a_goals, self.team_b_goals, None


@dataclass
class TournamentProgress:
    tournament_id: int
    total_matches: int
    confirmed_matches: int
    cancelled_matches: int
    remaining_matches: int
    is_complete: bool
    blocks: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "total_matches": self.total_matches,
            "confirmed_matches": self.confirmed_matches,
            "cancelled_matches": self.cancelled_matches,
            "remaining_matches": self.remaining_matches,
            "is_complete": self.is_complete,
            "blocks": self.blocks,
        }


def build_graph(store: SqlMatchResultStore, tournament_id: int, issues: Optional[List[Issue]] = None) -> DependencyGraph:
    """Dependency graph from effective sources (source override, else template)."""
    templates = store.templates(tournament_id)
    overrides = store.source_overrides(tournament_id)
    blocks = {b.id: b for b in store.blocks(tournament_id)}
    entries: List[MatchSources] = []
    for match in store.matches(tournament_id):
        template = templates.get(match.match_code)
        override = overrides.get(match.match_code)
        block = blocks.get(match.block_id)
        refs: Dict[str, Optional[SlotRef]] = {"a": None, "b": None}
        for side in ("a", "b"):
            raw = getattr(override, f"team_{side}_source", None) if override else None
            if raw is None and template is not None:
                raw = getattr(template, f"team_{side}_source")
            if raw is None:
                continue
            try:
                refs[side] = parse_source(raw)
            except ValidationError as exc:
                logger.warning("Match %s side %s has an invalid source: %s", match.match_code, side, exc.message)
                if issues is not None:
                    issues.append(Issue(InconsistentStateError.code, exc.message, match_id=match.id))
        entries.append(
            MatchSources(
                match_code=match.match_code,
                block_name=block.name if block else "",
                team_a=refs["a"],
                team_b=refs["b"],
                execution_priority=template.execution_priority if template else 0,
            )
        )
    return DependencyGraph(entries)


def _is_walkover(match: Match) -> bool:
    return (
        match.status == MatchStatus.cancelled.value
        and match.cancellation_type is not None
        and CancellationType(match.cancellation_type).is_walkover
    )


def _settled(match: Match) -> bool:
    return match.status in (MatchStatus.confirmed.value, MatchStatus.cancelled.value)


def _has_result(match: Match) -> bool:
    """Participants of these matches are fixed; the cascade never rewrites them."""
    return match.status in (MatchStatus.completed_unconfirmed.value, MatchStatus.confirmed.value) or _is_walkover(match)


class _Cascade:
    """State of one cascade: live rows of the tournament plus the pending worklist."""

    def __init__(self, engine: "ProgressionEngine", tournament: Tournament, report: CascadeReport):
        self.engine = engine
        self.store = engine.store
        self.tournament = tournament
        self.report = report
        self.issues: List[Issue] = []
        self.graph = build_graph(self.store, tournament.id, self.issues)
        self.templates = self.store.templates(tournament.id)
        self.blocks_by_id: Dict[int, Block] = {b.id: b for b in self.store.blocks(tournament.id)}
        self.blocks_by_name: Dict[str, Block] = {b.name: b for b in self.blocks_by_id.values()}
        self.matches_by_code: Dict[str, Match] = {m.match_code: m for m in self.store.matches(tournament.id)}
        self.seeds = self.store.seeds(tournament.id)
        self.overrides = {k: o.team_id for k, o in self.store.promotion_overrides(tournament.id).items()}
        self.standings: Dict[int, BlockStandings] = {}
        self.queue: deque = deque()
        self.queued: Set[Tuple[str, Any]] = set()
        self.visits: Dict[Tuple[str, Any], int] = {}
        for issue in self.issues:
            report.add_issue(issue)

    # -- worklist --------------------------------------------------------

    def enqueue_block(self, block_id: int) -> None:
        self._push(("block", block_id))

    def enqueue_outcome(self, match_code: str) -> None:
        self._push(("outcome", match_code))

    def enqueue_resolve(self, match_code: str) -> None:
        self._push(("resolve", match_code))

    def _push(self, node: Tuple[str, Any]) -> None:
        if node not in self.queued:
            self.queued.add(node)
            self.queue.append(node)

    def run(self) -> None:
        limit = max(_MAX_VISITS_PER_NODE, len(self.graph.sources))
        while self.queue:
            node = self.queue.popleft()
            self.queued.discard(node)
            self.visits[node] = self.visits.get(node, 0) + 1
            if self.visits[node] > limit:
                raise InconsistentStateError(
                    f"Cascade did not settle at {node[0]} {node[1]}; the dependency graph is cyclic",
                    context={"node": list(node)},
                )
            kind, key = node
            if kind == "block":
                self._process_block(key)
            elif kind == "outcome":
                for code in self.graph.dependents_of_match(key):
                    self.enqueue_resolve(code)
            else:
                self._process_resolve(key)

    # -- blocks ----------------------------------------------------------

    def block_complete(self, block: Block) -> bool:
        for match in self.matches_by_code.values():
            if match.block_id != block.id:
                continue
            template = self.templates.get(match.match_code)
            if template is not None and template.is_bye:
                continue
            if not _settled(match):
                return False
        return True

    def standings_for(self, block: Block) -> BlockStandings:
        if block.id not in self.standings:
            self.standings[block.id] = self.engine.compute_standings(self.tournament, block, self.templates, self.report)
        return self.standings[block.id]

    def _process_block(self, block_id: int) -> None:
        block = self.blocks_by_id.get(block_id)
        if block is None:
            return
        self.standings.pop(block_id, None)
        standings = self.standings_for(block)
        if block.team_rankings != standings.to_cache():
            self.store.apply_standings(block.id, standings)
            self.report.block_changed(block.id)
            logger.info("Standings of block %s (%s) updated", block.name, block.id)
        if standings.irreducible_groups and not standings.manual and self.block_complete(block):
            for group in standings.irreducible_groups:
                logger.warning("Block %s needs a manual ranking: teams %s remain tied", block.name, list(group))
                self.report.add_issue(
                    Issue(
                        "manual_ranking_required",
                        f"Teams {list(group)} of block {block.name} remain tied after every tie-break rule",
                        block_id=block.id,
                    )
                )
        for code in self.graph.dependents_of_block(block.name):
            self.enqueue_resolve(code)

    # -- slots -----------------------------------------------------------

    def _source_state(self, match_code: str) -> Optional[SourceMatchState]:
        match = self.matches_by_code.get(match_code)
        if match is None:
            return None
        if match.status == MatchStatus.confirmed.value or _is_walkover(match):
            return SourceMatchState(
                match_code=match_code,
                confirmed=True,
                winner_team_id=match.winner_team_id,
                loser_team_id=match.loser_team_id,
            )
        return SourceMatchState(
            match_code=match_code,
            confirmed=False,
            cancelled=match.status == MatchStatus.cancelled.value,
        )

    def context_for(self, refs: Sequence[SlotRef]) -> ResolutionContext:
        ctx = ResolutionContext(
            seeds=self.seeds,
            overrides=self.overrides,
            require_block_completion=self.tournament.require_block_completion,
        )
        standings: Dict[str, BlockStandings] = {}
        sizes: Dict[str, int] = {}
        complete: Set[str] = set()
        states: Dict[str, SourceMatchState] = {}
        for ref in refs:
            if ref.key in self.overrides:
                continue
            block_name = getattr(ref, "block", None)
            if block_name is not None and block_name in self.blocks_by_name:
                block = self.blocks_by_name[block_name]
                standings[block_name] = self.standings_for(block)
                sizes[block_name] = len(standings[block_name].rows)
                if self.block_complete(block):
                    complete.add(block_name)
            if isinstance(ref, (MatchWinner, MatchLoser)):
                state = self._source_state(ref.match_code)
                if state is not None:
                    states[ref.match_code] = state
        ctx.standings = standings
        ctx.block_sizes = sizes
        ctx.complete_blocks = complete
        ctx.match_states = states
        return ctx

    def outcome_of(self, ref: SlotRef) -> SlotOutcome:
        outcome = resolve_slot(ref, self.context_for([ref]))
        self.report.slots[outcome.key] = outcome
        if outcome.status == SlotStatus.pending and outcome.code == AmbiguousTieError.code:
            logger.warning("Slot %s pending manual ranking: %s", outcome.key, outcome.reason)
            self.report.add_issue(Issue(AmbiguousTieError.code, outcome.reason or "", slot_key=outcome.key))
        elif outcome.status == SlotStatus.error:
            logger.warning("Slot %s cannot resolve: %s", outcome.key, outcome.reason)
            self.report.add_issue(Issue(InconsistentStateError.code, outcome.reason or "", slot_key=outcome.key))
        return outcome

    def _process_resolve(self, match_code: str) -> None:
        match = self.matches_by_code.get(match_code)
        entry = self.graph.sources.get(match_code)
        if match is None or entry is None:
            return
        slots = [
            ParticipantSlot(
                match_id=match.id,
                match_code=match.match_code,
                side=side,
                ref=ref,
                current_team_id=match.participant(side),
                locked=_has_result(match),
            )
            for side, ref in entry.refs()
        ]
        outcomes = {slot.ref.key: self.outcome_of(slot.ref) for slot in slots}
        changes, blocked = plan_assignments(slots, outcomes)

        for change in blocked:
            message = (
                f"Match {change.match_code} side {change.side.upper()} would change from "
                f"{change.old_team_id} to {change.new_team_id}, but the match already has a result"
            )
            logger.warning(message)
            self.report.add_issue(Issue("participant_locked", message, match_id=change.match_id, slot_key=change.slot_key))

        if not changes:
            return
        for change in changes:
            self.store.apply_participant(change.match_id, change.side, change.new_team_id)
            logger.info(
                "Match %s side %s: %s -> %s (%s)",
                change.match_code,
                change.side.upper(),
                change.old_team_id,
                change.new_team_id,
                change.slot_key,
            )
        self.report.match_changed(match.id)
        if not self.store.has_explicit_members(match.block_id):
            self.enqueue_block(match.block_id)


class ProgressionEngine:
    def __init__(self, store: SqlMatchResultStore):
        self.store = store

    # ------------------------------------------------------------------
    # Standings
    # ------------------------------------------------------------------

    def compute_standings(
        self,
        tournament: Tournament,
        block: Block,
        templates=None,
        report: Optional[CascadeReport] = None,
        apply_manual: bool = True,
    ) -> BlockStandings:
        """Fresh standings for one block, with its manual ranking applied when still valid."""
        templates = templates if templates is not None else self.store.templates(tournament.id)
        members = self.store.block_members(block.id)
        results = self.store.confirmed_results(block.id)
        point_system = PointSystem(tournament.win_points, tournament.draw_points, tournament.loss_points)
        walkover = WalkoverScore(tournament.walkover_winner_goals, tournament.walkover_loser_goals)

        placements = [
            PlacementRule(
                match_code=t.match_code,
                execution_priority=t.execution_priority,
                winner_position=t.winner_position,
                loser_position_start=t.loser_position_start,
                loser_position_end=t.loser_position_end,
            )
            for t in templates.values()
            if t.block_name == block.name and (t.winner_position is not None or t.loser_position_start is not None)
        ]
        if placements:
            standings = calculate_placement_standings(block.id, members, results, placements, point_system, walkover)
        else:
            standings = calculate_standings(
                block.id,
                members,
                results,
                point_system=point_system,
                walkover=walkover,
                rules=effective_rules(block.tie_breaking_rules, tournament.sport_code),
                tie_policy=TiePolicy(tournament.tie_policy),
            )

        if report is not None:
            for match_id in standings.skipped_match_ids:
                report.add_issue(
                    Issue(
                        InconsistentStateError.code,
                        f"Result of match {match_id} skipped: it is inconsistent with block {block.name}",
                        block_id=block.id,
                        match_id=match_id,
                    )
                )

        if apply_manual and block.manual_ranking is not None:
            try:
                standings = apply_manual_order(standings, block.manual_ranking)
            except ValidationError as exc:
                logger.warning("Manual ranking of block %s no longer matches its teams: %s", block.name, exc.message)
                if report is not None:
                    report.add_issue(Issue("stale_manual_ranking", exc.message, block_id=block.id))
        return standings

    def block_standings(self, block_id: int) -> BlockStandings:
        block = self.store.block(block_id)
        tournament = self.store.tournament(block.tournament_id)
        return self.compute_standings(tournament, block)

    # ------------------------------------------------------------------
    # Cascade plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _cascade(self, tournament_id: int, operation: str) -> Iterator[_Cascade]:
        self.store.tournament(tournament_id)
        with self.store.locked(tournament_id, holder=operation):
            report = CascadeReport(tournament_id=tournament_id, operation=operation)
            try:
                cascade = _Cascade(self, self.store.tournament(tournament_id), report)
                yield cascade
                cascade.run()
                self.store.commit()
            except ProgressionError:
                self.store.rollback()
                raise
            except Exception:
                logger.exception("Cascade %s on tournament %s failed; rolled back", operation, tournament_id)
                self.store.rollback()
                raise
        logger.info(
            "Cascade %s on tournament %s: %s blocks, %s matches changed, %s issues",
            operation,
            tournament_id,
            len(report.changed_blocks),
            len(report.changed_matches),
            len(report.issues),
        )

    def _live_match(self, cascade: _Cascade, match_id: int) -> Match:
        for match in cascade.matches_by_code.values():
            if match.id == match_id:
                return match
        raise NotFoundError(f"Match {match_id} not found")

    def _tournament_of_match(self, match_id: int) -> int:
        return self.store.match(match_id).tournament_id

    def _tournament_of_block(self, block_id: int) -> int:
        return self.store.block(block_id).tournament_id

    def _require_participants(self, match: Match) -> None:
        if match.team_a_id is None or match.team_b_id is None:
            raise InvalidTransitionError(
                f"Match {match.match_code} does not have both participants yet",
                code="participants_unresolved",
            )
        if self.store.has_explicit_members(match.block_id):
            members = set(self.store.block_members(match.block_id))
            outsiders = [t for t in (match.team_a_id, match.team_b_id) if t not in members]
            if outsiders:
                raise ValidationError(
                    f"Teams {outsiders} are not members of the block of match {match.match_code}",
                    code="team_not_in_block",
                )

    def _require_status(self, match: Match, allowed: Sequence[MatchStatus], action: str) -> None:
        if match.status not in {s.value for s in allowed}:
            raise InvalidTransitionError(
                f"Cannot {action} match {match.match_code} from status '{match.status}'",
                context={"match_id": match.id, "status": match.status},
            )

    def _write_score(self, match: Match, score: ScoreEntry) -> None:
        goals_a, goals_b, score_json = score.totals()
        pk_a, pk_b = score.team_a_pk, score.team_b_pk
        if (pk_a is None) != (pk_b is None):
            raise ValidationError("Penalty shootout needs both sides", code="invalid_score")
        if pk_a is not None:
            if goals_a != goals_b:
                raise ValidationError("A penalty shootout only decides a level match", code="invalid_score")
            if pk_a == pk_b or pk_a < 0 or pk_b < 0:
                raise ValidationError("A penalty shootout needs a winner", code="invalid_score")

        if goals_a != goals_b:
            winner = match.team_a_id if goals_a > goals_b else match.team_b_id
        elif pk_a is not None:
            winner = match.team_a_id if pk_a > pk_b else match.team_b_id
        else:
            winner = None

        self.store.update(
            match,
            team_a_goals=goals_a,
            team_b_goals=goals_b,
            team_a_pk=pk_a,
            team_b_pk=pk_b,
            score_json=score_json,
            winner_team_id=winner,
            is_draw=winner is None,
            is_walkover=False,
        )

    def _clear_result(self, match: Match) -> None:
        self.store.update(
            match,
            team_a_goals=None,
            team_b_goals=None,
            team_a_pk=None,
            team_b_pk=None,
            score_json=None,
            winner_team_id=None,
            is_draw=False,
            is_walkover=False,
            confirmed_at=None,
        )

    def _settle(self, cascade: _Cascade, match: Match) -> None:
        cascade.report.match_changed(match.id)
        cascade.enqueue_block(match.block_id)
        cascade.enqueue_outcome(match.match_code)

    # ------------------------------------------------------------------
    # Match lifecycle
    # ------------------------------------------------------------------

    def record_result(self, match_id: int, score: ScoreEntry) -> CascadeReport:
        """Enter a result without confirming it; standings are untouched."""
        with self._cascade(self._tournament_of_match(match_id), "record_result") as cascade:
            match = self._live_match(cascade, match_id)
            self._require_status(match, (MatchStatus.scheduled, MatchStatus.completed_unconfirmed), "record a result for")
            self._require_participants(match)
            self._write_score(match, score)
            self.store.update(match, status=MatchStatus.completed_unconfirmed.value)
            cascade.report.match_changed(match.id)
        return cascade.report

    def confirm_match(self, match_id: int, score: Optional[ScoreEntry] = None) -> CascadeReport:
        with self._cascade(self._tournament_of_match(match_id), "confirm") as cascade:
            match = self._live_match(cascade, match_id)
            self._require_status(match, (MatchStatus.scheduled, MatchStatus.completed_unconfirmed), "confirm")
            self._require_participants(match)
            if score is not None:
                self._write_score(match, score)
            elif match.status == MatchStatus.scheduled.value or match.team_a_goals is None:
                raise ValidationError(f"Match {match.match_code} has no result to confirm", code="invalid_score")
            self.store.update(match, status=MatchStatus.confirmed.value, confirmed_at=datetime.utcnow())
            logger.info("Match %s confirmed", match.match_code)
            self._settle(cascade, match)
        return cascade.report

    def unconfirm_match(self, match_id: int) -> CascadeReport:
        """Back to completed_unconfirmed; the entered score is kept."""
        with self._cascade(self._tournament_of_match(match_id), "unconfirm") as cascade:
            match = self._live_match(cascade, match_id)
            self._require_status(match, (MatchStatus.confirmed,), "unconfirm")
            self.store.update(match, status=MatchStatus.completed_unconfirmed.value, confirmed_at=None)
            logger.info("Match %s unconfirmed", match.match_code)
            self._settle(cascade, match)
        return cascade.report

    def cancel_match(self, match_id: int, policy: CancellationType = CancellationType.void) -> CascadeReport:
        policy = CancellationType(policy)
        with self._cascade(self._tournament_of_match(match_id), "cancel") as cascade:
            match = self._live_match(cascade, match_id)
            self._require_status(
                match,
                (MatchStatus.scheduled, MatchStatus.completed_unconfirmed, MatchStatus.confirmed),
                "cancel",
            )
            if policy.is_walkover or policy == CancellationType.both_absent:
                self._require_participants(match)
            self._clear_result(match)
            winner = None
            if policy == CancellationType.team_a_absent:
                winner = match.team_b_id
            elif policy == CancellationType.team_b_absent:
                winner = match.team_a_id
            self.store.update(
                match,
                status=MatchStatus.cancelled.value,
                cancellation_type=policy.value,
                winner_team_id=winner,
                is_walkover=policy.is_walkover,
            )
            logger.info("Match %s cancelled (%s)", match.match_code, policy.value)
            self._settle(cascade, match)
        return cascade.report

    def uncancel_match(self, match_id: int) -> CascadeReport:
        with self._cascade(self._tournament_of_match(match_id), "uncancel") as cascade:
            match = self._live_match(cascade, match_id)
            self._require_status(match, (MatchStatus.cancelled,), "uncancel")
            self._clear_result(match)
            self.store.update(match, status=MatchStatus.scheduled.value, cancellation_type=None)
            logger.info("Match %s uncancelled", match.match_code)
            self._settle(cascade, match)
        return cascade.report

    # ------------------------------------------------------------------
    # Standings overrides
    # ------------------------------------------------------------------

    def recalculate_block(self, block_id: int, force_override_clear: bool = False) -> CascadeReport:
        with self._cascade(self._tournament_of_block(block_id), "recalculate_block") as cascade:
            block = cascade.blocks_by_id[block_id]
            if block.manual_ranking is not None:
                if not force_override_clear:
                    raise ValidationError(
                        f"Block {block.name} has a manual ranking; force the recalculation to clear it",
                        code="manual_override_active",
                    )
                self.store.update(block, manual_ranking=None, manual_ranking_forced=False)
                logger.info("Manual ranking of block %s cleared by forced recalculation", block.name)
            cascade.enqueue_block(block.id)
            for code in cascade.graph.codes_by_block.get(block.name, ()):
                cascade.enqueue_resolve(code)
        return cascade.report

    def set_manual_standings(self, block_id: int, ranked_team_ids: Sequence[int], forced: bool = False) -> CascadeReport:
        with self._cascade(self._tournament_of_block(block_id), "set_manual_standings") as cascade:
            block = cascade.blocks_by_id[block_id]
            computed = self.compute_standings(cascade.tournament, block, cascade.templates, apply_manual=False)
            apply_manual_order(computed, list(ranked_team_ids))
            self.store.update(block, manual_ranking=list(ranked_team_ids), manual_ranking_forced=forced)
            logger.info("Manual ranking set on block %s: %s", block.name, list(ranked_team_ids))
            cascade.enqueue_block(block.id)
        return cascade.report

    def clear_manual_standings(self, block_id: int) -> CascadeReport:
        with self._cascade(self._tournament_of_block(block_id), "clear_manual_standings") as cascade:
            block = cascade.blocks_by_id[block_id]
            if block.manual_ranking is None:
                raise NotFoundError(f"Block {block.name} has no manual ranking")
            self.store.update(block, manual_ranking=None, manual_ranking_forced=False)
            logger.info("Manual ranking cleared on block %s", block.name)
            cascade.enqueue_block(block.id)
        return cascade.report

    # ------------------------------------------------------------------
    # Promotion / source overrides
    # ------------------------------------------------------------------

    def set_manual_promotion_override(
        self,
        tournament_id: int,
        slot_key: str,
        team_id: int,
        forced: bool = False,
        reason: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> CascadeReport:
        ref = parse_source(slot_key)
        with self._cascade(tournament_id, "set_promotion_override") as cascade:
            if team_id not in {t.id for t in self.store.teams(tournament_id)}:
                raise NotFoundError(f"Team {team_id} is not part of tournament {tournament_id}")
            existing = self.store.promotion_overrides(tournament_id).get(ref.key)
            if existing is None:
                self.store.insert(
                    PromotionOverride(
                        tournament_id=tournament_id,
                        slot_key=ref.key,
                        team_id=team_id,
                        forced=forced,
                        reason=reason,
                        created_by=created_by,
                    )
                )
            else:
                self.store.update(existing, team_id=team_id, forced=forced, reason=reason, created_by=created_by)
            cascade.overrides[ref.key] = team_id
            logger.info("Promotion override %s -> team %s set on tournament %s", ref.key, team_id, tournament_id)
            for code in cascade.graph.dependents_of_slot(ref.key):
                cascade.enqueue_resolve(code)
        return cascade.report

    def clear_manual_promotion_override(self, tournament_id: int, slot_key: str) -> CascadeReport:
        ref = parse_source(slot_key)
        with self._cascade(tournament_id, "clear_promotion_override") as cascade:
            existing = self.store.promotion_overrides(tournament_id).get(ref.key)
            if existing is None:
                raise NotFoundError(f"No promotion override for slot {ref.key}")
            self.store.delete(existing)
            cascade.overrides.pop(ref.key, None)
            logger.info("Promotion override %s cleared on tournament %s", ref.key, tournament_id)
            for code in cascade.graph.dependents_of_slot(ref.key):
                cascade.enqueue_resolve(code)
        return cascade.report

    def set_source_override(
        self,
        tournament_id: int,
        match_code: str,
        team_a_source: Optional[str] = None,
        team_b_source: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> CascadeReport:
        if team_a_source is None and team_b_source is None:
            raise ValidationError("A source override needs at least one side", code="missing_source")
        for raw in (team_a_source, team_b_source):
            if raw is not None:
                parse_source(raw)

        with self._cascade(tournament_id, "set_source_override") as cascade:
            if match_code not in cascade.matches_by_code:
                raise NotFoundError(f"Match {match_code} not found in tournament {tournament_id}")
            existing = self.store.source_overrides(tournament_id).get(match_code)
            if existing is None:
                self.store.insert(
                    MatchSourceOverride(
                        tournament_id=tournament_id,
                        match_code=match_code,
                        team_a_source=team_a_source,
                        team_b_source=team_b_source,
                        reason=reason,
                    )
                )
            else:
                self.store.update(existing, team_a_source=team_a_source, team_b_source=team_b_source, reason=reason)
            cascade.graph = build_graph(self.store, tournament_id)
            cascade.graph.validate()
            logger.info("Source override on %s: A=%s B=%s", match_code, team_a_source, team_b_source)
            cascade.enqueue_resolve(match_code)
        return cascade.report

    def clear_source_override(self, tournament_id: int, match_code: str) -> CascadeReport:
        with self._cascade(tournament_id, "clear_source_override") as cascade:
            existing = self.store.source_overrides(tournament_id).get(match_code)
            if existing is None:
                raise NotFoundError(f"No source override for match {match_code}")
            self.store.delete(existing)
            cascade.graph = build_graph(self.store, tournament_id)
            logger.info("Source override on %s cleared", match_code)
            cascade.enqueue_resolve(match_code)
        return cascade.report

    # ------------------------------------------------------------------
    # Repair / inspection
    # ------------------------------------------------------------------

    def recalculate_tournament(self, tournament_id: int, discard_overrides: bool = False) -> CascadeReport:
        """Recompute every block and slot. Only discards non-forced overrides, and only on request."""
        with self._cascade(tournament_id, "recalculate_tournament") as cascade:
            if discard_overrides:
                for key, override in sorted(self.store.promotion_overrides(tournament_id).items()):
                    if not override.forced:
                        self.store.delete(override)
                        cascade.overrides.pop(key, None)
                for block in cascade.blocks_by_id.values():
                    if block.manual_ranking is not None and not block.manual_ranking_forced:
                        self.store.update(block, manual_ranking=None)
                logger.info("Non-forced overrides discarded on tournament %s", tournament_id)

            graph = cascade.graph
            ordered_blocks = graph.block_order()
            for code in graph.topological_codes():
                cascade.enqueue_resolve(code)
            for name in ordered_blocks:
                block = cascade.blocks_by_name.get(name)
                if block is not None:
                    cascade.enqueue_block(block.id)
            for block_id in sorted(cascade.blocks_by_id):
                cascade.enqueue_block(block_id)
        return cascade.report

    def slot_overview(self, tournament_id: int) -> List[SlotOutcome]:
        """Current outcome of every slot referenced by the tournament. Read-only."""
        tournament = self.store.tournament(tournament_id)
        report = CascadeReport(tournament_id=tournament_id, operation="slot_overview")
        cascade = _Cascade(self, tournament, report)
        return [cascade.outcome_of(ref) for ref in cascade.graph.all_refs()]

    def progress(self, tournament_id: int) -> TournamentProgress:
        tournament = self.store.tournament(tournament_id)
        templates = self.store.templates(tournament_id)
        byes = {code for code, t in templates.items() if t.is_bye}
        matches = [m for m in self.store.matches(tournament_id) if m.match_code not in byes]
        confirmed = sum(1 for m in matches if m.status == MatchStatus.confirmed.value)
        cancelled = sum(1 for m in matches if m.status == MatchStatus.cancelled.value)

        blocks = []
        for block in self.store.blocks(tournament_id):
            own = [m for m in matches if m.block_id == block.id]
            settled = sum(1 for m in own if _settled(m))
            blocks.append(
                {
                    "block_id": block.id,
                    "name": block.name,
                    "total_matches": len(own),
                    "settled_matches": settled,
                    "is_complete": settled == len(own),
                }
            )
        return TournamentProgress(
            tournament_id=tournament.id,
            total_matches=len(matches),
            confirmed_matches=confirmed,
            cancelled_matches=cancelled,
            remaining_matches=len(matches) - confirmed - cancelled,
            is_complete=bool(matches) and confirmed + cancelled == len(matches),
            blocks=blocks,
        )
