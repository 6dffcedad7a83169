"""
Promotion Resolver

Turns symbolic participant references into concrete teams once their source is settled,
and plans the participant writes for every dependent match.

Resolution rules:
  Seed(n)              → the team holding seed n
  BlockPosition(B, n)  → the single team ranked n in block B's current standings; pending
                         while B is incomplete (when required) or rank n sits inside a tie
  MatchWinner/Loser(M) → winner/loser of M once M is confirmed with a single winner; a draw
                         with no decider stays pending

A tournament-scoped manual override beats all of the above on every recomputation.
Resolution is a pure function of its context: the same inputs always give the same
assignment, independent of the order slots are evaluated in.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from app.services.errors import AmbiguousTieError, InconsistentStateError
from app.services.placeholders import BlockPosition, MatchLoser, MatchWinner, Seed, SlotRef
from app.services.standings_calculator import BlockStandings


class SlotStatus(str, Enum):
    resolved = "resolved"
    pending = "pending"
    error = "error"


@dataclass(frozen=True)
class SlotOutcome:
    key: str
    status: SlotStatus
    description: str
    team_id: Optional[int] = None
    overridden: bool = False
    code: Optional[str] = None  # reason code when pending/error
    reason: Optional[str] = None
    candidates: tuple = ()  # tied teams when pending on an ambiguous tie

    @property
    def is_resolved(self) -> bool:
        return self.status == SlotStatus.resolved

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "status": self.status.value,
            "description": self.description,
            "team_id": self.team_id,
            "overridden": self.overridden,
            "code": self.code,
            "reason": self.reason,
            "candidates": list(self.candidates),
        }


@dataclass(frozen=True)
class SourceMatchState:
    """What a dependent slot needs to know about its source match."""

    match_code: str
    confirmed: bool
    winner_team_id: Optional[int] = None
    loser_team_id: Optional[int] = None
    cancelled: bool = False


@dataclass
class ResolutionContext:
    standings: Mapping[str, BlockStandings] = field(default_factory=dict)  # by block name
    block_sizes: Mapping[str, int] = field(default_factory=dict)
    complete_blocks: Set[str] = field(default_factory=set)
    match_states: Mapping[str, SourceMatchState] = field(default_factory=dict)  # by match code
    seeds: Mapping[int, int] = field(default_factory=dict)  # seed -> team id
    overrides: Mapping[str, int] = field(default_factory=dict)  # slot key -> team id
    require_block_completion: bool = True


@dataclass(frozen=True)
class ParticipantSlot:
    """One side of one match whose participant comes from ``ref``."""

    match_id: int
    match_code: str
    side: str  # "a" | "b"
    ref: SlotRef
    current_team_id: Optional[int]
    locked: bool = False  # match already has a result; its participants must not move


@dataclass(frozen=True)
class ParticipantChange:
    match_id: int
    match_code: str
    side: str
    old_team_id: Optional[int]
    new_team_id: Optional[int]
    slot_key: str


def _pending(ref: SlotRef, code: str, reason: str, candidates: Iterable[int] = ()) -> SlotOutcome:
    return SlotOutcome(
        key=ref.key,
        status=SlotStatus.pending,
        description=ref.describe(),
        code=code,
        reason=reason,
        candidates=tuple(sorted(candidates)),
    )


def _error(ref: SlotRef, reason: str) -> SlotOutcome:
    return SlotOutcome(
        key=ref.key,
        status=SlotStatus.error,
        description=ref.describe(),
        code=InconsistentStateError.code,
        reason=reason,
    )


def _resolved(ref: SlotRef, team_id: int, overridden: bool = False) -> SlotOutcome:
    return SlotOutcome(
        key=ref.key,
        status=SlotStatus.resolved,
        description=ref.describe(),
        team_id=team_id,
        overridden=overridden,
    )


def _resolve_block_position(ref: BlockPosition, ctx: ResolutionContext) -> SlotOutcome:
    standings = ctx.standings.get(ref.block)
    if standings is None:
        return _error(ref, f"Block {ref.block} does not exist")

    complete = ref.block in ctx.complete_blocks or standings.manual
    if ctx.require_block_completion and not complete:
        return _pending(ref, "block_incomplete", f"Block {ref.block} still has matches to play")

    # Blocks fed by upstream slots only learn their teams as those slots resolve
    size = ctx.block_sizes.get(ref.block, len(standings.rows))
    if ref.position > size:
        if complete and size:
            return _error(ref, f"Block {ref.block} has only {size} teams")
        return _pending(ref, "rank_undecided", f"Block {ref.block} has {size} known teams so far")

    holders = standings.teams_at_rank(ref.position)
    if len(holders) == 1:
        return _resolved(ref, holders[0])

    tied = holders or standings.group_spanning(ref.position)
    if len(tied) > 1:
        return _pending(
            ref,
            AmbiguousTieError.code,
            f"Rank {ref.position} of block {ref.block} is shared by {len(tied)} teams; manual ranking required",
            candidates=tied,
        )
    return _pending(ref, "rank_undecided", f"No team holds rank {ref.position} of block {ref.block} yet")


def _resolve_match_outcome(ref, ctx: ResolutionContext) -> SlotOutcome:
    state = ctx.match_states.get(ref.match_code)
    if state is None:
        return _error(ref, f"Source match {ref.match_code} does not exist")
    if not state.confirmed:
        if state.cancelled:
            return _pending(ref, "source_cancelled", f"Match {ref.match_code} was cancelled without a walkover")
        return _pending(ref, "source_unconfirmed", f"Match {ref.match_code} is not confirmed")

    team_id = state.winner_team_id if isinstance(ref, MatchWinner) else state.loser_team_id
    if team_id is None:
        return _pending(ref, "no_decider", f"Match {ref.match_code} ended level without a decider")
    return _resolved(ref, team_id)


def resolve_slot(ref: SlotRef, ctx: ResolutionContext) -> SlotOutcome:
    override = ctx.overrides.get(ref.key)
    if override is not None:
        return _resolved(ref, override, overridden=True)

    if isinstance(ref, Seed):
        team_id = ctx.seeds.get(ref.seed)
        if team_id is None:
            return _error(ref, f"No team holds seed {ref.seed}")
        return _resolved(ref, team_id)
    if isinstance(ref, BlockPosition):
        return _resolve_block_position(ref, ctx)
    if isinstance(ref, (MatchWinner, MatchLoser)):
        return _resolve_match_outcome(ref, ctx)
    raise TypeError(f"Unknown slot reference {ref!r}")


def resolve_slots(refs: Iterable[SlotRef], ctx: ResolutionContext) -> Dict[str, SlotOutcome]:
    return {ref.key: resolve_slot(ref, ctx) for ref in sorted(set(refs), key=lambda r: r.key)}


def plan_assignments(
    slots: Iterable[ParticipantSlot],
    outcomes: Mapping[str, SlotOutcome],
) -> tuple:
    """Compare each participant with its slot outcome.

    Returns (changes, blocked): resolved slots write their team, unresolved slots revert the
    participant to its placeholder (None). Locked participants are never rewritten; a
    disagreement there is returned in ``blocked`` for operator attention.
    """
    changes: List[ParticipantChange] = []
    blocked: List[ParticipantChange] = []
    for slot in sorted(slots, key=lambda s: (s.match_code, s.side)):
        outcome = outcomes.get(slot.ref.key)
        if outcome is None:
            continue
        target = outcome.team_id if outcome.is_resolved else None
        if target == slot.current_team_id:
            continue
        change = ParticipantChange(
            match_id=slot.match_id,
            match_code=slot.match_code,
            side=slot.side,
            old_team_id=slot.current_team_id,
            new_team_id=target,
            slot_key=slot.ref.key,
        )
        if slot.locked:
            blocked.append(change)
        else:
            changes.append(change)
    return changes, blocked
