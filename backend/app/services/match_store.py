"""
Match Result Store

The narrow repository the progression engine works through. The engine itself holds no
persistent state; everything it reads or writes goes through this interface.

SqlMatchResultStore implements it on a SQLModel Session:
- reads see pending writes (autoflush), so one cascade observes its own changes
- writes are journaled as absolute values; a commit that fails on a transient
  OperationalError is rolled back and the journal replayed, never re-derived
- a per-tournament exclusivity token (TournamentLock row + in-process threading lock)
  serializes cascades on the same tournament
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional, Protocol

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select

from app.models.block import Block, BlockMember
from app.models.match import CancellationType, Match, MatchStatus
from app.models.match_source_override import MatchSourceOverride
from app.models.match_template import MatchTemplate
from app.models.promotion_override import PromotionOverride
from app.models.team import Team
from app.models.tournament import Tournament
from app.models.tournament_lock import TournamentLock
from app.services.errors import ConcurrencyConflictError, NotFoundError
from app.services.results import MatchResult
from app.services.standings_calculator import BlockStandings
from app.settings import PROGRESSION_LOCK_TTL_SECONDS, PROGRESSION_PERSIST_RETRIES

logger = logging.getLogger(__name__)


class MatchResultStore(Protocol):
    """What the progression engine needs from storage."""

    def confirmed_results(self, block_id: int) -> List[MatchResult]: ...

    def block_members(self, block_id: int) -> List[int]: ...

    def match_template(self, match_id: int) -> Optional[MatchTemplate]: ...

    def apply_participant(self, match_id: int, side: str, team_id: Optional[int]) -> None: ...

    def apply_standings(self, block_id: int, standings: BlockStandings) -> None: ...


# In-process serialization; the TournamentLock row covers other workers.
# Entries are reference counted (holder + waiters) and dropped when the last user leaves.
_thread_locks: Dict[int, List[Any]] = {}
_thread_locks_guard = threading.Lock()


def _thread_lock_for(tournament_id: int) -> threading.Lock:
    with _thread_locks_guard:
        entry = _thread_locks.get(tournament_id)
        if entry is None:
            entry = [threading.Lock(), 0]
            _thread_locks[tournament_id] = entry
        entry[1] += 1
        return entry[0]


def _forget_thread_lock(tournament_id: int) -> None:
    with _thread_locks_guard:
        entry = _thread_locks.get(tournament_id)
        if entry is None:
            return
        entry[1] -= 1
        if entry[1] <= 0:
            del _thread_locks[tournament_id]


@dataclass
class _Write:
    kind: str  # "update" | "insert" | "delete"
    model: type
    key: Any = None
    values: Dict[str, Any] = field(default_factory=dict)


class SqlMatchResultStore:
    def __init__(
        self,
        session: Session,
        lock_ttl_seconds: int = PROGRESSION_LOCK_TTL_SECONDS,
        persist_retries: int = PROGRESSION_PERSIST_RETRIES,
    ):
        self.session = session
        self.lock_ttl_seconds = lock_ttl_seconds
        self.persist_retries = max(1, persist_retries)
        self._journal: List[_Write] = []

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def tournament(self, tournament_id: int) -> Tournament:
        tournament = self.session.get(Tournament, tournament_id)
        if not tournament:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return tournament

    def match(self, match_id: int) -> Match:
        match = self.session.get(Match, match_id)
        if not match:
            raise NotFoundError(f"Match {match_id} not found")
        return match

    def block(self, block_id: int) -> Block:
        block = self.session.get(Block, block_id)
        if not block:
            raise NotFoundError(f"Block {block_id} not found")
        return block

    def blocks(self, tournament_id: int) -> List[Block]:
        return list(
            self.session.exec(select(Block).where(Block.tournament_id == tournament_id).order_by(Block.id)).all()
        )

    def matches(self, tournament_id: int) -> List[Match]:
        return list(
            self.session.exec(select(Match).where(Match.tournament_id == tournament_id).order_by(Match.id)).all()
        )

    def block_matches(self, block_id: int) -> List[Match]:
        return list(self.session.exec(select(Match).where(Match.block_id == block_id).order_by(Match.id)).all())

    def templates(self, tournament_id: int) -> Dict[str, MatchTemplate]:
        """Templates of the tournament's format, keyed by match code."""
        tournament = self.tournament(tournament_id)
        if tournament.format_id is None:
            return {}
        rows = self.session.exec(
            select(MatchTemplate).where(MatchTemplate.format_id == tournament.format_id).order_by(MatchTemplate.id)
        ).all()
        return {t.match_code: t for t in rows}

    def match_template(self, match_id: int) -> Optional[MatchTemplate]:
        match = self.match(match_id)
        if match.template_id is None:
            return None
        return self.session.get(MatchTemplate, match.template_id)

    def source_overrides(self, tournament_id: int) -> Dict[str, MatchSourceOverride]:
        rows = self.session.exec(
            select(MatchSourceOverride).where(MatchSourceOverride.tournament_id == tournament_id)
        ).all()
        return {r.match_code: r for r in rows}

    def promotion_overrides(self, tournament_id: int) -> Dict[str, PromotionOverride]:
        rows = self.session.exec(
            select(PromotionOverride).where(PromotionOverride.tournament_id == tournament_id)
        ).all()
        return {r.slot_key: r for r in rows}

    def teams(self, tournament_id: int) -> List[Team]:
        return list(self.session.exec(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.id)).all())

    def seeds(self, tournament_id: int) -> Dict[int, int]:
        return {t.seed: t.id for t in self.teams(tournament_id) if t.seed is not None}

    # ------------------------------------------------------------------
    # Collaborator interface
    # ------------------------------------------------------------------

    def block_members(self, block_id: int) -> List[int]:
        """Explicit BlockMember rows; otherwise the resolved participants of the block's matches."""
        members = self.session.exec(select(BlockMember.team_id).where(BlockMember.block_id == block_id)).all()
        if members:
            return sorted(set(members))
        participants = set()
        for match in self.block_matches(block_id):
            for team_id in (match.team_a_id, match.team_b_id):
                if team_id is not None:
                    participants.add(team_id)
        return sorted(participants)

    def has_explicit_members(self, block_id: int) -> bool:
        return self.session.exec(select(BlockMember.id).where(BlockMember.block_id == block_id)).first() is not None

    def confirmed_results(self, block_id: int) -> List[MatchResult]:
        """Confirmed results plus walkover / both-absent cancellations of one block."""
        results: List[MatchResult] = []
        for match in self.block_matches(block_id):
            result = self._result_for(match)
            if result is not None:
                results.append(result)
        return results

    def _result_for(self, match: Match) -> Optional[MatchResult]:
        if match.team_a_id is None or match.team_b_id is None:
            if match.status == MatchStatus.confirmed.value:
                logger.warning("Confirmed match %s (%s) has an unresolved participant", match.id, match.match_code)
            return None

        if match.status == MatchStatus.confirmed.value:
            return MatchResult(
                match_id=match.id,
                match_code=match.match_code,
                team_a_id=match.team_a_id,
                team_b_id=match.team_b_id,
                team_a_goals=match.team_a_goals or 0,
                team_b_goals=match.team_b_goals or 0,
                winner_team_id=match.winner_team_id,
                is_draw=match.is_draw,
                is_walkover=match.is_walkover,
            )

        if match.status == MatchStatus.cancelled.value and match.cancellation_type:
            kind = CancellationType(match.cancellation_type)
            if kind == CancellationType.both_absent:
                return MatchResult(
                    match_id=match.id,
                    match_code=match.match_code,
                    team_a_id=match.team_a_id,
                    team_b_id=match.team_b_id,
                    team_a_goals=0,
                    team_b_goals=0,
                    both_absent=True,
                )
            if kind.is_walkover:
                winner = match.team_b_id if kind == CancellationType.team_a_absent else match.team_a_id
                return MatchResult(
                    match_id=match.id,
                    match_code=match.match_code,
                    team_a_id=match.team_a_id,
                    team_b_id=match.team_b_id,
                    team_a_goals=0,
                    team_b_goals=0,
                    winner_team_id=winner,
                    is_walkover=True,
                )
        return None

    def apply_participant(self, match_id: int, side: str, team_id: Optional[int]) -> None:
        match = self.match(match_id)
        column = "team_a_id" if side == "a" else "team_b_id"
        self.update(match, **{column: team_id})

    def apply_standings(self, block_id: int, standings: BlockStandings) -> None:
        block = self.block(block_id)
        self.update(block, team_rankings=standings.to_cache(), rankings_updated_at=datetime.utcnow())

    # ------------------------------------------------------------------
    # Journaled writes
    # ------------------------------------------------------------------

    def update(self, obj: Any, **values: Any) -> None:
        for name, value in values.items():
            setattr(obj, name, value)
        self.session.add(obj)
        self._journal.append(_Write("update", type(obj), obj.id, dict(values)))

    def insert(self, obj: Any) -> Any:
        self.session.add(obj)
        self.session.flush()
        self._journal.append(_Write("insert", type(obj), obj.id, obj.model_dump()))
        return obj

    def delete(self, obj: Any) -> None:
        self._journal.append(_Write("delete", type(obj), obj.id))
        self.session.delete(obj)
        self.session.flush()

    def _replay(self) -> None:
        for write in self._journal:
            if write.kind == "insert":
                if self.session.get(write.model, write.key) is None:
                    self.session.add(write.model(**write.values))
            elif write.kind == "update":
                obj = self.session.get(write.model, write.key)
                if obj is not None:
                    for name, value in write.values.items():
                        setattr(obj, name, value)
                    self.session.add(obj)
            else:
                obj = self.session.get(write.model, write.key)
                if obj is not None:
                    self.session.delete(obj)
            self.session.flush()

    def commit(self) -> None:
        """Commit the cascade, replaying the journal on transient failure."""
        for attempt in range(1, self.persist_retries + 1):
            try:
                self.session.commit()
                self._journal.clear()
                return
            except OperationalError:
                self.session.rollback()
                if attempt == self.persist_retries:
                    self._journal.clear()
                    raise
                logger.warning("Transient failure committing cascade (attempt %s/%s); retrying", attempt, self.persist_retries)
                time.sleep(0.05 * attempt)
                self._replay()

    def rollback(self) -> None:
        self.session.rollback()
        self._journal.clear()

    # ------------------------------------------------------------------
    # Exclusivity token
    # ------------------------------------------------------------------

    @contextmanager
    def locked(self, tournament_id: int, holder: Optional[str] = None) -> Iterator[str]:
        """Hold the tournament's exclusivity token for the duration of one cascade."""
        thread_lock = _thread_lock_for(tournament_id)
        try:
            if not thread_lock.acquire(timeout=self.lock_ttl_seconds):
                raise ConcurrencyConflictError(
                    f"Tournament {tournament_id} is being recalculated; retry later",
                    context={"tournament_id": tournament_id},
                )
            try:
                token = self._acquire_row(tournament_id, holder)
                try:
                    yield token
                finally:
                    self._release_row(tournament_id, token)
            finally:
                thread_lock.release()
        finally:
            _forget_thread_lock(tournament_id)

    def _acquire_row(self, tournament_id: int, holder: Optional[str]) -> str:
        token = uuid.uuid4().hex
        self.session.add(TournamentLock(tournament_id=tournament_id, token=token, holder=holder))
        try:
            self.session.commit()
            return token
        except IntegrityError:
            self.session.rollback()

        existing = self.session.exec(select(TournamentLock).where(TournamentLock.tournament_id == tournament_id)).first()
        if existing is None:
            # Released between our insert and the lookup
            return self._acquire_row(tournament_id, holder)

        age = datetime.utcnow() - existing.acquired_at
        if age < timedelta(seconds=self.lock_ttl_seconds):
            raise ConcurrencyConflictError(
                f"Tournament {tournament_id} is locked by another operation; retry later",
                context={"tournament_id": tournament_id, "holder": existing.holder},
            )

        stale_token = existing.token
        result = self.session.execute(
            sa_update(TournamentLock)
            .where(TournamentLock.tournament_id == tournament_id, TournamentLock.token == stale_token)
            .values(token=token, holder=holder, acquired_at=datetime.utcnow())
        )
        self.session.commit()
        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"Tournament {tournament_id} lock was taken by another operation; retry later",
                context={"tournament_id": tournament_id},
            )
        logger.warning("Took over stale lock on tournament %s (held %.0fs by %s)", tournament_id, age.total_seconds(), existing.holder)
        return token

    def _release_row(self, tournament_id: int, token: str) -> None:
        self.session.rollback()
        self.session.execute(
            sa_delete(TournamentLock).where(TournamentLock.tournament_id == tournament_id, TournamentLock.token == token)
        )
        self.session.commit()

