"""
Match lifecycle routes: enter, confirm, unconfirm, cancel and uncancel results.
Every mutating endpoint runs one progression cascade and returns its report.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, model_validator
from sqlmodel import Session

from app.database import get_session
from app.models.match import CancellationType
from app.services.match_store import SqlMatchResultStore
from app.services.progression_engine import ProgressionEngine, ScoreEntry, build_graph

router = APIRouter()


def get_engine(session: Session = Depends(get_session)) -> ProgressionEngine:
    return ProgressionEngine(SqlMatchResultStore(session))


class ScoreRequest(BaseModel):
    team_a_goals: Optional[int] = None
    team_b_goals: Optional[int] = None
    # Per-period score, summed: "1-0 0-1", or {"team_a": "1,0", "team_b": "0,1"}
    periods: Optional[Union[str, Dict[str, Any]]] = None
    team_a_pk: Optional[int] = None
    team_b_pk: Optional[int] = None

    @model_validator(mode="after")
    def validate_score(self):
        if self.periods is None and (self.team_a_goals is None or self.team_b_goals is None):
            raise ValueError("provide team_a_goals and team_b_goals, or periods")
        return self

    def to_entry(self) -> ScoreEntry:
        return ScoreEntry(
            team_a_goals=self.team_a_goals,
            team_b_goals=self.team_b_goals,
            team_a_pk=self.team_a_pk,
            team_b_pk=self.team_b_pk,
            periods=self.periods,
        )


class ConfirmRequest(BaseModel):
    score: Optional[ScoreRequest] = None


class CancelRequest(BaseModel):
    cancellation_type: CancellationType = CancellationType.void


class ParticipantView(BaseModel):
    team_id: Optional[int] = None
    label: str
    source: Optional[str] = None
    resolved: bool


class MatchView(BaseModel):
    id: int
    match_code: str
    block_id: int
    status: str
    cancellation_type: Optional[str] = None
    team_a: ParticipantView
    team_b: ParticipantView
    team_a_goals: Optional[int] = None
    team_b_goals: Optional[int] = None
    team_a_pk: Optional[int] = None
    team_b_pk: Optional[int] = None
    winner_team_id: Optional[int] = None
    is_draw: bool
    is_walkover: bool
    confirmed_at: Optional[datetime] = None


@router.post("/matches/{match_id}/result")
def record_result(match_id: int, request: ScoreRequest, engine: ProgressionEngine = Depends(get_engine)):
    """Enter a result without confirming it (status completed_unconfirmed)."""
    return engine.record_result(match_id, request.to_entry()).to_dict()


@router.post("/matches/{match_id}/confirm")
def confirm_match(
    match_id: int,
    request: Optional[ConfirmRequest] = None,
    engine: ProgressionEngine = Depends(get_engine),
):
    """Confirm the entered result (or the one supplied) and cascade standings and promotions."""
    score = request.score.to_entry() if request and request.score else None
    return engine.confirm_match(match_id, score).to_dict()


@router.post("/matches/{match_id}/unconfirm")
def unconfirm_match(match_id: int, engine: ProgressionEngine = Depends(get_engine)):
    return engine.unconfirm_match(match_id).to_dict()


@router.post("/matches/{match_id}/cancel")
def cancel_match(
    match_id: int,
    request: Optional[CancelRequest] = None,
    engine: ProgressionEngine = Depends(get_engine),
):
    policy = request.cancellation_type if request else CancellationType.void
    return engine.cancel_match(match_id, policy).to_dict()


@router.post("/matches/{match_id}/uncancel")
def uncancel_match(match_id: int, engine: ProgressionEngine = Depends(get_engine)):
    return engine.uncancel_match(match_id).to_dict()


@router.get("/tournaments/{tournament_id}/matches", response_model=List[MatchView])
def list_matches(tournament_id: int, engine: ProgressionEngine = Depends(get_engine)):
    """
    All matches of a tournament. Unresolved participants show their placeholder
    ("Winner of Match M7", "Block A 1st place") or the template's display name.
    """
    store = engine.store
    store.tournament(tournament_id)
    graph = build_graph(store, tournament_id)
    templates = store.templates(tournament_id)
    teams = {t.id: t for t in store.teams(tournament_id)}

    views = []
    for match in store.matches(tournament_id):
        entry = graph.sources.get(match.match_code)
        template = templates.get(match.match_code)
        sides = {}
        for side in ("a", "b"):
            team_id = match.participant(side)
            ref = getattr(entry, f"team_{side}", None) if entry else None
            if team_id is not None and team_id in teams:
                label = teams[team_id].display_name
            elif template is not None and getattr(template, f"team_{side}_display_name"):
                label = getattr(template, f"team_{side}_display_name")
            elif ref is not None:
                label = ref.describe()
            else:
                label = "TBD"
            sides[side] = ParticipantView(
                team_id=team_id,
                label=label,
                source=ref.key if ref is not None else None,
                resolved=team_id is not None,
            )
        views.append(
            MatchView(
                id=match.id,
                match_code=match.match_code,
                block_id=match.block_id,
                status=match.status,
                cancellation_type=match.cancellation_type,
                team_a=sides["a"],
                team_b=sides["b"],
                team_a_goals=match.team_a_goals,
                team_b_goals=match.team_b_goals,
                team_a_pk=match.team_a_pk,
                team_b_pk=match.team_b_pk,
                winner_team_id=match.winner_team_id,
                is_draw=match.is_draw,
                is_walkover=match.is_walkover,
                confirmed_at=match.confirmed_at,
            )
        )
    return views
