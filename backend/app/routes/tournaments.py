from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.database import get_session
from app.models.format import Format
from app.models.team import Team
from app.models.tournament import Tournament
from app.routes.matches import get_engine
from app.services.format_loader import instantiate_tournament
from app.services.progression_engine import ProgressionEngine
from app.services.tie_breaker import TiePolicy
from app.services.tiebreak_rules import SPORT_RULE_TYPES

router = APIRouter()


class TournamentCreate(BaseModel):
    name: str
    sport_code: str = "soccer"
    format_id: Optional[int] = None
    win_points: int = 3
    draw_points: int = 1
    loss_points: int = 0
    walkover_winner_goals: int = 3
    walkover_loser_goals: int = 0
    tie_policy: Optional[str] = None
    require_block_completion: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("sport_code")
    @classmethod
    def validate_sport(cls, v):
        if v not in SPORT_RULE_TYPES:
            raise ValueError(f"sport_code must be one of {', '.join(sorted(SPORT_RULE_TYPES))}")
        return v

    @field_validator("tie_policy")
    @classmethod
    def validate_tie_policy(cls, v):
        if v is not None and v not in {p.value for p in TiePolicy}:
            raise ValueError("tie_policy must be 'manual' or 'lottery'")
        return v

    @model_validator(mode="after")
    def validate_points(self):
        if not self.win_points > self.draw_points >= self.loss_points:
            raise ValueError("points must satisfy win > draw >= loss")
        if self.walkover_winner_goals <= self.walkover_loser_goals:
            raise ValueError("walkover_winner_goals must exceed walkover_loser_goals")
        return self


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    sport_code: str
    format_id: Optional[int]
    status: str
    win_points: int
    draw_points: int
    loss_points: int
    walkover_winner_goals: int
    walkover_loser_goals: int
    tie_policy: str
    require_block_completion: bool
    created_at: datetime
    updated_at: datetime


class TeamCreateRequest(BaseModel):
    name: str
    short_name: Optional[str] = None
    seed: Optional[int] = None

    @field_validator("seed")
    @classmethod
    def validate_seed(cls, v):
        if v is not None and v < 1:
            raise ValueError("seed must be >= 1")
        return v


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    name: str
    short_name: Optional[str] = None
    seed: Optional[int] = None
    created_at: datetime


class InstantiateRequest(BaseModel):
    # Optional tie-break rules per block name: {"A": [{"type": "points", "order": 1}, ...]}
    block_rules: Optional[Dict[str, List[Dict[str, Any]]]] = None


def _get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    return session.exec(select(Tournament).order_by(Tournament.id)).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    """Create a tournament with its point system, walkover score and tie policy"""
    if tournament_data.format_id is not None and not session.get(Format, tournament_data.format_id):
        raise HTTPException(status_code=404, detail="Format not found")
    values = tournament_data.model_dump(exclude_none=True)
    tournament = Tournament(**values)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    """Get a tournament by ID"""
    return _get_tournament(session, tournament_id)


@router.post("/tournaments/{tournament_id}/teams", response_model=TeamResponse, status_code=201)
def create_team(tournament_id: int, request: TeamCreateRequest, session: Session = Depends(get_session)):
    _get_tournament(session, tournament_id)
    team = Team(tournament_id=tournament_id, **request.model_dump())
    try:
        session.add(team)
        session.commit()
        session.refresh(team)
        return team
    except IntegrityError as e:
        session.rollback()
        if "seed" in str(e):
            raise HTTPException(
                status_code=409, detail=f"Team with seed {request.seed} already exists for this tournament"
            )
        raise HTTPException(
            status_code=409, detail=f"Team with name '{request.name}' already exists for this tournament"
        )


@router.get("/tournaments/{tournament_id}/teams", response_model=List[TeamResponse])
def list_teams(tournament_id: int, session: Session = Depends(get_session)):
    _get_tournament(session, tournament_id)
    return session.exec(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.id)).all()


@router.post("/tournaments/{tournament_id}/instantiate")
def instantiate(
    tournament_id: int,
    request: Optional[InstantiateRequest] = None,
    session: Session = Depends(get_session),
):
    """
    Create blocks, members and matches from the tournament's format and resolve seeded slots.
    """
    report = instantiate_tournament(session, tournament_id, block_rules=request.block_rules if request else None)
    return report.to_dict()


@router.get("/tournaments/{tournament_id}/progress")
def get_progress(tournament_id: int, engine: ProgressionEngine = Depends(get_engine)):
    """Counts of confirmed / cancelled / remaining non-bye matches, overall and per block"""
    return engine.progress(tournament_id).to_dict()
