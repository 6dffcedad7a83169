"""
Administrative override routes: slot (promotion) overrides, per-tournament source
overrides, slot overview and the full repair recalculation.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, model_validator

from app.routes.matches import get_engine
from app.services.progression_engine import ProgressionEngine

router = APIRouter()


class PromotionOverrideRequest(BaseModel):
    team_id: int
    forced: bool = False
    reason: Optional[str] = None
    created_by: Optional[str] = None


class SourceOverrideRequest(BaseModel):
    team_a_source: Optional[str] = None
    team_b_source: Optional[str] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_sides(self):
        if self.team_a_source is None and self.team_b_source is None:
            raise ValueError("provide team_a_source and/or team_b_source")
        return self


@router.put("/tournaments/{tournament_id}/promotion-overrides/{slot_key}")
def put_promotion_override(
    tournament_id: int,
    slot_key: str,
    request: PromotionOverrideRequest,
    engine: ProgressionEngine = Depends(get_engine),
):
    """Force a slot ("A_2", "M7_winner") to a team until cleared."""
    return engine.set_manual_promotion_override(
        tournament_id,
        slot_key,
        request.team_id,
        forced=request.forced,
        reason=request.reason,
        created_by=request.created_by,
    ).to_dict()


@router.delete("/tournaments/{tournament_id}/promotion-overrides/{slot_key}")
def delete_promotion_override(tournament_id: int, slot_key: str, engine: ProgressionEngine = Depends(get_engine)):
    return engine.clear_manual_promotion_override(tournament_id, slot_key).to_dict()


@router.put("/tournaments/{tournament_id}/source-overrides/{match_code}")
def put_source_override(
    tournament_id: int,
    match_code: str,
    request: SourceOverrideRequest,
    engine: ProgressionEngine = Depends(get_engine),
):
    return engine.set_source_override(
        tournament_id,
        match_code,
        team_a_source=request.team_a_source,
        team_b_source=request.team_b_source,
        reason=request.reason,
    ).to_dict()


@router.delete("/tournaments/{tournament_id}/source-overrides/{match_code}")
def delete_source_override(tournament_id: int, match_code: str, engine: ProgressionEngine = Depends(get_engine)):
    return engine.clear_source_override(tournament_id, match_code).to_dict()


@router.get("/tournaments/{tournament_id}/slots")
def get_slots(tournament_id: int, engine: ProgressionEngine = Depends(get_engine)):
    """Every slot referenced by the tournament with its status (resolved / pending / error)."""
    return [outcome.to_dict() for outcome in engine.slot_overview(tournament_id)]


@router.post("/tournaments/{tournament_id}/recalculate")
def recalculate_tournament(
    tournament_id: int,
    discard_overrides: bool = False,
    engine: ProgressionEngine = Depends(get_engine),
):
    """Full repair. Non-forced overrides are discarded only when discard_overrides is set."""
    return engine.recalculate_tournament(tournament_id, discard_overrides=discard_overrides).to_dict()
