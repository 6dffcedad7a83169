"""
Block standings routes.
Standings are always recomputed from confirmed results; the cached copy on the block is
refreshed by every cascade but never served as the source of truth.
"""
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator

from app.routes.matches import get_engine
from app.services.progression_engine import ProgressionEngine
from app.services.tiebreak_rules import RULE_LABELS, effective_rules

router = APIRouter()


class ManualStandingsRequest(BaseModel):
    team_ids: List[int]  # best first
    forced: bool = False  # survives a full recalculation that discards overrides

    @field_validator("team_ids")
    @classmethod
    def validate_team_ids(cls, v):
        if not v:
            raise ValueError("team_ids must not be empty")
        return v


@router.get("/blocks/{block_id}/standings")
def get_standings(block_id: int, engine: ProgressionEngine = Depends(get_engine)):
    block = engine.store.block(block_id)
    tournament = engine.store.tournament(block.tournament_id)
    standings = engine.block_standings(block_id)
    rules = effective_rules(block.tie_breaking_rules, tournament.sport_code)
    return {
        "block_id": block.id,
        "name": block.name,
        "phase": block.phase,
        "manual": standings.manual,
        "requires_manual_ranking": standings.requires_manual_ranking and not standings.manual,
        "irreducible_groups": [list(g) for g in standings.irreducible_groups],
        "tie_breaking_rules": [
            {"type": r.type, "order": r.order, "label": RULE_LABELS.get(r.type, r.type)} for r in rules
        ],
        "rows": [row.to_dict() for row in standings.rows],
    }


@router.post("/blocks/{block_id}/recalculate")
def recalculate_block(
    block_id: int,
    force_override_clear: bool = False,
    engine: ProgressionEngine = Depends(get_engine),
):
    """Rebuild one block. Rejected (422) while a manual ranking is active unless forced."""
    return engine.recalculate_block(block_id, force_override_clear=force_override_clear).to_dict()


@router.put("/blocks/{block_id}/manual-standings")
def put_manual_standings(
    block_id: int,
    request: ManualStandingsRequest,
    engine: ProgressionEngine = Depends(get_engine),
):
    return engine.set_manual_standings(block_id, request.team_ids, forced=request.forced).to_dict()


@router.delete("/blocks/{block_id}/manual-standings")
def delete_manual_standings(block_id: int, engine: ProgressionEngine = Depends(get_engine)):
    return engine.clear_manual_standings(block_id).to_dict()
