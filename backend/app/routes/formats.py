"""
Format API Routes
Formats are reusable sets of match templates; sources are validated when the format is created.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session, select

from app.database import get_session
from app.models.format import Format
from app.models.match_template import MatchTemplate
from app.services.format_loader import create_format

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class TemplateDefinition(BaseModel):
    match_code: str
    block_name: str
    phase: str = "preliminary"
    round_label: Optional[str] = None
    team_a_source: str
    team_b_source: str
    team_a_display_name: Optional[str] = None
    team_b_display_name: Optional[str] = None
    winner_position: Optional[int] = None
    loser_position_start: Optional[int] = None
    loser_position_end: Optional[int] = None
    execution_priority: int = 0
    is_bye: bool = False


class FormatCreateRequest(BaseModel):
    name: str
    description: Optional[str] = None
    templates: List[TemplateDefinition]


class TemplateResponse(TemplateDefinition):
    model_config = ConfigDict(from_attributes=True)

    id: int
    format_id: int


class FormatResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_at: datetime
    templates: List[TemplateResponse] = []


def _format_response(session: Session, fmt: Format) -> FormatResponse:
    templates = session.exec(
        select(MatchTemplate).where(MatchTemplate.format_id == fmt.id).order_by(MatchTemplate.id)
    ).all()
    return FormatResponse(
        id=fmt.id,
        name=fmt.name,
        description=fmt.description,
        created_at=fmt.created_at,
        templates=[TemplateResponse.model_validate(t) for t in templates],
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/formats", response_model=FormatResponse, status_code=201)
def post_format(request: FormatCreateRequest, session: Session = Depends(get_session)):
    """Create a format. Rejects unparseable sources, dangling references and cycles (422)."""
    fmt = create_format(
        session,
        name=request.name,
        description=request.description,
        templates=[t.model_dump() for t in request.templates],
    )
    return _format_response(session, fmt)


@router.get("/formats/{format_id}", response_model=FormatResponse)
def get_format(format_id: int, session: Session = Depends(get_session)):
    fmt = session.get(Format, format_id)
    if not fmt:
        raise HTTPException(status_code=404, detail="Format not found")
    return _format_response(session, fmt)
