from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class MatchSourceOverride(SQLModel, table=True):
    """Per-tournament replacement of a template's participant source (withdrawals, re-routing)."""

    __table_args__ = (SAUniqueConstraint("tournament_id", "match_code", name="uq_source_override_match"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    match_code: str
    team_a_source: Optional[str] = Field(default=None)
    team_b_source: Optional[str] = Field(default=None)
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
