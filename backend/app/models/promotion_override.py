from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class PromotionOverride(SQLModel, table=True):
    """Administrator assignment of a slot (e.g. "A_2", "M7_winner") to a team; beats automatic resolution."""

    __table_args__ = (SAUniqueConstraint("tournament_id", "slot_key", name="uq_promotion_override_slot"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    slot_key: str
    team_id: int = Field(foreign_key="team.id")
    forced: bool = Field(default=False)  # survives a full recalculation that discards overrides
    reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
