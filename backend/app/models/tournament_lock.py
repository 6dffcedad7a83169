from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class TournamentLock(SQLModel, table=True):
    """Exclusivity token held for the duration of one progression cascade."""

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", unique=True)
    token: str
    holder: Optional[str] = None
    acquired_at: datetime = Field(default_factory=datetime.utcnow)
