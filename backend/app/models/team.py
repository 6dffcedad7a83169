from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.tournament import Tournament


class Team(SQLModel, table=True):
    __table_args__ = (
        # Seeds drive SEED_<n> template sources, so they must be unique per tournament
        SAUniqueConstraint("tournament_id", "seed", name="uq_tournament_seed"),
        SAUniqueConstraint("tournament_id", "name", name="uq_tournament_team_name"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    short_name: Optional[str] = Field(default=None)  # Display abbreviation
    seed: Optional[int] = Field(default=None)  # 1-based draw position
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="teams")

    @property
    def display_name(self) -> str:
        return self.short_name or self.name
