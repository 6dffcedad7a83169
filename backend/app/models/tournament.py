from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

from app.settings import DEFAULT_TIE_POLICY

if TYPE_CHECKING:
    from app.models.block import Block
    from app.models.format import Format
    from app.models.match import Match
    from app.models.team import Team


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    sport_code: str = Field(default="soccer")  # selects the tie-break rule catalogue
    format_id: Optional[int] = Field(default=None, foreign_key="format.id")
    status: str = Field(default="planning")  # "planning" | "ongoing" | "completed"

    # Point system (per tournament, 3/1/0 unless configured)
    win_points: int = Field(default=3)
    draw_points: int = Field(default=1)
    loss_points: int = Field(default=0)

    # Score credited to each side of a walkover
    walkover_winner_goals: int = Field(default=3)
    walkover_loser_goals: int = Field(default=0)

    tie_policy: str = Field(default=DEFAULT_TIE_POLICY)  # "manual" | "lottery"
    # Block-position slots wait until every non-bye match of the block is confirmed/cancelled
    require_block_completion: bool = Field(default=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    format: Optional["Format"] = Relationship(back_populates="tournaments")
    teams: List["Team"] = Relationship(back_populates="tournament")
    blocks: List["Block"] = Relationship(back_populates="tournament")
    matches: List["Match"] = Relationship(back_populates="tournament")
