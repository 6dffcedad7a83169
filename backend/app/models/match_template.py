from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.format import Format


class MatchTemplate(SQLModel, table=True):
    """Static definition of one match within a format. Immutable once a tournament uses it."""

    __table_args__ = (SAUniqueConstraint("format_id", "match_code", name="uq_template_format_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    format_id: int = Field(foreign_key="format.id", index=True)
    match_code: str
    block_name: str
    phase: str = Field(default="preliminary")  # "preliminary" | "final"
    round_label: Optional[str] = Field(default=None)

    # Participant sources: "SEED_3" | "A_1" | "M7_winner" | "M7_loser"
    team_a_source: str
    team_b_source: str
    # Optional display text overriding the generated placeholder description
    team_a_display_name: Optional[str] = Field(default=None)
    team_b_display_name: Optional[str] = Field(default=None)

    # Placement rules (knockout blocks): final rank given to winner / loser of this match
    winner_position: Optional[int] = Field(default=None)
    loser_position_start: Optional[int] = Field(default=None)
    loser_position_end: Optional[int] = Field(default=None)

    execution_priority: int = Field(default=0)
    is_bye: bool = Field(default=False)

    # Relationships
    format: "Format" = Relationship(back_populates="templates")
