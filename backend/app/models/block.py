from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.tournament import Tournament


class Block(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "name", name="uq_tournament_block_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    phase: str = Field(default="preliminary")  # "preliminary" | "final"

    # Ordered tie-break rules: [{"type": "points", "order": 1}, ...]; null = sport default
    tie_breaking_rules: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    # Derived cache of the last computed standings; never authoritative
    team_rankings: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    rankings_updated_at: Optional[datetime] = Field(default=None)

    # Administrator-pinned total order (team ids, best first); null = automatic
    manual_ranking: Optional[List[int]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    manual_ranking_forced: bool = Field(default=False)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="blocks")


class BlockMember(SQLModel, table=True):
    """Explicit block membership (league blocks). Knockout blocks without rows derive members from participants."""

    __table_args__ = (SAUniqueConstraint("block_id", "team_id", name="uq_block_member"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    block_id: int = Field(foreign_key="block.id", index=True)
    team_id: int = Field(foreign_key="team.id")
