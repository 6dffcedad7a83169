from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.tournament import Tournament


class MatchStatus(str, Enum):
    scheduled = "scheduled"
    completed_unconfirmed = "completed_unconfirmed"
    confirmed = "confirmed"
    cancelled = "cancelled"


class CancellationType(str, Enum):
    void = "void"  # no result at all
    both_absent = "both_absent"  # neither side showed; contributes nothing
    team_a_absent = "team_a_absent"  # walkover to side B
    team_b_absent = "team_b_absent"  # walkover to side A

    @property
    def is_walkover(self) -> bool:
        return self in (CancellationType.team_a_absent, CancellationType.team_b_absent)


class Match(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "match_code", name="uq_match_tournament_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    block_id: int = Field(foreign_key="block.id", index=True)
    template_id: Optional[int] = Field(default=None, foreign_key="matchtemplate.id")
    match_code: str

    # Participants (null = unresolved placeholder)
    team_a_id: Optional[int] = Field(default=None, foreign_key="team.id")
    team_b_id: Optional[int] = Field(default=None, foreign_key="team.id")

    status: str = Field(default=MatchStatus.scheduled.value)
    cancellation_type: Optional[str] = Field(default=None)

    # Result (meaningful once completed_unconfirmed/confirmed)
    score_json: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    team_a_goals: Optional[int] = Field(default=None)
    team_b_goals: Optional[int] = Field(default=None)
    team_a_pk: Optional[int] = Field(default=None)  # Penalty shootout decider
    team_b_pk: Optional[int] = Field(default=None)
    winner_team_id: Optional[int] = Field(default=None, foreign_key="team.id")
    is_draw: bool = Field(default=False)
    is_walkover: bool = Field(default=False)

    confirmed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="matches")

    def participant(self, side: str) -> Optional[int]:
        return self.team_a_id if side == "a" else self.team_b_id

    @property
    def loser_team_id(self) -> Optional[int]:
        if self.winner_team_id is None:
            return None
        if self.winner_team_id == self.team_a_id:
            return self.team_b_id
        return self.team_a_id
