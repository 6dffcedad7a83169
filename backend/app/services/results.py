"""
Plain result types shared by the standings calculator, tie-breaker and promotion resolver.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class PointSystem:
    win: int = 3
    draw: int = 1
    loss: int = 0


@dataclass(frozen=True)
class WalkoverScore:
    winner_goals: int = 3
    loser_goals: int = 0


@dataclass(frozen=True)
class MatchResult:
    """A confirmed result (or walkover) attached to one match."""

    match_id: int
    match_code: str
    team_a_id: int
    team_b_id: int
    team_a_goals: int
    team_b_goals: int
    winner_team_id: Optional[int] = None
    is_draw: bool = False
    is_walkover: bool = False
    both_absent: bool = False  # both sides cancelled: contributes nothing

    @property
    def teams(self) -> Tuple[int, int]:
        return (self.team_a_id, self.team_b_id)

    @property
    def loser_team_id(self) -> Optional[int]:
        if self.winner_team_id is None:
            return None
        return self.team_b_id if self.winner_team_id == self.team_a_id else self.team_a_id

    def involves(self, team_id: int) -> bool:
        return team_id in (self.team_a_id, self.team_b_id)

    def goals_for(self, team_id: int) -> int:
        return self.team_a_goals if team_id == self.team_a_id else self.team_b_goals

    def goals_against(self, team_id: int) -> int:
        return self.team_b_goals if team_id == self.team_a_id else self.team_a_goals

    def opponent(self, team_id: int) -> int:
        return self.team_b_id if team_id == self.team_a_id else self.team_a_id
