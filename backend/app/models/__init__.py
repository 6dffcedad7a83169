from app.models.block import Block, BlockMember
from app.models.format import Format
from app.models.match import CancellationType, Match, MatchStatus
from app.models.match_source_override import MatchSourceOverride
from app.models.match_template import MatchTemplate
from app.models.promotion_override import PromotionOverride
from app.models.team import Team
from app.models.tournament import Tournament
from app.models.tournament_lock import TournamentLock

__all__ = [
    "Tournament",
    "Team",
    "Format",
    "MatchTemplate",
    "Block",
    "BlockMember",
    "Match",
    "MatchStatus",
    "CancellationType",
    "PromotionOverride",
    "MatchSourceOverride",
    "TournamentLock",
]
