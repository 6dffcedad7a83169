# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from app.models.block import Block, BlockMember  # noqa: F401
from app.models.format import Format  # noqa: F401
from app.models.match import Match  # noqa: F401
from app.models.match_source_override import MatchSourceOverride  # noqa: F401
from app.models.match_template import MatchTemplate  # noqa: F401
from app.models.promotion_override import PromotionOverride  # noqa: F401
from app.models.team import Team  # noqa: F401
from app.models.tournament import Tournament  # noqa: F401
from app.models.tournament_lock import TournamentLock  # noqa: F401
