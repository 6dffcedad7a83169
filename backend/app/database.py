from pathlib import Path
from typing import Generator

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.settings import DATABASE_URL, SQL_ECHO

_is_sqlite = DATABASE_URL.startswith("sqlite")
_connect_args = {"check_same_thread": False} if _is_sqlite else {}

if _is_sqlite:
    db_path = DATABASE_URL.replace("sqlite:///", "", 1)
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

engine: Engine = create_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
    connect_args=_connect_args,
)


def get_session() -> Generator[Session, None, None]:
    """Get database session"""
    with Session(engine) as session:
        yield session


def init_db() -> None:
    """Initialize database - create all tables"""
    # Import all models to ensure they're registered with SQLModel metadata
    from app.models.block import Block, BlockMember  # noqa: F401
    from app.models.format import Format  # noqa: F401
    from app.models.match import Match  # noqa: F401
    from app.models.match_source_override import MatchSourceOverride  # noqa: F401
    from app.models.match_template import MatchTemplate  # noqa: F401
    from app.models.promotion_override import PromotionOverride  # noqa: F401
    from app.models.team import Team  # noqa: F401
    from app.models.tournament import Tournament  # noqa: F401
    from app.models.tournament_lock import TournamentLock  # noqa: F401

    SQLModel.metadata.create_all(engine)
