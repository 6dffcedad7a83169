import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.database import get_session
from app.main import app

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# CRITICAL: Test Database Setup with StaticPool
# ============================================================================
# 1. Use sqlite:///:memory: with StaticPool so ALL sessions share same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models MUST be imported before create_all() (see session_fixture)
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables created explicitly per test and dropped afterwards
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session

    With StaticPool + :memory:, all sessions share the same database. Tables are dropped
    after each test so ids and unique constraints start fresh.
    """
    # Import all models to ensure they're registered BEFORE create_all
    from app.models.block import Block, BlockMember  # noqa: F401
    from app.models.format import Format  # noqa: F401
    from app.models.match import Match  # noqa: F401
    from app.models.match_source_override import MatchSourceOverride  # noqa: F401
    from app.models.match_template import MatchTemplate  # noqa: F401
    from app.models.promotion_override import PromotionOverride  # noqa: F401
    from app.models.team import Team  # noqa: F401
    from app.models.tournament import Tournament  # noqa: F401
    from app.models.tournament_lock import TournamentLock  # noqa: F401

    # Create all tables on test engine (explicit, don't rely on app startup)
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    CRITICAL: Override MUST be set BEFORE TestClient() and stay in place
    for the entire duration. This ensures the app never uses its own engine.
    """
    # Override dependency BEFORE creating TestClient (prevents production engine use)
    app.dependency_overrides[get_session] = override_get_session

    # Create TestClient with context manager (keeps override active throughout)
    with TestClient(app) as client:
        yield client

    # Clear overrides only AFTER TestClient context exits
    app.dependency_overrides.clear()
