"""
Pytest configuration and fixtures.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shared.database.models import Base
from services.market_analyzer.metrics_normalizer import MarketSnapshot


NOW_MS = 1_700_000_000_000


@pytest.fixture(scope="function")
def test_db_engine():
    """Create test database engine (one shared in-memory connection)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_db_session(test_db_engine):
    """Create test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def now_ms():
    """Fixed evaluation time."""
    return NOW_MS


@pytest.fixture
def taxed_snapshot():
    """Snapshot above the GE tax threshold."""
    return MarketSnapshot(
        item_id=4151,
        item_name="Abyssal whip",
        timestamp=NOW_MS,
        high_price=2000,
        low_price=1000,
        volume=500,
        source="wiki",
    )


@pytest.fixture
def tax_free_snapshot():
    """Snapshot at or below the GE tax threshold."""
    return MarketSnapshot(
        item_id=561,
        item_name="Nature rune",
        timestamp=NOW_MS,
        high_price=500,
        low_price=400,
        volume=50,
        source="wiki",
    )


@pytest.fixture
def rising_history():
    """Steadily rising price history, oldest first."""
    return [1000 + i * 10 for i in range(30)]
