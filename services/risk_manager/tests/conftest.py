"""
Pytest configuration and fixtures for risk_manager tests.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shared.configs.models import RiskManagerConfig, HOUR_MS
from shared.database.models import Base
from services.risk_manager.portfolio import Position, MarketQuote


NOW_MS = 1_700_000_000_000


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_db(test_engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def now_ms():
    """Fixed evaluation time."""
    return NOW_MS


@pytest.fixture
def risk_config():
    """Risk manager configuration with default values."""
    return RiskManagerConfig()


@pytest.fixture
def make_position():
    """Factory for open positions (1000 gp entry, 10 units, held one hour)."""
    def _make(
        position_id="pos-1",
        item_id=4151,
        quantity=10,
        entry_price=1000.0,
        capital_invested=None,
        entry_time=NOW_MS - HOUR_MS,
        expected_margin=10.0,
        category="weapons",
        item_name="Abyssal whip",
        **kwargs
    ):
        return Position(
            id=position_id,
            item_id=item_id,
            quantity=quantity,
            capital_invested=capital_invested if capital_invested is not None else entry_price * quantity,
            entry_price=entry_price,
            entry_time=entry_time,
            item_name=item_name,
            expected_margin=expected_margin,
            category=category,
            **kwargs
        )
    return _make


@pytest.fixture
def make_quote():
    """Factory for market quotes with the given mid price."""
    def _make(item_id=4151, price=1000.0, volume=5000, margin_percent=10.0, volatility=0.05):
        return MarketQuote(
            item_id=item_id,
            high_price=price,
            low_price=price,
            volume=volume,
            margin_percent=margin_percent,
            volatility=volatility,
        )
    return _make
