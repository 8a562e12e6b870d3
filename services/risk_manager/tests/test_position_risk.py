"""
Tests for the position and portfolio risk calculator.
"""
import pytest

from shared.configs.models import HOUR_MS
from services.risk_manager.position_risk import (
    PositionRiskCalculator,
    PortfolioRiskMetrics,
    get_risk_level,
)


@pytest.fixture
def calculator(risk_config):
    """Create risk calculator with default configuration."""
    return PositionRiskCalculator(risk_config)


def test_position_risk_components(calculator, make_position):
    """totalRisk = weight x (0.3 size + 0.3 vol + 0.2 time + 0.2 loss)."""
    position = make_position(
        capital_invested=10_000,
        current_volatility=0.10,
        holding_time=12 * HOUR_MS,
        unrealized_pnl=-250,
        unrealized_pnl_percent=-2.5,
    )

    risk = calculator.calculate_position_risk(position, total_value=1_000_000)

    assert risk.position_weight == pytest.approx(0.01)
    assert risk.size_risk == pytest.approx(0.5)
    assert risk.volatility_risk == pytest.approx(0.5)
    assert risk.holding_time_risk == pytest.approx(0.5)
    assert risk.unrealized_loss_risk == pytest.approx(0.5)
    assert risk.total_risk == pytest.approx(0.01 * 0.5)
    assert risk.risk_level == 'LOW'


def test_position_risk_components_capped(calculator, make_position):
    """Each component is capped at 1."""
    position = make_position(
        capital_invested=500_000,
        current_volatility=5.0,
        holding_time=100 * HOUR_MS,
        unrealized_pnl=-1,
        unrealized_pnl_percent=-50,
    )

    risk = calculator.calculate_position_risk(position, total_value=1_000_000)

    assert risk.size_risk == 1.0
    assert risk.volatility_risk == 1.0
    assert risk.holding_time_risk == 1.0
    assert risk.unrealized_loss_risk == 1.0
    assert risk.total_risk == pytest.approx(0.5)


def test_no_loss_risk_for_profitable_position(calculator, make_position):
    position = make_position(unrealized_pnl=100, unrealized_pnl_percent=1.0)

    assert calculator.calculate_position_risk(position, 1_000_000).unrealized_loss_risk == 0.0


@pytest.mark.parametrize("risk,level", [(0.0, 'LOW'), (0.4, 'LOW'), (0.41, 'MEDIUM'), (0.7, 'MEDIUM'), (0.71, 'HIGH')])
def test_get_risk_level(risk, level):
    assert get_risk_level(risk) == level


def test_empty_portfolio(calculator):
    """No positions or no value gives zero metrics."""
    assert calculator.calculate_portfolio_risk([], 1_000_000, {}) == PortfolioRiskMetrics()
    assert calculator.calculate_portfolio_risk([], 0, {}).risk_score == 0.0


def test_zero_value_portfolio(calculator, make_position):
    assert calculator.calculate_portfolio_risk([make_position()], 0, {}) == PortfolioRiskMetrics()


def test_concentration_is_largest_item_weight(calculator, make_position):
    """Positions in the same item are combined."""
    positions = [
        make_position(position_id="a", item_id=1, capital_invested=100_000),
        make_position(position_id="b", item_id=1, capital_invested=100_000),
        make_position(position_id="c", item_id=2, capital_invested=150_000),
    ]

    assert calculator.calculate_concentration_risk(positions, 1_000_000) == pytest.approx(0.2)


def test_liquidity_and_market_risk(calculator, make_position, make_quote):
    """Low-volume capital and volatility-weighted capital, in millions, capped at 1."""
    positions = [
        make_position(position_id="a", item_id=1, capital_invested=400_000),
        make_position(position_id="b", item_id=2, capital_invested=2_000_000),
    ]
    quotes = {
        1: make_quote(item_id=1, volume=500, volatility=50),
        2: make_quote(item_id=2, volume=50_000, volatility=10),
    }

    assert calculator.calculate_liquidity_risk(positions, quotes) == pytest.approx(0.4)
    assert calculator.calculate_market_risk(positions, quotes) == pytest.approx(0.5 * 0.4 + 0.1 * 2.0)
    assert calculator.calculate_liquidity_risk(positions * 3, quotes) == 1.0


def test_correlation_risk(calculator, make_position):
    """Share of positions repeating a category."""
    positions = [
        make_position(position_id="a", category="runes"),
        make_position(position_id="b", category="runes"),
        make_position(position_id="c", category="armour"),
        make_position(position_id="d", category=None),
    ]

    assert calculator.calculate_correlation_risk(positions) == pytest.approx(0.25)
    assert calculator.calculate_correlation_risk([]) == 0.0


def test_portfolio_risk_is_recomputed(calculator, make_position, make_quote):
    """Same inputs, same metrics; nothing carried between calls."""
    positions = [
        make_position(position_id="a", item_id=1, capital_invested=100_000, current_volatility=0.1),
        make_position(position_id="b", item_id=2, capital_invested=50_000, current_volatility=0.3),
    ]
    quotes = {1: make_quote(item_id=1), 2: make_quote(item_id=2, volume=100)}

    first = calculator.calculate_portfolio_risk(positions, 1_000_000, quotes)
    second = calculator.calculate_portfolio_risk(positions, 1_000_000, quotes)

    assert first == second
    assert len(first.position_risks) == 2
    assert first.total_risk == pytest.approx(sum(r.total_risk for r in first.position_risks))
    assert first.concentration_risk == pytest.approx(0.1)
    assert first.volatility_risk == pytest.approx(1.0)
    assert 0.0 <= first.risk_score <= 1.0

    fewer = calculator.calculate_portfolio_risk(positions[:1], 1_000_000, quotes)
    assert len(fewer.position_risks) == 1


def test_overall_risk_score(calculator):
    assert calculator.calculate_overall_risk_score(0.1, 0.2, 0.3, 0.4) == pytest.approx(0.04 + 0.06 + 0.06 + 0.04)
    assert calculator.calculate_overall_risk_score(5, 5, 5, 5) == 1.0
