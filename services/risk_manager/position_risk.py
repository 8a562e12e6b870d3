"""
Position and Portfolio Risk Calculator.

Scores each open position from its size, volatility, holding time and
unrealized loss, and aggregates the portfolio's concentration, liquidity,
market, volatility and correlation risk. Everything is recomputed from the
current positions on every call.
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Optional

from shared.configs.models import RiskManagerConfig
from services.risk_manager.portfolio import Position, MarketQuote

logger = logging.getLogger(__name__)

# Capital (gp) that counts as one unit of liquidity/market exposure
EXPOSURE_UNIT_GP = 1_000_000
LOW_VOLUME_THRESHOLD = 1000


@dataclass
class PositionRisk:
    """Risk breakdown of one position (all components 0-1)."""
    position_id: str
    item_id: int
    size_risk: float
    volatility_risk: float
    holding_time_risk: float
    unrealized_loss_risk: float
    total_risk: float
    position_weight: float
    risk_level: str


@dataclass
class PortfolioRiskMetrics:
    """Portfolio-wide risk components (0-1)."""
    total_risk: float = 0.0
    concentration_risk: float = 0.0
    liquidity_risk: float = 0.0
    market_risk: float = 0.0
    volatility_risk: float = 0.0
    correlation_risk: float = 0.0
    position_risks: List[PositionRisk] = field(default_factory=list)
    risk_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def get_risk_level(risk: float) -> str:
    """Map a 0-1 risk value to LOW / MEDIUM / HIGH."""
    if risk > 0.7:
        return 'HIGH'
    if risk > 0.4:
        return 'MEDIUM'
    return 'LOW'


class PositionRiskCalculator:
    """Calculator for position and portfolio risk."""

    def __init__(self, config: Optional[RiskManagerConfig] = None):
        """
        Initialize the risk calculator.

        Args:
            config: Risk manager configuration (defaults used if None)
        """
        self.config = config or RiskManagerConfig()

    def calculate_position_risk(self, position: Position, total_value: float) -> PositionRisk:
        """
        Calculate the risk of one position.

        total = weight * (0.3 size + 0.3 volatility + 0.2 holding time + 0.2 unrealized loss)

        Args:
            position: Position with refreshed market fields
            total_value: Total portfolio value (> 0)

        Returns:
            PositionRisk
        """
        cfg = self.config
        weight = position.capital_invested / total_value

        size_risk = min(weight / cfg.max_position_risk, 1.0)
        volatility_risk = min((position.current_volatility or 0) / cfg.volatility_threshold, 1.0)
        holding_time_risk = min(position.holding_time / cfg.max_holding_time, 1.0)

        unrealized_loss_risk = 0.0
        if position.unrealized_pnl < 0:
            unrealized_loss_risk = min(
                abs(position.unrealized_pnl_percent) / (cfg.default_stop_loss_percentage * 100), 1.0
            )

        total_risk = weight * (
            size_risk * 0.3
            + volatility_risk * 0.3
            + holding_time_risk * 0.2
            + unrealized_loss_risk * 0.2
        )

        return PositionRisk(
            position_id=position.id,
            item_id=position.item_id,
            size_risk=size_risk,
            volatility_risk=volatility_risk,
            holding_time_risk=holding_time_risk,
            unrealized_loss_risk=unrealized_loss_risk,
            total_risk=total_risk,
            position_weight=weight,
            risk_level=get_risk_level(total_risk),
        )

    def calculate_portfolio_risk(
        self,
        positions: List[Position],
        total_value: float,
        market_data: Dict[int, MarketQuote],
    ) -> PortfolioRiskMetrics:
        """
        Aggregate risk over all open positions.

        Args:
            positions: Open positions
            total_value: Total portfolio value
            market_data: Current quotes keyed by item id

        Returns:
            PortfolioRiskMetrics (all zero for an empty portfolio or zero value)
        """
        if not positions or not total_value or total_value <= 0:
            return PortfolioRiskMetrics()

        position_risks = [self.calculate_position_risk(p, total_value) for p in positions]
        total_risk = sum(r.total_risk for r in position_risks)
        concentration_risk = self.calculate_concentration_risk(positions, total_value)
        liquidity_risk = self.calculate_liquidity_risk(positions, market_data)
        market_risk = self.calculate_market_risk(positions, market_data)

        return PortfolioRiskMetrics(
            total_risk=total_risk,
            concentration_risk=concentration_risk,
            liquidity_risk=liquidity_risk,
            market_risk=market_risk,
            volatility_risk=self.calculate_volatility_risk(positions),
            correlation_risk=self.calculate_correlation_risk(positions),
            position_risks=position_risks,
            risk_score=self.calculate_overall_risk_score(
                total_risk, concentration_risk, liquidity_risk, market_risk
            ),
        )

    @staticmethod
    def calculate_concentration_risk(positions: List[Position], total_value: float) -> float:
        """Largest combined weight held in a single item."""
        if not positions or not total_value or total_value <= 0:
            return 0.0

        item_weights: Dict[int, float] = {}
        for position in positions:
            item_weights[position.item_id] = (
                item_weights.get(position.item_id, 0.0) + position.capital_invested / total_value
            )
        return max(item_weights.values())

    @staticmethod
    def calculate_liquidity_risk(positions: List[Position], market_data: Dict[int, MarketQuote]) -> float:
        """Capital stuck in low-volume items, in millions of gp, capped at 1."""
        risk = 0.0
        for position in positions:
            quote = market_data.get(position.item_id)
            if quote is not None and quote.volume < LOW_VOLUME_THRESHOLD:
                risk += position.capital_invested / EXPOSURE_UNIT_GP
        return min(risk, 1.0)

    @staticmethod
    def calculate_market_risk(positions: List[Position], market_data: Dict[int, MarketQuote]) -> float:
        """Volatility-weighted capital exposure, capped at 1."""
        risk = 0.0
        for position in positions:
            quote = market_data.get(position.item_id)
            if quote is not None:
                risk += min(quote.volatility / 100, 1.0) * (position.capital_invested / EXPOSURE_UNIT_GP)
        return min(risk, 1.0)

    def calculate_volatility_risk(self, positions: List[Position]) -> float:
        """Average position volatility relative to the threshold, capped at 1."""
        if not positions:
            return 0.0
        avg_volatility = sum(p.current_volatility or 0 for p in positions) / len(positions)
        return min(avg_volatility / self.config.volatility_threshold, 1.0)

    @staticmethod
    def calculate_correlation_risk(positions: List[Position]) -> float:
        """Share of positions that repeat an already held category."""
        if not positions:
            return 0.0
        categories = {p.category or 'unknown' for p in positions}
        return max(0.0, 1 - len(categories) / len(positions))

    @staticmethod
    def calculate_overall_risk_score(
        total_risk: float,
        concentration_risk: float,
        liquidity_risk: float,
        market_risk: float,
    ) -> float:
        """Weighted portfolio risk score (0-1)."""
        weighted = total_risk * 0.4 + concentration_risk * 0.3 + liquidity_risk * 0.2 + market_risk * 0.1
        return min(weighted, 1.0)
