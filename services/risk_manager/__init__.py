"""
Risk Manager Service.

Monitors open Grand Exchange positions:
- Dynamic and trailing stop-loss orders per position
- Portfolio concentration, liquidity, market, volatility and correlation risk
- Liquidity buffer, rebalancing and opportunity cost checks
- Alerts, recommendations and emergency exits
"""
from services.risk_manager.portfolio import (
    Position,
    Portfolio,
    MarketQuote,
    RiskAction,
    RiskActionType,
    Urgency
)
from services.risk_manager.position_risk import PositionRiskCalculator, PortfolioRiskMetrics
from services.risk_manager.stop_loss import StopLossManager, StopLossOrder, StopLossState
from services.risk_manager.risk_service import (
    RiskManagementService,
    RiskEvaluation,
    PositionNotFoundError
)

__all__ = [
    'Position',
    'Portfolio',
    'MarketQuote',
    'RiskAction',
    'RiskActionType',
    'Urgency',
    'PositionRiskCalculator',
    'PortfolioRiskMetrics',
    'StopLossManager',
    'StopLossOrder',
    'StopLossState',
    'RiskManagementService',
    'RiskEvaluation',
    'PositionNotFoundError',
]
