"""
Risk Management Service.

Runs one risk cycle over a portfolio of open Grand Exchange positions:
- Refreshes positions from current market data
- Recomputes portfolio risk metrics
- Evaluates stop-loss orders (trigger / trailing updates)
- Checks liquidity buffer, illiquid positions and concentration
- Measures opportunity costs against each position's expected margin
- Raises alerts and recommendations when limits are exceeded
"""
import logging
import time
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional, Any, Iterable, Union

from shared.configs.models import RiskManagerConfig
from shared.monitoring.structured_logger import log_alert
from services.market_analyzer.ge_tax import calculate_profit_after_tax
from services.risk_manager.portfolio import (
    Position,
    Portfolio,
    MarketQuote,
    RiskAction,
    RiskActionType,
    Urgency,
)
from services.risk_manager.position_risk import PositionRiskCalculator, PortfolioRiskMetrics
from services.risk_manager.stop_loss import StopLossManager, ILLIQUID_VOLUME_THRESHOLD
from services.risk_manager.repository import RiskActionRepository

logger = logging.getLogger(__name__)


class PositionNotFoundError(Exception):
    """Raised when an unknown position id is referenced."""
    pass


@dataclass
class RiskAlert:
    """Alert raised when a risk component exceeds its limit."""
    type: str
    severity: str
    message: str
    value: float
    threshold: float
    timestamp: int = 0


@dataclass
class RiskRecommendation:
    """Suggested course of action for the portfolio."""
    type: str
    priority: str
    message: str
    actions: List[str] = field(default_factory=list)


@dataclass
class OpportunityCost:
    """Position whose current margin fell well below the margin it was bought for."""
    position_id: str
    item_id: int
    item_name: Optional[str]
    position_margin: float
    current_margin: float
    opportunity_cost: float
    recommendation: str = 'Consider exiting position'
    severity: str = 'HIGH'


@dataclass
class RiskEvaluation:
    """Result of one portfolio risk cycle."""
    risk_metrics: PortfolioRiskMetrics
    stop_loss_actions: List[RiskAction] = field(default_factory=list)
    liquidity_actions: List[RiskAction] = field(default_factory=list)
    rebalance_actions: List[RiskAction] = field(default_factory=list)
    alerts: List[RiskAlert] = field(default_factory=list)
    recommendations: List[RiskRecommendation] = field(default_factory=list)
    opportunity_costs: List[OpportunityCost] = field(default_factory=list)
    skipped_positions: List[str] = field(default_factory=list)
    timestamp: int = 0

    @property
    def all_actions(self) -> List[RiskAction]:
        return self.stop_loss_actions + self.liquidity_actions + self.rebalance_actions

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'risk_metrics': self.risk_metrics.to_dict(),
            'actions': {
                'stop_loss': [a.to_dict() for a in self.stop_loss_actions],
                'liquidity': [a.to_dict() for a in self.liquidity_actions],
                'rebalance': [a.to_dict() for a in self.rebalance_actions],
            },
            'alerts': [asdict(a) for a in self.alerts],
            'recommendations': [asdict(r) for r in self.recommendations],
            'opportunity_costs': [asdict(c) for c in self.opportunity_costs],
            'skipped_positions': list(self.skipped_positions),
            'timestamp': self.timestamp,
        }


class RiskManagementService:
    """
    Risk management service for a flipping portfolio.

    Positions are stored by id; each cycle only writes the entries of the
    positions it refreshes. Stop-loss orders live in the stop-loss book.
    """

    def __init__(
        self,
        config: Optional[RiskManagerConfig] = None,
        repository: Optional[RiskActionRepository] = None,
    ):
        """
        Initialize the risk management service.

        Args:
            config: Risk manager configuration (defaults used if None)
            repository: Repository for persisting actions (none if None)
        """
        self.config = config or RiskManagerConfig()
        self.repository = repository
        self.calculator = PositionRiskCalculator(self.config)
        self.stop_loss = StopLossManager(self.config)

        self.positions: Dict[str, Position] = {}
        self.risk_metrics = PortfolioRiskMetrics()
        self.alerts: List[RiskAlert] = []
        self.last_rebalance = 0

        logger.info(
            f"Risk management service initialized: default stop {self.config.default_stop_loss_percentage:.0%}, "
            f"max portfolio risk {self.config.max_portfolio_risk:.0%}, "
            f"min liquidity buffer {self.config.min_liquidity_buffer:.0%}"
        )

    def evaluate_portfolio_risk(
        self,
        portfolio: Portfolio,
        market_data: Union[Iterable[MarketQuote], Dict[int, MarketQuote]],
        now_ms: Optional[int] = None,
    ) -> RiskEvaluation:
        """
        Run one risk cycle over a portfolio.

        Args:
            portfolio: Open positions with total value and cash balance
            market_data: Current quotes (list or dict keyed by item id)
            now_ms: Cycle time in epoch ms (now if None)

        Returns:
            RiskEvaluation with metrics, actions, alerts, recommendations and opportunity costs
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        quotes = self._quote_map(market_data)
        positions = portfolio.positions or []

        logger.debug(f"Evaluating portfolio risk: {len(positions)} positions, value {portfolio.total_value:,.0f}")

        self.prune_closed_positions(positions)
        skipped = self.update_positions(positions, quotes, now_ms)
        risk_metrics = self.calculator.calculate_portfolio_risk(positions, portfolio.total_value, quotes)

        stop_loss_actions = self.check_stop_losses(positions, quotes, skipped, now_ms)
        liquidity_actions = self.evaluate_liquidity(portfolio, quotes, now_ms)
        rebalance_actions = self.evaluate_rebalancing(portfolio, now_ms)
        alerts = self.generate_alerts(risk_metrics, now_ms)
        opportunity_costs = self.calculate_opportunity_costs(positions, quotes)
        recommendations = self.generate_recommendations(risk_metrics, opportunity_costs)

        self.risk_metrics = risk_metrics
        self.alerts = alerts

        evaluation = RiskEvaluation(
            risk_metrics=risk_metrics,
            stop_loss_actions=stop_loss_actions,
            liquidity_actions=liquidity_actions,
            rebalance_actions=rebalance_actions,
            alerts=alerts,
            recommendations=recommendations,
            opportunity_costs=opportunity_costs,
            skipped_positions=skipped,
            timestamp=now_ms,
        )

        if self.repository is not None:
            self.repository.save_actions(evaluation.all_actions)

        logger.info(
            f"Portfolio risk evaluated: total risk {risk_metrics.total_risk:.3f}, "
            f"score {risk_metrics.risk_score:.3f}, {len(alerts)} alerts, "
            f"{len(evaluation.all_actions)} actions, {len(skipped)} skipped"
        )
        return evaluation

    def close_position(self, position_id: str) -> bool:
        """
        Stop tracking a position and drop its stop-loss order.

        Returns:
            True if the position or its order was tracked
        """
        position = self.positions.pop(position_id, None)
        had_order = self.stop_loss.book.get(position_id) is not None
        self.stop_loss.book.remove(position_id)

        if position is None and not had_order:
            return False

        logger.info(f"Position {position_id} closed", extra={'position_id': position_id})
        return True

    def prune_closed_positions(self, positions: List[Position]) -> List[str]:
        """
        Close every tracked position missing from the submitted portfolio.

        Returns:
            Ids of the positions closed
        """
        open_ids = {p.id for p in positions}
        tracked_ids = set(self.positions) | {o.position_id for o in self.stop_loss.book.snapshot()}
        closed = sorted(tracked_ids - open_ids)
        for position_id in closed:
            self.close_position(position_id)
        return closed

    def update_positions(
        self,
        positions: List[Position],
        quotes: Dict[int, MarketQuote],
        now_ms: int,
    ) -> List[str]:
        """
        Refresh positions from market data.

        Positions without a quote keep their previous numbers.

        Returns:
            Ids of the positions skipped this cycle
        """
        skipped = []
        for position in positions:
            quote = quotes.get(position.item_id)
            if quote is None:
                skipped.append(position.id)
                previous = self.positions.get(position.id)
                if previous is not None and previous is not position:
                    self._carry_over(previous, position)
                logger.warning(
                    f"No market data for position {position.id} (item {position.item_id}); skipped this cycle",
                    extra={'position_id': position.id, 'item_id': position.item_id}
                )
                continue

            current_price = quote.mid_price
            position.current_price = current_price
            position.current_margin = quote.margin_percent
            position.current_volume = quote.volume
            position.current_volatility = quote.volatility
            position.unrealized_pnl = calculate_profit_after_tax(position.entry_price, current_price) * position.quantity
            position.unrealized_pnl_percent = (
                position.unrealized_pnl / position.capital_invested * 100 if position.capital_invested > 0 else 0.0
            )
            position.holding_time = max(0, now_ms - position.entry_time)
            self.positions[position.id] = position

        return skipped

    def check_stop_losses(
        self,
        positions: List[Position],
        quotes: Dict[int, MarketQuote],
        skipped: List[str],
        now_ms: int,
    ) -> List[RiskAction]:
        """
        Run the stop-loss tick for every refreshed position.

        A position whose tick fails is logged and left out; the others still
        report their actions.
        """
        actions = []
        for position in positions:
            if position.id in skipped:
                continue
            try:
                actions.extend(self.stop_loss.evaluate_position(position, quotes[position.item_id], now_ms))
            except Exception as e:
                logger.error(
                    f"Error checking stop-loss for position {position.id}: {e}",
                    exc_info=True,
                    extra={'position_id': position.id, 'item_id': position.item_id}
                )
        return actions

    def evaluate_liquidity(
        self,
        portfolio: Portfolio,
        quotes: Dict[int, MarketQuote],
        now_ms: int,
    ) -> List[RiskAction]:
        """Check the cash buffer and flag positions in illiquid items."""
        actions = []

        if portfolio.total_value and portfolio.total_value > 0:
            buffer = portfolio.cash_balance / portfolio.total_value
            if buffer < self.config.min_liquidity_buffer:
                actions.append(RiskAction(
                    type=RiskActionType.INCREASE_LIQUIDITY,
                    urgency=Urgency.HIGH,
                    reason='Sell least profitable positions',
                    details={
                        'target_liquidity': self.config.min_liquidity_buffer,
                        'current_liquidity': buffer,
                    },
                    timestamp=now_ms,
                ))

        illiquid = [
            p for p in portfolio.positions or []
            if p.item_id in quotes and quotes[p.item_id].volume < ILLIQUID_VOLUME_THRESHOLD
        ]
        if illiquid:
            actions.append(RiskAction(
                type=RiskActionType.ILLIQUID_POSITIONS,
                urgency=Urgency.MEDIUM,
                reason='Consider exiting illiquid positions',
                details={
                    'positions': [
                        {
                            'position_id': p.id,
                            'item_id': p.item_id,
                            'item_name': p.item_name,
                            'capital_invested': p.capital_invested,
                            'holding_time': p.holding_time,
                        }
                        for p in illiquid
                    ]
                },
                timestamp=now_ms,
            ))

        return actions

    def evaluate_rebalancing(self, portfolio: Portfolio, now_ms: int) -> List[RiskAction]:
        """Flag over-concentration, at most once per rebalance interval."""
        if now_ms - self.last_rebalance < self.config.min_rebalance_interval:
            return []

        concentration = self.calculator.calculate_concentration_risk(
            portfolio.positions or [], portfolio.total_value
        )
        if concentration <= self.config.max_concentration_risk:
            return []

        self.last_rebalance = now_ms
        return [RiskAction(
            type=RiskActionType.REDUCE_CONCENTRATION,
            urgency=Urgency.HIGH,
            reason='Reduce exposure to over-concentrated positions',
            details={
                'current_concentration': concentration,
                'max_concentration': self.config.max_concentration_risk,
            },
            timestamp=now_ms,
        )]

    def calculate_opportunity_costs(
        self,
        positions: List[Position],
        quotes: Dict[int, MarketQuote],
    ) -> List[OpportunityCost]:
        """Positions whose current margin is below half of the expected margin."""
        costs = []
        for position in positions:
            quote = quotes.get(position.item_id)
            if quote is None:
                continue

            current_margin = quote.margin_percent
            if current_margin < position.expected_margin * 0.5:
                costs.append(OpportunityCost(
                    position_id=position.id,
                    item_id=position.item_id,
                    item_name=position.item_name,
                    position_margin=position.expected_margin,
                    current_margin=current_margin,
                    opportunity_cost=(position.expected_margin - current_margin) * position.quantity,
                ))
        return costs

    def generate_alerts(self, metrics: PortfolioRiskMetrics, now_ms: int) -> List[RiskAlert]:
        """Alerts for every risk component above its limit."""
        cfg = self.config
        alerts = []

        if metrics.total_risk > cfg.max_portfolio_risk:
            alerts.append(RiskAlert(
                type='HIGH_PORTFOLIO_RISK',
                severity='HIGH',
                message=f"Portfolio risk {metrics.total_risk * 100:.1f}% exceeds limit",
                value=metrics.total_risk,
                threshold=cfg.max_portfolio_risk,
                timestamp=now_ms,
            ))
        if metrics.concentration_risk > cfg.max_concentration_risk:
            alerts.append(RiskAlert(
                type='HIGH_CONCENTRATION_RISK',
                severity='MEDIUM',
                message=f"Concentration risk {metrics.concentration_risk * 100:.1f}% too high",
                value=metrics.concentration_risk,
                threshold=cfg.max_concentration_risk,
                timestamp=now_ms,
            ))
        if metrics.liquidity_risk > cfg.liquidity_risk_threshold:
            alerts.append(RiskAlert(
                type='HIGH_LIQUIDITY_RISK',
                severity='MEDIUM',
                message=f"Liquidity risk {metrics.liquidity_risk * 100:.1f}% too high",
                value=metrics.liquidity_risk,
                threshold=cfg.liquidity_risk_threshold,
                timestamp=now_ms,
            ))

        for alert in alerts:
            log_alert(logger, alert.type, alert.message, severity=alert.severity.lower())
        return alerts

    def generate_recommendations(
        self,
        metrics: PortfolioRiskMetrics,
        opportunity_costs: List[OpportunityCost],
    ) -> List[RiskRecommendation]:
        """Portfolio-level recommendations."""
        cfg = self.config
        recommendations = []

        if metrics.total_risk > cfg.max_portfolio_risk:
            recommendations.append(RiskRecommendation(
                type='REDUCE_PORTFOLIO_RISK',
                priority='HIGH',
                message=(
                    f"Portfolio risk {metrics.total_risk * 100:.1f}% exceeds maximum "
                    f"{cfg.max_portfolio_risk * 100:.1f}%"
                ),
                actions=['Reduce position sizes', 'Exit high-risk positions', 'Increase cash buffer'],
            ))
        if metrics.concentration_risk > cfg.max_concentration_risk:
            recommendations.append(RiskRecommendation(
                type='DIVERSIFY_PORTFOLIO',
                priority='MEDIUM',
                message=f"Concentration risk {metrics.concentration_risk * 100:.1f}% too high",
                actions=['Diversify across more items', 'Reduce large positions', 'Spread capital more evenly'],
            ))
        if metrics.liquidity_risk > cfg.liquidity_risk_threshold:
            recommendations.append(RiskRecommendation(
                type='IMPROVE_LIQUIDITY',
                priority='MEDIUM',
                message='Portfolio liquidity risk is elevated',
                actions=['Focus on high-volume items', 'Exit illiquid positions', 'Maintain cash buffer'],
            ))
        if opportunity_costs:
            recommendations.append(RiskRecommendation(
                type='OPTIMIZE_OPPORTUNITIES',
                priority='LOW',
                message=f"{len(opportunity_costs)} positions have significant opportunity costs",
                actions=['Review underperforming positions', 'Consider reallocation', 'Monitor market changes'],
            ))

        return recommendations

    def emergency_stop_loss(self, position_id: str, reason: str, now_ms: Optional[int] = None) -> RiskAction:
        """
        Issue an immediate exit for a known position.

        Raises:
            PositionNotFoundError: If the position has never been evaluated
        """
        position = self.positions.get(position_id)
        if position is None:
            raise PositionNotFoundError(f"Position {position_id} not found")

        action = RiskAction(
            type=RiskActionType.EMERGENCY_STOP_LOSS,
            urgency=Urgency.CRITICAL,
            reason=reason,
            position_id=position_id,
            item_id=position.item_id,
            timestamp=now_ms if now_ms is not None else int(time.time() * 1000),
        )
        logger.warning(
            f"Emergency stop-loss for position {position_id}: {reason}",
            extra={'position_id': position_id, 'item_id': position.item_id}
        )

        if self.repository is not None:
            self.repository.save_actions([action])
        return action

    def update_config(self, **changes: Any) -> RiskManagerConfig:
        """
        Update configuration values.

        Raises:
            ValueError: For unknown keys
            pydantic.ValidationError: If the merged configuration is invalid
        """
        unknown = set(changes) - set(RiskManagerConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown risk parameters: {', '.join(sorted(unknown))}")

        merged = self.config.model_dump()
        merged.update(changes)
        new_config = RiskManagerConfig(**merged)

        self.config = new_config
        self.calculator.config = new_config
        self.stop_loss.config = new_config

        logger.info(f"Risk management configuration updated: {', '.join(sorted(changes))}")
        return new_config

    def get_risk_state(self) -> Dict[str, Any]:
        """Current positions, stop-loss orders, metrics and configuration."""
        return {
            'positions': [p.to_dict() for p in self.positions.values()],
            'stop_loss_orders': [o.to_dict() for o in self.stop_loss.book.snapshot()],
            'risk_metrics': self.risk_metrics.to_dict(),
            'alerts': [asdict(a) for a in self.alerts],
            'last_rebalance': self.last_rebalance,
            'config': self.config.model_dump(),
        }

    @staticmethod
    def _quote_map(market_data: Union[Iterable[MarketQuote], Dict[int, MarketQuote]]) -> Dict[int, MarketQuote]:
        if isinstance(market_data, dict):
            return dict(market_data)
        return {quote.item_id: quote for quote in market_data or []}

    @staticmethod
    def _carry_over(previous: Position, position: Position) -> None:
        position.current_price = previous.current_price
        position.current_volume = previous.current_volume
        position.current_margin = previous.current_margin
        position.current_volatility = previous.current_volatility
        position.unrealized_pnl = previous.unrealized_pnl
        position.unrealized_pnl_percent = previous.unrealized_pnl_percent
        position.holding_time = previous.holding_time
