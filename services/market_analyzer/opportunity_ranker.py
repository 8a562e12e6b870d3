"""
Flipping Opportunity Ranker.

Decides whether a snapshot's metrics and consensus signal make a tradable
flipping opportunity, classifies its risk, estimates flip time, attaches
categorical tags, assesses trading viability and ranks candidates by a
composite profitability score.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional, Any

from shared.configs.models import RankingWeights
from services.market_analyzer.metrics_normalizer import MarketSnapshot, MetricsBundle
from services.market_analyzer.signal_interpreter import MarketSignal, SignalType

logger = logging.getLogger(__name__)

DEFAULT_MIN_PROFIT_MARGIN = 5.0
MIN_FLIP_MINUTES = 5.0
MAX_FLIP_MINUTES = 120.0
HOUR_MS = 60 * 60 * 1000


class RiskLevel(str, Enum):
    """Opportunity risk levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ViabilityRating(str, Enum):
    """Trading viability ratings."""
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    AVOID = "AVOID"


@dataclass
class TradingViability:
    """Point-based viability assessment of trading an item."""
    score: float  # 0-100
    rating: ViabilityRating
    factors: List[str] = field(default_factory=list)
    recommendation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'score': self.score,
            'rating': self.rating.value,
            'factors': list(self.factors),
            'recommendation': self.recommendation,
        }


@dataclass
class FlippingOpportunity:
    """Candidate flip surfaced from one snapshot."""
    item_id: int
    item_name: str
    buy_price: float
    sell_price: float
    gross_profit_gp: float
    net_profit_gp: float
    gross_profit_percent: float
    net_profit_percent: float
    ge_tax_amount: int
    is_tax_free: bool
    risk_level: RiskLevel
    risk_score: float
    volatility: float
    velocity: float
    expected_profit_per_hour: float
    volume: float
    volume_score: float
    liquidity_rating: str
    time_to_flip: float  # minutes
    market_signal: Dict[str, Any]
    confidence: float
    data_quality: float
    tags: List[str] = field(default_factory=list)
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'item_id': self.item_id,
            'item_name': self.item_name,
            'buy_price': self.buy_price,
            'sell_price': self.sell_price,
            'gross_profit_gp': self.gross_profit_gp,
            'net_profit_gp': self.net_profit_gp,
            'gross_profit_percent': self.gross_profit_percent,
            'net_profit_percent': self.net_profit_percent,
            'ge_tax_amount': self.ge_tax_amount,
            'is_tax_free': self.is_tax_free,
            'risk_level': self.risk_level.value,
            'risk_score': self.risk_score,
            'volatility': self.volatility,
            'velocity': self.velocity,
            'expected_profit_per_hour': self.expected_profit_per_hour,
            'volume': self.volume,
            'volume_score': self.volume_score,
            'liquidity_rating': self.liquidity_rating,
            'time_to_flip': self.time_to_flip,
            'market_signal': dict(self.market_signal),
            'confidence': self.confidence,
            'data_quality': self.data_quality,
            'tags': list(self.tags),
            'timestamp': self.timestamp,
        }


class OpportunityRanker:
    """Ranker for flipping opportunities."""

    def __init__(
        self,
        min_profit_margin: float = DEFAULT_MIN_PROFIT_MARGIN,
        ranking_weights: Optional[RankingWeights] = None,
    ):
        """
        Initialize the opportunity ranker.

        Args:
            min_profit_margin: Minimum tax-adjusted margin (%) for an opportunity
            ranking_weights: Weights of the composite profitability score
        """
        self.min_profit_margin = min_profit_margin
        self.ranking_weights = ranking_weights or RankingWeights()
        self.ranking_weights.validate_weights_sum()

    def identify_opportunity(
        self,
        snapshot: MarketSnapshot,
        metrics: MetricsBundle,
        signal: MarketSignal,
        min_profit_margin: Optional[float] = None,
        timestamp: Optional[int] = None,
    ) -> Optional[FlippingOpportunity]:
        """
        Build a flipping opportunity when the item clears the margin bar.

        Args:
            snapshot: Market snapshot the metrics were computed from
            metrics: Normalized metrics
            signal: Consensus market signal
            min_profit_margin: Override of the configured minimum margin (%)
            timestamp: Detection time in epoch ms (now if None)

        Returns:
            FlippingOpportunity, or None for invalid prices or insufficient margin
        """
        min_margin = self.min_profit_margin if min_profit_margin is None else min_profit_margin
        high, low = snapshot.high_price, snapshot.low_price

        try:
            if not high or not low or high <= low or not metrics.is_valid:
                logger.debug(f"No opportunity for item {snapshot.item_id}: invalid price data ({high}/{low})")
                return None

            if metrics.margin_percent < min_margin:
                logger.debug(
                    f"No opportunity for item {snapshot.item_id}: margin "
                    f"{metrics.margin_percent:.2f}% < {min_margin}%"
                )
                return None

            volume = metrics.volume
            opportunity = FlippingOpportunity(
                item_id=snapshot.item_id,
                item_name=snapshot.item_name or f"Item {snapshot.item_id}",
                buy_price=low,
                sell_price=high,
                gross_profit_gp=metrics.gross_profit_gp,
                net_profit_gp=metrics.margin_gp,
                gross_profit_percent=metrics.gross_profit_percent,
                net_profit_percent=metrics.margin_percent,
                ge_tax_amount=metrics.ge_tax_amount,
                is_tax_free=metrics.is_tax_free,
                risk_level=self.classify_risk_level(metrics.risk_score),
                risk_score=metrics.risk_score,
                volatility=metrics.volatility,
                velocity=metrics.velocity,
                expected_profit_per_hour=metrics.expected_profit_per_hour,
                volume=volume,
                volume_score=metrics.volume_score,
                liquidity_rating=metrics.liquidity_rating,
                time_to_flip=self.estimate_time_to_flip(volume, metrics.velocity),
                market_signal=signal.summary(),
                confidence=metrics.confidence,
                data_quality=metrics.data_quality,
                tags=self.generate_tags(metrics, signal),
                timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
            )

            logger.info(
                f"Flipping opportunity for {opportunity.item_name} ({snapshot.item_id}): "
                f"{opportunity.net_profit_gp} gp ({opportunity.net_profit_percent:.2f}%), "
                f"risk {opportunity.risk_level.value}, signal {signal.type.value}"
            )
            return opportunity

        except Exception as e:
            logger.error(f"Error identifying opportunity for item {snapshot.item_id}: {e}", exc_info=True)
            return None

    @staticmethod
    def classify_risk_level(risk_score: float) -> RiskLevel:
        """Map a 0-100 risk score to a risk level."""
        if risk_score > 70:
            return RiskLevel.HIGH
        if risk_score > 40:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    @staticmethod
    def estimate_time_to_flip(volume: float, velocity: float) -> float:
        """
        Estimate minutes needed to complete one flip.

        Returns:
            60 / ln(volume * velocity / 100 + 1), clamped to [5, 120]
        """
        log_term = math.log(max(0.0, volume * velocity / 100) + 1)
        if log_term <= 0:
            return MAX_FLIP_MINUTES
        return max(MIN_FLIP_MINUTES, min(MAX_FLIP_MINUTES, 60 / log_term))

    @staticmethod
    def generate_tags(metrics: MetricsBundle, signal: MarketSignal) -> List[str]:
        """Categorical tags. Each rule is independent of the others."""
        tags = []

        if metrics.risk_score < 30:
            tags.append('low_risk')
        elif metrics.risk_score > 70:
            tags.append('high_risk')

        if metrics.margin_percent > 20:
            tags.append('high_profit')
        elif metrics.margin_percent > 10:
            tags.append('good_profit')

        if metrics.volume_score > 70:
            tags.append('high_volume')
        elif metrics.volume_score < 30:
            tags.append('low_volume')

        if metrics.volatility > 30:
            tags.append('volatile')
        elif metrics.volatility < 10:
            tags.append('stable')

        if metrics.velocity > 70:
            tags.append('fast_flip')
        elif metrics.velocity < 30:
            tags.append('slow_flip')

        if signal.type == SignalType.BUY and signal.strength > 0.6:
            tags.append('strong_buy')
        elif signal.type == SignalType.SELL and signal.strength > 0.6:
            tags.append('strong_sell')

        if metrics.is_tax_free:
            tags.append('tax_free')

        if metrics.expected_profit_per_hour > 1_000_000:
            tags.append('high_gp_per_hour')
        elif metrics.expected_profit_per_hour > 500_000:
            tags.append('good_gp_per_hour')

        return tags

    def assess_trading_viability(self, metrics: MetricsBundle, signal: MarketSignal) -> TradingViability:
        """
        Score how viable trading the item is.

        Points:
        - Profit margin: 40 / 25 / 10
        - Risk: 25 / 15 / 5
        - Volume: 20 / 12 / 5
        - Signal: 15 (strong buy) / 10 (strong sell) / 8 (confident)
        """
        score = 0
        factors = []

        if metrics.margin_percent > 15:
            score += 40
            factors.append('High profit margin')
        elif metrics.margin_percent > 8:
            score += 25
            factors.append('Good profit margin')
        elif metrics.margin_percent > 3:
            score += 10
            factors.append('Moderate profit margin')

        if metrics.risk_score < 30:
            score += 25
            factors.append('Low risk')
        elif metrics.risk_score < 60:
            score += 15
            factors.append('Moderate risk')
        else:
            score += 5
            factors.append('High risk')

        if metrics.volume_score > 60:
            score += 20
            factors.append('High volume')
        elif metrics.volume_score > 30:
            score += 12
            factors.append('Moderate volume')
        else:
            score += 5
            factors.append('Low volume')

        if signal.type == SignalType.BUY and signal.strength > 0.6:
            score += 15
            factors.append('Strong buy signal')
        elif signal.type == SignalType.SELL and signal.strength > 0.6:
            score += 10
            factors.append('Strong sell signal')
        elif signal.confidence > 0.6:
            score += 8
            factors.append('Confident signal')

        if score >= 75:
            rating = ViabilityRating.EXCELLENT
        elif score >= 60:
            rating = ViabilityRating.GOOD
        elif score >= 40:
            rating = ViabilityRating.FAIR
        elif score >= 25:
            rating = ViabilityRating.POOR
        else:
            rating = ViabilityRating.AVOID

        return TradingViability(
            score=float(score),
            rating=rating,
            factors=factors,
            recommendation=self._viability_recommendation(rating, factors),
        )

    def profitability_score(self, opportunity: FlippingOpportunity) -> float:
        """Composite 0-100 score used to rank opportunities."""
        w = self.ranking_weights
        profit = min(100.0, max(0.0, opportunity.net_profit_percent * 2))
        safety = 100 - opportunity.risk_score
        return (
            w.weight_profit * profit
            + w.weight_safety * safety
            + w.weight_volume * opportunity.volume_score
            + w.weight_velocity * opportunity.velocity
        )

    def rank_opportunities(
        self,
        opportunities: List[FlippingOpportunity],
        limit: Optional[int] = None,
    ) -> List[FlippingOpportunity]:
        """
        Sort opportunities by profitability score, best first.

        Args:
            opportunities: Candidates to rank
            limit: Max number returned (all if None)

        Returns:
            Ranked opportunities
        """
        ranked = sorted(
            (o for o in opportunities if o is not None),
            key=lambda o: (-self.profitability_score(o), o.item_id),
        )
        if limit is not None:
            ranked = ranked[:limit]
        return ranked

    @staticmethod
    def trending_score(snapshot: MarketSnapshot, now_ms: Optional[int] = None) -> float:
        """
        Score how much an item is trending: fresh data with a wide spread.

        Args:
            snapshot: Latest snapshot of the item
            now_ms: Current time in epoch ms (now if None)

        Returns:
            0.6 * freshness + 0.4 * spread score, both 0-100
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        hours_old = max(0.0, (now_ms - (snapshot.timestamp or 0)) / HOUR_MS)
        freshness = max(0.0, 100 - hours_old)

        high, low = snapshot.high_price or 0, snapshot.low_price or 0
        spread_percent = (high - low) / low * 100 if low > 0 and high > low else 0.0
        spread_score = min(100.0, spread_percent * 2)

        return 0.6 * freshness + 0.4 * spread_score

    @staticmethod
    def _viability_recommendation(rating: ViabilityRating, factors: List[str]) -> str:
        factor_list = ', '.join(factors).lower()
        messages = {
            ViabilityRating.EXCELLENT: f"Highly recommended for trading. Strong factors: {factor_list}",
            ViabilityRating.GOOD: f"Good trading opportunity. Positive factors: {factor_list}",
            ViabilityRating.FAIR: f"Moderate trading opportunity. Consider factors: {factor_list}",
            ViabilityRating.POOR: f"Risky trading opportunity. Caution advised due to: {factor_list}",
            ViabilityRating.AVOID: f"Avoid trading. Negative factors: {factor_list}",
        }
        return messages[rating]
