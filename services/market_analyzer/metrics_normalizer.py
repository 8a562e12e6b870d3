"""
Metrics Normalizer.

Turns one raw Grand Exchange market snapshot (plus an optional price history)
into a bounded set of derived metrics: tax-adjusted margins, volatility,
momentum, velocity, risk score, expected profit per hour and technical
indicators. A malformed snapshot never raises; it produces a zeroed bundle.
"""
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any, Sequence, Tuple
import logging
import math

from shared.configs.models import IndicatorConfig
from shared.utilities.validators import coerce_number, validate_item_id
from services.market_analyzer.ge_tax import (
    calculate_ge_tax,
    calculate_net_sell_price,
    is_tax_free,
)
from services.market_analyzer.indicators import (
    PriceIndicatorCalculator,
    MACDValue,
    BollingerBands,
    SupportResistance,
)

logger = logging.getLogger(__name__)

MAX_REFERENCE_VOLUME = 1_000_000
UNKNOWN_SOURCE = "unknown"


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


@dataclass(frozen=True)
class MarketSnapshot:
    """One observation of an item's market state."""
    item_id: int
    timestamp: int = 0
    high_price: Optional[float] = None
    low_price: Optional[float] = None
    volume: Optional[float] = 0
    item_name: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketSnapshot":
        """
        Build a snapshot from a loosely typed mapping.

        Accepts both camelCase (``highPrice``) and snake_case (``high_price``) keys.
        Price and volume values that are not finite numbers are kept as None.

        Raises:
            ValueError: If the item id is missing or not a positive integer
        """
        raw_item_id = _first(data, "item_id", "itemId")
        try:
            item_id = int(raw_item_id)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid item id: {raw_item_id!r}")
        if not validate_item_id(item_id):
            raise ValueError(f"Invalid item id: {raw_item_id!r}")

        timestamp = coerce_number(_first(data, "timestamp"))
        return cls(
            item_id=item_id,
            timestamp=int(timestamp) if timestamp is not None else 0,
            high_price=coerce_number(_first(data, "high_price", "highPrice", "high")),
            low_price=coerce_number(_first(data, "low_price", "lowPrice", "low")),
            volume=coerce_number(_first(data, "volume")),
            item_name=_first(data, "item_name", "itemName", "name"),
            source=_first(data, "source"),
        )

    @property
    def mid_price(self) -> float:
        """Average of the high and low price (0 when either is missing)."""
        if self.high_price is None or self.low_price is None:
            return 0.0
        return (self.high_price + self.low_price) / 2


@dataclass(frozen=True)
class MetricsBundle:
    """Derived, read-only metrics for one snapshot/history pair."""
    item_id: int
    # Profit
    margin_gp: float = 0.0
    margin_percent: float = 0.0
    gross_profit_gp: float = 0.0
    gross_profit_percent: float = 0.0
    ge_tax_amount: int = 0
    net_sell_price: float = 0.0
    is_tax_free: bool = False
    # Price
    average_price: float = 0.0
    price_spread_percent: float = 0.0
    # Market behaviour
    volatility: float = 0.0
    velocity: float = 0.0
    momentum_score: float = 0.0
    trend_strength: float = 0.0
    risk_score: float = 0.0
    expected_profit_per_hour: float = 0.0
    volume: float = 0.0
    volume_score: float = 0.0
    liquidity_rating: str = "very_low"
    # Quality
    confidence: float = 0.0
    data_quality: float = 0.0
    # Technical indicators
    rsi: Optional[float] = None
    macd: Optional[MACDValue] = None
    bollinger: Optional[BollingerBands] = None
    support_resistance: Optional[SupportResistance] = None
    moving_average: Optional[float] = None
    is_valid: bool = True
    defects: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls, item_id: int, defects: Sequence[str] = ()) -> "MetricsBundle":
        """Zeroed bundle for a snapshot that cannot be scored."""
        return cls(item_id=item_id, is_valid=False, defects=tuple(defects))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = asdict(self)
        result['defects'] = list(self.defects)
        return result


class MetricsNormalizer:
    """
    Normalizer for raw market snapshots.

    Stateless: calling ``normalize`` twice with the same input yields equal bundles.
    """

    def __init__(self, indicator_config: Optional[IndicatorConfig] = None):
        """
        Initialize the normalizer.

        Args:
            indicator_config: Indicator periods (defaults used if None)
        """
        self.indicator_calculator = PriceIndicatorCalculator(indicator_config)

    def normalize(self, snapshot: MarketSnapshot, history: Optional[Sequence[Any]] = None) -> MetricsBundle:
        """
        Calculate the metrics bundle for one item.

        Args:
            snapshot: Current market snapshot
            history: Prior prices, oldest first (may be empty)

        Returns:
            MetricsBundle (zeroed with ``is_valid=False`` for malformed snapshots)
        """
        history = list(history or [])
        item_id = getattr(snapshot, "item_id", 0)

        try:
            defects = self._find_defects(snapshot)
            if snapshot.high_price is None or snapshot.low_price is None:
                logger.warning(f"Malformed snapshot for item {item_id}: {', '.join(defects)}")
                return MetricsBundle.empty(item_id, defects)

            return self._build_bundle(snapshot, history, defects)

        except Exception as e:
            logger.error(f"Error normalizing metrics for item {item_id}: {e}", exc_info=True)
            return MetricsBundle.empty(item_id, [f"internal_error: {e}"])

    def normalize_batch(
        self,
        snapshots: Sequence[MarketSnapshot],
        history_map: Optional[Dict[int, Sequence[Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Normalize many snapshots.

        Args:
            snapshots: Snapshots to normalize
            history_map: Price history per item id

        Returns:
            Dictionary with ``results`` (item id -> bundle), ``failed`` item ids
            and success/failure counts
        """
        history_map = history_map or {}
        results: Dict[int, MetricsBundle] = {}
        failed: List[int] = []

        for snapshot in snapshots:
            bundle = self.normalize(snapshot, history_map.get(snapshot.item_id, []))
            results[snapshot.item_id] = bundle
            if not bundle.is_valid:
                failed.append(snapshot.item_id)

        logger.info(
            f"Normalized {len(results)} snapshots: "
            f"{len(results) - len(failed)} valid, {len(failed)} invalid"
        )
        return {
            'results': results,
            'failed': failed,
            'success_count': len(results) - len(failed),
            'failure_count': len(failed),
        }

    def _build_bundle(self, snapshot: MarketSnapshot, history: List[Any], defects: List[str]) -> MetricsBundle:
        high = snapshot.high_price
        low = snapshot.low_price
        volume = snapshot.volume if snapshot.volume is not None and snapshot.volume > 0 else 0.0
        prices_ordered = high >= low

        average_price = (high + low) / 2
        spread_percent = (high - low) / average_price * 100 if average_price > 0 else 0.0

        tax = calculate_ge_tax(high)
        net_sell_price = calculate_net_sell_price(high)
        if prices_ordered:
            gross_profit = high - low
            gross_percent = gross_profit / low * 100 if low > 0 else 0.0
            margin_gp = net_sell_price - low
            margin_percent = margin_gp / low * 100 if low > 0 else 0.0
        else:
            gross_profit = gross_percent = margin_gp = margin_percent = 0.0

        indicators = self.indicator_calculator.calculate_all(history)
        volume_score = self.calculate_volume_score(volume)
        velocity = self.calculate_velocity(volume, average_price)
        risk_score = self.calculate_risk_score(
            indicators.volatility, spread_percent, volume_score, average_price
        )

        trend_strength = indicators.trend_strength
        momentum_score = _clamp(trend_strength * 100, -100.0, 100.0)

        return MetricsBundle(
            item_id=snapshot.item_id,
            margin_gp=self._round(margin_gp),
            margin_percent=self._round(margin_percent),
            gross_profit_gp=self._round(gross_profit),
            gross_profit_percent=self._round(gross_percent),
            ge_tax_amount=tax,
            net_sell_price=self._round(net_sell_price),
            is_tax_free=is_tax_free(high),
            average_price=self._round(average_price),
            price_spread_percent=self._round(spread_percent),
            volatility=self._round(indicators.volatility),
            velocity=self._round(velocity),
            momentum_score=self._round(momentum_score),
            trend_strength=self._round(trend_strength, 4),
            risk_score=self._round(risk_score),
            expected_profit_per_hour=self._round(
                self.calculate_expected_profit_per_hour(margin_gp, velocity, volume_score, risk_score)
            ),
            volume=volume,
            volume_score=self._round(volume_score),
            liquidity_rating=self.calculate_liquidity_rating(volume, high),
            confidence=self.calculate_confidence(snapshot, history),
            data_quality=self.calculate_data_quality(snapshot),
            rsi=indicators.rsi,
            macd=indicators.macd,
            bollinger=indicators.bollinger,
            support_resistance=indicators.support_resistance,
            moving_average=indicators.moving_average,
            is_valid=True,
            defects=tuple(defects),
        )

    def _find_defects(self, snapshot: MarketSnapshot) -> List[str]:
        defects = []
        if snapshot.high_price is None:
            defects.append("missing_high_price")
        elif snapshot.high_price < 0:
            defects.append("negative_high_price")
        if snapshot.low_price is None:
            defects.append("missing_low_price")
        elif snapshot.low_price < 0:
            defects.append("negative_low_price")
        if (snapshot.high_price is not None and snapshot.low_price is not None
                and snapshot.low_price > snapshot.high_price):
            defects.append("low_price_exceeds_high_price")
        if snapshot.volume is None:
            defects.append("missing_volume")
        elif snapshot.volume < 0:
            defects.append("negative_volume")
        return defects

    @staticmethod
    def calculate_volume_score(volume: float) -> float:
        """Logarithmic volume score (0-100), 1M traded counts as 100."""
        if volume <= 0:
            return 0.0
        score = math.log10(volume + 1) / math.log10(MAX_REFERENCE_VOLUME) * 100
        return _clamp(score, 0.0, 100.0)

    @staticmethod
    def calculate_liquidity_rating(volume: float, price: float) -> str:
        """Rate liquidity by traded value (volume x price)."""
        if volume <= 0 or price <= 0:
            return "very_low"

        traded_value = volume * price
        if traded_value >= 100_000_000:
            return "very_high"
        if traded_value >= 10_000_000:
            return "high"
        if traded_value >= 1_000_000:
            return "medium"
        if traded_value >= 100_000:
            return "low"
        return "very_low"

    @staticmethod
    def calculate_velocity(volume: float, average_price: float) -> float:
        """Trading velocity (0-100) from traded value turnover."""
        if volume <= 0 or average_price <= 0:
            return 0.0
        return min(100.0, math.log10(volume * average_price + 1) * 10)

    @staticmethod
    def calculate_risk_score(
        volatility: float,
        spread_percent: float,
        volume_score: float,
        average_price: float,
    ) -> float:
        """
        Calculate risk score (0-100, higher = riskier).

        Components:
        - Volatility: up to 40 points
        - Spread relative to price: up to 20 points
        - Volume scarcity: up to 20 points
        - Price level: 15 points above 100M average, 10 points below 100 gp
        """
        risk = min(40.0, max(0.0, volatility))
        risk += min(20.0, max(0.0, spread_percent))
        risk += max(0.0, 20.0 - volume_score * 0.2)

        if average_price > 100_000_000:
            risk += 15
        if average_price < 100:
            risk += 10

        return _clamp(risk, 0.0, 100.0)

    @staticmethod
    def calculate_expected_profit_per_hour(
        margin_gp: float,
        velocity: float,
        volume_score: float,
        risk_score: float,
    ) -> float:
        """Tax-adjusted margin times estimated flips per hour; never negative."""
        if margin_gp <= 0:
            return 0.0
        flips_per_hour = (velocity / 100) * min(10.0, volume_score / 10) * (100 - risk_score) / 100
        return max(0.0, margin_gp * flips_per_hour)

    @staticmethod
    def calculate_confidence(snapshot: MarketSnapshot, history: Sequence[Any]) -> float:
        """Confidence (0-1) in the bundle based on data completeness."""
        confidence = 0.5
        if snapshot.volume is not None and snapshot.volume > 0:
            confidence += 0.2
        if (snapshot.high_price or 0) > 0 and (snapshot.low_price or 0) > 0:
            confidence += 0.2
        if len(history) >= 10:
            confidence += 0.1
        return round(min(1.0, confidence), 2)

    @staticmethod
    def calculate_data_quality(snapshot: MarketSnapshot) -> float:
        """Data quality score (0-100)."""
        high = snapshot.high_price
        low = snapshot.low_price
        quality = 0

        if high is not None and low is not None:
            if high > 0 and low > 0:
                quality += 30
            if high >= low:
                quality += 20
        if snapshot.volume is not None and snapshot.volume >= 0:
            quality += 20
        if snapshot.timestamp and snapshot.timestamp > 0:
            quality += 15
        if snapshot.source and snapshot.source != UNKNOWN_SOURCE:
            quality += 15

        return float(min(100, quality))

    @staticmethod
    def _round(value: float, decimals: int = 2) -> float:
        if value is None or not math.isfinite(value):
            return 0.0
        return round(float(value), decimals)
