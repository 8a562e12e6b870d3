"""
Market Signal Interpreter.

Maps each technical indicator of a metrics bundle to a directional signal
(BUY / SELL / HOLD) with a strength and a rationale, then combines the
component signals into one weighted consensus signal:
- RSI: oversold / overbought oscillator
- MACD: momentum crossover
- Bollinger Bands: price position against the bands
- Momentum: trailing up/down move balance
- Volatility: caution only, never directional
"""
import logging
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Dict, Optional, Any

from shared.configs.models import SignalWeights
from services.market_analyzer.indicators import MACDValue, BollingerBands
from services.market_analyzer.metrics_normalizer import MetricsBundle

logger = logging.getLogger(__name__)


class SignalType(str, Enum):
    """Directional signal types."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


@dataclass
class SignalComponent:
    """Signal derived from a single indicator."""
    source: str
    signal: SignalType
    strength: float  # 0-1
    interpretation: str
    weight: float = 0.0  # 0-1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'source': self.source,
            'signal': self.signal.value,
            'strength': self.strength,
            'interpretation': self.interpretation,
            'weight': self.weight,
        }


@dataclass
class SignalAnalysis:
    """Weighted breakdown behind a market signal."""
    buy_weight: float = 0.0
    sell_weight: float = 0.0
    hold_weight: float = 0.0
    current_price: float = 0.0
    interpretation: str = ""


@dataclass
class MarketSignal:
    """Weighted consensus of indicator signals."""
    type: SignalType
    strength: float  # 0-1
    confidence: float  # 0-1
    components: List[SignalComponent] = field(default_factory=list)
    analysis: SignalAnalysis = field(default_factory=SignalAnalysis)
    timestamp: int = 0

    def summary(self) -> Dict[str, Any]:
        """Compact form embedded in flipping opportunities."""
        return {
            'type': self.type.value,
            'strength': self.strength,
            'confidence': self.confidence,
            'interpretation': self.analysis.interpretation,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'type': self.type.value,
            'strength': self.strength,
            'confidence': self.confidence,
            'components': [c.to_dict() for c in self.components],
            'analysis': asdict(self.analysis),
            'timestamp': self.timestamp,
        }


class SignalInterpreter:
    """
    Interpreter turning indicators into a consensus market signal.

    Each interpret_* method is a pure function of its indicator value.
    """

    SAFE_DEFAULT_STRENGTH = 0.1
    SAFE_DEFAULT_CONFIDENCE = 0.5

    def __init__(self, weights: Optional[SignalWeights] = None):
        """
        Initialize the signal interpreter.

        Args:
            weights: Component weights (defaults used if None)
        """
        self.weights = weights or SignalWeights()
        self.weights.validate_weights_sum()

    def interpret_rsi(self, rsi: float) -> SignalComponent:
        """Interpret an RSI value in [0, 100]."""
        if rsi < 30:
            return SignalComponent(
                'RSI', SignalType.BUY, (30 - rsi) / 30,
                'Oversold condition - potential buying opportunity'
            )
        if rsi > 70:
            return SignalComponent(
                'RSI', SignalType.SELL, (rsi - 70) / 30,
                'Overbought condition - potential selling opportunity'
            )
        if 45 <= rsi <= 55:
            return SignalComponent(
                'RSI', SignalType.HOLD, 0.2,
                'Neutral momentum - wait for clearer signal'
            )
        return SignalComponent(
            'RSI', SignalType.HOLD, 0.1,
            'Moderate momentum - monitor for trend changes'
        )

    def interpret_macd(self, macd: MACDValue) -> SignalComponent:
        """Interpret MACD line, signal line and histogram."""
        if macd.macd > macd.signal and macd.histogram > 0:
            return SignalComponent(
                'MACD', SignalType.BUY, min(1.0, abs(macd.histogram) / 10),
                'MACD above signal line with positive histogram - bullish momentum'
            )
        if macd.macd < macd.signal and macd.histogram < 0:
            return SignalComponent(
                'MACD', SignalType.SELL, min(1.0, abs(macd.histogram) / 10),
                'MACD below signal line with negative histogram - bearish momentum'
            )
        if abs(macd.histogram) < 0.1:
            return SignalComponent(
                'MACD', SignalType.HOLD, 0.1,
                'MACD convergence - momentum changing, wait for direction'
            )
        return SignalComponent(
            'MACD', SignalType.HOLD, 0.2,
            'Mixed MACD signals - monitor for trend confirmation'
        )

    def interpret_bollinger(self, current_price: float, bands: BollingerBands) -> SignalComponent:
        """Interpret the current price against Bollinger Bands."""
        source = 'Bollinger Bands'

        if current_price <= bands.lower:
            strength = min(1.0, (bands.lower - current_price) / bands.lower) if bands.lower > 0 else 0.0
            return SignalComponent(
                source, SignalType.BUY, strength,
                'Price at or below lower band - potential oversold reversal'
            )
        if current_price >= bands.upper:
            strength = min(1.0, (current_price - bands.upper) / bands.upper) if bands.upper > 0 else 0.0
            return SignalComponent(
                source, SignalType.SELL, strength,
                'Price at or above upper band - potential overbought reversal'
            )

        band_width = bands.upper - bands.lower
        position = (current_price - bands.lower) / band_width if band_width > 0 else 0.5
        if 0.4 < position < 0.6:
            return SignalComponent(
                source, SignalType.HOLD, 0.2,
                'Price near middle band - neutral momentum'
            )
        return SignalComponent(
            source, SignalType.HOLD, 0.1,
            'Price within bands - normal trading range'
        )

    def interpret_momentum(self, momentum: float) -> SignalComponent:
        """Interpret a momentum score in [-100, 100]."""
        if momentum > 20:
            return SignalComponent(
                'Momentum', SignalType.BUY, min(1.0, momentum / 50),
                'Strong positive momentum - bullish trend'
            )
        if momentum < -20:
            return SignalComponent(
                'Momentum', SignalType.SELL, min(1.0, abs(momentum) / 50),
                'Strong negative momentum - bearish trend'
            )
        if momentum > 5:
            return SignalComponent(
                'Momentum', SignalType.HOLD, 0.3,
                'Moderate positive momentum - cautious optimism'
            )
        if momentum < -5:
            return SignalComponent(
                'Momentum', SignalType.HOLD, 0.3,
                'Moderate negative momentum - cautious pessimism'
            )
        return SignalComponent(
            'Momentum', SignalType.HOLD, 0.1,
            'Low momentum - sideways movement'
        )

    def interpret_volatility(self, volatility: float) -> SignalComponent:
        """Interpret volatility. Always HOLD; strength reflects trading suitability."""
        if volatility > 30:
            return SignalComponent(
                'Volatility', SignalType.HOLD, 0.1,
                'High volatility - increased risk, avoid trading'
            )
        if volatility > 15:
            return SignalComponent(
                'Volatility', SignalType.HOLD, 0.2,
                'Moderate volatility - trade with caution'
            )
        if volatility > 5:
            return SignalComponent(
                'Volatility', SignalType.HOLD, 0.4,
                'Normal volatility - suitable for trading'
            )
        return SignalComponent(
            'Volatility', SignalType.HOLD, 0.3,
            'Low volatility - stable but limited opportunities'
        )

    def build_components(self, metrics: MetricsBundle, current_price: float) -> List[SignalComponent]:
        """
        Interpret every indicator present in the bundle.

        Indicators without enough history are omitted. An invalid bundle
        contributes no components.
        """
        if not metrics.is_valid:
            return []

        components = []
        if metrics.rsi is not None:
            components.append(self._weighted(self.interpret_rsi(metrics.rsi), self.weights.rsi))
        if metrics.macd is not None:
            components.append(self._weighted(self.interpret_macd(metrics.macd), self.weights.macd))
        if metrics.bollinger is not None:
            components.append(self._weighted(
                self.interpret_bollinger(current_price, metrics.bollinger), self.weights.bollinger
            ))
        if metrics.momentum_score is not None:
            components.append(self._weighted(
                self.interpret_momentum(metrics.momentum_score), self.weights.momentum
            ))
        if metrics.volatility is not None:
            components.append(self._weighted(
                self.interpret_volatility(metrics.volatility), self.weights.volatility
            ))
        return components

    def generate_signal(
        self,
        metrics: MetricsBundle,
        current_price: float,
        timestamp: Optional[int] = None,
    ) -> MarketSignal:
        """
        Generate the consensus market signal for one item.

        Args:
            metrics: Normalized metrics bundle
            current_price: Current mid price of the item
            timestamp: Signal time in epoch ms (now if None)

        Returns:
            MarketSignal (safe HOLD default on unexpected errors)
        """
        timestamp = timestamp if timestamp is not None else int(time.time() * 1000)

        try:
            components = self.build_components(metrics, current_price)

            buy_weight = self._weight_of(components, SignalType.BUY)
            sell_weight = self._weight_of(components, SignalType.SELL)
            hold_weight = self._weight_of(components, SignalType.HOLD)

            if buy_weight > sell_weight and buy_weight > hold_weight:
                dominant, dominant_weight = SignalType.BUY, buy_weight
            elif sell_weight > buy_weight and sell_weight > hold_weight:
                dominant, dominant_weight = SignalType.SELL, sell_weight
            else:
                dominant, dominant_weight = SignalType.HOLD, hold_weight

            total_weight = buy_weight + sell_weight + hold_weight
            confidence = dominant_weight / total_weight if total_weight > 0 else 0.0
            strength = min(1.0, dominant_weight)
            confidence = min(1.0, confidence)

            signal = MarketSignal(
                type=dominant,
                strength=strength,
                confidence=confidence,
                components=components,
                analysis=SignalAnalysis(
                    buy_weight=buy_weight,
                    sell_weight=sell_weight,
                    hold_weight=hold_weight,
                    current_price=current_price,
                    interpretation=self.generate_interpretation(dominant, strength, confidence, components),
                ),
                timestamp=timestamp,
            )

            logger.debug(
                f"Signal for item {metrics.item_id}: {dominant.value} "
                f"(strength={strength:.3f}, confidence={confidence:.3f}, components={len(components)})"
            )
            return signal

        except Exception as e:
            logger.error(f"Error generating market signal: {e}", exc_info=True)
            return self.safe_default(current_price, timestamp)

    def safe_default(self, current_price: float = 0.0, timestamp: int = 0) -> MarketSignal:
        """Neutral HOLD signal returned when a signal cannot be computed."""
        try:
            price = float(current_price or 0.0)
        except (TypeError, ValueError):
            price = 0.0
        return MarketSignal(
            type=SignalType.HOLD,
            strength=self.SAFE_DEFAULT_STRENGTH,
            confidence=self.SAFE_DEFAULT_CONFIDENCE,
            components=[],
            analysis=SignalAnalysis(
                hold_weight=self.SAFE_DEFAULT_STRENGTH,
                current_price=price,
                interpretation='Error generating signal - defaulting to HOLD',
            ),
            timestamp=timestamp,
        )

    def generate_interpretation(
        self,
        signal: SignalType,
        strength: float,
        confidence: float,
        components: List[SignalComponent],
    ) -> str:
        """Human-readable summary listing supporting and conflicting sources."""
        strength_level = 'Strong' if strength > 0.7 else 'Moderate' if strength > 0.4 else 'Weak'
        confidence_level = 'High' if confidence > 0.7 else 'Medium' if confidence > 0.4 else 'Low'

        parts = [f"{strength_level} {signal.value} signal with {confidence_level} confidence."]

        supporting = [c.source for c in components if c.signal == signal]
        if supporting:
            parts.append(f"Supported by: {', '.join(supporting)}.")

        conflicting = [
            c.source for c in components
            if c.signal != signal and c.signal != SignalType.HOLD
        ]
        if conflicting:
            parts.append(f"Conflicting signals from: {', '.join(conflicting)}.")

        if strength > 0.6 and confidence > 0.6:
            parts.append('Recommended for execution.')
        elif strength > 0.4 and confidence > 0.4:
            parts.append('Consider with caution.')
        else:
            parts.append('Monitor for stronger signals.')

        return ' '.join(parts)

    @staticmethod
    def _weighted(component: SignalComponent, weight: float) -> SignalComponent:
        component.weight = weight
        return component

    @staticmethod
    def _weight_of(components: List[SignalComponent], signal_type: SignalType) -> float:
        return sum(c.weight * c.strength for c in components if c.signal == signal_type)
