"""
Price Indicator Calculator.

Calculates the heuristic technical indicators used by the signal interpreter
from an item's historical price series (oldest first):
- Trend moving average (SMA)
- RSI (simple average of gains and losses)
- MACD with signal line and histogram
- Bollinger Bands
- Support and resistance levels
- Volatility of log returns
- Trend strength (up-moves minus down-moves)
"""
from dataclasses import dataclass
from typing import Optional, Sequence, Any
import logging
import numpy as np
import pandas as pd

from shared.configs.models import IndicatorConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MACDValue:
    """MACD line, signal line and histogram."""
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    """Bollinger Band levels."""
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class SupportResistance:
    """Lowest and highest price of the recent window."""
    support: float
    resistance: float


@dataclass(frozen=True)
class IndicatorSet:
    """Indicators calculated from one price series. ``None`` means not enough history."""
    moving_average: Optional[float] = None
    rsi: Optional[float] = None
    macd: Optional[MACDValue] = None
    bollinger: Optional[BollingerBands] = None
    support_resistance: Optional[SupportResistance] = None
    volatility: float = 0.0
    trend_strength: float = 0.0


class PriceIndicatorCalculator:
    """Calculator for price-series indicators using pandas."""

    def __init__(self, config: Optional[IndicatorConfig] = None):
        """
        Initialize the indicator calculator.

        Args:
            config: Indicator periods (defaults used if None)
        """
        self.config = config or IndicatorConfig()

    def to_series(self, prices: Sequence[Any]) -> pd.Series:
        """
        Convert a raw history to a clean float series.

        Non-numeric, non-finite and non-positive entries are dropped.
        """
        series = pd.to_numeric(pd.Series(list(prices), dtype=object), errors='coerce').astype(float)
        series = series.replace([np.inf, -np.inf], np.nan).dropna()
        return series[series > 0].reset_index(drop=True)

    def calculate_moving_average(self, prices: pd.Series) -> Optional[float]:
        """Simple moving average of the last ``sma_period`` prices."""
        period = self.config.sma_period
        if len(prices) < period:
            return None
        return self._safe_float(prices.iloc[-period:].mean())

    def calculate_rsi(self, prices: pd.Series) -> Optional[float]:
        """
        Calculate RSI from the last ``rsi_period`` price changes.

        Uses a simple average of gains and losses. A series with gains but no
        losses is 100; a completely flat series is neutral (50).

        Returns:
            RSI in [0, 100] or None with fewer than ``rsi_period + 1`` prices
        """
        period = self.config.rsi_period
        if len(prices) < period + 1:
            return None

        delta = prices.iloc[-(period + 1):].diff().dropna()
        avg_gain = delta.clip(lower=0).mean()
        avg_loss = (-delta.clip(upper=0)).mean()

        if avg_loss == 0:
            return 50.0 if avg_gain == 0 else 100.0

        rs = avg_gain / avg_loss
        rsi = 100 - (100 / (1 + rs))
        return float(min(100.0, max(0.0, rsi)))

    def calculate_macd(self, prices: pd.Series) -> Optional[MACDValue]:
        """
        Calculate MACD (fast EMA - slow EMA), its signal EMA and the histogram.

        Returns:
            MACDValue or None with fewer than ``macd_slow_period`` prices
        """
        if len(prices) < self.config.macd_slow_period:
            return None

        ema_fast = prices.ewm(span=self.config.macd_fast_period, adjust=False).mean()
        ema_slow = prices.ewm(span=self.config.macd_slow_period, adjust=False).mean()
        macd_line = ema_fast - ema_slow
        signal_line = macd_line.ewm(span=self.config.macd_signal_period, adjust=False).mean()
        histogram = macd_line - signal_line

        macd = self._safe_float(macd_line.iloc[-1])
        signal = self._safe_float(signal_line.iloc[-1])
        hist = self._safe_float(histogram.iloc[-1])
        if macd is None or signal is None or hist is None:
            return None
        return MACDValue(macd=macd, signal=signal, histogram=hist)

    def calculate_bollinger_bands(self, prices: pd.Series) -> Optional[BollingerBands]:
        """
        Calculate Bollinger Bands over the last ``bb_period`` prices.

        Uses the population standard deviation.
        """
        period = self.config.bb_period
        if len(prices) < period:
            return None

        window = prices.iloc[-period:]
        middle = window.mean()
        std = window.std(ddof=0)
        upper = middle + std * self.config.bb_std_dev
        lower = middle - std * self.config.bb_std_dev

        return BollingerBands(
            upper=float(upper),
            middle=float(middle),
            lower=float(lower),
        )

    def calculate_support_resistance(self, prices: pd.Series) -> Optional[SupportResistance]:
        """
        Support and resistance over the last ``sr_period`` prices.

        A shorter history uses every price; an empty one has no levels.
        """
        if prices.empty:
            return None

        window = prices.iloc[-self.config.sr_period:]
        return SupportResistance(
            support=float(window.min()),
            resistance=float(window.max()),
        )

    def calculate_volatility(self, prices: pd.Series) -> float:
        """
        Standard deviation of log returns, scaled to percent.

        Returns:
            Volatility (>= 0), 0 with fewer than 2 prices
        """
        if len(prices) < 2:
            return 0.0
        log_returns = np.log(prices / prices.shift(1)).dropna()
        if log_returns.empty:
            return 0.0
        volatility = self._safe_float(log_returns.std(ddof=0) * 100)
        return volatility if volatility is not None else 0.0

    def calculate_trend_strength(self, prices: pd.Series) -> float:
        """
        Net direction of the trailing ``trend_window`` moves.

        Returns:
            (up-moves - down-moves) / moves, in [-1, 1]; 0 with fewer than 2 prices
        """
        if len(prices) < 2:
            return 0.0
        window = prices.iloc[-(self.config.trend_window + 1):]
        moves = np.sign(window.diff().dropna())
        if moves.empty:
            return 0.0
        up_moves = int((moves > 0).sum())
        down_moves = int((moves < 0).sum())
        return (up_moves - down_moves) / len(moves)

    def calculate_all(self, history: Sequence[Any]) -> IndicatorSet:
        """
        Calculate every indicator for a price history.

        Args:
            history: Prior prices, oldest first

        Returns:
            IndicatorSet
        """
        prices = self.to_series(history or [])
        if len(prices) < len(history or []):
            logger.debug(f"Dropped {len(history) - len(prices)} unusable history points")

        return IndicatorSet(
            moving_average=self.calculate_moving_average(prices),
            rsi=self.calculate_rsi(prices),
            macd=self.calculate_macd(prices),
            bollinger=self.calculate_bollinger_bands(prices),
            support_resistance=self.calculate_support_resistance(prices),
            volatility=self.calculate_volatility(prices),
            trend_strength=self.calculate_trend_strength(prices),
        )

    def _safe_float(self, value: Any) -> Optional[float]:
        """Convert to float, mapping NaN and infinities to None."""
        try:
            if value is None or pd.isna(value) or np.isinf(value):
                return None
            return float(value)
        except (TypeError, ValueError):
            return None
