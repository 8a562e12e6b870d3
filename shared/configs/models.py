"""
Configuration models using Pydantic for validation.
"""
from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Market Analyzer Configuration
# =============================================================================

class SignalWeights(BaseModel):
    """Weights for the consensus market signal."""
    rsi: float = Field(default=0.30, ge=0.0, le=1.0, description="RSI component weight")
    macd: float = Field(default=0.25, ge=0.0, le=1.0, description="MACD component weight")
    bollinger: float = Field(default=0.20, ge=0.0, le=1.0, description="Bollinger Bands component weight")
    momentum: float = Field(default=0.15, ge=0.0, le=1.0, description="Momentum component weight")
    volatility: float = Field(default=0.10, ge=0.0, le=1.0, description="Volatility component weight")

    def validate_weights_sum(self) -> None:
        """Validate that all weights sum to approximately 1.0."""
        total = self.rsi + self.macd + self.bollinger + self.momentum + self.volatility
        if not (0.99 <= total <= 1.01):
            raise ValueError(f"Signal weights must sum to 1.0, got {total}")


class RankingWeights(BaseModel):
    """Weights for the composite profitability score used to rank opportunities."""
    weight_profit: float = Field(default=0.40, ge=0.0, le=1.0, description="Net profit weight")
    weight_safety: float = Field(default=0.30, ge=0.0, le=1.0, description="Inverse risk weight")
    weight_volume: float = Field(default=0.20, ge=0.0, le=1.0, description="Volume score weight")
    weight_velocity: float = Field(default=0.10, ge=0.0, le=1.0, description="Velocity weight")

    def validate_weights_sum(self) -> None:
        """Validate that all weights sum to approximately 1.0."""
        total = self.weight_profit + self.weight_safety + self.weight_volume + self.weight_velocity
        if not (0.99 <= total <= 1.01):
            raise ValueError(f"Ranking weights must sum to 1.0, got {total}")


class IndicatorConfig(BaseModel):
    """Technical indicator periods applied to historical price series."""
    sma_period: int = Field(default=5, ge=2, le=100, description="Trend moving average period")
    rsi_period: int = Field(default=14, ge=2, le=100, description="RSI period")
    macd_fast_period: int = Field(default=12, ge=2, le=50, description="MACD fast period")
    macd_slow_period: int = Field(default=26, ge=5, le=100, description="MACD slow period")
    macd_signal_period: int = Field(default=9, ge=2, le=50, description="MACD signal period")
    bb_period: int = Field(default=20, ge=5, le=100, description="Bollinger Bands period")
    bb_std_dev: float = Field(default=2.0, ge=1.0, le=5.0, description="Bollinger Bands std dev")
    trend_window: int = Field(default=14, ge=2, le=100, description="Momentum trailing window (moves)")
    sr_period: int = Field(default=20, ge=2, le=200, description="Support/resistance window")


class MarketAnalyzerConfig(BaseModel):
    """Market analyzer configuration."""
    min_profit_margin: float = Field(default=5.0, ge=0.0, le=100.0, description="Min net margin (%) for an opportunity")
    max_results: int = Field(default=50, ge=1, le=1000, description="Max opportunities returned by a scan")
    persist_opportunities: bool = Field(default=True, description="Store surfaced opportunities")
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    signal_weights: SignalWeights = Field(default_factory=SignalWeights)
    ranking_weights: RankingWeights = Field(default_factory=RankingWeights)

    def validate_weights_sum(self) -> None:
        """Validate nested weight groups."""
        self.signal_weights.validate_weights_sum()
        self.ranking_weights.validate_weights_sum()


# =============================================================================
# Risk Management Configuration
# =============================================================================

HOUR_MS = 60 * 60 * 1000


class RiskManagerConfig(BaseModel):
    """Risk manager configuration. Fractions are 0-1, durations are milliseconds."""
    # Stop-loss
    default_stop_loss_percentage: float = Field(default=0.05, gt=0.0, le=0.5, description="Initial stop distance")
    trailing_stop_loss_percentage: float = Field(default=0.03, gt=0.0, le=0.5, description="Trailing stop distance")
    max_stop_loss_percentage: float = Field(default=0.15, gt=0.0, le=0.9, description="Cap for dynamic stop distance")

    # Position risk limits
    max_position_risk: float = Field(default=0.02, gt=0.0, le=1.0, description="Max risk per position")
    max_portfolio_risk: float = Field(default=0.10, gt=0.0, le=1.0, description="Max total portfolio risk")
    max_concentration_risk: float = Field(default=0.15, gt=0.0, le=1.0, description="Max weight of a single item")

    # Liquidity management
    min_liquidity_buffer: float = Field(default=0.10, ge=0.0, le=1.0, description="Min cash share of portfolio")
    liquidity_risk_threshold: float = Field(default=0.30, ge=0.0, le=1.0, description="Liquidity risk alert level")
    max_holding_time: int = Field(default=24 * HOUR_MS, gt=0, description="Max holding time (ms)")

    # Market risk
    volatility_threshold: float = Field(default=0.20, gt=0.0, description="Volatility threshold")

    # Rebalancing
    min_rebalance_interval: int = Field(default=HOUR_MS, ge=0, description="Min time between rebalances (ms)")

    # Monitoring
    monitor_enabled: bool = Field(default=True, description="Run the periodic risk tick in the API process")
    monitor_interval_seconds: int = Field(default=60, ge=5, le=3600, description="Risk monitoring tick interval")

    @field_validator('max_stop_loss_percentage')
    @classmethod
    def validate_max_stop_loss(cls, v, info):
        """The stop-loss cap may not be tighter than the default stop."""
        default = info.data.get('default_stop_loss_percentage')
        if default is not None and v < default:
            raise ValueError(
                f"max_stop_loss_percentage ({v}) must be >= default_stop_loss_percentage ({default})"
            )
        return v
