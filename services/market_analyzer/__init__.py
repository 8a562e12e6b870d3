"""
Market Analyzer Service.

Analyzes Old School RuneScape Grand Exchange items from raw market snapshots:
- Metrics normalization (tax-adjusted margins, volatility, velocity, risk score)
- Technical indicator interpretation into a weighted BUY/SELL/HOLD signal
- Flipping opportunity identification, tagging and ranking

Produces one combined analysis per item and ranked opportunities per scan.
"""
from services.market_analyzer.metrics_normalizer import (
    MarketSnapshot,
    MetricsBundle,
    MetricsNormalizer
)
from services.market_analyzer.signal_interpreter import (
    SignalType,
    SignalComponent,
    MarketSignal,
    SignalInterpreter
)
from services.market_analyzer.opportunity_ranker import (
    RiskLevel,
    FlippingOpportunity,
    TradingViability,
    OpportunityRanker
)
from services.market_analyzer.analysis_service import MarketAnalysis, TradingAnalysisService

__all__ = [
    'MarketSnapshot',
    'MetricsBundle',
    'MetricsNormalizer',
    'SignalType',
    'SignalComponent',
    'MarketSignal',
    'SignalInterpreter',
    'RiskLevel',
    'FlippingOpportunity',
    'TradingViability',
    'OpportunityRanker',
    'MarketAnalysis',
    'TradingAnalysisService',
]
