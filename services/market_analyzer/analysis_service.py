"""
Trading Analysis Service.

Orchestrates the analysis pipeline for Grand Exchange items:
snapshot -> metrics normalizer -> signal interpreter -> opportunity ranker.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Sequence

from shared.configs.models import MarketAnalyzerConfig
from shared.monitoring.structured_logger import StructuredLogger, log_business_event
from services.market_analyzer.metrics_normalizer import MetricsNormalizer, MarketSnapshot, MetricsBundle
from services.market_analyzer.signal_interpreter import SignalInterpreter, MarketSignal
from services.market_analyzer.opportunity_ranker import OpportunityRanker, FlippingOpportunity
from services.market_analyzer.repository import OpportunityRepository

logger = logging.getLogger(__name__)


@dataclass
class MarketAnalysis:
    """Combined analysis of one item."""
    item_id: int
    metrics: MetricsBundle
    market_signal: MarketSignal
    flipping_opportunity: Optional[FlippingOpportunity]
    summary: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'item_id': self.item_id,
            'metrics': self.metrics.to_dict(),
            'market_signal': self.market_signal.to_dict(),
            'flipping_opportunity': (
                self.flipping_opportunity.to_dict() if self.flipping_opportunity else None
            ),
            'summary': self.summary,
            'timestamp': self.timestamp,
        }


class TradingAnalysisService:
    """Service for analyzing items and surfacing flipping opportunities."""

    def __init__(
        self,
        config: Optional[MarketAnalyzerConfig] = None,
        repository: Optional[OpportunityRepository] = None,
    ):
        """
        Initialize the analysis service.

        Args:
            config: Market analyzer configuration (defaults used if None)
            repository: Repository for persisting opportunities (none if None)
        """
        self.config = config or MarketAnalyzerConfig()
        self.config.validate_weights_sum()
        self.repository = repository

        self.normalizer = MetricsNormalizer(self.config.indicators)
        self.interpreter = SignalInterpreter(self.config.signal_weights)
        self.ranker = OpportunityRanker(
            min_profit_margin=self.config.min_profit_margin,
            ranking_weights=self.config.ranking_weights,
        )

    def analyze(
        self,
        snapshot: MarketSnapshot,
        history: Optional[Sequence[Any]] = None,
        timestamp: Optional[int] = None,
    ) -> MarketAnalysis:
        """
        Analyze one item.

        Args:
            snapshot: Current market snapshot
            history: Prior prices, oldest first
            timestamp: Analysis time in epoch ms (now if None)

        Returns:
            MarketAnalysis with metrics, signal, optional opportunity and summary
        """
        timestamp = timestamp if timestamp is not None else int(time.time() * 1000)

        metrics = self.normalizer.normalize(snapshot, history)
        signal = self.interpreter.generate_signal(metrics, snapshot.mid_price, timestamp)
        opportunity = self.ranker.identify_opportunity(snapshot, metrics, signal, timestamp=timestamp)
        viability = self.ranker.assess_trading_viability(metrics, signal)

        if metrics.margin_percent > 10:
            profitability = 'HIGH'
        elif metrics.margin_percent > 5:
            profitability = 'MEDIUM'
        else:
            profitability = 'LOW'

        summary = {
            'recommendation': signal.type.value,
            'confidence': signal.confidence,
            'risk_level': opportunity.risk_level.value if opportunity else 'UNKNOWN',
            'profitability': profitability,
            'trading_viability': viability.to_dict(),
        }

        logger.info(
            f"Analyzed item {snapshot.item_id}: signal={signal.type.value}, "
            f"margin={metrics.margin_percent:.2f}%, risk={metrics.risk_score:.1f}, "
            f"opportunity={'yes' if opportunity else 'no'}"
        )

        return MarketAnalysis(
            item_id=snapshot.item_id,
            metrics=metrics,
            market_signal=signal,
            flipping_opportunity=opportunity,
            summary=summary,
            timestamp=timestamp,
        )

    def scan(
        self,
        snapshots: Sequence[MarketSnapshot],
        history_map: Optional[Dict[int, Sequence[Any]]] = None,
        limit: Optional[int] = None,
    ) -> List[FlippingOpportunity]:
        """
        Analyze a batch of items and rank the opportunities found.

        A failing item is logged and skipped.

        Args:
            snapshots: Snapshots to analyze
            history_map: Price history per item id
            limit: Max opportunities returned (config max_results if None)

        Returns:
            Ranked opportunities, best first
        """
        history_map = history_map or {}
        limit = limit if limit is not None else self.config.max_results
        opportunities = []
        failed = 0

        for snapshot in snapshots:
            StructuredLogger.set_context(item_id=getattr(snapshot, "item_id", None))
            try:
                analysis = self.analyze(snapshot, history_map.get(snapshot.item_id, []))
                if analysis.flipping_opportunity is not None:
                    opportunities.append(analysis.flipping_opportunity)
                if self.repository is not None and analysis.metrics.is_valid:
                    self.repository.save_snapshot(snapshot, analysis.metrics)
            except Exception as e:
                failed += 1
                logger.error(f"Error analyzing item {getattr(snapshot, 'item_id', '?')}: {e}", exc_info=True)

        StructuredLogger.clear_context()

        ranked = self.ranker.rank_opportunities(opportunities, limit)

        if self.repository is not None and self.config.persist_opportunities:
            self.repository.save_opportunities(ranked)

        logger.info(
            f"Scan complete: {len(snapshots)} items, {len(opportunities)} opportunities, "
            f"{failed} failed, returning {len(ranked)}"
        )
        log_business_event(
            logger,
            "opportunity_scan",
            scanned=len(snapshots),
            opportunities=len(ranked),
            failed=failed,
        )
        return ranked

    def find_trending(
        self,
        snapshots: Sequence[MarketSnapshot],
        limit: Optional[int] = None,
        now_ms: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Rank items by trending score: fresh data with a wide spread.

        Args:
            snapshots: Latest snapshot per item
            limit: Max items returned (config max_results if None)
            now_ms: Current time in epoch ms (now if None)

        Returns:
            Items with their trending score, highest first
        """
        limit = limit if limit is not None else self.config.max_results
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)

        scored = [(snapshot, self.ranker.trending_score(snapshot, now_ms)) for snapshot in snapshots]
        scored.sort(key=lambda pair: pair[1], reverse=True)

        return [
            {
                'item_id': snapshot.item_id,
                'item_name': snapshot.item_name,
                'high_price': snapshot.high_price,
                'low_price': snapshot.low_price,
                'timestamp': snapshot.timestamp,
                'trending_score': round(score, 2),
            }
            for snapshot, score in scored[:limit]
        ]
