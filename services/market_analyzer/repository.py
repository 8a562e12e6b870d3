"""
Opportunity Repository.

Handles storage and retrieval of market snapshots and surfaced flipping
opportunities.
"""
from typing import Optional, List
from sqlalchemy.orm import Session
from sqlalchemy import desc
import logging

from shared.database.models import MarketSnapshotRecord, FlippingOpportunityRecord
from services.market_analyzer.metrics_normalizer import MarketSnapshot, MetricsBundle
from services.market_analyzer.opportunity_ranker import FlippingOpportunity

logger = logging.getLogger(__name__)


class OpportunityRepository:
    """Repository for market snapshot and opportunity data access."""

    def __init__(self, db_session: Session):
        """
        Initialize the repository.

        Args:
            db_session: SQLAlchemy database session
        """
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def save_snapshot(self, snapshot: MarketSnapshot, metrics: Optional[MetricsBundle] = None) -> bool:
        """
        Save a market snapshot with the metrics derived from it.

        Args:
            snapshot: Market snapshot (must carry both prices)
            metrics: Normalized metrics for the snapshot

        Returns:
            True if successful, False otherwise
        """
        try:
            record = MarketSnapshotRecord(
                item_id=snapshot.item_id,
                item_name=snapshot.item_name,
                timestamp=snapshot.timestamp,
                high_price=int(snapshot.high_price),
                low_price=int(snapshot.low_price),
                volume=int(snapshot.volume or 0),
                source=snapshot.source,
            )
            if metrics is not None and metrics.is_valid:
                record.margin_gp = metrics.margin_gp
                record.margin_percent = metrics.margin_percent
                record.risk_score = metrics.risk_score
                record.volatility = metrics.volatility

            self.db.add(record)
            self.db.commit()
            return True

        except Exception as e:
            self.logger.error(f"Error saving snapshot for item {snapshot.item_id}: {e}")
            self.db.rollback()
            return False

    def save_opportunities(self, opportunities: List[FlippingOpportunity]) -> int:
        """
        Save surfaced flipping opportunities.

        Args:
            opportunities: Opportunities to store

        Returns:
            Number of opportunities saved (0 on failure)
        """
        if not opportunities:
            return 0

        try:
            for opportunity in opportunities:
                self.db.add(self._to_record(opportunity))
            self.db.commit()
            self.logger.debug(f"Saved {len(opportunities)} flipping opportunities")
            return len(opportunities)

        except Exception as e:
            self.logger.error(f"Error saving flipping opportunities: {e}")
            self.db.rollback()
            return 0

    def get_recent_opportunities(
        self,
        limit: int = 50,
        risk_level: Optional[str] = None,
        min_profit_percent: Optional[float] = None,
    ) -> List[FlippingOpportunityRecord]:
        """
        Get the most recently detected opportunities.

        Args:
            limit: Max number of records
            risk_level: Only this risk level (LOW, MEDIUM, HIGH)
            min_profit_percent: Only opportunities at or above this net margin

        Returns:
            List of FlippingOpportunityRecord objects, newest first
        """
        try:
            query = self.db.query(FlippingOpportunityRecord)
            if risk_level:
                query = query.filter(FlippingOpportunityRecord.risk_level == risk_level.upper())
            if min_profit_percent is not None:
                query = query.filter(FlippingOpportunityRecord.net_profit_percent >= min_profit_percent)

            return (
                query.order_by(
                    desc(FlippingOpportunityRecord.detected_at),
                    desc(FlippingOpportunityRecord.id),
                )
                .limit(limit)
                .all()
            )
        except Exception as e:
            self.logger.error(f"Error retrieving recent opportunities: {e}")
            return []

    @staticmethod
    def _to_record(opportunity: FlippingOpportunity) -> FlippingOpportunityRecord:
        signal = opportunity.market_signal or {}
        return FlippingOpportunityRecord(
            item_id=opportunity.item_id,
            item_name=opportunity.item_name,
            buy_price=int(opportunity.buy_price),
            sell_price=int(opportunity.sell_price),
            gross_profit_gp=opportunity.gross_profit_gp,
            net_profit_gp=opportunity.net_profit_gp,
            net_profit_percent=opportunity.net_profit_percent,
            ge_tax_amount=opportunity.ge_tax_amount,
            is_tax_free=opportunity.is_tax_free,
            risk_level=opportunity.risk_level.value,
            risk_score=opportunity.risk_score,
            expected_profit_per_hour=opportunity.expected_profit_per_hour,
            time_to_flip=opportunity.time_to_flip,
            signal_type=signal.get('type'),
            signal_strength=signal.get('strength'),
            signal_confidence=signal.get('confidence'),
            tags=list(opportunity.tags),
            detected_at=opportunity.timestamp,
        )
