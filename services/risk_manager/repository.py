"""
Risk Action Repository.

Handles storage and retrieval of risk management actions.
"""
from typing import Optional, List
from sqlalchemy.orm import Session
from sqlalchemy import desc
import logging

from shared.database.models import RiskActionRecord
from services.risk_manager.portfolio import RiskAction

logger = logging.getLogger(__name__)


class RiskActionRepository:
    """Repository for risk action data access."""

    def __init__(self, db_session: Session):
        """
        Initialize the repository.

        Args:
            db_session: SQLAlchemy database session
        """
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def save_actions(self, actions: List[RiskAction]) -> int:
        """
        Save risk actions.

        Args:
            actions: Actions to store

        Returns:
            Number of actions saved (0 on failure)
        """
        if not actions:
            return 0

        try:
            for action in actions:
                self.db.add(RiskActionRecord(
                    action_type=action.type.value,
                    position_id=action.position_id,
                    item_id=action.item_id,
                    urgency=action.urgency.value,
                    reason=action.reason,
                    details=action.details,
                    issued_at=action.timestamp,
                ))
            self.db.commit()
            self.logger.debug(f"Saved {len(actions)} risk actions")
            return len(actions)

        except Exception as e:
            self.logger.error(f"Error saving risk actions: {e}")
            self.db.rollback()
            return 0

    def get_recent_actions(
        self,
        limit: int = 50,
        position_id: Optional[str] = None,
    ) -> List[RiskActionRecord]:
        """
        Get the most recently issued actions.

        Args:
            limit: Max number of records
            position_id: Only actions for this position

        Returns:
            List of RiskActionRecord objects, newest first
        """
        try:
            query = self.db.query(RiskActionRecord)
            if position_id:
                query = query.filter(RiskActionRecord.position_id == position_id)
            return (
                query.order_by(desc(RiskActionRecord.issued_at), desc(RiskActionRecord.id))
                .limit(limit)
                .all()
            )
        except Exception as e:
            self.logger.error(f"Error retrieving risk actions: {e}")
            return []
