"""
Tests for the opportunity and risk action repositories.
"""
import dataclasses
import pytest

from shared.database.models import MarketSnapshotRecord
from services.market_analyzer.analysis_service import TradingAnalysisService
from services.market_analyzer.metrics_normalizer import MarketSnapshot
from services.market_analyzer.repository import OpportunityRepository
from services.risk_manager.portfolio import RiskAction, RiskActionType, Urgency
from services.risk_manager.repository import RiskActionRepository


@pytest.fixture
def opportunity(taxed_snapshot, now_ms):
    """A surfaced opportunity for the taxed snapshot."""
    analysis = TradingAnalysisService().analyze(taxed_snapshot, [], timestamp=now_ms)
    return analysis.flipping_opportunity


class TestOpportunityRepository:
    """Test suite for OpportunityRepository."""

    def test_save_snapshot_with_metrics(self, test_db_session, taxed_snapshot):
        repository = OpportunityRepository(test_db_session)
        metrics = TradingAnalysisService().normalizer.normalize(taxed_snapshot, [])

        assert repository.save_snapshot(taxed_snapshot, metrics) is True

        record = test_db_session.query(MarketSnapshotRecord).one()
        assert record.item_id == taxed_snapshot.item_id
        assert record.high_price == 2000
        assert record.margin_gp == 960

    def test_save_snapshot_failure_returns_false(self, test_db_session):
        """A snapshot without prices cannot be stored."""
        repository = OpportunityRepository(test_db_session)

        assert repository.save_snapshot(MarketSnapshot(item_id=1)) is False

    def test_save_and_query_opportunities(self, test_db_session, opportunity, now_ms):
        repository = OpportunityRepository(test_db_session)
        older = dataclasses.replace(opportunity, item_id=2, timestamp=now_ms - 1000, net_profit_percent=4.0)

        assert repository.save_opportunities([opportunity, older]) == 2

        records = repository.get_recent_opportunities()
        assert [r.item_id for r in records] == [opportunity.item_id, 2]
        assert records[0].tags == opportunity.tags
        assert records[0].signal_type == opportunity.market_signal['type']

    def test_query_filters(self, test_db_session, opportunity, now_ms):
        repository = OpportunityRepository(test_db_session)
        older = dataclasses.replace(opportunity, item_id=2, timestamp=now_ms - 1000, net_profit_percent=4.0)
        repository.save_opportunities([opportunity, older])

        assert [r.item_id for r in repository.get_recent_opportunities(min_profit_percent=50)] == [opportunity.item_id]
        assert len(repository.get_recent_opportunities(risk_level='low')) == 2
        assert repository.get_recent_opportunities(risk_level='HIGH') == []
        assert len(repository.get_recent_opportunities(limit=1)) == 1

    def test_save_nothing(self, test_db_session):
        assert OpportunityRepository(test_db_session).save_opportunities([]) == 0


class TestRiskActionRepository:
    """Test suite for RiskActionRepository."""

    def test_save_and_query_actions(self, test_db_session, now_ms):
        repository = RiskActionRepository(test_db_session)
        actions = [
            RiskAction(
                type=RiskActionType.STOP_LOSS_TRIGGERED,
                urgency=Urgency.HIGH,
                reason='Price fell below stop-loss',
                position_id='pos-1',
                item_id=4151,
                details={'current_price': 940.0, 'stop_loss_price': 950.0},
                timestamp=now_ms,
            ),
            RiskAction(
                type=RiskActionType.INCREASE_LIQUIDITY,
                urgency=Urgency.HIGH,
                reason='Sell least profitable positions',
                timestamp=now_ms + 1,
            ),
        ]

        assert repository.save_actions(actions) == 2

        records = repository.get_recent_actions()
        assert [r.action_type for r in records] == ['INCREASE_LIQUIDITY', 'STOP_LOSS_TRIGGERED']
        assert records[1].details['stop_loss_price'] == 950.0

        by_position = repository.get_recent_actions(position_id='pos-1')
        assert len(by_position) == 1
        assert by_position[0].urgency == 'HIGH'

    def test_save_nothing(self, test_db_session):
        assert RiskActionRepository(test_db_session).save_actions([]) == 0
