"""
Unit tests for the Opportunity Ranker.

Tests opportunity identification, risk classification, flip time estimates,
tags, viability and ranking.
"""
import dataclasses
import pytest

from services.market_analyzer.metrics_normalizer import MarketSnapshot, MetricsBundle, MetricsNormalizer
from services.market_analyzer.signal_interpreter import SignalInterpreter, MarketSignal, SignalType
from services.market_analyzer.opportunity_ranker import (
    OpportunityRanker,
    RiskLevel,
    ViabilityRating,
)


@pytest.fixture
def normalizer():
    return MetricsNormalizer()


@pytest.fixture
def interpreter():
    return SignalInterpreter()


@pytest.fixture
def ranker():
    """Create ranker with the default 5% minimum margin."""
    return OpportunityRanker()


def _evaluate(normalizer, interpreter, snapshot, history=None):
    metrics = normalizer.normalize(snapshot, history or [])
    signal = interpreter.generate_signal(metrics, snapshot.mid_price, timestamp=1)
    return metrics, signal


class TestOpportunityIdentification:
    """Test suite for identify_opportunity."""

    def test_taxed_opportunity(self, ranker, normalizer, interpreter, taxed_snapshot, now_ms):
        """A 96% margin is surfaced with tax-adjusted profit."""
        metrics, signal = _evaluate(normalizer, interpreter, taxed_snapshot)
        opportunity = ranker.identify_opportunity(taxed_snapshot, metrics, signal, timestamp=now_ms)

        assert opportunity is not None
        assert opportunity.buy_price == 1000
        assert opportunity.sell_price == 2000
        assert opportunity.gross_profit_gp == 1000
        assert opportunity.net_profit_gp == 960
        assert opportunity.net_profit_percent == 96.0
        assert opportunity.ge_tax_amount == 40
        assert opportunity.risk_level == RiskLevel.LOW
        assert opportunity.market_signal['type'] == signal.type.value
        assert opportunity.timestamp == now_ms
        assert 'high_profit' in opportunity.tags
        assert 'tax_free' not in opportunity.tags

    def test_tax_free_opportunity_tagged(self, ranker, normalizer, interpreter, tax_free_snapshot):
        """Sales at or below 1000 gp are tagged tax free."""
        metrics, signal = _evaluate(normalizer, interpreter, tax_free_snapshot)
        opportunity = ranker.identify_opportunity(tax_free_snapshot, metrics, signal)

        assert opportunity.is_tax_free
        assert 'tax_free' in opportunity.tags
        assert 'high_profit' in opportunity.tags

    def test_margin_below_minimum_rejected(self, ranker, normalizer, interpreter):
        """3% margin with a 5% minimum is no opportunity."""
        snapshot = MarketSnapshot(item_id=1, high_price=515, low_price=500, volume=1000)
        metrics, signal = _evaluate(normalizer, interpreter, snapshot)

        assert metrics.margin_percent == 3.0
        assert ranker.identify_opportunity(snapshot, metrics, signal) is None

    def test_minimum_margin_override(self, ranker, normalizer, interpreter):
        """A per-call minimum replaces the configured one."""
        snapshot = MarketSnapshot(item_id=1, high_price=515, low_price=500, volume=1000)
        metrics, signal = _evaluate(normalizer, interpreter, snapshot)

        assert ranker.identify_opportunity(snapshot, metrics, signal, min_profit_margin=2.0) is not None

    @pytest.mark.parametrize("high,low", [(None, 1000), (2000, None), (1000, 1000), (900, 1000), (2000, 0)])
    def test_invalid_prices_rejected(self, ranker, normalizer, interpreter, high, low):
        """Missing, equal, inverted or zero prices never produce an opportunity."""
        snapshot = MarketSnapshot(item_id=1, high_price=high, low_price=low, volume=100)
        metrics, signal = _evaluate(normalizer, interpreter, snapshot)

        assert ranker.identify_opportunity(snapshot, metrics, signal) is None

    def test_tax_can_remove_the_margin(self, ranker, normalizer, interpreter):
        """A 2% spread above the threshold is eaten by the tax."""
        snapshot = MarketSnapshot(item_id=1, high_price=10200, low_price=10000, volume=1000)
        metrics, signal = _evaluate(normalizer, interpreter, snapshot)

        assert metrics.margin_gp == -4
        assert ranker.identify_opportunity(snapshot, metrics, signal, min_profit_margin=0.0) is None


class TestRankerHelpers:
    """Test suite for classification, estimates and tags."""

    @pytest.mark.parametrize("score,level", [
        (0, RiskLevel.LOW),
        (40, RiskLevel.LOW),
        (40.01, RiskLevel.MEDIUM),
        (70, RiskLevel.MEDIUM),
        (70.5, RiskLevel.HIGH),
        (100, RiskLevel.HIGH),
    ])
    def test_classify_risk_level(self, score, level):
        assert OpportunityRanker.classify_risk_level(score) == level

    def test_time_to_flip_clamped(self):
        """Flip time stays within [5, 120] minutes."""
        assert OpportunityRanker.estimate_time_to_flip(0, 0) == 120.0
        assert OpportunityRanker.estimate_time_to_flip(1, 1) == 120.0
        assert OpportunityRanker.estimate_time_to_flip(10 ** 9, 100) == 5.0

    def test_time_to_flip_formula(self):
        """60 / ln(volume x velocity / 100 + 1)."""
        import math
        assert OpportunityRanker.estimate_time_to_flip(1000, 100) == pytest.approx(60 / math.log(1001))

    def test_tags_are_independent(self):
        """Every rule contributes its own tag."""
        metrics = MetricsBundle(
            item_id=1,
            risk_score=20,
            margin_percent=15,
            volume_score=80,
            volatility=40,
            velocity=80,
            is_tax_free=True,
            expected_profit_per_hour=2_000_000,
        )
        signal = MarketSignal(type=SignalType.BUY, strength=0.8, confidence=0.9)

        tags = OpportunityRanker.generate_tags(metrics, signal)

        assert set(tags) == {
            'low_risk', 'good_profit', 'high_volume', 'volatile',
            'fast_flip', 'strong_buy', 'tax_free', 'high_gp_per_hour',
        }

    def test_tags_for_risky_slow_item(self):
        metrics = MetricsBundle(
            item_id=1,
            risk_score=80,
            margin_percent=5,
            volume_score=10,
            volatility=5,
            velocity=10,
            expected_profit_per_hour=600_000,
        )
        signal = MarketSignal(type=SignalType.SELL, strength=0.9, confidence=0.9)

        tags = OpportunityRanker.generate_tags(metrics, signal)

        assert set(tags) == {'high_risk', 'low_volume', 'stable', 'slow_flip', 'strong_sell', 'good_gp_per_hour'}

    def test_trending_score(self, now_ms):
        """Fresh data with a 10% spread."""
        snapshot = MarketSnapshot(item_id=1, timestamp=now_ms, high_price=1100, low_price=1000)

        assert OpportunityRanker.trending_score(snapshot, now_ms) == pytest.approx(0.6 * 100 + 0.4 * 20)

    def test_trending_score_guards_zero_low(self, now_ms):
        snapshot = MarketSnapshot(item_id=1, timestamp=now_ms, high_price=1100, low_price=0)

        assert OpportunityRanker.trending_score(snapshot, now_ms) == pytest.approx(60.0)


class TestViabilityAndRanking:
    """Test suite for viability and ranking."""

    def test_viability_of_strong_item(self, ranker, normalizer, interpreter, taxed_snapshot):
        """High margin, moderate risk and volume with a confident signal."""
        metrics, signal = _evaluate(normalizer, interpreter, taxed_snapshot)
        viability = ranker.assess_trading_viability(metrics, signal)

        assert viability.score == 75.0
        assert viability.rating == ViabilityRating.EXCELLENT
        assert 'High profit margin' in viability.factors
        assert viability.recommendation.startswith('Highly recommended for trading.')

    def test_viability_of_weak_item(self, ranker):
        """No margin, high risk, thin volume."""
        metrics = MetricsBundle(item_id=1, margin_percent=1, risk_score=90, volume_score=5)
        signal = MarketSignal(type=SignalType.HOLD, strength=0.1, confidence=0.3)

        viability = ranker.assess_trading_viability(metrics, signal)

        assert viability.score == 10.0
        assert viability.rating == ViabilityRating.AVOID
        assert viability.to_dict()['rating'] == 'AVOID'

    def test_rank_opportunities(self, ranker, normalizer, interpreter, taxed_snapshot):
        """Best profitability score first; ties broken by item id."""
        metrics, signal = _evaluate(normalizer, interpreter, taxed_snapshot)
        base = ranker.identify_opportunity(taxed_snapshot, metrics, signal)

        low = dataclasses.replace(base, item_id=3, net_profit_percent=6.0)
        high = dataclasses.replace(base, item_id=2, net_profit_percent=40.0)
        tied = dataclasses.replace(base, item_id=1, net_profit_percent=40.0)

        ranked = ranker.rank_opportunities([low, high, None, tied])

        assert [o.item_id for o in ranked] == [1, 2, 3]
        assert ranker.rank_opportunities([low, high, tied], limit=1)[0].item_id == 1

    def test_profitability_score_caps_profit(self, ranker, normalizer, interpreter, taxed_snapshot):
        """Profit contributes at most 100 points before weighting."""
        metrics, signal = _evaluate(normalizer, interpreter, taxed_snapshot)
        base = ranker.identify_opportunity(taxed_snapshot, metrics, signal)

        assert ranker.profitability_score(dataclasses.replace(base, net_profit_percent=50)) == pytest.approx(
            ranker.profitability_score(dataclasses.replace(base, net_profit_percent=500))
        )
