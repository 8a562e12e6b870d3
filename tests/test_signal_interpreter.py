"""
Unit tests for the Signal Interpreter.

Tests per-indicator interpretation rules and the weighted consensus.
"""
import pytest

from shared.configs.models import SignalWeights
from services.market_analyzer.indicators import MACDValue, BollingerBands
from services.market_analyzer.metrics_normalizer import MetricsBundle
from services.market_analyzer.signal_interpreter import (
    SignalInterpreter,
    SignalType,
    MarketSignal,
)


class TestIndicatorInterpretation:
    """Test suite for single indicator rules."""

    @pytest.fixture
    def interpreter(self):
        """Create interpreter with default weights."""
        return SignalInterpreter()

    def test_rsi_oversold_buy(self, interpreter):
        """RSI 25 -> BUY with strength 5/30."""
        component = interpreter.interpret_rsi(25)

        assert component.source == 'RSI'
        assert component.signal == SignalType.BUY
        assert component.strength == pytest.approx(0.1667, abs=1e-4)

    def test_rsi_overbought_sell(self, interpreter):
        """RSI 80 -> SELL with strength 10/30."""
        component = interpreter.interpret_rsi(80)

        assert component.signal == SignalType.SELL
        assert component.strength == pytest.approx(0.333, abs=1e-3)

    @pytest.mark.parametrize("rsi,strength", [(45, 0.2), (50, 0.2), (55, 0.2), (30, 0.1), (40, 0.1), (60, 0.1), (70, 0.1)])
    def test_rsi_hold_bands(self, interpreter, rsi, strength):
        """Neutral RSI is HOLD 0.2 inside 45-55, HOLD 0.1 elsewhere."""
        component = interpreter.interpret_rsi(rsi)

        assert component.signal == SignalType.HOLD
        assert component.strength == strength

    def test_macd_bullish(self, interpreter):
        """MACD above signal with positive histogram -> BUY."""
        component = interpreter.interpret_macd(MACDValue(macd=2.0, signal=1.0, histogram=5.0))

        assert component.signal == SignalType.BUY
        assert component.strength == pytest.approx(0.5)

    def test_macd_bearish_strength_capped(self, interpreter):
        """MACD below signal with negative histogram -> SELL, strength capped at 1."""
        component = interpreter.interpret_macd(MACDValue(macd=-30.0, signal=-10.0, histogram=-20.0))

        assert component.signal == SignalType.SELL
        assert component.strength == 1.0

    def test_macd_convergence(self, interpreter):
        """Tiny histogram without a crossover -> HOLD 0.1."""
        component = interpreter.interpret_macd(MACDValue(macd=1.0, signal=1.0, histogram=0.05))

        assert component.signal == SignalType.HOLD
        assert component.strength == 0.1

    def test_macd_mixed(self, interpreter):
        """Line and histogram disagree -> HOLD 0.2."""
        component = interpreter.interpret_macd(MACDValue(macd=1.0, signal=0.5, histogram=-0.5))

        assert component.signal == SignalType.HOLD
        assert component.strength == 0.2

    @pytest.fixture
    def bands(self):
        return BollingerBands(upper=110.0, middle=100.0, lower=90.0)

    def test_bollinger_below_lower_band(self, interpreter, bands):
        """Price below the lower band -> BUY scaled by distance."""
        component = interpreter.interpret_bollinger(81.0, bands)

        assert component.signal == SignalType.BUY
        assert component.strength == pytest.approx(0.1)

    def test_bollinger_above_upper_band(self, interpreter, bands):
        """Price above the upper band -> SELL scaled by distance."""
        component = interpreter.interpret_bollinger(121.0, bands)

        assert component.signal == SignalType.SELL
        assert component.strength == pytest.approx(0.1)

    @pytest.mark.parametrize("price,strength", [(100.0, 0.2), (95.0, 0.1), (108.0, 0.1)])
    def test_bollinger_inside_bands(self, interpreter, bands, price, strength):
        """Mid-band -> HOLD 0.2, elsewhere inside -> HOLD 0.1."""
        component = interpreter.interpret_bollinger(price, bands)

        assert component.signal == SignalType.HOLD
        assert component.strength == strength

    def test_bollinger_degenerate_bands(self, interpreter):
        """Zero-priced bands never divide by zero."""
        component = interpreter.interpret_bollinger(0.0, BollingerBands(upper=0.0, middle=0.0, lower=0.0))

        assert component.signal == SignalType.BUY
        assert component.strength == 0.0

    @pytest.mark.parametrize("momentum,signal,strength", [
        (30, SignalType.BUY, 0.6),
        (80, SignalType.BUY, 1.0),
        (-25, SignalType.SELL, 0.5),
        (20, SignalType.HOLD, 0.3),
        (-10, SignalType.HOLD, 0.3),
        (5, SignalType.HOLD, 0.1),
        (0, SignalType.HOLD, 0.1),
    ])
    def test_momentum(self, interpreter, momentum, signal, strength):
        """Momentum thresholds at +/-20 and +/-5."""
        component = interpreter.interpret_momentum(momentum)

        assert component.signal == signal
        assert component.strength == pytest.approx(strength)

    @pytest.mark.parametrize("volatility", [0, 3, 10, 20, 31, 500])
    def test_volatility_is_never_directional(self, interpreter, volatility):
        """Volatility always resolves to HOLD."""
        assert interpreter.interpret_volatility(volatility).signal == SignalType.HOLD

    def test_volatility_strength_drops_when_chaotic(self, interpreter):
        """Strength falls once volatility is above 30."""
        assert interpreter.interpret_volatility(40).strength < interpreter.interpret_volatility(10).strength


class TestConsensusSignal:
    """Test suite for the weighted consensus."""

    @pytest.fixture
    def interpreter(self):
        """Create interpreter with default weights."""
        return SignalInterpreter()

    @pytest.fixture
    def full_bundle(self):
        """Bundle with every indicator present."""
        return MetricsBundle(
            item_id=1,
            rsi=25.0,
            macd=MACDValue(macd=2.0, signal=1.0, histogram=1.0),
            bollinger=BollingerBands(upper=110.0, middle=100.0, lower=90.0),
            momentum_score=30.0,
            volatility=3.0,
        )

    def test_consensus_buy(self, interpreter, full_bundle):
        """Three BUY components outweigh two HOLD components."""
        signal = interpreter.generate_signal(full_bundle, 100.0, timestamp=1)

        assert signal.type == SignalType.BUY
        assert signal.analysis.buy_weight == pytest.approx(0.3 * 5 / 30 + 0.25 * 0.1 + 0.15 * 0.6)
        assert signal.analysis.hold_weight == pytest.approx(0.2 * 0.2 + 0.1 * 0.3)
        assert signal.analysis.sell_weight == 0.0
        assert signal.strength == pytest.approx(signal.analysis.buy_weight)
        assert signal.confidence == pytest.approx(0.165 / 0.235)
        assert len(signal.components) == 5
        assert signal.timestamp == 1

    def test_weight_conservation(self, interpreter, full_bundle):
        """buy + sell + hold equals the weighted strength of the present components."""
        signal = interpreter.generate_signal(full_bundle, 100.0)
        analysis = signal.analysis

        expected = sum(c.weight * c.strength for c in signal.components)
        assert analysis.buy_weight + analysis.sell_weight + analysis.hold_weight == pytest.approx(expected)

    def test_missing_indicators_are_omitted(self, interpreter):
        """Indicators without history are left out, not zero-padded."""
        bundle = MetricsBundle(item_id=1, momentum_score=0.0, volatility=3.0)
        signal = interpreter.generate_signal(bundle, 100.0)

        sources = [c.source for c in signal.components]
        assert sources == ['Momentum', 'Volatility']
        assert signal.analysis.hold_weight == pytest.approx(0.15 * 0.1 + 0.1 * 0.3)
        assert signal.type == SignalType.HOLD
        assert signal.confidence == 1.0

    def test_invalid_bundle_yields_empty_hold(self, interpreter):
        """An invalid bundle contributes no components; confidence is 0."""
        signal = interpreter.generate_signal(MetricsBundle.empty(1, ["missing_high_price"]), 0.0)

        assert signal.type == SignalType.HOLD
        assert signal.components == []
        assert signal.confidence == 0.0
        assert signal.strength == 0.0

    def test_tie_goes_to_hold(self):
        """Equal BUY and HOLD weights resolve to HOLD."""
        interpreter = SignalInterpreter(SignalWeights(rsi=0.5, macd=0.0, bollinger=0.0, momentum=0.0, volatility=0.5))
        bundle = MetricsBundle(item_id=1, rsi=24.0, momentum_score=0.0, volatility=20.0)

        signal = interpreter.generate_signal(bundle, 100.0)

        assert signal.analysis.buy_weight == pytest.approx(signal.analysis.hold_weight)
        assert signal.type == SignalType.HOLD
        assert signal.confidence == pytest.approx(0.5)

    def test_consensus_sell(self, interpreter):
        """Overbought oscillators produce SELL."""
        bundle = MetricsBundle(
            item_id=1,
            rsi=95.0,
            macd=MACDValue(macd=-5.0, signal=-1.0, histogram=-8.0),
            bollinger=BollingerBands(upper=110.0, middle=100.0, lower=90.0),
            momentum_score=-50.0,
            volatility=10.0,
        )
        signal = interpreter.generate_signal(bundle, 130.0)

        assert signal.type == SignalType.SELL
        assert "Supported by: RSI, MACD, Bollinger Bands, Momentum." in signal.analysis.interpretation

    def test_interpretation_lists_conflicts(self, interpreter):
        """Directional components against the consensus are listed as conflicting."""
        bundle = MetricsBundle(
            item_id=1,
            rsi=10.0,
            macd=MACDValue(macd=20.0, signal=5.0, histogram=15.0),
            bollinger=BollingerBands(upper=110.0, middle=100.0, lower=90.0),
            momentum_score=-30.0,
            volatility=3.0,
        )
        signal = interpreter.generate_signal(bundle, 100.0)

        assert signal.type == SignalType.BUY
        assert "Conflicting signals from: Momentum." in signal.analysis.interpretation

    def test_unexpected_error_returns_safe_default(self, interpreter, full_bundle, monkeypatch):
        """Internal errors produce a HOLD 0.1 / 0.5 default."""
        def boom(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(interpreter, "build_components", boom)
        signal = interpreter.generate_signal(full_bundle, 100.0, timestamp=5)

        assert signal.type == SignalType.HOLD
        assert signal.strength == 0.1
        assert signal.confidence == 0.5
        assert signal.timestamp == 5
        assert signal.analysis.interpretation == 'Error generating signal - defaulting to HOLD'

    def test_invalid_weights_rejected(self):
        """Weights must sum to 1."""
        with pytest.raises(ValueError):
            SignalInterpreter(SignalWeights(rsi=0.5, macd=0.5, bollinger=0.5, momentum=0.0, volatility=0.0))

    def test_summary_and_dict(self, interpreter, full_bundle):
        """Serialized forms carry the enum values."""
        signal = interpreter.generate_signal(full_bundle, 100.0)

        assert isinstance(signal, MarketSignal)
        assert signal.summary()['type'] == 'BUY'
        assert signal.to_dict()['components'][0]['signal'] == 'BUY'
        assert signal.to_dict()['analysis']['current_price'] == 100.0
