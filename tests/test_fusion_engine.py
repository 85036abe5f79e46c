"""
Tests for Probabilistic Fusion Engine

Tests probability helpers, factor conversion, log-odds fusion and signal
generation.
"""

import pytest
import numpy as np
from dataclasses import replace

from edgecore.fusion_engine import (
    FusionEngineConfig,
    DecisionConfig,
    ProbabilisticFusionEngine,
    FactorSignal,
    SignalDirection,
    FusionRejectionReason,
    binary_entropy,
    calculate_net_edge,
    calculate_kelly_fraction,
    logit,
    logistic,
)
from edgecore.regime_engine import MarketRegime, RegimeType, FactorType


@pytest.fixture
def engine():
    return ProbabilisticFusionEngine()


@pytest.fixture
def neutral_regime():
    return MarketRegime.neutral()


def strong_factors(direction='buy', factor_type='technical', n=5):
    return [
        FactorSignal(name=f"factor_{i}", factor_type=factor_type, strength=8,
                     confidence=0.9, signal=direction)
        for i in range(n)
    ]


class TestProbabilityHelpers:
    """Test pure probability functions."""

    def test_entropy_extremes(self):
        """Entropy is 1 bit at 0.5 and 0 at certainty."""
        assert binary_entropy(0.5) == pytest.approx(1.0)
        assert binary_entropy(0.0) == 0.0
        assert binary_entropy(1.0) == 0.0

    def test_entropy_symmetric(self):
        """H(p) == H(1 - p)."""
        for p in np.linspace(0.01, 0.99, 25):
            assert binary_entropy(p) == pytest.approx(binary_entropy(1 - p))

    def test_entropy_in_unit_interval(self):
        """Entropy stays in [0, 1] for any input."""
        np.random.seed(42)
        for p in np.random.uniform(-0.5, 1.5, 50):
            assert 0.0 <= binary_entropy(p) <= 1.0

    def test_logit_logistic_inverse(self):
        """logistic(logit(p)) recovers p."""
        for p in (0.05, 0.3, 0.5, 0.77, 0.95):
            assert logistic(logit(p)) == pytest.approx(p)

    def test_net_edge_formula(self):
        """Net edge is p*R - (1-p)*|L| - costs."""
        price = 1.1
        edge = calculate_net_edge(0.55, 0.02 * price, 0.01 * price, 0.0001 * price)
        assert edge == pytest.approx(0.55 * 0.022 - 0.45 * 0.011 - 0.00011)

    def test_net_edge_uses_loss_magnitude(self):
        """The sign of the expected loss does not matter."""
        assert calculate_net_edge(0.6, 2.0, -1.0, 0.1) == calculate_net_edge(0.6, 2.0, 1.0, 0.1)

    def test_kelly_bounds(self):
        """Kelly fraction always lies in [0, 0.25]."""
        for p in np.linspace(0.0, 1.0, 21):
            f = calculate_kelly_fraction(p, 2.0, 1.0)
            assert 0.0 <= f <= 0.25

    def test_kelly_losing_bet_is_zero(self):
        """A negative-expectancy bet sizes to zero."""
        assert calculate_kelly_fraction(0.2, 1.0, 1.0) == 0.0

    def test_kelly_degenerate_inputs(self):
        """Zero loss, zero return and non-finite inputs size to zero."""
        assert calculate_kelly_fraction(0.7, 2.0, 0.0) == 0.0
        assert calculate_kelly_fraction(0.7, 0.0, 1.0) == 0.0
        assert calculate_kelly_fraction(float('nan'), 2.0, 1.0) == 0.0

    def test_kelly_unclipped_value(self):
        """Inside the cap the classic formula applies."""
        # p=0.4, RR=2: (0.8 - 0.6) / 2 = 0.1
        assert calculate_kelly_fraction(0.4, 2.0, 1.0) == pytest.approx(0.1)


class TestFactorSignal:
    """Test factor validation."""

    def test_valid_factor(self):
        """A well-formed factor parses enums."""
        factor = FactorSignal(name="rsi", factor_type="technical", strength=7,
                              confidence=0.8, signal="BUY")
        assert factor.factor_type == FactorType.TECHNICAL
        assert factor.signal == SignalDirection.BUY

    @pytest.mark.parametrize("kwargs", [
        {'strength': 11},
        {'strength': -1},
        {'confidence': 1.5},
        {'weight': 0},
        {'strength': float('nan')},
        {'factor_type': 'astrology'},
        {'signal': 'hold'},
        {'name': ''},
    ])
    def test_invalid_factor_rejected(self, kwargs):
        """Out-of-range or unknown values raise ValueError."""
        base = dict(name="rsi", factor_type="technical", strength=7, confidence=0.8, signal="buy")
        base.update(kwargs)
        with pytest.raises(ValueError):
            FactorSignal(**base)

    def test_from_dict_accepts_type_key(self):
        """'type' is accepted as an alias of 'factor_type'."""
        factor = FactorSignal.from_dict({'name': 'headline', 'type': 'news', 'strength': 6,
                                         'confidence': 0.7, 'signal': 'sell'})
        assert factor.factor_type == FactorType.SENTIMENT
        assert factor.signal == SignalDirection.SELL


class TestFusion:
    """Test factor conversion and fusion."""

    def test_empty_fusion_is_neutral(self, engine):
        """No factors gives (0.5, 0.0, 1.0)."""
        assert tuple(engine.fuse_probabilities([])) == (0.5, 0.0, 1.0)

    def test_buy_factor_above_half(self, engine, neutral_regime):
        """A buy factor converts to a probability above 0.5."""
        factor = engine.convert_factor_to_probabilistic(strong_factors(n=1)[0], neutral_regime)
        assert 0.5 < factor.probability < 1.0
        assert factor.log_odds == pytest.approx(logit(factor.probability))

    def test_sell_factor_below_half(self, engine, neutral_regime):
        """A sell factor converts to a probability below 0.5."""
        factor = engine.convert_factor_to_probabilistic(strong_factors('sell', n=1)[0], neutral_regime)
        assert factor.probability < 0.5

    def test_correlated_factors_are_shrunk(self, engine, neutral_regime):
        """Five same-type factors carry less evidence than five distinct types."""
        same = [engine.convert_factor_to_probabilistic(f, neutral_regime) for f in strong_factors()]
        distinct_types = ['technical', 'pattern', 'volume', 'momentum', 'fundamental']
        distinct = [
            engine.convert_factor_to_probabilistic(
                FactorSignal(name=f"f{i}", factor_type=t, strength=8, confidence=0.9, signal='buy'),
                neutral_regime,
            )
            for i, t in enumerate(distinct_types)
        ]
        assert engine.fuse_probabilities(same).probability < engine.fuse_probabilities(distinct).probability

    def test_negative_uplift_factor_discarded(self, engine, neutral_regime):
        """Factors whose realized wins lose money on average are dropped."""
        for _ in range(8):
            engine.update_factor_performance('factor_0', 'technical', True, 0.001)
        for _ in range(2):
            engine.update_factor_performance('factor_0', 'technical', False, -0.05)

        factor = engine.convert_factor_to_probabilistic(strong_factors(n=1)[0], neutral_regime)
        assert factor.causal_uplift < 0
        assert tuple(engine.fuse_probabilities([factor])) == (0.5, 0.0, 1.0)

    def test_regime_adjustment_scales_evidence(self, engine):
        """Higher regime weight for a factor type pushes probability further from 0.5."""
        neutral = MarketRegime.neutral()
        boosted = replace(neutral, adjustment_factors={ft: 1.5 for ft in FactorType})

        factor = strong_factors(n=1)[0]
        assert engine.convert_factor_to_probabilistic(factor, boosted).probability > \
            engine.convert_factor_to_probabilistic(factor, neutral).probability


class TestSignalGeneration:
    """Test end-to-end signal generation."""

    def test_strong_buy_consensus(self, engine, neutral_regime):
        """Five strong buy factors produce a confident buy signal."""
        signal = engine.generate_probabilistic_signal(strong_factors(), neutral_regime, 1.1)

        assert signal is not None
        assert signal.signal_type == SignalDirection.BUY
        assert signal.combined_probability > 0.6
        assert signal.entropy < 0.6
        assert signal.net_edge > 0
        assert 0.0 <= signal.kelly_fraction <= 0.25
        assert signal.stop_loss < signal.entry_price < signal.take_profit
        assert signal.risk_reward_ratio == pytest.approx(2.0)

    def test_strong_sell_consensus(self, engine, neutral_regime):
        """Sell signals compute edge and Kelly on the sell side."""
        signal = engine.generate_probabilistic_signal(strong_factors('sell'), neutral_regime, 1.1)

        assert signal is not None
        assert signal.signal_type == SignalDirection.SELL
        assert signal.combined_probability < 0.4
        assert signal.net_edge > 0
        assert signal.kelly_fraction > 0
        assert signal.take_profit < signal.entry_price < signal.stop_loss

    def test_conflicting_factors_rejected(self, engine, neutral_regime):
        """Opposing evidence leaves too much entropy."""
        factors = strong_factors('buy', 'technical', 2) + [
            FactorSignal(name="pattern_sell", factor_type="pattern", strength=8, confidence=0.9, signal='sell'),
            FactorSignal(name="volume_sell", factor_type="volume", strength=8, confidence=0.9, signal='sell'),
        ]
        signal, fusion, _ = engine.evaluate(factors, neutral_regime, 1.1)

        assert signal is None
        assert fusion.entropy > 0.6
        assert engine.last_rejection.reason == FusionRejectionReason.HIGH_ENTROPY

    def test_no_factors_rejected(self, engine, neutral_regime):
        """An empty factor list yields no signal."""
        assert engine.generate_probabilistic_signal([], neutral_regime, 1.1) is None

    def test_min_signal_strength_filter(self, engine, neutral_regime):
        """A learned strength floor above the signal's strength rejects it."""
        engine.set_min_signal_strength(10)
        signal = engine.generate_probabilistic_signal(strong_factors(), neutral_regime, 1.1)

        assert signal is None
        assert engine.last_rejection.reason == FusionRejectionReason.WEAK_SIGNAL

    def test_expensive_costs_rejected(self, neutral_regime):
        """Costs larger than the expected payoff leave no edge."""
        config = FusionEngineConfig(decision=DecisionConfig(trading_cost_pct=0.05))
        engine = ProbabilisticFusionEngine(config)
        signal = engine.generate_probabilistic_signal(strong_factors(), neutral_regime, 1.1)

        assert signal is None
        assert engine.last_rejection.reason == FusionRejectionReason.NON_POSITIVE_EDGE

    def test_position_scaled_by_regime_risk(self, engine):
        """Position size is half-Kelly times the regime risk multiplier."""
        regime = replace(MarketRegime.neutral(RegimeType.SHOCK_UP), risk_multiplier=0.3)
        signal = engine.generate_probabilistic_signal(strong_factors(), regime, 1.1)

        assert signal.optimal_position_size == pytest.approx(signal.kelly_fraction * 0.5 * 0.3)


class TestCalibration:
    """Test calibration tracking."""

    def test_neutral_without_history(self, engine):
        """Too few records gives the neutral 0.5."""
        assert engine.calculate_calibration_score() == 0.5

    def test_perfect_calibration(self, engine):
        """Predictions matching realized frequencies score near 1."""
        for i in range(40):
            engine.update_calibration(0.75, i % 4 != 0)
        assert engine.calculate_calibration_score() == pytest.approx(1.0)

    def test_poor_calibration(self, engine):
        """Overconfident predictions score lower."""
        for i in range(40):
            engine.update_calibration(0.95, i % 2 == 0)
        assert engine.calculate_calibration_score() < 0.2

    def test_stats(self, engine, neutral_regime):
        """System stats count evaluations and signals."""
        engine.generate_probabilistic_signal(strong_factors(), neutral_regime, 1.1)
        stats = engine.get_system_stats()
        assert stats['total_evaluations'] == 1
        assert stats['signals_generated'] == 1
