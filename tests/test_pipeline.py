"""
Tests for Decision Pipeline

End-to-end cycles through regime, fusion and threshold engines, outcome
feedback into learning, and parameter push-back.
"""

import pytest
import numpy as np
import pandas as pd
from datetime import datetime, timedelta, timezone

from edgecore import (
    DecisionPipeline,
    PipelineRegistry,
    EdgeCoreConfig,
    TelemetrySink,
    TelemetryEventType,
)
from edgecore.fusion_engine import FactorSignal, SignalDirection
from edgecore.learning_engine import OutcomeData
from edgecore.pipeline import RejectionStage
from edgecore.regime_engine import RegimeType


NOW = datetime(2024, 3, 11, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def trending_candles():
    """Steady uptrend with rising volume, 15-minute bars."""
    n = 40
    close = 1.1000 * np.cumprod(np.full(n, 1.002))
    df = pd.DataFrame({
        'open': close / 1.001,
        'high': close * 1.0005,
        'low': close * 0.9995,
        'close': close,
        'volume': 1000 + 50 * np.arange(n),
    })
    df['timestamp'] = pd.date_range('2024-03-04 08:00', periods=n, freq='15min', tz='UTC')
    return df


@pytest.fixture
def factors():
    return [
        FactorSignal(name="ema_cross", factor_type="technical", strength=8, confidence=0.9, signal="buy"),
        FactorSignal(name="bull_flag", factor_type="pattern", strength=8, confidence=0.9, signal="buy"),
        FactorSignal(name="volume_thrust", factor_type="volume", strength=8, confidence=0.9, signal="buy"),
        FactorSignal(name="roc", factor_type="momentum", strength=8, confidence=0.9, signal="buy"),
        FactorSignal(name="earnings", factor_type="fundamental", strength=8, confidence=0.9, signal="buy"),
    ]


@pytest.fixture
def telemetry():
    return TelemetrySink()


@pytest.fixture
def pipeline(telemetry):
    return DecisionPipeline("eurusd", telemetry=telemetry)


def run_cycles(pipeline, candles, factors, confluence_score=24.0):
    output = None
    for end in range(10, len(candles) + 1):
        window = candles.iloc[max(0, end - 20):end]
        output = pipeline.evaluate_cycle(
            window, factors, confluence_score=confluence_score,
            timestamp=window['timestamp'].iloc[-1].to_pydatetime(),
        )
    return output


def separable_outcome(i):
    win, confluence = [(True, 20.0), (False, 16.0), (True, 20.0), (False, 13.0)][i % 4]
    return OutcomeData(
        signal_id=f"hist_{i}",
        entry_price=1.1,
        entry_time=NOW - timedelta(minutes=15 * (200 - i)),
        actual_return=0.02 if win else -0.01,
        predicted_return=0.015,
        signal_strength=6,
        confluence_score=confluence,
        regime='trending_bullish',
        was_correct_direction=win,
    )


class TestEvaluationCycle:
    """Test evaluate_cycle."""

    def test_symbol_normalized(self, pipeline):
        """Symbols are stripped and upper-cased."""
        assert pipeline.symbol == "EURUSD"

    def test_empty_symbol_rejected(self):
        """A pipeline needs a symbol."""
        with pytest.raises(ValueError):
            DecisionPipeline("  ")

    def test_trending_buy_accepted(self, pipeline, trending_candles, factors):
        """Strong aligned factors in a bullish trend produce an accepted buy."""
        output = run_cycles(pipeline, trending_candles, factors)

        assert output.accepted
        assert output.regime.regime_type == RegimeType.TRENDING_BULLISH
        assert output.signal.signal_type == SignalDirection.BUY
        assert output.signal.symbol == "EURUSD"
        assert output.signal.entry_price == pytest.approx(trending_candles['close'].iloc[-1])
        assert output.fusion.probability > 0.6
        assert output.rejection_stage is None
        assert pipeline.accepted_signals >= 1

    def test_accepted_signal_telemetry_correlated(self, pipeline, telemetry, trending_candles, factors):
        """The acceptance event carries the cycle's correlation id."""
        output = run_cycles(pipeline, trending_candles, factors)
        record = telemetry.get_recent(TelemetryEventType.SIGNAL_ACCEPTED)[-1]

        assert record.correlation_id == output.correlation_id
        assert record.symbol == "EURUSD"

    def test_fusion_rejection(self, pipeline, trending_candles):
        """Conflicting factors stop at the fusion stage."""
        conflicting = [
            {'name': 'a', 'type': 'technical', 'strength': 8, 'confidence': 0.9, 'signal': 'buy'},
            {'name': 'b', 'type': 'pattern', 'strength': 8, 'confidence': 0.9, 'signal': 'sell'},
        ]
        output = pipeline.evaluate_cycle(trending_candles, conflicting, confluence_score=24.0)

        assert not output.accepted
        assert output.rejection_stage == RejectionStage.FUSION
        assert output.rejection_reason.startswith('entropy')
        assert output.decision is None

    def test_threshold_rejection(self, pipeline, trending_candles, factors):
        """Low confluence stops at the threshold stage."""
        output = pipeline.evaluate_cycle(trending_candles, factors, confluence_score=1.0)

        assert not output.accepted
        assert output.rejection_stage == RejectionStage.THRESHOLD
        assert output.rejection_reason.startswith('confluence_too_low')

    def test_invalid_factor_leaves_state_untouched(self, pipeline, trending_candles):
        """Bad factor input raises before any engine state changes."""
        bad = [{'name': 'x', 'type': 'technical', 'strength': 42, 'confidence': 0.9, 'signal': 'buy'}]
        with pytest.raises(ValueError):
            pipeline.evaluate_cycle(trending_candles, bad, confluence_score=24.0)

        assert pipeline.cycles == 0
        assert len(pipeline.regime_engine.observation_window) == 0

    def test_naive_cycle_timestamp_treated_as_utc(self, pipeline, trending_candles, factors):
        """A naive cycle time does not break later analytics at the default time."""
        naive = datetime(2024, 3, 4, 18, 0)
        output = pipeline.evaluate_cycle(trending_candles, factors, confluence_score=1.0, timestamp=naive)

        assert output.timestamp == naive.replace(tzinfo=timezone.utc)
        analytics = pipeline.get_threshold_analytics()
        assert analytics['rejections']['total_rejections'] == 0
        assert analytics['recommendations']

    def test_output_serializes(self, pipeline, trending_candles, factors):
        """DecisionOutput.to_dict is JSON-ready."""
        data = run_cycles(pipeline, trending_candles, factors).to_dict()
        assert data['symbol'] == "EURUSD"
        assert data['accepted'] is True
        assert data['factor_count'] == 5
        assert data['regime']['regime_type'] == 'trending_bullish'


class TestOutcomeFeedback:
    """Test report_outcome."""

    def test_outcome_attributed_to_factors(self, pipeline, trending_candles, factors):
        """An outcome for an issued signal updates factor performance and calibration."""
        output = run_cycles(pipeline, trending_candles, factors)
        recorded = pipeline.report_outcome({
            'signal_id': output.signal.signal_id,
            'entry_price': output.signal.entry_price,
            'entry_time': output.timestamp.isoformat(),
            'actual_return': 0.02,
            'regime': 'trending_bullish',
        }, timestamp=output.timestamp + timedelta(hours=1))

        assert recorded
        stats = pipeline.fusion_engine.get_system_stats()
        assert stats['factor_performance']['technical_ema_cross']['wins'] == 1
        assert stats['calibration_records'] == 1
        regime_stats = pipeline.regime_engine.get_regime_statistics()
        assert regime_stats.regime_performance['trending_bullish_technical']['trades'] == 1

    def test_duplicate_outcome(self, pipeline):
        """A repeated signal id is ignored."""
        assert pipeline.report_outcome(separable_outcome(0), timestamp=NOW)
        assert not pipeline.report_outcome(separable_outcome(0), timestamp=NOW)
        assert pipeline.outcomes_reported == 1

    def test_counterfactual_not_attributed(self, pipeline):
        """Counterfactual outcomes do not touch factor performance."""
        pipeline.report_outcome({
            'signal_id': 'rejected_1', 'entry_price': 1.1,
            'entry_time': (NOW - timedelta(hours=1)).isoformat(),
            'actual_return': 0.01, 'regime': 'breakout', 'counterfactual': True,
        }, factors=[{'name': 'a', 'type': 'technical', 'strength': 5, 'confidence': 0.5, 'signal': 'buy'}],
            predicted_probability=0.6, timestamp=NOW)

        assert pipeline.fusion_engine.get_system_stats()['calibration_records'] == 0
        assert len(pipeline.learning_engine.counterfactual_history) == 1

    def test_learned_confluence_pushed_to_threshold_engine(self, pipeline, telemetry):
        """Applied confluence changes reach the threshold gate."""
        for i in range(100):
            pipeline.report_outcome(separable_outcome(i), timestamp=NOW)
        pipeline.recalibrate(NOW)

        assert pipeline.learning_engine.get_parameters()['confluence_threshold'] == pytest.approx(18.0)
        assert pipeline.get_thresholds().confluence.adaptive == pytest.approx(18.0)
        learned = [a for a in pipeline.threshold_engine.get_adjustment_history() if a.source == 'learned']
        assert learned
        assert telemetry.get_recent(TelemetryEventType.PARAMETER_ADAPTATION)

    def test_learning_seeded_from_threshold_engine(self, pipeline):
        """Forced threshold changes are what the learner optimizes from."""
        pipeline.force_threshold_adjustment('relax')
        pipeline.report_outcome(separable_outcome(0), timestamp=NOW)
        assert pipeline.learning_engine.get_parameters()['confluence_threshold'] == pytest.approx(13.0)


class TestOperatorControls:
    """Test pipeline-level controls and status."""

    def test_force_and_reset(self, pipeline):
        """Forced adjustments and resets go through the threshold engine."""
        relaxed = pipeline.force_threshold_adjustment('relax')
        assert relaxed.entropy.current == pytest.approx(0.90)
        reset = pipeline.reset_thresholds()
        assert reset.entropy.current == pytest.approx(0.80)

    def test_analytics_shape(self, pipeline):
        """Threshold analytics bundle rejections, density, recommendations and adjustments."""
        analytics = pipeline.get_threshold_analytics()
        assert set(analytics) == {'rejections', 'density', 'recommendations', 'adjustments'}

    def test_status(self, pipeline, trending_candles, factors):
        """Status reports counters and the current regime."""
        run_cycles(pipeline, trending_candles, factors)
        status = pipeline.get_status()

        assert status['symbol'] == "EURUSD"
        assert status['cycles'] == len(trending_candles) - 9
        assert status['regime'] == 'trending_bullish'
        assert 'learning' in status and 'fusion' in status


class TestPipelineRegistry:
    """Test per-symbol registry."""

    def test_get_or_create(self):
        """Pipelines are created once per normalized symbol."""
        registry = PipelineRegistry()
        first = registry.get_or_create("eurusd")
        assert registry.get_or_create(" EURUSD ") is first
        assert registry.symbols() == ["EURUSD"]
        assert len(registry) == 1

    def test_unknown_symbol(self):
        """Unknown symbols return None."""
        assert PipelineRegistry().get("GBPUSD") is None

    def test_empty_symbol_rejected(self):
        """Empty symbols raise ValueError."""
        with pytest.raises(ValueError):
            PipelineRegistry().get("")

    def test_remove(self):
        """Removed pipelines are gone."""
        registry = PipelineRegistry()
        registry.get_or_create("USDJPY")
        assert registry.remove("usdjpy")
        assert not registry.remove("usdjpy")
        assert len(registry) == 0

    def test_shared_config(self):
        """Every pipeline uses the registry's configuration."""
        config = EdgeCoreConfig()
        registry = PipelineRegistry(config)
        assert registry.get_or_create("EURUSD").config is config
