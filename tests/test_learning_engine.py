"""
Tests for Continuous Learning Engine

Tests outcome ingestion, performance metrics, drift-bounded optimization,
recalibration, health grading and counterfactual analysis.
"""

import pytest
import numpy as np
from datetime import datetime, timedelta, timezone

from edgecore.learning_engine import (
    LearningEngineConfig,
    ContinuousLearningEngine,
    OutcomeData,
    LearningMetrics,
    HealthStatus,
    compute_learning_metrics,
    performance_score,
    profit_factor,
    max_drawdown,
)
from edgecore.learning_engine.optimizer import (
    drift_candidates,
    optimize_threshold,
    outcomes_to_frame,
)
from edgecore.observability import TelemetryEventType, TelemetrySink
from edgecore.regime_engine import RegimeType


NOW = datetime(2024, 3, 11, 12, 0, tzinfo=timezone.utc)


def make_outcome(i, win, confluence=20.0, strength=6, regime='trending_bullish',
                 win_return=0.02, loss_return=-0.01, counterfactual=False, entry_time=None):
    return OutcomeData(
        signal_id=f"sig_{'cf_' if counterfactual else ''}{i}",
        entry_price=1.1,
        entry_time=entry_time or NOW - timedelta(minutes=15 * (200 - i)),
        actual_return=win_return if win else loss_return,
        predicted_return=0.015,
        signal_strength=strength,
        confluence_score=confluence,
        regime=regime,
        was_correct_direction=win,
        factor_types=('technical',),
        counterfactual=counterfactual,
    )


@pytest.fixture
def engine():
    return ContinuousLearningEngine()


@pytest.fixture
def seventy_percent_engine(engine):
    """60 outcomes, 70% winners at +2% / -1%."""
    for i in range(60):
        engine.add_outcome(make_outcome(i, i % 10 < 7, confluence=10 + i % 20), NOW)
    return engine


def confluence_separable_outcomes(n=100):
    """High-confluence signals win, lower-confluence signals lose."""
    pattern = [(True, 20.0), (False, 16.0), (True, 20.0), (False, 13.0)]
    return [make_outcome(i, *pattern[i % 4]) for i in range(n)]


class TestOutcomeData:
    """Test outcome validation."""

    def test_naive_times_become_utc(self):
        """Naive timestamps are treated as UTC."""
        outcome = make_outcome(1, True, entry_time=datetime(2024, 3, 11, 9, 0))
        assert outcome.entry_time.tzinfo is not None

    def test_nan_return_rejected(self):
        """Non-finite returns raise ValueError."""
        with pytest.raises(ValueError):
            make_outcome(1, True, win_return=float('nan'))

    def test_empty_signal_id_rejected(self):
        """An outcome needs a signal id."""
        with pytest.raises(ValueError):
            OutcomeData(signal_id='', entry_price=1.1, entry_time=NOW, actual_return=0.01,
                        predicted_return=0.0, signal_strength=5, confluence_score=15,
                        regime='breakout', was_correct_direction=True)

    def test_from_dict(self):
        """ISO strings parse and direction defaults to the sign of the return."""
        outcome = OutcomeData.from_dict({
            'signal_id': 'abc',
            'entry_price': 1.1,
            'entry_time': '2024-03-11T09:00:00Z',
            'exit_time': '2024-03-11T10:30:00Z',
            'actual_return': -0.004,
            'regime': 'ranging_tight',
        })
        assert outcome.regime == RegimeType.RANGING_TIGHT
        assert outcome.was_correct_direction is False
        assert outcome.holding_time_minutes == pytest.approx(90.0)
        assert not outcome.is_win


class TestMetrics:
    """Test metric helpers."""

    def test_profit_factor_no_losses_is_inf(self):
        """Wins with no losses give an infinite profit factor."""
        assert profit_factor([0.01, 0.02]) == float('inf')

    def test_profit_factor_empty_is_zero(self):
        """No returns give zero."""
        assert profit_factor([]) == 0.0

    def test_profit_factor_ratio(self):
        """Gross profit over gross loss."""
        assert profit_factor([0.02, 0.02, -0.01]) == pytest.approx(4.0)

    def test_max_drawdown(self):
        """Drawdown is measured from the running peak of cumulative return."""
        assert max_drawdown([0.01, -0.03, 0.01]) == pytest.approx(0.03)
        assert max_drawdown([-0.02]) == pytest.approx(0.02)
        assert max_drawdown([]) == 0.0

    def test_drawdown_independent_of_arrival_order(self):
        """Path-dependent metrics follow entry time, not the order outcomes arrive in."""
        config = LearningEngineConfig(min_sample_size=10)
        returns = [0.01] * 5 + [-0.01] * 5 + [0.01] * 5
        outcomes = [
            make_outcome(i, r > 0, win_return=r, loss_return=r,
                         entry_time=NOW - timedelta(minutes=15 * (15 - i)))
            for i, r in enumerate(returns)
        ]

        in_order = ContinuousLearningEngine(config)
        for outcome in outcomes:
            in_order.add_outcome(outcome, NOW)

        shuffled = ContinuousLearningEngine(config)
        for i in [0, 5, 10, 1, 6, 11, 2, 7, 12, 3, 8, 13, 4, 9, 14]:
            shuffled.add_outcome(outcomes[i], NOW)

        assert in_order.performance.metrics.max_drawdown == pytest.approx(5.0)
        assert shuffled.performance.metrics.max_drawdown == pytest.approx(5.0)
        assert [o.signal_id for o in shuffled.get_recent_outcomes(NOW)] == \
            [o.signal_id for o in outcomes]

    def test_constant_returns_sharpe_zero(self):
        """Zero variance gives a zero Sharpe ratio, not infinity."""
        metrics = compute_learning_metrics([0.01] * 10, [True] * 10)
        assert metrics.sharpe_ratio == 0.0
        assert metrics.win_rate == pytest.approx(100.0)

    def test_performance_score_range(self):
        """A perfect record scores higher than a losing one."""
        assert performance_score([0.02] * 10) > performance_score([-0.01] * 10)
        assert performance_score([]) == 0.0

    def test_infinite_profit_factor_serialized_as_none(self):
        """JSON output carries no infinity."""
        assert LearningMetrics(profit_factor=float('inf')).to_dict()['profit_factor'] is None


class TestOutcomeIngestion:
    """Test add_outcome."""

    def test_duplicate_ignored(self, engine):
        """A second outcome with the same signal id is ignored."""
        assert engine.add_outcome(make_outcome(1, True), NOW) is True
        assert engine.add_outcome(make_outcome(1, False), NOW) is False
        assert len(engine.outcome_history) == 1

    def test_expired_outcome_ignored(self, engine):
        """Outcomes older than retention are rejected on arrival."""
        old = make_outcome(1, True, entry_time=NOW - timedelta(days=31))
        assert engine.add_outcome(old, NOW) is False
        assert len(engine.outcome_history) == 0

    def test_retention_prunes_history(self, engine):
        """Old outcomes are pruned as time advances."""
        engine.add_outcome(make_outcome(1, True, entry_time=NOW - timedelta(days=29)), NOW)
        engine.add_outcome(make_outcome(2, True), NOW + timedelta(days=2))
        assert [o.signal_id for o in engine.outcome_history] == ['sig_2']

    def test_straggler_pruned_behind_younger_head(self, engine):
        """Expired outcomes are pruned wherever they sit in the ledger."""
        engine.add_outcome(make_outcome(1, True, entry_time=NOW - timedelta(days=1)), NOW)
        engine.add_outcome(make_outcome(2, True, entry_time=NOW - timedelta(days=29)), NOW)
        engine.add_outcome(make_outcome(3, True), NOW + timedelta(days=2))

        assert [o.signal_id for o in engine.outcome_history] == ['sig_1', 'sig_3']

    def test_ledger_capacity_bounded(self):
        """The outcome ledger keeps only the newest max_outcome_history entries."""
        engine = ContinuousLearningEngine(LearningEngineConfig(min_sample_size=5, max_outcome_history=10))
        for i in range(12):
            engine.add_outcome(make_outcome(i, True), NOW)

        assert len(engine.outcome_history) == 10
        assert engine.outcome_history[0].signal_id == 'sig_2'

    def test_naive_ingestion_time_treated_as_utc(self, engine):
        """A naive ingestion time does not break later default-time queries."""
        naive_now = NOW.replace(tzinfo=None)
        assert engine.add_outcome(make_outcome(1, True), naive_now) is True
        assert len(engine.get_recent_outcomes(naive_now)) == 1

        # Wall-clock window: the 2024 outcome is outside it
        assert engine.get_counterfactual_analysis()[0].accepted_signals == 0

    def test_no_metrics_below_min_sample(self, engine):
        """Metrics stay empty until the minimum sample size is reached."""
        for i in range(49):
            engine.add_outcome(make_outcome(i, True), NOW)
        assert engine.performance.total_signals == 0

        engine.add_outcome(make_outcome(49, True), NOW)
        assert engine.performance.total_signals == 50

    def test_counterfactual_kept_apart(self, seventy_percent_engine):
        """Counterfactual outcomes never enter live metrics."""
        engine = seventy_percent_engine
        before = engine.performance.metrics.win_rate
        for i in range(10):
            engine.add_outcome(make_outcome(i, False, counterfactual=True), NOW)

        assert len(engine.outcome_history) == 60
        assert len(engine.counterfactual_history) == 10
        assert engine.performance.metrics.win_rate == before


class TestPerformanceAndHealth:
    """Test metrics and health grading."""

    def test_seventy_percent_metrics(self, seventy_percent_engine):
        """60 outcomes at 70% wins give the expected metrics."""
        m = seventy_percent_engine.performance.metrics
        assert m.signal_accuracy == pytest.approx(70.0)
        assert m.win_rate == pytest.approx(70.0)
        assert m.average_return == pytest.approx(0.011)
        assert m.sharpe_ratio == pytest.approx(0.011 / np.sqrt(0.000189), rel=1e-6)
        assert m.profit_factor == pytest.approx(0.84 / 0.18)

    def test_seventy_percent_health(self, seventy_percent_engine):
        """A 70% win rate grades at least good with no win-rate issue."""
        health = seventy_percent_engine.get_system_health(NOW)
        assert health.overall_health in (HealthStatus.GOOD, HealthStatus.EXCELLENT)
        assert health.health_score == pytest.approx(90.0)
        assert not any('Win rate' in issue for issue in health.issues)
        assert 'Collect more performance data for better optimization' in health.recommendations

    def test_empty_engine_is_poor(self, engine):
        """No data grades poor with every issue listed."""
        health = engine.get_system_health(NOW)
        assert health.overall_health == HealthStatus.POOR
        assert health.issues == [
            'Signal accuracy below 50%',
            'Poor risk-adjusted returns',
            'Win rate below 45%',
            'Profit factor below 1.0',
        ]

    def test_health_emits_telemetry(self):
        """Health checks are published as SYSTEM_HEALTH events."""
        sink = TelemetrySink()
        engine = ContinuousLearningEngine(telemetry=sink, symbol='EURUSD')
        engine.get_system_health(NOW)
        assert len(sink.get_recent(TelemetryEventType.SYSTEM_HEALTH)) == 1

    def test_performance_snapshot_is_copy(self, seventy_percent_engine):
        """The returned snapshot does not alias engine state."""
        snapshot = seventy_percent_engine.get_performance_metrics()
        snapshot.metrics.win_rate = 0.0
        assert seventy_percent_engine.performance.metrics.win_rate == pytest.approx(70.0)


class TestOptimization:
    """Test drift-bounded optimizers."""

    def test_drift_candidates_confluence(self):
        """Confluence 15 with 20% drift searches 12, 15 and 18."""
        grid = LearningEngineConfig().optimizer.confluence_grid
        candidates = drift_candidates(grid, 15.0, 0.2)
        assert candidates[0] == 15.0
        assert {round(c, 6) for c in candidates} == {12.0, 15.0, 18.0}

    def test_drift_candidates_strength(self):
        """Strength 5 with 20% drift searches 4, 5 and 6."""
        grid = LearningEngineConfig().optimizer.strength_grid
        assert {round(c, 6) for c in drift_candidates(grid, 5.0, 0.2)} == {4.0, 5.0, 6.0}

    def test_optimize_confluence(self):
        """Separable outcomes push the confluence threshold to the drift boundary."""
        config = LearningEngineConfig()
        frame = outcomes_to_frame(confluence_separable_outcomes())
        proposal = optimize_threshold(
            frame, 'confluence_score', 'confluence_threshold',
            config.optimizer.confluence_grid, 15.0, config, 100,
        )
        assert proposal.suggested_value == pytest.approx(18.0)
        assert proposal.confidence == pytest.approx(1.0)
        assert proposal.expected_improvement > 0.05
        assert abs(proposal.suggested_value - 15.0) / 15.0 <= 0.2 + 1e-9

    def test_no_proposal_when_current_best(self):
        """Uninformative outcomes leave the threshold alone."""
        config = LearningEngineConfig()
        outcomes = [make_outcome(i, i % 2 == 0, confluence=30.0) for i in range(60)]
        proposal = optimize_threshold(
            outcomes_to_frame(outcomes), 'confluence_score', 'confluence_threshold',
            config.optimizer.confluence_grid, 15.0, config, 100,
        )
        assert proposal is None

    def test_recommendations_require_min_sample(self, engine):
        """No proposals below the minimum sample size."""
        for i in range(10):
            engine.add_outcome(make_outcome(i, True), NOW)
        assert engine.get_optimization_recommendations(NOW) == []

    def test_recommendations_do_not_apply(self, engine):
        """Recommendations leave parameters unchanged."""
        for outcome in confluence_separable_outcomes(60):
            engine.add_outcome(outcome, NOW)
        before = engine.get_parameters()
        engine.get_optimization_recommendations(NOW)
        assert engine.get_parameters() == before


class TestRecalibration:
    """Test applying proposals."""

    def test_force_recalibration_applies_confluence(self):
        """A confident proposal is applied and recorded."""
        sink = TelemetrySink()
        engine = ContinuousLearningEngine(telemetry=sink)
        for outcome in confluence_separable_outcomes():
            engine.add_outcome(outcome, NOW)
        engine.force_recalibration(NOW)

        assert engine.get_parameters()['confluence_threshold'] == pytest.approx(18.0)
        records = [r for r in engine.get_adaptation_history() if r.parameter == 'confluence_threshold']
        assert records
        assert records[-1].old_value == pytest.approx(15.0)
        assert records[-1].new_value == pytest.approx(18.0)
        assert engine.get_performance_metrics().parameter_drift['confluence_threshold'] == pytest.approx(0.2)
        assert sink.get_recent(TelemetryEventType.PARAMETER_ADAPTATION)

    def test_low_confidence_not_applied(self, engine):
        """Proposals backed by too few samples are not applied."""
        for outcome in confluence_separable_outcomes(60):
            engine.add_outcome(outcome, NOW)
        # confidence 60 / 100 < 0.7
        engine.force_recalibration(NOW)
        assert engine.get_parameters()['confluence_threshold'] == pytest.approx(15.0)

    def test_degradation_triggers_recalibration(self, engine):
        """A drop of the recent score mean below the earlier mean recalibrates."""
        healthy = LearningMetrics(signal_accuracy=70.0, sharpe_ratio=0.5, win_rate=70.0)
        degraded = LearningMetrics(signal_accuracy=30.0, sharpe_ratio=-0.2, win_rate=30.0)

        engine.performance.metrics = healthy
        for i in range(10):
            assert engine.check_for_recalibration(NOW + timedelta(minutes=i)) is False
        assert engine.recalibrations == 0

        # healthy 0.64 vs degraded 0.21: recent mean 0.554 is a 13% drop
        engine.performance.metrics = degraded
        assert engine.check_for_recalibration(NOW + timedelta(minutes=10)) is True
        assert engine.recalibrations == 1

    def test_stable_scores_do_not_recalibrate(self, engine):
        """A flat score series never triggers recalibration."""
        engine.performance.metrics = LearningMetrics(signal_accuracy=60.0, sharpe_ratio=0.3, win_rate=60.0)
        for i in range(20):
            assert engine.check_for_recalibration(NOW + timedelta(minutes=i)) is False
        assert engine.recalibrations == 0

    def test_set_parameter_validation(self, engine):
        """Unknown names and non-positive values raise ValueError."""
        with pytest.raises(ValueError):
            engine.set_parameter('moon_phase', 1.0)
        with pytest.raises(ValueError):
            engine.set_parameter('confluence_threshold', 0.0)

        engine.set_parameter('confluence_threshold', 13.0)
        assert engine.get_parameters()['confluence_threshold'] == 13.0


class TestCounterfactual:
    """Test counterfactual analysis."""

    def test_missed_opportunities(self, engine):
        """Profitable rejected signals count as missed opportunities."""
        engine.add_outcome(make_outcome(1, True), NOW)
        engine.add_outcome(make_outcome(2, True, win_return=0.01, counterfactual=True), NOW)
        engine.add_outcome(make_outcome(3, True, win_return=0.03, counterfactual=True), NOW)
        engine.add_outcome(make_outcome(4, False, counterfactual=True), NOW)

        summary = engine.get_counterfactual_analysis(NOW)[0]
        assert summary.period == 'last_7_days'
        assert summary.accepted_signals == 1
        assert summary.rejected_signals == 3
        assert summary.missed_opportunities == 2
        assert summary.estimated_missed_profit == pytest.approx(0.04)


class TestLearningEngineConfig:
    """Test configuration validation."""

    def test_zero_drift_rejected(self):
        """Drift must be positive."""
        with pytest.raises(ValueError):
            LearningEngineConfig(max_parameter_drift=0.0)

    def test_unknown_regime_prior_rejected(self):
        """Regime weight priors must name known regimes."""
        with pytest.raises(ValueError):
            LearningEngineConfig(regime_weight_priors={'sideways': 1.0})

    def test_round_trip(self):
        """to_dict/from_dict preserves the hash."""
        config = LearningEngineConfig(min_sample_size=30)
        assert LearningEngineConfig.from_dict(config.to_dict()).get_config_hash() == config.get_config_hash()
