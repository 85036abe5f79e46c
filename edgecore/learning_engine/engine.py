"""
Continuous Learning Engine

Closes the feedback loop from realized outcomes back to the fusion and
threshold parameters.

Flow per outcome:
1. Deduplicate by signal id and append to the retention-bounded ledger
2. Once the minimum sample size is reached, recompute ModelPerformance
3. Track the degradation score and recalibrate on a significant drop
4. Applied parameter changes are recorded and published as telemetry
"""

import logging
from collections import deque
from copy import deepcopy
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from edgecore.learning_engine.config import LearningEngineConfig
from edgecore.learning_engine.metrics import compute_learning_metrics, degradation_score
from edgecore.learning_engine.optimizer import identify_parameter_optimizations
from edgecore.learning_engine.schemas import (
    AdaptationRecord,
    CounterfactualSummary,
    HealthStatus,
    ModelPerformance,
    OutcomeData,
    ParameterOptimization,
    SystemHealth,
)
from edgecore.observability import TelemetryEventType, TelemetrySink
from edgecore.timeutils import ensure_utc

LOG = logging.getLogger(__name__)


class ContinuousLearningEngine:
    """
    Outcome tracking, performance scoring and parameter re-optimization.

    Sole owner of the outcome ledger, the performance snapshot and the
    learned parameter values. Parameters are published through the
    adaptation history; the caller pushes them into the engines that use them.
    """

    def __init__(
        self,
        config: Optional[LearningEngineConfig] = None,
        telemetry: Optional[TelemetrySink] = None,
        symbol: Optional[str] = None,
    ):
        self.config = config or LearningEngineConfig()
        self.telemetry = telemetry
        self.symbol = symbol

        self.outcome_history: deque = deque(maxlen=self.config.max_outcome_history)
        self.counterfactual_history: deque = deque(maxlen=self.config.max_outcome_history)
        self._seen_signal_ids = set()

        self.performance = ModelPerformance()
        self.adaptation_history: deque = deque(maxlen=self.config.max_adaptation_history)
        self.score_history: deque = deque(maxlen=self.config.max_score_history)     # (timestamp, score)

        self.parameters: Dict[str, float] = {
            'confluence_threshold': float(self.config.initial_confluence_threshold),
            'strength_threshold': float(self.config.initial_strength_threshold),
        }
        for regime, weight in self.config.regime_weight_priors.items():
            self.parameters[f"regime_weight_{regime}"] = float(weight)

        self.recalibrations = 0
        self.total_adaptations = 0

        LOG.info(f"Learning engine initialized (config hash: {self.config.get_config_hash()})")

    # ==================== OUTCOME INGESTION ====================

    def add_outcome(self, outcome: OutcomeData, timestamp: Optional[datetime] = None) -> bool:
        """
        Record one realized outcome.

        Returns False when the outcome was ignored: a duplicate signal id or
        an entry time already outside retention.
        """
        now = ensure_utc(timestamp)
        self._prune(now)

        if self.config.deduplicate_outcomes and outcome.signal_id in self._seen_signal_ids:
            LOG.warning(f"Duplicate outcome for signal {outcome.signal_id} ignored")
            return False
        if outcome.entry_time <= self._retention_cutoff(now):
            LOG.warning(f"Outcome for signal {outcome.signal_id} is older than retention; ignored")
            return False

        self._seen_signal_ids.add(outcome.signal_id)
        if outcome.counterfactual:
            self._append(self.counterfactual_history, outcome)
            return True

        self._append(self.outcome_history, outcome)
        if len(self.outcome_history) >= self.config.min_sample_size:
            self.update_performance_metrics(now)
            self.check_for_recalibration(now)
        return True

    def _append(self, ledger: deque, outcome: OutcomeData):
        if len(ledger) == ledger.maxlen:
            self._seen_signal_ids.discard(ledger[0].signal_id)
        ledger.append(outcome)

    def _retention_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.config.retention_days)

    def _prune(self, now: datetime):
        cutoff = self._retention_cutoff(now)
        for ledger in (self.outcome_history, self.counterfactual_history):
            # Outcomes arrive in any order, so expired ones can sit anywhere
            expired = [o for o in ledger if o.entry_time <= cutoff]
            if not expired:
                continue
            kept = [o for o in ledger if o.entry_time > cutoff]
            ledger.clear()
            ledger.extend(kept)
            for outcome in expired:
                self._seen_signal_ids.discard(outcome.signal_id)

    def get_recent_outcomes(self, timestamp: Optional[datetime] = None,
                            counterfactual: bool = False) -> List[OutcomeData]:
        now = ensure_utc(timestamp)
        cutoff = now - timedelta(hours=self.config.performance_window_hours)
        ledger = self.counterfactual_history if counterfactual else self.outcome_history
        # Entry order, not arrival order, so path-dependent metrics are stable
        return sorted((o for o in ledger if cutoff < o.entry_time <= now), key=lambda o: o.entry_time)

    # ==================== PERFORMANCE ====================

    def update_performance_metrics(self, timestamp: Optional[datetime] = None):
        now = ensure_utc(timestamp)
        recent = self.get_recent_outcomes(now)
        if not recent:
            return

        metrics = compute_learning_metrics(
            [o.actual_return for o in recent],
            [o.was_correct_direction for o in recent],
        )
        self.performance.metrics = metrics
        self.performance.total_signals = len(recent)
        self.performance.last_updated = now

        LOG.info(
            f"Updated performance metrics: {metrics.signal_accuracy:.1f}% accuracy, "
            f"{metrics.average_return * 100:.2f}% avg return, {metrics.sharpe_ratio:.2f} Sharpe"
        )

    def check_for_recalibration(self, timestamp: Optional[datetime] = None) -> bool:
        """
        Append the current degradation score and recalibrate if the mean of
        the last few scores dropped far enough below the earlier mean.
        """
        now = ensure_utc(timestamp)
        cfg = self.config.degradation

        self.score_history.append((now, degradation_score(self.performance.metrics)))
        cutoff = now - timedelta(days=cfg.score_history_days)
        while self.score_history and self.score_history[0][0] <= cutoff:
            self.score_history.popleft()

        if len(self.score_history) < cfg.min_score_history:
            return False

        scores = [s for _, s in self.score_history]
        recent_avg = sum(scores[-cfg.recent_score_count:]) / cfg.recent_score_count
        earlier = scores[:-cfg.recent_score_count]
        historical_avg = sum(earlier) / len(earlier)
        if historical_avg <= 0:
            return False

        drop = (historical_avg - recent_avg) / historical_avg
        if drop > cfg.recalibration_threshold:
            LOG.info(f"Performance drop detected: {drop * 100:.1f}% - triggering recalibration")
            self.perform_recalibration(now)
            return True
        return False

    # ==================== RECALIBRATION ====================

    def get_optimization_recommendations(self, timestamp: Optional[datetime] = None) -> List[ParameterOptimization]:
        """Proposed changes over the performance window, without applying them"""
        return identify_parameter_optimizations(
            self.get_recent_outcomes(timestamp), dict(self.parameters), self.config
        )

    def perform_recalibration(self, timestamp: Optional[datetime] = None) -> List[AdaptationRecord]:
        """Apply every proposal with enough confidence and expected improvement"""
        now = ensure_utc(timestamp)
        opt = self.config.optimizer
        applied = []

        for proposal in self.get_optimization_recommendations(now):
            if proposal.confidence < opt.min_confidence or proposal.expected_improvement < opt.min_improvement:
                LOG.debug(f"Skipping {proposal.parameter}: confidence {proposal.confidence:.2f}, "
                          f"improvement {proposal.expected_improvement:.3f}")
                continue
            applied.append(self._apply(proposal, now))

        self.recalibrations += 1
        return applied

    def force_recalibration(self, timestamp: Optional[datetime] = None) -> List[AdaptationRecord]:
        LOG.info("Forcing system recalibration...")
        return self.perform_recalibration(timestamp)

    def _apply(self, proposal: ParameterOptimization, now: datetime) -> AdaptationRecord:
        old_value = self.parameters.get(proposal.parameter, proposal.current_value)
        new_value = proposal.suggested_value
        record = AdaptationRecord(
            timestamp=now,
            parameter=proposal.parameter,
            old_value=old_value,
            new_value=new_value,
            reason=f"Performance optimization (+{proposal.expected_improvement * 100:.1f}%)",
            confidence=proposal.confidence,
            expected_improvement=proposal.expected_improvement,
        )
        self.parameters[proposal.parameter] = new_value
        self.adaptation_history.append(record)
        self.total_adaptations += 1
        if old_value:
            self.performance.parameter_drift[proposal.parameter] = abs(new_value - old_value) / abs(old_value)

        LOG.info(f"Applying optimization: {proposal.parameter} {old_value} -> {new_value} "
                 f"(expected +{proposal.expected_improvement * 100:.1f}%)")
        if self.telemetry:
            self.telemetry.emit(
                TelemetryEventType.PARAMETER_ADAPTATION,
                source='learning_engine',
                message=f"{proposal.parameter}: {old_value} -> {new_value}",
                symbol=self.symbol,
                payload=record.to_dict(),
                timestamp=now,
            )
        return record

    # ==================== PARAMETERS ====================

    def get_parameters(self) -> Dict[str, float]:
        return dict(self.parameters)

    def set_parameter(self, name: str, value: float):
        """Seed a parameter with the value its owning engine currently uses"""
        if name not in self.parameters and not name.startswith('regime_weight_'):
            raise ValueError(f"Unknown learned parameter: {name}")
        if not value > 0:
            raise ValueError(f"Parameter {name} must be positive, got {value}")
        self.parameters[name] = float(value)

    # ==================== REPORTING ====================

    def get_performance_metrics(self) -> ModelPerformance:
        snapshot = deepcopy(self.performance)
        snapshot.adaptation_history = list(self.adaptation_history)
        return snapshot

    def get_adaptation_history(self) -> List[AdaptationRecord]:
        return list(self.adaptation_history)

    def get_counterfactual_analysis(self, timestamp: Optional[datetime] = None) -> List[CounterfactualSummary]:
        """
        Accepted vs rejected signals over the performance window. Rejected
        signals that would have been profitable count as missed opportunities.
        """
        accepted = self.get_recent_outcomes(timestamp)
        rejected = self.get_recent_outcomes(timestamp, counterfactual=True)
        missed = [o for o in rejected if o.is_win]
        return [CounterfactualSummary(
            period=f"last_{int(self.config.performance_window_hours // 24)}_days",
            accepted_signals=len(accepted),
            rejected_signals=len(rejected),
            missed_opportunities=len(missed),
            estimated_missed_profit=float(sum(o.actual_return for o in missed)),
        )]

    def get_system_health(self, timestamp: Optional[datetime] = None) -> SystemHealth:
        metrics = self.performance.metrics
        issues, recommendations = [], []

        score = 0
        score += self._grade(metrics.signal_accuracy, 60, 50, 'Signal accuracy below 50%', issues)
        score += self._grade(metrics.sharpe_ratio, 1.0, 0.5, 'Poor risk-adjusted returns', issues)
        score += self._grade(metrics.win_rate, 55, 45, 'Win rate below 45%', issues)
        score += self._grade(metrics.profit_factor, 1.5, 1.0, 'Profit factor below 1.0', issues)

        if metrics.signal_accuracy < 55:
            recommendations.append('Increase confluence score threshold to filter low-quality signals')
        if metrics.max_drawdown > 20:
            recommendations.append('Implement tighter risk management controls')
        if len(self.outcome_history) < 100:
            recommendations.append('Collect more performance data for better optimization')

        health = SystemHealth(
            overall_health=HealthStatus.from_score(score),
            health_score=float(score),
            issues=issues,
            recommendations=recommendations,
            last_update=self.performance.last_updated,
        )
        if self.telemetry:
            self.telemetry.emit(
                TelemetryEventType.SYSTEM_HEALTH,
                source='learning_engine',
                message=f"System health: {health.overall_health.value} ({score})",
                symbol=self.symbol,
                payload=health.to_dict(),
                timestamp=timestamp,
            )
        return health

    @staticmethod
    def _grade(value: float, good: float, fair: float, issue: str, issues: List[str]) -> int:
        if value > good:
            return 25
        if value > fair:
            return 15
        issues.append(issue)
        return 0

    def get_status(self) -> Dict[str, object]:
        return {
            'outcomes': len(self.outcome_history),
            'counterfactual_outcomes': len(self.counterfactual_history),
            'recalibrations': self.recalibrations,
            'adaptations': len(self.adaptation_history),
            'parameters': self.get_parameters(),
            'performance': self.get_performance_metrics().to_dict(),
        }
