"""
Adaptive Threshold Engine

Stateful accept/reject gate for fused signals with self-tuning bounds.

Gate order (first failure short-circuits):
1. Entropy ≤ current entropy bound
2. Buy probability ≥ buy cutoff / sell probability ≤ sell cutoff
3. Edge > adaptive edge floor
4. Confluence ≥ adaptive confluence / regime weight

Adaptation runs at most once per adaptation interval and moves all
thresholds toward the target accepted-signal density.
"""

import logging
from collections import Counter, deque
from copy import deepcopy
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from edgecore.fusion_engine.schemas import SignalDirection
from edgecore.observability import TelemetryEventType, TelemetrySink
from edgecore.regime_engine.schemas import MarketRegime, RegimeType
from edgecore.threshold_engine.config import ThresholdEngineConfig, ThresholdValuesConfig
from edgecore.threshold_engine.schemas import (
    AdaptiveThresholds,
    AdjustmentDirection,
    EntropyThreshold,
    FloorThreshold,
    ProbabilityThresholds,
    RejectionAnalytics,
    RejectionReason,
    SignalDensityAnalytics,
    SignalRejection,
    ThresholdAdjustment,
    ThresholdDecision,
)
from edgecore.timeutils import ensure_utc

LOG = logging.getLogger(__name__)


class AdaptiveThresholdEngine:
    """
    Adaptive accept/reject gate.

    Sole owner of AdaptiveThresholds, the rejection ledger and the signal
    log. get_current_thresholds returns a copy.
    """

    def __init__(
        self,
        config: Optional[ThresholdEngineConfig] = None,
        telemetry: Optional[TelemetrySink] = None,
        symbol: Optional[str] = None,
    ):
        self.config = config or ThresholdEngineConfig()
        self.telemetry = telemetry
        self.symbol = symbol

        self.thresholds = self._build_thresholds(self.config.initial)
        self.regime_weights: Dict[RegimeType, float] = {
            regime: self.config.regime_weight(regime) for regime in RegimeType
        }

        self.rejection_log: deque = deque(maxlen=self.config.max_log_entries)
        self.signal_log: deque = deque(maxlen=self.config.max_log_entries)
        self.adjustment_history: deque = deque(maxlen=500)

        LOG.info(f"Threshold engine initialized (config hash: {self.config.get_config_hash()})")

    def _build_thresholds(self, values: ThresholdValuesConfig) -> AdaptiveThresholds:
        bounds = self.config.bounds
        confluence_floor = bounds.confluence.clamp(values.confluence_floor)
        edge_floor = bounds.edge.clamp(values.edge_floor)
        return AdaptiveThresholds(
            entropy=EntropyThreshold(
                current=bounds.entropy.clamp(values.entropy),
                min=bounds.entropy.min,
                max=bounds.entropy.max,
            ),
            probability=ProbabilityThresholds(
                buy=bounds.probability.clamp(values.buy_probability),
                sell=bounds.sell_probability.clamp(values.sell_probability),
            ),
            confluence=FloorThreshold(
                adaptive=bounds.confluence.clamp(max(values.confluence, confluence_floor)),
                min=confluence_floor,
            ),
            edge=FloorThreshold(
                adaptive=bounds.edge.clamp(max(values.edge, edge_floor)),
                min=edge_floor,
            ),
        )

    # ==================== EVALUATION ====================

    def evaluate_signal(
        self,
        factors: Union[Sequence, int, None],
        probability: float,
        entropy: float,
        edge: float,
        confluence_score: float,
        regime: Union[MarketRegime, RegimeType, str],
        signal_type: Union[SignalDirection, str],
        timestamp: Optional[datetime] = None,
    ) -> ThresholdDecision:
        """
        Gate one candidate signal.

        Exactly one rejection is logged per rejected signal, for the first
        failing check. Non-finite metrics fail their check.
        """
        now = ensure_utc(timestamp)
        self.adapt_thresholds(now)

        regime_type = regime.regime_type if isinstance(regime, MarketRegime) else RegimeType.parse(regime)
        direction = SignalDirection.parse(signal_type)
        if isinstance(factors, int):
            factor_count = factors
        else:
            factor_count = len(factors) if factors is not None else 0

        t = self.thresholds
        regime_weight = self.regime_weights.get(regime_type, 1.0)
        required_confluence = t.confluence.adaptive / regime_weight

        def reject(reason: RejectionReason, value: float, threshold: float, message: str) -> ThresholdDecision:
            rejection = SignalRejection(
                timestamp=now,
                reason=reason,
                value=float(value),
                threshold=float(threshold),
                signal_type=direction.value,
                factor_count=factor_count,
                regime=regime_type.value,
                message=message,
            )
            self._log_rejection(rejection)
            return ThresholdDecision(
                accepted=False,
                reason=message,
                rejection=rejection,
                effective_confluence_threshold=required_confluence,
                thresholds=t.as_vector(),
            )

        if not entropy <= t.entropy.current:
            return reject(RejectionReason.ENTROPY, entropy, t.entropy.current,
                          f"entropy_too_high_{entropy:.3f}_>{t.entropy.current:.3f}")

        if direction == SignalDirection.BUY and not probability >= t.probability.buy:
            return reject(RejectionReason.PROBABILITY, probability, t.probability.buy,
                          f"buy_probability_too_low_{probability * 100:.1f}%_<{t.probability.buy * 100:.1f}%")
        if direction == SignalDirection.SELL and not probability <= t.probability.sell:
            return reject(RejectionReason.PROBABILITY, probability, t.probability.sell,
                          f"sell_probability_too_high_{probability * 100:.1f}%_>{t.probability.sell * 100:.1f}%")
        if direction == SignalDirection.NEUTRAL:
            return reject(RejectionReason.PROBABILITY, probability, t.probability.buy,
                          f"neutral_signal_probability_{probability * 100:.1f}%")

        if not edge > t.edge.adaptive:
            return reject(RejectionReason.EDGE, edge, t.edge.adaptive,
                          f"edge_too_low_{edge:.6f}_<={t.edge.adaptive:.6f}")

        if not confluence_score >= required_confluence:
            return reject(RejectionReason.CONFLUENCE, confluence_score, required_confluence,
                          f"confluence_too_low_{confluence_score:.1f}_<{required_confluence:.1f}"
                          f"_regime:{regime_type.value}")

        self._log_signal(now, accepted=True)
        LOG.debug(f"Signal accepted: {direction.value} p={probability:.3f} confluence={confluence_score:.1f}")
        return ThresholdDecision(
            accepted=True,
            effective_confluence_threshold=required_confluence,
            thresholds=t.as_vector(),
        )

    def _log_rejection(self, rejection: SignalRejection):
        self.rejection_log.append(rejection)
        self._log_signal(rejection.timestamp, accepted=False)
        self._prune(rejection.timestamp)

        LOG.info(f"Signal rejected at threshold gate: {rejection.message}")
        if self.telemetry:
            self.telemetry.emit(
                TelemetryEventType.SIGNAL_REJECTED,
                source='threshold_engine',
                message=rejection.message,
                symbol=self.symbol,
                payload=rejection.to_dict(),
                timestamp=rejection.timestamp,
            )

    def _log_signal(self, when: datetime, accepted: bool):
        self.signal_log.append((when, accepted))
        self._prune(when)

    def _prune(self, now: datetime):
        cutoff = now - timedelta(days=self.config.retention_days)
        while self.rejection_log and self.rejection_log[0].timestamp < cutoff:
            self.rejection_log.popleft()
        while self.signal_log and self.signal_log[0][0] < cutoff:
            self.signal_log.popleft()

    # ==================== ADAPTATION ====================

    def adapt_thresholds(self, timestamp: Optional[datetime] = None) -> bool:
        """
        Density-driven adaptation, at most once per adaptation interval.

        The first call only records the baseline time. Returns True when an
        adaptation pass ran.
        """
        now = ensure_utc(timestamp)
        cfg = self.config
        t = self.thresholds

        if t.last_adaptation is None:
            t.last_adaptation = now
            return False
        if now - t.last_adaptation < timedelta(hours=cfg.adaptation_interval_hours):
            return False

        before = t.as_vector()
        density = self.get_signal_density_analytics(now)
        target = cfg.signal_density_target

        direction = None
        if density.current_density < cfg.relax_density_ratio * target:
            direction = AdjustmentDirection.RELAX
        elif density.current_density > cfg.tighten_density_ratio * target:
            direction = AdjustmentDirection.TIGHTEN
        if direction is not None:
            self._step(direction, cfg.learning_rate)

        self._analyze_rejection_patterns(now)

        t.last_adaptation = now
        t.adaptation_count += 1

        LOG.info(
            f"Signal density {density.current_density:.2f}/h (target {target:.2f}/h); "
            f"entropy {t.entropy.current:.3f}, confluence {t.confluence.adaptive:.1f}, "
            f"edge {t.edge.adaptive:.6f}"
        )
        self._record_adjustment(
            now, 'auto', direction.value if direction else None, before,
            f"density {density.current_density:.2f}/h vs target {target:.2f}/h",
        )
        return True

    def _step(self, direction: AdjustmentDirection, intensity: float):
        """
        Move every threshold one step. Relax and tighten use the same step so
        a relax/tighten pair cancels unless a bound clipped it.
        """
        bounds = self.config.bounds
        steps = self.config.steps
        t = self.thresholds
        sign = 1.0 if direction == AdjustmentDirection.RELAX else -1.0

        t.entropy.current = bounds.entropy.clamp(t.entropy.current + sign * steps.entropy * intensity)
        t.probability.buy = bounds.probability.clamp(t.probability.buy - sign * steps.probability * intensity)
        t.probability.sell = bounds.sell_probability.clamp(
            t.probability.sell + sign * steps.probability * intensity
        )
        t.confluence.adaptive = self._clamp_floor(
            t.confluence.adaptive - sign * steps.confluence * intensity,
            t.confluence.min, bounds.confluence,
        )
        t.edge.adaptive = self._clamp_floor(
            t.edge.adaptive - sign * steps.edge * intensity,
            t.edge.min, bounds.edge,
        )

    @staticmethod
    def _clamp_floor(value: float, floor: float, bounds) -> float:
        return bounds.clamp(max(value, floor))

    def _analyze_rejection_patterns(self, now: datetime):
        cfg = self.config.rejection_analysis
        recent = self._recent_rejections(now)
        if len(recent) < cfg.min_rejections:
            return

        counts = Counter(r.reason for r in recent)
        total = len(recent)
        t = self.thresholds
        bounds = self.config.bounds

        if counts[RejectionReason.ENTROPY] / total > cfg.entropy_share:
            t.entropy.current = bounds.entropy.clamp(t.entropy.current + cfg.entropy_relax)
            LOG.info(f"Entropy dominates rejections; entropy bound -> {t.entropy.current:.3f}")

        if counts[RejectionReason.EDGE] / total > cfg.edge_share:
            t.edge.adaptive = self._clamp_floor(t.edge.adaptive - cfg.edge_relax, t.edge.min, bounds.edge)
            LOG.info(f"Edge dominates rejections; edge floor -> {t.edge.adaptive:.6f}")

    def force_threshold_adjustment(
        self,
        direction: Union[AdjustmentDirection, str],
        intensity: float = 1.0,
        timestamp: Optional[datetime] = None,
    ) -> AdaptiveThresholds:
        """Operator override that bypasses the adaptation cadence"""
        direction = AdjustmentDirection.parse(direction)
        if not np.isfinite(intensity) or intensity < 0:
            raise ValueError(f"Intensity must be a non-negative finite number, got {intensity}")

        before = self.thresholds.as_vector()
        self._step(direction, float(intensity))
        LOG.info(f"Forced {direction.value} of thresholds (intensity {intensity})")
        self._record_adjustment(
            ensure_utc(timestamp), 'forced', direction.value, before,
            f"forced {direction.value} x{intensity}",
        )
        return self.get_current_thresholds()

    def reset_thresholds(self, timestamp: Optional[datetime] = None) -> AdaptiveThresholds:
        """Restore the configured reset values, keeping the adaptation clock"""
        before = self.thresholds.as_vector()
        last_adaptation = self.thresholds.last_adaptation
        count = self.thresholds.adaptation_count
        self.thresholds = self._build_thresholds(self.config.reset_values)
        self.thresholds.last_adaptation = last_adaptation
        self.thresholds.adaptation_count = count

        LOG.info("Thresholds reset to defaults")
        self._record_adjustment(ensure_utc(timestamp), 'reset', None, before, "reset")
        return self.get_current_thresholds()

    def apply_learned_parameter(self, parameter: str, value: float,
                                timestamp: Optional[datetime] = None) -> bool:
        """
        Apply a parameter proposed by the learning engine.

        Supports 'confluence_threshold' and 'regime_weight_<regime>'. Values
        are clamped to bounds. Returns False for parameters this gate does not own.
        """
        before = self.thresholds.as_vector()
        if parameter == 'confluence_threshold':
            t = self.thresholds
            t.confluence.adaptive = self._clamp_floor(float(value), t.confluence.min, self.config.bounds.confluence)
            reason = f"learned confluence threshold {value:.2f}"
        elif parameter.startswith('regime_weight_'):
            try:
                regime = RegimeType.parse(parameter[len('regime_weight_'):])
            except ValueError:
                LOG.warning(f"Ignoring learned weight for unknown regime: {parameter}")
                return False
            if not value > 0:
                LOG.warning(f"Ignoring non-positive regime weight {value} for {regime.value}")
                return False
            self.regime_weights[regime] = float(value)
            reason = f"learned regime weight {regime.value}={value:.3f}"
        else:
            return False

        LOG.info(f"Applied {reason}")
        self._record_adjustment(ensure_utc(timestamp), 'learned', None, before, reason)
        return True

    def _record_adjustment(self, when: datetime, source: str, direction: Optional[str],
                           before: Dict[str, float], reason: str):
        adjustment = ThresholdAdjustment(
            timestamp=when,
            source=source,
            direction=direction,
            before=before,
            after=self.thresholds.as_vector(),
            reason=reason,
        )
        self.adjustment_history.append(adjustment)
        if self.telemetry:
            self.telemetry.emit(
                TelemetryEventType.THRESHOLD_ADAPTATION,
                source='threshold_engine',
                message=f"{source} adjustment: {reason}",
                symbol=self.symbol,
                payload=adjustment.to_dict(),
                timestamp=when,
            )

    # ==================== ANALYTICS ====================

    def _recent_rejections(self, now: datetime) -> List[SignalRejection]:
        cutoff = now - timedelta(hours=self.config.adaptation_window_hours)
        return [r for r in self.rejection_log if cutoff < r.timestamp <= now]

    def _recent_signals(self, now: datetime) -> List[tuple]:
        cutoff = now - timedelta(hours=self.config.adaptation_window_hours)
        return [s for s in self.signal_log if cutoff < s[0] <= now]

    def get_current_thresholds(self) -> AdaptiveThresholds:
        return deepcopy(self.thresholds)

    def get_rejection_analytics(self, timestamp: Optional[datetime] = None) -> RejectionAnalytics:
        now = ensure_utc(timestamp)
        recent = self._recent_rejections(now)
        evaluated = len(self._recent_signals(now))

        by_reason = Counter(r.reason.value for r in recent)
        top_reasons = [
            {'reason': reason, 'count': count, 'percentage': count / len(recent) * 100}
            for reason, count in by_reason.most_common()
        ]
        return RejectionAnalytics(
            total_rejections=len(recent),
            rejections_by_reason=dict(by_reason),
            rejection_rate=len(recent) / evaluated * 100 if evaluated > 0 else 0.0,
            top_reasons=top_reasons,
        )

    def get_signal_density_analytics(self, timestamp: Optional[datetime] = None) -> SignalDensityAnalytics:
        now = ensure_utc(timestamp)
        recent = self._recent_signals(now)
        accepted = sum(1 for _, ok in recent if ok)
        return SignalDensityAnalytics(
            current_density=accepted / self.config.adaptation_window_hours,
            target_density=self.config.signal_density_target,
            accepted_signals=accepted,
            rejected_signals=len(recent) - accepted,
            total_evaluated=len(recent),
        )

    def get_recommendations(self, win_rate: Optional[float] = None,
                            timestamp: Optional[datetime] = None) -> List[str]:
        """
        Operator guidance derived from rejection and density analytics.

        win_rate is a percentage from the learning engine, if available.
        """
        rejections = self.get_rejection_analytics(timestamp)
        density = self.get_signal_density_analytics(timestamp)
        recommendations = []

        if rejections.rejection_rate > 95:
            recommendations.append('CRITICAL: Extremely high rejection rate. Consider relaxing all thresholds immediately.')
        elif rejections.rejection_rate > 85:
            recommendations.append('HIGH: Very high rejection rate. Relax entropy and confluence thresholds.')

        if density.total_evaluated > 0:
            if density.current_density < 0.5:
                recommendations.append('Signal generation rate is too low. Relax thresholds.')
            elif density.current_density > 4:
                recommendations.append('Signal generation rate is too high. Consider tightening thresholds to improve quality.')

        if rejections.top_reasons:
            top = rejections.top_reasons[0]['reason']
            messages = {
                RejectionReason.ENTROPY.value: 'Entropy is the main rejection reason. Consider increasing entropy threshold.',
                RejectionReason.CONFLUENCE.value: 'Confluence score is the main rejection reason. Consider lowering confluence threshold.',
                RejectionReason.EDGE.value: 'Edge calculation is the main rejection reason. Consider adjusting edge threshold.',
                RejectionReason.PROBABILITY.value: 'Probability thresholds are the main rejection reason. Consider adjusting probability bounds.',
            }
            recommendations.append(messages[top])

        if win_rate is not None and 0 < win_rate < 50:
            recommendations.append('Win rate is below 50%. Consider tightening thresholds to improve signal quality.')

        if not recommendations:
            recommendations.append('System is operating within normal parameters. No immediate adjustments needed.')
        return recommendations

    def get_adjustment_history(self, limit: int = 50) -> List[ThresholdAdjustment]:
        return list(self.adjustment_history)[-limit:]
