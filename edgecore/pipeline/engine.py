"""
Decision Pipeline

Runs one evaluation cycle per call for a single symbol:

    candles → Regime Engine → Fusion Engine → Threshold Engine → DecisionOutput

and routes realized outcomes back through the Continuous Learning Engine,
pushing applied parameter changes into the engines that own them.

Each engine's mutations are serialized by its own lock, so a pipeline may
be shared between request threads.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pandas as pd

from edgecore.config import EdgeCoreConfig
from edgecore.fusion_engine.engine import FactorInput, ProbabilisticFusionEngine
from edgecore.fusion_engine.schemas import FactorSignal, ProbabilisticFactor, SignalDirection
from edgecore.learning_engine.engine import ContinuousLearningEngine
from edgecore.learning_engine.schemas import AdaptationRecord, OutcomeData
from edgecore.observability import CorrelationContext, TelemetryEventType, TelemetrySink
from edgecore.pipeline.schemas import DecisionOutput, IssuedSignal, RejectionStage
from edgecore.regime_engine.engine import RegimeDetectionEngine
from edgecore.regime_engine.schemas import MarketRegime
from edgecore.threshold_engine.engine import AdaptiveThresholdEngine
from edgecore.threshold_engine.schemas import AdaptiveThresholds, AdjustmentDirection
from edgecore.timeutils import ensure_utc

LOG = logging.getLogger(__name__)

# Accepted signals remembered for outcome attribution
MAX_ISSUED_SIGNALS = 5000


class DecisionPipeline:
    """
    Per-symbol decision stack.

    Example:
        >>> pipeline = DecisionPipeline('EURUSD')
        >>> output = pipeline.evaluate_cycle(candles, factors, confluence_score=22.0)
        >>> if output.accepted:
        ...     execute(output.signal.to_dict())
        >>> pipeline.report_outcome(outcome)
    """

    def __init__(
        self,
        symbol: str,
        config: Optional[EdgeCoreConfig] = None,
        telemetry: Optional[TelemetrySink] = None,
    ):
        if not symbol or not str(symbol).strip():
            raise ValueError("Pipeline requires a symbol")
        self.symbol = str(symbol).strip().upper()
        self.config = config or EdgeCoreConfig()
        self.telemetry = telemetry

        self.regime_engine = RegimeDetectionEngine(self.config.regime, telemetry, self.symbol)
        self.fusion_engine = ProbabilisticFusionEngine(self.config.fusion, telemetry, self.symbol)
        self.threshold_engine = AdaptiveThresholdEngine(self.config.threshold, telemetry, self.symbol)
        self.learning_engine = ContinuousLearningEngine(self.config.learning, telemetry, self.symbol)

        self._regime_lock = threading.Lock()
        self._fusion_lock = threading.Lock()
        self._threshold_lock = threading.Lock()
        self._learning_lock = threading.Lock()

        self._issued: "OrderedDict[str, IssuedSignal]" = OrderedDict()

        self.cycles = 0
        self.accepted_signals = 0
        self.outcomes_reported = 0
        self.created_at = datetime.now(timezone.utc)

        with self._learning_lock:
            self._sync_learning_parameters()

        LOG.info(f"Decision pipeline ready for {self.symbol} (config hash: {self.config.get_config_hash()})")

    # ==================== EVALUATION ====================

    def evaluate_cycle(
        self,
        candles: Union[pd.DataFrame, Sequence[Mapping[str, Any]]],
        factors: Sequence[FactorInput],
        confluence_score: float,
        current_price: Optional[float] = None,
        volume: Optional[Sequence[float]] = None,
        indicators: Optional[Mapping[str, float]] = None,
        news: Optional[Sequence[Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> DecisionOutput:
        """
        One full decision cycle.

        current_price defaults to the last close. Factor structs are
        validated before any engine state changes.
        """
        start = time.perf_counter()
        now = ensure_utc(timestamp)
        correlation_id = str(uuid.uuid4())
        CorrelationContext.set_correlation_id(correlation_id)

        try:
            signals = [self._coerce_factor(f) for f in factors]
            price = float(current_price) if current_price is not None else self._last_close(candles)

            with self._regime_lock:
                regime = self.regime_engine.detect_current_regime(
                    candles, volume=volume, indicators=indicators, news=news, timestamp=timestamp
                )

            with self._fusion_lock:
                signal, fusion, probabilistic = self.fusion_engine.evaluate(
                    signals, regime, price, symbol=self.symbol, timestamp=now
                )
                fusion_rejection = self.fusion_engine.last_rejection

            self.cycles += 1

            if signal is None:
                return self._output(now, correlation_id, regime, fusion, probabilistic, start,
                                    rejection_stage=RejectionStage.FUSION,
                                    rejection_reason=fusion_rejection.message if fusion_rejection else None)

            with self._threshold_lock:
                decision = self.threshold_engine.evaluate_signal(
                    signals,
                    probability=signal.combined_probability,
                    entropy=signal.entropy,
                    edge=signal.net_edge,
                    confluence_score=confluence_score,
                    regime=regime,
                    signal_type=signal.signal_type,
                    timestamp=now,
                )

            if not decision.accepted:
                return self._output(now, correlation_id, regime, fusion, probabilistic, start,
                                    decision=decision, rejection_stage=RejectionStage.THRESHOLD,
                                    rejection_reason=decision.reason)

            self._remember(signal.signal_id, signal.signal_type, signal.combined_probability, signals)
            self.accepted_signals += 1
            LOG.info(f"{self.symbol}: {signal.signal_type.value} signal accepted "
                     f"(p={signal.combined_probability:.3f}, kelly={signal.kelly_fraction:.3f})")
            if self.telemetry:
                self.telemetry.emit(
                    TelemetryEventType.SIGNAL_ACCEPTED,
                    source='pipeline',
                    message=f"{signal.signal_type.value} signal {signal.signal_id}",
                    symbol=self.symbol,
                    payload=signal.to_dict(),
                    timestamp=now,
                )
            return self._output(now, correlation_id, regime, fusion, probabilistic, start,
                                signal=signal, decision=decision)
        finally:
            CorrelationContext.clear()

    def _output(self, now, correlation_id, regime, fusion, probabilistic, start, **kwargs) -> DecisionOutput:
        return DecisionOutput(
            symbol=self.symbol,
            timestamp=now,
            correlation_id=correlation_id,
            regime=regime,
            fusion=fusion,
            probabilistic_factors=list(probabilistic),
            processing_time_ms=(time.perf_counter() - start) * 1000,
            **kwargs,
        )

    @staticmethod
    def _coerce_factor(factor: FactorInput) -> FactorSignal:
        if isinstance(factor, FactorSignal):
            return factor
        if isinstance(factor, Mapping):
            return FactorSignal.from_dict(factor)
        raise ValueError(f"Unsupported factor input: {type(factor).__name__}")

    @staticmethod
    def _last_close(candles) -> float:
        if isinstance(candles, pd.DataFrame):
            closes = candles['close'] if 'close' in candles.columns else candles.get('Close')
            if closes is not None and len(closes):
                return float(closes.iloc[-1])
        elif candles:
            last = candles[-1]
            if 'close' in last:
                return float(last['close'])
        raise ValueError("current_price is required when candles carry no close")

    def _remember(self, signal_id: str, direction: SignalDirection, probability: float,
                  factors: List[FactorSignal]):
        win_probability = probability if direction == SignalDirection.BUY else 1 - probability
        self._issued[signal_id] = IssuedSignal(
            signal_id=signal_id,
            win_probability=win_probability,
            factor_names=tuple((f.name, f.factor_type) for f in factors),
        )
        while len(self._issued) > MAX_ISSUED_SIGNALS:
            self._issued.popitem(last=False)

    # ==================== OUTCOME FEEDBACK ====================

    def report_outcome(
        self,
        outcome: Union[OutcomeData, Mapping[str, Any]],
        factors: Optional[Sequence[Union[FactorInput, ProbabilisticFactor]]] = None,
        predicted_probability: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> bool:
        """
        Feed one realized outcome back into the stack.

        Factors and the predicted win probability default to what was
        recorded when the signal was accepted. Returns False for duplicates.
        """
        if not isinstance(outcome, OutcomeData):
            outcome = OutcomeData.from_dict(outcome)
        now = ensure_utc(timestamp)

        with self._learning_lock:
            self._sync_learning_parameters()
            seen = self.learning_engine.total_adaptations
            if not self.learning_engine.add_outcome(outcome, now):
                return False
            applied = self._new_adaptations(seen)

        self.outcomes_reported += 1
        if not outcome.counterfactual:
            self._attribute(outcome, factors, predicted_probability, now)
        self._push_adaptations(applied, now)
        return True

    def _attribute(self, outcome: OutcomeData, factors, predicted_probability, now: datetime):
        issued = self._issued.pop(outcome.signal_id, None)
        if factors is not None:
            factor_names = [(f.name, f.factor_type) for f in
                            (f if isinstance(f, (FactorSignal, ProbabilisticFactor)) else self._coerce_factor(f)
                             for f in factors)]
        elif issued is not None:
            factor_names = list(issued.factor_names)
        else:
            factor_names = []

        if predicted_probability is None and issued is not None:
            predicted_probability = issued.win_probability

        with self._fusion_lock:
            for name, factor_type in factor_names:
                self.fusion_engine.update_factor_performance(
                    name, factor_type, outcome.is_win, outcome.actual_return
                )
            if predicted_probability is not None:
                self.fusion_engine.update_calibration(predicted_probability, outcome.is_win, now)

        with self._regime_lock:
            for factor_type in {ft for _, ft in factor_names}:
                self.regime_engine.update_factor_performance(
                    factor_type, outcome.regime, outcome.is_win, outcome.actual_return
                )

    def _new_adaptations(self, seen: int) -> List[AdaptationRecord]:
        count = self.learning_engine.total_adaptations - seen
        if count <= 0:
            return []
        return self.learning_engine.get_adaptation_history()[-count:]

    def _sync_learning_parameters(self):
        """Seed the learner with the values the owning engines currently use"""
        thresholds = self.threshold_engine.thresholds
        self.learning_engine.set_parameter('confluence_threshold', thresholds.confluence.adaptive)
        for regime, weight in self.threshold_engine.regime_weights.items():
            self.learning_engine.set_parameter(f"regime_weight_{regime.value}", weight)

    def _push_adaptations(self, records: Sequence[AdaptationRecord], now: datetime):
        for record in records:
            if record.parameter == 'strength_threshold':
                with self._fusion_lock:
                    self.fusion_engine.set_min_signal_strength(record.new_value)
                continue
            with self._threshold_lock:
                applied = self.threshold_engine.apply_learned_parameter(record.parameter, record.new_value, now)
            if not applied:
                LOG.warning(f"No owner for learned parameter {record.parameter}; ignored")

    # ==================== OPERATOR CONTROLS ====================

    def recalibrate(self, timestamp: Optional[datetime] = None) -> List[AdaptationRecord]:
        now = ensure_utc(timestamp)
        with self._learning_lock:
            self._sync_learning_parameters()
            records = self.learning_engine.force_recalibration(now)
        self._push_adaptations(records, now)
        return records

    def force_threshold_adjustment(self, direction: Union[AdjustmentDirection, str],
                                   intensity: float = 1.0) -> AdaptiveThresholds:
        with self._threshold_lock:
            return self.threshold_engine.force_threshold_adjustment(direction, intensity)

    def reset_thresholds(self) -> AdaptiveThresholds:
        with self._threshold_lock:
            return self.threshold_engine.reset_thresholds()

    # ==================== READ ACCESSORS ====================

    def get_current_regime(self) -> MarketRegime:
        return self.regime_engine.get_current_regime()

    def get_thresholds(self) -> AdaptiveThresholds:
        with self._threshold_lock:
            return self.threshold_engine.get_current_thresholds()

    def get_threshold_analytics(self) -> Dict[str, Any]:
        win_rate = self.learning_engine.performance.metrics.win_rate
        with self._threshold_lock:
            return {
                'rejections': self.threshold_engine.get_rejection_analytics().to_dict(),
                'density': self.threshold_engine.get_signal_density_analytics().to_dict(),
                'recommendations': self.threshold_engine.get_recommendations(win_rate),
                'adjustments': [a.to_dict() for a in self.threshold_engine.get_adjustment_history()],
            }

    def get_status(self) -> Dict[str, Any]:
        regime = self.get_current_regime()
        return {
            'symbol': self.symbol,
            'created_at': self.created_at.isoformat(),
            'cycles': self.cycles,
            'accepted_signals': self.accepted_signals,
            'outcomes_reported': self.outcomes_reported,
            'regime': regime.regime_type.value,
            'regime_confidence': regime.confidence,
            'thresholds': self.get_thresholds().to_dict(),
            'fusion': self.fusion_engine.get_system_stats(),
            'learning': self.learning_engine.get_status(),
            'config_hash': self.config.get_config_hash(),
        }
