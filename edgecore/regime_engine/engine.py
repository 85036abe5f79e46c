"""
Regime Detection Engine

Classifies the current market regime from a rolling window of observations
and maintains regime-conditioned factor weights.

Per detection call:
1. Build one MarketObservation from the recent candles
2. Append it to the bounded observation window
3. Decode the regime over the last few observations (simplified Viterbi)
4. On a regime change: record the transition and reweight the new regime's
   factor weights from per-regime factor performance
5. Return an immutable MarketRegime snapshot
"""

import logging
from collections import deque
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from edgecore.observability import TelemetryEventType, TelemetrySink
from edgecore.regime_engine.config import RegimeEngineConfig
from edgecore.regime_engine.hsmm import (
    HiddenState,
    build_default_states,
    build_transition_matrix,
    decode_regime,
)
from edgecore.regime_engine.observation import CandleInput, ObservationBuilder
from edgecore.regime_engine.schemas import (
    FactorType,
    MarketObservation,
    MarketRegime,
    Microstructure,
    RegimeFactorPerformance,
    RegimeStatistics,
    RegimeTransition,
    RegimeType,
    RegimeWeightTable,
)
from edgecore.timeutils import ensure_utc

LOG = logging.getLogger(__name__)

DEFAULT_REGIME = RegimeType.RANGING_TIGHT


class RegimeDetectionEngine:
    """
    HSMM-style regime detector.

    Sole owner of the current regime, the transition history and the
    adaptive weight table. Not thread-safe on its own; callers serialize
    detect_current_regime per instance.
    """

    def __init__(
        self,
        config: Optional[RegimeEngineConfig] = None,
        telemetry: Optional[TelemetrySink] = None,
        symbol: Optional[str] = None,
    ):
        self.config = config or RegimeEngineConfig()
        self.telemetry = telemetry
        self.symbol = symbol

        self.observation_builder = ObservationBuilder(self.config.observation)
        self.states: List[HiddenState] = build_default_states()
        self._states_by_regime = {s.regime: s for s in self.states}
        self.transition_matrix = build_transition_matrix(
            self.states, self.config.default_transition_probability
        )

        self.adaptive_weights = RegimeWeightTable.from_mapping(self.config.regime_weights)
        self.observation_window: deque = deque(maxlen=self.config.window_size)
        self.regime_history: deque = deque(maxlen=self.config.history_size)
        self.regime_performance: Dict[Tuple[RegimeType, FactorType], RegimeFactorPerformance] = {}

        self._current_regime = self._default_regime()

        LOG.info(f"Regime engine initialized (config hash: {self.config.get_config_hash()})")

    # ==================== DETECTION ====================

    def detect_current_regime(
        self,
        candles: Optional[CandleInput],
        volume: Optional[Sequence[float]] = None,
        indicators: Optional[Mapping[str, Any]] = None,
        news: Optional[Iterable[Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> MarketRegime:
        """
        Classify the current regime.

        Short or missing candle history returns the neutral default regime
        without touching engine state.
        """
        observation = self.observation_builder.build(candles, volume, indicators, news, timestamp)
        if observation is None:
            return self._default_regime(timestamp)

        self.observation_window.append(observation)
        recent = list(self.observation_window)[-self.config.viterbi_lookback:]

        previous = self._current_regime
        best, posterior, log_scores = decode_regime(
            self.states, recent, previous.regime_type, self.config.persistence_bias
        )

        if LOG.isEnabledFor(logging.DEBUG):
            ranked = sorted(zip(self.states, log_scores), key=lambda x: -x[1])[:3]
            LOG.debug("Regime scores: " + ", ".join(f"{s.regime.value}={v:.2f}" for s, v in ranked))

        now = observation.observed_at or ensure_utc(timestamp)
        if best != previous.regime_type:
            self._record_transition(previous, best, observation, posterior, now)
            self._adapt_weights_on_transition(best)

        self._current_regime = self._create_regime(best, observation, posterior, previous.confidence, now)
        return self._current_regime

    def _create_regime(
        self,
        regime: RegimeType,
        obs: MarketObservation,
        posterior: float,
        previous_confidence: float,
        when: datetime,
    ) -> MarketRegime:
        state = self._states_by_regime[regime]
        base_risk = self.config.risk_multipliers.get(regime.value, 0.5)
        risk_multiplier = (base_risk
                           * max(0.1, 1 - obs.volatility / 2)
                           * max(0.5, previous_confidence))

        if obs.momentum > 0.1:
            order_flow = 'buying'
        elif obs.momentum < -0.1:
            order_flow = 'selling'
        else:
            order_flow = 'neutral'

        return MarketRegime(
            regime_type=regime,
            strength=self._regime_strength(regime, obs),
            confidence=float(np.clip(posterior, 0.1, 1.0)),
            duration=float(state.duration.mean),
            volatility=obs.volatility,
            momentum=obs.momentum,
            volume_ratio=obs.volume_ratio,
            microstructure=Microstructure(
                bid_ask_spread=obs.volatility * 0.1,
                market_depth=max(0.1, 2 - obs.volatility),
                order_flow=order_flow,
                institutional_activity=0.8 if obs.volume_ratio > 1.5 else 0.3,
            ),
            adjustment_factors=self.adaptive_weights.row(regime),
            risk_multiplier=float(risk_multiplier),
            expected_duration_minutes=state.duration.mean * self.config.candle_minutes,
            transition_probabilities=state.transition_probabilities,
            detected_at=when,
        )

    @staticmethod
    def _regime_strength(regime: RegimeType, o: MarketObservation) -> float:
        if regime == RegimeType.TRENDING_BULLISH:
            value = (o.momentum + 1) / 2 + o.trend + o.volume_ratio / 3
        elif regime == RegimeType.TRENDING_BEARISH:
            value = (1 - o.momentum) / 2 - o.trend + o.volume_ratio / 3
        elif regime == RegimeType.RANGING_TIGHT:
            value = 1 - abs(o.momentum) - abs(o.trend) - o.volatility / 2
        elif regime in (RegimeType.SHOCK_UP, RegimeType.SHOCK_DOWN):
            value = o.volatility + o.volume_ratio / 2 + abs(o.price_move) * 10
        elif regime == RegimeType.BREAKOUT:
            value = o.breakout
        else:
            return 0.5
        return float(np.clip(value, 0.0, 1.0))

    def _default_regime(self, when: Optional[datetime] = None) -> MarketRegime:
        state = self._states_by_regime[DEFAULT_REGIME]
        return MarketRegime(
            regime_type=DEFAULT_REGIME,
            strength=0.5,
            confidence=0.5,
            duration=float(state.duration.mean),
            volatility=0.5,
            momentum=0.0,
            volume_ratio=1.0,
            microstructure=Microstructure(),
            adjustment_factors=self.adaptive_weights.row(DEFAULT_REGIME),
            risk_multiplier=self.config.risk_multipliers.get(DEFAULT_REGIME.value, 0.8),
            expected_duration_minutes=state.duration.mean * self.config.candle_minutes,
            transition_probabilities=state.transition_probabilities,
            detected_at=ensure_utc(when),
        )

    # ==================== TRANSITIONS & ADAPTIVE WEIGHTS ====================

    def _record_transition(
        self,
        previous: MarketRegime,
        new_regime: RegimeType,
        obs: MarketObservation,
        confidence: float,
        when: datetime,
    ):
        transition = RegimeTransition(
            from_regime=previous.regime_type,
            to_regime=new_regime,
            timestamp=when,
            trigger_factors=self.identify_transition_triggers(obs),
            confidence=float(confidence),
            price_change=obs.price_move,
            volume_change=obs.volume_ratio - 1,
            volatility_change=obs.volatility - 0.5,
            news_impact=obs.news,
        )
        self.regime_history.append(transition)

        LOG.info(
            f"Regime transition: {previous.regime_type.value} -> {new_regime.value} "
            f"(confidence {confidence:.1%}, triggers: {transition.trigger_factors or 'none'})"
        )

        if self.telemetry:
            self.telemetry.emit(
                TelemetryEventType.REGIME_TRANSITION,
                source='regime_engine',
                message=f"{previous.regime_type.value} -> {new_regime.value}",
                symbol=self.symbol,
                payload=transition.to_dict(),
                timestamp=when,
            )

    def identify_transition_triggers(self, obs: MarketObservation) -> List[str]:
        """Names of the observation features that crossed their trigger level"""
        t = self.config.triggers
        triggers = []
        if abs(obs.price_move) > t.large_price_move:
            triggers.append('large_price_move')
        if obs.volatility > t.volatility_spike:
            triggers.append('volatility_spike')
        if obs.volume_ratio > t.volume_surge:
            triggers.append('volume_surge')
        if abs(obs.momentum) > t.momentum_shift:
            triggers.append('momentum_shift')
        if abs(obs.news) > t.news_event:
            triggers.append('news_event')
        if obs.breakout > t.breakout:
            triggers.append('breakout')
        if obs.reversal > t.reversal_signal:
            triggers.append('reversal_signal')
        return triggers

    def _adapt_weights_on_transition(self, regime: RegimeType):
        """
        Exponential multiplicative update of the new regime's weight row.

        w <- clip(w * exp(lr * score), min, max) with
        score = (win_rate - 0.5) * avg_return, then the row is rescaled to
        the target mean.
        """
        cfg = self.config.adaptation
        row = self.adaptive_weights.row_array(regime)
        updated = False

        for factor_type in FactorType:
            perf = self.regime_performance.get((regime, factor_type))
            if perf is None or perf.trades < cfg.min_samples:
                continue
            score = (perf.win_rate - 0.5) * perf.avg_return
            row[factor_type.ordinal] = np.clip(
                row[factor_type.ordinal] * np.exp(cfg.learning_rate * score),
                cfg.min_weight, cfg.max_weight,
            )
            updated = True

        self.adaptive_weights.set_row(regime, row)
        self.adaptive_weights.normalize_row(regime, cfg.target_mean)

        if updated:
            LOG.info(f"Adapted factor weights for {regime.value}")

    def update_factor_performance(
        self,
        factor_type: Union[FactorType, str],
        regime: Union[RegimeType, str],
        was_win: bool,
        return_amount: float,
    ):
        """Accumulate a realized result for one (regime, factor type) cell"""
        key = (RegimeType.parse(regime), FactorType.parse(factor_type))
        perf = self.regime_performance.setdefault(key, RegimeFactorPerformance())
        perf.trades += 1
        if was_win:
            perf.wins += 1
        perf.total_return += float(return_amount)

    # ==================== PUBLIC INTERFACE ====================

    def get_current_regime(self) -> MarketRegime:
        return self._current_regime

    def get_adaptive_weights(self, regime: Union[RegimeType, str]) -> Dict[FactorType, float]:
        return self.adaptive_weights.row(RegimeType.parse(regime))

    def get_average_regime_durations(self) -> Dict[RegimeType, float]:
        """Mean minutes spent in each regime, measured between consecutive transitions"""
        totals: Dict[RegimeType, List[float]] = {}
        history = list(self.regime_history)
        for current, following in zip(history, history[1:]):
            minutes = (following.timestamp - current.timestamp).total_seconds() / 60.0
            totals.setdefault(current.to_regime, []).append(minutes)
        return {regime: float(np.mean(values)) for regime, values in totals.items()}

    def get_regime_statistics(self) -> RegimeStatistics:
        limit = self.config.stats_history_limit
        history = list(self.regime_history)[-limit:]
        performance = {
            f"{regime.value}_{factor.value}": perf.to_dict()
            for (regime, factor), perf in self.regime_performance.items()
        }
        return RegimeStatistics(
            current_regime=self._current_regime,
            regime_history=history,
            average_regime_duration=self.get_average_regime_durations(),
            transition_matrix=self.transition_matrix.copy(),
            regime_performance=performance,
            adaptive_weights=self.adaptive_weights.to_dict(),
        )

    def force_regime_change(self, regime: Union[RegimeType, str]) -> MarketRegime:
        """Set the current regime directly. Intended for testing and operator overrides."""
        regime = RegimeType.parse(regime)
        obs = self.observation_window[-1] if self.observation_window else MarketObservation()
        self._current_regime = self._create_regime(
            regime, obs, 0.5, self._current_regime.confidence, ensure_utc()
        )
        LOG.info(f"Forced regime change to: {regime.value}")
        return self._current_regime

    def reset(self):
        """Clear observations, history and learned weights"""
        self.observation_window.clear()
        self.regime_history.clear()
        self.regime_performance.clear()
        self.adaptive_weights = RegimeWeightTable.from_mapping(self.config.regime_weights)
        self._current_regime = self._default_regime()
