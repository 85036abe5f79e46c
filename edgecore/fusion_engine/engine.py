"""
Probabilistic Signal Fusion Engine

Converts heterogeneous factor signals into one calibrated decision:
1. Strength/confidence → base probability
2. Bayesian update against the factor-type prior
3. Regime multiplier in log-odds space
4. Causal-uplift filtering and within-type decorrelation
5. Weighted log-odds pooling → probability and entropy
6. Net edge, Kelly sizing and risk levels
"""

import logging
import uuid
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from edgecore.fusion_engine.config import FusionEngineConfig
from edgecore.fusion_engine.probability import (
    apply_regime_adjustment,
    bayesian_update,
    binary_entropy,
    calculate_calibration_score,
    calculate_kelly_fraction,
    calculate_net_edge,
    causal_uplift,
    decorrelate_log_odds,
    error_variance,
    logistic,
    logit,
    pool_log_odds,
    strength_to_probability,
)
from edgecore.fusion_engine.schemas import (
    CalibrationRecord,
    FactorPerformance,
    FactorSignal,
    FusionRejection,
    FusionRejectionReason,
    FusionResult,
    ProbabilisticFactor,
    ProbabilisticSignal,
    SignalDirection,
)
from edgecore.observability import TelemetryEventType, TelemetrySink
from edgecore.regime_engine.schemas import FactorType, MarketRegime
from edgecore.timeutils import ensure_utc

LOG = logging.getLogger(__name__)

NEUTRAL_FUSION = FusionResult(0.5, 0.0, 1.0)

FactorInput = Union[FactorSignal, Mapping[str, Any]]


class ProbabilisticFusionEngine:
    """
    Bayesian factor fusion.

    Owns factor performance and calibration history; reads regime weights
    only through the MarketRegime snapshot passed in per call.
    """

    def __init__(
        self,
        config: Optional[FusionEngineConfig] = None,
        telemetry: Optional[TelemetrySink] = None,
        symbol: Optional[str] = None,
    ):
        self.config = config or FusionEngineConfig()
        self.telemetry = telemetry
        self.symbol = symbol

        self.factor_performance: Dict[Tuple[FactorType, str], FactorPerformance] = {}
        self.calibration_history: deque = deque(maxlen=self.config.learning.calibration_history)
        self.last_rejection: Optional[FusionRejection] = None
        self.min_signal_strength = self.config.decision.min_signal_strength

        # Health counters
        self.total_evaluations = 0
        self.signals_generated = 0
        self.rejection_counts: Dict[str, int] = {r.value: 0 for r in FusionRejectionReason}

        LOG.info(f"Fusion engine initialized (config hash: {self.config.get_config_hash()})")

    # ==================== CORE PROBABILISTIC CONVERSION ====================

    def convert_factor_to_probabilistic(self, factor: FactorInput, regime: MarketRegime) -> ProbabilisticFactor:
        """Map one factor signal to a posterior probability under the given regime"""
        factor = self._coerce_factor(factor)
        bayes = self.config.bayesian

        base_probability = strength_to_probability(
            factor.strength,
            factor.confidence,
            factor.signal,
            offset=bayes.base_probability_offset,
            per_strength=bayes.probability_per_strength,
            floor=bayes.probability_floor,
            ceiling=bayes.probability_ceiling,
        )

        prior = bayes.prior_for(factor.factor_type)
        posterior = bayesian_update(base_probability, prior)

        regime_adjustment = regime.adjustment_for(factor.factor_type)
        posterior = apply_regime_adjustment(
            posterior, regime_adjustment, bayes.probability_floor, bayes.probability_ceiling
        )

        return ProbabilisticFactor(
            factor_id=f"factor_{uuid.uuid4().hex[:12]}",
            name=factor.name,
            factor_type=factor.factor_type,
            signal=factor.signal,
            probability=posterior,
            log_odds=logit(posterior),
            weight=factor.weight,
            confidence=factor.confidence,
            error_variance=self._error_variance(factor, posterior),
            causal_uplift=self.get_causal_uplift(factor.name, factor.factor_type),
            regime_adjustment=regime_adjustment,
            description=factor.description or f"{factor.name} signal",
        )

    @staticmethod
    def _error_variance(factor: FactorSignal, probability: float) -> float:
        return error_variance(factor.confidence, probability, factor.weight)

    @staticmethod
    def _coerce_factor(factor: FactorInput) -> FactorSignal:
        if isinstance(factor, FactorSignal):
            return factor
        if isinstance(factor, Mapping):
            return FactorSignal.from_dict(factor)
        raise ValueError(f"Unsupported factor input: {type(factor).__name__}")

    def get_causal_uplift(self, name: str, factor_type: Union[FactorType, str]) -> float:
        perf = self.factor_performance.get((FactorType.parse(factor_type), name))
        if perf is None:
            return 0.0
        learning = self.config.learning
        return causal_uplift(
            perf.win_rate, perf.avg_return, perf.total_trades,
            learning.min_uplift_trades, learning.uplift_clamp,
        )

    # ==================== BAYESIAN FUSION ====================

    def fuse_probabilities(self, factors: Sequence[ProbabilisticFactor]) -> FusionResult:
        """
        Fuse factor log-odds into one probability.

        Factors with negative causal uplift are discarded. With nothing left
        the neutral result (0.5, 0.0, 1.0) is returned.
        """
        valid = [f for f in factors if f.causal_uplift >= 0]
        if not valid:
            return NEUTRAL_FUSION

        decorrelated = decorrelate_log_odds(
            [f.log_odds for f in valid],
            [f.factor_type for f in valid],
        )
        weights = [f.weight * (1 + f.causal_uplift) * f.regime_adjustment for f in valid]

        combined_log_odds = pool_log_odds(decorrelated, weights, self.config.decision.max_log_odds)
        probability = logistic(combined_log_odds)
        return FusionResult(probability, combined_log_odds, binary_entropy(probability))

    # ==================== EDGE & SIZING ====================

    def calculate_net_edge(self, probability: float, expected_return: float,
                           expected_loss: float, trading_costs: float) -> float:
        return calculate_net_edge(probability, expected_return, expected_loss, trading_costs)

    def calculate_kelly_fraction(self, probability: float, expected_return: float,
                                 expected_loss: float) -> float:
        return calculate_kelly_fraction(
            probability, expected_return, expected_loss, self.config.decision.kelly_cap
        )

    # ==================== SIGNAL GENERATION ====================

    def evaluate(
        self,
        factors: Sequence[FactorInput],
        regime: MarketRegime,
        current_price: float,
        symbol: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Tuple[Optional[ProbabilisticSignal], FusionResult, List[ProbabilisticFactor]]:
        """
        Full fusion pass returning the signal (or None), the fusion result and
        the converted factors, so callers can gate or diagnose without
        recomputing.
        """
        self.total_evaluations += 1
        self.last_rejection = None
        decision = self.config.decision

        probabilistic = [self.convert_factor_to_probabilistic(f, regime) for f in factors]
        fusion = self.fuse_probabilities(probabilistic)
        p = fusion.probability

        if fusion.entropy > decision.max_entropy:
            self._reject(FusionRejectionReason.HIGH_ENTROPY, fusion.entropy, decision.max_entropy,
                         f"entropy {fusion.entropy:.3f} > {decision.max_entropy:.3f}", symbol)
            return None, fusion, probabilistic

        if p > decision.buy_probability:
            signal_type = SignalDirection.BUY
        elif p < decision.sell_probability:
            signal_type = SignalDirection.SELL
        else:
            self._reject(FusionRejectionReason.NEUTRAL_DIRECTION, p, decision.buy_probability,
                         f"neutral probability {p:.3f}", symbol)
            return None, fusion, probabilistic

        price = float(current_price)
        expected_return = price * decision.expected_return_pct
        expected_loss = price * decision.expected_loss_pct
        trading_costs = price * decision.trading_cost_pct

        # Edge is computed for the chosen side: a sell wins with probability 1 - p
        win_probability = p if signal_type == SignalDirection.BUY else 1 - p
        net_edge = self.calculate_net_edge(win_probability, expected_return, expected_loss, trading_costs)
        if not net_edge > 0:
            self._reject(FusionRejectionReason.NON_POSITIVE_EDGE, net_edge, 0.0,
                         f"net edge {net_edge:.6f} <= 0", symbol)
            return None, fusion, probabilistic

        strength = int(round(abs(p - 0.5) * 20))
        if strength < self.min_signal_strength:
            self._reject(FusionRejectionReason.WEAK_SIGNAL, strength, self.min_signal_strength,
                         f"strength {strength} < {self.min_signal_strength}", symbol)
            return None, fusion, probabilistic

        kelly = self.calculate_kelly_fraction(win_probability, expected_return, expected_loss)

        if signal_type == SignalDirection.BUY:
            stop_loss = price * (1 - decision.expected_loss_pct)
            take_profit = price * (1 + decision.expected_return_pct)
        else:
            stop_loss = price * (1 + decision.expected_loss_pct)
            take_profit = price * (1 - decision.expected_return_pct)

        risk = abs(price - stop_loss)
        risk_reward = abs(take_profit - price) / risk if risk > 0 else 0.0

        signal = ProbabilisticSignal(
            signal_id=f"prob_signal_{uuid.uuid4().hex[:16]}",
            timestamp=ensure_utc(timestamp),
            symbol=symbol or self.symbol,
            combined_probability=p,
            combined_log_odds=fusion.log_odds,
            entropy=fusion.entropy,
            net_edge=net_edge,
            signal_type=signal_type,
            confidence=float(np.clip(1 - fusion.entropy, 0.0, 1.0)),
            strength=strength,
            factors=tuple(probabilistic),
            expected_return=expected_return,
            expected_loss=expected_loss,
            trading_costs=trading_costs,
            entry_price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            risk_reward_ratio=risk_reward,
            kelly_fraction=kelly,
            optimal_position_size=kelly * decision.kelly_scale * regime.risk_multiplier,
            cvar_constraint=decision.cvar_limit,
            regime_context=regime.regime_type,
            calibration_score=self.calculate_calibration_score(),
        )
        self.signals_generated += 1

        LOG.debug(
            f"Signal {signal.signal_type.value} p={p:.3f} H={fusion.entropy:.3f} "
            f"edge={net_edge:.6f} kelly={kelly:.3f}"
        )
        return signal, fusion, probabilistic

    def generate_probabilistic_signal(
        self,
        factors: Sequence[FactorInput],
        regime: MarketRegime,
        current_price: float,
        symbol: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[ProbabilisticSignal]:
        """Fused signal, or None when entropy, direction, edge or strength rejects it"""
        signal, _, _ = self.evaluate(factors, regime, current_price, symbol, timestamp)
        return signal

    def _reject(self, reason: FusionRejectionReason, value: float, threshold: float,
                message: str, symbol: Optional[str]):
        self.last_rejection = FusionRejection(reason, float(value), float(threshold), message)
        self.rejection_counts[reason.value] += 1
        LOG.info(f"Signal rejected at fusion: {message}")

        if self.telemetry:
            self.telemetry.emit(
                TelemetryEventType.SIGNAL_REJECTED,
                source='fusion_engine',
                message=message,
                symbol=symbol or self.symbol,
                payload=self.last_rejection.to_dict(),
            )

    # ==================== LEARNING HOOKS ====================

    def update_factor_performance(self, name: str, factor_type: Union[FactorType, str],
                                  was_win: bool, return_amount: float):
        """Accumulate a realized result for one named factor"""
        key = (FactorType.parse(factor_type), name)
        perf = self.factor_performance.setdefault(key, FactorPerformance())
        perf.total_trades += 1
        if was_win:
            perf.wins += 1
        perf.total_return += float(return_amount)

    def update_calibration(self, predicted_probability: float, actual_outcome: Union[bool, float],
                           timestamp: Optional[datetime] = None):
        """Record a predicted probability against its realized outcome"""
        predicted = float(np.clip(predicted_probability, 0.0, 1.0))
        actual = 1.0 if float(actual_outcome) > 0.5 else 0.0
        self.calibration_history.append(
            CalibrationRecord(predicted, actual, ensure_utc(timestamp))
        )

    def calculate_calibration_score(self) -> float:
        learning = self.config.learning
        if len(self.calibration_history) < learning.calibration_min_records:
            return 0.5
        recent = list(self.calibration_history)[-learning.calibration_window:]
        return calculate_calibration_score(
            [r.predicted for r in recent],
            [r.actual for r in recent],
            learning.calibration_bucket_width,
            learning.calibration_bucket_min,
        )

    def set_min_signal_strength(self, strength: float):
        """Apply a learned minimum signal strength (0-10 scale)"""
        value = int(round(float(np.clip(strength, 0, 10))))
        LOG.info(f"Minimum signal strength: {self.min_signal_strength} -> {value}")
        self.min_signal_strength = value

    def get_system_stats(self) -> dict:
        return {
            'total_evaluations': self.total_evaluations,
            'signals_generated': self.signals_generated,
            'rejection_counts': dict(self.rejection_counts),
            'factor_performance': {
                f"{factor_type.value}_{name}": perf.to_dict()
                for (factor_type, name), perf in self.factor_performance.items()
            },
            'calibration_records': len(self.calibration_history),
            'calibration_score': self.calculate_calibration_score(),
            'min_signal_strength': self.min_signal_strength,
            'config_hash': self.config.get_config_hash(),
        }
