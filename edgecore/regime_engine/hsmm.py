"""
Hidden Semi-Markov State Bank

One hidden state per RegimeType. Each state carries an emission likelihood
(a product of Gaussian terms over observation features), fixed transition
probabilities and a dwell-time distribution in bars.

Decoding is a simplified single-step Viterbi: every state is scored by the
joint emission likelihood of the last few observations, the incumbent gets
a persistence bias, and the argmax wins. Transition and duration terms are
reported but not used in decoding; this approximates full forward-backward
HSMM inference.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats
from scipy.special import logsumexp

from edgecore.regime_engine.schemas import (
    DurationDistribution,
    MarketObservation,
    RegimeType,
)

# Floor keeps log-likelihoods finite when a Gaussian term underflows
EMISSION_FLOOR = 1e-300


def gaussian(x: float, mean: float, std: float) -> float:
    return float(stats.norm.pdf(x, loc=mean, scale=std))


@dataclass(frozen=True)
class HiddenState:
    """One regime state of the HSMM"""
    regime: RegimeType
    emission: Callable[[MarketObservation], float]
    transition_probabilities: Dict[RegimeType, float]
    duration: DurationDistribution

    def emission_probability(self, obs: MarketObservation) -> float:
        value = self.emission(obs)
        if not np.isfinite(value) or value < 0:
            return 0.0
        return value


# ==================== EMISSION FUNCTIONS ====================

def _trending_bullish(o: MarketObservation) -> float:
    return (gaussian(o.price_move, 0.002, 0.001)
            * gaussian(o.momentum, 0.7, 0.2)
            * gaussian(o.trend, 0.8, 0.15)
            * (1 + o.volume_ratio * 0.3))


def _trending_bearish(o: MarketObservation) -> float:
    return (gaussian(o.price_move, -0.002, 0.001)
            * gaussian(o.momentum, -0.7, 0.2)
            * gaussian(o.trend, -0.8, 0.15)
            * (1 + o.volume_ratio * 0.3))


def _ranging_tight(o: MarketObservation) -> float:
    return (gaussian(o.price_move, 0.0, 0.0005)
            * gaussian(o.volatility, 0.2, 0.15)
            * gaussian(o.momentum, 0.0, 0.2)
            * (1 - abs(o.trend) * 0.5))


def _ranging_volatile(o: MarketObservation) -> float:
    return (gaussian(o.volatility, 0.8, 0.2)
            * gaussian(o.momentum, 0.0, 0.4)
            * (1 - abs(o.trend) * 0.3)
            * max(0.1, 1 - abs(o.price_move) * 500))


def _shock_up(o: MarketObservation) -> float:
    if o.price_move <= 0.005:
        return 0.0
    return (gaussian(o.volatility, 1.0, 0.3)
            * (1 + o.volume_ratio * 0.5)
            * (1 + max(0.0, o.news) * 0.4))


def _shock_down(o: MarketObservation) -> float:
    if o.price_move >= -0.005:
        return 0.0
    return (gaussian(o.volatility, 1.0, 0.3)
            * (1 + o.volume_ratio * 0.5)
            * (1 + max(0.0, -o.news) * 0.4))


def _liquidity_crisis(o: MarketObservation) -> float:
    # High volatility on thin volume with erratic momentum
    return (gaussian(o.volatility, 1.2, 0.4)
            * max(0.1, 1 - o.volume_ratio)
            * (1 + abs(o.news) * 0.6)
            * np.exp(-2 * abs(o.momentum)))


def _news_driven(o: MarketObservation) -> float:
    return (max(0.1, abs(o.news))
            * gaussian(o.volatility, 0.9, 0.3)
            * (1 + o.volume_ratio * 0.4)
            * (1 + abs(o.price_move) * 200))


def _breakout(o: MarketObservation) -> float:
    return (max(0.0, o.breakout)
            * gaussian(o.volume_ratio, 1.2, 0.3)
            * (1 + abs(o.momentum) * 0.5)
            * np.exp(-2 * o.reversal))


def _consolidation(o: MarketObservation) -> float:
    return (gaussian(o.volatility, 0.45, 0.15)
            * gaussian(o.momentum, 0.0, 0.25)
            * gaussian(o.price_move, 0.0, 0.001)
            * np.exp(-3 * o.breakout))


def build_default_states() -> List[HiddenState]:
    """The fixed bank of ten regime states"""
    R = RegimeType
    return [
        HiddenState(R.TRENDING_BULLISH, _trending_bullish,
                    {R.TRENDING_BULLISH: 0.7, R.RANGING_TIGHT: 0.15, R.SHOCK_DOWN: 0.05,
                     R.CONSOLIDATION: 0.1},
                    DurationDistribution(45, 20, 10, 200)),
        HiddenState(R.TRENDING_BEARISH, _trending_bearish,
                    {R.TRENDING_BEARISH: 0.7, R.RANGING_TIGHT: 0.15, R.SHOCK_UP: 0.05,
                     R.CONSOLIDATION: 0.1},
                    DurationDistribution(40, 18, 8, 180)),
        HiddenState(R.RANGING_TIGHT, _ranging_tight,
                    {R.RANGING_TIGHT: 0.6, R.TRENDING_BULLISH: 0.15, R.TRENDING_BEARISH: 0.15,
                     R.BREAKOUT: 0.1},
                    DurationDistribution(80, 40, 20, 300)),
        HiddenState(R.RANGING_VOLATILE, _ranging_volatile,
                    {R.RANGING_VOLATILE: 0.5, R.SHOCK_UP: 0.2, R.SHOCK_DOWN: 0.2,
                     R.LIQUIDITY_CRISIS: 0.1},
                    DurationDistribution(30, 15, 5, 100)),
        HiddenState(R.SHOCK_UP, _shock_up,
                    {R.TRENDING_BULLISH: 0.4, R.RANGING_VOLATILE: 0.3, R.CONSOLIDATION: 0.2,
                     R.SHOCK_UP: 0.1},
                    DurationDistribution(8, 5, 2, 25)),
        HiddenState(R.SHOCK_DOWN, _shock_down,
                    {R.TRENDING_BEARISH: 0.3, R.RANGING_VOLATILE: 0.4, R.LIQUIDITY_CRISIS: 0.2,
                     R.SHOCK_DOWN: 0.1},
                    DurationDistribution(6, 4, 2, 20)),
        HiddenState(R.LIQUIDITY_CRISIS, _liquidity_crisis,
                    {R.RANGING_VOLATILE: 0.5, R.SHOCK_DOWN: 0.3, R.CONSOLIDATION: 0.15,
                     R.LIQUIDITY_CRISIS: 0.05},
                    DurationDistribution(15, 8, 3, 60)),
        HiddenState(R.NEWS_DRIVEN, _news_driven,
                    {R.SHOCK_UP: 0.25, R.SHOCK_DOWN: 0.25, R.TRENDING_BULLISH: 0.2,
                     R.TRENDING_BEARISH: 0.2, R.RANGING_VOLATILE: 0.1},
                    DurationDistribution(12, 6, 2, 45)),
        HiddenState(R.BREAKOUT, _breakout,
                    {R.TRENDING_BULLISH: 0.4, R.TRENDING_BEARISH: 0.4, R.RANGING_TIGHT: 0.15,
                     R.BREAKOUT: 0.05},
                    DurationDistribution(10, 5, 2, 30)),
        HiddenState(R.CONSOLIDATION, _consolidation,
                    {R.RANGING_TIGHT: 0.4, R.BREAKOUT: 0.25, R.TRENDING_BULLISH: 0.15,
                     R.TRENDING_BEARISH: 0.15, R.CONSOLIDATION: 0.05},
                    DurationDistribution(60, 30, 15, 200)),
    ]


def build_transition_matrix(states: Sequence[HiddenState], default_probability: float = 0.01) -> np.ndarray:
    """Dense matrix in RegimeType order; unspecified transitions get default_probability"""
    regimes = list(RegimeType)
    by_regime = {s.regime: s for s in states}
    matrix = np.full((len(regimes), len(regimes)), default_probability, dtype=float)
    for i, from_regime in enumerate(regimes):
        state = by_regime.get(from_regime)
        if state is None:
            continue
        for j, to_regime in enumerate(regimes):
            if to_regime in state.transition_probabilities:
                matrix[i, j] = state.transition_probabilities[to_regime]
    return matrix


def emission_log_likelihoods(
    states: Sequence[HiddenState],
    observations: Sequence[MarketObservation],
) -> np.ndarray:
    """Joint log emission likelihood of the observations under each state"""
    emissions = np.array(
        [[state.emission_probability(obs) for obs in observations] for state in states],
        dtype=float,
    )
    return np.log(np.maximum(emissions, EMISSION_FLOOR)).sum(axis=1)


def decode_regime(
    states: Sequence[HiddenState],
    observations: Sequence[MarketObservation],
    incumbent: Optional[RegimeType],
    persistence_bias: float = 2.0,
) -> Tuple[RegimeType, float, np.ndarray]:
    """
    Simplified Viterbi step.

    Returns the selected regime, its posterior share among all states and
    the biased log scores. Ties resolve to the incumbent.
    """
    log_scores = emission_log_likelihoods(states, observations)
    incumbent_idx = None
    for i, state in enumerate(states):
        if state.regime == incumbent:
            incumbent_idx = i
            log_scores[i] += np.log(persistence_bias)

    best_idx = int(np.argmax(log_scores))
    if incumbent_idx is not None and log_scores[incumbent_idx] >= log_scores[best_idx]:
        best_idx = incumbent_idx

    posterior = float(np.exp(log_scores[best_idx] - logsumexp(log_scores)))
    return states[best_idx].regime, posterior, log_scores
