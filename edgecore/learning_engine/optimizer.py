"""
Parameter Optimizers

Grid searches over historical outcomes for the confluence threshold, the
signal strength threshold and the per-regime confluence weights.

Every candidate must lie within the maximum drift of the current value
and be backed by a minimum sub-sample. Optimizers only propose; the
learning engine decides what to apply.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from edgecore.learning_engine.config import LearningEngineConfig
from edgecore.learning_engine.metrics import performance_score
from edgecore.learning_engine.schemas import BacktestResult, OutcomeData, ParameterOptimization

LOG = logging.getLogger(__name__)

# Tolerance for candidates that sit exactly on the drift boundary
_DRIFT_EPS = 1e-9


def outcomes_to_frame(outcomes: Sequence[OutcomeData]) -> pd.DataFrame:
    """Columns used by the optimizers, one row per outcome"""
    return pd.DataFrame(
        {
            'actual_return': [o.actual_return for o in outcomes],
            'confluence_score': [o.confluence_score for o in outcomes],
            'signal_strength': [o.signal_strength for o in outcomes],
            'regime': [o.regime.value for o in outcomes],
        },
        columns=['actual_return', 'confluence_score', 'signal_strength', 'regime'],
    )


def drift_candidates(grid: Sequence[float], current: float, max_drift: float) -> List[float]:
    """
    Grid values within max_drift of current, plus the drift boundary points.
    The current value is always first so ties keep it.
    """
    bounded = [current * (1 - max_drift), current * (1 + max_drift)]
    candidates = [float(current)]
    for value in sorted(set(float(v) for v in list(grid) + bounded)):
        if value == current:
            continue
        if abs(value - current) / abs(current) <= max_drift + _DRIFT_EPS:
            candidates.append(value)
    return candidates


def _score_threshold(frame: pd.DataFrame, column: str, threshold: float) -> Tuple[float, int]:
    subset = frame.loc[frame[column] >= threshold, 'actual_return']
    return performance_score(subset.to_numpy()), len(subset)


def optimize_threshold(
    frame: pd.DataFrame,
    column: str,
    parameter: str,
    grid: Sequence[float],
    current: float,
    config: LearningEngineConfig,
    confidence_samples: int,
) -> Optional[ParameterOptimization]:
    """
    Best minimum value of `column` over the drift-bounded grid.

    Returns None when the current value is already the best candidate or
    no other candidate has enough samples.
    """
    opt = config.optimizer
    best_value, best_score, best_count = None, -np.inf, 0

    for candidate in drift_candidates(grid, current, config.max_parameter_drift):
        score, count = _score_threshold(frame, column, candidate)
        if count < opt.min_subsample:
            continue
        if score > best_score:
            best_value, best_score, best_count = candidate, score, count

    if best_value is None or best_value == current:
        return None

    current_score, _ = _score_threshold(frame, column, current)
    improvement = (best_score - current_score) / max(current_score, 0.001)
    LOG.debug(f"{parameter}: best {best_value} ({best_score:.4f}) vs current {current} ({current_score:.4f})")

    return ParameterOptimization(
        parameter=parameter,
        current_value=float(current),
        suggested_value=float(best_value),
        confidence=min(1.0, len(frame) / confidence_samples),
        expected_improvement=float(improvement),
        backtest=BacktestResult(
            current_performance=float(current_score),
            optimized_performance=float(best_score),
            sample_size=best_count,
        ),
    )


def optimize_regime_weights(
    frame: pd.DataFrame,
    current_weights: Dict[str, float],
    config: LearningEngineConfig,
) -> List[ParameterOptimization]:
    """
    Scale each regime's confluence weight by its realized avg_return·win_rate.
    Only regimes with enough samples and a significant change are proposed.
    """
    opt = config.optimizer
    optimizations = []
    if frame.empty:
        return optimizations

    grouped = frame.groupby('regime')['actual_return'].agg(
        count='count',
        avg_return='mean',
        win_rate=lambda r: float((r > 0).mean()),
    )

    for regime, row in grouped.iterrows():
        if row['count'] < opt.min_regime_samples:
            continue
        score = row['avg_return'] * row['win_rate']
        base = current_weights.get(regime, 1.0)

        suggested = float(np.clip(base * (1 + score * 2), opt.regime_weight_min, opt.regime_weight_max))
        drift = config.max_parameter_drift
        suggested = float(np.clip(suggested, base * (1 - drift), base * (1 + drift)))

        if abs(suggested - base) / base <= opt.regime_significance:
            continue

        optimizations.append(ParameterOptimization(
            parameter=f"regime_weight_{regime}",
            current_value=float(base),
            suggested_value=suggested,
            confidence=min(1.0, row['count'] / opt.regime_confidence_samples),
            expected_improvement=abs(score) * 0.1,
            backtest=BacktestResult(
                current_performance=float(score),
                optimized_performance=float(score * 1.1),
                sample_size=int(row['count']),
            ),
        ))

    return optimizations


def identify_parameter_optimizations(
    outcomes: Sequence[OutcomeData],
    parameters: Dict[str, float],
    config: LearningEngineConfig,
) -> List[ParameterOptimization]:
    """Run all optimizers; empty below the minimum sample size"""
    if len(outcomes) < config.min_sample_size:
        return []

    frame = outcomes_to_frame(outcomes)
    opt = config.optimizer
    optimizations = []

    confluence = optimize_threshold(
        frame, 'confluence_score', 'confluence_threshold', opt.confluence_grid,
        parameters['confluence_threshold'], config, opt.confluence_confidence_samples,
    )
    if confluence:
        optimizations.append(confluence)

    strength = optimize_threshold(
        frame, 'signal_strength', 'strength_threshold', opt.strength_grid,
        parameters['strength_threshold'], config, opt.strength_confidence_samples,
    )
    if strength:
        optimizations.append(strength)

    regime_weights = {
        name[len('regime_weight_'):]: value
        for name, value in parameters.items() if name.startswith('regime_weight_')
    }
    optimizations.extend(optimize_regime_weights(frame, regime_weights, config))
    return optimizations
