"""
Performance Metrics

Vectorized return statistics shared by the learning engine and its
optimizers. All functions accept any sequence of returns and degrade to
zeros on empty input.
"""

from typing import Sequence

import numpy as np

from edgecore.learning_engine.schemas import LearningMetrics


def profit_factor(returns: Sequence[float]) -> float:
    """Gross profit / gross loss. inf with wins and no losses, 0 with neither."""
    r = np.asarray(returns, dtype=float)
    wins = r[r > 0]
    losses = r[r <= 0]
    if len(losses) == 0:
        return float('inf') if len(wins) > 0 else 0.0
    gross_loss = abs(losses.sum())
    return float(wins.sum() / gross_loss) if gross_loss > 0 else 0.0


def max_drawdown(returns: Sequence[float]) -> float:
    """Largest drop of cumulative return from its running peak (peak starts at 0)"""
    r = np.asarray(returns, dtype=float)
    if len(r) == 0:
        return 0.0
    cumulative = np.cumsum(r)
    peaks = np.maximum.accumulate(np.maximum(cumulative, 0.0))
    return float(np.max(peaks - cumulative))


def performance_score(returns: Sequence[float]) -> float:
    """
    Composite score used to rank optimizer candidates:
    avg_return·0.4 + win_rate·0.3 + min(profit_factor/2, 0.5)·0.3
    """
    r = np.asarray(returns, dtype=float)
    if len(r) == 0:
        return 0.0
    win_rate = float(np.mean(r > 0))
    pf = profit_factor(r)
    return float(r.mean() * 0.4 + win_rate * 0.3 + min(pf / 2, 0.5) * 0.3)


def degradation_score(metrics: LearningMetrics) -> float:
    """Blend of accuracy, Sharpe and win rate tracked for degradation"""
    return (
        metrics.signal_accuracy / 100 * 0.4
        + max(0.0, metrics.sharpe_ratio) * 0.3
        + metrics.win_rate / 100 * 0.3
    )


def compute_learning_metrics(returns: Sequence[float], correct_direction: Sequence[bool]) -> LearningMetrics:
    r = np.asarray(returns, dtype=float)
    if len(r) == 0:
        return LearningMetrics()

    wins = r[r > 0]
    losses = r[r <= 0]
    avg = float(r.mean())
    std = float(r.std())  # population

    return LearningMetrics(
        signal_accuracy=float(np.mean(np.asarray(correct_direction, dtype=bool))) * 100,
        average_return=avg,
        sharpe_ratio=avg / std if std > 1e-12 else 0.0,
        max_drawdown=max_drawdown(r) * 100,
        win_rate=len(wins) / len(r) * 100,
        average_win=float(wins.mean()) if len(wins) else 0.0,
        average_loss=float(abs(losses.mean())) if len(losses) else 0.0,
        profit_factor=profit_factor(r),
    )
