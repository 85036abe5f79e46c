"""
Probability Math

Pure functions behind factor conversion and fusion: log-odds transforms,
binary entropy, Bayesian updating, evidence pooling, net edge and Kelly
sizing. All functions accept degenerate inputs and return bounded values.
"""

from collections import defaultdict
from typing import Dict, Hashable, List, Sequence

import numpy as np
from scipy.special import expit

from edgecore.fusion_engine.schemas import SignalDirection


def clip_probability(p: float, floor: float = 0.01, ceiling: float = 0.99) -> float:
    return float(np.clip(p, floor, ceiling))


def logit(p: float, eps: float = 1e-12) -> float:
    """log(p / (1 - p)) with p clipped away from 0 and 1"""
    p = float(np.clip(p, eps, 1 - eps))
    return float(np.log(p / (1 - p)))


def logistic(z: float) -> float:
    return float(expit(z))


def binary_entropy(p: float) -> float:
    """
    H(p) = -p log2 p - (1-p) log2 (1-p), in bits.

    1.0 at p = 0.5, 0.0 at p in {0, 1}. Symmetric in p and 1 - p.
    """
    if not np.isfinite(p) or p <= 0.0 or p >= 1.0:
        return 0.0
    h = -p * np.log2(p) - (1 - p) * np.log2(1 - p)
    return float(np.clip(h, 0.0, 1.0))


def strength_to_probability(
    strength: float,
    confidence: float,
    direction: SignalDirection,
    offset: float = 0.51,
    per_strength: float = 0.034,
    floor: float = 0.01,
    ceiling: float = 0.99,
) -> float:
    """
    Piecewise-linear map of directional strength (1-10) to probability.

    buy:  offset + (s - 1) * per_strength
    sell: (1 - offset) - (s - 1) * per_strength
    The result is shrunk toward 0.5 by confidence.
    """
    s = float(np.clip(strength, 1.0, 10.0))
    c = float(np.clip(confidence, 0.1, 1.0))

    if direction == SignalDirection.BUY:
        base = offset + (s - 1) * per_strength
    elif direction == SignalDirection.SELL:
        base = (1 - offset) - (s - 1) * per_strength
    else:
        base = 0.5

    adjusted = 0.5 + c * (base - 0.5)
    return clip_probability(adjusted, floor, ceiling)


def bayesian_update(likelihood: float, prior: float) -> float:
    """posterior = L*prior / (L*prior + (1-L)*(1-prior))"""
    numerator = likelihood * prior
    denominator = numerator + (1 - likelihood) * (1 - prior)
    if denominator <= 0:
        return 0.5
    return float(numerator / denominator)


def apply_regime_adjustment(p: float, multiplier: float, floor: float = 0.01, ceiling: float = 0.99) -> float:
    """Scale log-odds by the regime multiplier and map back"""
    return clip_probability(logistic(logit(p) * multiplier), floor, ceiling)


def error_variance(confidence: float, p: float, weight: float) -> float:
    """Higher for low-confidence, near-0.5 and low-weight factors"""
    reliability = 1 - float(np.clip(confidence, 0.0, 1.0))
    extremity = 4 * p * (1 - p)
    base = 1 / np.sqrt(weight) if weight > 0 else 0.5
    return float(reliability * extremity * base)


def causal_uplift(win_rate: float, avg_return: float, total_trades: int,
                  min_trades: int = 10, clamp: float = 0.5) -> float:
    """(win_rate - 0.5) * avg_return, zero until min_trades are observed"""
    if total_trades < min_trades:
        return 0.0
    return float(np.clip((win_rate - 0.5) * avg_return, -clamp, clamp))


def decorrelate_log_odds(log_odds: Sequence[float], groups: Sequence[Hashable]) -> np.ndarray:
    """
    Divide each log-odds by sqrt(n) where n is the size of its group.

    Stand-in for full covariance shrinkage: n same-type factors carry at most
    sqrt(n) times the evidence of one.
    """
    z = np.asarray(log_odds, dtype=float).copy()
    members: Dict[Hashable, List[int]] = defaultdict(list)
    for i, group in enumerate(groups):
        members[group].append(i)
    for indices in members.values():
        if len(indices) > 1:
            z[indices] /= np.sqrt(len(indices))
    return z


def pool_log_odds(log_odds: Sequence[float], weights: Sequence[float], max_log_odds: float = 10.0) -> float:
    """
    Weighted additive evidence pooling.

    L = sum(w_i * z_i) / mean(w), so unit weights reduce to a plain sum of
    log-odds and weights only redistribute evidence between factors.
    """
    z = np.asarray(log_odds, dtype=float)
    w = np.asarray(weights, dtype=float)
    if len(z) == 0:
        return 0.0
    mean_weight = float(np.mean(w))
    if mean_weight <= 0:
        return 0.0
    combined = float(np.dot(w, z) / mean_weight)
    return float(np.clip(combined, -max_log_odds, max_log_odds))


def calculate_net_edge(probability: float, expected_return: float, expected_loss: float,
                       trading_costs: float) -> float:
    """p * R - (1 - p) * |L| - costs"""
    return float(probability * expected_return
                 - (1 - probability) * abs(expected_loss)
                 - trading_costs)


def calculate_kelly_fraction(probability: float, expected_return: float, expected_loss: float,
                             cap: float = 0.25) -> float:
    """
    Kelly fraction f* = (p * RR - (1 - p)) / RR with RR = |return / loss|.

    Clamped to [0, cap]. Degenerate payoffs (zero loss, zero return or
    non-finite input) size to zero.
    """
    values = (probability, expected_return, expected_loss)
    if not all(np.isfinite(v) for v in values):
        return 0.0
    if expected_loss == 0 or expected_return == 0:
        return 0.0

    p = float(np.clip(probability, 0.0, 1.0))
    rr = abs(expected_return / expected_loss)
    kelly = (p * rr - (1 - p)) / rr
    return float(np.clip(kelly, 0.0, cap))


def calculate_calibration_score(
    predicted: Sequence[float],
    actual: Sequence[float],
    bucket_width: float = 0.1,
    bucket_min: int = 5,
) -> float:
    """
    1 - 2 * mean absolute calibration error over populated buckets.

    Buckets with fewer than bucket_min records are ignored; no populated
    bucket gives the neutral 0.5.
    """
    pred = np.asarray(predicted, dtype=float)
    act = np.asarray(actual, dtype=float)
    if len(pred) == 0:
        return 0.5

    bucket_ids = np.floor(pred / bucket_width).astype(int)
    errors = []
    for bucket in np.unique(bucket_ids):
        mask = bucket_ids == bucket
        if mask.sum() < bucket_min:
            continue
        errors.append(abs(pred[mask].mean() - act[mask].mean()))

    if not errors:
        return 0.5
    return float(max(0.0, 1 - 2 * np.mean(errors)))
