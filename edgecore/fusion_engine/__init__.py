"""
Probabilistic Signal Fusion Engine

Converts heterogeneous factor signals into one calibrated probability of
profit, its entropy, the net edge and a Kelly-sized position.

Philosophy:
    - Evidence is combined in log-odds space
    - Unreliable factors (negative causal uplift) are discarded
    - Correlated factors of the same type are shrunk
    - Uncertain or edgeless signals are not emitted

Flow:
    Regime Engine → Fusion Engine → Threshold Engine
"""

from edgecore.fusion_engine.config import (
    FusionEngineConfig,
    BayesianConfig,
    DecisionConfig,
    LearningHooksConfig,
)
from edgecore.fusion_engine.schemas import (
    SignalDirection,
    FactorSignal,
    ProbabilisticFactor,
    ProbabilisticSignal,
    FusionResult,
    FusionRejection,
    FusionRejectionReason,
)
from edgecore.fusion_engine.probability import (
    binary_entropy,
    calculate_net_edge,
    calculate_kelly_fraction,
    logit,
    logistic,
)
from edgecore.fusion_engine.engine import ProbabilisticFusionEngine

__version__ = "1.0.0"

__all__ = [
    'FusionEngineConfig',
    'BayesianConfig',
    'DecisionConfig',
    'LearningHooksConfig',
    'SignalDirection',
    'FactorSignal',
    'ProbabilisticFactor',
    'ProbabilisticSignal',
    'FusionResult',
    'FusionRejection',
    'FusionRejectionReason',
    'binary_entropy',
    'calculate_net_edge',
    'calculate_kelly_fraction',
    'logit',
    'logistic',
    'ProbabilisticFusionEngine',
]
