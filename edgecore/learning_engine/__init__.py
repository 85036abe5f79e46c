"""
Continuous Learning Engine

Consumes realized trade outcomes to score performance, detect degradation
and propose parameter updates for the fusion and threshold engines.

Core Principle:
    Change a parameter only with enough evidence, and never by more than
    the maximum drift per update.

Responsibilities:
    - Retention-bounded, deduplicated outcome ledger
    - Rolling accuracy, Sharpe, drawdown, win rate and profit factor
    - Degradation detection over the performance-score series
    - Drift-bounded grid search for confluence, strength and regime weights
    - System health, recommendations and counterfactual analysis

Flow:
    Outcome → Learning Engine → parameter updates → Fusion / Threshold
"""

from edgecore.learning_engine.config import (
    LearningEngineConfig,
    DegradationConfig,
    OptimizerConfig,
)
from edgecore.learning_engine.schemas import (
    OutcomeData,
    LearningMetrics,
    ModelPerformance,
    AdaptationRecord,
    ParameterOptimization,
    BacktestResult,
    HealthStatus,
    SystemHealth,
    CounterfactualSummary,
)
from edgecore.learning_engine.metrics import (
    compute_learning_metrics,
    performance_score,
    profit_factor,
    max_drawdown,
)
from edgecore.learning_engine.engine import ContinuousLearningEngine

__version__ = "1.0.0"

__all__ = [
    'LearningEngineConfig',
    'DegradationConfig',
    'OptimizerConfig',
    'OutcomeData',
    'LearningMetrics',
    'ModelPerformance',
    'AdaptationRecord',
    'ParameterOptimization',
    'BacktestResult',
    'HealthStatus',
    'SystemHealth',
    'CounterfactualSummary',
    'compute_learning_metrics',
    'performance_score',
    'profit_factor',
    'max_drawdown',
    'ContinuousLearningEngine',
]
