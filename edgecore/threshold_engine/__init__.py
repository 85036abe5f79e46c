"""
Adaptive Threshold Engine

Final accept/reject gate for fused signals. Thresholds self-tune toward a
target density of accepted signals per hour and always stay within their
configured bounds.

Core Principle:
    Reject for one reason only: the first failing gate is logged.

Responsibilities:
    - Entropy, probability, edge and regime-weighted confluence gates
    - Rejection ledger with retention
    - Density-driven relax/tighten adaptation on a fixed cadence
    - Operator overrides, resets and analytics

Flow:
    Fusion Engine → Threshold Engine → Decision
"""

from edgecore.threshold_engine.config import (
    ThresholdEngineConfig,
    ThresholdBoundsConfig,
    ThresholdValuesConfig,
    AdjustmentStepConfig,
    RejectionAnalysisConfig,
    MetricBounds,
)
from edgecore.threshold_engine.schemas import (
    AdaptiveThresholds,
    AdjustmentDirection,
    RejectionReason,
    SignalRejection,
    ThresholdDecision,
    ThresholdAdjustment,
    RejectionAnalytics,
    SignalDensityAnalytics,
)
from edgecore.threshold_engine.engine import AdaptiveThresholdEngine

__version__ = "1.0.0"

__all__ = [
    'ThresholdEngineConfig',
    'ThresholdBoundsConfig',
    'ThresholdValuesConfig',
    'AdjustmentStepConfig',
    'RejectionAnalysisConfig',
    'MetricBounds',
    'AdaptiveThresholds',
    'AdjustmentDirection',
    'RejectionReason',
    'SignalRejection',
    'ThresholdDecision',
    'ThresholdAdjustment',
    'RejectionAnalytics',
    'SignalDensityAnalytics',
    'AdaptiveThresholdEngine',
]
