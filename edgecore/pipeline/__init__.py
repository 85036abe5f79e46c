"""
Decision Pipeline

Per-symbol orchestration of the evaluation cycle and the outcome feedback
loop.

Flow:
    Regime → Fusion → Threshold → Decision
    Outcome → Learning → Fusion / Threshold parameters
"""

from edgecore.pipeline.schemas import DecisionOutput, RejectionStage
from edgecore.pipeline.engine import DecisionPipeline
from edgecore.pipeline.registry import PipelineRegistry

__all__ = [
    'DecisionOutput',
    'RejectionStage',
    'DecisionPipeline',
    'PipelineRegistry',
]
