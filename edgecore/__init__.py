"""
EdgeCore

Regime-aware probabilistic decision engine: regime detection, Bayesian
factor fusion, adaptive gating and continuous learning in one feedback loop.
"""

from edgecore.config import EdgeCoreConfig, TelemetryConfig
from edgecore.observability import TelemetryEventType, TelemetryRecord, TelemetrySink
from edgecore.pipeline import DecisionOutput, DecisionPipeline, PipelineRegistry

__version__ = "1.0.0"

__all__ = [
    'EdgeCoreConfig',
    'TelemetryConfig',
    'TelemetryEventType',
    'TelemetryRecord',
    'TelemetrySink',
    'DecisionOutput',
    'DecisionPipeline',
    'PipelineRegistry',
]
