"""
Decision Pipeline Schemas
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from edgecore.fusion_engine.schemas import FusionResult, ProbabilisticFactor, ProbabilisticSignal
from edgecore.regime_engine.schemas import MarketRegime
from edgecore.threshold_engine.schemas import ThresholdDecision


class RejectionStage(str, Enum):
    FUSION = "fusion"
    THRESHOLD = "threshold"


@dataclass(frozen=True)
class DecisionOutput:
    """
    Result of one evaluation cycle.

    signal is set only when both fusion and the threshold gate accepted it.
    """
    symbol: str
    timestamp: datetime
    correlation_id: str
    regime: MarketRegime
    fusion: FusionResult
    signal: Optional[ProbabilisticSignal] = None
    decision: Optional[ThresholdDecision] = None
    rejection_stage: Optional[RejectionStage] = None
    rejection_reason: Optional[str] = None
    probabilistic_factors: List[ProbabilisticFactor] = field(default_factory=list)
    processing_time_ms: float = 0.0

    @property
    def accepted(self) -> bool:
        return self.signal is not None

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'timestamp': self.timestamp.isoformat(),
            'correlation_id': self.correlation_id,
            'accepted': self.accepted,
            'regime': self.regime.to_dict(),
            'fusion': {
                'probability': float(self.fusion.probability),
                'log_odds': float(self.fusion.log_odds),
                'entropy': float(self.fusion.entropy),
            },
            'signal': self.signal.to_dict() if self.signal else None,
            'decision': self.decision.to_dict() if self.decision else None,
            'rejection_stage': self.rejection_stage.value if self.rejection_stage else None,
            'rejection_reason': self.rejection_reason,
            'factor_count': len(self.probabilistic_factors),
            'processing_time_ms': self.processing_time_ms,
        }


@dataclass(frozen=True)
class IssuedSignal:
    """What the pipeline remembers about an accepted signal until its outcome arrives"""
    signal_id: str
    win_probability: float
    factor_names: tuple       # (name, factor_type) pairs
