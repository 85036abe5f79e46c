"""
Threshold Engine Schemas
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class RejectionReason(str, Enum):
    """Gate that rejected a signal, in evaluation order"""
    ENTROPY = "entropy"
    PROBABILITY = "probability"
    EDGE = "edge"
    CONFLUENCE = "confluence"


class AdjustmentDirection(str, Enum):
    RELAX = "relax"
    TIGHTEN = "tighten"

    @classmethod
    def parse(cls, value) -> 'AdjustmentDirection':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Adjustment direction must be 'relax' or 'tighten', got {value!r}")


@dataclass
class EntropyThreshold:
    current: float
    min: float
    max: float


@dataclass
class ProbabilityThresholds:
    buy: float
    sell: float


@dataclass
class FloorThreshold:
    """Adaptive value that relaxation may not push below `min`"""
    adaptive: float
    min: float


@dataclass
class AdaptiveThresholds:
    """
    Gate state owned by the threshold engine.

    Every value stays within its configured bounds; the engine clamps on
    each update.
    """
    entropy: EntropyThreshold
    probability: ProbabilityThresholds
    confluence: FloorThreshold
    edge: FloorThreshold
    last_adaptation: Optional[datetime] = None
    adaptation_count: int = 0

    def as_vector(self) -> Dict[str, float]:
        """Flat view of the adjustable values"""
        return {
            'entropy': self.entropy.current,
            'buy_probability': self.probability.buy,
            'sell_probability': self.probability.sell,
            'confluence': self.confluence.adaptive,
            'edge': self.edge.adaptive,
        }

    def to_dict(self) -> dict:
        return {
            'entropy': {
                'current': float(self.entropy.current),
                'min': float(self.entropy.min),
                'max': float(self.entropy.max),
            },
            'probability': {
                'buy': float(self.probability.buy),
                'sell': float(self.probability.sell),
            },
            'confluence': {
                'adaptive': float(self.confluence.adaptive),
                'min': float(self.confluence.min),
            },
            'edge': {
                'adaptive': float(self.edge.adaptive),
                'min': float(self.edge.min),
            },
            'last_adaptation': self.last_adaptation.isoformat() if self.last_adaptation else None,
            'adaptation_count': self.adaptation_count,
        }


@dataclass(frozen=True)
class SignalRejection:
    """One rejection ledger entry"""
    timestamp: datetime
    reason: RejectionReason
    value: float
    threshold: float
    signal_type: str
    factor_count: int
    regime: str
    message: str

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'reason': self.reason.value,
            'value': float(self.value),
            'threshold': float(self.threshold),
            'signal_type': self.signal_type,
            'factor_count': self.factor_count,
            'regime': self.regime,
            'message': self.message,
        }


@dataclass(frozen=True)
class ThresholdDecision:
    """Accept/reject outcome of one gate evaluation"""
    accepted: bool
    reason: Optional[str] = None
    rejection: Optional[SignalRejection] = None
    effective_confluence_threshold: float = 0.0
    thresholds: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'accepted': self.accepted,
            'reason': self.reason,
            'rejection': self.rejection.to_dict() if self.rejection else None,
            'effective_confluence_threshold': float(self.effective_confluence_threshold),
            'thresholds': self.thresholds,
        }


@dataclass(frozen=True)
class ThresholdAdjustment:
    """Record of one change to the gate state"""
    timestamp: datetime
    source: str                # auto | forced | rejection_analysis | reset | learned
    direction: Optional[str]
    before: Dict[str, float]
    after: Dict[str, float]
    reason: str

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'source': self.source,
            'direction': self.direction,
            'before': self.before,
            'after': self.after,
            'reason': self.reason,
        }


@dataclass
class RejectionAnalytics:
    total_rejections: int
    rejections_by_reason: Dict[str, int]
    rejection_rate: float            # percent of evaluated signals
    top_reasons: List[dict]

    def to_dict(self) -> dict:
        return {
            'total_rejections': self.total_rejections,
            'rejections_by_reason': self.rejections_by_reason,
            'rejection_rate': float(self.rejection_rate),
            'top_reasons': self.top_reasons,
        }


@dataclass
class SignalDensityAnalytics:
    current_density: float           # accepted per hour over the lookback
    target_density: float
    accepted_signals: int
    rejected_signals: int
    total_evaluated: int

    def to_dict(self) -> dict:
        return {
            'current_density': float(self.current_density),
            'target_density': float(self.target_density),
            'accepted_signals': self.accepted_signals,
            'rejected_signals': self.rejected_signals,
            'total_evaluated': self.total_evaluated,
        }
