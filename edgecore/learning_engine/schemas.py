"""
Learning Engine Schemas
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from edgecore.regime_engine.schemas import FactorType, RegimeType


def _parse_time(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class OutcomeData:
    """
    Realized result of an executed signal.

    Counterfactual outcomes describe signals that were rejected and
    evaluated after the fact; they are kept apart from live metrics.
    """
    signal_id: str
    entry_price: float
    entry_time: datetime
    actual_return: float
    predicted_return: float
    signal_strength: float
    confluence_score: float
    regime: RegimeType
    was_correct_direction: bool
    factor_types: Tuple[FactorType, ...] = ()
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    holding_time_minutes: Optional[float] = None
    counterfactual: bool = False

    def __post_init__(self):
        if not self.signal_id:
            raise ValueError("Outcome requires a signal_id")
        if self.entry_time.tzinfo is None:
            object.__setattr__(self, 'entry_time', self.entry_time.replace(tzinfo=timezone.utc))
        if self.exit_time is not None and self.exit_time.tzinfo is None:
            object.__setattr__(self, 'exit_time', self.exit_time.replace(tzinfo=timezone.utc))
        if not np.isfinite(self.actual_return):
            raise ValueError(f"actual_return must be finite, got {self.actual_return}")
        object.__setattr__(self, 'regime', RegimeType.parse(self.regime))
        object.__setattr__(self, 'factor_types', tuple(FactorType.parse(f) for f in self.factor_types))
        if self.holding_time_minutes is None and self.exit_time is not None:
            minutes = (self.exit_time - self.entry_time).total_seconds() / 60.0
            object.__setattr__(self, 'holding_time_minutes', minutes)

    @property
    def is_win(self) -> bool:
        return self.actual_return > 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'OutcomeData':
        return cls(
            signal_id=str(data['signal_id']),
            entry_price=float(data['entry_price']),
            entry_time=_parse_time(data['entry_time']),
            actual_return=float(data['actual_return']),
            predicted_return=float(data.get('predicted_return', 0.0)),
            signal_strength=float(data.get('signal_strength', 0.0)),
            confluence_score=float(data.get('confluence_score', 0.0)),
            regime=data['regime'],
            was_correct_direction=bool(data.get('was_correct_direction', float(data['actual_return']) > 0)),
            factor_types=tuple(data.get('factor_types', ())),
            exit_price=data.get('exit_price'),
            exit_time=_parse_time(data.get('exit_time')),
            holding_time_minutes=data.get('holding_time_minutes'),
            counterfactual=bool(data.get('counterfactual', False)),
        )

    def to_dict(self) -> dict:
        return {
            'signal_id': self.signal_id,
            'entry_price': self.entry_price,
            'entry_time': self.entry_time.isoformat(),
            'exit_price': self.exit_price,
            'exit_time': self.exit_time.isoformat() if self.exit_time else None,
            'actual_return': self.actual_return,
            'predicted_return': self.predicted_return,
            'signal_strength': self.signal_strength,
            'confluence_score': self.confluence_score,
            'regime': self.regime.value,
            'factor_types': [f.value for f in self.factor_types],
            'was_correct_direction': self.was_correct_direction,
            'holding_time_minutes': self.holding_time_minutes,
            'counterfactual': self.counterfactual,
        }


@dataclass
class LearningMetrics:
    signal_accuracy: float = 0.0      # % correct direction
    average_return: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0         # percent
    win_rate: float = 0.0             # percent
    average_win: float = 0.0
    average_loss: float = 0.0         # magnitude
    profit_factor: float = 0.0        # inf when there are no losses

    def to_dict(self) -> dict:
        return {
            'signal_accuracy': self.signal_accuracy,
            'average_return': self.average_return,
            'sharpe_ratio': self.sharpe_ratio,
            'max_drawdown': self.max_drawdown,
            'win_rate': self.win_rate,
            'average_win': self.average_win,
            'average_loss': self.average_loss,
            # JSON has no infinity
            'profit_factor': self.profit_factor if np.isfinite(self.profit_factor) else None,
        }


@dataclass(frozen=True)
class AdaptationRecord:
    """One applied parameter change"""
    timestamp: datetime
    parameter: str
    old_value: float
    new_value: float
    reason: str
    confidence: float = 0.0
    expected_improvement: float = 0.0

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'parameter': self.parameter,
            'old_value': self.old_value,
            'new_value': self.new_value,
            'reason': self.reason,
            'confidence': self.confidence,
            'expected_improvement': self.expected_improvement,
        }


@dataclass
class ModelPerformance:
    timeframe: str = '15m'
    total_signals: int = 0
    last_updated: Optional[datetime] = None
    metrics: LearningMetrics = field(default_factory=LearningMetrics)
    parameter_drift: Dict[str, float] = field(default_factory=dict)
    adaptation_history: List[AdaptationRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'timeframe': self.timeframe,
            'total_signals': self.total_signals,
            'last_updated': self.last_updated.isoformat() if self.last_updated else None,
            'metrics': self.metrics.to_dict(),
            'parameter_drift': dict(self.parameter_drift),
            'adaptation_history': [a.to_dict() for a in self.adaptation_history],
        }


@dataclass(frozen=True)
class BacktestResult:
    current_performance: float
    optimized_performance: float
    sample_size: int

    def to_dict(self) -> dict:
        return {
            'current_performance': self.current_performance,
            'optimized_performance': self.optimized_performance,
            'sample_size': self.sample_size,
        }


@dataclass(frozen=True)
class ParameterOptimization:
    """Candidate parameter change proposed by an optimizer"""
    parameter: str
    current_value: float
    suggested_value: float
    confidence: float                 # 0-1
    expected_improvement: float       # relative
    backtest: BacktestResult

    def to_dict(self) -> dict:
        return {
            'parameter': self.parameter,
            'current_value': self.current_value,
            'suggested_value': self.suggested_value,
            'confidence': self.confidence,
            'expected_improvement': self.expected_improvement,
            'backtest_results': self.backtest.to_dict(),
        }


class HealthStatus(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @classmethod
    def from_score(cls, score: float) -> 'HealthStatus':
        if score >= 80:
            return cls.EXCELLENT
        if score >= 60:
            return cls.GOOD
        if score >= 40:
            return cls.FAIR
        return cls.POOR


@dataclass(frozen=True)
class SystemHealth:
    overall_health: HealthStatus
    health_score: float
    issues: List[str]
    recommendations: List[str]
    last_update: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            'overall_health': self.overall_health.value,
            'health_score': self.health_score,
            'issues': list(self.issues),
            'recommendations': list(self.recommendations),
            'last_update': self.last_update.isoformat() if self.last_update else None,
        }


@dataclass(frozen=True)
class CounterfactualSummary:
    period: str
    accepted_signals: int
    rejected_signals: int
    missed_opportunities: int
    estimated_missed_profit: float

    def to_dict(self) -> dict:
        return {
            'period': self.period,
            'accepted_signals': self.accepted_signals,
            'rejected_signals': self.rejected_signals,
            'missed_opportunities': self.missed_opportunities,
            'estimated_missed_profit': self.estimated_missed_profit,
        }
