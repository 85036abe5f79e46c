"""
Fusion Engine Schemas

Input factor struct, per-factor probabilistic view and the fused signal.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, NamedTuple, Optional, Tuple

import numpy as np

from edgecore.regime_engine.schemas import FactorType, RegimeType


class SignalDirection(str, Enum):
    """Directional call of a factor or fused signal"""
    BUY = "buy"
    SELL = "sell"
    NEUTRAL = "neutral"

    @classmethod
    def parse(cls, value) -> 'SignalDirection':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown signal direction: {value!r}")


class FusionRejectionReason(str, Enum):
    """Why generate_probabilistic_signal returned no signal"""
    HIGH_ENTROPY = "high_entropy"
    NEUTRAL_DIRECTION = "neutral_direction"
    NON_POSITIVE_EDGE = "non_positive_edge"
    WEAK_SIGNAL = "weak_signal"


@dataclass(frozen=True)
class FactorSignal:
    """
    One raw factor signal as delivered by an upstream analyser.

    strength is on a 0-10 scale (values below 1 are treated as 1),
    confidence in [0, 1]. Validation happens at construction.
    """
    name: str
    factor_type: FactorType
    strength: float
    confidence: float
    signal: SignalDirection
    weight: float = 1.0
    description: str = ""

    def __post_init__(self):
        if not self.name or not str(self.name).strip():
            raise ValueError("Factor name must be non-empty")
        object.__setattr__(self, 'factor_type', FactorType.parse(self.factor_type))
        object.__setattr__(self, 'signal', SignalDirection.parse(self.signal))

        for attr in ('strength', 'confidence', 'weight'):
            try:
                value = float(getattr(self, attr))
            except (TypeError, ValueError):
                raise ValueError(f"Factor {self.name}: {attr} must be numeric")
            if not np.isfinite(value):
                raise ValueError(f"Factor {self.name}: {attr} must be finite")
            object.__setattr__(self, attr, value)

        if not 0.0 <= self.strength <= 10.0:
            raise ValueError(f"Factor {self.name}: strength must be in [0, 10], got {self.strength}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Factor {self.name}: confidence must be in [0, 1], got {self.confidence}")
        if self.weight <= 0:
            raise ValueError(f"Factor {self.name}: weight must be positive, got {self.weight}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FactorSignal':
        """Build from a mapping; accepts 'type' or 'factor_type'"""
        factor_type = data.get('factor_type', data.get('type'))
        if factor_type is None:
            raise ValueError(f"Factor {data.get('name')!r} is missing a type")
        return cls(
            name=data.get('name', ''),
            factor_type=factor_type,
            strength=data.get('strength', 5.0),
            confidence=data.get('confidence', 0.7),
            signal=data.get('signal', 'neutral'),
            weight=data.get('weight', 1.0) or 1.0,
            description=data.get('description', '') or '',
        )

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'factor_type': self.factor_type.value,
            'strength': float(self.strength),
            'confidence': float(self.confidence),
            'signal': self.signal.value,
            'weight': float(self.weight),
            'description': self.description,
        }


@dataclass(frozen=True)
class ProbabilisticFactor:
    """A factor converted to probability space; never mutated after creation"""
    factor_id: str
    name: str
    factor_type: FactorType
    signal: SignalDirection
    probability: float
    log_odds: float
    weight: float
    confidence: float
    error_variance: float
    causal_uplift: float
    regime_adjustment: float
    description: str = ""

    def to_dict(self) -> dict:
        return {
            'factor_id': self.factor_id,
            'name': self.name,
            'factor_type': self.factor_type.value,
            'signal': self.signal.value,
            'probability': float(self.probability),
            'log_odds': float(self.log_odds),
            'weight': float(self.weight),
            'confidence': float(self.confidence),
            'error_variance': float(self.error_variance),
            'causal_uplift': float(self.causal_uplift),
            'regime_adjustment': float(self.regime_adjustment),
            'description': self.description,
        }


class FusionResult(NamedTuple):
    """Output of log-odds fusion"""
    probability: float
    log_odds: float
    entropy: float


@dataclass(frozen=True)
class ProbabilisticSignal:
    """
    Fused decision artifact handed to the threshold gate and, when accepted,
    to the execution collaborator.
    """
    signal_id: str
    timestamp: datetime
    symbol: Optional[str]
    combined_probability: float
    combined_log_odds: float
    entropy: float
    net_edge: float
    signal_type: SignalDirection
    confidence: float
    strength: int
    factors: Tuple[ProbabilisticFactor, ...]
    expected_return: float
    expected_loss: float
    trading_costs: float
    entry_price: float
    stop_loss: float
    take_profit: float
    risk_reward_ratio: float
    kelly_fraction: float
    optimal_position_size: float
    cvar_constraint: float
    regime_context: RegimeType
    calibration_score: float

    def to_dict(self) -> dict:
        return {
            'signal_id': self.signal_id,
            'timestamp': self.timestamp.isoformat(),
            'symbol': self.symbol,
            'combined_probability': float(self.combined_probability),
            'combined_log_odds': float(self.combined_log_odds),
            'entropy': float(self.entropy),
            'net_edge': float(self.net_edge),
            'signal_type': self.signal_type.value,
            'confidence': float(self.confidence),
            'strength': int(self.strength),
            'factors': [f.to_dict() for f in self.factors],
            'expected_return': float(self.expected_return),
            'expected_loss': float(self.expected_loss),
            'trading_costs': float(self.trading_costs),
            'entry_price': float(self.entry_price),
            'stop_loss': float(self.stop_loss),
            'take_profit': float(self.take_profit),
            'risk_reward_ratio': float(self.risk_reward_ratio),
            'kelly_fraction': float(self.kelly_fraction),
            'optimal_position_size': float(self.optimal_position_size),
            'cvar_constraint': float(self.cvar_constraint),
            'regime_context': self.regime_context.value,
            'calibration_score': float(self.calibration_score),
        }


@dataclass(frozen=True)
class FusionRejection:
    """Structured reason for a fusion-stage rejection"""
    reason: FusionRejectionReason
    value: float
    threshold: float
    message: str

    def to_dict(self) -> dict:
        return {
            'reason': self.reason.value,
            'value': float(self.value),
            'threshold': float(self.threshold),
            'message': self.message,
        }


@dataclass
class FactorPerformance:
    """Rolling realized performance of one named factor"""
    total_trades: int = 0
    wins: int = 0
    total_return: float = 0.0

    @property
    def win_rate(self) -> float:
        return self.wins / self.total_trades if self.total_trades > 0 else 0.5

    @property
    def avg_return(self) -> float:
        return self.total_return / self.total_trades if self.total_trades > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            'total_trades': self.total_trades,
            'wins': self.wins,
            'win_rate': float(self.win_rate),
            'avg_return': float(self.avg_return),
        }


@dataclass(frozen=True)
class CalibrationRecord:
    """Predicted probability vs realized outcome (1.0 win, 0.0 loss)"""
    predicted: float
    actual: float
    timestamp: Optional[datetime] = field(compare=False, default=None)
