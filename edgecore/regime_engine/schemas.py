"""
Regime Engine Schemas

Enums, observation records and the regime output consumed by the fusion
and threshold layers. Outputs are frozen so consumers only ever hold
snapshots.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

import numpy as np


class RegimeType(str, Enum):
    """Closed set of latent market regimes"""
    TRENDING_BULLISH = "trending_bullish"
    TRENDING_BEARISH = "trending_bearish"
    RANGING_TIGHT = "ranging_tight"
    RANGING_VOLATILE = "ranging_volatile"
    SHOCK_UP = "shock_up"
    SHOCK_DOWN = "shock_down"
    LIQUIDITY_CRISIS = "liquidity_crisis"
    NEWS_DRIVEN = "news_driven"
    BREAKOUT = "breakout"
    CONSOLIDATION = "consolidation"

    @classmethod
    def parse(cls, value) -> 'RegimeType':
        """Accept an enum member or its string value"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown regime type: {value!r}")

    @property
    def ordinal(self) -> int:
        return _REGIME_INDEX[self]


class FactorType(str, Enum):
    """Closed set of factor families feeding the fusion engine"""
    TECHNICAL = "technical"
    PATTERN = "pattern"
    VOLUME = "volume"
    SENTIMENT = "sentiment"
    FUNDAMENTAL = "fundamental"
    MOMENTUM = "momentum"
    HARMONIC = "harmonic"
    FIBONACCI = "fibonacci"

    @classmethod
    def parse(cls, value) -> 'FactorType':
        """Accept an enum member, its value, or the legacy 'news' alias"""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        if key == "news":
            return cls.SENTIMENT
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown factor type: {value!r}")

    @property
    def ordinal(self) -> int:
        return _FACTOR_INDEX[self]


_REGIME_INDEX = {regime: i for i, regime in enumerate(RegimeType)}
_FACTOR_INDEX = {factor: i for i, factor in enumerate(FactorType)}


class RegimeWeightTable:
    """
    Fixed-size adjustment-weight table indexed by (RegimeType, FactorType).

    Backed by a float64 array of shape (n_regimes, n_factor_types). Rows are
    mutated only by the regime engine; consumers receive copies.
    """

    def __init__(self, values: Optional[np.ndarray] = None):
        shape = (len(RegimeType), len(FactorType))
        if values is None:
            self._values = np.ones(shape, dtype=float)
        else:
            values = np.asarray(values, dtype=float)
            if values.shape != shape:
                raise ValueError(f"Weight table must have shape {shape}, got {values.shape}")
            self._values = values.copy()

    @classmethod
    def from_mapping(cls, mapping: Mapping) -> 'RegimeWeightTable':
        """Build from {regime: {factor_type: weight}}; missing cells default to 1.0"""
        table = cls()
        for regime, row in mapping.items():
            regime = RegimeType.parse(regime)
            for factor_type, weight in row.items():
                table.set(regime, FactorType.parse(factor_type), weight)
        return table

    def get(self, regime: RegimeType, factor_type: FactorType) -> float:
        return float(self._values[regime.ordinal, factor_type.ordinal])

    def set(self, regime: RegimeType, factor_type: FactorType, weight: float) -> None:
        self._values[regime.ordinal, factor_type.ordinal] = float(weight)

    def row(self, regime: RegimeType) -> Dict[FactorType, float]:
        values = self._values[regime.ordinal]
        return {factor: float(values[factor.ordinal]) for factor in FactorType}

    def row_array(self, regime: RegimeType) -> np.ndarray:
        return self._values[regime.ordinal].copy()

    def set_row(self, regime: RegimeType, values: np.ndarray) -> None:
        self._values[regime.ordinal] = np.asarray(values, dtype=float)

    def normalize_row(self, regime: RegimeType, target_mean: float = 1.0) -> None:
        """Rescale one regime's weights so their mean equals target_mean"""
        row = self._values[regime.ordinal]
        total = row.sum()
        if total > 0:
            self._values[regime.ordinal] = row * (target_mean * len(row) / total)

    def copy(self) -> 'RegimeWeightTable':
        return RegimeWeightTable(self._values)

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {
            regime.value: {factor.value: weight for factor, weight in self.row(regime).items()}
            for regime in RegimeType
        }


@dataclass(frozen=True)
class MarketObservation:
    """
    Normalized scalar features from the recent candle window.

    All fields are dimensionless and clipped to fixed ranges so emission
    functions can use constant Gaussian parameters.
    """
    price_move: float = 0.0      # last return, [-0.1, 0.1]
    volatility: float = 0.5      # annualized vol / 10%, [0, 2]
    volume_ratio: float = 1.0    # current / 20-bar mean, [0.1, 3]
    momentum: float = 0.0        # position in high/low range, [-1, 1]
    trend: float = 0.0           # normalized regression slope, [-1, 1]
    reversal: float = 0.0        # RSI extremity, [0, 1]
    breakout: float = 0.0        # range penetration, [0, 1]
    news: float = 0.0            # mean sentiment, [-1, 1]
    time_of_day: float = 0.5     # [0, 1]
    day_of_week: float = 0.5     # [0, 1]
    observed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'price_move': float(self.price_move),
            'volatility': float(self.volatility),
            'volume_ratio': float(self.volume_ratio),
            'momentum': float(self.momentum),
            'trend': float(self.trend),
            'reversal': float(self.reversal),
            'breakout': float(self.breakout),
            'news': float(self.news),
            'time_of_day': float(self.time_of_day),
            'day_of_week': float(self.day_of_week),
            'observed_at': self.observed_at.isoformat() if self.observed_at else None,
        }


@dataclass(frozen=True)
class DurationDistribution:
    """Regime dwell time in bars"""
    mean: float
    std: float
    min: int
    max: int


@dataclass(frozen=True)
class Microstructure:
    """Coarse microstructure proxies derived from the observation"""
    bid_ask_spread: float = 0.05
    market_depth: float = 1.0
    order_flow: str = "neutral"   # buying | selling | neutral
    institutional_activity: float = 0.5

    def to_dict(self) -> dict:
        return {
            'bid_ask_spread': float(self.bid_ask_spread),
            'market_depth': float(self.market_depth),
            'order_flow': self.order_flow,
            'institutional_activity': float(self.institutional_activity),
        }


@dataclass(frozen=True)
class MarketRegime:
    """
    Regime snapshot returned by every detection call.

    adjustment_factors is a read-only view of the regime's weight row at
    detection time; later adaptive updates do not change it.
    """
    regime_type: RegimeType
    strength: float
    confidence: float
    duration: float                  # expected dwell, bars
    volatility: float
    momentum: float
    volume_ratio: float
    microstructure: Microstructure
    adjustment_factors: Mapping[FactorType, float]
    risk_multiplier: float
    expected_duration_minutes: float
    transition_probabilities: Mapping[RegimeType, float]
    detected_at: datetime

    def __post_init__(self):
        # Freeze the mappings so consumers cannot write back into engine state
        object.__setattr__(self, 'adjustment_factors', MappingProxyType(dict(self.adjustment_factors)))
        object.__setattr__(self, 'transition_probabilities',
                           MappingProxyType(dict(self.transition_probabilities)))

    @classmethod
    def neutral(cls, regime_type: RegimeType = RegimeType.RANGING_TIGHT) -> 'MarketRegime':
        """Regime with unit adjustment weights and unit risk multiplier"""
        return cls(
            regime_type=regime_type,
            strength=0.5,
            confidence=0.5,
            duration=0.0,
            volatility=0.5,
            momentum=0.0,
            volume_ratio=1.0,
            microstructure=Microstructure(),
            adjustment_factors={factor: 1.0 for factor in FactorType},
            risk_multiplier=1.0,
            expected_duration_minutes=0.0,
            transition_probabilities={},
            detected_at=datetime.now(timezone.utc),
        )

    def adjustment_for(self, factor_type: FactorType) -> float:
        return float(self.adjustment_factors.get(factor_type, 1.0))

    def to_dict(self) -> dict:
        return {
            'regime_type': self.regime_type.value,
            'strength': float(self.strength),
            'confidence': float(self.confidence),
            'duration': float(self.duration),
            'volatility': float(self.volatility),
            'momentum': float(self.momentum),
            'volume_ratio': float(self.volume_ratio),
            'microstructure': self.microstructure.to_dict(),
            'adjustment_factors': {k.value: float(v) for k, v in self.adjustment_factors.items()},
            'risk_multiplier': float(self.risk_multiplier),
            'expected_duration_minutes': float(self.expected_duration_minutes),
            'transition_probabilities': {
                k.value: float(v) for k, v in self.transition_probabilities.items()
            },
            'detected_at': self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class RegimeTransition:
    """One recorded regime change"""
    from_regime: RegimeType
    to_regime: RegimeType
    timestamp: datetime
    trigger_factors: List[str]
    confidence: float
    price_change: float
    volume_change: float
    volatility_change: float
    news_impact: float

    def to_dict(self) -> dict:
        return {
            'from_regime': self.from_regime.value,
            'to_regime': self.to_regime.value,
            'timestamp': self.timestamp.isoformat(),
            'trigger_factors': list(self.trigger_factors),
            'confidence': float(self.confidence),
            'market_conditions': {
                'price_change': float(self.price_change),
                'volume_change': float(self.volume_change),
                'volatility_change': float(self.volatility_change),
                'news_impact': float(self.news_impact),
            },
        }


@dataclass
class RegimeFactorPerformance:
    """Running win/return tally for one (regime, factor type) cell"""
    trades: int = 0
    wins: int = 0
    total_return: float = 0.0

    @property
    def win_rate(self) -> float:
        return self.wins / self.trades if self.trades > 0 else 0.5

    @property
    def avg_return(self) -> float:
        return self.total_return / self.trades if self.trades > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            'trades': self.trades,
            'wins': self.wins,
            'win_rate': float(self.win_rate),
            'avg_return': float(self.avg_return),
        }


@dataclass
class RegimeStatistics:
    """Diagnostic snapshot of the regime engine"""
    current_regime: MarketRegime
    regime_history: List[RegimeTransition] = field(default_factory=list)
    average_regime_duration: Dict[RegimeType, float] = field(default_factory=dict)
    transition_matrix: Optional[np.ndarray] = None
    regime_performance: Dict[str, dict] = field(default_factory=dict)
    adaptive_weights: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'current_regime': self.current_regime.to_dict(),
            'regime_history': [t.to_dict() for t in self.regime_history],
            'average_regime_duration': {
                k.value: float(v) for k, v in self.average_regime_duration.items()
            },
            'transition_matrix': (
                self.transition_matrix.tolist() if self.transition_matrix is not None else []
            ),
            'regime_order': [r.value for r in RegimeType],
            'regime_performance': self.regime_performance,
            'adaptive_weights': self.adaptive_weights,
        }
