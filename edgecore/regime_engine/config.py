"""
Regime Engine Configuration

Observation window sizes, decoding constants, transition trigger levels and
the initial regime-conditioned factor weights.
"""

from dataclasses import dataclass, field
from typing import Dict
import hashlib
import json

from edgecore.regime_engine.schemas import FactorType, RegimeType


def _default_regime_weights() -> Dict[str, Dict[str, float]]:
    # Rows: regime; columns: factor type. Harmonic/fibonacci inherit pattern-like behaviour.
    return {
        "trending_bullish": {"technical": 1.3, "pattern": 0.9, "volume": 1.2, "momentum": 1.4,
                             "sentiment": 1.1, "fundamental": 1.0, "harmonic": 0.8, "fibonacci": 1.0},
        "trending_bearish": {"technical": 1.3, "pattern": 0.9, "volume": 1.2, "momentum": 1.4,
                             "sentiment": 1.2, "fundamental": 1.1, "harmonic": 0.8, "fibonacci": 1.0},
        "ranging_tight": {"technical": 1.2, "pattern": 1.4, "volume": 0.9, "momentum": 0.7,
                          "sentiment": 0.8, "fundamental": 0.9, "harmonic": 1.2, "fibonacci": 1.3},
        "ranging_volatile": {"technical": 1.0, "pattern": 1.2, "volume": 1.4, "momentum": 0.8,
                             "sentiment": 1.3, "fundamental": 0.9, "harmonic": 0.9, "fibonacci": 1.1},
        "shock_up": {"technical": 0.7, "pattern": 0.6, "volume": 1.5, "momentum": 1.2,
                     "sentiment": 1.6, "fundamental": 1.4, "harmonic": 0.5, "fibonacci": 0.8},
        "shock_down": {"technical": 0.6, "pattern": 0.5, "volume": 1.6, "momentum": 1.3,
                       "sentiment": 1.7, "fundamental": 1.5, "harmonic": 0.4, "fibonacci": 0.7},
        "liquidity_crisis": {"technical": 0.4, "pattern": 0.3, "volume": 1.8, "momentum": 0.5,
                             "sentiment": 1.9, "fundamental": 1.6, "harmonic": 0.2, "fibonacci": 0.4},
        "news_driven": {"technical": 0.6, "pattern": 0.5, "volume": 1.4, "momentum": 1.1,
                        "sentiment": 2.0, "fundamental": 1.7, "harmonic": 0.3, "fibonacci": 0.5},
        "breakout": {"technical": 1.3, "pattern": 1.2, "volume": 1.5, "momentum": 1.4,
                     "sentiment": 1.0, "fundamental": 0.8, "harmonic": 1.0, "fibonacci": 1.1},
        "consolidation": {"technical": 1.1, "pattern": 1.3, "volume": 0.8, "momentum": 0.6,
                          "sentiment": 0.7, "fundamental": 0.8, "harmonic": 1.1, "fibonacci": 1.2},
    }


def _default_risk_multipliers() -> Dict[str, float]:
    return {
        "trending_bullish": 1.0,
        "trending_bearish": 1.0,
        "ranging_tight": 0.8,
        "ranging_volatile": 0.6,
        "shock_up": 0.3,
        "shock_down": 0.3,
        "liquidity_crisis": 0.1,
        "news_driven": 0.4,
        "breakout": 0.7,
        "consolidation": 0.9,
    }


@dataclass
class ObservationConfig:
    """Feature extraction from the candle window"""

    candle_lookback: int = 20          # bars used per observation
    min_candles: int = 10              # below this the neutral regime is returned
    trend_points: int = 10             # closes in the regression slope
    rsi_period: int = 14
    annualization_factor: float = 252.0
    volatility_scale: float = 0.10     # annualized vol mapped to 1.0
    breakout_tolerance: float = 0.001  # penetration below this is ignored

    def validate(self):
        if self.candle_lookback < 2:
            raise ValueError("candle_lookback must be at least 2")
        if not 2 <= self.min_candles <= self.candle_lookback:
            raise ValueError("min_candles must be in [2, candle_lookback]")
        if self.trend_points < 2:
            raise ValueError("trend_points must be at least 2")
        if self.rsi_period < 1:
            raise ValueError("rsi_period must be positive")
        if self.volatility_scale <= 0:
            raise ValueError("volatility_scale must be positive")


@dataclass
class TransitionTriggerConfig:
    """Observation levels that label a regime transition"""

    large_price_move: float = 0.01
    volatility_spike: float = 1.5
    volume_surge: float = 2.0
    momentum_shift: float = 0.8
    news_event: float = 0.5
    breakout: float = 0.5
    reversal_signal: float = 0.7


@dataclass
class WeightAdaptationConfig:
    """Exponential reweighting applied on regime transitions"""

    learning_rate: float = 0.1
    min_weight: float = 0.1
    max_weight: float = 3.0
    min_samples: int = 5
    target_mean: float = 1.0

    def validate(self):
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be positive")
        if not 0 < self.min_weight < self.max_weight:
            raise ValueError("Weight bounds must satisfy 0 < min_weight < max_weight")


@dataclass
class RegimeEngineConfig:
    """
    Complete Regime Detection Engine configuration.

    persistence_bias is the multiplier applied to the incumbent regime's
    decoding score; 2.0 keeps detection sticky without locking it.
    """

    observation: ObservationConfig = field(default_factory=ObservationConfig)
    triggers: TransitionTriggerConfig = field(default_factory=TransitionTriggerConfig)
    adaptation: WeightAdaptationConfig = field(default_factory=WeightAdaptationConfig)

    window_size: int = 50              # observations retained
    viterbi_lookback: int = 5          # observations scored per decode
    persistence_bias: float = 2.0
    default_transition_probability: float = 0.01
    history_size: int = 1000           # transitions retained
    candle_minutes: float = 15.0       # bar length used for expected_duration_minutes
    stats_history_limit: int = 100

    regime_weights: Dict[str, Dict[str, float]] = field(default_factory=_default_regime_weights)
    risk_multipliers: Dict[str, float] = field(default_factory=_default_risk_multipliers)

    config_version: str = "1.0.0"

    def __post_init__(self):
        self.validate()

    def validate(self):
        self.observation.validate()
        self.adaptation.validate()
        if self.window_size < 1:
            raise ValueError("window_size must be positive")
        if not 1 <= self.viterbi_lookback <= self.window_size:
            raise ValueError("viterbi_lookback must be in [1, window_size]")
        if self.persistence_bias < 1.0:
            raise ValueError("persistence_bias must be >= 1.0")
        if self.history_size < 1:
            raise ValueError("history_size must be positive")
        for regime, row in self.regime_weights.items():
            RegimeType.parse(regime)
            for factor_type, weight in row.items():
                FactorType.parse(factor_type)
                if weight <= 0:
                    raise ValueError(f"Weight for {regime}/{factor_type} must be positive")
        for regime, multiplier in self.risk_multipliers.items():
            RegimeType.parse(regime)
            if not 0 < multiplier <= 1.0:
                raise ValueError(f"Risk multiplier for {regime} must be in (0, 1]")

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'observation': {
                'candle_lookback': self.observation.candle_lookback,
                'min_candles': self.observation.min_candles,
                'trend_points': self.observation.trend_points,
                'rsi_period': self.observation.rsi_period,
                'annualization_factor': self.observation.annualization_factor,
                'volatility_scale': self.observation.volatility_scale,
                'breakout_tolerance': self.observation.breakout_tolerance,
            },
            'triggers': {
                'large_price_move': self.triggers.large_price_move,
                'volatility_spike': self.triggers.volatility_spike,
                'volume_surge': self.triggers.volume_surge,
                'momentum_shift': self.triggers.momentum_shift,
                'news_event': self.triggers.news_event,
                'breakout': self.triggers.breakout,
                'reversal_signal': self.triggers.reversal_signal,
            },
            'adaptation': {
                'learning_rate': self.adaptation.learning_rate,
                'min_weight': self.adaptation.min_weight,
                'max_weight': self.adaptation.max_weight,
                'min_samples': self.adaptation.min_samples,
                'target_mean': self.adaptation.target_mean,
            },
            'window_size': self.window_size,
            'viterbi_lookback': self.viterbi_lookback,
            'persistence_bias': self.persistence_bias,
            'default_transition_probability': self.default_transition_probability,
            'history_size': self.history_size,
            'candle_minutes': self.candle_minutes,
            'stats_history_limit': self.stats_history_limit,
            'regime_weights': self.regime_weights,
            'risk_multipliers': self.risk_multipliers,
            'config_version': self.config_version,
        }

    def get_config_hash(self) -> str:
        """Deterministic hash of configuration for reproducibility"""
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'RegimeEngineConfig':
        """Create config from dictionary"""
        config_dict = dict(config_dict)
        return cls(
            observation=ObservationConfig(**config_dict.pop('observation', {})),
            triggers=TransitionTriggerConfig(**config_dict.pop('triggers', {})),
            adaptation=WeightAdaptationConfig(**config_dict.pop('adaptation', {})),
            **config_dict,
        )
