"""
Threshold Engine Configuration

Adaptation cadence, density targets, per-metric bounds, initial values
and per-regime confluence weights for the adaptive gate.
"""

from dataclasses import dataclass, field
from typing import Dict
import hashlib
import json

from edgecore.regime_engine.schemas import RegimeType


def default_confluence_weights() -> Dict[str, float]:
    # Higher weight relaxes the confluence requirement in that regime
    return {
        "trending_bullish": 1.2,
        "trending_bearish": 1.2,
        "ranging_tight": 0.9,
        "ranging_volatile": 0.9,
        "consolidation": 0.9,
        "shock_up": 0.6,
        "shock_down": 0.6,
        "liquidity_crisis": 0.6,
        "news_driven": 0.7,
        "breakout": 1.0,
    }


@dataclass
class MetricBounds:
    """Closed interval a threshold may never leave"""
    min: float
    max: float

    def clamp(self, value: float) -> float:
        return max(self.min, min(self.max, value))

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


@dataclass
class ThresholdBoundsConfig:
    """Per-metric bounds. Sell probability bounds mirror the buy bounds around 0.5."""
    entropy: MetricBounds = field(default_factory=lambda: MetricBounds(0.7, 0.95))
    probability: MetricBounds = field(default_factory=lambda: MetricBounds(0.52, 0.70))
    confluence: MetricBounds = field(default_factory=lambda: MetricBounds(5.0, 50.0))
    edge: MetricBounds = field(default_factory=lambda: MetricBounds(-0.001, 0.001))

    @property
    def sell_probability(self) -> MetricBounds:
        return MetricBounds(1 - self.probability.max, 1 - self.probability.min)

    def validate(self):
        for name in ('entropy', 'probability', 'confluence', 'edge'):
            bounds = getattr(self, name)
            if bounds.min > bounds.max:
                raise ValueError(f"{name} bounds inverted: {bounds.min} > {bounds.max}")
        if self.entropy.min < 0 or self.entropy.max > 1:
            raise ValueError("Entropy bounds must lie in [0, 1]")
        if not 0.5 <= self.probability.min < 1:
            raise ValueError("Buy probability bounds must lie in [0.5, 1)")


@dataclass
class ThresholdValuesConfig:
    """Threshold values at start-up or reset"""
    entropy: float = 0.85
    buy_probability: float = 0.58
    sell_probability: float = 0.42
    confluence: float = 15.0
    confluence_floor: float = 10.0
    edge: float = 0.0001
    edge_floor: float = -0.0001


def _reset_values() -> ThresholdValuesConfig:
    return ThresholdValuesConfig(
        entropy=0.80,
        buy_probability=0.56,
        sell_probability=0.44,
        confluence=12.0,
        edge=0.00005,
    )


@dataclass
class AdjustmentStepConfig:
    """Unit step per metric for one relax/tighten at intensity 1.0"""
    entropy: float = 0.05
    probability: float = 0.02
    confluence: float = 2.0
    edge: float = 0.0001


@dataclass
class RejectionAnalysisConfig:
    """Targeted relaxation when one rejection reason dominates"""
    entropy_share: float = 0.6
    entropy_relax: float = 0.05
    edge_share: float = 0.4
    edge_relax: float = 0.0002
    min_rejections: int = 1


@dataclass
class ThresholdEngineConfig:
    """
    Complete Adaptive Threshold Engine configuration.

    adaptation_interval_hours is the minimum spacing between automatic
    adaptations; evaluate_signal calls inside the interval do not adapt.
    """

    bounds: ThresholdBoundsConfig = field(default_factory=ThresholdBoundsConfig)
    initial: ThresholdValuesConfig = field(default_factory=ThresholdValuesConfig)
    reset_values: ThresholdValuesConfig = field(default_factory=_reset_values)
    steps: AdjustmentStepConfig = field(default_factory=AdjustmentStepConfig)
    rejection_analysis: RejectionAnalysisConfig = field(default_factory=RejectionAnalysisConfig)

    learning_rate: float = 0.1
    signal_density_target: float = 2.0       # accepted signals per hour
    adaptation_window_hours: float = 24.0
    adaptation_interval_hours: float = 1.0
    relax_density_ratio: float = 0.5
    tighten_density_ratio: float = 2.0
    retention_days: float = 7.0
    max_log_entries: int = 50000

    regime_weights: Dict[str, float] = field(default_factory=default_confluence_weights)

    config_version: str = "1.0.0"

    def __post_init__(self):
        self.validate()

    def validate(self):
        self.bounds.validate()
        if not 0 < self.learning_rate <= 1:
            raise ValueError("learning_rate must be in (0, 1]")
        if self.signal_density_target <= 0:
            raise ValueError("signal_density_target must be positive")
        if self.adaptation_window_hours <= 0:
            raise ValueError("adaptation_window_hours must be positive")
        if self.adaptation_interval_hours < 0:
            raise ValueError("adaptation_interval_hours must be non-negative")
        if not 0 < self.relax_density_ratio < self.tighten_density_ratio:
            raise ValueError("Density ratios must satisfy 0 < relax < tighten")
        for regime, weight in self.regime_weights.items():
            RegimeType.parse(regime)
            if weight <= 0:
                raise ValueError(f"Regime weight for {regime} must be positive")

    def regime_weight(self, regime: RegimeType) -> float:
        return float(self.regime_weights.get(regime.value, 1.0))

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        def bounds(b: MetricBounds) -> dict:
            return {'min': b.min, 'max': b.max}

        def values(v: ThresholdValuesConfig) -> dict:
            return {
                'entropy': v.entropy,
                'buy_probability': v.buy_probability,
                'sell_probability': v.sell_probability,
                'confluence': v.confluence,
                'confluence_floor': v.confluence_floor,
                'edge': v.edge,
                'edge_floor': v.edge_floor,
            }

        return {
            'bounds': {
                'entropy': bounds(self.bounds.entropy),
                'probability': bounds(self.bounds.probability),
                'confluence': bounds(self.bounds.confluence),
                'edge': bounds(self.bounds.edge),
            },
            'initial': values(self.initial),
            'reset_values': values(self.reset_values),
            'steps': {
                'entropy': self.steps.entropy,
                'probability': self.steps.probability,
                'confluence': self.steps.confluence,
                'edge': self.steps.edge,
            },
            'rejection_analysis': {
                'entropy_share': self.rejection_analysis.entropy_share,
                'entropy_relax': self.rejection_analysis.entropy_relax,
                'edge_share': self.rejection_analysis.edge_share,
                'edge_relax': self.rejection_analysis.edge_relax,
                'min_rejections': self.rejection_analysis.min_rejections,
            },
            'learning_rate': self.learning_rate,
            'signal_density_target': self.signal_density_target,
            'adaptation_window_hours': self.adaptation_window_hours,
            'adaptation_interval_hours': self.adaptation_interval_hours,
            'relax_density_ratio': self.relax_density_ratio,
            'tighten_density_ratio': self.tighten_density_ratio,
            'retention_days': self.retention_days,
            'max_log_entries': self.max_log_entries,
            'regime_weights': self.regime_weights,
            'config_version': self.config_version,
        }

    def get_config_hash(self) -> str:
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'ThresholdEngineConfig':
        """Create config from dictionary"""
        config_dict = dict(config_dict)
        raw_bounds = config_dict.pop('bounds', {})
        bounds = ThresholdBoundsConfig(**{
            name: MetricBounds(**value) for name, value in raw_bounds.items()
        })
        kwargs = {}
        if 'initial' in config_dict:
            kwargs['initial'] = ThresholdValuesConfig(**config_dict.pop('initial'))
        if 'reset_values' in config_dict:
            kwargs['reset_values'] = ThresholdValuesConfig(**config_dict.pop('reset_values'))
        return cls(
            bounds=bounds,
            steps=AdjustmentStepConfig(**config_dict.pop('steps', {})),
            rejection_analysis=RejectionAnalysisConfig(**config_dict.pop('rejection_analysis', {})),
            **kwargs,
            **config_dict,
        )
