"""
Learning Engine Configuration

Sample sizes, windows, degradation trigger and optimizer grids for the
continuous learning loop.
"""

from dataclasses import dataclass, field
from typing import Dict, List
import hashlib
import json

from edgecore.regime_engine.schemas import RegimeType
from edgecore.threshold_engine.config import default_confluence_weights


@dataclass
class DegradationConfig:
    """Performance-score series used to detect degradation"""
    recalibration_threshold: float = 0.1     # relative drop that triggers recalibration
    score_history_days: float = 7.0
    recent_score_count: int = 5
    min_score_history: int = 10

    def validate(self):
        if self.recalibration_threshold <= 0:
            raise ValueError("recalibration_threshold must be positive")
        if self.recent_score_count < 1:
            raise ValueError("recent_score_count must be at least 1")
        if self.min_score_history <= self.recent_score_count:
            raise ValueError("min_score_history must exceed recent_score_count")


@dataclass
class OptimizerConfig:
    """Grid search and acceptance rules for recalibration"""
    confluence_grid: List[float] = field(default_factory=lambda: [5, 10, 15, 20, 25, 30, 35, 40])
    strength_grid: List[float] = field(default_factory=lambda: [3, 4, 5, 6, 7, 8])
    min_subsample: int = 10
    min_regime_samples: int = 5

    regime_weight_min: float = 0.3
    regime_weight_max: float = 1.5
    regime_significance: float = 0.1        # relative change worth proposing

    # Samples at which optimizer confidence saturates
    confluence_confidence_samples: int = 100
    strength_confidence_samples: int = 75
    regime_confidence_samples: int = 20

    min_confidence: float = 0.7
    min_improvement: float = 0.05

    def validate(self):
        if not self.confluence_grid or not self.strength_grid:
            raise ValueError("Optimizer grids must not be empty")
        if self.min_subsample < 1 or self.min_regime_samples < 1:
            raise ValueError("Optimizer sample sizes must be at least 1")
        if not 0 < self.regime_weight_min <= self.regime_weight_max:
            raise ValueError("Regime weight bounds must satisfy 0 < min <= max")
        if not 0 <= self.min_confidence <= 1:
            raise ValueError("min_confidence must be in [0, 1]")


@dataclass
class LearningEngineConfig:
    """
    Complete Continuous Learning Engine configuration.

    max_parameter_drift bounds every proposed change relative to the
    current value of the parameter.
    """

    degradation: DegradationConfig = field(default_factory=DegradationConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)

    min_sample_size: int = 50
    performance_window_hours: float = 168.0
    retention_days: float = 30.0
    max_parameter_drift: float = 0.2
    deduplicate_outcomes: bool = True
    max_adaptation_history: int = 1000
    max_outcome_history: int = 10000
    max_score_history: int = 1000

    initial_confluence_threshold: float = 15.0
    initial_strength_threshold: float = 5.0
    regime_weight_priors: Dict[str, float] = field(default_factory=default_confluence_weights)

    config_version: str = "1.0.0"

    def __post_init__(self):
        self.validate()

    def validate(self):
        self.degradation.validate()
        self.optimizer.validate()
        if self.min_sample_size < 1:
            raise ValueError("min_sample_size must be at least 1")
        if self.max_outcome_history < self.min_sample_size:
            raise ValueError("max_outcome_history must be at least min_sample_size")
        if self.max_score_history <= self.degradation.min_score_history:
            raise ValueError("max_score_history must exceed degradation.min_score_history")
        if self.performance_window_hours <= 0:
            raise ValueError("performance_window_hours must be positive")
        if self.retention_days <= 0:
            raise ValueError("retention_days must be positive")
        if not 0 < self.max_parameter_drift <= 1:
            raise ValueError("max_parameter_drift must be in (0, 1]")
        if self.initial_confluence_threshold <= 0 or self.initial_strength_threshold <= 0:
            raise ValueError("Initial thresholds must be positive")
        for regime, weight in self.regime_weight_priors.items():
            RegimeType.parse(regime)
            if weight <= 0:
                raise ValueError(f"Regime weight prior for {regime} must be positive")

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'degradation': {
                'recalibration_threshold': self.degradation.recalibration_threshold,
                'score_history_days': self.degradation.score_history_days,
                'recent_score_count': self.degradation.recent_score_count,
                'min_score_history': self.degradation.min_score_history,
            },
            'optimizer': {
                'confluence_grid': list(self.optimizer.confluence_grid),
                'strength_grid': list(self.optimizer.strength_grid),
                'min_subsample': self.optimizer.min_subsample,
                'min_regime_samples': self.optimizer.min_regime_samples,
                'regime_weight_min': self.optimizer.regime_weight_min,
                'regime_weight_max': self.optimizer.regime_weight_max,
                'regime_significance': self.optimizer.regime_significance,
                'confluence_confidence_samples': self.optimizer.confluence_confidence_samples,
                'strength_confidence_samples': self.optimizer.strength_confidence_samples,
                'regime_confidence_samples': self.optimizer.regime_confidence_samples,
                'min_confidence': self.optimizer.min_confidence,
                'min_improvement': self.optimizer.min_improvement,
            },
            'min_sample_size': self.min_sample_size,
            'performance_window_hours': self.performance_window_hours,
            'retention_days': self.retention_days,
            'max_parameter_drift': self.max_parameter_drift,
            'deduplicate_outcomes': self.deduplicate_outcomes,
            'max_adaptation_history': self.max_adaptation_history,
            'max_outcome_history': self.max_outcome_history,
            'max_score_history': self.max_score_history,
            'initial_confluence_threshold': self.initial_confluence_threshold,
            'initial_strength_threshold': self.initial_strength_threshold,
            'regime_weight_priors': self.regime_weight_priors,
            'config_version': self.config_version,
        }

    def get_config_hash(self) -> str:
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'LearningEngineConfig':
        """Create config from dictionary"""
        config_dict = dict(config_dict)
        return cls(
            degradation=DegradationConfig(**config_dict.pop('degradation', {})),
            optimizer=OptimizerConfig(**config_dict.pop('optimizer', {})),
            **config_dict,
        )
