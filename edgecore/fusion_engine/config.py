"""
Fusion Engine Configuration

Bayesian priors, decision cutoffs, payoff assumptions and calibration
settings for probabilistic signal fusion.
"""

from dataclasses import dataclass, field
from typing import Dict
import hashlib
import json

from edgecore.regime_engine.schemas import FactorType


def _default_priors() -> Dict[str, float]:
    return {
        "technical": 0.52,
        "pattern": 0.54,
        "volume": 0.51,
        "momentum": 0.53,
        "sentiment": 0.56,
        "fundamental": 0.55,
    }


@dataclass
class BayesianConfig:
    """Factor-to-probability conversion"""

    prior_probabilities: Dict[str, float] = field(default_factory=_default_priors)
    default_prior: float = 0.5

    # Strength (1-10) to base probability map
    base_probability_offset: float = 0.51
    probability_per_strength: float = 0.034
    default_confidence: float = 0.7

    probability_floor: float = 0.01
    probability_ceiling: float = 0.99

    def prior_for(self, factor_type: FactorType) -> float:
        return float(self.prior_probabilities.get(factor_type.value, self.default_prior))

    def validate(self):
        for name, prior in self.prior_probabilities.items():
            FactorType.parse(name)
            if not 0 < prior < 1:
                raise ValueError(f"Prior for {name} must be in (0, 1), got {prior}")
        if not 0 < self.probability_floor < 0.5 < self.probability_ceiling < 1:
            raise ValueError("Probability floor/ceiling must satisfy 0 < floor < 0.5 < ceiling < 1")


@dataclass
class DecisionConfig:
    """Signal acceptance and payoff assumptions"""

    max_entropy: float = 0.6          # reject above this uncertainty
    buy_probability: float = 0.6      # p above -> buy
    sell_probability: float = 0.4     # p below -> sell
    min_signal_strength: int = 0      # learned; 0 disables the filter

    expected_return_pct: float = 0.02   # take-profit distance
    expected_loss_pct: float = 0.01     # stop-loss distance
    trading_cost_pct: float = 0.0001    # spread/commission

    kelly_cap: float = 0.25
    kelly_scale: float = 0.5           # fraction of Kelly used for position size
    cvar_limit: float = 0.05
    max_log_odds: float = 10.0

    def validate(self):
        if not 0 < self.max_entropy <= 1:
            raise ValueError("max_entropy must be in (0, 1]")
        if not 0 < self.sell_probability <= 0.5 <= self.buy_probability < 1:
            raise ValueError("Cutoffs must satisfy 0 < sell <= 0.5 <= buy < 1")
        if self.expected_return_pct <= 0 or self.expected_loss_pct <= 0:
            raise ValueError("Expected return/loss percentages must be positive")
        if not 0 < self.kelly_cap <= 1:
            raise ValueError("kelly_cap must be in (0, 1]")
        if self.max_log_odds <= 0:
            raise ValueError("max_log_odds must be positive")


@dataclass
class LearningHooksConfig:
    """Factor performance and calibration tracking"""

    min_uplift_trades: int = 10
    uplift_clamp: float = 0.5
    calibration_history: int = 500
    calibration_window: int = 100
    calibration_min_records: int = 20
    calibration_bucket_min: int = 5
    calibration_bucket_width: float = 0.1

    def validate(self):
        if self.min_uplift_trades < 1:
            raise ValueError("min_uplift_trades must be positive")
        if self.calibration_window > self.calibration_history:
            raise ValueError("calibration_window cannot exceed calibration_history")
        if not 0 < self.calibration_bucket_width <= 0.5:
            raise ValueError("calibration_bucket_width must be in (0, 0.5]")


@dataclass
class FusionEngineConfig:
    """
    Complete Probabilistic Signal Fusion Engine configuration.
    """

    bayesian: BayesianConfig = field(default_factory=BayesianConfig)
    decision: DecisionConfig = field(default_factory=DecisionConfig)
    learning: LearningHooksConfig = field(default_factory=LearningHooksConfig)

    config_version: str = "1.0.0"

    def __post_init__(self):
        self.validate()

    def validate(self):
        self.bayesian.validate()
        self.decision.validate()
        self.learning.validate()

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'bayesian': {
                'prior_probabilities': self.bayesian.prior_probabilities,
                'default_prior': self.bayesian.default_prior,
                'base_probability_offset': self.bayesian.base_probability_offset,
                'probability_per_strength': self.bayesian.probability_per_strength,
                'default_confidence': self.bayesian.default_confidence,
                'probability_floor': self.bayesian.probability_floor,
                'probability_ceiling': self.bayesian.probability_ceiling,
            },
            'decision': {
                'max_entropy': self.decision.max_entropy,
                'buy_probability': self.decision.buy_probability,
                'sell_probability': self.decision.sell_probability,
                'min_signal_strength': self.decision.min_signal_strength,
                'expected_return_pct': self.decision.expected_return_pct,
                'expected_loss_pct': self.decision.expected_loss_pct,
                'trading_cost_pct': self.decision.trading_cost_pct,
                'kelly_cap': self.decision.kelly_cap,
                'kelly_scale': self.decision.kelly_scale,
                'cvar_limit': self.decision.cvar_limit,
                'max_log_odds': self.decision.max_log_odds,
            },
            'learning': {
                'min_uplift_trades': self.learning.min_uplift_trades,
                'uplift_clamp': self.learning.uplift_clamp,
                'calibration_history': self.learning.calibration_history,
                'calibration_window': self.learning.calibration_window,
                'calibration_min_records': self.learning.calibration_min_records,
                'calibration_bucket_min': self.learning.calibration_bucket_min,
                'calibration_bucket_width': self.learning.calibration_bucket_width,
            },
            'config_version': self.config_version,
        }

    def get_config_hash(self) -> str:
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'FusionEngineConfig':
        """Create config from dictionary"""
        return cls(
            bayesian=BayesianConfig(**config_dict.get('bayesian', {})),
            decision=DecisionConfig(**config_dict.get('decision', {})),
            learning=LearningHooksConfig(**config_dict.get('learning', {})),
            config_version=config_dict.get('config_version', '1.0.0'),
        )
