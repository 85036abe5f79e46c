"""
EdgeCore Configuration

Composes the four engine configurations with the telemetry settings so a
whole decision stack can be described, hashed and loaded from one file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union
import hashlib
import json

from edgecore.fusion_engine.config import FusionEngineConfig
from edgecore.learning_engine.config import LearningEngineConfig
from edgecore.regime_engine.config import RegimeEngineConfig
from edgecore.threshold_engine.config import ThresholdEngineConfig


@dataclass
class TelemetryConfig:
    log_file: Optional[str] = None        # JSON-lines output, disabled when None
    buffer_size: int = 1000

    def validate(self):
        if self.buffer_size < 1:
            raise ValueError("Telemetry buffer_size must be at least 1")


@dataclass
class EdgeCoreConfig:
    """Complete decision-stack configuration"""

    regime: RegimeEngineConfig = field(default_factory=RegimeEngineConfig)
    fusion: FusionEngineConfig = field(default_factory=FusionEngineConfig)
    threshold: ThresholdEngineConfig = field(default_factory=ThresholdEngineConfig)
    learning: LearningEngineConfig = field(default_factory=LearningEngineConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    config_version: str = "1.0.0"

    def __post_init__(self):
        self.validate()

    def validate(self):
        # Engine configs validate themselves on construction
        self.telemetry.validate()

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'regime': self.regime.to_dict(),
            'fusion': self.fusion.to_dict(),
            'threshold': self.threshold.to_dict(),
            'learning': self.learning.to_dict(),
            'telemetry': {
                'log_file': self.telemetry.log_file,
                'buffer_size': self.telemetry.buffer_size,
            },
            'config_version': self.config_version,
        }

    def get_config_hash(self) -> str:
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'EdgeCoreConfig':
        """Create config from dictionary. Missing sections keep their defaults."""
        config_dict = dict(config_dict)
        kwargs = {}
        if 'regime' in config_dict:
            kwargs['regime'] = RegimeEngineConfig.from_dict(config_dict.pop('regime'))
        if 'fusion' in config_dict:
            kwargs['fusion'] = FusionEngineConfig.from_dict(config_dict.pop('fusion'))
        if 'threshold' in config_dict:
            kwargs['threshold'] = ThresholdEngineConfig.from_dict(config_dict.pop('threshold'))
        if 'learning' in config_dict:
            kwargs['learning'] = LearningEngineConfig.from_dict(config_dict.pop('learning'))
        if 'telemetry' in config_dict:
            kwargs['telemetry'] = TelemetryConfig(**config_dict.pop('telemetry'))
        return cls(**kwargs, **config_dict)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> 'EdgeCoreConfig':
        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))
