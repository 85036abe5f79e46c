"""
Regime Detection Engine

Classifies the latent market regime from a bounded window of normalized
market observations and exposes regime-conditioned factor weights.

Core Principle:
    Every downstream decision is conditioned on the regime it was made in.

Model:
    - Ten hidden states, one per regime type
    - Gaussian-product emission likelihoods per state
    - Fixed transition probabilities and dwell-time distributions
    - Simplified single-step Viterbi over the last 5 observations
      with a persistence bias for the incumbent regime

Flow:
    Candles/Volume/News → Observation → Regime → Fusion Engine

Responsibilities:
    1. Observation feature extraction
    2. Regime decoding
    3. Transition recording with trigger attribution
    4. Performance-driven factor reweighting on transitions
    5. Regime statistics
"""

from edgecore.regime_engine.config import (
    RegimeEngineConfig,
    ObservationConfig,
    TransitionTriggerConfig,
    WeightAdaptationConfig,
)
from edgecore.regime_engine.schemas import (
    RegimeType,
    FactorType,
    RegimeWeightTable,
    MarketObservation,
    MarketRegime,
    Microstructure,
    RegimeTransition,
    RegimeStatistics,
    DurationDistribution,
)
from edgecore.regime_engine.observation import ObservationBuilder, calculate_rsi
from edgecore.regime_engine.hsmm import HiddenState, build_default_states, decode_regime
from edgecore.regime_engine.engine import RegimeDetectionEngine

__version__ = "1.0.0"

__all__ = [
    'RegimeEngineConfig',
    'ObservationConfig',
    'TransitionTriggerConfig',
    'WeightAdaptationConfig',
    'RegimeType',
    'FactorType',
    'RegimeWeightTable',
    'MarketObservation',
    'MarketRegime',
    'Microstructure',
    'RegimeTransition',
    'RegimeStatistics',
    'DurationDistribution',
    'ObservationBuilder',
    'calculate_rsi',
    'HiddenState',
    'build_default_states',
    'decode_regime',
    'RegimeDetectionEngine',
]
