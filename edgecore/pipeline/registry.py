"""
Pipeline Registry

Thread-safe map of per-symbol decision pipelines sharing one configuration
and one telemetry sink.
"""

import logging
import threading
from typing import Dict, List, Optional

from edgecore.config import EdgeCoreConfig
from edgecore.observability import TelemetrySink
from edgecore.pipeline.engine import DecisionPipeline

LOG = logging.getLogger(__name__)


class PipelineRegistry:
    def __init__(self, config: Optional[EdgeCoreConfig] = None, telemetry: Optional[TelemetrySink] = None):
        self.config = config or EdgeCoreConfig()
        self.telemetry = telemetry
        self._pipelines: Dict[str, DecisionPipeline] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(symbol: str) -> str:
        key = str(symbol or '').strip().upper()
        if not key:
            raise ValueError("Symbol must be a non-empty string")
        return key

    def get(self, symbol: str) -> Optional[DecisionPipeline]:
        with self._lock:
            return self._pipelines.get(self._key(symbol))

    def get_or_create(self, symbol: str) -> DecisionPipeline:
        key = self._key(symbol)
        with self._lock:
            pipeline = self._pipelines.get(key)
            if pipeline is None:
                pipeline = DecisionPipeline(key, self.config, self.telemetry)
                self._pipelines[key] = pipeline
                LOG.info(f"Registered pipeline for {key}")
            return pipeline

    def remove(self, symbol: str) -> bool:
        with self._lock:
            return self._pipelines.pop(self._key(symbol), None) is not None

    def symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._pipelines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pipelines)
