"""
Decision Telemetry

Structured record sink for the diagnostics the engines emit:
1. Signal rejections (fusion and threshold stages)
2. Regime transitions
3. Threshold adaptations and forced adjustments
4. Learning parameter adaptations
5. System health summaries

Records are kept in a bounded in-memory buffer, optionally appended to a
JSON-lines file, and fanned out to subscriber callbacks.
"""

import json
import logging
import threading
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from edgecore.timeutils import ensure_utc

LOG = logging.getLogger(__name__)


class TelemetryEventType(Enum):
    """Event types emitted by the decision engines"""
    SIGNAL_ACCEPTED = "signal_accepted"
    SIGNAL_REJECTED = "signal_rejected"
    REGIME_TRANSITION = "regime_transition"
    THRESHOLD_ADAPTATION = "threshold_adaptation"
    PARAMETER_ADAPTATION = "parameter_adaptation"
    SYSTEM_HEALTH = "system_health"


class CorrelationContext:
    """Thread-local correlation ID so records from one cycle can be joined"""
    _local = threading.local()

    @classmethod
    def set_correlation_id(cls, correlation_id: str):
        cls._local.correlation_id = correlation_id

    @classmethod
    def get_correlation_id(cls) -> str:
        if not hasattr(cls._local, 'correlation_id'):
            cls._local.correlation_id = str(uuid.uuid4())
        return cls._local.correlation_id

    @classmethod
    def clear(cls):
        if hasattr(cls._local, 'correlation_id'):
            delattr(cls._local, 'correlation_id')


@dataclass
class TelemetryRecord:
    """One structured diagnostic record"""
    timestamp: datetime
    correlation_id: str
    event_type: TelemetryEventType
    source: str
    message: str
    symbol: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization"""
        return {
            'timestamp': self.timestamp.isoformat(),
            'correlation_id': self.correlation_id,
            'event_type': self.event_type.value,
            'source': self.source,
            'message': self.message,
            'symbol': self.symbol,
            'payload': self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class TelemetrySink:
    """
    Structured telemetry sink.

    Writes to:
    - Memory buffer (bounded, for API queries and tests)
    - File (JSON lines, optional)
    - Subscribers (callables receiving each TelemetryRecord)
    """

    def __init__(self, log_file: Optional[str] = None, buffer_size: int = 1000):
        self.log_file = log_file
        self.buffer: deque = deque(maxlen=buffer_size)
        self._subscribers: List[Callable[[TelemetryRecord], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[TelemetryRecord], None]):
        """Register a callback invoked for every emitted record"""
        with self._lock:
            self._subscribers.append(callback)

    def emit(
        self,
        event_type: TelemetryEventType,
        source: str,
        message: str,
        symbol: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> TelemetryRecord:
        """Record one structured event"""
        record = TelemetryRecord(
            timestamp=ensure_utc(timestamp),
            correlation_id=CorrelationContext.get_correlation_id(),
            event_type=event_type,
            source=source,
            message=message,
            symbol=symbol,
            payload=payload or {},
        )

        with self._lock:
            self.buffer.append(record)
            subscribers = list(self._subscribers)
            if self.log_file:
                with open(self.log_file, 'a', encoding='utf-8') as f:
                    f.write(record.to_json() + '\n')

        LOG.debug(f"[{event_type.value}] {message}")

        for callback in subscribers:
            try:
                callback(record)
            except Exception as e:
                LOG.error(f"Telemetry subscriber failed: {e}")

        return record

    def get_recent(
        self,
        event_type: Optional[TelemetryEventType] = None,
        limit: int = 100,
        symbol: Optional[str] = None,
    ) -> List[TelemetryRecord]:
        """Most recent records, optionally filtered"""
        with self._lock:
            records = list(self.buffer)
        if event_type is not None:
            records = [r for r in records if r.event_type == event_type]
        if symbol is not None:
            records = [r for r in records if r.symbol == symbol]
        return records[-limit:] if limit > 0 else []

    def get_event_counts(self) -> Dict[str, int]:
        """Number of buffered records per event type"""
        with self._lock:
            counts = Counter(r.event_type.value for r in self.buffer)
        return dict(counts)

    def clear(self):
        with self._lock:
            self.buffer.clear()
