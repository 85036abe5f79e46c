"""
Tests for telemetry and the CLI
"""

import json
import pytest
import numpy as np
import pandas as pd

from edgecore.cli import main, replay_regimes
from edgecore.config import EdgeCoreConfig
from edgecore.observability import (
    CorrelationContext,
    TelemetryEventType,
    TelemetrySink,
)


@pytest.fixture
def sink():
    return TelemetrySink(buffer_size=5)


@pytest.fixture(autouse=True)
def fresh_correlation():
    CorrelationContext.clear()
    yield
    CorrelationContext.clear()


class TestTelemetrySink:
    """Test record buffering and fan-out."""

    def test_emit_and_filter(self, sink):
        """Records can be filtered by event type and symbol."""
        sink.emit(TelemetryEventType.SIGNAL_REJECTED, 'threshold', 'low confluence', symbol='EURUSD')
        sink.emit(TelemetryEventType.SIGNAL_ACCEPTED, 'pipeline', 'accepted', symbol='EURUSD')
        sink.emit(TelemetryEventType.SIGNAL_ACCEPTED, 'pipeline', 'accepted', symbol='GBPUSD')

        assert len(sink.get_recent()) == 3
        assert len(sink.get_recent(TelemetryEventType.SIGNAL_ACCEPTED)) == 2
        assert len(sink.get_recent(TelemetryEventType.SIGNAL_ACCEPTED, symbol='GBPUSD')) == 1
        assert sink.get_event_counts() == {'signal_rejected': 1, 'signal_accepted': 2}

    def test_buffer_is_bounded(self, sink):
        """Only the newest records are kept."""
        for i in range(8):
            sink.emit(TelemetryEventType.SYSTEM_HEALTH, 'learning', f"health {i}")

        records = sink.get_recent()
        assert len(records) == 5
        assert records[-1].message == "health 7"

    def test_limit(self, sink):
        """limit returns the tail; zero returns nothing."""
        for i in range(3):
            sink.emit(TelemetryEventType.SYSTEM_HEALTH, 'learning', f"health {i}")

        assert [r.message for r in sink.get_recent(limit=2)] == ["health 1", "health 2"]
        assert sink.get_recent(limit=0) == []

    def test_subscriber_failure_isolated(self, sink):
        """A failing subscriber does not stop delivery to the others."""
        received = []

        def broken(record):
            raise RuntimeError("boom")

        sink.subscribe(broken)
        sink.subscribe(received.append)
        record = sink.emit(TelemetryEventType.REGIME_TRANSITION, 'regime', 'switched')

        assert received == [record]

    def test_log_file_json_lines(self, tmp_path):
        """Records are appended to the log file one JSON object per line."""
        log_file = tmp_path / "telemetry.jsonl"
        sink = TelemetrySink(log_file=str(log_file))
        sink.emit(TelemetryEventType.THRESHOLD_ADAPTATION, 'threshold', 'relaxed', payload={'entropy': 0.9})
        sink.emit(TelemetryEventType.PARAMETER_ADAPTATION, 'learning', 'applied')

        lines = log_file.read_text(encoding='utf-8').splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first['event_type'] == 'threshold_adaptation'
        assert first['payload'] == {'entropy': 0.9}

    def test_clear(self, sink):
        """clear empties the buffer."""
        sink.emit(TelemetryEventType.SYSTEM_HEALTH, 'learning', 'ok')
        sink.clear()
        assert sink.get_recent() == []


class TestCorrelationContext:
    """Test correlation IDs."""

    def test_records_share_correlation_id(self, sink):
        """Records emitted under one context share its ID."""
        CorrelationContext.set_correlation_id("cycle-1")
        a = sink.emit(TelemetryEventType.SIGNAL_REJECTED, 'fusion', 'entropy')
        b = sink.emit(TelemetryEventType.SIGNAL_REJECTED, 'threshold', 'confluence')

        assert a.correlation_id == b.correlation_id == "cycle-1"

    def test_generated_id_is_stable(self):
        """Without an explicit ID one is generated and reused."""
        first = CorrelationContext.get_correlation_id()
        assert CorrelationContext.get_correlation_id() == first
        CorrelationContext.clear()
        assert CorrelationContext.get_correlation_id() != first


class TestCLI:
    """Test command-line entry points."""

    def test_config_command(self, capsys):
        """config prints the configuration as JSON."""
        assert main(['config']) == 0
        data = json.loads(capsys.readouterr().out)
        assert set(data) >= {'regime', 'fusion', 'threshold', 'learning'}

    def test_invalid_config_file(self, tmp_path):
        """A missing config file exits with status 1."""
        assert main(['--config', str(tmp_path / 'missing.json'), 'config']) == 1

    def test_replay_regimes(self):
        """Replay produces one path entry per bar and ends in a bullish trend."""
        n = 40
        close = 1.1 * np.cumprod(np.full(n, 1.002))
        candles = pd.DataFrame({
            'open': close / 1.001,
            'high': close * 1.0005,
            'low': close * 0.9995,
            'close': close,
            'volume': 1000 + 50 * np.arange(n),
            'timestamp': pd.date_range('2024-03-04 08:00', periods=n, freq='15min', tz='UTC'),
        })

        path, stats = replay_regimes(candles, EdgeCoreConfig())

        assert len(path) == n
        assert path[0]['regime'] == 'ranging_tight'
        assert path[-1]['regime'] == 'trending_bullish'
        assert stats.current_regime.regime_type.value == 'trending_bullish'

    def test_regimes_command(self, tmp_path):
        """regimes reads a CSV and writes the path."""
        n = 30
        close = 1.1 * np.cumprod(np.full(n, 1.002))
        csv = tmp_path / "candles.csv"
        pd.DataFrame({
            'Open': close, 'High': close * 1.0005, 'Low': close * 0.9995,
            'Close': close, 'Volume': 1000.0,
        }).to_csv(csv, index=False)
        output = tmp_path / "path.json"

        assert main(['regimes', '--input', str(csv), '--output', str(output)]) == 0
        assert len(json.loads(output.read_text())) == n
