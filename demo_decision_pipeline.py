"""
Decision Pipeline Demo

Walks one symbol through the full feedback loop:
regime detection → fusion → threshold gate → outcomes → learning.
"""

from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd

from edgecore import DecisionPipeline, TelemetrySink
from edgecore.fusion_engine import FactorSignal
from edgecore.learning_engine import OutcomeData


def generate_trending_candles(n_bars: int = 60, start_price: float = 1.1000) -> pd.DataFrame:
    """Synthetic 15-minute bars with a steady uptrend and rising volume."""
    np.random.seed(42)

    close = start_price * np.cumprod(np.full(n_bars, 1.002))
    noise = np.random.uniform(0.9998, 1.0002, n_bars)
    close = close * noise

    df = pd.DataFrame({
        'open': close / 1.001,
        'high': close * 1.0005,
        'low': close * 0.9995,
        'close': close,
        'volume': 1000 + 50 * np.arange(n_bars),
    })
    df['timestamp'] = pd.date_range('2024-03-04 08:00', periods=n_bars, freq='15min', tz='UTC')
    return df


def demo_factors():
    return [
        FactorSignal(name="ema_cross", factor_type="technical", strength=8, confidence=0.9, signal="buy"),
        FactorSignal(name="bull_flag", factor_type="pattern", strength=7, confidence=0.8, signal="buy"),
        FactorSignal(name="volume_thrust", factor_type="volume", strength=7, confidence=0.85, signal="buy"),
        FactorSignal(name="roc", factor_type="momentum", strength=8, confidence=0.9, signal="buy"),
        FactorSignal(name="headline_tone", factor_type="news", strength=6, confidence=0.7, signal="buy"),
    ]


def demo_cycle(pipeline: DecisionPipeline, candles: pd.DataFrame):
    print("=" * 80)
    print("DEMO 1: Evaluation cycle")
    print("=" * 80)

    output = None
    for end in range(20, len(candles) + 1):
        window = candles.iloc[end - 20:end]
        output = pipeline.evaluate_cycle(
            window, demo_factors(), confluence_score=24.0,
            timestamp=window['timestamp'].iloc[-1].to_pydatetime(),
        )

    regime = output.regime
    print(f"\nRegime:        {regime.regime_type.value} (confidence {regime.confidence:.2f})")
    print(f"Probability:   {output.fusion.probability:.4f}")
    print(f"Entropy:       {output.fusion.entropy:.4f}")
    if output.accepted:
        s = output.signal
        print(f"Signal:        {s.signal_type.value} @ {s.entry_price:.5f}")
        print(f"Net edge:      {s.net_edge:.6f}")
        print(f"Kelly:         {s.kelly_fraction:.4f} → position {s.optimal_position_size:.4f}")
        print(f"Stop / target: {s.stop_loss:.5f} / {s.take_profit:.5f}")
    else:
        print(f"Rejected at {output.rejection_stage.value}: {output.rejection_reason}")
    return output


def demo_feedback(pipeline: DecisionPipeline):
    print("\n" + "=" * 80)
    print("DEMO 2: Outcome feedback")
    print("=" * 80)

    now = datetime.now(timezone.utc)
    for i in range(60):
        win = i % 10 < 7
        pipeline.report_outcome(OutcomeData(
            signal_id=f"demo_{i}",
            entry_price=1.1,
            entry_time=now - timedelta(minutes=15 * (60 - i)),
            actual_return=0.02 if win else -0.01,
            predicted_return=0.015,
            signal_strength=4 + i % 5,
            confluence_score=10 + i % 20,
            regime="trending_bullish",
            was_correct_direction=win,
            factor_types=("technical", "momentum"),
        ))

    health = pipeline.learning_engine.get_system_health()
    metrics = pipeline.learning_engine.performance.metrics
    print(f"\nOutcomes:      {len(pipeline.learning_engine.outcome_history)}")
    print(f"Win rate:      {metrics.win_rate:.1f}%")
    print(f"Sharpe:        {metrics.sharpe_ratio:.2f}")
    print(f"Health:        {health.overall_health.value} ({health.health_score:.0f})")
    for issue in health.issues:
        print(f"  issue: {issue}")
    for rec in health.recommendations:
        print(f"  recommendation: {rec}")

    records = pipeline.recalibrate()
    print(f"\nRecalibration applied {len(records)} change(s)")
    for record in records:
        print(f"  {record.parameter}: {record.old_value} → {record.new_value}")


def demo_thresholds(pipeline: DecisionPipeline):
    print("\n" + "=" * 80)
    print("DEMO 3: Threshold control")
    print("=" * 80)

    before = pipeline.get_thresholds()
    relaxed = pipeline.force_threshold_adjustment("relax")
    print(f"\nEntropy bound: {before.entropy.current:.3f} → {relaxed.entropy.current:.3f}")
    print(f"Confluence:    {before.confluence.adaptive:.1f} → {relaxed.confluence.adaptive:.1f}")

    analytics = pipeline.get_threshold_analytics()
    for rec in analytics['recommendations']:
        print(f"  {rec}")


if __name__ == "__main__":
    telemetry = TelemetrySink()
    pipeline = DecisionPipeline("EURUSD", telemetry=telemetry)

    demo_cycle(pipeline, generate_trending_candles())
    demo_feedback(pipeline)
    demo_thresholds(pipeline)

    print("\n" + "=" * 80)
    print("Telemetry events:", telemetry.get_event_counts())
    print("=" * 80)
