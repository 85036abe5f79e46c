"""
EdgeCore CLI

Command-line tools for the decision engine.

Usage:
    python -m edgecore.cli regimes --input candles.csv
    python -m edgecore.cli config
"""

import argparse
import sys
import logging
from pathlib import Path
from typing import List, Optional, Tuple
import pandas as pd
import json

from edgecore.config import EdgeCoreConfig
from edgecore.regime_engine.engine import RegimeDetectionEngine
from edgecore.regime_engine.schemas import RegimeStatistics

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
LOG = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="EdgeCore Decision Engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Replay regime detection over a candle file
    python -m edgecore.cli regimes --input data/EURUSD_15m.csv

    # Replay with custom config and save the regime path
    python -m edgecore.cli regimes --input data/EURUSD_15m.csv --config my_config.json --output path.json

    # Dump the default configuration
    python -m edgecore.cli config > edgecore.json
        """
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to custom config JSON file"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    regimes = subparsers.add_parser("regimes", help="Replay regime detection bar by bar")
    regimes.add_argument(
        "--input",
        type=str,
        required=True,
        help="Input CSV with open/high/low/close[/volume][/timestamp] columns"
    )
    regimes.add_argument(
        "--output",
        type=str,
        help="Write the per-bar regime path as JSON"
    )

    subparsers.add_parser("config", help="Print the configuration as JSON")
    return parser


def load_config(path: Optional[str]) -> EdgeCoreConfig:
    if path:
        LOG.info(f"Loading config from {path}")
        return EdgeCoreConfig.from_json_file(path)
    return EdgeCoreConfig()


def replay_regimes(candles: pd.DataFrame, config: EdgeCoreConfig) -> Tuple[List[dict], RegimeStatistics]:
    """Run regime detection on every growing prefix of the candle file"""
    engine = RegimeDetectionEngine(config.regime)
    lookback = config.regime.observation.candle_lookback
    timestamps = (
        pd.to_datetime(candles['timestamp'], utc=True) if 'timestamp' in candles.columns else None
    )

    path = []
    for end in range(1, len(candles) + 1):
        window = candles.iloc[max(0, end - lookback):end]
        when = timestamps.iloc[end - 1].to_pydatetime() if timestamps is not None else None
        regime = engine.detect_current_regime(window, timestamp=when)
        path.append({
            'bar': end - 1,
            'timestamp': when.isoformat() if when is not None else None,
            'regime': regime.regime_type.value,
            'confidence': round(regime.confidence, 4),
            'strength': round(regime.strength, 4),
        })

    stats = engine.get_regime_statistics()
    LOG.info(f"Replayed {len(path)} bars, {len(stats.regime_history)} transitions")
    return path, stats


def run_regimes(args, config: EdgeCoreConfig) -> bool:
    input_path = Path(args.input)
    try:
        candles = pd.read_csv(input_path)
        candles.columns = [str(c).lower() for c in candles.columns]
        LOG.info(f"Loaded {len(candles)} bars from {input_path}")
    except (OSError, pd.errors.ParserError) as e:
        LOG.error(f"Failed to load {input_path}: {e}")
        return False

    if 'close' not in candles.columns:
        LOG.error(f"{input_path} has no close column")
        return False

    path, stats = replay_regimes(candles, config)

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(path, f, indent=2)
        LOG.info(f"✓ Regime path written to {args.output}")

    # Compress the path into runs
    runs = []
    for step in path:
        if runs and runs[-1]['regime'] == step['regime']:
            runs[-1]['bars'] += 1
        else:
            runs.append({'regime': step['regime'], 'start': step['bar'], 'bars': 1})

    print("\n" + "="*70)
    print(f"REGIME REPLAY: {input_path.name}")
    print("="*70)
    for run in runs:
        print(f"  bar {run['start']:>6}  {run['regime']:<18} x{run['bars']}")
    print("-"*70)
    print(f"Bars:             {len(path)}")
    print(f"Transitions:      {len(stats.regime_history)}")
    print(f"Final regime:     {stats.current_regime.regime_type.value}")
    for regime, minutes in stats.average_regime_duration.items():
        print(f"Avg duration:     {regime.value:<18} {minutes:.1f} min")
    print("="*70)
    return True


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
    except (OSError, TypeError, ValueError) as e:
        LOG.error(f"Invalid configuration: {e}")
        return 1

    if args.command == "config":
        print(json.dumps(config.to_dict(), indent=2, sort_keys=True))
        return 0

    return 0 if run_regimes(args, config) else 1


if __name__ == "__main__":
    sys.exit(main())
