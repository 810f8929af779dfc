#!/usr/bin/env python3
"""
Mine Historical Analogs Script.

Scans a candle history for windows that preceded a significant move,
stores the unique analogs in the pattern database and prints summary
statistics.

Usage:
    python scripts/mine_patterns.py --instrument EURUSD --candles data/EURUSD_1h.parquet
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fxsignals.config import AnalogMinerConfig, load_settings
from fxsignals.data_loader import load_candles
from fxsignals.exceptions import SignalEngineError
from fxsignals.patterns import AnalogMiner
from fxsignals.trading import JoblibModelStore, TradingSystem


def parse_args():
    parser = argparse.ArgumentParser(
        description="Mine historical analogs into the pattern database",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--instrument", required=True, help="Symbol, e.g. EURUSD")
    parser.add_argument("--candles", required=True, help="Candle file (parquet or CSV)")
    parser.add_argument("--min-roi", type=float, default=2.0, help="Minimum analog ROI (%%)")
    parser.add_argument("--env-file", default=None, help="Optional .env file")
    return parser.parse_args()


async def run(args) -> int:
    settings = load_settings(args.env_file)
    logger = logging.getLogger("mine_patterns")

    system = TradingSystem(
        store=JoblibModelStore(settings.model_dir, settings.pattern_db_dir),
        analog_miner=AnalogMiner(AnalogMinerConfig(min_roi=args.min_roi)),
    )
    # Extend the existing database rather than replacing it
    await system.load_pattern_database()

    try:
        analogs = await system.mine_patterns(args.instrument, load_candles(args.candles))
    except SignalEngineError as e:
        logger.error(f"Mining failed: {e}")
        return 1

    stats = system.analog_miner.system_stats()
    logger.info(f"{args.instrument}: {len(analogs)} analogs stored")
    logger.info(f"Database: {stats['total_patterns']} patterns, avg ROI {stats['avg_roi']:.2f}%")
    logger.info(f"Success types: {stats['success_types']}")
    return 0


def main():
    args = parse_args()
    settings = load_settings(args.env_file)
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
