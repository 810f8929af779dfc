#!/usr/bin/env python3
"""
Generate Signal Script.

Restores the persisted models (and pattern database) of an instrument and
prints the risk-managed trading signal for the latest candle.

Usage:
    python scripts/generate_signal.py --instrument XAUUSD --candles data/XAUUSD_1h.parquet
"""

import sys
import json
import asyncio
import argparse
import logging
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fxsignals.config import SIGNAL_CANDLES, load_settings
from fxsignals.data_loader import load_candles
from fxsignals.trading import JoblibModelStore, LoggingNotifier, TradingSystem


def parse_args():
    parser = argparse.ArgumentParser(
        description="Generate a trading signal from persisted models",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--instrument", required=True, help="Symbol, e.g. GBPJPY")
    parser.add_argument("--candles", required=True, help="Candle file (parquet or CSV)")
    parser.add_argument("--count", type=int, default=SIGNAL_CANDLES, help="Trailing candles used")
    parser.add_argument("--model-dir", default=None, help="Override FXSIGNALS_MODEL_DIR")
    parser.add_argument("--env-file", default=None, help="Optional .env file")
    return parser.parse_args()


async def run(args) -> int:
    settings = load_settings(args.env_file)

    candles = load_candles(args.candles).tail(args.count).reset_index(drop=True)
    system = TradingSystem(
        store=JoblibModelStore(args.model_dir or settings.model_dir, settings.pattern_db_dir),
        notifier=LoggingNotifier(),
    )
    await system.load_models(args.instrument)
    await system.load_pattern_database()

    signal = await system.generate_trading_signal(args.instrument, candles)
    print(json.dumps(signal.to_dict(), indent=2, default=str))
    return 0 if signal.error is None else 1


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
