#!/usr/bin/env python3
"""
Train Instrument Script.

This script:
1. Loads a candle history (parquet / CSV)
2. Restores any persisted models for the instrument
3. Trains the heuristic predictor and the sequence classifier
4. Persists the accepted states and the training sessions

Usage:
    python scripts/train_instrument.py \
        --instrument EURUSD \
        --candles data/EURUSD_1h.parquet \
        --epochs 30
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fxsignals.config import load_settings
from fxsignals.data_loader import FrameCandleSource, load_candles
from fxsignals.exceptions import SignalEngineError
from fxsignals.models.sequence import SequenceModelConfig
from fxsignals.trading import JoblibModelStore, LoggingNotifier, ModelRegistry, TradingSystem


def parse_args():
    parser = argparse.ArgumentParser(
        description="Train the heuristic and sequence models of one instrument",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--instrument", required=True, help="Symbol, e.g. EURUSD or XAUUSD")
    parser.add_argument("--candles", required=True, help="Candle file (parquet or CSV)")
    parser.add_argument("--count", type=int, default=None, help="Use only the last N candles")
    parser.add_argument("--model-dir", default=None, help="Override FXSIGNALS_MODEL_DIR")
    parser.add_argument("--epochs", type=int, default=30, help="Sequence classifier epochs")
    parser.add_argument("--sequence-length", type=int, default=40, help="Sequence classifier window")
    parser.add_argument("--evaluate", action="store_true", help="Run a walk-forward backtest afterwards")
    parser.add_argument("--env-file", default=None, help="Optional .env file")
    return parser.parse_args()


async def run(args) -> int:
    settings = load_settings(args.env_file)
    logger = logging.getLogger("train_instrument")

    candles = load_candles(args.candles)
    count = args.count or len(candles)
    source = FrameCandleSource({args.instrument: candles})

    registry = ModelRegistry(
        sequence_config=SequenceModelConfig(epochs=args.epochs, sequence_length=args.sequence_length)
    )
    system = TradingSystem(
        registry=registry,
        candle_source=source,
        store=JoblibModelStore(args.model_dir or settings.model_dir, settings.pattern_db_dir),
        notifier=LoggingNotifier(),
        interval=settings.default_interval,
    )

    try:
        await system.load_models(args.instrument)
        report = await system.train_instrument(args.instrument, settings.default_interval, count)
        if args.evaluate:
            await system.evaluate_backtest(args.instrument)
    except SignalEngineError as e:
        logger.error(f"Training failed: {e}")
        return 1

    summary = report.to_dict()
    logger.info(f"Heuristic: {summary['heuristic']}")
    logger.info(f"Sequence: {summary['sequence'] or summary['sequence_skipped']}")
    logger.info(f"Performance trend: {summary['trend']}")
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
