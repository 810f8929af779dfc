"""
Data Loader Module - OHLCV Candles.

This module is the boundary with the candle store:
- Candle record and DataFrame conversion
- Schema / invariant validation (OHLC consistency, strictly increasing time)
- Parquet / CSV loading
- CandleSource interface with an in-memory implementation

Every candle window is validated here before any indicator is computed.
Invalid data raises InvalidCandleData.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .exceptions import DataUnavailable, InsufficientData, InvalidCandleData
from .labeling import normalize_instrument

logger = logging.getLogger("DataLoader")


# =============================================================================
# SCHEMA
# =============================================================================

PRICE_COLS = ["open", "high", "low", "close"]
CANDLE_COLS = ["timestamp"] + PRICE_COLS + ["volume"]


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar."""
    timestamp: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


# =============================================================================
# CONVERSION
# =============================================================================

def candles_to_frame(
    candles: Union[pd.DataFrame, Iterable[Candle], Iterable[Dict]]
) -> pd.DataFrame:
    """
    Convert candles into the canonical DataFrame layout.

    Accepts a DataFrame (with a ``timestamp`` column or a DatetimeIndex),
    a list of Candle records, or a list of dicts. The result has a
    RangeIndex and the columns in CANDLE_COLS.
    """
    if isinstance(candles, pd.DataFrame):
        df = candles.copy()
        if "timestamp" not in df.columns:
            if isinstance(df.index, pd.DatetimeIndex):
                df = df.rename_axis("timestamp").reset_index()
            else:
                raise InvalidCandleData("Candles need a 'timestamp' column or DatetimeIndex")
    else:
        rows = [c.to_dict() if isinstance(c, Candle) else dict(c) for c in candles]
        df = pd.DataFrame(rows)

    if "volume" not in df.columns:
        df["volume"] = 0.0

    missing = [c for c in CANDLE_COLS if c not in df.columns]
    if missing:
        raise InvalidCandleData(f"Missing candle columns: {missing}")

    df = df[CANDLE_COLS].reset_index(drop=True)
    df["timestamp"] = pd.to_datetime(df["timestamp"])
    df[PRICE_COLS + ["volume"]] = df[PRICE_COLS + ["volume"]].astype(float)
    return df


def frame_to_candles(df: pd.DataFrame) -> List[Candle]:
    """Convert a validated candle frame into Candle records."""
    return [
        Candle(
            timestamp=row.timestamp,
            open=row.open,
            high=row.high,
            low=row.low,
            close=row.close,
            volume=row.volume,
        )
        for row in df.itertuples(index=False)
    ]


# =============================================================================
# VALIDATION
# =============================================================================

def validate_candles(
    candles: Union[pd.DataFrame, Iterable[Candle], Iterable[Dict]],
    min_length: int = 0,
) -> pd.DataFrame:
    """
    Validate a candle window and return it in canonical form.

    Checks:
        - no NaN / non-finite prices
        - low <= min(open, close) and high >= max(open, close)
        - strictly increasing timestamps (no duplicates)
        - at least ``min_length`` rows

    Raises:
        InvalidCandleData: on any invariant violation
        InsufficientData: when fewer than ``min_length`` candles
    """
    df = candles_to_frame(candles)

    if len(df) < min_length:
        raise InsufficientData(min_length, len(df))

    prices = df[PRICE_COLS].to_numpy()
    if not np.isfinite(prices).all():
        raise InvalidCandleData("Candle prices contain NaN or infinite values")

    body_low = np.minimum(df["open"].to_numpy(), df["close"].to_numpy())
    body_high = np.maximum(df["open"].to_numpy(), df["close"].to_numpy())

    bad_low = df["low"].to_numpy() > body_low
    bad_high = df["high"].to_numpy() < body_high
    bad = np.flatnonzero(bad_low | bad_high)
    if len(bad) > 0:
        raise InvalidCandleData(
            f"{len(bad)} candles violate low <= min(open, close) <= max(open, close) <= high "
            f"(first at row {bad[0]})"
        )

    ts = df["timestamp"]
    if len(ts) > 1 and not (ts.diff().iloc[1:] > pd.Timedelta(0)).all():
        raise InvalidCandleData("Candle timestamps must be strictly increasing without duplicates")

    return df


# =============================================================================
# FILE LOADING
# =============================================================================

def load_candles(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load candles from a parquet or CSV file and validate them.

    Args:
        path: .parquet or .csv file with timestamp + OHLCV columns

    Returns:
        Validated candle DataFrame
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Candle file not found: {path}")

    if path.suffix == ".parquet":
        df = pd.read_parquet(path)
    else:
        df = pd.read_csv(path)

    df = validate_candles(df)
    logger.info(f"Loaded {len(df):,} candles from {path.name}: "
                f"{df['timestamp'].iloc[0]} to {df['timestamp'].iloc[-1]}")
    return df


# =============================================================================
# CANDLE SOURCE
# =============================================================================

class CandleSource(ABC):
    """Asynchronous candle provider."""

    @abstractmethod
    async def fetch_candles(self, instrument: str, interval: str, count: int) -> pd.DataFrame:
        """
        Return the most recent ``count`` candles, oldest first.

        Raises:
            DataUnavailable: on transport / lookup failure
        """


class FrameCandleSource(CandleSource):
    """
    Candle source backed by in-memory DataFrames.

    Args:
        frames: mapping of (instrument, interval) or instrument -> candles;
            symbols are normalised ('eur/usd' and 'EURUSD' share an entry)
    """

    def __init__(self, frames: Optional[Dict] = None):
        self._frames: Dict = {}
        for key, df in (frames or {}).items():
            self.add(key, df)

    def add(self, key, candles, interval: Optional[str] = None) -> None:
        if isinstance(key, tuple):
            key, interval = key
        symbol = normalize_instrument(key)
        self._frames[(symbol, interval) if interval is not None else symbol] = validate_candles(candles)

    async def fetch_candles(self, instrument: str, interval: str, count: int) -> pd.DataFrame:
        symbol = normalize_instrument(instrument)
        df = self._frames.get((symbol, interval))
        if df is None:
            df = self._frames.get(symbol)
        if df is None:
            raise DataUnavailable(f"No candles for {instrument} @ {interval}")
        return df.tail(count).reset_index(drop=True)
