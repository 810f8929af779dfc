"""
Labeling Module - Forward-Outcome Direction Labels.

A window ending at entry index i is labelled from the candles that follow it:

  BUY  when max(future high) > entry * (1 + t)
       AND (final close - entry) / entry >= net_ratio * t
  SELL when min(future low)  < entry * (1 - t)
       AND (final close - entry) / entry <= -net_ratio * t
  HOLD otherwise

t is an instrument-class threshold (majors, metals, crosses, ...).
The sequence classifier uses a 20-candle horizon, the heuristic walk-forward
evaluator a 3-candle horizon.
"""

from typing import Dict, Optional

import numpy as np
import pandas as pd

from .config import INSTRUMENT_CLASSES, LABEL_THRESHOLDS, NET_MOVE_RATIO
from .exceptions import UnsupportedInstrument


# Class indices used by the sequence classifier (probability order)
BUY, SELL, HOLD = 0, 1, 2
LABEL_NAMES = {BUY: "BUY", SELL: "SELL", HOLD: "HOLD"}


# =============================================================================
# INSTRUMENT THRESHOLDS
# =============================================================================

def normalize_instrument(instrument: str) -> str:
    """'xau/usd' -> 'XAUUSD'"""
    return instrument.replace("/", "").replace("_", "").upper()


def get_instrument_class(instrument: str) -> str:
    symbol = normalize_instrument(instrument)
    for cls, symbols in INSTRUMENT_CLASSES.items():
        if symbol in symbols:
            return cls
    raise UnsupportedInstrument(instrument)


def get_label_threshold(
    instrument: str,
    overrides: Optional[Dict[str, float]] = None
) -> float:
    """
    Resolve the label threshold for an instrument.

    Args:
        instrument: Symbol, e.g. "EURUSD" or "XAU/USD"
        overrides: Optional per-symbol or per-class threshold overrides

    Raises:
        UnsupportedInstrument: if the symbol maps to no class
    """
    symbol = normalize_instrument(instrument)
    if overrides and symbol in overrides:
        return float(overrides[symbol])

    cls = get_instrument_class(symbol)
    if overrides and cls in overrides:
        return float(overrides[cls])
    return LABEL_THRESHOLDS[cls]


# =============================================================================
# FORWARD OUTCOME
# =============================================================================

def forward_direction(
    entry_price: float,
    future_highs: np.ndarray,
    future_lows: np.ndarray,
    final_close: float,
    threshold: float,
    net_ratio: float = NET_MOVE_RATIO
) -> int:
    """
    Label one forward window.

    Returns:
        BUY, SELL or HOLD class index
    """
    if entry_price <= 0 or len(future_highs) == 0:
        return HOLD

    up_move = (np.max(future_highs) - entry_price) / entry_price
    down_move = (entry_price - np.min(future_lows)) / entry_price
    net_move = (final_close - entry_price) / entry_price

    if up_move > threshold and net_move >= net_ratio * threshold:
        return BUY
    if down_move > threshold and net_move <= -net_ratio * threshold:
        return SELL
    return HOLD


def create_forward_labels(
    df: pd.DataFrame,
    horizon: int,
    threshold: float,
    net_ratio: float = NET_MOVE_RATIO
) -> pd.Series:
    """
    Label every row whose next ``horizon`` candles exist.

    Row i uses close[i] as entry and rows i+1..i+horizon as the future.
    Rows without a full future window are NaN.
    """
    highs = df["high"].to_numpy()
    lows = df["low"].to_numpy()
    closes = df["close"].to_numpy()
    n = len(df)

    labels = np.full(n, np.nan)
    for i in range(n - horizon):
        labels[i] = forward_direction(
            closes[i],
            highs[i + 1:i + 1 + horizon],
            lows[i + 1:i + 1 + horizon],
            closes[i + horizon],
            threshold,
            net_ratio,
        )
    return pd.Series(labels, index=df.index, name="label")


def label_distribution(labels: pd.Series) -> Dict[str, float]:
    """Share of each class among defined labels."""
    counts = labels.dropna().astype(int).value_counts(normalize=True)
    return {LABEL_NAMES[int(k)]: float(v) for k, v in counts.items()}
