"""
Feature Engineering Module - Technical Indicators.

Pure functions over price arrays:
- RSI (Wilder smoothing, seeded by the simple mean of the first period)
- EMA / MACD (EMA seeded by the FIRST PRICE, multiplier 2/(period+1))
- ATR (Wilder-smoothed true range, seeded by the SMA of the first period)
- Momentum (recent-period mean vs preceding-period mean)
- Trend (OLS slope of close against bar index)

Each function raises InsufficientData below its minimum window. The only
neutral defaults live in build_sequence_features and are documented there.
"""

from dataclasses import dataclass, asdict
from typing import Dict

import numpy as np
import pandas as pd

from .config import (
    RSI_PERIOD, MACD_FAST, MACD_SLOW, ATR_PERIOD, MOMENTUM_PERIOD,
    TREND_PERIOD, AVG_ATR_WINDOW, MIN_FEATURE_CANDLES,
    NEUTRAL_RSI, NEUTRAL_MACD, SEQUENCE_WARMUP,
)
from .data_loader import validate_candles
from .exceptions import InsufficientData


SEQUENCE_FEATURES = [
    "open", "high", "low", "close", "volume",
    "rsi", "macd", "atr", "momentum",
]


@dataclass(frozen=True)
class FeatureVector:
    """Scalar indicator snapshot of a trailing candle window."""
    rsi: float
    macd: float
    atr: float
    avg_atr: float
    momentum: float
    trend: float
    volatility: float
    price_change: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def _as_array(values) -> np.ndarray:
    return np.asarray(values, dtype=float)


# =============================================================================
# RSI
# =============================================================================

def rsi_series(prices, period: int = RSI_PERIOD) -> np.ndarray:
    """
    Wilder RSI for every price from index ``period`` onward.

    Returns:
        Array of length len(prices) - period. RSI is 100 wherever the
        smoothed average loss is zero.
    """
    prices = _as_array(prices)
    if len(prices) < period + 1:
        raise InsufficientData(period + 1, len(prices), "prices for RSI")

    changes = np.diff(prices)
    gains = np.where(changes > 0, changes, 0.0)
    losses = np.where(changes < 0, -changes, 0.0)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()

    out = np.empty(len(changes) - period + 1)
    out[0] = _rsi_value(avg_gain, avg_loss)
    for j, i in enumerate(range(period, len(changes)), start=1):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out[j] = _rsi_value(avg_gain, avg_loss)
    return out


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def calculate_rsi(prices, period: int = RSI_PERIOD) -> float:
    """Latest Wilder RSI value in [0, 100]."""
    return float(rsi_series(prices, period)[-1])


# =============================================================================
# EMA / MACD
# =============================================================================

def calculate_ema(prices, period: int) -> np.ndarray:
    """EMA with multiplier 2/(period+1), seeded by the first price."""
    prices = _as_array(prices)
    if len(prices) == 0:
        raise InsufficientData(1, 0, "prices for EMA")
    return pd.Series(prices).ewm(span=period, adjust=False).mean().to_numpy()


def calculate_macd(prices, fast: int = MACD_FAST, slow: int = MACD_SLOW) -> float:
    """MACD line (EMA(fast) - EMA(slow)) at the last price."""
    prices = _as_array(prices)
    if len(prices) < slow:
        raise InsufficientData(slow, len(prices), "prices for MACD")
    return float(calculate_ema(prices, fast)[-1] - calculate_ema(prices, slow)[-1])


# =============================================================================
# ATR
# =============================================================================

def true_range(highs, lows, closes) -> np.ndarray:
    """True range for bars 1..n-1 (bar 0 has no previous close)."""
    highs, lows, closes = _as_array(highs), _as_array(lows), _as_array(closes)
    prev_close = closes[:-1]
    return np.maximum.reduce([
        highs[1:] - lows[1:],
        np.abs(highs[1:] - prev_close),
        np.abs(lows[1:] - prev_close),
    ])


def atr_series(highs, lows, closes, period: int = ATR_PERIOD) -> np.ndarray:
    """
    Wilder ATR values, the first one aligned with bar ``period``.

    Returns:
        Array of length len(closes) - period
    """
    n = len(closes)
    if n < period + 1:
        raise InsufficientData(period + 1, n, "candles for ATR")

    tr = true_range(highs, lows, closes)
    out = np.empty(len(tr) - period + 1)
    out[0] = tr[:period].mean()
    for j, i in enumerate(range(period, len(tr)), start=1):
        out[j] = (out[j - 1] * (period - 1) + tr[i]) / period
    return out


def calculate_atr(highs, lows, closes, period: int = ATR_PERIOD) -> float:
    """Latest Wilder ATR."""
    return float(atr_series(highs, lows, closes, period)[-1])


# =============================================================================
# MOMENTUM / TREND
# =============================================================================

def calculate_momentum(prices, period: int = MOMENTUM_PERIOD) -> float:
    """Relative change of the mean of the last ``period`` prices vs the previous ``period``."""
    prices = _as_array(prices)
    if len(prices) < 2 * period:
        raise InsufficientData(2 * period, len(prices), "prices for momentum")
    recent = prices[-period:].mean()
    older = prices[-2 * period:-period].mean()
    if older == 0:
        return 0.0
    return float((recent - older) / older)


def calculate_trend(prices, period: int = TREND_PERIOD) -> float:
    """OLS slope of the last ``period`` prices against their bar index."""
    prices = _as_array(prices)
    if len(prices) < period:
        raise InsufficientData(period, len(prices), "prices for trend")
    y = prices[-period:]
    slope, _ = np.polyfit(np.arange(period, dtype=float), y, 1)
    return float(slope)


# =============================================================================
# FEATURE AGGREGATION
# =============================================================================

def calculate_features(candles) -> FeatureVector:
    """
    Compute the FeatureVector of a trailing window.

    Args:
        candles: candle window (>= 30 rows), last row is the most recent bar

    Returns:
        FeatureVector using only the rows of ``candles``
    """
    df = validate_candles(candles, min_length=MIN_FEATURE_CANDLES)

    closes = df["close"].to_numpy()
    highs = df["high"].to_numpy()
    lows = df["low"].to_numpy()

    atrs = atr_series(highs, lows, closes, ATR_PERIOD)
    atr = float(atrs[-1])
    avg_atr = float(atrs[-AVG_ATR_WINDOW:].mean()) if len(atrs) > AVG_ATR_WINDOW else atr

    close = closes[-1]
    return FeatureVector(
        rsi=calculate_rsi(closes, RSI_PERIOD),
        macd=calculate_macd(closes, MACD_FAST, MACD_SLOW),
        atr=atr,
        avg_atr=avg_atr,
        momentum=calculate_momentum(closes, MOMENTUM_PERIOD),
        trend=calculate_trend(closes, TREND_PERIOD),
        volatility=atr / close if close else 0.0,
        price_change=float((closes[-1] - closes[-2]) / closes[-2]) if closes[-2] else 0.0,
    )


def build_sequence_features(candles, warmup: int = SEQUENCE_WARMUP) -> pd.DataFrame:
    """
    Per-candle features for the sequence classifier.

    Every row uses only candles at or before it. Rows without enough
    history for an indicator get an explicit neutral value:
        - rsi  -> NEUTRAL_RSI (50.0) for the first RSI_PERIOD rows
        - macd -> NEUTRAL_MACD (0.0) for the first MACD_SLOW - 1 rows
    The first ``warmup`` rows are then dropped, which also removes the rows
    where ATR and momentum are undefined.

    Returns:
        DataFrame with ``timestamp`` + SEQUENCE_FEATURES, original row
        positions kept in the index
    """
    df = validate_candles(candles, min_length=warmup + 1)
    closes = df["close"].to_numpy()
    n = len(df)

    out = df[["timestamp", "open", "high", "low", "close", "volume"]].copy()

    rsi = np.full(n, NEUTRAL_RSI)
    rsi[RSI_PERIOD:] = rsi_series(closes, RSI_PERIOD)
    out["rsi"] = rsi

    macd = calculate_ema(closes, MACD_FAST) - calculate_ema(closes, MACD_SLOW)
    macd[:MACD_SLOW - 1] = NEUTRAL_MACD
    out["macd"] = macd

    atr = np.full(n, np.nan)
    if n > ATR_PERIOD:
        atr[ATR_PERIOD:] = atr_series(df["high"], df["low"], closes, ATR_PERIOD)
    out["atr"] = atr

    mean_close = df["close"].rolling(MOMENTUM_PERIOD).mean()
    out["momentum"] = mean_close / mean_close.shift(MOMENTUM_PERIOD) - 1.0

    out = out.iloc[warmup:]
    if out[SEQUENCE_FEATURES].isna().any().any():
        # warmup shorter than the indicator windows
        raise InsufficientData(2 * MOMENTUM_PERIOD, warmup, "warmup rows")
    return out
