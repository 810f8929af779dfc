"""
Pattern signatures for the historical analog miner.

A signature summarises a candle window: its normalised shape, trend,
volatility, support/resistance, volume behaviour and indicator state.
Signatures are compared with ``signature_similarity``.

EMA convention in this module: seeded by the SIMPLE MEAN of the first
``period`` prices (the indicator library seeds with the first price).
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from ..feature_engineering import atr_series, rsi_series

SHAPE_POINTS = 20


@dataclass
class PatternSignature:
    """Shape and context descriptors of one candle window."""
    normalized_prices: List[float]
    normalized_highs: List[float]
    normalized_lows: List[float]
    trend: Dict
    trend_consistency: float
    volatility_profile: Dict
    volatility_trend: Dict
    support_resistance: Dict
    key_levels: List[Dict]
    volume_pattern: Optional[Dict]
    volume_confirmation: Optional[Dict]
    indicators: Dict
    momentum_profile: Dict
    geometric_features: Dict
    metadata: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "PatternSignature":
        return cls(**data)


# =============================================================================
# NUMERIC HELPERS
# =============================================================================

def normalize_series(values: np.ndarray) -> np.ndarray:
    """Min-max scale to [0, 1]; a flat series maps to 0.5."""
    lo, hi = values.min(), values.max()
    if hi == lo:
        return np.full(len(values), 0.5)
    return (values - lo) / (hi - lo)


def linear_regression(values: np.ndarray) -> Dict[str, float]:
    """OLS fit against the index: slope, intercept and R squared."""
    n = len(values)
    if n < 2:
        return {"slope": 0.0, "intercept": float(values[0]) if n else 0.0, "r_squared": 0.0}
    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, values, 1)
    fitted = slope * x + intercept
    ss_res = np.sum((values - fitted) ** 2)
    ss_tot = np.sum((values - values.mean()) ** 2)
    r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0
    return {"slope": float(slope), "intercept": float(intercept), "r_squared": float(r_squared)}


def skewness(values: np.ndarray) -> float:
    std = values.std()
    if std == 0:
        return 0.0
    return float(np.mean(((values - values.mean()) / std) ** 3))


def correlation(x: np.ndarray, y: np.ndarray) -> float:
    n = min(len(x), len(y))
    if n == 0:
        return 0.0
    x, y = x[:n] - x[:n].mean(), y[:n] - y[:n].mean()
    denom = np.sqrt(np.sum(x * x) * np.sum(y * y))
    return float(np.sum(x * y) / denom) if denom > 0 else 0.0


def sma_seeded_ema(values: np.ndarray, period: int) -> np.ndarray:
    """EMA whose first value is the SMA of the first ``period`` values."""
    if len(values) < period:
        return np.empty(0)
    k = 2.0 / (period + 1)
    out = np.empty(len(values) - period + 1)
    out[0] = values[:period].mean()
    for j, price in enumerate(values[period:], start=1):
        out[j] = price * k + out[j - 1] * (1 - k)
    return out


def find_local_extremes(values: np.ndarray, kind: str = "max", lookback: int = 3) -> List[Dict]:
    """Strict local maxima / minima over +/- ``lookback`` bars."""
    extremes = []
    for i in range(lookback, len(values) - lookback):
        neighbours = np.concatenate([values[i - lookback:i], values[i + 1:i + lookback + 1]])
        if kind == "max" and np.all(neighbours < values[i]):
            extremes.append({"index": i, "price": float(values[i])})
        elif kind == "min" and np.all(neighbours > values[i]):
            extremes.append({"index": i, "price": float(values[i])})
    return extremes


# =============================================================================
# DESCRIPTORS
# =============================================================================

def trend_strength(prices: np.ndarray) -> Dict:
    if len(prices) < 2 or prices[0] == 0:
        return {"total_move": 0.0, "strength": 0.0, "direction": "sideways",
                "slope": 0.0, "r_squared": 0.0}
    total_move = (prices[-1] - prices[0]) / prices[0]
    reg = linear_regression(prices)
    strength = abs(reg["slope"]) / prices.mean() if prices.mean() else 0.0
    if total_move > 0.005:
        direction = "up"
    elif total_move < -0.005:
        direction = "down"
    else:
        direction = "sideways"
    return {
        "total_move": float(total_move),
        "strength": float(strength),
        "direction": direction,
        "slope": reg["slope"],
        "r_squared": reg["r_squared"],
    }


def trend_consistency(prices: np.ndarray) -> float:
    """Share of bar-to-bar moves that agree with the overall move."""
    if len(prices) < 3:
        return 0.0
    moves = np.diff(prices)
    overall = prices[-1] - prices[0]
    if overall > 0:
        consistent = np.sum(moves >= 0)
    elif overall < 0:
        consistent = np.sum(moves <= 0)
    else:
        consistent = 0
    return float(consistent / len(moves))


def move_consistency(prices: np.ndarray, up: bool) -> float:
    moves = np.diff(prices)
    if len(moves) == 0:
        return 0.0
    consistent = np.sum(moves >= 0) if up else np.sum(moves <= 0)
    return float(consistent / len(moves))


def bar_volatility(df: pd.DataFrame) -> np.ndarray:
    """(high - low) / close per bar."""
    return ((df["high"] - df["low"]) / df["close"]).to_numpy()


def volatility_profile(df: pd.DataFrame) -> Dict:
    vols = bar_volatility(df)
    half = len(vols) // 2
    first = vols[:half].mean() if half > 0 else vols.mean()
    second = vols[half:].mean()
    ordered = np.sort(vols)
    n = len(ordered)
    return {
        "average": float(vols.mean()),
        "max": float(vols.max()),
        "min": float(vols.min()),
        "range": float(vols.max() - vols.min()),
        "trend": "increasing" if second > first else "decreasing",
        "trend_strength": float(abs(second - first)),
        "median": float(ordered[n // 2]),
        "q1": float(ordered[int(n * 0.25)]),
        "q3": float(ordered[int(n * 0.75)]),
        "skewness": skewness(vols),
    }


def volatility_trend(df: pd.DataFrame) -> Dict:
    reg = linear_regression(bar_volatility(df))
    return {
        "direction": "increasing" if reg["slope"] > 0 else "decreasing",
        "strength": abs(reg["slope"]),
        "r_squared": reg["r_squared"],
    }


def support_resistance(df: pd.DataFrame, lookback: int = 3) -> Dict:
    resistance = find_local_extremes(df["high"].to_numpy(), "max", lookback)
    support = find_local_extremes(df["low"].to_numpy(), "min", lookback)
    return {
        "resistance_levels": resistance,
        "support_levels": support,
        "key_resistance": max(r["price"] for r in resistance) if resistance else None,
        "key_support": min(s["price"] for s in support) if support else None,
    }


def key_price_levels(prices: np.ndarray, tolerance: float = 0.001, top_n: int = 5) -> List[Dict]:
    """Most visited price buckets (bucket width = tolerance * mean price)."""
    step = prices.mean() * tolerance
    if step <= 0:
        return []
    buckets = pd.Series(np.round(prices / step) * step).value_counts()
    return [{"price": float(p), "count": int(c)} for p, c in buckets.head(top_n).items()]


def volume_pattern(df: pd.DataFrame) -> Optional[Dict]:
    volumes = df["volume"].to_numpy()
    volumes = volumes[volumes > 0]
    if len(volumes) == 0:
        return None
    avg = volumes.mean()
    trend = trend_strength(volumes)
    return {
        "average": float(avg),
        "max": float(volumes.max()),
        "min": float(volumes.min()),
        "spikes": int(np.sum(volumes > avg * 1.5)),
        "trend": trend["direction"],
        "trend_strength": trend["strength"],
        "above_average": float(np.mean(volumes > avg)),
    }


def volume_confirmation(prices: np.ndarray, volumes: np.ndarray) -> Optional[Dict]:
    if len(volumes) == 0 or np.all(volumes == 0):
        return None
    corr = correlation(np.diff(prices), np.diff(volumes))
    if abs(corr) > 0.3:
        strength = "strong"
    elif abs(corr) > 0.1:
        strength = "moderate"
    else:
        strength = "weak"
    return {"price_volume_correlation": corr, "confirmation_strength": strength}


def bollinger_summary(prices: np.ndarray, period: int = 20, deviation: float = 2.0) -> Optional[Dict]:
    if len(prices) < period:
        return None
    s = pd.Series(prices)
    mid = s.rolling(period).mean()
    std = s.rolling(period).std(ddof=0)
    upper, lower = mid + deviation * std, mid - deviation * std
    band = (upper - lower).replace(0, np.nan)
    pct_b = ((s - lower) / band).dropna()
    width = ((upper - lower) / mid).dropna()
    avg_width = width.mean()
    return {
        "percent_b": float(pct_b.iloc[-1]) if len(pct_b) else 0.5,
        "width": float(width.iloc[-1]),
        "avg_width": float(avg_width),
        "squeezes": int((width < avg_width * 0.8).sum()),
    }


def stochastic_k(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, period: int = 14) -> np.ndarray:
    if len(closes) < period:
        return np.empty(0)
    hh = pd.Series(highs).rolling(period).max().to_numpy()[period - 1:]
    ll = pd.Series(lows).rolling(period).min().to_numpy()[period - 1:]
    rng = hh - ll
    k = np.where(rng > 0, (closes[period - 1:] - ll) / np.where(rng > 0, rng, 1.0) * 100, 50.0)
    return k


def zero_crossovers(values: np.ndarray) -> int:
    signs = np.sign(values)
    signs = signs[signs != 0]
    return int(np.sum(signs[1:] != signs[:-1]))


def indicator_summary(df: pd.DataFrame) -> Dict:
    """RSI / MACD / Bollinger / ATR / Stochastic state over the window."""
    closes = df["close"].to_numpy()
    highs = df["high"].to_numpy()
    lows = df["low"].to_numpy()
    summary: Dict = {}

    if len(closes) >= 15:
        rsi = rsi_series(closes, 14)
        summary["rsi"] = {
            "start": float(rsi[0]),
            "end": float(rsi[-1]),
            "average": float(rsi.mean()),
            "max": float(rsi.max()),
            "min": float(rsi.min()),
            "overbought": int(np.sum(rsi > 70)),
            "oversold": int(np.sum(rsi < 30)),
        }
    else:
        summary["rsi"] = None

    slow = sma_seeded_ema(closes, 26)
    if len(slow) > 0:
        fast = sma_seeded_ema(closes, 12)[-len(slow):]
        macd = fast - slow
        signal = sma_seeded_ema(macd, 9)
        summary["macd"] = {
            "start": float(macd[0]),
            "end": float(macd[-1]),
            "trend": float(macd[-1] - macd[0]),
            "signal": float(signal[-1]) if len(signal) else None,
            "histogram": float(macd[-1] - signal[-1]) if len(signal) else None,
            "crossovers": zero_crossovers(macd),
        }
    else:
        summary["macd"] = None

    summary["bollinger"] = bollinger_summary(closes)

    if len(closes) >= 15:
        atr = atr_series(highs, lows, closes, 14)
        summary["atr"] = {
            "current": float(atr[-1]),
            "average": float(atr.mean()),
            "trend": float(atr[-1] - atr[0]),
        }
    else:
        summary["atr"] = None

    k = stochastic_k(highs, lows, closes, 14)
    summary["stochastic"] = {
        "start": float(k[0]),
        "end": float(k[-1]),
        "overbought": int(np.sum(k > 80)),
        "oversold": int(np.sum(k < 20)),
    } if len(k) else None

    return summary


def momentum_profile(prices: np.ndarray) -> Dict:
    """Rate of change over 5 and 10 bars and its acceleration."""
    def roc(n: int) -> float:
        if len(prices) <= n or prices[-n - 1] == 0:
            return 0.0
        return float((prices[-1] - prices[-n - 1]) / prices[-n - 1])

    roc_5, roc_10 = roc(5), roc(10)
    return {"roc_5": roc_5, "roc_10": roc_10, "acceleration": roc_5 - (roc_10 - roc_5)}


def geometric_features(prices: np.ndarray) -> Dict:
    """Curvature, extreme positions and in-window excursions of the shape."""
    norm = normalize_series(prices)
    x = np.linspace(0.0, 1.0, len(norm))
    curvature = float(np.polyfit(x, norm, 2)[0]) if len(norm) >= 3 else 0.0

    running_max = np.maximum.accumulate(prices)
    running_min = np.minimum.accumulate(prices)
    max_drawdown = float(np.max((running_max - prices) / running_max))
    max_drawup = float(np.max((prices - running_min) / running_min))

    n = max(len(prices) - 1, 1)
    return {
        "curvature": curvature,
        "high_position": float(np.argmax(prices) / n),
        "low_position": float(np.argmin(prices) / n),
        "max_drawdown": max_drawdown,
        "max_drawup": max_drawup,
    }


# =============================================================================
# SIGNATURE
# =============================================================================

def generate_signature(df: pd.DataFrame, extrema_lookback: int = 3) -> PatternSignature:
    """Build the signature of a validated candle window."""
    prices = df["close"].to_numpy()
    highs = df["high"].to_numpy()
    lows = df["low"].to_numpy()
    volumes = df["volume"].to_numpy()

    return PatternSignature(
        normalized_prices=normalize_series(prices).tolist(),
        normalized_highs=normalize_series(highs).tolist(),
        normalized_lows=normalize_series(lows).tolist(),
        trend=trend_strength(prices),
        trend_consistency=trend_consistency(prices),
        volatility_profile=volatility_profile(df),
        volatility_trend=volatility_trend(df),
        support_resistance=support_resistance(df, extrema_lookback),
        key_levels=key_price_levels(prices),
        volume_pattern=volume_pattern(df),
        volume_confirmation=volume_confirmation(prices, volumes),
        indicators=indicator_summary(df),
        momentum_profile=momentum_profile(prices),
        geometric_features=geometric_features(prices),
        metadata={
            "length": len(df),
            "price_range": float((prices.max() - prices.min()) / prices.min()),
            "avg_price": float(prices.mean()),
            "start_price": float(prices[0]),
            "end_price": float(prices[-1]),
            "total_move": float((prices[-1] - prices[0]) / prices[0]),
        },
    )


def resample_shape(values: List[float], points: int = SHAPE_POINTS) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    if len(values) == points:
        return values
    return np.interp(np.linspace(0, 1, points), np.linspace(0, 1, len(values)), values)


def signature_similarity(a: PatternSignature, b: PatternSignature) -> float:
    """
    Similarity in [0, 1]:
        0.60 * shape (1 - mean abs diff of resampled normalised closes)
        0.25 * trend (direction match and relative strength)
        0.15 * volatility (relative proximity of average bar range)
    """
    shape = 1.0 - float(np.mean(np.abs(
        resample_shape(a.normalized_prices) - resample_shape(b.normalized_prices)
    )))

    same_direction = 1.0 if a.trend["direction"] == b.trend["direction"] else 0.0
    sa, sb = a.trend["strength"], b.trend["strength"]
    strength = 1.0 - min(1.0, abs(sa - sb) / max(sa, sb, 1e-12))
    trend = 0.5 * same_direction + 0.5 * strength

    va, vb = a.volatility_profile["average"], b.volatility_profile["average"]
    volatility = 1.0 - min(1.0, abs(va - vb) / max(va, vb, 1e-12))

    return 0.60 * shape + 0.25 * trend + 0.15 * volatility
