"""
Chart Pattern Detector.

Independent rule-based recognizers over the trailing window:
- double top / double bottom
- head and shoulders (coarse: >= 3 peaks)
- triangle (high range compressed relative to low range)
- breakout (5-bar vs 15-bar mean divergence)
- gap (open vs previous close)
- historical analog (when a pattern database is attached)

Hits are ranked by confidence, highest first.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from ..config import PATTERN_WINDOW
from ..data_loader import validate_candles
from ..models.types import Direction
from .analog_miner import AnalogMiner

logger = logging.getLogger("PatternDetector")


@dataclass(frozen=True)
class DetectionResult:
    """Output of one recognizer."""
    detected: bool
    confidence: float = 0.0
    direction: Direction = Direction.HOLD
    target: float = 0.0
    stop_loss: float = 0.0
    entry: float = 0.0
    timeframe: str = "medium"


NOT_DETECTED = DetectionResult(detected=False)


@dataclass(frozen=True)
class Pattern:
    """A detected chart pattern."""
    type: str
    direction: Direction
    confidence: float
    entry: float
    target: float
    stop_loss: float
    timeframe: str

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "direction": self.direction.value,
            "confidence": self.confidence,
            "entry": self.entry,
            "target": self.target,
            "stop_loss": self.stop_loss,
            "timeframe": self.timeframe,
        }


# =============================================================================
# PEAK / VALLEY SEARCH
# =============================================================================

def find_peaks(values: np.ndarray, lookback: int = 3) -> List[int]:
    """Indices strictly higher than every neighbour within +/- lookback."""
    peaks = []
    for i in range(lookback, len(values) - lookback):
        neighbours = np.concatenate([values[i - lookback:i], values[i + 1:i + lookback + 1]])
        if np.all(neighbours < values[i]):
            peaks.append(i)
    return peaks


def find_valleys(values: np.ndarray, lookback: int = 3) -> List[int]:
    """Indices strictly lower than every neighbour within +/- lookback."""
    return find_peaks(-np.asarray(values, dtype=float), lookback)


# =============================================================================
# RECOGNIZERS
# =============================================================================

def detect_double_top(
    df: pd.DataFrame,
    max_similarity: float = 0.015,
    min_distance: int = 5,
    max_distance: int = 20
) -> DetectionResult:
    highs = df["high"].to_numpy()
    closes = df["close"].to_numpy()
    peaks = find_peaks(highs, 3)
    if len(peaks) < 2:
        return NOT_DETECTED

    p1, p2 = peaks[-2], peaks[-1]
    similarity = abs(highs[p1] - highs[p2]) / highs[p1]
    distance = p2 - p1
    if similarity >= max_similarity or not (min_distance < distance < max_distance):
        return NOT_DETECTED

    neckline = closes[p1:p2].min()
    return DetectionResult(
        detected=True,
        confidence=max(0.6, 0.9 - similarity * 20),
        direction=Direction.SELL,
        target=float(neckline - (highs[p2] - neckline)),
        stop_loss=float(highs[p2] * 1.005),
        entry=float(closes[-1]),
        timeframe="medium",
    )


def detect_double_bottom(
    df: pd.DataFrame,
    max_similarity: float = 0.015,
    min_distance: int = 5,
    max_distance: int = 20
) -> DetectionResult:
    lows = df["low"].to_numpy()
    closes = df["close"].to_numpy()
    valleys = find_valleys(lows, 3)
    if len(valleys) < 2:
        return NOT_DETECTED

    v1, v2 = valleys[-2], valleys[-1]
    similarity = abs(lows[v1] - lows[v2]) / lows[v1]
    distance = v2 - v1
    if similarity >= max_similarity or not (min_distance < distance < max_distance):
        return NOT_DETECTED

    neckline = closes[v1:v2].max()
    return DetectionResult(
        detected=True,
        confidence=max(0.6, 0.9 - similarity * 20),
        direction=Direction.BUY,
        target=float(neckline + (neckline - lows[v2])),
        stop_loss=float(lows[v2] * 0.995),
        entry=float(closes[-1]),
        timeframe="medium",
    )


def detect_head_and_shoulders(df: pd.DataFrame) -> DetectionResult:
    highs = df["high"].to_numpy()
    close = float(df["close"].iloc[-1])
    if len(find_peaks(highs, 5)) < 3:
        return NOT_DETECTED

    return DetectionResult(
        detected=True,
        confidence=0.7,
        direction=Direction.SELL,
        target=close * 0.98,
        stop_loss=float(highs[-10:].max() * 1.01),
        entry=close,
        timeframe="medium",
    )


def detect_triangle(df: pd.DataFrame) -> DetectionResult:
    """
    High range compressed to < 70% of the low range.

    Direction follows the slope of the lows: rising lows (ascending
    support) -> BUY, otherwise SELL.
    """
    highs = df["high"].to_numpy()
    lows = df["low"].to_numpy()
    close = float(df["close"].iloc[-1])

    high_range = highs.max() - highs.min()
    low_range = lows.max() - lows.min()
    if not high_range < low_range * 0.7:
        return NOT_DETECTED

    low_slope = np.polyfit(np.arange(len(lows), dtype=float), lows, 1)[0]
    if low_slope > 0:
        direction, target, stop = Direction.BUY, close * 1.02, close * 0.98
    else:
        direction, target, stop = Direction.SELL, close * 0.98, close * 1.02

    return DetectionResult(
        detected=True,
        confidence=0.65,
        direction=direction,
        target=target,
        stop_loss=stop,
        entry=close,
        timeframe="short",
    )


def detect_breakout(df: pd.DataFrame, min_divergence: float = 0.01) -> DetectionResult:
    closes = df["close"].to_numpy()
    if len(closes) < 15:
        return NOT_DETECTED

    short_avg = closes[-5:].mean()
    long_avg = closes[-15:].mean()
    divergence = (short_avg - long_avg) / long_avg
    if abs(divergence) <= min_divergence:
        return NOT_DETECTED

    close = float(closes[-1])
    direction = Direction.BUY if divergence > 0 else Direction.SELL
    return DetectionResult(
        detected=True,
        confidence=min(0.85, 0.6 + abs(divergence) * 10),
        direction=direction,
        target=close * (1 + divergence),
        stop_loss=float(long_avg),
        entry=close,
        timeframe="short",
    )


def detect_gap(df: pd.DataFrame, min_gap: float = 0.005, lookback: int = 5) -> DetectionResult:
    """Most recent open-vs-previous-close gap within the last ``lookback`` bars."""
    opens = df["open"].to_numpy()
    closes = df["close"].to_numpy()
    start = max(1, len(df) - lookback)

    gap = None
    for i in range(start, len(df)):
        size = (opens[i] - closes[i - 1]) / closes[i - 1]
        if abs(size) > min_gap:
            gap = size
    if gap is None:
        return NOT_DETECTED

    close = float(closes[-1])
    up = gap > 0
    return DetectionResult(
        detected=True,
        confidence=min(0.8, abs(gap) * 60),
        direction=Direction.BUY if up else Direction.SELL,
        target=close * (1.01 if up else 0.99),
        stop_loss=close * (0.995 if up else 1.005),
        entry=close,
        timeframe="short",
    )


RECOGNIZERS: Dict[str, Callable[[pd.DataFrame], DetectionResult]] = {
    "double_top": detect_double_top,
    "double_bottom": detect_double_bottom,
    "head_and_shoulders": detect_head_and_shoulders,
    "triangle": detect_triangle,
    "breakout": detect_breakout,
    "gap": detect_gap,
}


# =============================================================================
# DETECTOR
# =============================================================================

class PatternDetector:
    """
    Runs every recognizer over the trailing window and ranks the hits.

    Args:
        window: trailing candles inspected by the chart recognizers
        analog_miner: optional miner whose pattern database is searched
            for historical analogs of the current window
    """

    def __init__(
        self,
        window: int = PATTERN_WINDOW,
        analog_miner: Optional[AnalogMiner] = None
    ):
        self.window = window
        self.analog_miner = analog_miner

    def detect(self, candles, instrument: Optional[str] = None) -> List[Pattern]:
        df = validate_candles(candles)
        recent = df.tail(self.window).reset_index(drop=True)

        patterns = []
        for name, recognizer in RECOGNIZERS.items():
            result = recognizer(recent)
            if result.detected:
                patterns.append(_to_pattern(name, result))

        if self.analog_miner is not None and instrument is not None:
            analog = self.detect_analog(df, instrument)
            if analog.detected:
                patterns.append(_to_pattern("historical_analog", analog))

        patterns.sort(key=lambda p: p.confidence, reverse=True)
        if patterns:
            logger.debug(f"Detected: {[(p.type, p.direction.value, round(p.confidence, 2)) for p in patterns]}")
        return patterns

    def detect_analog(self, df: pd.DataFrame, instrument: str) -> DetectionResult:
        """Best historical analog of the current window as a pattern hit."""
        matches = self.analog_miner.find_similar(df, instrument, top_n=1)
        if not matches:
            return NOT_DETECTED

        match = matches[0]
        outcome = match.analog.outcome
        direction = outcome.direction
        if direction == Direction.HOLD:
            return NOT_DETECTED

        close = float(df["close"].iloc[-1])
        move = outcome.roi / 100
        risk = min(move * 0.3, 0.03)
        sign = 1 if direction == Direction.BUY else -1
        return DetectionResult(
            detected=True,
            confidence=match.similarity * outcome.confidence_score / 100,
            direction=direction,
            target=close * (1 + sign * move),
            stop_loss=close * (1 - sign * risk),
            entry=close,
            timeframe="long",
        )


def _to_pattern(name: str, result: DetectionResult) -> Pattern:
    return Pattern(
        type=name,
        direction=result.direction,
        confidence=float(result.confidence),
        entry=float(result.entry),
        target=float(result.target),
        stop_loss=float(result.stop_loss),
        timeframe=result.timeframe,
    )
