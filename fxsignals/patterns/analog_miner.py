"""
Historical Analog Miner.

Offline search over a long candle history for windows that were followed
by a large, directionally consistent move:

  for pattern_length in 10, 15, ..., 60:
      for every start offset i:
          pattern = candles[i : i + length]
          future  = candles[i + length : i + length + 30]
          (skipped when fewer than 20 future candles remain)
          keep the pattern if its outcome is "successful" and ROI >= 2%

Kept windows are stored with a PatternSignature. Near-duplicates are
removed before they enter the PatternDatabase. At signal time the database
is only searched, never rebuilt.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from ..config import AnalogMinerConfig
from ..data_loader import validate_candles
from ..labeling import normalize_instrument
from ..models.types import Direction, utc_now
from .signature import (
    PatternSignature, generate_signature, move_consistency, signature_similarity,
)

logger = logging.getLogger("AnalogMiner")


@dataclass(frozen=True)
class AnalogOutcome:
    """What followed a historical window (moves in percent)."""
    roi: float
    success_type: str
    confidence_score: float
    days_to_target: int
    pattern_direction: str
    pattern_move: float
    up_move: float
    down_move: float
    final_move: float
    volatility: float
    risk_reward: float

    @property
    def direction(self) -> Direction:
        if self.success_type.startswith("bullish") or self.success_type == "neutral_breakout_up":
            return Direction.BUY
        if self.success_type.startswith("bearish") or self.success_type == "neutral_breakout_down":
            return Direction.SELL
        return Direction.HOLD


@dataclass
class HistoricalAnalog:
    """A successful historical window and its outcome."""
    id: str
    instrument: str
    start_time: datetime
    end_time: datetime
    length: int
    signature: PatternSignature
    outcome: AnalogOutcome

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "instrument": self.instrument,
            "start_time": pd.Timestamp(self.start_time).isoformat(),
            "end_time": pd.Timestamp(self.end_time).isoformat(),
            "length": self.length,
            "signature": self.signature.to_dict(),
            "outcome": asdict(self.outcome),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "HistoricalAnalog":
        return cls(
            id=data["id"],
            instrument=data["instrument"],
            start_time=pd.Timestamp(data["start_time"]).to_pydatetime(),
            end_time=pd.Timestamp(data["end_time"]).to_pydatetime(),
            length=int(data["length"]),
            signature=PatternSignature.from_dict(data["signature"]),
            outcome=AnalogOutcome(**data["outcome"]),
        )


@dataclass
class AnalogMatch:
    analog: HistoricalAnalog
    similarity: float


@dataclass
class PatternDatabase:
    """Mined analogs per instrument."""
    analogs: Dict[str, List[HistoricalAnalog]] = field(default_factory=dict)
    built_at: Dict[str, str] = field(default_factory=dict)

    def get(self, instrument: str) -> List[HistoricalAnalog]:
        return self.analogs.get(normalize_instrument(instrument), [])

    def set(self, instrument: str, analogs: List[HistoricalAnalog]) -> None:
        symbol = normalize_instrument(instrument)
        self.analogs[symbol] = analogs
        self.built_at[symbol] = utc_now().isoformat()

    def __len__(self) -> int:
        return sum(len(v) for v in self.analogs.values())

    def to_dict(self) -> Dict:
        return {
            "analogs": {k: [a.to_dict() for a in v] for k, v in self.analogs.items()},
            "built_at": dict(self.built_at),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PatternDatabase":
        return cls(
            analogs={
                k: [HistoricalAnalog.from_dict(a) for a in v]
                for k, v in (data.get("analogs") or {}).items()
            },
            built_at=dict(data.get("built_at") or {}),
        )


def future_volatility(closes: np.ndarray) -> float:
    """Annualised standard deviation of bar returns."""
    if len(closes) < 2:
        return 0.0
    returns = np.diff(closes) / closes[:-1]
    return float(returns.std() * np.sqrt(252))


class AnalogMiner:
    """
    Discovers and searches historical analogs.

    Args:
        config: search space and success rules
        database: existing pattern database to extend / search
    """

    def __init__(
        self,
        config: Optional[AnalogMinerConfig] = None,
        database: Optional[PatternDatabase] = None
    ):
        self.config = config or AnalogMinerConfig()
        self.database = database or PatternDatabase()

    # -------------------------------------------------------------------------
    # Outcome analysis
    # -------------------------------------------------------------------------

    def analyze_outcome(self, pattern: pd.DataFrame, future: pd.DataFrame) -> Optional[AnalogOutcome]:
        """Return the outcome if the window was successful, else None."""
        cfg = self.config
        start = pattern["close"].iloc[0]
        end = pattern["close"].iloc[-1]
        pattern_move = (end - start) / start * 100

        if pattern_move > cfg.direction_threshold:
            pattern_direction = "bullish"
        elif pattern_move < -cfg.direction_threshold:
            pattern_direction = "bearish"
        else:
            pattern_direction = "neutral"

        closes = future["close"].to_numpy()
        up_move = (future["high"].max() - end) / end * 100
        down_move = (end - future["low"].min()) / end * 100
        final_move = (closes[-1] - end) / end * 100

        roi = 0.0
        success_type = ""
        confidence = 0.0

        if pattern_direction == "bullish":
            if up_move > cfg.continuation_move and final_move > cfg.continuation_confirm:
                roi, success_type = up_move, "bullish_continuation"
                confidence = min(up_move / 5, 1.0) * 100
            elif up_move > cfg.spike_move and final_move > cfg.spike_floor:
                roi, success_type = up_move * 0.7, "bullish_spike"
                confidence = min(up_move / 7, 1.0) * 100
        elif pattern_direction == "bearish":
            if down_move > cfg.continuation_move and final_move < -cfg.continuation_confirm:
                roi, success_type = down_move, "bearish_continuation"
                confidence = min(down_move / 5, 1.0) * 100
            elif down_move > cfg.spike_move and final_move < -cfg.spike_floor:
                roi, success_type = down_move * 0.7, "bearish_spike"
                confidence = min(down_move / 7, 1.0) * 100
        elif abs(final_move) > cfg.breakout_move:
            roi = abs(final_move)
            success_type = "neutral_breakout_up" if final_move > 0 else "neutral_breakout_down"
            confidence = min(abs(final_move) / 6, 1.0) * 100

        if not success_type:
            return None

        roi = min(roi, cfg.max_roi)
        if roi < cfg.min_roi:
            return None

        consistency = move_consistency(closes, final_move > 0)
        confidence *= 0.7 + consistency * 0.3

        return AnalogOutcome(
            roi=round(float(roi), 2),
            success_type=success_type,
            confidence_score=round(float(confidence), 1),
            days_to_target=self.days_to_target(closes, end, pattern_direction),
            pattern_direction=pattern_direction,
            pattern_move=round(float(pattern_move), 2),
            up_move=round(float(up_move), 2),
            down_move=round(float(down_move), 2),
            final_move=round(float(final_move), 2),
            volatility=round(future_volatility(closes), 4),
            risk_reward=round(float(roi / max(down_move, up_move, 1.0)), 2),
        )

    def days_to_target(self, closes: np.ndarray, start_price: float, direction: str) -> int:
        """First forward bar (1-based) reaching the target move, else the window length."""
        moves = (closes - start_price) / start_price * 100
        if direction == "bullish":
            hit = moves >= self.config.target_move
        elif direction == "bearish":
            hit = moves <= -self.config.target_move
        else:
            hit = np.abs(moves) >= self.config.neutral_target_move
        idx = np.flatnonzero(hit)
        return int(idx[0] + 1) if len(idx) else len(closes)

    # -------------------------------------------------------------------------
    # Mining
    # -------------------------------------------------------------------------

    def mine(self, candles, instrument: str) -> List[HistoricalAnalog]:
        """
        Scan the full history and store the unique successful analogs.

        Raises:
            InsufficientData: fewer than ``min_candles`` candles
        """
        cfg = self.config
        df = validate_candles(candles, min_length=cfg.min_candles)
        symbol = normalize_instrument(instrument)
        n = len(df)

        found: List[HistoricalAnalog] = []
        for length in range(cfg.min_pattern_length, cfg.max_pattern_length + 1, cfg.length_step):
            # Near the end the future may be shorter than forward_window
            for i in range(0, n - length - cfg.min_future_candles + 1):
                pattern = df.iloc[i:i + length]
                future = df.iloc[i + length:i + length + cfg.forward_window]

                outcome = self.analyze_outcome(pattern, future)
                if outcome is None:
                    continue

                found.append(HistoricalAnalog(
                    id=f"{symbol}_{i}_{length}",
                    instrument=symbol,
                    start_time=pattern["timestamp"].iloc[0].to_pydatetime(),
                    end_time=pattern["timestamp"].iloc[-1].to_pydatetime(),
                    length=length,
                    signature=generate_signature(pattern, cfg.extrema_lookback),
                    outcome=outcome,
                ))

        unique = self.remove_duplicates(found)
        self.database.set(symbol, unique)

        avg_roi = np.mean([a.outcome.roi for a in unique]) if unique else 0.0
        logger.info(
            f"{symbol}: {len(found)} successful windows, {len(unique)} unique analogs, "
            f"avg ROI {avg_roi:.2f}%"
        )
        return unique

    def remove_duplicates(self, analogs: List[HistoricalAnalog]) -> List[HistoricalAnalog]:
        """Keep the highest-confidence analog of every near-identical group."""
        ranked = sorted(analogs, key=lambda a: a.outcome.confidence_score, reverse=True)
        kept: List[HistoricalAnalog] = []
        for analog in ranked:
            duplicate = any(
                signature_similarity(analog.signature, k.signature) >= self.config.duplicate_threshold
                for k in kept
            )
            if not duplicate:
                kept.append(analog)
        return kept

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def find_similar(
        self,
        candles,
        instrument: str,
        threshold: Optional[float] = None,
        top_n: int = 5
    ) -> List[AnalogMatch]:
        """
        Analogs whose signature matches the most recent window of the same length.
        """
        threshold = self.config.similarity_threshold if threshold is None else threshold
        analogs = self.database.get(instrument)
        if not analogs:
            return []

        df = validate_candles(candles)
        signatures: Dict[int, PatternSignature] = {}
        matches = []
        for analog in analogs:
            if len(df) < analog.length:
                continue
            if analog.length not in signatures:
                signatures[analog.length] = generate_signature(
                    df.tail(analog.length).reset_index(drop=True), self.config.extrema_lookback
                )
            similarity = signature_similarity(signatures[analog.length], analog.signature)
            if similarity >= threshold:
                matches.append(AnalogMatch(analog=analog, similarity=similarity))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:top_n]

    @staticmethod
    def recommendation(matches: List[AnalogMatch]) -> Dict:
        """
        Aggregate matched analogs into a direction suggestion.

        Votes are weighted by similarity * confidence score.
        """
        if not matches:
            return {"direction": Direction.HOLD.value, "confidence": 0.0,
                    "expected_roi": 0.0, "strength": "avoid", "matches": 0}

        votes = {Direction.BUY: 0.0, Direction.SELL: 0.0}
        for m in matches:
            d = m.analog.outcome.direction
            if d in votes:
                votes[d] += m.similarity * m.analog.outcome.confidence_score

        total = sum(votes.values())
        direction = max(votes, key=votes.get) if total > 0 else Direction.HOLD
        agreeing = [m for m in matches if m.analog.outcome.direction == direction]
        expected_roi = float(np.mean([m.analog.outcome.roi for m in agreeing])) if agreeing else 0.0
        confidence = float(np.mean([m.analog.outcome.confidence_score for m in agreeing])) if agreeing else 0.0
        share = votes.get(direction, 0.0) / total if total > 0 else 0.0

        if expected_roi > 5 and confidence > 80:
            strength = "strong"
        elif expected_roi > 3 and confidence > 60:
            strength = "moderate"
        elif expected_roi > 1.5 and confidence > 40:
            strength = "weak"
        else:
            strength = "avoid"

        return {
            "direction": direction.value,
            "confidence": confidence * share,
            "expected_roi": expected_roi,
            "strength": strength,
            "matches": len(matches),
        }

    def system_stats(self) -> Dict:
        """Database size and ROI / success-type distribution."""
        all_analogs = [a for v in self.database.analogs.values() for a in v]
        rois = [a.outcome.roi for a in all_analogs]
        types: Dict[str, int] = {}
        for a in all_analogs:
            types[a.outcome.success_type] = types.get(a.outcome.success_type, 0) + 1
        return {
            "total_patterns": len(all_analogs),
            "instruments": sorted(self.database.analogs),
            "patterns_per_instrument": {k: len(v) for k, v in self.database.analogs.items()},
            "avg_roi": float(np.mean(rois)) if rois else 0.0,
            "max_roi": float(np.max(rois)) if rois else 0.0,
            "min_roi": float(np.min(rois)) if rois else 0.0,
            "success_types": types,
        }
