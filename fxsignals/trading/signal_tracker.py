"""
Signal Tracker.

Follows issued trading signals until they hit the target, hit the stop
or expire, and aggregates the closed outcomes.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from ..labeling import get_instrument_class, normalize_instrument
from ..models.types import utc_now
from .risk_manager import Action, TradingSignal

logger = logging.getLogger("SignalTracker")


class SignalStatus(str, Enum):
    OPEN = "OPEN"
    TARGET_HIT = "TARGET_HIT"
    STOP_HIT = "STOP_HIT"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class TrackedSignal:
    id: str
    signal: TradingSignal
    status: SignalStatus = SignalStatus.OPEN
    exit_price: Optional[float] = None
    closed_at: Optional[datetime] = None
    pips: Optional[float] = None
    percent_return: Optional[float] = None

    @property
    def is_closed(self) -> bool:
        return self.status != SignalStatus.OPEN


def pip_multiplier(instrument: str) -> float:
    """Price-difference -> pips: metals x10, JPY pairs x100, other pairs x10000."""
    symbol = normalize_instrument(instrument)
    if get_instrument_class(symbol) == "metals":
        return 10.0
    if "JPY" in symbol:
        return 100.0
    return 10000.0


def evaluate_signal(signal: TradingSignal, price: float, at: Optional[datetime] = None) -> SignalStatus:
    """
    Status of an open signal at a later price.

    Target and stop are checked before expiry; HOLD signals never close.
    """
    if signal.action == Action.HOLD:
        return SignalStatus.OPEN

    if signal.action == Action.LONG:
        if price >= signal.take_profit:
            return SignalStatus.TARGET_HIT
        if price <= signal.stop_loss:
            return SignalStatus.STOP_HIT
    else:
        if price <= signal.take_profit:
            return SignalStatus.TARGET_HIT
        if price >= signal.stop_loss:
            return SignalStatus.STOP_HIT

    if (at or utc_now()) >= signal.expiry:
        return SignalStatus.EXPIRED
    return SignalStatus.OPEN


def _max_consecutive(outcomes: List[TrackedSignal], status: SignalStatus) -> int:
    best = current = 0
    for t in outcomes:
        current = current + 1 if t.status == status else 0
        best = max(best, current)
    return best


class SignalTracker:
    """In-memory book of issued signals."""

    def __init__(self):
        self._signals: Dict[str, TrackedSignal] = {}

    def track(self, signal: TradingSignal) -> Optional[TrackedSignal]:
        """Start following an actionable signal. HOLD signals are ignored."""
        if not signal.is_actionable:
            return None
        signal_id = f"{signal.instrument}_{signal.timestamp.strftime('%Y%m%d%H%M%S%f')}"
        tracked = TrackedSignal(id=signal_id, signal=signal)
        self._signals[signal_id] = tracked
        logger.info(f"Tracking {signal_id}: {signal.action.value} @ {signal.entry_price:.5f}")
        return tracked

    def update(self, instrument: str, price: float, at: Optional[datetime] = None) -> List[TrackedSignal]:
        """Re-evaluate the open signals of an instrument. Returns the ones closed now."""
        symbol = normalize_instrument(instrument)
        at = at or utc_now()
        closed = []
        for signal_id, tracked in list(self._signals.items()):
            if tracked.is_closed or tracked.signal.instrument != symbol:
                continue
            status = evaluate_signal(tracked.signal, price, at)
            if status == SignalStatus.OPEN:
                continue

            s = tracked.signal
            side = 1.0 if s.action == Action.LONG else -1.0
            updated = replace(
                tracked,
                status=status,
                exit_price=float(price),
                closed_at=at,
                pips=float((price - s.entry_price) * side * pip_multiplier(symbol)),
                percent_return=float((price - s.entry_price) / s.entry_price * side * 100),
            )
            self._signals[signal_id] = updated
            closed.append(updated)
            logger.info(f"{signal_id} closed: {status.value} ({updated.pips:+.1f} pips)")
        return closed

    def active_signals(self) -> List[TrackedSignal]:
        return [t for t in self._signals.values() if not t.is_closed]

    def history(self, limit: int = 50) -> List[TrackedSignal]:
        """Closed signals, most recently closed first."""
        closed = sorted(
            (t for t in self._signals.values() if t.is_closed),
            key=lambda t: t.closed_at,
            reverse=True,
        )
        return closed[:limit]

    def performance_stats(self) -> Dict:
        """
        Aggregate statistics over closed signals.

        ``accuracy`` counts target hits among signals that hit either level;
        expired signals only contribute pips.
        """
        closed = sorted((t for t in self._signals.values() if t.is_closed), key=lambda t: t.closed_at)
        if not closed:
            return {
                "total_signals": 0, "wins": 0, "losses": 0, "expired": 0,
                "accuracy": 0.0, "win_rate": 0.0, "profit_factor": 0.0,
                "total_pips": 0.0, "avg_pips": 0.0, "best_trade": 0.0, "worst_trade": 0.0,
                "max_consecutive_wins": 0, "max_consecutive_losses": 0,
            }

        wins = [t for t in closed if t.status == SignalStatus.TARGET_HIT]
        losses = [t for t in closed if t.status == SignalStatus.STOP_HIT]
        pips = np.array([t.pips for t in closed], dtype=float)
        gains = sum(abs(t.pips) for t in wins)
        lost = sum(abs(t.pips) for t in losses)
        decided = len(wins) + len(losses)

        return {
            "total_signals": len(closed),
            "wins": len(wins),
            "losses": len(losses),
            "expired": len(closed) - decided,
            "accuracy": len(wins) / decided if decided else 0.0,
            "win_rate": len(wins) / len(closed) * 100,
            "profit_factor": gains / lost if lost > 0 else gains,
            "total_pips": float(pips.sum()),
            "avg_pips": float(pips.mean()),
            "best_trade": float(pips.max()),
            "worst_trade": float(pips.min()),
            "max_consecutive_wins": _max_consecutive(closed, SignalStatus.TARGET_HIT),
            "max_consecutive_losses": _max_consecutive(closed, SignalStatus.STOP_HIT),
        }

    def performance_by_instrument(self) -> Dict[str, Dict]:
        stats: Dict[str, Dict] = {}
        for t in self._signals.values():
            if not t.is_closed:
                continue
            s = stats.setdefault(t.signal.instrument, {"trades": 0, "wins": 0, "losses": 0, "pips": 0.0})
            s["trades"] += 1
            s["pips"] += t.pips
            if t.status == SignalStatus.TARGET_HIT:
                s["wins"] += 1
            elif t.status == SignalStatus.STOP_HIT:
                s["losses"] += 1
        for s in stats.values():
            s["win_rate"] = s["wins"] / s["trades"] * 100
        return stats
