#!/usr/bin/env python3
"""
Risk Management for fused signals.

Turns a fused direction/confidence into entry, stop-loss, take-profit,
position size and expiry:
- Stop distance:   min(price * 0.4%, ATR * 1.5)
- Target distance: max(price * 1.0%, ATR * 2.5) * confidence multiplier (<= 1.3)
- Entry:           price shifted 5% of ATR against the trade (fill slippage)
- Filter:          R:R >= 1.5 and confidence >= 0.65, else HOLD
- Size:            clamp(2% risk budget / (risk / entry) * confidence, 0, 10)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from ..config import EXPIRY_HOURS, RiskConfig
from ..feature_engineering import calculate_atr
from ..models.types import Direction, utc_now

logger = logging.getLogger("RiskManager")

RISK_FILTER_REASON = "risk_management_filter"


class Action(str, Enum):
    """Trading signal actions."""
    LONG = "LONG"
    SHORT = "SHORT"
    HOLD = "HOLD"


@dataclass(frozen=True)
class TradingSignal:
    """Final, risk-managed trading decision."""
    instrument: str
    action: Action
    entry_price: float
    stop_loss: float
    take_profit: float
    confidence: float
    risk_reward_ratio: float
    position_size: float
    expiry: datetime
    reason: str
    source_breakdown: Dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)
    error: Optional[str] = None

    @property
    def is_actionable(self) -> bool:
        return self.action != Action.HOLD

    def to_dict(self) -> Dict:
        return {
            "instrument": self.instrument,
            "action": self.action.value,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "confidence": self.confidence,
            "risk_reward_ratio": self.risk_reward_ratio,
            "position_size": self.position_size,
            "expiry": self.expiry.isoformat(),
            "reason": self.reason,
            "source_breakdown": self.source_breakdown,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }


def expiry_for(timeframe: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Signal expiry from the pattern timeframe (short 2h, medium 6h, else 24h)."""
    hours = EXPIRY_HOURS.get(timeframe or "long", EXPIRY_HOURS["long"])
    return (now or utc_now()) + timedelta(hours=hours)


def hold_signal(
    instrument: str,
    price: float,
    confidence: float,
    reason: str,
    source_breakdown: Optional[Dict] = None,
    error: Optional[str] = None
) -> TradingSignal:
    """Non-actionable signal: no levels, no size."""
    now = utc_now()
    return TradingSignal(
        instrument=instrument,
        action=Action.HOLD,
        entry_price=price,
        stop_loss=price,
        take_profit=price,
        confidence=confidence,
        risk_reward_ratio=0.0,
        position_size=0.0,
        expiry=expiry_for(None, now),
        reason=reason,
        source_breakdown=source_breakdown or {},
        timestamp=now,
        error=error,
    )


class RiskManager:
    """
    Handles stop / target placement and position sizing.

    Args:
        config: risk rules
    """

    def __init__(self, config: Optional[RiskConfig] = None):
        self.config = config or RiskConfig()

    def target_multiplier(self, confidence: float) -> float:
        """Confidence-scaled take-profit multiplier, capped at max_target_multiplier."""
        return min(self.config.max_target_multiplier, 0.7 + 0.6 * confidence)

    def build_signal(
        self,
        instrument: str,
        direction: Direction,
        confidence: float,
        candles,
        reason: str,
        timeframe: Optional[str] = None,
        source_breakdown: Optional[Dict] = None
    ) -> TradingSignal:
        """
        Attach risk levels to a fused decision.

        Args:
            instrument: symbol
            direction: fused direction
            confidence: fused confidence (0-1)
            candles: recent candles (>= atr_period + 1), last close is the price
            reason: fusion reason carried into the signal
            timeframe: pattern timeframe used for the expiry
        """
        cfg = self.config
        price = float(candles["close"].iloc[-1])
        breakdown = dict(source_breakdown or {})

        if direction == Direction.HOLD:
            return hold_signal(instrument, price, confidence, reason, breakdown)

        atr = calculate_atr(candles["high"], candles["low"], candles["close"], cfg.atr_period)
        risk = min(price * cfg.stop_pct, atr * cfg.stop_atr_mult)
        reward = max(price * cfg.target_pct, atr * cfg.target_atr_mult) * self.target_multiplier(confidence)

        side = 1.0 if direction == Direction.BUY else -1.0
        entry = price + side * atr * cfg.entry_atr_offset
        stop = entry - side * risk
        target = entry + side * reward

        rr = reward / risk if risk > 0 else 0.0
        breakdown.update({"atr": atr, "risk_distance": risk, "reward_distance": reward})

        if rr < cfg.min_risk_reward or confidence < cfg.min_confidence:
            logger.info(
                f"{instrument}: {direction.value} filtered (R:R={rr:.2f}, confidence={confidence:.2f})"
            )
            breakdown["filtered_reason"] = reason
            return hold_signal(instrument, price, confidence, RISK_FILTER_REASON, breakdown)

        size = cfg.risk_budget / (risk / entry) * confidence if risk > 0 else 0.0
        size = max(0.0, min(cfg.max_position_size, size))

        now = utc_now()
        return TradingSignal(
            instrument=instrument,
            action=Action.LONG if direction == Direction.BUY else Action.SHORT,
            entry_price=float(entry),
            stop_loss=float(stop),
            take_profit=float(target),
            confidence=float(confidence),
            risk_reward_ratio=float(rr),
            position_size=float(size),
            expiry=expiry_for(timeframe, now),
            reason=reason,
            source_breakdown=breakdown,
            timestamp=now,
        )
