"""
Signal Fusion.

Combines the primary (sequence classifier) and secondary (pattern or
heuristic) opinions into one direction and confidence. Rules apply in order:

  1. both confidences < min_confidence            -> HOLD  (LOW_CONFIDENCE)
  2. same non-HOLD direction                      -> weighted sum (AGREEMENT)
  3. primary confidence > override_confidence     -> primary * 0.9 (PRIMARY_OVERRIDE)
  4. secondary confidence > override_confidence   -> secondary * 0.85 (SECONDARY_OVERRIDE)
  5. otherwise                                    -> HOLD  (NO_CONSENSUS)

All confidences are on the 0-1 scale; the result is capped at max_confidence.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import FusionConfig
from ..models.types import Direction, Prediction

logger = logging.getLogger("SignalFusion")


class FusionReason:
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    AGREEMENT = "AGREEMENT"
    PRIMARY_OVERRIDE = "PRIMARY_OVERRIDE"
    SECONDARY_OVERRIDE = "SECONDARY_OVERRIDE"
    NO_CONSENSUS = "NO_CONSENSUS"


@dataclass(frozen=True)
class Opinion:
    """One fusion input."""
    direction: Direction
    confidence: float  # 0-1
    source: str
    timeframe: Optional[str] = None

    @classmethod
    def from_prediction(cls, prediction: Prediction) -> "Opinion":
        return cls(
            direction=prediction.direction,
            confidence=prediction.unit_confidence,
            source=prediction.source_model,
        )


@dataclass(frozen=True)
class FusedDecision:
    direction: Direction
    confidence: float
    reason: str
    primary: Opinion
    secondary: Opinion


class SignalFusion:
    """
    Two-input fusion policy.

    Args:
        config: weights and confidence thresholds
    """

    def __init__(self, config: Optional[FusionConfig] = None):
        self.config = config or FusionConfig()

    def fuse(self, primary: Opinion, secondary: Opinion) -> FusedDecision:
        cfg = self.config

        def decide(direction: Direction, confidence: float, reason: str) -> FusedDecision:
            return FusedDecision(
                direction=direction,
                confidence=min(confidence, cfg.max_confidence),
                reason=reason,
                primary=primary,
                secondary=secondary,
            )

        if primary.confidence < cfg.min_confidence and secondary.confidence < cfg.min_confidence:
            return decide(Direction.HOLD, max(primary.confidence, secondary.confidence),
                          FusionReason.LOW_CONFIDENCE)

        if primary.direction == secondary.direction and primary.direction != Direction.HOLD:
            confidence = (primary.confidence * cfg.primary_weight
                          + secondary.confidence * cfg.secondary_weight)
            return decide(primary.direction, confidence, FusionReason.AGREEMENT)

        if primary.confidence > cfg.override_confidence:
            return decide(primary.direction, primary.confidence * cfg.primary_override_factor,
                          FusionReason.PRIMARY_OVERRIDE)

        if secondary.confidence > cfg.override_confidence:
            return decide(secondary.direction, secondary.confidence * cfg.secondary_override_factor,
                          FusionReason.SECONDARY_OVERRIDE)

        return decide(Direction.HOLD, max(primary.confidence, secondary.confidence),
                      FusionReason.NO_CONSENSUS)
