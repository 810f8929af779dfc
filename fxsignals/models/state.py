"""
Model lifecycle policy: regression guard, prediction drift summaries and
training performance trend.
"""

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Tuple

import numpy as np

from ..config import REGRESSION_GUARD_RATIO, TRAINING_HISTORY_CAP
from .types import Direction, ModelState, Prediction

logger = logging.getLogger("ModelState")


def passes_regression_guard(
    previous: ModelState,
    new_accuracy: float,
    ratio: float = REGRESSION_GUARD_RATIO
) -> bool:
    """
    True when a retrained model may replace ``previous``.

    A previously trained model is kept if the new accuracy drops below
    ``ratio`` times its accuracy.
    """
    if not previous.is_trained:
        return True
    return new_accuracy >= ratio * previous.accuracy


def resolve_retrain(
    previous: ModelState,
    candidate: ModelState,
    session: Dict,
    ratio: float = REGRESSION_GUARD_RATIO
) -> Tuple[ModelState, bool]:
    """
    Apply the regression guard to a finished training run.

    Args:
        previous: state before training (TRAINED or UNTRAINED)
        candidate: fully trained state produced by the run
        session: training record appended to the history either way
        ratio: regression guard ratio

    Returns:
        (resulting state, accepted)
    """
    accepted = passes_regression_guard(previous, candidate.accuracy, ratio)
    session = dict(session, accepted=accepted)

    if accepted:
        history = (previous.training_history + [session])[-TRAINING_HISTORY_CAP:]
        return replace(candidate, training_history=history), True

    logger.warning(
        f"Regression guard rejected {candidate.model_type} retrain: "
        f"accuracy {candidate.accuracy:.3f} < {ratio} x {previous.accuracy:.3f}"
    )
    history = (previous.training_history + [session])[-TRAINING_HISTORY_CAP:]
    return replace(previous, training_history=history), False


def summarize_predictions(predictions: Iterable[Prediction], window: int = 20) -> Dict:
    """
    Drift summary over the most recent predictions.

    Returns:
        Dict with count, avg_confidence and per-direction counts
    """
    recent = list(predictions)[-window:]
    counts = {d.value: 0 for d in Direction}
    for p in recent:
        counts[p.direction.value] += 1

    avg_conf = float(np.mean([p.confidence for p in recent])) if recent else 0.0
    return {
        "count": len(recent),
        "avg_confidence": avg_conf,
        "buy": counts["BUY"],
        "sell": counts["SELL"],
        "hold": counts["HOLD"],
    }


def performance_trend(history: List[Dict], window: int = 5, tolerance: float = 0.05) -> str:
    """
    Compare the mean accuracy of the last ``window`` sessions with the
    ``window`` before them.

    Returns:
        "improving", "declining", "stable" or "insufficient_data"
    """
    accuracies = [float(h["accuracy"]) for h in history if "accuracy" in h]
    if len(accuracies) < 2 * window:
        return "insufficient_data"

    recent = np.mean(accuracies[-window:])
    older = np.mean(accuracies[-2 * window:-window])
    diff = recent - older

    if diff > tolerance:
        return "improving"
    if diff < -tolerance:
        return "declining"
    return "stable"
