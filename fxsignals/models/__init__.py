"""
Predictors and their shared records.

The predictor implementations live in submodules:
- heuristic: rule-weighted indicator predictor
- sequence: recurrent sequence classifier
"""

from .types import (
    Direction, ModelStatus, Prediction, PredictionLog,
    BacktestResult, ModelState, TrainingSession,
)
from .state import (
    passes_regression_guard, resolve_retrain,
    summarize_predictions, performance_trend,
)

__all__ = [
    # Records
    'Direction',
    'ModelStatus',
    'Prediction',
    'PredictionLog',
    'BacktestResult',
    'ModelState',
    'TrainingSession',

    # Lifecycle
    'passes_regression_guard',
    'resolve_retrain',
    'summarize_predictions',
    'performance_trend',
]
