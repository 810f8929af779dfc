"""
Core records shared by the predictors, the evaluator and persistence.
"""

from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from ..config import PREDICTION_LOG_CAP
from ..exceptions import PersistenceFailure


class Direction(str, Enum):
    """Predicted market direction."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class ModelStatus(str, Enum):
    """Model lifecycle."""
    UNTRAINED = "UNTRAINED"
    TRAINING = "TRAINING"
    TRAINED = "TRAINED"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Prediction:
    """
    Output of one predictor call.

    Confidence is on a 0-100 scale for every predictor; fusion works on
    ``unit_confidence`` (0-1).
    """
    direction: Direction
    confidence: float
    target_price: float
    stop_loss: float
    source_model: str
    timestamp: datetime = field(default_factory=utc_now)
    probabilities: Optional[Dict[str, float]] = None

    @property
    def unit_confidence(self) -> float:
        return max(0.0, min(1.0, self.confidence / 100.0))

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["direction"] = self.direction.value
        d["timestamp"] = self.timestamp.isoformat()
        return d


class PredictionLog:
    """
    Capped rolling log of predictions for drift analysis.

    Append-then-trim with a single writer.
    """

    def __init__(self, cap: int = PREDICTION_LOG_CAP):
        self.cap = cap
        self._entries: Deque[Prediction] = deque(maxlen=cap)

    def append(self, prediction: Prediction) -> None:
        self._entries.append(prediction)

    def recent(self, n: int) -> List[Prediction]:
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))


@dataclass(frozen=True)
class BacktestResult:
    """Walk-forward evaluation metrics. Computed fresh, never mutated."""
    accuracy: float
    valid_predictions: int
    correct_predictions: int
    total_predictions: int
    win_rate: float
    total_trades: int
    profitable_trades: int
    total_profit: float
    sharpe_ratio: float
    max_drawdown: float
    method: str = "walk_forward"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BacktestResult":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass
class ModelState:
    """
    Persistable state of one predictor.

    ``parameters`` holds model-specific values (heuristic weights, network
    weights and scaler statistics).
    """
    model_type: str
    status: ModelStatus = ModelStatus.UNTRAINED
    accuracy: float = 0.0
    parameters: Dict[str, Any] = field(default_factory=dict)
    backtest_results: Optional[BacktestResult] = None
    training_history: List[Dict[str, Any]] = field(default_factory=list)
    last_training: Optional[datetime] = None

    @property
    def is_trained(self) -> bool:
        return self.status == ModelStatus.TRAINED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_type": self.model_type,
            "status": self.status.value,
            "is_trained": self.is_trained,
            "accuracy": self.accuracy,
            "parameters": self.parameters,
            "backtest_results": self.backtest_results.to_dict() if self.backtest_results else None,
            "training_history": list(self.training_history),
            "last_training": self.last_training.isoformat() if self.last_training else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelState":
        """
        Rebuild a state loaded from the persistence store.

        Raises:
            PersistenceFailure: if the record is malformed
        """
        try:
            status = ModelStatus(data.get("status", ModelStatus.UNTRAINED.value))
            # A persisted TRAINING status means the run never completed
            if status == ModelStatus.TRAINING:
                status = ModelStatus.UNTRAINED
            accuracy = float(data.get("accuracy", 0.0))
            parameters = data.get("parameters") or {}
            if not isinstance(parameters, dict):
                raise TypeError("parameters must be a dict")
            backtest = data.get("backtest_results")
            last = data.get("last_training")
            return cls(
                model_type=str(data["model_type"]),
                status=status,
                accuracy=accuracy,
                parameters=parameters,
                backtest_results=BacktestResult.from_dict(backtest) if backtest else None,
                training_history=list(data.get("training_history") or []),
                last_training=datetime.fromisoformat(last) if last else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"Invalid model state record: {e}") from e


@dataclass(frozen=True)
class TrainingSession:
    """One training run, as stored in the training history."""
    instrument: str
    model: str
    accuracy: float
    valid_predictions: int
    accepted: bool
    data_points: int
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d
