"""
Sequence Classifier - training entry point, inference and state handling.

Probabilities are ordered [BUY, SELL, HOLD]. There is no untrained
fallback: inference before training raises ModelNotTrained.
"""
import logging
from dataclasses import asdict
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
import torch

from ...config import ATR_PERIOD, REGRESSION_GUARD_RATIO
from ...data_loader import candles_to_frame
from ...exceptions import InsufficientData, ModelNotTrained, TrainingInProgress
from ...feature_engineering import calculate_atr
from ...labeling import LABEL_NAMES, get_label_threshold, label_distribution
from ..state import resolve_retrain, summarize_predictions
from ..types import Direction, ModelState, ModelStatus, Prediction, PredictionLog, utc_now
from .config import SequenceModelConfig
from .features import build_inference_window, build_sequence_dataset
from .network import SequenceNet, state_dict_from_numpy, state_dict_to_numpy
from .train import scale_sequences, train_sequence_model

logger = logging.getLogger("SequenceClassifier")

MODEL_NAME = "sequence"


class SequenceClassifier:
    """
    Recurrent BUY / SELL / HOLD classifier for one instrument.

    Args:
        instrument: symbol used to resolve the label threshold
        config: model / training configuration
        regression_ratio: retrain is rejected below this share of the
            previous validation accuracy
    """

    def __init__(
        self,
        instrument: str,
        config: Optional[SequenceModelConfig] = None,
        regression_ratio: float = REGRESSION_GUARD_RATIO
    ):
        self.instrument = instrument
        self.config = config or SequenceModelConfig()
        self.regression_ratio = regression_ratio
        self.threshold = get_label_threshold(instrument, self.config.threshold_overrides)

        self.state = ModelState(model_type=MODEL_NAME)
        self.prediction_log = PredictionLog()

        self._model: Optional[SequenceNet] = None
        self._mean: Optional[np.ndarray] = None
        self._scale: Optional[np.ndarray] = None

    @property
    def is_trained(self) -> bool:
        return self.state.is_trained and self._model is not None

    # -------------------------------------------------------------------------
    # Training
    # -------------------------------------------------------------------------

    def train(self, candles) -> Tuple[Dict, bool]:
        """
        Train on a candle history and advance the model state.

        Returns:
            (training metrics, accepted by the regression guard)

        Raises:
            TrainingInProgress: if a training run is already active
            InsufficientData: too few candles / sequences
        """
        if self.state.status == ModelStatus.TRAINING:
            raise TrainingInProgress(f"{MODEL_NAME} model for {self.instrument} is already training")

        previous = self.state
        previous_network = (self._model, self._mean, self._scale)
        self.state = ModelState(
            model_type=MODEL_NAME,
            status=ModelStatus.TRAINING,
            accuracy=previous.accuracy,
            parameters=previous.parameters,
            backtest_results=previous.backtest_results,
            training_history=previous.training_history,
            last_training=previous.last_training,
        )

        try:
            X, y, _ = build_sequence_dataset(candles, self.threshold, self.config)
            logger.info(
                f"{self.instrument}: {len(X)} sequences, threshold={self.threshold}, "
                f"labels={label_distribution(pd.Series(y))}"
            )
            model, scaler, metrics = train_sequence_model(X, y, self.config)
        except Exception:
            self.state = previous
            raise

        now = utc_now()
        candidate = ModelState(
            model_type=MODEL_NAME,
            status=ModelStatus.TRAINED,
            accuracy=metrics["val_accuracy"],
            parameters={
                "state_dict": state_dict_to_numpy(model),
                "scaler_mean": scaler.mean_.astype(np.float32),
                "scaler_scale": scaler.scale_.astype(np.float32),
                "input_size": int(X.shape[-1]),
                "config": asdict(self.config),
                "val_loss": metrics["val_loss"],
            },
            training_history=previous.training_history,
            last_training=now,
        )
        session = {
            "timestamp": now.isoformat(),
            "model": MODEL_NAME,
            "accuracy": metrics["val_accuracy"],
            "val_loss": metrics["val_loss"],
            "valid_predictions": metrics["val_samples"],
            "data_points": len(candles),
        }
        self.state, accepted = resolve_retrain(previous, candidate, session, self.regression_ratio)

        if accepted:
            self._model = model
            self._mean = scaler.mean_.astype(np.float32)
            self._scale = scaler.scale_.astype(np.float32)
        else:
            self._model, self._mean, self._scale = previous_network

        return metrics, accepted

    # -------------------------------------------------------------------------
    # Inference
    # -------------------------------------------------------------------------

    def predict(self, candles) -> Prediction:
        """
        Classify the latest window. Pure: nothing is recorded.

        Raises:
            ModelNotTrained: before the first successful training
            InsufficientData: fewer than sequence_length + 20 candles
        """
        if not self.is_trained:
            raise ModelNotTrained(f"{MODEL_NAME} model for {self.instrument} is not trained")

        df = candles_to_frame(candles)
        required = self.config.min_inference_candles
        if len(df) < required:
            raise InsufficientData(required, len(df))

        window, _ = build_inference_window(df, self.config)
        X = scale_sequences(window, self._mean, self._scale)

        self._model.eval()
        with torch.no_grad():
            probs = torch.softmax(self._model(torch.from_numpy(X)), dim=1)[0].numpy()

        cls = int(np.argmax(probs))
        direction = Direction(LABEL_NAMES[cls])
        close = float(df["close"].iloc[-1])
        atr = calculate_atr(df["high"], df["low"], df["close"], ATR_PERIOD)

        if direction == Direction.BUY:
            target, stop = close + 2 * atr, close - 1.5 * atr
        elif direction == Direction.SELL:
            target, stop = close - 2 * atr, close + 1.5 * atr
        else:
            target = stop = close

        return Prediction(
            direction=direction,
            confidence=float(probs[cls] * 100),
            target_price=float(target),
            stop_loss=float(stop),
            source_model=MODEL_NAME,
            probabilities={LABEL_NAMES[i]: float(p) for i, p in enumerate(probs)},
        )

    def record_prediction(self, prediction: Prediction) -> None:
        self.prediction_log.append(prediction)

    def prediction_stats(self) -> Dict:
        return summarize_predictions(self.prediction_log)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def load_state(self, state: ModelState) -> None:
        """Rebuild the network from a persisted state."""
        self.state = state
        if not state.is_trained:
            self._model = None
            return

        params = state.parameters
        saved = params.get("config")
        if saved:
            self.config = SequenceModelConfig(**saved)
            self.threshold = get_label_threshold(self.instrument, self.config.threshold_overrides)

        model = SequenceNet(
            input_size=params["input_size"],
            hidden_size=self.config.hidden_size,
            num_layers=self.config.num_layers,
            dense_units=self.config.dense_units,
            dropout=self.config.dropout,
            recurrent_dropout=self.config.recurrent_dropout,
        )
        model.load_state_dict(state_dict_from_numpy(params["state_dict"]))
        model.eval()

        self._model = model
        self._mean = np.asarray(params["scaler_mean"], dtype=np.float32)
        self._scale = np.asarray(params["scaler_scale"], dtype=np.float32)

    @classmethod
    def from_state(
        cls,
        instrument: str,
        state: ModelState,
        regression_ratio: float = REGRESSION_GUARD_RATIO
    ) -> "SequenceClassifier":
        classifier = cls(instrument, regression_ratio=regression_ratio)
        classifier.load_state(state)
        return classifier
