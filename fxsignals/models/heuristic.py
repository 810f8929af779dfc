"""
Heuristic Predictor - rule-weighted indicator scoring.

Trained path:
    per-indicator signal strengths -> weighted score -> direction,
    confidence shaped by volatility / RSI / trend agreement,
    ATR-based target and stop.

Untrained path (fallback_prediction):
    RSI extremes confirmed by MACD, else trend + momentum agreement.

"Training" runs the walk-forward evaluator with the trained rules and
accepts the result through the regression guard.
"""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Dict, Optional, Tuple

from ..backtest import WalkForwardBacktester
from ..config import HISTORY_MARGIN, HeuristicConfig, REGRESSION_GUARD_RATIO
from ..data_loader import candles_to_frame
from ..exceptions import InsufficientData, TrainingInProgress
from ..feature_engineering import FeatureVector, calculate_features
from .state import resolve_retrain, summarize_predictions
from .types import (
    BacktestResult, Direction, ModelState, ModelStatus, Prediction,
    PredictionLog, utc_now,
)

logger = logging.getLogger("HeuristicPredictor")

MODEL_NAME = "heuristic"


# =============================================================================
# SIGNAL TABLES
# =============================================================================

def rsi_signal(rsi: float) -> float:
    if rsi < 25:
        return 1.2     # oversold extreme
    if rsi < 35:
        return 0.8
    if rsi > 75:
        return -1.2    # overbought extreme
    if rsi > 65:
        return -0.8
    if 45 <= rsi <= 55:
        return 0.3
    return 0.0


def macd_signal(macd: float) -> float:
    if macd > 0.002:
        return 1.0
    if macd > 0.0005:
        return 0.6
    if macd < -0.002:
        return -1.0
    if macd < -0.0005:
        return -0.6
    return macd * 200


def momentum_signal(momentum: float) -> float:
    if momentum > 0.01:
        return 1.1
    if momentum > 0.003:
        return 0.7
    if momentum < -0.01:
        return -1.1
    if momentum < -0.003:
        return -0.7
    return momentum * 50


def trend_signal(trend: float) -> float:
    if trend > 0.0001:
        return 0.8
    if trend < -0.0001:
        return -0.8
    return 0.0


def calculate_signals(features: FeatureVector, config: HeuristicConfig) -> Dict[str, float]:
    """
    Signal strength per indicator.

    Volume has no signal (the feature vector carries no volume), so its
    weight drops out of the score denominator.
    """
    atr_ratio = features.atr / features.avg_atr if features.avg_atr > 0 else 1.0
    return {
        "rsi": rsi_signal(features.rsi),
        "macd": macd_signal(features.macd),
        "atr": config.atr_penalty if atr_ratio > config.atr_penalty_ratio else 0.0,
        "momentum": momentum_signal(features.momentum),
        "trend": trend_signal(features.trend),
    }


def weighted_score(signals: Dict[str, float], weights: Dict[str, float]) -> float:
    total = 0.0
    total_weight = 0.0
    for name, value in signals.items():
        weight = weights.get(name)
        if weight:
            total += value * weight
            total_weight += weight
    return total / total_weight if total_weight > 0 else 0.0


# =============================================================================
# PREDICTION RULES
# =============================================================================

def scored_prediction(
    features: FeatureVector,
    close: float,
    config: HeuristicConfig,
    timestamp: Optional[datetime] = None
) -> Prediction:
    """Trained-path prediction from a feature vector."""
    signals = calculate_signals(features, config)
    score = weighted_score(signals, config.weights)

    if score > config.score_threshold:
        direction = Direction.BUY
    elif score < -config.score_threshold:
        direction = Direction.SELL
    else:
        direction = Direction.HOLD

    confidence = min(abs(score) * config.confidence_scale, config.max_confidence)
    if features.atr > features.avg_atr * config.high_vol_ratio:
        confidence *= config.high_vol_penalty
    if 25 < features.rsi < 75:
        confidence *= config.rsi_neutral_boost
    if features.trend * score > 0:
        confidence *= config.trend_agreement_boost
    confidence = max(config.min_confidence, min(config.max_confidence, confidence))

    atr = features.atr
    if direction == Direction.BUY:
        target = close + atr * (config.target_atr_mult + features.momentum * config.target_momentum_mult)
        stop = close - atr * (config.stop_atr_mult + features.volatility * config.stop_volatility_mult)
    elif direction == Direction.SELL:
        target = close + atr * (-config.target_atr_mult + features.momentum * config.target_momentum_mult)
        stop = close + atr * (config.stop_atr_mult + features.volatility * config.stop_volatility_mult)
    else:
        target = stop = close

    return Prediction(
        direction=direction,
        confidence=float(confidence),
        target_price=float(target),
        stop_loss=float(stop),
        source_model=MODEL_NAME,
        timestamp=timestamp or utc_now(),
    )


def fallback_prediction(
    features: FeatureVector,
    close: float,
    timestamp: Optional[datetime] = None
) -> Prediction:
    """Untrained-path prediction: RSI + MACD extremes, then trend + momentum."""
    direction = Direction.HOLD
    confidence = 50.0

    if features.rsi < 30 and features.macd > 0:
        direction = Direction.BUY
        confidence = 65 + (30 - features.rsi)
    elif features.rsi > 70 and features.macd < 0:
        direction = Direction.SELL
        confidence = 65 + (features.rsi - 70)
    elif features.trend > 0.0005 and features.momentum > 0:
        direction = Direction.BUY
        confidence = 60.0
    elif features.trend < -0.0005 and features.momentum < 0:
        direction = Direction.SELL
        confidence = 60.0

    confidence = min(confidence, 85.0)

    if direction == Direction.BUY:
        target, stop = close + 2 * features.atr, close - 1.5 * features.atr
    elif direction == Direction.SELL:
        target, stop = close - 2 * features.atr, close + 1.5 * features.atr
    else:
        target = stop = close

    return Prediction(
        direction=direction,
        confidence=float(confidence),
        target_price=float(target),
        stop_loss=float(stop),
        source_model=f"{MODEL_NAME}_fallback",
        timestamp=timestamp or utc_now(),
    )


# =============================================================================
# PREDICTOR
# =============================================================================

class HeuristicPredictor:
    """
    Rule-weighted indicator predictor with a walk-forward training step.

    Args:
        config: weights and thresholds
        regression_ratio: retrain is rejected below this share of the
            previous accuracy
    """

    def __init__(
        self,
        config: Optional[HeuristicConfig] = None,
        regression_ratio: float = REGRESSION_GUARD_RATIO
    ):
        self.config = config or HeuristicConfig()
        self.regression_ratio = regression_ratio
        self.state = ModelState(model_type=MODEL_NAME)
        self.prediction_log = PredictionLog()

    @property
    def is_trained(self) -> bool:
        return self.state.is_trained

    def predict(self, candles, use_trained_rules: Optional[bool] = None) -> Prediction:
        """
        Predict from a candle window (>= 30 candles). Pure: nothing is recorded.

        Args:
            candles: trailing candle window
            use_trained_rules: force one path; defaults to the trained path
                once the model is trained, the fallback otherwise
        """
        df = candles_to_frame(candles)
        features = calculate_features(df)
        close = float(df["close"].iloc[-1])
        trained = self.is_trained if use_trained_rules is None else use_trained_rules

        if trained:
            return scored_prediction(features, close, self.config)
        return fallback_prediction(features, close)

    def record_prediction(self, prediction: Prediction) -> None:
        self.prediction_log.append(prediction)

    def prediction_stats(self) -> Dict:
        return summarize_predictions(self.prediction_log)

    def evaluate(self, candles) -> Tuple[BacktestResult, WalkForwardBacktester]:
        """Walk-forward evaluation of the trained rules."""
        backtester = WalkForwardBacktester(
            predict_fn=lambda window: self.predict(window, use_trained_rules=True),
            lookback=self.config.lookback,
            horizon=self.config.horizon,
            threshold=self.config.outcome_threshold,
        )
        return backtester.run(candles), backtester

    def train(self, candles) -> Tuple[BacktestResult, bool]:
        """
        Evaluate the trained rules walk-forward and advance the model state.

        Returns:
            (backtest result of this run, accepted by the regression guard)

        Raises:
            TrainingInProgress: if a training run is already active
            InsufficientData: fewer than lookback + 20 candles
        """
        if self.state.status == ModelStatus.TRAINING:
            raise TrainingInProgress(f"{MODEL_NAME} model is already training")

        candles = candles_to_frame(candles)
        required = self.config.lookback + HISTORY_MARGIN
        if len(candles) < required:
            raise InsufficientData(required, len(candles))

        previous = self.state
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
            result, _ = self.evaluate(candles)
        except Exception:
            self.state = previous
            raise

        now = utc_now()
        candidate = ModelState(
            model_type=MODEL_NAME,
            status=ModelStatus.TRAINED,
            accuracy=result.accuracy,
            parameters={"config": asdict(self.config)},
            backtest_results=result,
            training_history=previous.training_history,
            last_training=now,
        )
        session = {
            "timestamp": now.isoformat(),
            "model": MODEL_NAME,
            "accuracy": result.accuracy,
            "valid_predictions": result.valid_predictions,
            "data_points": len(candles),
            "method": result.method,
        }
        self.state, accepted = resolve_retrain(previous, candidate, session, self.regression_ratio)

        logger.info(
            f"Heuristic training {'accepted' if accepted else 'rejected'}: "
            f"accuracy={result.accuracy:.3f}, state accuracy={self.state.accuracy:.3f}"
        )
        return result, accepted

    def load_state(self, state: ModelState) -> None:
        """Restore a persisted state (config is restored from its parameters)."""
        saved = state.parameters.get("config")
        if saved:
            self.config = HeuristicConfig(**saved)
        self.state = state
