import numpy as np
import pandas as pd
import pytest

from fxsignals.config import HeuristicConfig
from fxsignals.exceptions import InsufficientData, TrainingInProgress
from fxsignals.feature_engineering import FeatureVector
from fxsignals.models.heuristic import (
    HeuristicPredictor,
    calculate_signals,
    fallback_prediction,
    scored_prediction,
    weighted_score,
)
from fxsignals.models.types import BacktestResult, Direction, ModelState, ModelStatus


def _frame(closes, spread=0.0005):
    closes = np.asarray(closes, dtype=float)
    opens = np.concatenate([[closes[0]], closes[:-1]])
    ts = pd.Timestamp("2024-01-01", tz="UTC") + pd.to_timedelta(np.arange(len(closes)), unit="h")
    return pd.DataFrame({
        "timestamp": ts,
        "open": opens,
        "high": np.maximum(opens, closes) + spread,
        "low": np.minimum(opens, closes) - spread,
        "close": closes,
        "volume": 100.0,
    })


def _random_walk(n, seed=11, start=1.10, sigma=0.002):
    rng = np.random.default_rng(seed)
    return start * np.exp(np.cumsum(rng.normal(0, sigma, n)))


def _features(**overrides):
    values = dict(rsi=50.0, macd=0.0, atr=0.001, avg_atr=0.001, momentum=0.0,
                  trend=0.0, volatility=0.001, price_change=0.0)
    values.update(overrides)
    return FeatureVector(**values)


def _result(accuracy):
    return BacktestResult(
        accuracy=accuracy, valid_predictions=40, correct_predictions=int(accuracy * 40),
        total_predictions=60, win_rate=0.5, total_trades=10, profitable_trades=5,
        total_profit=0.0, sharpe_ratio=0.0, max_drawdown=0.0,
    )


def test_oversold_bullish_setup_is_buy():
    features = _features(rsi=20.0, macd=0.003, momentum=0.012, trend=0.0002)
    prediction = scored_prediction(features, 1.1000, HeuristicConfig())

    assert prediction.direction == Direction.BUY
    assert 50.0 <= prediction.confidence <= 95.0
    assert prediction.target_price > 1.1000 > prediction.stop_loss
    assert prediction.source_model == "heuristic"


def test_overbought_bearish_setup_is_sell():
    features = _features(rsi=80.0, macd=-0.003, momentum=-0.012, trend=-0.0002)
    prediction = scored_prediction(features, 1.1000, HeuristicConfig())

    assert prediction.direction == Direction.SELL
    assert prediction.target_price < 1.1000 < prediction.stop_loss


def test_neutral_features_hold_at_minimum_confidence():
    prediction = scored_prediction(_features(), 1.1000, HeuristicConfig())
    assert prediction.direction == Direction.HOLD
    assert prediction.confidence == 50.0
    assert prediction.target_price == prediction.stop_loss == 1.1000


def test_atr_spike_adds_penalty_and_volume_has_no_signal():
    signals = calculate_signals(_features(atr=0.003, avg_atr=0.001), HeuristicConfig())
    assert signals["atr"] == -0.5
    assert "volume" not in signals

    weights = {"rsi": 0.5, "volume": 0.5}
    assert weighted_score({"rsi": 1.0}, weights) == pytest.approx(1.0)


def test_fallback_is_distinguishable():
    prediction = fallback_prediction(_features(rsi=25.0, macd=0.001), 1.1000)
    assert prediction.direction == Direction.BUY
    assert prediction.confidence == pytest.approx(70.0)
    assert prediction.source_model == "heuristic_fallback"


def test_predict_is_pure_and_uses_fallback_until_trained():
    predictor = HeuristicPredictor()
    candles = _frame(_random_walk(60))

    assert predictor.predict(candles).source_model == "heuristic_fallback"
    assert predictor.predict(candles, use_trained_rules=True).source_model == "heuristic"
    assert len(predictor.prediction_log) == 0

    predictor.record_prediction(predictor.predict(candles))
    assert predictor.prediction_stats()["count"] == 1


def test_train_runs_walk_forward_and_marks_trained():
    predictor = HeuristicPredictor()
    result, accepted = predictor.train(_frame(_random_walk(150)))

    assert accepted
    assert predictor.is_trained
    assert predictor.state.accuracy == result.accuracy
    assert predictor.state.backtest_results == result
    assert len(predictor.state.training_history) == 1
    assert predictor.predict(_frame(_random_walk(60))).source_model == "heuristic"


def test_regression_guard_keeps_previous_state(monkeypatch):
    predictor = HeuristicPredictor()
    previous = _result(0.8)
    predictor.state = ModelState(
        model_type="heuristic", status=ModelStatus.TRAINED, accuracy=0.8,
        parameters={"marker": 1}, backtest_results=previous,
    )
    monkeypatch.setattr(predictor, "evaluate", lambda candles: (_result(0.3), None))

    result, accepted = predictor.train(_frame(_random_walk(100)))

    assert not accepted
    assert result.accuracy == 0.3
    assert predictor.state.accuracy == 0.8
    assert predictor.state.parameters == {"marker": 1}
    assert predictor.state.backtest_results == previous
    assert predictor.state.training_history[-1]["accepted"] is False


def test_reentrant_training_is_refused():
    predictor = HeuristicPredictor()
    predictor.state = ModelState(model_type="heuristic", status=ModelStatus.TRAINING)
    with pytest.raises(TrainingInProgress):
        predictor.train(_frame(_random_walk(100)))


def test_training_needs_lookback_plus_margin():
    predictor = HeuristicPredictor()
    with pytest.raises(InsufficientData) as excinfo:
        predictor.train(_frame(_random_walk(60)))
    assert excinfo.value.required == 70
    assert excinfo.value.available == 60
    assert predictor.state.status == ModelStatus.UNTRAINED

    result, accepted = predictor.train(_frame(_random_walk(70)))
    assert accepted
    assert result.total_predictions == 70 - 3 - 50


def test_failed_training_restores_state(monkeypatch):
    predictor = HeuristicPredictor()

    def fail(candles):
        assert predictor.state.status == ModelStatus.TRAINING
        raise InsufficientData(100, 90)

    monkeypatch.setattr(predictor, "evaluate", fail)
    with pytest.raises(InsufficientData):
        predictor.train(_frame(_random_walk(100)))
    assert predictor.state.status == ModelStatus.UNTRAINED


def test_load_state_restores_config():
    predictor = HeuristicPredictor()
    predictor.train(_frame(_random_walk(150)))

    restored = HeuristicPredictor(HeuristicConfig(score_threshold=0.9))
    restored.load_state(predictor.state)
    assert restored.is_trained
    assert restored.config.score_threshold == 0.25
