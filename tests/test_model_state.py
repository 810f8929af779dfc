import pytest

from fxsignals.exceptions import PersistenceFailure
from fxsignals.models.state import (
    passes_regression_guard,
    performance_trend,
    resolve_retrain,
    summarize_predictions,
)
from fxsignals.models.types import (
    BacktestResult, Direction, ModelState, ModelStatus, Prediction, PredictionLog,
)


def _trained(accuracy, history=None):
    return ModelState(
        model_type="heuristic", status=ModelStatus.TRAINED, accuracy=accuracy,
        parameters={"v": accuracy}, training_history=history or [],
    )


def test_guard_accepts_first_training_and_small_drops():
    assert passes_regression_guard(ModelState(model_type="heuristic"), 0.1)
    assert passes_regression_guard(_trained(0.8), 0.6)
    assert not passes_regression_guard(_trained(0.8), 0.5)


def test_rejected_retrain_keeps_previous_values_and_records_session():
    previous = _trained(0.8)
    candidate = _trained(0.4)
    state, accepted = resolve_retrain(previous, candidate, {"accuracy": 0.4})

    assert not accepted
    assert state.accuracy == 0.8
    assert state.parameters == {"v": 0.8}
    assert state.training_history == [{"accuracy": 0.4, "accepted": False}]


def test_history_is_capped_at_fifty():
    previous = _trained(0.5, history=[{"accuracy": 0.5, "n": i} for i in range(50)])
    state, accepted = resolve_retrain(previous, _trained(0.6), {"accuracy": 0.6, "n": 50})
    assert accepted
    assert len(state.training_history) == 50
    assert state.training_history[0]["n"] == 1
    assert state.training_history[-1]["n"] == 50


@pytest.mark.parametrize("accuracies, expected", [
    ([0.5] * 5 + [0.6] * 5, "improving"),
    ([0.6] * 5 + [0.5] * 5, "declining"),
    ([0.55] * 10, "stable"),
    ([0.5] * 9, "insufficient_data"),
])
def test_performance_trend(accuracies, expected):
    assert performance_trend([{"accuracy": a} for a in accuracies]) == expected


def test_prediction_log_is_capped():
    log = PredictionLog(cap=3)
    for i in range(5):
        log.append(Prediction(Direction.BUY, 60.0 + i, 1.0, 1.0, "test"))
    assert len(log) == 3
    assert [p.confidence for p in log.recent(2)] == [63.0, 64.0]

    stats = summarize_predictions(log)
    assert stats["count"] == 3
    assert stats["buy"] == 3
    assert stats["avg_confidence"] == pytest.approx(63.0)


def test_unit_confidence():
    assert Prediction(Direction.SELL, 72.0, 1.0, 1.0, "test").unit_confidence == pytest.approx(0.72)


def test_persisted_training_status_loads_as_untrained():
    state = ModelState(model_type="sequence", status=ModelStatus.TRAINING, accuracy=0.4)
    restored = ModelState.from_dict(state.to_dict())
    assert restored.status == ModelStatus.UNTRAINED
    assert not restored.is_trained


def test_state_round_trip_with_backtest():
    result = BacktestResult(0.6, 20, 12, 50, 0.55, 10, 6, 120.0, 1.2, 30.0)
    state = ModelState(model_type="heuristic", status=ModelStatus.TRAINED, accuracy=0.6,
                       backtest_results=result)
    restored = ModelState.from_dict(state.to_dict())
    assert restored.backtest_results == result
    assert restored.is_trained


def test_malformed_state_record():
    with pytest.raises(PersistenceFailure):
        ModelState.from_dict({"status": "TRAINED"})
    with pytest.raises(PersistenceFailure):
        ModelState.from_dict({"model_type": "heuristic", "status": "BROKEN"})
