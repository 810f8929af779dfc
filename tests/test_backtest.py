import numpy as np
import pandas as pd
import pytest

from fxsignals.backtest import WalkForwardBacktester, simplified_accuracy
from fxsignals.exceptions import InsufficientData
from fxsignals.models.types import Direction, Prediction
from fxsignals.utils.metrics import compute_trading_metrics, directional_accuracy


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


def _random_walk(n, seed=3, start=1.10, sigma=0.003):
    rng = np.random.default_rng(seed)
    return start * np.exp(np.cumsum(rng.normal(0, sigma, n)))


def _momentum_predictor(confidence=80.0):
    """BUY after an up window, SELL after a down window."""
    def predict(window):
        closes = window["close"].to_numpy()
        direction = Direction.BUY if closes[-1] > closes[0] else Direction.SELL
        return Prediction(direction, confidence, closes[-1], closes[-1], "test")
    return predict


def test_record_layout_and_prices():
    df = _frame(_random_walk(120))
    backtester = WalkForwardBacktester(_momentum_predictor(), lookback=50, horizon=3)
    result = backtester.run(df)

    records = backtester.records_frame()
    assert len(records) == 120 - 3 - 50
    assert result.total_predictions == len(records)

    first = records.iloc[0]
    assert first["index"] == 50
    assert first["entry_price"] == df["close"].iloc[49]
    assert first["exit_price"] == df["close"].iloc[52]


def test_predictor_sees_only_past_candles():
    df = _frame(_random_walk(150))
    seen = []

    def predict(window):
        seen.append(window["timestamp"].iloc[-1])
        return _momentum_predictor()(window)

    backtester = WalkForwardBacktester(predict, lookback=50, horizon=3)
    backtester.run(df)
    records = backtester.records_frame()
    for ts, i in zip(seen, records["index"]):
        assert ts == df["timestamp"].iloc[i - 1]

    # rewriting the future must not change earlier calls
    changed = df.copy()
    changed.loc[100:, ["open", "high", "low", "close"]] *= 0.9
    replay = WalkForwardBacktester(_momentum_predictor(), lookback=50, horizon=3)
    replay.run(changed)
    base_calls = records[records["index"] <= 100]["predicted"].tolist()
    replayed = replay.records_frame()
    replay_calls = replayed[replayed["index"] <= 100]["predicted"].tolist()
    assert base_calls == replay_calls


def test_confidence_gate_controls_trading():
    df = _frame(_random_walk(120))
    at_gate = WalkForwardBacktester(_momentum_predictor(60.0)).run(df)
    above_gate = WalkForwardBacktester(_momentum_predictor(61.0)).run(df)
    assert at_gate.total_trades == 0
    assert above_gate.total_trades == 120 - 3 - 50


def test_simplified_scoring_when_too_few_valid_outcomes():
    df = _frame(_random_walk(120))
    result = WalkForwardBacktester(_momentum_predictor(), min_valid=10 ** 6).run(df)
    assert result.method == "simplified"
    assert 0.5 <= result.accuracy <= 0.85
    assert result.accuracy == pytest.approx(simplified_accuracy(df))


def test_too_few_candles():
    with pytest.raises(InsufficientData):
        WalkForwardBacktester(_momentum_predictor(), lookback=50, horizon=3).run(_frame(_random_walk(53)))


def test_trading_metrics():
    metrics = compute_trading_metrics([10.0, -5.0, 10.0])
    assert metrics["total_trades"] == 3
    assert metrics["profitable_trades"] == 2
    assert metrics["win_rate"] == pytest.approx(2 / 3)
    assert metrics["total_profit"] == pytest.approx(15.0)
    assert metrics["max_drawdown"] == pytest.approx(5.0)
    pnl = np.array([10.0, -5.0, 10.0])
    assert metrics["sharpe_ratio"] == pytest.approx(pnl.mean() / pnl.std(ddof=1) * np.sqrt(252))

    assert compute_trading_metrics([5.0])["sharpe_ratio"] == 0.0
    assert compute_trading_metrics([])["total_trades"] == 0


def test_directional_accuracy_ignores_hold_outcomes():
    predicted = pd.Series(["BUY", "SELL", "BUY", "HOLD"])
    actual = pd.Series(["BUY", "BUY", "HOLD", "SELL"])
    acc = directional_accuracy(predicted, actual)
    assert acc == {"valid": 3, "correct": 1, "accuracy": pytest.approx(1 / 3)}
