import asyncio

import joblib
import numpy as np
import pandas as pd
import pytest

from fxsignals.exceptions import PersistenceFailure
from fxsignals.models import BacktestResult, ModelState, ModelStatus
from fxsignals.patterns import AnalogMiner
from fxsignals.trading import InMemoryModelStore, JoblibModelStore


def _state(accuracy=0.62):
    return ModelState(
        model_type="heuristic",
        status=ModelStatus.TRAINED,
        accuracy=accuracy,
        parameters={"config": {"score_threshold": 0.25}, "weights": np.array([0.1, 0.2])},
        backtest_results=BacktestResult(accuracy, 30, 18, 60, 0.5, 12, 6, 40.0, 0.8, 15.0),
        training_history=[{"accuracy": accuracy, "accepted": True}],
    )


def _stores(tmp_path):
    return [InMemoryModelStore(), JoblibModelStore(tmp_path / "models", tmp_path / "patterns")]


def _cycle(n=150):
    t = np.arange(n)
    closes = 1.1 * (1 + 0.08 * np.sin(2 * np.pi * t / 60))
    opens = np.concatenate([[closes[0]], closes[:-1]])
    ts = pd.Timestamp("2024-01-01", tz="UTC") + pd.to_timedelta(t, unit="h")
    return pd.DataFrame({
        "timestamp": ts, "open": opens,
        "high": np.maximum(opens, closes) + 0.0005, "low": np.minimum(opens, closes) - 0.0005,
        "close": closes, "volume": 100.0,
    })


def test_state_round_trip(tmp_path):
    async def scenario(store):
        await store.save_model_state("eur/usd", "heuristic", _state())
        loaded = await store.load_model_state("EURUSD", "heuristic")
        missing = await store.load_model_state("EURUSD", "sequence")
        return loaded, missing

    for store in _stores(tmp_path):
        loaded, missing = asyncio.run(scenario(store))
        assert missing is None
        assert loaded.is_trained
        assert loaded.accuracy == 0.62
        assert loaded.backtest_results == _state().backtest_results
        assert loaded.parameters["weights"].tolist() == [0.1, 0.2]


def test_training_history_is_capped(tmp_path):
    async def scenario(store):
        for i in range(55):
            await store.save_training_session("EURUSD", {"accuracy": 0.5, "n": i})
        return await store.load_training_history("EURUSD"), await store.load_training_history("GBPUSD")

    for store in _stores(tmp_path):
        history, empty = asyncio.run(scenario(store))
        assert len(history) == 50
        assert history[0]["n"] == 5
        assert history[-1]["n"] == 54
        assert empty == []


def test_delete_all_states_of_an_instrument(tmp_path):
    async def scenario(store):
        await store.save_model_state("EURUSD", "heuristic", _state())
        await store.save_model_state("EURUSD", "sequence", _state())
        await store.save_model_state("GBPUSD", "heuristic", _state())
        await store.save_training_session("EURUSD", {"accuracy": 0.5})
        await store.delete_model_state("EURUSD")
        return (
            await store.load_model_state("EURUSD", "heuristic"),
            await store.load_model_state("EURUSD", "sequence"),
            await store.load_model_state("GBPUSD", "heuristic"),
            await store.load_training_history("EURUSD"),
        )

    for store in _stores(tmp_path):
        eur_h, eur_s, gbp_h, history = asyncio.run(scenario(store))
        assert eur_h is None and eur_s is None
        assert gbp_h is not None
        assert history == []


def test_pattern_database_round_trip(tmp_path):
    miner = AnalogMiner()
    analogs = miner.mine(_cycle(), "EURUSD")

    async def scenario(store):
        empty = await store.load_pattern_database()
        await store.save_pattern_database(miner.database)
        return empty, await store.load_pattern_database()

    for store in _stores(tmp_path):
        empty, loaded = asyncio.run(scenario(store))
        assert empty is None
        assert len(loaded) == len(analogs)
        assert [a.id for a in loaded.get("EURUSD")] == [a.id for a in analogs]

    assert (tmp_path / "patterns" / "pattern_database.joblib").exists()


def test_joblib_layout(tmp_path):
    store = JoblibModelStore(tmp_path)
    asyncio.run(store.save_model_state("xau/usd", "sequence", _state()))
    artifact = joblib.load(tmp_path / "XAUUSD_sequence.joblib")
    assert artifact["version"] == 1
    assert artifact["state"]["model_type"] == "heuristic"


def test_corrupt_artifacts_raise(tmp_path):
    store = JoblibModelStore(tmp_path)
    tmp_path.mkdir(exist_ok=True)

    (tmp_path / "EURUSD_heuristic.joblib").write_bytes(b"not a joblib file")
    with pytest.raises(PersistenceFailure):
        asyncio.run(store.load_model_state("EURUSD", "heuristic"))

    joblib.dump([1, 2, 3], tmp_path / "GBPUSD_heuristic.joblib")
    with pytest.raises(PersistenceFailure):
        asyncio.run(store.load_model_state("GBPUSD", "heuristic"))

    joblib.dump({"version": 1}, tmp_path / "USDJPY_heuristic.joblib")
    with pytest.raises(PersistenceFailure):
        asyncio.run(store.load_model_state("USDJPY", "heuristic"))

    joblib.dump({"version": 1, "state": {"status": "TRAINED"}}, tmp_path / "AUDUSD_heuristic.joblib")
    with pytest.raises(PersistenceFailure):
        asyncio.run(store.load_model_state("AUDUSD", "heuristic"))
