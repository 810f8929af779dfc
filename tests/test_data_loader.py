import asyncio

import numpy as np
import pandas as pd
import pytest

from fxsignals.data_loader import (
    Candle, FrameCandleSource, candles_to_frame, frame_to_candles, load_candles, validate_candles,
)
from fxsignals.exceptions import DataUnavailable, InsufficientData, InvalidCandleData


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


def test_valid_frame_passes_and_keeps_columns():
    df = validate_candles(_frame(np.linspace(1.10, 1.11, 20)))
    assert list(df.columns) == ["timestamp", "open", "high", "low", "close", "volume"]
    assert len(df) == 20


def test_high_below_close_is_rejected():
    df = _frame(np.linspace(1.10, 1.11, 10))
    df.loc[5, "high"] = df.loc[5, "close"] - 0.001
    with pytest.raises(InvalidCandleData):
        validate_candles(df)


def test_low_above_open_is_rejected():
    df = _frame(np.linspace(1.10, 1.11, 10))
    df.loc[3, "low"] = df.loc[3, "open"] + 0.001
    with pytest.raises(InvalidCandleData):
        validate_candles(df)


def test_duplicate_timestamps_are_rejected():
    df = _frame(np.linspace(1.10, 1.11, 10))
    df.loc[4, "timestamp"] = df.loc[3, "timestamp"]
    with pytest.raises(InvalidCandleData):
        validate_candles(df)


def test_nan_prices_are_rejected():
    df = _frame(np.linspace(1.10, 1.11, 10))
    df.loc[2, "close"] = np.nan
    with pytest.raises(InvalidCandleData):
        validate_candles(df)


def test_too_short_window_raises_insufficient_data():
    with pytest.raises(InsufficientData) as exc:
        validate_candles(_frame(np.linspace(1.10, 1.11, 10)), min_length=30)
    assert exc.value.required == 30
    assert exc.value.available == 10
    assert isinstance(exc.value, ValueError)


def test_candle_records_and_missing_volume():
    df = _frame(np.linspace(1.10, 1.11, 5))
    records = frame_to_candles(df)
    assert isinstance(records[0], Candle)
    assert candles_to_frame(records)["close"].tolist() == df["close"].tolist()

    no_volume = df.drop(columns=["volume"])
    assert (candles_to_frame(no_volume)["volume"] == 0.0).all()


def test_datetime_index_is_accepted():
    df = _frame(np.linspace(1.10, 1.11, 5)).set_index("timestamp")
    out = candles_to_frame(df)
    assert "timestamp" in out.columns
    assert isinstance(out.index, pd.RangeIndex)


def test_load_candles_from_csv(tmp_path):
    path = tmp_path / "eurusd.csv"
    _frame(np.linspace(1.10, 1.11, 12)).to_csv(path, index=False)
    df = load_candles(path)
    assert len(df) == 12
    assert pd.api.types.is_datetime64_any_dtype(df["timestamp"])


def test_frame_source_returns_tail_and_normalises_symbols():
    source = FrameCandleSource({"EURUSD": _frame(np.linspace(1.10, 1.11, 50))})
    df = asyncio.run(source.fetch_candles("eur/usd", "1h", 20))
    assert len(df) == 20
    assert df["close"].iloc[-1] == pytest.approx(1.11)


def test_frame_source_prefers_interval_specific_frames():
    source = FrameCandleSource()
    source.add("XAUUSD", _frame(np.full(10, 2000.0)))
    source.add("XAUUSD", _frame(np.full(10, 2100.0)), interval="4h")
    hourly = asyncio.run(source.fetch_candles("XAUUSD", "1h", 5))
    four_hour = asyncio.run(source.fetch_candles("XAUUSD", "4h", 5))
    assert hourly["close"].iloc[-1] == 2000.0
    assert four_hour["close"].iloc[-1] == 2100.0


def test_frame_source_unknown_instrument():
    with pytest.raises(DataUnavailable):
        asyncio.run(FrameCandleSource().fetch_candles("GBPUSD", "1h", 10))
