import numpy as np
import pandas as pd
import pytest

from fxsignals.exceptions import InsufficientData
from fxsignals.feature_engineering import (
    SEQUENCE_FEATURES,
    build_sequence_features,
    calculate_atr,
    calculate_ema,
    calculate_features,
    calculate_macd,
    calculate_momentum,
    calculate_rsi,
    calculate_trend,
    rsi_series,
)


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


def _random_walk(n, seed=7, start=1.10, sigma=0.002):
    rng = np.random.default_rng(seed)
    return start * np.exp(np.cumsum(rng.normal(0, sigma, n)))


def test_rsi_is_100_without_losses():
    assert calculate_rsi(np.linspace(1.0, 2.0, 30)) == 100.0


def test_rsi_bounds_and_length():
    prices = _random_walk(200)
    values = rsi_series(prices, 14)
    assert len(values) == len(prices) - 14
    assert np.all((values >= 0) & (values <= 100))


def test_rsi_requires_period_plus_one():
    with pytest.raises(InsufficientData):
        calculate_rsi(np.ones(14), 14)


def test_ema_is_seeded_by_first_price():
    ema = calculate_ema([1.0, 2.0, 3.0], 3)
    assert ema[0] == 1.0
    assert ema[1] == pytest.approx(1.5)
    assert ema[2] == pytest.approx(2.25)


def test_macd_flat_prices_and_minimum_window():
    assert calculate_macd(np.full(40, 1.1)) == pytest.approx(0.0)
    with pytest.raises(InsufficientData):
        calculate_macd(np.full(25, 1.1))


def test_atr_of_constant_range_bars():
    closes = np.full(30, 1.1)
    atr = calculate_atr(closes + 0.0005, closes - 0.0005, closes, 14)
    assert atr == pytest.approx(0.001)


def test_momentum_and_trend():
    prices = np.concatenate([np.full(10, 1.0), np.full(10, 1.1)])
    assert calculate_momentum(prices, 10) == pytest.approx(0.1)
    assert calculate_trend(np.arange(20) * 0.5 + 3.0, 20) == pytest.approx(0.5)


def test_feature_vector_needs_thirty_candles():
    with pytest.raises(InsufficientData):
        calculate_features(_frame(_random_walk(29)))

    features = calculate_features(_frame(_random_walk(60)))
    assert 0 <= features.rsi <= 100
    assert features.atr > 0
    assert features.volatility == pytest.approx(features.atr / _random_walk(60)[-1])


def test_sequence_features_drop_warmup_and_have_no_gaps():
    df = _frame(_random_walk(120))
    features = build_sequence_features(df, warmup=20)
    assert len(features) == 100
    assert list(features.columns) == ["timestamp"] + SEQUENCE_FEATURES
    assert not features[SEQUENCE_FEATURES].isna().any().any()


def test_sequence_features_use_only_past_rows():
    df = _frame(_random_walk(120))
    base = build_sequence_features(df)

    changed = df.copy()
    changed.loc[100:, ["open", "high", "low", "close"]] *= 1.05
    shifted = build_sequence_features(changed)

    before = base.index < 100
    pd.testing.assert_frame_equal(base[before], shifted[before])
