import numpy as np
import pandas as pd
import pytest

from fxsignals.exceptions import UnsupportedInstrument
from fxsignals.labeling import (
    BUY, HOLD, SELL,
    create_forward_labels,
    forward_direction,
    get_instrument_class,
    get_label_threshold,
    label_distribution,
)


def test_thresholds_by_class():
    assert get_label_threshold("EURUSD") == 0.0015
    assert get_label_threshold("xau/usd") == 0.003
    assert get_label_threshold("EURGBP") == 0.0008
    assert get_label_threshold("GBPJPY") == 0.0012
    assert get_instrument_class("USD_ZAR") == "exotics"


def test_threshold_overrides():
    assert get_label_threshold("EURUSD", {"EURUSD": 0.004}) == 0.004
    assert get_label_threshold("GBPUSD", {"majors": 0.002}) == 0.002


def test_unknown_symbol():
    with pytest.raises(UnsupportedInstrument) as exc:
        get_label_threshold("BTCUSD")
    assert isinstance(exc.value, KeyError)
    assert "BTCUSD" in str(exc.value)


def test_buy_and_sell_outcomes():
    assert forward_direction(100.0, np.array([100.2]), np.array([99.9]), 100.1, 0.0015) == BUY
    assert forward_direction(100.0, np.array([100.1]), np.array([99.8]), 99.9, 0.0015) == SELL


def test_move_exactly_at_threshold_is_hold():
    assert forward_direction(1.0, np.array([1.5]), np.array([1.0]), 1.5, 0.5) == HOLD


def test_spike_without_net_follow_through_is_hold():
    # high clears the threshold but the close gives the move back
    assert forward_direction(100.0, np.array([100.5]), np.array([99.95]), 100.0, 0.0015) == HOLD


def test_forward_labels_leave_tail_undefined():
    closes = np.linspace(1.0, 1.1, 30)
    df = pd.DataFrame({"high": closes + 0.001, "low": closes - 0.001, "close": closes})
    labels = create_forward_labels(df, horizon=5, threshold=0.001)
    assert labels.iloc[-5:].isna().all()
    assert (labels.iloc[:-5] == BUY).all()
    assert label_distribution(labels) == {"BUY": 1.0}
