import numpy as np
import pandas as pd
import pytest

from fxsignals.exceptions import InsufficientData
from fxsignals.models import Direction
from fxsignals.patterns import (
    AnalogMiner,
    AnalogOutcome,
    HistoricalAnalog,
    PatternDatabase,
    PatternDetector,
    detect_breakout,
    detect_gap,
    detect_head_and_shoulders,
    detect_triangle,
    find_peaks,
    find_valleys,
    generate_signature,
    signature_similarity,
)


def _bars(closes, highs=None, lows=None, opens=None, spread=0.0005):
    """Bars with open == close unless given, so peaks are not tied."""
    closes = np.asarray(closes, dtype=float)
    opens = closes if opens is None else np.asarray(opens, dtype=float)
    highs = np.maximum(opens, closes) + spread if highs is None else np.asarray(highs, dtype=float)
    lows = np.minimum(opens, closes) - spread if lows is None else np.asarray(lows, dtype=float)
    ts = pd.Timestamp("2024-01-01", tz="UTC") + pd.to_timedelta(np.arange(len(closes)), unit="h")
    return pd.DataFrame({
        "timestamp": ts, "open": opens, "high": highs, "low": lows,
        "close": closes, "volume": 100.0,
    })


def _walk(closes, spread=0.0005):
    closes = np.asarray(closes, dtype=float)
    opens = np.concatenate([[closes[0]], closes[:-1]])
    return _bars(closes, opens=opens, spread=spread)


def _outcome(confidence=80.0, roi=4.0, success_type="bullish_continuation"):
    return AnalogOutcome(
        roi=roi, success_type=success_type, confidence_score=confidence, days_to_target=5,
        pattern_direction="bullish", pattern_move=2.0, up_move=roi, down_move=0.5,
        final_move=roi, volatility=0.1, risk_reward=1.0,
    )


def _analog(window, confidence=80.0, idx=0, **kwargs):
    return HistoricalAnalog(
        id=f"EURUSD_{idx}_{len(window)}",
        instrument="EURUSD",
        start_time=window["timestamp"].iloc[0].to_pydatetime(),
        end_time=window["timestamp"].iloc[-1].to_pydatetime(),
        length=len(window),
        signature=generate_signature(window.reset_index(drop=True)),
        outcome=_outcome(confidence, **kwargs),
    )


def _double_top():
    closes = np.concatenate([
        np.linspace(1.09, 1.10, 9),
        np.linspace(1.10, 1.09, 7)[1:],
        np.linspace(1.09, 1.1004, 7)[1:],
        np.linspace(1.1004, 1.085, 10)[1:],
    ])
    return _bars(closes)


# =============================================================================
# Chart recognizers
# =============================================================================

def test_peaks_and_valleys_are_strict():
    values = np.array([1, 2, 5, 2, 1, 0, 1, 2, 3, 2, 1], dtype=float)
    assert find_peaks(values, 2) == [2, 8]
    assert find_valleys(values, 2) == [5]
    assert find_peaks(np.array([1, 3, 3, 1, 0], dtype=float), 1) == []


def test_double_top_is_the_only_hit():
    df = _double_top()
    patterns = PatternDetector().detect(df)

    assert [p.type for p in patterns] == ["double_top"]
    top = patterns[0]
    highs = df["high"].to_numpy()
    similarity = abs(highs[8] - highs[20]) / highs[8]
    assert top.direction == Direction.SELL
    assert top.confidence == pytest.approx(max(0.6, 0.9 - similarity * 20))
    assert top.target == pytest.approx(1.09 - (highs[20] - 1.09))
    assert top.stop_loss == pytest.approx(highs[20] * 1.005)
    assert top.entry == pytest.approx(1.085)
    assert top.timeframe == "medium"


def test_head_and_shoulders_needs_three_wide_peaks():
    t = np.arange(40)
    closes = 1.10 + 0.001 * np.abs(((t + 6) % 12) - 6)  # peaks at 6, 18, 30
    df = _bars(closes)
    assert find_peaks(df["high"].to_numpy(), 5) == [6, 18, 30]

    result = detect_head_and_shoulders(df)
    assert result.detected
    assert result.direction == Direction.SELL
    assert result.confidence == 0.7
    assert result.target == pytest.approx(1.103 * 0.98)
    assert result.stop_loss == pytest.approx(1.1065 * 1.01)
    assert result.entry == pytest.approx(1.103)

    assert not detect_head_and_shoulders(df.iloc[:28]).detected


def test_triangle_direction_follows_lows():
    n = 30
    rising = _bars(np.linspace(1.095, 1.099, n), highs=np.full(n, 1.100), lows=np.linspace(1.08, 1.098, n))
    falling = _bars(np.linspace(1.099, 1.095, n), highs=np.full(n, 1.100), lows=np.linspace(1.098, 1.08, n))

    up = detect_triangle(rising)
    assert up.detected and up.direction == Direction.BUY
    assert up.target == pytest.approx(1.099 * 1.02)
    assert up.timeframe == "short"

    down = detect_triangle(falling)
    assert down.detected and down.direction == Direction.SELL
    assert down.stop_loss == pytest.approx(1.095 * 1.02)

    assert [p.type for p in PatternDetector().detect(rising)] == ["triangle"]


def test_breakout():
    closes = np.concatenate([np.full(25, 1.10), np.full(5, 1.13)])
    result = detect_breakout(_bars(closes))
    divergence = (1.13 - 1.11) / 1.11
    assert result.detected
    assert result.direction == Direction.BUY
    assert result.confidence == pytest.approx(min(0.85, 0.6 + divergence * 10))
    assert result.stop_loss == pytest.approx(1.11)

    assert not detect_breakout(_bars(np.full(30, 1.10))).detected


def test_recent_gap_continues_its_direction():
    closes = np.full(30, 1.10)
    opens = closes.copy()
    closes[-1], opens[-1] = 1.108, 1.107
    result = detect_gap(_bars(closes, opens=opens))

    gap = (1.107 - 1.10) / 1.10
    assert result.detected
    assert result.direction == Direction.BUY
    assert result.confidence == pytest.approx(min(0.8, gap * 60))
    assert result.target == pytest.approx(1.108 * 1.01)
    assert result.stop_loss == pytest.approx(1.108 * 0.995)


def test_old_gap_is_ignored():
    closes = np.full(30, 1.10)
    opens = closes.copy()
    opens[20] = 1.09
    closes[20:] = 1.09
    opens[21:] = 1.09
    assert not detect_gap(_bars(closes, opens=opens)).detected


# =============================================================================
# Analog miner
# =============================================================================

def test_outcome_of_bullish_continuation():
    miner = AnalogMiner()
    pattern = pd.DataFrame({"close": np.linspace(1.0, 1.02, 20)})
    future_closes = np.linspace(1.0204, 1.0608, 30)
    future = pd.DataFrame({"high": future_closes, "low": future_closes, "close": future_closes})

    outcome = miner.analyze_outcome(pattern, future)
    assert outcome.success_type == "bullish_continuation"
    assert outcome.roi == pytest.approx(4.0, abs=0.01)
    assert outcome.confidence_score == pytest.approx(80.0)
    assert outcome.direction == Direction.BUY
    assert outcome.pattern_direction == "bullish"


def test_flat_future_is_not_an_analog():
    miner = AnalogMiner()
    pattern = pd.DataFrame({"close": np.linspace(1.0, 1.02, 20)})
    flat = pd.DataFrame({"high": np.full(30, 1.021), "low": np.full(30, 1.019), "close": np.full(30, 1.02)})
    assert miner.analyze_outcome(pattern, flat) is None


def test_mine_finds_analogs_on_a_cycle():
    t = np.arange(150)
    df = _walk(1.1 * (1 + 0.08 * np.sin(2 * np.pi * t / 60)))
    miner = AnalogMiner()

    analogs = miner.mine(df, "eur/usd")
    assert analogs
    assert miner.database.get("EURUSD") == analogs
    for analog in analogs:
        assert analog.id.startswith("EURUSD_")
        assert 2.0 <= analog.outcome.roi <= 15.0
        assert analog.outcome.direction != Direction.HOLD

    stats = miner.system_stats()
    assert stats["total_patterns"] == len(analogs)
    assert stats["instruments"] == ["EURUSD"]


def test_mine_needs_a_long_history():
    with pytest.raises(InsufficientData):
        AnalogMiner().mine(_walk(np.linspace(1.0, 1.1, 99)), "EURUSD")


def test_mine_scans_until_twenty_future_candles_remain(monkeypatch):
    miner = AnalogMiner()
    calls = []

    def record(pattern, future):
        calls.append((len(pattern), len(future)))
        return None

    monkeypatch.setattr(miner, "analyze_outcome", record)
    assert miner.mine(_walk(np.linspace(1.0, 1.1, 100)), "EURUSD") == []

    ten = [future for length, future in calls if length == 10]
    assert len(ten) == 100 - 10 - 20 + 1
    assert max(ten) == 30
    assert min(ten) == 20
    assert min(future for _, future in calls) == 20


def test_duplicates_keep_highest_confidence():
    window = _walk(np.linspace(1.0, 1.05, 20))
    weak = _analog(window, confidence=40.0, idx=1)
    strong = _analog(window, confidence=90.0, idx=2)
    assert AnalogMiner().remove_duplicates([weak, strong]) == [strong]


def test_find_similar_is_sorted():
    rng = np.random.default_rng(4)
    df = _walk(1.1 * np.exp(np.cumsum(rng.normal(0, 0.002, 60))))
    exact = _analog(df.tail(20), idx=1)
    other = _analog(df.iloc[10:30], idx=2)

    miner = AnalogMiner()
    miner.database.set("EURUSD", [other, exact])
    matches = miner.find_similar(df, "EURUSD", threshold=0.0)

    assert [m.analog.id for m in matches][0] == exact.id
    assert matches[0].similarity == pytest.approx(1.0)
    assert matches[0].similarity >= matches[-1].similarity
    assert miner.find_similar(df, "GBPUSD") == []


def test_empty_recommendation_is_hold():
    rec = AnalogMiner.recommendation([])
    assert rec["direction"] == "HOLD"
    assert rec["confidence"] == 0.0
    assert rec["strength"] == "avoid"


def test_detector_reports_historical_analog():
    rng = np.random.default_rng(8)
    df = _walk(1.1 * np.exp(np.cumsum(rng.normal(0, 0.002, 60))))
    miner = AnalogMiner(database=PatternDatabase())
    miner.database.set("EURUSD", [_analog(df.tail(20), confidence=80.0)])
    detector = PatternDetector(analog_miner=miner)

    result = detector.detect_analog(df, "EURUSD")
    close = df["close"].iloc[-1]
    assert result.detected
    assert result.direction == Direction.BUY
    assert result.confidence == pytest.approx(0.8)
    assert result.target == pytest.approx(close * 1.04)
    assert result.stop_loss == pytest.approx(close * (1 - 0.012))
    assert result.timeframe == "long"

    hits = detector.detect(df, "EURUSD")
    assert "historical_analog" in [p.type for p in hits]
    assert detector.detect(df) == [p for p in hits if p.type != "historical_analog"]


def test_database_round_trip():
    window = _walk(np.linspace(1.0, 1.05, 20))
    db = PatternDatabase()
    db.set("EURUSD", [_analog(window)])
    restored = PatternDatabase.from_dict(db.to_dict())

    assert len(restored) == 1
    original, loaded = db.get("EURUSD")[0], restored.get("eurusd")[0]
    assert loaded.outcome == original.outcome
    assert signature_similarity(loaded.signature, original.signature) == pytest.approx(1.0)
