"""
Configuration module for the FX Signal Engine.

Module-level constants hold the empirical thresholds of each component,
dataclass configs bundle the tunables a component is constructed with, and
``load_settings`` reads deployment settings (paths, log level) from the
environment / ``.env`` file.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

# =============================================================================
# PATHS
# =============================================================================

PROJECT_ROOT = Path(__file__).parent.parent
MODELS_DIR = PROJECT_ROOT / "models"
PATTERN_DB_DIR = PROJECT_ROOT / "pattern_db"

# =============================================================================
# INSTRUMENTS & LABEL THRESHOLDS
# =============================================================================

INSTRUMENT_CLASSES: Dict[str, List[str]] = {
    "majors": ["EURUSD", "GBPUSD", "USDJPY", "USDCHF", "AUDUSD", "USDCAD", "NZDUSD"],
    "metals": ["XAUUSD", "XAGUSD"],
    "low_vol_crosses": ["EURGBP", "EURCHF", "AUDNZD"],
    "jpy_crosses": ["EURJPY", "GBPJPY", "AUDJPY"],
    "exotics": ["USDZAR", "USDTRY", "USDBRL", "USDMXN"],
}

# Minimum forward move (fraction of entry price) for a BUY/SELL label
LABEL_THRESHOLDS: Dict[str, float] = {
    "majors": 0.0015,
    "metals": 0.003,
    "low_vol_crosses": 0.0008,
    "jpy_crosses": 0.0012,
    "exotics": 0.002,
}

# Net close-to-close move must clear this share of the threshold
NET_MOVE_RATIO = 0.6

# =============================================================================
# INDICATORS
# =============================================================================

RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
ATR_PERIOD = 14
MOMENTUM_PERIOD = 10
TREND_PERIOD = 20
AVG_ATR_WINDOW = 20

MIN_FEATURE_CANDLES = 30

# Neutral values used only by the sequence feature builder on short windows
NEUTRAL_RSI = 50.0
NEUTRAL_MACD = 0.0

# Leading rows dropped from the per-candle sequence features
SEQUENCE_WARMUP = 20

# Candles required beyond the training lookback or the inference window
HISTORY_MARGIN = 20

# =============================================================================
# MODEL LIFECYCLE
# =============================================================================

# Retrain is rejected if new accuracy < ratio * previous accuracy
REGRESSION_GUARD_RATIO = 0.7

PREDICTION_LOG_CAP = 200
TRAINING_HISTORY_CAP = 50

# =============================================================================
# BACKTEST
# =============================================================================

BACKTEST_LOOKBACK = 50
BACKTEST_HORIZON = 3
BACKTEST_THRESHOLD = 0.001
BACKTEST_MIN_VALID = 10
BACKTEST_START_CAPITAL = 10000.0
BACKTEST_POSITION_FRACTION = 0.10
BACKTEST_CONFIDENCE_GATE = 60.0
TRADING_DAYS_PER_YEAR = 252

# =============================================================================
# SIGNAL GENERATION
# =============================================================================

MIN_SIGNAL_CANDLES = 50
PATTERN_WINDOW = 30
SIGNAL_HISTORY_CAP = 500

# Candles requested from the source per call
TRAINING_CANDLES = 1000
SIGNAL_CANDLES = 200
DEFAULT_INTERVAL = "1h"

# Signal expiry by pattern timeframe (hours)
EXPIRY_HOURS = {
    "short": 2,
    "medium": 6,
    "long": 24,
}


# =============================================================================
# COMPONENT CONFIGS
# =============================================================================

@dataclass
class HeuristicConfig:
    """Weights and thresholds of the rule-weighted heuristic predictor."""

    weights: Dict[str, float] = field(default_factory=lambda: {
        "rsi": 0.20,
        "macd": 0.25,
        "atr": 0.15,
        "momentum": 0.20,
        "trend": 0.10,
        "volume": 0.10,
    })

    # Direction
    score_threshold: float = 0.25

    # Confidence shaping (0-100 scale)
    confidence_scale: float = 120.0
    min_confidence: float = 50.0
    max_confidence: float = 95.0
    high_vol_ratio: float = 1.8
    high_vol_penalty: float = 0.8
    rsi_neutral_boost: float = 1.1
    trend_agreement_boost: float = 1.15

    # ATR penalty signal
    atr_penalty_ratio: float = 2.0
    atr_penalty: float = -0.5

    # Target / stop multipliers (in ATR units)
    target_atr_mult: float = 2.0
    target_momentum_mult: float = 100.0
    stop_atr_mult: float = 1.2
    stop_volatility_mult: float = 0.5

    # Walk-forward training
    lookback: int = BACKTEST_LOOKBACK
    horizon: int = BACKTEST_HORIZON
    outcome_threshold: float = BACKTEST_THRESHOLD


@dataclass
class FusionConfig:
    """Fusion weights and confidence rules (confidences on the 0-1 scale)."""

    primary_weight: float = 0.7
    secondary_weight: float = 0.3
    min_confidence: float = 0.65
    override_confidence: float = 0.75
    primary_override_factor: float = 0.9
    secondary_override_factor: float = 0.85
    max_confidence: float = 0.95


@dataclass
class RiskConfig:
    """Stop / take-profit / sizing rules."""

    atr_period: int = ATR_PERIOD
    stop_pct: float = 0.004
    stop_atr_mult: float = 1.5
    target_pct: float = 0.01
    target_atr_mult: float = 2.5
    max_target_multiplier: float = 1.3
    entry_atr_offset: float = 0.05
    min_risk_reward: float = 1.5
    min_confidence: float = 0.65
    risk_budget: float = 0.02
    max_position_size: float = 10.0


@dataclass
class AnalogMinerConfig:
    """Search space and success rules for the historical analog miner."""

    min_candles: int = 100
    min_pattern_length: int = 10
    max_pattern_length: int = 60
    length_step: int = 5
    forward_window: int = 30
    min_future_candles: int = 20
    min_roi: float = 2.0
    max_roi: float = 15.0
    direction_threshold: float = 0.5    # % move of the pattern itself
    continuation_move: float = 3.0      # % excursion
    continuation_confirm: float = 1.5   # % net move
    spike_move: float = 5.0
    spike_floor: float = -1.0
    breakout_move: float = 4.0
    target_move: float = 3.0
    neutral_target_move: float = 5.0
    extrema_lookback: int = 3
    similarity_threshold: float = 0.85
    duplicate_threshold: float = 0.95


# =============================================================================
# DEPLOYMENT SETTINGS
# =============================================================================

@dataclass
class Settings:
    """Paths and runtime options resolved from the environment."""

    model_dir: Path = MODELS_DIR
    pattern_db_dir: Path = PATTERN_DB_DIR
    log_level: str = "INFO"
    default_interval: str = DEFAULT_INTERVAL
    training_candles: int = TRAINING_CANDLES


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Load settings from environment variables (and a ``.env`` file if present).

    Recognised variables:
        FXSIGNALS_MODEL_DIR, FXSIGNALS_PATTERN_DB_DIR, FXSIGNALS_LOG_LEVEL,
        FXSIGNALS_INTERVAL, FXSIGNALS_TRAINING_CANDLES
    """
    load_dotenv(env_file)

    return Settings(
        model_dir=Path(os.getenv("FXSIGNALS_MODEL_DIR", str(MODELS_DIR))),
        pattern_db_dir=Path(os.getenv("FXSIGNALS_PATTERN_DB_DIR", str(PATTERN_DB_DIR))),
        log_level=os.getenv("FXSIGNALS_LOG_LEVEL", "INFO").upper(),
        default_interval=os.getenv("FXSIGNALS_INTERVAL", DEFAULT_INTERVAL),
        training_candles=int(os.getenv("FXSIGNALS_TRAINING_CANDLES", str(TRAINING_CANDLES))),
    )
