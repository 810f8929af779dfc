"""
Sequence Classifier Configuration

Recurrent 3-way classifier (BUY / SELL / HOLD) over fixed-length windows of
OHLCV + indicator features.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ...config import HISTORY_MARGIN, NET_MOVE_RATIO, SEQUENCE_WARMUP


@dataclass
class SequenceModelConfig:
    """Configuration for the recurrent sequence classifier."""

    # Windows
    sequence_length: int = 40
    horizon: int = 20  # Forward candles used for labels
    net_move_ratio: float = NET_MOVE_RATIO
    warmup: int = SEQUENCE_WARMUP

    # Per-symbol / per-class label threshold overrides
    threshold_overrides: Dict[str, float] = field(default_factory=dict)

    # Network
    hidden_size: int = 64
    num_layers: int = 2
    recurrent_dropout: float = 0.2
    dense_units: List[int] = field(default_factory=lambda: [32, 16])
    dropout: float = 0.3
    l2_penalty: float = 0.001  # Weight decay on dense layers only

    # Training
    validation_split: float = 0.2
    epochs: int = 30
    batch_size: int = 32
    learning_rate: float = 0.001
    patience: int = 5
    min_sequences: int = 50
    random_state: int = 42

    # Features
    feature_columns: Optional[List[str]] = None

    def __post_init__(self):
        if self.feature_columns is None:
            self.feature_columns = [
                # Raw candle
                'open',
                'high',
                'low',
                'close',
                'volume',

                # Indicators
                'rsi',
                'macd',
                'atr',
                'momentum',
            ]

    @property
    def min_inference_candles(self) -> int:
        # Full window after the warm-up drop, and never below the margin
        return self.sequence_length + max(self.warmup, HISTORY_MARGIN)
