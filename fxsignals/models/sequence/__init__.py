"""
Sequence Classifier: recurrent BUY / SELL / HOLD model

Input: 40-step windows of OHLCV + RSI / MACD / ATR / momentum.
Labels: 20-candle forward outcome with instrument-class thresholds.
"""

from .config import SequenceModelConfig
from .features import build_sequence_dataset, build_inference_window
from .network import SequenceNet
from .train import train_sequence_model, chronological_split, class_weights
from .predictor import SequenceClassifier

__all__ = [
    # Config
    'SequenceModelConfig',

    # Data
    'build_sequence_dataset',
    'build_inference_window',

    # Network / training
    'SequenceNet',
    'train_sequence_model',
    'chronological_split',
    'class_weights',

    # Predictor
    'SequenceClassifier',
]
