"""
Sequence dataset construction.

A sample is the window of ``sequence_length`` feature rows ending at row i,
labelled with the forward outcome of the ``horizon`` candles after row i.
Samples whose forward window is incomplete are dropped.
"""
from typing import Tuple

import numpy as np
import pandas as pd

from ...feature_engineering import build_sequence_features
from ...labeling import create_forward_labels
from .config import SequenceModelConfig


def build_sequence_dataset(
    candles,
    threshold: float,
    config: SequenceModelConfig
) -> Tuple[np.ndarray, np.ndarray, pd.DataFrame]:
    """
    Build (X, y) for training, in chronological order.

    Returns:
        X: (n_samples, sequence_length, n_features) raw (unscaled) features
        y: (n_samples,) class indices (BUY=0, SELL=1, HOLD=2)
        features: the per-candle feature frame the samples were cut from
    """
    features = build_sequence_features(candles, warmup=config.warmup)
    labels = create_forward_labels(
        features, config.horizon, threshold, config.net_move_ratio
    ).to_numpy()
    values = features[config.feature_columns].to_numpy(dtype=np.float32)

    L = config.sequence_length
    ends = [i for i in range(L - 1, len(features)) if not np.isnan(labels[i])]
    if not ends:
        n_features = len(config.feature_columns)
        return np.empty((0, L, n_features), np.float32), np.empty(0, np.int64), features

    X = np.stack([values[i - L + 1:i + 1] for i in ends])
    y = labels[ends].astype(np.int64)
    return X, y, features


def build_inference_window(candles, config: SequenceModelConfig) -> Tuple[np.ndarray, pd.DataFrame]:
    """
    Latest ``sequence_length`` feature rows as a single (1, L, F) sample.
    """
    features = build_sequence_features(candles, warmup=config.warmup)
    window = features[config.feature_columns].to_numpy(dtype=np.float32)[-config.sequence_length:]
    return window[np.newaxis, ...], features
