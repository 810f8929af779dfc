"""
Training Pipeline for the Sequence Classifier

1. Chronological 80/20 split (no shuffling before the split)
2. Z-score scaler fit on training rows only
3. Class-balanced cross-entropy weights from training label counts
4. Adam with L2 on dense layers, early stopping on validation loss
"""
import logging
from typing import Dict, Tuple

import numpy as np
import torch
import torch.nn as nn
from sklearn.metrics import accuracy_score
from sklearn.preprocessing import StandardScaler
from sklearn.utils.class_weight import compute_class_weight

from ...exceptions import InsufficientData
from .config import SequenceModelConfig
from .network import SequenceNet

logger = logging.getLogger("SequenceClassifier")

N_CLASSES = 3


def chronological_split(
    X: np.ndarray,
    y: np.ndarray,
    validation_split: float = 0.2,
    gap: int = 0
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    First (1 - validation_split) of samples for training, the rest for validation.

    The last ``gap`` training samples are dropped: their forward labels
    read candles of the validation period.
    """
    split_idx = int(len(X) * (1 - validation_split))
    train_end = max(split_idx - gap, 0)
    return X[:train_end], y[:train_end], X[split_idx:], y[split_idx:]


def fit_scaler(X_train: np.ndarray) -> StandardScaler:
    """Fit per-feature z-score statistics on every training row."""
    n_features = X_train.shape[-1]
    return StandardScaler().fit(X_train.reshape(-1, n_features))


def scale_sequences(X: np.ndarray, mean: np.ndarray, scale: np.ndarray) -> np.ndarray:
    return ((X - mean) / scale).astype(np.float32)


def class_weights(y_train: np.ndarray) -> np.ndarray:
    """
    Balanced class weights. Classes missing from the training labels
    keep weight 1.0.
    """
    weights = np.ones(N_CLASSES, dtype=np.float32)
    present = np.unique(y_train)
    weights[present] = compute_class_weight("balanced", classes=present, y=y_train)
    return weights


def train_sequence_model(
    X: np.ndarray,
    y: np.ndarray,
    config: SequenceModelConfig
) -> Tuple[SequenceNet, StandardScaler, Dict]:
    """
    Train the network with early stopping.

    Args:
        X: (n, sequence_length, n_features) raw sequences, chronological
        y: (n,) class indices
        config: model / training configuration

    Returns:
        (model with best validation weights, fitted scaler, metrics dict)

    Raises:
        InsufficientData: too few sequences or an empty validation split
    """
    if len(X) < config.min_sequences:
        raise InsufficientData(config.min_sequences, len(X), "training sequences")

    X_train, y_train, X_val, y_val = chronological_split(X, y, config.validation_split, gap=config.horizon)
    if len(X_val) == 0 or len(X_train) == 0:
        raise InsufficientData(2, len(X), "sequences for a train/validation split")

    scaler = fit_scaler(X_train)
    X_train = scale_sequences(X_train, scaler.mean_, scaler.scale_)
    X_val = scale_sequences(X_val, scaler.mean_, scaler.scale_)

    logger.info(
        f"Training on {len(X_train)} sequences, validating on {len(X_val)} "
        f"(train class counts: {np.bincount(y_train, minlength=N_CLASSES).tolist()})"
    )

    torch.manual_seed(config.random_state)
    model = SequenceNet(
        input_size=X.shape[-1],
        hidden_size=config.hidden_size,
        num_layers=config.num_layers,
        dense_units=config.dense_units,
        dropout=config.dropout,
        recurrent_dropout=config.recurrent_dropout,
    )

    weights = torch.tensor(class_weights(y_train), dtype=torch.float32)
    criterion = nn.CrossEntropyLoss(weight=weights)
    optimizer = torch.optim.Adam(
        model.parameter_groups(config.l2_penalty), lr=config.learning_rate
    )

    train_dataset = torch.utils.data.TensorDataset(
        torch.from_numpy(X_train), torch.from_numpy(y_train)
    )
    generator = torch.Generator().manual_seed(config.random_state)
    train_loader = torch.utils.data.DataLoader(
        train_dataset, batch_size=config.batch_size, shuffle=True, generator=generator
    )
    X_val_tensor = torch.from_numpy(X_val)
    y_val_tensor = torch.from_numpy(y_val)

    best_val_loss = float("inf")
    best_state = {k: v.clone() for k, v in model.state_dict().items()}
    best_epoch = 0
    patience_counter = 0
    history = []

    for epoch in range(config.epochs):
        model.train()
        epoch_loss = 0.0
        for batch_X, batch_y in train_loader:
            optimizer.zero_grad()
            loss = criterion(model(batch_X), batch_y)
            loss.backward()
            optimizer.step()
            epoch_loss += loss.item() * len(batch_y)
        train_loss = epoch_loss / len(train_dataset)

        model.eval()
        with torch.no_grad():
            val_logits = model(X_val_tensor)
            val_loss = criterion(val_logits, y_val_tensor).item()
        history.append({"epoch": epoch + 1, "train_loss": train_loss, "val_loss": val_loss})

        logger.debug(f"Epoch {epoch + 1}: train_loss={train_loss:.4f}, val_loss={val_loss:.4f}")

        if val_loss < best_val_loss:
            best_val_loss = val_loss
            best_state = {k: v.clone() for k, v in model.state_dict().items()}
            best_epoch = epoch + 1
            patience_counter = 0
        else:
            patience_counter += 1
            if patience_counter >= config.patience:
                logger.info(f"Early stopping at epoch {epoch + 1} (best epoch {best_epoch})")
                break

    model.load_state_dict(best_state)
    model.eval()
    with torch.no_grad():
        val_pred = model(X_val_tensor).argmax(dim=1).numpy()

    metrics = {
        "val_accuracy": float(accuracy_score(y_val, val_pred)),
        "val_loss": float(best_val_loss),
        "best_epoch": best_epoch,
        "epochs_run": len(history),
        "train_samples": len(X_train),
        "val_samples": len(X_val),
        "history": history,
    }
    logger.info(
        f"Sequence model trained: val_accuracy={metrics['val_accuracy']:.3f}, "
        f"val_loss={metrics['val_loss']:.4f}"
    )
    return model, scaler, metrics
