"""
Recurrent network for the sequence classifier.
"""
from typing import List

import torch
import torch.nn as nn


class SequenceNet(nn.Module):
    """
    LSTM encoder followed by regularised dense layers.

    x: (batch, sequence_length, n_features) -> logits (batch, 3)
    Softmax is applied by the loss during training and by the predictor at
    inference.
    """

    def __init__(
        self,
        input_size: int,
        hidden_size: int = 64,
        num_layers: int = 2,
        dense_units: List[int] = (32, 16),
        dropout: float = 0.3,
        recurrent_dropout: float = 0.2,
        output_size: int = 3
    ):
        super().__init__()
        self.lstm = nn.LSTM(
            input_size, hidden_size, num_layers,
            batch_first=True,
            dropout=recurrent_dropout if num_layers > 1 else 0.0,
        )
        self.layer_norm = nn.LayerNorm(hidden_size)

        layers = []
        in_features = hidden_size
        for i, units in enumerate(dense_units):
            layers.append(nn.Linear(in_features, units))
            layers.append(nn.ReLU())
            # Dropout after the first dense layer
            if i == 0:
                layers.append(nn.Dropout(dropout))
            in_features = units
        self.dense = nn.Sequential(*layers)
        self.output = nn.Linear(in_features, output_size)

    def forward(self, x):
        lstm_out, _ = self.lstm(x)
        last_output = self.layer_norm(lstm_out[:, -1, :])
        return self.output(self.dense(last_output))

    def parameter_groups(self, l2_penalty: float):
        """Optimizer groups: weight decay on dense layers only."""
        dense_params = list(self.dense.parameters()) + list(self.output.parameters())
        dense_ids = {id(p) for p in dense_params}
        other_params = [p for p in self.parameters() if id(p) not in dense_ids]
        return [
            {"params": other_params, "weight_decay": 0.0},
            {"params": dense_params, "weight_decay": l2_penalty},
        ]


def state_dict_to_numpy(model: nn.Module) -> dict:
    return {k: v.detach().cpu().numpy() for k, v in model.state_dict().items()}


def state_dict_from_numpy(arrays: dict) -> dict:
    return {k: torch.as_tensor(v) for k, v in arrays.items()}
