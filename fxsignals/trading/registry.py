"""
Model Registry.

Explicit instrument -> predictors mapping, owned by the trading system.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from ..config import REGRESSION_GUARD_RATIO, HeuristicConfig
from ..labeling import get_instrument_class, normalize_instrument
from ..models.heuristic import HeuristicPredictor
from ..models.sequence import SequenceClassifier, SequenceModelConfig

logger = logging.getLogger("ModelRegistry")


@dataclass
class InstrumentModels:
    """Both predictors of one instrument."""
    instrument: str
    heuristic: HeuristicPredictor
    sequence: SequenceClassifier


class ModelRegistry:
    """
    Lazily creates and holds the predictors of each instrument.

    Args:
        heuristic_config: config for new heuristic predictors
        sequence_config: config for new sequence classifiers
        regression_ratio: regression-guard ratio for both predictors
    """

    def __init__(
        self,
        heuristic_config: Optional[HeuristicConfig] = None,
        sequence_config: Optional[SequenceModelConfig] = None,
        regression_ratio: float = REGRESSION_GUARD_RATIO
    ):
        self.heuristic_config = heuristic_config
        self.sequence_config = sequence_config
        self.regression_ratio = regression_ratio
        self._models: Dict[str, InstrumentModels] = {}

    def get(self, instrument: str) -> InstrumentModels:
        """
        Predictors of an instrument, created on first access.

        Raises:
            UnsupportedInstrument: unknown symbol
        """
        symbol = normalize_instrument(instrument)
        get_instrument_class(symbol)

        if symbol not in self._models:
            self._models[symbol] = InstrumentModels(
                instrument=symbol,
                heuristic=HeuristicPredictor(self.heuristic_config, self.regression_ratio),
                sequence=SequenceClassifier(symbol, self.sequence_config, self.regression_ratio),
            )
            logger.debug(f"Registered models for {symbol}")
        return self._models[symbol]

    def remove(self, instrument: str) -> bool:
        return self._models.pop(normalize_instrument(instrument), None) is not None

    def __contains__(self, instrument: str) -> bool:
        return normalize_instrument(instrument) in self._models

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)
