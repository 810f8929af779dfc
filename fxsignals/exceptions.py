"""
Error taxonomy for the signal engine.

Data and training errors propagate to the caller. PersistenceFailure is
caught by the trading system and downgraded to a warning.
"""


class SignalEngineError(Exception):
    """Base class for all engine errors."""


class InsufficientData(SignalEngineError, ValueError):
    """Too few candles or sequences for the requested operation."""

    def __init__(self, required: int, available: int, what: str = "candles"):
        self.required = required
        self.available = available
        super().__init__(f"Need at least {required} {what}, got {available}")


class InvalidCandleData(SignalEngineError, ValueError):
    """Candle window violates OHLC or ordering invariants."""


class UnsupportedInstrument(SignalEngineError, KeyError):
    """Symbol has no known instrument class / label threshold."""

    def __str__(self):
        return f"Unsupported instrument: {self.args[0]}"


class TrainingInProgress(SignalEngineError):
    """A training run for this model is already active."""


class ModelNotTrained(SignalEngineError):
    """Inference requested from a model with no fallback before training."""


class PersistenceFailure(SignalEngineError):
    """Model/pattern store call failed. Non-fatal for the core."""


class DataUnavailable(SignalEngineError):
    """Candle source could not deliver data."""
