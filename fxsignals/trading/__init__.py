"""
Signal fusion, risk management and orchestration.

This module provides:
- Two-input signal fusion (classifier + pattern / heuristic)
- ATR-based stop / target placement and position sizing
- Explicit per-instrument model registry
- Async model persistence (in-memory and joblib stores)
- The TradingSystem facade and signal tracking
"""

from .fusion import SignalFusion, FusedDecision, FusionReason, Opinion
from .risk_manager import RiskManager, TradingSignal, Action, hold_signal, RISK_FILTER_REASON
from .registry import ModelRegistry, InstrumentModels
from .persistence import ModelStore, InMemoryModelStore, JoblibModelStore
from .trading_system import TradingSystem, TrainingReport, Notifier, LoggingNotifier
from .signal_tracker import SignalTracker, SignalStatus, TrackedSignal, evaluate_signal, pip_multiplier

__all__ = [
    'SignalFusion',
    'FusedDecision',
    'FusionReason',
    'Opinion',
    'RiskManager',
    'TradingSignal',
    'Action',
    'hold_signal',
    'RISK_FILTER_REASON',
    'ModelRegistry',
    'InstrumentModels',
    'ModelStore',
    'InMemoryModelStore',
    'JoblibModelStore',
    'TradingSystem',
    'TrainingReport',
    'Notifier',
    'LoggingNotifier',
    'SignalTracker',
    'SignalStatus',
    'TrackedSignal',
    'evaluate_signal',
    'pip_multiplier',
]
