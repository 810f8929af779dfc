#!/usr/bin/env python3
"""
Trading System.

Async orchestration of the engine for many instruments:
- train_instrument: fetch candles, train heuristic + sequence models, persist
- predict: classifier when trained, heuristic otherwise
- generate_trading_signal: primary model + top pattern -> fusion -> risk
- evaluate_backtest: walk-forward evaluation of one model
- mine_patterns: build the historical analog database

Persistence is best-effort: store failures are logged, never raised.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pandas as pd

from ..backtest import WalkForwardBacktester
from ..config import (
    BACKTEST_HORIZON,
    BACKTEST_THRESHOLD,
    DEFAULT_INTERVAL,
    MIN_SIGNAL_CANDLES,
    SIGNAL_CANDLES,
    SIGNAL_HISTORY_CAP,
    TRAINING_CANDLES,
)
from ..data_loader import CandleSource, validate_candles
from ..exceptions import (
    DataUnavailable,
    InsufficientData,
    ModelNotTrained,
    PersistenceFailure,
    SignalEngineError,
    TrainingInProgress,
)
from ..labeling import get_instrument_class, normalize_instrument
from ..models.heuristic import MODEL_NAME as HEURISTIC
from ..models.sequence.predictor import MODEL_NAME as SEQUENCE
from ..models.state import performance_trend
from ..models.types import BacktestResult, Direction, ModelState, Prediction, TrainingSession
from ..patterns.analog_miner import AnalogMiner, HistoricalAnalog
from ..patterns.detector import PatternDetector
from .fusion import Opinion, SignalFusion
from .persistence import ModelStore
from .registry import InstrumentModels, ModelRegistry
from .risk_manager import RiskManager, TradingSignal, hold_signal

logger = logging.getLogger("TradingSystem")


# =============================================================================
# NOTIFICATION
# =============================================================================

class Notifier(ABC):
    """Receives finished signals and backtest results."""

    @abstractmethod
    async def publish_signal(self, signal: TradingSignal) -> None:
        ...

    @abstractmethod
    async def publish_backtest(self, instrument: str, result: BacktestResult) -> None:
        ...


class LoggingNotifier(Notifier):
    """Writes notifications to the log."""

    def __init__(self, name: str = "SignalNotifier"):
        self.logger = logging.getLogger(name)

    async def publish_signal(self, signal: TradingSignal) -> None:
        if signal.is_actionable:
            self.logger.info(
                f"{signal.instrument} {signal.action.value} @ {signal.entry_price:.5f} | "
                f"SL {signal.stop_loss:.5f} TP {signal.take_profit:.5f} | "
                f"conf {signal.confidence:.2f} R:R {signal.risk_reward_ratio:.2f} "
                f"size {signal.position_size:.2f} ({signal.reason})"
            )
        else:
            self.logger.info(f"{signal.instrument} HOLD ({signal.error or signal.reason})")

    async def publish_backtest(self, instrument: str, result: BacktestResult) -> None:
        self.logger.info(
            f"{instrument} backtest [{result.method}]: accuracy {result.accuracy:.1%} "
            f"({result.correct_predictions}/{result.valid_predictions}), "
            f"trades {result.total_trades}, win rate {result.win_rate:.1%}, "
            f"profit {result.total_profit:.2f}, sharpe {result.sharpe_ratio:.2f}"
        )


# =============================================================================
# REPORTS
# =============================================================================

@dataclass
class TrainingReport:
    """Outcome of one train_instrument call."""
    instrument: str
    data_points: int
    heuristic_result: BacktestResult
    heuristic_accepted: bool
    sequence_metrics: Optional[Dict] = None
    sequence_accepted: Optional[bool] = None
    sequence_skipped: Optional[str] = None
    trend: str = "insufficient_data"
    persistence_errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        metrics = None
        if self.sequence_metrics is not None:
            metrics = {k: v for k, v in self.sequence_metrics.items() if k != "history"}
        return {
            "instrument": self.instrument,
            "data_points": self.data_points,
            "heuristic": {**self.heuristic_result.to_dict(), "accepted": self.heuristic_accepted},
            "sequence": metrics,
            "sequence_accepted": self.sequence_accepted,
            "sequence_skipped": self.sequence_skipped,
            "trend": self.trend,
            "persistence_errors": list(self.persistence_errors),
        }


# =============================================================================
# TRADING SYSTEM
# =============================================================================

class TradingSystem:
    """
    Signal engine facade.

    Args:
        registry: instrument -> predictors
        candle_source: async candle provider
        store: optional model store
        notifier: optional sink for signals and backtests
        fusion: fusion policy
        risk_manager: stop / target / size rules
        detector: chart pattern detector
        analog_miner: historical analog miner (attached to the detector)
        interval: candle interval requested for signals and backtests
    """

    def __init__(
        self,
        registry: Optional[ModelRegistry] = None,
        candle_source: Optional[CandleSource] = None,
        store: Optional[ModelStore] = None,
        notifier: Optional[Notifier] = None,
        fusion: Optional[SignalFusion] = None,
        risk_manager: Optional[RiskManager] = None,
        detector: Optional[PatternDetector] = None,
        analog_miner: Optional[AnalogMiner] = None,
        interval: str = DEFAULT_INTERVAL
    ):
        self.registry = registry or ModelRegistry()
        self.candle_source = candle_source
        self.store = store
        self.notifier = notifier
        self.fusion = fusion or SignalFusion()
        self.risk_manager = risk_manager or RiskManager()
        self.analog_miner = analog_miner or AnalogMiner()
        self.detector = detector or PatternDetector()
        if self.detector.analog_miner is None:
            self.detector.analog_miner = self.analog_miner
        self.interval = interval

        self.signal_history: deque = deque(maxlen=SIGNAL_HISTORY_CAP)
        self._training: set = set()

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------

    async def _candles(self, instrument: str, candles, count: int, interval: Optional[str] = None) -> pd.DataFrame:
        if candles is not None:
            return validate_candles(candles)
        if self.candle_source is None:
            raise DataUnavailable(f"No candles given for {instrument} and no candle source configured")
        fetched = await self.candle_source.fetch_candles(instrument, interval or self.interval, count)
        return validate_candles(fetched)

    # -------------------------------------------------------------------------
    # Persistence (best-effort)
    # -------------------------------------------------------------------------

    async def _save_state(self, instrument: str, model: str, state: ModelState) -> Optional[str]:
        if self.store is None:
            return None
        try:
            await self.store.save_model_state(instrument, model, state)
        except PersistenceFailure as e:
            logger.warning(f"Could not save {model} state for {instrument}: {e}")
            return str(e)
        return None

    async def _save_session(self, instrument: str, session: TrainingSession) -> Optional[str]:
        if self.store is None:
            return None
        try:
            await self.store.save_training_session(instrument, session.to_dict())
        except PersistenceFailure as e:
            logger.warning(f"Could not save training session for {instrument}: {e}")
            return str(e)
        return None

    # -------------------------------------------------------------------------
    # Training
    # -------------------------------------------------------------------------

    async def train_instrument(
        self,
        instrument: str,
        interval: str = DEFAULT_INTERVAL,
        count: int = TRAINING_CANDLES,
        candles=None
    ) -> TrainingReport:
        """
        Train both predictors of an instrument.

        The sequence classifier is skipped (and logged) when the history is
        too short for it.

        Raises:
            TrainingInProgress: training for this instrument is already running
            UnsupportedInstrument, DataUnavailable, InsufficientData, InvalidCandleData
        """
        models = self.registry.get(instrument)
        symbol = models.instrument
        if symbol in self._training:
            raise TrainingInProgress(f"Training already in progress for {symbol}")

        self._training.add(symbol)
        try:
            df = await self._candles(symbol, candles, count, interval)
            logger.info(f"Training {symbol} on {len(df)} candles ({interval})")

            result, accepted = models.heuristic.train(df)
            report = TrainingReport(
                instrument=symbol,
                data_points=len(df),
                heuristic_result=result,
                heuristic_accepted=accepted,
            )
            sessions = [TrainingSession(
                instrument=symbol,
                model=HEURISTIC,
                accuracy=result.accuracy,
                valid_predictions=result.valid_predictions,
                accepted=accepted,
                data_points=len(df),
            )]

            try:
                metrics, seq_accepted = models.sequence.train(df)
                report.sequence_metrics = metrics
                report.sequence_accepted = seq_accepted
                sessions.append(TrainingSession(
                    instrument=symbol,
                    model=SEQUENCE,
                    accuracy=metrics["val_accuracy"],
                    valid_predictions=metrics["val_samples"],
                    accepted=seq_accepted,
                    data_points=len(df),
                ))
            except InsufficientData as e:
                report.sequence_skipped = str(e)
                logger.info(f"{symbol}: sequence classifier skipped ({e})")

            report.trend = performance_trend(models.heuristic.state.training_history)

            errors = [await self._save_state(symbol, HEURISTIC, models.heuristic.state)]
            if report.sequence_skipped is None:
                errors.append(await self._save_state(symbol, SEQUENCE, models.sequence.state))
            for session in sessions:
                errors.append(await self._save_session(symbol, session))
            report.persistence_errors = [e for e in errors if e]

            logger.info(
                f"{symbol} trained: heuristic {result.accuracy:.1%} "
                f"({'accepted' if accepted else 'rejected'}), "
                f"sequence {self._sequence_summary(report)}, trend {report.trend}"
            )
            return report
        finally:
            self._training.discard(symbol)

    @staticmethod
    def _sequence_summary(report: TrainingReport) -> str:
        if report.sequence_skipped is not None:
            return "skipped"
        verdict = "accepted" if report.sequence_accepted else "rejected"
        return f"{report.sequence_metrics['val_accuracy']:.1%} ({verdict})"

    # -------------------------------------------------------------------------
    # Prediction
    # -------------------------------------------------------------------------

    def _primary_prediction(self, models: InstrumentModels, df: pd.DataFrame) -> Tuple[object, Prediction]:
        """Classifier when trained and the window is long enough, heuristic otherwise."""
        sequence = models.sequence
        if sequence.is_trained:
            if len(df) >= sequence.config.min_inference_candles:
                return sequence, sequence.predict(df)
            logger.debug(
                f"{models.instrument}: {len(df)} candles < {sequence.config.min_inference_candles}, "
                f"using heuristic"
            )
        return models.heuristic, models.heuristic.predict(df)

    async def predict(self, instrument: str, candles=None, record: bool = True) -> Prediction:
        models = self.registry.get(instrument)
        df = await self._candles(models.instrument, candles, SIGNAL_CANDLES)
        predictor, prediction = self._primary_prediction(models, df)
        if record:
            predictor.record_prediction(prediction)
        return prediction

    # -------------------------------------------------------------------------
    # Signal generation
    # -------------------------------------------------------------------------

    async def generate_trading_signal(self, instrument: str, candles=None) -> TradingSignal:
        """
        Full signal pipeline for one instrument.

        Never raises engine errors: a failure yields a HOLD signal with
        ``error`` set.
        """
        symbol = normalize_instrument(instrument)
        price = 0.0
        try:
            models = self.registry.get(symbol)
            df = await self._candles(symbol, candles, SIGNAL_CANDLES)
            if len(df) < MIN_SIGNAL_CANDLES:
                if len(df):
                    price = float(df["close"].iloc[-1])
                raise InsufficientData(MIN_SIGNAL_CANDLES, len(df))
            price = float(df["close"].iloc[-1])

            predictor, prediction = self._primary_prediction(models, df)
            primary = Opinion.from_prediction(prediction)

            patterns = self.detector.detect(df, symbol)
            if patterns:
                top = patterns[0]
                secondary = Opinion(top.direction, top.confidence, f"pattern:{top.type}", top.timeframe)
            elif predictor is not models.heuristic:
                secondary = Opinion.from_prediction(models.heuristic.predict(df))
            else:
                secondary = Opinion(Direction.HOLD, 0.5, "none")

            decision = self.fusion.fuse(primary, secondary)
            breakdown = {
                "primary": {"source": primary.source, "direction": primary.direction.value,
                            "confidence": primary.confidence},
                "secondary": {"source": secondary.source, "direction": secondary.direction.value,
                              "confidence": secondary.confidence},
                "patterns": [p.to_dict() for p in patterns],
                "fusion_reason": decision.reason,
            }
            signal = self.risk_manager.build_signal(
                symbol,
                decision.direction,
                decision.confidence,
                df,
                reason=decision.reason,
                timeframe=secondary.timeframe,
                source_breakdown=breakdown,
            )
        except SignalEngineError as e:
            logger.error(f"Signal generation failed for {symbol}: {e}")
            signal = hold_signal(symbol, price, 0.0, "error", error=str(e))

        self.signal_history.append(signal)
        await self._publish_signal(signal)
        return signal

    def recent_signals(self, limit: int = 5) -> List[TradingSignal]:
        """Latest signals, newest first."""
        return list(self.signal_history)[-limit:][::-1]

    def signal_stats(self) -> Dict:
        trades = [s for s in self.signal_history if s.is_actionable]
        n = len(trades)
        return {
            "total_signals": len(self.signal_history),
            "total_trades": n,
            "errors": sum(1 for s in self.signal_history if s.error),
            "avg_confidence": sum(s.confidence for s in trades) / n if n else 0.0,
            "avg_risk_reward": sum(s.risk_reward_ratio for s in trades) / n if n else 0.0,
        }

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    async def evaluate_backtest(self, instrument: str, candles=None, model: str = HEURISTIC) -> BacktestResult:
        """
        Walk-forward evaluation of one model.

        Raises:
            ModelNotTrained: sequence model requested before training
            ValueError: unknown model name
        """
        models = self.registry.get(instrument)
        df = await self._candles(models.instrument, candles, TRAINING_CANDLES)

        if model == HEURISTIC:
            result, _ = models.heuristic.evaluate(df)
        elif model == SEQUENCE:
            sequence = models.sequence
            if not sequence.is_trained:
                raise ModelNotTrained(f"{SEQUENCE} model for {models.instrument} is not trained")
            backtester = WalkForwardBacktester(
                predict_fn=sequence.predict,
                lookback=sequence.config.min_inference_candles,
                horizon=BACKTEST_HORIZON,
                threshold=BACKTEST_THRESHOLD,
            )
            result = backtester.run(df)
        else:
            raise ValueError(f"Unknown model: {model}")

        if self.notifier is not None:
            await self.notifier.publish_backtest(models.instrument, result)
        return result

    # -------------------------------------------------------------------------
    # Model lifecycle
    # -------------------------------------------------------------------------

    async def load_models(self, instrument: str) -> Dict[str, bool]:
        """Restore persisted states. Returns which models were restored."""
        models = self.registry.get(instrument)
        loaded = {HEURISTIC: False, SEQUENCE: False}
        if self.store is None:
            return loaded

        for name, predictor in ((HEURISTIC, models.heuristic), (SEQUENCE, models.sequence)):
            try:
                state = await self.store.load_model_state(models.instrument, name)
            except PersistenceFailure as e:
                logger.warning(f"Could not load {name} state for {models.instrument}: {e}")
                continue
            if state is None:
                continue
            try:
                predictor.load_state(state)
            except (KeyError, TypeError, ValueError, RuntimeError) as e:
                logger.warning(f"Discarding corrupt {name} state for {models.instrument}: {e}")
                continue
            loaded[name] = state.is_trained

        logger.info(f"{models.instrument}: restored {[k for k, v in loaded.items() if v]}")
        return loaded

    async def delete_model(self, instrument: str) -> bool:
        """Drop the in-memory predictors and the persisted states."""
        symbol = normalize_instrument(instrument)
        get_instrument_class(symbol)
        removed = self.registry.remove(symbol)
        if self.store is not None:
            try:
                await self.store.delete_model_state(symbol)
            except PersistenceFailure as e:
                logger.warning(f"Could not delete stored models for {symbol}: {e}")
        logger.info(f"{symbol}: models deleted")
        return removed

    async def model_status(self, instrument: str) -> Dict:
        models = self.registry.get(instrument)
        history: List[Dict] = []
        if self.store is not None:
            try:
                history = await self.store.load_training_history(models.instrument)
            except PersistenceFailure as e:
                logger.warning(f"Could not load training history for {models.instrument}: {e}")
        return {
            "instrument": models.instrument,
            HEURISTIC: {
                "status": models.heuristic.state.status.value,
                "accuracy": models.heuristic.state.accuracy,
                "predictions": models.heuristic.prediction_stats(),
                "trend": performance_trend(models.heuristic.state.training_history),
            },
            SEQUENCE: {
                "status": models.sequence.state.status.value,
                "accuracy": models.sequence.state.accuracy,
                "predictions": models.sequence.prediction_stats(),
                "trend": performance_trend(models.sequence.state.training_history),
            },
            "stored_sessions": len(history),
        }

    # -------------------------------------------------------------------------
    # Historical analogs
    # -------------------------------------------------------------------------

    async def mine_patterns(self, instrument: str, candles=None, count: int = TRAINING_CANDLES) -> List[HistoricalAnalog]:
        """Mine analogs for an instrument and persist the database."""
        symbol = self.registry.get(instrument).instrument
        df = await self._candles(symbol, candles, count)
        analogs = self.analog_miner.mine(df, symbol)
        self.detector.analog_miner = self.analog_miner

        if self.store is not None:
            try:
                await self.store.save_pattern_database(self.analog_miner.database)
            except PersistenceFailure as e:
                logger.warning(f"Could not save pattern database: {e}")
        return analogs

    async def load_pattern_database(self) -> bool:
        if self.store is None:
            return False
        try:
            database = await self.store.load_pattern_database()
        except PersistenceFailure as e:
            logger.warning(f"Could not load pattern database: {e}")
            return False
        if database is None:
            return False
        self.analog_miner.database = database
        self.detector.analog_miner = self.analog_miner
        logger.info(f"Loaded pattern database ({len(database)} analogs)")
        return True

    # -------------------------------------------------------------------------
    # Notification
    # -------------------------------------------------------------------------

    async def _publish_signal(self, signal: TradingSignal) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.publish_signal(signal)
        except Exception as e:
            logger.error(f"Notifier failed for {signal.instrument}: {e}")
