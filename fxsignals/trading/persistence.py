"""
Model Persistence.

Async store for model states, training history and the analog pattern
database. The joblib store writes one artifact dict per file:

    <root>/<INSTRUMENT>_<model>.joblib      model state
    <root>/<INSTRUMENT>_history.joblib      training sessions (last 50)
    <pattern_root>/pattern_database.joblib  analog database

Blocking file I/O runs in a worker thread.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import joblib

from ..config import TRAINING_HISTORY_CAP
from ..exceptions import PersistenceFailure
from ..labeling import normalize_instrument
from ..models.types import ModelState
from ..patterns.analog_miner import PatternDatabase

logger = logging.getLogger("ModelStore")

ARTIFACT_VERSION = 1


class ModelStore(ABC):
    """Persistence protocol. Failures raise PersistenceFailure."""

    @abstractmethod
    async def save_model_state(self, instrument: str, model: str, state: ModelState) -> None:
        ...

    @abstractmethod
    async def load_model_state(self, instrument: str, model: str) -> Optional[ModelState]:
        ...

    @abstractmethod
    async def delete_model_state(self, instrument: str, model: Optional[str] = None) -> None:
        """Delete one model state, or every state of the instrument when model is None."""

    @abstractmethod
    async def save_training_session(self, instrument: str, session: Dict) -> None:
        ...

    @abstractmethod
    async def load_training_history(self, instrument: str) -> List[Dict]:
        ...

    @abstractmethod
    async def save_pattern_database(self, database: PatternDatabase) -> None:
        ...

    @abstractmethod
    async def load_pattern_database(self) -> Optional[PatternDatabase]:
        ...


class InMemoryModelStore(ModelStore):
    """Dict-backed store; states round-trip through their dict form."""

    def __init__(self):
        self._states: Dict[Tuple[str, str], Dict] = {}
        self._history: Dict[str, List[Dict]] = {}
        self._patterns: Optional[Dict] = None

    async def save_model_state(self, instrument: str, model: str, state: ModelState) -> None:
        self._states[(normalize_instrument(instrument), model)] = state.to_dict()

    async def load_model_state(self, instrument: str, model: str) -> Optional[ModelState]:
        data = self._states.get((normalize_instrument(instrument), model))
        return ModelState.from_dict(data) if data is not None else None

    async def delete_model_state(self, instrument: str, model: Optional[str] = None) -> None:
        symbol = normalize_instrument(instrument)
        for key in [k for k in self._states if k[0] == symbol and (model is None or k[1] == model)]:
            del self._states[key]
        if model is None:
            self._history.pop(symbol, None)

    async def save_training_session(self, instrument: str, session: Dict) -> None:
        history = self._history.setdefault(normalize_instrument(instrument), [])
        history.append(dict(session))
        del history[:-TRAINING_HISTORY_CAP]

    async def load_training_history(self, instrument: str) -> List[Dict]:
        return list(self._history.get(normalize_instrument(instrument), []))

    async def save_pattern_database(self, database: PatternDatabase) -> None:
        self._patterns = database.to_dict()

    async def load_pattern_database(self) -> Optional[PatternDatabase]:
        return PatternDatabase.from_dict(self._patterns) if self._patterns is not None else None


class JoblibModelStore(ModelStore):
    """
    File store of joblib artifact dicts.

    Args:
        root: directory holding the model artifacts (created on first write)
        pattern_root: directory of the pattern database (defaults to root)
    """

    def __init__(self, root: Union[str, Path], pattern_root: Optional[Union[str, Path]] = None):
        self.root = Path(root)
        self.pattern_root = Path(pattern_root) if pattern_root is not None else self.root

    def _state_path(self, instrument: str, model: str) -> Path:
        return self.root / f"{normalize_instrument(instrument)}_{model}.joblib"

    def _history_path(self, instrument: str) -> Path:
        return self.root / f"{normalize_instrument(instrument)}_history.joblib"

    def _patterns_path(self) -> Path:
        return self.pattern_root / "pattern_database.joblib"

    def _dump(self, payload: Dict, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            joblib.dump({"version": ARTIFACT_VERSION, **payload}, path)
        except Exception as e:
            raise PersistenceFailure(f"Failed to write {path}: {e}") from e

    def _load(self, path: Path) -> Optional[Dict]:
        if not path.exists():
            return None
        try:
            artifact = joblib.load(path)
        except Exception as e:
            raise PersistenceFailure(f"Failed to read {path}: {e}") from e
        if not isinstance(artifact, dict):
            raise PersistenceFailure(f"Unexpected artifact in {path}")
        return artifact

    async def save_model_state(self, instrument: str, model: str, state: ModelState) -> None:
        path = self._state_path(instrument, model)
        await asyncio.to_thread(self._dump, {"state": state.to_dict()}, path)
        logger.debug(f"Saved {model} state: {path}")

    async def load_model_state(self, instrument: str, model: str) -> Optional[ModelState]:
        artifact = await asyncio.to_thread(self._load, self._state_path(instrument, model))
        if artifact is None:
            return None
        if "state" not in artifact:
            raise PersistenceFailure(f"No state in {model} artifact for {instrument}")
        return ModelState.from_dict(artifact["state"])

    async def delete_model_state(self, instrument: str, model: Optional[str] = None) -> None:
        if model is not None:
            paths = [self._state_path(instrument, model)]
        else:
            symbol = normalize_instrument(instrument)
            paths = list(self.root.glob(f"{symbol}_*.joblib")) if self.root.exists() else []

        def remove():
            try:
                for path in paths:
                    path.unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceFailure(f"Failed to delete {instrument} artifacts: {e}") from e

        await asyncio.to_thread(remove)

    async def save_training_session(self, instrument: str, session: Dict) -> None:
        path = self._history_path(instrument)

        def append():
            artifact = self._load(path) or {}
            history = list(artifact.get("history", []))
            history.append(dict(session))
            self._dump({"history": history[-TRAINING_HISTORY_CAP:]}, path)

        await asyncio.to_thread(append)

    async def load_training_history(self, instrument: str) -> List[Dict]:
        artifact = await asyncio.to_thread(self._load, self._history_path(instrument))
        return list(artifact.get("history", [])) if artifact else []

    async def save_pattern_database(self, database: PatternDatabase) -> None:
        await asyncio.to_thread(self._dump, {"database": database.to_dict()}, self._patterns_path())
        logger.info(f"Saved pattern database ({len(database)} analogs)")

    async def load_pattern_database(self) -> Optional[PatternDatabase]:
        artifact = await asyncio.to_thread(self._load, self._patterns_path())
        if artifact is None:
            return None
        try:
            return PatternDatabase.from_dict(artifact["database"])
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"Invalid pattern database: {e}") from e
