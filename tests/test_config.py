from pathlib import Path

from fxsignals.config import DEFAULT_INTERVAL, TRAINING_CANDLES, load_settings

ENV_VARS = [
    "FXSIGNALS_MODEL_DIR",
    "FXSIGNALS_PATTERN_DB_DIR",
    "FXSIGNALS_LOG_LEVEL",
    "FXSIGNALS_INTERVAL",
    "FXSIGNALS_TRAINING_CANDLES",
]


def _clear(monkeypatch):
    # setenv first so teardown also removes values loaded from a .env file
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults(monkeypatch, tmp_path):
    _clear(monkeypatch)
    settings = load_settings(str(tmp_path / "missing.env"))
    assert settings.default_interval == DEFAULT_INTERVAL
    assert settings.training_candles == TRAINING_CANDLES
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch, tmp_path):
    _clear(monkeypatch)
    monkeypatch.setenv("FXSIGNALS_MODEL_DIR", str(tmp_path / "models"))
    monkeypatch.setenv("FXSIGNALS_LOG_LEVEL", "debug")
    monkeypatch.setenv("FXSIGNALS_TRAINING_CANDLES", "500")

    settings = load_settings(str(tmp_path / "missing.env"))
    assert settings.model_dir == tmp_path / "models"
    assert settings.log_level == "DEBUG"
    assert settings.training_candles == 500


def test_env_file(monkeypatch, tmp_path):
    _clear(monkeypatch)
    env_file = tmp_path / ".env"
    env_file.write_text("FXSIGNALS_INTERVAL=15m\nFXSIGNALS_PATTERN_DB_DIR=/data/patterns\n")

    settings = load_settings(str(env_file))
    assert settings.default_interval == "15m"
    assert settings.pattern_db_dir == Path("/data/patterns")
