import os
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from spacedeck.application import config as config_module
from spacedeck.application.config import AppConfig, resolve_config
from spacedeck.application.factory import build_engine, build_study_service, get_store
from spacedeck.domain.constants import DEFAULT_PARAMETERS_VERSION, DEFAULT_WEIGHTS
from spacedeck.infrastructure.adapters.memory_store import InMemoryStore
from spacedeck.infrastructure.adapters.sqlite_store import SqliteStore


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """No user config files and no SPACEDECK_* variables leak into these tests."""
    monkeypatch.setattr(config_module, "CONFIG_FILES", [tmp_path / "missing.toml"])
    for key in list(os.environ):
        if key.startswith("SPACEDECK_"):
            monkeypatch.delenv(key)


def test_defaults():
    config = resolve_config()
    assert config.backend == "sqlite"
    assert config.learning_steps_minutes is None
    assert config.relearning_steps_minutes is None
    assert config.ema_alpha == 0.1
    assert config.load_ratio == 1.5
    assert config.timezone == "UTC"
    assert config.study_queue_limit == 10
    assert config.quiz_queue_limit == 10


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("SPACEDECK_BACKEND", "memory")
    monkeypatch.setenv("SPACEDECK_DESIRED_RETENTION", "0.85")
    monkeypatch.setenv("SPACEDECK_LEARNING_STEPS_MINUTES", "[1, 5, 30]")

    config = resolve_config()

    assert config.backend == "memory"
    assert config.desired_retention == 0.85
    assert config.learning_steps_minutes == [1.0, 5.0, 30.0]


def test_toml_file_is_read(tmp_path, monkeypatch):
    cfg = tmp_path / "config.toml"
    cfg.write_text('backend = "memory"\nport = 9001\ntimezone = "Europe/Berlin"\n')
    monkeypatch.setattr(config_module, "CONFIG_FILES", [cfg])

    config = resolve_config()

    assert config.backend == "memory"
    assert config.port == 9001
    assert config.timezone == "Europe/Berlin"


def test_precedence_cli_over_env_over_file(tmp_path, monkeypatch):
    cfg = tmp_path / "config.toml"
    cfg.write_text("port = 9001\nquiz_queue_limit = 3\nload_absolute = 80\n")
    monkeypatch.setattr(config_module, "CONFIG_FILES", [cfg])
    monkeypatch.setenv("SPACEDECK_PORT", "9002")
    monkeypatch.setenv("SPACEDECK_QUIZ_QUEUE_LIMIT", "4")

    config = resolve_config({"port": 9003, "load_absolute": None})

    assert config.port == 9003
    assert config.quiz_queue_limit == 4
    assert config.load_absolute == 80


def test_paths_are_expanded():
    config = resolve_config({"database_path": "~/decks.db"})
    assert config.database_path == Path("~/decks.db").expanduser()


def test_invalid_timezone_rejected():
    with pytest.raises(ValidationError):
        AppConfig(timezone="Mars/Olympus_Mons")


def test_invalid_retention_rejected():
    with pytest.raises(ValidationError):
        AppConfig(desired_retention=1.2)


def test_log_level_normalized():
    assert AppConfig(log_level="debug").log_level == "DEBUG"


def test_get_store_selects_backend(tmp_path):
    assert isinstance(get_store(AppConfig(backend="memory")), InMemoryStore)

    store = get_store(AppConfig(backend="sqlite", database_path=tmp_path / "x.db"))
    assert isinstance(store, SqliteStore)
    store.close()


def test_build_engine_applies_overrides():
    engine = build_engine(
        AppConfig(desired_retention=0.8, maximum_interval=365, relearning_steps_minutes=[5])
    )
    assert engine.params.desired_retention == 0.8
    assert engine.params.maximum_interval == 365
    assert [s.total_seconds() for s in engine.params.relearning_steps] == [300.0]
    assert engine.params.version == (
        f"{DEFAULT_PARAMETERS_VERSION}+retention=0.8,max=365,relearn=5"
    )


def test_build_engine_keeps_steps_from_parameter_file(tmp_path):
    params_file = tmp_path / "steps.yaml"
    params_file.write_text(
        yaml.safe_dump(
            {
                "version": "fsrs-6-slow-steps",
                "weights": list(DEFAULT_WEIGHTS),
                "learning_steps_minutes": [5, 30],
                "relearning_steps_minutes": [15],
            }
        )
    )

    engine = build_engine(AppConfig(parameters_file=params_file))

    assert [s.total_seconds() for s in engine.params.learning_steps] == [300.0, 1800.0]
    assert [s.total_seconds() for s in engine.params.relearning_steps] == [900.0]
    assert engine.params.version == "fsrs-6-slow-steps"


def test_build_engine_default_version_without_overrides():
    assert build_engine(AppConfig()).params.version == DEFAULT_PARAMETERS_VERSION


def test_build_study_service_wires_config():
    config = AppConfig(
        backend="memory",
        study_queue_limit=7,
        quiz_queue_limit=4,
        grade_min_reviews=5,
        load_absolute=250,
        timezone="Asia/Tokyo",
    )
    service = build_study_service(config)

    assert service.study_limit == 7
    assert service.quiz_limit == 4
    assert service.grade_min_reviews == 5
    assert service.load_monitor.absolute == 250
    assert str(service.load_monitor.tz) == "Asia/Tokyo"
