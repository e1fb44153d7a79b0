"""Tests for CLI commands: help, deck/card setup, reviews, queues, scores, server and config."""

import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from spacedeck.application import config as config_module
from spacedeck.infrastructure.adapters.sqlite_store import SqliteStore
from spacedeck.interface.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_FILES", [tmp_path / "missing.toml"])
    for key in list(os.environ):
        if key.startswith("SPACEDECK_"):
            monkeypatch.delenv(key)


@pytest.fixture
def db(tmp_path):
    """A database with deck-1 (cards a, b, c) owned by alice."""
    path = tmp_path / "cli.db"
    result = runner.invoke(app, ["deck", "add", "deck-1", "-u", "alice", "--db", str(path)])
    assert result.exit_code == 0
    result = runner.invoke(app, ["card", "add", "deck-1", "a", "b", "c", "--db", str(path)])
    assert result.exit_code == 0
    return path


def invoke(db, *args):
    return runner.invoke(app, [*args, "--db", str(db)])


# --- Help ---


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "spacedeck" in result.stdout
    assert "review" in result.stdout
    assert "queue" in result.stdout
    assert "config" in result.stdout


# --- Deck and card setup ---


def test_card_add_reports_count(tmp_path):
    path = tmp_path / "x.db"
    runner.invoke(app, ["deck", "add", "d", "-u", "bob", "--db", str(path)])
    result = runner.invoke(app, ["card", "add", "d", "c1", "c2", "--db", str(path)])
    assert result.exit_code == 0
    assert "Added 2 card(s) to d" in result.stdout


def test_deck_add_for_another_owner_fails(db):
    result = runner.invoke(app, ["deck", "add", "deck-1", "-u", "mallory", "--db", str(db)])
    assert result.exit_code == 1
    assert "Deck already exists" in result.output

    result = invoke(db, "queue", "deck-1", "-u", "alice", "--json")
    assert result.exit_code == 0
    assert json.loads(result.stdout)["total"] == 3


def test_card_add_unknown_deck_fails(tmp_path):
    result = runner.invoke(app, ["card", "add", "nope", "c1", "--db", str(tmp_path / "x.db")])
    assert result.exit_code == 1
    assert "Deck not found" in result.output


# --- Review ---


def test_review_prints_schedule(db):
    result = invoke(db, "review", "deck-1", "a", "easy", "-u", "alice")
    assert result.exit_code == 0
    assert "Next due:" in result.stdout
    assert "Interval: 8d" in result.stdout


def test_review_uses_user_env(db, monkeypatch):
    monkeypatch.setenv("SPACEDECK_USER", "alice")
    result = invoke(db, "review", "deck-1", "a", "good")
    assert result.exit_code == 0
    assert "Interval: 0d" in result.stdout


def test_review_invalid_rating_rejected(db):
    result = invoke(db, "review", "deck-1", "a", "perfect", "-u", "alice")
    assert result.exit_code == 1
    assert "Invalid rating" in result.output


def test_review_wrong_user_not_found(db):
    result = invoke(db, "review", "deck-1", "a", "good", "-u", "mallory")
    assert result.exit_code == 1
    assert "Deck not found" in result.output


def test_commands_close_the_store(db):
    real_close = SqliteStore.close
    with patch.object(SqliteStore, "close", autospec=True, side_effect=real_close) as close:
        invoke(db, "review", "deck-1", "a", "good", "-u", "alice")
        invoke(db, "review", "deck-1", "a", "perfect", "-u", "alice")

    assert close.call_count == 2


# --- Queues ---


def test_queue_json(db):
    invoke(db, "review", "deck-1", "a", "easy", "-u", "alice")
    result = invoke(db, "queue", "deck-1", "-u", "alice", "--json")

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data == {"due": [], "new": ["b", "c"], "total": 2}


def test_queue_limit(db):
    result = invoke(db, "queue", "deck-1", "-u", "alice", "--limit", "1")
    assert result.exit_code == 0
    assert "Due: 0  New: 1" in result.stdout


def test_queue_zero_limit_fails(db):
    result = invoke(db, "queue", "deck-1", "-u", "alice", "--limit", "0")
    assert result.exit_code == 1


def test_quiz(db):
    result = invoke(db, "quiz", "deck-1", "-u", "alice")
    assert result.exit_code == 0
    assert "Total: 3" in result.stdout


# --- Scores ---


def test_score_without_reviews(db):
    result = invoke(db, "score", "deck-1", "-u", "alice")
    assert result.exit_code == 0
    assert "No reviews recorded yet." in result.stdout


def test_score_after_reviews(db):
    invoke(db, "review", "deck-1", "a", "good", "-u", "alice")
    invoke(db, "review", "deck-1", "b", "again", "-u", "alice")

    result = invoke(db, "score", "deck-1", "-u", "alice", "--json")

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data[0]["window"] == "d30"
    assert data[0]["accuracyPct"] == pytest.approx(0.9)
    assert data[0]["lapses"] == 1
    assert data[0]["grade"] == "B"


def test_scores_refresh(db):
    invoke(db, "review", "deck-1", "a", "good", "-u", "alice")
    invoke(db, "review", "deck-1", "b", "again", "-u", "alice")

    result = invoke(db, "scores", "refresh", "deck-1", "-u", "alice")

    assert result.exit_code == 0
    assert "d7   50.00%  lapses=1" in result.stdout


def test_performance_insufficient(db):
    result = invoke(db, "performance", "deck-1", "-u", "alice")
    assert result.exit_code == 0
    assert "Not enough reviews yet (0/10)" in result.stdout


def test_load_normal(db):
    result = invoke(db, "load", "deck-1", "-u", "alice")
    assert result.exit_code == 0
    assert "Review load is normal." in result.stdout


# --- Server ---


@patch("uvicorn.run")
def test_serve_command(mock_run):
    result = runner.invoke(app, ["serve", "--port", "9000"])
    assert result.exit_code == 0
    mock_run.assert_called_with("spacedeck.server:app", host="127.0.0.1", port=9000, reload=False)


# --- Config ---


@patch("spacedeck.interface.cli.resolve_config")
def test_config_show_command(mock_resolve_config):
    mock_config = MagicMock()
    mock_config.model_dump.return_value = {
        "database_path": Path("/tmp/spacedeck.db"),
        "backend": "sqlite",
        "ema_alpha": 0.1,
    }
    mock_resolve_config.return_value = mock_config

    result = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 0
    output_data = json.loads(result.stdout)
    assert output_data["database_path"] == str(Path("/tmp/spacedeck.db"))
    assert output_data["backend"] == "sqlite"
