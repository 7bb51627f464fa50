import json

import pytest
from typer.testing import CliRunner

from marticapp import cli
from marticapp.models import Action, Credentials, HistoryEntry
from marticapp.storage import Store

runner = CliRunner()


@pytest.fixture
def store(tmp_path, monkeypatch):
    store = Store(tmp_path / "store.json")
    monkeypatch.setattr(cli, "Store", lambda: store)
    monkeypatch.setattr(cli, "apply_launch_on_startup", lambda enabled: True)
    return store


@pytest.fixture
def logged_in(store):
    store.save_credentials(Credentials("ana@example.com", "secret"))
    store.set_last_active_user("ana@example.com")
    return store


def test_version():
    result = runner.invoke(cli.app, ["--version"])
    assert result.exit_code == 0
    assert "marticapp v" in result.stdout


def test_commands_require_login(store):
    result = runner.invoke(cli.app, ["history"])
    assert result.exit_code == 1


def test_config_updates_and_normalises_hotkeys(logged_in):
    result = runner.invoke(cli.app, ["config", "--transcribe-hotkey", "Ctrl+Alt+T", "--final-action", "copy"])
    assert result.exit_code == 0, result.output

    cfg = logged_in.load_config("ana@example.com")
    assert cfg.smart_transcribe_hotkey == "control+option+t"
    assert cfg.final_action == "copy"


def test_config_rejects_unknown_prompt(logged_in):
    result = runner.invoke(cli.app, ["config", "--active-prompt", "Nope"])
    assert result.exit_code == 1
    assert logged_in.load_config("ana@example.com").active_prompt_name == "Resumen Ejecutivo"


def test_config_show(logged_in):
    result = runner.invoke(cli.app, ["config", "--show"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["final_action"] == "paste"


def test_export_history(logged_in, tmp_path):
    logged_in.record_run("ana@example.com", Action.TRANSCRIBE, HistoryEntry(type="Smart Transcription", output="hola"))
    destination = tmp_path / "historial.csv"

    result = runner.invoke(cli.app, ["export-history", str(destination)])

    assert result.exit_code == 0, result.output
    assert destination.read_text(encoding="utf-8").endswith('"Smart Transcription","hola"\n')


def test_clear_history(logged_in):
    logged_in.record_run("ana@example.com", Action.TRANSCRIBE, HistoryEntry(type="Smart Transcription", output="hola"))
    result = runner.invoke(cli.app, ["clear-history", "--yes"])
    assert result.exit_code == 0
    assert logged_in.load_history("ana@example.com") == []


def test_logout_forgets_credentials(logged_in):
    result = runner.invoke(cli.app, ["logout"])
    assert result.exit_code == 0
    assert logged_in.load_credentials("ana@example.com") is None
    assert logged_in.last_active_user is None


def test_config_applies_login_item_like_the_daemon(logged_in, monkeypatch):
    launches = []
    monkeypatch.setattr(cli, "apply_launch_on_startup", lambda enabled: launches.append(enabled) or True)

    result = runner.invoke(cli.app, ["config", "--final-action", "copy"])

    assert result.exit_code == 0, result.output
    assert launches == [False]


def test_config_hotkey_change_mentions_reload(logged_in):
    result = runner.invoke(cli.app, ["config", "--process-text-hotkey", "control+option+p"])
    assert result.exit_code == 0, result.output
    assert "Reload settings" in result.stdout
