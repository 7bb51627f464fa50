import pytest

from marticapp.config import ConfigError
from marticapp.events import EventBus, HotkeysChanged
from marticapp.models import Action, HistoryEntry
from marticapp.operations import UserOperations
from marticapp.storage import Store

EMAIL = "ana@example.com"


@pytest.fixture
def operations(tmp_path):
    launches = []
    events = []
    bus = EventBus()
    bus.subscribe(events.append)

    def launch(enabled):
        launches.append(enabled)
        return True

    ops = UserOperations(Store(tmp_path / "store.json"), bus, launch)
    ops.launches = launches
    ops.events = events
    return ops


def test_update_config_normalises_and_announces_hotkeys(operations):
    operations.update_config(EMAIL, smart_transcribe_hotkey="Ctrl+Alt+T")

    assert operations.store.load_config(EMAIL).smart_transcribe_hotkey == "control+option+t"
    event = operations.events[-1]
    assert isinstance(event, HotkeysChanged)
    assert event.bindings[Action.TRANSCRIBE] == "control+option+t"
    assert operations.launches == [False]


def test_update_config_rejects_invalid_values_without_saving(operations):
    with pytest.raises(ConfigError):
        operations.update_config(EMAIL, process_text_hotkey="d")
    with pytest.raises(ConfigError):
        operations.update_config(EMAIL, active_prompt_name="Missing")

    assert operations.store.get_user_data(EMAIL, "config") is None
    assert operations.events == []


def test_logged_out_reads_are_empty(operations, tmp_path):
    assert operations.get_history(None) == []
    assert operations.analytics(None) is None
    assert operations.clear_history(None).message == "Please log in."
    assert operations.export_history(None, tmp_path / "out.csv").message == "Please log in."


def test_export_reports_entry_count(operations, tmp_path):
    operations.store.record_run(EMAIL, Action.TRANSCRIBE, HistoryEntry(type="Smart Transcription", output="hola"))

    result = operations.export_history(EMAIL, tmp_path / "out.csv")

    assert result.success
    assert result.message == f"Exported 1 entries to {tmp_path / 'out.csv'}."
    assert operations.get_stats(EMAIL).transcription == 1
