import plistlib

from marticapp import startup


def _patch_agent(monkeypatch, tmp_path):
    agent_dir = tmp_path / "LaunchAgents"
    monkeypatch.setattr(startup, "AGENT_DIR", agent_dir)
    monkeypatch.setattr(startup, "AGENT_FILE", agent_dir / f"{startup.AGENT_LABEL}.plist")
    return agent_dir / f"{startup.AGENT_LABEL}.plist"


def test_enable_writes_launch_agent(tmp_path, monkeypatch):
    agent_file = _patch_agent(monkeypatch, tmp_path)
    monkeypatch.setattr(startup.shutil, "which", lambda name: "/usr/local/bin/marticapp")

    assert startup.apply_launch_on_startup(True) is True
    assert startup.is_launch_on_startup_enabled()

    with agent_file.open("rb") as fh:
        definition = plistlib.load(fh)
    assert definition["Label"] == "com.marticapp.agent"
    assert definition["ProgramArguments"] == ["/usr/local/bin/marticapp", "daemon"]
    assert definition["RunAtLoad"] is True


def test_disable_removes_launch_agent(tmp_path, monkeypatch):
    _patch_agent(monkeypatch, tmp_path)

    startup.apply_launch_on_startup(True)
    assert startup.apply_launch_on_startup(False) is True
    assert not startup.is_launch_on_startup_enabled()
    assert startup.apply_launch_on_startup(False) is True


def test_falls_back_to_module_invocation(monkeypatch):
    monkeypatch.setattr(startup.shutil, "which", lambda name: None)
    arguments = startup.agent_definition()["ProgramArguments"]
    assert arguments[1:] == ["-m", "marticapp.cli", "daemon"]


def test_write_failure_is_reported(tmp_path, monkeypatch):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    monkeypatch.setattr(startup, "AGENT_DIR", blocker / "LaunchAgents")
    monkeypatch.setattr(startup, "AGENT_FILE", blocker / "LaunchAgents" / "agent.plist")

    assert startup.apply_launch_on_startup(True) is False
