"""Launch-at-login registration through a per-user LaunchAgent."""

from __future__ import annotations

import logging
import plistlib
import shutil
import sys
from pathlib import Path

AGENT_LABEL = "com.marticapp.agent"
AGENT_DIR = Path.home() / "Library" / "LaunchAgents"
AGENT_FILE = AGENT_DIR / f"{AGENT_LABEL}.plist"


def _get_executable() -> list[str]:
    path = shutil.which("marticapp")
    if path:
        return [path, "daemon"]
    return [sys.executable, "-m", "marticapp.cli", "daemon"]


def agent_definition() -> dict:
    return {
        "Label": AGENT_LABEL,
        "ProgramArguments": _get_executable(),
        "RunAtLoad": True,
        "KeepAlive": False,
        "ProcessType": "Interactive",
    }


def is_launch_on_startup_enabled() -> bool:
    return AGENT_FILE.exists()


def apply_launch_on_startup(enabled: bool) -> bool:
    """Install or remove the LaunchAgent. Returns True when the change applied."""

    try:
        if enabled:
            AGENT_DIR.mkdir(parents=True, exist_ok=True)
            with AGENT_FILE.open("wb") as fh:
                plistlib.dump(agent_definition(), fh)
        else:
            AGENT_FILE.unlink(missing_ok=True)
    except OSError as exc:
        logging.error("Failed to update login item: %s", exc)
        return False
    return True
