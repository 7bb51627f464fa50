"""Top-level package for marticapp."""

__version__ = "0.1.0"

from . import config, gateway, history, pipeline, recording, session, storage

__all__ = ["config", "gateway", "history", "pipeline", "recording", "session", "storage"]

try:  # pragma: no cover - optional dependency
    from . import menubar as menubar  # type: ignore
except Exception:  # noqa: BLE001 - optional dependency failure is acceptable
    menubar = None  # type: ignore
else:
    __all__.append("menubar")
