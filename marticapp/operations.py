"""Settings and history operations shared by the CLI and the menu bar daemon."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional

from .config import update_config
from .events import EventBus, HotkeysChanged
from .history import Analytics, compute_analytics, write_history_csv
from .models import Config, HistoryEntry, Stats
from .session import hotkey_bindings
from .startup import apply_launch_on_startup
from .storage import Store


@dataclass(slots=True)
class OperationResult:
    success: bool
    message: Optional[str] = None


class UserOperations:
    """Per-user operations on the store.

    Every method takes the e-mail of the user it acts on; `None` means
    nobody is logged in.
    """

    def __init__(
        self,
        store: Store,
        bus: Optional[EventBus] = None,
        launch_on_startup: Callable[[bool], bool] = apply_launch_on_startup,
    ) -> None:
        self.store = store
        self.bus = bus or EventBus()
        self._launch_on_startup = launch_on_startup

    def get_config(self, email: Optional[str]) -> Config:
        return self.store.load_config(email) if email else Config()

    def announce_config(self, config: Config) -> None:
        """Tell the presentation layer which hotkeys and indicator position to use."""

        self.bus.emit(
            HotkeysChanged(
                bindings=hotkey_bindings(config),
                floating_icon_position=config.floating_icon_position,
            )
        )

    def save_config(self, email: str, config: Config) -> None:
        self.store.save_config(email, config)
        self.announce_config(config)
        if not self._launch_on_startup(config.launch_on_startup):
            logging.warning("Launch on startup could not be set to %s", config.launch_on_startup)

    def update_config(self, email: str, **changes: Any) -> Config:
        config = update_config(self.get_config(email), **changes)
        self.save_config(email, config)
        return config

    def complete_onboarding(self, email: Optional[str]) -> None:
        if email is None:
            return
        config = self.store.load_config(email)
        config.has_completed_onboarding = True
        self.store.save_config(email, config)

    def get_history(self, email: Optional[str]) -> List[HistoryEntry]:
        return self.store.load_history(email) if email else []

    def get_stats(self, email: Optional[str]) -> Stats:
        return self.store.load_stats(email) if email else Stats()

    def clear_history(self, email: Optional[str]) -> OperationResult:
        if email is None:
            return OperationResult(success=False, message="Please log in.")
        self.store.clear_history(email)
        return OperationResult(success=True)

    def export_history(self, email: Optional[str], path: Optional[Path]) -> OperationResult:
        if email is None:
            return OperationResult(success=False, message="Please log in.")
        history = self.store.load_history(email)
        if not history:
            return OperationResult(success=False, message="History is empty.")
        if path is None:
            return OperationResult(success=False, message="Export cancelled.")
        try:
            write_history_csv(history, path)
        except OSError as exc:
            logging.error("History export failed: %s", exc)
            return OperationResult(success=False, message="Could not save the file.")
        return OperationResult(success=True, message=f"Exported {len(history)} entries to {path}.")

    def analytics(self, email: Optional[str], now: Optional[datetime] = None) -> Optional[Analytics]:
        if email is None:
            return None
        return compute_analytics(self.store.load_history(email), self.store.load_stats(email), now)
