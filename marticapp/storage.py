"""JSON backed vault for per-user credentials, configuration, history and stats."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import config_from_dict, config_to_dict
from .models import Action, Config, Credentials, HistoryEntry, Stats

APP_DIR = Path(os.getenv("MARTICAPP_HOME", Path.home() / ".marticapp")).expanduser()
STORE_PATH = APP_DIR / "store.json"

LAST_ACTIVE_KEY = "lastActiveUserEmail"
USER_KEYS = ("config", "history", "stats", "credentials")


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the store."""


class Store:
    """Namespaced key-value store: `users.<email>.<key>` plus `lastActiveUserEmail`.

    The whole document is rewritten on every change, so a history append and
    the matching stats increment land in the same write. A file that cannot be
    parsed is discarded and replaced by an empty document.
    """

    def __init__(self, path: Path = STORE_PATH) -> None:
        self.path = path

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {LAST_ACTIVE_KEY: None, "users": {}}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logging.warning("Discarding unreadable store %s: %s", self.path, exc)
            return {LAST_ACTIVE_KEY: None, "users": {}}
        if not isinstance(data, dict):
            logging.warning("Discarding store %s with unexpected layout", self.path)
            return {LAST_ACTIVE_KEY: None, "users": {}}
        data.setdefault(LAST_ACTIVE_KEY, None)
        data.setdefault("users", {})
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".store-", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, ensure_ascii=False)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise StorageError(f"Failed to write store {self.path}: {exc}") from exc

    def get_user_data(self, email: str, key: str) -> Any:
        if key not in USER_KEYS:
            raise StorageError(f"Unknown user data key: {key}")
        return self._read()["users"].get(email, {}).get(key)

    def set_user_data(self, email: str, key: str, value: Any) -> None:
        if key not in USER_KEYS:
            raise StorageError(f"Unknown user data key: {key}")
        data = self._read()
        data["users"].setdefault(email, {})[key] = value
        self._write(data)

    @property
    def last_active_user(self) -> Optional[str]:
        return self._read().get(LAST_ACTIVE_KEY)

    def set_last_active_user(self, email: Optional[str]) -> None:
        data = self._read()
        data[LAST_ACTIVE_KEY] = email
        self._write(data)

    def load_credentials(self, email: str) -> Optional[Credentials]:
        raw = self.get_user_data(email, "credentials")
        if not isinstance(raw, dict) or not raw.get("email") or not raw.get("password"):
            return None
        return Credentials(email=raw["email"], password=raw["password"])

    def save_credentials(self, credentials: Credentials) -> None:
        self.set_user_data(credentials.email, "credentials", asdict(credentials))

    def forget_credentials(self, email: str) -> None:
        data = self._read()
        data["users"].get(email, {}).pop("credentials", None)
        self._write(data)

    def load_config(self, email: str) -> Config:
        return config_from_dict(self.get_user_data(email, "config"))

    def save_config(self, email: str, config: Config) -> None:
        self.set_user_data(email, "config", config_to_dict(config))

    def load_history(self, email: str) -> List[HistoryEntry]:
        raw = self.get_user_data(email, "history") or []
        return [
            HistoryEntry(
                type=item.get("type", ""),
                output=item.get("output", ""),
                date=item.get("date", ""),
                word_count=item.get("word_count", 0),
            )
            for item in raw
        ]

    def clear_history(self, email: str) -> None:
        self.set_user_data(email, "history", [])

    def load_stats(self, email: str) -> Stats:
        raw = self.get_user_data(email, "stats")
        if not isinstance(raw, dict):
            return Stats()
        stats = Stats()
        return Stats(
            transcription=raw.get("transcription", stats.transcription),
            processing=raw.get("processing", stats.processing),
            first_use_date=raw.get("first_use_date", stats.first_use_date),
        )

    def record_run(self, email: str, action: Action, entry: HistoryEntry) -> Stats:
        """Append a history entry and bump the matching counter in one write."""

        data = self._read()
        user = data["users"].setdefault(email, {})
        stats = user.get("stats") if isinstance(user.get("stats"), dict) else asdict(Stats())
        counter = "transcription" if action is Action.TRANSCRIBE else "processing"
        stats[counter] = stats.get(counter, 0) + 1
        user["stats"] = stats
        user.setdefault("history", []).append(asdict(entry))
        self._write(data)
        return self.load_stats(email)
