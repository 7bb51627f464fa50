"""Per-user configuration: defaults merge, serialisation and server overrides."""

from __future__ import annotations

import logging
from dataclasses import asdict, fields, is_dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .hotkeys import normalize_hotkey
from .models import ApiConfig, Config, PromptTemplate

FINAL_ACTIONS = ("paste", "copy")
HOTKEY_KEYS = ("smart_transcribe_hotkey", "process_text_hotkey")


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or updated."""


class ApiConfigPayload(BaseModel):
    """`apiConfig` object as sent by the login and token endpoints."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    gcp_project_id: Optional[str] = Field(default=None, alias="gcpProjectId")
    gemini_api_base: Optional[str] = Field(default=None, alias="geminiApiBase")
    gemini_model_id: Optional[str] = Field(default=None, alias="geminiModelId")


def _merge(defaults: Any, payload: Any) -> Any:
    if not isinstance(payload, dict):
        return defaults

    values: Dict[str, Any] = {}
    known = set()
    for item in fields(defaults):
        known.add(item.name)
        current = getattr(defaults, item.name)
        if item.name not in payload:
            values[item.name] = current
            continue
        raw = payload[item.name]
        if is_dataclass(current):
            values[item.name] = _merge(current, raw)
        elif item.name == "library" and isinstance(raw, list):
            values[item.name] = [
                PromptTemplate(name=entry["name"], prompt=entry["prompt"])
                for entry in raw
                if isinstance(entry, dict) and "name" in entry and "prompt" in entry
            ]
        else:
            values[item.name] = raw

    unknown = set(payload) - known
    if unknown:
        logging.debug("Ignoring unknown configuration keys: %s", ", ".join(sorted(unknown)))
    return type(defaults)(**values)


def config_from_dict(payload: Optional[Dict[str, Any]]) -> Config:
    """Build a Config, falling back to defaults for every absent key."""

    return _merge(Config(), payload or {})


def config_to_dict(config: Config) -> Dict[str, Any]:
    return asdict(config)


def update_config(config: Config, **kwargs: Any) -> Config:
    for key, value in kwargs.items():
        if not hasattr(config, key):
            raise ConfigError(f"Unknown configuration key: {key}")
        if key == "final_action" and value not in FINAL_ACTIONS:
            raise ConfigError(f"final_action must be one of {', '.join(FINAL_ACTIONS)}")
        if key in HOTKEY_KEYS:
            try:
                value = normalize_hotkey(value)
            except ValueError as exc:
                raise ConfigError(f"Invalid shortcut {value!r}: {exc}") from exc
        if key == "active_prompt_name" and config.prompts.find(value) is None:
            raise ConfigError(f"Unknown prompt: {value}")
        setattr(config, key, value)
    return config


def apply_api_config(config: Config, payload: ApiConfigPayload) -> Config:
    """Replace the provider parameters with the ones sent by the server."""

    base = asdict(ApiConfig())
    base.update(payload.model_dump(exclude_unset=True))
    config.api_config = ApiConfig(**base)
    return config
