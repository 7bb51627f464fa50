"""Global shortcut parsing and macOS key-combination monitors."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Optional

from .models import Action

MODIFIER_ORDER = ("control", "option", "shift", "command")

# Alternative spellings only; canonical names map to themselves.
MODIFIER_ALIASES = {
    "cmd": "command",
    "⌘": "command",
    "commandorcontrol": "command",
    "cmdorctrl": "command",
    "ctrl": "control",
    "^": "control",
    "alt": "option",
    "⌥": "option",
    "⇧": "shift",
}

KEY_ALIASES = {
    "enter": "return",
    "spacebar": "space",
    "esc": "escape",
    "backspace": "delete",
}

MODIFIER_DISPLAY = {
    "command": "⌘",
    "shift": "⇧",
    "option": "⌥",
    "control": "⌃",
}

# Named keys accepted as the primary key, with their menu labels.
KEY_DISPLAY = {
    "space": "Space",
    "return": "Return",
    "tab": "Tab",
    "escape": "Esc",
    "delete": "Delete",
}


def normalize_hotkey(raw: str) -> str:
    """Return a canonical representation such as `control+shift+s`.

    Accepts accelerator strings like `Control+Shift+S` as well as the
    macOS symbols.
    """

    parts = [part.strip().lower() for part in raw.strip().split("+") if part.strip()]
    if not parts:
        raise ValueError("Hotkey cannot be empty.")

    modifiers: list[str] = []
    key: Optional[str] = None

    for part in parts:
        alias = MODIFIER_ALIASES.get(part, part)
        if alias in MODIFIER_ORDER:
            if alias not in modifiers:
                modifiers.append(alias)
            continue

        if key is not None:
            raise ValueError("Only one non-modifier key can be used in a shortcut.")

        mapped = KEY_ALIASES.get(alias, alias)
        if len(mapped) == 1 and mapped.isprintable():
            key = mapped
        elif mapped in KEY_DISPLAY:
            key = mapped
        else:
            raise ValueError(f"Unsupported key '{part}' in shortcut.")

    if key is None:
        raise ValueError("A shortcut must include a primary key.")
    if not modifiers:
        raise ValueError("A global shortcut needs at least one modifier.")

    ordered_modifiers = [mod for mod in MODIFIER_ORDER if mod in modifiers]
    return "+".join(ordered_modifiers + [key])


def format_hotkey(hotkey: str) -> str:
    """Return a user friendly representation of a canonical hotkey."""

    modifiers, key = split_hotkey(hotkey)
    display = "".join(MODIFIER_DISPLAY.get(mod, mod.title()) for mod in modifiers)
    if key in KEY_DISPLAY:
        return f"{display}{KEY_DISPLAY[key]}"
    if len(key) == 1:
        return f"{display}{key.upper()}"
    return f"{display}{key.title()}"


def split_hotkey(hotkey: str) -> tuple[list[str], str]:
    parts = hotkey.split("+")
    if not parts or not parts[-1]:
        raise ValueError("Hotkey is empty.")
    return parts[:-1], parts[-1]


class KeyComboHotkeyMonitor:  # pragma: no cover - requires AppKit
    """Trigger a callback when an arbitrary key combination is pressed."""

    def __init__(self, combo: str, on_press: Callable[[], None]) -> None:
        try:
            from AppKit import (  # type: ignore
                NSEvent,
                NSEventMaskKeyDown,
                NSEventMaskKeyUp,
                NSEventModifierFlagCommand,
                NSEventModifierFlagControl,
                NSEventModifierFlagOption,
                NSEventModifierFlagShift,
            )
            from Quartz import (  # type: ignore
                kVK_Delete,
                kVK_Escape,
                kVK_Return,
                kVK_Space,
                kVK_Tab,
            )
        except Exception as exc:
            raise RuntimeError(
                "The `pyobjc` packages are required for global hotkey support. Install marticapp[mac]."
            ) from exc

        modifiers, key = split_hotkey(combo)
        modifier_flags = {
            "command": NSEventModifierFlagCommand,
            "control": NSEventModifierFlagControl,
            "option": NSEventModifierFlagOption,
            "shift": NSEventModifierFlagShift,
        }
        special_keycodes = {
            "space": kVK_Space,
            "return": kVK_Return,
            "escape": kVK_Escape,
            "tab": kVK_Tab,
            "delete": kVK_Delete,
        }

        self._NSEvent = NSEvent
        self._mask_key_down = NSEventMaskKeyDown
        self._mask_key_up = NSEventMaskKeyUp
        self._on_press = on_press
        self._modifier_mask = 0
        for modifier in modifiers:
            self._modifier_mask |= modifier_flags.get(modifier, 0)
        self._expected_key_code = special_keycodes.get(key)
        self._expected_char = None if self._expected_key_code is not None else key
        self._monitors: list = []
        self._pressed = False

    def start(self) -> None:
        if self._monitors:
            return

        def process_key_down(event):
            if self._matches(event) and not self._pressed:
                self._pressed = True
                self._on_press()
            return event

        def process_key_up(event):
            if self._pressed and self._key_matches(event):
                self._pressed = False
            return event

        for mask, handler in ((self._mask_key_down, process_key_down), (self._mask_key_up, process_key_up)):
            self._monitors.append(self._NSEvent.addGlobalMonitorForEventsMatchingMask_handler_(mask, handler))
            self._monitors.append(self._NSEvent.addLocalMonitorForEventsMatchingMask_handler_(mask, handler))

    def stop(self) -> None:
        for monitor in self._monitors:
            if monitor is not None:
                self._NSEvent.removeMonitor_(monitor)
        self._monitors = []
        self._pressed = False

    def _matches(self, event) -> bool:
        return self._modifiers_active(event) and self._key_matches(event)

    def _key_matches(self, event) -> bool:
        if self._expected_key_code is not None:
            return int(event.keyCode()) == int(self._expected_key_code)
        chars = event.charactersIgnoringModifiers()
        return bool(chars) and chars.lower() == self._expected_char

    def _modifiers_active(self, event) -> bool:
        flags = int(event.modifierFlags())
        return (flags & self._modifier_mask) == self._modifier_mask


MonitorFactory = Callable[[str, Callable[[], None]], object]


class HotkeyRegistry:
    """Keeps one monitor per action; re-registering replaces all of them."""

    def __init__(
        self,
        on_trigger: Callable[[Action], None],
        monitor_factory: MonitorFactory = KeyComboHotkeyMonitor,
    ) -> None:
        self._on_trigger = on_trigger
        self._monitor_factory = monitor_factory
        self._monitors: Dict[Action, object] = {}

    def register(self, bindings: Mapping[Action, str]) -> Dict[Action, str]:
        """Register `bindings`, returning the canonical combos that succeeded."""

        self.unregister_all()
        registered: Dict[Action, str] = {}
        for action, raw in bindings.items():
            try:
                combo = normalize_hotkey(raw)
                monitor = self._monitor_factory(combo, lambda action=action: self._on_trigger(action))
                monitor.start()
            except Exception as exc:
                logging.error("Failed to register hotkey %r for %s: %s", raw, action.value, exc)
                continue
            self._monitors[action] = monitor
            registered[action] = combo
        return registered

    def unregister_all(self) -> None:
        for monitor in self._monitors.values():
            monitor.stop()
        self._monitors = {}
