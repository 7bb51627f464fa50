"""macOS menu bar presentation adapter for marticapp."""

from __future__ import annotations

import logging
import platform
from typing import TYPE_CHECKING, Optional

from .events import (
    AudioTestChanged,
    HotkeysChanged,
    LastResultChanged,
    LoggedOut,
    LoginRequired,
    Notify,
    SessionActive,
    StatusChanged,
)
from .hotkeys import HotkeyRegistry, format_hotkey
from .models import Action

if TYPE_CHECKING:  # pragma: no cover
    from .app import EventLoopThread, MarticApp


def _require_macos() -> None:
    if platform.system() != "Darwin":  # pragma: no cover - platform guard
        raise RuntimeError("The menu bar application is only supported on macOS.")


def parse_hex_color(value: str) -> tuple[float, float, float]:
    text = value.strip().lstrip("#")
    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)
    if len(text) != 6:
        raise ValueError(f"Invalid colour {value!r}")
    return tuple(int(text[i : i + 2], 16) / 255.0 for i in (0, 2, 4))  # type: ignore[return-value]


def indicator_origin(position: str, screen_size: tuple[float, float], size: float, margin: float = 10.0) -> tuple[float, float]:
    """Bottom-left origin of the floating indicator in Cocoa coordinates."""

    width, height = screen_size
    left = margin
    right = width - size - margin
    top = height - size - margin
    bottom = margin
    return {
        "top-left": (left, top),
        "top-right": (right, top),
        "bottom-left": (left, bottom),
    }.get(position, (right, bottom))


class StatusIndicator:  # pragma: no cover - requires AppKit
    """Small floating dot tinted with the current status colour."""

    SIZE = 40.0

    def __init__(self) -> None:
        try:
            from AppKit import (  # type: ignore
                NSBackingStoreBuffered,
                NSColor,
                NSPanel,
                NSScreen,
                NSWindowCollectionBehaviorCanJoinAllSpaces,
                NSWindowStyleMaskBorderless,
                NSStatusWindowLevel,
            )
            from Quartz import NSMakeRect  # type: ignore
        except Exception as exc:
            raise RuntimeError(
                "The `pyobjc` packages are required for the status indicator. Install marticapp[mac]."
            ) from exc

        self._NSPanel = NSPanel
        self._NSScreen = NSScreen
        self._NSColor = NSColor
        self._NSMakeRect = NSMakeRect
        self._style_mask = NSWindowStyleMaskBorderless
        self._backing = NSBackingStoreBuffered
        self._behavior = NSWindowCollectionBehaviorCanJoinAllSpaces
        self._level = NSStatusWindowLevel
        self._window = None
        self.position = "bottom-right"

    def show(self, color: str) -> None:
        screen = self._NSScreen.mainScreen()
        if screen is None:
            return
        if self._window is None:
            frame = screen.visibleFrame()
            x, y = indicator_origin(self.position, (frame.size.width, frame.size.height), self.SIZE)
            panel = self._NSPanel.alloc().initWithContentRect_styleMask_backing_defer_(
                self._NSMakeRect(frame.origin.x + x, frame.origin.y + y, self.SIZE, self.SIZE),
                self._style_mask,
                self._backing,
                False,
            )
            panel.setOpaque_(False)
            panel.setIgnoresMouseEvents_(True)
            panel.setCollectionBehavior_(self._behavior)
            panel.setLevel_(self._level)
            self._window = panel

        red, green, blue = parse_hex_color(color)
        self._window.setBackgroundColor_(
            self._NSColor.colorWithCalibratedRed_green_blue_alpha_(red, green, blue, 0.85)
        )
        self._window.orderFrontRegardless()

    def hide(self) -> None:
        if self._window is None:
            return
        self._window.orderOut_(None)
        self._window = None


class MenuBarPresenter:  # pragma: no cover - interactive
    """Renders core events in the menu bar and forwards hotkeys to the core."""

    def __init__(self, app: "MarticApp", loop_thread: "EventLoopThread") -> None:
        _require_macos()
        import rumps  # type: ignore

        self._rumps = rumps
        self._app = app
        self._loop = loop_thread
        self._hotkeys = HotkeyRegistry(self._on_hotkey)
        self._indicator = self._create_indicator()

        self._tray = rumps.App("🎤", quit_button=None)
        self._status_item = rumps.MenuItem("Not logged in")
        self._copy_item = rumps.MenuItem("Copy last transcription", callback=None)
        self._test_item = rumps.MenuItem("Test microphone", callback=self._toggle_test)
        self._tray.menu = [
            self._status_item,
            rumps.separator,
            self._copy_item,
            self._test_item,
            rumps.MenuItem("Reload settings", callback=self._reload_settings),
            rumps.separator,
            rumps.MenuItem("Log out", callback=self._logout),
            rumps.MenuItem("Exit", callback=self._quit),
        ]
        app.bus.subscribe(self._on_event)

    def run(self) -> None:
        self._rumps.debug_mode(False)
        self._tray.run()

    def _create_indicator(self) -> Optional[StatusIndicator]:
        try:
            return StatusIndicator()
        except Exception as exc:
            logging.debug("Status indicator unavailable: %s", exc)
            return None

    def _on_hotkey(self, action: Action) -> None:
        self._loop.submit(self._app.recording.handle_hotkey(action))

    def _on_event(self, event: object) -> None:
        if isinstance(event, StatusChanged):
            self._render_status(event)
        elif isinstance(event, Notify):
            self._notify(event.title, event.body)
        elif isinstance(event, HotkeysChanged):
            registered = self._hotkeys.register(event.bindings)
            if self._indicator is not None and event.floating_icon_position:
                self._indicator.position = event.floating_icon_position
            if registered:
                shortcuts = ", ".join(format_hotkey(combo) for combo in registered.values())
                self._status_item.title = f"Ready: {shortcuts}"
        elif isinstance(event, SessionActive):
            email = event.session.email or ""
            self._status_item.title = f"Logged in as {email}"
        elif isinstance(event, LoggedOut):
            self._status_item.title = "Not logged in"
        elif isinstance(event, LoginRequired):
            self._notify("Login required", "Run `marticapp login` to sign in.")
        elif isinstance(event, LastResultChanged):
            self._copy_item.set_callback(self._copy_last)
        elif isinstance(event, AudioTestChanged):
            self._test_item.title = "Stop microphone test" if event.active else "Test microphone"

    def _render_status(self, event: StatusChanged) -> None:
        if self._indicator is None:
            return
        if event.status == "idle" or not event.color:
            self._indicator.hide()
        else:
            self._indicator.show(event.color)

    def _copy_last(self, _sender) -> None:
        self._app.copy_last_result()

    def _toggle_test(self, _sender) -> None:
        self._loop.submit(self._app.recording.toggle_audio_test())

    def _reload_settings(self, _sender) -> None:
        self._loop.loop.call_soon_threadsafe(self._app.reload_config)

    def _logout(self, _sender) -> None:
        self._loop.loop.call_soon_threadsafe(self._app.tokens.logout)

    def _quit(self, _sender) -> None:
        self._hotkeys.unregister_all()
        if self._indicator is not None:
            self._indicator.hide()
        self._rumps.quit_application()

    def _notify(self, title: str, message: str) -> None:
        try:
            self._rumps.notification("MarticApp", title, message)
        except Exception as exc:
            logging.debug("Notification unavailable: %s", exc)
