"""Composition root: wires the core together and exposes the operations the UI calls."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import Future
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Coroutine, List, Optional

from .errors import NotLoggedIn
from .events import EventBus, HotkeysChanged
from .gateway import ApiGateway
from .history import Analytics
from .models import Config, HistoryEntry
from .operations import OperationResult, UserOperations
from .peripherals import AudioCapture, Clipboard, Keyboard, VolumeControl
from .pipeline import APP_TITLE, PipelineOrchestrator
from .recording import RecordingStateMachine
from .session import RetryPolicy, TokenManager
from .startup import apply_launch_on_startup
from .storage import APP_DIR, Store

LOG_PATH = APP_DIR / "marticapp.log"


def configure_logging(verbose: bool = False, log_path: Path = LOG_PATH) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.FileHandler(log_path, encoding="utf-8"), logging.StreamHandler()],
    )


def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log anything that escaped a task; the process keeps running."""

    logging.error("Unhandled error: %s", context.get("message", "unknown"), exc_info=context.get("exception"))


class EventLoopThread:
    """Runs the orchestration event loop off the UI thread."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self.loop.set_exception_handler(handle_loop_exception)
        self._thread = threading.Thread(target=self._run, name="marticapp-loop", daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> None:
        self._thread.start()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(_log_future_error)
        return future

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)


def _log_future_error(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logging.error("Background operation failed: %s", exc, exc_info=exc)


class MarticApp:
    def __init__(
        self,
        gateway: ApiGateway,
        store: Store,
        capture: AudioCapture,
        volume: VolumeControl,
        clipboard: Clipboard,
        keyboard: Keyboard,
        bus: Optional[EventBus] = None,
        retry_policy: RetryPolicy = RetryPolicy(),
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
        launch_on_startup: Callable[[bool], bool] = apply_launch_on_startup,
    ) -> None:
        self.bus = bus or EventBus()
        self.store = store
        self.gateway = gateway
        self.tokens = TokenManager(gateway, store, self.bus, retry_policy=retry_policy, clock=clock, sleep=sleep)
        self.pipeline = PipelineOrchestrator(
            gateway, self.tokens, store, self.bus, volume, clipboard, keyboard, sleep=sleep
        )
        self.recording = RecordingStateMachine(self.tokens, self.pipeline, capture, store, self.bus)
        self._clipboard = clipboard
        self.operations = UserOperations(store, self.bus, launch_on_startup)

    async def start(self) -> bool:
        return await self.tokens.auto_login()

    async def shutdown(self) -> None:
        self.tokens.stop_refresh()
        self.bus.emit(HotkeysChanged())
        await self.pipeline.drain()
        await self.gateway.aclose()

    @property
    def email(self) -> Optional[str]:
        return self.tokens.session.email

    def _require_email(self) -> str:
        email = self.email
        if email is None:
            raise NotLoggedIn("You are not logged in.")
        return email

    def get_config(self) -> Config:
        return self.operations.get_config(self.email)

    def save_config(self, config: Config) -> None:
        self.operations.save_config(self._require_email(), config)

    def update_config(self, **changes: Any) -> Config:
        return self.operations.update_config(self._require_email(), **changes)

    def reload_config(self) -> None:
        """Pick up settings written by another process, such as `marticapp config`."""

        if self.email is None:
            return
        logging.info("Reloading settings for %s", self.email)
        self.operations.announce_config(self.get_config())

    def complete_onboarding(self) -> None:
        self.operations.complete_onboarding(self.email)

    def get_history(self) -> List[HistoryEntry]:
        return self.operations.get_history(self.email)

    def clear_history(self) -> OperationResult:
        return self.operations.clear_history(self.email)

    def export_history(self, path: Optional[Path]) -> OperationResult:
        return self.operations.export_history(self.email, path)

    def analytics(self, now: Optional[datetime] = None) -> Optional[Analytics]:
        return self.operations.analytics(self.email, now)

    def copy_last_result(self) -> bool:
        text = self.pipeline.last_result.get()
        if not text:
            return False
        self._clipboard.write(text)
        self.bus.notify(APP_TITLE, "Last result copied to the clipboard.")
        return True


def run_daemon(verbose: bool = False) -> None:  # pragma: no cover - interactive
    """Launch the menu bar daemon with the macOS adapters."""

    from .menubar import MenuBarPresenter
    from .peripherals import MacClipboard, OsascriptKeyboard, OsascriptVolume, SoundDeviceRecorder

    configure_logging(verbose)
    logging.info("MarticApp starting...")

    loop_thread = EventLoopThread()
    app = MarticApp(
        gateway=ApiGateway(),
        store=Store(),
        capture=SoundDeviceRecorder(),
        volume=OsascriptVolume(),
        clipboard=MacClipboard(),
        keyboard=OsascriptKeyboard(),
    )
    presenter = MenuBarPresenter(app, loop_thread)
    loop_thread.start()
    loop_thread.submit(app.start())
    try:
        presenter.run()
    finally:
        loop_thread.submit(app.shutdown()).result(timeout=5)
        loop_thread.stop()
