"""Single-flight recording state machine driven by hotkeys and the settings UI."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable

from .errors import MarticError
from .events import AudioTestChanged, EventBus, StatusChanged
from .models import Action, CapturedAudio, RecordingPhase, RecordingState
from .peripherals import AudioCapture
from .pipeline import APP_TITLE, PipelineOrchestrator
from .session import TokenManager
from .storage import Store


class RecordingStateMachine:
    """Idle -> Recording -> Processing -> Idle.

    Every path that leaves Recording or Processing ends in `reset()`.
    """

    def __init__(
        self,
        tokens: TokenManager,
        pipeline: PipelineOrchestrator,
        capture: AudioCapture,
        store: Store,
        bus: EventBus,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tokens = tokens
        self._pipeline = pipeline
        self._capture = capture
        self._store = store
        self._bus = bus
        self._clock = clock
        self._state = RecordingState()
        self._arming = False

    @property
    def state(self) -> RecordingState:
        return replace(self._state)

    async def handle_hotkey(self, action: Action) -> None:
        state = self._state
        if state.is_recording:
            if action is state.current_action:
                await self.stop()
            else:
                logging.debug("Ignoring %s while recording %s", action.value, state.current_action)
            return
        await self.start(action)

    async def toggle_audio_test(self) -> None:
        state = self._state
        if state.is_recording and state.current_action is Action.TEST:
            await self.stop()
        elif state.phase is RecordingPhase.IDLE and not self._arming:
            if await self.start(Action.TEST):
                self._bus.emit(AudioTestChanged(active=True))

    async def start(self, action: Action) -> bool:
        if self._state.phase is not RecordingPhase.IDLE or self._arming:
            logging.debug("Ignoring %s trigger; machine is %s", action.value, self._state.phase.value)
            return False

        self._arming = True
        try:
            logging.info("Validating token before recording.")
            try:
                await self._tokens.get_valid_token()
            except MarticError as exc:
                # The token manager already notified the user.
                logging.error("Token validation failed; not recording: %s", exc)
                return False

            email = self._tokens.session.email
            if email is None:
                return False
            config = self._store.load_config(email)

            selected_text = ""
            if action is Action.PROCESS_TEXT:
                selected_text = await self._pipeline.capture_selected_text()
            original_volume = await self._pipeline.attenuate() if config.attenuate_audio else None

            self._state = RecordingState(
                phase=RecordingPhase.RECORDING,
                current_action=action,
                audio_start_time=self._clock(),
                original_volume=original_volume,
                selected_text=selected_text,
            )
            self._bus.emit(StatusChanged("recording", config.colors.for_action(action)))
            try:
                self._capture.start(config.audio_device)
            except Exception as exc:
                logging.exception("Audio capture failed to start")
                await self._restore_volume()
                self._bus.notify(f"{APP_TITLE} - An error occurred", str(exc))
                self.reset()
                return False
            return True
        finally:
            self._arming = False

    async def stop(self) -> None:
        if not self._state.is_recording:
            return

        self._state.phase = RecordingPhase.PROCESSING
        await self._restore_volume()
        email = self._tokens.session.email
        processing_color = self._store.load_config(email).colors.processing if email else None
        self._bus.emit(StatusChanged("processing", processing_color))

        try:
            audio = await self._capture.stop()
        except Exception as exc:
            logging.exception("Audio capture failed to stop")
            self._bus.notify(f"{APP_TITLE} - An error occurred", str(exc))
            self.reset()
            return
        await self.audio_recorded(audio)

    async def audio_recorded(self, audio: CapturedAudio) -> None:
        state = self._state
        started = state.audio_start_time or self._clock()
        duration = self._clock() - started
        try:
            if state.current_action is Action.TEST:
                self._bus.emit(AudioTestChanged(active=False))
            elif state.current_action is not None:
                await self._pipeline.run(state.current_action, audio, duration, state.selected_text)
        finally:
            self.reset()

    async def _restore_volume(self) -> None:
        level = self._state.original_volume
        if level is None:
            return
        try:
            await self._pipeline.restore_volume(level)
        finally:
            self._state.original_volume = None

    def reset(self) -> None:
        self._state = RecordingState()
        self._bus.emit(StatusChanged("idle"))
