"""Audio-to-text pipeline: attenuation, model calls, delivery and bookkeeping."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from .errors import EmptyResult, NotLoggedIn
from .events import EventBus, LastResultChanged
from .gateway import ApiGateway
from .history import history_label, usage_category, word_count
from .models import Action, CapturedAudio, Config, HistoryEntry, Prompts
from .peripherals import Clipboard, Keyboard, Sleep, VolumeControl, smoothly_change_volume
from .session import TokenManager
from .storage import Store

ATTENUATED_VOLUME = 10
SELECTION_COPY_DELAY = 0.2
EDITOR_ROLE = "Eres un editor experto."
APP_TITLE = "MarticApp"


class LastResult:
    """Last successful output, read by the tray menu."""

    def __init__(self) -> None:
        self._text = ""

    def get(self) -> str:
        return self._text

    def set(self, text: str) -> None:
        self._text = text


def build_processing_prompt(instruction: str, selected_text: str) -> str:
    if selected_text:
        return f'TEXTO A PROCESAR:\n"""\n{selected_text}\n"""\n\nINSTRUCCIÓN: "{instruction}"'
    return f'PREGUNTA/INSTRUCCIÓN: "{instruction}"'


class PipelineOrchestrator:
    def __init__(
        self,
        gateway: ApiGateway,
        tokens: TokenManager,
        store: Store,
        bus: EventBus,
        volume: VolumeControl,
        clipboard: Clipboard,
        keyboard: Keyboard,
        last_result: Optional[LastResult] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._tokens = tokens
        self._store = store
        self._bus = bus
        self._volume = volume
        self._clipboard = clipboard
        self._keyboard = keyboard
        self.last_result = last_result or LastResult()
        self._sleep = sleep
        self._background: Set[asyncio.Task] = set()

    async def capture_selected_text(self) -> str:
        """Copy the current selection while leaving the user's clipboard untouched."""

        try:
            previous = self._clipboard.read()
        except Exception as exc:
            logging.error("Could not read the clipboard: %s", exc)
            return ""

        selected = ""
        try:
            self._clipboard.clear()
            await self._keyboard.copy()
            await self._sleep(SELECTION_COPY_DELAY)
            selected = self._clipboard.read()
        except Exception as exc:
            logging.error("Could not capture the selected text: %s", exc)
        finally:
            try:
                self._clipboard.write(previous)
            except Exception as exc:
                logging.error("Could not restore the clipboard: %s", exc)
        return selected

    async def attenuate(self) -> Optional[int]:
        """Lower the output volume; return the level to restore, if known."""

        try:
            original = await self._volume.get_volume()
        except Exception as exc:
            logging.error("Could not attenuate the volume: %s", exc)
            return None
        await smoothly_change_volume(self._volume, ATTENUATED_VOLUME, sleep=self._sleep)
        return original

    async def restore_volume(self, level: int) -> None:
        await smoothly_change_volume(self._volume, level, sleep=self._sleep)

    async def transcribe(
        self, audio: CapturedAudio, token: str, config: Config, raw_only: bool = False
    ) -> str:
        raw = await self._gateway.transcribe_audio(audio, token, config.api_config)
        if raw_only or not raw:
            return raw
        if config.transcription_settings.needs_formatting:
            prompt = f'{config.prompts.transcribe_base}\n\nTEXTO A FORMATEAR:\n"""\n{raw}\n"""'
            return await self._gateway.generate_content(EDITOR_ROLE, prompt, token, config.api_config)
        return raw

    async def process_advanced(
        self, audio: CapturedAudio, token: str, config: Config, selected_text: str = ""
    ) -> str:
        instruction = await self.transcribe(audio, token, config, raw_only=True)
        template = config.prompts.find(config.active_prompt_name)
        system_prompt = template.prompt if template else Prompts().library[0].prompt
        return await self._gateway.generate_content(
            system_prompt,
            build_processing_prompt(instruction, selected_text),
            token,
            config.api_config,
        )

    async def deliver(self, text: str, config: Config) -> None:
        """Put `text` on the clipboard and paste it. Keystroke failures leave it on the clipboard."""

        try:
            self._clipboard.write(text)
        except Exception as exc:
            logging.error("Could not write the result to the clipboard: %s", exc)
            return
        if config.final_action == "paste":
            try:
                await self._keyboard.paste()
                return
            except Exception as exc:
                logging.warning("Paste keystroke failed, result left on the clipboard: %s", exc)
        self._bus.notify(APP_TITLE, "Result copied to the clipboard.")

    async def run(
        self,
        action: Action,
        audio: CapturedAudio,
        duration: float = 0.0,
        selected_text: str = "",
    ) -> Optional[str]:
        """Turn captured audio into delivered text. Never raises."""

        try:
            email = self._tokens.session.email
            if email is None:
                raise NotLoggedIn("You are not logged in.")
            token = await self._tokens.get_valid_token()
            config = self._store.load_config(email)
            logging.info("Processing %.1fs of audio for %s", duration, action.value)

            if action is Action.TRANSCRIBE:
                label = history_label(action)
                text = await self.transcribe(audio, token, config)
            else:
                label = history_label(action, config.active_prompt_name)
                text = await self.process_advanced(audio, token, config, selected_text)

            if not text:
                raise EmptyResult("The API returned no text. Check your connection or settings.")

            self.last_result.set(text)
            self._bus.emit(LastResultChanged(text))
            await self.deliver(text, config)
            self._record(email, action, label, text)
            return text
        except Exception as exc:
            logging.exception("Pipeline failed")
            self._bus.notify(f"{APP_TITLE} - An error occurred", str(exc))
            return None

    def _record(self, email: str, action: Action, label: str, text: str) -> None:
        count = word_count(text)
        self._store.record_run(email, action, HistoryEntry(type=label, output=text, word_count=count))
        task = asyncio.get_running_loop().create_task(self._report_usage(count, usage_category(label)))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _report_usage(self, count: int, category: str) -> None:
        if not self._tokens.session.is_logged_in:
            return
        try:
            await self._gateway.report_usage(count, category)
        except Exception as exc:
            logging.error("Usage report failed: %s", exc)

    async def drain(self) -> None:
        """Wait for outstanding usage reports."""

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
