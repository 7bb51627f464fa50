"""OS capability providers: audio capture, system volume, clipboard and keystrokes."""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Awaitable, Callable, Optional, Protocol

import numpy as np

from .errors import PeripheralFailure
from .models import CapturedAudio

Sleep = Callable[[float], Awaitable[None]]


class AudioCapture(Protocol):
    def start(self, device: Optional[str]) -> None:
        """Begin capturing from `device` ("default" selects the system input)."""

    async def stop(self) -> CapturedAudio:
        """Finalise the capture and return the recorded bytes."""


class VolumeControl(Protocol):
    async def get_volume(self) -> int: ...

    async def set_volume(self, level: int) -> None: ...


class Clipboard(Protocol):
    def read(self) -> str: ...

    def write(self, text: str) -> None: ...

    def clear(self) -> None: ...


class Keyboard(Protocol):
    async def copy(self) -> None:
        """Simulate the copy shortcut in the focused application."""

    async def paste(self) -> None:
        """Simulate the paste shortcut in the focused application."""


async def smoothly_change_volume(
    volume: VolumeControl,
    target: int,
    duration: float = 0.3,
    steps: int = 10,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Ramp the output volume linearly to `target`. Failures are logged only."""

    try:
        start = await volume.get_volume()
        step = (target - start) / steps
        for index in range(1, steps + 1):
            await volume.set_volume(round(start + step * index))
            await sleep(duration / steps)
    except Exception as exc:
        logging.error("Could not change the volume: %s", exc)


async def _osascript(script: str) -> str:
    try:
        process = await asyncio.create_subprocess_exec(
            "/usr/bin/osascript",
            "-e",
            script,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise PeripheralFailure(f"osascript unavailable: {exc}") from exc
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise PeripheralFailure(stderr.decode(errors="replace").strip() or "osascript failed")
    return stdout.decode().strip()


class OsascriptVolume:
    """System output volume (0-100) through AppleScript."""

    async def get_volume(self) -> int:
        output = await _osascript("output volume of (get volume settings)")
        try:
            return int(output)
        except ValueError as exc:
            raise PeripheralFailure(f"Unexpected volume value {output!r}") from exc

    async def set_volume(self, level: int) -> None:
        await _osascript(f"set volume output volume {max(0, min(100, int(level)))}")


class OsascriptKeyboard:
    async def copy(self) -> None:
        await _osascript('tell application "System Events" to keystroke "c" using {command down}')

    async def paste(self) -> None:
        await _osascript('tell application "System Events" to keystroke "v" using {command down}')


class MacClipboard:
    """General pasteboard access through AppKit."""

    def __init__(self) -> None:
        try:
            from AppKit import NSPasteboard, NSPasteboardTypeString  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "The `pyobjc` packages are required to access the clipboard. Install marticapp[mac]."
            ) from exc
        self._pasteboard = NSPasteboard.generalPasteboard()
        self._type = NSPasteboardTypeString

    def read(self) -> str:
        return self._pasteboard.stringForType_(self._type) or ""

    def write(self, text: str) -> None:
        self._pasteboard.clearContents()
        self._pasteboard.setString_forType_(text, self._type)

    def clear(self) -> None:
        self._pasteboard.clearContents()


class SoundDeviceRecorder:
    """Capture microphone input into an in-memory WAV payload."""

    def __init__(self, samplerate: int = 16000, channels: int = 1) -> None:
        try:
            import sounddevice as sd  # type: ignore
            import soundfile as sf  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "The `sounddevice` and `soundfile` packages are required for recording. "
                "Install marticapp[mac]."
            ) from exc

        self._sd = sd
        self._sf = sf
        self._samplerate = samplerate
        self._channels = channels
        self._stream = None
        self._frames: list[np.ndarray] = []

    def start(self, device: Optional[str]) -> None:
        if self._stream is not None:
            return
        self._frames = []
        try:
            self._stream = self._sd.InputStream(
                samplerate=self._samplerate,
                channels=self._channels,
                dtype="float32",
                device=None if device in (None, "", "default") else device,
                callback=self._callback,
            )
            self._stream.start()
        except Exception as exc:
            self._stream = None
            raise PeripheralFailure(f"Could not open audio device {device!r}: {exc}") from exc

    async def stop(self) -> CapturedAudio:
        if self._stream is None:
            raise PeripheralFailure("Recording is not active.")

        self._stream.stop()
        self._stream.close()
        self._stream = None

        if not self._frames:
            raise PeripheralFailure("No audio was captured.")

        audio = np.concatenate(self._frames, axis=0)
        buffer = io.BytesIO()
        self._sf.write(buffer, audio, self._samplerate, format="WAV")
        return CapturedAudio(data=buffer.getvalue(), mime_type="audio/wav")

    def _callback(self, indata, frames, time, status) -> None:  # type: ignore[override]
        if status:
            logging.debug("Recorder status: %s", status)
        self._frames.append(indata.copy())
