import asyncio
from typing import Any, List

import pytest

from marticapp.app import MarticApp
from marticapp.errors import MarticError
from marticapp.events import EventBus
from marticapp.gateway import LoginPayload, TokenPayload
from marticapp.models import CapturedAudio, Credentials
from marticapp.session import RetryPolicy
from marticapp.storage import Store


def _next(queue: List[Any], default: Any) -> Any:
    value = queue.pop(0) if queue else default
    if isinstance(value, BaseException):
        raise value
    return value


class FakeGateway:
    def __init__(self) -> None:
        self.login_results: List[Any] = []
        self.token_results: List[Any] = []
        self.transcriptions: List[Any] = []
        self.generated: List[Any] = []
        self.calls: List[tuple] = []
        self.prompts: List[tuple] = []
        self.usage: List[tuple] = []
        self.closed = False

    async def login(self, email, password):
        self.calls.append(("login", email))
        return _next(self.login_results, LoginPayload(success=True, user={"email": email, "name": "Ana"}))

    async def fetch_token(self):
        self.calls.append(("fetch_token",))
        return _next(self.token_results, TokenPayload(accessToken="ya29.fresh", expiresIn=3600))

    async def transcribe_audio(self, audio, token, api_config):
        self.calls.append(("transcribe_audio", token))
        return _next(self.transcriptions, "hola mundo")

    async def generate_content(self, system_prompt, user_text, token, api_config):
        self.calls.append(("generate_content", token))
        self.prompts.append((system_prompt, user_text))
        return _next(self.generated, "Hola mundo.")

    async def report_usage(self, word_count, category):
        self.usage.append((word_count, category))

    async def aclose(self):
        self.closed = True

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingSleep:
    """Records requested delays and advances the fake clock instead of waiting."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.now += seconds
        await asyncio.sleep(0)


class FakeCapture:
    def __init__(self) -> None:
        self.started: List[Any] = []
        self.stopped = 0
        self.fail_start = False

    def start(self, device):
        if self.fail_start:
            raise MarticError("device busy")
        self.started.append(device)

    async def stop(self):
        self.stopped += 1
        return CapturedAudio(data=b"RIFF-audio", mime_type="audio/wav")


class FakeVolume:
    def __init__(self, level: int = 50) -> None:
        self.level = level
        self.history: List[int] = []

    async def get_volume(self):
        return self.level

    async def set_volume(self, level):
        self.level = level
        self.history.append(level)


class FakeClipboard:
    def __init__(self, text: str = "") -> None:
        self.text = text
        self.writes: List[str] = []

    def read(self):
        return self.text

    def write(self, text):
        self.text = text
        self.writes.append(text)

    def clear(self):
        self.text = ""


class FakeKeyboard:
    def __init__(self, clipboard: FakeClipboard, selection: str = "") -> None:
        self.clipboard = clipboard
        self.selection = selection
        self.copies = 0
        self.pastes = 0

    async def copy(self):
        self.copies += 1
        if self.selection:
            self.clipboard.text = self.selection

    async def paste(self):
        self.pastes += 1


class Harness:
    def __init__(self, tmp_path) -> None:
        self.store = Store(tmp_path / "store.json")
        self.gateway = FakeGateway()
        self.clock = FakeClock()
        self.sleep = RecordingSleep(self.clock)
        self.capture = FakeCapture()
        self.volume = FakeVolume()
        self.clipboard = FakeClipboard("previous clipboard")
        self.keyboard = FakeKeyboard(self.clipboard)
        self.bus = EventBus()
        self.events: List[object] = []
        self.bus.subscribe(self.events.append)
        self.launch_calls: List[bool] = []
        self.app = MarticApp(
            gateway=self.gateway,
            store=self.store,
            capture=self.capture,
            volume=self.volume,
            clipboard=self.clipboard,
            keyboard=self.keyboard,
            bus=self.bus,
            retry_policy=RetryPolicy(),
            clock=self.clock,
            sleep=self.sleep,
            launch_on_startup=self._launch,
        )
        self.credentials = Credentials(email="ana@example.com", password="secret")

    def _launch(self, enabled: bool) -> bool:
        self.launch_calls.append(enabled)
        return True

    async def login(self):
        result = await self.app.tokens.login(self.credentials)
        assert result.success
        return result

    def of_type(self, event_type):
        return [event for event in self.events if isinstance(event, event_type)]


@pytest.fixture
def harness(tmp_path):
    return Harness(tmp_path)
