"""Dataclasses describing session, recording and persisted objects for marticapp."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Action(str, Enum):
    """What a recording is for."""

    TRANSCRIBE = "transcribe"
    PROCESS_TEXT = "processText"
    TEST = "test"


class RecordingPhase(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"


@dataclass(frozen=True, slots=True)
class UserIdentity:
    """User returned by the login endpoint."""

    email: str
    name: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Session:
    """In-memory login state. Replaced wholesale, never mutated."""

    is_logged_in: bool = False
    user: Optional[UserIdentity] = None
    access_token: Optional[str] = None
    token_expires_at: float = 0.0

    @property
    def email(self) -> Optional[str]:
        return self.user.email if self.user is not None else None


@dataclass(slots=True)
class Credentials:
    email: str
    password: str


@dataclass(slots=True)
class LoginResult:
    success: bool
    user: Optional[UserIdentity] = None
    needs_onboarding: bool = False
    message: Optional[str] = None


@dataclass(slots=True)
class HistoryEntry:
    """One completed pipeline run."""

    type: str
    output: str
    date: str = field(default_factory=utc_now_iso)
    word_count: int = 0


@dataclass(slots=True)
class Stats:
    transcription: int = 0
    processing: int = 0
    first_use_date: str = field(default_factory=utc_now_iso)


@dataclass(slots=True)
class RecordingState:
    phase: RecordingPhase = RecordingPhase.IDLE
    current_action: Optional[Action] = None
    audio_start_time: Optional[float] = None
    original_volume: Optional[int] = None
    selected_text: str = ""

    @property
    def is_recording(self) -> bool:
        return self.phase is RecordingPhase.RECORDING


@dataclass(slots=True)
class CapturedAudio:
    """Bytes handed back by the capture peripheral once a recording stops."""

    data: bytes
    mime_type: str = "audio/webm"


@dataclass(slots=True)
class Colors:
    transcribe: str = "#ef4444"
    process_text: str = "#3b82f6"
    processing: str = "#f59e0b"

    def for_action(self, action: Action) -> str:
        return self.transcribe if action is Action.TRANSCRIBE else self.process_text


@dataclass(slots=True)
class TranscriptionSettings:
    add_punctuation: bool = True
    remove_fillers: bool = False
    correct_grammar: bool = True

    @property
    def needs_formatting(self) -> bool:
        return self.add_punctuation or self.remove_fillers or self.correct_grammar


@dataclass(slots=True)
class PromptTemplate:
    name: str
    prompt: str


DEFAULT_TRANSCRIBE_BASE = (
    "Eres un asistente de transcripción de audio que busca la mayor velocidad y eficiencia "
    "para el usuario. Entrega solamente el texto perfectamente transcrito, a menos que se te "
    "pidan más ediciones o tratamientos del texto."
)


def _default_library() -> List[PromptTemplate]:
    return [
        PromptTemplate(
            name="Resumen Ejecutivo",
            prompt=(
                "Eres un asistente de transcripción de audio. Por favor, procesa el texto que se te "
                "entrega según las indicaciones del usuario, o resuelve sus dudas basado en el texto "
                "entregado, si no hay texto entregado por el usuario resuelve su duda, entrega solo "
                "la respuesta."
            ),
        ),
        PromptTemplate(
            name="Traducir a Inglés",
            prompt="Eres un traductor experto. Traduce el siguiente texto de forma precisa y natural.",
        ),
    ]


@dataclass(slots=True)
class Prompts:
    transcribe_base: str = DEFAULT_TRANSCRIBE_BASE
    library: List[PromptTemplate] = field(default_factory=_default_library)

    def find(self, name: str) -> Optional[PromptTemplate]:
        for template in self.library:
            if template.name == name:
                return template
        return None


@dataclass(slots=True)
class ApiConfig:
    """Model provider parameters, refreshed by the server on login and token fetch."""

    gcp_project_id: Optional[str] = "gen-lang-client-0346579390"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1"
    gemini_model_id: str = "gemini-1.5-flash"


@dataclass(slots=True)
class Config:
    """Per-user configuration stored in the vault."""

    smart_transcribe_hotkey: str = "control+shift+s"
    process_text_hotkey: str = "control+shift+d"
    launch_on_startup: bool = False
    attenuate_audio: bool = True
    final_action: str = "paste"
    active_prompt_name: str = "Resumen Ejecutivo"
    floating_icon_position: str = "bottom-right"
    audio_device: str = "default"
    colors: Colors = field(default_factory=Colors)
    processing_mode: str = "selectedText"
    transcription_settings: TranscriptionSettings = field(default_factory=TranscriptionSettings)
    prompts: Prompts = field(default_factory=Prompts)
    api_config: ApiConfig = field(default_factory=ApiConfig)
    has_completed_onboarding: bool = False
