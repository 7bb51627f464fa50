"""Typed events emitted by the core for the presentation adapter to render."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .models import Action, Session


@dataclass(frozen=True, slots=True)
class StatusChanged:
    """Floating indicator status: idle, recording or processing."""

    status: str
    color: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Notify:
    title: str
    body: str


@dataclass(frozen=True, slots=True)
class SessionActive:
    session: Session


@dataclass(frozen=True, slots=True)
class LoggedOut:
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LoginRequired:
    """Ask the presentation layer to show the login window."""

    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class HotkeysChanged:
    """Global shortcuts to register. An empty mapping unregisters everything."""

    bindings: Dict[Action, str] = field(default_factory=dict)
    floating_icon_position: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AudioTestChanged:
    active: bool


@dataclass(frozen=True, slots=True)
class LastResultChanged:
    text: str


Listener = Callable[[object], None]


class EventBus:
    """Synchronous fan-out of events to subscribed listeners.

    A failing listener is logged and skipped; it never interrupts the caller.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: object) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logging.exception("Event listener failed for %s", type(event).__name__)

    def notify(self, title: str, body: str) -> None:
        self.emit(Notify(title=title, body=body))
