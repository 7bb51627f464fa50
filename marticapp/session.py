"""Session ownership, access-token caching and silent re-authentication."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional

from .config import apply_api_config
from .errors import CommunicationFailure, MarticError, NotLoggedIn, SessionLost
from .events import EventBus, HotkeysChanged, LoggedOut, LoginRequired, SessionActive
from .gateway import ApiGateway
from .models import Action, Config, Credentials, LoginResult, Session, UserIdentity
from .storage import Store

REFRESH_PERIOD = 20 * 60
EXPIRY_MARGIN = 60
DEFAULT_EXPIRES_IN = 3600

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempts for silent re-login; the delay grows linearly with the attempt index."""

    max_attempts: int = 3
    base_delay: float = 3.0

    def delay_after(self, attempt: int) -> Optional[float]:
        """Seconds to wait after the 0-based `attempt`, or None after the last one."""

        if attempt >= self.max_attempts - 1:
            return None
        return self.base_delay * (attempt + 1)


class SessionHolder:
    """Single-writer container for the current Session value."""

    def __init__(self) -> None:
        self._session = Session()

    @property
    def current(self) -> Session:
        return self._session

    def replace(self, session: Session) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = Session()


def hotkey_bindings(config: Config) -> dict:
    bindings = {}
    if config.smart_transcribe_hotkey:
        bindings[Action.TRANSCRIBE] = config.smart_transcribe_hotkey
    if config.process_text_hotkey:
        bindings[Action.PROCESS_TEXT] = config.process_text_hotkey
    return bindings


class TokenManager:
    """Owns the Session and guarantees a usable access token."""

    def __init__(
        self,
        gateway: ApiGateway,
        store: Store,
        bus: EventBus,
        holder: Optional[SessionHolder] = None,
        retry_policy: RetryPolicy = RetryPolicy(),
        clock: Clock = time.time,
        sleep: Sleep = asyncio.sleep,
        refresh_period: float = REFRESH_PERIOD,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._bus = bus
        self._holder = holder or SessionHolder()
        self._retry_policy = retry_policy
        self._clock = clock
        self._sleep = sleep
        self._refresh_period = refresh_period
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def session(self) -> Session:
        return self._holder.current

    @property
    def refresh_armed(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    async def get_valid_token(self) -> str:
        session = self._holder.current
        if not session.is_logged_in:
            logging.debug("Token requested without a session.")
            raise NotLoggedIn("You are not logged in.")
        if session.access_token and self._clock() < session.token_expires_at:
            logging.debug("Using cached access token.")
            return session.access_token

        logging.info("Access token expired or missing; requesting a new one.")
        try:
            return await self._fetch_token()
        except SessionLost as exc:
            logging.warning("Server session lost; attempting silent re-login.")
            if await self.silent_relogin():
                logging.info("Silent re-login succeeded; fetching a new token.")
                return await self._fetch_token()
            self.invalidate("Automatic reconnection attempts failed.")
            raise SessionLost("Could not reconnect to the server.") from exc
        except MarticError:
            self.invalidate("Problem communicating with the server.")
            raise

    async def _fetch_token(self) -> str:
        payload = await self._gateway.fetch_token()
        expires_in = payload.expires_in or DEFAULT_EXPIRES_IN
        session = self._holder.current
        self._holder.replace(
            replace(
                session,
                access_token=payload.access_token,
                token_expires_at=self._clock() + expires_in - EXPIRY_MARGIN,
            )
        )
        if payload.api_config is not None and session.email:
            config = self._store.load_config(session.email)
            self._store.save_config(session.email, apply_api_config(config, payload.api_config))
        logging.info("New access token received.")
        return payload.access_token

    async def login(self, credentials: Credentials, silent: bool = False) -> LoginResult:
        try:
            payload = await self._gateway.login(credentials.email, credentials.password)
        except CommunicationFailure as exc:
            logging.error("Login request failed: %s", exc)
            return LoginResult(success=False, message="Communication error.")

        if not payload.success:
            return LoginResult(success=False, message=payload.message)

        # The vault is keyed by the e-mail the user typed, not the server's spelling of it.
        email = credentials.email
        raw_user = payload.user or {}
        user = UserIdentity(email=email, name=raw_user.get("name"), data=raw_user)
        self._holder.replace(Session(is_logged_in=True, user=user))

        config = self._store.load_config(email)
        if payload.api_config is not None:
            apply_api_config(config, payload.api_config)
        self._store.save_credentials(credentials)
        self._store.save_config(email, config)
        self._store.set_last_active_user(email)

        self._bus.emit(
            HotkeysChanged(
                bindings=hotkey_bindings(config),
                floating_icon_position=config.floating_icon_position,
            )
        )
        self.start_refresh()
        self._bus.emit(SessionActive(self._holder.current))
        return LoginResult(
            success=True,
            user=user,
            needs_onboarding=not silent and not config.has_completed_onboarding,
        )

    async def silent_relogin(self) -> bool:
        """Log in again with the last active user's stored credentials."""

        email = self._store.last_active_user
        if not email:
            return False
        credentials = self._store.load_credentials(email)
        if credentials is None:
            return False

        for attempt in range(self._retry_policy.max_attempts):
            logging.info("Silent re-login attempt #%d for %s", attempt + 1, email)
            try:
                result = await self.login(credentials, silent=True)
            except MarticError as exc:
                logging.error("Silent re-login attempt #%d failed: %s", attempt + 1, exc)
            else:
                if result.success:
                    return True
                logging.warning("Silent re-login attempt #%d rejected: %s", attempt + 1, result.message)
            delay = self._retry_policy.delay_after(attempt)
            if delay is not None:
                await self._sleep(delay)

        logging.error("All silent re-login attempts failed.")
        return False

    async def auto_login(self) -> bool:
        """Restore the last active user's session at start-up."""

        if self._holder.current.is_logged_in:
            self._bus.emit(SessionActive(self._holder.current))
            return True
        email = self._store.last_active_user
        credentials = self._store.load_credentials(email) if email else None
        if credentials is None:
            self._bus.emit(LoginRequired())
            return False

        logging.info("Auto-login for %s", credentials.email)
        result = await self.login(credentials, silent=True)
        if not result.success:
            logging.warning("Auto-login failed: %s", result.message)
            self._bus.emit(LoginRequired(result.message))
        return result.success

    def logout(self) -> None:
        email = self._holder.current.email
        self._holder.clear()
        self.stop_refresh()
        if email:
            self._store.forget_credentials(email)
        self._bus.emit(HotkeysChanged())
        self._bus.emit(LoggedOut())

    def invalidate(self, reason: str) -> None:
        logging.error("Invalidating session: %s", reason)
        self._holder.clear()
        self.stop_refresh()
        self._bus.emit(HotkeysChanged())
        self._bus.notify("MarticApp - Action required", f"Connection lost. {reason}")
        self._bus.emit(LoginRequired(reason))
        self._bus.emit(LoggedOut(reason))

    def start_refresh(self) -> None:
        self.stop_refresh()
        logging.info("Refreshing the session every %d seconds.", self._refresh_period)
        self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())

    def stop_refresh(self) -> None:
        task = self._refresh_task
        self._refresh_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _refresh_loop(self) -> None:
        # A re-login re-arms a fresh task and an invalidation disarms this one.
        while asyncio.current_task() is self._refresh_task:
            await asyncio.sleep(self._refresh_period)
            if asyncio.current_task() is not self._refresh_task:
                return
            if not self._holder.current.is_logged_in:
                return
            logging.info("Refreshing session proactively.")
            try:
                await self.get_valid_token()
            except MarticError as exc:
                logging.error("Silent session refresh failed: %s", exc)
