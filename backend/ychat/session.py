"""Current authenticated identity, persisted between runs."""
import asyncio
import inspect
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable

from .auth import AuthService
from .config import settings
from .errors import AuthError
from .schemas import Session

logger = logging.getLogger(__name__)

INITIAL_SESSION = "INITIAL_SESSION"
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

# Renew this many seconds before the access token expires.
REFRESH_MARGIN_SECONDS = 30

AuthCallback = Callable[[str, Session | None], Any]


class SessionStorage:
    """JSON file holding the last session, the local-storage analogue."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path or settings.session_file)

    def load(self) -> Session | None:
        if not self.path.exists():
            return None
        try:
            return Session.model_validate(json.loads(self.path.read_text()))
        except ValueError:
            logger.warning("Discarding unreadable session file %s", self.path)
            return None

    def save(self, session: Session) -> None:
        self.path.write_text(session.model_dump_json())

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class AuthSubscription:
    def __init__(self, manager: "SessionManager", callback: AuthCallback) -> None:
        self._manager = manager
        self._callback = callback

    def unsubscribe(self) -> None:
        self._manager._listeners.discard(self._callback)


class SessionManager:
    def __init__(self, auth: AuthService, storage: SessionStorage | None = None, auto_refresh: bool = True) -> None:
        self.auth = auth
        self.storage = storage or SessionStorage()
        self.auto_refresh = auto_refresh
        self.session: Session | None = None
        self._listeners: set[AuthCallback] = set()
        self._refresh_task: asyncio.Task | None = None

    @property
    def user_id(self) -> str | None:
        return self.session.user_id if self.session else None

    def on_auth_state_change(self, callback: AuthCallback) -> AuthSubscription:
        self._listeners.add(callback)
        return AuthSubscription(self, callback)

    async def _emit(self, event: str) -> None:
        logger.info("Auth state: %s (%s)", event, self.user_id or "anonymous")
        for callback in list(self._listeners):
            try:
                result = callback(event, self.session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth state listener failed on %s", event)

    async def _set(self, session: Session | None, event: str) -> None:
        self.session = session
        if session is None:
            self.storage.clear()
        else:
            self.storage.save(session)
        self._schedule_refresh()
        await self._emit(event)

    async def start(self) -> Session | None:
        session = self.storage.load()
        if session and session.expires_at - REFRESH_MARGIN_SECONDS <= time.time():
            try:
                session = await self.auth.refresh(session.refresh_token)
            except AuthError as exc:
                logger.info("Stored session could not be refreshed: %s", exc.message)
                session = None
        await self._set(session, INITIAL_SESSION)
        return session

    async def get_session(self) -> Session | None:
        return self.session

    async def sign_up(self, username: str, password: str) -> Session:
        session = await self.auth.sign_up(username, password)
        await self._set(session, SIGNED_IN)
        return session

    async def sign_in(self, username: str, password: str) -> Session:
        session = await self.auth.sign_in(username, password)
        await self._set(session, SIGNED_IN)
        return session

    async def refresh(self) -> Session | None:
        if not self.session:
            return None
        try:
            session = await self.auth.refresh(self.session.refresh_token)
        except AuthError as exc:
            logger.warning("Token refresh failed, signing out: %s", exc.message)
            await self._set(None, SIGNED_OUT)
            return None
        await self._set(session, TOKEN_REFRESHED)
        return session

    async def sign_out(self) -> None:
        await self._set(None, SIGNED_OUT)

    def _schedule_refresh(self) -> None:
        current = asyncio.current_task()
        if self._refresh_task and not self._refresh_task.done() and self._refresh_task is not current:
            self._refresh_task.cancel()
        self._refresh_task = None
        if self.auto_refresh and self.session:
            delay = max(self.session.expires_at - REFRESH_MARGIN_SECONDS - time.time(), 0)
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_later(delay))

    async def _refresh_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.refresh()

    async def close(self) -> None:
        self._listeners.clear()
        task, self._refresh_task = self._refresh_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
