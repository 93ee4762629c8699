"""Y-Chat client: session → ban check → room list, rooms, unread badges, studio."""
import asyncio
import enum
import logging

from .auth import AuthService
from .config import settings
from .dialogs import Dialogs
from .guard import BanWatcher
from .media import MediaUploader
from .profile import ProfileEditor
from .rooms import RoomDirectory
from .schemas import Session
from .session import SessionManager, SessionStorage
from .store import Client, Store
from .studio import ModerationConsole
from .sync import RoomSynchronizer
from .unread import UnreadTracker

logger = logging.getLogger(__name__)


class View(str, enum.Enum):
    AUTH = "auth"
    CHECKING = "checking"
    BANNED = "banned"
    MAIN = "main"


class YChat:
    def __init__(
        self,
        store: Store | None = None,
        auth: AuthService | None = None,
        storage: SessionStorage | None = None,
        dialogs: Dialogs | None = None,
        uploader: MediaUploader | None = None,
        ban_poll_interval: float | None = None,
        auto_refresh: bool = True,
    ) -> None:
        self.store = store or Store()
        self.sessions = SessionManager(auth or AuthService(self.store.session_factory), storage, auto_refresh=auto_refresh)
        self.dialogs = dialogs or Dialogs()
        self.uploader = uploader or MediaUploader()
        self.ban_poll_interval = ban_poll_interval or settings.ban_poll_interval_seconds
        self.client: Client | None = None
        self.bans: BanWatcher | None = None
        self.directory: RoomDirectory | None = None
        self.unread: UnreadTracker | None = None
        self.room: RoomSynchronizer | None = None
        self._auth_subscription = None

    async def start(self) -> View:
        self._auth_subscription = self.sessions.on_auth_state_change(self._on_auth_state)
        await self.sessions.start()
        return self.view

    async def _on_auth_state(self, event: str, session: Session | None) -> None:
        user_id = session.user_id if session else None
        if self.client is not None and self.client.user_id == user_id:
            return
        await self._teardown()
        if user_id:
            await self._setup(user_id)

    async def _setup(self, user_id: str) -> None:
        self.client = self.store.client(user_id)
        self.bans = BanWatcher(self.client, interval=self.ban_poll_interval)
        await self.bans.start()
        self.directory = RoomDirectory(self.client, self.dialogs)
        await self.directory.start()
        self.unread = UnreadTracker(self.client)
        await self.unread.start()

    async def _teardown(self) -> None:
        await self.close_room()
        for component in (self.unread, self.directory, self.bans):
            if component is not None:
                await component.close()
        self.client = self.bans = self.directory = self.unread = None

    @property
    def view(self) -> View:
        if self.client is None:
            return View.AUTH
        if self.bans is None or self.bans.state is None:
            return View.CHECKING
        if self.bans.state.blocked:
            return View.BANNED
        return View.MAIN

    async def sign_up(self, username: str, password: str) -> Session:
        return await self.sessions.sign_up(username, password)

    async def sign_in(self, username: str, password: str) -> Session:
        return await self.sessions.sign_in(username, password)

    async def sign_out(self, confirm: bool = True) -> bool:
        if confirm and not self.dialogs.confirm("Log out?"):
            return False
        await self.sessions.sign_out()
        return True

    async def open_room(self, room_id: str) -> RoomSynchronizer | None:
        if self.view is not View.MAIN:
            self.dialogs.alert("Your account cannot open rooms right now.")
            return None
        await self.close_room()
        self.unread.set_active_room(room_id)
        self.room = RoomSynchronizer(self.client, room_id, self.dialogs, self.uploader)
        await self.room.start()
        return self.room

    async def close_room(self) -> None:
        room, self.room = self.room, None
        if room is not None:
            await room.close()
        if self.unread is not None:
            self.unread.active_room = None

    async def open_studio(self) -> ModerationConsole:
        return await ModerationConsole.open(self.store.client(self.sessions.user_id), self.dialogs)

    def profile_editor(self) -> ProfileEditor:
        return ProfileEditor(self.client, self.uploader, self.dialogs)

    def pending(self) -> list[asyncio.Task]:
        components = (self.bans, self.directory, self.unread, self.room)
        return [task for component in components if component is not None for task in component.pending()]

    async def settle(self, rounds: int = 20) -> None:
        """Wait until change-triggered refreshes have finished."""
        for _ in range(rounds):
            tasks = self.pending()
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        if self._auth_subscription:
            self._auth_subscription.unsubscribe()
        await self._teardown()
        await self.sessions.close()
