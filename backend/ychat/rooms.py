import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .dialogs import Dialogs
from .errors import StoreError
from .schemas import ProfileOut, RoomOut
from .store import Client
from .tasks import Refresher

logger = logging.getLogger(__name__)


@dataclass
class Directory:
    rooms: list[RoomOut] = field(default_factory=list)
    profiles: list[ProfileOut] = field(default_factory=list)

    @property
    def groups(self) -> list[RoomOut]:
        return [room for room in self.rooms if room.is_group]


class RoomDirectory:
    """The signed-in user's rooms and the people they can talk to."""

    def __init__(
        self,
        client: Client,
        dialogs: Dialogs | None = None,
        on_change: Callable[[Directory], None] | None = None,
    ) -> None:
        self.client = client
        self.dialogs = dialogs or Dialogs()
        self.on_change = on_change
        self.directory = Directory()
        self._refresher = Refresher(self._fetch, self._publish, name="rooms")
        self._subscription = None

    async def start(self) -> Directory:
        self._subscription = self.client.subscribe(
            f"rooms:{self.client.user_id}",
            self._refresher.trigger,
            table="room_participants",
            filter={"user_id": self.client.user_id},
        )
        await self.refresh()
        return self.directory

    async def refresh(self) -> bool:
        return await self._refresher.run()

    async def _fetch(self) -> Directory | None:
        try:
            memberships = await self.client.table("room_participants").select("room_id").eq("user_id", self.client.user_id).execute()
            room_ids = [row["room_id"] for row in memberships]
            rooms = []
            if room_ids:
                rooms = await (
                    self.client.table("rooms")
                    .select("id", "name", "is_group", "created_by", "created_at")
                    .in_("id", room_ids)
                    .order("created_at")
                    .execute()
                )
            profiles = await (
                self.client.table("profiles")
                .select("id", "username", "nickname", "avatar_public_id")
                .neq("id", self.client.user_id)
                .order("username")
                .execute()
            )
        except StoreError as exc:
            logger.error("Room list fetch failed: %s", exc.message)
            return None
        return Directory(
            rooms=[RoomOut.model_validate(room) for room in rooms],
            profiles=[ProfileOut.model_validate(profile) for profile in profiles],
        )

    def _publish(self, directory: Directory) -> None:
        self.directory = directory
        if self.on_change:
            self.on_change(directory)

    async def _create_room(self, name: str, is_group: bool, member_ids: Iterable[str]) -> str:
        room = await self.client.table("rooms").insert({"name": name, "is_group": is_group, "created_by": self.client.user_id})
        room_id = room[0]["id"]
        participants = [{"room_id": room_id, "user_id": user_id} for user_id in dict.fromkeys(member_ids)]
        await self.client.table("room_participants").insert(participants)
        return room_id

    async def create_group_room(self, name: str, member_ids: Iterable[str]) -> str | None:
        name = (name or "").strip()
        member_ids = list(member_ids)
        if not name or not member_ids:
            self.dialogs.alert("Enter a group name and select at least one member.")
            return None
        try:
            return await self._create_room(name, True, [self.client.user_id, *member_ids])
        except StoreError as exc:
            logger.error("Group creation failed: %s", exc.message)
            self.dialogs.alert(f"Could not create the group: {exc.message}")
            return None

    async def open_personal_room(self, profile_id: str) -> str | None:
        try:
            existing = await self.client.rpc("get_personal_room", other_user_id=profile_id)
            if existing:
                return existing[0]["room_id"]
            profile = await self.client.table("profiles").select("username", "nickname").eq("id", profile_id).single()
            name = profile["nickname"] or profile["username"]
            return await self._create_room(name, False, [self.client.user_id, profile_id])
        except StoreError as exc:
            logger.error("Opening personal room with %s failed: %s", profile_id, exc.message)
            self.dialogs.alert("Could not start the chat.")
            return None

    def pending(self) -> list[asyncio.Task]:
        return self._refresher.pending()

    async def close(self) -> None:
        if self._subscription:
            self._subscription.unsubscribe()
        await self._refresher.dispose()
