"""Y-Chat Studio: the moderation console.

Only reachable through AccessGuard. Each mutation updates the local lists
optimistically once the store accepts it and alerts on failure; nothing is
retried or rolled back afterwards.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable

from .dialogs import Dialogs
from .errors import AccessDenied, StoreError
from .guard import AccessDecision, AccessGuard, StoreAccessPort, is_effective
from .models import utcnow
from .schemas import MessageOut, StudioProfile, StudioRoom
from .store import Client
from .sync import PROFILE_COLUMNS, join_authors

logger = logging.getLogger(__name__)

# Ban duration codes offered to the moderator; None means permanent.
BAN_DURATIONS: dict[str, timedelta | None] = {
    "1": timedelta(seconds=60),
    "2": timedelta(minutes=5),
    "3": timedelta(hours=1),
    "4": timedelta(days=1),
    "5": timedelta(days=365),
    "6": None,
}


class ModerationConsole:
    def __init__(self, client: Client, dialogs: Dialogs | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        self.client = client
        self.dialogs = dialogs or Dialogs()
        self.clock = clock
        self.rooms: list[StudioRoom] = []
        self.profiles: list[StudioProfile] = []
        self.messages: list[MessageOut] = []
        self.selected_room_id: str | None = None
        self.hide_empty_rooms = False

    @classmethod
    async def open(cls, client: Client, dialogs: Dialogs | None = None, guard: AccessGuard | None = None, **kwargs) -> "ModerationConsole":
        guard = guard or AccessGuard(StoreAccessPort(client))
        decision = await guard.evaluate(client.user_id)
        if decision is not AccessDecision.GRANTED:
            raise AccessDenied(decision)
        console = cls(client, dialogs, **kwargs)
        await console.load()
        return console

    def _fail(self, action: str, exc: StoreError) -> bool:
        logger.error("%s failed: %s", action, exc.message)
        self.dialogs.alert(f"{action} failed: {exc.message}")
        return False

    # -- loading -----------------------------------------------------------

    async def load(self) -> None:
        await self.load_rooms()
        await self.load_profiles()

    async def load_rooms(self) -> list[StudioRoom]:
        try:
            rooms = await (
                self.client.table("rooms")
                .select("id", "name", "is_group", "created_by", "created_at")
                .order("created_at", desc=True)
                .execute()
            )
            counted = []
            for room in rooms:
                count = await self.client.table("messages").eq("room_id", room["id"]).count()
                counted.append(StudioRoom.model_validate({**room, "message_count": count}))
        except StoreError as exc:
            logger.error("Rooms fetch error: %s", exc.message)
            return self.rooms
        self.rooms = counted
        return self.rooms

    @property
    def visible_rooms(self) -> list[StudioRoom]:
        if self.hide_empty_rooms:
            return [room for room in self.rooms if room.message_count > 0]
        return self.rooms

    async def load_profiles(self) -> list[StudioProfile]:
        try:
            profiles = await self.client.table("profiles").select(*PROFILE_COLUMNS, "is_admin").order("username").execute()
        except StoreError as exc:
            logger.error("Profiles fetch error: %s", exc.message)
            return self.profiles
        try:
            bans = await self.client.table("user_bans").eq("is_active", True).execute()
        except StoreError as exc:
            # Ban status is unknown, not "not banned".
            logger.error("Bans fetch error: %s", exc.message)
            self.dialogs.alert(f"Could not load ban status: {exc.message}")
            self.profiles = [StudioProfile.model_validate({**p, "is_banned": None}) for p in profiles]
            return self.profiles
        now = self.clock()
        banned = {ban["user_id"] for ban in bans if is_effective(ban, now)}
        self.profiles = [StudioProfile.model_validate({**p, "is_banned": p["id"] in banned}) for p in profiles]
        return self.profiles

    async def select_room(self, room_id: str) -> list[MessageOut]:
        self.selected_room_id = room_id
        await self._load_messages()
        return self.messages

    async def _load_messages(self) -> None:
        try:
            messages = await (
                self.client.table("messages")
                .eq("room_id", self.selected_room_id)
                .order("created_at")
                .order("id")
                .execute()
            )
            author_ids = {message["user_id"] for message in messages}
            profiles = []
            if author_ids:
                profiles = await self.client.table("profiles").select(*PROFILE_COLUMNS).in_("id", author_ids).execute()
        except StoreError as exc:
            logger.error("Messages fetch error: %s", exc.message)
            return
        self.messages = join_authors(messages, profiles)

    def _message(self, message_id: int) -> MessageOut | None:
        return next((m for m in self.messages if m.id == message_id), None)

    def _profile(self, user_id: str) -> StudioProfile | None:
        return next((p for p in self.profiles if p.id == user_id), None)

    def _replace_message(self, message_id: int, **changes) -> None:
        self.messages = [m.model_copy(update=changes) if m.id == message_id else m for m in self.messages]

    # -- message moderation ----------------------------------------------

    async def edit_message(self, message_id: int, content: str) -> bool:
        try:
            await self.client.table("messages").eq("id", message_id).update({"content": content})
        except StoreError as exc:
            return self._fail("Edit", exc)
        self._replace_message(message_id, content=content)
        return True

    async def delete_message(self, message_id: int) -> bool:
        message = self._message(message_id)
        if message is not None and message.is_locked:
            self.dialogs.alert("This message is locked and cannot be deleted. Unlock it first.")
            return False
        if not self.dialogs.confirm("Delete this message?"):
            return False
        try:
            rows = await (
                self.client.table("messages")
                .eq("id", message_id)
                .eq("is_locked", False)
                .update({"is_deleted": True, "content": None, "image_url": None})
            )
        except StoreError as exc:
            return self._fail("Delete", exc)
        if not rows:
            self.dialogs.alert("Message not found or locked.")
            return False
        self._replace_message(message_id, is_deleted=True, content=None, image_url=None)
        return True

    async def toggle_lock(self, message_id: int) -> bool:
        message = self._message(message_id)
        if message is None:
            return False
        locked = not message.is_locked
        try:
            await self.client.table("messages").eq("id", message_id).update({"is_locked": locked})
        except StoreError as exc:
            return self._fail("Lock toggle", exc)
        self._replace_message(message_id, is_locked=locked)
        return True

    async def reassign_author(self, message_id: int, new_user_id: str) -> bool:
        message = self._message(message_id)
        if message is not None and message.user_id == new_user_id:
            return False
        if not self.dialogs.confirm("Change the sender of this message?"):
            return False
        try:
            await self.client.table("messages").eq("id", message_id).update({"user_id": new_user_id})
        except StoreError as exc:
            return self._fail("Sender change", exc)
        await self._load_messages()
        return True

    # -- user moderation ---------------------------------------------------

    async def rename_user(self, user_id: str, nickname: str) -> bool:
        try:
            await self.client.table("profiles").eq("id", user_id).update({"nickname": nickname})
        except StoreError as exc:
            return self._fail("Nickname change", exc)
        self.profiles = [p.model_copy(update={"nickname": nickname}) if p.id == user_id else p for p in self.profiles]
        return True

    async def ban_user(self, user_id: str, duration_code: str, reason: str | None = None) -> bool:
        if self._profile(user_id) is None:
            return False
        if duration_code not in BAN_DURATIONS:
            self.dialogs.alert("Invalid selection")
            return False
        now = self.clock()
        duration = BAN_DURATIONS[duration_code]
        row = {
            "user_id": user_id,
            "banned_by": self.client.user_id,
            "reason": reason or None,
            "expires_at": now + duration if duration is not None else None,
            "created_at": now,
        }
        try:
            await self.client.table("user_bans").insert(row)
        except StoreError as exc:
            return self._fail("Ban", exc)
        self.dialogs.alert("Ban applied")
        await self.load_profiles()
        return True

    async def prompt_ban(self, user_id: str) -> bool:
        profile = self._profile(user_id)
        if profile is None:
            return False
        code = self.dialogs.prompt(
            f"Ban {profile.display_name}?\n\nChoose a duration:\n"
            "1: 60 seconds\n2: 5 minutes\n3: 1 hour\n4: 1 day\n5: 1 year\n6: permanent",
            "1",
        )
        if not code:
            return False
        if code not in BAN_DURATIONS:
            self.dialogs.alert("Invalid selection")
            return False
        reason = self.dialogs.prompt("Reason (optional):")
        return await self.ban_user(user_id, code, reason)

    async def unban_user(self, user_id: str) -> bool:
        profile = self._profile(user_id)
        if profile is None or not self.dialogs.confirm(f"Lift the ban on {profile.display_name}?"):
            return False
        try:
            await (
                self.client.table("user_bans")
                .eq("user_id", user_id)
                .eq("is_active", True)
                .update({"is_active": False, "updated_at": self.clock()})
            )
        except StoreError as exc:
            return self._fail("Unban", exc)
        self.dialogs.alert("Ban lifted")
        await self.load_profiles()
        return True

    async def emergency_stop(self) -> bool:
        if not self.dialogs.confirm("Emergency stop? Studio access will be blocked for everyone."):
            return False
        try:
            await (
                self.client.table("system_settings")
                .eq("id", 1)
                .update({"studio_enabled": False, "updated_at": self.clock()})
            )
        except StoreError as exc:
            return self._fail("Emergency stop", exc)
        self.dialogs.alert("Emergency stop engaged.")
        return True
