"""Room synchronizer: the materialized, time-ordered view of one room.

Each refresh runs the full sequence: room metadata, messages with their read
receipts, one batched profile fetch for the distinct authors, an in-memory
hash join of authors onto messages, then read receipts for whatever the
current identity has not seen yet. The store offers no join, so the join is
done here on purpose. Every change notification for the room reruns the whole
sequence; there is no delta merge.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .dialogs import Dialogs
from .errors import ConflictError, StoreError, UploadError
from .media import MediaUploader
from .realtime import ChangeEvent
from .schemas import MessageOut, ProfileOut, RoomOut
from .store import Client
from .tasks import Refresher

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = ("id", "username", "nickname", "avatar_public_id")


@dataclass
class RoomView:
    room: RoomOut
    messages: list[MessageOut] = field(default_factory=list)

    @property
    def anchor(self) -> int | None:
        """Newest message id; the scroll position is pinned here."""
        return self.messages[-1].id if self.messages else None

    def unread_by(self, reader_id: str) -> list[MessageOut]:
        return [m for m in self.messages if m.is_unread_by(reader_id)]


def join_authors(messages: Iterable[dict], profiles: Iterable[dict]) -> list[MessageOut]:
    by_id = {profile["id"]: profile for profile in profiles}
    return [MessageOut.model_validate({**message, "profile": by_id.get(message["user_id"])}) for message in messages]


class RoomSynchronizer:
    def __init__(
        self,
        client: Client,
        room_id: str,
        dialogs: Dialogs | None = None,
        uploader: MediaUploader | None = None,
        on_update: Callable[[RoomView], None] | None = None,
    ) -> None:
        self.client = client
        self.room_id = room_id
        self.dialogs = dialogs or Dialogs()
        self.uploader = uploader
        self.on_update = on_update
        self.view: RoomView | None = None
        self._message_ids: set[int] = set()
        self._refresher = Refresher(self._fetch, self._publish, name=f"room:{room_id}")
        self._subscriptions = []

    @property
    def user_id(self) -> str:
        return self.client.user_id

    async def start(self) -> RoomView | None:
        channel = f"room:{self.room_id}:{self.user_id}"
        trigger = self._refresher.trigger
        self._subscriptions = [
            self.client.subscribe(channel, trigger, table="rooms", filter={"id": self.room_id}),
            self.client.subscribe(channel, trigger, table="messages", filter={"room_id": self.room_id}),
            self.client.subscribe(channel, trigger, table="room_participants", filter={"room_id": self.room_id}),
            self.client.subscribe(channel, trigger, table="read_status", filter=self._concerns_room),
        ]
        await self.refresh()
        return self.view

    def _concerns_room(self, change: ChangeEvent) -> bool:
        return change.record.get("message_id") in self._message_ids

    async def refresh(self) -> bool:
        return await self._refresher.run()

    async def _fetch(self) -> RoomView | None:
        try:
            room = await (
                self.client.table("rooms")
                .select("id", "name", "is_group", "created_by", "created_at")
                .eq("id", self.room_id)
                .single()
            )
            messages = await (
                self.client.table("messages")
                .select(embed=("read_status",))
                .eq("room_id", self.room_id)
                .order("created_at")
                .order("id")
                .execute()
            )
            author_ids = {message["user_id"] for message in messages}
            profiles = []
            if author_ids:
                profiles = await self.client.table("profiles").select(*PROFILE_COLUMNS).in_("id", author_ids).execute()
            merged = join_authors(messages, profiles)
            await self.mark_read()
        except StoreError as exc:
            logger.error("Failed to load room %s: %s", self.room_id, exc.message)
            self.dialogs.alert(f"Could not load messages: {exc.message}")
            return None
        return RoomView(RoomOut.model_validate(room), merged)

    async def mark_read(self) -> int:
        unread = await self.client.rpc("get_unread_messages", room_id=self.room_id)
        marked = 0
        for row in unread:
            try:
                await self.client.table("read_status").insert({"message_id": row["message_id"], "user_id": self.user_id})
                marked += 1
            except ConflictError:
                logger.debug("Message %s already marked read", row["message_id"])
        return marked

    def _publish(self, view: RoomView) -> None:
        self.view = view
        self._message_ids = {message.id for message in view.messages}
        if self.on_update:
            self.on_update(view)

    def _find(self, message_id: int) -> MessageOut | None:
        if not self.view:
            return None
        return next((m for m in self.view.messages if m.id == message_id), None)

    # -- user operations ---------------------------------------------------

    async def _send(self, fields: dict) -> bool:
        row = {"room_id": self.room_id, "user_id": self.user_id, **fields}
        try:
            await self.client.table("messages").insert(row)
        except StoreError as exc:
            logger.error("Send failed in room %s: %s", self.room_id, exc.message)
            self.dialogs.alert(f"Message could not be sent: {exc.message}")
            return False
        return True

    async def send_text(self, text: str) -> bool:
        text = text.strip()
        if not text:
            return False
        return await self._send({"content": text})

    async def send_image(self, filename: str, content: bytes, content_type: str = "image/png") -> bool:
        if self.uploader is None:
            self.dialogs.alert("Image upload is not configured")
            return False
        try:
            result = await self.uploader.upload(filename, content, content_type)
        except UploadError as exc:
            logger.error("Image upload failed: %s", exc.message)
            self.dialogs.alert("Image upload failed.")
            return False
        return await self._send({"image_url": result.secure_url})

    async def delete_message(self, message_id: int) -> bool:
        message = self._find(message_id)
        if message is None or message.is_deleted:
            return False
        # Locked messages stay put for their author too; a moderator has to unlock first.
        if message.is_locked:
            self.dialogs.alert("This message is locked and cannot be deleted.")
            return False
        if not self.dialogs.confirm("Unsend this message?"):
            return False
        try:
            await (
                self.client.table("messages")
                .eq("id", message_id)
                .update({"is_deleted": True, "content": None, "image_url": None})
            )
        except StoreError as exc:
            logger.error("Delete of message %s failed: %s", message_id, exc.message)
            self.dialogs.alert(f"Message could not be deleted: {exc.message}")
            return False
        return True

    async def invitable_profiles(self) -> list[ProfileOut]:
        try:
            profiles = await self.client.table("profiles").select(*PROFILE_COLUMNS).order("username").execute()
            members = await self.client.table("room_participants").select("user_id").eq("room_id", self.room_id).execute()
        except StoreError as exc:
            logger.error("Failed to load invitable users: %s", exc.message)
            self.dialogs.alert(f"Could not load users: {exc.message}")
            return []
        member_ids = {member["user_id"] for member in members}
        return [ProfileOut.model_validate(p) for p in profiles if p["id"] not in member_ids]

    async def invite(self, user_ids: Iterable[str]) -> bool:
        user_ids = list(dict.fromkeys(user_ids))
        if not user_ids:
            self.dialogs.alert("Select at least one member to invite.")
            return False
        if not self.dialogs.confirm(f"Invite {len(user_ids)} member(s) to this room?"):
            return False
        rows = [{"room_id": self.room_id, "user_id": user_id} for user_id in user_ids]
        try:
            await self.client.table("room_participants").insert(rows)
        except StoreError as exc:
            logger.error("Invite to room %s failed: %s", self.room_id, exc.message)
            self.dialogs.alert(f"Invite failed: {exc.message}")
            return False
        return True

    async def leave(self) -> bool:
        if not self.dialogs.confirm("Leave this room?"):
            return False
        try:
            await (
                self.client.table("room_participants")
                .eq("room_id", self.room_id)
                .eq("user_id", self.user_id)
                .delete()
            )
        except StoreError as exc:
            logger.error("Leaving room %s failed: %s", self.room_id, exc.message)
            self.dialogs.alert(f"Could not leave the room: {exc.message}")
            return False
        await self.close()
        return True

    def pending(self) -> list[asyncio.Task]:
        return self._refresher.pending()

    async def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        await self._refresher.dispose()
