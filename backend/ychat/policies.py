"""Row-level authorization for the data store.

Read policies narrow a SELECT with an extra WHERE clause so unauthorized rows
are simply invisible. Write policies are checked per row and raise
PolicyViolation. Both are evaluated against a freshly loaded Identity; nothing
is cached between calls.
"""
from dataclasses import dataclass
from typing import Any

from sqlalchemy import exists, false, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import PolicyViolation
from .models import Message, Profile, ReadStatus, Room, RoomParticipant, UserBan


@dataclass(frozen=True)
class Identity:
    user_id: str | None
    is_admin: bool = False

    @property
    def anonymous(self) -> bool:
        return self.user_id is None


async def load_identity(db: AsyncSession, user_id: str | None) -> Identity:
    if user_id is None:
        return Identity(None)
    res = await db.execute(select(Profile.is_admin).where(Profile.id == user_id))
    return Identity(user_id, bool(res.scalar_one_or_none()))


def my_room_ids(user_id: str):
    return select(RoomParticipant.room_id).where(RoomParticipant.user_id == user_id)


def read_clause(table: str, identity: Identity):
    """Extra WHERE clause for a SELECT on `table`, or None when unrestricted."""
    if table in ("profiles", "system_settings"):
        return None
    if identity.anonymous:
        return false()
    if identity.is_admin:
        return None
    uid = identity.user_id
    if table == "rooms":
        return or_(Room.id.in_(my_room_ids(uid)), Room.created_by == uid)
    if table == "room_participants":
        return RoomParticipant.room_id.in_(my_room_ids(uid))
    if table == "messages":
        return Message.room_id.in_(my_room_ids(uid))
    if table == "read_status":
        return ReadStatus.message_id.in_(select(Message.id).where(Message.room_id.in_(my_room_ids(uid))))
    if table == "user_bans":
        return UserBan.user_id == uid
    return false()


async def is_participant(db: AsyncSession, room_id: Any, user_id: str) -> bool:
    res = await db.execute(
        select(exists().where(RoomParticipant.room_id == room_id, RoomParticipant.user_id == user_id))
    )
    return bool(res.scalar())


async def _room_creator(db: AsyncSession, room_id: Any) -> str | None:
    res = await db.execute(select(Room.created_by).where(Room.id == room_id))
    return res.scalar_one_or_none()


def _deny(message: str):
    raise PolicyViolation(message)


AUTHOR_MESSAGE_FIELDS = {"content", "image_url", "is_deleted"}


async def check_insert(db: AsyncSession, table: str, row: dict, identity: Identity) -> None:
    if identity.anonymous:
        _deny("Sign in required")
    uid = identity.user_id
    if table == "profiles":
        if row.get("id") != uid and not identity.is_admin:
            _deny("Profiles can only be created for yourself")
        if row.get("is_admin") and not identity.is_admin:
            _deny("Only administrators can grant admin rights")
    elif table == "rooms":
        if row.get("created_by") != uid:
            _deny("Rooms must be created by the caller")
    elif table == "room_participants":
        if identity.is_admin:
            return
        room_id = row.get("room_id")
        if await _room_creator(db, room_id) != uid and not await is_participant(db, room_id, uid):
            _deny("Only members of a room can add participants")
    elif table == "messages":
        if row.get("user_id") != uid:
            _deny("Messages must be sent as yourself")
        if not identity.is_admin and not await is_participant(db, row.get("room_id"), uid):
            _deny("Not a participant of this room")
    elif table == "read_status":
        if row.get("user_id") != uid:
            _deny("Read receipts can only be recorded for yourself")
        res = await db.execute(select(Message.room_id).where(Message.id == row.get("message_id")))
        room_id = res.scalar_one_or_none()
        if room_id is None or (not identity.is_admin and not await is_participant(db, room_id, uid)):
            _deny("Message is not visible")
    elif table == "user_bans":
        if not identity.is_admin:
            _deny("Only administrators can ban users")
    else:
        _deny(f"Inserts into {table} are not allowed")


async def check_update(db: AsyncSession, table: str, existing: dict, values: dict, identity: Identity) -> None:
    if identity.anonymous:
        _deny("Sign in required")
    uid = identity.user_id
    if table == "profiles":
        if "username" in values and values["username"] != existing.get("username"):
            _deny("Usernames cannot be changed")
        if "is_admin" in values and not identity.is_admin:
            _deny("Only administrators can change admin rights")
        if existing.get("id") != uid and not identity.is_admin:
            _deny("Profiles can only be edited by their owner")
    elif table == "rooms":
        if existing.get("created_by") != uid and not identity.is_admin:
            _deny("Only the creator can edit a room")
    elif table == "messages":
        if identity.is_admin:
            return
        if existing.get("user_id") != uid:
            _deny("Only the author can change a message")
        if set(values) - AUTHOR_MESSAGE_FIELDS:
            _deny("Authors can only edit or delete their messages")
    elif table in ("user_bans", "system_settings"):
        if not identity.is_admin:
            _deny(f"Only administrators can change {table}")
    else:
        _deny(f"Updates to {table} are not allowed")


async def check_delete(db: AsyncSession, table: str, existing: dict, identity: Identity) -> None:
    if identity.anonymous:
        _deny("Sign in required")
    if table == "room_participants":
        if existing.get("user_id") != identity.user_id and not identity.is_admin:
            _deny("You can only leave rooms yourself")
    elif table == "rooms":
        if not identity.is_admin:
            _deny("Only administrators can delete rooms")
    else:
        _deny(f"Rows in {table} are never deleted")
