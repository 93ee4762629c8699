"""Remote procedures exposed through Client.rpc."""
from sqlalchemy import and_, func, not_, exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from .errors import PolicyViolation
from .models import Message, ReadStatus, Room, RoomParticipant
from .policies import Identity, is_participant, my_room_ids


def _unread_for(user_id: str):
    # Unread: not authored by the reader and no receipt from the reader.
    return and_(
        Message.user_id != user_id,
        not_(exists().where(ReadStatus.message_id == Message.id, ReadStatus.user_id == user_id)),
    )


async def get_unread_messages(db: AsyncSession, identity: Identity, room_id: str) -> list[dict]:
    if identity.anonymous or not await is_participant(db, room_id, identity.user_id):
        return []
    res = await db.execute(
        select(Message.id)
        .where(Message.room_id == room_id, _unread_for(identity.user_id))
        .order_by(Message.created_at, Message.id)
    )
    return [{"message_id": message_id} for message_id in res.scalars().all()]


async def get_unread_counts(db: AsyncSession, identity: Identity) -> list[dict]:
    if identity.anonymous:
        return []
    res = await db.execute(
        select(Message.room_id, func.count(Message.id))
        .where(Message.room_id.in_(my_room_ids(identity.user_id)), _unread_for(identity.user_id))
        .group_by(Message.room_id)
    )
    return [{"room_id": room_id, "unread_count": count} for room_id, count in res.all() if count]


async def get_personal_room(db: AsyncSession, identity: Identity, other_user_id: str) -> list[dict]:
    if identity.anonymous:
        raise PolicyViolation("Sign in required")
    mine = aliased(RoomParticipant)
    theirs = aliased(RoomParticipant)
    res = await db.execute(
        select(Room.id)
        .join(mine, and_(mine.room_id == Room.id, mine.user_id == identity.user_id))
        .join(theirs, and_(theirs.room_id == Room.id, theirs.user_id == other_user_id))
        .where(Room.is_group.is_(False))
        .order_by(Room.created_at)
    )
    return [{"room_id": room_id} for room_id in res.scalars().all()]


PROCEDURES = {
    "get_unread_messages": get_unread_messages,
    "get_unread_counts": get_unread_counts,
    "get_personal_room": get_personal_room,
}
