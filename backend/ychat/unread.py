import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from .errors import StoreError
from .store import Client
from .tasks import Refresher

logger = logging.getLogger(__name__)


@dataclass
class UnreadSnapshot:
    counts: dict[str, int] = field(default_factory=dict)
    # contact user id -> 1:1 room id
    partners: dict[str, str] = field(default_factory=dict)


class UnreadTracker:
    """Per-room unread counts for the signed-in identity."""

    def __init__(self, client: Client, on_change: Callable[[dict[str, int]], None] | None = None) -> None:
        self.client = client
        self.on_change = on_change
        self.counts: dict[str, int] = {}
        self.partners: dict[str, str] = {}
        self.active_room: str | None = None
        self._refresher = Refresher(self._fetch, self._publish, name="unread")
        self._subscription = None

    async def start(self) -> dict[str, int]:
        self._subscription = self.client.subscribe(f"unread:{self.client.user_id}", self._refresher.trigger)
        await self.refresh()
        return self.counts

    async def refresh(self) -> bool:
        return await self._refresher.run()

    async def _fetch(self) -> UnreadSnapshot | None:
        try:
            rows = await self.client.rpc("get_unread_counts")
            partners = await self._resolve_partners()
        except StoreError as exc:
            logger.error("Unread count fetch failed: %s", exc.message)
            return None
        return UnreadSnapshot({row["room_id"]: int(row["unread_count"]) for row in rows}, partners)

    async def _resolve_partners(self) -> dict[str, str]:
        memberships = await self.client.table("room_participants").select("room_id").eq("user_id", self.client.user_id).execute()
        room_ids = [row["room_id"] for row in memberships]
        if not room_ids:
            return {}
        personal = await self.client.table("rooms").select("id").in_("id", room_ids).eq("is_group", False).execute()
        partners = {}
        # One participant query per 1:1 room.
        for room in personal:
            rows = await (
                self.client.table("room_participants")
                .select("user_id")
                .eq("room_id", room["id"])
                .neq("user_id", self.client.user_id)
                .execute()
            )
            for row in rows:
                partners[row["user_id"]] = room["id"]
        return partners

    def _publish(self, snapshot: UnreadSnapshot) -> None:
        self.counts = snapshot.counts
        self.partners = snapshot.partners
        if self.on_change:
            self.on_change(self.counts)

    def set_active_room(self, room_id: str | None) -> None:
        # Display-only; the next real fetch overwrites it.
        self.active_room = room_id
        if room_id is not None:
            self.counts[room_id] = 0
            if self.on_change:
                self.on_change(self.counts)

    def count_for_room(self, room_id: str) -> int:
        return self.counts.get(room_id, 0)

    def count_for_contact(self, user_id: str) -> int:
        room_id = self.partners.get(user_id)
        return self.count_for_room(room_id) if room_id else 0

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def pending(self) -> list[asyncio.Task]:
        return self._refresher.pending()

    async def close(self) -> None:
        if self._subscription:
            self._subscription.unsubscribe()
        await self._refresher.dispose()
