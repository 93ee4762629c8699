"""Capability checks: the studio kill switch, the admin flag and user bans.

Every check reads the store at the moment it is asked and fails closed: a read
that errors is a denial, never an allow.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Protocol

from .errors import StoreError
from .models import as_utc, utcnow
from .schemas import UserBanOut
from .store import Client
from .tasks import Refresher

logger = logging.getLogger(__name__)


class AccessDecision(str, enum.Enum):
    PENDING = "pending"
    DENIED_KILLSWITCH = "denied-by-killswitch"
    DENIED_NOT_ADMIN = "denied-not-admin"
    GRANTED = "granted"


class AccessPort(Protocol):
    async def studio_enabled(self) -> bool: ...

    async def is_admin(self, user_id: str) -> bool: ...


class StoreAccessPort:
    def __init__(self, client: Client) -> None:
        self.client = client

    async def studio_enabled(self) -> bool:
        row = await self.client.table("system_settings").select("studio_enabled").eq("id", 1).single()
        return bool(row["studio_enabled"])

    async def is_admin(self, user_id: str) -> bool:
        row = await self.client.table("profiles").select("is_admin").eq("id", user_id).single()
        return bool(row["is_admin"])


class AccessGuard:
    def __init__(self, port: AccessPort) -> None:
        self.port = port
        self.decision = AccessDecision.PENDING

    async def evaluate(self, user_id: str | None) -> AccessDecision:
        self.decision = await self._decide(user_id)
        return self.decision

    async def _decide(self, user_id: str | None) -> AccessDecision:
        if not user_id:
            return AccessDecision.DENIED_NOT_ADMIN
        try:
            enabled = await self.port.studio_enabled()
        except StoreError as exc:
            logger.error("System settings error: %s", exc.message)
            return AccessDecision.DENIED_KILLSWITCH
        if not enabled:
            return AccessDecision.DENIED_KILLSWITCH
        try:
            admin = await self.port.is_admin(user_id)
        except StoreError as exc:
            logger.error("Profile error: %s", exc.message)
            return AccessDecision.DENIED_NOT_ADMIN
        return AccessDecision.GRANTED if admin else AccessDecision.DENIED_NOT_ADMIN


def is_effective(ban: dict, now: datetime | None = None) -> bool:
    now = now or utcnow()
    if ban.get("is_active") is not True:
        return False
    expires_at = as_utc(ban.get("expires_at"))
    return expires_at is None or expires_at > now


def effective_ban(bans: Iterable[dict], now: datetime | None = None) -> dict | None:
    """Most recent ban currently in force, if any."""
    now = now or utcnow()
    live = [ban for ban in bans if is_effective(ban, now)]
    if not live:
        return None
    return max(live, key=lambda ban: as_utc(ban["created_at"]))


@dataclass
class BanState:
    banned: bool
    ban: UserBanOut | None = None
    failed: bool = False

    @property
    def blocked(self) -> bool:
        return self.banned or self.failed

    @property
    def permanent(self) -> bool:
        return self.ban is not None and self.ban.expires_at is None


class BanWatcher:
    """Keeps one identity's ban state current.

    Two triggers feed the same recompute: change notifications on the
    identity's user_bans rows and a fixed polling interval that catches
    expiries no mutation announces.
    """

    def __init__(
        self,
        client: Client,
        interval: float = 60.0,
        on_change: Callable[[BanState], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client
        self.interval = interval
        self.on_change = on_change
        self.clock = clock
        self.state: BanState | None = None
        self._refresher = Refresher(self._fetch, self._publish, name="ban-check")
        self._subscription = None
        self._poller: asyncio.Task | None = None

    async def start(self) -> BanState | None:
        self._subscription = self.client.subscribe(
            f"bans:{self.client.user_id}",
            self._refresher.trigger,
            table="user_bans",
            filter={"user_id": self.client.user_id},
        )
        self._poller = asyncio.get_running_loop().create_task(self._poll())
        await self.check()
        return self.state

    async def check(self) -> BanState | None:
        await self._refresher.run()
        return self.state

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._refresher.trigger()

    async def _fetch(self) -> BanState:
        try:
            rows = await self.client.table("user_bans").eq("user_id", self.client.user_id).eq("is_active", True).execute()
        except StoreError as exc:
            logger.error("Ban check error: %s", exc.message)
            return BanState(banned=False, failed=True)
        ban = effective_ban(rows, self.clock())
        if ban is None:
            return BanState(banned=False)
        return BanState(banned=True, ban=UserBanOut.model_validate(ban))

    def _publish(self, state: BanState) -> None:
        self.state = state
        if self.on_change:
            self.on_change(state)

    def pending(self) -> list[asyncio.Task]:
        return self._refresher.pending()

    async def close(self) -> None:
        if self._subscription:
            self._subscription.unsubscribe()
        if self._poller:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
        await self._refresher.dispose()
