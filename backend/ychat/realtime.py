import inspect
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Mapping

from .models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ChangeEvent:
    table: str
    type: str  # INSERT, UPDATE or DELETE
    new: dict | None = None
    old: dict | None = None
    commit_timestamp: datetime = field(default_factory=utcnow)

    @property
    def record(self) -> dict:
        return self.new if self.new is not None else (self.old or {})


Filter = Mapping[str, Any] | Callable[[ChangeEvent], bool] | None


@dataclass
class Listener:
    callback: Callable[[ChangeEvent], Any]
    table: str = "*"
    event: str = "*"
    filter: Filter = None

    def matches(self, change: ChangeEvent) -> bool:
        if self.table != "*" and self.table != change.table:
            return False
        if self.event != "*" and self.event != change.type:
            return False
        if self.filter is None:
            return True
        if callable(self.filter):
            return bool(self.filter(change))
        record = change.record
        return all(record.get(column) == value for column, value in self.filter.items())


class Subscription:
    def __init__(self, feed: "ChangeFeed", channel: str, listener_id: int) -> None:
        self._feed = feed
        self.channel = channel
        self.listener_id = listener_id
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed.remove(self.channel, self.listener_id)
            self.active = False


class ChangeFeed:
    """Named channels of change listeners fed by committed store mutations."""

    def __init__(self) -> None:
        self.channels: Dict[str, dict[int, Listener]] = defaultdict(dict)
        self._ids = itertools.count(1)

    def add(self, channel: str, listener: Listener) -> int:
        listener_id = next(self._ids)
        self.channels[channel][listener_id] = listener
        return listener_id

    def remove(self, channel: str, listener_id: int):
        if channel in self.channels and listener_id in self.channels[channel]:
            self.channels[channel].pop(listener_id, None)
            if not self.channels[channel]:
                self.channels.pop(channel, None)

    def listeners(self, channel: str) -> list[Listener]:
        return list(self.channels.get(channel, {}).values())

    def all(self) -> list[Listener]:
        return [listener for members in list(self.channels.values()) for listener in list(members.values())]

    def subscribe(
        self,
        channel: str,
        callback: Callable[[ChangeEvent], Any],
        *,
        table: str = "*",
        event: str = "*",
        filter: Filter = None,
    ) -> Subscription:
        listener_id = self.add(channel, Listener(callback, table=table, event=event, filter=filter))
        logger.debug("Listener %s joined channel %s (table=%s event=%s)", listener_id, channel, table, event)
        return Subscription(self, channel, listener_id)

    async def publish(self, change: ChangeEvent) -> int:
        delivered = 0
        for listener in self.all():
            if not listener.matches(change):
                continue
            try:
                result = listener.callback(change)
                # Tasks returned by a listener run on their own; the writer never waits on them.
                if inspect.iscoroutine(result):
                    await result
                delivered += 1
            except Exception:
                logger.exception("Change listener failed for %s %s", change.type, change.table)
        return delivered
