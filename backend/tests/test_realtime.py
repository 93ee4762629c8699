import asyncio

from ychat.realtime import ChangeEvent, ChangeFeed


async def test_listeners_match_table_event_and_filter():
    feed = ChangeFeed()
    seen = []
    feed.subscribe("a", lambda e: seen.append(("any", e.type)))
    feed.subscribe("a", lambda e: seen.append(("messages", e.type)), table="messages")
    feed.subscribe("b", lambda e: seen.append(("deletes", e.type)), event="DELETE")
    feed.subscribe("b", lambda e: seen.append(("room-1", e.type)), table="messages", filter={"room_id": "1"})

    await feed.publish(ChangeEvent("messages", "INSERT", new={"id": 1, "room_id": "1"}))
    await feed.publish(ChangeEvent("rooms", "DELETE", old={"id": "1"}))

    assert seen == [
        ("any", "INSERT"),
        ("messages", "INSERT"),
        ("room-1", "INSERT"),
        ("any", "DELETE"),
        ("deletes", "DELETE"),
    ]


async def test_delete_events_filter_on_old_row():
    feed = ChangeFeed()
    seen = []
    feed.subscribe("c", seen.append, filter={"user_id": "u1"})
    await feed.publish(ChangeEvent("room_participants", "DELETE", old={"user_id": "u1"}))
    await feed.publish(ChangeEvent("room_participants", "DELETE", old={"user_id": "u2"}))
    assert [e.record["user_id"] for e in seen] == ["u1"]


async def test_predicate_filter_and_async_callback():
    feed = ChangeFeed()
    seen = []

    async def callback(event):
        seen.append(event.new["id"])

    feed.subscribe("c", callback, filter=lambda e: e.new["id"] % 2 == 0)
    for i in range(4):
        await feed.publish(ChangeEvent("messages", "INSERT", new={"id": i}))
    assert seen == [0, 2]


async def test_failing_listener_does_not_block_others():
    feed = ChangeFeed()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    feed.subscribe("c", broken)
    feed.subscribe("c", seen.append)
    delivered = await feed.publish(ChangeEvent("rooms", "INSERT", new={"id": "r"}))
    assert len(seen) == 1
    assert delivered == 1


async def test_unsubscribe_removes_empty_channels():
    feed = ChangeFeed()
    first = feed.subscribe("c", lambda e: None)
    second = feed.subscribe("c", lambda e: None)
    assert len(feed.listeners("c")) == 2
    first.unsubscribe()
    first.unsubscribe()
    assert len(feed.listeners("c")) == 1
    second.unsubscribe()
    assert "c" not in feed.channels
    assert feed.all() == []


async def test_publish_does_not_wait_for_spawned_tasks():
    feed = ChangeFeed()
    gate = asyncio.Event()
    spawned = []

    def callback(event):
        task = asyncio.get_running_loop().create_task(gate.wait())
        spawned.append(task)
        return task

    feed.subscribe("c", callback)
    delivered = await asyncio.wait_for(feed.publish(ChangeEvent("messages", "INSERT", new={"id": 1})), timeout=5)
    assert delivered == 1
    assert not spawned[0].done()
    spawned[0].cancel()
