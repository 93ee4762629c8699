import pytest

from conftest import PASSWORD, ScriptedDialogs, create_room
from ychat.client import View, YChat
from ychat.errors import AccessDenied
from ychat.session import SessionStorage


@pytest.fixture
async def app(store, auth, users, tmp_path):
    dialogs = ScriptedDialogs()
    chat = YChat(store, auth, SessionStorage(tmp_path / "session.json"), dialogs, ban_poll_interval=3600, auto_refresh=False)
    yield chat
    await chat.close()


async def test_signed_out_start_shows_auth(app):
    assert await app.start() is View.AUTH
    assert await app.open_room("anything") is None
    assert app.dialogs.alerts == ["Your account cannot open rooms right now."]


async def test_sign_in_reaches_main_and_opens_rooms(app, store, users):
    room_id = await create_room(store, users["alice"], [users["bob"]])
    await store.client(users["alice"]).table("messages").insert(
        {"room_id": room_id, "user_id": users["alice"], "content": "hi bob"}
    )
    await app.start()
    await app.sign_in("bob", PASSWORD)
    assert app.view is View.MAIN
    assert [room.id for room in app.directory.directory.rooms] == [room_id]
    assert app.unread.count_for_room(room_id) == 1

    room = await app.open_room(room_id)
    await app.settle()
    assert [m.content for m in room.view.messages] == ["hi bob"]
    assert app.unread.counts == {}

    await app.close_room()
    assert app.room is None and app.unread.active_room is None


async def test_banned_user_is_held_at_the_ban_screen(app, store, users):
    await store.client(users["root"]).table("user_bans").insert({"user_id": users["bob"], "banned_by": users["root"]})
    await app.start()
    await app.sign_in("bob", PASSWORD)
    assert app.view is View.BANNED
    assert app.bans.state.permanent
    assert await app.open_room("whatever") is None


async def test_ban_while_signed_in_switches_view(app, store, users):
    await app.start()
    await app.sign_in("bob", PASSWORD)
    assert app.view is View.MAIN
    row = (await store.client(users["root"]).table("user_bans").insert(
        {"user_id": users["bob"], "banned_by": users["root"]}
    ))[0]
    await app.settle()
    assert app.view is View.BANNED

    await store.client(users["root"]).table("user_bans").eq("id", row["id"]).update({"is_active": False})
    await app.settle()
    assert app.view is View.MAIN


async def test_sign_out_needs_confirmation(app):
    await app.start()
    await app.sign_in("bob", PASSWORD)
    app.dialogs.confirm_answer = False
    assert not await app.sign_out()
    assert app.view is View.MAIN

    app.dialogs.confirm_answer = True
    assert await app.sign_out()
    assert app.view is View.AUTH
    assert app.directory is None and app.unread is None


async def test_session_survives_restart(store, auth, users, tmp_path):
    storage = SessionStorage(tmp_path / "session.json")
    first = YChat(store, auth, storage, ScriptedDialogs(), ban_poll_interval=3600, auto_refresh=False)
    await first.start()
    await first.sign_in("alice", PASSWORD)
    await first.close()

    second = YChat(store, auth, storage, ScriptedDialogs(), ban_poll_interval=3600, auto_refresh=False)
    assert await second.start() is View.MAIN
    assert second.client.user_id == users["alice"]
    await second.close()


async def test_studio_entry(app):
    await app.start()
    await app.sign_in("alice", PASSWORD)
    with pytest.raises(AccessDenied):
        await app.open_studio()

    await app.sessions.sign_out()
    await app.sign_in("root", PASSWORD)
    console = await app.open_studio()
    assert {p.username for p in console.profiles} == {"alice", "bob", "carol", "root"}
