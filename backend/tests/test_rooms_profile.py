import httpx

from conftest import ScriptedDialogs, create_room, settle
from ychat.media import MediaUploader
from ychat.profile import ProfileEditor
from ychat.rooms import RoomDirectory


async def test_directory_lists_my_rooms_and_other_people(store, users, dialogs):
    await create_room(store, users["alice"], [users["bob"]], name="ab")
    await create_room(store, users["carol"], [users["root"]], name="cr")
    directory = RoomDirectory(store.client(users["alice"]), dialogs)
    listing = await directory.start()

    assert [room.name for room in listing.rooms] == ["ab"]
    assert [p.username for p in listing.profiles] == ["bob", "carol", "root"]
    await directory.close()


async def test_create_group_room(store, users, dialogs):
    directory = RoomDirectory(store.client(users["alice"]), dialogs)
    await directory.start()

    assert await directory.create_group_room("  ", [users["bob"]]) is None
    assert await directory.create_group_room("team", []) is None
    assert len(dialogs.alerts) == 2

    room_id = await directory.create_group_room(" team ", [users["bob"], users["carol"]])
    await settle(directory)
    assert [room.id for room in directory.directory.groups] == [room_id]
    assert directory.directory.groups[0].name == "team"
    members = await store.client(users["alice"]).table("room_participants").eq("room_id", room_id).execute()
    assert {m["user_id"] for m in members} == {users["alice"], users["bob"], users["carol"]}
    await directory.close()


async def test_being_added_to_a_room_updates_the_directory(store, users, dialogs):
    directory = RoomDirectory(store.client(users["bob"]), dialogs)
    await directory.start()
    room_id = await create_room(store, users["alice"], [users["bob"]], name="surprise")
    await settle(directory)
    assert [room.id for room in directory.directory.rooms] == [room_id]
    await directory.close()


async def test_personal_room_is_reused(store, users, dialogs):
    await store.client(users["bob"]).table("profiles").eq("id", users["bob"]).update({"nickname": "Bobby"})
    directory = RoomDirectory(store.client(users["alice"]), dialogs)
    await directory.start()

    room_id = await directory.open_personal_room(users["bob"])
    assert room_id is not None
    assert await directory.open_personal_room(users["bob"]) == room_id
    await settle(directory)
    room = directory.directory.rooms[0]
    assert room.name == "Bobby" and not room.is_group
    assert await store.client(users["bob"]).rpc("get_personal_room", other_user_id=users["alice"]) == [{"room_id": room_id}]
    await directory.close()


async def test_personal_room_with_unknown_user(store, users, dialogs):
    directory = RoomDirectory(store.client(users["alice"]), dialogs)
    assert await directory.open_personal_room("no-such-user") is None
    assert dialogs.alerts == ["Could not start the chat."]


def cdn(handler):
    return MediaUploader("demo-cloud", "unsigned-preset", transport=httpx.MockTransport(handler))


async def test_profile_editor_saves_nickname_and_avatar(store, users):
    uploader = cdn(lambda request: httpx.Response(200, json={"secure_url": "https://cdn/x.png", "public_id": "avatars/x"}))
    dialogs = ScriptedDialogs()
    editor = ProfileEditor(store.client(users["alice"]), uploader, dialogs)
    profile = await editor.load()
    assert profile.username == "alice"
    assert editor.avatar_url is None

    assert await editor.upload_avatar("x.png", b"img")
    assert editor.avatar_url == "https://res.cloudinary.com/demo-cloud/image/upload/w_100,h_100,c_fill,r_max/avatars/x"
    assert await editor.save("Ali")
    assert dialogs.alerts == ["Profile updated!"]

    row = await store.client(users["bob"]).table("profiles").eq("id", users["alice"]).single()
    assert row["nickname"] == "Ali"
    assert row["avatar_public_id"] == "avatars/x"
    assert row["username"] == "alice"


async def test_profile_editor_upload_failure(store, users):
    dialogs = ScriptedDialogs()
    editor = ProfileEditor(store.client(users["alice"]), cdn(lambda request: httpx.Response(200, json={})), dialogs)
    await editor.load()
    assert not await editor.upload_avatar("x.png", b"img")
    assert dialogs.alerts == ["Avatar upload failed."]
    assert editor.avatar_public_id == ""
