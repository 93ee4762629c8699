import asyncio
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("STORE_KEY", "test-store-key-with-enough-length-for-hs256")
os.environ.setdefault("CLOUDINARY_CLOUD_NAME", "demo-cloud")
os.environ.setdefault("CLOUDINARY_UPLOAD_PRESET", "unsigned-preset")
os.environ.setdefault("HUGGINGFACE_API_KEY", "hf_test_key")

import pytest
from passlib.context import CryptContext
from sqlalchemy import update

from ychat import auth as auth_module
from ychat.auth import AuthService
from ychat.db import init_db, make_engine, make_session_factory
from ychat.dialogs import Dialogs
from ychat.models import Profile
from ychat.store import Store

PASSWORD = "password123"


class ScriptedDialogs(Dialogs):
    """Records alerts and answers confirms/prompts from a script."""

    def __init__(self, confirm: bool = True, answers=None):
        self.alerts = []
        self.confirms = []
        self.confirm_answer = confirm
        self.answers = list(answers or [])

    def alert(self, message):
        self.alerts.append(message)

    def confirm(self, message):
        self.confirms.append(message)
        return self.confirm_answer

    def prompt(self, message, default=None):
        return self.answers.pop(0) if self.answers else None


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(auth_module, "pwd_context", CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))


@pytest.fixture
async def store(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'ychat.db'}")
    await init_db(engine)
    yield Store(make_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def auth(store):
    return AuthService(store.session_factory)


async def make_admin(store, user_id):
    async with store.session_factory() as db:
        await db.execute(update(Profile).where(Profile.id == user_id).values(is_admin=True))
        await db.commit()


@pytest.fixture
async def users(auth, store):
    ids = {}
    for name in ("alice", "bob", "carol", "root"):
        ids[name] = (await auth.sign_up(name, PASSWORD)).user_id
    await make_admin(store, ids["root"])
    return ids


@pytest.fixture
def dialogs():
    return ScriptedDialogs()


async def create_room(store, creator, members, is_group=True, name="room"):
    client = store.client(creator)
    room = (await client.table("rooms").insert({"name": name, "is_group": is_group, "created_by": creator}))[0]
    await client.table("room_participants").insert([{"room_id": room["id"], "user_id": uid} for uid in [creator, *members]])
    return room["id"]


async def settle(*components, rounds=20):
    for _ in range(rounds):
        tasks = [task for component in components for task in component.pending()]
        if not tasks:
            return
        await asyncio.gather(*tasks, return_exceptions=True)
