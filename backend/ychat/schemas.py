from pydantic import BaseModel
from datetime import datetime
from typing import Any


class Session(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: int
    user_id: str
    email: str
    username: str


class ProfileOut(BaseModel):
    id: str
    username: str
    nickname: str | None = None
    avatar_public_id: str | None = None
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        return self.nickname or self.username

    class Config:
        from_attributes = True


class RoomOut(BaseModel):
    id: str
    name: str | None = None
    is_group: bool
    created_by: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ReadStatusOut(BaseModel):
    message_id: int
    user_id: str
    read_at: datetime | None = None


class MessageOut(BaseModel):
    id: int
    room_id: str
    user_id: str
    content: str | None = None
    image_url: str | None = None
    is_deleted: bool = False
    is_locked: bool = False
    created_at: datetime
    profile: ProfileOut | None = None
    read_status: list[ReadStatusOut] = []

    class Config:
        from_attributes = True

    def is_unread_by(self, reader_id: str) -> bool:
        if self.user_id == reader_id:
            return False
        return not any(r.user_id == reader_id for r in self.read_status)


class UserBanOut(BaseModel):
    id: int
    user_id: str
    banned_by: str | None = None
    reason: str | None = None
    expires_at: datetime | None = None
    is_active: bool
    created_at: datetime


class StudioRoom(RoomOut):
    message_count: int = 0


class StudioProfile(ProfileOut):
    is_banned: bool | None = False


class UploadResult(BaseModel):
    secure_url: str
    public_id: str


class ChatIn(BaseModel):
    message: str | None = None
    # Anything that is not a known preset name falls back to the default preset.
    model: Any = None


class ChatOut(BaseModel):
    response: str
    model: str
    timestamp: datetime
