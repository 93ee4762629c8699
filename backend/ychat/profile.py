import logging

from .dialogs import Dialogs
from .errors import StoreError, UploadError
from .media import MediaUploader
from .schemas import ProfileOut
from .store import Client

logger = logging.getLogger(__name__)


class ProfileEditor:
    def __init__(self, client: Client, uploader: MediaUploader, dialogs: Dialogs | None = None) -> None:
        self.client = client
        self.uploader = uploader
        self.dialogs = dialogs or Dialogs()
        self.profile: ProfileOut | None = None
        self.nickname = ""
        self.avatar_public_id = ""

    async def load(self) -> ProfileOut | None:
        try:
            row = await (
                self.client.table("profiles")
                .select("id", "username", "nickname", "avatar_public_id")
                .eq("id", self.client.user_id)
                .single()
            )
        except StoreError as exc:
            logger.warning("Profile load failed: %s", exc.message)
            return None
        self.profile = ProfileOut.model_validate(row)
        self.nickname = self.profile.nickname or ""
        self.avatar_public_id = self.profile.avatar_public_id or ""
        return self.profile

    @property
    def avatar_url(self) -> str | None:
        return self.uploader.avatar_url(self.avatar_public_id, size=100)

    async def upload_avatar(self, filename: str, content: bytes, content_type: str = "image/png") -> bool:
        try:
            result = await self.uploader.upload(filename, content, content_type)
        except UploadError as exc:
            logger.error("Upload error: %s", exc.message)
            self.dialogs.alert("Avatar upload failed.")
            return False
        # The CDN identifier is what gets persisted, not the URL.
        self.avatar_public_id = result.public_id
        return True

    async def save(self, nickname: str | None = None) -> bool:
        if nickname is not None:
            self.nickname = nickname
        updates = {
            "id": self.client.user_id,
            "nickname": self.nickname or None,
            "avatar_public_id": self.avatar_public_id or None,
        }
        try:
            row = await self.client.table("profiles").upsert(updates)
        except StoreError as exc:
            self.dialogs.alert(exc.message)
            return False
        self.profile = ProfileOut.model_validate(row)
        self.dialogs.alert("Profile updated!")
        return True
