import logging
import httpx
from .config import settings
from .errors import UploadError
from .schemas import UploadResult

logger = logging.getLogger(__name__)


class MediaUploader:
    """Unsigned uploads to the image CDN."""

    def __init__(
        self,
        cloud_name: str | None = None,
        upload_preset: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cloud_name = cloud_name or settings.cloudinary_cloud_name
        self.upload_preset = upload_preset or settings.cloudinary_upload_preset
        self.transport = transport

    @property
    def upload_url(self) -> str:
        return f"{settings.upload_base_url}/{self.cloud_name}/image/upload"

    async def upload(self, filename: str, content: bytes, content_type: str = "application/octet-stream") -> UploadResult:
        files = {"file": (filename, content, content_type)}
        data = {"upload_preset": self.upload_preset}
        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self.transport) as client:
                r = await client.post(self.upload_url, files=files, data=data)
            r.raise_for_status()
            body = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Upload of %s failed: %s", filename, exc)
            raise UploadError(f"Image upload failed: {exc}") from exc
        if not body.get("secure_url") or not body.get("public_id"):
            raise UploadError("Image upload returned no URL")
        return UploadResult(secure_url=body["secure_url"], public_id=body["public_id"])

    def avatar_url(self, public_id: str | None, size: int = 40) -> str | None:
        if not public_id:
            return None
        return f"{settings.cdn_base_url}/{self.cloud_name}/image/upload/w_{size},h_{size},c_fill,r_max/{public_id}"
