"""Image blob store for message attachments.

Images are written to ``{upload_dir}/{public_id}`` and served back under
``{public_base_url}/{public_id}``. The rest of the service only ever sees the
resulting ImageRef (url + publicId).
"""
import logging
import uuid
from pathlib import Path
from typing import NamedTuple, Optional

from app.chat.schemas import ImageRef
from app.errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}


class ImageUpload(NamedTuple):
    """An uploaded file that has not been written anywhere yet."""
    filename: str
    content: bytes
    content_type: Optional[str]


class ImageStore:
    """Stores uploaded images on local disk."""

    def __init__(
        self,
        upload_dir: str = "uploads",
        public_base_url: str = "/uploads",
        max_bytes: int = 10 * 1024 * 1024,
    ) -> None:
        self._upload_dir = Path(upload_dir)
        self._public_base_url = public_base_url.rstrip("/")
        self._max_bytes = max_bytes
        self._upload_dir.mkdir(parents=True, exist_ok=True)

    @property
    def upload_dir(self) -> Path:
        return self._upload_dir

    def check(self, content: bytes, content_type: Optional[str]) -> None:
        """Raise ValidationError unless the upload is an acceptable image."""
        if not content_type or not content_type.startswith("image/"):
            raise ValidationError("Only image uploads are supported")
        if len(content) > self._max_bytes:
            raise ValidationError(
                f"Image exceeds the {self._max_bytes // (1024 * 1024)}MB limit"
            )

    def save(self, filename: str, content: bytes, content_type: Optional[str]) -> ImageRef:
        """Persist one image and return its reference."""
        self.check(content, content_type)
        ext = Path(filename or "").suffix.lower().lstrip(".")
        if ext not in ALLOWED_EXTENSIONS:
            ext = content_type.split("/", 1)[1].split("+")[0] or "bin"
        public_id = f"{uuid.uuid4().hex}.{ext}"

        (self._upload_dir / public_id).write_bytes(content)
        logger.info("Stored image %s (%d bytes)", public_id, len(content))
        return ImageRef(url=f"{self._public_base_url}/{public_id}", publicId=public_id)

    def delete(self, public_id: str) -> None:
        (self._upload_dir / public_id).unlink(missing_ok=True)
        logger.info("Removed image %s", public_id)
