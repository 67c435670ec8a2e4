"""Blob storage for uploaded document photos and selfies.

Objects live under ``private/{subject_id}/{kind}/{uuid}.{ext}``; a subject can
only write below its own prefix. Reads by other parties go through
short-lived signed tokens served by the download route.
"""

import logging
import uuid
from collections.abc import Collection
from pathlib import Path
from typing import Protocol
from urllib.parse import urlencode

import jwt

from app.core.config import settings
from app.core.errors import UpstreamError, ValidationError
from app.core.security import create_blob_token, decode_blob_token
from app.models import ImageKind

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

EXTENSION_CONTENT_TYPES = {ext: ctype for ctype, ext in ALLOWED_CONTENT_TYPES.items()}
IMAGE_CONTENT_TYPES = {ctype for ctype in ALLOWED_CONTENT_TYPES if ctype.startswith("image/")}


class BlobStore(Protocol):
    def put(self, key: str, content: bytes, content_type: str) -> None: ...

    def read(self, key: str) -> bytes: ...

    def signed_url(self, key: str, ttl_seconds: int | None = None) -> str: ...

    def verify_signed_token(self, token: str) -> str: ...


def subject_prefix(subject_id: str) -> str:
    return f"private/{subject_id}/"


def build_key(subject_id: str, kind: ImageKind, content_type: str) -> str:
    extension = ALLOWED_CONTENT_TYPES[content_type]
    return f"{subject_prefix(subject_id)}{kind.value}/{uuid.uuid4()}.{extension}"


def content_type_for_key(key: str) -> str:
    extension = key.rsplit(".", 1)[-1].lower()
    return EXTENSION_CONTENT_TYPES.get(extension, "application/octet-stream")


def check_owned_key(subject_id: str, key: str, field: str) -> None:
    """Reject image references outside the subject's own prefix."""
    if not key.startswith(subject_prefix(subject_id)) or ".." in key.split("/"):
        raise ValidationError("Image reference is not owned by the caller", field=field)


def check_upload(
    content_type: str | None, content: bytes, allowed: Collection[str] = ALLOWED_CONTENT_TYPES
) -> str:
    """Validate an uploaded file and return its content type."""
    if content_type is None or content_type not in allowed:
        labels = ", ".join(sorted(ALLOWED_CONTENT_TYPES[ctype].upper() for ctype in allowed))
        raise ValidationError(f"Unsupported file type. Allowed: {labels}", field="file")
    if not content:
        raise ValidationError("Uploaded file is empty", field="file")
    limit_mb = settings.MAX_UPLOAD_SIZE_MB
    if len(content) > limit_mb * 1024 * 1024:
        raise ValidationError(
            f"File exceeds the {limit_mb} MB limit",
            field="file",
            details={"max_size_mb": limit_mb},
        )
    return content_type


class LocalBlobStore:
    """Filesystem-backed store rooted at ``UPLOAD_ROOT``."""

    def __init__(self, root: Path, download_path: str) -> None:
        self.root = root
        self.download_path = download_path

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValidationError("Invalid blob key", field="key")
        return path

    def put(self, key: str, content: bytes, content_type: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as exc:
            logger.exception("Failed to write blob %s", key)
            raise UpstreamError("blob_store", str(exc), outcome="unknown") from exc
        logger.info("Stored blob %s (%s, %s bytes)", key, content_type, len(content))

    def read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise UpstreamError("blob_store", f"{key} not found") from exc
        except OSError as exc:
            logger.exception("Failed to read blob %s", key)
            raise UpstreamError("blob_store", str(exc)) from exc

    def signed_url(self, key: str, ttl_seconds: int | None = None) -> str:
        ttl = ttl_seconds or settings.SIGNED_URL_TTL_SECONDS
        token = create_blob_token(key, ttl)
        return f"{self.download_path}?{urlencode({'token': token})}"

    def verify_signed_token(self, token: str) -> str:
        try:
            return decode_blob_token(token)
        except jwt.ExpiredSignatureError as exc:
            raise ValidationError("Download link has expired", field="token") from exc
        except jwt.InvalidTokenError as exc:
            raise ValidationError("Invalid download token", field="token") from exc


def get_blob_store() -> BlobStore:
    return LocalBlobStore(
        root=settings.UPLOAD_ROOT,
        download_path=f"{settings.API_V1_STR}/files/download",
    )
