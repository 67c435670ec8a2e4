"""Vision service clients: document field extraction and face matching.

``HttpVisionService`` talks to the configured vision API. Without one,
``OcrVisionService`` reads documents locally with Tesseract and cannot match
faces, so every submission it sees goes to manual review.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

import httpx

from app.core.config import settings
from app.core.errors import UpstreamError
from app.services.nlp import ExtractedIdentity, parse_date_flexible, parse_identity_fields
from app.services.ocr import extract_text

logger = logging.getLogger(__name__)

SERVICE = "vision"


@dataclass
class FaceMatch:
    face_id: str
    similarity: float


class VisionService(Protocol):
    def extract_fields(
        self, image: bytes, content_type: str, document_type: str | None = None
    ) -> ExtractedIdentity: ...

    def compare_faces(
        self, source: bytes, target: bytes, content_types: tuple[str, str]
    ) -> float | None: ...

    def index_face(self, image: bytes, content_type: str, collection_id: str) -> str | None: ...

    def search_face(
        self, image: bytes, content_type: str, collection_id: str, threshold: float
    ) -> list[FaceMatch]: ...

    def remove_face(self, face_id: str, collection_id: str) -> None: ...


class HttpVisionService:
    """Client for the vision API.

    ``extract``, ``compare`` and ``search`` are pure reads and are retried on
    transport errors and 5xx responses. ``index`` registers a face and is sent
    once. ``delete`` is idempotent and retried like a read.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 15.0,
        max_retries: int = 2,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.transport = transport

    def _client(self) -> httpx.Client:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self.transport,
        )

    def _post(
        self,
        path: str,
        *,
        retry: bool,
        files: Any = None,
        data: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        attempts = 1 + (self.max_retries if retry else 0)
        for attempt in range(1, attempts + 1):
            try:
                with self._client() as client:
                    response = client.post(path, files=files, data=data)
                    response.raise_for_status()
                    body = response.json()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                logger.warning(
                    "Vision %s returned %s (attempt %s/%s)", path, status, attempt, attempts
                )
                if status < 500 or attempt == attempts:
                    # A 5xx on a write may have been applied before failing.
                    outcome = "not_applied" if retry or status < 500 else "unknown"
                    raise UpstreamError(
                        SERVICE, f"{path} returned {status}", outcome=outcome
                    ) from exc
            except httpx.TransportError as exc:
                logger.warning(
                    "Vision %s transport error (attempt %s/%s): %s",
                    path,
                    attempt,
                    attempts,
                    exc,
                )
                if attempt == attempts:
                    outcome = "not_applied" if retry else "unknown"
                    raise UpstreamError(SERVICE, str(exc), outcome=outcome) from exc
            except ValueError as exc:
                raise UpstreamError(SERVICE, f"{path} returned invalid JSON") from exc
            else:
                if not isinstance(body, dict):
                    raise UpstreamError(SERVICE, f"{path} returned a non-object body")
                return body
        raise AssertionError("unreachable")

    def extract_fields(
        self, image: bytes, content_type: str, document_type: str | None = None
    ) -> ExtractedIdentity:
        data = {"document_type": document_type} if document_type else None
        body = self._post(
            "/extract",
            retry=True,
            files={"image": ("document", image, content_type)},
            data=data,
        )
        extracted = parse_identity_fields(str(body.get("text") or ""), document_type)
        fields = body.get("fields") or {}
        # Structured fields from the API beat anything parsed out of raw text.
        for name in ("document_type", "document_number", "full_name", "nationality"):
            if fields.get(name):
                setattr(extracted, name, str(fields[name]))
        for name in ("date_of_birth", "expiry_date"):
            if fields.get(name):
                setattr(extracted, name, _as_date(fields[name]))
        return extracted

    def compare_faces(
        self, source: bytes, target: bytes, content_types: tuple[str, str]
    ) -> float | None:
        body = self._post(
            "/faces/compare",
            retry=True,
            files={
                "source": ("source", source, content_types[0]),
                "target": ("target", target, content_types[1]),
            },
        )
        similarity = body.get("similarity")
        if similarity is None:
            return None
        return max(0.0, min(100.0, float(similarity)))

    def index_face(self, image: bytes, content_type: str, collection_id: str) -> str | None:
        body = self._post(
            "/faces/index",
            retry=False,
            files={"image": ("face", image, content_type)},
            data={"collection_id": collection_id},
        )
        face_id = body.get("face_id")
        return str(face_id) if face_id else None

    def search_face(
        self, image: bytes, content_type: str, collection_id: str, threshold: float
    ) -> list[FaceMatch]:
        body = self._post(
            "/faces/search",
            retry=True,
            files={"image": ("face", image, content_type)},
            data={"collection_id": collection_id, "threshold": str(threshold)},
        )
        matches = []
        for item in body.get("matches") or []:
            if not isinstance(item, dict) or not item.get("face_id"):
                continue
            similarity = max(0.0, min(100.0, float(item.get("similarity") or 0.0)))
            matches.append(FaceMatch(face_id=str(item["face_id"]), similarity=similarity))
        return sorted(matches, key=lambda match: match.similarity, reverse=True)

    def remove_face(self, face_id: str, collection_id: str) -> None:
        self._post(
            "/faces/delete",
            retry=True,
            data={"collection_id": collection_id, "face_id": face_id},
        )


class OcrVisionService:
    """Offline fallback: Tesseract text extraction, no face matching."""

    def extract_fields(
        self, image: bytes, content_type: str, document_type: str | None = None
    ) -> ExtractedIdentity:
        result = extract_text(image, content_type)
        if result.is_empty:
            raise UpstreamError(
                SERVICE, "; ".join(result.warnings) or "no text could be read"
            )
        return parse_identity_fields(result.text, document_type)

    def compare_faces(
        self, source: bytes, target: bytes, content_types: tuple[str, str]
    ) -> float | None:
        raise UpstreamError(SERVICE, "face comparison needs a vision API")

    def index_face(self, image: bytes, content_type: str, collection_id: str) -> str | None:
        raise UpstreamError(SERVICE, "face indexing needs a vision API")

    def search_face(
        self, image: bytes, content_type: str, collection_id: str, threshold: float
    ) -> list[FaceMatch]:
        raise UpstreamError(SERVICE, "face search needs a vision API")

    def remove_face(self, face_id: str, collection_id: str) -> None:
        raise UpstreamError(SERVICE, "face removal needs a vision API")


def _as_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    return parse_date_flexible(str(value))


def get_vision_service() -> VisionService:
    if settings.VISION_API_BASE_URL:
        return HttpVisionService(
            base_url=settings.VISION_API_BASE_URL,
            api_key=settings.VISION_API_KEY,
            timeout=settings.VISION_TIMEOUT_SECONDS,
            max_retries=settings.VISION_MAX_RETRIES,
        )
    return OcrVisionService()
