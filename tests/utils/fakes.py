"""In-memory stand-ins for the vision service."""

from dataclasses import dataclass, field
from datetime import date

from app.core.errors import UpstreamError
from app.services.nlp import ExtractedIdentity
from app.services.vision import FaceMatch


@dataclass
class FakeVisionService:
    extracted: ExtractedIdentity = field(default_factory=ExtractedIdentity)
    similarity: float | None = 95.0
    face_id: str | None = "face-0001"
    # None means "the indexed face at ``similarity``".
    matches: list[FaceMatch] | None = None
    fail_extract: bool = False
    fail_compare: bool = False
    fail_index: bool = False
    fail_search: bool = False
    fail_remove: bool = False
    removed: list[str] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)

    def extract_fields(
        self, image: bytes, content_type: str, document_type: str | None = None
    ) -> ExtractedIdentity:
        self.calls.append("extract_fields")
        if self.fail_extract:
            raise UpstreamError("vision", "extract unavailable")
        return self.extracted

    def compare_faces(
        self, source: bytes, target: bytes, content_types: tuple[str, str]
    ) -> float | None:
        self.calls.append("compare_faces")
        if self.fail_compare:
            raise UpstreamError("vision", "compare unavailable")
        return self.similarity

    def index_face(self, image: bytes, content_type: str, collection_id: str) -> str | None:
        self.calls.append("index_face")
        if self.fail_index:
            raise UpstreamError("vision", "index unavailable", outcome="unknown")
        return self.face_id

    def search_face(
        self, image: bytes, content_type: str, collection_id: str, threshold: float
    ) -> list[FaceMatch]:
        self.calls.append("search_face")
        if self.fail_search:
            raise UpstreamError("vision", "search unavailable")
        if self.matches is not None:
            return self.matches
        if self.face_id is None or self.similarity is None:
            return []
        return [FaceMatch(face_id=self.face_id, similarity=self.similarity)]

    def remove_face(self, face_id: str, collection_id: str) -> None:
        self.calls.append("remove_face")
        if self.fail_remove:
            raise UpstreamError("vision", "remove unavailable")
        self.removed.append(face_id)


def nid_identity() -> ExtractedIdentity:
    return ExtractedIdentity(
        document_type="nid",
        document_number="NID123",
        full_name="John Doe",
        date_of_birth=date(1990, 3, 15),
        nationality="Papua New Guinea",
    )
