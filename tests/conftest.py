import os

# Tests run against a shared in-memory SQLite database.
os.environ["DATABASE_URL"] = "sqlite://"

from collections.abc import Callable, Generator  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest  # noqa: E402
from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, delete  # noqa: E402

from app.core.config import settings  # noqa: E402
from app.core.db import engine, init_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import (  # noqa: E402
    ApplicationAuditEvent,
    CredentialHolder,
    IdentityApplication,
    ImageKind,
)
from app.repositories import SqlApplicationRepository, SqlHolderRepository  # noqa: E402
from app.services.blob import LocalBlobStore, build_key, get_blob_store  # noqa: E402
from app.services.vision import get_vision_service  # noqa: E402
from app.services.workflow import ApplicationWorkflow  # noqa: E402
from tests.utils.fakes import FakeVisionService  # noqa: E402
from tests.utils.utils import token_headers  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(scope="session")
def db() -> Generator[Session, None, None]:
    # Ensure schema is up to date before any test touches the DB.
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    command.upgrade(alembic_cfg, "head")

    with Session(engine) as session:
        init_db(session)
        yield session


@pytest.fixture(autouse=True)
def clean_tables(db: Session) -> Generator[None, None, None]:
    yield
    db.rollback()
    db.exec(delete(ApplicationAuditEvent))  # type: ignore[call-overload]
    db.exec(delete(CredentialHolder))  # type: ignore[call-overload]
    db.exec(delete(IdentityApplication))  # type: ignore[call-overload]
    db.commit()
    db.expunge_all()


@pytest.fixture
def vision() -> FakeVisionService:
    return FakeVisionService()


@pytest.fixture
def blob_store(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(
        root=tmp_path / "uploads",
        download_path=f"{settings.API_V1_STR}/files/download",
    )


@pytest.fixture
def store_image(blob_store: LocalBlobStore) -> Callable[[str, ImageKind], str]:
    def _store(subject_id: str, kind: ImageKind) -> str:
        key = build_key(subject_id, kind, "image/png")
        blob_store.put(key, b"\x89PNG fake image bytes", "image/png")
        return key

    return _store


@pytest.fixture
def workflow(
    db: Session, vision: FakeVisionService, blob_store: LocalBlobStore
) -> ApplicationWorkflow:
    return ApplicationWorkflow(
        SqlApplicationRepository(db),
        SqlHolderRepository(db),
        vision=vision,
        blobs=blob_store,
    )


@pytest.fixture
def client(
    db: Session, vision: FakeVisionService, blob_store: LocalBlobStore
) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_vision_service] = lambda: vision
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def citizen_token_headers() -> dict[str, str]:
    return token_headers("citizen-u1", ["citizen"])


@pytest.fixture
def officer_token_headers() -> dict[str, str]:
    return token_headers("officer1", ["DICT_OFFICER"])


@pytest.fixture
def admin_token_headers() -> dict[str, str]:
    return token_headers("admin1", ["ADMIN"])
