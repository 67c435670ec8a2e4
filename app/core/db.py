import logging

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine, select

from app.core.config import settings

logger = logging.getLogger(__name__)


def _build_engine(uri: str):  # type: ignore[no-untyped-def]
    if uri.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads.
        return create_engine(
            uri,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(uri, pool_pre_ping=True, pool_timeout=10)


engine = _build_engine(settings.SQLALCHEMY_DATABASE_URI)


def init_db(session: Session) -> None:
    # Tables are created with Alembic migrations; this only checks connectivity.
    session.exec(select(1)).one()
    logger.info("Database reachable at %s", engine.url.render_as_string(hide_password=True))

