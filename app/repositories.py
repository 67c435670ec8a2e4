"""Persistence for applications, credential holders and audit events.

The workflow engine talks to the store only through the two protocols below.
Writes are conditional: application updates carry the version the caller
read and fail with ``RecordConflictError`` when another writer got there
first; inserts fail the same way on a uniqueness violation.
"""

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Protocol, TypeVar

from sqlalchemy import exists, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlmodel import Session, col, delete, func, select

from app.core.errors import RecordConflictError, UpstreamError
from app.models import (
    ApplicationAuditEvent,
    ApplicationStatus,
    CredentialHolder,
    IdentityApplication,
    get_datetime_utc,
)

logger = logging.getLogger(__name__)

STORE = "document_store"
READ_ATTEMPTS = 2

T = TypeVar("T")


class ApplicationRepository(Protocol):
    def get(self, application_id: str) -> IdentityApplication | None: ...

    def get_for_subject(
        self, subject_id: str, credential_type: str
    ) -> IdentityApplication | None: ...

    def get_by_uin(self, uin: str) -> IdentityApplication | None: ...

    def list_by_status(
        self, statuses: Sequence[str], *, skip: int = 0, limit: int = 100
    ) -> tuple[list[IdentityApplication], int]: ...

    def list_unissued_approvals(self) -> list[IdentityApplication]: ...

    def create(
        self,
        application: IdentityApplication,
        event: ApplicationAuditEvent | None = None,
    ) -> IdentityApplication: ...

    def update(
        self,
        application_id: str,
        *,
        expected_version: int,
        changes: dict[str, Any],
        event: ApplicationAuditEvent | None = None,
    ) -> IdentityApplication: ...

    def delete(self, application_id: str) -> None: ...

    def add_event(self, event: ApplicationAuditEvent) -> None: ...

    def list_events(self, application_id: str) -> list[ApplicationAuditEvent]: ...


class HolderRepository(Protocol):
    def get(self, uin: str) -> CredentialHolder | None: ...

    def get_for_subject(self, subject_id: str) -> CredentialHolder | None: ...

    def create(
        self,
        holder: CredentialHolder,
        event: ApplicationAuditEvent | None = None,
    ) -> CredentialHolder: ...

    def update_status(
        self,
        uin: str,
        *,
        expected_status: str,
        status: str,
        reason: str | None,
    ) -> CredentialHolder: ...


class _SqlRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _read(self, operation: str, fn: Callable[[], T]) -> T:
        """Run an idempotent read, retrying once on a connectivity failure."""
        for attempt in range(1, READ_ATTEMPTS + 1):
            try:
                return fn()
            except DBAPIError as exc:
                self.session.rollback()
                logger.warning(
                    "Store read %s failed (attempt %s/%s): %s",
                    operation,
                    attempt,
                    READ_ATTEMPTS,
                    exc,
                )
                if attempt == READ_ATTEMPTS:
                    raise UpstreamError(
                        STORE, f"{operation} failed", outcome="not_applied"
                    ) from exc
        raise AssertionError("unreachable")

    @contextmanager
    def _write(self, operation: str, record: str, key: str) -> Iterator[None]:
        """Commit a write; map integrity conflicts and connectivity failures.

        Writes are never retried here: a dropped connection after the
        statement was sent leaves the outcome unknown.
        """
        try:
            yield
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.info("Store %s on %s '%s' conflicted: %s", operation, record, key, exc.orig)
            raise RecordConflictError(record, key, "unique_violation") from exc
        except DBAPIError as exc:
            self.session.rollback()
            logger.exception("Store %s on %s '%s' failed", operation, record, key)
            raise UpstreamError(STORE, f"{operation} failed", outcome="unknown") from exc


class SqlApplicationRepository(_SqlRepository):
    def get(self, application_id: str) -> IdentityApplication | None:
        return self._read(
            "get_application",
            lambda: self.session.get(
                IdentityApplication, application_id, populate_existing=True
            ),
        )

    def get_for_subject(
        self, subject_id: str, credential_type: str
    ) -> IdentityApplication | None:
        statement = select(IdentityApplication).where(
            IdentityApplication.subject_id == subject_id,
            IdentityApplication.credential_type == credential_type,
        )
        return self._read(
            "get_application_for_subject",
            lambda: self.session.exec(
                statement.execution_options(populate_existing=True)
            ).first(),
        )

    def get_by_uin(self, uin: str) -> IdentityApplication | None:
        statement = select(IdentityApplication).where(IdentityApplication.uin == uin)
        return self._read(
            "get_application_by_uin", lambda: self.session.exec(statement).first()
        )

    def list_by_status(
        self, statuses: Sequence[str], *, skip: int = 0, limit: int = 100
    ) -> tuple[list[IdentityApplication], int]:
        count_statement = (
            select(func.count())
            .select_from(IdentityApplication)
            .where(col(IdentityApplication.status).in_(statuses))
        )
        statement = (
            select(IdentityApplication)
            .where(col(IdentityApplication.status).in_(statuses))
            .order_by(
                col(IdentityApplication.submitted_at).asc(),
                col(IdentityApplication.application_id).asc(),
            )
            .offset(skip)
            .limit(limit)
        )

        def _run() -> tuple[list[IdentityApplication], int]:
            count = self.session.exec(count_statement).one()
            rows = self.session.exec(statement).all()
            return list(rows), count

        return self._read("list_applications", _run)

    def list_unissued_approvals(self) -> list[IdentityApplication]:
        holder_exists = exists().where(
            col(CredentialHolder.uin) == col(IdentityApplication.uin)
        )
        statement = (
            select(IdentityApplication)
            .where(IdentityApplication.status == ApplicationStatus.APPROVED.value)
            .where(
                col(IdentityApplication.issuance_pending).is_(True) | ~holder_exists
            )
            .order_by(col(IdentityApplication.issued_at).asc())
        )
        return self._read(
            "list_unissued_approvals",
            lambda: list(self.session.exec(statement).all()),
        )

    def create(
        self,
        application: IdentityApplication,
        event: ApplicationAuditEvent | None = None,
    ) -> IdentityApplication:
        with self._write("create", "IdentityApplication", application.application_id):
            self.session.add(application)
            # Flush the parent row first; audit events reference it.
            self.session.flush()
            if event is not None:
                self.session.add(event)
        self.session.refresh(application)
        return application

    def update(
        self,
        application_id: str,
        *,
        expected_version: int,
        changes: dict[str, Any],
        event: ApplicationAuditEvent | None = None,
    ) -> IdentityApplication:
        statement = (
            update(IdentityApplication)
            .where(col(IdentityApplication.application_id) == application_id)
            .where(col(IdentityApplication.version) == expected_version)
            .values(
                **changes,
                version=expected_version + 1,
                updated_at=get_datetime_utc(),
            )
        )
        with self._write("update", "IdentityApplication", application_id):
            result = self.session.exec(statement)  # type: ignore[call-overload]
            if result.rowcount != 1:
                self.session.rollback()
                raise RecordConflictError(
                    "IdentityApplication", application_id, "stale_version"
                )
            if event is not None:
                self.session.add(event)
        application = self.get(application_id)
        if application is None:
            raise RecordConflictError("IdentityApplication", application_id, "missing")
        return application

    def delete(self, application_id: str) -> None:
        with self._write("delete", "IdentityApplication", application_id):
            self.session.exec(  # type: ignore[call-overload]
                delete(ApplicationAuditEvent).where(
                    col(ApplicationAuditEvent.application_id) == application_id
                )
            )
            self.session.exec(  # type: ignore[call-overload]
                delete(IdentityApplication).where(
                    col(IdentityApplication.application_id) == application_id
                )
            )

    def add_event(self, event: ApplicationAuditEvent) -> None:
        with self._write("add_event", "ApplicationAuditEvent", event.application_id):
            self.session.add(event)

    def list_events(self, application_id: str) -> list[ApplicationAuditEvent]:
        statement = (
            select(ApplicationAuditEvent)
            .where(ApplicationAuditEvent.application_id == application_id)
            .order_by(col(ApplicationAuditEvent.created_at).desc())
        )
        return self._read(
            "list_audit_events", lambda: list(self.session.exec(statement).all())
        )


class SqlHolderRepository(_SqlRepository):
    def get(self, uin: str) -> CredentialHolder | None:
        return self._read(
            "get_holder",
            lambda: self.session.get(CredentialHolder, uin, populate_existing=True),
        )

    def get_for_subject(self, subject_id: str) -> CredentialHolder | None:
        statement = (
            select(CredentialHolder)
            .where(CredentialHolder.subject_id == subject_id)
            .order_by(col(CredentialHolder.issued_at).desc())
        )
        return self._read(
            "get_holder_for_subject", lambda: self.session.exec(statement).first()
        )

    def create(
        self,
        holder: CredentialHolder,
        event: ApplicationAuditEvent | None = None,
    ) -> CredentialHolder:
        with self._write("create", "CredentialHolder", holder.uin):
            self.session.add(holder)
            self.session.flush()
            if event is not None:
                self.session.add(event)
        self.session.refresh(holder)
        return holder

    def update_status(
        self,
        uin: str,
        *,
        expected_status: str,
        status: str,
        reason: str | None,
    ) -> CredentialHolder:
        statement = (
            update(CredentialHolder)
            .where(col(CredentialHolder.uin) == uin)
            .where(col(CredentialHolder.status) == expected_status)
            .values(status=status, status_reason=reason, updated_at=get_datetime_utc())
        )
        with self._write("update_status", "CredentialHolder", uin):
            result = self.session.exec(statement)  # type: ignore[call-overload]
            if result.rowcount != 1:
                self.session.rollback()
                raise RecordConflictError("CredentialHolder", uin, "stale_status")
        holder = self.get(uin)
        if holder is None:
            raise RecordConflictError("CredentialHolder", uin, "missing")
        return holder
