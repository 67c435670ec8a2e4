"""Typed errors raised by the application workflow.

Every failure that reaches a route handler is one of these. The API layer
renders them as ``{"status": "error", "code", "message", "details"}`` with
the error's HTTP status code; nothing else is allowed to escape to the
client.

Usage:
    from app.core.errors import InvalidStateError

    raise InvalidStateError(
        "Application is already rejected", current_status="rejected"
    )
"""

from typing import Any, Literal

UpstreamOutcome = Literal["not_applied", "unknown", "partial"]


class WorkflowError(Exception):
    """Base class for all workflow errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g. "INVALID_STATE")
        status_code: HTTP status code to return
        details: Additional context for the caller
    """

    headers: dict[str, str] | None = None

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "error",
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(WorkflowError):
    """Malformed or missing input. The caller can correct it and retry."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        _details = details or {}
        if field:
            _details["field"] = field
        super().__init__(message, "VALIDATION_ERROR", status_code=422, details=_details)


class AuthenticationError(WorkflowError):
    """The request carries no bearer token."""

    headers = {"WWW-Authenticate": "Bearer"}

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message, "NOT_AUTHENTICATED", status_code=401)


class AuthorizationError(WorkflowError):
    """The principal lacks the role required for the operation."""

    def __init__(
        self,
        message: str = "The user doesn't have enough privileges",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "ACCESS_DENIED", status_code=403, details=details)


class InvalidStateError(WorkflowError):
    """The requested transition is illegal from the record's current state."""

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        details: dict[str, Any] | None = None,
        code: str = "INVALID_STATE",
        status_code: int = 409,
    ) -> None:
        _details = details or {}
        if current_status is not None:
            _details["current_status"] = current_status
        self.current_status = current_status
        super().__init__(message, code, status_code=status_code, details=_details)


class ApplicationNotFoundError(InvalidStateError):
    def __init__(
        self, application_id: str | None = None, *, subject_id: str | None = None
    ) -> None:
        if application_id is not None:
            message = f"Application '{application_id}' not found"
            details = {"application_id": application_id}
        else:
            message = "No application submitted yet"
            details = {"subject_id": subject_id or ""}
        super().__init__(message, details=details, code="NOT_FOUND", status_code=404)


class HolderNotFoundError(InvalidStateError):
    def __init__(self, identifier: str | None = None, *, subject_id: str | None = None) -> None:
        if identifier is not None:
            message = f"Credential holder '{identifier}' not found"
            details = {"identifier": identifier}
        else:
            message = "No credential issued yet"
            details = {"subject_id": subject_id or ""}
        super().__init__(message, details=details, code="NOT_FOUND", status_code=404)


class IssuanceError(WorkflowError):
    """Identifier generation exhausted its retries.

    Nothing was written; the whole operation is safe to retry.
    """

    def __init__(
        self,
        message: str = "Could not allocate a unique identifier",
        details: dict[str, Any] | None = None,
    ) -> None:
        _details = details or {}
        _details.setdefault("retryable", True)
        super().__init__(message, "ISSUANCE_ERROR", status_code=503, details=_details)


class UpstreamError(WorkflowError):
    """A collaborator (store, blob store, vision service) failed.

    ``outcome`` tells the caller whether anything was written:
    ``not_applied`` (nothing happened), ``unknown`` (check state before
    retrying) or ``partial`` (some writes landed and a repair is recorded).
    """

    def __init__(
        self,
        service: str,
        message: str,
        outcome: UpstreamOutcome = "not_applied",
        details: dict[str, Any] | None = None,
    ) -> None:
        _details = details or {}
        _details["service"] = service
        _details["outcome"] = outcome
        self.service = service
        self.outcome = outcome
        super().__init__(
            f"{service} error: {message}",
            "UPSTREAM_ERROR",
            status_code=502,
            details=_details,
        )

    def to_dict(self) -> dict[str, Any]:
        # Collaborator messages stay in the logs.
        return {
            "status": "error",
            "code": self.code,
            "message": "An upstream service failed while processing the request",
            "details": {"service": self.service, "outcome": self.outcome},
        }


class RecordConflictError(Exception):
    """A store write lost a uniqueness or compare-and-swap race.

    Internal to the persistence layer and the workflow engine; never
    rendered to clients.
    """

    def __init__(self, record: str, key: str, reason: str = "conflict") -> None:
        self.record = record
        self.key = key
        self.reason = reason
        super().__init__(f"{record} '{key}': {reason}")
