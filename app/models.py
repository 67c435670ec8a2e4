import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def get_datetime_utc() -> datetime:
    return datetime.now(timezone.utc)


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class HolderStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"


class ReviewDecisionAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class DocumentType(str, Enum):
    NATIONAL_ID = "nid"
    DRIVERS_LICENSE = "drivers_license"
    PNG_PASSPORT = "png_passport"
    INTERNATIONAL_PASSPORT = "international_passport"


class ImageKind(str, Enum):
    DOCUMENT = "document"
    SELFIE = "selfie"


# Identifying fields shared by submissions, applications and holders
class IdentityFields(SQLModel):
    full_name: str | None = Field(default=None, max_length=255)
    date_of_birth: date | None = Field(default=None)
    document_number: str | None = Field(default=None, max_length=64)
    nationality: str | None = Field(default=None, max_length=128)


# Properties to receive via API on submission and resubmission
class ApplicationSubmit(IdentityFields):
    document_type: str = Field(max_length=64)
    document_image_key: str | None = Field(default=None, max_length=1024)
    selfie_image_key: str | None = Field(default=None, max_length=1024)


class IdentityApplication(IdentityFields, table=True):
    __tablename__ = "identity_application"
    __table_args__ = (
        UniqueConstraint(
            "subject_id",
            "credential_type",
            name="uq_identity_application_subject_credential",
        ),
    )

    application_id: str = Field(primary_key=True, max_length=32)
    subject_id: str = Field(index=True, max_length=255)
    credential_type: str = Field(max_length=64)
    status: str = Field(default=ApplicationStatus.PENDING.value, max_length=32, index=True)
    document_type: str = Field(max_length=64)
    document_image_key: str | None = Field(default=None, max_length=1024)
    selfie_image_key: str | None = Field(default=None, max_length=1024)

    confidence: float | None = Field(default=None)
    requires_manual_review: bool = True
    face_id: str | None = Field(default=None, max_length=128)
    verification_warnings: list[str] = Field(default_factory=list, sa_type=JSON)

    uin: str | None = Field(default=None, unique=True, max_length=32)
    issued_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    rejection_reason: str | None = Field(default=None, max_length=1000)
    reviewed_by: str | None = Field(default=None, max_length=255)
    reviewed_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore
    )

    # Set together with approval, cleared once the holder record exists.
    issuance_pending: bool = False
    version: int = 1

    submitted_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class IdentityApplicationPublic(IdentityFields):
    application_id: str
    subject_id: str
    credential_type: str
    status: ApplicationStatus
    document_type: str
    document_image_key: str | None = None
    selfie_image_key: str | None = None
    confidence: float | None = None
    requires_manual_review: bool
    face_id: str | None = None
    verification_warnings: list[str] = []
    uin: str | None = None
    issued_at: datetime | None = None
    rejection_reason: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    issuance_pending: bool
    version: int
    submitted_at: datetime
    updated_at: datetime


class IdentityApplicationsPublic(SQLModel):
    data: list[IdentityApplicationPublic]
    count: int


class RejectApplicationRequest(SQLModel):
    reason: str | None = Field(default=None, max_length=1000)


class ReviewDecisionRequest(SQLModel):
    action: ReviewDecisionAction
    reason: str | None = Field(default=None, max_length=1000)


class CredentialHolder(IdentityFields, table=True):
    __tablename__ = "credential_holder"

    uin: str = Field(primary_key=True, max_length=32)
    # Lookup only; applications may be purged independently.
    subject_id: str = Field(index=True, max_length=255)
    application_id: str = Field(index=True, max_length=32)
    issued_at: datetime = Field(
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    expiry_date: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    status: str = Field(default=HolderStatus.ACTIVE.value, max_length=32)
    status_reason: str | None = Field(default=None, max_length=1000)
    face_id: str | None = Field(default=None, max_length=128)
    document_image_key: str | None = Field(default=None, max_length=1024)
    photo_image_key: str | None = Field(default=None, max_length=1024)
    updated_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class CredentialHolderPublic(IdentityFields):
    uin: str
    subject_id: str
    application_id: str
    issued_at: datetime
    expiry_date: datetime | None = None
    status: HolderStatus
    status_reason: str | None = None
    photo_url: str | None = None


class HolderStatusUpdate(SQLModel):
    status: HolderStatus
    reason: str | None = Field(default=None, max_length=1000)


class CredentialVerificationRequest(SQLModel):
    uin: str = Field(min_length=1, max_length=32)


class CredentialSummary(SQLModel):
    uin: str
    full_name: str | None = None
    date_of_birth: date | None = None
    document_number: str | None = None
    nationality: str | None = None
    status: HolderStatus
    issued_at: datetime
    expiry_date: datetime | None = None
    photo_url: str | None = None


class CredentialVerificationPublic(SQLModel):
    valid: bool
    reason: str | None = None
    credential: CredentialSummary | None = None


class FaceVerificationPublic(SQLModel):
    uin: str
    matched: bool
    reason: str | None = None
    confidence: float | None = None


class ApplicationAuditEvent(SQLModel, table=True):
    __tablename__ = "application_audit_event"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    application_id: str = Field(
        foreign_key="identity_application.application_id",
        nullable=False,
        ondelete="CASCADE",
        index=True,
        max_length=32,
    )
    action: str = Field(max_length=64)
    reason: str | None = Field(default=None, max_length=1000)
    actor: str | None = Field(default=None, max_length=255)
    event_metadata: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class ApplicationAuditEventPublic(SQLModel):
    id: uuid.UUID
    action: str
    reason: str | None = None
    actor: str | None = None
    event_metadata: dict[str, Any]
    created_at: datetime


class ApplicationAuditTrailPublic(SQLModel):
    application_id: str
    events: list[ApplicationAuditEventPublic]


class UploadedFilePublic(SQLModel):
    key: str
    kind: ImageKind
    content_type: str
    size_bytes: int


class ReconciliationResultPublic(SQLModel):
    repaired: list[str]
    failed: list[str]
    count: int


# Generic message
class Message(SQLModel):
    message: str
