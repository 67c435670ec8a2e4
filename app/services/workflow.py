"""Application workflow engine.

Owns the application state machine (pending -> under_review ->
approved | rejected), the idempotent per-subject upsert, credential issuance
on approval and the administrative holder operations. All writes go through
the repositories as compare-and-swap updates; losing a race means re-reading
and re-deciding, never overwriting.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from app.core.authorization import (
    Permission,
    Principal,
    authorize,
    system_principal,
)
from app.core.config import settings
from app.core.errors import (
    ApplicationNotFoundError,
    AuthorizationError,
    HolderNotFoundError,
    InvalidStateError,
    IssuanceError,
    RecordConflictError,
    UpstreamError,
    ValidationError,
)
from app.models import (
    ApplicationAuditEvent,
    ApplicationStatus,
    ApplicationSubmit,
    CredentialHolder,
    DocumentType,
    HolderStatus,
    IdentityApplication,
    get_datetime_utc,
)
from app.repositories import ApplicationRepository, HolderRepository
from app.services.blob import BlobStore, check_owned_key, content_type_for_key
from app.services.identifiers import (
    generate_application_id,
    generate_uin,
    issue_uin,
    validate_uin,
)
from app.services.nlp import ExtractedIdentity
from app.services.vision import VisionService

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = (ApplicationStatus.PENDING.value, ApplicationStatus.UNDER_REVIEW.value)
DEFAULT_QUEUE_STATUSES = REVIEWABLE_STATUSES
MAX_STALE_RETRIES = 3

# Outcome fields cleared when an application goes back to pending.
_RESET_OUTCOME: dict[str, Any] = {
    "uin": None,
    "issued_at": None,
    "rejection_reason": None,
    "reviewed_by": None,
    "reviewed_at": None,
    "issuance_pending": False,
}

# Statuses in which the applicant can no longer change the application.
_LOCKED_STATUSES: dict[str, str] = {
    ApplicationStatus.UNDER_REVIEW.value: "Application is being reviewed and cannot be changed",
    ApplicationStatus.APPROVED.value: "A credential has already been issued for this application",
}

# Column widths of the identity values extraction may fill in.
_EXTRACTED_FIELD_LIMITS: dict[str, int] = {
    "full_name": 255,
    "document_number": 64,
    "nationality": 128,
}

_HOLDER_TRANSITIONS: dict[str, set[str]] = {
    HolderStatus.ACTIVE.value: {HolderStatus.SUSPENDED.value, HolderStatus.REVOKED.value},
    HolderStatus.SUSPENDED.value: {HolderStatus.ACTIVE.value, HolderStatus.REVOKED.value},
    HolderStatus.REVOKED.value: set(),
}


@dataclass
class VerificationOutcome:
    confidence: float | None = None
    requires_manual_review: bool = True
    face_id: str | None = None
    warnings: list[str] = field(default_factory=list)
    extracted: ExtractedIdentity | None = None


@dataclass
class CredentialCheck:
    valid: bool
    reason: str | None
    holder: CredentialHolder | None


@dataclass
class FaceCheck:
    matched: bool
    reason: str | None = None
    confidence: float | None = None


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes read back from the store as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29 February in a non-leap target year.
        return value.replace(year=value.year + years, month=2, day=28)


class ApplicationWorkflow:
    def __init__(
        self,
        applications: ApplicationRepository,
        holders: HolderRepository,
        *,
        vision: VisionService | None = None,
        blobs: BlobStore | None = None,
        uin_generator: Callable[[], str] = generate_uin,
        application_id_generator: Callable[[], str] = generate_application_id,
        clock: Callable[[], datetime] = get_datetime_utc,
    ) -> None:
        self.applications = applications
        self.holders = holders
        self.vision = vision
        self.blobs = blobs
        self.uin_generator = uin_generator
        self.application_id_generator = application_id_generator
        self.clock = clock

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_application(
        self, principal: Principal, submission: ApplicationSubmit
    ) -> IdentityApplication:
        """Create or update the caller's application and run verification.

        There is at most one application per subject and credential type;
        a resubmission keeps its ``application_id`` and goes back to pending.
        """
        authorize(principal, Permission.SUBMIT_APPLICATION)
        subject_id = (principal.subject_id or "").strip()
        if not subject_id:
            raise ValidationError("A subject identifier is required", field="subject_id")
        fields = self._validate_submission(subject_id, submission)
        existing = self.applications.get_for_subject(subject_id, settings.CREDENTIAL_TYPE)
        if existing is not None:
            self._require_unlocked(existing)

        verification = self._verify(fields)
        fields.update(
            confidence=verification.confidence,
            requires_manual_review=verification.requires_manual_review,
            face_id=verification.face_id,
            verification_warnings=verification.warnings,
        )

        application = self._upsert(subject_id, fields)

        threshold = settings.AUTO_APPROVE_CONFIDENCE
        if (
            threshold is not None
            and application.confidence is not None
            and application.confidence >= threshold
            and not application.verification_warnings
        ):
            return self._auto_approve(application)
        return application

    def _validate_submission(
        self, subject_id: str, submission: ApplicationSubmit
    ) -> dict[str, Any]:
        document_type = (submission.document_type or "").strip()
        if not document_type:
            raise ValidationError("Document type is required", field="document_type")
        if document_type not in {item.value for item in DocumentType}:
            raise ValidationError(
                f"Unsupported document type '{document_type}'", field="document_type"
            )

        full_name = (submission.full_name or "").strip() or None
        document_number = (submission.document_number or "").strip() or None
        if not full_name and not document_number:
            raise ValidationError(
                "Either a full name or a document number is required",
                field="full_name",
            )

        for field_name in ("document_image_key", "selfie_image_key"):
            key = getattr(submission, field_name)
            if key:
                check_owned_key(subject_id, key, field_name)

        return {
            "document_type": document_type,
            "full_name": full_name,
            "document_number": document_number,
            "date_of_birth": submission.date_of_birth,
            "nationality": (submission.nationality or "").strip() or None,
            "document_image_key": submission.document_image_key,
            "selfie_image_key": submission.selfie_image_key,
        }

    def _verify(self, fields: dict[str, Any]) -> VerificationOutcome:
        """Run the vision checks. Failures only ever route to manual review."""
        outcome = VerificationOutcome()
        document_key = fields["document_image_key"]
        selfie_key = fields["selfie_image_key"]
        if not document_key or self.vision is None or self.blobs is None:
            return outcome

        failed = False
        try:
            document = self.blobs.read(document_key)
            outcome.extracted = self.vision.extract_fields(
                document, content_type_for_key(document_key), fields["document_type"]
            )
        except UpstreamError as exc:
            logger.warning("Document extraction failed for %s: %s", document_key, exc)
            outcome.warnings.append("Document text could not be extracted")
            return outcome

        extracted = outcome.extracted
        if extracted.expiry_date and extracted.expiry_date < self.clock().date():
            outcome.warnings.append("Document appears to be expired")
        if (
            fields["document_number"]
            and extracted.document_number
            and extracted.document_number.upper() != fields["document_number"].upper()
        ):
            outcome.warnings.append("Document number does not match the document image")
        outcome.warnings.extend(_fill_missing_fields(fields, extracted))

        if not selfie_key:
            outcome.warnings.append("No selfie supplied for face comparison")
            return outcome

        try:
            selfie = self.blobs.read(selfie_key)
            selfie_type = content_type_for_key(selfie_key)
            confidence = self.vision.compare_faces(
                selfie, document, (selfie_type, content_type_for_key(document_key))
            )
            if confidence is not None and confidence >= settings.REVIEW_CONFIDENCE_THRESHOLD:
                outcome.face_id = self.vision.index_face(
                    selfie, selfie_type, settings.FACE_COLLECTION_ID
                )
            outcome.confidence = confidence
        except UpstreamError as exc:
            logger.warning("Face verification failed for %s: %s", selfie_key, exc)
            outcome.warnings.append("Face verification could not be completed")
            failed = True

        if failed:
            outcome.confidence = None
            outcome.face_id = None
        outcome.requires_manual_review = (
            outcome.confidence is None
            or outcome.confidence < settings.REVIEW_CONFIDENCE_THRESHOLD
            or bool(outcome.warnings)
        )
        return outcome

    def _upsert(self, subject_id: str, fields: dict[str, Any]) -> IdentityApplication:
        credential_type = settings.CREDENTIAL_TYPE
        metadata = {
            "confidence": fields["confidence"],
            "requires_manual_review": fields["requires_manual_review"],
            "warnings": fields["verification_warnings"],
        }
        for _ in range(MAX_STALE_RETRIES + 1):
            existing = self.applications.get_for_subject(subject_id, credential_type)
            if existing is None:
                created = self._create(subject_id, credential_type, fields, metadata)
                if created is not None:
                    return created
                # Lost the insert race to a concurrent first submission.
                continue

            self._require_unlocked(existing)
            try:
                application = self.applications.update(
                    existing.application_id,
                    expected_version=existing.version,
                    changes={
                        **fields,
                        **_RESET_OUTCOME,
                        "status": ApplicationStatus.PENDING.value,
                    },
                    event=self._event(
                        existing.application_id,
                        "application_resubmitted",
                        actor=subject_id,
                        metadata={**metadata, "previous_status": existing.status},
                    ),
                )
            except RecordConflictError:
                logger.info("Resubmission of %s raced another write", existing.application_id)
                continue
            logger.info("Application %s resubmitted by %s", application.application_id, subject_id)
            return application

        raise InvalidStateError("Application was modified concurrently, please retry")

    def _create(
        self,
        subject_id: str,
        credential_type: str,
        fields: dict[str, Any],
        metadata: dict[str, Any],
    ) -> IdentityApplication | None:
        attempts = settings.APPLICATION_ID_MAX_ATTEMPTS
        for _ in range(attempts):
            application_id = self.application_id_generator()
            application = IdentityApplication(
                application_id=application_id,
                subject_id=subject_id,
                credential_type=credential_type,
                status=ApplicationStatus.PENDING.value,
                submitted_at=self.clock(),
                **fields,
            )
            try:
                created = self.applications.create(
                    application,
                    event=self._event(
                        application_id, "application_submitted", actor=subject_id, metadata=metadata
                    ),
                )
            except RecordConflictError:
                if self.applications.get_for_subject(subject_id, credential_type) is not None:
                    return None
                logger.warning("Application id %s already in use", application_id)
                continue
            logger.info("Application %s submitted by %s", application_id, subject_id)
            return created
        raise IssuanceError(
            "Could not allocate a unique application id", details={"attempts": attempts}
        )

    def _auto_approve(self, application: IdentityApplication) -> IdentityApplication:
        reviewer = system_principal(settings.SYSTEM_REVIEWER_ID)
        try:
            return self.approve_application(reviewer, application.application_id)
        except (IssuanceError, UpstreamError) as exc:
            logger.warning(
                "Automated approval of %s did not complete: %s", application.application_id, exc
            )
            return self.applications.get(application.application_id) or application

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def claim_application(self, principal: Principal, application_id: str) -> IdentityApplication:
        authorize(principal, Permission.REVIEW_APPLICATIONS)
        for _ in range(MAX_STALE_RETRIES + 1):
            application = self._load(application_id)
            self._require_status(application, (ApplicationStatus.PENDING.value,), "claim")
            try:
                application = self.applications.update(
                    application_id,
                    expected_version=application.version,
                    changes={"status": ApplicationStatus.UNDER_REVIEW.value},
                    event=self._event(
                        application_id, "application_claimed", actor=principal.subject_id
                    ),
                )
            except RecordConflictError:
                continue
            logger.info("Application %s claimed by %s", application_id, principal.subject_id)
            return application
        raise InvalidStateError("Application was modified concurrently, please retry")

    def approve_application(self, principal: Principal, application_id: str) -> IdentityApplication:
        """Approve, mint a UIN and issue the credential holder record.

        Approving an approved application returns it unchanged (finishing
        a recorded issuance first). The approval and its UIN are committed
        before the holder is written; if the holder write fails the
        application keeps ``issuance_pending`` for reconciliation and an
        ``UpstreamError`` with outcome ``partial`` is raised.
        """
        authorize(principal, Permission.REVIEW_APPLICATIONS)
        collisions = 0
        stale_writes = 0
        while True:
            application = self._load(application_id)
            if application.status == ApplicationStatus.APPROVED.value:
                logger.info("Application %s is already approved", application_id)
                if application.issuance_pending or not self._holder_exists(application):
                    return self._complete_issuance(application, principal.subject_id)
                return application
            self._require_status(application, REVIEWABLE_STATUSES, "approve")

            uin = issue_uin(self._uin_taken, generator=self.uin_generator)
            now = self.clock()
            try:
                application = self.applications.update(
                    application_id,
                    expected_version=application.version,
                    changes={
                        "status": ApplicationStatus.APPROVED.value,
                        "uin": uin,
                        "issued_at": now,
                        "reviewed_by": principal.subject_id,
                        "reviewed_at": now,
                        "rejection_reason": None,
                        "issuance_pending": True,
                    },
                    event=self._event(
                        application_id,
                        "application_approved",
                        actor=principal.subject_id,
                        metadata={"uin": uin, "previous_status": application.status},
                    ),
                )
            except RecordConflictError as exc:
                if exc.reason == "unique_violation":
                    collisions += 1
                    logger.warning("UIN %s was taken at commit (%s)", uin, collisions)
                    if collisions >= settings.UIN_MAX_ATTEMPTS:
                        raise IssuanceError(details={"attempts": collisions}) from exc
                else:
                    stale_writes += 1
                    if stale_writes > MAX_STALE_RETRIES:
                        raise InvalidStateError(
                            "Application was modified concurrently, please retry",
                            current_status=application.status,
                        ) from exc
                continue

            logger.info(
                "Application %s approved by %s with UIN %s",
                application_id,
                principal.subject_id,
                uin,
            )
            return self._complete_issuance(application, principal.subject_id)

    def reject_application(
        self, principal: Principal, application_id: str, reason: str | None
    ) -> IdentityApplication:
        authorize(principal, Permission.REVIEW_APPLICATIONS)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required", field="reason")

        for _ in range(MAX_STALE_RETRIES + 1):
            application = self._load(application_id)
            self._require_status(application, REVIEWABLE_STATUSES, "reject")
            now = self.clock()
            try:
                application = self.applications.update(
                    application_id,
                    expected_version=application.version,
                    changes={
                        "status": ApplicationStatus.REJECTED.value,
                        "rejection_reason": reason,
                        "reviewed_by": principal.subject_id,
                        "reviewed_at": now,
                    },
                    event=self._event(
                        application_id,
                        "application_rejected",
                        actor=principal.subject_id,
                        reason=reason,
                        metadata={"previous_status": application.status},
                    ),
                )
            except RecordConflictError:
                continue
            logger.info("Application %s rejected by %s", application_id, principal.subject_id)
            return application
        raise InvalidStateError("Application was modified concurrently, please retry")

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def _uin_taken(self, uin: str) -> bool:
        return self.holders.get(uin) is not None or self.applications.get_by_uin(uin) is not None

    def _holder_exists(self, application: IdentityApplication) -> bool:
        return bool(application.uin) and self.holders.get(application.uin or "") is not None

    def _complete_issuance(
        self, application: IdentityApplication, actor: str
    ) -> IdentityApplication:
        """Create the holder for an approved application and clear the obligation."""
        uin = application.uin
        if not uin:
            raise InvalidStateError(
                "Approved application has no UIN",
                current_status=application.status,
                details={"application_id": application.application_id},
            )

        try:
            self._ensure_holder(application)
        except UpstreamError as exc:
            logger.error(
                "Holder issuance for %s (UIN %s) failed: %s",
                application.application_id,
                uin,
                exc,
            )
            self._record_event(
                self._event(
                    application.application_id,
                    "holder_issuance_failed",
                    actor=actor,
                    reason=exc.message,
                    metadata={"uin": uin},
                )
            )
            raise UpstreamError(
                exc.service,
                "credential holder could not be created",
                outcome="partial",
                details={"application_id": application.application_id, "uin": uin},
            ) from exc

        for _ in range(MAX_STALE_RETRIES + 1):
            if not application.issuance_pending:
                return application
            try:
                return self.applications.update(
                    application.application_id,
                    expected_version=application.version,
                    changes={"issuance_pending": False},
                    event=self._event(
                        application.application_id,
                        "holder_issued",
                        actor=actor,
                        metadata={"uin": uin},
                    ),
                )
            except RecordConflictError:
                application = self._load(application.application_id)
        return application

    def _ensure_holder(self, application: IdentityApplication) -> CredentialHolder:
        uin = application.uin or ""
        existing = self.holders.get(uin)
        if existing is not None:
            if existing.application_id != application.application_id:
                raise UpstreamError(
                    "document_store",
                    f"UIN {uin} belongs to another credential holder",
                    outcome="not_applied",
                )
            return existing

        issued_at = as_utc(application.issued_at) or self.clock()
        holder = CredentialHolder(
            uin=uin,
            subject_id=application.subject_id,
            application_id=application.application_id,
            full_name=application.full_name,
            date_of_birth=application.date_of_birth,
            document_number=application.document_number,
            nationality=application.nationality or settings.DEFAULT_NATIONALITY,
            issued_at=issued_at,
            expiry_date=add_years(issued_at, settings.CREDENTIAL_VALIDITY_YEARS),
            status=HolderStatus.ACTIVE.value,
            face_id=application.face_id,
            document_image_key=application.document_image_key,
            photo_image_key=application.selfie_image_key,
        )
        try:
            created = self.holders.create(holder)
        except RecordConflictError:
            # Reconciliation or a retried approval created it first.
            existing = self.holders.get(uin)
            if existing is None or existing.application_id != application.application_id:
                raise UpstreamError(
                    "document_store",
                    f"UIN {uin} could not be claimed for the holder record",
                    outcome="not_applied",
                )
            return existing
        logger.info("Credential holder %s issued for %s", uin, application.subject_id)
        return created

    def reconcile_pending_issuance(self, principal: Principal) -> tuple[list[str], list[str]]:
        """Create missing holders for approved applications.

        Returns ``(repaired, failed)`` application ids. A failure leaves the
        obligation recorded for the next run.
        """
        authorize(principal, Permission.REVIEW_APPLICATIONS)
        repaired: list[str] = []
        failed: list[str] = []
        for application in self.applications.list_unissued_approvals():
            try:
                self._complete_issuance(application, principal.subject_id)
            except (UpstreamError, InvalidStateError):
                logger.exception("Reconciliation of %s failed", application.application_id)
                failed.append(application.application_id)
                continue
            repaired.append(application.application_id)
        logger.info("Reconciled %s applications, %s failed", len(repaired), len(failed))
        return repaired, failed

    # ------------------------------------------------------------------
    # Reads and administration
    # ------------------------------------------------------------------

    def get_application_status(self, subject_id: str) -> IdentityApplication | None:
        return self.applications.get_for_subject(subject_id, settings.CREDENTIAL_TYPE)

    def get_application(self, principal: Principal, application_id: str) -> IdentityApplication:
        application = self._load(application_id)
        if not principal.is_reviewer and application.subject_id != principal.subject_id:
            raise AuthorizationError("Not enough permissions")
        return application

    def list_applications(
        self,
        principal: Principal,
        statuses: Sequence[str] | None = None,
        *,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[IdentityApplication], int]:
        """Review queue, oldest submission first."""
        authorize(principal, Permission.REVIEW_APPLICATIONS)
        statuses = list(statuses or DEFAULT_QUEUE_STATUSES)
        known = {item.value for item in ApplicationStatus}
        unknown = [status for status in statuses if status not in known]
        if unknown:
            raise ValidationError(f"Unknown status filter: {', '.join(unknown)}", field="status")
        return self.applications.list_by_status(statuses, skip=skip, limit=limit)

    def list_audit_events(
        self, principal: Principal, application_id: str
    ) -> list[ApplicationAuditEvent]:
        self.get_application(principal, application_id)
        return self.applications.list_events(application_id)

    def purge_application(self, principal: Principal, application_id: str) -> None:
        authorize(principal, Permission.ADMINISTER_CREDENTIALS)
        status = self._load(application_id).status
        self.applications.delete(application_id)
        logger.info(
            "Application %s (%s) purged by %s", application_id, status, principal.subject_id
        )

    def get_holder_for_subject(self, subject_id: str) -> CredentialHolder | None:
        return self.holders.get_for_subject(subject_id)

    def get_holder(self, principal: Principal, uin: str) -> CredentialHolder:
        authorize(principal, Permission.REVIEW_APPLICATIONS)
        holder = self.holders.get(uin.upper())
        if holder is None:
            raise HolderNotFoundError(uin)
        return holder

    def change_holder_status(
        self, principal: Principal, uin: str, status: HolderStatus, reason: str | None = None
    ) -> CredentialHolder:
        """Suspend, reinstate or revoke a credential. Revocation is final."""
        authorize(principal, Permission.ADMINISTER_CREDENTIALS)
        uin = uin.upper()
        holder = self.holders.get(uin)
        if holder is None:
            raise HolderNotFoundError(uin)
        if holder.status == status.value and holder.status != HolderStatus.REVOKED.value:
            return holder
        if status.value not in _HOLDER_TRANSITIONS.get(holder.status, set()):
            raise InvalidStateError(
                f"Cannot change credential from {holder.status} to {status.value}",
                current_status=holder.status,
                details={"uin": uin},
            )

        previous_status = holder.status
        try:
            holder = self.holders.update_status(
                uin, expected_status=previous_status, status=status.value, reason=reason
            )
        except RecordConflictError as exc:
            current = self.holders.get(uin)
            raise InvalidStateError(
                "Credential was modified concurrently, please retry",
                current_status=current.status if current else None,
                details={"uin": uin},
            ) from exc

        logger.info(
            "Credential %s changed from %s to %s by %s",
            uin,
            previous_status,
            status.value,
            principal.subject_id,
        )
        if self.applications.get(holder.application_id) is not None:
            self._record_event(
                self._event(
                    holder.application_id,
                    "holder_status_changed",
                    actor=principal.subject_id,
                    reason=reason,
                    metadata={"uin": uin, "from": previous_status, "to": status.value},
                )
            )
        if status == HolderStatus.REVOKED and holder.face_id:
            self._remove_face(holder)
        return holder

    def verify_credential(self, uin: str) -> CredentialCheck:
        """Public validity check for relying parties."""
        uin = (uin or "").strip().upper()
        if not validate_uin(uin):
            raise ValidationError("Invalid UIN format", field="uin")
        holder = self.holders.get(uin)
        if holder is None:
            return CredentialCheck(valid=False, reason="not_found", holder=None)
        if holder.status != HolderStatus.ACTIVE.value:
            return CredentialCheck(valid=False, reason=holder.status, holder=holder)
        expiry = as_utc(holder.expiry_date)
        if expiry is not None and expiry < self.clock():
            return CredentialCheck(valid=False, reason="expired", holder=holder)
        return CredentialCheck(valid=True, reason=None, holder=holder)

    def verify_holder_face(self, uin: str, image: bytes, content_type: str) -> FaceCheck:
        """Check that a selfie belongs to the holder of ``uin``.

        The selfie is searched in the face collection and the holder's
        enrolled face must be among the matches at or above
        ``FACE_MATCH_THRESHOLD``. Only a valid credential can match; otherwise
        ``reason`` carries the credential check's reason.
        """
        check = self.verify_credential(uin)
        holder = check.holder
        if not check.valid or holder is None:
            return FaceCheck(matched=False, reason=check.reason)
        if not holder.face_id:
            return FaceCheck(matched=False, reason="no_face_enrolled")
        if self.vision is None:
            raise UpstreamError("vision", "no vision service is configured")

        threshold = settings.FACE_MATCH_THRESHOLD
        matches = self.vision.search_face(
            image, content_type, settings.FACE_COLLECTION_ID, threshold
        )
        own = next((match for match in matches if match.face_id == holder.face_id), None)
        if own is None:
            logger.info(
                "Face check for %s did not match (%s other candidates)", holder.uin, len(matches)
            )
            return FaceCheck(matched=False, reason="face_mismatch")
        if own.similarity < threshold:
            logger.info("Face check for %s below threshold (%.1f)", holder.uin, own.similarity)
            return FaceCheck(matched=False, reason="low_confidence", confidence=own.similarity)
        logger.info("Face check for %s matched (%.1f)", holder.uin, own.similarity)
        return FaceCheck(matched=True, confidence=own.similarity)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, application_id: str) -> IdentityApplication:
        application = self.applications.get(application_id)
        if application is None:
            raise ApplicationNotFoundError(application_id)
        return application

    @staticmethod
    def _require_unlocked(application: IdentityApplication) -> None:
        if application.status in _LOCKED_STATUSES:
            raise InvalidStateError(
                _LOCKED_STATUSES[application.status],
                current_status=application.status,
                details={"application_id": application.application_id},
            )

    @staticmethod
    def _require_status(
        application: IdentityApplication, allowed: Sequence[str], action: str
    ) -> None:
        if application.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action} an application that is {application.status}",
                current_status=application.status,
                details={"application_id": application.application_id},
            )

    def _event(
        self,
        application_id: str,
        action: str,
        *,
        actor: str | None,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ApplicationAuditEvent:
        return ApplicationAuditEvent(
            application_id=application_id,
            action=action,
            reason=reason,
            actor=actor,
            event_metadata=metadata or {},
            created_at=self.clock(),
        )

    def _remove_face(self, holder: CredentialHolder) -> None:
        """Drop a revoked holder's face from the collection. Failures are logged only."""
        face_id = holder.face_id or ""
        if self.vision is None:
            logger.warning(
                "No vision service to remove face %s of revoked credential %s", face_id, holder.uin
            )
            return
        try:
            self.vision.remove_face(face_id, settings.FACE_COLLECTION_ID)
        except UpstreamError as exc:
            logger.error(
                "Face %s of revoked credential %s could not be removed: %s",
                face_id,
                holder.uin,
                exc,
            )
            return
        logger.info("Face %s removed for revoked credential %s", face_id, holder.uin)

    def _record_event(self, event: ApplicationAuditEvent) -> None:
        """Write an audit event outside a transition. Failures are logged only."""
        try:
            self.applications.add_event(event)
        except (UpstreamError, RecordConflictError):
            logger.exception(
                "Could not record %s for %s", event.action, event.application_id
            )


def _fill_missing_fields(fields: dict[str, Any], extracted: ExtractedIdentity) -> list[str]:
    """Copy extracted values into fields the applicant left empty.

    Values wider than their column are left out; the returned warnings say which.
    """
    warnings: list[str] = []
    for name, limit in _EXTRACTED_FIELD_LIMITS.items():
        value = (getattr(extracted, name) or "").strip()
        if fields.get(name) or not value:
            continue
        if len(value) > limit:
            label = name.replace("_", " ")
            warnings.append(f"Extracted {label} is longer than {limit} characters and was ignored")
            continue
        fields[name] = value
    if fields.get("date_of_birth") is None and isinstance(extracted.date_of_birth, date):
        fields["date_of_birth"] = extracted.date_of_birth
    return warnings
