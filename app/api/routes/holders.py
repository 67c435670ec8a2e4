from typing import Any

from fastapi import APIRouter, File, Form, UploadFile

from app.api.deps import BlobStoreDep, CurrentPrincipal, WorkflowDep
from app.core.errors import HolderNotFoundError
from app.models import (
    CredentialHolder,
    CredentialHolderPublic,
    CredentialSummary,
    CredentialVerificationPublic,
    CredentialVerificationRequest,
    FaceVerificationPublic,
    HolderStatusUpdate,
)
from app.services.blob import IMAGE_CONTENT_TYPES, BlobStore, check_upload

router = APIRouter(prefix="/holders", tags=["holders"])


def to_public(holder: CredentialHolder, blobs: BlobStore) -> CredentialHolderPublic:
    public = CredentialHolderPublic.model_validate(holder)
    if holder.photo_image_key:
        public.photo_url = blobs.signed_url(holder.photo_image_key)
    return public


@router.get("/me", response_model=CredentialHolderPublic)
def read_own_credential(
    workflow: WorkflowDep, principal: CurrentPrincipal, blobs: BlobStoreDep
) -> Any:
    holder = workflow.get_holder_for_subject(principal.subject_id)
    if holder is None:
        raise HolderNotFoundError(subject_id=principal.subject_id)
    return to_public(holder, blobs)


@router.post("/verify", response_model=CredentialVerificationPublic)
def verify_credential(
    workflow: WorkflowDep, blobs: BlobStoreDep, verify_in: CredentialVerificationRequest
) -> Any:
    """
    Check whether a UIN belongs to a valid credential. No authentication required.
    """
    check = workflow.verify_credential(verify_in.uin)
    if check.holder is None:
        return CredentialVerificationPublic(valid=False, reason=check.reason)
    summary = CredentialSummary.model_validate(check.holder)
    if check.holder.photo_image_key:
        summary.photo_url = blobs.signed_url(check.holder.photo_image_key)
    return CredentialVerificationPublic(
        valid=check.valid, reason=check.reason, credential=summary
    )


@router.post("/verify-face", response_model=FaceVerificationPublic)
def verify_credential_face(
    *,
    workflow: WorkflowDep,
    uin: str = Form(..., max_length=32),
    file: UploadFile = File(...),
) -> Any:
    """
    Check a selfie against the face enrolled for a UIN. No authentication required.
    """
    content = file.file.read()
    content_type = check_upload(file.content_type, content, IMAGE_CONTENT_TYPES)

    check = workflow.verify_holder_face(uin, content, content_type)
    return FaceVerificationPublic(
        uin=uin.strip().upper(),
        matched=check.matched,
        reason=check.reason,
        confidence=check.confidence,
    )


@router.get("/{uin}", response_model=CredentialHolderPublic)
def read_credential(
    workflow: WorkflowDep, principal: CurrentPrincipal, blobs: BlobStoreDep, uin: str
) -> Any:
    return to_public(workflow.get_holder(principal, uin), blobs)


@router.patch("/{uin}/status", response_model=CredentialHolderPublic)
def update_credential_status(
    *,
    workflow: WorkflowDep,
    principal: CurrentPrincipal,
    blobs: BlobStoreDep,
    uin: str,
    status_in: HolderStatusUpdate,
) -> Any:
    holder = workflow.change_holder_status(
        principal, uin, status_in.status, status_in.reason
    )
    return to_public(holder, blobs)
