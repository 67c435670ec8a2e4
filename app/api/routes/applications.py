from typing import Any

from fastapi import APIRouter, Query

from app.api.deps import CurrentPrincipal, WorkflowDep
from app.core.errors import ApplicationNotFoundError
from app.models import (
    ApplicationAuditEventPublic,
    ApplicationAuditTrailPublic,
    ApplicationStatus,
    ApplicationSubmit,
    IdentityApplicationPublic,
    IdentityApplicationsPublic,
    Message,
    ReconciliationResultPublic,
    RejectApplicationRequest,
    ReviewDecisionAction,
    ReviewDecisionRequest,
)

router = APIRouter(prefix="/applications", tags=["applications"])


@router.post("/", response_model=IdentityApplicationPublic)
def submit_application(
    *, workflow: WorkflowDep, principal: CurrentPrincipal, application_in: ApplicationSubmit
) -> Any:
    """
    Submit or resubmit the caller's identity application.
    """
    return workflow.submit_application(principal, application_in)


@router.get("/me", response_model=IdentityApplicationPublic)
def read_own_application(workflow: WorkflowDep, principal: CurrentPrincipal) -> Any:
    application = workflow.get_application_status(principal.subject_id)
    if application is None:
        raise ApplicationNotFoundError(subject_id=principal.subject_id)
    return application


@router.get("/", response_model=IdentityApplicationsPublic)
def read_review_queue(
    workflow: WorkflowDep,
    principal: CurrentPrincipal,
    status: list[ApplicationStatus] | None = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
) -> Any:
    """
    Applications awaiting review, oldest submission first.
    """
    statuses = [item.value for item in status] if status else None
    applications, count = workflow.list_applications(
        principal, statuses, skip=skip, limit=limit
    )
    return IdentityApplicationsPublic(
        data=[IdentityApplicationPublic.model_validate(item) for item in applications],
        count=count,
    )


@router.post("/reconcile", response_model=ReconciliationResultPublic)
def reconcile_pending_issuance(workflow: WorkflowDep, principal: CurrentPrincipal) -> Any:
    repaired, failed = workflow.reconcile_pending_issuance(principal)
    return ReconciliationResultPublic(repaired=repaired, failed=failed, count=len(repaired))


@router.get("/{application_id}", response_model=IdentityApplicationPublic)
def read_application(
    workflow: WorkflowDep, principal: CurrentPrincipal, application_id: str
) -> Any:
    return workflow.get_application(principal, application_id)


@router.post("/{application_id}/claim", response_model=IdentityApplicationPublic)
def claim_application(
    workflow: WorkflowDep, principal: CurrentPrincipal, application_id: str
) -> Any:
    return workflow.claim_application(principal, application_id)


@router.post("/{application_id}/approve", response_model=IdentityApplicationPublic)
def approve_application(
    workflow: WorkflowDep, principal: CurrentPrincipal, application_id: str
) -> Any:
    return workflow.approve_application(principal, application_id)


@router.post("/{application_id}/reject", response_model=IdentityApplicationPublic)
def reject_application(
    *,
    workflow: WorkflowDep,
    principal: CurrentPrincipal,
    application_id: str,
    reject_in: RejectApplicationRequest,
) -> Any:
    return workflow.reject_application(principal, application_id, reject_in.reason)


@router.post("/{application_id}/review-decision", response_model=IdentityApplicationPublic)
def submit_review_decision(
    *,
    workflow: WorkflowDep,
    principal: CurrentPrincipal,
    application_id: str,
    decision_in: ReviewDecisionRequest,
) -> Any:
    if decision_in.action == ReviewDecisionAction.APPROVE:
        return workflow.approve_application(principal, application_id)
    return workflow.reject_application(principal, application_id, decision_in.reason)


@router.get("/{application_id}/audit-trail", response_model=ApplicationAuditTrailPublic)
def read_application_audit_trail(
    workflow: WorkflowDep, principal: CurrentPrincipal, application_id: str
) -> Any:
    events = workflow.list_audit_events(principal, application_id)
    return ApplicationAuditTrailPublic(
        application_id=application_id,
        events=[ApplicationAuditEventPublic.model_validate(event) for event in events],
    )


@router.delete("/{application_id}", response_model=Message)
def purge_application(
    workflow: WorkflowDep, principal: CurrentPrincipal, application_id: str
) -> Message:
    workflow.purge_application(principal, application_id)
    return Message(message="Application deleted successfully")
