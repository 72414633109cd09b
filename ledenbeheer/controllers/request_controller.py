# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Controller: Membership request endpoints: submit, list, edit, approve, reject.
Thin HTTP layer. Delegates ALL logic to MembershipRequestWorkflow.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from ledenbeheer.core.dependencies import get_request_workflow
from ledenbeheer.models.domain import REQUEST_STATUSES, ApprovalResult, MembershipRequest
from ledenbeheer.schemas import (
    ApproveBody,
    DeleteResult,
    MarkApprovedBody,
    MembershipRequestCreate,
    MembershipRequestUpdate,
    PendingCount,
    RejectBody,
)
from ledenbeheer.services.request_workflow import MembershipRequestWorkflow

router = APIRouter(prefix="/api/v1/member-requests", tags=["Membership Requests"])

STATUS_PATTERN = f"^({'|'.join(REQUEST_STATUSES)})$"


@router.get("", response_model=list[MembershipRequest])
async def list_requests(
    status: Optional[str] = Query(default=None, pattern=STATUS_PATTERN),
    workflow: MembershipRequestWorkflow = Depends(get_request_workflow),
):
    """Requests, newest first, optionally filtered by status."""
    return await workflow.list(status=status)


@router.post("", response_model=MembershipRequest, status_code=201)
async def submit_request(
    payload: MembershipRequestCreate,
    request: Request,
    workflow: MembershipRequestWorkflow = Depends(get_request_workflow),
):
    """Public application form submission."""
    ip_address = request.client.host if request.client else None
    return await workflow.submit(payload.model_dump(exclude_none=True), ip_address=ip_address)


@router.get("/pending-count", response_model=PendingCount)
async def pending_count(workflow: MembershipRequestWorkflow = Depends(get_request_workflow)):
    return PendingCount(pending=await workflow.pending_count())


@router.get("/{request_id}", response_model=MembershipRequest)
async def get_request(
    request_id: str,
    workflow: MembershipRequestWorkflow = Depends(get_request_workflow),
):
    return await workflow.get(request_id)


@router.patch("/{request_id}", response_model=MembershipRequest)
async def edit_request(
    request_id: str,
    payload: MembershipRequestUpdate,
    workflow: MembershipRequestWorkflow = Depends(get_request_workflow),
):
    """Edit a pending request. Processed requests are read-only."""
    return await workflow.edit(request_id, payload.model_dump(exclude_unset=True))


@router.delete("/{request_id}", response_model=DeleteResult)
async def delete_request(
    request_id: str,
    workflow: MembershipRequestWorkflow = Depends(get_request_workflow),
):
    return await workflow.delete(request_id)


# ── Workflow transitions ──

@router.post("/{request_id}/approve", response_model=ApprovalResult, status_code=201)
async def approve_request(
    request_id: str,
    response: Response,
    payload: Optional[ApproveBody] = None,
    workflow: MembershipRequestWorkflow = Depends(get_request_workflow),
):
    """Approve a pending request and create its member.

    201 when both writes landed first time, 200 when they were recovered.
    Partial and failed approvals are reported through the error handlers
    (207 / 500) with the same result payload.
    """
    payload = payload or ApproveBody()
    result = await workflow.approve(request_id, processed_by=payload.processed_by)
    if result.outcome == "recovered":
        response.status_code = 200
    return result


@router.post("/{request_id}/reject", response_model=MembershipRequest)
async def reject_request(
    request_id: str,
    payload: Optional[RejectBody] = None,
    workflow: MembershipRequestWorkflow = Depends(get_request_workflow),
):
    payload = payload or RejectBody()
    return await workflow.reject(
        request_id, reason=payload.reason, processed_by=payload.processed_by
    )


@router.post("/{request_id}/mark-approved", response_model=MembershipRequest)
async def mark_request_approved(
    request_id: str,
    payload: MarkApprovedBody,
    workflow: MembershipRequestWorkflow = Depends(get_request_workflow),
):
    """Link a pending request to the member an interrupted approve already created."""
    return await workflow.mark_approved(
        request_id, member_id=payload.member_id, processed_by=payload.processed_by
    )
