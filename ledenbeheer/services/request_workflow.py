# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: membership request workflow.

State machine:
    pending ─► approved   (terminal)
    pending ─► rejected   (terminal)

Approving writes two documents (the request and a new member) on a store
without cross-document transactions. The write is verified by reading both
back, repaired with a bounded number of retries, and whatever state is
finally observed is reported: success, recovered, or a typed partial or
total failure. A partial result is never retried into a second member.
"""

import asyncio
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ledenbeheer.core.config import settings
from ledenbeheer.core.exceptions import (
    AllocationError,
    InvalidState,
    MembershipError,
    NotFound,
    PartialFailure,
    StoreError,
    TransactionFailed,
    ValidationError,
)
from ledenbeheer.core.logging import get_logger
from ledenbeheer.metrics import (
    APPROVAL_OUTCOMES,
    APPROVAL_RECOVERY_ATTEMPTS,
    FIELDS_BACKFILLED,
    MEMBERS_CREATED,
    PENDING_REQUESTS,
    REQUESTS_PROCESSED,
    REQUESTS_SUBMITTED,
)
from ledenbeheer.models.domain import (
    ALLOWED_TRANSITIONS,
    PROCESSING_FIELDS,
    REQUIRED_REQUEST_FIELDS,
    ApprovalResult,
    Member,
    MembershipRequest,
    PersonFields,
    utcnow,
)
from ledenbeheer.repositories.audit_repository import AuditRepository
from ledenbeheer.repositories.member_repository import MEMBERS_PATH, MemberRepository, member_path
from ledenbeheer.repositories.request_repository import MembershipRequestRepository, request_path
from ledenbeheer.repositories.store import KeyValueStore
from ledenbeheer.services.member_number_allocator import MemberNumberAllocator

logger = get_logger(__name__)

NO_REASON_GIVEN = "no reason given"

# Child key used as a one-shot approval ticket on the request record.
APPROVAL_LOCK_FIELD = "approvalLock"

PERSON_FIELDS = tuple(f for f in PersonFields.model_fields if f != "id")


def placeholder_for(field: str, request_id: str) -> str:
    """Clearly synthetic stand-ins for missing required fields."""
    if field == "email":
        return f"lid-{request_id}@placeholder.invalid"
    if field == "phone_number":
        return "0000000000"
    return "ONBEKEND"


def _build_request(fields: dict[str, Any]) -> MembershipRequest:
    try:
        return MembershipRequest.model_validate(fields)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid membership request data",
            fields=[".".join(str(p) for p in e["loc"]) for e in exc.errors()],
        ) from exc


def _missing(fields: dict[str, Any], required: tuple[str, ...]) -> list[str]:
    return [f for f in required if not str(fields.get(f) or "").strip()]


class MembershipRequestWorkflow:
    """Business logic for membership requests and their approval."""

    def __init__(
        self,
        store: KeyValueStore,
        request_repo: MembershipRequestRepository,
        member_repo: MemberRepository,
        allocator: MemberNumberAllocator,
        audit_repo: AuditRepository,
        max_recovery_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
    ) -> None:
        self._store = store
        self._requests = request_repo
        self._members = member_repo
        self._allocator = allocator
        self._audit = audit_repo
        self._max_recovery_attempts = (
            max_recovery_attempts
            if max_recovery_attempts is not None
            else settings.APPROVE_MAX_RECOVERY_ATTEMPTS
        )
        self._backoff_base = (
            backoff_base if backoff_base is not None else settings.APPROVE_BACKOFF_BASE
        )

    # ── Commands ──

    async def submit(self, data: dict[str, Any], ip_address: Optional[str] = None) -> MembershipRequest:
        """Create a pending request. Raises ValidationError on missing fields."""
        fields = {k: v for k, v in data.items() if k not in PROCESSING_FIELDS and k != "id"}
        missing = _missing(fields, REQUIRED_REQUEST_FIELDS)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}", fields=missing
            )

        request = _build_request({
            **fields,
            "status": "pending",
            "request_date": utcnow(),
            "processed_date": None,
            "ip_address": ip_address or fields.get("ip_address"),
        })
        created = await self._requests.create(request)

        REQUESTS_SUBMITTED.inc()
        await self._audit.record_event(
            "request_submitted", created.id,
            {"firstName": created.first_name, "lastName": created.last_name},
        )
        logger.info("Membership request submitted: id=%s", created.id)
        return created

    async def edit(self, request_id: str, partial: dict[str, Any]) -> MembershipRequest:
        """Merge ``partial`` into a pending request. Raises NotFound / InvalidState."""
        request = await self.get(request_id)
        self._assert_pending(request, "edit")

        protected = sorted(k for k in partial if k in PROCESSING_FIELDS or k == "id")
        if protected:
            raise ValidationError(
                f"Fields managed by the workflow cannot be edited: {', '.join(protected)}",
                fields=protected, membership_request=request_id,
            )
        for name in REQUIRED_REQUEST_FIELDS:
            if name in partial and not str(partial[name] or "").strip():
                raise ValidationError(f"{name} cannot be empty", fields=[name])
        _build_request({**request.model_dump(), **partial})

        request = await self._acquire_approval_ticket(request_id, "edit")
        try:
            updated = _build_request({**request.model_dump(), **partial})
            before = request.to_store()
            after = updated.to_store()
            changes = {
                key: after.get(key)
                for key in set(before) | set(after)
                if after.get(key) != before.get(key)
            }
            if changes:
                await self._requests.update(request_id, changes)
        finally:
            await self._release_approval_ticket(request_id)
        if changes:
            await self._audit.record_event("request_edited", request_id, {"fields": sorted(changes)})
        logger.info("Membership request edited: id=%s, fields=%s", request_id, sorted(changes))
        return updated

    async def reject(
        self,
        request_id: str,
        reason: Optional[str] = None,
        processed_by: Optional[str] = None,
    ) -> MembershipRequest:
        """pending -> rejected. A blank reason is stored as a sentinel, never empty."""
        request = await self.get(request_id)
        self._assert_transition(request, "rejected")
        request = await self._acquire_approval_ticket(request_id, "reject")

        reason = (reason or "").strip() or NO_REASON_GIVEN
        now = utcnow()
        try:
            await self._requests.update(request_id, {
                "status": "rejected",
                "processedDate": now.isoformat(),
                "processedBy": processed_by,
                "rejectionReason": reason,
                APPROVAL_LOCK_FIELD: None,
            })
        except StoreError:
            await self._release_approval_ticket(request_id)
            raise

        REQUESTS_PROCESSED.labels(status="rejected").inc()
        await self._audit.record_event(
            "request_rejected", request_id, {"reason": reason, "processedBy": processed_by}
        )
        logger.info("Membership request rejected: id=%s, reason=%s", request_id, reason)
        return request.model_copy(update={
            "status": "rejected",
            "processed_date": now,
            "processed_by": processed_by,
            "rejection_reason": reason,
        })

    async def approve(self, request_id: str, processed_by: Optional[str] = None) -> ApprovalResult:
        """pending -> approved, creating the member in the same step.

        Returns an ApprovalResult with outcome ``success`` or ``recovered``.
        Raises PartialFailure (``status_update_failed`` / ``member_creation_failed``)
        or TransactionFailed when the two writes could not be brought in line.
        """
        request = await self.get(request_id)
        self._assert_transition(request, "approved")
        request = await self._acquire_approval_ticket(request_id, "approve")

        request, warnings = await self._backfill(request)

        try:
            member_number = await self._allocator.allocate()
        except MembershipError as exc:
            await self._release_approval_ticket(request_id)
            APPROVAL_OUTCOMES.labels(outcome="allocation_failed").inc()
            raise AllocationError(
                f"Could not allocate a member number: {exc.message}", membership_request=request_id
            ) from exc

        now = utcnow()
        try:
            # Reserve the member id before either side of the write refers to it.
            member_id = await self._store.push(
                MEMBERS_PATH, {"temp": True, "createdAt": now.isoformat()}
            )
        except StoreError:
            await self._release_number(member_number)
            await self._release_approval_ticket(request_id)
            APPROVAL_OUTCOMES.labels(outcome="reservation_failed").inc()
            raise

        member = self._member_from_request(request, member_id, member_number, now)
        approved = request.model_copy(update={
            "status": "approved",
            "processed_date": now,
            "processed_by": processed_by,
            "rejection_reason": None,
            "member_id": member_id,
            "member_number": member_number,
        })
        updates = {
            member_path(member_id): member.to_store(),
            request_path(request_id): approved.to_store(),
        }

        logger.info(
            "Approving request %s as member %s (number %d)", request_id, member_id, member_number,
            extra={"membership_request": request_id, "member_id": member_id,
                   "member_number": member_number},
        )
        try:
            await self._store.multi_path_patch(updates)
        except StoreError as exc:
            logger.warning("Multi-path approve write failed for %s: %s", request_id, exc)

        request_ok, member_ok, observed = await self._verify(request_id, member_id, member)
        attempts = 0
        while not (request_ok and member_ok) and attempts < self._max_recovery_attempts:
            attempts += 1
            APPROVAL_RECOVERY_ATTEMPTS.inc()
            logger.warning(
                "Approve verification failed for %s (request=%s, member=%s), recovery attempt %d",
                request_id, request_ok, member_ok, attempts,
            )
            await asyncio.sleep(self._backoff_base * (2 ** (attempts - 1)))
            try:
                if not request_ok and not member_ok:
                    await self._store.multi_path_patch(updates)
                elif not request_ok:
                    await self._store.set(request_path(request_id), approved.to_store())
                else:
                    await self._store.set(member_path(member_id), member.to_store())
            except StoreError as exc:
                logger.warning("Recovery attempt %d for %s failed: %s", attempts, request_id, exc)
            request_ok, member_ok, observed = await self._verify(request_id, member_id, member)

        result = ApprovalResult(
            outcome="success",
            attempts=attempts,
            request_id=request_id,
            member_id=member_id,
            member_number=member_number,
            member=member,
            request=approved,
            warnings=warnings,
        )

        if request_ok and member_ok:
            result.outcome = "success" if attempts == 0 else "recovered"
            result.message = (
                f"Request {request_id} approved and member {member_id} created"
                if attempts == 0
                else f"Request {request_id} approved and member {member_id} created "
                     f"after {attempts} recovery attempt(s)"
            )
            REQUESTS_PROCESSED.labels(status="approved").inc()
            MEMBERS_CREATED.labels(origin="approval").inc()
            APPROVAL_OUTCOMES.labels(outcome=result.outcome).inc()
            await self._audit.record_event("request_approved", request_id, {
                "memberId": member_id, "memberNumber": member_number,
                "processedBy": processed_by, "attempts": attempts, "warnings": warnings,
            })
            logger.info("Request %s approved: outcome=%s", request_id, result.outcome)
            return result

        if member_ok:
            result.outcome = "partial_failure"
            result.message = (
                f"Member {member_id} was created but request {request_id} is still pending. "
                f"Do not approve again; mark the request approved instead."
            )
            MEMBERS_CREATED.labels(origin="approval").inc()
            await self._partial(result, PartialFailure.STATUS_UPDATE_FAILED)

        if request_ok:
            result.outcome = "partial_failure"
            result.message = (
                f"Request {request_id} is marked approved but member {member_id} "
                f"was not fully written"
            )
            await self._partial(result, PartialFailure.MEMBER_CREATION_FAILED)

        result.outcome = "transaction_failed"
        result.message = (
            f"Approve of request {request_id} failed after {attempts} recovery attempt(s)"
        )
        APPROVAL_OUTCOMES.labels(outcome="transaction_failed").inc()
        if observed:
            await self._compensate(request_id, member_id, member_number)
        else:
            result.message += "; final state could not be read, nothing was rolled back"
        await self._audit.record_event("approval_failed", request_id, {
            "memberId": member_id, "memberNumber": member_number,
            "attempts": attempts, "stateObserved": observed,
        })
        logger.error("Approve of %s failed: %s", request_id, result.message)
        raise TransactionFailed(
            result.message, result=result,
            membership_request=request_id, member_id=member_id, member_number=member_number,
        )

    async def mark_approved(
        self,
        request_id: str,
        member_id: str,
        processed_by: Optional[str] = None,
    ) -> MembershipRequest:
        """Repair for ``status_update_failed``: link a pending request to its existing member."""
        request = await self.get(request_id)
        self._assert_transition(request, "approved")
        member = await self._members.get(member_id)

        now = utcnow()
        await self._requests.update(request_id, {
            "status": "approved",
            "processedDate": now.isoformat(),
            "processedBy": processed_by,
            "memberId": member_id,
            "memberNumber": member.member_number,
            APPROVAL_LOCK_FIELD: None,
        })

        REQUESTS_PROCESSED.labels(status="approved").inc()
        await self._audit.record_event("request_marked_approved", request_id, {
            "memberId": member_id, "memberNumber": member.member_number,
            "processedBy": processed_by,
        })
        logger.info("Request %s marked approved, linked to member %s", request_id, member_id)
        return request.model_copy(update={
            "status": "approved",
            "processed_date": now,
            "processed_by": processed_by,
            "member_id": member_id,
            "member_number": member.member_number,
        })

    async def delete(self, request_id: str) -> dict[str, Any]:
        """Remove a request. A linked member is left alone."""
        request = await self.get(request_id)
        await self._requests.delete(request_id)
        await self._audit.record_event(
            "request_deleted", request_id, {"status": request.status, "memberId": request.member_id}
        )
        logger.info("Membership request deleted: id=%s, status=%s", request_id, request.status)
        return {"status": "deleted", "id": request_id}

    # ── Internal ──

    @staticmethod
    def _assert_pending(request: MembershipRequest, action: str) -> None:
        if not request.is_pending:
            raise InvalidState(
                f"Cannot {action} request {request.id}: already {request.status}",
                membership_request=request.id, status=request.status,
            )

    @staticmethod
    def _assert_transition(request: MembershipRequest, target: str) -> None:
        allowed = ALLOWED_TRANSITIONS.get(request.status, set())
        if target not in allowed:
            raise InvalidState(
                f"Cannot transition request {request.id} from '{request.status}' to '{target}'. "
                f"Allowed: {sorted(allowed) if allowed else 'none (terminal state)'}",
                membership_request=request.id, status=request.status,
            )

    async def _acquire_approval_ticket(self, request_id: str, action: str) -> MembershipRequest:
        """Exclusive hold on a pending request for approve, reject or edit.

        Returns the request as read after the ticket was granted. The ticket
        is gone once an approve lands, so the status is checked again here.
        """
        ticket = await self._store.transaction_increment(
            f"{request_path(request_id)}/{APPROVAL_LOCK_FIELD}"
        )
        if ticket != 1:
            raise InvalidState(
                f"Cannot {action} request {request_id}: it is being processed, or an "
                f"interrupted approve left a member behind (resolve with mark-approved)",
                membership_request=request_id, status="pending",
            )
        try:
            request = await self.get(request_id)
            self._assert_pending(request, action)
        except MembershipError:
            await self._release_approval_ticket(request_id)
            raise
        return request

    async def _release_approval_ticket(self, request_id: str) -> None:
        try:
            await self._store.update(request_path(request_id), {APPROVAL_LOCK_FIELD: None})
        except StoreError as exc:
            logger.warning("Could not clear approval ticket on %s: %s", request_id, exc)

    async def _release_number(self, member_number: int) -> None:
        try:
            await self._allocator.release(member_number)
        except StoreError as exc:
            logger.warning("Member number %d could not be returned to the pool: %s",
                           member_number, exc)

    async def _backfill(self, request: MembershipRequest) -> tuple[MembershipRequest, list[str]]:
        """Fill missing required fields with placeholders and report each one."""
        updates: dict[str, str] = {}
        warnings: list[str] = []
        for field in REQUIRED_REQUEST_FIELDS:
            if not str(getattr(request, field) or "").strip():
                value = placeholder_for(field, request.id)
                updates[field] = value
                warnings.append(f"{to_camel(field)} was missing; placeholder '{value}' used")
                FIELDS_BACKFILLED.labels(field=field).inc()
        if updates:
            logger.warning(
                "Request %s is missing required fields %s; approving with placeholders",
                request.id, sorted(updates),
            )
            await self._audit.record_event("fields_backfilled", request.id, {
                "fields": [to_camel(f) for f in sorted(updates)],
            })
        return request.model_copy(update=updates), warnings

    @staticmethod
    def _member_from_request(
        request: MembershipRequest, member_id: str, member_number: int, now
    ) -> Member:
        fields = {name: getattr(request, name) for name in PERSON_FIELDS}
        fields["start_date"] = fields.get("start_date") or now.date()
        return Member(
            **fields,
            id=member_id,
            member_number=member_number,
            registration_date=now,
            payment_status=False,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    async def _verify(
        self, request_id: str, member_id: str, member: Member
    ) -> tuple[bool, bool, bool]:
        """(request approved and linked, member written, both reads succeeded)."""
        observed = True
        try:
            stored_request = await self._store.get(request_path(request_id))
        except StoreError as exc:
            logger.warning("Verification read of request %s failed: %s", request_id, exc)
            stored_request, observed = None, False
        try:
            stored_member = await self._store.get(member_path(member_id))
        except StoreError as exc:
            logger.warning("Verification read of member %s failed: %s", member_id, exc)
            stored_member, observed = None, False

        request_ok = (
            isinstance(stored_request, dict)
            and stored_request.get("status") == "approved"
            and stored_request.get("memberId") == member_id
        )
        member_ok = (
            isinstance(stored_member, dict)
            and not stored_member.get("temp")
            and stored_member.get("firstName") == member.first_name
        )
        return request_ok, member_ok, observed

    async def _partial(self, result: ApprovalResult, subtype: str) -> None:
        APPROVAL_OUTCOMES.labels(outcome=subtype).inc()
        await self._audit.record_event("approval_partial_failure", result.request_id, {
            "subtype": subtype, "memberId": result.member_id,
            "memberNumber": result.member_number, "attempts": result.attempts,
        })
        logger.error("Approve of %s ended in %s: %s", result.request_id, subtype, result.message)
        raise PartialFailure(
            result.message, subtype, result=result,
            membership_request=result.request_id, member_id=result.member_id,
            member_number=result.member_number,
        )

    async def _compensate(self, request_id: str, member_id: str, member_number: int) -> None:
        """Undo what a fully failed approve left behind, best effort."""
        try:
            await self._store.delete(member_path(member_id))
        except StoreError as exc:
            logger.warning("Could not remove reserved member %s: %s", member_id, exc)
            return
        await self._release_number(member_number)
        await self._release_approval_ticket(request_id)

    # ── Queries ──

    async def get(self, request_id: str) -> MembershipRequest:
        request = await self._requests.get(request_id)
        if request is None:
            raise NotFound(f"Membership request {request_id} not found", membership_request=request_id)
        return request

    async def pending_count(self) -> int:
        count = len(await self._requests.get_all(status="pending"))
        PENDING_REQUESTS.set(count)
        return count

    async def list(self, status: Optional[str] = None):
        """Requests, newest first, optionally filtered by status."""
        requests = await self._requests.get_all(status=status)
        requests.sort(
            key=lambda r: (r.request_date is not None, r.request_date.timestamp() if r.request_date else 0),
            reverse=True,
        )
        return requests
