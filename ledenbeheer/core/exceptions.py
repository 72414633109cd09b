# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Domain error kinds raised by repositories and services.
Controllers translate them to HTTP responses; nothing here knows about HTTP.
"""

from typing import Any, Optional


class MembershipError(Exception):
    """Base class: a kind, a message and enough context to reconcile by hand."""

    kind: str = "membership_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.message, **self.context}


class ValidationError(MembershipError):
    kind = "validation_error"


class NotFound(MembershipError):
    kind = "not_found"


class InvalidState(MembershipError):
    kind = "invalid_state"


class AllocationError(MembershipError):
    kind = "allocation_error"


# ── Store errors ──

class StoreError(MembershipError):
    """The backing store rejected a call (non-transient)."""

    kind = "store_error"


class StoreUnavailable(StoreError):
    kind = "store_unavailable"


class StoreTimeout(StoreUnavailable):
    kind = "store_timeout"


# ── Approval outcomes that are not a clean success ──

class PartialFailure(MembershipError):
    """Approve left exactly one side of the change applied after recovery."""

    kind = "partial_failure"

    STATUS_UPDATE_FAILED = "status_update_failed"
    MEMBER_CREATION_FAILED = "member_creation_failed"

    def __init__(self, message: str, subtype: str, result: Optional[Any] = None,
                 **context: Any) -> None:
        super().__init__(message, subtype=subtype, **context)
        self.subtype = subtype
        self.result = result


class TransactionFailed(MembershipError):
    """Neither side of approve could be verified after all recovery attempts."""

    kind = "transaction_failed"

    def __init__(self, message: str, result: Optional[Any] = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.result = result
