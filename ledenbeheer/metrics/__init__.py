# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Prometheus metrics: single source of truth for all metric objects.
Imported by services, repositories and middleware. Never instantiated in controllers.
"""

from prometheus_client import Counter, Gauge, Histogram

# ── HTTP Metrics (used by middleware) ──
REQUEST_COUNT = Counter(
    "ledenbeheer_requests_total",
    "Total HTTP requests to the member administration service",
    ["method", "endpoint", "status"],
)
REQUEST_LATENCY = Histogram(
    "ledenbeheer_request_duration_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
)
HTTP_ERRORS = Counter(
    "ledenbeheer_http_errors_total",
    "Total HTTP error responses",
    ["method", "endpoint", "status"],
)

# ── Store Metrics ──
STORE_ERRORS = Counter(
    "ledenbeheer_store_errors_total",
    "Failed calls to the key/value store",
    ["operation"],
)

# ── Business Metrics (updated by service layer only) ──
MEMBERS_CREATED = Counter(
    "ledenbeheer_members_created_total",
    "Total members created",
    ["origin"],
)
MEMBERS_DELETED = Counter(
    "ledenbeheer_members_deleted_total",
    "Total members deleted",
)
MEMBER_NUMBERS_ALLOCATED = Counter(
    "ledenbeheer_member_numbers_allocated_total",
    "Member numbers handed out",
    ["source"],
)
MEMBER_NUMBERS_RELEASED = Counter(
    "ledenbeheer_member_numbers_released_total",
    "Member numbers returned to the reuse pool",
)
REQUESTS_SUBMITTED = Counter(
    "ledenbeheer_membership_requests_submitted_total",
    "Membership requests submitted",
)
REQUESTS_PROCESSED = Counter(
    "ledenbeheer_membership_requests_processed_total",
    "Membership requests moved out of pending",
    ["status"],
)
PENDING_REQUESTS = Gauge(
    "ledenbeheer_membership_requests_pending",
    "Pending membership requests at the last count",
)
APPROVAL_OUTCOMES = Counter(
    "ledenbeheer_approval_outcomes_total",
    "Approve results by observed outcome",
    ["outcome"],
)
APPROVAL_RECOVERY_ATTEMPTS = Counter(
    "ledenbeheer_approval_recovery_attempts_total",
    "Recovery attempts made after a failed approve verification",
)
FIELDS_BACKFILLED = Counter(
    "ledenbeheer_request_fields_backfilled_total",
    "Required request fields filled with placeholders during approve",
    ["field"],
)
