# type: ignore
# pyright: reportGeneralTypeIssues=false
# pyright: reportOptionalMemberAccess=false
"""
Ledenbeheer Service
===================
Member administration for a mosque community: direct member registration,
public membership requests, and the admin approve/reject workflow.

Request state machine:
    pending ─► approved   (creates the member, allocates a member number)
    pending ─► rejected

Member numbers freed by deletions are reused, oldest deletion first.

Port: 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ledenbeheer.controllers import member_controller, request_controller, system_controller
from ledenbeheer.core.config import settings
from ledenbeheer.core.dependencies import close_store
from ledenbeheer.core.exceptions import (
    AllocationError,
    InvalidState,
    MembershipError,
    NotFound,
    PartialFailure,
    StoreError,
    StoreUnavailable,
    TransactionFailed,
    ValidationError,
)
from ledenbeheer.core.logging import CONTEXT_FIELDS, get_logger
from ledenbeheer.middleware import MetricsMiddleware, RequestIDMiddleware
from ledenbeheer.schemas import ErrorResponse

logger = get_logger(settings.SERVICE_NAME)

# Most specific class first.
ERROR_STATUS: tuple[tuple[type, int], ...] = (
    (ValidationError, 400),
    (NotFound, 404),
    (InvalidState, 409),
    (PartialFailure, 207),
    (TransactionFailed, 500),
    (AllocationError, 503),
    (StoreUnavailable, 503),
    (StoreError, 502),
)


def status_for(exc: MembershipError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


# ── Lifespan ──
@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info(
        "Ledenbeheer service starting, store backend: %s", settings.STORE_BACKEND
    )
    yield
    await close_store()
    logger.info("Ledenbeheer service shutting down")


# ── FastAPI App ──
app = FastAPI(
    title="Ledenbeheer Service",
    description="Member administration: members, membership requests and approvals.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)

app.include_router(system_controller.router)
app.include_router(member_controller.router)
app.include_router(request_controller.router)


# ── Exception handlers ──
@app.exception_handler(MembershipError)
async def membership_error_handler(request: Request, exc: MembershipError):
    req_id = getattr(request.state, "request_id", None)
    status = status_for(exc)
    content = {**exc.to_dict(), "request_id": req_id}
    result = getattr(exc, "result", None)
    if result is not None:
        content["result"] = result.model_dump(mode="json", by_alias=True)
    extra = {k: v for k, v in exc.context.items() if k in CONTEXT_FIELDS}
    extra["request_id"] = req_id
    log = logger.error if status >= 500 or status == 207 else logger.info
    log("%s: %s", exc.kind, exc.message, extra=extra)
    return JSONResponse(status_code=status, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    req_id = getattr(request.state, "request_id", None)
    logger.exception("Unhandled exception", extra={"request_id": req_id})
    return JSONResponse(
        status_code=500,
        content={"error": "internal_server_error", "detail": str(exc), "request_id": req_id},
    )


# ── Entrypoint ──
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.SERVICE_PORT, log_level="info")
