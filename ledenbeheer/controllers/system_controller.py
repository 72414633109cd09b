# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Controller: System endpoints: health, readiness, metrics, audit log.
Pure HTTP layer, no business logic.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from ledenbeheer.core.config import settings
from ledenbeheer.core.dependencies import get_audit_repo, get_store
from ledenbeheer.core.exceptions import StoreError
from ledenbeheer.repositories.audit_repository import AuditRepository
from ledenbeheer.repositories.store import KeyValueStore

router = APIRouter(tags=["System"])


@router.get("/health")
async def health_check():
    """Liveness probe for Docker and orchestration."""
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(store: KeyValueStore = Depends(get_store)):
    """Readiness probe: verifies the key/value store answers."""
    try:
        await store.ping()
    except StoreError as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "degraded",
                "service": settings.SERVICE_NAME,
                "store": settings.STORE_BACKEND,
                "detail": exc.message,
            },
        )
    return {"status": "ready", "service": settings.SERVICE_NAME, "store": settings.STORE_BACKEND}


@router.get("/metrics")
async def prometheus_metrics():
    """Expose Prometheus metrics in OpenMetrics format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/api/v1/audit", tags=["Audit"])
async def get_audit_log(
    event_type: Optional[str] = Query(default=None, alias="eventType"),
    subject_id: Optional[str] = Query(default=None, alias="subjectId"),
    limit: Optional[int] = Query(default=None, ge=1, le=1000, description="Max results"),
    audit_repo: AuditRepository = Depends(get_audit_repo),
) -> list[dict[str, Any]]:
    """Workflow events, newest first."""
    return await audit_repo.get_all(event_type=event_type, subject_id=subject_id, limit=limit)
