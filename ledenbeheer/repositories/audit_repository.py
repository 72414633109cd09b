# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: Audit log data access.
Append-only event log for every membership workflow event, kept in the store.
"""

from typing import Any, Optional

from ledenbeheer.core.config import settings
from ledenbeheer.core.exceptions import StoreError
from ledenbeheer.core.logging import get_logger
from ledenbeheer.models.domain import utcnow
from ledenbeheer.repositories.store import KeyValueStore

logger = get_logger(__name__)

AUDIT_PATH = "audit-log"


class AuditRepository:
    """Store-backed event log at ``audit-log/<id>``."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    # ── Read ──

    async def get_all(
        self,
        event_type: Optional[str] = None,
        subject_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Newest events first."""
        effective_limit = limit or settings.DEFAULT_AUDIT_LIMIT
        if event_type:
            rows = await self._store.query(AUDIT_PATH, "eventType", equal_to=event_type)
            rows = sorted(rows, key=lambda kv: (kv[1].get("timestamp", ""), kv[0]), reverse=True)
        else:
            rows = await self._store.query(
                AUDIT_PATH, "timestamp", limit=None if subject_id else effective_limit,
                order="desc",
            )
        events = [{"id": key, **value} for key, value in rows]
        if subject_id:
            events = [e for e in events if e.get("subjectId") == subject_id]
        return events[:effective_limit]

    # ── Write ──

    async def record_event(
        self, event_type: str, subject_id: str, details: Optional[dict[str, Any]] = None
    ) -> Optional[dict[str, Any]]:
        """Append an event. Audit failures are logged, never raised."""
        event: dict[str, Any] = {
            "eventType": event_type,
            "subjectId": subject_id,
            "timestamp": utcnow().isoformat(),
            "details": details or {},
        }
        try:
            event_id = await self._store.push(AUDIT_PATH, event)
        except StoreError as exc:
            logger.warning("Audit event %s for %s not recorded: %s", event_type, subject_id, exc)
            return None
        return {"id": event_id, **event}
