# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: Membership request data access at ``member-requests/<id>``.
NO business rules here, pure CRUD. State transitions live in the workflow.
"""

from typing import Any, Optional

from ledenbeheer.models.domain import MembershipRequest
from ledenbeheer.repositories.store import KeyValueStore

REQUESTS_PATH = "member-requests"


def request_path(request_id: str) -> str:
    return f"{REQUESTS_PATH}/{request_id}"


class MembershipRequestRepository:
    """Key/value backed membership request storage."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    # ── Read ──

    async def get(self, request_id: str) -> Optional[MembershipRequest]:
        data = await self._store.get(request_path(request_id))
        if not isinstance(data, dict):
            return None
        return MembershipRequest.from_store(request_id, data)

    async def get_all(self, status: Optional[str] = None) -> list[MembershipRequest]:
        if status:
            rows = await self._store.query(REQUESTS_PATH, "status", equal_to=status)
        else:
            data = await self._store.get(REQUESTS_PATH) or {}
            rows = list(data.items()) if isinstance(data, dict) else []
        return [
            MembershipRequest.from_store(key, value)
            for key, value in rows
            if isinstance(value, dict)
        ]

    # ── Write ──

    async def create(self, request: MembershipRequest) -> MembershipRequest:
        request_id = await self._store.push(REQUESTS_PATH, request.to_store())
        return request.model_copy(update={"id": request_id})

    async def update(self, request_id: str, fields: dict[str, Any]) -> None:
        await self._store.update(request_path(request_id), fields)

    async def delete(self, request_id: str) -> None:
        await self._store.delete(request_path(request_id))
