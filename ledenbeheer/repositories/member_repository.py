# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: Member records at ``members/<id>``.
CRUD facade; member number allocation and reclaiming are delegated to
MemberNumberAllocator.
"""

from typing import TYPE_CHECKING, Any, Optional

from pydantic import ValidationError as PydanticValidationError

from ledenbeheer.core.exceptions import NotFound, StoreError, ValidationError
from ledenbeheer.core.logging import get_logger
from ledenbeheer.metrics import MEMBERS_CREATED, MEMBERS_DELETED
from ledenbeheer.models.domain import REQUIRED_MEMBER_FIELDS, Member, utcnow
from ledenbeheer.repositories.store import KeyValueStore

if TYPE_CHECKING:
    from ledenbeheer.repositories.audit_repository import AuditRepository
    from ledenbeheer.services.member_number_allocator import MemberNumberAllocator

logger = get_logger(__name__)

MEMBERS_PATH = "members"

# Written by the repository, never taken from callers.
SERVER_FIELDS = ("id", "created_at", "updated_at", "temp")


def member_path(member_id: str) -> str:
    return f"{MEMBERS_PATH}/{member_id}"


def _build_member(fields: dict[str, Any]) -> Member:
    try:
        return Member.model_validate(fields)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid member data",
            fields=[".".join(str(p) for p in e["loc"]) for e in exc.errors()],
        ) from exc


class MemberRepository:
    """Key/value backed member storage."""

    def __init__(
        self,
        store: KeyValueStore,
        allocator: "MemberNumberAllocator",
        audit_repo: Optional["AuditRepository"] = None,
    ) -> None:
        self._store = store
        self._allocator = allocator
        self._audit = audit_repo

    # ── Read ──

    async def get(self, member_id: str) -> Member:
        data = await self._store.get(member_path(member_id))
        if not isinstance(data, dict) or data.get("temp"):
            raise NotFound(f"Member {member_id} not found", member_id=member_id)
        return Member.from_store(member_id, data)

    async def list(self) -> list[Member]:
        """All live members, lowest member number first."""
        rows = await self._store.query(MEMBERS_PATH, "memberNumber")
        members = [
            Member.from_store(key, value)
            for key, value in rows
            if isinstance(value, dict) and not value.get("temp")
        ]
        # Legacy records may hold the number as a string; order on the parsed value.
        members.sort(key=lambda m: (m.member_number is None, m.member_number or 0, m.id))
        return members

    async def count(self) -> int:
        return len(await self.list())

    # ── Write ──

    async def create(self, data: dict[str, Any]) -> Member:
        """Persist a new member, allocating a member number when none is given."""
        fields = {k: v for k, v in data.items() if k not in SERVER_FIELDS}
        missing = [f for f in REQUIRED_MEMBER_FIELDS if not str(fields.get(f) or "").strip()]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}", fields=missing
            )

        now = utcnow()
        if not fields.get("registration_date"):
            fields["registration_date"] = now
        # Validate everything before a number is consumed.
        member = _build_member({**fields, "created_at": now, "updated_at": now})

        if member.member_number:
            await self._assert_number_free(member.member_number)
            from_pool = await self._allocator.claim(member.member_number) > 0
        else:
            member.member_number = await self._allocator.allocate()
            from_pool = True

        try:
            member_id = await self._store.push(MEMBERS_PATH, member.to_store())
        except StoreError:
            await self._give_back(member.member_number, to_pool=from_pool)
            raise
        MEMBERS_CREATED.labels(origin="direct").inc()
        await self._record("member_created", member_id, {"memberNumber": member.member_number})
        logger.info("Member created: id=%s, number=%d", member_id, member.member_number)
        return member.model_copy(update={"id": member_id})

    async def update(self, member_id: str, partial: dict[str, Any]) -> Member:
        """Shallow-merge ``partial`` into the stored record; other fields are untouched."""
        existing = await self.get(member_id)
        fields = {k: v for k, v in partial.items() if k not in SERVER_FIELDS}

        for name in REQUIRED_MEMBER_FIELDS:
            if name in fields and not str(fields[name] or "").strip():
                raise ValidationError(f"{name} cannot be empty", fields=[name])

        if "member_number" in fields and fields["member_number"] is None:
            raise ValidationError("member_number cannot be removed", fields=["member_number"])
        checked = _build_member({**existing.model_dump(), **fields, "updated_at": utcnow()})

        new_number = checked.member_number
        renumbered = new_number != existing.member_number
        if renumbered:
            await self._assert_number_free(new_number, exclude_id=member_id)
            from_pool = await self._allocator.claim(new_number) > 0

        before = existing.to_store()
        after = checked.to_store()
        # Only changed children are written; a removed value is written as null.
        changes = {
            key: after.get(key)
            for key in set(before) | set(after)
            if after.get(key) != before.get(key)
        }
        try:
            await self._store.update(member_path(member_id), changes)
        except StoreError:
            if renumbered:
                await self._give_back(new_number, to_pool=from_pool)
            raise
        if renumbered and existing.member_number:
            await self._allocator.release(existing.member_number)
        await self._record("member_updated", member_id, {"fields": sorted(changes)})
        logger.info("Member updated: id=%s, fields=%s", member_id, sorted(changes))
        return checked

    async def delete(self, member_id: str) -> dict[str, Any]:
        """Remove a member and return its number to the reuse pool."""
        existing = await self.get(member_id)
        # The record goes first: a released number must not still be held.
        await self._store.delete(member_path(member_id))
        if existing.member_number:
            await self._allocator.release(existing.member_number)
        MEMBERS_DELETED.inc()
        await self._record("member_deleted", member_id, {"memberNumber": existing.member_number})
        logger.info("Member deleted: id=%s, number=%s", member_id, existing.member_number)
        return {"status": "deleted", "id": member_id, "memberNumber": existing.member_number}

    # ── Internal ──

    async def _record(self, event_type: str, member_id: str, details: dict[str, Any]) -> None:
        if self._audit is not None:
            await self._audit.record_event(event_type, member_id, details)

    async def _give_back(self, member_number: int, to_pool: bool) -> None:
        """Undo an allocation or claim whose member was never written."""
        try:
            if to_pool:
                await self._allocator.release(member_number)
            else:
                await self._allocator.unreserve(member_number)
        except StoreError as exc:
            logger.warning("Member number %d could not be given back: %s", member_number, exc)

    async def _assert_number_free(self, member_number: int,
                                  exclude_id: Optional[str] = None) -> None:
        rows = await self._store.query(MEMBERS_PATH, "memberNumber", equal_to=member_number)
        holders = [
            key for key, value in rows
            if key != exclude_id and isinstance(value, dict) and not value.get("temp")
        ]
        if holders:
            raise ValidationError(
                f"Member number {member_number} is already assigned",
                member_number=member_number, member_id=holders[0],
            )
