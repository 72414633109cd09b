# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: member number allocation.

Numbers freed by deleted members are handed out again, oldest deletion
first; otherwise the ``counters/members`` counter is incremented. Both
paths go through the store's atomic primitives (``take`` and
``transaction_increment``), never through read-then-write in this process,
because two admins approving requests at once is the normal case.

Every number handed out, whether allocated or claimed manually, is first
reserved at ``memberNumbers/<n>``: the caller whose increment returns 1
owns the number until it is released.
"""

from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from ledenbeheer.core.config import settings
from ledenbeheer.core.exceptions import AllocationError, ValidationError
from ledenbeheer.core.logging import get_logger
from ledenbeheer.metrics import MEMBER_NUMBERS_ALLOCATED, MEMBER_NUMBERS_RELEASED
from ledenbeheer.models.domain import DeletedMemberNumber, utcnow
from ledenbeheer.repositories.member_repository import MEMBERS_PATH
from ledenbeheer.repositories.store import KeyValueStore

logger = get_logger(__name__)

DELETED_NUMBERS_PATH = "deletedMemberNumbers"
MEMBER_COUNTER_PATH = "counters/members"
RESERVATIONS_PATH = "memberNumbers"


def reservation_path(member_number: int) -> str:
    return f"{RESERVATIONS_PATH}/{member_number}"


class MemberNumberAllocator:
    """Hands out human-facing member numbers, preferring reuse."""

    def __init__(self, store: KeyValueStore, max_attempts: Optional[int] = None) -> None:
        self._store = store
        self._max_attempts = max_attempts or settings.ALLOCATION_MAX_ATTEMPTS

    # ── Commands ──

    async def allocate(self) -> int:
        """Next number: oldest released number, else a fresh counter value.

        Store failures propagate as StoreUnavailable / StoreTimeout.
        """
        number = await self._take_oldest_released()
        if number is not None:
            MEMBER_NUMBERS_ALLOCATED.labels(source="reused").inc()
            logger.info("Member number allocated from reuse pool: %d", number)
            return number

        for _ in range(self._max_attempts):
            number = await self._store.transaction_increment(MEMBER_COUNTER_PATH)
            if not await self._reserve(number):
                logger.warning("Counter value %d is reserved by a manual assignment, skipping", number)
                continue
            if await self.is_in_use(number):
                # Held by a member stored before reservations existed; the
                # reservation stays so the number is never offered again.
                logger.warning("Counter value %d is held by a live member, skipping", number)
                continue
            MEMBER_NUMBERS_ALLOCATED.labels(source="counter").inc()
            logger.info("Member number allocated from counter: %d", number)
            return number
        raise AllocationError(
            f"No free member number after {self._max_attempts} counter increments"
        )

    async def release(self, member_number: int) -> DeletedMemberNumber:
        """Drop the reservation and put the number in the reuse pool (one entry per number)."""
        await self.unreserve(member_number)
        existing = await self._store.query(
            DELETED_NUMBERS_PATH, "memberNumber", equal_to=member_number
        )
        if existing:
            key, data = existing[0]
            logger.warning("Member number %d is already in the reuse pool", member_number)
            return DeletedMemberNumber.from_store(key, data)

        entry = DeletedMemberNumber(member_number=member_number, deleted_at=utcnow())
        key = await self._store.push(DELETED_NUMBERS_PATH, entry.to_store())
        MEMBER_NUMBERS_RELEASED.inc()
        logger.info("Member number released for reuse: %d", member_number)
        return entry.model_copy(update={"id": key})

    async def claim(self, member_number: int) -> int:
        """Reserve a manually assigned number and withdraw it from the pool.

        Raises ValidationError when another caller already holds the number.
        Returns the number of pool entries removed.
        """
        if not await self._reserve(member_number):
            raise ValidationError(
                f"Member number {member_number} is already assigned",
                member_number=member_number,
            )
        entries = await self._store.query(
            DELETED_NUMBERS_PATH, "memberNumber", equal_to=member_number
        )
        removed = 0
        for key, _ in entries:
            if await self._store.take(f"{DELETED_NUMBERS_PATH}/{key}") is not None:
                removed += 1
        if removed:
            logger.info("Member number %d claimed manually, removed from pool", member_number)
        return removed

    async def unreserve(self, member_number: int) -> None:
        """Give up a reservation without returning the number to the pool."""
        await self._store.delete(reservation_path(member_number))

    # ── Queries ──

    async def peek(self) -> int:
        """The number ``allocate`` would return right now, without consuming it."""
        oldest = await self._store.query(DELETED_NUMBERS_PATH, "deletedAt", limit=1)
        for key, data in oldest:
            try:
                return DeletedMemberNumber.from_store(key, data).member_number
            except PydanticValidationError:
                break
        counter = await self._store.get(MEMBER_COUNTER_PATH) or 0
        candidate = int(counter) + 1
        for _ in range(self._max_attempts):
            if not await self.is_in_use(candidate) and not await self.is_reserved(candidate):
                return candidate
            candidate += 1
        return candidate

    async def list_released(self) -> list[DeletedMemberNumber]:
        """Reuse pool, oldest deletion first."""
        rows = await self._store.query(DELETED_NUMBERS_PATH, "deletedAt")
        pool: list[DeletedMemberNumber] = []
        for key, data in rows:
            try:
                pool.append(DeletedMemberNumber.from_store(key, data))
            except PydanticValidationError:
                logger.warning("Skipping malformed reuse pool entry %s", key)
        return pool

    async def is_in_use(self, member_number: int) -> bool:
        rows = await self._store.query(MEMBERS_PATH, "memberNumber", equal_to=member_number)
        return any(isinstance(v, dict) and not v.get("temp") for _, v in rows)

    async def is_reserved(self, member_number: int) -> bool:
        return bool(await self._store.get(reservation_path(member_number)))

    # ── Internal ──

    async def _reserve(self, member_number: int) -> bool:
        ticket = await self._store.transaction_increment(reservation_path(member_number))
        return ticket == 1

    async def _take_oldest_released(self) -> Optional[int]:
        for _ in range(self._max_attempts):
            oldest = await self._store.query(DELETED_NUMBERS_PATH, "deletedAt", limit=1)
            if not oldest:
                return None
            key, _ = oldest[0]
            taken = await self._store.take(f"{DELETED_NUMBERS_PATH}/{key}")
            if taken is None:
                # Another allocation won this entry; look again.
                continue
            try:
                entry = DeletedMemberNumber.from_store(key, taken)
            except PydanticValidationError:
                logger.warning("Discarded malformed reuse pool entry %s: %s", key, taken)
                continue
            if not await self._reserve(entry.member_number):
                logger.warning(
                    "Released number %d was claimed manually, discarded", entry.member_number
                )
                continue
            if await self.is_in_use(entry.member_number):
                logger.warning(
                    "Released number %d is held by a live member, discarded",
                    entry.member_number,
                )
                continue
            return entry.member_number
        logger.warning("Reuse pool stayed contended for %d attempts", self._max_attempts)
        return None
