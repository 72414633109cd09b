# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Controller: Member endpoints: list, create, get, update, delete, number preview.
Thin HTTP layer. Delegates ALL logic to MemberRepository / MemberNumberAllocator.
Domain errors are translated to HTTP by the handlers registered in main.py.
"""

from fastapi import APIRouter, Depends

from ledenbeheer.core.config import settings
from ledenbeheer.core.dependencies import get_allocator, get_member_repo
from ledenbeheer.models.domain import DeletedMemberNumber, format_member_number
from ledenbeheer.repositories.member_repository import MemberRepository
from ledenbeheer.schemas import DeleteResult, MemberCreate, MemberOut, MemberUpdate, NextNumber
from ledenbeheer.services.member_number_allocator import MemberNumberAllocator

router = APIRouter(prefix="/api/v1/members", tags=["Members"])


@router.get("", response_model=list[MemberOut])
async def list_members(repo: MemberRepository = Depends(get_member_repo)):
    """All members, lowest member number first."""
    return [MemberOut.from_member(m) for m in await repo.list()]


@router.post("", response_model=MemberOut, status_code=201)
async def create_member(
    payload: MemberCreate,
    repo: MemberRepository = Depends(get_member_repo),
):
    """Register a member directly. A number is allocated unless one is given."""
    member = await repo.create(payload.model_dump(exclude_none=True))
    return MemberOut.from_member(member)


@router.get("/next-number", response_model=NextNumber)
async def next_member_number(allocator: MemberNumberAllocator = Depends(get_allocator)):
    """Preview of the number the next registration would receive. Nothing is consumed."""
    number = await allocator.peek()
    return NextNumber(
        member_number=number,
        display_number=format_member_number(number, settings.MEMBER_NUMBER_WIDTH),
    )


@router.get("/released-numbers", response_model=list[DeletedMemberNumber])
async def released_numbers(allocator: MemberNumberAllocator = Depends(get_allocator)):
    """Numbers waiting for reuse, oldest deletion first."""
    return await allocator.list_released()


@router.get("/{member_id}", response_model=MemberOut)
async def get_member(member_id: str, repo: MemberRepository = Depends(get_member_repo)):
    return MemberOut.from_member(await repo.get(member_id))


@router.patch("/{member_id}", response_model=MemberOut)
async def update_member(
    member_id: str,
    payload: MemberUpdate,
    repo: MemberRepository = Depends(get_member_repo),
):
    """Partial update; only the fields sent are changed."""
    member = await repo.update(member_id, payload.model_dump(exclude_unset=True))
    return MemberOut.from_member(member)


@router.delete("/{member_id}", response_model=DeleteResult)
async def delete_member(member_id: str, repo: MemberRepository = Depends(get_member_repo)):
    """Delete a member; the member number goes back to the reuse pool."""
    return await repo.delete(member_id)
