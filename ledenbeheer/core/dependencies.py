# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
FastAPI dependency injection: wire the store, repositories and services.
"""

import httpx

from ledenbeheer.core.config import settings
from ledenbeheer.core.logging import get_logger
from ledenbeheer.repositories.audit_repository import AuditRepository
from ledenbeheer.repositories.firebase_store import FirebaseRestStore
from ledenbeheer.repositories.member_repository import MemberRepository
from ledenbeheer.repositories.request_repository import MembershipRequestRepository
from ledenbeheer.repositories.store import InMemoryStore, KeyValueStore
from ledenbeheer.services.member_number_allocator import MemberNumberAllocator
from ledenbeheer.services.request_workflow import MembershipRequestWorkflow

logger = get_logger(__name__)


def build_store() -> KeyValueStore:
    """Store adapter selected by STORE_BACKEND."""
    if settings.STORE_BACKEND == "firebase":
        logger.info("Using Firebase store at %s", settings.FIREBASE_DATABASE_URL)
        return FirebaseRestStore(
            http_client=httpx.AsyncClient(timeout=settings.STORE_TIMEOUT),
            database_url=settings.FIREBASE_DATABASE_URL,
            auth_token=settings.FIREBASE_AUTH_TOKEN,
        )
    if settings.STORE_BACKEND != "memory":
        raise ValueError(f"Unknown STORE_BACKEND '{settings.STORE_BACKEND}'")
    logger.info("Using in-memory store")
    return InMemoryStore()


# ── Singleton instances ──
_store = build_store()
_audit_repo = AuditRepository(_store)
_allocator = MemberNumberAllocator(_store)
_member_repo = MemberRepository(_store, _allocator, audit_repo=_audit_repo)
_request_repo = MembershipRequestRepository(_store)

# ── Service instances (with injected dependencies) ──
_workflow = MembershipRequestWorkflow(
    store=_store,
    request_repo=_request_repo,
    member_repo=_member_repo,
    allocator=_allocator,
    audit_repo=_audit_repo,
)


# ── FastAPI dependency functions ──
def get_store() -> KeyValueStore:
    return _store


def get_member_repo() -> MemberRepository:
    return _member_repo


def get_allocator() -> MemberNumberAllocator:
    return _allocator


def get_request_workflow() -> MembershipRequestWorkflow:
    return _workflow


def get_audit_repo() -> AuditRepository:
    return _audit_repo


async def close_store() -> None:
    await _store.close()
