# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: hierarchical key/value store contract.

Paths are slash-separated (``members/<id>``). Values are JSON-shaped; a null
value is never stored, so writing ``None`` removes the key. The transport
(in-process dict or Firebase REST) is an adapter concern.
"""

import asyncio
import copy
import itertools
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

from ledenbeheer.core.exceptions import StoreError


def split_path(path: str) -> list[str]:
    return [p for p in path.strip("/").split("/") if p]


def sort_entries(
    entries: list[tuple[str, Any]],
    order_by: str,
    limit: Optional[int] = None,
    order: str = "asc",
    equal_to: Any = None,
) -> list[tuple[str, Any]]:
    """Filter/sort ``(key, value)`` pairs the way the store's ordered queries do.

    Children missing the ordering field sort first (null sorts lowest), ties
    break on the key. ``order="desc"`` with a limit keeps the *last* N.
    """
    if equal_to is not None:
        entries = [
            (k, v) for k, v in entries
            if isinstance(v, dict) and v.get(order_by) == equal_to
        ]

    def sort_key(item: tuple[str, Any]):
        key, value = item
        field = value.get(order_by) if isinstance(value, dict) else None
        if field is None:
            return (0, "", key)
        if isinstance(field, bool):
            return (1, int(field), key)
        if isinstance(field, (int, float)):
            return (2, field, key)
        return (3, str(field), key)

    ordered = sorted(entries, key=sort_key)
    if order == "desc":
        ordered.reverse()
    if limit is not None:
        ordered = ordered[:limit]
    return ordered


class KeyValueStore(ABC):
    """Operations the core needs from the backing database."""

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Value at ``path`` or ``None``."""

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Replace the value at ``path``."""

    @abstractmethod
    async def update(self, path: str, partial: dict[str, Any]) -> None:
        """Shallow merge: each child in ``partial`` is replaced, others untouched."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        ...

    @abstractmethod
    async def push(self, path: str, value: Any) -> str:
        """Store ``value`` under a fresh store-generated key and return the key."""

    @abstractmethod
    async def multi_path_patch(self, updates: dict[str, Any]) -> None:
        """Write several absolute paths in one call. No all-or-nothing guarantee."""

    @abstractmethod
    async def transaction_increment(self, path: str) -> int:
        """Atomically add one to the integer at ``path`` and return the new value."""

    @abstractmethod
    async def take(self, path: str) -> Any:
        """Atomically read and remove ``path``.

        Returns ``None`` if the key is absent or was modified concurrently, so
        two callers can never both receive the same value.
        """

    @abstractmethod
    async def query(
        self,
        path: str,
        order_by: str,
        limit: Optional[int] = None,
        order: str = "asc",
        equal_to: Any = None,
    ) -> list[tuple[str, Any]]:
        """Children of ``path`` ordered by the ``order_by`` child field."""

    async def ping(self) -> bool:
        """Cheap connectivity probe used by the readiness endpoint."""
        await self.get("counters")
        return True

    async def close(self) -> None:
        return None


class InMemoryStore(KeyValueStore):
    """In-process tree with the same semantics as the remote store.

    Every call yields to the event loop once, so concurrent callers
    interleave between calls the way they would over the network. The
    atomic primitives run under a lock.
    """

    def __init__(self) -> None:
        self._root: dict[str, Any] = {}
        self._lock = asyncio.Lock()
        self._push_seq = itertools.count(1)

    # ── Tree helpers ──

    def _read(self, path: str) -> Any:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def _write(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if not parts:
            if value is not None and not isinstance(value, dict):
                raise StoreError("Root value must be an object", path=path)
            self._root = copy.deepcopy(value) if value is not None else {}
            return
        if value is None:
            self._remove(parts)
            return
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = copy.deepcopy(self._prune(value))

    def _remove(self, parts: list[str]) -> None:
        trail: list[tuple[dict, str]] = []
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                return
            trail.append((node, part))
            node = child
        node.pop(parts[-1], None)
        # Empty parents disappear, as in the remote store.
        for parent, key in reversed(trail):
            if parent[key]:
                break
            del parent[key]

    @classmethod
    def _prune(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: cls._prune(v) for k, v in value.items() if v is not None}
        if isinstance(value, list):
            return [cls._prune(v) for v in value]
        return value

    # ── KeyValueStore ──

    async def get(self, path: str) -> Any:
        await asyncio.sleep(0)
        return self._read(path)

    async def set(self, path: str, value: Any) -> None:
        await asyncio.sleep(0)
        self._write(path, value)

    async def update(self, path: str, partial: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        base = path.strip("/")
        for key, value in partial.items():
            self._write(f"{base}/{key}" if base else key, value)

    async def delete(self, path: str) -> None:
        await asyncio.sleep(0)
        self._write(path, None)

    async def push(self, path: str, value: Any) -> str:
        await asyncio.sleep(0)
        # Keys sort in insertion order, like the remote store's push ids.
        key = f"{next(self._push_seq):012d}{uuid.uuid4().hex[:8]}"
        self._write(f"{path.strip('/')}/{key}", value)
        return key

    async def multi_path_patch(self, updates: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        for path, value in updates.items():
            self._write(path, value)

    async def transaction_increment(self, path: str) -> int:
        await asyncio.sleep(0)
        async with self._lock:
            current = self._read(path) or 0
            if not isinstance(current, int) or isinstance(current, bool):
                raise StoreError(f"Counter at '{path}' is not an integer", path=path)
            new_value = current + 1
            self._write(path, new_value)
            return new_value

    async def take(self, path: str) -> Any:
        await asyncio.sleep(0)
        async with self._lock:
            value = self._read(path)
            if value is not None:
                self._write(path, None)
            return value

    async def query(
        self,
        path: str,
        order_by: str,
        limit: Optional[int] = None,
        order: str = "asc",
        equal_to: Any = None,
    ) -> list[tuple[str, Any]]:
        await asyncio.sleep(0)
        children = self._read(path) or {}
        if not isinstance(children, dict):
            return []
        return sort_entries(list(children.items()), order_by, limit, order, equal_to)

    # ── Bulk / internal ──

    def clear(self) -> None:
        self._root = {}

    @property
    def data(self) -> dict[str, Any]:
        """Direct access for tests and seeding."""
        return self._root
