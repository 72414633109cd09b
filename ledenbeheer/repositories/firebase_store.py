# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: Firebase Realtime Database over its REST API.

Every call carries a bounded timeout. Counter increments and pool
consumption use conditional requests (ETag + if-match), so concurrent
writers are serialized by the database instead of by this process.
"""

import json
from typing import Any, Optional

import httpx

from ledenbeheer.core.config import settings
from ledenbeheer.core.exceptions import StoreError, StoreTimeout, StoreUnavailable
from ledenbeheer.core.logging import get_logger
from ledenbeheer.metrics import STORE_ERRORS
from ledenbeheer.repositories.store import KeyValueStore, sort_entries, split_path

logger = get_logger(__name__)

ETAG_HEADER = "X-Firebase-ETag"
PRECONDITION_FAILED = 412


class FirebaseRestStore(KeyValueStore):
    """KeyValueStore backed by ``{database_url}/{path}.json``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        database_url: str,
        auth_token: str = "",
        cas_max_attempts: Optional[int] = None,
    ) -> None:
        if not database_url:
            raise ValueError("FIREBASE_DATABASE_URL is required for the firebase store")
        self._client = http_client
        self._base_url = database_url.rstrip("/")
        self._auth = auth_token
        self._cas_max_attempts = cas_max_attempts or settings.STORE_CAS_MAX_ATTEMPTS

    # ── Transport ──

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{'/'.join(split_path(path))}.json"

    def _params(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        params: dict[str, str] = {}
        if self._auth:
            params["auth"] = self._auth
        if extra:
            params.update(extra)
        return params

    async def _request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
        allowed: tuple[int, ...] = (),
    ) -> httpx.Response:
        operation = f"{method} {path or '/'}"
        try:
            resp = await self._client.request(
                method,
                self._url(path),
                params=self._params(params),
                headers=headers,
                content=json.dumps(body) if body is not None else None,
            )
        except httpx.TimeoutException as exc:
            STORE_ERRORS.labels(operation=method).inc()
            logger.warning("Store timeout: %s (%s)", operation, exc)
            raise StoreTimeout(f"Store call timed out: {operation}", path=path) from exc
        except httpx.RequestError as exc:
            STORE_ERRORS.labels(operation=method).inc()
            logger.warning("Store unreachable: %s (%s)", operation, exc)
            raise StoreUnavailable(f"Store unreachable: {operation}: {exc}", path=path) from exc

        if resp.status_code in allowed or resp.is_success:
            return resp

        STORE_ERRORS.labels(operation=method).inc()
        logger.warning("Store error: %s -> %d %s", operation, resp.status_code, resp.text[:200])
        if resp.status_code >= 500:
            raise StoreUnavailable(
                f"Store returned {resp.status_code} for {operation}",
                path=path, status=resp.status_code,
            )
        raise StoreError(
            f"Store rejected {operation}: {resp.status_code} {resp.text[:200]}",
            path=path, status=resp.status_code,
        )

    # ── KeyValueStore ──

    async def get(self, path: str) -> Any:
        resp = await self._request("GET", path)
        return resp.json()

    async def set(self, path: str, value: Any) -> None:
        if value is None:
            await self.delete(path)
            return
        await self._request("PUT", path, body=value)

    async def update(self, path: str, partial: dict[str, Any]) -> None:
        await self._request("PATCH", path, body=partial)

    async def delete(self, path: str) -> None:
        await self._request("DELETE", path)

    async def push(self, path: str, value: Any) -> str:
        resp = await self._request("POST", path, body=value)
        data = resp.json() or {}
        key = data.get("name")
        if not key:
            raise StoreError(f"Store did not return a key for push to '{path}'", path=path)
        return key

    async def multi_path_patch(self, updates: dict[str, Any]) -> None:
        body = {"/".join(split_path(p)): v for p, v in updates.items()}
        await self._request("PATCH", "", body=body)

    async def _read_with_etag(self, path: str) -> tuple[Any, str]:
        resp = await self._request("GET", path, headers={ETAG_HEADER: "true"})
        etag = resp.headers.get("ETag")
        if not etag:
            raise StoreError(f"Store returned no ETag for '{path}'", path=path)
        return resp.json(), etag

    async def transaction_increment(self, path: str) -> int:
        for attempt in range(1, self._cas_max_attempts + 1):
            current, etag = await self._read_with_etag(path)
            current = current or 0
            if not isinstance(current, int) or isinstance(current, bool):
                raise StoreError(f"Counter at '{path}' is not an integer", path=path)
            new_value = current + 1
            resp = await self._request(
                "PUT", path, body=new_value,
                headers={"if-match": etag}, allowed=(PRECONDITION_FAILED,),
            )
            if resp.status_code != PRECONDITION_FAILED:
                return new_value
            logger.info("Counter %s changed concurrently, retrying (attempt %d)", path, attempt)
        raise StoreUnavailable(
            f"Counter '{path}' kept changing after {self._cas_max_attempts} attempts",
            path=path,
        )

    async def take(self, path: str) -> Any:
        value, etag = await self._read_with_etag(path)
        if value is None:
            return None
        resp = await self._request(
            "DELETE", path, headers={"if-match": etag}, allowed=(PRECONDITION_FAILED,),
        )
        if resp.status_code == PRECONDITION_FAILED:
            logger.info("Entry %s was taken concurrently", path)
            return None
        return value

    async def query(
        self,
        path: str,
        order_by: str,
        limit: Optional[int] = None,
        order: str = "asc",
        equal_to: Any = None,
    ) -> list[tuple[str, Any]]:
        params = {"orderBy": json.dumps(order_by)}
        if equal_to is not None:
            params["equalTo"] = json.dumps(equal_to)
        if limit is not None:
            params["limitToLast" if order == "desc" else "limitToFirst"] = str(limit)
        resp = await self._request("GET", path, params=params)
        data = resp.json() or {}
        if not isinstance(data, dict):
            return []
        # The REST API returns an unordered object; order it here.
        return sort_entries(list(data.items()), order_by, limit, order, equal_to)

    async def ping(self) -> bool:
        await self._request("GET", "counters", params={"shallow": "true"})
        return True

    async def close(self) -> None:
        await self._client.aclose()
