# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false

"""
Tests for the Firebase REST adapter against httpx.MockTransport.
"""

import json

import httpx
import pytest

from ledenbeheer.core.exceptions import StoreError, StoreTimeout, StoreUnavailable
from ledenbeheer.repositories.firebase_store import FirebaseRestStore

DB_URL = "https://ledenbeheer-test.firebaseio.com"


def make_store(handler, auth_token="secret", cas_max_attempts=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FirebaseRestStore(client, DB_URL + "/", auth_token=auth_token,
                             cas_max_attempts=cas_max_attempts)


class Recorder:
    """Collects requests and answers from a queue of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


# ============================================
# Basic operations
# ============================================
class TestBasicOperations:
    @pytest.mark.asyncio
    async def test_get_builds_url_with_auth(self):
        rec = Recorder(httpx.Response(200, json={"firstName": "Yusuf"}))
        store = make_store(rec)
        assert await store.get("members/abc") == {"firstName": "Yusuf"}
        req = rec.requests[0]
        assert req.method == "GET"
        assert req.url.path == "/members/abc.json"
        assert req.url.params["auth"] == "secret"

    @pytest.mark.asyncio
    async def test_get_without_token_sends_no_auth(self):
        rec = Recorder(httpx.Response(200, content=b"null"))
        store = make_store(rec, auth_token="")
        assert await store.get("counters/members") is None
        assert "auth" not in rec.requests[0].url.params

    @pytest.mark.asyncio
    async def test_set_none_deletes(self):
        rec = Recorder(httpx.Response(200, content=b"null"))
        store = make_store(rec)
        await store.set("members/abc", None)
        assert rec.requests[0].method == "DELETE"

    @pytest.mark.asyncio
    async def test_update_patches_children(self):
        rec = Recorder(httpx.Response(200, json={}))
        store = make_store(rec)
        await store.update("member-requests/r1", {"status": "rejected", "processedBy": None})
        req = rec.requests[0]
        assert req.method == "PATCH"
        assert json.loads(req.content) == {"status": "rejected", "processedBy": None}

    @pytest.mark.asyncio
    async def test_push_returns_generated_key(self):
        rec = Recorder(httpx.Response(200, json={"name": "-Nx1abc"}))
        store = make_store(rec)
        assert await store.push("members", {"temp": True}) == "-Nx1abc"
        assert rec.requests[0].method == "POST"

    @pytest.mark.asyncio
    async def test_push_without_key_is_an_error(self):
        store = make_store(Recorder(httpx.Response(200, json={})))
        with pytest.raises(StoreError):
            await store.push("members", {"temp": True})

    @pytest.mark.asyncio
    async def test_multi_path_patch_targets_root(self):
        rec = Recorder(httpx.Response(200, json={}))
        store = make_store(rec)
        await store.multi_path_patch({
            "members/m1": {"firstName": "Yusuf"},
            "/member-requests/r1/": {"status": "approved"},
        })
        req = rec.requests[0]
        assert req.method == "PATCH"
        assert req.url.path == "/.json"
        assert json.loads(req.content) == {
            "members/m1": {"firstName": "Yusuf"},
            "member-requests/r1": {"status": "approved"},
        }


# ============================================
# Conditional (ETag) primitives
# ============================================
class TestConditionalWrites:
    @pytest.mark.asyncio
    async def test_increment_retries_on_precondition_failed(self):
        rec = Recorder(
            httpx.Response(200, json=5, headers={"ETag": "e1"}),
            httpx.Response(412, json={"error": "etag mismatch"}),
            httpx.Response(200, json=6, headers={"ETag": "e2"}),
            httpx.Response(200, json=7),
        )
        store = make_store(rec)
        assert await store.transaction_increment("counters/members") == 7
        assert rec.requests[0].headers["X-Firebase-ETag"] == "true"
        assert rec.requests[1].headers["if-match"] == "e1"
        assert rec.requests[3].headers["if-match"] == "e2"
        assert json.loads(rec.requests[3].content) == 7

    @pytest.mark.asyncio
    async def test_increment_from_empty_counter(self):
        rec = Recorder(
            httpx.Response(200, content=b"null", headers={"ETag": "null_etag"}),
            httpx.Response(200, json=1),
        )
        assert await make_store(rec).transaction_increment("counters/members") == 1

    @pytest.mark.asyncio
    async def test_increment_gives_up_after_max_attempts(self):
        responses = []
        for i in range(2):
            responses.append(httpx.Response(200, json=i, headers={"ETag": f"e{i}"}))
            responses.append(httpx.Response(412))
        store = make_store(Recorder(*responses), cas_max_attempts=2)
        with pytest.raises(StoreUnavailable):
            await store.transaction_increment("counters/members")

    @pytest.mark.asyncio
    async def test_take_returns_value_and_deletes(self):
        rec = Recorder(
            httpx.Response(200, json={"memberNumber": 3}, headers={"ETag": "e1"}),
            httpx.Response(200, content=b"null"),
        )
        store = make_store(rec)
        assert await store.take("deletedMemberNumbers/k1") == {"memberNumber": 3}
        assert rec.requests[1].method == "DELETE"
        assert rec.requests[1].headers["if-match"] == "e1"

    @pytest.mark.asyncio
    async def test_take_lost_race_returns_none(self):
        rec = Recorder(
            httpx.Response(200, json={"memberNumber": 3}, headers={"ETag": "e1"}),
            httpx.Response(412),
        )
        assert await make_store(rec).take("deletedMemberNumbers/k1") is None

    @pytest.mark.asyncio
    async def test_take_missing_key(self):
        rec = Recorder(httpx.Response(200, content=b"null", headers={"ETag": "null_etag"}))
        assert await make_store(rec).take("deletedMemberNumbers/gone") is None
        assert len(rec.requests) == 1


# ============================================
# Queries
# ============================================
class TestQuery:
    @pytest.mark.asyncio
    async def test_query_params_and_client_side_order(self):
        rec = Recorder(httpx.Response(200, json={
            "k2": {"memberNumber": 5, "deletedAt": "2026-02-01T00:00:00+00:00"},
            "k1": {"memberNumber": 3, "deletedAt": "2026-01-01T00:00:00+00:00"},
        }))
        store = make_store(rec)
        rows = await store.query("deletedMemberNumbers", "deletedAt", limit=2)
        assert [k for k, _ in rows] == ["k1", "k2"]
        params = rec.requests[0].url.params
        assert params["orderBy"] == '"deletedAt"'
        assert params["limitToFirst"] == "2"

    @pytest.mark.asyncio
    async def test_query_equal_to_and_desc(self):
        rec = Recorder(httpx.Response(200, json={}))
        store = make_store(rec)
        assert await store.query("audit-log", "eventType", limit=5, order="desc",
                                 equal_to="request_approved") == []
        params = rec.requests[0].url.params
        assert params["equalTo"] == '"request_approved"'
        assert params["limitToLast"] == "5"


# ============================================
# Error mapping
# ============================================
class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)
        with pytest.raises(StoreTimeout):
            await make_store(handler).get("members")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)
        with pytest.raises(StoreUnavailable) as exc:
            await make_store(handler).get("members")
        assert not isinstance(exc.value, StoreTimeout)

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self):
        store = make_store(Recorder(httpx.Response(503, text="maintenance")))
        with pytest.raises(StoreUnavailable):
            await store.get("members")

    @pytest.mark.asyncio
    async def test_client_error_is_store_error(self):
        store = make_store(Recorder(httpx.Response(401, json={"error": "Permission denied"})))
        with pytest.raises(StoreError) as exc:
            await store.get("members")
        assert not isinstance(exc.value, StoreUnavailable)
        assert exc.value.context["status"] == 401

    @pytest.mark.asyncio
    async def test_ping_and_close(self):
        rec = Recorder(httpx.Response(200, json={"members": True}))
        store = make_store(rec)
        assert await store.ping() is True
        assert rec.requests[0].url.params["shallow"] == "true"
        await store.close()

    def test_database_url_required(self):
        with pytest.raises(ValueError):
            FirebaseRestStore(httpx.AsyncClient(), "")
