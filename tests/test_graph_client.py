"""Tests for the read-only Graph client."""

import httpx
import pytest

from cap_coverage.graph.client import GraphAPIError, GraphClient
from cap_coverage.safety.guardian import SafetyGuardian, SafetyViolation


def _client(handler, **kwargs):
    return GraphClient(
        access_token="test-token",
        guardian=SafetyGuardian(),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestPagination:

    @pytest.mark.asyncio
    async def test_follows_next_link(self):
        seen = []

        def handler(request):
            seen.append(request)
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json={"value": [{"id": "c"}]})
            return httpx.Response(200, json={
                "value": [{"id": "a"}, {"id": "b"}],
                "@odata.nextLink": "https://graph.microsoft.com/v1.0/users?page=2",
            })

        async with _client(handler) as graph:
            items = await graph.get_all_pages("users")

        assert [i["id"] for i in items] == ["a", "b", "c"]
        assert seen[0].url.params["$top"] == "999"
        assert "$top" not in seen[1].url.params
        assert all(r.headers["Authorization"] == "Bearer test-token" for r in seen)

    @pytest.mark.asyncio
    async def test_skip_top_omits_page_size(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"value": []})

        async with _client(handler) as graph:
            await graph.get_all_pages("directoryRoleTemplates", skip_top=True)

        assert "$top" not in seen[0].url.params

    @pytest.mark.asyncio
    async def test_page_cap_stops_following_links(self):
        def handler(request):
            return httpx.Response(200, json={
                "value": [{"id": "x"}],
                "@odata.nextLink": "https://graph.microsoft.com/v1.0/users?skiptoken=again",
            })

        async with _client(handler, max_pages=3) as graph:
            items = await graph.get_all_pages("users")

        assert len(items) == 3

    @pytest.mark.asyncio
    async def test_forbidden_page_raises(self):
        def handler(request):
            return httpx.Response(403, json={"error": {"message": "Insufficient privileges"}})

        async with _client(handler) as graph:
            with pytest.raises(GraphAPIError) as exc:
                await graph.get_all_pages("identity/conditionalAccess/policies")

        assert exc.value.status_code == 403
        assert "Insufficient privileges" in str(exc.value)


class TestSingleGet:

    @pytest.mark.asyncio
    async def test_not_found_is_marked(self):
        def handler(request):
            return httpx.Response(404, json={"error": {"message": "gone"}})

        async with _client(handler) as graph:
            data = await graph.get("users/nobody")

        assert data["_not_found"] is True
        assert data["value"] == []

    @pytest.mark.asyncio
    async def test_bad_request_raises(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "Invalid object identifier"}})

        async with _client(handler) as graph:
            with pytest.raises(GraphAPIError) as exc:
                await graph.get("devices/not-a-guid")

        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_throttling_is_retried(self, no_sleep):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] < 3:
                return httpx.Response(429, headers={"Retry-After": "1"})
            return httpx.Response(200, json={"id": "u1"})

        async with _client(handler) as graph:
            data = await graph.get("users/u1")
            stats = graph.get_stats()

        assert data == {"id": "u1"}
        assert no_sleep == [2.0, 4.0]
        assert stats == {"total_requests": 3, "throttle_events": 2}

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, no_sleep):
        def handler(request):
            return httpx.Response(503)

        async with _client(handler) as graph:
            with pytest.raises(GraphAPIError) as exc:
                await graph.get("users")

        assert exc.value.status_code == 429
        assert len(no_sleep) == 6

    @pytest.mark.asyncio
    async def test_http_date_retry_after_falls_back_to_backoff(self, no_sleep):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"})
            return httpx.Response(200, json={"id": "u1"})

        async with _client(handler) as graph:
            data = await graph.get("users/u1")

        assert data == {"id": "u1"}
        assert no_sleep == [2.0]

    @pytest.mark.asyncio
    async def test_connection_errors_raise_after_retries(self, no_sleep):
        def handler(request):
            raise httpx.ConnectError("connection reset", request=request)

        async with _client(handler) as graph:
            with pytest.raises(httpx.ConnectError):
                await graph.get("users/u1")

        assert len(no_sleep) == 5


class TestReadOnly:

    def test_guardian_refuses_writes(self):
        guardian = SafetyGuardian()
        assert guardian.validate_request("GET", "https://graph.microsoft.com/v1.0/users")

        with pytest.raises(SafetyViolation):
            guardian.validate_request("PATCH", "https://graph.microsoft.com/v1.0/users/u1")

        record = guardian.get_audit_record()
        assert record["checks_performed"] == 2
        assert record["violations_detected"] == 1
        assert record["status"] == "VIOLATIONS_DETECTED"

    @pytest.mark.asyncio
    async def test_raw_layer_only_sends_get(self):
        async with _client(lambda r: httpx.Response(200, json={})) as graph:
            with pytest.raises(SafetyViolation):
                await graph._execute_raw("DELETE", "https://graph.microsoft.com/v1.0/users/u1")

    @pytest.mark.asyncio
    async def test_client_requires_context(self):
        graph = _client(lambda r: httpx.Response(200, json={}))
        with pytest.raises(RuntimeError):
            await graph.get("users")
