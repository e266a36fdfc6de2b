"""
Unit tests for the upstream client's redirect handling.
"""

import httpx
import pytest

from service_proxy.app.adapters.upstream_client import UpstreamClient
from shared.test_helpers import FakeUpstream


def redirect(location: str, status: int = 302) -> httpx.Response:
    return httpx.Response(status, headers={"Location": location})


class TestUpstreamClient:
    """Test cases for UpstreamClient.fetch."""

    @pytest.mark.asyncio
    async def test_no_redirect(self):
        upstream = FakeUpstream(routes={"/items": httpx.Response(200, json={"ok": True})})
        client = UpstreamClient(transport=upstream.transport)

        response = await client.fetch("https://api.example.com/items")

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_two_redirects_within_budget(self):
        upstream = FakeUpstream(routes={
            "/a": redirect("/b"),
            "/b": redirect("https://api.example.com/c", 301),
            "/c": httpx.Response(200, json={"final": True}),
        })
        client = UpstreamClient(transport=upstream.transport)

        response = await client.fetch("https://api.example.com/a", max_redirects=3)

        assert response.status_code == 200
        assert response.json() == {"final": True}
        assert [r.url for r in upstream.requests] == [
            "https://api.example.com/a",
            "https://api.example.com/b",
            "https://api.example.com/c",
        ]

    @pytest.mark.asyncio
    async def test_budget_exhausted_returns_last_redirect(self):
        upstream = FakeUpstream(routes={
            "/r1": redirect("/r2"),
            "/r2": redirect("/r3"),
            "/r3": redirect("/r4"),
            "/r4": redirect("/final"),
            "/final": httpx.Response(200, json={}),
        })
        client = UpstreamClient(transport=upstream.transport)

        response = await client.fetch("https://api.example.com/r1", max_redirects=3)

        assert response.status_code == 302
        assert response.headers["location"] == "/final"
        assert upstream.calls == 4

    @pytest.mark.asyncio
    async def test_relative_location_resolved_against_current_url(self):
        upstream = FakeUpstream(routes={
            "/v1/products/list": redirect("all"),
            "/v1/products/all": httpx.Response(200, json=[]),
        })
        client = UpstreamClient(transport=upstream.transport)

        response = await client.fetch("https://api.example.com/v1/products/list")

        assert response.status_code == 200
        assert upstream.last.url == "https://api.example.com/v1/products/all"

    @pytest.mark.asyncio
    async def test_redirect_without_location_is_returned(self):
        upstream = FakeUpstream(routes={"/a": httpx.Response(307)})
        client = UpstreamClient(transport=upstream.transport)

        response = await client.fetch("https://api.example.com/a")

        assert response.status_code == 307
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_method_headers_and_body_replayed(self):
        upstream = FakeUpstream(routes={
            "/orders": redirect("/orders/v2", 307),
            "/orders/v2": httpx.Response(201, json={"id": 1}),
        })
        client = UpstreamClient(transport=upstream.transport)

        response = await client.fetch(
            "https://api.example.com/orders",
            "POST",
            {"X-API-Key": "k1", "Content-Type": "application/json"},
            b'{"qty": 2}',
        )

        assert response.status_code == 201
        first, second = upstream.requests
        assert second.method == "POST"
        assert second.headers["x-api-key"] == "k1"
        assert second.body == first.body == b'{"qty": 2}'

    @pytest.mark.asyncio
    async def test_see_other_is_not_followed(self):
        upstream = FakeUpstream(routes={"/a": redirect("/b", 303)})
        client = UpstreamClient(transport=upstream.transport)

        response = await client.fetch("https://api.example.com/a")

        assert response.status_code == 303
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_propagates(self):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = UpstreamClient(timeout=0.1, transport=httpx.MockTransport(slow))

        with pytest.raises(httpx.TimeoutException):
            await client.fetch("https://api.example.com/slow")
