"""
Tests for the MCP tools and HTTP routes, with the engine swapped for one
backed by the per-test database and mocked upstreams.
"""

import httpx
import pytest
from starlette.applications import Starlette
from starlette.routing import Route

from site_quality import server

from .conftest import make_service


@pytest.fixture
def service(session_factory, monkeypatch):
    service = make_service(session_factory, mcp_identity="tool-user")

    async def fake_get_service():
        return service

    monkeypatch.setattr(server, "get_service", fake_get_service)
    return service


@pytest.fixture
async def client(service):
    app = Starlette(routes=[
        Route("/analyze", server.analyze_route, methods=["POST"]),
        Route("/history", server.history_route, methods=["GET", "POST", "DELETE"]),
    ])
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


class TestHttpRoutes:

    @pytest.mark.asyncio
    async def test_analyze(self, client):
        response = await client.post("/analyze", json={"url": "example.com"}, headers={"X-User-Id": "alice"})
        assert response.status_code == 200
        assert response.json()["score"]["overall_score"] == 95
        assert response.headers["x-ratelimit-remaining"] == "99"

    @pytest.mark.asyncio
    async def test_analyze_without_identity(self, client):
        response = await client.post("/analyze", json={"url": "example.com"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_analyze_with_non_json_body(self, client):
        response = await client.post("/analyze", content=b"url=example.com", headers={"X-User-Id": "alice"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_history_round_trip(self, client):
        headers = {"X-User-Id": "alice"}
        assert (await client.post("/history", json={"term": "plumber"}, headers=headers)).status_code == 200

        listed = await client.get("/history", headers=headers)
        assert [e["term"] for e in listed.json()["history"]] == ["plumber"]

        assert (await client.delete("/history", headers=headers)).json() == {"success": True}
        assert (await client.get("/history", headers=headers)).json()["history"] == []


class TestTools:

    @pytest.mark.asyncio
    async def test_tools_use_configured_identity(self, service):
        result = await server.analyze_website("example.com")
        assert result["success"] is True

        history = await server.get_search_history()
        assert len(history["history"]) == 1
        assert await service.history.list("tool-user") != []

        assert await server.clear_search_history() == {"success": True}
        assert (await server.get_search_history())["history"] == []

    @pytest.mark.asyncio
    async def test_record_search_tool(self, service):
        result = await server.record_search("roofer", location="Austin", count=5)
        assert result["entry"]["location"] == "Austin"

    @pytest.mark.asyncio
    async def test_identity_comes_from_service_config(self, service, monkeypatch):
        monkeypatch.setenv("MCP_IDENTITY", "someone-else")
        await server.record_search("roofer")

        assert [e.term for e in await service.history.list("tool-user")] == ["roofer"]
        assert await service.history.list("someone-else") == []
