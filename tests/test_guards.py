"""Tests for the /mcp request guards."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FakeClock
from guards import ProtocolVersionMiddleware, RateLimitMiddleware, RequestSizeLimitMiddleware


def make_app(middleware, **kwargs) -> FastAPI:
    app = FastAPI()

    @app.post("/mcp")
    async def mcp_endpoint():
        return {"ok": True}

    @app.post("/other")
    async def other_endpoint():
        return {"ok": True}

    app.add_middleware(middleware, **kwargs)
    return app


class TestRateLimit:
    def test_limits_after_max_requests(self):
        clock = FakeClock()
        client = TestClient(make_app(RateLimitMiddleware, window_seconds=60, max_requests=2, clock=clock))

        assert client.post("/mcp").status_code == 200
        assert client.post("/mcp").status_code == 200

        response = client.post("/mcp")
        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == -32000
        assert error["data"]["retryAfter"] == 60

    def test_window_resets(self):
        clock = FakeClock()
        client = TestClient(make_app(RateLimitMiddleware, window_seconds=60, max_requests=1, clock=clock))

        assert client.post("/mcp").status_code == 200
        assert client.post("/mcp").status_code == 429
        clock.advance(61)
        assert client.post("/mcp").status_code == 200

    def test_other_paths_unaffected(self):
        client = TestClient(make_app(RateLimitMiddleware, max_requests=1))
        for _ in range(3):
            assert client.post("/other").status_code == 200


class TestProtocolVersion:
    def test_supported_and_missing_versions_pass(self):
        client = TestClient(make_app(ProtocolVersionMiddleware))
        assert client.post("/mcp").status_code == 200
        assert client.post("/mcp", headers={"MCP-Protocol-Version": "2025-06-18"}).status_code == 200
        assert client.post("/mcp", headers={"MCP-Protocol-Version": "2024-11-05"}).status_code == 200

    def test_unsupported_version(self):
        client = TestClient(make_app(ProtocolVersionMiddleware))
        response = client.post("/mcp", headers={"MCP-Protocol-Version": "2020-01-01"})
        assert response.status_code == 400
        data = response.json()["error"]["data"]
        assert data["requested"] == "2020-01-01"
        assert "2025-06-18" in data["supported"]


class TestRequestSizeLimit:
    def test_rejects_large_body(self):
        client = TestClient(make_app(RequestSizeLimitMiddleware, max_bytes=10))
        response = client.post("/mcp", content=b"x" * 100)
        assert response.status_code == 413
        assert response.json()["error"]["data"] == {"maxSize": 10, "received": 100}

    def test_small_body_passes(self):
        client = TestClient(make_app(RequestSizeLimitMiddleware, max_bytes=10))
        assert client.post("/mcp", content=b"{}").status_code == 200
