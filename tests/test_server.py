"""Tests for the HTTP bridge."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from mongo_lens import __version__
from mongo_lens.config import Config
from mongo_lens.lens.storage.memory import MemoryDocumentStore
from mongo_lens.server import create_app


@pytest.fixture
def client(config: Config, store: MemoryDocumentStore) -> Iterator[TestClient]:
    """Test client with the lifespan running over the seeded memory store."""
    with TestClient(create_app(config, store)) as test_client:
        yield test_client


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_health_returns_200(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_body(self, client: TestClient) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["database"] == "shop"
        assert data["uptime_seconds"] >= 0


class TestRpcEndpoint:
    """Tests for POST /rpc."""

    def test_ping(self, client: TestClient) -> None:
        response = client.post("/rpc", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert response.json() == {"jsonrpc": "2.0", "id": 1, "result": {}}

    def test_tool_call(self, client: TestClient) -> None:
        response = client.post(
            "/rpc",
            json={
                "jsonrpc": "2.0",
                "id": "c1",
                "method": "tools/call",
                "params": {"name": "current-database", "arguments": {}},
            },
        )
        result = response.json()["result"]
        assert result["content"][0]["text"] == "Current database: shop"

    def test_notification_returns_204(self, client: TestClient) -> None:
        response = client.post(
            "/rpc", json={"jsonrpc": "2.0", "method": "notifications/initialized"}
        )
        assert response.status_code == 204
        assert response.content == b""

    def test_invalid_json(self, client: TestClient) -> None:
        response = client.post(
            "/rpc", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        data = response.json()
        assert data["id"] is None
        assert data["error"]["code"] == -32700

    def test_unknown_method(self, client: TestClient) -> None:
        response = client.post("/rpc", json={"jsonrpc": "2.0", "id": 2, "method": "nope"})
        assert response.json()["error"]["code"] == -32601

    def test_state_shared_across_requests(self, client: TestClient) -> None:
        client.post(
            "/rpc",
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "tools/call",
                "params": {"name": "use-database", "arguments": {"database": "archive"}},
            },
        )
        assert client.get("/health").json()["database"] == "archive"
