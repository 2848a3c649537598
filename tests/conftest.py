"""Shared fixtures: a seeded in-memory store and dispatchers over it."""

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from mongo_lens.config import Config, DefaultsConfig
from mongo_lens.lens import INSTRUCTIONS, LensDispatcher, build_registry
from mongo_lens.lens.confirmation import ConfirmationGate
from mongo_lens.lens.session import SessionContext
from mongo_lens.lens.storage.memory import MemoryDocumentStore

Rpc = Callable[..., Awaitable[dict[str, Any]]]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store() -> MemoryDocumentStore:
    store = MemoryDocumentStore(
        {
            "shop": {
                "users": [
                    {"_id": 1, "name": "Ada", "age": 36, "active": True},
                    {"_id": 2, "name": "Grace", "age": 45, "active": False},
                    {"_id": 3, "name": "Linus", "age": 28, "active": True},
                ],
                "orders": [
                    {"_id": 10, "user": 1, "total": 25.5},
                    {"_id": 11, "user": 3, "total": 9.99},
                ],
            },
            "archive": {"events": [{"_id": 1, "kind": "signup"}]},
        }
    )
    store.add_user("shop", "reporter", [{"role": "read", "db": "shop"}])
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gate(clock: FakeClock) -> ConfirmationGate:
    return ConfirmationGate(ttl_seconds=300, clock=clock)


@pytest.fixture
def config() -> Config:
    config = Config()
    config.mongo.uri = "memory:///shop"
    return config


@pytest.fixture
def dispatcher(store: MemoryDocumentStore, gate: ConfirmationGate) -> LensDispatcher:
    session = SessionContext(store, "shop", cache_ttl=30)
    return LensDispatcher(
        build_registry(),
        session,
        gate,
        defaults=DefaultsConfig(),
        instructions=INSTRUCTIONS,
    )


@pytest.fixture
def rpc(dispatcher: LensDispatcher) -> Rpc:
    """Send one request through the dispatcher and return the response dict."""
    ids = itertools.count(1)

    async def _rpc(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await dispatcher.handle_message(
            {"jsonrpc": "2.0", "id": next(ids), "method": method, "params": params or {}}
        )

    return _rpc


@pytest.fixture
def call_tool(rpc: Rpc) -> Rpc:
    """Call a tool and return its CallToolResult payload."""

    async def _call(name: str, /, **arguments: Any) -> dict[str, Any]:
        response = await rpc("tools/call", {"name": name, "arguments": arguments})
        assert "error" not in response, response
        return response["result"]

    return _call


class PipeEnd:
    """One direction of an in-memory byte pipe; ``close()`` signals EOF."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._eof = False

    def write(self, data: bytes) -> None:
        self._queue.put_nowait(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def close(self) -> None:
        self._queue.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        if self._eof:
            return b""
        data = await self._queue.get()
        if not data:
            self._eof = True
        return data


@pytest.fixture
def pipe() -> Callable[[], PipeEnd]:
    """Factory for in-memory pipe ends."""
    return PipeEnd
