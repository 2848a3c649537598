"""Tests for LensClient against a live LensServer over in-memory pipes."""

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio

from mongo_lens.client import LensClient, LensRpcError
from mongo_lens.lens import LensDispatcher
from mongo_lens.mcp_server import LensServer
from mongo_lens.transport import StreamTransport


@pytest_asyncio.fixture
async def client(dispatcher: LensDispatcher, pipe) -> AsyncIterator[LensClient]:
    to_server, to_client = pipe(), pipe()
    server = LensServer(dispatcher, StreamTransport(to_server, to_client))
    serving = asyncio.create_task(server.serve())
    async with LensClient(StreamTransport(to_client, to_server), timeout=2) as lens:
        yield lens
    await asyncio.wait_for(serving, timeout=2)


class TestLensClient:
    """Round trips through the stdio server loop."""

    @pytest.mark.asyncio
    async def test_initialize(self, client: LensClient) -> None:
        result = await client.initialize()
        assert result["serverInfo"]["name"]
        assert "tools" in result["capabilities"]

    @pytest.mark.asyncio
    async def test_call_tool(self, client: LensClient) -> None:
        result = await client.call_tool("count-documents", {"collection": "orders"})
        assert result["content"][0]["text"] == "Count: 2 document(s)"

    @pytest.mark.asyncio
    async def test_read_resource(self, client: LensClient) -> None:
        result = await client.read_resource("mongodb://collections")
        assert "users" in result["contents"][0]["text"]

    @pytest.mark.asyncio
    async def test_get_prompt(self, client: LensClient) -> None:
        result = await client.get_prompt("inspector-guide")
        assert result["messages"][0]["role"] == "user"

    @pytest.mark.asyncio
    async def test_error_reply_raises(self, client: LensClient) -> None:
        with pytest.raises(LensRpcError) as exc_info:
            await client.call_tool("no-such-tool")
        assert exc_info.value.code == -32002
        assert exc_info.value.data == {"kind": "tool", "name": "no-such-tool"}

    @pytest.mark.asyncio
    async def test_concurrent_requests_matched_by_id(
        self, client: LensClient, dispatcher: LensDispatcher
    ) -> None:
        async def echo_after(params: dict[str, Any]) -> dict[str, Any]:
            await asyncio.sleep(params["delay"])
            return {"tag": params["tag"]}

        dispatcher.register("test/echo", echo_after)
        results = await asyncio.gather(
            client.request("test/echo", {"delay": 0.05, "tag": "slow"}),
            client.request("test/echo", {"delay": 0, "tag": "fast"}),
            client.request("ping"),
        )
        assert results == [{"tag": "slow"}, {"tag": "fast"}, {}]

    @pytest.mark.asyncio
    async def test_timeout(self, client: LensClient, dispatcher: LensDispatcher) -> None:
        release = asyncio.Event()

        async def stall(params: dict[str, Any]) -> dict[str, Any]:
            await release.wait()
            return {}

        dispatcher.register("test/stall", stall)
        with pytest.raises(TimeoutError):
            await client.request("test/stall", timeout=0.05)
        release.set()

    @pytest.mark.asyncio
    async def test_reply_arriving_during_drain(
        self, dispatcher: LensDispatcher, pipe
    ) -> None:
        """A reply resolved while the request is still draining is delivered."""

        class SlowDrain(pipe):
            async def drain(self) -> None:
                await asyncio.sleep(0.05)

        to_server, to_client = SlowDrain(), pipe()
        server = LensServer(dispatcher, StreamTransport(to_server, to_client))
        serving = asyncio.create_task(server.serve())
        async with LensClient(StreamTransport(to_client, to_server), timeout=2) as lens:
            assert await lens.request("ping") == {}
        await asyncio.wait_for(serving, timeout=2)
