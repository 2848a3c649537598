"""Caller side of the MongoDB Lens protocol.

``LensClient`` writes requests to a StreamTransport and matches replies to
them by id, so any number of calls may be in flight at once and replies
may arrive in any order.
"""

import asyncio
import itertools
import logging
from typing import Any

from mcp.types import LATEST_PROTOCOL_VERSION

from .correlation import CorrelationTable
from .models.jsonrpc import JsonRpcRequest, JsonRpcResponse
from .transport import StreamTransport

logger = logging.getLogger("lens.client")

DEFAULT_TIMEOUT = 30.0


class LensRpcError(Exception):
    """The server answered a request with a JSON-RPC error."""

    def __init__(self, method: str, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"{method}: {message} ({code})")
        self.method = method
        self.code = code
        self.data = data


class LensClient:
    """Issues JSON-RPC requests over a transport and awaits their replies.

    Call ``start()`` before the first request; it spawns the reader task
    that routes replies to waiting callers.
    """

    def __init__(self, transport: StreamTransport, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.transport = transport
        self.timeout = timeout
        self._pending = CorrelationTable()
        self._ids = itertools.count(1)
        self._reader: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_replies())

    async def close(self) -> None:
        """Stop reading and fail every outstanding request."""
        self.transport.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._pending.cancel_all()

    async def __aenter__(self) -> "LensClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _read_replies(self) -> None:
        async for message in self.transport.messages():
            if not isinstance(message, dict) or "id" not in message or "method" in message:
                logger.debug("Ignoring non-response message: %r", message)
                continue
            self._pending.resolve(message["id"], JsonRpcResponse.from_message(message))
        dropped = self._pending.cancel_all("server closed the stream")
        if dropped:
            logger.warning("Stream closed with %d requests outstanding", dropped)

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a request and return its result.

        Raises:
            LensRpcError: If the server replied with an error object.
            TimeoutError: If no reply arrived within the timeout.
        """
        request_id = next(self._ids)
        reply = self._pending.register(request_id)
        request = JsonRpcRequest(method=method, params=params or {}, id=request_id)
        try:
            await self.transport.send(request.to_dict())
        except Exception:
            self._pending.discard(request_id)
            raise
        response: JsonRpcResponse = await self._pending.wait(
            request_id, self.timeout if timeout is None else timeout, future=reply
        )
        if response.error is not None:
            raise LensRpcError(
                method, response.error.code, response.error.message, response.error.data
            )
        return response.result or {}

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        await self.transport.send(JsonRpcRequest(method=method, params=params or {}).to_dict())

    # ------------------------------------------------------------------
    # MCP conveniences
    # ------------------------------------------------------------------

    async def initialize(self, client_name: str = "lens-client") -> dict[str, Any]:
        result = await self.request(
            "initialize",
            {
                "protocolVersion": LATEST_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": client_name, "version": "0"},
            },
        )
        await self.notify("notifications/initialized")
        return result

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.request("tools/call", {"name": name, "arguments": arguments or {}})

    async def read_resource(self, uri: str) -> dict[str, Any]:
        return await self.request("resources/read", {"uri": uri})

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.request("prompts/get", {"name": name, "arguments": arguments or {}})
