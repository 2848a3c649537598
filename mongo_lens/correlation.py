"""Correlation of outstanding request ids with their pending replies.

Used by whichever side sent a request and must await the matching
response: the external caller (see ``client.py``) and the dispatcher's
in-process loopback, through which prompts issue nested reads and calls.

Completing an id that is unknown, already resolved, or already expired is
a no-op. A handler that finishes after its caller gave up must not fail.
"""

import asyncio
import logging
from typing import Any

logger = logging.getLogger("lens.correlation")

RequestId = str | int


class CorrelationTable:
    """Maps outstanding request ids to futures awaiting their response."""

    def __init__(self) -> None:
        self._pending: dict[RequestId, asyncio.Future[Any]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(self, request_id: RequestId) -> asyncio.Future[Any]:
        """Register an outstanding request and return the future for its reply.

        Raises:
            ValueError: If the id is already outstanding.
        """
        if request_id in self._pending:
            raise ValueError(f"Request id already outstanding: {request_id!r}")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        return future

    def resolve(self, request_id: RequestId, value: Any) -> bool:
        """Complete the future for ``request_id``. Returns False if nothing was waiting."""
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            logger.debug("Ignoring reply for unknown or completed id %r", request_id)
            return False
        future.set_result(value)
        return True

    def reject(self, request_id: RequestId, error: BaseException) -> bool:
        """Fail the future for ``request_id`` with ``error``."""
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            return False
        future.set_exception(error)
        return True

    def discard(self, request_id: RequestId) -> bool:
        """Forget ``request_id`` without failing anyone waiting on it."""
        future = self._pending.pop(request_id, None)
        if future is None:
            return False
        future.cancel()
        return True

    def expire(self, request_id: RequestId) -> bool:
        """Give up on ``request_id``: its future fails with TimeoutError."""
        expired = self.reject(
            request_id, TimeoutError(f"Request {request_id!r} timed out")
        )
        if expired:
            logger.info("Request %r expired before a reply arrived", request_id)
        return expired

    async def wait(
        self,
        request_id: RequestId,
        timeout: float | None = None,
        future: asyncio.Future[Any] | None = None,
    ) -> Any:
        """Await the reply for a registered id, expiring it after ``timeout`` seconds.

        Pass the ``future`` returned by ``register()`` when the reply can
        arrive before ``wait`` is called, e.g. while the request is still
        being written; a resolved id is no longer in the table.

        Raises:
            KeyError: If the id was never registered and no future was given.
            TimeoutError: If no reply arrived in time.
        """
        if future is None:
            future = self._pending.get(request_id)
        if future is None:
            raise KeyError(request_id)
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except TimeoutError:
            if self.expire(request_id):
                # Mark the TimeoutError as retrieved; the caller gets its own.
                future.exception()
            raise

    def cancel_all(self, reason: str = "connection closed") -> int:
        """Fail every outstanding request, e.g. when the stream ends."""
        ids = list(self._pending)
        for request_id in ids:
            self.reject(request_id, ConnectionError(reason))
        return len(ids)
