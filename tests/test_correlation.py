"""Tests for the correlation table."""

import asyncio

import pytest

from mongo_lens.correlation import CorrelationTable


class TestCorrelationTable:
    """Tests for CorrelationTable."""

    @pytest.mark.asyncio
    async def test_resolve_delivers_value(self) -> None:
        table = CorrelationTable()
        table.register(1)
        asyncio.get_running_loop().call_soon(table.resolve, 1, "reply")
        assert await table.wait(1, timeout=1) == "reply"
        assert 1 not in table

    @pytest.mark.asyncio
    async def test_out_of_order_replies(self) -> None:
        table = CorrelationTable()
        for request_id in ("a", "b", "c"):
            table.register(request_id)
        waits = [asyncio.create_task(table.wait(i, timeout=1)) for i in ("a", "b", "c")]
        await asyncio.sleep(0)

        table.resolve("c", 3)
        table.resolve("a", 1)
        table.resolve("b", 2)

        assert await asyncio.gather(*waits) == [1, 2, 3]
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_duplicate_registration_rejected(self) -> None:
        table = CorrelationTable()
        table.register(5)
        with pytest.raises(ValueError, match="already outstanding"):
            table.register(5)

    @pytest.mark.asyncio
    async def test_timeout_expires_entry(self) -> None:
        table = CorrelationTable()
        table.register("slow")
        with pytest.raises(TimeoutError):
            await table.wait("slow", timeout=0.01)
        assert "slow" not in table

    @pytest.mark.asyncio
    async def test_late_resolve_after_expiry_is_noop(self) -> None:
        table = CorrelationTable()
        table.register("slow")
        with pytest.raises(TimeoutError):
            await table.wait("slow", timeout=0.01)
        assert table.resolve("slow", "too late") is False

    @pytest.mark.asyncio
    async def test_resolve_unknown_id_is_noop(self) -> None:
        table = CorrelationTable()
        assert table.resolve(42, "nobody asked") is False

    @pytest.mark.asyncio
    async def test_wait_on_already_resolved_future(self) -> None:
        table = CorrelationTable()
        future = table.register(7)
        table.resolve(7, "early")
        assert 7 not in table
        assert await table.wait(7, timeout=1, future=future) == "early"

    @pytest.mark.asyncio
    async def test_wait_unregistered_raises(self) -> None:
        table = CorrelationTable()
        with pytest.raises(KeyError):
            await table.wait("missing")

    @pytest.mark.asyncio
    async def test_cancel_all_fails_waiters(self) -> None:
        table = CorrelationTable()
        table.register(1)
        waiter = asyncio.create_task(table.wait(1, timeout=1))
        await asyncio.sleep(0)

        assert table.cancel_all("stream ended") == 1
        with pytest.raises(ConnectionError, match="stream ended"):
            await waiter

    @pytest.mark.asyncio
    async def test_discard_forgets_request(self) -> None:
        table = CorrelationTable()
        future = table.register(1)
        assert table.discard(1) is True
        assert future.cancelled()
        assert table.resolve(1, "ignored") is False
