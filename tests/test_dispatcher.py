"""Tests for LensDispatcher routing, validation and error mapping."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel, Field

from mongo_lens.lens import LensDispatcher
from mongo_lens.lens.confirmation import ConfirmationGate
from mongo_lens.lens.dispatcher import MAX_COMPLETIONS, NestedRequestError
from mongo_lens.lens.registry import (
    CapabilityRegistry,
    PromptSpec,
    ResourceSpec,
    ResourceTemplateSpec,
    ToolSpec,
)
from mongo_lens.lens.session import SessionContext
from mongo_lens.lens.storage.memory import MemoryDocumentStore
from mongo_lens.mcp_schemas import EmptyInput
from mongo_lens.models.jsonrpc import (
    CAPABILITY_NOT_FOUND,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
)


class StubInput(BaseModel):
    count: int
    limit: int = Field(default=10, ge=1)


def _request(method: str, params: dict[str, Any] | None = None, id: Any = 1) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method, "params": params or {}}
    if id is not None:
        message["id"] = id
    return message


@pytest.fixture
def stub() -> AsyncMock:
    return AsyncMock(return_value="stubbed")


@pytest.fixture
def stub_dispatcher(store: MemoryDocumentStore, stub: AsyncMock) -> LensDispatcher:
    registry = CapabilityRegistry()
    registry.add_tool(ToolSpec("stub", "Stub tool", StubInput, stub))
    registry.add_resource(
        ResourceSpec("mongodb://stub", "stub", "Stub resource", AsyncMock(return_value="r"))
    )
    return LensDispatcher(registry, SessionContext(store, "shop"), ConfirmationGate())


class TestProtocol:
    """Envelope-level behavior."""

    @pytest.mark.asyncio
    async def test_initialize(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(
            _request("initialize", {"protocolVersion": "2025-03-26", "clientInfo": {"name": "t"}})
        )
        result = response["result"]
        assert result["protocolVersion"] == "2025-03-26"
        assert result["serverInfo"]["name"] == "mongodb-lens"
        assert "completions" in result["capabilities"]
        assert "tools" in result["capabilities"]
        assert "confirmation token" in result["instructions"]

    @pytest.mark.asyncio
    async def test_ping(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(_request("ping", id="p1"))
        assert response == {"jsonrpc": "2.0", "id": "p1", "result": {}}

    @pytest.mark.asyncio
    async def test_notification_gets_no_response(self, dispatcher: LensDispatcher) -> None:
        assert await dispatcher.handle_message(_request("notifications/initialized", id=None)) is None

    @pytest.mark.asyncio
    async def test_unknown_method(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(_request("tools/explode", id=4))
        assert response["id"] == 4
        assert response["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_wrong_version(self, dispatcher: LensDispatcher) -> None:
        message = _request("ping")
        message["jsonrpc"] = "1.0"
        response = await dispatcher.handle_message(message)
        assert response["error"]["code"] == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_non_object_message(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message([1, 2, 3])
        assert response["id"] is None
        assert response["error"]["code"] == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_concurrent_requests_each_answered_once(
        self, store: MemoryDocumentStore
    ) -> None:
        async def slow_echo(args: StubInput, ctx: Any) -> str:
            await asyncio.sleep(args.count / 1000)
            return str(args.count)

        registry = CapabilityRegistry()
        registry.add_tool(ToolSpec("echo", "Echo", StubInput, slow_echo))
        dispatcher = LensDispatcher(registry, SessionContext(store, "shop"), ConfirmationGate())

        delays = [30, 5, 20, 1, 10, 25, 15]
        responses = await asyncio.gather(
            *(
                dispatcher.handle_message(
                    _request("tools/call", {"name": "echo", "arguments": {"count": d}}, id=f"r{d}")
                )
                for d in delays
            )
        )

        assert sorted(r["id"] for r in responses) == sorted(f"r{d}" for d in delays)
        for response in responses:
            assert response["result"]["content"][0]["text"] == response["id"][1:]


class TestCapabilityLookup:
    """Unknown names never reach a handler."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, stub_dispatcher: LensDispatcher, stub: AsyncMock) -> None:
        response = await stub_dispatcher.handle_message(
            _request("tools/call", {"name": "prob", "arguments": {"count": 1}}, id=17)
        )
        assert response["id"] == 17
        assert response["error"]["code"] == CAPABILITY_NOT_FOUND
        assert response["error"]["data"] == {"kind": "tool", "name": "prob"}
        stub.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_resource(self, stub_dispatcher: LensDispatcher) -> None:
        response = await stub_dispatcher.handle_message(
            _request("resources/read", {"uri": "mongodb://nothing"}, id=18)
        )
        assert response["id"] == 18
        assert response["error"]["code"] == CAPABILITY_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_prompt(self, stub_dispatcher: LensDispatcher) -> None:
        response = await stub_dispatcher.handle_message(
            _request("prompts/get", {"name": "nothing"}, id=19)
        )
        assert response["id"] == 19
        assert response["error"]["code"] == CAPABILITY_NOT_FOUND


class TestArgumentValidation:
    """Arguments are validated once, before the handler runs."""

    @pytest.mark.asyncio
    async def test_uncoercible_integer(
        self, stub_dispatcher: LensDispatcher, stub: AsyncMock
    ) -> None:
        response = await stub_dispatcher.handle_message(
            _request("tools/call", {"name": "stub", "arguments": {"count": "lots"}})
        )
        assert response["error"]["code"] == INVALID_PARAMS
        assert response["error"]["data"]["field"] == "count"
        stub.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_default_reaches_handler(
        self, stub_dispatcher: LensDispatcher, stub: AsyncMock
    ) -> None:
        response = await stub_dispatcher.handle_message(
            _request("tools/call", {"name": "stub", "arguments": {"count": "3"}})
        )
        assert response["result"]["isError"] is False
        args = stub.await_args.args[0]
        assert args.count == 3
        assert args.limit == 10

    @pytest.mark.asyncio
    async def test_missing_tool_name(self, stub_dispatcher: LensDispatcher) -> None:
        response = await stub_dispatcher.handle_message(_request("tools/call", {}))
        assert response["error"]["code"] == INVALID_PARAMS
        assert response["error"]["data"]["field"] == "name"


class TestHandlerFailures:
    """Handler exceptions become results flagged isError."""

    @pytest.mark.asyncio
    async def test_tool_exception(self, store: MemoryDocumentStore) -> None:
        registry = CapabilityRegistry()
        registry.add_tool(
            ToolSpec("boom", "Boom", EmptyInput, AsyncMock(side_effect=RuntimeError("kaput")))
        )
        dispatcher = LensDispatcher(registry, SessionContext(store, "shop"), ConfirmationGate())

        response = await dispatcher.handle_message(_request("tools/call", {"name": "boom"}))

        result = response["result"]
        assert result["isError"] is True
        assert result["content"][0]["text"] == "Error in boom: kaput"

    @pytest.mark.asyncio
    async def test_resource_exception(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(
            _request("resources/read", {"uri": "mongodb://collection/ghosts/schema"})
        )
        result = response["result"]
        assert result["isError"] is True
        assert "ghosts" in result["contents"][0]["text"]

    @pytest.mark.asyncio
    async def test_prompt_exception(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(
            _request("prompts/get", {"name": "schema-analysis", "arguments": {"collection": "ghosts"}})
        )
        result = response["result"]
        assert result["isError"] is True
        assert "Error generating schema-analysis" in result["messages"][0]["content"]["text"]


class TestResources:
    """Listing and reading resources."""

    @pytest.mark.asyncio
    async def test_list_includes_enumerated_collections(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(_request("resources/list"))
        uris = [r["uri"] for r in response["result"]["resources"]]
        assert "mongodb://databases" in uris
        assert "mongodb://collection/users/schema" in uris
        assert "mongodb://collection/orders/indexes" in uris

    @pytest.mark.asyncio
    async def test_list_templates(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(_request("resources/templates/list"))
        templates = [t["uriTemplate"] for t in response["result"]["resourceTemplates"]]
        assert templates == [
            "mongodb://collection/{name}/schema",
            "mongodb://collection/{name}/stats",
            "mongodb://collection/{name}/indexes",
            "mongodb://collection/{name}/validation",
        ]

    @pytest.mark.asyncio
    async def test_fixed_resource_read_is_idempotent(self, dispatcher: LensDispatcher) -> None:
        first = await dispatcher.handle_message(_request("resources/read", {"uri": "mongodb://collections"}))
        second = await dispatcher.handle_message(_request("resources/read", {"uri": "mongodb://collections"}))
        assert first["result"] == second["result"]
        assert "users" in first["result"]["contents"][0]["text"]

    @pytest.mark.asyncio
    async def test_template_read(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(
            _request("resources/read", {"uri": "mongodb://collection/users/schema"})
        )
        contents = response["result"]["contents"][0]
        assert contents["uri"] == "mongodb://collection/users/schema"
        assert "- name: string (100% coverage)" in contents["text"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["sales?2024", "x%41", "q#1 results"])
    async def test_listed_uris_read_back_for_reserved_names(
        self, dispatcher: LensDispatcher, store: MemoryDocumentStore, name: str
    ) -> None:
        store.seed("shop", name, [{"_id": 1, "region": "north"}])
        listed = await dispatcher.handle_message(_request("resources/list"))
        uris = [
            r["uri"]
            for r in listed["result"]["resources"]
            if r["name"].startswith(f"{name} ")
        ]
        assert len(uris) == 4

        for uri in uris:
            response = await dispatcher.handle_message(_request("resources/read", {"uri": uri}))
            assert "error" not in response, uri
            assert response["result"]["contents"][0]["uri"] == uri

        schema_uri = next(uri for uri in uris if uri.endswith("/schema"))
        response = await dispatcher.handle_message(
            _request("resources/read", {"uri": schema_uri})
        )
        assert f"Schema for '{name}'" in response["result"]["contents"][0]["text"]


class TestCompletion:
    """completion/complete for templates and prompts."""

    @pytest.mark.asyncio
    async def test_template_placeholder(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(
            _request(
                "completion/complete",
                {
                    "ref": {"type": "ref/resource", "uri": "mongodb://collection/{name}/schema"},
                    "argument": {"name": "name", "value": "us"},
                },
            )
        )
        completion = response["result"]["completion"]
        assert completion["values"] == ["users"]
        assert completion["total"] == 1
        assert completion["hasMore"] is False

    @pytest.mark.asyncio
    async def test_prompt_argument_case_insensitive(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(
            _request(
                "completion/complete",
                {
                    "ref": {"type": "ref/prompt", "name": "query-builder"},
                    "argument": {"name": "collection", "value": "ORD"},
                },
            )
        )
        assert response["result"]["completion"]["values"] == ["orders"]

    @pytest.mark.asyncio
    async def test_argument_without_completer(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(
            _request(
                "completion/complete",
                {
                    "ref": {"type": "ref/prompt", "name": "query-builder"},
                    "argument": {"name": "condition", "value": "a"},
                },
            )
        )
        assert response["result"]["completion"]["values"] == []

    @pytest.mark.asyncio
    async def test_values_capped(self, store: MemoryDocumentStore) -> None:
        many = [f"c{i}" for i in range(150)]
        registry = CapabilityRegistry()
        registry.add_template(
            ResourceTemplateSpec(
                "mongodb://collection/{name}/schema",
                "collection-schema",
                "Schema",
                AsyncMock(),
                completers={"name": AsyncMock(return_value=many)},
            )
        )
        dispatcher = LensDispatcher(registry, SessionContext(store, "shop"), ConfirmationGate())

        response = await dispatcher.handle_message(
            _request(
                "completion/complete",
                {
                    "ref": {"type": "ref/resource", "uri": "mongodb://collection/{name}/schema"},
                    "argument": {"name": "name", "value": "c"},
                },
            )
        )
        completion = response["result"]["completion"]
        assert len(completion["values"]) == MAX_COMPLETIONS
        assert completion["total"] == 150
        assert completion["hasMore"] is True


class TestNestedRequests:
    """The loopback used by prompts."""

    @pytest.mark.asyncio
    async def test_request_returns_result(self, dispatcher: LensDispatcher) -> None:
        result = await dispatcher.request("resources/read", {"uri": "mongodb://databases"})
        assert "shop" in result["contents"][0]["text"]

    @pytest.mark.asyncio
    async def test_request_error_raises(self, dispatcher: LensDispatcher) -> None:
        with pytest.raises(NestedRequestError):
            await dispatcher.request("tools/call", {"name": "no-such-tool"})

    @pytest.mark.asyncio
    async def test_request_timeout(self, dispatcher: LensDispatcher) -> None:
        release = asyncio.Event()

        async def stalled(params: dict[str, Any]) -> dict[str, Any]:
            await release.wait()
            return {}

        dispatcher.register("test/stall", stalled)
        with pytest.raises(TimeoutError):
            await dispatcher.request("test/stall", timeout=0.01)
        release.set()
        await asyncio.sleep(0)
        dispatcher.shutdown()

    @pytest.mark.asyncio
    async def test_prompt_with_nested_read(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(
            _request("prompts/get", {"name": "schema-analysis", "arguments": {"collection": "users"}})
        )
        text = response["result"]["messages"][0]["content"]["text"]
        assert "Schema for 'users'" in text
        assert "- age: number (100% coverage)" in text


class TestPromptSpecs:
    """Prompt listing."""

    @pytest.mark.asyncio
    async def test_list_prompts(self, dispatcher: LensDispatcher) -> None:
        response = await dispatcher.handle_message(_request("prompts/list"))
        names = [p["name"] for p in response["result"]["prompts"]]
        assert "query-builder" in names
        assert "security-audit" in names
        assert len(names) == 11

    @pytest.mark.asyncio
    async def test_custom_prompt_receives_validated_args(self, store: MemoryDocumentStore) -> None:
        from mcp.types import GetPromptResult, PromptMessage, TextContent

        class Args(BaseModel):
            topic: str

        async def handler(args: Args, ctx: Any) -> GetPromptResult:
            return GetPromptResult(
                messages=[
                    PromptMessage(role="user", content=TextContent(type="text", text=args.topic))
                ]
            )

        registry = CapabilityRegistry()
        registry.add_prompt(PromptSpec("talk", "Talk", Args, handler))
        dispatcher = LensDispatcher(registry, SessionContext(store, "shop"), ConfirmationGate())

        ok = await dispatcher.handle_message(
            _request("prompts/get", {"name": "talk", "arguments": {"topic": "indexes"}})
        )
        missing = await dispatcher.handle_message(_request("prompts/get", {"name": "talk"}))

        assert ok["result"]["messages"][0]["content"]["text"] == "indexes"
        assert missing["error"]["code"] == INVALID_PARAMS
        assert missing["error"]["data"]["field"] == "topic"
