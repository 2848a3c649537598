"""JSON-RPC method dispatcher for MongoDB Lens.

Routes incoming MCP requests to the capability registry, validates
arguments against each capability's pydantic model and wraps handler
results. Protocol errors become JSON-RPC error objects; anything a
handler raises becomes a result flagged ``isError``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from mcp.types import (
    LATEST_PROTOCOL_VERSION,
    CallToolResult,
    Completion,
    CompleteResult,
    GetPromptResult,
    Implementation,
    InitializeResult,
    ListPromptsResult,
    ListResourcesResult,
    ListResourceTemplatesResult,
    ListToolsResult,
    PromptMessage,
    PromptsCapability,
    ReadResourceResult,
    Resource,
    ResourcesCapability,
    ServerCapabilities,
    TextContent,
    TextResourceContents,
    ToolsCapability,
)

from .. import __version__
from ..config import DefaultsConfig
from ..correlation import CorrelationTable
from ..mcp_schemas import (
    CallToolParams,
    CompleteParams,
    GetPromptParams,
    ReadResourceParams,
)
from ..models.jsonrpc import (
    CAPABILITY_NOT_FOUND,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
)
from .confirmation import ConfirmationError, ConfirmationGate
from .registry import (
    ArgumentValidationError,
    CapabilityNotFoundError,
    CapabilityRegistry,
    ResourceTemplateSpec,
    validate_arguments,
)
from .session import SessionContext

logger = logging.getLogger("lens.dispatcher")

MethodHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]
NestedRequest = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]

SERVER_NAME = "mongodb-lens"
MAX_COMPLETIONS = 100
NESTED_REQUEST_TIMEOUT = 30.0


class NestedRequestError(RuntimeError):
    """A loopback request was answered with a JSON-RPC error."""

    def __init__(self, method: str, error: dict[str, Any]) -> None:
        super().__init__(f"{method} failed: {error.get('message', 'unknown error')}")
        self.method = method
        self.error = error


@dataclass(slots=True)
class HandlerContext:
    """Everything a capability handler may use, passed explicitly.

    Attributes:
        session: Active database, store and lookup cache.
        confirmations: Gate for destructive operations.
        defaults: Configured default argument values.
        request: Issues a nested request through the dispatcher.
    """

    session: SessionContext
    confirmations: ConfirmationGate
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    request: NestedRequest | None = None

    async def read_resource(self, uri: str) -> str:
        """Read a resource through the dispatcher and return its text.

        Raises:
            NestedRequestError: If the read is rejected or fails.
        """
        if self.request is None:
            raise RuntimeError("Nested requests are not available in this context")
        result = await self.request("resources/read", {"uri": uri})
        text = "\n".join(c.get("text", "") for c in result.get("contents", []))
        if result.get("isError"):
            raise NestedRequestError("resources/read", {"message": text})
        return text


def _model_result(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class LensDispatcher:
    """Dispatches MCP JSON-RPC requests to registered capabilities.

    Attributes:
        registry: Capabilities exposed by this server.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        session: SessionContext,
        confirmations: ConfirmationGate,
        defaults: DefaultsConfig | None = None,
        instructions: str | None = None,
    ) -> None:
        self.registry = registry
        self.session = session
        self.confirmations = confirmations
        self.defaults = defaults or DefaultsConfig()
        self.instructions = instructions
        self._correlation = CorrelationTable()
        self._nested_ids = itertools.count(1)
        self._nested_tasks: set[asyncio.Task[None]] = set()
        self._methods: dict[str, MethodHandler] = {
            "initialize": self._handle_initialize,
            "notifications/initialized": self._handle_ack,
            "notifications/cancelled": self._handle_ack,
            "ping": self._handle_ack,
            "resources/list": self._handle_list_resources,
            "resources/templates/list": self._handle_list_templates,
            "resources/read": self._handle_read_resource,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
            "prompts/list": self._handle_list_prompts,
            "prompts/get": self._handle_get_prompt,
            "completion/complete": self._handle_complete,
        }

    def register(self, method: str, handler: MethodHandler) -> None:
        """Register or replace a protocol method handler."""
        self._methods[method] = handler

    def context(self) -> HandlerContext:
        return HandlerContext(
            session=self.session,
            confirmations=self.confirmations,
            defaults=self.defaults,
            request=self.request,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def dispatch(self, request: JsonRpcRequest) -> JsonRpcResponse | None:
        """Dispatch a request; notifications return None.

        Args:
            request: Decoded JSON-RPC request.

        Returns:
            JSON-RPC response with result or error, or None for a notification.
        """
        response = await self._dispatch(request)
        if request.is_notification:
            if response.error is not None:
                logger.warning(
                    "Notification %s failed: %s", request.method, response.error.message
                )
            return None
        return response

    async def handle_message(self, message: Any) -> dict[str, Any] | None:
        """Dispatch one decoded wire message and return the response dict."""
        if not isinstance(message, dict):
            return JsonRpcResponse.failure(
                None,
                JsonRpcError(code=INVALID_REQUEST, message="Request must be an object"),
            ).to_dict()
        response = await self.dispatch(JsonRpcRequest.from_message(message))
        return response.to_dict() if response is not None else None

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = NESTED_REQUEST_TIMEOUT,
    ) -> dict[str, Any]:
        """Send a request to this dispatcher and await the correlated result.

        Used by prompt handlers to read resources and call tools.

        Raises:
            NestedRequestError: If the response carries an error.
            TimeoutError: If no response arrives within ``timeout``.
        """
        request_id = f"lens-{next(self._nested_ids)}"
        reply = self._correlation.register(request_id)
        task = asyncio.create_task(
            self._answer_nested(JsonRpcRequest(method=method, params=params or {}, id=request_id))
        )
        # A timed-out handler keeps running; its late reply is dropped.
        self._nested_tasks.add(task)
        task.add_done_callback(self._nested_tasks.discard)
        response: JsonRpcResponse = await self._correlation.wait(
            request_id, timeout, future=reply
        )
        if response.error is not None:
            raise NestedRequestError(method, response.error.to_dict())
        return response.result or {}

    def shutdown(self) -> None:
        """Fail outstanding nested requests and cancel their handlers."""
        pending = self._correlation.cancel_all("server shutting down")
        for task in list(self._nested_tasks):
            task.cancel()
        if pending:
            logger.info("Abandoned %d nested requests at shutdown", pending)

    async def _answer_nested(self, request: JsonRpcRequest) -> None:
        response = await self._dispatch(request)
        self._correlation.resolve(request.id, response)

    async def _dispatch(self, request: JsonRpcRequest) -> JsonRpcResponse:
        validation_error = request.validate()
        if validation_error:
            return JsonRpcResponse.failure(request.id, validation_error)

        handler = self._methods.get(request.method)
        if not handler:
            return JsonRpcResponse.failure(
                request.id,
                JsonRpcError(
                    code=METHOD_NOT_FOUND,
                    message=f"Method not found: {request.method}",
                    data={"method": request.method},
                ),
            )

        try:
            result = await handler(request.params)
            return JsonRpcResponse.success(request.id, result)
        except CapabilityNotFoundError as e:
            logger.info("Rejected %s: %s", request.method, e)
            return JsonRpcResponse.failure(
                request.id,
                JsonRpcError(
                    code=CAPABILITY_NOT_FOUND,
                    message=str(e),
                    data={"kind": e.kind, "name": e.name},
                ),
            )
        except ArgumentValidationError as e:
            logger.info("Rejected %s: %s", request.method, e)
            return JsonRpcResponse.failure(
                request.id,
                JsonRpcError(
                    code=INVALID_PARAMS,
                    message=str(e),
                    data={"field": e.field, "errors": e.errors},
                ),
            )
        except Exception as e:
            logger.exception("Dispatcher failure in %s", request.method)
            return JsonRpcResponse.failure(
                request.id,
                JsonRpcError(
                    code=INTERNAL_ERROR,
                    message=str(e),
                    data={"type": type(e).__name__},
                ),
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        client = params.get("clientInfo") or {}
        logger.info(
            "Initialize from %s %s", client.get("name", "unknown"), client.get("version", "")
        )
        result = InitializeResult(
            protocolVersion=params.get("protocolVersion") or LATEST_PROTOCOL_VERSION,
            capabilities=ServerCapabilities(
                resources=ResourcesCapability(subscribe=False, listChanged=False),
                tools=ToolsCapability(listChanged=False),
                prompts=PromptsCapability(listChanged=False),
            ),
            serverInfo=Implementation(name=SERVER_NAME, version=__version__),
            instructions=self.instructions,
        )
        payload = _model_result(result)
        payload["capabilities"]["completions"] = {}
        return payload

    async def _handle_ack(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def _handle_list_resources(self, params: dict[str, Any]) -> dict[str, Any]:
        resources: list[Resource] = [spec.descriptor() for spec in self.registry.resources]
        ctx = self.context()
        for template in self.registry.templates:
            if template.enumerate is None:
                continue
            try:
                resources.extend(await template.enumerate(ctx))
            except Exception:
                logger.warning(
                    "Enumerating %s failed", template.uri_template, exc_info=True
                )
        return _model_result(ListResourcesResult(resources=resources))

    async def _handle_list_templates(self, params: dict[str, Any]) -> dict[str, Any]:
        return _model_result(
            ListResourceTemplatesResult(
                resourceTemplates=[t.descriptor() for t in self.registry.templates]
            )
        )

    async def _handle_read_resource(self, params: dict[str, Any]) -> dict[str, Any]:
        args = validate_arguments(ReadResourceParams, params, "resources/read")
        spec, bindings = self.registry.resolve_resource(args.uri)
        ctx = self.context()
        try:
            if isinstance(spec, ResourceTemplateSpec):
                text = await spec.handler(ctx, **bindings)
            else:
                text = await spec.handler(ctx)
        except Exception as e:
            logger.warning("Reading %s failed: %s", args.uri, e)
            payload = _model_result(
                ReadResourceResult(
                    contents=[
                        TextResourceContents(
                            uri=args.uri,
                            text=f"Error reading {args.uri}: {e}",
                            mimeType="text/plain",
                        )
                    ]
                )
            )
            payload["isError"] = True
            return payload
        return _model_result(
            ReadResourceResult(
                contents=[
                    TextResourceContents(uri=args.uri, text=text, mimeType=spec.mime_type)
                ]
            )
        )

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _handle_list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return _model_result(
            ListToolsResult(tools=[spec.descriptor() for spec in self.registry.tools])
        )

    async def _handle_call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        call = validate_arguments(CallToolParams, params, "tools/call")
        spec = self.registry.tool(call.name)
        args = validate_arguments(spec.arguments, call.arguments, call.name)
        try:
            output = await spec.handler(args, self.context())
        except ConfirmationError as e:
            return _model_result(
                CallToolResult(content=[TextContent(type="text", text=str(e))], isError=True)
            )
        except Exception as e:
            logger.warning("Tool %s failed: %s", call.name, e, exc_info=True)
            return _model_result(
                CallToolResult(
                    content=[TextContent(type="text", text=f"Error in {call.name}: {e}")],
                    isError=True,
                )
            )
        content = [TextContent(type="text", text=output)] if isinstance(output, str) else output
        return _model_result(CallToolResult(content=content, isError=False))

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    async def _handle_list_prompts(self, params: dict[str, Any]) -> dict[str, Any]:
        return _model_result(
            ListPromptsResult(prompts=[spec.descriptor() for spec in self.registry.prompts])
        )

    async def _handle_get_prompt(self, params: dict[str, Any]) -> dict[str, Any]:
        get = validate_arguments(GetPromptParams, params, "prompts/get")
        spec = self.registry.prompt(get.name)
        args = validate_arguments(spec.arguments, get.arguments, get.name)
        try:
            result = await spec.handler(args, self.context())
        except Exception as e:
            logger.warning("Prompt %s failed: %s", get.name, e, exc_info=True)
            payload = _model_result(
                GetPromptResult(
                    description=f"Error generating {get.name}",
                    messages=[
                        PromptMessage(
                            role="user",
                            content=TextContent(
                                type="text", text=f"Error generating {get.name}: {e}"
                            ),
                        )
                    ],
                )
            )
            payload["isError"] = True
            return payload
        return _model_result(result)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _handle_complete(self, params: dict[str, Any]) -> dict[str, Any]:
        complete = validate_arguments(CompleteParams, params, "completion/complete")
        ref = complete.ref
        if ref.type == "ref/resource":
            completers = self.registry.template(ref.uri or "").completers
        else:
            completers = self.registry.prompt(ref.name or "").completers

        values: list[str] = []
        completer = completers.get(complete.argument.name)
        if completer is not None:
            try:
                values = await completer(self.context(), complete.argument.value)
            except Exception:
                logger.warning(
                    "Completing %s failed", complete.argument.name, exc_info=True
                )
                values = []
        total = len(values)
        return _model_result(
            CompleteResult(
                completion=Completion(
                    values=values[:MAX_COMPLETIONS],
                    total=total,
                    hasMore=total > MAX_COMPLETIONS,
                )
            )
        )
