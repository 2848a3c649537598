"""JSON-RPC 2.0 request and response models.

Implements the JSON-RPC 2.0 envelope used by the MCP stdio transport.
See: https://www.jsonrpc.org/specification
"""

from dataclasses import dataclass, field
from typing import Any


# JSON-RPC 2.0 Error Codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Custom Lens Error Codes
CAPABILITY_NOT_FOUND = -32002


@dataclass(frozen=True, slots=True)
class JsonRpcError:
    """JSON-RPC 2.0 error object.

    Attributes:
        code: Error code (negative integer).
        message: Short error description.
        data: Additional error data (optional).
    """

    code: int
    message: str
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.data is not None:
            result["data"] = self.data
        return result


@dataclass(slots=True)
class JsonRpcRequest:
    """JSON-RPC 2.0 request object.

    A request without an ``id`` is a notification and never gets a response.

    Attributes:
        method: Method name to invoke (e.g. "tools/call").
        params: Method parameters.
        id: Request identifier for correlation.
        jsonrpc: Protocol version (must be "2.0").
    """

    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: str | int | None = None
    jsonrpc: str = "2.0"

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "JsonRpcRequest":
        """Build a request from a decoded JSON object without validating it."""
        params = message.get("params")
        return cls(
            method=message.get("method", ""),
            params={} if params is None else params,
            id=message.get("id"),
            jsonrpc=message.get("jsonrpc", ""),
        )

    @property
    def is_notification(self) -> bool:
        """True when the caller expects no response."""
        return self.id is None

    def validate(self) -> JsonRpcError | None:
        """Validate request format.

        Returns:
            JsonRpcError if invalid, None if valid.
        """
        if self.jsonrpc != "2.0":
            return JsonRpcError(
                code=INVALID_REQUEST,
                message="Invalid JSON-RPC version",
                data={"expected": "2.0", "got": self.jsonrpc},
            )
        if not self.method or not isinstance(self.method, str):
            return JsonRpcError(
                code=INVALID_REQUEST,
                message="Method is required",
            )
        if not isinstance(self.params, dict):
            return JsonRpcError(
                code=INVALID_PARAMS,
                message="Params must be an object (named parameters only)",
                data={"got": type(self.params).__name__},
            )
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        message: dict[str, Any] = {
            "jsonrpc": self.jsonrpc,
            "method": self.method,
            "params": self.params,
        }
        if self.id is not None:
            message["id"] = self.id
        return message


@dataclass(slots=True)
class JsonRpcResponse:
    """JSON-RPC 2.0 response object.

    Attributes:
        id: Request identifier (matches request).
        result: Method result (mutually exclusive with error).
        error: Error object (mutually exclusive with result).
        jsonrpc: Protocol version (always "2.0").
    """

    id: str | int | None
    result: dict[str, Any] | None = None
    error: JsonRpcError | None = None
    jsonrpc: str = "2.0"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        response: dict[str, Any] = {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
        }
        if self.error is not None:
            response["error"] = self.error.to_dict()
        else:
            response["result"] = self.result
        return response

    @classmethod
    def success(cls, id: str | int | None, result: dict[str, Any]) -> "JsonRpcResponse":
        """Create a success response."""
        return cls(id=id, result=result)

    @classmethod
    def failure(cls, id: str | int | None, error: JsonRpcError) -> "JsonRpcResponse":
        """Create an error response."""
        return cls(id=id, error=error)

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "JsonRpcResponse":
        """Build a response from a decoded JSON object received by a caller."""
        error = message.get("error")
        return cls(
            id=message.get("id"),
            result=message.get("result"),
            error=JsonRpcError(
                code=error.get("code", INTERNAL_ERROR),
                message=error.get("message", ""),
                data=error.get("data"),
            )
            if isinstance(error, dict)
            else None,
            jsonrpc=message.get("jsonrpc", "2.0"),
        )
