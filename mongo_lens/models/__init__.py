"""Wire models for the Lens JSON-RPC protocol and HTTP bridge."""

from .health import HealthResponse
from .jsonrpc import JsonRpcError, JsonRpcRequest, JsonRpcResponse

__all__ = [
    "JsonRpcRequest",
    "JsonRpcResponse",
    "JsonRpcError",
    "HealthResponse",
]
