"""MongoDB Lens HTTP bridge.

FastAPI server exposing the same dispatcher as the stdio transport via
JSON-RPC 2.0 over ``POST /rpc``, for clients that cannot spawn a process.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from . import __version__
from .config import Config
from .lens import LensDispatcher, create_dispatcher
from .lens.storage import DocumentStore
from .lens.storage.factory import create_document_store
from .models import HealthResponse
from .models.jsonrpc import PARSE_ERROR, JsonRpcError, JsonRpcResponse

logger = logging.getLogger("lens.http")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Connects the document store and builds the dispatcher on startup.
    Stores state in app.state instead of global variables.
    """
    app.state.start_time = time.monotonic()

    if not hasattr(app.state, "config") or app.state.config is None:
        app.state.config = Config.from_env()
    config: Config = app.state.config

    store: DocumentStore | None = getattr(app.state, "store", None)
    if store is None:
        store = create_document_store(config.mongo.uri, config.mongo.connect_timeout_ms)
    await store.initialize()

    dispatcher = create_dispatcher(config, store)
    app.state.dispatcher = dispatcher
    logger.info("HTTP bridge ready (database %s)", dispatcher.session.database_name)

    yield

    dispatcher.shutdown()
    await dispatcher.session.close()


def create_app(config: Config | None = None, store: DocumentStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Optional configuration (loaded from the environment if omitted).
        store: Optional pre-built document store, e.g. an in-memory one for tests.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="MongoDB Lens",
        description="MCP access to MongoDB over JSON-RPC 2.0",
        version=__version__,
        lifespan=lifespan,
    )

    # Store config and store in app.state for lifespan to access
    if config is not None:
        app.state.config = config
    if store is not None:
        app.state.store = store

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        """Health check endpoint."""
        start_time = getattr(request.app.state, "start_time", 0.0)
        uptime = time.monotonic() - start_time if start_time else 0.0
        dispatcher: LensDispatcher = request.app.state.dispatcher
        response = HealthResponse(
            status="healthy",
            version=__version__,
            uptime_seconds=uptime,
            timestamp=datetime.now(UTC),
            database=dispatcher.session.database_name,
        )
        return JSONResponse(content=response.to_dict())

    @app.post("/rpc")
    async def rpc_endpoint(request: Request) -> Response:
        """JSON-RPC 2.0 endpoint; notifications are acknowledged with 204."""
        try:
            body = await request.json()
        except ValueError:
            error_response = JsonRpcResponse.failure(
                None,
                JsonRpcError(code=PARSE_ERROR, message="Invalid JSON"),
            )
            return JSONResponse(content=error_response.to_dict())

        dispatcher: LensDispatcher = request.app.state.dispatcher
        response = await dispatcher.handle_message(body)
        if response is None:
            return Response(status_code=204)
        return JSONResponse(content=response)


def run_server(
    host: str = "127.0.0.1",
    port: int = 3000,
    config_path: str | None = None,
    uri: str | None = None,
) -> None:
    """Run the HTTP bridge.

    Args:
        host: Bind address.
        port: Bind port.
        config_path: Path to configuration file.
        uri: MongoDB connection string overriding the configured one.
    """
    import uvicorn

    # Load configuration (yaml if given, otherwise environment)
    if config_path:
        config = Config.from_yaml(Path(config_path))
    else:
        config = Config.from_env()

    # Override with CLI arguments if provided
    config.server.host = host
    config.server.port = port
    if uri:
        config.mongo.uri = uri

    app = create_app(config)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    import argparse
    import os

    parser = argparse.ArgumentParser(description="MongoDB Lens HTTP bridge")
    parser.add_argument(
        "uri",
        nargs="?",
        help="MongoDB connection string (default: $MONGO_LENS_URI)",
    )
    parser.add_argument(
        "--host",
        default=os.getenv("MONGO_LENS_HOST", "127.0.0.1"),
        help="Bind address (default: $MONGO_LENS_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("MONGO_LENS_PORT", "3000")),
        help="Bind port (default: $MONGO_LENS_PORT or 3000)",
    )
    parser.add_argument(
        "--config",
        help="Path to YAML config file (overrides env vars)",
    )

    args = parser.parse_args()
    run_server(host=args.host, port=args.port, config_path=args.config, uri=args.uri)
