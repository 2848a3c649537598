"""MongoDB Lens MCP server (stdio transport).

Reads newline-delimited JSON-RPC messages from stdin and writes responses
to stdout. Each request is handled in its own task, so a slow query never
blocks a ``ping``; responses are written as whole lines in completion
order and matched by id on the client side.

Usage::

    python -m mongo_lens.mcp_server mongodb://localhost:27017/shop
    python -m mongo_lens.mcp_server --config config/lens.yaml
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from .config import Config
from .lens import LensDispatcher, create_dispatcher
from .lens.storage.factory import create_document_store
from .transport import StreamTransport, open_stdio_transport

logger = logging.getLogger("lens.server")


class LensServer:
    """Serves one dispatcher over one message stream until end of input."""

    def __init__(self, dispatcher: LensDispatcher, transport: StreamTransport) -> None:
        self.dispatcher = dispatcher
        self.transport = transport
        self._tasks: set[asyncio.Task[None]] = set()

    async def serve(self) -> None:
        """Dispatch every incoming message, then wait for in-flight requests."""
        async for message in self.transport.messages():
            task = asyncio.create_task(self._handle(message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if self._tasks:
            logger.debug("Input closed; waiting for %d in-flight requests", len(self._tasks))
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.transport.parse_errors:
            logger.info("Dropped %d unparseable messages", self.transport.parse_errors)

    async def _handle(self, message: Any) -> None:
        response = await self.dispatcher.handle_message(message)
        if response is None:
            return
        try:
            await self.transport.send(response)
        except (BrokenPipeError, ConnectionResetError):
            logger.warning("Client went away before response %s was sent", response.get("id"))


def configure_logging(level: str) -> None:
    """Send logs to stderr; stdout carries protocol traffic only."""
    name = "DEBUG" if level.lower() == "verbose" else level.upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def load_config(config_path: str | None, uri: str | None) -> Config:
    """Load configuration from a YAML file or the environment.

    A URI given on the command line overrides either source.
    """
    config = Config.from_yaml(Path(config_path)) if config_path else Config.from_env()
    if uri:
        config.mongo.uri = uri
    return config


async def run_stdio(config: Config) -> None:
    """Connect to the document store and serve MCP over stdio."""
    store = create_document_store(config.mongo.uri, config.mongo.connect_timeout_ms)
    await store.initialize()
    dispatcher = create_dispatcher(config, store)
    logger.info(
        "Starting MongoDB Lens (stdio transport, database %s)",
        dispatcher.session.database_name,
    )

    transport = await open_stdio_transport()
    server = LensServer(dispatcher, transport)
    serving = asyncio.create_task(server.serve())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, serving.cancel)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            pass

    try:
        await serving
    except asyncio.CancelledError:
        logger.info("Shutdown requested")
    finally:
        dispatcher.shutdown()
        transport.close()
        await dispatcher.session.close()
        logger.info("MongoDB Lens stopped")


def main(argv: list[str] | None = None) -> int:
    """Entry point for the MCP server."""
    parser = argparse.ArgumentParser(description="MongoDB Lens MCP server")
    parser.add_argument(
        "uri",
        nargs="?",
        help="MongoDB connection string (default: $MONGO_LENS_URI or mongodb://localhost:27017)",
    )
    parser.add_argument(
        "--config",
        help="Path to YAML config file (overrides env vars)",
    )
    args = parser.parse_args(argv)

    config = load_config(args.config, args.uri)
    configure_logging(config.logging.level)
    try:
        asyncio.run(run_stdio(config))
    except Exception as e:
        logger.error("MongoDB Lens failed: %s", e, exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
