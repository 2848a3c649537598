"""MongoDB Lens capability layer.

Assembles the resource, tool and prompt catalogue into a registry and
wires it to a dispatcher bound to one document store.
"""

from ..config import Config
from .confirmation import ConfirmationGate
from .dispatcher import HandlerContext, LensDispatcher
from .prompts import register_prompts
from .registry import CapabilityRegistry
from .resources import register_resources
from .session import SessionContext
from .storage import DocumentStore
from .tools import register_tools

INSTRUCTIONS = """MongoDB Lens gives read and write access to a MongoDB deployment.

Start with list-databases and use-database to pick a database, then
list-collections and analyze-schema to learn its shape before querying.
Filters, projections, sorts, pipelines and documents are MongoDB Extended
JSON strings.

Destructive tools (drop-collection, drop-database, drop-index, drop-user and
deletes through modify-document or bulk-operations) first return a
confirmation token. Repeat the identical call with that token to proceed."""


def build_registry() -> CapabilityRegistry:
    """Create a registry holding every MongoDB Lens capability."""
    registry = CapabilityRegistry()
    register_resources(registry)
    register_tools(registry)
    register_prompts(registry)
    return registry


def create_dispatcher(config: Config, store: DocumentStore) -> LensDispatcher:
    """Wire a dispatcher for ``store`` using the configured safety and defaults."""
    session = SessionContext(
        store,
        config.mongo.database_name,
        cache_ttl=config.defaults.cache_ttl_seconds,
    )
    gate = ConfirmationGate(
        enabled=not config.safety.disable_destructive_tokens,
        ttl_seconds=config.safety.token_ttl_seconds,
    )
    return LensDispatcher(
        build_registry(),
        session,
        gate,
        defaults=config.defaults,
        instructions=INSTRUCTIONS,
    )


__all__ = [
    "INSTRUCTIONS",
    "CapabilityRegistry",
    "HandlerContext",
    "LensDispatcher",
    "build_registry",
    "create_dispatcher",
]
