"""Resource capabilities: fixed server views and per-collection templates."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mcp.types import Resource

from . import formatting
from .registry import (
    CapabilityRegistry,
    Enumerator,
    ResourceSpec,
    ResourceTemplateSpec,
    expand_uri,
)
from .schema_inference import infer_schema

if TYPE_CHECKING:
    from .dispatcher import HandlerContext

logger = logging.getLogger("lens.resources")


def collection_template(suffix: str) -> str:
    return f"mongodb://collection/{{name}}/{suffix}"


def collection_uri(name: str, suffix: str) -> str:
    """URI of a per-collection resource, safe for any collection name."""
    return expand_uri(collection_template(suffix), name=name)


async def complete_collection_name(ctx: HandlerContext, partial: str) -> list[str]:
    """Collection names containing ``partial``, case-insensitively."""
    needle = partial.lower()
    names = await ctx.session.collection_names()
    matches = [name for name in names if needle in name.lower()]
    logger.debug("Completed %r to %d collections", partial, len(matches))
    return matches


# ---------------------------------------------------------------------------
# Fixed resources
# ---------------------------------------------------------------------------


async def read_databases(ctx: HandlerContext) -> str:
    return formatting.format_databases(await ctx.session.store.list_databases())


async def read_collections(ctx: HandlerContext) -> str:
    collections = await ctx.session.list_collections()
    return formatting.format_collections(collections, ctx.session.database_name)


async def read_server_status(ctx: HandlerContext) -> str:
    return formatting.format_server_status(await ctx.session.store.server_status())


async def read_replica_status(ctx: HandlerContext) -> str:
    return formatting.format_replica_status(await ctx.session.store.replica_status())


async def read_users(ctx: HandlerContext) -> str:
    database = ctx.session.database
    return formatting.format_users(await database.users(), database.name)


async def read_stored_functions(ctx: HandlerContext) -> str:
    database = ctx.session.database
    return formatting.format_stored_functions(await database.stored_functions(), database.name)


# ---------------------------------------------------------------------------
# Collection templates
# ---------------------------------------------------------------------------


async def read_collection_schema(ctx: HandlerContext, name: str) -> str:
    schema = await infer_schema(ctx.session.database, name, ctx.defaults.schema_sample_size)
    return formatting.format_schema(schema)


async def read_collection_stats(ctx: HandlerContext, name: str) -> str:
    return formatting.format_stats(await ctx.session.database.collection_stats(name))


async def read_collection_indexes(ctx: HandlerContext, name: str) -> str:
    database = ctx.session.database
    await database.require_collection(name)
    return formatting.format_indexes(await database.indexes(name))


async def read_collection_validation(ctx: HandlerContext, name: str) -> str:
    database = ctx.session.database
    await database.require_collection(name)
    return formatting.format_validation_rules(await database.validation_rules(name))


def _collection_enumerator(uri_template: str, label: str, description: str) -> Enumerator:
    async def enumerate_collections(ctx: HandlerContext) -> list[Resource]:
        return [
            Resource(
                uri=expand_uri(uri_template, name=name),
                name=f"{name} {label}",
                description=description.format(name=name),
                mimeType="text/plain",
            )
            for name in await ctx.session.collection_names()
        ]

    return enumerate_collections


_FIXED = [
    ("mongodb://databases", "databases", "List of all accessible MongoDB databases", read_databases),
    ("mongodb://collections", "collections", "List of collections in the current database", read_collections),
    ("mongodb://server/status", "server-status", "MongoDB server status information", read_server_status),
    (
        "mongodb://server/replica",
        "replica-status",
        "MongoDB replica set status and configuration",
        read_replica_status,
    ),
    ("mongodb://database/users", "database-users", "MongoDB database users and roles", read_users),
    (
        "mongodb://database/functions",
        "stored-functions",
        "MongoDB stored JavaScript functions",
        read_stored_functions,
    ),
]

_TEMPLATES = [
    (
        "schema",
        "Schema",
        "Schema information for a MongoDB collection",
        "Schema for {name} collection",
        read_collection_schema,
    ),
    (
        "stats",
        "Stats",
        "Performance statistics for a MongoDB collection",
        "Statistics for {name} collection",
        read_collection_stats,
    ),
    (
        "indexes",
        "Indexes",
        "Index information for a MongoDB collection",
        "Indexes for {name} collection",
        read_collection_indexes,
    ),
    (
        "validation",
        "Validation",
        "Validation rules for a MongoDB collection",
        "Validation rules for {name} collection",
        read_collection_validation,
    ),
]


def register_resources(registry: CapabilityRegistry) -> None:
    """Register every resource and resource template."""
    for uri, name, description, handler in _FIXED:
        registry.add_resource(
            ResourceSpec(uri=uri, name=name, description=description, handler=handler)
        )
    for suffix, label, description, instance_description, handler in _TEMPLATES:
        uri_template = collection_template(suffix)
        registry.add_template(
            ResourceTemplateSpec(
                uri_template=uri_template,
                name=f"collection-{suffix}",
                description=description,
                handler=handler,
                enumerate=_collection_enumerator(uri_template, label, instance_description),
                completers={"name": complete_collection_name},
            )
        )
