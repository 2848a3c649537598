"""Tool capabilities: queries, administration and data modification.

Destructive tools pass through the confirmation gate before touching the
store. The fingerprint covers the active database as well as the tool
arguments, so a token never carries over to a same-named target elsewhere.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from bson import json_util
from pydantic import BaseModel

from ..mcp_schemas import (
    AggregateDataInput,
    AnalyzeSchemaInput,
    BulkOperationsInput,
    CountDocumentsInput,
    CreateCollectionInput,
    CreateIndexInput,
    DistinctValuesInput,
    DropCollectionInput,
    DropDatabaseInput,
    DropIndexInput,
    DropUserInput,
    EmptyInput,
    ExplainQueryInput,
    ExportDataInput,
    FindDocumentsInput,
    GetStatsInput,
    ModifyDocumentInput,
    RenameCollectionInput,
    UseDatabaseInput,
    ValidateCollectionInput,
)
from . import formatting
from .confirmation import confirmation_prompt
from .registry import CapabilityRegistry, ToolSpec
from .schema_inference import infer_schema
from .storage import DatabaseNotFoundError

if TYPE_CHECKING:
    from .dispatcher import HandlerContext

logger = logging.getLogger("lens.tools")

DELETE_OPERATIONS = frozenset({"deleteOne", "deleteMany"})


def parse_json(text: str | None, what: str, expected: type = dict) -> Any:
    """Parse an Extended JSON argument, checking its top-level type.

    Raises:
        ValueError: If the text is not valid JSON of the expected shape.
    """
    if text is None or not text.strip():
        return expected()
    try:
        value = json_util.loads(text)
    except ValueError as e:
        raise ValueError(f"Invalid JSON in {what}: {e}") from e
    if not isinstance(value, expected):
        kind = "an object" if expected is dict else "an array"
        raise ValueError(f"{what.capitalize()} must be {kind}")
    return value


def _confirm(
    ctx: HandlerContext, kind: str, args: BaseModel, action: str
) -> str | None:
    """Return a confirmation prompt if the operation must wait for a token."""
    params = {
        "database": ctx.session.database_name,
        **args.model_dump(mode="json", exclude={"token"}),
    }
    pending = ctx.confirmations.authorize(kind, params, getattr(args, "token", None))
    if pending is None:
        logger.warning("Performing destructive operation %s: %s", kind, action)
        return None
    return confirmation_prompt(pending, action)


# ---------------------------------------------------------------------------
# Databases and collections
# ---------------------------------------------------------------------------


async def list_databases(args: EmptyInput, ctx: HandlerContext) -> str:
    databases = await ctx.session.store.list_databases()
    logger.info("Found %d databases", len(databases))
    return formatting.format_databases(databases)


async def current_database(args: EmptyInput, ctx: HandlerContext) -> str:
    return f"Current database: {ctx.session.database_name}"


async def use_database(args: UseDatabaseInput, ctx: HandlerContext) -> str:
    await ctx.session.use_database(args.database)
    return f"Switched to database: {args.database}"


async def list_collections(args: EmptyInput, ctx: HandlerContext) -> str:
    collections = await ctx.session.list_collections()
    return formatting.format_collections(collections, ctx.session.database_name)


async def create_collection(args: CreateCollectionInput, ctx: HandlerContext) -> str:
    options = parse_json(args.options, "options")
    await ctx.session.database.create_collection(args.name, options)
    ctx.session.invalidate()
    return f"Collection '{args.name}' created successfully."


async def drop_collection(args: DropCollectionInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.name)
    prompt = _confirm(
        ctx, "drop-collection", args,
        f"drop collection '{args.name}' from database '{database.name}'",
    )
    if prompt:
        return prompt
    await database.drop_collection(args.name)
    ctx.session.invalidate()
    return f"Collection '{args.name}' dropped successfully."


async def rename_collection(args: RenameCollectionInput, ctx: HandlerContext) -> str:
    await ctx.session.database.rename_collection(args.old_name, args.new_name, args.drop_target)
    ctx.session.invalidate()
    return f"Collection '{args.old_name}' renamed to '{args.new_name}' successfully."


async def drop_database(args: DropDatabaseInput, ctx: HandlerContext) -> str:
    store = ctx.session.store
    if not await store.database_exists(args.name):
        raise DatabaseNotFoundError(args.name)
    prompt = _confirm(ctx, "drop-database", args, f"drop database '{args.name}'")
    if prompt:
        return prompt
    await store.drop_database(args.name)
    message = f"Database '{args.name}' dropped successfully."
    if args.name == ctx.session.database_name:
        ctx.session.fall_back("admin")
        return f"{message}\nSwitched to database: admin"
    ctx.session.invalidate()
    return message


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def find_documents(args: FindDocumentsInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.collection)
    limit = args.limit or ctx.defaults.find_limit
    documents = await database.find(
        args.collection,
        parse_json(args.filter, "filter"),
        projection=parse_json(args.projection, "projection") or None,
        limit=limit,
        skip=args.skip,
        sort=parse_json(args.sort, "sort") or None,
    )
    logger.info("Found %d documents in %s", len(documents), args.collection)
    return formatting.format_documents(documents, limit)


async def count_documents(args: CountDocumentsInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.collection)
    count = await database.count(args.collection, parse_json(args.filter, "filter"))
    return f"Count: {count} document(s)"


async def aggregate_data(args: AggregateDataInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.collection)
    pipeline = parse_json(args.pipeline, "pipeline", list)
    results = await database.aggregate(args.collection, pipeline)
    logger.info("Aggregation on %s returned %d results", args.collection, len(results))
    return formatting.format_documents(results)


async def get_stats(args: GetStatsInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    if args.target == "database":
        return formatting.format_stats(await database.database_stats())
    if not args.name:
        raise ValueError("Collection name is required for collection stats")
    await database.require_collection(args.name)
    return formatting.format_stats(await database.collection_stats(args.name))


async def analyze_schema(args: AnalyzeSchemaInput, ctx: HandlerContext) -> str:
    sample_size = args.sample_size or ctx.defaults.schema_sample_size
    schema = await infer_schema(ctx.session.database, args.collection, sample_size)
    return formatting.format_schema(schema)


async def explain_query(args: ExplainQueryInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.collection)
    explanation = await database.explain(
        args.collection, parse_json(args.filter, "filter"), args.verbosity
    )
    return formatting.format_explanation(explanation)


async def distinct_values(args: DistinctValuesInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.collection)
    values = await database.distinct(args.collection, args.field, parse_json(args.filter, "filter"))
    return formatting.format_distinct_values(args.field, values)


async def validate_collection(args: ValidateCollectionInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.collection)
    results = await database.validate_collection(args.collection, args.full)
    return formatting.format_validation_results(results)


async def export_data(args: ExportDataInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.collection)
    documents = await database.find(
        args.collection,
        parse_json(args.filter, "filter"),
        limit=args.limit or ctx.defaults.export_limit,
        sort=parse_json(args.sort, "sort") or None,
    )
    fields = [f.strip() for f in args.fields.split(",") if f.strip()] if args.fields else None
    logger.info("Exporting %d documents from %s as %s", len(documents), args.collection, args.format)
    return formatting.format_export(documents, args.format, fields)


# ---------------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------------


async def create_index(args: CreateIndexInput, ctx: HandlerContext) -> str:
    keys = parse_json(args.keys, "keys")
    if not keys:
        raise ValueError("Index keys must name at least one field")
    name = await ctx.session.database.create_index(
        args.collection, keys, parse_json(args.options, "options")
    )
    return f"Index created: {name}"


async def drop_index(args: DropIndexInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.collection)
    prompt = _confirm(
        ctx, "drop-index", args,
        f"drop index '{args.index_name}' from collection '{args.collection}'",
    )
    if prompt:
        return prompt
    await database.drop_index(args.collection, args.index_name)
    return f"Index '{args.index_name}' dropped from collection '{args.collection}'."


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def modify_document(args: ModifyDocumentInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    options = parse_json(args.options, "options")
    many = bool(options.get("many") or options.get("multi"))

    if args.operation == "insert":
        if not args.document:
            raise ValueError("Document is required for insert operation")
        inserted_id = await database.insert_one(args.collection, parse_json(args.document, "document"))
        ctx.session.invalidate()
        return formatting.format_modify_result("insert", {"insertedId": inserted_id})

    if not args.filter:
        raise ValueError(f"Filter is required for {args.operation} operation")
    filter = parse_json(args.filter, "filter")
    await database.require_collection(args.collection)

    if args.operation == "update":
        if not args.update:
            raise ValueError("Update is required for update operation")
        update = parse_json(args.update, "update")
        if not any(key.startswith("$") for key in update):
            update = {"$set": update}
        upsert = bool(options.get("upsert"))
        if many:
            result = await database.update_many(args.collection, filter, update, upsert)
        else:
            result = await database.bulk_write(
                args.collection,
                [{"updateOne": {"filter": filter, "update": update, "upsert": upsert}}],
            )
        return formatting.format_modify_result("update", result)

    prompt = _confirm(
        ctx, "modify-document", args,
        f"delete {'all documents' if many else 'one document'} matching {args.filter} "
        f"from collection '{args.collection}'",
    )
    if prompt:
        return prompt
    if many:
        deleted = await database.delete_many(args.collection, filter)
    else:
        result = await database.bulk_write(args.collection, [{"deleteOne": {"filter": filter}}])
        deleted = result["deletedCount"]
    return formatting.format_modify_result("delete", {"deletedCount": deleted})


async def bulk_operations(args: BulkOperationsInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    await database.require_collection(args.collection)
    operations = parse_json(args.operations, "operations", list)
    if not operations:
        raise ValueError("Operations must contain at least one operation")
    deletes = sum(
        1 for op in operations if isinstance(op, dict) and DELETE_OPERATIONS & op.keys()
    )
    if deletes:
        prompt = _confirm(
            ctx, "bulk-operations", args,
            f"run {len(operations)} bulk operations including {deletes} delete(s) "
            f"on collection '{args.collection}'",
        )
        if prompt:
            return prompt
    result = await database.bulk_write(args.collection, operations, args.ordered)
    return formatting.format_bulk_result(result)


async def drop_user(args: DropUserInput, ctx: HandlerContext) -> str:
    database = ctx.session.database
    prompt = _confirm(
        ctx, "drop-user", args,
        f"drop user '{args.username}' from database '{database.name}'",
    )
    if prompt:
        return prompt
    await database.drop_user(args.username)
    return f"User '{args.username}' dropped from database '{database.name}'."


TOOLS = [
    ToolSpec("list-databases", "List all accessible MongoDB databases", EmptyInput, list_databases),
    ToolSpec("current-database", "Get the name of the current database", EmptyInput, current_database),
    ToolSpec("use-database", "Switch to a specific database", UseDatabaseInput, use_database),
    ToolSpec("list-collections", "List collections in the current database", EmptyInput, list_collections),
    ToolSpec("find-documents", "Run queries with filters and projections", FindDocumentsInput, find_documents),
    ToolSpec("count-documents", "Count documents with optional filter", CountDocumentsInput, count_documents),
    ToolSpec("aggregate-data", "Run aggregation pipelines", AggregateDataInput, aggregate_data),
    ToolSpec("get-stats", "Get database or collection statistics", GetStatsInput, get_stats),
    ToolSpec("analyze-schema", "Automatically infer schema from collection", AnalyzeSchemaInput, analyze_schema),
    ToolSpec("create-index", "Create new index on collection", CreateIndexInput, create_index),
    ToolSpec(
        "drop-index",
        "Remove an index from a collection (requires confirmation)",
        DropIndexInput,
        drop_index,
        destructive=True,
    ),
    ToolSpec("explain-query", "Analyze query performance", ExplainQueryInput, explain_query),
    ToolSpec("distinct-values", "Get unique values for a field", DistinctValuesInput, distinct_values),
    ToolSpec(
        "validate-collection",
        "Run validation on a collection to check for inconsistencies",
        ValidateCollectionInput,
        validate_collection,
    ),
    ToolSpec("create-collection", "Create a new collection with options", CreateCollectionInput, create_collection),
    ToolSpec(
        "drop-collection",
        "Remove a collection (requires confirmation)",
        DropCollectionInput,
        drop_collection,
        destructive=True,
    ),
    ToolSpec("rename-collection", "Rename an existing collection", RenameCollectionInput, rename_collection),
    ToolSpec(
        "drop-database",
        "Remove a database (requires confirmation)",
        DropDatabaseInput,
        drop_database,
        destructive=True,
    ),
    ToolSpec(
        "modify-document",
        "Insert, update, or delete specific documents (deletes require confirmation)",
        ModifyDocumentInput,
        modify_document,
        destructive=True,
    ),
    ToolSpec(
        "bulk-operations",
        "Perform bulk inserts, updates, or deletes (deletes require confirmation)",
        BulkOperationsInput,
        bulk_operations,
        destructive=True,
    ),
    ToolSpec(
        "drop-user",
        "Remove a user from the current database (requires confirmation)",
        DropUserInput,
        drop_user,
        destructive=True,
    ),
    ToolSpec("export-data", "Export query results to formatted JSON or CSV", ExportDataInput, export_data),
]


def register_tools(registry: CapabilityRegistry) -> None:
    """Register every tool."""
    for spec in TOOLS:
        registry.add_tool(spec)
