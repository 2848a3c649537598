"""Pydantic input schemas for MCP capability definitions.

These models define the JSON Schema that MCP clients see when discovering
tools and prompts, and they are the single validation step the dispatcher
applies before a handler runs. Wire names follow MongoDB Lens conventions
(``sampleSize``, ``oldName``); Python attributes are snake_case.

Filters, projections, sorts, pipelines and documents are MongoDB Extended
JSON strings, e.g. ``{"_id": {"$oid": "..."}}``.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TOKEN_DESCRIPTION = (
    "Confirmation token from a previous call. Omit it to receive a token; "
    "repeat the identical request with the token to perform the operation"
)


class LensInput(BaseModel):
    """Base for argument models; accepts wire aliases and attribute names."""

    model_config = ConfigDict(populate_by_name=True)


class EmptyInput(LensInput):
    """Input for capabilities that take no arguments."""


# ============================================================================
# Protocol method parameters
# ============================================================================


class ReadResourceParams(LensInput):
    """Params of ``resources/read``."""

    uri: str = Field(..., min_length=1, description="Resource URI")


class CallToolParams(LensInput):
    """Params of ``tools/call``."""

    name: str = Field(..., min_length=1, description="Tool name")
    arguments: dict[str, Any] | None = Field(default=None, description="Tool arguments")


class GetPromptParams(LensInput):
    """Params of ``prompts/get``."""

    name: str = Field(..., min_length=1, description="Prompt name")
    arguments: dict[str, Any] | None = Field(default=None, description="Prompt arguments")


class CompletionReference(LensInput):
    """What is being completed: a template placeholder or a prompt argument."""

    type: Literal["ref/resource", "ref/prompt"]
    uri: str | None = None
    name: str | None = None


class CompletionArgument(LensInput):
    """The argument being completed and its partial value."""

    name: str = Field(..., min_length=1)
    value: str = ""


class CompleteParams(LensInput):
    """Params of ``completion/complete``."""

    ref: CompletionReference
    argument: CompletionArgument


# ============================================================================
# Database and collection tools
# ============================================================================


class UseDatabaseInput(LensInput):
    """Input for the use-database tool."""

    database: str = Field(..., min_length=1, description="Database name to use")


class FindDocumentsInput(LensInput):
    """Input for the find-documents tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    filter: str = Field(default="{}", description="MongoDB query filter (JSON string)")
    projection: str | None = Field(
        default=None,
        description="Fields to include/exclude (JSON string)",
    )
    limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of documents to return (default: 10)",
    )
    skip: int = Field(default=0, ge=0, description="Number of documents to skip")
    sort: str | None = Field(default=None, description="Sort specification (JSON string)")


class CountDocumentsInput(LensInput):
    """Input for the count-documents tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    filter: str = Field(default="{}", description="MongoDB query filter (JSON string)")


class AggregateDataInput(LensInput):
    """Input for the aggregate-data tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    pipeline: str = Field(..., description="Aggregation pipeline as JSON string array")


class GetStatsInput(LensInput):
    """Input for the get-stats tool."""

    target: Literal["database", "collection"] = Field(..., description="Target type")
    name: str | None = Field(
        default=None,
        description="Collection name (for collection stats)",
    )


class AnalyzeSchemaInput(LensInput):
    """Input for the analyze-schema tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    sample_size: int | None = Field(
        default=None,
        ge=1,
        alias="sampleSize",
        description="Number of documents to sample (default: 100)",
    )


class CreateIndexInput(LensInput):
    """Input for the create-index tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    keys: str = Field(..., description='Index keys as JSON object, e.g. {"email": 1}')
    options: str | None = Field(default=None, description="Index options as JSON object")


class DropIndexInput(LensInput):
    """Input for the drop-index tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    index_name: str = Field(
        ...,
        min_length=1,
        alias="indexName",
        description="Name of the index to drop",
    )
    token: str | None = Field(default=None, description=TOKEN_DESCRIPTION)


class ExplainQueryInput(LensInput):
    """Input for the explain-query tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    filter: str = Field(..., description="MongoDB query filter (JSON string)")
    verbosity: Literal["queryPlanner", "executionStats", "allPlansExecution"] = Field(
        default="executionStats",
        description="Explain verbosity level",
    )


class DistinctValuesInput(LensInput):
    """Input for the distinct-values tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    field: str = Field(
        ...,
        min_length=1,
        description="Field name to get distinct values for",
    )
    filter: str = Field(default="{}", description="Optional filter as JSON string")


class ValidateCollectionInput(LensInput):
    """Input for the validate-collection tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    full: bool = Field(
        default=False,
        description="Perform full validation (slower but more thorough)",
    )


class CreateCollectionInput(LensInput):
    """Input for the create-collection tool."""

    name: str = Field(..., min_length=1, description="Collection name")
    options: str = Field(
        default="{}",
        description="Collection options as JSON string (capped, size, etc.)",
    )


class DropCollectionInput(LensInput):
    """Input for the drop-collection tool."""

    name: str = Field(..., min_length=1, description="Collection name")
    token: str | None = Field(default=None, description=TOKEN_DESCRIPTION)


class RenameCollectionInput(LensInput):
    """Input for the rename-collection tool."""

    old_name: str = Field(
        ...,
        min_length=1,
        alias="oldName",
        description="Current collection name",
    )
    new_name: str = Field(
        ...,
        min_length=1,
        alias="newName",
        description="New collection name",
    )
    drop_target: bool = Field(
        default=False,
        alias="dropTarget",
        description="Whether to drop target collection if it exists",
    )


class DropDatabaseInput(LensInput):
    """Input for the drop-database tool."""

    name: str = Field(..., min_length=1, description="Database name")
    token: str | None = Field(default=None, description=TOKEN_DESCRIPTION)


class DropUserInput(LensInput):
    """Input for the drop-user tool."""

    username: str = Field(..., min_length=1, description="User to remove from the current database")
    token: str | None = Field(default=None, description=TOKEN_DESCRIPTION)


# ============================================================================
# Data modification and export
# ============================================================================


class ModifyDocumentInput(LensInput):
    """Input for the modify-document tool. Deletes require confirmation."""

    collection: str = Field(..., min_length=1, description="Collection name")
    operation: Literal["insert", "update", "delete"] = Field(..., description="Operation type")
    document: str | None = Field(default=None, description="Document as JSON string (for insert)")
    filter: str | None = Field(
        default=None,
        description="Filter as JSON string (for update/delete)",
    )
    update: str | None = Field(
        default=None,
        description="Update operations as JSON string (for update)",
    )
    options: str | None = Field(
        default=None,
        description='Options as JSON string, e.g. {"upsert": true} for update',
    )
    token: str | None = Field(default=None, description=TOKEN_DESCRIPTION)


class BulkOperationsInput(LensInput):
    """Input for the bulk-operations tool. Batches with deletes require confirmation."""

    collection: str = Field(..., min_length=1, description="Collection name")
    operations: str = Field(
        ...,
        description='Array of operations as JSON string, e.g. [{"insertOne": {"document": {...}}}]',
    )
    ordered: bool = Field(
        default=True,
        description="Whether operations should be performed in order",
    )
    token: str | None = Field(default=None, description=TOKEN_DESCRIPTION)


class ExportDataInput(LensInput):
    """Input for the export-data tool."""

    collection: str = Field(..., min_length=1, description="Collection name")
    filter: str = Field(default="{}", description="Filter as JSON string")
    format: Literal["json", "csv"] = Field(default="json", description="Export format")
    fields: str | None = Field(
        default=None,
        description="Comma-separated list of fields to include (for CSV)",
    )
    limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum documents to export (default: 1000)",
    )
    sort: str | None = Field(
        default=None,
        description='Sort specification as JSON string (e.g. {"date": -1} for descending)',
    )


# ============================================================================
# Prompt arguments
# ============================================================================


class QueryBuilderArgs(LensInput):
    """Arguments of the query-builder prompt."""

    collection: str = Field(..., min_length=1, description="Collection name to query")
    condition: str = Field(
        ...,
        description='Describe the condition in natural language (e.g. "users older than 30")',
    )


class AggregationBuilderArgs(LensInput):
    """Arguments of the aggregation-builder prompt."""

    collection: str = Field(..., min_length=1, description="Collection name for aggregation")
    goal: str = Field(..., description="What you want to calculate or analyze")


class SchemaAnalysisArgs(LensInput):
    """Arguments of the schema-analysis prompt."""

    collection: str = Field(..., min_length=1, description="Collection name to analyze")


class IndexRecommendationArgs(LensInput):
    """Arguments of the index-recommendation prompt."""

    collection: str = Field(..., min_length=1, description="Collection name")
    query_pattern: str = Field(
        ...,
        alias="queryPattern",
        description="Common query pattern or operation",
    )


class MongoShellArgs(LensInput):
    """Arguments of the mongo-shell prompt."""

    operation: str = Field(..., description="Operation you want to perform")
    details: str | None = Field(default=None, description="Additional details about the operation")


class DataModelingArgs(LensInput):
    """Arguments of the data-modeling prompt."""

    use_case: str = Field(
        ...,
        alias="useCase",
        description="Describe your application or data use case",
    )
    requirements: str = Field(
        ...,
        description="Key requirements (performance, access patterns, etc.)",
    )
    existing_data: str | None = Field(
        default=None,
        alias="existingData",
        description="Optional: describe any existing data structure",
    )


class QueryOptimizerArgs(LensInput):
    """Arguments of the query-optimizer prompt."""

    collection: str = Field(..., min_length=1, description="Collection name")
    query: str = Field(..., description="The slow query (as a JSON filter)")
    performance: str | None = Field(
        default=None,
        description="Optional: current performance metrics",
    )


class BackupStrategyArgs(LensInput):
    """Arguments of the backup-strategy prompt."""

    database_size: str | None = Field(
        default=None,
        alias="databaseSize",
        description="Optional: database size information",
    )
    uptime: str | None = Field(
        default=None,
        description='Optional: uptime requirements (e.g. "99.9%")',
    )
    rpo: str | None = Field(default=None, description="Optional: recovery point objective")
    rto: str | None = Field(default=None, description="Optional: recovery time objective")


class MigrationGuideArgs(LensInput):
    """Arguments of the migration-guide prompt."""

    source_version: str = Field(..., alias="sourceVersion", description="Source MongoDB version")
    target_version: str = Field(..., alias="targetVersion", description="Target MongoDB version")
    features: str | None = Field(default=None, description="Optional: specific features you use")
