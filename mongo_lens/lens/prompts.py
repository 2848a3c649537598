"""Prompt capabilities: guided templates for common MongoDB tasks.

Prompts that discuss live data fetch it with nested ``resources/read``
requests, so they see exactly what a client reading the same resource
would see.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mcp.types import GetPromptResult, PromptMessage, TextContent

from ..mcp_schemas import (
    AggregationBuilderArgs,
    BackupStrategyArgs,
    DataModelingArgs,
    EmptyInput,
    IndexRecommendationArgs,
    MigrationGuideArgs,
    MongoShellArgs,
    QueryBuilderArgs,
    QueryOptimizerArgs,
    SchemaAnalysisArgs,
)
from .registry import CapabilityRegistry, PromptSpec
from .resources import collection_uri, complete_collection_name
from .schema_inference import example_filter, field_names, infer_schema
from .storage import StoreError

if TYPE_CHECKING:
    from .dispatcher import HandlerContext

logger = logging.getLogger("lens.prompts")


def _user_prompt(description: str, text: str) -> GetPromptResult:
    return GetPromptResult(
        description=description,
        messages=[PromptMessage(role="user", content=TextContent(type="text", text=text))],
    )


async def _field_hint(ctx: HandlerContext, collection: str) -> str:
    try:
        schema = await infer_schema(
            ctx.session.database, collection, ctx.defaults.schema_sample_size
        )
    except StoreError as e:
        logger.debug("No field hint for %s: %s", collection, e)
        return ""
    return (
        f"\n\nFields seen in a sample of {schema.sample_size} document(s): "
        f"{', '.join(field_names(schema))}\n"
        f"Example filter shape: {example_filter(schema)}"
    )


async def query_builder(args: QueryBuilderArgs, ctx: HandlerContext) -> GetPromptResult:
    logger.info("Building query prompt for %s: %r", args.collection, args.condition)
    database = ctx.session.database_name
    hint = await _field_hint(ctx, args.collection)
    return _user_prompt(
        f"MongoDB Query Builder for {args.collection}",
        f"""Please help me create a MongoDB query for the '{args.collection}' collection based on this condition: "{args.condition}".

I need both the filter object and a complete example showing how to use it with the find-documents tool.

Guidelines:
1. Create a valid MongoDB query filter as a JSON object
2. Show me how special MongoDB operators work if needed (like $gt, $in, etc.)
3. Provide a complete example of using this with the find-documents tool
4. Suggest any relevant projections or sort options

Remember: I'm working with the {database} database and the {args.collection} collection.{hint}""",
    )


async def aggregation_builder(
    args: AggregationBuilderArgs, ctx: HandlerContext
) -> GetPromptResult:
    logger.info("Building aggregation prompt for %s: %r", args.collection, args.goal)
    database = ctx.session.database_name
    return _user_prompt(
        f"MongoDB Aggregation Pipeline Builder for {args.collection}",
        f"""I need to create a MongoDB aggregation pipeline for the '{args.collection}' collection to {args.goal}.

Please help me create:
1. A complete aggregation pipeline as a JSON array
2. An explanation of each stage in the pipeline
3. How to execute this with the aggregate-data tool

Remember: I'm working with the {database} database and the {args.collection} collection.""",
    )


async def schema_analysis(args: SchemaAnalysisArgs, ctx: HandlerContext) -> GetPromptResult:
    schema = await ctx.read_resource(collection_uri(args.collection, "schema"))
    logger.info("Retrieved schema for %s", args.collection)
    return _user_prompt(
        f"MongoDB Schema Analysis for {args.collection}",
        f"""Please analyze the schema of the '{args.collection}' collection and provide recommendations:

Here's the current schema:
{schema}

Could you help with:
1. Identifying any schema design issues or inconsistencies
2. Suggesting schema improvements for better performance
3. Recommending appropriate indexes based on the data structure
4. Best practices for this type of data model
5. Any potential MongoDB-specific optimizations""",
    )


async def index_recommendation(
    args: IndexRecommendationArgs, ctx: HandlerContext
) -> GetPromptResult:
    database = ctx.session.database_name
    return _user_prompt(
        f"MongoDB Index Recommendations for {args.collection}",
        f"""I need index recommendations for the '{args.collection}' collection to optimize this query pattern: "{args.query_pattern}".

Please provide:
1. Recommended index(es) with proper key specification
2. Explanation of why this index would help
3. The exact command to create this index using the create-index tool
4. How to verify the index is being used
5. Any potential trade-offs or considerations for this index

Remember: I'm working with the {database} database and the {args.collection} collection.""",
    )


async def mongo_shell(args: MongoShellArgs, ctx: HandlerContext) -> GetPromptResult:
    details = f" with these details: {args.details}" if args.details else ""
    return _user_prompt(
        "MongoDB Shell Command Generator",
        f"""Please generate MongoDB shell commands to {args.operation}{details}.

I need:
1. The exact MongoDB shell command(s)
2. Explanation of each part of the command
3. How this translates to using MongoDB Lens tools
4. Any important considerations or variations

Current database: {ctx.session.database_name}""",
    )


async def inspector_guide(args: EmptyInput, ctx: HandlerContext) -> GetPromptResult:
    return _user_prompt(
        "MongoDB Lens Inspector Guide",
        """I'm using the MCP Inspector with MongoDB Lens. How can I best use these tools together?

Please provide:
1. An overview of the most useful Inspector features for MongoDB
2. Tips for debugging MongoDB queries
3. Common workflows for exploring a database
4. How to use the Inspector features with MongoDB Lens resources and tools""",
    )


async def data_modeling(args: DataModelingArgs, ctx: HandlerContext) -> GetPromptResult:
    existing = (
        f"Existing data structure:\n{args.existing_data}\n\n" if args.existing_data else ""
    )
    return _user_prompt(
        "MongoDB Data Modeling Guide",
        f"""I need help designing a MongoDB data model for this use case: "{args.use_case}".

Key requirements:
{args.requirements}

{existing}
Please provide:
1. Recommended data model with collection structures
2. Sample document structures in JSON format
3. Explanation of design decisions and trade-offs
4. Appropriate indexing strategy
5. Any MongoDB-specific features or patterns I should consider
6. How this model addresses the stated requirements""",
    )


async def query_optimizer(args: QueryOptimizerArgs, ctx: HandlerContext) -> GetPromptResult:
    stats = await ctx.read_resource(collection_uri(args.collection, "stats"))
    indexes = await ctx.read_resource(collection_uri(args.collection, "indexes"))
    performance = f"Current performance: {args.performance}\n\n" if args.performance else ""
    return _user_prompt(
        "MongoDB Query Optimization Advisor",
        f"""I have a slow MongoDB query on the '{args.collection}' collection and need help optimizing it.

Query filter: {args.query}

{performance}
Collection stats:
{stats}

Current indexes:
{indexes}

Please provide:
1. Analysis of why this query might be slow
2. Recommend index changes (additions or modifications)
3. Suggest query structure improvements
4. Explain how to verify performance improvements
5. Other optimization techniques I should consider""",
    )


async def security_audit(args: EmptyInput, ctx: HandlerContext) -> GetPromptResult:
    server_status = await ctx.read_resource("mongodb://server/status")
    users = await ctx.read_resource("mongodb://database/users")
    return _user_prompt(
        "MongoDB Security Audit",
        f"""Please help me perform a security audit on my MongoDB deployment.

Server information:
{server_status}

User information:
{users}

Please provide:
1. Potential security vulnerabilities in my current setup
2. Recommendations for improving security
3. Authentication and authorization best practices
4. Network security considerations
5. Data encryption options
6. Audit logging recommendations
7. Backup security considerations""",
    )


async def backup_strategy(args: BackupStrategyArgs, ctx: HandlerContext) -> GetPromptResult:
    facts = [
        ("Database size", args.database_size),
        ("Uptime requirement", args.uptime),
        ("Recovery Point Objective (RPO)", args.rpo),
        ("Recovery Time Objective (RTO)", args.rto),
    ]
    known = "".join(f"{label}: {value}\n" for label, value in facts if value)
    return _user_prompt(
        "MongoDB Backup & Recovery Strategy",
        f"""I need recommendations for a MongoDB backup and recovery strategy.

{known}Current database: {ctx.session.database_name}

Please provide:
1. Recommended backup methods for my scenario
2. Backup frequency and retention recommendations
3. Storage considerations and best practices
4. Restoration procedures and testing strategy
5. Monitoring and validation approaches
6. High availability considerations
7. Tools and commands for implementing the strategy""",
    )


async def migration_guide(args: MigrationGuideArgs, ctx: HandlerContext) -> GetPromptResult:
    features = f"Key features I'm using: {args.features}\n\n" if args.features else ""
    return _user_prompt(
        "MongoDB Version Migration Guide",
        f"""I need to migrate my MongoDB deployment from version {args.source_version} to {args.target_version}.

{features}
Please provide:
1. Step-by-step migration plan
2. Pre-migration checks and preparations
3. Breaking changes and deprecated features to be aware of
4. New features or improvements I can leverage
5. Common pitfalls and how to avoid them
6. Performance considerations
7. Rollback strategy in case of issues""",
    )


_COLLECTION = {"collection": complete_collection_name}

PROMPTS = [
    PromptSpec(
        "query-builder", "Help construct MongoDB query filters",
        QueryBuilderArgs, query_builder, _COLLECTION,
    ),
    PromptSpec(
        "aggregation-builder", "Help construct MongoDB aggregation pipelines",
        AggregationBuilderArgs, aggregation_builder, _COLLECTION,
    ),
    PromptSpec(
        "schema-analysis", "Analyze collection schema and recommend improvements",
        SchemaAnalysisArgs, schema_analysis, _COLLECTION,
    ),
    PromptSpec(
        "index-recommendation", "Get index recommendations for query patterns",
        IndexRecommendationArgs, index_recommendation, _COLLECTION,
    ),
    PromptSpec("mongo-shell", "Generate MongoDB shell commands", MongoShellArgs, mongo_shell),
    PromptSpec(
        "inspector-guide", "Get help using MongoDB Lens with MCP Inspector",
        EmptyInput, inspector_guide,
    ),
    PromptSpec(
        "data-modeling", "Get MongoDB data modeling advice for specific use cases",
        DataModelingArgs, data_modeling,
    ),
    PromptSpec(
        "query-optimizer", "Get optimization advice for slow queries",
        QueryOptimizerArgs, query_optimizer, _COLLECTION,
    ),
    PromptSpec("security-audit", "Get MongoDB security recommendations", EmptyInput, security_audit),
    PromptSpec(
        "backup-strategy", "Get advice on MongoDB backup and recovery approaches",
        BackupStrategyArgs, backup_strategy,
    ),
    PromptSpec(
        "migration-guide", "Generate MongoDB migration steps between versions",
        MigrationGuideArgs, migration_guide,
    ),
]


def register_prompts(registry: CapabilityRegistry) -> None:
    """Register every prompt."""
    for spec in PROMPTS:
        registry.add_prompt(spec)
