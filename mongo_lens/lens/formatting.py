"""Human-readable text rendering of store results.

Documents are rendered as relaxed MongoDB Extended JSON so ObjectIds and
dates survive a copy back into a filter.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from bson import ObjectId, json_util

from .schema_inference import SchemaSummary

EXAMPLE_WIDTH = 50

_JSON_OPTIONS = json_util.RELAXED_JSON_OPTIONS

_STAT_LABELS = [
    ("ns", "Namespace"),
    ("db", "Database"),
    ("collections", "Collections"),
    ("count", "Document Count"),
    ("objects", "Document Count"),
    ("size", "Data Size"),
    ("dataSize", "Data Size"),
    ("avgObjSize", "Average Object Size"),
    ("storageSize", "Storage Size"),
    ("totalIndexSize", "Total Index Size"),
    ("nindexes", "Number of Indexes"),
    ("indexes", "Number of Indexes"),
]


def to_json(value: Any, indent: int | None = None) -> str:
    """Render a BSON-compatible value as relaxed Extended JSON."""
    return json_util.dumps(value, json_options=_JSON_OPTIONS, indent=indent)


def format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        return to_json(value)
    return str(value)


def format_size(size_in_bytes: float) -> str:
    if size_in_bytes < 1024:
        return f"{int(size_in_bytes)} bytes"
    if size_in_bytes < 1024 * 1024:
        return f"{size_in_bytes / 1024:.2f} KB"
    if size_in_bytes < 1024 * 1024 * 1024:
        return f"{size_in_bytes / (1024 * 1024):.2f} MB"
    return f"{size_in_bytes / (1024 * 1024 * 1024):.2f} GB"


def format_uptime(seconds: float | None) -> str:
    if seconds is None:
        return "Unknown"
    seconds = int(seconds)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Databases and collections
# ---------------------------------------------------------------------------


def format_databases(databases: list[dict[str, Any]]) -> str:
    lines = [f"Databases ({len(databases)}):"]
    lines.extend(
        f"- {db['name']} ({format_size(db.get('sizeOnDisk', 0))})" for db in databases
    )
    return "\n".join(lines)


def format_collections(collections: list[dict[str, Any]], database: str) -> str:
    if not collections:
        return f"No collections found in database '{database}'"
    lines = [f"Collections in {database} ({len(collections)}):"]
    lines.extend(f"- {c['name']} ({c.get('type', 'collection')})" for c in collections)
    return "\n".join(lines)


def format_documents(documents: list[dict[str, Any]], limit: int | None = None) -> str:
    if not documents:
        return "No documents found"
    count = len(documents)
    header = f"{count} document{'' if count == 1 else 's'}"
    if limit is not None and count == limit:
        header += f" (limit: {limit})"
    return header + ":\n" + "\n\n".join(to_json(doc, indent=2) for doc in documents)


def format_distinct_values(field: str, values: list[Any]) -> str:
    lines = [f"Distinct values for field '{field}' ({len(values)}):"]
    lines.extend(f"- {format_value(v)}" for v in values)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Schema, statistics and indexes
# ---------------------------------------------------------------------------


def _example(value: Any) -> str | None:
    if value is None:
        return None
    text = to_json(value) if isinstance(value, (Mapping, list, tuple)) else format_value(value)
    if len(text) > EXAMPLE_WIDTH:
        text = text[: EXAMPLE_WIDTH - 3] + "…"
    return text


def format_schema(schema: SchemaSummary) -> str:
    """One line per field: types, coverage and a truncated example."""
    lines = [
        f"Schema for '{schema.collection_name}' (sampled {schema.sample_size} documents):"
    ]
    for name, summary in schema.fields.items():
        line = f"- {name}: {' | '.join(summary.types)} ({schema.coverage(name)}% coverage)"
        example = _example(summary.example)
        if example is not None:
            line += f" (example: {example})"
        lines.append(line)
    return "\n".join(lines) + "\n"


def format_stats(stats: dict[str, Any] | None) -> str:
    if not stats:
        return "No statistics available"
    lines = ["Statistics:"]
    seen_labels: set[str] = set()
    for key, label in _STAT_LABELS:
        if key not in stats or label in seen_labels:
            continue
        seen_labels.add(label)
        value = stats[key]
        if "size" in key.lower() and isinstance(value, (int, float)):
            value = format_size(value)
        lines.append(f"- {label}: {value}")
    return "\n".join(lines) + "\n"


def format_indexes(indexes: list[dict[str, Any]]) -> str:
    if not indexes:
        return "No indexes found"
    lines = [f"Indexes ({len(indexes)}):"]
    for index in indexes:
        keys = ", ".join(f"{field}: {direction}" for field, direction in index["key"].items())
        line = f"- {index['name']}: {{ {keys} }}"
        for flag in ("unique", "sparse", "background"):
            if index.get(flag):
                line += f" ({flag})"
        lines.append(line)
    return "\n".join(lines) + "\n"


def format_explanation(explanation: dict[str, Any]) -> str:
    lines = ["Query Explanation:"]
    planner = explanation.get("queryPlanner")
    if planner:
        lines += [
            "",
            "Query Planner:",
            f"- Namespace: {planner.get('namespace')}",
            f"- Index Filter: {planner.get('indexFilterSet', 'None')}",
            f"- Winning Plan: {to_json(planner.get('winningPlan'), indent=2)}",
        ]
    stats = explanation.get("executionStats")
    if stats:
        lines += [
            "",
            "Execution Stats:",
            f"- Execution Success: {stats.get('executionSuccess')}",
            f"- Documents Examined: {stats.get('totalDocsExamined')}",
            f"- Keys Examined: {stats.get('totalKeysExamined')}",
            f"- Execution Time: {stats.get('executionTimeMillis')}ms",
        ]
    return "\n".join(lines) + "\n"


def format_validation_results(results: dict[str, Any]) -> str:
    lines = [
        "Collection Validation Results:",
        f"- Collection: {results.get('ns')}",
        f"- Valid: {format_value(results.get('valid'))}",
    ]
    if results.get("errors"):
        lines.append(f"- Errors: {', '.join(map(str, results['errors']))}")
    if results.get("warnings"):
        lines.append(f"- Warnings: {', '.join(map(str, results['warnings']))}")
    if "nrecords" in results:
        lines.append(f"- Records Validated: {results['nrecords']}")
    if "nInvalidDocuments" in results:
        lines.append(f"- Invalid Documents: {results['nInvalidDocuments']}")
    if results.get("advice"):
        lines.append(f"- Advice: {results['advice']}")
    return "\n".join(lines) + "\n"


def format_validation_rules(rules: dict[str, Any]) -> str:
    if not rules.get("validator"):
        return "This collection does not have any validation rules configured."
    return (
        "Collection Validation Rules:\n"
        f"- Validation Level: {rules.get('validationLevel') or 'strict'}\n"
        f"- Validation Action: {rules.get('validationAction') or 'error'}\n\n"
        f"Validator:\n{to_json(rules['validator'], indent=2)}"
    )


# ---------------------------------------------------------------------------
# Server and security
# ---------------------------------------------------------------------------


def format_server_status(status: dict[str, Any]) -> str:
    lines = [
        "MongoDB Server Status:",
        "## Server Information",
        f"- Host: {status.get('host', 'Unknown')}",
        f"- Version: {status.get('version', 'Unknown')}",
        f"- Process: {status.get('process', 'Unknown')}",
        f"- Uptime: {format_uptime(status.get('uptime'))}",
    ]
    connections = status.get("connections")
    if connections:
        lines += [
            "",
            "## Connections",
            f"- Current: {connections.get('current')}",
            f"- Available: {connections.get('available')}",
        ]
    mem = status.get("mem")
    if mem:
        lines += [
            "",
            "## Memory Usage",
            f"- Resident: {format_size(mem.get('resident', 0) * 1024 * 1024)}",
            f"- Virtual: {format_size(mem.get('virtual', 0) * 1024 * 1024)}",
        ]
    counters = status.get("opcounters")
    if counters:
        lines += ["", "## Operation Counters"]
        lines += [f"- {name.capitalize()}: {value}" for name, value in counters.items()]
    return "\n".join(lines) + "\n"


def format_replica_status(status: dict[str, Any]) -> str:
    if not status.get("ok") or "set" not in status:
        return f"Replica Set Status: Not available ({status.get('errmsg', 'standalone server')})"
    state = {1: "PRIMARY", 2: "SECONDARY"}.get(status.get("myState"), "OTHER")
    date = status.get("date")
    lines = [
        f"Replica Set: {status['set']}",
        f"Status: {state}",
        f"Current Time: {date.isoformat() if isinstance(date, datetime) else date}",
        "",
        "## Members:",
    ]
    for member in status.get("members", []):
        lines.append(f"- {member.get('name')} ({member.get('stateStr')})")
        lines.append(f"  Health: {member.get('health')}")
        lines.append(f"  Uptime: {format_uptime(member.get('uptime'))}")
        if member.get("syncingTo"):
            lines.append(f"  Syncing to: {member['syncingTo']}")
    return "\n".join(lines) + "\n"


def format_users(users: list[dict[str, Any]], database: str) -> str:
    if not users:
        return "No users found in the current database."
    lines = [f"Users in database '{database}' ({len(users)}):", ""]
    for user in users:
        lines.append(f"## {user.get('user')}")
        lines.append(f"- User ID: {user.get('_id', 'N/A')}")
        lines.append(f"- Database: {user.get('db')}")
        roles = user.get("roles") or []
        if roles:
            lines.append("- Roles:")
            lines.extend(f"  - {r.get('role')} on {r.get('db')}" for r in roles)
        else:
            lines.append("- Roles: None")
        lines.append("")
    return "\n".join(lines)


def format_stored_functions(functions: list[dict[str, Any]], database: str) -> str:
    if not functions:
        return "No stored JavaScript functions found in the current database."
    lines = [f"Stored Functions in database '{database}' ({len(functions)}):", ""]
    for function in functions:
        lines.append(f"## {function.get('_id')}")
        lines.append(f"{function.get('value')}")
        lines.append("")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Writes and export
# ---------------------------------------------------------------------------


def format_modify_result(operation: str, result: dict[str, Any]) -> str:
    if operation == "insert":
        return f"Document inserted successfully\n- ID: {format_value(result.get('insertedId'))}\n"
    if operation == "update":
        text = (
            "Document update operation complete\n"
            f"- Matched: {result.get('matchedCount', 0)}\n"
            f"- Modified: {result.get('modifiedCount', 0)}\n"
        )
        if result.get("upsertedCount"):
            text += f"- Upserted: {result['upsertedCount']}\n"
        return text
    if operation == "delete":
        return f"Document delete operation complete\n- Deleted: {result.get('deletedCount', 0)}\n"
    return f"Operation {operation} completed\n{to_json(result, indent=2)}"


def format_bulk_result(result: dict[str, Any]) -> str:
    lines = ["Bulk Operations Results:"]
    for key, label in (
        ("insertedCount", "Inserted"),
        ("matchedCount", "Matched"),
        ("modifiedCount", "Modified"),
        ("deletedCount", "Deleted"),
        ("upsertedCount", "Upserted"),
    ):
        if result.get(key):
            lines.append(f"- {label}: {result[key]}")
    inserted = result.get("insertedIds") or {}
    if inserted:
        lines.append("- Inserted IDs:")
        lines.extend(f"  - Index {i}: {format_value(v)}" for i, v in inserted.items())
    return "\n".join(lines) + "\n"


def _export_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _nested_value(document: Mapping[str, Any], path: str) -> Any:
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (Mapping, list, tuple)):
        return to_json(value)
    return str(_export_value(value))


def format_export(
    documents: list[dict[str, Any]], format: str, fields: Iterable[str] | None = None
) -> str:
    """Render documents as a JSON array or CSV with a header row."""
    if format == "json":
        return to_json(documents, indent=2)
    if format != "csv":
        raise ValueError(f"Unsupported export format: {format}")
    columns = list(fields or [])
    if not columns:
        if not documents:
            return "No documents found for export"
        columns = list(documents[0])
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    for document in documents:
        writer.writerow([_csv_value(_nested_value(document, c)) for c in columns])
    return buffer.getvalue()
