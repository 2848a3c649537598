"""Schema inference from a sample of documents.

Summarizes each top-level field of a collection by the set of value types
observed, how many sampled documents carry it, and one example value.
Nested documents are classified as ``object`` and not flattened.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from bson import Decimal128, Int64, ObjectId, Timestamp

from .storage import DatabaseHandle, EmptyCollectionError

logger = logging.getLogger("lens.schema")

DEFAULT_SAMPLE_SIZE = 100


@dataclass(slots=True)
class FieldSummary:
    """Observed types, occurrence count and first example of one field."""

    types: list[str] = field(default_factory=list)
    count: int = 0
    example: Any = None

    def observe(self, value: Any) -> None:
        type_name = classify_value(value)
        if type_name not in self.types:
            self.types.append(type_name)
        if self.count == 0:
            self.example = value
        self.count += 1


@dataclass(slots=True)
class SchemaSummary:
    """Per-field statistics over ``sample_size`` sampled documents."""

    collection_name: str
    sample_size: int
    fields: dict[str, FieldSummary] = field(default_factory=dict)

    def coverage(self, name: str) -> int:
        """Percentage of sampled documents containing ``name``, rounded half up."""
        summary = self.fields.get(name)
        if summary is None or self.sample_size == 0:
            return 0
        return int(summary.count / self.sample_size * 100 + 0.5)


def classify_value(value: Any) -> str:
    """Map a decoded BSON value to its schema type name."""
    if value is None:
        return "null"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, ObjectId):
        return "ObjectId"
    if isinstance(value, datetime):
        return "Date"
    if isinstance(value, Timestamp):
        return "Timestamp"
    # bool is an int subclass
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, Int64, Decimal128, Decimal)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def summarize(collection: str, documents: list[Mapping[str, Any]]) -> SchemaSummary:
    """Build a summary from already fetched documents.

    Raises:
        EmptyCollectionError: If ``documents`` is empty.
    """
    if not documents:
        raise EmptyCollectionError(collection)
    schema = SchemaSummary(collection_name=collection, sample_size=len(documents))
    for doc in documents:
        for name, value in doc.items():
            schema.fields.setdefault(name, FieldSummary()).observe(value)
    return schema


async def infer_schema(
    database: DatabaseHandle,
    collection: str,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> SchemaSummary:
    """Sample up to ``sample_size`` documents and summarize their fields.

    Raises:
        CollectionNotFoundError: If the collection does not exist.
        EmptyCollectionError: If the sample is empty.
    """
    await database.require_collection(collection)
    documents = await database.find(collection, {}, limit=sample_size)
    logger.debug(
        "Sampled %d documents from %s.%s", len(documents), database.name, collection
    )
    schema = summarize(collection, documents)
    logger.info(
        "Inferred %d fields for %s.%s", len(schema.fields), database.name, collection
    )
    return schema


def field_names(schema: SchemaSummary) -> list[str]:
    """Field names in first-seen order."""
    return list(schema.fields)


def example_filter(schema: SchemaSummary) -> str:
    """A plausible filter on the first string, number or boolean field other than ``_id``."""
    for name, summary in schema.fields.items():
        if name == "_id":
            continue
        if "string" in summary.types:
            return json.dumps({name: {"$regex": "example"}})
        if "number" in summary.types:
            return json.dumps({name: {"$gt": 0}})
        if "boolean" in summary.types:
            return json.dumps({name: True})
    return "{}"
