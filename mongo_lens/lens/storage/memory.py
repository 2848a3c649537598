"""In-memory document store backend.

Provides a fast, ephemeral store for testing and development, selected
with the ``memory://`` URI. All data is lost when the process exits.

Query support is deliberately small: filters are equality matches on
(optionally dotted) field paths, and aggregation understands ``$match``,
``$skip``, ``$limit`` and ``$count``. Anything richer raises
UnsupportedOperationError; MongoDB itself evaluates real queries.
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Any

from bson import ObjectId, json_util

from . import (
    CollectionNotFoundError,
    DatabaseHandle,
    DatabaseNotFoundError,
    DocumentStore,
    StoreError,
    UnsupportedOperationError,
)

logger = logging.getLogger("lens.storage.memory")

_ID_INDEX = {"v": 2, "key": {"_id": 1}, "name": "_id_"}


class _Collection:
    """Documents, indexes and creation options of one collection."""

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        self.documents: list[dict[str, Any]] = []
        self.indexes: list[dict[str, Any]] = [dict(_ID_INDEX)]
        self.options: dict[str, Any] = dict(options or {})


class _Database:
    def __init__(self) -> None:
        self.collections: dict[str, _Collection] = {}
        self.users: dict[str, dict[str, Any]] = {}


class MemoryDocumentStore(DocumentStore):
    """In-memory document storage for testing and development.

    Args:
        data: Optional seed data, ``{database: {collection: [documents]}}``.
    """

    def __init__(self, data: dict[str, dict[str, list[dict[str, Any]]]] | None = None) -> None:
        self._databases: dict[str, _Database] = {"admin": _Database()}
        self._started = time.monotonic()
        for db_name, collections in (data or {}).items():
            for coll_name, documents in collections.items():
                self.seed(db_name, coll_name, documents)

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------

    def seed(self, database: str, collection: str, documents: list[dict[str, Any]]) -> None:
        """Create ``collection`` (if needed) and append copies of ``documents``."""
        coll = self._state(database).collections.setdefault(collection, _Collection())
        for doc in documents:
            coll.documents.append(copy.deepcopy(doc))

    def add_user(self, database: str, username: str, roles: list[dict[str, str]]) -> None:
        """Register a user on ``database``."""
        self._state(database).users[username] = {
            "_id": f"{database}.{username}",
            "user": username,
            "db": database,
            "roles": roles,
        }

    def _state(self, name: str) -> _Database:
        return self._databases.setdefault(name, _Database())

    def _existing_state(self, name: str) -> _Database | None:
        return self._databases.get(name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """No connection to establish."""
        logger.info("Using in-memory document store")

    async def close(self) -> None:
        """No-op for in-memory storage."""

    # ------------------------------------------------------------------
    # Client-level operations
    # ------------------------------------------------------------------

    async def list_databases(self) -> list[dict[str, Any]]:
        result = []
        for name, state in self._databases.items():
            if name != "admin" and not state.collections:
                continue
            size = sum(
                _document_size(doc)
                for coll in state.collections.values()
                for doc in coll.documents
            )
            result.append({"name": name, "sizeOnDisk": size, "empty": size == 0})
        return result

    def database(self, name: str) -> MemoryDatabase:
        return MemoryDatabase(name, self)

    async def drop_database(self, name: str) -> None:
        if name not in self._databases:
            raise DatabaseNotFoundError(name)
        del self._databases[name]
        if name == "admin":
            self._databases["admin"] = _Database()

    async def server_status(self) -> dict[str, Any]:
        return {
            "host": "memory",
            "version": "in-memory",
            "process": "mongo-lens",
            "uptime": time.monotonic() - self._started,
            "connections": {"current": 1, "available": 0},
            "mem": {"resident": 0, "virtual": 0},
        }

    async def replica_status(self) -> dict[str, Any]:
        return {"ok": 0, "errmsg": "not running with --replSet"}


class MemoryDatabase(DatabaseHandle):
    """Handle on one database of a MemoryDocumentStore."""

    def __init__(self, name: str, store: MemoryDocumentStore) -> None:
        super().__init__(name)
        self._store = store

    def _collection(self, name: str, create: bool = False) -> _Collection | None:
        if create:
            return self._store._state(self.name).collections.setdefault(name, _Collection())
        state = self._store._existing_state(self.name)
        return state.collections.get(name) if state else None

    def _documents(self, name: str) -> list[dict[str, Any]]:
        coll = self._collection(name)
        return coll.documents if coll else []

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def list_collections(self) -> list[dict[str, Any]]:
        state = self._store._existing_state(self.name)
        if state is None:
            return []
        return [
            {"name": name, "type": "collection", "options": dict(coll.options)}
            for name, coll in state.collections.items()
        ]

    async def create_collection(self, name: str, options: dict[str, Any]) -> None:
        state = self._store._state(self.name)
        if name in state.collections:
            raise StoreError(f"Collection {self.name}.{name} already exists")
        state.collections[name] = _Collection(options)

    async def drop_collection(self, name: str) -> None:
        state = self._store._existing_state(self.name)
        if state is None or name not in state.collections:
            raise CollectionNotFoundError(name, self.name)
        del state.collections[name]

    async def rename_collection(self, old: str, new: str, drop_target: bool = False) -> None:
        state = self._store._existing_state(self.name)
        if state is None or old not in state.collections:
            raise CollectionNotFoundError(old, self.name)
        if new in state.collections and not drop_target:
            raise StoreError(f"Target collection '{new}' already exists")
        state.collections[new] = state.collections.pop(old)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def find(
        self,
        collection: str,
        filter: dict[str, Any] | None = None,
        projection: dict[str, Any] | None = None,
        limit: int = 0,
        skip: int = 0,
        sort: dict[str, int] | None = None,
    ) -> list[dict[str, Any]]:
        docs = [d for d in self._documents(collection) if _matches(d, filter or {})]
        for key, direction in reversed(list((sort or {}).items())):
            docs.sort(key=lambda d, k=key: _sort_key(_get_path(d, k)), reverse=direction < 0)
        docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return [_project(copy.deepcopy(d), projection) for d in docs]

    async def count(self, collection: str, filter: dict[str, Any] | None = None) -> int:
        return sum(1 for d in self._documents(collection) if _matches(d, filter or {}))

    async def aggregate(self, collection: str, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        docs = [copy.deepcopy(d) for d in self._documents(collection)]
        for stage in pipeline:
            if not isinstance(stage, dict) or len(stage) != 1:
                raise StoreError("Each pipeline stage must be an object with exactly one field")
            operator, argument = next(iter(stage.items()))
            if operator == "$match":
                docs = [d for d in docs if _matches(d, argument)]
            elif operator == "$skip":
                docs = docs[int(argument):]
            elif operator == "$limit":
                docs = docs[: int(argument)]
            elif operator == "$count":
                docs = [{argument: len(docs)}] if docs else []
            else:
                raise UnsupportedOperationError(
                    f"Aggregation stage {operator} is not supported by the in-memory store"
                )
        return docs

    async def distinct(
        self, collection: str, field: str, filter: dict[str, Any] | None = None
    ) -> list[Any]:
        values: list[Any] = []
        for doc in self._documents(collection):
            if not _matches(doc, filter or {}):
                continue
            value = _get_path(doc, field)
            for item in value if isinstance(value, list) else [value]:
                if item is not _MISSING and item not in values:
                    values.append(item)
        return values

    async def explain(
        self, collection: str, filter: dict[str, Any], verbosity: str
    ) -> dict[str, Any]:
        documents = self._documents(collection)
        explanation: dict[str, Any] = {
            "queryPlanner": {
                "namespace": f"{self.name}.{collection}",
                "indexFilterSet": False,
                "parsedQuery": filter,
                "winningPlan": {"stage": "COLLSCAN", "direction": "forward"},
                "rejectedPlans": [],
            },
        }
        if verbosity != "queryPlanner":
            returned = sum(1 for d in documents if _matches(d, filter))
            explanation["executionStats"] = {
                "nReturned": returned,
                "executionTimeMillis": 0,
                "totalKeysExamined": 0,
                "totalDocsExamined": len(documents),
            }
        return explanation

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_one(self, collection: str, document: dict[str, Any]) -> Any:
        doc = copy.deepcopy(document)
        doc.setdefault("_id", ObjectId())
        self._collection(collection, create=True).documents.append(doc)
        return doc["_id"]

    async def update_many(
        self,
        collection: str,
        filter: dict[str, Any],
        update: dict[str, Any],
        upsert: bool = False,
    ) -> dict[str, int]:
        return self._update(collection, filter, update, upsert, multi=True)

    def _update(
        self,
        collection: str,
        filter: dict[str, Any],
        update: dict[str, Any],
        upsert: bool,
        multi: bool,
    ) -> dict[str, int]:
        if not update or not all(key.startswith("$") for key in update):
            raise StoreError("Update document requires atomic operators")
        for operator in update:
            if operator not in _UPDATE_OPERATORS:
                raise UnsupportedOperationError(
                    f"Update operator {operator} is not supported by the in-memory store"
                )
        matched = modified = upserted = 0
        for doc in self._documents(collection):
            if not _matches(doc, filter):
                continue
            matched += 1
            if _apply_update(doc, update):
                modified += 1
            if not multi:
                break
        if matched == 0 and upsert:
            doc = {k: v for k, v in filter.items() if not k.startswith("$")}
            _apply_update(doc, update)
            doc.setdefault("_id", ObjectId())
            self._collection(collection, create=True).documents.append(doc)
            upserted = 1
        return {"matchedCount": matched, "modifiedCount": modified, "upsertedCount": upserted}

    async def delete_many(self, collection: str, filter: dict[str, Any]) -> int:
        return self._delete(collection, filter, multi=True)

    def _delete(self, collection: str, filter: dict[str, Any], multi: bool) -> int:
        coll = self._collection(collection)
        if coll is None:
            return 0
        kept: list[dict[str, Any]] = []
        deleted = 0
        for doc in coll.documents:
            if _matches(doc, filter) and (multi or deleted == 0):
                deleted += 1
            else:
                kept.append(doc)
        coll.documents = kept
        return deleted

    async def bulk_write(
        self, collection: str, operations: list[dict[str, Any]], ordered: bool = True
    ) -> dict[str, Any]:
        result: dict[str, Any] = {
            "insertedCount": 0,
            "matchedCount": 0,
            "modifiedCount": 0,
            "deletedCount": 0,
            "upsertedCount": 0,
            "insertedIds": {},
        }
        for position, operation in enumerate(operations):
            if not isinstance(operation, dict) or len(operation) != 1:
                raise StoreError(f"Invalid bulk operation at index {position}")
            kind, spec = next(iter(operation.items()))
            if kind == "insertOne":
                inserted = await self.insert_one(collection, spec["document"])
                result["insertedCount"] += 1
                result["insertedIds"][position] = inserted
            elif kind in ("updateOne", "updateMany"):
                counts = self._update(
                    collection,
                    spec.get("filter", {}),
                    spec["update"],
                    spec.get("upsert", False),
                    multi=kind == "updateMany",
                )
                result["matchedCount"] += counts["matchedCount"]
                result["modifiedCount"] += counts["modifiedCount"]
                result["upsertedCount"] += counts["upsertedCount"]
            elif kind in ("deleteOne", "deleteMany"):
                result["deletedCount"] += self._delete(
                    collection, spec.get("filter", {}), multi=kind == "deleteMany"
                )
            elif kind == "replaceOne":
                for doc in self._documents(collection):
                    if _matches(doc, spec.get("filter", {})):
                        replacement = copy.deepcopy(spec["replacement"])
                        replacement["_id"] = doc["_id"]
                        doc.clear()
                        doc.update(replacement)
                        result["matchedCount"] += 1
                        result["modifiedCount"] += 1
                        break
            else:
                raise StoreError(f"Unknown bulk operation '{kind}' at index {position}")
        return result

    # ------------------------------------------------------------------
    # Indexes, statistics and administration
    # ------------------------------------------------------------------

    async def indexes(self, collection: str) -> list[dict[str, Any]]:
        coll = self._collection(collection)
        return copy.deepcopy(coll.indexes) if coll else []

    async def create_index(
        self, collection: str, keys: dict[str, Any], options: dict[str, Any]
    ) -> str:
        coll = self._collection(collection, create=True)
        name = options.get("name") or "_".join(f"{field}_{direction}" for field, direction in keys.items())
        if not any(idx["name"] == name for idx in coll.indexes):
            coll.indexes.append({"v": 2, "key": dict(keys), "name": name, **options})
        return name

    async def drop_index(self, collection: str, name: str) -> None:
        coll = self._collection(collection)
        if coll is None:
            raise CollectionNotFoundError(collection, self.name)
        if name == "_id_":
            raise StoreError("cannot drop _id index")
        if not any(idx["name"] == name for idx in coll.indexes):
            raise StoreError(f"index not found with name [{name}]")
        coll.indexes = [idx for idx in coll.indexes if idx["name"] != name]

    async def database_stats(self) -> dict[str, Any]:
        state = self._store._existing_state(self.name)
        collections = state.collections if state else {}
        objects = sum(len(c.documents) for c in collections.values())
        size = sum(_document_size(d) for c in collections.values() for d in c.documents)
        return {
            "db": self.name,
            "collections": len(collections),
            "objects": objects,
            "avgObjSize": size / objects if objects else 0,
            "dataSize": size,
            "storageSize": size,
            "indexes": sum(len(c.indexes) for c in collections.values()),
        }

    async def collection_stats(self, collection: str) -> dict[str, Any]:
        coll = self._collection(collection)
        if coll is None:
            raise CollectionNotFoundError(collection, self.name)
        size = sum(_document_size(d) for d in coll.documents)
        count = len(coll.documents)
        return {
            "ns": f"{self.name}.{collection}",
            "count": count,
            "size": size,
            "avgObjSize": size // count if count else 0,
            "storageSize": size,
            "totalIndexSize": 0,
            "nindexes": len(coll.indexes),
        }

    async def validate_collection(self, collection: str, full: bool = False) -> dict[str, Any]:
        coll = self._collection(collection)
        if coll is None:
            raise CollectionNotFoundError(collection, self.name)
        return {
            "ns": f"{self.name}.{collection}",
            "valid": True,
            "nrecords": len(coll.documents),
            "nIndexes": len(coll.indexes),
            "errors": [],
            "warnings": [],
        }

    async def validation_rules(self, collection: str) -> dict[str, Any]:
        coll = self._collection(collection)
        if coll is None:
            raise CollectionNotFoundError(collection, self.name)
        return {
            "validator": coll.options.get("validator"),
            "validationLevel": coll.options.get("validationLevel"),
            "validationAction": coll.options.get("validationAction"),
        }

    async def users(self) -> list[dict[str, Any]]:
        state = self._store._existing_state(self.name)
        return copy.deepcopy(list(state.users.values())) if state else []

    async def drop_user(self, username: str) -> None:
        state = self._store._existing_state(self.name)
        if state is None or username not in state.users:
            raise StoreError(f"User '{username}@{self.name}' not found")
        del state.users[username]

    async def stored_functions(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self._documents("system.js"))


# ---------------------------------------------------------------------------
# Matching helpers
# ---------------------------------------------------------------------------

_MISSING = object()


def _get_path(doc: dict[str, Any], path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _matches(doc: dict[str, Any], filter: dict[str, Any]) -> bool:
    for key, expected in filter.items():
        if key.startswith("$") or (
            isinstance(expected, dict) and any(k.startswith("$") for k in expected)
        ):
            raise UnsupportedOperationError(
                f"Query operator in '{key}' is not supported by the in-memory store"
            )
        actual = _get_path(doc, key)
        if actual is _MISSING:
            if expected is not None:
                return False
        elif isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def _project(doc: dict[str, Any], projection: dict[str, Any] | None) -> dict[str, Any]:
    if not projection:
        return doc
    include_id = bool(projection.get("_id", 1))
    fields = {k: v for k, v in projection.items() if k != "_id"}
    if fields and all(fields.values()):
        result = {k: doc[k] for k in fields if k in doc}
        if include_id and "_id" in doc:
            result = {"_id": doc["_id"], **result}
        return result
    result = {k: v for k, v in doc.items() if k not in fields}
    if not include_id:
        result.pop("_id", None)
    return result


_UPDATE_OPERATORS = ("$set", "$unset", "$inc")


def _apply_update(doc: dict[str, Any], update: dict[str, Any]) -> bool:
    """Apply already validated operators; True if ``doc`` changed."""
    before = copy.deepcopy(doc)
    for operator, fields in update.items():
        for field, value in fields.items():
            if operator == "$set":
                doc[field] = value
            elif operator == "$unset":
                doc.pop(field, None)
            else:
                doc[field] = doc.get(field, 0) + value
    return doc != before


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is _MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (3, value)
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (4, str(value))


def _document_size(doc: dict[str, Any]) -> int:
    return len(json_util.dumps(doc))
