"""MongoDB backend built on pymongo's asyncio client."""

from __future__ import annotations

import logging
from typing import Any

from pymongo import (
    AsyncMongoClient,
    DeleteMany,
    DeleteOne,
    InsertOne,
    ReplaceOne,
    UpdateMany,
    UpdateOne,
)
from pymongo.errors import OperationFailure

from . import DatabaseHandle, DatabaseNotFoundError, DocumentStore, StoreError

logger = logging.getLogger("lens.storage.mongo")

_BULK_OPERATIONS = {
    "insertOne": lambda spec: InsertOne(spec["document"]),
    "updateOne": lambda spec: UpdateOne(
        spec.get("filter", {}), spec["update"], upsert=spec.get("upsert", False)
    ),
    "updateMany": lambda spec: UpdateMany(
        spec.get("filter", {}), spec["update"], upsert=spec.get("upsert", False)
    ),
    "deleteOne": lambda spec: DeleteOne(spec.get("filter", {})),
    "deleteMany": lambda spec: DeleteMany(spec.get("filter", {})),
    "replaceOne": lambda spec: ReplaceOne(
        spec.get("filter", {}), spec["replacement"], upsert=spec.get("upsert", False)
    ),
}


class MongoDocumentStore(DocumentStore):
    """Document store backed by a live MongoDB deployment."""

    def __init__(self, uri: str, connect_timeout_ms: int = 5000) -> None:
        self._uri = uri
        self._client: AsyncMongoClient = AsyncMongoClient(
            uri, serverSelectionTimeoutMS=connect_timeout_ms
        )

    async def initialize(self) -> None:
        """Verify the deployment is reachable."""
        logger.info("Connecting to MongoDB")
        await self._client.admin.command("ping")
        logger.info("Connected to MongoDB")

    async def close(self) -> None:
        await self._client.close()

    async def list_databases(self) -> list[dict[str, Any]]:
        result = await self._client.admin.command("listDatabases")
        return result["databases"]

    def database(self, name: str) -> MongoDatabase:
        return MongoDatabase(name, self._client)

    async def drop_database(self, name: str) -> None:
        if not await self.database_exists(name):
            raise DatabaseNotFoundError(name)
        await self._client.drop_database(name)

    async def server_status(self) -> dict[str, Any]:
        return await self._client.admin.command("serverStatus")

    async def replica_status(self) -> dict[str, Any]:
        try:
            return await self._client.admin.command("replSetGetStatus")
        except OperationFailure as e:
            # Standalone servers reject the command; report it rather than fail.
            return {"ok": 0, "errmsg": str(e)}


class MongoDatabase(DatabaseHandle):
    """Handle on one MongoDB database."""

    def __init__(self, name: str, client: AsyncMongoClient) -> None:
        super().__init__(name)
        self._db = client[name]

    async def list_collections(self) -> list[dict[str, Any]]:
        cursor = await self._db.list_collections()
        return await cursor.to_list()

    async def create_collection(self, name: str, options: dict[str, Any]) -> None:
        await self._db.create_collection(name, **options)

    async def drop_collection(self, name: str) -> None:
        await self.require_collection(name)
        await self._db.drop_collection(name)

    async def rename_collection(self, old: str, new: str, drop_target: bool = False) -> None:
        await self.require_collection(old)
        await self._db[old].rename(new, dropTarget=drop_target)

    async def find(
        self,
        collection: str,
        filter: dict[str, Any] | None = None,
        projection: dict[str, Any] | None = None,
        limit: int = 0,
        skip: int = 0,
        sort: dict[str, int] | None = None,
    ) -> list[dict[str, Any]]:
        cursor = self._db[collection].find(filter or {}, projection)
        if sort:
            cursor = cursor.sort(list(sort.items()))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list()

    async def count(self, collection: str, filter: dict[str, Any] | None = None) -> int:
        return await self._db[collection].count_documents(filter or {})

    async def aggregate(self, collection: str, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        cursor = await self._db[collection].aggregate(pipeline)
        return await cursor.to_list()

    async def distinct(
        self, collection: str, field: str, filter: dict[str, Any] | None = None
    ) -> list[Any]:
        return await self._db[collection].distinct(field, filter or {})

    async def explain(
        self, collection: str, filter: dict[str, Any], verbosity: str
    ) -> dict[str, Any]:
        return await self._db.command(
            "explain", {"find": collection, "filter": filter}, verbosity=verbosity
        )

    async def insert_one(self, collection: str, document: dict[str, Any]) -> Any:
        result = await self._db[collection].insert_one(document)
        return result.inserted_id

    async def update_many(
        self,
        collection: str,
        filter: dict[str, Any],
        update: dict[str, Any],
        upsert: bool = False,
    ) -> dict[str, int]:
        result = await self._db[collection].update_many(filter, update, upsert=upsert)
        return {
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
            "upsertedCount": 1 if result.upserted_id is not None else 0,
        }

    async def delete_many(self, collection: str, filter: dict[str, Any]) -> int:
        result = await self._db[collection].delete_many(filter)
        return result.deleted_count

    async def bulk_write(
        self, collection: str, operations: list[dict[str, Any]], ordered: bool = True
    ) -> dict[str, Any]:
        requests = []
        for position, operation in enumerate(operations):
            if not isinstance(operation, dict) or len(operation) != 1:
                raise StoreError(f"Invalid bulk operation at index {position}")
            kind, spec = next(iter(operation.items()))
            builder = _BULK_OPERATIONS.get(kind)
            if builder is None:
                raise StoreError(f"Unknown bulk operation '{kind}' at index {position}")
            requests.append(builder(spec))
        result = await self._db[collection].bulk_write(requests, ordered=ordered)
        return {
            "insertedCount": result.inserted_count,
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
            "deletedCount": result.deleted_count,
            "upsertedCount": result.upserted_count,
            "insertedIds": {},
        }

    async def indexes(self, collection: str) -> list[dict[str, Any]]:
        cursor = await self._db[collection].list_indexes()
        return [dict(index) for index in await cursor.to_list()]

    async def create_index(
        self, collection: str, keys: dict[str, Any], options: dict[str, Any]
    ) -> str:
        return await self._db[collection].create_index(list(keys.items()), **options)

    async def drop_index(self, collection: str, name: str) -> None:
        await self.require_collection(collection)
        await self._db[collection].drop_index(name)

    async def database_stats(self) -> dict[str, Any]:
        return await self._db.command("dbStats")

    async def collection_stats(self, collection: str) -> dict[str, Any]:
        return await self._db.command("collStats", collection)

    async def validate_collection(self, collection: str, full: bool = False) -> dict[str, Any]:
        return await self._db.command("validate", collection, full=full)

    async def validation_rules(self, collection: str) -> dict[str, Any]:
        for info in await self.list_collections():
            if info["name"] == collection:
                options = info.get("options", {})
                return {
                    "validator": options.get("validator"),
                    "validationLevel": options.get("validationLevel"),
                    "validationAction": options.get("validationAction"),
                }
        return {"validator": None, "validationLevel": None, "validationAction": None}

    async def users(self) -> list[dict[str, Any]]:
        result = await self._db.command("usersInfo")
        return result.get("users", [])

    async def drop_user(self, username: str) -> None:
        await self._db.command("dropUser", username)

    async def stored_functions(self) -> list[dict[str, Any]]:
        return await self._db["system.js"].find({}).to_list()
