"""Document store abstraction layer for Lens.

Defines the DocumentStore and DatabaseHandle ABCs that every driver
backend implements, plus the domain errors they raise. Capability
handlers interact with the database only through these methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StoreError(Exception):
    """Base class for document store failures surfaced to callers."""


class DatabaseNotFoundError(StoreError):
    """The named database does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Database '{name}' does not exist")
        self.name = name


class CollectionNotFoundError(StoreError):
    """The named collection does not exist in the active database."""

    def __init__(self, name: str, database: str) -> None:
        super().__init__(f"Collection '{name}' does not exist in database '{database}'")
        self.name = name
        self.database = database


class EmptyCollectionError(StoreError):
    """A sample was requested from a collection holding no documents."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Collection '{name}' is empty")
        self.name = name


class UnsupportedOperationError(StoreError):
    """The backend cannot evaluate the requested operation."""


class DatabaseHandle(ABC):
    """Operations scoped to one database.

    A handle is owned by the session that opened it and is replaced, never
    mutated, when the session switches database.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_collections(self) -> list[dict[str, Any]]:
        """Return collection descriptors (``name``, ``type``, ``options``)."""

    async def collection_exists(self, name: str) -> bool:
        """Check whether a collection exists."""
        return any(c["name"] == name for c in await self.list_collections())

    async def require_collection(self, name: str) -> None:
        """Raise CollectionNotFoundError unless the collection exists."""
        if not await self.collection_exists(name):
            raise CollectionNotFoundError(name, self.name)

    @abstractmethod
    async def create_collection(self, name: str, options: dict[str, Any]) -> None:
        """Create a collection."""

    @abstractmethod
    async def drop_collection(self, name: str) -> None:
        """Drop a collection and its indexes."""

    @abstractmethod
    async def rename_collection(self, old: str, new: str, drop_target: bool = False) -> None:
        """Rename a collection, optionally replacing an existing target."""

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: dict[str, Any] | None = None,
        projection: dict[str, Any] | None = None,
        limit: int = 0,
        skip: int = 0,
        sort: dict[str, int] | None = None,
    ) -> list[dict[str, Any]]:
        """Return matching documents in store order."""

    @abstractmethod
    async def count(self, collection: str, filter: dict[str, Any] | None = None) -> int:
        """Count matching documents."""

    @abstractmethod
    async def aggregate(self, collection: str, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Run an aggregation pipeline."""

    @abstractmethod
    async def distinct(
        self, collection: str, field: str, filter: dict[str, Any] | None = None
    ) -> list[Any]:
        """Return the distinct values of ``field``."""

    @abstractmethod
    async def explain(
        self, collection: str, filter: dict[str, Any], verbosity: str
    ) -> dict[str, Any]:
        """Explain the plan for a find with ``filter``."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_one(self, collection: str, document: dict[str, Any]) -> Any:
        """Insert a document and return its ``_id``."""

    @abstractmethod
    async def update_many(
        self,
        collection: str,
        filter: dict[str, Any],
        update: dict[str, Any],
        upsert: bool = False,
    ) -> dict[str, int]:
        """Apply ``update`` to matching documents; return matched/modified counts."""

    @abstractmethod
    async def delete_many(self, collection: str, filter: dict[str, Any]) -> int:
        """Delete matching documents; return the deleted count."""

    @abstractmethod
    async def bulk_write(
        self, collection: str, operations: list[dict[str, Any]], ordered: bool = True
    ) -> dict[str, Any]:
        """Run mixed write operations written in shell syntax (``{"insertOne": ...}``)."""

    # ------------------------------------------------------------------
    # Indexes, statistics and administration
    # ------------------------------------------------------------------

    @abstractmethod
    async def indexes(self, collection: str) -> list[dict[str, Any]]:
        """Return index descriptors (``name``, ``key``, flags)."""

    @abstractmethod
    async def create_index(
        self, collection: str, keys: dict[str, Any], options: dict[str, Any]
    ) -> str:
        """Create an index and return its name."""

    @abstractmethod
    async def drop_index(self, collection: str, name: str) -> None:
        """Drop an index by name."""

    @abstractmethod
    async def database_stats(self) -> dict[str, Any]:
        """Return dbStats output."""

    @abstractmethod
    async def collection_stats(self, collection: str) -> dict[str, Any]:
        """Return collStats output."""

    @abstractmethod
    async def validate_collection(self, collection: str, full: bool = False) -> dict[str, Any]:
        """Run the validate command."""

    @abstractmethod
    async def validation_rules(self, collection: str) -> dict[str, Any]:
        """Return the collection's validator, level and action."""

    @abstractmethod
    async def users(self) -> list[dict[str, Any]]:
        """Return users defined on this database."""

    @abstractmethod
    async def drop_user(self, username: str) -> None:
        """Remove a user from this database."""

    @abstractmethod
    async def stored_functions(self) -> list[dict[str, Any]]:
        """Return documents from ``system.js``."""


class DocumentStore(ABC):
    """Client-level operations of a document store driver."""

    @abstractmethod
    async def initialize(self) -> None:
        """Connect and verify the server is reachable."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def list_databases(self) -> list[dict[str, Any]]:
        """Return database descriptors (``name``, ``sizeOnDisk``, ``empty``)."""

    @abstractmethod
    def database(self, name: str) -> DatabaseHandle:
        """Open a handle on ``name`` without checking that it exists."""

    @abstractmethod
    async def drop_database(self, name: str) -> None:
        """Drop a database."""

    @abstractmethod
    async def server_status(self) -> dict[str, Any]:
        """Return serverStatus output."""

    @abstractmethod
    async def replica_status(self) -> dict[str, Any]:
        """Return replica set status, or ``{"ok": 0, "errmsg": ...}`` when standalone."""

    async def database_exists(self, name: str) -> bool:
        """Check whether a database exists."""
        return any(db["name"] == name for db in await self.list_databases())


__all__ = [
    "CollectionNotFoundError",
    "DatabaseHandle",
    "DatabaseNotFoundError",
    "DocumentStore",
    "EmptyCollectionError",
    "StoreError",
    "UnsupportedOperationError",
]
