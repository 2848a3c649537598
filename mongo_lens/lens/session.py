"""Session state shared by every capability handler.

Holds the document store, the active database and a short-lived lookup
cache. Handlers receive the session explicitly through their context.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .storage import DatabaseHandle, DatabaseNotFoundError, DocumentStore

logger = logging.getLogger("lens.session")

DEFAULT_CACHE_TTL = 30


class SessionContext:
    """Active database selection plus cached lookups.

    A database switch replaces the (name, handle) pair in one assignment,
    so handlers never observe a name from one database with the handle of
    another. The server is meant for a single concurrent caller; concurrent
    switches race and the last one wins.

    Args:
        store: Document store driver.
        database_name: Initially active database.
        cache_ttl: Lifetime of cached lookups in seconds; 0 disables caching.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        store: DocumentStore,
        database_name: str,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self._active: tuple[str, DatabaseHandle] = (
            database_name,
            store.database(database_name),
        )
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[tuple[str, str], tuple[float, Any]] = {}

    @property
    def database_name(self) -> str:
        return self._active[0]

    @property
    def database(self) -> DatabaseHandle:
        return self._active[1]

    async def use_database(self, name: str) -> DatabaseHandle:
        """Make ``name`` the active database.

        Raises:
            DatabaseNotFoundError: If the store has no such database.
        """
        if not await self.store.database_exists(name):
            raise DatabaseNotFoundError(name)
        handle = self.store.database(name)
        previous = self._active[0]
        self._active = (name, handle)
        self.invalidate()
        logger.info("Switched database from %s to %s", previous, name)
        return handle

    def fall_back(self, name: str = "admin") -> None:
        """Make ``name`` active without checking it exists, e.g. after a drop."""
        previous = self._active[0]
        self._active = (name, self.store.database(name))
        self.invalidate()
        logger.info("Fell back from %s to %s", previous, name)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def cached(
        self,
        operation: str,
        params: dict[str, Any] | None,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached result of ``operation`` or load and store it."""
        key = (operation, json.dumps(params or {}, sort_keys=True, default=str))
        now = self._clock()
        entry = self._cache.get(key)
        if entry is not None and now - entry[0] < self._cache_ttl:
            return entry[1]
        value = await loader()
        if self._cache_ttl > 0:
            self._cache[key] = (now, value)
        return value

    def invalidate(self) -> None:
        """Forget every cached lookup."""
        if self._cache:
            logger.debug("Invalidating %d cached lookups", len(self._cache))
        self._cache.clear()

    # ------------------------------------------------------------------
    # Common lookups
    # ------------------------------------------------------------------

    async def list_collections(self) -> list[dict[str, Any]]:
        database = self.database
        return await self.cached(
            "list_collections",
            {"database": database.name},
            database.list_collections,
        )

    async def collection_names(self) -> list[str]:
        return [c["name"] for c in await self.list_collections()]

    async def close(self) -> None:
        self.invalidate()
        await self.store.close()
