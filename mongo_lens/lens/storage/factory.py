"""Factory for document store backends.

Note: ``create_document_store()`` does **not** call ``initialize()``. The
entry points are responsible for calling it at startup, and tests build a
MemoryDocumentStore directly.
"""

import logging

from . import DocumentStore

logger = logging.getLogger(__name__)

MEMORY_SCHEME = "memory://"


def create_document_store(uri: str, connect_timeout_ms: int = 5000) -> DocumentStore:
    """Create a DocumentStore for ``uri``.

    Supported URIs:
        - ``memory://``: in-memory store for testing and local experiments.
        - ``mongodb://`` / ``mongodb+srv://``: live MongoDB via pymongo.
    """
    if uri.startswith(MEMORY_SCHEME):
        from .memory import MemoryDocumentStore

        return MemoryDocumentStore()
    if uri.startswith(("mongodb://", "mongodb+srv://")):
        from .mongo import MongoDocumentStore

        return MongoDocumentStore(uri, connect_timeout_ms=connect_timeout_ms)
    msg = f"Unsupported document store URI: {uri.split('://', 1)[0]}://"
    raise ValueError(msg)
