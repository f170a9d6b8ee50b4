"""Factory for creating document store instances."""

import logging
from pathlib import Path
from typing import Optional

from nestfin.data.memory_store import MemoryDocumentStore
from nestfin.data.repository import DocumentStore
from nestfin.data.sqlite_store import SQLiteDocumentStore
from nestfin.data.validation import validate_database

logger = logging.getLogger(__name__)


async def create_document_store(
    backend: str,
    file_path: Optional[Path] = None,
    max_retries: int = 10,
) -> DocumentStore:
    """Factory function to create the configured document store.

    Args:
        backend: Backend type ("memory" or "sqlite")
        file_path: Path to database file (required for sqlite)
        max_retries: Compare-and-swap retry budget for the sqlite backend

    Returns:
        A ready-to-use DocumentStore

    Raises:
        ValueError: If backend is unknown or required params missing
        DatabaseValidationError: If database file is not compatible

    Example:
        >>> store = await create_document_store("sqlite", Path("nest.db"))
        >>> unsubscribe = store.subscribe(user_id, Collection.GOALS, on_goals)
    """
    if backend == "memory":
        logger.info("Using in-memory document store")
        return MemoryDocumentStore()

    if backend == "sqlite":
        if not file_path:
            raise ValueError("file_path required for sqlite backend")

        # Validate database before connecting
        validate_database(file_path)

        store = SQLiteDocumentStore(file_path, max_retries=max_retries)
        await store.connect()
        logger.info(f"Using SQLite document store at {file_path}")
        return store

    raise ValueError(f"Unknown backend: {backend}")
