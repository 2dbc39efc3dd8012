"""Checkpoint persistence for workflow state."""

from __future__ import annotations

from typing import Optional

from ..config import AuraConfig, load_config
from .inmemory import InMemoryCheckpointStore
from .models import CheckpointTuple, PendingWrite
from .postgres import PostgresCheckpointStore
from .sqlite import SQLiteCheckpointStore
from .store import CheckpointStore, Write

_store_instance: CheckpointStore | None = None


def get_checkpoint_store(
    database_url: Optional[str] = None, config: Optional[AuraConfig] = None
) -> CheckpointStore:
    """Factory function to obtain a checkpoint store.

    The backend is selected from ``database_url``, which can be provided
    explicitly or through the loaded configuration (itself overridden by
    ``AURA_DATABASE_URL`` / ``DATABASE_URL``). Without a database an
    in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = database_url or config.database_url

    if not database_url:
        _store_instance = InMemoryCheckpointStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteCheckpointStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        _store_instance = PostgresCheckpointStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "CheckpointStore",
    "CheckpointTuple",
    "PendingWrite",
    "Write",
    "InMemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "PostgresCheckpointStore",
    "get_checkpoint_store",
]
