"""Select a store implementation from configuration."""

from __future__ import annotations

import logging
import os

from storage.base import InsuranceStore
from storage.db import DuckDBStore, get_database_path
from storage.memory import InMemoryStore

STORE_BACKEND_ENV = "STORE_BACKEND"
MEMORY_BACKEND = "memory"
DUCKDB_BACKEND = "duckdb"

logger = logging.getLogger(__name__)


def open_store(
    backend: str | None = None,
    *,
    path: str | os.PathLike[str] | None = None,
    default: str = MEMORY_BACKEND,
) -> InsuranceStore:
    """Open the backend named explicitly, by ``STORE_BACKEND``, or ``default``."""

    name = (backend or os.getenv(STORE_BACKEND_ENV) or default).strip().lower()
    if name == MEMORY_BACKEND:
        logger.info("Using in-memory store; data will not survive a restart.")
        return InMemoryStore()
    if name == DUCKDB_BACKEND:
        logger.info("Using DuckDB store at %s.", get_database_path(path))
        return DuckDBStore.open(path)
    raise ValueError(
        f"Unsupported store backend '{name}'. Expected '{MEMORY_BACKEND}' or '{DUCKDB_BACKEND}'."
    )


__all__ = ["DUCKDB_BACKEND", "MEMORY_BACKEND", "STORE_BACKEND_ENV", "open_store"]
