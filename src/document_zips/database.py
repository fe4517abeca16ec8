# src/document_zips/database.py

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg_pool import ConnectionPool

from .config import AppConfig


def open_pool(config: AppConfig) -> ConnectionPool:
    """Open a small pool for one job invocation."""
    return ConnectionPool(
        config.database_conninfo,
        min_size=1,
        max_size=4,
        open=True,
        kwargs={"autocommit": False},
    )


class Database:
    """Hands out pooled connections. Caller manages commit/rollback."""

    def __init__(self, pool: ConnectionPool):
        self._pool = pool

    @contextmanager
    def connection(self) -> Iterator[psycopg.Connection[Any]]:
        with self._pool.connection() as conn:
            yield conn

    def close(self) -> None:
        self._pool.close()
