"""
Database
========
Thin SQLite access layer shared by the durable stores.

Conventions:
    - One connection per operation; nothing is shared between threads.
    - WAL journaling so readers never block the single writer.
    - Writes go through transaction(), which takes the write lock up front
      (BEGIN IMMEDIATE). A read-then-write inside it cannot interleave with
      another writer, which is what keeps capacity checks and
      find-or-create sequences atomic.
"""
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)

BUSY_TIMEOUT = 30.0


class Database:
    def __init__(self, path: str, busy_timeout: float = BUSY_TIMEOUT) -> None:
        self.path = path
        self.busy_timeout = busy_timeout
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        # isolation_level=None: transactions are opened explicitly
        conn = sqlite3.connect(self.path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside BEGIN IMMEDIATE; commit on success, roll back on error."""
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK;")
                raise
            conn.execute("COMMIT;")

    def initialize(self, schema: str) -> None:
        """Switch the file to WAL (persistent) and create the schema."""
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.executescript(schema)
