"""
Blame Store
===========
Durable storage behind the blame cache.

Schema:
    blames(repository_hash, revision, file, line) → blamed_revision, updated_at

updated_at is the last-access time (epoch seconds). It is bumped on every
cache hit and drives eviction: the least recently accessed rows go first.

Capacity:
    write() checks the row count and evicts inside the same BEGIN IMMEDIATE
    transaction as the insert, so two writers can never both see room for
    one more row and jointly overshoot max_entries.
"""
import logging
import time
from typing import Optional

from blamer.models.blame import BlameEntry
from blamer.services.database import Database

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS blames (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  repository_hash TEXT NOT NULL,
  revision TEXT NOT NULL,
  file TEXT NOT NULL,
  line INTEGER NOT NULL,
  blamed_revision TEXT NOT NULL,
  updated_at REAL NOT NULL,
  UNIQUE(repository_hash, revision, file, line)
);
CREATE INDEX IF NOT EXISTS idx_blames_updated_at ON blames(updated_at);
"""


class BlameStore:
    def __init__(self, db_path: str) -> None:
        self.db = Database(db_path)
        self.db.initialize(SCHEMA)

    def lookup(self, repository_hash: str, revision: str, file: str, line: int) -> Optional[BlameEntry]:
        with self.db.connect() as conn:
            row = conn.execute(
                """
                SELECT repository_hash, revision, file, line, blamed_revision, updated_at
                FROM blames
                WHERE repository_hash = ? AND revision = ? AND file = ? AND line = ?;
                """,
                (repository_hash, revision, file, line),
            ).fetchone()
        return BlameEntry(**dict(row)) if row else None

    def contains(self, repository_hash: str, revision: str, file: str, line: int) -> bool:
        return self.lookup(repository_hash, revision, file, line) is not None

    def touch(self, entry: BlameEntry, at: Optional[float] = None) -> None:
        """Record an access to entry."""
        with self.db.connect() as conn:
            conn.execute(
                """
                UPDATE blames SET updated_at = ?
                WHERE repository_hash = ? AND revision = ? AND file = ? AND line = ?;
                """,
                (at if at is not None else time.time(),
                 entry.repository_hash, entry.revision, entry.file, entry.line),
            )

    def count(self) -> int:
        with self.db.connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM blames;").fetchone()[0])

    def write(self, entry: BlameEntry, max_entries: int) -> int:
        """
        Insert or refresh an entry, evicting the oldest rows first if the
        store is full.

        Parameters
        ----------
        entry : BlameEntry
            Entry to store; its updated_at is replaced by the current time.
        max_entries : int
            Capacity. After the write the store holds at most this many rows.

        Returns
        -------
        int
            Number of rows evicted.
        """
        now = time.time()
        evicted = 0
        with self.db.transaction() as conn:
            exists = conn.execute(
                """
                SELECT 1 FROM blames
                WHERE repository_hash = ? AND revision = ? AND file = ? AND line = ?;
                """,
                (entry.repository_hash, entry.revision, entry.file, entry.line),
            ).fetchone()

            if not exists:
                total = int(conn.execute("SELECT COUNT(*) FROM blames;").fetchone()[0])
                if total >= max_entries:
                    evicted = total + 1 - max_entries
                    conn.execute(
                        """
                        DELETE FROM blames WHERE id IN (
                          SELECT id FROM blames ORDER BY updated_at ASC, id ASC LIMIT ?
                        );
                        """,
                        (evicted,),
                    )

            conn.execute(
                """
                INSERT INTO blames (repository_hash, revision, file, line, blamed_revision, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(repository_hash, revision, file, line)
                DO UPDATE SET blamed_revision = excluded.blamed_revision, updated_at = excluded.updated_at;
                """,
                (entry.repository_hash, entry.revision, entry.file, entry.line, entry.blamed_revision, now),
            )

        if evicted:
            logger.info("Evicted %d blame cache entries (capacity %d)", evicted, max_entries)
        return evicted
