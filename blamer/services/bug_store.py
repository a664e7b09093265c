"""
Bug Store
=========
SQLite persistence for bugs, deploys and occurrences.

Uniqueness:
    bugs are unique on
        (environment_id, class_name, file, line, blamed_revision, deploy_id)
    through an expression index that folds NULLs into sentinels, so a NULL
    blamed_revision (or deploy) is a value like any other and two NULLs
    collide. This is what makes find-or-create converge on one row when
    several workers ingest matching occurrences at once.

Find-or-create:
    Each lookup-then-insert runs in one BEGIN IMMEDIATE transaction. If an
    insert still hits the unique index (another process won the race), the
    IntegrityError is caught and the winner's row is read back.

Message matching:
    Hosted projects using the message strategy tell bugs at one location
    apart by occurrence message. Such bugs carry the message_key they were
    created for, and the key is part of the uniqueness index.

Duplicates:
    mark_as_duplicate() is permanent and moves the duplicate's occurrences
    onto its target. A duplicate cannot be marked again, cannot be a target,
    and a bug that already has duplicates cannot become one.
"""
import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from blamer.core.errors import DuplicateBugError
from blamer.models.bug import Bug, BugCriteria, BugResolution
from blamer.models.deploy import Deploy
from blamer.models.occurrence import Occurrence
from blamer.models.project import Environment
from blamer.parser.backtrace_normalizer import normalize_backtraces, serialize_backtraces
from blamer.services.database import Database
from blamer.utils.clock import as_utc

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS deploys (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  environment_id INTEGER NOT NULL,
  revision TEXT NOT NULL,
  build TEXT,
  version TEXT,
  hostname TEXT,
  deployed_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_deploys_build
  ON deploys(environment_id, build) WHERE build IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_deploys_env_time ON deploys(environment_id, deployed_at);

CREATE TABLE IF NOT EXISTS bugs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  number INTEGER NOT NULL,
  environment_id INTEGER NOT NULL,
  class_name TEXT NOT NULL,
  file TEXT NOT NULL,
  line INTEGER,
  blamed_revision TEXT,
  deploy_id INTEGER REFERENCES deploys(id),
  revision TEXT,
  client TEXT,
  message_template TEXT NOT NULL DEFAULT '',
  special_file INTEGER NOT NULL DEFAULT 0,
  fixed INTEGER NOT NULL DEFAULT 0,
  fixed_at TEXT,
  fix_deployed INTEGER NOT NULL DEFAULT 0,
  resolution_revision TEXT,
  fixing_deploy_id INTEGER REFERENCES deploys(id),
  duplicate_of_id INTEGER REFERENCES bugs(id),
  modifier TEXT,
  message_key TEXT,
  UNIQUE(environment_id, number)
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_bugs_criteria ON bugs(
  environment_id, class_name, file, IFNULL(line, -1), IFNULL(blamed_revision, ''), IFNULL(deploy_id, 0),
  IFNULL(message_key, '')
);
CREATE INDEX IF NOT EXISTS idx_bugs_resolution ON bugs(environment_id, resolution_revision);

CREATE TABLE IF NOT EXISTS occurrences (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  bug_id INTEGER REFERENCES bugs(id),
  environment_id INTEGER NOT NULL,
  class_name TEXT NOT NULL,
  revision TEXT,
  deploy_id INTEGER REFERENCES deploys(id),
  client TEXT NOT NULL DEFAULT '',
  message TEXT NOT NULL DEFAULT '',
  backtraces TEXT NOT NULL DEFAULT '[]',
  occurred_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_occurrences_bug ON occurrences(bug_id);
"""

# scope value meaning "do not filter on this column"
ANY = object()

_BUG_ATTRIBUTES = ("revision", "client", "message_template", "special_file", "modifier")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return as_utc(datetime.fromisoformat(value)) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # stored as UTC so that text ordering is chronological
    return as_utc(value).isoformat()


def _row_to_bug(row: sqlite3.Row) -> Bug:
    data = dict(row)
    for flag in ("special_file", "fixed", "fix_deployed"):
        data[flag] = bool(data[flag])
    data["fixed_at"] = _dt(data["fixed_at"])
    return Bug(**data)


def _row_to_deploy(row: sqlite3.Row) -> Deploy:
    data = dict(row)
    data["deployed_at"] = _dt(data["deployed_at"])
    return Deploy(**data)


class BugStore:
    """
    Usage:
        store = BugStore("blamer.sqlite3")
        resolution = store.find_or_create_bug(env.id, criteria, {"message_template": "..."})
        store.save_bug(resolution.bug)
    """

    def __init__(self, db_path: str) -> None:
        self.db = Database(db_path)
        self.db.initialize(SCHEMA)

    # -----------------------------------------------------------------------
    # Bugs
    # -----------------------------------------------------------------------
    @staticmethod
    def _select_bug(conn: sqlite3.Connection, environment_id: int, criteria: BugCriteria,
                    deploy_id: Any = ANY, fixed: Optional[bool] = None) -> Optional[sqlite3.Row]:
        clauses = [
            "environment_id = ?",
            "class_name = ?",
            "file = ?",
            "line IS ?",
            "blamed_revision IS ?",
        ]
        params: List[Any] = [environment_id, criteria.class_name, criteria.file, criteria.line,
                             criteria.blamed_revision]
        if deploy_id is not ANY:
            clauses.append("deploy_id IS ?")
            params.append(deploy_id)
        if fixed is not None:
            clauses.append("fixed = ?")
            params.append(int(fixed))
        sql = f"SELECT * FROM bugs WHERE {' AND '.join(clauses)} ORDER BY id ASC LIMIT 1;"
        return conn.execute(sql, params).fetchone()

    @staticmethod
    def _insert_bug(conn: sqlite3.Connection, environment_id: int, criteria: BugCriteria,
                    attributes: Dict[str, Any], deploy_id: Optional[int],
                    message_key: Optional[str] = None) -> Bug:
        number = conn.execute(
            "SELECT IFNULL(MAX(number), 0) + 1 FROM bugs WHERE environment_id = ?;", (environment_id,)
        ).fetchone()[0]
        bug = Bug(
            number=number,
            environment_id=environment_id,
            deploy_id=deploy_id,
            message_key=message_key,
            **criteria.as_dict(),
            **{k: v for k, v in attributes.items() if k in _BUG_ATTRIBUTES},
        )
        cur = conn.execute(
            """
            INSERT INTO bugs (
              number, environment_id, class_name, file, line, blamed_revision, deploy_id,
              revision, client, message_template, special_file, modifier, message_key
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (bug.number, bug.environment_id, bug.class_name, bug.file, bug.line, bug.blamed_revision,
             bug.deploy_id, bug.revision, bug.client, bug.message_template, int(bug.special_file),
             bug.modifier, bug.message_key),
        )
        bug.id = int(cur.lastrowid)
        logger.info("Created bug #%d (%s at %s:%s) in environment %d",
                    bug.number, bug.class_name, bug.file, bug.line, environment_id)
        return bug

    def find_bug(self, environment_id: int, criteria: BugCriteria,
                 deploy_id: Any = ANY, fixed: Optional[bool] = None) -> Optional[Bug]:
        """
        Find the oldest bug matching criteria within an environment.

        Parameters
        ----------
        environment_id : int
            Environment to search.
        criteria : BugCriteria
            None values match only None.
        deploy_id : int | None | ANY
            Restrict to one deploy (None: bugs without a deploy). ANY by default.
        fixed : bool | None
            Restrict by fix state. No restriction by default.
        """
        with self.db.connect() as conn:
            row = self._select_bug(conn, environment_id, criteria, deploy_id=deploy_id, fixed=fixed)
        return _row_to_bug(row) if row else None

    def find_or_create_bug(self, environment_id: int, criteria: BugCriteria,
                           attributes: Optional[Dict[str, Any]] = None) -> BugResolution:
        """
        Hosted projects: any bug matching criteria, open or fixed, or a new one.
        """
        try:
            with self.db.transaction() as conn:
                row = self._select_bug(conn, environment_id, criteria)
                if row:
                    return BugResolution(bug=_row_to_bug(row))
                bug = self._insert_bug(conn, environment_id, criteria, attributes or {}, None)
                return BugResolution(bug=bug, created=True)
        except sqlite3.IntegrityError:
            existing = self.find_bug(environment_id, criteria)
            if existing is None:
                raise
            logger.info("Bug for %s created concurrently, using #%d", criteria.as_dict(), existing.number)
            return BugResolution(bug=existing)

    def find_or_create_versioned_bug(self, environment_id: int, criteria: BugCriteria, deploy_id: int,
                                     attributes: Optional[Dict[str, Any]] = None) -> BugResolution:
        """
        Versioned projects: resolve criteria within a deploy.

        Order of preference:
            1. a bug matching criteria under this deploy (any fix state)
            2. an open bug matching criteria under any deploy, re-pointed to
               this deploy (persisted here, reported as deploy_repointed)
            3. a new bug under this deploy

        Returns
        -------
        BugResolution
        """
        try:
            with self.db.transaction() as conn:
                row = self._select_bug(conn, environment_id, criteria, deploy_id=deploy_id)
                if row:
                    return BugResolution(bug=_row_to_bug(row))

                row = self._select_bug(conn, environment_id, criteria, fixed=False)
                if row:
                    bug = _row_to_bug(row)
                    conn.execute("UPDATE bugs SET deploy_id = ? WHERE id = ?;", (deploy_id, bug.id))
                    logger.info("Re-pointed bug #%d from deploy %s to deploy %d",
                                bug.number, bug.deploy_id, deploy_id)
                    bug.deploy_id = deploy_id
                    return BugResolution(bug=bug, deploy_repointed=True)

                bug = self._insert_bug(conn, environment_id, criteria, attributes or {}, deploy_id)
                return BugResolution(bug=bug, created=True)
        except sqlite3.IntegrityError:
            existing = self.find_bug(environment_id, criteria, deploy_id=deploy_id)
            if existing is None:
                raise
            logger.info("Bug for %s in deploy %d created concurrently, using #%d",
                        criteria.as_dict(), deploy_id, existing.number)
            return BugResolution(bug=existing)

    def find_or_create_message_bug(self, environment_id: int, criteria: BugCriteria, message_key: str,
                                   attributes: Optional[Dict[str, Any]] = None) -> BugResolution:
        """
        Hosted projects matched by message: the bug at criteria's class name,
        file and line that already holds an occurrence whose message contains
        message_key, else a new bug keyed by message_key.

        blamed_revision is not compared. message_key is stored on the bug so
        that a bug whose first occurrence is not saved yet is still found.
        """
        pattern = "%" + _escape_like(message_key) + "%"
        try:
            with self.db.transaction() as conn:
                row = conn.execute(
                    """
                    SELECT bugs.* FROM occurrences
                    JOIN bugs ON bugs.id = occurrences.bug_id
                    WHERE occurrences.environment_id = ? AND occurrences.message LIKE ? ESCAPE '\\'
                      AND bugs.class_name = ? AND bugs.file = ? AND bugs.line IS ?
                    ORDER BY occurrences.id ASC LIMIT 1;
                    """,
                    (environment_id, pattern, criteria.class_name, criteria.file, criteria.line),
                ).fetchone() or self._select_message_bug(conn, environment_id, criteria, message_key)
                if row:
                    return BugResolution(bug=_row_to_bug(row))
                bug = self._insert_bug(conn, environment_id, criteria, attributes or {}, None,
                                       message_key=message_key)
                return BugResolution(bug=bug, created=True)
        except sqlite3.IntegrityError:
            with self.db.connect() as conn:
                row = self._select_message_bug(conn, environment_id, criteria, message_key)
            if row is None:
                raise
            logger.info("Bug for %r created concurrently, using #%d", message_key, row["number"])
            return BugResolution(bug=_row_to_bug(row))

    @staticmethod
    def _select_message_bug(conn: sqlite3.Connection, environment_id: int, criteria: BugCriteria,
                            message_key: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            """
            SELECT * FROM bugs
            WHERE environment_id = ? AND class_name = ? AND file = ? AND line IS ?
              AND blamed_revision IS NULL AND deploy_id IS NULL AND message_key = ?
            ORDER BY id ASC LIMIT 1;
            """,
            (environment_id, criteria.class_name, criteria.file, criteria.line, message_key),
        ).fetchone()

    def get_bug(self, bug_id: int) -> Optional[Bug]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM bugs WHERE id = ?;", (bug_id,)).fetchone()
        return _row_to_bug(row) if row else None

    def save_bug(self, bug: Bug) -> Bug:
        """Persist the mutable state of an existing bug. Location and criteria never change."""
        with self.db.connect() as conn:
            conn.execute(
                """
                UPDATE bugs SET
                  deploy_id = ?, message_template = ?, fixed = ?, fixed_at = ?, fix_deployed = ?,
                  resolution_revision = ?, fixing_deploy_id = ?, modifier = ?
                WHERE id = ?;
                """,
                (bug.deploy_id, bug.message_template, int(bug.fixed), _iso(bug.fixed_at),
                 int(bug.fix_deployed), bug.resolution_revision, bug.fixing_deploy_id, bug.modifier, bug.id),
            )
        return bug

    def bugs_fixed_by(self, environment_id: int, revisions: Sequence[str]) -> List[Bug]:
        """Fixed, not yet deployed bugs whose resolution revision is one of revisions."""
        if not revisions:
            return []
        placeholders = ", ".join("?" for _ in revisions)
        with self.db.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM bugs
                WHERE environment_id = ? AND fixed = 1 AND fix_deployed = 0
                  AND resolution_revision IN ({placeholders})
                ORDER BY id ASC;
                """,
                (environment_id, *revisions),
            ).fetchall()
        return [_row_to_bug(r) for r in rows]

    # -----------------------------------------------------------------------
    # Duplicates
    # -----------------------------------------------------------------------
    def mark_as_duplicate(self, bug: Bug, target: Bug, cause: Optional[str] = None) -> Bug:
        """
        Mark bug as a duplicate of target and move its occurrences to target.

        Raises
        ------
        DuplicateBugError
            If any duplicate-marking rule is violated.
        """
        with self.db.transaction() as conn:
            current = conn.execute("SELECT * FROM bugs WHERE id = ?;", (bug.id,)).fetchone()
            other = conn.execute("SELECT * FROM bugs WHERE id = ?;", (target.id,)).fetchone()
            if current is None or other is None:
                raise DuplicateBugError("Both bugs must exist")
            if current["id"] == other["id"]:
                raise DuplicateBugError("A bug cannot be a duplicate of itself")
            if current["duplicate_of_id"] is not None:
                raise DuplicateBugError(f"Bug {current['id']} is already a duplicate")
            if other["duplicate_of_id"] is not None:
                raise DuplicateBugError("Cannot mark a bug as a duplicate of a duplicate")
            if current["environment_id"] != other["environment_id"]:
                raise DuplicateBugError("Cannot mark a bug as a duplicate of a bug in another environment")
            has_duplicates = conn.execute(
                "SELECT 1 FROM bugs WHERE duplicate_of_id = ? LIMIT 1;", (current["id"],)
            ).fetchone()
            if has_duplicates:
                raise DuplicateBugError("Cannot mark a bug that has duplicates as a duplicate")

            conn.execute(
                "UPDATE bugs SET duplicate_of_id = ?, modifier = ? WHERE id = ?;",
                (other["id"], cause, current["id"]),
            )
            moved = conn.execute(
                "UPDATE occurrences SET bug_id = ? WHERE bug_id = ?;", (other["id"], current["id"])
            ).rowcount

        logger.info("Marked bug %d as duplicate of %d, moved %d occurrences", bug.id, target.id, moved)
        bug.duplicate_of_id = target.id
        bug.modifier = cause
        return bug

    # -----------------------------------------------------------------------
    # Deploys
    # -----------------------------------------------------------------------
    def create_deploy(self, deploy: Deploy) -> Deploy:
        with self.db.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO deploys (environment_id, revision, build, version, hostname, deployed_at)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (deploy.environment_id, deploy.revision, deploy.build, deploy.version, deploy.hostname,
                 _iso(deploy.deployed_at)),
            )
        deploy.id = int(cur.lastrowid)
        return deploy

    def find_deploy_by_build(self, environment_id: int, build: str) -> Optional[Deploy]:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM deploys WHERE environment_id = ? AND build = ?;", (environment_id, build)
            ).fetchone()
        return _row_to_deploy(row) if row else None

    def find_or_create_deploy(self, environment_id: int, build: str, revision: str,
                              deployed_at: datetime, **attributes: Any) -> Tuple[Deploy, bool]:
        """
        Deploy for a build number, created on first sight.

        Returns
        -------
        tuple[Deploy, bool]
            The deploy and whether it was created by this call.
        """
        existing = self.find_deploy_by_build(environment_id, build)
        if existing:
            return existing, False
        try:
            deploy = self.create_deploy(Deploy(
                environment_id=environment_id,
                build=build,
                revision=revision,
                deployed_at=deployed_at,
                **attributes,
            ))
        except sqlite3.IntegrityError:
            existing = self.find_deploy_by_build(environment_id, build)
            if existing is None:
                raise
            return existing, False
        logger.info("Created deploy %d for build %s (%s)", deploy.id, build, revision)
        return deploy, True

    def latest_deploy(self, environment_id: int, revision: Optional[str] = None) -> Optional[Deploy]:
        """Most recent deploy of the environment, optionally only among deploys of revision."""
        sql = "SELECT * FROM deploys WHERE environment_id = ?"
        params: List[Any] = [environment_id]
        if revision is not None:
            sql += " AND revision = ?"
            params.append(revision)
        sql += " ORDER BY deployed_at DESC, id DESC LIMIT 1;"
        with self.db.connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return _row_to_deploy(row) if row else None

    # -----------------------------------------------------------------------
    # Occurrences
    # -----------------------------------------------------------------------
    def save_occurrence(self, occurrence: Occurrence) -> Occurrence:
        backtraces = json.dumps(serialize_backtraces(occurrence.backtraces))
        deploy_id = occurrence.deploy.id if occurrence.deploy else None
        with self.db.connect() as conn:
            if occurrence.id is None:
                cur = conn.execute(
                    """
                    INSERT INTO occurrences (
                      bug_id, environment_id, class_name, revision, deploy_id,
                      client, message, backtraces, occurred_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (occurrence.bug_id, occurrence.environment.id, occurrence.class_name,
                     occurrence.revision, deploy_id, occurrence.client, occurrence.message,
                     backtraces, _iso(occurrence.occurred_at)),
                )
                occurrence.id = int(cur.lastrowid)
            else:
                conn.execute(
                    "UPDATE occurrences SET bug_id = ?, message = ? WHERE id = ?;",
                    (occurrence.bug_id, occurrence.message, occurrence.id),
                )
        return occurrence

    def occurrences_for_bug(self, bug_id: int, environment: Environment) -> List[Occurrence]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM occurrences WHERE bug_id = ? ORDER BY occurred_at ASC, id ASC;", (bug_id,)
            ).fetchall()
            deploy_ids = {r["deploy_id"] for r in rows if r["deploy_id"] is not None}
            deploys = {}
            for deploy_id in deploy_ids:
                deploy_row = conn.execute("SELECT * FROM deploys WHERE id = ?;", (deploy_id,)).fetchone()
                if deploy_row:
                    deploys[deploy_id] = _row_to_deploy(deploy_row)

        return [
            Occurrence(
                id=r["id"],
                bug_id=r["bug_id"],
                environment=environment,
                class_name=r["class_name"],
                revision=r["revision"],
                deploy=deploys.get(r["deploy_id"]),
                client=r["client"],
                message=r["message"],
                backtraces=normalize_backtraces(json.loads(r["backtraces"])),
                occurred_at=_dt(r["occurred_at"]),
            )
            for r in rows
        ]
