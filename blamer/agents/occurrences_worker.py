"""
Occurrences Worker
==================
Ingests one occurrence payload from a client library.

Pipeline:
    1. Validate the payload (required keys, revision or build).
    2. Work out the deploy and revision:
           revision + build → resolve revision, find or create the build's deploy
           revision only    → resolve revision
           build only       → the build's deploy (must already exist) and its revision
    3. Normalize backtraces, build the Occurrence.
    4. Run the project's blamer to find or create the Bug.
    5. Reduce the stored message to its error portion, mask personal data, truncate.
    6. Save the occurrence against the bug, then apply the reopen policy.

A newly recorded deploy hands off to DeployFixMarker through the configured
executor (inline when there is none).

Retries:
    A locked SQLite database (another writer holding it past the busy
    timeout) retries the failing stage up to retry_limit times. Recording
    (steps 2-6 up to the occurrence save) and the reopen policy are separate
    stages, so a lock hit while reopening never stores the occurrence twice.
    Inline fix marking for a new deploy is retried on its own.
    Any other error propagates to the caller.
"""
import copy
import logging
import sqlite3
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from pydantic import ValidationError

from blamer.agents.base_blamer import BaseBlamer, ReopenHook
from blamer.agents.blamer_registry import blamer_for
from blamer.agents.deploy_fix_marker import DeployFixMarker
from blamer.core import config
from blamer.core.errors import InvalidOccurrenceError
from blamer.models.deploy import Deploy
from blamer.models.occurrence import Occurrence
from blamer.models.project import Environment, Project
from blamer.parser.backtrace_normalizer import normalize_backtraces
from blamer.parser.message_filter import MessageFilter
from blamer.services.blame_cache import BlameCache
from blamer.services.bug_store import BugStore
from blamer.services.git_repository import RepositoryFactory, RepositoryPort
from blamer.utils.clock import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUIRED_KEYS = ("client", "backtraces", "class_name", "message", "occurred_at")

# only these may be blank; the message falls back to the class name
BLANK_ALLOWED = ("message",)


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != {}


class OccurrencesWorker:
    """
    Usage:
        worker = OccurrencesWorker(project, environment, store=store, repositories=factory,
                                   blame_cache=cache, message_filter=message_filter)
        occurrence = worker.perform(payload)
    """

    def __init__(
        self,
        project: Project,
        environment: Environment,
        *,
        store: BugStore,
        repositories: Optional[RepositoryFactory] = None,
        blame_cache: Optional[BlameCache] = None,
        message_filter: Optional[MessageFilter] = None,
        executor: Optional[Executor] = None,
        retry_limit: int = config.OCCURRENCE_RETRY_LIMIT,
        stale_after: timedelta = timedelta(days=config.STALE_FIX_DAYS),
        clock: Callable[[], datetime] = utcnow,
        on_reopen: Optional[ReopenHook] = None,
    ) -> None:
        self.project = project
        self.environment = environment
        self.store = store
        self.repositories = repositories
        self.blame_cache = blame_cache
        self.message_filter = message_filter or MessageFilter()
        self.executor = executor
        self.retry_limit = retry_limit
        self.stale_after = stale_after
        self.clock = clock
        self.on_reopen = on_reopen
        self.blamer_class = blamer_for(project)
        if self.blamer_class.needs_repository and (repositories is None or blame_cache is None):
            raise ValueError(f"{self.blamer_class.__name__} needs repositories and a blame cache")

    @property
    def repository(self) -> Optional[RepositoryPort]:
        return self.repositories.for_project(self.project) if self.repositories else None

    # -----------------------------------------------------------------------
    # Entry Point
    # -----------------------------------------------------------------------
    def perform(self, payload: Dict[str, Any]) -> Occurrence:
        """
        Ingest one occurrence.

        Parameters
        ----------
        payload : dict
            Occurrence attributes as sent by the client library.

        Returns
        -------
        Occurrence
            The saved occurrence, linked to its bug.

        Raises
        ------
        InvalidOccurrenceError
            Missing keys, unknown build number, malformed values.
        UnresolvableRevision / UnknownRevision
            The revision cannot be found in the repository.
        """
        attrs = copy.deepcopy(payload)
        self.validate(attrs)

        occurrence, blamer = self._retrying("recording", self._record, attrs)
        self._retrying("reopen check", self._reopen, blamer, occurrence)
        return occurrence

    def _retrying(self, stage: str, step: Callable[..., T], *args: Any) -> T:
        attempt = 0
        while True:
            try:
                return step(*args)
            except sqlite3.OperationalError as e:
                if "locked" not in str(e) and "busy" not in str(e):
                    raise
                attempt += 1
                if attempt > self.retry_limit:
                    logger.error("Too many retries ingesting occurrence: %s", e)
                    raise
                logger.warning("Retrying %s (%d/%d): %s", stage, attempt, self.retry_limit, e)

    @staticmethod
    def validate(attrs: Dict[str, Any]) -> None:
        missing = [
            key for key in REQUIRED_KEYS
            if key not in attrs or (key not in BLANK_ALLOWED and not _present(attrs[key]))
        ]
        if missing:
            raise InvalidOccurrenceError(f"Missing required keys: {', '.join(missing)}")
        if "revision" not in attrs and "build" not in attrs:
            raise InvalidOccurrenceError("revision or build must be specified")

    # -----------------------------------------------------------------------
    # Pipeline
    # -----------------------------------------------------------------------
    def _record(self, attrs: Dict[str, Any]) -> Tuple[Occurrence, BaseBlamer]:
        repository = self.repository
        deploy, revision = self.set_deploy_and_revision(attrs, repository)

        class_name = str(attrs["class_name"])
        try:
            occurrence = Occurrence(
                environment=self.environment,
                class_name=class_name,
                revision=revision,
                deploy=deploy,
                client=str(attrs["client"]),
                message=attrs.get("message") or class_name,
                backtraces=normalize_backtraces(attrs["backtraces"]),
                occurred_at=attrs["occurred_at"],
            )
        except ValidationError as e:
            raise InvalidOccurrenceError(str(e)) from e

        blamer = self.blamer_class(
            occurrence,
            store=self.store,
            message_filter=self.message_filter,
            repository=repository,
            blame_cache=self.blame_cache,
            stale_after=self.stale_after,
            clock=self.clock,
            on_reopen=self.on_reopen,
        )
        resolution = blamer.find_or_create_bug()

        occurrence.message = self.message_filter.occurrence_message(
            class_name, occurrence.message, disabled=self.project.disable_message_filtering
        )
        occurrence.bug_id = resolution.bug.id
        self.store.save_occurrence(occurrence)
        logger.info("Occurrence %d of %s linked to bug #%s%s", occurrence.id, class_name,
                    resolution.bug.number, " (new)" if resolution.created else "")

        return occurrence, blamer

    def _reopen(self, blamer: BaseBlamer, occurrence: Occurrence) -> None:
        # re-read so a retry sees what an interrupted attempt persisted
        bug = self.store.get_bug(occurrence.bug_id)
        if bug is not None:
            blamer.reopen_bug_if_necessary(bug)

    def set_deploy_and_revision(self, attrs: Dict[str, Any],
                                repository: Optional[RepositoryPort]) -> Tuple[Optional[Deploy], str]:
        revision = attrs.get("revision")
        build = attrs.get("build")

        if _present(revision) and _present(build):
            sha = self.blamer_class.resolve_revision(repository, str(revision))
            deploy, created = self.store.find_or_create_deploy(
                self.environment.id, str(build), sha, deployed_at=self.clock()
            )
            if created:
                self.mark_fixes(deploy, repository)
            return deploy, sha

        if _present(revision):
            return None, self.blamer_class.resolve_revision(repository, str(revision))

        if _present(build):
            deploy = self.store.find_deploy_by_build(self.environment.id, str(build))
            if deploy is None:
                raise InvalidOccurrenceError("Unknown build number")
            return deploy, deploy.revision

        raise InvalidOccurrenceError("Missing required keys: revision or build")

    def mark_fixes(self, deploy: Deploy, repository: Optional[RepositoryPort]) -> None:
        if repository is None:
            return
        marker = DeployFixMarker(deploy, repository, self.store)
        if self.executor is None:
            self._retrying("fix marking", marker.perform)
            return
        future = self.executor.submit(marker.perform)
        future.add_done_callback(self._log_marker_failure)

    @staticmethod
    def _log_marker_failure(future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("DeployFixMarker failed: %s", error)
