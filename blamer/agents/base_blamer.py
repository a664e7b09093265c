"""
Base Blamer
===========
Resolves an Occurrence to the Bug it belongs to, and decides whether a new
occurrence reopens a fixed Bug.

Subclasses decide WHAT identifies a bug (bug_search_criteria). This class
decides HOW the criteria are searched (locate_bug):

    Versioned project (the occurrence has a deploy):
        1. a bug matching the criteria under this deploy
        2. else an open bug matching the criteria under any deploy, re-pointed
           to this deploy
        3. else a new bug under this deploy
        A fixed bug from another deploy is never reused.

    Hosted project (no deploy):
        any bug matching the criteria in the environment, open or fixed,
        else a new one.

    Either way a duplicate is followed to the bug it duplicates.

Reopen policy (hosted bugs only, after the occurrence has been saved):
    fixed + fix deployed, and the newest deploy of the occurrence's revision
    is the newest deploy overall (or neither exists)      → reopen
    fixed, not deployed, fixed longer ago than stale_after → reopen
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from blamer.core import config
from blamer.models.bug import Bug, BugCriteria, BugResolution
from blamer.models.deploy import Deploy
from blamer.models.occurrence import Occurrence
from blamer.models.project import Environment, Project
from blamer.parser.message_filter import MessageFilter
from blamer.services.blame_cache import BlameCache
from blamer.services.bug_store import BugStore
from blamer.services.git_repository import RepositoryPort
from blamer.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)

ReopenHook = Callable[[Bug, Occurrence], None]


class BaseBlamer:
    """
    Usage:
        blamer = RecencyBlamer(occurrence, store=store, message_filter=message_filter,
                               repository=repo, blame_cache=cache)
        resolution = blamer.find_or_create_bug()
        occurrence.bug_id = resolution.bug.id
        store.save_occurrence(occurrence)
        blamer.reopen_bug_if_necessary(resolution.bug)
    """

    needs_repository = False

    def __init__(
        self,
        occurrence: Occurrence,
        *,
        store: BugStore,
        message_filter: Optional[MessageFilter] = None,
        repository: Optional[RepositoryPort] = None,
        blame_cache: Optional[BlameCache] = None,
        stale_after: timedelta = timedelta(days=config.STALE_FIX_DAYS),
        clock: Callable[[], datetime] = utcnow,
        on_reopen: Optional[ReopenHook] = None,
    ) -> None:
        self.occurrence = occurrence
        self.store = store
        self.message_filter = message_filter or MessageFilter()
        self.repository = repository
        self.blame_cache = blame_cache
        self.stale_after = stale_after
        self.clock = clock
        self.on_reopen = on_reopen
        # set by bug_search_criteria when the location is synthetic
        self.special = False

    @classmethod
    def resolve_revision(cls, repository: RepositoryPort, revision: str) -> str:
        """Normalize a client-reported revision. Strategies without git keep it as is."""
        return revision

    @property
    def environment(self) -> Environment:
        return self.occurrence.environment

    @property
    def project(self) -> Project:
        return self.occurrence.environment.project

    @property
    def deploy(self) -> Optional[Deploy]:
        return self.occurrence.deploy

    def bug_search_criteria(self) -> BugCriteria:
        raise NotImplementedError

    def bug_attributes(self) -> Dict[str, Any]:
        message = self.message_filter.filter(
            self.occurrence.class_name,
            self.occurrence.message,
            disabled=self.project.disable_message_filtering,
        )
        return {
            "message_template": message,
            "revision": self.occurrence.revision,
            "client": self.occurrence.client,
            "special_file": self.special,
        }

    # -----------------------------------------------------------------------
    # Matching
    # -----------------------------------------------------------------------
    def find_or_create_bug(self) -> BugResolution:
        """
        Find the Bug this occurrence belongs to, creating it if necessary.

        Returns
        -------
        BugResolution
            The resolved bug (never a duplicate), whether it was created, and
            whether an existing bug's deploy was re-pointed to this
            occurrence's deploy.

        Raises
        ------
        UnresolvableRevision
            If the strategy needs a commit and none can be found.
        """
        criteria = self.bug_search_criteria()
        resolution = self.locate_bug(criteria, self.bug_attributes())
        if resolution.bug.is_duplicate:
            resolution = resolution.model_copy(update={"bug": self.resolve_duplicate(resolution.bug)})
        return resolution

    def locate_bug(self, criteria: BugCriteria, attributes: Dict[str, Any]) -> BugResolution:
        if self.deploy is not None:
            return self.store.find_or_create_versioned_bug(
                self.environment.id, criteria, self.deploy.id, attributes
            )
        return self.store.find_or_create_bug(self.environment.id, criteria, attributes)

    def resolve_duplicate(self, bug: Bug) -> Bug:
        """Follow duplicate_of references to the bug that is not a duplicate."""
        seen = {bug.id}
        while bug.duplicate_of_id is not None:
            target = self.store.get_bug(bug.duplicate_of_id)
            if target is None or target.id in seen:
                logger.warning("Broken duplicate chain at bug %s", bug.id)
                break
            seen.add(target.id)
            bug = target
        logger.info("Occurrence resolved to bug #%s through duplicate chain", bug.number)
        return bug

    # -----------------------------------------------------------------------
    # Reopen Policy
    # -----------------------------------------------------------------------
    def reopen_bug_if_necessary(self, bug: Bug) -> bool:
        """
        Reopen a fixed bug that has occurred again. Call only after the
        occurrence has been linked to the bug and saved.

        Returns
        -------
        bool
            True if the bug was reopened (and saved).
        """
        if bug.deploy_id is not None:
            return False

        occurrence_deploy = None
        if self.occurrence.revision:
            occurrence_deploy = self.store.latest_deploy(bug.environment_id, revision=self.occurrence.revision)
        latest_deploy = self.store.latest_deploy(bug.environment_id)

        occurrence_deploy_id = occurrence_deploy.id if occurrence_deploy else None
        latest_deploy_id = latest_deploy.id if latest_deploy else None

        if bug.fixed and bug.fix_deployed and occurrence_deploy_id == latest_deploy_id:
            reason = "occurred on the latest deploy"
        elif bug.fixed and not bug.fix_deployed and bug.fixed_at is not None \
                and as_utc(bug.fixed_at) < as_utc(self.clock()) - self.stale_after:
            reason = "fix was never deployed"
        else:
            return False

        bug.reopen(self.occurrence.provenance)
        self.store.save_bug(bug)
        logger.info("Reopened bug #%s (%s)", bug.number, reason)
        if self.on_reopen:
            self.on_reopen(bug, self.occurrence)
        return True
