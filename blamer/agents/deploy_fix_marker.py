"""
Deploy Fix Marker
=================
When a deploy is recorded, marks every fixed bug whose fix shipped with it.

Flow:
    1. Fetch the mirror so the deployed revision is known.
    2. Walk the history reachable from the deployed revision, a page of
       commits at a time.
    3. Any fixed, not yet deployed bug of the environment whose
       resolution_revision is in the page becomes fix_deployed.

A deployed revision that git no longer knows (force-pushed away) ends the
walk with a warning. A mirror lock timeout is not a git failure and propagates.
"""
import logging

from blamer.core import config
from blamer.core.errors import GitCommandError
from blamer.models.deploy import Deploy
from blamer.services.bug_store import BugStore
from blamer.services.git_repository import RepositoryPort

logger = logging.getLogger(__name__)


class DeployFixMarker:

    def __init__(self, deploy: Deploy, repository: RepositoryPort, store: BugStore,
                 page_size: int = config.DEPLOY_FIX_COMMIT_PAGE_SIZE) -> None:
        self.deploy = deploy
        self.repository = repository
        self.store = store
        self.page_size = page_size

    def perform(self) -> int:
        """
        Returns
        -------
        int
            Number of bugs marked fix_deployed.
        """
        marked = 0
        offset = 0
        try:
            self.repository.fetch()
            while True:
                commits = self.repository.commits_from(self.deploy.revision, self.page_size, skip=offset)
                if not commits:
                    break
                for bug in self.store.bugs_fixed_by(self.deploy.environment_id, [c.sha for c in commits]):
                    bug.mark_fix_deployed(self.deploy.id)
                    self.store.save_bug(bug)
                    marked += 1
                    logger.info("Bug #%s fix deployed with deploy %s", bug.number, self.deploy.id)
                offset += self.page_size
        except GitCommandError as e:
            logger.warning("Stopped marking fixes for deploy %s at %s: %s",
                           self.deploy.id, self.deploy.revision, e)
        return marked
