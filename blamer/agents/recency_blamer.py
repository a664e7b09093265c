"""
Recency Blamer
==============
Git-backed matching strategy.

An occurrence is matched on:
    - the exception class name,
    - the relevant file and line, chosen by scoring each project frame of the
      faulted backtrace on its height and on how recently it was changed,
    - the commit blamed for that line, when there is one.

The exception message is not part of the criteria. The bug stores a
filtered template of it instead.
"""
import logging
from typing import Optional

from blamer.agents.base_blamer import BaseBlamer
from blamer.core.errors import GitCommandError, UnresolvableRevision
from blamer.models.bug import BugCriteria
from blamer.models.commit import CommitHandle
from blamer.services.backtrace_scorer import find_relevant_location
from blamer.services.git_repository import RepositoryPort
from blamer.services.revision_resolver import resolve_revision

logger = logging.getLogger(__name__)


class RecencyBlamer(BaseBlamer):

    needs_repository = True

    @classmethod
    def resolve_revision(cls, repository: RepositoryPort, revision: str) -> str:
        return resolve_revision(repository, revision)

    def _resolve(self, revision: Optional[str]) -> Optional[CommitHandle]:
        if not revision:
            return None
        try:
            return self.repository.resolve(revision)
        except GitCommandError as e:
            logger.error("Couldn't resolve %s in %s: %s", revision, self.repository.identity, e)
            return None

    def occurrence_commit(self) -> CommitHandle:
        """The occurrence's commit, else its deploy's commit."""
        commit = self._resolve(self.occurrence.revision)
        if commit is None and self.deploy is not None:
            commit = self._resolve(self.deploy.revision)
        if commit is None:
            raise UnresolvableRevision(
                f"Need a resolvable commit for occurrence {self.occurrence.id or '(new)'} "
                f"(revision {self.occurrence.revision!r})"
            )
        return commit

    def bug_search_criteria(self) -> BugCriteria:
        if self.repository is None or self.blame_cache is None:
            raise ValueError("RecencyBlamer needs a repository and a blame cache")

        location = find_relevant_location(
            self.project,
            self.repository,
            self.blame_cache,
            self.occurrence.faulted_backtrace,
            self.occurrence_commit(),
        )
        self.special = location.special
        return BugCriteria(
            class_name=self.occurrence.class_name,
            file=location.file,
            line=location.line,
            blamed_revision=location.blamed_revision,
        )
