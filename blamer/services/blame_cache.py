"""
Blame Cache
===========
Write-through LRU cache of `git blame` results, sized by entry count.

Flow:
    hit  → touch the entry, re-resolve the blamed SHA through the repository
           (so commit metadata is always current) and return it
    miss → blame through the repository; store the SHA if there is one

Contract:
    - None is never cached. An unblameable line is retried on every call.
    - Git failures (including timeouts) are logged and mean "no blame".
    - RepositoryMirrorLockTimeout is NOT a git failure and propagates.
    - A hit whose commit no longer resolves (history rewritten) is treated
      as a miss.
"""
import logging
from typing import Optional

from blamer.core import config
from blamer.core.errors import GitCommandError
from blamer.models.blame import BlameEntry
from blamer.models.commit import CommitHandle
from blamer.services.blame_store import BlameStore
from blamer.services.git_repository import RepositoryPort

logger = logging.getLogger(__name__)


class BlameCache:
    """
    Usage:
        cache = BlameCache(BlameStore("blamer.sqlite3"))
        commit = cache.blame(repository, occurrence_sha, "app/models/user.rb", 42)
    """

    def __init__(self, store: BlameStore, max_entries: int = config.BLAME_CACHE_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.store = store
        self.max_entries = max_entries

    def blame(self, repository: RepositoryPort, revision: str, file: str, line: int) -> Optional[CommitHandle]:
        """
        Return the commit that last modified file:line as of revision.

        Parameters
        ----------
        repository : RepositoryPort
            Repository to blame in; its identity keys the cache.
        revision : str
            Full SHA the occurrence happened at.
        file : str
            Project-relative path.
        line : int
            1-based line number.

        Returns
        -------
        CommitHandle | None
            The blamed commit, or None when blame is unavailable.
        """
        try:
            commit = self._cached_blame(repository, revision, file, line)
            if commit is not None:
                return commit
            return self._write_blame(repository, revision, file, line, repository.blame(revision, file, line))
        except GitCommandError as e:
            logger.error("Couldn't git-blame %s:%s: %s", repository.identity, revision, e)
            return None

    def _cached_blame(self, repository: RepositoryPort, revision: str, file: str, line: int) -> Optional[CommitHandle]:
        entry = self.store.lookup(repository.identity, revision, file, line)
        if entry is None:
            return None
        self.store.touch(entry)
        commit = repository.resolve(entry.blamed_revision)
        if commit is None:
            logger.warning(
                "Cached blame %s for %s:%s no longer resolves in %s",
                entry.blamed_revision, file, line, repository.identity,
            )
        return commit

    def _write_blame(self, repository: RepositoryPort, revision: str, file: str, line: int,
                     commit: Optional[CommitHandle]) -> Optional[CommitHandle]:
        if commit is not None:
            self.store.write(
                BlameEntry(
                    repository_hash=repository.identity,
                    revision=revision,
                    file=file,
                    line=line,
                    blamed_revision=commit.sha,
                ),
                self.max_entries,
            )
        return commit
