"""
Git Repository
==============
Repository Access Port and its implementation over a local bare mirror.

Layout:
    <repos_dir>/<repository_hash>.git        — `git clone --mirror` of the project
    <repos_dir>/<repository_hash>.git.lock   — flock serializing clone/fetch
    <repos_dir>/<repository_hash>.git.partial — clone in progress, renamed into place when done

Operations:
    resolve(revision)              → CommitHandle | None
    blame(revision, file, line)    → CommitHandle | None (raises BlameUnavailable)
    fetch()                        → update the mirror (clones on first use)
    commits_from(rev, limit, skip) → one page of `git log` from rev

Every git call runs through subprocess.run with a timeout. A timeout is
reported as a GitCommandError with returncode None, so callers that recover
from git failures recover from timeouts too. Only the mirror lock timeout is
raised as a different type.
"""
import logging
import os
import shutil
import subprocess
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence

from blamer.core import config
from blamer.core.errors import BlameUnavailable, GitCommandError
from blamer.models.commit import CommitHandle
from blamer.models.project import Project
from blamer.services.file_lock import file_lock

logger = logging.getLogger(__name__)

# sha, committer timestamp, author name, author email
LOG_FORMAT = "%H%x00%ct%x00%an%x00%ae"
NULL_SHA = "0" * 40


class RepositoryPort(Protocol):
    """What the matching engine needs from version control."""

    identity: str

    def resolve(self, revision: str) -> Optional[CommitHandle]:
        raise NotImplementedError

    def blame(self, revision: str, file: str, line: int) -> Optional[CommitHandle]:
        raise NotImplementedError

    def fetch(self) -> None:
        raise NotImplementedError

    def commits_from(self, revision: str, limit: int, skip: int = 0) -> List[CommitHandle]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Output Parsing
# ---------------------------------------------------------------------------
def parse_log_record(record: str) -> Optional[CommitHandle]:
    """Parse one LOG_FORMAT line into a CommitHandle."""
    fields = record.split("\x00")
    if len(fields) != 4 or not fields[0]:
        return None
    sha, timestamp, author_name, author_email = fields
    return CommitHandle(
        sha=sha,
        committer_date=datetime.fromtimestamp(int(timestamp), tz=timezone.utc),
        author_name=author_name,
        author_email=author_email,
    )


def parse_blame_porcelain(output: str) -> Optional[CommitHandle]:
    """
    Extract the blamed commit from `git blame --porcelain` output for one line.

    The first header line is "<sha> <orig-line> <final-line> <count>",
    followed by "key value" lines up to the tab-prefixed source line.
    Uncommitted lines (all-zero sha) yield None.
    """
    lines = output.splitlines()
    if not lines:
        return None
    sha = lines[0].split(" ", 1)[0]
    if not sha or sha == NULL_SHA:
        return None

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        if line.startswith("\t"):
            break
        key, _, value = line.partition(" ")
        headers[key] = value

    if "committer-time" not in headers:
        return None
    return CommitHandle(
        sha=sha,
        committer_date=datetime.fromtimestamp(int(headers["committer-time"]), tz=timezone.utc),
        author_name=headers.get("author", ""),
        author_email=headers.get("author-mail", "").strip("<>"),
    )


# ---------------------------------------------------------------------------
# Git Mirror
# ---------------------------------------------------------------------------
class GitRepository:
    """
    A project's repository, accessed through a bare mirror on local disk.

    Usage:
        repo = GitRepository("git@github.com:org/app.git", repos_dir=".storage/repos")
        repo.fetch()
        commit = repo.resolve("main")
        blamed = repo.blame(commit.sha, "app/models/user.rb", 42)
    """

    def __init__(
        self,
        repository_url: str,
        repos_dir: str = config.REPOS_DIRECTORY,
        repository_hash: Optional[str] = None,
        git_timeout: float = config.GIT_COMMAND_TIMEOUT,
        lock_timeout: float = config.MIRROR_LOCK_TIMEOUT,
    ) -> None:
        self.repository_url = repository_url
        self.identity = repository_hash or Project(repository_url=repository_url).repository_hash
        self.path = os.path.abspath(os.path.join(repos_dir, f"{self.identity}.git"))
        self.lock_path = self.path + ".lock"
        self.git_timeout = git_timeout
        self.lock_timeout = lock_timeout

    @property
    def exists(self) -> bool:
        return os.path.isdir(self.path)

    def _run_git(self, args: Sequence[str], cwd: Optional[str] = None) -> str:
        """Run git, returning stdout. Raises GitCommandError on failure or timeout."""
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=cwd or self.path,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.git_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(args, None, f"timed out after {self.git_timeout:g}s") from e
        if result.returncode != 0:
            raise GitCommandError(args, result.returncode, result.stderr or result.stdout)
        return result.stdout

    def _clone(self) -> None:
        # cloned beside the mirror and renamed in, so `exists` never sees a partial clone
        parent = os.path.dirname(self.path)
        partial = self.path + ".partial"
        os.makedirs(parent, exist_ok=True)
        if os.path.exists(partial):
            logger.warning("Removing interrupted clone at %s", partial)
            shutil.rmtree(partial)
        logger.info("Cloning mirror of %s into %s", self.repository_url, self.path)
        self._run_git(["clone", "--mirror", self.repository_url, partial], cwd=parent)
        os.rename(partial, self.path)

    def ensure_mirror(self) -> None:
        """Clone the mirror if it does not exist yet."""
        if self.exists:
            return
        with file_lock(self.lock_path, self.lock_timeout):
            if not self.exists:
                self._clone()

    def fetch(self) -> None:
        """Bring the mirror up to date. Serialized across processes by the mirror lock."""
        with file_lock(self.lock_path, self.lock_timeout):
            if not self.exists:
                self._clone()
                return
            logger.info("Fetching %s", self.repository_url)
            self._run_git(["fetch", "--prune", "origin"])

    def resolve(self, revision: str) -> Optional[CommitHandle]:
        """
        Look up a commit by any revision expression git understands.

        Returns
        -------
        CommitHandle | None
            None when the mirror does not know the revision.
        """
        if not revision:
            return None
        self.ensure_mirror()
        try:
            sha = self._run_git(["rev-parse", "--verify", "--quiet", f"{revision}^{{commit}}"]).strip()
        except GitCommandError as e:
            if e.returncode is None:
                raise
            return None
        output = self._run_git(["show", "-s", f"--format={LOG_FORMAT}", sha])
        return parse_log_record(output.strip("\n"))

    def blame(self, revision: str, file: str, line: int) -> Optional[CommitHandle]:
        """
        Find the commit that last touched file:line as of revision.

        Moves and copies within and across files are followed (-M -C).

        Raises
        ------
        BlameUnavailable
            When git cannot blame the line (unknown revision or path, line out
            of range, timeout).
        """
        self.ensure_mirror()
        args = ["blame", "--porcelain", "-M", "-C", "-L", f"{line},{line}", revision, "--", file]
        try:
            output = self._run_git(args)
        except GitCommandError as e:
            raise BlameUnavailable(e.command, e.returncode, e.stderr) from e
        return parse_blame_porcelain(output)

    def commits_from(self, revision: str, limit: int, skip: int = 0) -> List[CommitHandle]:
        """One page of the history reachable from revision, newest first."""
        self.ensure_mirror()
        output = self._run_git([
            "log", f"--format={LOG_FORMAT}", f"--max-count={limit}", f"--skip={skip}", revision, "--",
        ])
        commits = []
        for record in output.splitlines():
            commit = parse_log_record(record)
            if commit:
                commits.append(commit)
        return commits


class RepositoryFactory:
    """
    Hands out one GitRepository per repository hash for the life of the process.
    """

    def __init__(
        self,
        repos_dir: str = config.REPOS_DIRECTORY,
        git_timeout: float = config.GIT_COMMAND_TIMEOUT,
        lock_timeout: float = config.MIRROR_LOCK_TIMEOUT,
    ) -> None:
        self.repos_dir = repos_dir
        self.git_timeout = git_timeout
        self.lock_timeout = lock_timeout
        self._repositories: Dict[str, GitRepository] = {}
        self._lock = threading.Lock()

    def for_project(self, project: Project) -> GitRepository:
        key = project.repository_hash
        with self._lock:
            repo = self._repositories.get(key)
            if repo is None:
                repo = GitRepository(
                    project.repository_url,
                    repos_dir=self.repos_dir,
                    repository_hash=key,
                    git_timeout=self.git_timeout,
                    lock_timeout=self.lock_timeout,
                )
                self._repositories[key] = repo
            return repo
