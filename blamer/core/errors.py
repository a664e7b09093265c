"""
Errors
======
Exception taxonomy for the matching engine.

Fatal (surfaced to the ingestion caller):
    UnresolvableRevision          — no commit for the occurrence at all
    UnknownRevision               — revision unknown even after a mirror fetch
    RepositoryMirrorLockTimeout   — mirror lock not acquired in time
    InvalidOccurrenceError        — payload unusable
    InvalidBacktraceError         — unknown legacy backtrace encoding

Recovered locally:
    GitCommandError / BlameUnavailable — logged by the blame cache, treated as "no blame"

RepositoryMirrorLockTimeout is not a GitCommandError, so the
cache's recovery path can never swallow it.
"""
from typing import Optional, Sequence


class BlamerError(Exception):
    """Base class for every error raised by this package."""


class UnresolvableRevision(BlamerError):
    """Neither the occurrence nor its deploy yields a commit."""


class UnknownRevision(BlamerError):
    def __init__(self, revision: str) -> None:
        super().__init__(f"Unknown revision: {revision}")
        self.revision = revision


class RepositoryError(BlamerError):
    """Base class for Repository Access Port failures."""


class GitCommandError(RepositoryError):
    """A git subprocess failed or timed out."""

    def __init__(self, args: Sequence[str], returncode: Optional[int], stderr: str = "") -> None:
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        status = "timed out" if returncode is None else f"exited {returncode}"
        super().__init__(f"git {' '.join(self.command)} {status}: {stderr.strip()}")


class BlameUnavailable(GitCommandError):
    """`git blame` could not attribute the requested line."""


class RepositoryMirrorLockTimeout(RepositoryError):
    def __init__(self, lock_path: str, timeout: float) -> None:
        super().__init__(f"Could not lock {lock_path} within {timeout:g}s")
        self.lock_path = lock_path
        self.timeout = timeout


class InvalidBacktraceError(BlamerError, ValueError):
    pass


class InvalidOccurrenceError(BlamerError, ValueError):
    pass


class DuplicateBugError(BlamerError):
    """A rule about marking bugs as duplicates was violated."""
