"""
File Lock
=========
Exclusive, cross-process lock on a file, with a bounded wait.

Used to serialize clone/fetch of a repository mirror. Two workers fetching
the same bare repository at once can corrupt its refs, so every mutation of
a mirror happens under `file_lock(<mirror>.lock, timeout)`.

Running out of time raises RepositoryMirrorLockTimeout. Callers must not
catch it as a git failure.
"""
import fcntl
import logging
import os
import time
from contextlib import contextmanager
from typing import Iterator

from blamer.core.errors import RepositoryMirrorLockTimeout

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


@contextmanager
def file_lock(lock_path: str, timeout: float) -> Iterator[None]:
    """
    Hold an exclusive flock on lock_path for the duration of the block.

    Parameters
    ----------
    lock_path : str
        Lock file; created (with its directory) if missing.
    timeout : float
        Seconds to keep retrying before giving up.

    Raises
    ------
    RepositoryMirrorLockTimeout
        If the lock is still held by someone else after `timeout` seconds.
    """
    parent = os.path.dirname(lock_path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    deadline = time.monotonic() + timeout
    with open(lock_path, "a+", encoding="utf-8") as lock_file:
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    logger.error("Timed out after %.1fs waiting for %s", timeout, lock_path)
                    raise RepositoryMirrorLockTimeout(lock_path, timeout)
                time.sleep(POLL_INTERVAL)
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
