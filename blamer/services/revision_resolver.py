"""
Revision Resolver
Turns a client-reported revision into a full commit SHA, fetching the mirror
once if the revision is not known locally yet.
"""
import logging

from blamer.core.errors import UnknownRevision
from blamer.services.git_repository import RepositoryPort

logger = logging.getLogger(__name__)


def resolve_revision(repository: RepositoryPort, revision: str) -> str:
    """
    Resolve a revision to a full SHA.

    Parameters
    ----------
    repository : RepositoryPort
        Repository the revision belongs to.
    revision : str
        Any revision expression (full or abbreviated SHA, branch, tag).

    Returns
    -------
    str
        The full SHA of the commit.

    Raises
    ------
    UnknownRevision
        If the revision is unknown even after fetching.
    """
    commit = repository.resolve(revision)
    if commit is None:
        logger.info("Revision %s not in mirror %s, fetching", revision, repository.identity)
        repository.fetch()
        commit = repository.resolve(revision)
    if commit is None:
        raise UnknownRevision(revision)
    return commit.sha
