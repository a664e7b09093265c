"""
Project Model
=============
Pydantic models for a Project and its Environments.

Fields (Project):
    repository_url              — URL of the Git repository (mirrored locally)
    filter_paths                — path prefixes ignored when choosing the relevant frame
    whitelist_paths             — path prefixes never ignored (override filter_paths)
    disable_message_filtering   — store raw messages instead of sanitized templates
    blamer_type                 — "recency" or "message" (git-backed), or "simple" (git-free)
"""
import hashlib
from typing import List, Optional

from pydantic import BaseModel, Field

from blamer.core.constants import (
    BLAMER_RECENCY,
    META_FILE_NAMES,
    PATH_FILTERED,
    PATH_LIBRARY,
    PATH_PROJECT,
)


class Project(BaseModel):
    id: Optional[int] = None
    name: str = ""
    repository_url: str
    filter_paths: List[str] = Field(default_factory=list)
    whitelist_paths: List[str] = Field(default_factory=list)
    disable_message_filtering: bool = False
    blamer_type: str = BLAMER_RECENCY

    @property
    def repository_hash(self) -> str:
        """SHA1 of the repository URL; identifies the mirror and its blame cache entries."""
        return hashlib.sha1(self.repository_url.encode("utf-8")).hexdigest()

    def path_type(self, file: Optional[str]) -> str:
        """
        Classify a backtrace file path.

        The project root must already have been stripped from the path.

        Parameters
        ----------
        file : str
            Path as reported in the backtrace.

        Returns
        -------
        str
            PATH_LIBRARY for paths outside the project root or pseudo file
            names, PATH_FILTERED for project paths under a filter prefix and
            no whitelist prefix, otherwise PATH_PROJECT.
        """
        if not file or file.startswith("/"):
            return PATH_LIBRARY
        if file in META_FILE_NAMES:
            return PATH_LIBRARY
        if any(file.startswith(p) for p in self.filter_paths) and \
                not any(file.startswith(p) for p in self.whitelist_paths):
            return PATH_FILTERED
        return PATH_PROJECT


class Environment(BaseModel):
    id: int
    name: str
    project: Project
