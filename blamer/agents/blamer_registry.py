"""
Blamer Registry
Maps a project's blamer_type to the matching strategy class.
"""
from typing import Dict, Type

from blamer.agents.base_blamer import BaseBlamer
from blamer.agents.message_blamer import MessageBlamer
from blamer.agents.recency_blamer import RecencyBlamer
from blamer.agents.simple_blamer import SimpleBlamer
from blamer.core.constants import BLAMER_MESSAGE, BLAMER_RECENCY, BLAMER_SIMPLE
from blamer.models.project import Project

BLAMERS: Dict[str, Type[BaseBlamer]] = {
    BLAMER_RECENCY: RecencyBlamer,
    BLAMER_SIMPLE: SimpleBlamer,
    BLAMER_MESSAGE: MessageBlamer,
}


def blamer_for(project: Project) -> Type[BaseBlamer]:
    """Strategy class for a project. Unknown types are a configuration error."""
    try:
        return BLAMERS[project.blamer_type]
    except KeyError:
        raise ValueError(f"Unknown blamer type {project.blamer_type!r} for project {project.name}") from None
