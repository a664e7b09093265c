"""
Backtrace Scorer
================
Picks the backtrace line most likely to be at fault (the "relevant" file and line).

Candidates:
    Frames of the faulted backtrace that are fully symbolicated, classified
    as project files by the Project, and carry a line number.

Score (per blamed candidate, position i of n blamed candidates):
    height  = (n - i) / n
    recency = 1 - (latest - committed) / (latest - earliest)
              where latest is the occurrence's commit date and earliest the
              oldest blamed commit date among candidates; 0 when the span is
              empty or a date is missing
    score   = 0.5 * height² + 0.5 * recency

Fallbacks:
    no candidates          → first frame of the unfiltered backtrace, no blame
    no candidate is blamed → first candidate, no blame

Ties go to the candidate that comes last in the backtrace (stable sort on
score, highest taken from the end).
"""
import logging
from datetime import datetime
from typing import List, NamedTuple, Optional, Sequence, Tuple

from blamer.core.constants import PATH_PROJECT, UNKNOWN_FILE
from blamer.models.backtrace import Frame, NormalFrame
from blamer.models.commit import CommitHandle
from blamer.models.project import Project
from blamer.parser.backtrace_normalizer import display_location
from blamer.services.blame_cache import BlameCache
from blamer.services.git_repository import RepositoryPort

logger = logging.getLogger(__name__)


class RelevantLocation(NamedTuple):
    file: str
    line: Optional[int]
    special: bool
    blamed_commit: Optional[CommitHandle] = None

    @property
    def blamed_revision(self) -> Optional[str]:
        return self.blamed_commit.sha if self.blamed_commit else None


def candidate_frames(project: Project, frames: Sequence[Frame]) -> List[NormalFrame]:
    """Frames eligible for blame: symbolicated project files with a line number."""
    return [
        f for f in frames
        if isinstance(f, NormalFrame)
        and project.path_type(f.file) == PATH_PROJECT
        and f.line is not None
    ]


def score_backtrace_line(index: int, size: int, commit_date: Optional[datetime],
                         latest_date: Optional[datetime], earliest_date: Optional[datetime]) -> float:
    """
    Score one blamed candidate.

    Parameters
    ----------
    index : int
        Position among the blamed candidates, 0 for the first.
    size : int
        Number of blamed candidates.
    commit_date : datetime
        Committer date of the commit blamed for this line.
    latest_date : datetime
        Committer date of the occurrence's own revision.
    earliest_date : datetime
        Oldest committer date among the blamed candidates.

    Returns
    -------
    float
        Score in roughly [0, 1]; higher means more likely at fault.
    """
    height = (size - index) / float(size)
    recency = 0.0
    if commit_date and latest_date and earliest_date:
        span = (latest_date - earliest_date).total_seconds()
        if span != 0:
            recency = 1 - (latest_date - commit_date).total_seconds() / span
    return 0.5 * height ** 2 + 0.5 * recency


def select_best(blamed: Sequence[Tuple[NormalFrame, CommitHandle]],
                occurrence_commit: CommitHandle) -> Tuple[NormalFrame, CommitHandle]:
    """Return the highest-scoring (frame, commit) pair; later pairs win ties."""
    earliest = min(commit.committer_date for _, commit in blamed)
    size = len(blamed)
    scored = [
        (score_backtrace_line(i, size, commit.committer_date, occurrence_commit.committer_date, earliest), i)
        for i, (_, commit) in enumerate(blamed)
    ]
    # stable sort keeps backtrace order among equal scores, so the last one wins
    _, best = sorted(scored, key=lambda pair: pair[0])[-1]
    return blamed[best]


def find_relevant_location(
    project: Project,
    repository: RepositoryPort,
    blame_cache: BlameCache,
    frames: Sequence[Frame],
    occurrence_commit: CommitHandle,
) -> RelevantLocation:
    """
    Choose the relevant file and line of a faulted backtrace.

    Parameters
    ----------
    project : Project
        Owner of the backtrace; classifies file paths.
    repository : RepositoryPort
        Repository blamed through the cache.
    blame_cache : BlameCache
        Cache consulted for each candidate line.
    frames : list[Frame]
        Faulted backtrace frames, in reported order.
    occurrence_commit : CommitHandle
        Commit the occurrence happened at.

    Returns
    -------
    RelevantLocation
        (file, line, special, blamed_commit).
    """
    if not frames:
        return RelevantLocation(UNKNOWN_FILE, 1, True, None)

    candidates = candidate_frames(project, frames)
    if not candidates:
        logger.debug("No project frames in backtrace, using first frame")
        return RelevantLocation(*display_location(frames[0]), None)

    with_blame = [
        (frame, blame_cache.blame(repository, occurrence_commit.sha, frame.file, frame.line))
        for frame in candidates
    ]
    blamed = [(frame, commit) for frame, commit in with_blame if commit is not None]
    if not blamed:
        logger.debug("No blame for any project frame, using first project frame")
        return RelevantLocation(*display_location(candidates[0]), None)

    frame, commit = select_best(blamed, occurrence_commit)
    return RelevantLocation(*display_location(frame), commit)
