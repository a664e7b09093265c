"""
Simple Blamer
Git-free strategy: occurrences match when their faulted backtraces are identical.
The bug's file is a digest of the whole faulted backtrace, so it is always special.
"""
import hashlib
import json

from blamer.agents.base_blamer import BaseBlamer
from blamer.core.constants import SIMPLE_BLAME_PREFIX
from blamer.models.bug import BugCriteria
from blamer.parser.backtrace_normalizer import frame_to_dict


def backtrace_digest(frames) -> str:
    canonical = json.dumps([frame_to_dict(f) for f in frames], sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class SimpleBlamer(BaseBlamer):

    def bug_search_criteria(self) -> BugCriteria:
        self.special = True
        return BugCriteria(
            class_name=self.occurrence.class_name,
            file=SIMPLE_BLAME_PREFIX + backtrace_digest(self.occurrence.faulted_backtrace),
            line=1,
            blamed_revision=None,
        )
