"""
Message Blamer
==============
Git-backed strategy that also tells bugs apart by exception message.

The relevant file and line are chosen exactly as RecencyBlamer chooses them,
but the blamed commit is not part of the criteria. Instead, for hosted
projects:

    1. the occurrence message is cut down to its first run of characters
       without a double quote ('undefined method "foo" for nil' → 'undefined method '),
    2. the bug at the same class name, file and line holding an occurrence
       whose stored message contains that fragment is reused,
    3. otherwise a new bug is created for the fragment.

Versioned projects (occurrences with a deploy) are matched on class name,
file and line within the deploy, like every other strategy.
"""
import re
from typing import Any, Dict

from blamer.agents.recency_blamer import RecencyBlamer
from blamer.models.bug import BugCriteria, BugResolution

UNQUOTED_RUN = re.compile(r'[^"]+')


def message_fragment(message: str) -> str:
    """First run of the message without a double quote; empty when there is none."""
    match = UNQUOTED_RUN.search(message or "")
    return match.group(0) if match else ""


class MessageBlamer(RecencyBlamer):

    def bug_search_criteria(self) -> BugCriteria:
        return super().bug_search_criteria().model_copy(update={"blamed_revision": None})

    def find_or_create_bug(self) -> BugResolution:
        if self.deploy is None:
            self.occurrence.message = message_fragment(self.occurrence.message)
        return super().find_or_create_bug()

    def locate_bug(self, criteria: BugCriteria, attributes: Dict[str, Any]) -> BugResolution:
        if self.deploy is not None:
            return super().locate_bug(criteria, attributes)
        # compared against occurrence messages as they are stored
        message_key = self.message_filter.occurrence_message(
            self.occurrence.class_name,
            self.occurrence.message,
            disabled=self.project.disable_message_filtering,
        )
        return self.store.find_or_create_message_bug(self.environment.id, criteria, message_key, attributes)
