"""
Message Templates
=================
Dictionary of known exception message shapes, keyed by exception class name.

File format (YAML):
    Mysql::Error:
      - ["Duplicate entry '.*?' for key '.*?'", "Duplicate entry '[STRING]' for key '[STRING]'"]
    ActiveRecord::JDBCError:
      - Mysql::Error          # reference: use Mysql::Error's list at this position
      - PGError

Each list entry is either a [pattern, replacement] pair or the name of
another class whose list is spliced in at that position (followed
recursively). Patterns match anywhere in the message; the first match wins.

Contract:
    - Loaded once by the composition root; instances are passed around, never global.
    - A reference cycle is ignored after the first visit, never looped.
"""
import logging
import re
from typing import Dict, Iterator, List, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

TemplateEntry = Union[str, Tuple[re.Pattern, str]]


class MessageTemplateMatcher:
    """
    Matches exception messages against the template dictionary.

    Usage:
        matcher = MessageTemplateMatcher.from_yaml("message_templates.yml")
        matcher.sanitized_message("Mysql::Error", message)  # → filtered template or None
        matcher.matched_substring("Mysql::Error", message)  # → error portion of message
    """

    def __init__(self, templates: Optional[Dict[str, list]] = None) -> None:
        self._templates: Dict[str, List[TemplateEntry]] = {}
        for class_name, entries in (templates or {}).items():
            self._templates[class_name] = [self._compile(class_name, e) for e in (entries or [])]

    @classmethod
    def from_yaml(cls, path: str) -> "MessageTemplateMatcher":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Message template file {path} must contain a mapping")
        matcher = cls(data)
        logger.info("Loaded message templates for %d exception classes from %s", len(data), path)
        return matcher

    @staticmethod
    def _compile(class_name: str, entry) -> TemplateEntry:
        if isinstance(entry, str):
            return entry
        if isinstance(entry, (list, tuple)) and len(entry) == 2:
            pattern, replacement = entry
            return re.compile(str(pattern)), str(replacement)
        raise ValueError(f"Invalid message template entry for {class_name}: {entry!r}")

    def _iterate(self, class_name: str, seen: Optional[set] = None) -> Iterator[Tuple[re.Pattern, str]]:
        seen = set() if seen is None else seen
        if class_name in seen:
            return
        seen.add(class_name)
        for entry in self._templates.get(class_name, []):
            if isinstance(entry, str):
                yield from self._iterate(entry, seen)
            else:
                yield entry

    def sanitized_message(self, class_name: str, message: str) -> Optional[str]:
        """
        Return the filtered template for the first matching pattern.

        Parameters
        ----------
        class_name : str
            Exception class name.
        message : str
            Raw exception message.

        Returns
        -------
        str | None
            The replacement of the first pattern found anywhere in the
            message, or None if nothing matches.
        """
        for rx, replacement in self._iterate(class_name):
            if rx.search(message):
                return replacement
        return None

    def matched_substring(self, class_name: str, message: str) -> str:
        """
        Return only the portion of the message matched by the first matching
        pattern (e.g. the error part of a database error, without the query).
        Returns the message unchanged when nothing matches.
        """
        for rx, _ in self._iterate(class_name):
            match = rx.search(message)
            if match:
                return match.group(0)
        return message

    def __contains__(self, class_name: str) -> bool:
        return class_name in self._templates

    def __len__(self) -> int:
        return len(self._templates)
