"""
Message Filter
==============
Reduces a raw exception message to a stable template.

Steps:
    1. Ask the template dictionary for a known shape of the class's messages.
    2. Otherwise redact the generic variable fragments, in this order:
           #<Foo bar: 1, baz: 2>   → #<Foo [ATTRIBUTES]>
           #<Foo something>        → #<Foo [DESCRIPTION]>
           #<Foo:0x007fedfa0aa920> → #<Foo:[ADDRESS]>
           40-digit hex            → [SHA1]
           a.b.c.d                 → [IPv4]
           numbers                 → [NUMBER]
       Numbers run last so they never eat the digits of an address or IP.
    3. Truncate to MAX_MESSAGE_LENGTH characters.

    Messages stored on occurrences instead keep the error portion matched by
    the dictionary, with personal data (e-mail, phone, card numbers) masked.
"""
import logging
import re
from typing import List, Optional, Tuple

from blamer.core.constants import (
    MAX_MESSAGE_LENGTH,
    PLACEHOLDER_ADDRESS,
    PLACEHOLDER_ATTRIBUTES,
    PLACEHOLDER_CARD,
    PLACEHOLDER_DESCRIPTION,
    PLACEHOLDER_EMAIL,
    PLACEHOLDER_IPV4,
    PLACEHOLDER_NUMBER,
    PLACEHOLDER_PHONE,
    PLACEHOLDER_SHA1,
)
from blamer.parser.message_templates import MessageTemplateMatcher

logger = logging.getLogger(__name__)

GENERIC_FILTERS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"#<([^\s]+) (\w+: .+?(, )?)+>"), rf"#<\1 {PLACEHOLDER_ATTRIBUTES}>"),
    # skips fragments the attributed shape already rewrote
    (re.compile(r"#<([^\s]+) (?!\[ATTRIBUTES\]>).+?>"), rf"#<\1 {PLACEHOLDER_DESCRIPTION}>"),
    (re.compile(r"#<(.+?):0x[0-9a-f]+>"), rf"#<\1:{PLACEHOLDER_ADDRESS}>"),
    (re.compile(r"\b[0-9a-f]{40}\b"), PLACEHOLDER_SHA1),
    (re.compile(r"\b\d+\.\d+\.\d+\.\d+\b"), PLACEHOLDER_IPV4),
    (re.compile(r"\b-?\d+(\.\d+)?\b"), PLACEHOLDER_NUMBER),
]

# Personal data that may appear in occurrence messages. Stored occurrences
# keep their message, so these are masked before saving.
PII_FILTERS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,4}\b", re.IGNORECASE), PLACEHOLDER_EMAIL),
    (re.compile(
        r"\b(?:(?:\+?1\s*(?:[.-]\s*)?)?"
        r"(?:\(\s*([2-9]1[02-9]|[2-9][02-8]1|[2-9][02-8][02-9])\s*\)|([2-9]1[02-9]|[2-9][02-8]1|[2-9][02-8][02-9]))"
        r"\s*(?:[.-]\s*)?)?([2-9]1[02-9]|[2-9][02-9]1|[2-9][02-9]{2})\s*(?:[.-]\s*)?([0-9]{4})"
        r"(?:\s*(?:#|x\.?|ext\.?|extension)\s*(\d+))?\b"
    ), PLACEHOLDER_PHONE),
    (re.compile(r"\b[0-9][0-9\-]{6,}[0-9]\b"), PLACEHOLDER_CARD),
]


def truncate(message: Optional[str], limit: int = MAX_MESSAGE_LENGTH) -> str:
    return (message or "")[:limit]


def filter_pii(text: str) -> str:
    """Mask e-mail addresses, phone numbers and card or account numbers."""
    for rx, replacement in PII_FILTERS:
        text = rx.sub(replacement, text)
    return text


def redact(message: str) -> str:
    """Apply the generic redaction patterns in order."""
    for rx, replacement in GENERIC_FILTERS:
        message = rx.sub(replacement, message)
    return message


class MessageFilter:
    """
    Produces the message template stored on a Bug.

    Constructed once by the composition root around a MessageTemplateMatcher.
    """

    def __init__(self, matcher: Optional[MessageTemplateMatcher] = None) -> None:
        self.matcher = matcher or MessageTemplateMatcher()

    def filter(self, class_name: str, message: Optional[str], disabled: bool = False) -> str:
        """
        Sanitize a message.

        Parameters
        ----------
        class_name : str
            Exception class name, used to look up known message shapes.
        message : str
            Raw exception message.
        disabled : bool
            When True (the project turned filtering off) only truncation applies.

        Returns
        -------
        str
            Sanitized message, at most MAX_MESSAGE_LENGTH characters.
        """
        message = message or ""
        if disabled:
            return truncate(message)

        template = self.matcher.sanitized_message(class_name, message)
        if template is None:
            template = redact(message)
        else:
            logger.debug("Message of %s matched a known template", class_name)
        return truncate(template)

    def occurrence_message(self, class_name: str, message: Optional[str], disabled: bool = False) -> str:
        """
        Message stored on an Occurrence: the error portion matched by the
        template dictionary (the whole message when nothing matches), with
        personal data masked, truncated.
        """
        message = message or ""
        if disabled:
            return truncate(message)
        return truncate(filter_pii(self.matcher.matched_substring(class_name, message)))
