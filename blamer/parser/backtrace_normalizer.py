"""
Backtrace Normalizer
====================
Translates inbound backtrace payloads into the closed frame union, and
converts frames into the (file, line) pair stored on a Bug.

Accepted encodings:
    1. Current — [{"name": .., "faulted": .., "backtrace": [frame dict, ...]}, ...]
       Frame dicts dispatch on their "type" key:
           (absent)             → NormalFrame
           "address"            → AddressFrame
           "minified"/"js:hosted" → MinifiedFrame
           "obfuscated"         → ObfuscatedFrame
           anything else        → UnknownFrame
    2. Legacy — [[name, faulted, trace], ...] where each trace element is an array:
           [file, line, symbol]                               → NormalFrame
           ["_RETURN_ADDRESS_", address]                      → AddressFrame
           ["_JS_ASSET_", url, line, column, symbol, context] → MinifiedFrame
           ["_JAVA_", file, line, symbol, class]              → ObfuscatedFrame

Contract:
    - Runs once at the ingestion boundary. Nothing downstream sees raw arrays.
    - Unknown legacy sentinels raise InvalidBacktraceError.
"""
import logging
from typing import Any, List, Optional, Sequence, Tuple

from blamer.core.constants import (
    LEGACY_ADDRESS,
    LEGACY_JAVA,
    LEGACY_JS_ASSET,
    UNKNOWN_FILE,
)
from blamer.core.errors import InvalidBacktraceError
from blamer.models.backtrace import (
    AddressFrame,
    Backtrace,
    Frame,
    MinifiedFrame,
    NormalFrame,
    ObfuscatedFrame,
    UnknownFrame,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Frame Parsing
# ---------------------------------------------------------------------------
def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def parse_frame(raw: dict) -> Frame:
    """
    Build a frame variant from a current-format frame dict.

    Parameters
    ----------
    raw : dict
        Frame as received from a client library.

    Returns
    -------
    Frame
        One of the five frame variants.
    """
    kind = raw.get("type")
    try:
        if kind is None:
            return NormalFrame(
                file=raw.get("file") or "",
                line=_int_or_none(raw.get("line")),
                symbol=raw.get("symbol"),
            )
        if kind == "address":
            return AddressFrame(address=int(raw["address"]))
        if kind in ("minified", "js:hosted"):
            return MinifiedFrame(
                url=raw.get("url") or "",
                line=_int_or_none(raw.get("line")),
                column=_int_or_none(raw.get("column")),
                symbol=raw.get("symbol"),
                context=raw.get("context"),
            )
        if kind == "obfuscated":
            return ObfuscatedFrame(
                file=raw.get("file") or "",
                line=int(raw["line"]),
                symbol=raw.get("symbol"),
                class_name=raw.get("class"),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidBacktraceError(f"Malformed {kind or 'normal'} frame {raw!r}: {e}") from e

    return UnknownFrame(type=str(kind), raw=dict(raw))


def convert_legacy_frame(element: Sequence[Any]) -> Frame:
    """Convert one array-encoded frame into a frame variant."""
    if len(element) == 3:
        return NormalFrame(file=element[0] or "", line=_int_or_none(element[1]), symbol=element[2])

    sentinel = element[0] if element else None
    padded = list(element) + [None] * 6
    if sentinel == LEGACY_ADDRESS:
        return AddressFrame(address=int(padded[1]))
    if sentinel == LEGACY_JS_ASSET:
        return MinifiedFrame(
            url=padded[1] or "",
            line=_int_or_none(padded[2]),
            column=_int_or_none(padded[3]),
            symbol=padded[4],
            context=padded[5],
        )
    if sentinel == LEGACY_JAVA:
        return ObfuscatedFrame(
            file=padded[1] or "",
            line=int(padded[2]),
            symbol=padded[3],
            class_name=padded[4],
        )
    raise InvalidBacktraceError(f"Unknown special legacy backtrace format {sentinel!r}")


# ---------------------------------------------------------------------------
# Backtrace Lists
# ---------------------------------------------------------------------------
def normalize_backtraces(raw: Optional[List[Any]]) -> List[Backtrace]:
    """
    Convert a backtrace list in either encoding into Backtrace models.

    Parameters
    ----------
    raw : list
        Backtraces as received in an occurrence payload.

    Returns
    -------
    list[Backtrace]
        Normalized backtraces, in the order received.
    """
    if not raw:
        return []

    if isinstance(raw[0], Backtrace):
        return list(raw)

    if isinstance(raw[0], dict):
        return [
            Backtrace(
                name=str(bt.get("name") or ""),
                faulted=bool(bt.get("faulted")),
                frames=[parse_frame(f) for f in (bt.get("backtrace") or [])],
            )
            for bt in raw
        ]

    logger.debug("Converting %d legacy-format backtraces", len(raw))
    result = []
    for entry in raw:
        try:
            name, faulted, trace = entry
        except (TypeError, ValueError) as e:
            raise InvalidBacktraceError(f"Malformed legacy backtrace {entry!r}") from e
        result.append(Backtrace(
            name=str(name or ""),
            faulted=bool(faulted),
            frames=[convert_legacy_frame(el) for el in (trace or [])],
        ))
    return result


def frame_to_dict(frame: Frame) -> dict:
    """Inverse of parse_frame: the current-format dict for a frame."""
    if isinstance(frame, NormalFrame):
        return {"file": frame.file, "line": frame.line, "symbol": frame.symbol}
    if isinstance(frame, AddressFrame):
        return {"type": "address", "address": frame.address}
    if isinstance(frame, MinifiedFrame):
        return {
            "type": "minified",
            "url": frame.url,
            "line": frame.line,
            "column": frame.column,
            "symbol": frame.symbol,
            "context": frame.context,
        }
    if isinstance(frame, ObfuscatedFrame):
        return {
            "type": "obfuscated",
            "file": frame.file,
            "line": frame.line,
            "symbol": frame.symbol,
            "class": frame.class_name,
        }
    return dict(frame.raw, type=frame.type)


def serialize_backtraces(backtraces: List[Backtrace]) -> List[dict]:
    """Current-format representation of backtraces, readable by normalize_backtraces."""
    return [
        {"name": bt.name, "faulted": bt.faulted, "backtrace": [frame_to_dict(f) for f in bt.frames]}
        for bt in backtraces
    ]


# ---------------------------------------------------------------------------
# Display Conversion
# ---------------------------------------------------------------------------
def display_location(frame: Frame) -> Tuple[str, int, bool]:
    """
    Convert a frame into the (file, line) stored on a Bug.

    Returns
    -------
    tuple[str, int, bool]
        (file, line, special). special is True when the location is synthetic.
    """
    if isinstance(frame, NormalFrame):
        return frame.file, frame.line, False
    if isinstance(frame, ObfuscatedFrame):
        # obfuscated Java line numbers can arrive negative
        return frame.file, abs(frame.line), True
    if isinstance(frame, MinifiedFrame):
        return frame.url, frame.line, True
    if isinstance(frame, AddressFrame):
        return f"0x{frame.address:08X}", 1, True
    return UNKNOWN_FILE, 1, True
