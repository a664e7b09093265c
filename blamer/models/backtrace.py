"""
Backtrace Model
===============
Pydantic models for the closed set of backtrace frame shapes.

Variants:
    NormalFrame      — fully symbolicated {file, line, symbol}
    AddressFrame     — unsymbolicated return address
    MinifiedFrame    — JavaScript frame that was not source-mapped
    ObfuscatedFrame  — Java frame that was not de-obfuscated
    UnknownFrame     — any other tagged frame, kept verbatim

Raw payloads (including the legacy array encoding) are translated into these
variants once, at ingestion (see parser/backtrace_normalizer.py).
Downstream code dispatches on the variant class, never on raw dicts.
"""
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class NormalFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str
    line: Optional[int] = None
    symbol: Optional[str] = None


class AddressFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["address"] = "address"
    address: int


class MinifiedFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["minified"] = "minified"
    url: str
    line: Optional[int] = None
    column: Optional[int] = None
    symbol: Optional[str] = None
    context: Optional[Any] = None


class ObfuscatedFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["obfuscated"] = "obfuscated"
    file: str
    line: int
    symbol: Optional[str] = None
    class_name: Optional[str] = None


class UnknownFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    raw: dict = Field(default_factory=dict)


Frame = Union[NormalFrame, AddressFrame, MinifiedFrame, ObfuscatedFrame, UnknownFrame]


class Backtrace(BaseModel):
    """One thread / fiber of an occurrence. Frames are in reported order."""
    name: str = ""
    faulted: bool = False
    frames: List[Frame] = Field(default_factory=list)
