"""
Occurrence Model
================
Pydantic model for one reported exception instance.

Fields:
    environment     — environment (and through it, project) the report belongs to
    class_name      — exception class name
    revision        — commit the error occurred against (may be None when only a build was reported)
    deploy          — deploy the report was tied to (versioned / distributed projects only)
    backtraces      — normalized backtraces; exactly one should be faulted
    bug_id          — set by the caller after the blamer picks a Bug
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from blamer.models.backtrace import Backtrace, Frame
from blamer.models.deploy import Deploy
from blamer.models.project import Environment
from blamer.utils.clock import as_utc, utcnow


class Occurrence(BaseModel):
    id: Optional[int] = None
    bug_id: Optional[int] = None

    environment: Environment
    class_name: str
    revision: Optional[str] = None
    deploy: Optional[Deploy] = None

    client: str = ""
    message: str = ""
    backtraces: List[Backtrace] = Field(default_factory=list)
    occurred_at: datetime = Field(default_factory=utcnow)

    @field_validator("occurred_at")
    @classmethod
    def occurred_at_in_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def faulted_backtrace(self) -> List[Frame]:
        """Frames of the faulted backtrace, or an empty list when none is flagged."""
        for bt in self.backtraces:
            if bt.faulted:
                return list(bt.frames)
        return []

    @property
    def provenance(self) -> str:
        return f"occurrence:{self.id}" if self.id is not None else "occurrence"
