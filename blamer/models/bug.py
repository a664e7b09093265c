"""
Bug Model
=========
Pydantic models for the grouping entity and the criteria that identify it.

Identity:
    Within one environment, (class_name, file, line, blamed_revision) plus the
    deploy scoping rules identify an open Bug. file/line are the "relevant"
    location chosen by the blamer and never change after creation.

Lifecycle fields:
    fixed / fixed_at / fix_deployed — fix state; reopen() clears all three
    resolution_revision             — commit that fixed the bug
    fixing_deploy_id                — deploy that shipped resolution_revision
    duplicate_of_id                 — permanent once set (see BugStore.mark_as_duplicate)
    modifier                        — provenance of the last state change ("occurrence:42", "user:sancho")
    message_key                     — message fragment the bug was created for (message strategy only)
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from blamer.utils.clock import as_utc, utcnow


class BugCriteria(BaseModel):
    """Search criteria for a Bug. A None blamed_revision matches only None."""
    model_config = ConfigDict(frozen=True)

    class_name: str
    file: str
    line: Optional[int] = None
    blamed_revision: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump()


class Bug(BaseModel):
    id: Optional[int] = None
    number: Optional[int] = None
    environment_id: int

    class_name: str
    file: str
    line: Optional[int] = None
    blamed_revision: Optional[str] = None
    deploy_id: Optional[int] = None

    revision: Optional[str] = None
    client: Optional[str] = None
    message_template: str = ""
    special_file: bool = False

    fixed: bool = False
    fixed_at: Optional[datetime] = None
    fix_deployed: bool = False
    resolution_revision: Optional[str] = None

    fixing_deploy_id: Optional[int] = None

    duplicate_of_id: Optional[int] = None
    modifier: Optional[str] = None
    message_key: Optional[str] = None

    @field_validator("fixed_at")
    @classmethod
    def fixed_at_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of_id is not None

    @property
    def status(self) -> str:
        if self.fix_deployed:
            return "fix_deployed"
        if self.fixed:
            return "fixed"
        return "open"

    @property
    def criteria(self) -> BugCriteria:
        return BugCriteria(
            class_name=self.class_name,
            file=self.file,
            line=self.line,
            blamed_revision=self.blamed_revision,
        )

    def reopen(self, cause: Optional[str] = None) -> None:
        """Mark as unfixed, recording what caused the reopen."""
        self.fixed = False
        self.fixed_at = None
        self.fix_deployed = False
        self.modifier = cause

    def mark_fixed(self, resolution_revision: Optional[str] = None,
                   at: Optional[datetime] = None, cause: Optional[str] = None) -> None:
        self.fixed = True
        self.fixed_at = as_utc(at) if at else utcnow()
        self.resolution_revision = resolution_revision
        self.modifier = cause

    def mark_fix_deployed(self, deploy_id: Optional[int]) -> None:
        self.fix_deployed = True
        self.fixing_deploy_id = deploy_id


class BugResolution(BaseModel):
    """
    Outcome of a find-or-create.

    deploy_repointed is True when an open bug from another deploy was adopted
    and its deploy_id advanced to the occurrence's deploy; that write has
    already been persisted.
    """
    bug: Bug
    created: bool = False
    deploy_repointed: bool = False
