"""
Deploy Model
Pydantic model for a release of a revision into an Environment.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from blamer.utils.clock import as_utc


class Deploy(BaseModel):
    id: Optional[int] = None
    environment_id: int
    revision: str
    deployed_at: datetime
    build: Optional[str] = None
    version: Optional[str] = None
    hostname: Optional[str] = None

    @field_validator("deployed_at")
    @classmethod
    def deployed_at_in_utc(cls, value: datetime) -> datetime:
        return as_utc(value)
