"""
Blame Model
Pydantic model for one blame cache entry: (repository, revision, file, line) → blamed revision.
"""
from pydantic import BaseModel, ConfigDict


class BlameEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    repository_hash: str
    revision: str
    file: str
    line: int
    blamed_revision: str
    updated_at: float = 0.0
