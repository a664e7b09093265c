"""
Commit Model
Immutable handle for a resolved git commit, as returned by the Repository Access Port.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class CommitHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    sha: str
    committer_date: datetime
    author_name: str = ""
    author_email: str = ""
