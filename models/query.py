from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from metrics.intervals import to_utc


class QueryContext(BaseModel):
    """Which project and which reporting window a weekly report covers."""

    collection_name: str = Field(min_length=1)
    project: str = Field(min_length=1)
    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_datetime(cls, value: datetime) -> datetime:
        return to_utc(value)

    def match(self) -> dict:
        """Base document filter shared by every collection."""
        return {"collection_name": self.collection_name, "project": self.project}


class WorkItemFilter(BaseModel):
    label: str
    values: List[str] = Field(default_factory=list)


class WorkItemQuery(BaseModel):
    work_item_type: str
    filters: Optional[List[WorkItemFilter]] = None
    priority: Optional[List[int]] = None
