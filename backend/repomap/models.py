# backend/repomap/models.py
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime(timezone=True) that always hands back aware UTC values.

    SQLite keeps no offset on some SQLAlchemy releases, so naive values read
    back are UTC by construction.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Forward-only. Pending -> Failed covers jobs that die before they start
# (scheduling failure, restart recovery).
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


class Job(SQLModel, table=True):
    id: str = Field(primary_key=True, nullable=False)
    source_url: str = Field(nullable=False)
    display_name: str = Field(nullable=False)
    branch: str = Field(default="main", nullable=False)
    status: str = Field(default=JobStatus.PENDING.value, nullable=False, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    error_message: Optional[str] = Field(default=None)
    summary: Optional[str] = Field(default=None)  # JSON string, set once completed

    def summary_data(self) -> Optional[dict]:
        if not self.summary:
            return None
        return json.loads(self.summary)


class Node(SQLModel, table=True):
    # one row per path within a job
    __table_args__ = (UniqueConstraint("job_id", "relative_path"),)

    id: str = Field(primary_key=True, nullable=False)
    job_id: str = Field(foreign_key="job.id", ondelete="CASCADE", nullable=False, index=True)
    relative_path: str = Field(nullable=False)
    name: str = Field(nullable=False)
    extension: Optional[str] = Field(default=None)
    parent_id: Optional[str] = Field(default=None, foreign_key="node.id")
    is_directory: bool = Field(default=False, nullable=False)
    depth: int = Field(default=0, nullable=False)
    size_bytes: int = Field(default=0, nullable=False)
