# backend/repomap/schemas.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ProcessRequest(BaseModel):
    repo_url: Optional[str] = Field(default=None, description="Remote repository URL to ingest")
    repo_name: Optional[str] = Field(default=None, description="Display name, derived from the URL if omitted")
    branch: Optional[str] = Field(default=None, description="Branch to clone, remote default if omitted")


class SubmitResponse(BaseModel):
    job_id: str
    source_url: str
    display_name: str
    branch: str
    status: str


class JobSummary(BaseModel):
    total_nodes: int
    total_directories: int
    total_files: int
    max_depth: int
    skipped_entries: int = 0
    processed_at: datetime


class JobRecord(BaseModel):
    id: str
    source_url: str
    display_name: str
    branch: str
    status: str
    created_at: datetime
    updated_at: datetime
    error_message: Optional[str] = None
    summary: Optional[JobSummary] = None


class JobList(BaseModel):
    jobs: List[JobRecord]
    total: int


class NodeRecord(BaseModel):
    id: str
    job_id: str
    relative_path: str
    name: str
    extension: Optional[str] = None
    parent_id: Optional[str] = None
    is_directory: bool
    depth: int
    size_bytes: int
    permalink: str


class TreeNode(BaseModel):
    id: Optional[str] = None  # None only for the synthetic root
    name: str
    path: str
    extension: Optional[str] = None
    is_directory: bool
    size: int = 0
    depth: int
    permalink: str
    children: Optional[List["TreeNode"]] = None


class JobResult(BaseModel):
    job: JobRecord
    format: str
    nodes: Optional[List[NodeRecord]] = None
    hierarchy: Optional[TreeNode] = None


class DeleteResponse(BaseModel):
    message: str
    job_id: str
    nodes_deleted: int


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    active_jobs: int
