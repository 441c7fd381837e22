# backend/repomap/api.py
import time
from typing import List, Optional

from .errors import StateError, ValidationError
from .hierarchy import HierarchyBuilder, permalink
from .models import Job, JobStatus, utcnow
from .schemas import (
    DeleteResponse,
    HealthResponse,
    JobList,
    JobRecord,
    JobResult,
    NodeRecord,
    SubmitResponse,
)
from .store import JobStore
from .worker import JobCoordinator

RESULT_FORMATS = ("flat", "hierarchical")


def job_record(job: Job) -> JobRecord:
    return JobRecord(
        id=job.id,
        source_url=job.source_url,
        display_name=job.display_name,
        branch=job.branch,
        status=job.status,
        created_at=job.created_at,
        updated_at=job.updated_at,
        error_message=job.error_message,
        summary=job.summary_data(),
    )


class IngestionAPI:
    """The operations the UI layer consumes; HTTP routing lives in main.py."""

    def __init__(
        self,
        store: JobStore,
        coordinator: JobCoordinator,
        builder: Optional[HierarchyBuilder] = None,
        poll_interval: float = 2.0,
        poll_max_attempts: int = 30,
    ):
        self.store = store
        self.coordinator = coordinator
        self.builder = builder or HierarchyBuilder()
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts

    def submit(self, source_url: str, display_name: Optional[str] = None, branch: Optional[str] = None) -> SubmitResponse:
        job = self.coordinator.submit(source_url, display_name, branch)
        return SubmitResponse(
            job_id=job.id,
            source_url=job.source_url,
            display_name=job.display_name,
            branch=job.branch,
            status=job.status,
        )

    def status(self, job_id: str) -> JobRecord:
        return job_record(self.store.get_job(job_id))

    def result(self, job_id: str, format: str = "flat") -> JobResult:
        if format not in RESULT_FORMATS:
            raise ValidationError(f"Unknown result format {format!r}, expected one of {', '.join(RESULT_FORMATS)}")

        job = self.store.get_job(job_id)
        if job.status != JobStatus.COMPLETED.value:
            raise StateError(f"Job status is: {job.status}", job.status)

        nodes = self.store.list_nodes(job_id)
        if format == "hierarchical":
            tree = self.builder.build(nodes, job.source_url, job.branch)
            return JobResult(job=job_record(job), format=format, hierarchy=tree)

        records = [
            NodeRecord(
                id=n.id,
                job_id=n.job_id,
                relative_path=n.relative_path,
                name=n.name,
                extension=n.extension,
                parent_id=n.parent_id,
                is_directory=n.is_directory,
                depth=n.depth,
                size_bytes=n.size_bytes,
                permalink=permalink(job.source_url, job.branch, n.relative_path, n.is_directory),
            )
            for n in nodes
        ]
        return JobResult(job=job_record(job), format=format, nodes=records)

    def list(self) -> JobList:
        jobs: List[JobRecord] = [job_record(j) for j in self.store.list_jobs()]
        return JobList(jobs=jobs, total=len(jobs))

    def delete(self, job_id: str) -> DeleteResponse:
        removed = self.store.delete_job_cascade(job_id)
        return DeleteResponse(message="Job deleted successfully", job_id=job_id, nodes_deleted=removed)

    def health(self) -> HealthResponse:
        return HealthResponse(status="healthy", timestamp=utcnow(), active_jobs=self.coordinator.active_count())

    def wait(self, job_id: str, interval: Optional[float] = None, max_attempts: Optional[int] = None) -> JobRecord:
        """Poll until the job is terminal; TimeoutError after max_attempts polls."""
        interval = self.poll_interval if interval is None else interval
        max_attempts = self.poll_max_attempts if max_attempts is None else max_attempts
        for attempt in range(max_attempts):
            record = self.status(job_id)
            if JobStatus(record.status).is_terminal:
                return record
            if attempt < max_attempts - 1:
                time.sleep(interval)
        raise TimeoutError(f"Job {job_id} still not finished after {max_attempts} polls")
