# backend/repomap/store.py
import json
import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from .errors import NotFoundError, PersistenceError
from .models import ACTIVE_STATUSES, Job, JobStatus, Node, utcnow

logger = logging.getLogger(__name__)


class JobStore:
    """
    Durable record of jobs and their nodes.

    Every public method opens its own short-lived session, so one store can
    be shared by the request path and any number of pipeline threads. Writes
    happen in a single transaction each: a node batch is either fully visible
    or not at all, and a cascade delete never leaves orphans behind.
    """

    def __init__(self, engine):
        self.engine = engine

    @contextmanager
    def _session(self):
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("job store failure: %s", e)
            raise PersistenceError(str(e)) from e

    # --- jobs ---

    def create_job(self, source_url: str, display_name: str, branch: str = "main") -> Job:
        now = utcnow()
        job = Job(
            id=str(uuid4()),
            source_url=source_url,
            display_name=display_name,
            branch=branch,
            status=JobStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            session.add(job)
            session.commit()
        return job

    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error: Optional[str] = None,
        summary: Optional[dict] = None,
    ) -> Job:
        """
        Overwrite a job's status. Last write wins; transition rules are the
        coordinator's business. error_message and summary are reset on every
        call so they only ever accompany Failed and Completed respectively.
        """
        status = JobStatus(status)
        if (status is JobStatus.FAILED) != (error is not None):
            raise ValueError("error is required for, and only for, failed jobs")
        if (status is JobStatus.COMPLETED) != (summary is not None):
            raise ValueError("summary is required for, and only for, completed jobs")

        with self._session() as session:
            job = session.get(Job, job_id)
            if not job:
                raise NotFoundError(job_id)
            job.status = status.value
            job.error_message = error
            job.summary = json.dumps(summary) if summary is not None else None
            job.updated_at = utcnow()
            session.add(job)
            session.commit()
        return job

    def get_job(self, job_id: str) -> Job:
        with self._session() as session:
            job = session.get(Job, job_id)
        if not job:
            raise NotFoundError(job_id)
        return job

    def list_jobs(self) -> List[Job]:
        with self._session() as session:
            stmt = select(Job).order_by(col(Job.created_at).desc())
            return list(session.exec(stmt).all())

    def list_active_jobs(self) -> List[Job]:
        with self._session() as session:
            stmt = select(Job).where(col(Job.status).in_(ACTIVE_STATUSES))
            return list(session.exec(stmt).all())

    def count_active_jobs(self) -> int:
        with self._session() as session:
            stmt = select(func.count()).select_from(Job).where(col(Job.status).in_(ACTIVE_STATUSES))
            return session.exec(stmt).one()

    def delete_job_cascade(self, job_id: str) -> int:
        """Remove a job and all of its nodes atomically. Returns the node count removed."""
        with self._session() as session:
            job = session.get(Job, job_id)
            if not job:
                raise NotFoundError(job_id)
            result = session.exec(delete(Node).where(col(Node.job_id) == job_id))
            session.delete(job)
            session.commit()
            removed = result.rowcount
        logger.info("deleted job %s (%d nodes)", job_id, removed)
        return removed

    # --- nodes ---

    def insert_nodes(self, nodes: Iterable[Node]) -> int:
        """Persist a batch in one transaction. Parents must precede children."""
        batch = list(nodes)
        if not batch:
            return 0
        with self._session() as session:
            session.add_all(batch)
            session.commit()
        return len(batch)

    def list_nodes(self, job_id: str) -> List[Node]:
        with self._session() as session:
            stmt = select(Node).where(col(Node.job_id) == job_id).order_by(col(Node.relative_path))
            return list(session.exec(stmt).all())
