# backend/repomap/worker.py
import logging
import threading
from dataclasses import asdict
from typing import Dict, Optional

from .errors import StateError
from .fetcher import SourceFetcher, extract_repo_name
from .models import ALLOWED_TRANSITIONS, Job, JobStatus, Node, utcnow
from .store import JobStore
from .walker import TreeWalker, WalkResult

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Interrupted by service restart before completion"


def summarize(walked: WalkResult) -> dict:
    directories = sum(1 for n in walked.nodes if n.is_directory)
    return {
        "total_nodes": len(walked.nodes),
        "total_directories": directories,
        "total_files": len(walked.nodes) - directories,
        "max_depth": max((n.depth for n in walked.nodes), default=0),
        "skipped_entries": walked.skipped_count,
        "processed_at": utcnow().isoformat(),
    }


class JobCoordinator:
    """
    Owns the job state machine and runs each job's pipeline off the request
    path: fetch -> walk -> persist -> finalize, strictly in that order.

    Every job runs on its own thread with its own workspace; jobs only see
    each other through the JobStore, so a slow clone never holds up another
    job. Nothing raised by a pipeline stage escapes process_job: it ends up
    in the job's error_message.
    """

    def __init__(
        self,
        store: JobStore,
        fetcher: SourceFetcher,
        walker: Optional[TreeWalker] = None,
        default_branch: str = "main",
    ):
        self.store = store
        self.fetcher = fetcher
        self.walker = walker or TreeWalker()
        self.default_branch = default_branch
        # running job threads, kept only so callers can join them
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, source_url: str, display_name: Optional[str] = None, branch: Optional[str] = None) -> Job:
        """Validate, persist a Pending job and schedule it. Never waits for the pipeline."""
        source_url = self.fetcher.validate(source_url)
        display_name = (display_name or "").strip() or extract_repo_name(source_url)
        branch = (branch or "").strip() or None

        job = self.store.create_job(source_url, display_name, branch or self.default_branch)
        logger.info("job %s created for %s", job.id, source_url)

        try:
            self._start(job.id, branch)
        except RuntimeError as e:
            logger.error("could not schedule job %s: %s", job.id, e)
            return self._fail(job.id, f"Could not schedule job: {e}") or job
        return job

    def _start(self, job_id: str, branch: Optional[str]) -> None:
        thread = threading.Thread(
            target=self._run,
            args=(job_id, branch),
            name=f"repomap-job-{job_id[:8]}",
        )
        with self._lock:
            if self._closed:
                raise RuntimeError("coordinator is shut down")
            # registered before start so _run's cleanup always finds it
            self._threads[job_id] = thread
            try:
                thread.start()
            except RuntimeError:
                self._threads.pop(job_id, None)
                raise

    def _run(self, job_id: str, branch: Optional[str]) -> None:
        try:
            self.process_job(job_id, branch)
        finally:
            self._forget(job_id)

    def process_job(self, job_id: str, branch: Optional[str] = None) -> None:
        """Run one job to a terminal status. Exactly one call per job id."""
        try:
            job = self._transition(job_id, JobStatus.PROCESSING)
            with self.fetcher.workspace(job_id):
                local_path = self.fetcher.fetch(job.source_url, job_id, branch)
                walked = self.walker.walk(local_path)
                self.store.insert_nodes(Node(job_id=job_id, **asdict(n)) for n in walked.nodes)
            summary = summarize(walked)
            self._transition(job_id, JobStatus.COMPLETED, summary=summary)
            logger.info(
                "job %s completed: %d nodes (%d skipped)",
                job_id, summary["total_nodes"], summary["skipped_entries"],
            )
        except Exception as e:
            logger.exception("job %s failed", job_id)
            self._fail(job_id, str(e) or e.__class__.__name__)

    def _transition(self, job_id: str, status: JobStatus, error=None, summary=None) -> Job:
        current = JobStatus(self.store.get_job(job_id).status)
        if status not in ALLOWED_TRANSITIONS[current]:
            raise StateError(f"Illegal transition {current.value} -> {status.value} for job {job_id}", current.value)
        job = self.store.update_job_status(job_id, status, error=error, summary=summary)
        logger.info("job %s: %s -> %s", job_id, current.value, status.value)
        return job

    def _fail(self, job_id: str, message: str) -> Optional[Job]:
        try:
            return self._transition(job_id, JobStatus.FAILED, error=message)
        except Exception:
            # job deleted mid-run, or the store itself is down
            logger.exception("could not record failure for job %s", job_id)
            return None

    def _forget(self, job_id: str) -> None:
        with self._lock:
            self._threads.pop(job_id, None)

    def active_count(self) -> int:
        return self.store.count_active_jobs()

    def wait(self, job_id: str, timeout: Optional[float] = None) -> None:
        """Block until a job scheduled by this coordinator has finished running."""
        with self._lock:
            thread = self._threads.get(job_id)
        if thread is None:
            return
        thread.join(timeout)
        if thread.is_alive():
            raise TimeoutError(f"Job {job_id} still running after {timeout}s")

    def recover(self) -> int:
        """
        Startup cleanup after a crash: drop leftover workspaces and fail jobs
        that were Pending or Processing when the previous process died.
        Must run before anything is submitted.
        """
        self.fetcher.sweep()
        recovered = 0
        for job in self.store.list_active_jobs():
            if self._fail(job.id, INTERRUPTED_MESSAGE) is not None:
                recovered += 1
        if recovered:
            logger.warning("marked %d interrupted job(s) as failed", recovered)
        return recovered

    def shutdown(self, wait: bool = True) -> None:
        """Refuse new jobs; with wait, join every job still running."""
        with self._lock:
            self._closed = True
            threads = list(self._threads.values())
        if wait:
            for thread in threads:
                thread.join()
