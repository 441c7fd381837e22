# backend/repomap/errors.py
"""Error types raised by the ingestion pipeline and its API."""


class RepoMapError(Exception):
    """Base class for every error this service raises on purpose."""


class ValidationError(RepoMapError):
    """Malformed or disallowed input, rejected before any job exists."""


class FetchError(RepoMapError):
    """The remote repository could not be cloned."""


class WalkError(RepoMapError):
    """The workspace root could not be read."""


class PersistenceError(RepoMapError):
    """The job store is unavailable or rejected a write."""


class NotFoundError(RepoMapError):
    def __init__(self, job_id: str):
        super().__init__(f"No job found with ID: {job_id}")
        self.job_id = job_id


class StateError(RepoMapError):
    """Operation not allowed in the job's current status."""

    def __init__(self, message: str, status: str):
        super().__init__(message)
        self.status = status


class StructuralError(RepoMapError):
    """Persisted nodes do not form a tree (unresolved parent)."""
