# backend/repomap/fetcher.py
import logging
import os
import re
import shutil
from contextlib import contextmanager
from typing import Iterable, Optional

import git

from .errors import FetchError, ValidationError

logger = logging.getLogger(__name__)

_SEGMENT = r"[A-Za-z0-9._-]+"


def build_url_pattern(hosts: Iterable[str]):
    alternatives = "|".join(re.escape(h) for h in hosts)
    return re.compile(rf"^https://(?:{alternatives})/{_SEGMENT}/{_SEGMENT}$")


def extract_repo_name(source_url: str) -> str:
    """Last path segment without .git: https://github.com/user/repo.git -> repo"""
    tail = source_url.rstrip("/").rsplit("/", 1)[-1]
    if tail.endswith(".git"):
        tail = tail[: -len(".git")]
    return tail or "unknown-repo"


class SourceFetcher:
    """
    Shallow-clones remote repositories into per-job workspaces.

    The workspace for an id lives at ``<workspace_dir>/<workspace_id>``.
    ``fetch`` creates it; the caller owns removal through ``workspace()``
    (normal exit paths) and ``sweep()`` (leftovers after a crash).
    """

    def __init__(self, workspace_dir: str, allowed_hosts: Iterable[str]):
        self.workspace_dir = workspace_dir
        self.allowed_hosts = [h.lower() for h in allowed_hosts]
        self._pattern = build_url_pattern(self.allowed_hosts)

    def validate(self, source_url) -> str:
        if not source_url or not isinstance(source_url, str):
            raise ValidationError("Repository URL is required")
        source_url = source_url.strip()
        if not self._pattern.match(source_url):
            raise ValidationError(
                f"Invalid repository URL: {source_url!r} "
                f"(expected https://<host>/<owner>/<repo>, host one of {', '.join(self.allowed_hosts)})"
            )
        return source_url

    def workspace_path(self, workspace_id: str) -> str:
        if not workspace_id or os.sep in workspace_id or "/" in workspace_id or workspace_id in (".", ".."):
            raise ValueError(f"bad workspace id: {workspace_id!r}")
        return os.path.join(self.workspace_dir, workspace_id)

    def fetch(self, source_url: str, workspace_id: str, branch: Optional[str] = None) -> str:
        """Shallow clone source_url into a fresh workspace and return its path."""
        source_url = self.validate(source_url)
        path = self.workspace_path(workspace_id)

        kwargs = {"depth": 1, "single_branch": True}
        if branch:
            kwargs["branch"] = branch

        try:
            os.makedirs(self.workspace_dir, exist_ok=True)
            # a stale directory from an earlier crash would make clone refuse
            shutil.rmtree(path, ignore_errors=True)
            logger.info("cloning %s into %s", source_url, path)
            git.Repo.clone_from(source_url, path, **kwargs)
        except git.GitCommandError as e:
            detail = (e.stderr or str(e)).strip()
            raise FetchError(f"Failed to clone repository: {detail}") from e
        except OSError as e:
            raise FetchError(f"Failed to clone repository: {e}") from e

        logger.info("cloned %s", source_url)
        return path

    def release(self, workspace_id: str) -> None:
        path = self.workspace_path(workspace_id)
        if os.path.exists(path):
            shutil.rmtree(path)
            logger.info("cleaned up workspace %s", path)

    @contextmanager
    def workspace(self, workspace_id: str):
        """Scope a workspace: whatever happens inside, the directory is gone afterwards."""
        try:
            yield self.workspace_path(workspace_id)
        finally:
            try:
                self.release(workspace_id)
            except OSError:
                logger.exception("failed to remove workspace %s", workspace_id)

    def sweep(self) -> int:
        """Remove every leftover workspace. Only safe while no job is running."""
        if not os.path.isdir(self.workspace_dir):
            return 0
        removed = 0
        for name in os.listdir(self.workspace_dir):
            path = os.path.join(self.workspace_dir, name)
            if os.path.isdir(path):
                shutil.rmtree(path, ignore_errors=True)
                removed += 1
        if removed:
            logger.info("swept %d stale workspace(s) from %s", removed, self.workspace_dir)
        return removed
