"""
Shared fixtures.

Nothing here touches the network: FakeFetcher stands in for the git clone and
lays a small tree out in the job's workspace instead.
"""

import os
import threading
from pathlib import Path
from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient

from repomap.api import IngestionAPI
from repomap.db import init_db, make_engine
from repomap.fetcher import SourceFetcher
from repomap.main import app, get_api
from repomap.store import JobStore
from repomap.worker import JobCoordinator

HELLO_WORLD = "https://github.com/octocat/Hello-World"


def materialize(root: Path, tree: Dict) -> None:
    """{"a.txt": "content", "src": {"b.py": "..."}} -> files on disk"""
    root.mkdir(parents=True, exist_ok=True)
    for name, value in tree.items():
        if isinstance(value, dict):
            materialize(root / name, value)
        else:
            (root / name).write_text(value)


class FakeFetcher(SourceFetcher):
    """SourceFetcher whose fetch writes a canned tree instead of cloning."""

    def __init__(self, workspace_dir, tree=None, error: Optional[Exception] = None):
        super().__init__(str(workspace_dir), ["github.com"])
        self.tree = tree if tree is not None else {}
        self.error = error
        self.gates: Dict[str, threading.Event] = {}  # source_url -> released when set
        self.fetched = []

    def fetch(self, source_url, workspace_id, branch=None):
        source_url = self.validate(source_url)
        gate = self.gates.get(source_url)
        if gate is not None:
            gate.wait(timeout=10)
        path = self.workspace_path(workspace_id)
        os.makedirs(path)
        self.fetched.append(path)
        if self.error is not None:
            raise self.error
        materialize(Path(path), self.tree)
        return path


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return JobStore(engine)


@pytest.fixture
def workspace_dir(tmp_path):
    path = tmp_path / "workspaces"
    path.mkdir()
    return path


@pytest.fixture
def fetcher(workspace_dir):
    return FakeFetcher(workspace_dir, tree={"README": "Hello World!\n", "hello.py": "print('hi')\n"})


@pytest.fixture
def coordinator(store, fetcher):
    coord = JobCoordinator(store, fetcher)
    yield coord
    coord.shutdown(wait=True)


@pytest.fixture
def ingestion_api(store, coordinator):
    return IngestionAPI(store, coordinator)


@pytest.fixture
def client(ingestion_api):
    app.dependency_overrides[get_api] = lambda: ingestion_api
    yield TestClient(app)
    app.dependency_overrides.clear()
