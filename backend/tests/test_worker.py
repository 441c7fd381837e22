import os
import threading
from datetime import datetime

import pytest

from conftest import HELLO_WORLD, FakeFetcher
from repomap.errors import FetchError, ValidationError, WalkError
from repomap.models import JobStatus
from repomap.walker import TreeWalker, WalkResult
from repomap.worker import INTERRUPTED_MESSAGE, JobCoordinator, summarize


def test_submit_returns_pending_job_and_completes(coordinator, store, fetcher, workspace_dir):
    job = coordinator.submit(HELLO_WORLD)
    assert job.status == JobStatus.PENDING.value
    assert job.display_name == "Hello-World"
    assert job.branch == "main"

    coordinator.wait(job.id, timeout=10)

    done = store.get_job(job.id)
    assert done.status == JobStatus.COMPLETED.value
    assert done.error_message is None
    summary = done.summary_data()
    assert summary["total_nodes"] == 2
    assert summary["total_files"] == 2
    assert summary["total_directories"] == 0
    assert summary["max_depth"] == 0
    assert summary["skipped_entries"] == 0

    nodes = store.list_nodes(job.id)
    assert [n.name for n in nodes] == ["README", "hello.py"]
    assert all(n.depth == 0 and n.parent_id is None for n in nodes)

    # workspace released
    assert fetcher.fetched and not os.path.exists(fetcher.fetched[0])
    assert os.listdir(workspace_dir) == []


def test_display_name_and_branch_overrides(coordinator, store):
    job = coordinator.submit(HELLO_WORLD + ".git", display_name="Greeter", branch="release")
    coordinator.wait(job.id, timeout=10)
    done = store.get_job(job.id)
    assert done.display_name == "Greeter"
    assert done.branch == "release"


def test_invalid_url_creates_no_job(coordinator, store):
    with pytest.raises(ValidationError):
        coordinator.submit("not-a-url")
    assert store.list_jobs() == []


def test_every_submit_mints_a_new_job(coordinator):
    first = coordinator.submit(HELLO_WORLD)
    second = coordinator.submit(HELLO_WORLD)
    assert first.id != second.id


def test_fetch_failure_marks_job_failed_and_cleans_up(store, workspace_dir):
    fetcher = FakeFetcher(workspace_dir, error=FetchError("Failed to clone repository: host unreachable"))
    coordinator = JobCoordinator(store, fetcher)
    try:
        job = coordinator.submit(HELLO_WORLD)
        coordinator.wait(job.id, timeout=10)
    finally:
        coordinator.shutdown()

    failed = store.get_job(job.id)
    assert failed.status == JobStatus.FAILED.value
    assert failed.error_message == "Failed to clone repository: host unreachable"
    assert failed.summary is None
    assert store.list_nodes(job.id) == []
    assert os.listdir(workspace_dir) == []


class ExplodingWalker(TreeWalker):
    def walk(self, root_path):
        raise WalkError(f"Failed to read workspace root {root_path}")


def test_walk_failure_marks_job_failed(store, fetcher, workspace_dir):
    coordinator = JobCoordinator(store, fetcher, walker=ExplodingWalker())
    try:
        job = coordinator.submit(HELLO_WORLD)
        coordinator.wait(job.id, timeout=10)
    finally:
        coordinator.shutdown()

    failed = store.get_job(job.id)
    assert failed.status == JobStatus.FAILED.value
    assert failed.error_message.startswith("Failed to read workspace root")
    assert os.listdir(workspace_dir) == []


def test_jobs_do_not_block_each_other(store, workspace_dir):
    slow_url = "https://github.com/acme/slow"
    fetcher = FakeFetcher(workspace_dir, tree={"a.txt": "a"})
    gate = threading.Event()
    fetcher.gates[slow_url] = gate
    coordinator = JobCoordinator(store, fetcher)
    try:
        slow = coordinator.submit(slow_url)
        fast = coordinator.submit(HELLO_WORLD)
        coordinator.wait(fast.id, timeout=10)

        assert store.get_job(fast.id).status == JobStatus.COMPLETED.value
        assert store.get_job(slow.id).status in (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
        assert store.count_active_jobs() == 1

        gate.set()
        coordinator.wait(slow.id, timeout=10)
        assert store.get_job(slow.id).status == JobStatus.COMPLETED.value
    finally:
        gate.set()
        coordinator.shutdown()


def test_many_held_jobs_do_not_queue_a_new_one(store, workspace_dir):
    fetcher = FakeFetcher(workspace_dir, tree={"a.txt": "a"})
    gate = threading.Event()
    slow_urls = [f"https://github.com/acme/slow-{i}" for i in range(12)]
    for url in slow_urls:
        fetcher.gates[url] = gate
    coordinator = JobCoordinator(store, fetcher)
    try:
        slow = [coordinator.submit(url) for url in slow_urls]
        fast = coordinator.submit(HELLO_WORLD)
        coordinator.wait(fast.id, timeout=5)

        assert store.get_job(fast.id).status == JobStatus.COMPLETED.value
        assert store.count_active_jobs() == len(slow_urls)

        gate.set()
        for job in slow:
            coordinator.wait(job.id, timeout=10)
            assert store.get_job(job.id).status == JobStatus.COMPLETED.value
    finally:
        gate.set()
        coordinator.shutdown()


def test_wait_times_out_on_a_running_job(store, workspace_dir):
    slow_url = "https://github.com/acme/slow"
    fetcher = FakeFetcher(workspace_dir, tree={"a.txt": "a"})
    gate = threading.Event()
    fetcher.gates[slow_url] = gate
    coordinator = JobCoordinator(store, fetcher)
    try:
        job = coordinator.submit(slow_url)
        with pytest.raises(TimeoutError):
            coordinator.wait(job.id, timeout=0.1)
    finally:
        gate.set()
        coordinator.shutdown()
    assert store.get_job(job.id).status == JobStatus.COMPLETED.value


def test_terminal_jobs_are_never_rerun(coordinator, store):
    job = coordinator.submit(HELLO_WORLD)
    coordinator.wait(job.id, timeout=10)
    before = store.get_job(job.id)

    coordinator.process_job(job.id)

    after = store.get_job(job.id)
    assert after.status == JobStatus.COMPLETED.value
    assert after.summary == before.summary
    assert len(store.list_nodes(job.id)) == 2


def test_process_job_for_unknown_id_does_not_raise(coordinator):
    coordinator.process_job("does-not-exist")


def test_recover_fails_interrupted_jobs_and_sweeps(store, fetcher, workspace_dir):
    pending = store.create_job(HELLO_WORLD, "a")
    running = store.create_job(HELLO_WORLD, "b")
    store.update_job_status(running.id, JobStatus.PROCESSING)
    (workspace_dir / running.id / "src").mkdir(parents=True)

    coordinator = JobCoordinator(store, fetcher)
    try:
        assert coordinator.recover() == 2
    finally:
        coordinator.shutdown()

    for job_id in (pending.id, running.id):
        job = store.get_job(job_id)
        assert job.status == JobStatus.FAILED.value
        assert job.error_message == INTERRUPTED_MESSAGE
    assert os.listdir(workspace_dir) == []
    assert store.count_active_jobs() == 0


def test_submit_after_shutdown_fails_the_job(store, fetcher):
    coordinator = JobCoordinator(store, fetcher)
    coordinator.shutdown()
    job = coordinator.submit(HELLO_WORLD)
    assert job.status == JobStatus.FAILED.value
    assert "Could not schedule job" in job.error_message


def test_summarize_empty_walk():
    summary = summarize(WalkResult())
    assert summary["total_nodes"] == 0
    assert summary["max_depth"] == 0
    assert datetime.fromisoformat(summary["processed_at"]).tzinfo is not None
