from __future__ import annotations

import threading
import time
from pathlib import Path

import allure
import pytest

from conftest import FakeContentStore, FakeMediaPipeline, FakeRegistry, make_task
from poco_worker.errors import RegistryError
from poco_worker.lifecycle.executor import Executor
from poco_worker.lifecycle.notifier import RegistryCompletionNotifier
from poco_worker.lifecycle.task_store import TaskStore
from poco_worker.models import LocalTaskStatus

pytestmark = [
    allure.epic("Task Lifecycle"),
    allure.feature("Executor"),
]


@pytest.fixture()
def scratch_dir(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


def _executor(  # noqa: PLR0913
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
    registry: FakeRegistry | None = None,
    **kwargs,
) -> Executor:
    return Executor(
        task_store=task_store,
        content_store=content_store,
        media=media,
        scratch_dir=scratch_dir,
        notifier=RegistryCompletionNotifier(registry) if registry is not None else None,
        poll_interval_seconds=0.05,
        **kwargs,
    )


def test_successful_task_is_finalized_with_sorted_keyframes(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    registry: FakeRegistry,
    scratch_dir: Path,
) -> None:
    task_store.enqueue(make_task("t1", source="QmX"))
    executor = _executor(task_store, content_store, media, scratch_dir, registry)

    summary = executor.scan_once()
    assert executor.wait_idle(timeout=5)

    assert summary.started == ["t1"]
    record = task_store.get("t1")
    assert record.status is LocalTaskStatus.COMPLETED
    assert record.result_ipfs == "QmResult1"
    assert record.keyframe_timestamps == ["0.000000", "2.002000", "4.004000", "10.010000"]
    assert record.remote_finalized is True
    assert record.error is None
    assert registry.finalized == [("t1", "QmResult1", record.keyframe_timestamps)]
    assert task_store.pending_count() == 0
    assert list(scratch_dir.iterdir()) == []


def test_failed_download_finalizes_failed_and_releases_slot(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    registry: FakeRegistry,
    scratch_dir: Path,
) -> None:
    content_store.missing.add("QmMissing")
    task_store.enqueue(make_task("t2", source="QmMissing"))
    executor = _executor(task_store, content_store, media, scratch_dir, registry)

    executor.scan_once()
    assert executor.wait_idle(timeout=5)

    record = task_store.get("t2")
    assert record.status is LocalTaskStatus.FAILED
    assert "QmMissing" in record.error
    assert executor.active_ids() == set()
    assert registry.finalized == []
    assert media.transformed == []


def test_transform_timeout_is_described_as_timeout(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
    timeout_error,
) -> None:
    media.transform_error = timeout_error
    task_store.enqueue(make_task("slow"))
    executor = _executor(task_store, content_store, media, scratch_dir)

    outcome = executor.run_pipeline(make_task("slow"))

    assert outcome.status is LocalTaskStatus.FAILED
    assert outcome.error.startswith("timeout:")
    assert task_store.get("slow").error == outcome.error


def test_failed_run_cleans_scratch_by_default(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
) -> None:
    media.transform_error = RuntimeError("encoder crashed")
    executor = _executor(task_store, content_store, media, scratch_dir)

    executor.run_pipeline(make_task("t1"))

    assert list(scratch_dir.iterdir()) == []


def test_failed_run_can_keep_scratch_for_debugging(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
) -> None:
    media.transform_error = RuntimeError("encoder crashed")
    executor = _executor(
        task_store,
        content_store,
        media,
        scratch_dir,
        cleanup_failed_scratch=False,
    )

    executor.run_pipeline(make_task("t1"))

    assert (scratch_dir / "t1-input.mp4").is_file()


def test_test_tasks_skip_remote_finalization(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    registry: FakeRegistry,
    scratch_dir: Path,
) -> None:
    executor = _executor(task_store, content_store, media, scratch_dir, registry)

    outcome = executor.run_pipeline(make_task("test-local"))

    assert outcome.status is LocalTaskStatus.COMPLETED
    assert outcome.remote_finalized is None
    assert registry.finalized == []


def test_rejected_completion_is_recorded_but_task_completes(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    registry: FakeRegistry,
    scratch_dir: Path,
) -> None:
    registry.finalize_result = False
    executor = _executor(task_store, content_store, media, scratch_dir, registry)

    executor.run_pipeline(make_task("t1"))

    record = task_store.get("t1")
    assert record.status is LocalTaskStatus.COMPLETED
    assert record.remote_finalized is False


def test_completion_error_fails_the_task(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    registry: FakeRegistry,
    scratch_dir: Path,
) -> None:
    registry.finalize_error = RegistryError("complete_task failed: not assigned")
    executor = _executor(task_store, content_store, media, scratch_dir, registry)

    outcome = executor.run_pipeline(make_task("t1"))

    assert outcome.status is LocalTaskStatus.FAILED
    assert "not assigned" in task_store.get("t1").error


def test_without_notifier_tasks_finalize_locally(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
) -> None:
    executor = _executor(task_store, content_store, media, scratch_dir)

    outcome = executor.run_pipeline(make_task("t1"))

    assert outcome.status is LocalTaskStatus.COMPLETED
    assert outcome.remote_finalized is None


def test_running_task_is_never_started_twice(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
) -> None:
    media.gate = threading.Event()
    task_store.enqueue(make_task("t1"))
    executor = _executor(
        task_store,
        content_store,
        media,
        scratch_dir,
        max_concurrent_tasks=2,
        single_task_gate=False,
    )

    first = executor.scan_once()
    assert media.started.acquire(timeout=5)
    task_store.enqueue(make_task("t1"))
    second = executor.scan_once()
    media.gate.set()
    assert executor.wait_idle(timeout=5)

    assert first.started == ["t1"]
    assert second.started == []
    assert media.transformed == ["t1-input.mp4"]


def test_concurrency_never_exceeds_limit(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
) -> None:
    media.gate = threading.Event()
    for index in range(5):
        task_store.enqueue(make_task(f"t{index}"))
    executor = _executor(
        task_store,
        content_store,
        media,
        scratch_dir,
        max_concurrent_tasks=2,
        single_task_gate=False,
    )

    summary = executor.scan_once()
    assert media.started.acquire(timeout=5)
    assert media.started.acquire(timeout=5)
    again = executor.scan_once()
    active = executor.active_count()
    media.gate.set()
    assert executor.wait_idle(timeout=5)

    assert len(summary.started) == 2
    assert again.skipped_busy
    assert active == 2
    assert media.max_running == 2


def test_single_task_gate_skips_scan_while_busy(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
) -> None:
    media.gate = threading.Event()
    task_store.enqueue(make_task("t1"))
    executor = _executor(task_store, content_store, media, scratch_dir, max_concurrent_tasks=2)

    executor.scan_once()
    assert media.started.acquire(timeout=5)
    task_store.enqueue(make_task("t2"))
    gated = executor.scan_once()
    media.gate.set()
    assert executor.wait_idle(timeout=5)

    assert gated.skipped_busy
    assert gated.started == []
    assert task_store.pending_count() == 1


def test_loop_drains_queue_and_stops(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    registry: FakeRegistry,
    scratch_dir: Path,
) -> None:
    for task_id in ("a", "b", "c"):
        task_store.enqueue(make_task(task_id))
    executor = _executor(task_store, content_store, media, scratch_dir, registry)

    executor.start()
    deadline = time.monotonic() + 5
    while len(task_store.list_finalized()) < 3 and time.monotonic() < deadline:
        time.sleep(0.02)
    executor.stop(timeout=2)
    executor.wait_idle(timeout=2)

    assert {task.task_id for task in task_store.list_finalized()} == {"a", "b", "c"}
    assert media.max_running == 1
    assert {entry[0] for entry in registry.finalized} == {"a", "b", "c"}


def test_rejects_invalid_concurrency(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
) -> None:
    with pytest.raises(ValueError, match="max_concurrent_tasks"):
        _executor(task_store, content_store, media, scratch_dir, max_concurrent_tasks=0)


def test_wait_idle_blocks_until_claimed_pipeline_finishes(
    task_store: TaskStore,
    content_store: FakeContentStore,
    media: FakeMediaPipeline,
    scratch_dir: Path,
) -> None:
    media.gate = threading.Event()
    task_store.enqueue(make_task("t1"))
    executor = _executor(task_store, content_store, media, scratch_dir)
    waited: list[bool] = []

    executor.scan_once()
    assert set(executor._threads) == executor.active_ids() == {"t1"}
    waiter = threading.Thread(target=lambda: waited.append(executor.wait_idle()))
    waiter.start()
    waiter.join(timeout=0.2)
    assert waiter.is_alive()
    media.gate.set()
    waiter.join(timeout=5)

    assert waited == [True]
    assert task_store.get("t1").status is LocalTaskStatus.COMPLETED
