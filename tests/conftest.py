"""Shared test fixtures."""

from __future__ import annotations

import shutil
import sys
import threading
from collections.abc import Sequence
from pathlib import Path

import pytest

from poco_worker.config import LifecycleSettings, MediaSettings, Settings
from poco_worker.errors import ContentStoreError, MediaPipelineError, RegistryError
from poco_worker.lifecycle.task_store import TaskStore
from poco_worker.models import Task, TaskCollection, TranscodingRequirements, WorkerStatus

STUB_FFMPEG_COMMAND = f"{sys.executable} -m poco_worker.media.stub_tools ffmpeg"
STUB_FFPROBE_COMMAND = f"{sys.executable} -m poco_worker.media.stub_tools ffprobe"


def make_task(task_id: str, source: str = "QmSource", **overrides) -> Task:
    return Task(
        task_id=task_id,
        source_ipfs=source,
        requirements=overrides.pop("requirements", TranscodingRequirements()),
        **overrides,
    )


class FakeRegistry:
    """In-memory registry answering from scripted state."""

    def __init__(self, worker_id: str = "worker-1.testnet") -> None:
        self.worker_id = worker_id
        self.status = WorkerStatus(is_registered=True, current_task=None)
        self.collection = TaskCollection()
        self.tasks: dict[str, Task] = {}
        self.bid_result = True
        self.finalize_result = True
        self.heartbeat_error: Exception | None = None
        self.finalize_error: Exception | None = None
        self.check_error: Exception | None = None
        self.register_error: Exception | None = None
        self.heartbeats = 0
        self.bids: list[str] = []
        self.finalized: list[tuple[str, str, list[str]]] = []
        self.registrations: list[bool] = []
        self.closed = False

    def check(self) -> None:
        if self.check_error is not None:
            raise self.check_error

    def heartbeat(self) -> WorkerStatus:
        self.heartbeats += 1
        if self.heartbeat_error is not None:
            raise self.heartbeat_error
        return self.status

    def query_tasks_for_worker(self, worker_id: str) -> TaskCollection:
        assert worker_id == self.worker_id
        return self.collection

    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def submit_bid(self, task_id: str) -> bool:
        self.bids.append(task_id)
        return self.bid_result

    def finalize_task(
        self,
        task_id: str,
        result_ref: str,
        keyframe_timestamps: Sequence[str],
    ) -> bool:
        if self.finalize_error is not None:
            raise self.finalize_error
        self.finalized.append((task_id, result_ref, list(keyframe_timestamps)))
        return self.finalize_result

    def register_worker(self, hw_acceleration: bool) -> bool:
        if self.register_error is not None:
            raise self.register_error
        self.registrations.append(hw_acceleration)
        self.status = WorkerStatus(is_registered=True, current_task=self.status.current_task)
        return True

    def close(self) -> None:
        self.closed = True


class FakeContentStore:
    """Blob store keyed by fake CIDs; ``missing`` refs fail on get."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.missing: set[str] = set()
        self.uploads: list[str] = []
        self.check_error: Exception | None = None
        self.closed = False

    def check(self) -> str:
        if self.check_error is not None:
            raise self.check_error
        return "0.29.0"

    def put(self, file_path: Path) -> str:
        data = file_path.read_bytes()
        cid = f"QmResult{len(self.uploads) + 1}"
        self.blobs[cid] = data
        self.uploads.append(cid)
        return cid

    def get(self, content_ref: str, dest_path: Path) -> None:
        if content_ref in self.missing:
            raise ContentStoreError(f"IPFS cat failed for {content_ref}: not found")
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        dest_path.write_bytes(self.blobs.get(content_ref, b"source-bytes"))

    def close(self) -> None:
        self.closed = True


class FakeMediaPipeline:
    """Copies input to output; can be gated to hold pipelines open."""

    def __init__(
        self,
        keyframes: Sequence[str] = ("4.004000", "0.000000", "10.010000", "2.002000"),
    ) -> None:
        self.keyframes = list(keyframes)
        self.transform_error: Exception | None = None
        self.gate: threading.Event | None = None
        self.started = threading.Semaphore(0)
        self.transformed: list[str] = []
        self._lock = threading.Lock()
        self.running = 0
        self.max_running = 0

    def transform(self, input_path: Path, output_path: Path, requirements) -> bool:
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            self.transformed.append(input_path.name)
        self.started.release()
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if self.transform_error is not None:
                raise self.transform_error
            shutil.copyfile(input_path, output_path)
            return True
        finally:
            with self._lock:
                self.running -= 1

    def extract_keyframe_timestamps(self, path: Path) -> list[str]:
        return list(self.keyframes)


@pytest.fixture()
def task_store() -> TaskStore:
    return TaskStore.in_memory()


@pytest.fixture()
def disk_task_store(tmp_path: Path) -> TaskStore:
    return TaskStore.on_disk(
        queue_dir=tmp_path / "queue",
        tasks_dir=tmp_path / "tasks",
        processing_dir=tmp_path / "processing",
    )


@pytest.fixture()
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture()
def content_store() -> FakeContentStore:
    return FakeContentStore()


@pytest.fixture()
def media() -> FakeMediaPipeline:
    return FakeMediaPipeline()


@pytest.fixture()
def timeout_error() -> MediaPipelineError:
    return MediaPipelineError("Transcode timed out after 1.0s", exit_code=124, timed_out=True)


@pytest.fixture()
def registry_down() -> RegistryError:
    return RegistryError("worker_heartbeat transport error: connection refused")


@pytest.fixture()
def worker_settings(tmp_path: Path) -> Settings:
    return Settings(
        media=MediaSettings(
            ffmpeg_command=STUB_FFMPEG_COMMAND,
            ffprobe_command=STUB_FFPROBE_COMMAND,
        ),
        lifecycle=LifecycleSettings(
            data_dir=tmp_path / "data",
            scratch_dir=tmp_path / "scratch",
            polling_interval_seconds=0.05,
            executor_interval_seconds=0.05,
            graceful_shutdown_seconds=2.0,
        ),
    )
