"""Bounded-concurrency executor that drives queued tasks through the media pipeline."""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

from poco_worker.content.base import ContentStore
from poco_worker.errors import MediaPipelineError
from poco_worker.lifecycle.notifier import CompletionNotifier
from poco_worker.lifecycle.loop import PollingLoop
from poco_worker.lifecycle.task_store import TaskStore
from poco_worker.media.base import MediaPipeline
from poco_worker.media.keyframes import sort_timestamps
from poco_worker.models import LocalTaskStatus, Task

logger = logging.getLogger(__name__)

DEFAULT_TEST_TASK_PATTERN = r"^test-"
OUTCOME_HISTORY = 100


@dataclass(slots=True)
class ScanSummary:
    """Result of one queue scan."""

    started: list[str] = field(default_factory=list)
    pending_seen: int = 0
    skipped_busy: bool = False


@dataclass(slots=True)
class PipelineOutcome:
    """Terminal result of one task pipeline."""

    task_id: str
    status: LocalTaskStatus
    result_ref: str | None = None
    keyframe_timestamps: list[str] = field(default_factory=list)
    error: str | None = None
    remote_finalized: bool | None = None


@dataclass(slots=True)
class ScratchFiles:
    input_path: Path
    output_path: Path


class Executor(PollingLoop):
    """Runs pending tasks, at most ``max_concurrent_tasks`` at a time, one pipeline per id."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        task_store: TaskStore,
        content_store: ContentStore,
        media: MediaPipeline,
        scratch_dir: Path,
        notifier: CompletionNotifier | None = None,
        poll_interval_seconds: float = 10.0,
        max_concurrent_tasks: int = 1,
        single_task_gate: bool = True,
        test_task_pattern: str = DEFAULT_TEST_TASK_PATTERN,
        cleanup_failed_scratch: bool = True,
    ) -> None:
        super().__init__(name="executor", interval_seconds=poll_interval_seconds)
        if max_concurrent_tasks < 1:
            raise ValueError("max_concurrent_tasks must be >= 1")
        self.task_store = task_store
        self.content_store = content_store
        self.media = media
        self.scratch_dir = scratch_dir
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        self.notifier = notifier
        self.max_concurrent_tasks = max_concurrent_tasks
        self.single_task_gate = single_task_gate
        self.test_task_pattern = re.compile(test_task_pattern) if test_task_pattern else None
        self.cleanup_failed_scratch = cleanup_failed_scratch
        self._active: set[str] = set()
        self._threads: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()
        self.outcomes: deque[PipelineOutcome] = deque(maxlen=OUTCOME_HISTORY)

    def set_completion_notifier(self, notifier: CompletionNotifier | None) -> None:
        """Register the single completion notifier (None switches to local-only mode)."""

        self.notifier = notifier

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def active_ids(self) -> set[str]:
        with self._lock:
            return set(self._active)

    def tick(self) -> ScanSummary:
        return self.scan_once()

    def scan_once(self) -> ScanSummary:
        """Start pipelines for pending tasks up to the free concurrency slots."""

        summary = ScanSummary()
        with self._lock:
            active = len(self._active)
        if self.single_task_gate and active > 0:
            logger.debug("%d task(s) still executing, skipping scan", active)
            summary.skipped_busy = True
            return summary

        available_slots = self.max_concurrent_tasks - active
        if available_slots <= 0:
            summary.skipped_busy = True
            return summary

        tasks = self.task_store.dequeue_batch(available_slots)
        summary.pending_seen = len(tasks)
        if tasks:
            logger.info("%d task(s) in queue ready for processing", len(tasks))
        for task in tasks:
            if not self._launch(task):
                continue
            summary.started.append(task.task_id)
        return summary

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for running pipelines to settle. Returns True when none are active."""

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                threads = list(self._threads.values())
            if not threads:
                return self.active_count() == 0
            for thread in threads:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                thread.join(timeout=remaining)
            if deadline is not None and time.monotonic() >= deadline:
                return self.active_count() == 0

    def is_test_task(self, task_id: str) -> bool:
        return self.test_task_pattern is not None and bool(self.test_task_pattern.search(task_id))

    def run_pipeline(self, task: Task) -> PipelineOutcome:
        """Run one task to a finalized record. Never raises for pipeline errors."""

        logger.info("Processing task %s", task.task_id)
        scratch = self._scratch_files(task.task_id)
        try:
            self.task_store.mark_in_flight(task)
            self.content_store.get(task.source_ipfs, scratch.input_path)
            self.media.transform(scratch.input_path, scratch.output_path, task.requirements)
            keyframes = sort_timestamps(
                list(self.media.extract_keyframe_timestamps(scratch.output_path)),
            )
            logger.info("Task %s produced %d keyframe timestamps", task.task_id, len(keyframes))
            result_ref = self.content_store.put(scratch.output_path)
            remote_finalized = self._notify(task.task_id, result_ref, keyframes)
        except Exception as error:  # noqa: BLE001
            message = _describe_error(error)
            logger.error("Task %s failed: %s", task.task_id, message)
            self.task_store.finalize(task.task_id, LocalTaskStatus.FAILED, error=message)
            if self.cleanup_failed_scratch:
                self._cleanup(task.task_id, scratch)
            return PipelineOutcome(
                task_id=task.task_id,
                status=LocalTaskStatus.FAILED,
                error=message,
            )

        self.task_store.finalize(
            task.task_id,
            LocalTaskStatus.COMPLETED,
            result_ref=result_ref,
            keyframes=keyframes,
            remote_finalized=remote_finalized,
        )
        logger.info("Task %s completed, result %s", task.task_id, result_ref)
        self._cleanup(task.task_id, scratch)
        return PipelineOutcome(
            task_id=task.task_id,
            status=LocalTaskStatus.COMPLETED,
            result_ref=result_ref,
            keyframe_timestamps=keyframes,
            remote_finalized=remote_finalized,
        )

    def _launch(self, task: Task) -> bool:
        # A claimed id always has a started thread registered.
        with self._lock:
            if task.task_id in self._active or len(self._active) >= self.max_concurrent_tasks:
                return False
            thread = threading.Thread(
                target=self._pipeline_thread,
                args=(task,),
                daemon=True,
                name=f"pipeline-{task.task_id}",
            )
            self._active.add(task.task_id)
            self._threads[task.task_id] = thread
            thread.start()
        return True

    def _release(self, task_id: str) -> None:
        with self._lock:
            self._active.discard(task_id)
            self._threads.pop(task_id, None)

    def _pipeline_thread(self, task: Task) -> None:
        try:
            outcome = self.run_pipeline(task)
            with self._lock:
                self.outcomes.append(outcome)
        except Exception:
            logger.exception("Could not finalize task %s", task.task_id)
        finally:
            self._release(task.task_id)

    def _notify(self, task_id: str, result_ref: str, keyframes: list[str]) -> bool | None:
        if self.is_test_task(task_id):
            logger.info("Test task %s, skipping registry update", task_id)
            return None
        if self.notifier is None:
            logger.info("No completion notifier set, task %s finalized locally only", task_id)
            return None
        accepted = bool(self.notifier.notify_completed(task_id, result_ref, keyframes))
        if not accepted:
            logger.warning("Registry did not accept completion of task %s", task_id)
        return accepted

    def _scratch_files(self, task_id: str) -> ScratchFiles:
        return ScratchFiles(
            input_path=self.scratch_dir / f"{task_id}-input.mp4",
            output_path=self.scratch_dir / f"{task_id}-output.mp4",
        )

    def _cleanup(self, task_id: str, scratch: ScratchFiles) -> None:
        try:
            scratch.input_path.unlink(missing_ok=True)
            scratch.output_path.unlink(missing_ok=True)
        except OSError as error:
            logger.warning("Could not clean scratch files of task %s: %s", task_id, error)
            return
        logger.debug("Cleaned scratch files of task %s", task_id)


def _describe_error(error: BaseException) -> str:
    if isinstance(error, MediaPipelineError) and error.timed_out:
        return f"timeout: {error}"
    text = str(error).strip()
    if not text:
        return type(error).__name__
    return f"{type(error).__name__}: {text}"
