"""Durable task queue made of pending, in-flight and finalized collections.

A task id lives in at most one record per collection. The finalized record is
the durability boundary for "task is done": it is written before the pending
and in-flight records are removed, so a crash between the two leaves a
finalized record plus a stale queue entry that ``is_queued`` still reports as
known, never a lost outcome.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from pathlib import Path

from poco_worker.lifecycle.records import FileRecordStore, MemoryRecordStore, RecordStore
from poco_worker.models import TERMINAL_STATUSES, LocalTaskStatus, Task
from poco_worker.timeutil import utc_now

logger = logging.getLogger(__name__)


class TaskStore:
    """Presence-based task queue shared by the reconciler and the executor."""

    def __init__(
        self,
        *,
        pending: RecordStore,
        finalized: RecordStore,
        in_flight: RecordStore | None = None,
    ) -> None:
        self.pending = pending
        self.finalized = finalized
        self.in_flight = in_flight if in_flight is not None else MemoryRecordStore()
        self._finalize_lock = threading.Lock()

    @classmethod
    def on_disk(
        cls,
        *,
        queue_dir: Path,
        tasks_dir: Path,
        processing_dir: Path,
    ) -> TaskStore:
        """Build a store whose collections are directories of JSON files."""

        return cls(
            pending=FileRecordStore(queue_dir),
            finalized=FileRecordStore(tasks_dir),
            in_flight=FileRecordStore(processing_dir),
        )

    @classmethod
    def in_memory(cls) -> TaskStore:
        return cls(
            pending=MemoryRecordStore(),
            finalized=MemoryRecordStore(),
            in_flight=MemoryRecordStore(),
        )

    def is_queued(self, task_id: str) -> bool:
        """True when the id is pending, in flight or already finalized."""

        return (
            self.pending.exists(task_id)
            or self.in_flight.exists(task_id)
            or self.finalized.exists(task_id)
        )

    def is_finalized(self, task_id: str) -> bool:
        return self.finalized.exists(task_id)

    def enqueue(self, task: Task) -> None:
        """Write the task into pending. Overwriting a pending record is allowed."""

        pending_task = task.with_status(LocalTaskStatus.PENDING)
        self.pending.put(task.task_id, pending_task.to_record())
        logger.info("Task %s added to queue", task.task_id)

    def pending_count(self) -> int:
        return self.pending.count()

    def dequeue_batch(self, limit: int) -> list[Task]:
        """Return up to ``limit`` pending tasks in enumeration order (not FIFO).

        Pending records that cannot be parsed are finalized as Failed so they
        stop counting against the queue.
        """

        if limit <= 0:
            return []
        tasks: list[Task] = []
        for task_id in list(self.pending.keys()):
            if len(tasks) >= limit:
                break
            try:
                task = self._parse(self.pending, task_id)
            except (OSError, ValueError, TypeError) as error:
                logger.error("Pending task record %s is unreadable: %s", task_id, error)
                message = f"unreadable task record: {error}"
                self.finalize(task_id, LocalTaskStatus.FAILED, error=message)
                continue
            if task is not None:
                tasks.append(task)
        return tasks

    def mark_in_flight(self, task: Task) -> Task:
        """Record that the pipeline started; the pending record is consumed."""

        processing = task.with_status(LocalTaskStatus.PROCESSING)
        self.in_flight.put(task.task_id, processing.to_record())
        self.pending.delete(task.task_id)
        return processing

    def finalize(  # noqa: PLR0913
        self,
        task_id: str,
        status: LocalTaskStatus,
        result_ref: str | None = None,
        keyframes: Sequence[str] | None = None,
        error: str | None = None,
        *,
        remote_finalized: bool | None = None,
    ) -> Task:
        """Write the single finalized record and drop pending/in-flight copies."""

        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Finalize status must be Completed or Failed, got {status!r}.")

        with self._finalize_lock:
            prior = (
                self._read(self.in_flight, task_id)
                or self._read(self.pending, task_id)
                or self._read(self.finalized, task_id)
                or Task(task_id=task_id, source_ipfs="")
            )
            prior.status = status
            if result_ref is not None:
                prior.result_ipfs = result_ref
            if keyframes is not None:
                prior.keyframe_timestamps = list(keyframes)
            prior.error = error
            prior.remote_finalized = remote_finalized
            prior.completion_time = utc_now().isoformat()

            self.finalized.put(task_id, prior.to_record())
            self.pending.delete(task_id)
            self.in_flight.delete(task_id)

        logger.info("Task %s finalized with status %s", task_id, status.value)
        return prior

    def recover_in_flight(self) -> list[str]:
        """Move in-flight records left by a crash back to pending."""

        recovered: list[str] = []
        for task_id in list(self.in_flight.keys()):
            task = self._read(self.in_flight, task_id)
            if task is None or self.finalized.exists(task_id):
                self.in_flight.delete(task_id)
                continue
            self.pending.put(task_id, task.with_status(LocalTaskStatus.PENDING).to_record())
            self.in_flight.delete(task_id)
            recovered.append(task_id)
            logger.warning("Recovered interrupted task %s back to queue", task_id)
        return recovered

    def get(self, task_id: str) -> Task | None:
        """Most advanced record for the id: finalized, then in flight, then pending."""

        for collection in (self.finalized, self.in_flight, self.pending):
            task = self._read(collection, task_id)
            if task is not None:
                return task
        return None

    def list_pending(self) -> list[Task]:
        return self._read_all(self.pending)

    def list_in_flight(self) -> list[Task]:
        return self._read_all(self.in_flight)

    def list_finalized(self) -> list[Task]:
        return self._read_all(self.finalized)

    def _read_all(self, collection: RecordStore) -> list[Task]:
        tasks: list[Task] = []
        for task_id in list(collection.keys()):
            task = self._read(collection, task_id)
            if task is not None:
                tasks.append(task)
        return tasks

    def _read(self, collection: RecordStore, task_id: str) -> Task | None:
        try:
            return self._parse(collection, task_id)
        except (OSError, ValueError, TypeError) as error:
            logger.warning("Skipping unreadable task record %s: %s", task_id, error)
            return None

    @staticmethod
    def _parse(collection: RecordStore, task_id: str) -> Task | None:
        payload = collection.get(task_id)
        if payload is None:
            return None
        return Task.from_record(payload)
