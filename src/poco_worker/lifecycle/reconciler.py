"""Registry listener that reconciles remote task state into the local queue."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from poco_worker.errors import WorkerError
from poco_worker.lifecycle.loop import PollingLoop
from poco_worker.lifecycle.task_store import TaskStore
from poco_worker.models import Task, WorkerStatus
from poco_worker.registry.base import RemoteTaskSource

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileSummary:
    """What one reconcile cycle observed and did."""

    heartbeat_ok: bool = False
    worker_status: WorkerStatus | None = None
    registered: bool | None = None
    enqueued: list[str] = field(default_factory=list)
    queued_remote: int = 0
    bid_task_id: str | None = None
    bid_accepted: bool | None = None
    skipped_bid_busy: bool = False
    error: str | None = None


class Reconciler(PollingLoop):
    """Polls the registry, merges assigned work into the task store and bids for open work."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        registry: RemoteTaskSource,
        task_store: TaskStore,
        poll_interval_seconds: float = 10.0,
        heartbeat_interval_seconds: float | None = None,
        active_count: Callable[[], int] | None = None,
        auto_register: bool = False,
        hw_acceleration: bool = False,
    ) -> None:
        super().__init__(name="reconciler", interval_seconds=poll_interval_seconds)
        self.registry = registry
        self.task_store = task_store
        if heartbeat_interval_seconds is None:
            heartbeat_interval_seconds = poll_interval_seconds
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.active_count = active_count or (lambda: 0)
        self.auto_register = auto_register
        self.hw_acceleration = hw_acceleration
        self._heartbeat_thread: threading.Thread | None = None

    def tick(self) -> ReconcileSummary:
        return self.run_cycle()

    def run_cycle(self) -> ReconcileSummary:
        """Run one reconcile cycle. Errors end the cycle early."""

        summary = ReconcileSummary()
        try:
            status = self.registry.heartbeat()
            summary.heartbeat_ok = True
            summary.worker_status = status

            if status.current_task:
                logger.info(
                    "Registry reports current task %s, skipping new work",
                    status.current_task,
                )
                self._ensure_assigned_task(status.current_task, summary)
                return summary

            if not status.is_registered and self.auto_register:
                logger.info("Worker is not registered, registering")
                summary.registered = self.registry.register_worker(self.hw_acceleration)

            self._reconcile_collection(summary)
        except WorkerError as error:
            logger.warning("Reconcile cycle failed: %s", error)
            summary.error = str(error)
        except Exception as error:
            logger.exception("Reconcile cycle failed unexpectedly")
            summary.error = str(error)
        return summary

    def has_capacity(self) -> bool:
        """Idle locally: nothing executing and nothing waiting in the queue."""

        active = self.active_count()
        if active > 0:
            logger.info("%d task(s) executing, not accepting new work", active)
            return False
        pending = self.task_store.pending_count()
        if pending > 0:
            logger.info("%d task(s) waiting in local queue, not accepting new work", pending)
            return False
        return True

    def _ensure_assigned_task(self, task_id: str, summary: ReconcileSummary) -> None:
        if self.task_store.is_queued(task_id):
            return
        logger.info("Syncing assigned task %s into local queue", task_id)
        task = self.registry.get_task(task_id)
        if task is None:
            logger.warning("Registry has no record of assigned task %s", task_id)
            return
        self._enqueue(task, summary)

    def _reconcile_collection(self, summary: ReconcileSummary) -> None:
        collection = self.registry.query_tasks_for_worker(self.registry.worker_id)

        if collection.assigned_tasks:
            logger.info("Found %d assigned task(s)", len(collection.assigned_tasks))
            for task in collection.assigned_tasks:
                if not self.task_store.is_queued(task.task_id):
                    self._enqueue(task, summary)
            return

        summary.queued_remote = len(collection.queued_tasks)
        if collection.queued_tasks:
            logger.info(
                "%d task(s) queued in registry awaiting assignment",
                len(collection.queued_tasks),
            )

        if not collection.available_tasks:
            logger.debug("No tasks available for bidding")
            return

        if not self.has_capacity():
            summary.skipped_bid_busy = True
            return

        candidate = collection.available_tasks[0]
        logger.info(
            "Found %d bid-eligible task(s), bidding for %s",
            len(collection.available_tasks),
            candidate.task_id,
        )
        summary.bid_task_id = candidate.task_id
        summary.bid_accepted = self.registry.submit_bid(candidate.task_id)
        if summary.bid_accepted:
            logger.info("Bid submitted for task %s", candidate.task_id)
        else:
            logger.warning("Bid for task %s was rejected", candidate.task_id)

    def _enqueue(self, task: Task, summary: ReconcileSummary) -> None:
        self.task_store.enqueue(task)
        summary.enqueued.append(task.task_id)

    def _on_start(self) -> None:
        if self.heartbeat_interval_seconds <= 0:
            return
        self._heartbeat_thread = threading.Thread(
            target=self._heartbeat_loop,
            daemon=True,
            name="reconciler-heartbeat",
        )
        self._heartbeat_thread.start()

    def _on_stop(self) -> None:
        # The shared stop event wakes the heartbeat timer; no new beats start.
        self._heartbeat_thread = None

    def _heartbeat_loop(self) -> None:
        while not self.sleep(self.heartbeat_interval_seconds):
            try:
                self.registry.heartbeat()
            except WorkerError as error:
                logger.warning("Heartbeat failed: %s", error)
            except Exception:
                logger.exception("Heartbeat failed unexpectedly")
