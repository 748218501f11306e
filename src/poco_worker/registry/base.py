"""Interface of the remote task registry consumed by the lifecycle engine."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from poco_worker.models import Task, TaskCollection, WorkerStatus


class RemoteTaskSource(Protocol):
    """Read and state-transition operations against the registry.

    Implementations raise ``RegistryError`` on transport or contract failure.
    """

    worker_id: str

    def check(self) -> None:
        """Raise ``RegistryError`` when the registry endpoint is unreachable."""

    def heartbeat(self) -> WorkerStatus:
        """Refresh worker liveness and return the registry's view of the worker."""

    def query_tasks_for_worker(self, worker_id: str) -> TaskCollection:
        """Return assigned, bid-eligible and queued tasks for the worker."""

    def get_task(self, task_id: str) -> Task | None:
        """Fetch one task, or None when the registry does not know it."""

    def submit_bid(self, task_id: str) -> bool:
        """Offer to take an open task."""

    def finalize_task(
        self,
        task_id: str,
        result_ref: str,
        keyframe_timestamps: Sequence[str],
    ) -> bool:
        """Report a completed transcode."""

    def register_worker(self, hw_acceleration: bool) -> bool:
        """Register the worker identity."""
