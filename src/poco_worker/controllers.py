"""Controllers for worker CLI commands."""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from poco_worker.config import Settings
from poco_worker.lifecycle.notifier import RegistryCompletionNotifier
from poco_worker.lifecycle.task_store import TaskStore
from poco_worker.models import Task, TranscodingRequirements
from poco_worker.service import WorkerService

ServiceFactory = Callable[[Settings], WorkerService]


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for the long-running worker."""

    data_dir: Path | None


@dataclass(slots=True)
class WorkerStatusCommand:
    """CLI input for registration and heartbeat commands."""

    data_dir: Path | None


@dataclass(slots=True)
class ReconcileOnceCommand:
    data_dir: Path | None


@dataclass(slots=True)
class ExecuteOnceCommand:
    """CLI input for one executor scan."""

    data_dir: Path | None
    local_only: bool
    wait_seconds: float | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for local task listing."""

    data_dir: Path | None
    collection: str
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    data_dir: Path | None
    task_id: str


@dataclass(slots=True)
class EnqueueLocalCommand:
    """CLI input for queueing a local media file as a test task."""

    data_dir: Path | None
    file_path: Path
    task_id: str | None
    target_codec: str
    target_resolution: str
    target_bitrate: str
    target_framerate: str
    additional_params: str


@dataclass(slots=True)
class KeyframesCommand:
    data_dir: Path | None
    file_path: Path


@dataclass(slots=True)
class CommandResult:
    """Lines to render and whether the command succeeded."""

    lines: list[str]
    success: bool = True


class WorkerCliController:
    """Coordinates worker, queue and inspection CLI operations."""

    def __init__(self, service_factory: ServiceFactory | None = None) -> None:
        self.service_factory = service_factory or WorkerService.from_settings

    def run(self, command: WorkerRunCommand) -> list[str]:
        settings = _settings(command.data_dir)
        with self._service(settings) as service:
            summary = service.run_until_stopped()
        registered = "-" if summary.registered is None else str(summary.registered).lower()
        return [
            "Worker stopped: "
            f"signal={summary.stop_signal or '-'} registered={registered} "
            f"recovered={len(summary.recovered)} drained={str(summary.drained).lower()}",
        ]

    def register(self, command: WorkerStatusCommand) -> CommandResult:
        settings = _settings(command.data_dir)
        with self._service(settings) as service:
            registered = service.register()
        if registered is None:
            return CommandResult(
                lines=[f"Registration failed for {settings.registry.account_id}"],
                success=False,
            )
        return CommandResult(
            lines=[
                f"Worker {settings.registry.account_id} registered: {str(registered).lower()} "
                f"(hw_acceleration={str(settings.registry.hw_acceleration).lower()})",
            ],
            success=registered,
        )

    def status(self, command: WorkerStatusCommand) -> list[str]:
        settings = _settings(command.data_dir)
        with self._service(settings) as service:
            status = service.registry.heartbeat()
            store = service.task_store
            lines = [
                f"Worker: {settings.registry.account_id}",
                f"Contract: {settings.registry.contract_id}",
                f"Registered: {str(status.is_registered).lower()}",
                f"Current task: {status.current_task or '-'}",
                f"QoS score: {status.qos_score if status.qos_score is not None else '-'}",
                f"Local queue: pending={store.pending_count()} "
                f"in_flight={len(store.list_in_flight())} "
                f"finalized={len(store.list_finalized())}",
            ]
        return lines

    def reconcile_once(self, command: ReconcileOnceCommand) -> list[str]:
        settings = _settings(command.data_dir)
        with self._service(settings) as service:
            summary = service.reconciler.run_cycle()
        lines = [
            "Reconcile summary: "
            f"heartbeat_ok={str(summary.heartbeat_ok).lower()} "
            f"enqueued={len(summary.enqueued)} queued_remote={summary.queued_remote} "
            f"bid={summary.bid_task_id or '-'} "
            f"bid_accepted={_flag(summary.bid_accepted)}",
        ]
        lines.extend(f"  enqueued {task_id}" for task_id in summary.enqueued)
        if summary.skipped_bid_busy:
            lines.append("  bidding skipped: worker busy")
        if summary.error:
            lines.append(f"Error: {summary.error}")
        return lines

    def execute_once(self, command: ExecuteOnceCommand) -> list[str]:
        settings = _settings(command.data_dir)
        with self._service(settings) as service:
            executor = service.executor
            if not command.local_only:
                executor.set_completion_notifier(RegistryCompletionNotifier(service.registry))
            summary = executor.scan_once()
            drained = executor.wait_idle(timeout=command.wait_seconds)
            outcomes = list(executor.outcomes)

        lines = [
            "Executor summary: "
            f"started={len(summary.started)} skipped_busy={str(summary.skipped_busy).lower()} "
            f"drained={str(drained).lower()}",
        ]
        for outcome in outcomes:
            detail = outcome.result_ref if outcome.error is None else outcome.error
            lines.append(f"  {outcome.task_id} status={outcome.status.value} {detail or '-'}")
        return lines

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = _settings(command.data_dir)
        store = _task_store(settings)
        listings = {
            "pending": store.list_pending,
            "in-flight": store.list_in_flight,
            "finalized": store.list_finalized,
        }
        selected = listings if command.collection == "all" else {
            command.collection: listings[command.collection],
        }
        lines: list[str] = []
        for name, list_tasks in selected.items():
            tasks = list_tasks()
            lines.append(f"{name.capitalize()}: {len(tasks)}")
            for task in tasks[: command.limit]:
                lines.append(
                    f"  {task.task_id} status={task.status.value} remote={task.remote_status} "
                    f"source={task.source_ipfs} result={task.result_ipfs or '-'}",
                )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> CommandResult:
        settings = _settings(command.data_dir)
        task = _task_store(settings).get(command.task_id)
        if task is None:
            return CommandResult(lines=[f"Task not found: {command.task_id}"], success=False)
        return CommandResult(
            lines=json.dumps(task.to_record(), indent=2, sort_keys=True).splitlines(),
        )

    def enqueue_local(self, command: EnqueueLocalCommand) -> list[str]:
        settings = _settings(command.data_dir)
        task_id = command.task_id or f"test-{uuid.uuid4().hex[:12]}"
        with self._service(settings) as service:
            source_ref = service.content_store.put(command.file_path)
            task = Task(
                task_id=task_id,
                source_ipfs=source_ref,
                requirements=TranscodingRequirements(
                    target_codec=command.target_codec,
                    target_resolution=command.target_resolution,
                    target_bitrate=command.target_bitrate,
                    target_framerate=command.target_framerate,
                    additional_params=command.additional_params,
                ),
                assigned_worker=settings.registry.account_id,
            )
            service.task_store.enqueue(task)
        return [
            f"Task enqueued: task_id={task.task_id} source={source_ref} "
            f"codec={task.requirements.target_codec}",
        ]

    def keyframes(self, command: KeyframesCommand) -> list[str]:
        settings = _settings(command.data_dir)
        with self._service(settings) as service:
            timestamps = service.media.extract_keyframe_timestamps(command.file_path)
        return [f"Keyframes: {len(timestamps)}", *timestamps]

    @contextmanager
    def _service(self, settings: Settings) -> Iterator[WorkerService]:
        service = self.service_factory(settings)
        try:
            yield service
        finally:
            service.close()


def _settings(data_dir: Path | None) -> Settings:
    settings = Settings.from_env(data_dir=data_dir)
    settings.validate()
    return settings


def _task_store(settings: Settings) -> TaskStore:
    lifecycle = settings.lifecycle
    return TaskStore.on_disk(
        queue_dir=lifecycle.queue_dir,
        tasks_dir=lifecycle.tasks_dir,
        processing_dir=lifecycle.processing_dir,
    )


def _flag(value: bool | None) -> str:
    return "-" if value is None else str(value).lower()
