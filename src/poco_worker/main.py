"""CLI entrypoint for poco-worker."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click
from rich.console import Console
from rich.logging import RichHandler

from poco_worker import __version__
from poco_worker.controllers import (
    EnqueueLocalCommand,
    ExecuteOnceCommand,
    InspectTaskCommand,
    KeyframesCommand,
    ListTasksCommand,
    ReconcileOnceCommand,
    WorkerCliController,
    WorkerRunCommand,
    WorkerStatusCommand,
)
from poco_worker.errors import WorkerError

click.rich_click.USE_MARKDOWN = True
WORKER_CONTROLLER = WorkerCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
CommandT = TypeVar("CommandT")
ResultT = TypeVar("ResultT")

data_dir_option = click.option(
    "--data-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory holding queue/, processing/ and tasks/. Defaults to POCO_WORKER_DATA_DIR.",
)


@click.group()
@click.version_option(version=__version__, prog_name="poco-worker")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    envvar="POCO_WORKER_LOG_LEVEL",
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
def poco_worker(log_level: str) -> None:
    """Transcoding worker for the task registry."""

    _configure_logging(log_level)


@poco_worker.command("run")
@data_dir_option
def run(data_dir: Path | None) -> None:
    """Run the reconciler and executor loops until SIGINT/SIGTERM."""

    _emit_lines(_guarded(WORKER_CONTROLLER.run, WorkerRunCommand(data_dir=data_dir)))


@poco_worker.command("register")
@data_dir_option
def register(data_dir: Path | None) -> None:
    """Register this worker identity with the registry."""

    result = _guarded(WORKER_CONTROLLER.register, WorkerStatusCommand(data_dir=data_dir))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Worker registration failed.")


@poco_worker.command("status")
@data_dir_option
def status(data_dir: Path | None) -> None:
    """Send one heartbeat and show the registry's view of the worker."""

    _emit_lines(_guarded(WORKER_CONTROLLER.status, WorkerStatusCommand(data_dir=data_dir)))


@poco_worker.command("reconcile-once")
@data_dir_option
def reconcile_once(data_dir: Path | None) -> None:
    """Run a single reconcile cycle: heartbeat, sync assigned tasks, maybe bid."""

    _emit_lines(
        _guarded(WORKER_CONTROLLER.reconcile_once, ReconcileOnceCommand(data_dir=data_dir)),
    )


@poco_worker.command("execute-once")
@data_dir_option
@click.option(
    "--local-only",
    is_flag=True,
    default=False,
    help="Finalize tasks locally without reporting completion to the registry.",
)
@click.option(
    "--wait-seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Max time to wait for started pipelines. Waits until done when omitted.",
)
def execute_once(data_dir: Path | None, local_only: bool, wait_seconds: float | None) -> None:
    """Run a single executor scan and wait for the started pipelines."""

    _emit_lines(
        _guarded(
            WORKER_CONTROLLER.execute_once,
            ExecuteOnceCommand(
                data_dir=data_dir,
                local_only=local_only,
                wait_seconds=wait_seconds,
            ),
        ),
    )


@poco_worker.command("tasks")
@data_dir_option
@click.option(
    "--collection",
    type=click.Choice(("all", "pending", "in-flight", "finalized")),
    default="all",
    show_default=True,
    help="Which local collection to list.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=10000),
    default=50,
    show_default=True,
    help="Max tasks printed per collection.",
)
def tasks(data_dir: Path | None, collection: str, limit: int) -> None:
    """List local task records."""

    _emit_lines(
        _guarded(
            WORKER_CONTROLLER.list_tasks,
            ListTasksCommand(data_dir=data_dir, collection=collection, limit=limit),
        ),
    )


@poco_worker.command("inspect")
@data_dir_option
@click.argument("task_id")
def inspect(data_dir: Path | None, task_id: str) -> None:
    """Print one local task record as JSON."""

    result = _guarded(
        WORKER_CONTROLLER.inspect_task,
        InspectTaskCommand(data_dir=data_dir, task_id=task_id),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(f"Unknown task: {task_id}")


@poco_worker.command("enqueue-local")
@data_dir_option
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--task-id", default=None, help="Task id. Defaults to a random test- id.")
@click.option("--codec", "target_codec", default="h264", show_default=True, help="Target codec.")
@click.option("--resolution", "target_resolution", default="", help="Target size, e.g. 1280x720.")
@click.option("--bitrate", "target_bitrate", default="", help="Target bitrate, e.g. 2M.")
@click.option("--framerate", "target_framerate", default="", help="Target frame rate.")
@click.option("--extra", "additional_params", default="", help="Extra ffmpeg arguments.")
def enqueue_local(  # noqa: PLR0913
    data_dir: Path | None,
    file_path: Path,
    task_id: str | None,
    target_codec: str,
    target_resolution: str,
    target_bitrate: str,
    target_framerate: str,
    additional_params: str,
) -> None:
    """Upload a local media file and queue it as a task."""

    _emit_lines(
        _guarded(
            WORKER_CONTROLLER.enqueue_local,
            EnqueueLocalCommand(
                data_dir=data_dir,
                file_path=file_path,
                task_id=task_id,
                target_codec=target_codec,
                target_resolution=target_resolution,
                target_bitrate=target_bitrate,
                target_framerate=target_framerate,
                additional_params=additional_params,
            ),
        ),
    )


@poco_worker.command("keyframes")
@data_dir_option
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
def keyframes(data_dir: Path | None, file_path: Path) -> None:
    """Print keyframe timestamps of a media file in ascending order."""

    _emit_lines(
        _guarded(
            WORKER_CONTROLLER.keyframes,
            KeyframesCommand(data_dir=data_dir, file_path=file_path),
        ),
    )


def _guarded(action: Callable[[CommandT], ResultT], command: CommandT) -> ResultT:
    try:
        return action(command)
    except (WorkerError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    poco_worker()
