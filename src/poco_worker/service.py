"""Process wiring: adapters, both lifecycle loops, signals and graceful shutdown."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from poco_worker.config import Settings
from poco_worker.content.base import ContentStore
from poco_worker.content.ipfs import IpfsContentStore
from poco_worker.errors import BootstrapError, WorkerError
from poco_worker.lifecycle.executor import Executor
from poco_worker.lifecycle.notifier import RegistryCompletionNotifier
from poco_worker.lifecycle.reconciler import Reconciler
from poco_worker.lifecycle.task_store import TaskStore
from poco_worker.media.base import MediaPipeline
from poco_worker.media.ffmpeg import FfmpegMediaPipeline
from poco_worker.registry.base import RemoteTaskSource
from poco_worker.registry.client import HttpRegistryClient

logger = logging.getLogger(__name__)

STOP_POLL_SECONDS = 0.5


@dataclass(slots=True)
class RunSummary:
    """What happened between start and shutdown of ``run_until_stopped``."""

    registered: bool | None = None
    recovered: list[str] = field(default_factory=list)
    stop_signal: str | None = None
    drained: bool = True


class WorkerService:
    """Owns the task store, the adapters and the two loops of one worker process."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        task_store: TaskStore,
        registry: RemoteTaskSource,
        content_store: ContentStore,
        media: MediaPipeline,
    ) -> None:
        self.settings = settings
        self.task_store = task_store
        self.registry = registry
        self.content_store = content_store
        self.media = media
        lifecycle = settings.lifecycle
        self.executor = Executor(
            task_store=task_store,
            content_store=content_store,
            media=media,
            scratch_dir=lifecycle.scratch_dir,
            poll_interval_seconds=lifecycle.executor_interval_seconds,
            max_concurrent_tasks=lifecycle.max_concurrent_tasks,
            single_task_gate=lifecycle.single_task_gate,
            test_task_pattern=lifecycle.test_task_pattern,
            cleanup_failed_scratch=lifecycle.cleanup_failed_scratch,
        )
        self.reconciler = Reconciler(
            registry=registry,
            task_store=task_store,
            poll_interval_seconds=lifecycle.polling_interval_seconds,
            active_count=self.executor.active_count,
            auto_register=settings.registry.auto_register,
            hw_acceleration=settings.registry.hw_acceleration,
        )
        self._stop_event = threading.Event()
        self._stop_signal_name: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> WorkerService:
        """Build a service backed by the on-disk store and the real HTTP/ffmpeg adapters."""

        lifecycle = settings.lifecycle
        return cls(
            settings=settings,
            task_store=TaskStore.on_disk(
                queue_dir=lifecycle.queue_dir,
                tasks_dir=lifecycle.tasks_dir,
                processing_dir=lifecycle.processing_dir,
            ),
            registry=HttpRegistryClient(
                rpc_url=settings.registry.rpc_url,
                relay_url=settings.registry.relay_url,
                contract_id=settings.registry.contract_id,
                account_id=settings.registry.account_id,
                relay_token=settings.registry.relay_token,
                timeout_seconds=settings.registry.request_timeout_seconds,
                max_retries=settings.registry.max_retries,
            ),
            content_store=IpfsContentStore(
                api_url=settings.ipfs.api_url,
                timeout_seconds=settings.ipfs.request_timeout_seconds,
                max_retries=settings.ipfs.max_retries,
            ),
            media=FfmpegMediaPipeline(
                ffmpeg_command=settings.media.ffmpeg_command,
                ffprobe_command=settings.media.ffprobe_command,
                transform_timeout_seconds=settings.media.transform_timeout_seconds or None,
                probe_timeout_seconds=settings.media.probe_timeout_seconds or None,
            ),
        )

    def bootstrap(self) -> None:
        """Verify the registry and the content store are reachable."""

        try:
            self.registry.check()
            logger.info("Registry reachable, worker %s", self.registry.worker_id)
        except WorkerError as error:
            raise BootstrapError(f"Registry initialization failed: {error}") from error
        try:
            version = self.content_store.check()
            logger.info("Content store reachable, version %s", version)
        except WorkerError as error:
            raise BootstrapError(f"Content store initialization failed: {error}") from error

    def register(self) -> bool | None:
        """Register the worker identity. Failure is logged, never fatal."""

        try:
            registered = self.registry.register_worker(self.settings.registry.hw_acceleration)
        except WorkerError as error:
            logger.warning("Worker registration failed: %s", error)
            return None
        logger.info("Worker %s registration result: %s", self.registry.worker_id, registered)
        return registered

    def start(self) -> list[str]:
        """Recover interrupted tasks, attach the notifier and start both loops."""

        recovered = self.task_store.recover_in_flight()
        if recovered:
            logger.info("Recovered %d interrupted task(s): %s", len(recovered), recovered)
        self.executor.set_completion_notifier(RegistryCompletionNotifier(self.registry))
        self.reconciler.start()
        self.executor.start()
        return recovered

    def stop(self) -> bool:
        """Stop both loops and wait up to the grace period for running pipelines."""

        grace = self.settings.lifecycle.graceful_shutdown_seconds
        self.reconciler.stop(timeout=grace)
        self.executor.stop(timeout=grace)
        drained = self.executor.wait_idle(timeout=grace)
        if not drained:
            logger.warning(
                "Shutdown grace period elapsed with %d task(s) still running: %s",
                self.executor.active_count(),
                sorted(self.executor.active_ids()),
            )
        return drained

    def request_stop(self, *, signal_name: str = "request") -> None:
        if self._stop_event.is_set():
            return
        self._stop_signal_name = signal_name
        logger.info("Stop requested (%s), shutting down", signal_name)
        self._stop_event.set()

    def run_until_stopped(self) -> RunSummary:
        """Run the full worker until SIGINT/SIGTERM or ``request_stop``."""

        summary = RunSummary()
        self.bootstrap()
        summary.registered = self.register()
        with self._signal_handlers():
            summary.recovered = self.start()
            while not self._stop_event.wait(timeout=STOP_POLL_SECONDS):
                pass
            summary.stop_signal = self._stop_signal_name
            summary.drained = self.stop()
        return summary

    def close(self) -> None:
        for adapter in (self.registry, self.content_store):
            close = getattr(adapter, "close", None)
            if close is not None:
                close()

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            logger.debug("Not in main thread, signal handlers not installed")
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
