"""Exception types shared by worker adapters and the lifecycle engine."""

from __future__ import annotations


class WorkerError(RuntimeError):
    """Base class for worker errors."""


class RegistryError(WorkerError):
    """Remote registry call failed (transport, protocol or contract error)."""

    def __init__(self, message: str, *, method: str | None = None) -> None:
        super().__init__(message)
        self.method = method


class ContentStoreError(WorkerError):
    """Content store rejected a put/get or could not be reached."""


class MediaPipelineError(WorkerError):
    """Transform or probe subprocess failed."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.timed_out = timed_out


class BootstrapError(WorkerError):
    """A required collaborator failed to initialize at start-up."""
