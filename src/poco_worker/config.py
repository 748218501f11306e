"""Runtime configuration for the transcoding worker."""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class RegistrySettings:
    """Task registry contract and worker identity."""

    contract_id: str = "pococontract11.testnet"
    account_id: str = "pocoworker1.testnet"
    network_id: str = "testnet"
    rpc_url: str = "https://rpc.testnet.near.org"
    relay_url: str = "http://127.0.0.1:3030"
    relay_token: str | None = None
    request_timeout_seconds: float = 30.0
    max_retries: int = 3
    hw_acceleration: bool = False
    auto_register: bool = False


@dataclass(slots=True)
class IpfsSettings:
    """Content store (IPFS HTTP API) settings."""

    protocol: str = "http"
    host: str = "127.0.0.1"
    port: int = 5001
    request_timeout_seconds: float = 300.0
    max_retries: int = 3

    @property
    def api_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}/api/v0"


@dataclass(slots=True)
class MediaSettings:
    """ffmpeg/ffprobe invocation settings. Timeouts of 0 disable the limit."""

    ffmpeg_command: str = "ffmpeg"
    ffprobe_command: str = "ffprobe"
    transform_timeout_seconds: float = 0.0
    probe_timeout_seconds: float = 0.0


@dataclass(slots=True)
class LifecycleSettings:
    """Polling, concurrency and local queue layout."""

    data_dir: Path = Path("worker-data")
    scratch_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "poco-worker")
    polling_interval_seconds: float = 10.0
    executor_interval_seconds: float = 10.0
    max_concurrent_tasks: int = 2
    single_task_gate: bool = True
    test_task_pattern: str = r"^test-"
    cleanup_failed_scratch: bool = True
    graceful_shutdown_seconds: float = 1.0

    @property
    def queue_dir(self) -> Path:
        return self.data_dir / "queue"

    @property
    def processing_dir(self) -> Path:
        return self.data_dir / "processing"

    @property
    def tasks_dir(self) -> Path:
        return self.data_dir / "tasks"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by collaborator."""

    registry: RegistrySettings = field(default_factory=RegistrySettings)
    ipfs: IpfsSettings = field(default_factory=IpfsSettings)
    media: MediaSettings = field(default_factory=MediaSettings)
    lifecycle: LifecycleSettings = field(default_factory=LifecycleSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, data_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults for a local testnet worker."""

        defaults = cls()
        return cls(
            registry=RegistrySettings(
                contract_id=os.getenv("POCO_WORKER_CONTRACT_ID", defaults.registry.contract_id),
                account_id=os.getenv("POCO_WORKER_ACCOUNT_ID", defaults.registry.account_id),
                network_id=os.getenv("POCO_WORKER_NETWORK_ID", defaults.registry.network_id),
                rpc_url=os.getenv("POCO_WORKER_RPC_URL", defaults.registry.rpc_url),
                relay_url=os.getenv("POCO_WORKER_RELAY_URL", defaults.registry.relay_url),
                relay_token=os.getenv("POCO_WORKER_RELAY_TOKEN") or None,
                request_timeout_seconds=float(
                    os.getenv("POCO_WORKER_REGISTRY_TIMEOUT_SECONDS", "30.0"),
                ),
                max_retries=int(os.getenv("POCO_WORKER_REGISTRY_MAX_RETRIES", "3")),
                hw_acceleration=_env_bool("POCO_WORKER_HW_ACCELERATION", default=False),
                auto_register=_env_bool("POCO_WORKER_AUTO_REGISTER", default=False),
            ),
            ipfs=IpfsSettings(
                protocol=os.getenv("POCO_WORKER_IPFS_PROTOCOL", defaults.ipfs.protocol),
                host=os.getenv("POCO_WORKER_IPFS_HOST", defaults.ipfs.host),
                port=int(os.getenv("POCO_WORKER_IPFS_PORT", str(defaults.ipfs.port))),
                request_timeout_seconds=float(
                    os.getenv("POCO_WORKER_IPFS_TIMEOUT_SECONDS", "300.0"),
                ),
                max_retries=int(os.getenv("POCO_WORKER_IPFS_MAX_RETRIES", "3")),
            ),
            media=MediaSettings(
                ffmpeg_command=os.getenv("POCO_WORKER_FFMPEG_COMMAND", "ffmpeg"),
                ffprobe_command=os.getenv("POCO_WORKER_FFPROBE_COMMAND", "ffprobe"),
                transform_timeout_seconds=float(
                    os.getenv("POCO_WORKER_TRANSFORM_TIMEOUT_SECONDS", "0"),
                ),
                probe_timeout_seconds=float(os.getenv("POCO_WORKER_PROBE_TIMEOUT_SECONDS", "0")),
            ),
            lifecycle=LifecycleSettings(
                data_dir=data_dir
                or Path(os.getenv("POCO_WORKER_DATA_DIR", str(defaults.lifecycle.data_dir))),
                scratch_dir=Path(
                    os.getenv("POCO_WORKER_SCRATCH_DIR", str(defaults.lifecycle.scratch_dir)),
                ),
                polling_interval_seconds=float(
                    os.getenv("POCO_WORKER_POLLING_INTERVAL_SECONDS", "10.0"),
                ),
                executor_interval_seconds=float(
                    os.getenv(
                        "POCO_WORKER_EXECUTOR_INTERVAL_SECONDS",
                        os.getenv("POCO_WORKER_POLLING_INTERVAL_SECONDS", "10.0"),
                    ),
                ),
                max_concurrent_tasks=int(os.getenv("POCO_WORKER_MAX_CONCURRENT_TASKS", "2")),
                single_task_gate=_env_bool("POCO_WORKER_SINGLE_TASK_GATE", default=True),
                test_task_pattern=os.getenv("POCO_WORKER_TEST_TASK_PATTERN", r"^test-"),
                cleanup_failed_scratch=_env_bool(
                    "POCO_WORKER_CLEANUP_FAILED_SCRATCH",
                    default=True,
                ),
                graceful_shutdown_seconds=float(
                    os.getenv("POCO_WORKER_GRACEFUL_SHUTDOWN_SECONDS", "1.0"),
                ),
            ),
            log_level=os.getenv("POCO_WORKER_LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        if not self.registry.account_id.strip():
            raise ValueError("POCO_WORKER_ACCOUNT_ID must not be empty.")
        if not self.registry.contract_id.strip():
            raise ValueError("POCO_WORKER_CONTRACT_ID must not be empty.")
        _validate_http_url("POCO_WORKER_RPC_URL", self.registry.rpc_url)
        _validate_http_url("POCO_WORKER_RELAY_URL", self.registry.relay_url)
        if self.ipfs.protocol not in {"http", "https"}:
            raise ValueError("POCO_WORKER_IPFS_PROTOCOL must be http or https.")
        if not 0 < self.ipfs.port < 65536:  # noqa: PLR2004
            raise ValueError("POCO_WORKER_IPFS_PORT must be between 1 and 65535.")
        if self.lifecycle.polling_interval_seconds <= 0:
            raise ValueError("POCO_WORKER_POLLING_INTERVAL_SECONDS must be > 0.")
        if self.lifecycle.executor_interval_seconds <= 0:
            raise ValueError("POCO_WORKER_EXECUTOR_INTERVAL_SECONDS must be > 0.")
        if self.lifecycle.max_concurrent_tasks < 1:
            raise ValueError("POCO_WORKER_MAX_CONCURRENT_TASKS must be >= 1.")
        if self.lifecycle.graceful_shutdown_seconds < 0:
            raise ValueError("POCO_WORKER_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.media.transform_timeout_seconds < 0:
            raise ValueError("POCO_WORKER_TRANSFORM_TIMEOUT_SECONDS must be >= 0.")
        if self.media.probe_timeout_seconds < 0:
            raise ValueError("POCO_WORKER_PROBE_TIMEOUT_SECONDS must be >= 0.")
        try:
            re.compile(self.lifecycle.test_task_pattern)
        except re.error as error:
            raise ValueError(
                f"POCO_WORKER_TEST_TASK_PATTERN is not a valid regex: {error}",
            ) from error
        if not self.media.ffmpeg_command.strip():
            raise ValueError("POCO_WORKER_FFMPEG_COMMAND must not be empty.")
        if not self.media.ffprobe_command.strip():
            raise ValueError("POCO_WORKER_FFPROBE_COMMAND must not be empty.")


def _validate_http_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
