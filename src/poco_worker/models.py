"""Domain models for registry tasks, worker status and local task records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any


class RemoteTaskStatus(str, Enum):
    """Task states reported by the registry."""

    PUBLISHED = "Published"
    ASSIGNED = "Assigned"
    COMPLETED = "Completed"
    VERIFIED = "Verified"
    QUEUED = "Queued"
    OFFER_COLLECTING = "OfferCollecting"


class LocalTaskStatus(str, Enum):
    """Local lifecycle states of a task record."""

    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


TERMINAL_STATUSES = frozenset({LocalTaskStatus.COMPLETED, LocalTaskStatus.FAILED})


@dataclass(slots=True, frozen=True)
class TranscodingRequirements:
    """Target encoding parameters requested by the broadcaster."""

    target_codec: str = "h264"
    target_resolution: str = ""
    target_bitrate: str = ""
    target_framerate: str = ""
    additional_params: str = ""


@dataclass(slots=True)
class Task:
    """One transcoding job as stored in the local task store."""

    task_id: str
    source_ipfs: str
    requirements: TranscodingRequirements = field(default_factory=TranscodingRequirements)
    broadcaster_id: str = ""
    remote_status: str = RemoteTaskStatus.ASSIGNED.value
    status: LocalTaskStatus = LocalTaskStatus.PENDING
    assigned_worker: str | None = None
    assignment_time: int | None = None
    result_ipfs: str | None = None
    completion_time: str | None = None
    keyframe_timestamps: list[str] = field(default_factory=list)
    error: str | None = None
    assigned_verifiers: list[str] = field(default_factory=list)
    qos_proof_id: str | None = None
    publish_time: int | None = None
    hw_acceleration_preferred: bool = False
    remote_finalized: bool | None = None

    def with_status(self, status: LocalTaskStatus) -> Task:
        """Copy with a different local status."""

        return replace(self, status=status)

    def to_record(self) -> dict[str, Any]:
        """Serialize to the JSON record layout used by the task store."""

        payload = asdict(self)
        payload["status"] = self.status.value
        return payload

    @classmethod
    def from_record(cls, payload: dict[str, Any]) -> Task:
        """Deserialize a local task record."""

        task = task_from_registry(payload)
        status_raw = payload.get("status", LocalTaskStatus.PENDING.value)
        try:
            status = LocalTaskStatus(status_raw)
        except ValueError as error:
            raise ValueError(f"Unknown local task status: {status_raw!r}") from error
        task.status = status
        task.completion_time = _optional_str(payload.get("completion_time"))
        task.error = _optional_str(payload.get("error"))
        task.keyframe_timestamps = _str_list(payload.get("keyframe_timestamps"))
        remote_finalized = payload.get("remote_finalized")
        task.remote_finalized = remote_finalized if isinstance(remote_finalized, bool) else None
        return task


@dataclass(slots=True, frozen=True)
class WorkerStatus:
    """Heartbeat answer from the registry. Never persisted."""

    is_registered: bool
    current_task: str | None
    qos_score: float = 0.0


@dataclass(slots=True)
class TaskCollection:
    """Registry view of the tasks relevant to one worker."""

    assigned_tasks: list[Task] = field(default_factory=list)
    available_tasks: list[Task] = field(default_factory=list)
    queued_tasks: list[str] = field(default_factory=list)


def task_from_registry(payload: dict[str, Any]) -> Task:
    """Build a task from a registry payload, validating required fields."""

    if not isinstance(payload, dict):
        raise TypeError("task payload must be an object")
    task_id = payload.get("task_id")
    source_ipfs = payload.get("source_ipfs")
    if not isinstance(task_id, str) or not task_id.strip():
        raise ValueError("task.task_id must be a non-empty string")
    if not isinstance(source_ipfs, str):
        raise TypeError("task.source_ipfs must be a string")

    remote_status = payload.get("remote_status", payload.get("status"))
    if not isinstance(remote_status, str) or not remote_status.strip():
        remote_status = RemoteTaskStatus.ASSIGNED.value

    return Task(
        task_id=task_id.strip(),
        source_ipfs=source_ipfs,
        requirements=requirements_from_payload(payload.get("requirements") or {}),
        broadcaster_id=_optional_str(payload.get("broadcaster_id")) or "",
        remote_status=remote_status,
        assigned_worker=_optional_str(payload.get("assigned_worker")),
        assignment_time=_optional_int(payload.get("assignment_time")),
        result_ipfs=_optional_str(payload.get("result_ipfs")),
        assigned_verifiers=_str_list(payload.get("assigned_verifiers")),
        qos_proof_id=_optional_str(payload.get("qos_proof_id")),
        publish_time=_optional_int(payload.get("publish_time")),
        hw_acceleration_preferred=bool(payload.get("hw_acceleration_preferred", False)),
    )


def requirements_from_payload(payload: dict[str, Any]) -> TranscodingRequirements:
    """Deserialize transcoding requirements; missing fields fall back to defaults."""

    if not isinstance(payload, dict):
        raise TypeError("task.requirements must be an object")
    defaults = TranscodingRequirements()
    values: dict[str, str] = {}
    for name in (
        "target_codec",
        "target_resolution",
        "target_bitrate",
        "target_framerate",
        "additional_params",
    ):
        raw = payload.get(name, getattr(defaults, name))
        if raw is None:
            raw = ""
        if not isinstance(raw, str | int | float):
            raise TypeError(f"requirements.{name} must be a string")
        values[name] = str(raw)
    return TranscodingRequirements(**values)


def worker_status_from_payload(payload: dict[str, Any] | None) -> WorkerStatus:
    """Deserialize a heartbeat response."""

    if payload is None:
        return WorkerStatus(is_registered=False, current_task=None)
    if not isinstance(payload, dict):
        raise TypeError("worker status must be an object")
    qos_raw = payload.get("qos_score", 0.0)
    try:
        qos_score = float(qos_raw)
    except (TypeError, ValueError):
        qos_score = 0.0
    current_task = _optional_str(payload.get("current_task"))
    return WorkerStatus(
        is_registered=bool(payload.get("is_registered", False)),
        current_task=current_task or None,
        qos_score=qos_score,
    )


def task_collection_from_payload(payload: dict[str, Any] | None) -> TaskCollection:
    """Deserialize the registry's per-worker task query."""

    if payload is None:
        return TaskCollection()
    if not isinstance(payload, dict):
        raise TypeError("task collection must be an object")
    return TaskCollection(
        assigned_tasks=[task_from_registry(item) for item in _list(payload, "assigned_tasks")],
        available_tasks=[task_from_registry(item) for item in _list(payload, "available_tasks")],
        queued_tasks=[str(item) for item in _list(payload, "queued_tasks")],
    )


def _list(payload: dict[str, Any], key: str) -> list[Any]:
    value = payload.get(key) or []
    if not isinstance(value, list):
        raise TypeError(f"task_collection.{key} must be an array")
    return value


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _optional_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _str_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]
