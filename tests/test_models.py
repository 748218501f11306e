from __future__ import annotations

import allure
import pytest

from poco_worker.models import (
    LocalTaskStatus,
    Task,
    task_from_registry,
    worker_status_from_payload,
)

pytestmark = [
    allure.epic("Task Lifecycle"),
    allure.feature("Task Records"),
]


def test_registry_payload_maps_status_to_remote_status() -> None:
    task = task_from_registry(
        {
            "task_id": " t1 ",
            "source_ipfs": "QmS",
            "status": "OfferCollecting",
            "requirements": {"target_codec": "h265", "target_framerate": 30},
            "hw_acceleration_preferred": True,
        },
    )

    assert task.task_id == "t1"
    assert task.remote_status == "OfferCollecting"
    assert task.status is LocalTaskStatus.PENDING
    assert task.requirements.target_framerate == "30"
    assert task.hw_acceleration_preferred


def test_unknown_remote_status_is_kept_as_text() -> None:
    task = task_from_registry({"task_id": "t1", "source_ipfs": "QmS", "status": "Disputed"})

    assert task.remote_status == "Disputed"


@pytest.mark.parametrize(
    ("payload", "error"),
    [
        ({"source_ipfs": "QmS"}, ValueError),
        ({"task_id": "", "source_ipfs": "QmS"}, ValueError),
        ({"task_id": "t1"}, TypeError),
        ({"task_id": "t1", "source_ipfs": "QmS", "requirements": []}, TypeError),
    ],
)
def test_invalid_registry_payloads_are_rejected(payload: dict, error: type[Exception]) -> None:
    with pytest.raises(error):
        task_from_registry(payload)


def test_local_record_keeps_lifecycle_fields() -> None:
    task = Task(
        task_id="t1",
        source_ipfs="QmS",
        status=LocalTaskStatus.COMPLETED,
        result_ipfs="QmOut",
        completion_time="2026-10-18T12:00:00+00:00",
        keyframe_timestamps=["0.0", "2.0"],
        remote_finalized=False,
    )

    record = task.to_record()
    restored = Task.from_record(record)

    assert record["status"] == "Completed"
    assert restored == task


def test_unknown_local_status_is_rejected() -> None:
    record = Task(task_id="t1", source_ipfs="QmS").to_record()
    record["status"] = "Exploded"

    with pytest.raises(ValueError, match="Unknown local task status"):
        Task.from_record(record)


def test_missing_worker_record_means_unregistered() -> None:
    status = worker_status_from_payload(None)

    assert not status.is_registered
    assert status.current_task is None


def test_blank_current_task_means_idle() -> None:
    status = worker_status_from_payload({"is_registered": True, "current_task": ""})

    assert status.current_task is None
