"""Completion notification seam between the executor and the registry."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from poco_worker.registry.base import RemoteTaskSource

logger = logging.getLogger(__name__)


class CompletionNotifier(Protocol):
    """Receives successful transcode results and performs remote finalization."""

    def notify_completed(
        self,
        task_id: str,
        result_ref: str,
        keyframe_timestamps: Sequence[str],
    ) -> bool:
        """Return True when the remote side accepted the completion."""


class RegistryCompletionNotifier:
    """Submit completions to the registry on behalf of the executor."""

    def __init__(self, registry: RemoteTaskSource) -> None:
        self.registry = registry

    def notify_completed(
        self,
        task_id: str,
        result_ref: str,
        keyframe_timestamps: Sequence[str],
    ) -> bool:
        logger.info(
            "Submitting completion of %s to registry (%d keyframes)",
            task_id,
            len(keyframe_timestamps),
        )
        return self.registry.finalize_task(task_id, result_ref, keyframe_timestamps)
