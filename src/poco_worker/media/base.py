"""Interface of the media transformation engine."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from poco_worker.models import TranscodingRequirements


class MediaPipeline(Protocol):
    """Transform and probe operations. Errors raise ``MediaPipelineError``."""

    def transform(
        self,
        input_path: Path,
        output_path: Path,
        requirements: TranscodingRequirements,
    ) -> bool:
        """Transcode ``input_path`` into ``output_path``."""

    def extract_keyframe_timestamps(self, path: Path) -> list[str]:
        """Keyframe timestamps of ``path``, numerically ascending."""
