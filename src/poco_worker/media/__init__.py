"""Media transformation adapters."""

from poco_worker.media.base import MediaPipeline
from poco_worker.media.ffmpeg import FfmpegMediaPipeline, build_ffmpeg_args
from poco_worker.media.keyframes import parse_keyframe_output, sort_timestamps

__all__ = [
    "FfmpegMediaPipeline",
    "MediaPipeline",
    "build_ffmpeg_args",
    "parse_keyframe_output",
    "sort_timestamps",
]
