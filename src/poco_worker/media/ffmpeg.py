"""ffmpeg/ffprobe subprocess runner for transcode and keyframe probe."""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from poco_worker.errors import MediaPipelineError
from poco_worker.media.keyframes import parse_keyframe_output
from poco_worker.models import TranscodingRequirements

logger = logging.getLogger(__name__)

_KEEP_VALUES = {"", "original"}
_PROGRESS = re.compile(r"time=([0-9:.]+)")
_STDERR_TAIL_CHARS = 1200


@dataclass(slots=True)
class ProcessResult:
    """Outcome of one media subprocess."""

    exit_code: int
    timed_out: bool
    stdout: str
    stderr: str


class FfmpegMediaPipeline:
    """Run ffmpeg for transcoding and ffprobe for keyframe extraction."""

    def __init__(
        self,
        *,
        ffmpeg_command: str = "ffmpeg",
        ffprobe_command: str = "ffprobe",
        transform_timeout_seconds: float | None = None,
        probe_timeout_seconds: float | None = None,
    ) -> None:
        self.ffmpeg_argv = _split_command(ffmpeg_command, name="ffmpeg")
        self.ffprobe_argv = _split_command(ffprobe_command, name="ffprobe")
        self.transform_timeout_seconds = transform_timeout_seconds
        self.probe_timeout_seconds = probe_timeout_seconds

    def transform(
        self,
        input_path: Path,
        output_path: Path,
        requirements: TranscodingRequirements,
    ) -> bool:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        args = [*self.ffmpeg_argv, *build_ffmpeg_args(input_path, output_path, requirements)]
        logger.info("Transcoding %s (codec=%s)", input_path, requirements.target_codec)
        logger.debug("ffmpeg command: %s", shlex.join(args))

        result = _run_process(args, timeout_seconds=self.transform_timeout_seconds)
        if result.timed_out:
            raise MediaPipelineError(
                f"Transcode timed out after {self.transform_timeout_seconds}s",
                exit_code=result.exit_code,
                timed_out=True,
            )
        if result.exit_code != 0:
            raise MediaPipelineError(
                f"Transcode failed with exit code {result.exit_code}: "
                f"{_tail(result.stderr)}",
                exit_code=result.exit_code,
            )
        progress = _PROGRESS.findall(result.stderr)
        if progress:
            logger.debug("Transcode reached time=%s", progress[-1])
        logger.info("Transcode finished: %s", output_path)
        return True

    def extract_keyframe_timestamps(self, path: Path) -> list[str]:
        args = [
            *self.ffprobe_argv,
            "-v",
            "error",
            "-skip_frame",
            "nokey",
            "-select_streams",
            "v",
            "-show_frames",
            "-show_entries",
            "frame=pts_time",
            "-of",
            "csv=p=0",
            str(path),
        ]
        logger.debug("ffprobe command: %s", shlex.join(args))
        result = _run_process(args, timeout_seconds=self.probe_timeout_seconds)
        if result.timed_out:
            raise MediaPipelineError(
                f"Keyframe probe timed out after {self.probe_timeout_seconds}s",
                exit_code=result.exit_code,
                timed_out=True,
            )
        if result.exit_code != 0:
            raise MediaPipelineError(
                f"Keyframe probe failed with exit code {result.exit_code}: "
                f"{_tail(result.stderr)}",
                exit_code=result.exit_code,
            )
        timestamps = parse_keyframe_output(result.stdout)
        logger.info("Extracted %d keyframe timestamps from %s", len(timestamps), path.name)
        return timestamps


def build_ffmpeg_args(
    input_path: Path,
    output_path: Path,
    requirements: TranscodingRequirements,
) -> list[str]:
    """Translate transcoding requirements into ffmpeg arguments (without the binary)."""

    args = ["-i", str(input_path), "-y", "-v", "warning"]

    codec = requirements.target_codec.strip().lower()
    if codec == "h264":
        args += ["-c:v", "libx264", "-preset", "medium"]
        args += ["-force_key_frames", "source", "-enc_time_base", "-1"]
        args += ["-x264-params", "min-keyint=1:no-scenecut=1:closed-gop=1"]
    elif codec in {"h265", "hevc"}:
        args += ["-c:v", "libx265", "-preset", "medium"]
        args += ["-force_key_frames", "source", "-enc_time_base", "-1"]
        args += ["-x265-params", "min-keyint=1:no-scenecut=1:closed-gop=1"]
    else:
        args += ["-c:v", "libx264"]

    bitrate = requirements.target_bitrate.strip()
    if bitrate:
        args += ["-b:v", bitrate]
    resolution = requirements.target_resolution.strip()
    if resolution.lower() not in _KEEP_VALUES:
        args += ["-s", resolution]
    framerate = requirements.target_framerate.strip()
    if framerate.lower() not in _KEEP_VALUES:
        args += ["-r", framerate]

    args += ["-c:a", "copy", "-c:s", "copy"]
    args += requirements.additional_params.split()
    args.append(str(output_path))
    return args


def _split_command(command: str, *, name: str) -> list[str]:
    argv = shlex.split(command)
    if not argv:
        raise ValueError(f"{name} command is empty")
    return argv


def _run_process(args: list[str], *, timeout_seconds: float | None) -> ProcessResult:
    with (
        tempfile.TemporaryFile("w+", encoding="utf-8") as stdout_handle,
        tempfile.TemporaryFile("w+", encoding="utf-8") as stderr_handle,
    ):
        try:
            process = subprocess.Popen(  # noqa: S603
                args,
                stdout=stdout_handle,
                stderr=stderr_handle,
                stdin=subprocess.DEVNULL,
                text=True,
            )
        except FileNotFoundError as error:
            raise MediaPipelineError(f"Media tool not found: {args[0]}") from error
        except OSError as error:
            raise MediaPipelineError(f"Media tool failed to start: {error}") from error

        exit_code, timed_out = _wait(process, timeout_seconds=timeout_seconds)
        return ProcessResult(
            exit_code=exit_code,
            timed_out=timed_out,
            stdout=_read_back(stdout_handle),
            stderr=_read_back(stderr_handle),
        )


def _wait(process: subprocess.Popen[str], *, timeout_seconds: float | None) -> tuple[int, bool]:
    start_monotonic = time.monotonic()
    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode, False
        if timeout_seconds is not None and time.monotonic() - start_monotonic >= timeout_seconds:
            _terminate_process(process)
            return 124, True
        time.sleep(0.1)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _read_back(handle: IO[str]) -> str:
    handle.flush()
    handle.seek(0)
    return handle.read()


def _tail(text: str) -> str:
    compact = text.strip()
    if len(compact) <= _STDERR_TAIL_CHARS:
        return compact
    return compact[-_STDERR_TAIL_CHARS:]
