"""Deterministic stand-ins for ffmpeg and ffprobe used in local dry runs and tests.

``python -m poco_worker.media.stub_tools ffmpeg -i IN ... OUT`` copies IN to OUT.
``python -m poco_worker.media.stub_tools ffprobe ... FILE`` prints keyframe
lines the way ``ffprobe -of csv=p=0`` does, deliberately out of order.
"""

from __future__ import annotations

import shutil
import sys
from pathlib import Path

STUB_KEYFRAMES = ("10.010000,", "0.000000", "2.002000,", "N/A", "4.004000")


def run_ffmpeg(argv: list[str]) -> int:
    if "-i" not in argv or argv.index("-i") + 1 >= len(argv) or len(argv) < 3:  # noqa: PLR2004
        print("stub ffmpeg: expected -i INPUT ... OUTPUT", file=sys.stderr)
        return 2
    input_path = Path(argv[argv.index("-i") + 1])
    output_path = Path(argv[-1])
    if not input_path.is_file():
        print(f"{input_path}: No such file or directory", file=sys.stderr)
        return 1
    output_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(input_path, output_path)
    print("frame=  1 fps=0.0 q=0.0 size=0kB time=00:00:10.01 bitrate=N/A", file=sys.stderr)
    return 0


def run_ffprobe(argv: list[str]) -> int:
    if not argv:
        print("stub ffprobe: expected FILE", file=sys.stderr)
        return 2
    path = Path(argv[-1])
    if not path.is_file():
        print(f"{path}: No such file or directory", file=sys.stderr)
        return 1
    print("\n".join(STUB_KEYFRAMES))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Dispatch to the emulated tool named by the first argument."""

    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("usage: stub_tools {ffmpeg|ffprobe} ARGS...", file=sys.stderr)
        return 2
    tool, rest = args[0], args[1:]
    if tool == "ffmpeg":
        return run_ffmpeg(rest)
    if tool == "ffprobe":
        return run_ffprobe(rest)
    print(f"stub_tools: unknown tool {tool!r}", file=sys.stderr)
    return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
