"""Parsing of ffprobe keyframe listings."""

from __future__ import annotations

import logging
import math
import re

logger = logging.getLogger(__name__)

_LEADING_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?")


def parse_keyframe_output(text: str) -> list[str]:
    """Extract keyframe timestamps from ``-of csv=p=0`` output, ascending by value.

    Each non-empty line contributes its leading number as printed by the probe
    (``"4.004000,"`` becomes ``"4.004000"``). Lines without a finite leading
    number (``N/A``) are dropped.
    """

    timestamps: list[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _LEADING_NUMBER.match(line)
        if match is None:
            logger.debug("Ignoring non-numeric probe line: %r", line)
            continue
        timestamps.append(match.group(0))
    return sort_timestamps(timestamps)


def sort_timestamps(timestamps: list[str]) -> list[str]:
    """Sort timestamp strings by numeric value, never lexicographically."""

    numeric: list[tuple[float, str]] = []
    for value in timestamps:
        try:
            number = float(value)
        except ValueError:
            logger.debug("Ignoring non-numeric timestamp: %r", value)
            continue
        if not math.isfinite(number):
            continue
        numeric.append((number, value))
    numeric.sort(key=lambda item: item[0])
    return [value for _, value in numeric]
