"""Loaders for monocular and RGB-D image sequences and tracking-time statistics."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

_NANOSECONDS = 1e9
_TUM_HEADER_LINES = 3


@dataclass(frozen=True)
class TrackingStatistics:
    """Median and mean time spent tracking one frame, in seconds."""

    median: float
    mean: float
    count: int


def _content_lines(path, skip: int = 0) -> Iterator[tuple]:
    """Yield (line number, text) for each non-empty line after the first `skip`."""
    with open(path, encoding="utf-8") as handle:
        for number, raw in enumerate(handle, start=1):
            if number <= skip:
                continue
            line = raw.rstrip("\n")
            if line:
                yield number, line


def _fields(line: str, number: int, path, count: int) -> list:
    fields = line.split()
    if len(fields) < count:
        raise ValueError(f"{path}:{number}: expected {count} fields, got {len(fields)}")
    return fields


def _timestamp(text: str, number: int, path) -> float:
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"{path}:{number}: invalid timestamp {text!r}") from None


def load_euroc_mono(image_path, times_path) -> tuple:
    """Image paths and timestamps (seconds) from a EuRoC times file of nanosecond stamps."""
    base = str(image_path)
    images = []
    timestamps = []
    for number, line in _content_lines(times_path):
        first = _fields(line, number, times_path, 1)[0]
        images.append(f"{base}/{line}.png")
        timestamps.append(_timestamp(first, number, times_path) / _NANOSECONDS)
    return images, timestamps


def load_kitti_mono(sequence_path) -> tuple:
    """Left image paths and timestamps of a KITTI odometry sequence."""
    base = str(sequence_path)
    times_file = Path(base) / "times.txt"
    timestamps = [
        _timestamp(_fields(line, number, times_file, 1)[0], number, times_file)
        for number, line in _content_lines(times_file)
    ]
    images = [f"{base}/image_0/{index:06d}.png" for index in range(len(timestamps))]
    return images, timestamps


def load_tum_mono(rgb_file) -> tuple:
    """Relative image names and timestamps from a TUM rgb.txt, skipping its header."""
    images = []
    timestamps = []
    for number, line in _content_lines(rgb_file, skip=_TUM_HEADER_LINES):
        stamp, name = _fields(line, number, rgb_file, 2)[:2]
        timestamps.append(_timestamp(stamp, number, rgb_file))
        images.append(name)
    return images, timestamps


def load_tum_rgbd(association_file) -> tuple:
    """Colour names, depth names and colour timestamps from a TUM association file."""
    rgb_images = []
    depth_images = []
    timestamps = []
    for number, line in _content_lines(association_file):
        stamp, rgb_name, _, depth_name = _fields(line, number, association_file, 4)[:4]
        timestamps.append(_timestamp(stamp, number, association_file))
        rgb_images.append(rgb_name)
        depth_images.append(depth_name)
    return rgb_images, depth_images, timestamps


def frame_wait_time(timestamps: Sequence[float], index: int) -> float:
    """Time between a frame and the next one (or the previous one, for the last frame)."""
    n = len(timestamps)
    if not 0 <= index < n:
        raise IndexError(f"frame index {index} out of range for {n} frames")
    if index < n - 1:
        return timestamps[index + 1] - timestamps[index]
    if index > 0:
        return timestamps[index] - timestamps[index - 1]
    return 0.0


def tracking_statistics(times: Sequence[float]) -> TrackingStatistics:
    """Median and mean of per-frame tracking times."""
    ordered = sorted(float(t) for t in times)
    if not ordered:
        raise ValueError("no tracking times recorded")
    n = len(ordered)
    return TrackingStatistics(median=ordered[n // 2], mean=sum(ordered) / n, count=n)