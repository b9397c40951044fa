"""Loaders for stereo image sequences and checks on stereo rectification parameters."""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import numpy as np

from .sequences import _content_lines, _fields, _timestamp

_NANOSECONDS = 1e9


@dataclass
class StereoRectification:
    """Calibration of both cameras of a stereo rig, as needed to rectify its images."""

    k_left: Optional[np.ndarray] = None
    k_right: Optional[np.ndarray] = None
    p_left: Optional[np.ndarray] = None
    p_right: Optional[np.ndarray] = None
    r_left: Optional[np.ndarray] = None
    r_right: Optional[np.ndarray] = None
    d_left: Optional[np.ndarray] = None
    d_right: Optional[np.ndarray] = None
    rows_left: int = 0
    cols_left: int = 0
    rows_right: int = 0
    cols_right: int = 0

    def validate(self) -> "StereoRectification":
        """Raise ValueError naming every missing parameter; return self when complete."""
        missing = []
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name.startswith(("rows_", "cols_")):
                if not value:
                    missing.append(item.name)
            elif value is None or np.asarray(value).size == 0:
                missing.append(item.name)
        if missing:
            raise ValueError(
                "calibration parameters to rectify stereo are missing: " + ", ".join(missing)
            )
        return self


def load_euroc_stereo(left_path, right_path, times_path) -> tuple:
    """Left and right image paths and timestamps (seconds) from a EuRoC times file."""
    left_base = str(left_path)
    right_base = str(right_path)
    left_images = []
    right_images = []
    timestamps = []
    for number, line in _content_lines(times_path):
        first = _fields(line, number, times_path, 1)[0]
        left_images.append(f"{left_base}/{line}.png")
        right_images.append(f"{right_base}/{line}.png")
        timestamps.append(_timestamp(first, number, times_path) / _NANOSECONDS)
    return left_images, right_images, timestamps


def load_kitti_stereo(sequence_path) -> tuple:
    """Left and right image paths and timestamps of a KITTI odometry sequence."""
    base = str(sequence_path)
    times_file = Path(base) / "times.txt"
    timestamps = [
        _timestamp(_fields(line, number, times_file, 1)[0], number, times_file)
        for number, line in _content_lines(times_file)
    ]
    left_images = [f"{base}/image_0/{index:06d}.png" for index in range(len(timestamps))]
    right_images = [f"{base}/image_1/{index:06d}.png" for index in range(len(timestamps))]
    return left_images, right_images, timestamps