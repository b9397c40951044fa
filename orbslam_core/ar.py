"""Augmented-reality helpers: planes fitted to map points, and a shared image/pose buffer."""

from __future__ import annotations

import math
import random
import threading
from typing import Optional, Protocol, Sequence

import numpy as np

_EPS = 1e-4
_MIN_PLANE_POINTS = 50
_MIN_OBSERVATIONS = 5
_UP = np.array([0.0, 1.0, 0.0])

_RED = (255, 0, 0)
_GREEN = (0, 255, 0)


class PlanePoint(Protocol):
    world_pos: np.ndarray
    observations: int
    is_bad: bool


def exp_so3(x: float, y: float, z: float) -> np.ndarray:
    """Rotation matrix of the rotation vector (x, y, z) by Rodrigues' formula."""
    identity = np.eye(3)
    d2 = x * x + y * y + z * z
    d = math.sqrt(d2)
    w = np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])
    if d < _EPS:
        return identity + w + 0.5 * (w @ w)
    return identity + w * math.sin(d) / d + (w @ w) * (1.0 - math.cos(d)) / d2


def exp_so3_vector(v) -> np.ndarray:
    """Rotation matrix of a rotation vector given as a 3-element array."""
    flat = np.asarray(v, dtype=float).reshape(-1)
    if flat.size < 3:
        raise ValueError("rotation vector needs three components")
    return exp_so3(float(flat[0]), float(flat[1]), float(flat[2]))


def gl_matrix(transform) -> list:
    """Column-major 16-element matrix of a rigid transform, for OpenGL."""
    m = np.asarray(transform, dtype=float)
    if m.ndim != 2 or m.shape[0] < 3 or m.shape[1] < 4:
        raise ValueError("transform must be at least 3x4")
    values = []
    for col in range(4):
        values.extend(float(m[row, col]) for row in range(3))
        values.append(1.0 if col == 3 else 0.0)
    return values


def status_text(status: int, localization_mode: bool) -> Optional[tuple]:
    """Overlay text and its RGB colour for a tracking status, or None."""
    if status == 1:
        return "SLAM NOT INITIALIZED", _RED
    if status == 2:
        return ("LOCALIZATION ON" if localization_mode else "SLAM ON"), _GREEN
    if status == 3:
        return ("LOCALIZATION LOST" if localization_mode else "SLAM LOST"), _RED
    return None


def _plane_transform(normal: np.ndarray, origin: np.ndarray, rang: float) -> np.ndarray:
    v = np.cross(_UP, normal)
    sa = float(np.linalg.norm(v))
    ca = float(_UP @ normal)
    ang = math.atan2(sa, ca)
    if sa > 1e-12:
        axis_angle = v * ang / sa
    elif ca >= 0:
        axis_angle = np.zeros(3)
    else:
        axis_angle = np.array([math.pi, 0.0, 0.0])
    tpw = np.eye(4)
    tpw[:3, :3] = exp_so3_vector(axis_angle) @ exp_so3_vector(_UP * rang)
    tpw[:3, 3] = origin
    return tpw


def _random_angle(rng: random.Random) -> float:
    return -3.14 / 2 + rng.random() * 3.14


class Plane:
    """A plane fitted to map points, with a world-to-plane transform."""

    def __init__(self, map_points: Sequence[PlanePoint], tcw, rng: Optional[random.Random] = None) -> None:
        self.map_points = list(map_points)
        self.tcw = np.array(tcw, dtype=float)
        if self.tcw.shape != (4, 4):
            raise ValueError("camera pose must be a 4x4 matrix")
        self.xc: Optional[np.ndarray] = None
        self.rang = _random_angle(rng or random.Random())
        self.normal = np.zeros(3)
        self.origin = np.zeros(3)
        self.tpw = np.eye(4)
        self.gl_tpw = gl_matrix(self.tpw)
        self.recompute()

    @classmethod
    def from_normal_origin(cls, normal, origin, rng: Optional[random.Random] = None) -> "Plane":
        """A plane given directly by its normal and a point on it."""
        plane = cls.__new__(cls)
        plane.map_points = []
        plane.tcw = None
        plane.xc = None
        plane.rang = _random_angle(rng or random.Random())
        plane.normal = np.asarray(normal, dtype=float).reshape(3).copy()
        plane.origin = np.asarray(origin, dtype=float).reshape(3).copy()
        if not np.any(plane.normal):
            raise ValueError("normal must be non-zero")
        plane.tpw = _plane_transform(plane.normal, plane.origin, plane.rang)
        plane.gl_tpw = gl_matrix(plane.tpw)
        return plane

    def recompute(self) -> None:
        """Refit the plane to all of its map points that are not bad."""
        positions = [
            np.asarray(p.world_pos, dtype=float).reshape(3)
            for p in self.map_points
            if not p.is_bad
        ]
        if not positions:
            raise ValueError("plane has no valid map points to fit")
        points = np.array(positions)
        a_matrix = np.column_stack((points, np.ones(len(points))))
        _, _, vt = np.linalg.svd(a_matrix, full_matrices=True)
        a, b, c = (float(value) for value in vt[3, :3])

        origin = points.mean(axis=0)
        norm = math.sqrt(a * a + b * b + c * c)
        if norm == 0:
            raise ValueError("map points do not define a plane")
        f = 1.0 / norm

        if self.xc is None:
            rotation = self.tcw[:3, :3]
            camera_centre = -rotation.T @ self.tcw[:3, 3]
            self.xc = camera_centre - origin

        if self.xc[0] * a + self.xc[1] * b + self.xc[2] * c > 0:
            a, b, c = -a, -b, -c

        self.normal = np.array([a * f, b * f, c * f])
        self.origin = origin
        self.tpw = _plane_transform(self.normal, self.origin, self.rang)
        self.gl_tpw = gl_matrix(self.tpw)


def detect_plane(tcw, map_points: Sequence, iterations: int = 50, rng: Optional[random.Random] = None) -> Optional[Plane]:
    """Fit a plane to well-observed map points by RANSAC; None when too few points."""
    if iterations < 1:
        raise ValueError("at least one RANSAC iteration is required")
    rng = rng or random.Random()
    candidates = [p for p in map_points if p is not None and p.observations > _MIN_OBSERVATIONS]
    n = len(candidates)
    if n < _MIN_PLANE_POINTS:
        return None

    points = np.array([np.asarray(p.world_pos, dtype=float).reshape(3) for p in candidates])
    homogeneous = np.column_stack((points, np.ones(n)))
    nth = max(int(0.2 * n), 20)

    best_dist = 1e10
    best_distances: Optional[np.ndarray] = None
    for _ in range(iterations):
        available = list(range(n))
        chosen = []
        for _ in range(3):
            j = rng.randint(0, len(available) - 1)
            chosen.append(available[j])
            available[j] = available[-1]
            available.pop()
        _, _, vt = np.linalg.svd(homogeneous[chosen], full_matrices=True)
        plane = vt[3]
        distances = np.abs(homogeneous @ plane) / float(np.linalg.norm(plane))
        median = float(np.sort(distances)[nth])
        if median < best_dist:
            best_dist = median
            best_distances = distances

    if best_distances is None:
        return None
    threshold = 1.4 * best_dist
    inliers = [p for p, dist in zip(candidates, best_distances) if dist < threshold]
    if not inliers:
        return None
    return Plane(inliers, tcw, rng)


class ImagePoseBuffer:
    """The last image and pose from tracking, shared safely between threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._image: Optional[np.ndarray] = None
        self._tcw: Optional[np.ndarray] = None
        self._status = 0
        self._keys: list = []
        self._map_points: list = []

    def set(self, image, tcw, status: int, keys: Sequence, map_points: Sequence) -> None:
        """Store copies of the latest image, pose, status, keypoints and map points."""
        image_copy = None if image is None else np.array(image, copy=True)
        tcw_copy = None if tcw is None else np.array(tcw, dtype=float, copy=True)
        with self._lock:
            self._image = image_copy
            self._tcw = tcw_copy
            self._status = int(status)
            self._keys = list(keys)
            self._map_points = list(map_points)

    def get(self) -> tuple:
        """Copies of (image, tcw, status, keys, map_points)."""
        with self._lock:
            image = None if self._image is None else self._image.copy()
            tcw = None if self._tcw is None else self._tcw.copy()
            return image, tcw, self._status, list(self._keys), list(self._map_points)