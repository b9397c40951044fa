"""Conversions between pose matrices, vectors, quaternions and descriptor lists."""

from __future__ import annotations

import math

import numpy as np


def to_descriptor_vector(descriptors) -> list:
    """Split a descriptor matrix into a list of its rows."""
    matrix = np.asarray(descriptors)
    if matrix.ndim != 2:
        raise ValueError("descriptors must be a 2-D matrix")
    return [row.copy() for row in matrix]


def split_transform(transform) -> tuple:
    """Rotation and translation of a homogeneous rigid transform."""
    matrix = np.asarray(transform, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] < 3 or matrix.shape[1] < 4:
        raise ValueError("transform must be at least 3x4")
    return matrix[:3, :3].copy(), matrix[:3, 3].copy()


def se3_to_matrix(rotation, translation) -> np.ndarray:
    """A 4x4 homogeneous matrix from a rotation and a translation."""
    r = np.asarray(rotation, dtype=float)
    t = np.asarray(translation, dtype=float).reshape(-1)
    if r.shape != (3, 3):
        raise ValueError("rotation must be 3x3")
    if t.shape != (3,):
        raise ValueError("translation must have three components")
    matrix = np.eye(4)
    matrix[:3, :3] = r
    matrix[:3, 3] = t
    return matrix


def sim3_to_matrix(rotation, translation, scale: float) -> np.ndarray:
    """A 4x4 similarity matrix: scaled rotation with translation."""
    return se3_to_matrix(float(scale) * np.asarray(rotation, dtype=float), translation)


def to_vector3d(value) -> np.ndarray:
    """A 3-vector from a point with x, y, z attributes or from an array."""
    if all(hasattr(value, name) for name in ("x", "y", "z")):
        return np.array([value.x, value.y, value.z], dtype=float)
    flat = np.asarray(value, dtype=float).reshape(-1)
    if flat.size < 3:
        raise ValueError("need at least three components")
    return flat[:3].copy()


def to_matrix3d(matrix) -> np.ndarray:
    """The upper-left 3x3 block of a matrix."""
    m = np.asarray(matrix, dtype=float)
    if m.ndim != 2 or m.shape[0] < 3 or m.shape[1] < 3:
        raise ValueError("matrix must be at least 3x3")
    return m[:3, :3].copy()


def to_quaternion(matrix) -> list:
    """Quaternion [x, y, z, w] of a rotation matrix."""
    m = to_matrix3d(matrix)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    q = [0.0, 0.0, 0.0]
    if trace > 0:
        s = math.sqrt(trace + 1.0)
        w = 0.5 * s
        s = 0.5 / s
        q[0] = (m[2, 1] - m[1, 2]) * s
        q[1] = (m[0, 2] - m[2, 0]) * s
        q[2] = (m[1, 0] - m[0, 1]) * s
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * s
        s = 0.5 / s
        w = (m[k, j] - m[j, k]) * s
        q[j] = (m[j, i] + m[i, j]) * s
        q[k] = (m[k, i] + m[i, k]) * s
    return [float(q[0]), float(q[1]), float(q[2]), float(w)]