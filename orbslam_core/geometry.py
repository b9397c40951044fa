"""Two-view geometry: homography, fundamental matrix, triangulation and pose checks."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

_PARALLAX_COS_LIMIT = 0.99998
_PARALLAX_RANK = 50


def _as_points(points) -> np.ndarray:
    rows = [(p.x, p.y) if hasattr(p, "x") else tuple(p) for p in points]
    arr = np.array(rows, dtype=float).reshape(-1, 2)
    return arr


def _pair(points1, points2) -> tuple:
    p1, p2 = _as_points(points1), _as_points(points2)
    if len(p1) != len(p2):
        raise ValueError("point sets must have the same length")
    if len(p1) == 0:
        raise ValueError("point sets must not be empty")
    return p1, p2


def compute_h21(points1, points2) -> np.ndarray:
    """Homography mapping points of view 1 onto view 2 by the DLT."""
    p1, p2 = _pair(points1, points2)
    u1, v1 = p1[:, 0], p1[:, 1]
    u2, v2 = p2[:, 0], p2[:, 1]
    zero = np.zeros_like(u1)
    one = np.ones_like(u1)
    a = np.empty((2 * len(p1), 9))
    a[0::2] = np.column_stack((zero, zero, zero, -u1, -v1, -one, v2 * u1, v2 * v1, v2))
    a[1::2] = np.column_stack((u1, v1, one, zero, zero, zero, -u2 * u1, -u2 * v1, -u2))
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    return vt[8].reshape(3, 3)


def compute_f21(points1, points2) -> np.ndarray:
    """Rank-2 fundamental matrix with x2^T F x1 = 0 by the eight-point method."""
    p1, p2 = _pair(points1, points2)
    u1, v1 = p1[:, 0], p1[:, 1]
    u2, v2 = p2[:, 0], p2[:, 1]
    a = np.column_stack(
        (u2 * u1, u2 * v1, u2, v2 * u1, v2 * v1, v2, u1, v1, np.ones_like(u1))
    )
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    f_pre = vt[8].reshape(3, 3)
    u, w, vt = np.linalg.svd(f_pre, full_matrices=True)
    w[2] = 0.0
    return u @ np.diag(w) @ vt


def normalize(keys) -> tuple:
    """Centre keypoints and scale them to unit mean absolute deviation.

    Returns the normalized points (N x 2) and the 3x3 transform applied.
    """
    points = _as_points(keys)
    if len(points) == 0:
        raise ValueError("cannot normalize an empty point set")
    mean = points.mean(axis=0)
    centred = points - mean
    mean_dev = np.abs(centred).mean(axis=0)
    if np.any(mean_dev == 0):
        raise ValueError("points have no spread along an axis")
    scale = 1.0 / mean_dev
    normalized = centred * scale
    transform = np.eye(3)
    transform[0, 0] = scale[0]
    transform[1, 1] = scale[1]
    transform[0, 2] = -mean[0] * scale[0]
    transform[1, 2] = -mean[1] * scale[1]
    return normalized, transform


def triangulate(kp1, kp2, p1, p2) -> np.ndarray:
    """Linear triangulation of one correspondence from two projection matrices."""
    proj1 = np.asarray(p1, dtype=float)
    proj2 = np.asarray(p2, dtype=float)
    a = np.array(
        [
            kp1.x * proj1[2] - proj1[0],
            kp1.y * proj1[2] - proj1[1],
            kp2.x * proj2[2] - proj2[0],
            kp2.y * proj2[2] - proj2[1],
        ]
    )
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    x = vt[3]
    with np.errstate(divide="ignore", invalid="ignore"):
        return x[:3] / x[3]


def decompose_e(e) -> tuple:
    """The two rotations and the unit translation encoded in an essential matrix."""
    u, _, vt = np.linalg.svd(np.asarray(e, dtype=float))
    t = u[:, 2] / np.linalg.norm(u[:, 2])
    w = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    r1 = u @ w @ vt
    if np.linalg.det(r1) < 0:
        r1 = -r1
    r2 = u @ w.T @ vt
    if np.linalg.det(r2) < 0:
        r2 = -r2
    return r1, r2, t


def check_rt(r, t, keys1: Sequence, keys2: Sequence, matches12: Sequence, inliers: Sequence, k, th2: float) -> tuple:
    """Triangulate inlier matches under a motion hypothesis and count good points.

    Returns (n_good, points3d, good, parallax_degrees): points3d has one row per
    key of view 1, good flags keys with enough parallax.
    """
    rot = np.asarray(r, dtype=float)
    trans = np.asarray(t, dtype=float).reshape(3)
    cam = np.asarray(k, dtype=float)
    fx, fy, cx, cy = cam[0, 0], cam[1, 1], cam[0, 2], cam[1, 2]

    good = [False] * len(keys1)
    points3d = np.zeros((len(keys1), 3))
    cos_parallaxes = []

    p1 = np.zeros((3, 4))
    p1[:, :3] = cam
    o1 = np.zeros(3)
    p2 = cam @ np.column_stack((rot, trans))
    o2 = -rot.T @ trans

    n_good = 0
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        for (i1, i2), is_inlier in zip(matches12, inliers):
            if not is_inlier:
                continue
            kp1, kp2 = keys1[i1], keys2[i2]
            p3d_c1 = triangulate(kp1, kp2, p1, p2)
            if not np.all(np.isfinite(p3d_c1)):
                good[i1] = False
                continue

            normal1 = p3d_c1 - o1
            normal2 = p3d_c1 - o2
            cos_parallax = float(normal1 @ normal2) / (
                float(np.linalg.norm(normal1)) * float(np.linalg.norm(normal2))
            )

            if p3d_c1[2] <= 0 and cos_parallax < _PARALLAX_COS_LIMIT:
                continue
            p3d_c2 = rot @ p3d_c1 + trans
            if p3d_c2[2] <= 0 and cos_parallax < _PARALLAX_COS_LIMIT:
                continue

            inv_z1 = 1.0 / p3d_c1[2]
            im1x = fx * p3d_c1[0] * inv_z1 + cx
            im1y = fy * p3d_c1[1] * inv_z1 + cy
            if (im1x - kp1.x) ** 2 + (im1y - kp1.y) ** 2 > th2:
                continue

            inv_z2 = 1.0 / p3d_c2[2]
            im2x = fx * p3d_c2[0] * inv_z2 + cx
            im2y = fy * p3d_c2[1] * inv_z2 + cy
            if (im2x - kp2.x) ** 2 + (im2y - kp2.y) ** 2 > th2:
                continue

            cos_parallaxes.append(cos_parallax)
            points3d[i1] = p3d_c1
            n_good += 1
            if cos_parallax < _PARALLAX_COS_LIMIT:
                good[i1] = True

    if n_good > 0:
        cos_parallaxes.sort()
        idx = min(_PARALLAX_RANK, len(cos_parallaxes) - 1)
        value = max(-1.0, min(1.0, cos_parallaxes[idx]))
        parallax = math.degrees(math.acos(value))
    else:
        parallax = 0.0
    return n_good, points3d, good, parallax