"""A single camera frame: keypoints, undistortion, feature grid, stereo depth and pose."""

from __future__ import annotations

import copy
import itertools
import math
import sys
from dataclasses import dataclass, replace
from typing import Optional, Protocol, Sequence

import numpy as np

GRID_COLS = 64
GRID_ROWS = 48

TH_HIGH = 100
TH_LOW = 50

_PATCH_HALF = 5
_SEARCH_RANGE = 5
_UNDISTORT_ITERATIONS = 5
_INT_MAX = 2**31 - 1


@dataclass(frozen=True)
class KeyPoint:
    """An image feature location with its pyramid level."""

    x: float
    y: float
    octave: int = 0
    size: float = 0.0
    angle: float = -1.0
    response: float = 0.0

    def with_position(self, x: float, y: float) -> "KeyPoint":
        """Return the same keypoint moved to (x, y)."""
        return replace(self, x=float(x), y=float(y))


def descriptor_distance(a, b) -> int:
    """Hamming distance between two binary descriptors."""
    first = np.asarray(a, dtype=np.uint8)
    second = np.asarray(b, dtype=np.uint8)
    if first.shape != second.shape:
        raise ValueError("descriptors must have the same length")
    return int(np.unpackbits(np.bitwise_xor(first, second)).sum())


@dataclass(frozen=True)
class CameraCalibration:
    """Pinhole intrinsics, radial-tangential distortion and stereo baseline."""

    fx: float
    fy: float
    cx: float
    cy: float
    dist_coef: tuple = (0.0, 0.0, 0.0, 0.0)
    bf: float = 0.0
    th_depth: float = 0.0

    def __post_init__(self) -> None:
        if self.fx == 0 or self.fy == 0:
            raise ValueError("focal lengths must be non-zero")
        coefficients = tuple(float(c) for c in self.dist_coef)
        if len(coefficients) not in (4, 5):
            raise ValueError("distortion needs 4 or 5 coefficients")
        object.__setattr__(self, "dist_coef", coefficients)

    @property
    def k(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]]
        )

    @property
    def invfx(self) -> float:
        return 1.0 / self.fx

    @property
    def invfy(self) -> float:
        return 1.0 / self.fy

    @property
    def baseline(self) -> float:
        return self.bf / self.fx

    @property
    def distorted(self) -> bool:
        return self.dist_coef[0] != 0.0


@dataclass(frozen=True)
class FrustumProjection:
    """Where a map point lands in a frame, as used by tracking."""

    u: float
    u_right: float
    v: float
    level: int
    view_cos: float


class MapPointLike(Protocol):
    world_pos: np.ndarray
    normal: np.ndarray
    min_distance_invariance: float
    max_distance_invariance: float

    def predict_scale(self, dist: float, frame: "Frame") -> int: ...


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _undistort_points(points: np.ndarray, calib: CameraCalibration) -> np.ndarray:
    k1, k2, p1, p2, *rest = calib.dist_coef
    k3 = rest[0] if rest else 0.0
    x0 = (points[:, 0] - calib.cx) / calib.fx
    y0 = (points[:, 1] - calib.cy) / calib.fy
    x, y = x0.copy(), y0.copy()
    for _ in range(_UNDISTORT_ITERATIONS):
        r2 = x * x + y * y
        icdist = 1.0 / (1.0 + ((k3 * r2 + k2) * r2 + k1) * r2)
        delta_x = 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
        delta_y = p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
        x = (x0 - delta_x) * icdist
        y = (y0 - delta_y) * icdist
    return np.column_stack((x * calib.fx + calib.cx, y * calib.fy + calib.cy))


def _descriptor_matrix(descriptors, count: int) -> np.ndarray:
    arr = np.asarray(descriptors, dtype=np.uint8)
    if arr.size == 0 and count == 0:
        return np.zeros((0, 32), dtype=np.uint8)
    if arr.ndim != 2 or arr.shape[0] != count:
        raise ValueError("need one descriptor row per keypoint")
    return arr.copy()


def _centred_patch(image: np.ndarray, row: int, col: int, half: int) -> Optional[np.ndarray]:
    r0, r1 = row - half, row + half + 1
    c0, c1 = col - half, col + half + 1
    if r0 < 0 or c0 < 0 or r1 > image.shape[0] or c1 > image.shape[1]:
        return None
    patch = image[r0:r1, c0:c1].astype(np.float32)
    return patch - patch[half, half]


class Frame:
    """Keypoints of one image together with their grid, depth and camera pose."""

    _ids = itertools.count()

    def __init__(
        self,
        keys: Sequence[KeyPoint],
        descriptors,
        calibration: CameraCalibration,
        image_size: tuple,
        *,
        timestamp: float = 0.0,
        keys_right: Sequence[KeyPoint] = (),
        descriptors_right=None,
        scale_factors: Sequence[float] = (1.0,),
    ) -> None:
        self.keys = list(keys)
        self.keys_right = list(keys_right)
        self.descriptors = _descriptor_matrix(descriptors, len(self.keys))
        self.descriptors_right = _descriptor_matrix(
            () if descriptors_right is None else descriptors_right, len(self.keys_right)
        )
        self.id = next(Frame._ids)
        self.timestamp = float(timestamp)
        self.calibration = calibration
        self.n = len(self.keys)

        self.scale_factors = [float(s) for s in scale_factors]
        if not self.scale_factors:
            raise ValueError("at least one scale level is required")
        self.n_levels = len(self.scale_factors)
        self.scale_factor = self.scale_factors[1] if self.n_levels > 1 else 1.0
        self.log_scale_factor = math.log(self.scale_factor)
        self.inv_scale_factors = [1.0 / s for s in self.scale_factors]
        self.level_sigma2 = [s * s for s in self.scale_factors]
        self.inv_level_sigma2 = [1.0 / s for s in self.level_sigma2]

        self.baseline = calibration.baseline
        self.keys_un = self._undistort_keypoints()
        self.u_right = [-1.0] * self.n
        self.depth = [-1.0] * self.n
        self.map_points: list = [None] * self.n
        self.outliers = [False] * self.n
        self.reference_keyframe = None

        width, height = image_size
        self.min_x, self.max_x, self.min_y, self.max_y = self._image_bounds(width, height)
        self.grid_element_width_inv = GRID_COLS / (self.max_x - self.min_x)
        self.grid_element_height_inv = GRID_ROWS / (self.max_y - self.min_y)
        self.grid = [[[] for _ in range(GRID_ROWS)] for _ in range(GRID_COLS)]
        for index, kp in enumerate(self.keys_un):
            cell = self.pos_in_grid(kp)
            if cell is not None:
                self.grid[cell[0]][cell[1]].append(index)

        self.tcw: Optional[np.ndarray] = None
        self.rcw: Optional[np.ndarray] = None
        self.rwc: Optional[np.ndarray] = None
        self.t_cw: Optional[np.ndarray] = None
        self.ow: Optional[np.ndarray] = None

    def _undistort_keypoints(self) -> list:
        if not self.calibration.distorted or not self.keys:
            return list(self.keys)
        points = np.array([(kp.x, kp.y) for kp in self.keys], dtype=float)
        undistorted = _undistort_points(points, self.calibration)
        return [kp.with_position(x, y) for kp, (x, y) in zip(self.keys, undistorted)]

    def _image_bounds(self, width: float, height: float) -> tuple:
        if not self.calibration.distorted:
            return 0.0, float(width), 0.0, float(height)
        corners = np.array(
            [[0.0, 0.0], [width, 0.0], [0.0, height], [width, height]], dtype=float
        )
        c = _undistort_points(corners, self.calibration)
        return (
            float(min(c[0, 0], c[2, 0])),
            float(max(c[1, 0], c[3, 0])),
            float(min(c[0, 1], c[1, 1])),
            float(max(c[2, 1], c[3, 1])),
        )

    def set_pose(self, tcw) -> None:
        """Set the world-to-camera transform and derive rotation, centre."""
        pose = np.array(tcw, dtype=float)
        if pose.shape != (4, 4):
            raise ValueError("pose must be a 4x4 matrix")
        self.tcw = pose
        self.rcw = pose[:3, :3].copy()
        self.rwc = self.rcw.T
        self.t_cw = pose[:3, 3].copy()
        self.ow = -self.rwc @ self.t_cw

    def _require_pose(self) -> None:
        if self.tcw is None:
            raise ValueError("frame has no pose")

    def is_in_frustum(self, map_point: MapPointLike, viewing_cos_limit: float) -> Optional[FrustumProjection]:
        """Project a map point; return its projection or None if not visible."""
        self._require_pose()
        calib = self.calibration
        p = np.asarray(map_point.world_pos, dtype=float).reshape(3)
        pc = self.rcw @ p + self.t_cw
        pc_x, pc_y, pc_z = pc
        if pc_z < 0.0:
            return None
        invz = 1.0 / pc_z
        u = calib.fx * pc_x * invz + calib.cx
        v = calib.fy * pc_y * invz + calib.cy
        if u < self.min_x or u > self.max_x:
            return None
        if v < self.min_y or v > self.max_y:
            return None
        po = p - self.ow
        dist = float(np.linalg.norm(po))
        if dist < map_point.min_distance_invariance or dist > map_point.max_distance_invariance:
            return None
        normal = np.asarray(map_point.normal, dtype=float).reshape(3)
        view_cos = float(po @ normal) / dist
        if view_cos < viewing_cos_limit:
            return None
        level = map_point.predict_scale(dist, self)
        return FrustumProjection(
            u=float(u),
            u_right=float(u - calib.bf * invz),
            v=float(v),
            level=int(level),
            view_cos=view_cos,
        )

    def get_features_in_area(self, x: float, y: float, r: float, min_level: int = -1, max_level: int = -1) -> list:
        """Indices of undistorted keypoints within a square of half-side r."""
        min_cell_x = max(0, math.floor((x - self.min_x - r) * self.grid_element_width_inv))
        if min_cell_x >= GRID_COLS:
            return []
        max_cell_x = min(GRID_COLS - 1, math.ceil((x - self.min_x + r) * self.grid_element_width_inv))
        if max_cell_x < 0:
            return []
        min_cell_y = max(0, math.floor((y - self.min_y - r) * self.grid_element_height_inv))
        if min_cell_y >= GRID_ROWS:
            return []
        max_cell_y = min(GRID_ROWS - 1, math.ceil((y - self.min_y + r) * self.grid_element_height_inv))
        if max_cell_y < 0:
            return []

        check_levels = min_level > 0 or max_level >= 0
        found = []
        for ix in range(min_cell_x, max_cell_x + 1):
            for iy in range(min_cell_y, max_cell_y + 1):
                for index in self.grid[ix][iy]:
                    kp = self.keys_un[index]
                    if check_levels:
                        if kp.octave < min_level:
                            continue
                        if max_level >= 0 and kp.octave > max_level:
                            continue
                    if abs(kp.x - x) < r and abs(kp.y - y) < r:
                        found.append(index)
        return found

    def pos_in_grid(self, keypoint: KeyPoint) -> Optional[tuple]:
        """Grid cell of a keypoint, or None when it falls outside the grid."""
        pos_x = _round_half_away((keypoint.x - self.min_x) * self.grid_element_width_inv)
        pos_y = _round_half_away((keypoint.y - self.min_y) * self.grid_element_height_inv)
        if pos_x < 0 or pos_x >= GRID_COLS or pos_y < 0 or pos_y >= GRID_ROWS:
            return None
        return pos_x, pos_y

    def compute_stereo_from_rgbd(self, depth) -> None:
        """Fill depth and virtual right coordinate from a registered depth map."""
        depth_map = np.asarray(depth)
        self.u_right = [-1.0] * self.n
        self.depth = [-1.0] * self.n
        for index, (kp, kp_un) in enumerate(zip(self.keys, self.keys_un)):
            d = float(depth_map[int(kp.y), int(kp.x)])
            if d > 0:
                self.depth[index] = d
                self.u_right[index] = kp_un.x - self.calibration.bf / d

    def compute_stereo_matches(self, left_pyramid, right_pyramid, th_high: int = TH_HIGH, th_low: int = TH_LOW) -> None:
        """Match left keypoints to right ones along epipolar rows, with subpixel refinement."""
        self.u_right = [-1.0] * self.n
        self.depth = [-1.0] * self.n
        if self.baseline <= 0:
            raise ValueError("stereo matching needs a positive baseline")

        th_orb_dist = (th_high + th_low) // 2
        n_rows = np.asarray(left_pyramid[0]).shape[0]

        row_indices = [[] for _ in range(n_rows)]
        for i_r, kp in enumerate(self.keys_right):
            r = 2.0 * self.scale_factors[kp.octave]
            first = max(math.floor(kp.y - r), 0)
            last = min(math.ceil(kp.y + r), n_rows - 1)
            for yi in range(first, last + 1):
                row_indices[yi].append(i_r)

        min_d = 0.0
        max_d = self.calibration.bf / self.baseline
        scored = []

        for i_l, kp_l in enumerate(self.keys):
            v_row = int(kp_l.y)
            if not 0 <= v_row < n_rows:
                continue
            candidates = row_indices[v_row]
            if not candidates:
                continue
            min_u = kp_l.x - max_d
            max_u = kp_l.x - min_d
            if max_u < 0:
                continue

            best_dist = th_high
            best_idx = 0
            d_l = self.descriptors[i_l]
            for i_r in candidates:
                kp_r = self.keys_right[i_r]
                if kp_r.octave < kp_l.octave - 1 or kp_r.octave > kp_l.octave + 1:
                    continue
                if min_u <= kp_r.x <= max_u:
                    dist = descriptor_distance(d_l, self.descriptors_right[i_r])
                    if dist < best_dist:
                        best_dist = dist
                        best_idx = i_r

            if best_dist >= th_orb_dist:
                continue

            level = kp_l.octave
            inv_scale = self.inv_scale_factors[level]
            su_l = _round_half_away(kp_l.x * inv_scale)
            sv_l = _round_half_away(kp_l.y * inv_scale)
            su_r0 = _round_half_away(self.keys_right[best_idx].x * inv_scale)

            patch_l = _centred_patch(np.asarray(left_pyramid[level]), sv_l, su_l, _PATCH_HALF)
            if patch_l is None:
                continue
            right_image = np.asarray(right_pyramid[level])
            ini_u = su_r0 + _SEARCH_RANGE - _PATCH_HALF
            end_u = su_r0 + _SEARCH_RANGE + _PATCH_HALF + 1
            if ini_u < 0 or end_u >= right_image.shape[1]:
                continue

            best_sad = _INT_MAX
            best_inc = 0
            sads = []
            for inc in range(-_SEARCH_RANGE, _SEARCH_RANGE + 1):
                patch_r = _centred_patch(right_image, sv_l, su_r0 + inc, _PATCH_HALF)
                if patch_r is None:
                    break
                sad = float(np.abs(patch_l - patch_r).sum(dtype=np.float64))
                if sad < best_sad:
                    best_sad = int(sad)
                    best_inc = inc
                sads.append(sad)
            else:
                if best_inc in (-_SEARCH_RANGE, _SEARCH_RANGE):
                    continue
                centre = _SEARCH_RANGE + best_inc
                dist1, dist2, dist3 = sads[centre - 1], sads[centre], sads[centre + 1]
                denominator = 2.0 * (dist1 + dist3 - 2.0 * dist2)
                if denominator == 0:
                    continue
                delta_r = (dist1 - dist3) / denominator
                if delta_r < -1 or delta_r > 1:
                    continue

                best_u_r = self.scale_factors[level] * (su_r0 + best_inc + delta_r)
                disparity = kp_l.x - best_u_r
                if min_d <= disparity < max_d:
                    if disparity <= 0:
                        disparity = 0.01
                        best_u_r = kp_l.x - 0.01
                    self.depth[i_l] = self.calibration.bf / disparity
                    self.u_right[i_l] = best_u_r
                    scored.append((best_sad, i_l))

        if not scored:
            return
        scored.sort()
        median = scored[len(scored) // 2][0]
        th_dist = 1.5 * 1.4 * median
        for dist, i_l in reversed(scored):
            if dist < th_dist:
                break
            self.u_right[i_l] = -1.0
            self.depth[i_l] = -1.0

    def unproject_stereo(self, index: int) -> Optional[np.ndarray]:
        """World coordinates of a keypoint with known depth, or None."""
        z = self.depth[index]
        if z <= 0:
            return None
        self._require_pose()
        calib = self.calibration
        kp = self.keys_un[index]
        x = (kp.x - calib.cx) * z * calib.invfx
        y = (kp.y - calib.cy) * z * calib.invfy
        return self.rwc @ np.array([x, y, z]) + self.ow

    def copy(self) -> "Frame":
        """An independent copy sharing map point references and the frame id."""
        clone = copy.copy(self)
        clone.keys = list(self.keys)
        clone.keys_right = list(self.keys_right)
        clone.keys_un = list(self.keys_un)
        clone.descriptors = self.descriptors.copy()
        clone.descriptors_right = self.descriptors_right.copy()
        clone.u_right = list(self.u_right)
        clone.depth = list(self.depth)
        clone.map_points = list(self.map_points)
        clone.outliers = list(self.outliers)
        clone.scale_factors = list(self.scale_factors)
        clone.inv_scale_factors = list(self.inv_scale_factors)
        clone.level_sigma2 = list(self.level_sigma2)
        clone.inv_level_sigma2 = list(self.inv_level_sigma2)
        clone.grid = [[list(cell) for cell in column] for column in self.grid]
        if self.tcw is not None:
            clone.set_pose(self.tcw)
        return clone