"""Monocular map initialization from two views by competing homography and fundamental models."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .geometry import (
    check_rt,
    compute_f21,
    compute_h21,
    decompose_e,
    normalize,
)

_SAMPLE_SIZE = 8
_HOMOGRAPHY_CHI2 = 5.991
_FUNDAMENTAL_CHI2 = 3.841
_FUNDAMENTAL_SCORE = 5.991
_HOMOGRAPHY_RATIO = 0.40


@dataclass
class Reconstruction:
    """Relative motion of view 2 with respect to view 1 and the triangulated points."""

    r21: np.ndarray
    t21: np.ndarray
    points3d: np.ndarray
    triangulated: list


def _coordinates(keys: Sequence) -> np.ndarray:
    return np.array([(kp.x, kp.y) for kp in keys], dtype=float).reshape(-1, 2)


class Initializer:
    """Estimates the first relative pose from matches to a reference set of keypoints."""

    def __init__(self, reference_keys, k, sigma: float = 1.0, iterations: int = 200, seed: int = 0) -> None:
        if iterations < 1:
            raise ValueError("at least one RANSAC iteration is required")
        self.k = np.array(k, dtype=float)
        if self.k.shape != (3, 3):
            raise ValueError("calibration must be a 3x3 matrix")
        self.keys1 = list(reference_keys)
        self.sigma = float(sigma)
        self.sigma2 = self.sigma * self.sigma
        self.max_iterations = int(iterations)
        self._rng = random.Random(seed)
        self.keys2: list = []
        self.matches12: list = []
        self.matched1 = [False] * len(self.keys1)
        self.sets: list = []

    def initialize(self, current_keys, matches12) -> Optional[Reconstruction]:
        """Reconstruct from the current keys; matches12[i] is the current index for key i or -1."""
        self.keys2 = list(current_keys)
        self.matches12 = [(i1, int(i2)) for i1, i2 in enumerate(matches12) if i2 >= 0]
        self.matched1 = [False] * len(self.keys1)
        for i1, _ in self.matches12:
            self.matched1[i1] = True

        n = len(self.matches12)
        if n < _SAMPLE_SIZE:
            raise ValueError(f"at least {_SAMPLE_SIZE} matches are needed, got {n}")

        self.sets = []
        for _ in range(self.max_iterations):
            available = list(range(n))
            chosen = []
            for _ in range(_SAMPLE_SIZE):
                j = self._rng.randint(0, len(available) - 1)
                chosen.append(available[j])
                available[j] = available[-1]
                available.pop()
            self.sets.append(chosen)

        inliers_h, score_h, h21 = self.find_homography()
        inliers_f, score_f, f21 = self.find_fundamental()

        total = score_h + score_f
        if not total > 0:
            return None
        ratio_h = score_h / total
        if ratio_h > _HOMOGRAPHY_RATIO:
            return self.reconstruct_h(inliers_h, h21, self.k, 1.0, 50)
        if f21 is None:
            return None
        return self.reconstruct_f(inliers_f, f21, self.k, 1.0, 50)

    def _require_sets(self) -> None:
        if not self.sets:
            raise ValueError("initialize must set up matches before estimating models")

    def _match_indices(self) -> tuple:
        idx1 = np.array([m[0] for m in self.matches12], dtype=int)
        idx2 = np.array([m[1] for m in self.matches12], dtype=int)
        return idx1, idx2

    def _matched_coordinates(self) -> tuple:
        idx1, idx2 = self._match_indices()
        p1 = _coordinates(self.keys1)[idx1]
        p2 = _coordinates(self.keys2)[idx2]
        return p1[:, 0], p1[:, 1], p2[:, 0], p2[:, 1]

    def find_homography(self) -> tuple:
        """RANSAC over the prepared samples; returns (inliers, score, h21)."""
        self._require_sets()
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        t2inv = np.linalg.inv(t2)
        idx1, idx2 = self._match_indices()

        best_score = 0.0
        best_inliers = [False] * len(self.matches12)
        best_h = None
        for sample in self.sets:
            chosen = np.array(sample, dtype=int)
            hn = compute_h21(pn1[idx1[chosen]], pn2[idx2[chosen]])
            h21 = t2inv @ hn @ t1
            try:
                h12 = np.linalg.inv(h21)
            except np.linalg.LinAlgError:
                continue
            score, inliers = self.check_homography(h21, h12, self.sigma)
            if score > best_score:
                best_score = score
                best_inliers = inliers
                best_h = h21.copy()
        return best_inliers, best_score, best_h

    def find_fundamental(self) -> tuple:
        """RANSAC over the prepared samples; returns (inliers, score, f21)."""
        self._require_sets()
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        idx1, idx2 = self._match_indices()

        best_score = 0.0
        best_inliers = [False] * len(self.matches12)
        best_f = None
        for sample in self.sets:
            chosen = np.array(sample, dtype=int)
            fn = compute_f21(pn1[idx1[chosen]], pn2[idx2[chosen]])
            f21 = t2.T @ fn @ t1
            score, inliers = self.check_fundamental(f21, self.sigma)
            if score > best_score:
                best_score = score
                best_inliers = inliers
                best_f = f21.copy()
        return best_inliers, best_score, best_f

    def check_homography(self, h21, h12, sigma: float) -> tuple:
        """Symmetric transfer error score of a homography; returns (score, inliers)."""
        h = np.asarray(h21, dtype=float)
        hi = np.asarray(h12, dtype=float)
        u1, v1, u2, v2 = self._matched_coordinates()
        inv_sigma2 = 1.0 / (sigma * sigma)
        with np.errstate(all="ignore"):
            w21 = 1.0 / (hi[2, 0] * u2 + hi[2, 1] * v2 + hi[2, 2])
            u2in1 = (hi[0, 0] * u2 + hi[0, 1] * v2 + hi[0, 2]) * w21
            v2in1 = (hi[1, 0] * u2 + hi[1, 1] * v2 + hi[1, 2]) * w21
            chi1 = ((u1 - u2in1) ** 2 + (v1 - v2in1) ** 2) * inv_sigma2

            w12 = 1.0 / (h[2, 0] * u1 + h[2, 1] * v1 + h[2, 2])
            u1in2 = (h[0, 0] * u1 + h[0, 1] * v1 + h[0, 2]) * w12
            v1in2 = (h[1, 0] * u1 + h[1, 1] * v1 + h[1, 2]) * w12
            chi2 = ((u2 - u1in2) ** 2 + (v2 - v1in2) ** 2) * inv_sigma2

            in1 = chi1 <= _HOMOGRAPHY_CHI2
            in2 = chi2 <= _HOMOGRAPHY_CHI2
        score = float(np.sum(_HOMOGRAPHY_CHI2 - chi1[in1]) + np.sum(_HOMOGRAPHY_CHI2 - chi2[in2]))
        return score, (in1 & in2).tolist()

    def check_fundamental(self, f21, sigma: float) -> tuple:
        """Point-to-epipolar-line error score of a fundamental matrix; returns (score, inliers)."""
        f = np.asarray(f21, dtype=float)
        u1, v1, u2, v2 = self._matched_coordinates()
        inv_sigma2 = 1.0 / (sigma * sigma)
        with np.errstate(all="ignore"):
            a2 = f[0, 0] * u1 + f[0, 1] * v1 + f[0, 2]
            b2 = f[1, 0] * u1 + f[1, 1] * v1 + f[1, 2]
            c2 = f[2, 0] * u1 + f[2, 1] * v1 + f[2, 2]
            num2 = a2 * u2 + b2 * v2 + c2
            chi1 = num2 * num2 / (a2 * a2 + b2 * b2) * inv_sigma2

            a1 = f[0, 0] * u2 + f[1, 0] * v2 + f[2, 0]
            b1 = f[0, 1] * u2 + f[1, 1] * v2 + f[2, 1]
            c1 = f[0, 2] * u2 + f[1, 2] * v2 + f[2, 2]
            num1 = a1 * u1 + b1 * v1 + c1
            chi2 = num1 * num1 / (a1 * a1 + b1 * b1) * inv_sigma2

            in1 = chi1 <= _FUNDAMENTAL_CHI2
            in2 = chi2 <= _FUNDAMENTAL_CHI2
        score = float(np.sum(_FUNDAMENTAL_SCORE - chi1[in1]) + np.sum(_FUNDAMENTAL_SCORE - chi2[in2]))
        return score, (in1 & in2).tolist()

    def _check(self, r, t, inliers, k) -> tuple:
        return check_rt(r, t, self.keys1, self.keys2, self.matches12, inliers, k, 4.0 * self.sigma2)

    def reconstruct_f(self, inliers, f21, k, min_parallax: float = 1.0, min_triangulated: int = 50) -> Optional[Reconstruction]:
        """Pick the one of four essential-matrix motions that triangulates clearly best."""
        n = sum(1 for flag in inliers if flag)
        cam = np.asarray(k, dtype=float)
        e21 = cam.T @ np.asarray(f21, dtype=float) @ cam
        r1, r2, t = decompose_e(e21)
        hypotheses = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
        results = [self._check(r, tt, inliers, cam) for r, tt in hypotheses]
        goods = [result[0] for result in results]

        max_good = max(goods)
        n_min_good = max(int(0.9 * n), min_triangulated)
        n_similar = sum(1 for g in goods if g > 0.7 * max_good)
        if max_good < n_min_good or n_similar > 1:
            return None

        best = goods.index(max_good)
        _, points3d, good, parallax = results[best]
        if not parallax > min_parallax:
            return None
        r, tt = hypotheses[best]
        return Reconstruction(r.copy(), tt.copy(), points3d, good)

    def reconstruct_h(self, inliers, h21, k, min_parallax: float = 1.0, min_triangulated: int = 50) -> Optional[Reconstruction]:
        """Decompose a homography into eight motions and keep the unambiguous best one."""
        n = sum(1 for flag in inliers if flag)
        cam = np.asarray(k, dtype=float)
        a = np.linalg.inv(cam) @ np.asarray(h21, dtype=float) @ cam
        u, w, vt = np.linalg.svd(a, full_matrices=True)
        s = np.linalg.det(u) * np.linalg.det(vt)
        d1, d2, d3 = (float(x) for x in w)
        if d2 == 0 or d3 == 0 or d1 / d2 < 1.00001 or d2 / d3 < 1.00001:
            return None

        aux1 = np.sqrt((d1 * d1 - d2 * d2) / (d1 * d1 - d3 * d3))
        aux3 = np.sqrt((d2 * d2 - d3 * d3) / (d1 * d1 - d3 * d3))
        x1 = (aux1, aux1, -aux1, -aux1)
        x3 = (aux3, -aux3, aux3, -aux3)

        rotations = []
        translations = []

        aux_stheta = np.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3)) / ((d1 + d3) * d2)
        ctheta = (d2 * d2 + d1 * d3) / ((d1 + d3) * d2)
        stheta = (aux_stheta, -aux_stheta, -aux_stheta, aux_stheta)
        for a1, a3, st in zip(x1, x3, stheta):
            rp = np.eye(3)
            rp[0, 0] = ctheta
            rp[0, 2] = -st
            rp[2, 0] = st
            rp[2, 2] = ctheta
            rotations.append(s * u @ rp @ vt)
            tvec = u @ (np.array([a1, 0.0, -a3]) * (d1 - d3))
            translations.append(tvec / np.linalg.norm(tvec))

        aux_sphi = np.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3)) / ((d1 - d3) * d2)
        cphi = (d1 * d3 - d2 * d2) / ((d1 - d3) * d2)
        sphi = (aux_sphi, -aux_sphi, -aux_sphi, aux_sphi)
        for a1, a3, sp in zip(x1, x3, sphi):
            rp = np.eye(3)
            rp[0, 0] = cphi
            rp[0, 2] = sp
            rp[1, 1] = -1.0
            rp[2, 0] = sp
            rp[2, 2] = -cphi
            rotations.append(s * u @ rp @ vt)
            tvec = u @ (np.array([a1, 0.0, a3]) * (d1 + d3))
            translations.append(tvec / np.linalg.norm(tvec))

        best_good = 0
        second_best_good = 0
        best_index = -1
        best_parallax = -1.0
        best_points = None
        best_triangulated = None
        for index, (r, t) in enumerate(zip(rotations, translations)):
            n_good, points3d, good, parallax = self._check(r, t, inliers, cam)
            if n_good > best_good:
                second_best_good = best_good
                best_good = n_good
                best_index = index
                best_parallax = parallax
                best_points = points3d
                best_triangulated = good
            elif n_good > second_best_good:
                second_best_good = n_good

        if (
            best_index >= 0
            and second_best_good < 0.75 * best_good
            and best_parallax >= min_parallax
            and best_good > min_triangulated
            and best_good > 0.9 * n
        ):
            return Reconstruction(
                rotations[best_index].copy(),
                translations[best_index].copy(),
                best_points,
                best_triangulated,
            )
        return None