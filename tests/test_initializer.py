import numpy as np
import pytest

from orbslam_core.frame import KeyPoint
from orbslam_core.initializer import Initializer

K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])
T_TRUE = np.array([-1.0, 0.1, 0.05])


def _rot_y(a):
    c, s = np.cos(a), np.sin(a)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def _rot_x(a):
    c, s = np.cos(a), np.sin(a)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


R_TRUE = _rot_y(0.05) @ _rot_x(0.02)


def _skew(v):
    return np.array([[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]])


def _project(points):
    p = points @ K.T
    return p[:, :2] / p[:, 2:]


def _keys(uv):
    return [KeyPoint(float(u), float(v)) for u, v in uv]


def _scene(n=100, seed=3):
    rng = np.random.default_rng(seed)
    return np.column_stack(
        (rng.uniform(-2, 2, n), rng.uniform(-1.5, 1.5, n), rng.uniform(4, 8, n))
    )


def _views(points):
    keys1 = _keys(_project(points))
    keys2 = _keys(_project(points @ R_TRUE.T + T_TRUE))
    return keys1, keys2


def _initialized(points, matches=None, seed=0):
    keys1, keys2 = _views(points)
    init = Initializer(keys1, K, sigma=1.0, iterations=200, seed=seed)
    result = init.initialize(keys2, matches if matches is not None else list(range(len(points))))
    return init, result


def test_recovers_relative_motion_of_general_scene():
    points = _scene()
    _, result = _initialized(points)
    np.testing.assert_allclose(result.r21, R_TRUE, atol=1e-3)
    np.testing.assert_allclose(result.t21, T_TRUE / np.linalg.norm(T_TRUE), atol=1e-3)


def test_triangulated_points_match_scene_up_to_scale():
    points = _scene()
    _, result = _initialized(points)
    assert all(result.triangulated)
    scaled = result.points3d * np.linalg.norm(T_TRUE)
    np.testing.assert_allclose(scaled, points, atol=1e-2)


def test_unmatched_keys_are_flagged_and_not_triangulated():
    points = _scene()
    matches = [-1 if i % 5 == 0 else i for i in range(len(points))]
    init, result = _initialized(points, matches)
    assert init.matched1 == [i % 5 != 0 for i in range(len(points))]
    assert not any(result.triangulated[i] for i in range(0, len(points), 5))
    assert len(init.matches12) == 80


def test_same_seed_gives_same_result():
    points = _scene()
    _, first = _initialized(points, seed=7)
    _, second = _initialized(points, seed=7)
    np.testing.assert_array_equal(first.r21, second.r21)
    np.testing.assert_array_equal(first.points3d, second.points3d)


def test_true_fundamental_makes_every_match_an_inlier():
    points = _scene()
    init, _ = _initialized(points)
    kinv = np.linalg.inv(K)
    f21 = kinv.T @ _skew(T_TRUE) @ R_TRUE @ kinv
    score, inliers = init.check_fundamental(f21, 1.0)
    assert all(inliers)
    assert score == pytest.approx(2 * 5.991 * len(points), rel=1e-6)


def test_true_homography_of_plane_makes_every_match_an_inlier():
    rng = np.random.default_rng(11)
    n = 60
    points = np.column_stack((rng.uniform(-2, 2, n), rng.uniform(-1.5, 1.5, n), np.full(n, 5.0)))
    init, _ = _initialized(points)
    normal = np.array([0.0, 0.0, 1.0])
    h21 = K @ (R_TRUE + np.outer(T_TRUE, normal) / 5.0) @ np.linalg.inv(K)
    score, inliers = init.check_homography(h21, np.linalg.inv(h21), 1.0)
    assert all(inliers)
    assert score == pytest.approx(2 * 5.991 * n, rel=1e-6)


def test_wrong_homography_rejects_matches():
    points = _scene()
    init, _ = _initialized(points)
    shift = np.array([[1.0, 0.0, 40.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    score, inliers = init.check_homography(shift, np.linalg.inv(shift), 1.0)
    assert not any(inliers)
    assert score < 2 * 5.991 * len(points)


def test_reconstruct_f_needs_enough_triangulated_points():
    points = _scene()
    init, _ = _initialized(points)
    kinv = np.linalg.inv(K)
    f21 = kinv.T @ _skew(T_TRUE) @ R_TRUE @ kinv
    inliers = [True] * len(points)
    assert init.reconstruct_f(inliers, f21, K, 1.0, 1000) is None
    accepted = init.reconstruct_f(inliers, f21, K, 1.0, 50)
    np.testing.assert_allclose(accepted.r21, R_TRUE, atol=1e-3)


def test_reconstruct_f_needs_enough_parallax():
    points = _scene()
    init, _ = _initialized(points)
    kinv = np.linalg.inv(K)
    f21 = kinv.T @ _skew(T_TRUE) @ R_TRUE @ kinv
    assert init.reconstruct_f([True] * len(points), f21, K, 90.0, 50) is None


def test_reconstruct_h_rejects_pure_rotation():
    points = _scene()
    init, _ = _initialized(points)
    h21 = K @ R_TRUE @ np.linalg.inv(K)
    assert init.reconstruct_h([True] * len(points), h21, K, 1.0, 50) is None


def test_too_few_matches_raise():
    points = _scene(n=20)
    keys1, keys2 = _views(points)
    init = Initializer(keys1, K)
    matches = [i if i < 5 else -1 for i in range(20)]
    with pytest.raises(ValueError):
        init.initialize(keys2, matches)


def test_models_need_prepared_samples():
    keys1, _ = _views(_scene(n=20))
    init = Initializer(keys1, K)
    with pytest.raises(ValueError):
        init.find_fundamental()
    with pytest.raises(ValueError):
        init.find_homography()


def test_iterations_must_be_positive():
    with pytest.raises(ValueError):
        Initializer([], K, iterations=0)