import numpy as np
import pytest

from orbslam_core.frame import (
    GRID_COLS,
    CameraCalibration,
    Frame,
    KeyPoint,
    descriptor_distance,
)


def _calib(**kwargs):
    params = dict(fx=500.0, fy=500.0, cx=320.0, cy=240.0, bf=40.0)
    params.update(kwargs)
    return CameraCalibration(**params)


def _descs(n):
    return np.zeros((n, 32), dtype=np.uint8)


def _frame(keys, calib=None, size=(640, 480), **kwargs):
    return Frame(keys, _descs(len(keys)), calib or _calib(), size, **kwargs)


class _Point:
    def __init__(self, pos, normal=(0.0, 0.0, 1.0), min_d=0.1, max_d=100.0, level=2):
        self.world_pos = np.array(pos, dtype=float)
        self.normal = np.array(normal, dtype=float)
        self.min_distance_invariance = min_d
        self.max_distance_invariance = max_d
        self._level = level

    def predict_scale(self, dist, frame):
        return self._level


def test_descriptor_distance_extremes():
    zeros = np.zeros(32, dtype=np.uint8)
    ones = np.full(32, 0xFF, dtype=np.uint8)
    assert descriptor_distance(zeros, zeros) == 0
    assert descriptor_distance(zeros, ones) == 256


def test_descriptor_distance_length_mismatch():
    with pytest.raises(ValueError):
        descriptor_distance(np.zeros(32, np.uint8), np.zeros(16, np.uint8))


def test_keypoint_with_position_keeps_level():
    kp = KeyPoint(1.0, 2.0, octave=3, angle=45.0)
    moved = kp.with_position(7.0, 8.0)
    assert (moved.x, moved.y, moved.octave, moved.angle) == (7.0, 8.0, 3, 45.0)
    assert (kp.x, kp.y) == (1.0, 2.0)


def test_calibration_rejects_zero_focal():
    with pytest.raises(ValueError):
        CameraCalibration(fx=0.0, fy=1.0, cx=0.0, cy=0.0)


def test_calibration_k_and_baseline():
    calib = _calib()
    assert np.allclose(calib.k[0], [calib.fx, 0.0, calib.cx])
    assert calib.baseline == pytest.approx(calib.bf / calib.fx)


def test_descriptor_count_mismatch():
    with pytest.raises(ValueError):
        Frame([KeyPoint(1, 1)], _descs(2), _calib(), (640, 480))


def test_frame_ids_increase():
    a = _frame([])
    b = _frame([])
    assert b.id == a.id + 1


def test_undistorted_frame_bounds_match_image():
    frame = _frame([KeyPoint(10, 10)])
    assert (frame.min_x, frame.max_x, frame.min_y, frame.max_y) == (0.0, 640.0, 0.0, 480.0)
    assert frame.keys_un == frame.keys


def test_pos_in_grid_edges():
    frame = _frame([])
    assert frame.pos_in_grid(KeyPoint(0.0, 0.0)) == (0, 0)
    assert frame.pos_in_grid(KeyPoint(639.9, 10.0)) is None
    assert frame.pos_in_grid(KeyPoint(-20.0, 10.0)) is None
    cell = frame.pos_in_grid(KeyPoint(320.0, 240.0))
    assert 0 <= cell[0] < GRID_COLS


def test_keypoints_assigned_to_grid():
    keys = [KeyPoint(100.0, 100.0), KeyPoint(500.0, 400.0)]
    frame = _frame(keys)
    for index, kp in enumerate(keys):
        cx, cy = frame.pos_in_grid(kp)
        assert index in frame.grid[cx][cy]


def test_features_in_area():
    keys = [KeyPoint(100, 100), KeyPoint(105, 100), KeyPoint(300, 300)]
    frame = _frame(keys)
    assert sorted(frame.get_features_in_area(100, 100, 10)) == [0, 1]
    assert frame.get_features_in_area(300, 300, 3) == [2]
    assert frame.get_features_in_area(10, 400, 5) == []


def test_features_in_area_level_filter():
    keys = [KeyPoint(100, 100, octave=0), KeyPoint(102, 100, octave=2)]
    frame = _frame(keys, scale_factors=(1.0, 1.2, 1.44))
    assert frame.get_features_in_area(100, 100, 10, min_level=1) == [1]
    assert frame.get_features_in_area(100, 100, 10, 0, 1) == [0]


def test_distortion_keeps_principal_point():
    calib = _calib(dist_coef=(0.1, 0.01, 0.0, 0.0))
    keys = [KeyPoint(320.0, 240.0, octave=1), KeyPoint(600.0, 450.0)]
    frame = _frame(keys, calib, scale_factors=(1.0, 1.2))
    assert frame.keys_un[0].x == pytest.approx(320.0)
    assert frame.keys_un[0].y == pytest.approx(240.0)
    assert frame.keys_un[0].octave == 1
    assert abs(frame.keys_un[1].x - calib.cx) < abs(600.0 - calib.cx)


def test_set_pose_camera_centre():
    frame = _frame([])
    pose = np.eye(4)
    pose[:3, 3] = [1.0, -2.0, 3.0]
    frame.set_pose(pose)
    assert np.allclose(frame.ow, [-1.0, 2.0, -3.0])
    assert np.allclose(frame.rwc, np.eye(3))


def test_set_pose_wrong_shape():
    with pytest.raises(ValueError):
        _frame([]).set_pose(np.eye(3))


def test_is_in_frustum_visible():
    calib = _calib()
    frame = _frame([], calib)
    frame.set_pose(np.eye(4))
    proj = frame.is_in_frustum(_Point((0.0, 0.0, 5.0)), 0.5)
    assert proj.u == pytest.approx(calib.cx)
    assert proj.v == pytest.approx(calib.cy)
    assert proj.u_right == pytest.approx(calib.cx - calib.bf / 5.0)
    assert proj.level == 2
    assert proj.view_cos == pytest.approx(1.0)


def test_is_in_frustum_rejections():
    frame = _frame([])
    frame.set_pose(np.eye(4))
    assert frame.is_in_frustum(_Point((0.0, 0.0, -5.0)), 0.5) is None
    assert frame.is_in_frustum(_Point((0.0, 0.0, 5.0), max_d=2.0), 0.5) is None
    assert frame.is_in_frustum(_Point((0.0, 0.0, 5.0), normal=(1.0, 0.0, 0.0)), 0.5) is None
    assert frame.is_in_frustum(_Point((100.0, 0.0, 1.0)), 0.5) is None


def test_is_in_frustum_needs_pose():
    with pytest.raises(ValueError):
        _frame([]).is_in_frustum(_Point((0.0, 0.0, 5.0)), 0.5)


def test_rgbd_depth_and_unproject_round_trip():
    calib = _calib()
    keys = [KeyPoint(400.0, 300.0), KeyPoint(50.0, 60.0)]
    frame = _frame(keys, calib)
    depth = np.full((480, 640), 2.0, dtype=np.float32)
    depth[60, 50] = 0.0
    frame.compute_stereo_from_rgbd(depth)
    assert frame.depth == [2.0, -1.0]
    assert frame.u_right[0] == pytest.approx(400.0 - calib.bf / 2.0)
    assert frame.u_right[1] == -1.0

    pose = np.eye(4)
    pose[:3, 3] = [0.5, 0.0, 0.0]
    frame.set_pose(pose)
    world = frame.unproject_stereo(0)
    proj = frame.is_in_frustum(_Point(world, normal=world - frame.ow), 0.0)
    assert proj.u == pytest.approx(400.0)
    assert proj.v == pytest.approx(300.0)
    assert frame.unproject_stereo(1) is None


def test_mono_frame_has_no_depth():
    frame = _frame([KeyPoint(10, 10), KeyPoint(20, 20)])
    assert frame.depth == [-1.0, -1.0]
    assert frame.map_points == [None, None]
    assert frame.outliers == [False, False]


def _stereo_setup(shift=10):
    rng = np.random.default_rng(0)
    left = rng.integers(0, 256, (400, 400)).astype(np.uint8)
    right = np.roll(left, -shift, axis=1).astype(np.int16)
    right = np.clip(right + rng.integers(-2, 3, right.shape), 0, 255).astype(np.uint8)
    calib = CameraCalibration(fx=500.0, fy=500.0, cx=200.0, cy=200.0, bf=50.0)
    return left, right, calib


def test_stereo_matches_recover_disparity():
    left, right, calib = _stereo_setup()
    frame = Frame(
        [KeyPoint(200.0, 200.0)],
        _descs(1),
        calib,
        (400, 400),
        keys_right=[KeyPoint(190.0, 200.0)],
        descriptors_right=_descs(1),
    )
    frame.compute_stereo_matches([left], [right])
    assert abs(frame.u_right[0] - 190.0) < 1.0
    assert frame.depth[0] == pytest.approx(calib.bf / (200.0 - frame.u_right[0]))


def test_stereo_matches_without_right_keys():
    left, right, calib = _stereo_setup()
    frame = Frame([KeyPoint(200.0, 200.0)], _descs(1), calib, (400, 400))
    frame.compute_stereo_matches([left], [right])
    assert frame.depth == [-1.0]
    assert frame.u_right == [-1.0]


def test_stereo_matches_reject_far_descriptors():
    left, right, calib = _stereo_setup()
    frame = Frame(
        [KeyPoint(200.0, 200.0)],
        _descs(1),
        calib,
        (400, 400),
        keys_right=[KeyPoint(190.0, 200.0)],
        descriptors_right=np.full((1, 32), 0xFF, dtype=np.uint8),
    )
    frame.compute_stereo_matches([left], [right])
    assert frame.depth == [-1.0]


def test_copy_is_independent():
    frame = _frame([KeyPoint(100, 100)])
    frame.set_pose(np.eye(4))
    clone = frame.copy()
    assert clone.id == frame.id
    assert np.allclose(clone.rcw, frame.rcw)
    clone.grid[0][0].append(99)
    clone.depth[0] = 5.0
    pose = np.eye(4)
    pose[0, 3] = 1.0
    clone.set_pose(pose)
    assert 99 not in frame.grid[0][0]
    assert frame.depth[0] == -1.0
    assert np.allclose(frame.ow, [0.0, 0.0, 0.0])