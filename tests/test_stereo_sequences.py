import numpy as np
import pytest

from orbslam_core.stereo_sequences import (
    StereoRectification,
    load_euroc_stereo,
    load_kitti_stereo,
)


def _complete_rectification():
    return StereoRectification(
        k_left=np.eye(3),
        k_right=np.eye(3),
        p_left=np.zeros((3, 4)),
        p_right=np.zeros((3, 4)),
        r_left=np.eye(3),
        r_right=np.eye(3),
        d_left=np.zeros(5),
        d_right=np.zeros(5),
        rows_left=480,
        cols_left=752,
        rows_right=480,
        cols_right=752,
    )


def test_euroc_stereo_paths_and_timestamps(tmp_path):
    times = tmp_path / "times.txt"
    times.write_text("1403636579763555584\n\n1403636579813555456\n")
    left, right, stamps = load_euroc_stereo("cam0", "cam1", times)
    assert left == ["cam0/1403636579763555584.png", "cam0/1403636579813555456.png"]
    assert right == ["cam1/1403636579763555584.png", "cam1/1403636579813555456.png"]
    assert stamps[0] == pytest.approx(1403636579763555584 / 1e9)
    assert stamps[1] > stamps[0]


def test_euroc_stereo_lists_have_equal_lengths(tmp_path):
    times = tmp_path / "times.txt"
    times.write_text("100\n200\n300\n")
    left, right, stamps = load_euroc_stereo("l", "r", times)
    assert len(left) == len(right) == len(stamps) == 3


def test_euroc_stereo_invalid_timestamp(tmp_path):
    times = tmp_path / "times.txt"
    times.write_text("abc\n")
    with pytest.raises(ValueError):
        load_euroc_stereo("l", "r", times)


def test_kitti_stereo_paths(tmp_path):
    (tmp_path / "times.txt").write_text("0.0\n0.103640\n\n")
    left, right, stamps = load_kitti_stereo(tmp_path)
    assert left == [f"{tmp_path}/image_0/000000.png", f"{tmp_path}/image_0/000001.png"]
    assert right == [f"{tmp_path}/image_1/000000.png", f"{tmp_path}/image_1/000001.png"]
    assert stamps == [0.0, 0.103640]


def test_kitti_stereo_missing_times_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_kitti_stereo(tmp_path)


def test_complete_rectification_validates():
    rect = _complete_rectification()
    assert rect.validate() is rect


def test_missing_matrix_is_reported():
    rect = _complete_rectification()
    rect.p_right = None
    with pytest.raises(ValueError, match="p_right"):
        rect.validate()


def test_empty_matrix_is_reported():
    rect = _complete_rectification()
    rect.d_left = np.zeros(0)
    with pytest.raises(ValueError, match="d_left"):
        rect.validate()


def test_zero_image_size_is_reported():
    rect = _complete_rectification()
    rect.cols_right = 0
    with pytest.raises(ValueError, match="cols_right"):
        rect.validate()


def test_default_rectification_is_incomplete():
    with pytest.raises(ValueError, match="missing"):
        StereoRectification().validate()