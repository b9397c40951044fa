# orbslam_core

Building blocks for feature-based visual SLAM, written on NumPy, with Pillow used to draw frames.

## Modules

### `orbslam_core.frame`

- `KeyPoint`: an immutable feature location (`x`, `y`, `octave`, `size`, `angle`, `response`). `with_position(x, y)` returns a moved copy.
- `CameraCalibration`: pinhole intrinsics (`fx`, `fy`, `cx`, `cy`), 4 or 5 radial-tangential distortion coefficients, `bf` (baseline times focal length) and `th_depth`. It exposes `k`, `invfx`, `invfy`, `baseline` and `distorted`. Zero focal lengths and a wrong number of coefficients raise `ValueError`.
- `descriptor_distance(a, b)`: Hamming distance between two binary descriptors given as byte arrays.
- `Frame(keys, descriptors, calibration, image_size, *, timestamp, keys_right, descriptors_right, scale_factors)`: holds already-extracted keypoints and descriptors. On construction it:
  - undistorts the keypoints;
  - computes the undistorted image bounds;
  - places keypoints on a 64 × 48 grid.

  Its methods:
  - `get_features_in_area(x, y, r, min_level, max_level)`: indices of keypoints inside a square window, optionally limited to a range of pyramid levels.
  - `pos_in_grid(keypoint)`: grid cell of a keypoint, or `None` when it falls outside the grid.
  - `compute_stereo_matches(left_pyramid, right_pyramid, th_high, th_low)`: row-constrained descriptor matching against the right keypoints, refined to sub-pixel accuracy by patch correlation and parabola fitting. Outliers are removed by a median rule. The results are stored in `depth` and `u_right`.
  - `compute_stereo_from_rgbd(depth)`: fills `depth` and `u_right` from a registered depth map.
  - `set_pose(tcw)`: sets the 4 × 4 world-to-camera transform and derives `rcw`, `rwc`, `t_cw` and the camera centre `ow`.
  - `is_in_frustum(map_point, viewing_cos_limit)`: returns a `FrustumProjection` (`u`, `u_right`, `v`, `level`, `view_cos`), or `None` when the point is not visible. The map point needs `world_pos`, `normal`, `min_distance_invariance`, `max_distance_invariance` and `predict_scale(dist, frame)`.
  - `unproject_stereo(index)`: world coordinates of a keypoint with known depth, or `None`.
  - `copy()`: an independent copy that keeps the frame id.

  `is_in_frustum` and `unproject_stereo` raise `ValueError` if no pose has been set.

### `orbslam_core.converter`

- `to_descriptor_vector`: splits a descriptor matrix into its rows.
- `split_transform`: returns the rotation and translation of a transform.
- `se3_to_matrix(rotation, translation)` and `sim3_to_matrix(rotation, translation, scale)`: build 4 × 4 matrices.
- `to_vector3d`: accepts an array or an object with `x`, `y`, `z`.
- `to_matrix3d`: returns the upper-left 3 × 3 block of a matrix.
- `to_quaternion`: returns `[x, y, z, w]`.

### `orbslam_core.geometry`

Two-view primitives:

- `compute_h21` and `compute_f21`: DLT homography and rank-2 eight-point fundamental matrix.
- `normalize`: centres the points, scales them to unit mean absolute deviation, and returns the points together with the 3 × 3 transform.
- `triangulate`: linear triangulation from two projection matrices.
- `decompose_e`: returns two rotations and a unit translation.
- `check_rt`: triangulates the inlier matches under one motion hypothesis. It returns `(n_good, points3d, good, parallax_degrees)`.

### `orbslam_core.initializer`

- `Initializer(reference_keys, k, sigma=1.0, iterations=200, seed=0)`: monocular initialization.
- `initialize(current_keys, matches12)`: draws seeded RANSAC samples of eight matches and scores a homography (`find_homography`) and a fundamental matrix (`find_fundamental`). It then reconstructs from the homography when that model's score ratio exceeds 0.40, otherwise from the fundamental matrix.
  - It returns a `Reconstruction` (`r21`, `t21`, `points3d`, `triangulated`) or `None` when no hypothesis is clear enough.
  - Fewer than eight matches raise `ValueError`.
- `check_homography`, `check_fundamental`, `reconstruct_h` and `reconstruct_f` are available on their own.

### `orbslam_core.frame_drawer`

- `TrackingState`: an `IntEnum` with the values `SYSTEM_NOT_READY`, `NO_IMAGES_YET`, `NOT_INITIALIZED`, `OK` and `LOST`.
- `status_message(...)`: builds the status line for a state.
- `FrameDrawer(map_stats=None)`: stores the latest image and keypoints through `update(...)`. In the `OK` state, map points are objects with an `observations` count.
  - `draw_frame()` returns an RGB array with a status band added below the image.
  - While initializing, matches to the reference keys are drawn as lines.
  - While tracking, map matches are drawn in green and visual-odometry matches in blue, each as a box and a dot.
  - `map_stats` is a callable returning `(keyframes, map_points)` for the status line.
  - The drawer is safe to use across threads.

### `orbslam_core.ar`

- `exp_so3(x, y, z)` and `exp_so3_vector(v)`: rotation matrices from rotation vectors.
- `gl_matrix(transform)`: column-major 16-element list for OpenGL.
- `status_text(status, localization_mode)`: overlay text and RGB colour for a status, or `None`.
- `detect_plane(tcw, map_points, iterations=50, rng=None)`: RANSAC plane fit over map points with more than five observations. It returns a `Plane`, or `None` when there are fewer than 50 such points. Points need `world_pos`, `observations` and `is_bad`.
- `Plane`: holds `normal`, `origin`, `tpw` and `gl_tpw`. `recompute()` refits the plane to the points that are not bad. `Plane.from_normal_origin(normal, origin, rng)` builds a plane directly from a normal and a point on it.
- `ImagePoseBuffer`: thread-safe `set(image, tcw, status, keys, map_points)` and `get()`, both working on copies.

### `orbslam_core.sequences` and `orbslam_core.stereo_sequences`

- `load_euroc_mono(image_path, times_path)` and `load_euroc_stereo(left_path, right_path, times_path)`: read image paths and timestamps from nanosecond time files. Timestamps are returned in seconds.
- `load_kitti_mono(sequence_path)` and `load_kitti_stereo(sequence_path)`: read `times.txt` and produce `image_0/000000.png`-style paths, plus `image_1/...` paths for stereo.
- `load_tum_mono(rgb_file)`: reads a TUM `rgb.txt` and skips its three header lines.
- `load_tum_rgbd(association_file)`: reads an association file and returns colour names, depth names and timestamps.
- `frame_wait_time(timestamps, index)`: the playback gap to the next frame.
- `tracking_statistics(times)`: returns a `TrackingStatistics` with `median`, `mean` and `count`.
- `StereoRectification`: stereo calibration parameters. `validate()` raises `ValueError` naming every missing parameter.

Malformed lines in these files raise `ValueError` with the file and line number.

## What it does not do

- There is no ORB feature extractor and no image pyramid builder. Keypoints, descriptors and pyramids are inputs.
- There is no vocabulary or bag-of-words, no map or keyframe store, no tracking, local mapping or loop closing, and no optimization.
- Images are not read from disk, and stereo images are not rectified or remapped. `StereoRectification` only holds and checks the parameters.
- There is no interactive viewer or OpenGL rendering, and there are no command-line programs.

## Example

```python
import numpy as np
from orbslam_core.converter import se3_to_matrix, to_quaternion
from orbslam_core.sequences import frame_wait_time, tracking_statistics

pose = se3_to_matrix(np.eye(3), [1.0, 2.0, 3.0])
print(to_quaternion(pose))  # [0.0, 0.0, 0.0, 1.0]

stamps = [0.0, 0.1, 0.25]
print(frame_wait_time(stamps, 1))  # about 0.15

stats = tracking_statistics([0.031, 0.028, 0.035])
print(stats.median, stats.mean)
```

## Installation and tests

```
pip install .
pip install .[test]
pytest
```