[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "orbslam_core"
version = "0.1.0"
description = "Feature-based visual SLAM building blocks: frames, two-view initialization, frame drawing, AR planes and dataset sequence loaders"
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "pillow",
]
keywords = [
    "slam",
    "orb",
    "computer-vision",
    "stereo",
    "rgbd",
    "homography",
    "fundamental-matrix",
    "triangulation",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["orbslam_core"]

[tool.pytest.ini_options]
addopts = "-ra"
