"""Visual SLAM building blocks: frames, two-view initialization, frame drawing, AR planes and dataset loaders."""

__version__ = "0.1.0"

__all__ = [
    "ar",
    "converter",
    "frame",
    "frame_drawer",
    "geometry",
    "initializer",
    "sequences",
    "stereo_sequences",
]