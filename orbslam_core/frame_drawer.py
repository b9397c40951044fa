"""Renders the current tracking frame with matches and a status line."""

from __future__ import annotations

import threading
from enum import IntEnum
from typing import Callable, Optional, Sequence

import numpy as np
from PIL import Image, ImageDraw, ImageFont

_GREEN = (0, 255, 0)
_BLUE = (0, 0, 255)
_WHITE = (255, 255, 255)
_BOX_HALF = 5
_DOT_RADIUS = 2


class TrackingState(IntEnum):
    SYSTEM_NOT_READY = -1
    NO_IMAGES_YET = 0
    NOT_INITIALIZED = 1
    OK = 2
    LOST = 3


def status_message(state, only_tracking: bool, keyframes: int, map_points: int, tracked: int, tracked_vo: int) -> str:
    """The status line shown below the frame for a tracking state."""
    try:
        state = TrackingState(state)
    except ValueError:
        return ""
    if state == TrackingState.NO_IMAGES_YET:
        return " WAITING FOR IMAGES"
    if state == TrackingState.NOT_INITIALIZED:
        return " TRYING TO INITIALIZE "
    if state == TrackingState.OK:
        prefix = "LOCALIZATION | " if only_tracking else "SLAM MODE |  "
        text = f"{prefix}KFs: {keyframes}, MPs: {map_points}, Matches: {tracked}"
        if tracked_vo > 0:
            text += f", + VO matches: {tracked_vo}"
        return text
    if state == TrackingState.LOST:
        return " TRACK LOST. TRYING TO RELOCALIZE "
    return " LOADING ORB VOCABULARY. PLEASE WAIT..."


def _to_rgb(image) -> np.ndarray:
    arr = np.asarray(image)
    if arr.ndim == 2:
        arr = np.stack((arr,) * 3, axis=-1)
    elif arr.ndim == 3 and arr.shape[2] == 1:
        arr = np.concatenate((arr,) * 3, axis=-1)
    elif arr.ndim == 3 and arr.shape[2] >= 3:
        arr = arr[..., :3]
    else:
        raise ValueError("image must be 2-D or have 1 or 3+ channels")
    return np.clip(arr, 0, 255).astype(np.uint8)


class FrameDrawer:
    """Keeps the last tracked frame and draws it on request, safely across threads."""

    def __init__(self, map_stats: Optional[Callable[[], tuple]] = None) -> None:
        self._map_stats = map_stats or (lambda: (0, 0))
        self._lock = threading.Lock()
        self._state = TrackingState.SYSTEM_NOT_READY
        self._image = np.zeros((480, 640, 3), dtype=np.uint8)
        self._current_keys: list = []
        self._initial_keys: list = []
        self._initial_matches: list = []
        self._vo: list = []
        self._on_map: list = []
        self._only_tracking = False
        self.tracked = 0
        self.tracked_vo = 0

    @property
    def state(self) -> TrackingState:
        with self._lock:
            return self._state

    def update(
        self,
        image,
        current_keys: Sequence,
        state,
        only_tracking: bool = False,
        initial_keys: Sequence = (),
        initial_matches: Sequence = (),
        map_points: Sequence = (),
        outliers: Sequence = (),
    ) -> None:
        """Store the latest image, keypoints and their map associations."""
        state = TrackingState(state)
        keys = list(current_keys)
        n = len(keys)
        on_map = [False] * n
        vo = [False] * n
        if state == TrackingState.OK:
            if len(map_points) != n or len(outliers) != n:
                raise ValueError("need one map point and outlier flag per keypoint")
            for index, (point, is_outlier) in enumerate(zip(map_points, outliers)):
                if point is None or is_outlier:
                    continue
                if point.observations > 0:
                    on_map[index] = True
                else:
                    vo[index] = True
        picture = np.array(image, copy=True)
        with self._lock:
            self._image = picture
            self._current_keys = keys
            self._on_map = on_map
            self._vo = vo
            self._only_tracking = bool(only_tracking)
            if state == TrackingState.NOT_INITIALIZED:
                self._initial_keys = list(initial_keys)
                self._initial_matches = [int(m) for m in initial_matches]
            self._state = state

    def draw_frame(self) -> np.ndarray:
        """RGB image of the frame with drawn matches and a status band below."""
        initial_keys: list = []
        matches: list = []
        vo: list = []
        on_map: list = []
        current_keys: list = []
        with self._lock:
            state = self._state
            if self._state == TrackingState.SYSTEM_NOT_READY:
                self._state = TrackingState.NO_IMAGES_YET
            image = self._image.copy()
            if self._state == TrackingState.NOT_INITIALIZED:
                current_keys = list(self._current_keys)
                initial_keys = list(self._initial_keys)
                matches = list(self._initial_matches)
            elif self._state == TrackingState.OK:
                current_keys = list(self._current_keys)
                vo = list(self._vo)
                on_map = list(self._on_map)
            elif self._state == TrackingState.LOST:
                current_keys = list(self._current_keys)
            only_tracking = self._only_tracking

        canvas = Image.fromarray(_to_rgb(image))
        draw = ImageDraw.Draw(canvas)

        if state == TrackingState.NOT_INITIALIZED:
            for index, match in enumerate(matches):
                if match >= 0:
                    start = initial_keys[index]
                    end = current_keys[match]
                    draw.line((start.x, start.y, end.x, end.y), fill=_GREEN)
        elif state == TrackingState.OK:
            self.tracked = 0
            self.tracked_vo = 0
            for kp, is_vo, is_map in zip(current_keys, vo, on_map):
                if not (is_vo or is_map):
                    continue
                colour = _GREEN if is_map else _BLUE
                draw.rectangle(
                    (kp.x - _BOX_HALF, kp.y - _BOX_HALF, kp.x + _BOX_HALF, kp.y + _BOX_HALF),
                    outline=colour,
                )
                draw.ellipse(
                    (kp.x - _DOT_RADIUS, kp.y - _DOT_RADIUS, kp.x + _DOT_RADIUS, kp.y + _DOT_RADIUS),
                    fill=colour,
                )
                if is_map:
                    self.tracked += 1
                else:
                    self.tracked_vo += 1

        return self._with_text_info(np.asarray(canvas), state, only_tracking)

    def _with_text_info(self, image: np.ndarray, state: TrackingState, only_tracking: bool) -> np.ndarray:
        keyframes, map_points = self._map_stats() if state == TrackingState.OK else (0, 0)
        text = status_message(state, only_tracking, keyframes, map_points, self.tracked, self.tracked_vo)
        font = ImageFont.load_default()
        top = 0
        text_height = 0
        if text:
            _, top, _, bottom = ImageDraw.Draw(Image.new("RGB", (1, 1))).textbbox((0, 0), text, font=font)
            text_height = max(0, int(bottom - top))
        rows, cols = image.shape[:2]
        out = np.zeros((rows + text_height + 10, cols, 3), dtype=np.uint8)
        out[:rows] = image
        picture = Image.fromarray(out)
        if text:
            ImageDraw.Draw(picture).text((5, rows + 5 - top), text, fill=_WHITE, font=font)
        return np.array(picture)