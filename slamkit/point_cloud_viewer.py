"""Viewer state: current camera, keyframe graph and a scripted camera animation.

An animation is a list of :class:`AnimationObject` items.  Keyframe items
give camera poses that are interpolated during playback.  Settings items
switch display parameters once playback has passed them.
"""

from __future__ import annotations

import bisect
import logging
import math
import re
import shutil
import threading
import time as _time
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Callable

import numpy as np

from slamkit.keyframe_display import KeyFrameDisplay, KeyframeMsg
from slamkit.keyframe_graph import KeyFrameGraphDisplay, KeyframeGraphMsg
from slamkit.sophus import quaternion_to_matrix
from slamkit.viewer_settings import ViewerSettings

logger = logging.getLogger(__name__)

VIDEO_SIZE = (1600, 900)
KEYFRAME_ITEM_DURATION = 2.0

_ANIMATION_LINE = re.compile(
    r"Animation: (\S+) at (\S+) \(dur (\S+)\) S: (\S+) (\S+) (\S+) (\S+) (\S+) (\S+) (\S+)"
    r" Frame: (\S+) (\S+) (\S+) (\S+) (\S+) (\S+) (\S+) (\S+)"
)


def _unit(q) -> np.ndarray:
    arr = np.asarray(q, dtype=float).reshape(4)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        raise ValueError("orientation quaternion must not be zero")
    return arr / norm


def _slerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    a = _unit(a)
    b = _unit(b)
    dot = float(np.dot(a, b))
    if dot < 0:
        b = -b
        dot = -dot
    if dot > 0.9995:
        return _unit(a + t * (b - a))
    theta = math.acos(min(dot, 1.0))
    sin_theta = math.sin(theta)
    return (math.sin((1 - t) * theta) * a + math.sin(t * theta) * b) / sin_theta


@dataclass(eq=False)
class Frame:
    """A camera pose: position and orientation quaternion (x, y, z, w)."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).reshape(3).copy()
        self.orientation = np.asarray(self.orientation, dtype=float).reshape(4).copy()

    def copy(self) -> Frame:
        return Frame(self.position, self.orientation)

    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 pose matrix."""
        out = np.eye(4)
        out[:3, :3] = quaternion_to_matrix(self.orientation)
        out[:3, 3] = self.position
        return out


class KeyFrameInterpolator:
    """Camera path through timed key frames: linear in position, slerp in orientation."""

    def __init__(self):
        self._times: list[float] = []
        self._frames: list[Frame] = []
        self.frame = Frame()

    @property
    def number_of_key_frames(self) -> int:
        return len(self._frames)

    @property
    def first_time(self) -> float:
        return self._times[0] if self._times else 0.0

    @property
    def last_time(self) -> float:
        return self._times[-1] if self._times else 0.0

    def add_key_frame(self, frame: Frame, time: float) -> None:
        """Append a key frame; times must not decrease."""
        if self._times and time < self._times[-1]:
            raise ValueError("key frame times must not decrease")
        self._times.append(float(time))
        self._frames.append(frame.copy())

    def interpolate_at_time(self, time: float) -> Frame | None:
        """Pose at ``time`` (clamped to the path); ``None`` when there are no key frames."""
        if not self._frames:
            return None
        if time <= self._times[0]:
            result = self._frames[0].copy()
        elif time >= self._times[-1]:
            result = self._frames[-1].copy()
        else:
            hi = bisect.bisect_right(self._times, time)
            lo = hi - 1
            t0, t1 = self._times[lo], self._times[hi]
            a, b = self._frames[lo], self._frames[hi]
            if t1 == t0:
                result = b.copy()
            else:
                s = (time - t0) / (t1 - t0)
                result = Frame(
                    (1 - s) * a.position + s * b.position,
                    _slerp(a.orientation, b.orientation, s),
                )
        self.frame = result
        return result.copy()


class AnimationObject:
    """One animation item: a camera key frame or a change of display settings."""

    def __init__(self, is_settings, time, duration, settings=None, frame=None):
        settings = settings if settings is not None else ViewerSettings()
        self.time = float(time)
        self.duration = float(duration)

        self.scaled_th = settings.scaled_depth_var_th
        self.abs_th = settings.abs_depth_var_th
        self.neighb = settings.min_near_support
        self.show_keyframes = settings.show_kf_cameras
        self.show_loop_closures = settings.show_constraints
        self.show_current_cam = settings.show_current_camera
        self.sparsity = settings.sparsify_factor

        self.is_settings = bool(is_settings)
        self.frame = frame.copy() if frame is not None else Frame()
        self.is_fix = False

    @classmethod
    def from_string(cls, line: str) -> AnimationObject:
        """Parse a line written by :meth:`to_string`; raises ValueError if malformed."""
        match = _ANIMATION_LINE.match(line.strip())
        if match is None:
            raise ValueError(f"error parsing: {line!r}")
        g = match.groups()
        obj = cls(bool(int(g[0])), float(g[1]), float(g[2]))
        obj.scaled_th = float(g[3])
        obj.abs_th = float(g[4])
        obj.show_loop_closures = bool(int(g[5]))
        obj.show_keyframes = bool(int(g[6]))
        obj.show_current_cam = bool(int(g[7]))
        obj.sparsity = int(g[8])
        obj.neighb = int(g[9])
        orientation = [float(v) for v in g[10:14]]
        position = [float(v) for v in g[14:17]]
        obj.frame = Frame(position, orientation)
        obj.is_fix = bool(int(g[17]))
        return obj

    def to_string(self) -> str:
        q = self.frame.orientation
        x, y, z = self.frame.position
        return (
            f"Animation: {int(self.is_settings)} at {self.time:f} (dur {self.duration:f})"
            f" S: {self.scaled_th:f} {self.abs_th:f} {int(self.show_loop_closures)}"
            f" {int(self.show_keyframes)} {int(self.show_current_cam)}"
            f" {self.sparsity} {self.neighb}"
            f" Frame: {q[0]:f} {q[1]:f} {q[2]:f} {q[3]:f} {x:f} {y:f} {z:f} {int(self.is_fix)}"
        )

    def __lt__(self, other: AnimationObject) -> bool:
        return self.time < other.time

    def __repr__(self) -> str:
        return f"AnimationObject({self.to_string()!r})"


class PointCloudViewer:
    """Everything the viewer shows, fed by frame and graph messages."""

    def __init__(
        self,
        settings: ViewerSettings | None = None,
        save_folder=None,
        output_dir=".",
        animation_path="animationPath.txt",
        clock: Callable[[], float] = _time.time,
        rng: np.random.Generator | None = None,
    ):
        self.settings = settings if settings is not None else ViewerSettings()
        self.save_folder = Path(save_folder) if save_folder is not None else None
        self.output_dir = output_dir
        self.animation_path = Path(animation_path)
        self.clock = clock
        self._rng = rng
        self._lock = threading.RLock()

        self.camera = Frame()
        self.window_size: tuple[int, int] | None = None
        self.animation_list: list[AnimationObject] = []
        self.interpolator = KeyFrameInterpolator()
        self.custom_animation_enabled = False
        self.animation_playback_time = 0.0
        self.reset()

    def reset(self) -> None:
        """Drop all frames and start afresh; clears the save folder if there is one."""
        with self._lock:
            self.current_cam_display = KeyFrameDisplay(rng=self._rng)
            self.graph_display = KeyFrameGraphDisplay(self.output_dir, rng=self._rng)
            self.reset_requested = False
            self.last_cam_id = -1
            self.last_anim_time = self.last_cam_time = 0.0
            self.animation_playback_enabled = False
            if self.save_folder is not None:
                shutil.rmtree(self.save_folder, ignore_errors=True)
                self.save_folder.mkdir(parents=True, exist_ok=True)

    def add_frame_msg(self, msg: KeyframeMsg) -> None:
        """Keyframes go to the graph; other frames replace the current camera."""
        with self._lock:
            if not msg.is_keyframe:
                if self.current_cam_display.id > msg.id:
                    print(
                        f"detected backward-jump in id ({self.current_cam_display.id} "
                        f"to {msg.id}), resetting!"
                    )
                    self.reset_requested = True
                self.current_cam_display.set_from(msg)
                self.last_anim_time = self.last_cam_time = msg.time
                self.last_cam_id = msg.id
            else:
                self.graph_display.add_msg(msg)

    def add_graph_msg(self, msg: KeyframeGraphMsg) -> None:
        with self._lock:
            self.graph_display.add_graph_msg(msg)

    def remake_animation(self) -> float:
        """Sort the animation items and rebuild the camera path; return its span."""
        with self._lock:
            self.interpolator = KeyFrameInterpolator()
            self.animation_list.sort()
            tm = 0.0
            for item in self.animation_list:
                if not item.is_settings:
                    self.interpolator.add_key_frame(item.frame, tm)
                    tm += item.duration
        print(
            f"made animation with {self.interpolator.number_of_key_frames} keyframes, "
            f"spanning {tm:f} s!"
        )
        return tm

    def save_animation(self, path=None) -> None:
        """Write the animation list, one item per line."""
        path = Path(path) if path is not None else self.animation_path
        with self._lock:
            with open(path, "w", encoding="utf-8") as out:
                for item in self.animation_list:
                    out.write(item.to_string() + "\n")
            count = len(self.animation_list)
        print(f"saved animation list ({count} items)!")

    def load_animation(self, path=None) -> None:
        """Replace the animation list with the items in ``path``; '#' lines are comments."""
        path = Path(path) if path is not None else self.animation_path
        with self._lock:
            self.animation_list.clear()
            try:
                with open(path, encoding="utf-8") as handle:
                    for line in handle:
                        line = line.rstrip("\n")
                        if not line.strip() or line.startswith("#"):
                            continue
                        self.animation_list.append(AnimationObject.from_string(line))
            except FileNotFoundError:
                print("Unable to open file")
            count = len(self.animation_list)
        print(f"loaded animation list! ({count} items)!")
        self.remake_animation()

    def key_press(self, key: str) -> bool:
        """Handle a key; return False when the key has no meaning here."""
        k = key.lower()
        if k == "s":
            self.window_size = VIDEO_SIZE
        elif k == "r":
            self.reset_requested = True
        elif k == "t":
            with self._lock:
                item = AnimationObject(True, self.last_anim_time, 0, self.settings)
                self.animation_list.append(item)
            print(f"added St: {item.to_string()}")
        elif k == "k":
            with self._lock:
                item = AnimationObject(
                    False, self.last_anim_time, KEYFRAME_ITEM_DURATION,
                    self.settings, self.camera,
                )
                self.animation_list.append(item)
            print(f"added KF: {item.to_string()}")
            self.remake_animation()
        elif k == "i":
            with self._lock:
                self.animation_list.clear()
            print("resetted animation list!")
            self.remake_animation()
        elif k == "f":
            self.save_animation()
        elif k == "l":
            self.load_animation()
        elif k == "a":
            print(
                "DISABLE custom animation!" if self.custom_animation_enabled
                else "ENABLE custom animation!"
            )
            self.custom_animation_enabled = not self.custom_animation_enabled
        elif k == "o":
            if self.animation_playback_enabled:
                self.animation_playback_enabled = False
            else:
                self.animation_playback_enabled = True
                self.animation_playback_time = self.clock()
        elif k == "p":
            self.graph_display.flush_pointcloud = True
        elif k == "w":
            self.graph_display.print_numbers = True
        else:
            return False
        return True

    def update_animation(self, now: float | None = None) -> Frame:
        """Per-draw step: perform a requested reset and advance playback; return the camera."""
        with self._lock:
            if self.reset_requested:
                self.reset()
                self.reset_requested = False

            if self.animation_playback_enabled:
                now = self.clock() if now is None else now
                interp = self.interpolator
                tm = now - self.animation_playback_time
                if tm > interp.last_time:
                    self.animation_playback_enabled = False
                    tm = interp.last_time
                if tm < interp.first_time:
                    tm = interp.first_time

                frame = interp.interpolate_at_time(tm)
                if frame is not None:
                    self.camera = frame

                acc = 0.0
                for item in self.animation_list:
                    if acc <= tm < acc + item.duration and item.is_fix:
                        self.camera = item.frame.copy()
                    acc += item.duration

                acc = 0.0
                last_settings = None
                for item in self.animation_list:
                    acc += item.duration
                    if item.is_settings and acc <= tm:
                        last_settings = item
                if last_settings is not None:
                    s = self.settings
                    s.abs_depth_var_th = last_settings.abs_th
                    s.scaled_depth_var_th = last_settings.scaled_th
                    s.min_near_support = last_settings.neighb
                    s.sparsify_factor = last_settings.sparsity
                    s.show_kf_cameras = last_settings.show_keyframes
                    s.show_constraints = last_settings.show_loop_closures
            return self.camera