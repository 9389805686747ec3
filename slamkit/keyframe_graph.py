"""All keyframes of a SLAM run, their loop-closure constraints and point-cloud export."""

from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

import numpy as np

from slamkit.keyframe_display import KeyFrameDisplay, KeyframeMsg
from slamkit.sophus import Sim3
from slamkit.viewer_settings import ViewerSettings

logger = logging.getLogger(__name__)

CONSTRAINT_DTYPE = np.dtype([("from", "<i4"), ("to", "<i4"), ("err", "<f4")])
FRAME_POSE_DTYPE = np.dtype([("id", "<i4"), ("cam_to_world", "<f4", (7,))])

_ERR_FULL_RED = 0.05

PLY_HEADER = (
    "ply\n"
    "format binary_little_endian 1.0\n"
    "element vertex {count}\n"
    "property float x\n"
    "property float y\n"
    "property float z\n"
    "property float intensity\n"
    "end_header\n"
)


@dataclass
class KeyframeGraphMsg:
    """Optimised poses and constraints of the keyframe graph, as packed records."""

    num_frames: int = 0
    frame_data: bytes = b""
    num_constraints: int = 0
    constraints_data: bytes = b""


@dataclass
class GraphConstraint:
    """A constraint between two known keyframes (``None`` where a frame is unknown)."""

    source: KeyFrameDisplay | None
    target: KeyFrameDisplay | None
    err: float


@dataclass
class ConstraintLine:
    start: np.ndarray
    end: np.ndarray
    color: tuple[float, float, float]


class GraphStatistics(NamedTuple):
    total_points: int
    keyframes: int
    constraints: int
    displayed_points: int


@dataclass
class GraphScene:
    """What a draw pass would render."""

    cameras: list[np.ndarray] = field(default_factory=list)
    point_clouds: list[tuple[np.ndarray, np.ndarray]] = field(default_factory=list)
    constraints: list[ConstraintLine] = field(default_factory=list)


def _records(data: bytes, count: int, dtype: np.dtype, what: str) -> np.ndarray:
    if len(data) != dtype.itemsize * count:
        raise ValueError(
            f"{what} data has {len(data)} bytes, expected {dtype.itemsize * count}"
        )
    return np.frombuffer(data, dtype=dtype, count=count)


class KeyFrameGraphDisplay:
    """Thread-safe store of keyframes and constraints."""

    def __init__(self, output_dir=".", rng: np.random.Generator | None = None):
        self.flush_pointcloud = False
        self.print_numbers = False
        self.output_dir = Path(output_dir)
        self.keyframes: list[KeyFrameDisplay] = []
        self.keyframes_by_id: dict[int, KeyFrameDisplay] = {}
        self.constraints: list[GraphConstraint] = []
        self._rng = rng
        self._lock = threading.RLock()

    def add_msg(self, msg: KeyframeMsg) -> None:
        """Add a new keyframe or update the one with the same id."""
        with self._lock:
            disp = self.keyframes_by_id.get(msg.id)
            if disp is None:
                disp = KeyFrameDisplay(rng=self._rng)
                self.keyframes_by_id[msg.id] = disp
                self.keyframes.append(disp)
            disp.set_from(msg)

    def add_graph_msg(self, msg: KeyframeGraphMsg) -> None:
        """Replace the constraints and update the poses of known keyframes."""
        constraints_in = _records(
            msg.constraints_data, msg.num_constraints, CONSTRAINT_DTYPE, "constraint"
        )
        poses = _records(msg.frame_data, msg.num_frames, FRAME_POSE_DTYPE, "frame")
        with self._lock:
            self.constraints = [
                GraphConstraint(
                    self.keyframes_by_id.get(int(rec["from"])),
                    self.keyframes_by_id.get(int(rec["to"])),
                    float(rec["err"]),
                )
                for rec in constraints_in
            ]
            for rec in poses:
                disp = self.keyframes_by_id.get(int(rec["id"]))
                if disp is not None:
                    disp.cam_to_world = Sim3.from_data(rec["cam_to_world"])

    def constraint_lines(self) -> list[ConstraintLine]:
        """Lines between connected keyframe centres, green (small error) to red."""
        with self._lock:
            lines = []
            for c in self.constraints:
                if c.source is None or c.target is None:
                    continue
                scalar = max(0.0, min(1.0, c.err / _ERR_FULL_RED))
                lines.append(
                    ConstraintLine(
                        c.source.cam_to_world.translation.copy(),
                        c.target.cam_to_world.translation.copy(),
                        (scalar, 1.0 - scalar, 0.0),
                    )
                )
            return lines

    def statistics(self) -> GraphStatistics:
        with self._lock:
            return GraphStatistics(
                sum(kf.total_points for kf in self.keyframes),
                len(self.keyframes),
                len(self.constraints),
                sum(kf.displayed_points for kf in self.keyframes),
            )

    def flush_pointcloud_to(self, path, settings: ViewerSettings) -> int:
        """Write the points of all keyframes past the cut-off as a binary PLY file.

        Returns the number of points written.
        """
        with self._lock:
            body = io.BytesIO()
            count = sum(
                kf.flush_pc(body, settings)
                for i, kf in enumerate(self.keyframes)
                if i > settings.cut_first_n_kf
            )
            with open(path, "wb") as out:
                out.write(PLY_HEADER.format(count=count).encode("ascii"))
                out.write(body.getvalue())
        logger.info("Done flushing pointcloud with %d points!", count)
        return count

    def draw(self, settings: ViewerSettings) -> GraphScene:
        """Refresh what is visible and collect it; honour pending flush and print requests."""
        with self._lock:
            settings.num_refreshed_already = 0
            scene = GraphScene()
            last = len(self.keyframes) - 1
            for i, kf in enumerate(self.keyframes):
                if settings.show_kf_cameras:
                    frustum = kf.camera_frustum()
                    if len(frustum):
                        scene.cameras.append(frustum)
                if (settings.show_kf_pointclouds and i > settings.cut_first_n_kf) or i == last:
                    verts = kf.refresh_pc(settings)
                    if verts is not None:
                        scene.point_clouds.append((kf.cam_to_world.matrix(), verts))

            if self.flush_pointcloud:
                path = self.output_dir / "pc.ply"
                logger.info("Flushing pointcloud to %s", path)
                self.flush_pointcloud_to(path, settings)
                self.flush_pointcloud = False

            if self.print_numbers:
                stats = self.statistics()
                print(
                    f"Have {stats.total_points} points, {stats.keyframes} keyframes, "
                    f"{stats.constraints} constraints. "
                    f"Displaying {stats.displayed_points} points."
                )
                self.print_numbers = False

            if settings.show_constraints:
                scene.constraints = self.constraint_lines()
            return scene