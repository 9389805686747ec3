"""Point cloud and camera pose of one keyframe, as shown by the viewer.

The inverse-depth map of a keyframe arrives as packed little-endian records
(``idepth``, ``idepth_var``, four colour bytes).  From it a vertex array is
built: points in the camera frame plus a BGRA colour.  Points are filtered
by depth variance, optional random sparsification and neighbourhood support.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import BinaryIO, Sequence

import numpy as np

from slamkit.sophus import Sim3
from slamkit.viewer_settings import ViewerSettings

logger = logging.getLogger(__name__)

INPUT_POINT_DTYPE = np.dtype(
    [("idepth", "<f4"), ("idepth_var", "<f4"), ("color", "u1", (4,))]
)
VERTEX_DTYPE = np.dtype([("point", "<f4", (3,)), ("color", "u1", (4,))])

_VERTEX_ALPHA = 100
_FRUSTUM_DEPTH = 0.05
_MAX_REFRESHES_PER_DRAW = 10


@dataclass
class KeyframeMsg:
    """One frame as published by the SLAM system."""

    id: int = 0
    time: float = 0.0
    is_keyframe: bool = False
    cam_to_world: Sequence[float] = (0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0)
    fx: float = 1.0
    fy: float = 1.0
    cx: float = 0.0
    cy: float = 0.0
    height: int = 0
    width: int = 0
    pointcloud: bytes = b""


class KeyFrameDisplay:
    """Holds a keyframe's pose, intrinsics and depth map, and builds its vertices."""

    def __init__(self, rng: np.random.Generator | None = None):
        self.id = 0
        self.time = 0.0
        self.total_points = 0
        self.displayed_points = 0
        self.cam_to_world = Sim3()
        self.width = 0
        self.height = 0
        self.vertices: np.ndarray | None = None

        f32 = np.float32
        self.fx = self.fy = f32(1.0)
        self.cx = self.cy = f32(0.0)
        self.fxi = self.fyi = f32(1.0)
        self.cxi = self.cyi = f32(0.0)

        self._rng = rng if rng is not None else np.random.default_rng()
        self._input: np.ndarray | None = None
        self._buffers_valid = False

        self._my_scaled_th = 0.0
        self._my_abs_th = 0.0
        self._my_scale = 0.0
        self._my_min_near_support = 0
        self._my_sparsify_factor = 0

    def set_from(self, msg: KeyframeMsg) -> None:
        """Take pose, intrinsics and (if well-sized) the depth map from ``msg``."""
        self.cam_to_world = Sim3.from_data(msg.cam_to_world)

        f32 = np.float32
        with np.errstate(divide="ignore", invalid="ignore"):
            self.fx, self.fy = f32(msg.fx), f32(msg.fy)
            self.cx, self.cy = f32(msg.cx), f32(msg.cy)
            self.fxi = f32(1) / self.fx
            self.fyi = f32(1) / self.fy
            self.cxi = -self.cx / self.fx
            self.cyi = -self.cy / self.fy

        self.width = int(msg.width)
        self.height = int(msg.height)
        self.id = msg.id
        self.time = msg.time

        self._input = None
        expected = self.width * self.height * INPUT_POINT_DTYPE.itemsize
        size = len(msg.pointcloud)
        if size != expected:
            if size != 0:
                logger.warning(
                    "PC with points, but number of points not right! "
                    "(is %d, should be %d*%dx%d=%d)",
                    size, INPUT_POINT_DTYPE.itemsize, self.width, self.height, expected,
                )
        else:
            self._input = (
                np.frombuffer(msg.pointcloud, dtype=INPUT_POINT_DTYPE)
                .reshape(self.height, self.width)
                .copy()
            )

        self._buffers_valid = False

    @property
    def has_pointcloud(self) -> bool:
        """Whether the depth map is still held in memory."""
        return self._input is not None

    def _params_still_good(self, settings: ViewerSettings) -> bool:
        scale = self.cam_to_world.scale
        return (
            self._my_scaled_th == settings.scaled_depth_var_th
            and self._my_abs_th == settings.abs_depth_var_th
            and self._my_scale * 1.2 > scale
            and self._my_scale < scale * 1.2
            and self._my_min_near_support == settings.min_near_support
            and self._my_sparsify_factor == settings.sparsify_factor
        )

    def _select(self, scaled_th, abs_th, scale, min_near_support, sparsify):
        """Filter the depth map; return the positive count and the kept points."""
        empty_i = np.empty(0, dtype=np.float32)
        h, w = self.height, self.width
        if self._input is None or h < 3 or w < 3:
            return 0, empty_i, empty_i, empty_i, np.empty((0, 4), dtype=np.uint8)

        idepth = self._input["idepth"]
        var = self._input["idepth_var"][1:-1, 1:-1]
        colors = self._input["color"][1:-1, 1:-1]
        inner = idepth[1:-1, 1:-1]
        ys, xs = np.mgrid[1:h - 1, 1:w - 1]

        positive = inner > 0
        total = int(np.count_nonzero(positive))
        keep = positive.copy()
        if sparsify > 1:
            keep[positive] = self._rng.integers(0, sparsify, size=total) == 0

        f32 = np.float32
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            depth = f32(1) / inner
            depth4 = depth * depth
            depth4 = depth4 * depth4
            keep &= ~(var * depth4 > f32(scaled_th))
            keep &= ~(var * depth4 * f32(scale) * f32(scale) > f32(abs_th))

            if min_near_support > 1:
                recip = f32(1) / depth
                support = np.zeros(inner.shape, dtype=np.int32)
                for dy in (-1, 0, 1):
                    for dx in (-1, 0, 1):
                        nb = idepth[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx]
                        diff = nb - recip
                        support += (nb > 0) & (diff * diff < f32(2) * var)
                keep &= support >= min_near_support

        return (
            total,
            xs[keep].astype(np.float32),
            ys[keep].astype(np.float32),
            depth[keep],
            colors[keep],
        )

    def refresh_pc(self, settings: ViewerSettings) -> np.ndarray | None:
        """Rebuild the vertex array when settings or scale changed; return it.

        Returns ``None`` when there is no depth map to build from.
        """
        if self._buffers_valid and (
            self._params_still_good(settings)
            or settings.num_refreshed_already > _MAX_REFRESHES_PER_DRAW
        ):
            return self.vertices
        settings.num_refreshed_already += 1
        self._buffers_valid = True
        self.vertices = None

        if self._input is None:
            return None

        self._my_scaled_th = settings.scaled_depth_var_th
        self._my_abs_th = settings.abs_depth_var_th
        self._my_scale = self.cam_to_world.scale
        self._my_min_near_support = settings.min_near_support
        self._my_sparsify_factor = settings.sparsify_factor

        total, xs, ys, depth, colors = self._select(
            self._my_scaled_th,
            self._my_abs_th,
            self._my_scale,
            self._my_min_near_support,
            self._my_sparsify_factor,
        )
        verts = np.zeros(len(depth), dtype=VERTEX_DTYPE)
        verts["point"][:, 0] = (xs * self.fxi + self.cxi) * depth
        verts["point"][:, 1] = (ys * self.fyi + self.cyi) * depth
        verts["point"][:, 2] = depth
        verts["color"][:, 0] = colors[:, 2]
        verts["color"][:, 1] = colors[:, 1]
        verts["color"][:, 2] = colors[:, 0]
        verts["color"][:, 3] = _VERTEX_ALPHA

        self.total_points = total
        self.displayed_points = len(verts)
        self.vertices = verts

        if not settings.keep_in_memory:
            self._input = None
        return verts

    def camera_frustum(self) -> np.ndarray:
        """Line segments of the camera outline in world coordinates, shape (8, 2, 3).

        Empty when no intrinsics have been set.
        """
        if self.width == 0:
            return np.empty((0, 2, 3))
        fx, fy = float(self.fx), float(self.fy)
        cx, cy = float(self.cx), float(self.cy)
        d = _FRUSTUM_DEPTH
        left = d * (0 - cx) / fx
        right = d * (self.width - 1 - cx) / fx
        top = d * (0 - cy) / fy
        bottom = d * (self.height - 1 - cy) / fy

        origin = (0.0, 0.0, 0.0)
        tl = (left, top, d)
        bl = (left, bottom, d)
        br = (right, bottom, d)
        tr = (right, top, d)
        segments = np.array(
            [
                (origin, tl), (origin, bl), (origin, br), (origin, tr),
                (tr, br), (br, bl), (bl, tl), (tl, tr),
            ],
            dtype=float,
        )
        world = self.cam_to_world * segments.reshape(-1, 3)
        return world.reshape(8, 2, 3)

    def flush_pc(self, stream: BinaryIO, settings: ViewerSettings) -> int:
        """Write the filtered points in world coordinates to ``stream``.

        Each point is four little-endian floats: x, y, z and an intensity.
        Returns the number of points written.
        """
        if self._input is None:
            return 0
        _, xs, ys, depth, colors = self._select(
            settings.scaled_depth_var_th,
            settings.abs_depth_var_th,
            self.cam_to_world.scale,
            settings.min_near_support,
            settings.sparsify_factor,
        )
        cam = np.stack(
            [xs * self.fxi + self.cxi, ys * self.fyi + self.cyi, np.ones_like(xs)],
            axis=1,
        ) * depth[:, None]
        world = self.cam_to_world * cam.astype(float)

        out = np.empty((len(depth), 4), dtype="<f4")
        out[:, :3] = world
        out[:, 3] = colors[:, 2] / 255.0
        stream.write(out.tobytes())

        logger.info("Done flushing frame %d (%d points)!", self.id, len(out))
        return len(out)