"""Removal of lens distortion from camera images.

Two camera models are read from small text calibration files:

* the ATAN (FOV) model, as used by PTAM::

      fx fy cx cy omega
      inputWidth inputHeight
      crop / full / none / fx fy cx cy 0
      outputWidth outputHeight

* the radial-tangential model with four coefficients::

      fx fy cx cy k1 k2 p1 p2
      inputWidth inputHeight
      crop / full
      outputWidth outputHeight

Intrinsics in the first line are relative to the image size.  Intrinsic
matrices are reported transposed, with the principal point in the last row.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

_CROP = -1.0
_FULL = -2.0
_GRID_POINTS = 9
_UNDISTORT_ITERATIONS = 5


class CalibrationError(Exception):
    """A calibration file is missing, unreadable or describes no usable model."""


def _scan(line: str, count: int, conv):
    """Read ``count`` whitespace-separated values from the start of ``line``."""
    tokens = line.split()
    if len(tokens) < count:
        return None
    try:
        return [conv(tok) for tok in tokens[:count]]
    except ValueError:
        return None


def _read_lines(path, count: int) -> list[str]:
    with open(path, encoding="utf-8") as handle:
        lines = handle.read().splitlines()
    return (lines + [""] * count)[:count]


def _finish_integer(values: np.ndarray, dtype, rounding) -> np.ndarray:
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(rounding(values), info.min, info.max).astype(dtype)
    return values.astype(dtype)


class Undistorter(ABC):
    """Common interface of the undistorters.

    Attributes: ``k`` and ``original_k`` (transposed 3x3 intrinsics of the
    output and input images), ``input_width``, ``input_height``,
    ``output_width``, ``output_height`` and ``valid``.
    """

    k: np.ndarray | None
    original_k: np.ndarray
    input_width: int
    input_height: int
    output_width: int
    output_height: int
    valid: bool

    @abstractmethod
    def undistort(self, image: np.ndarray) -> np.ndarray:
        """Return the undistorted version of ``image``."""


class UndistorterPTAM(Undistorter):
    """Undistorter for the ATAN (field-of-view) camera model."""

    def __init__(self, path):
        self.valid = True
        self.remap_x: np.ndarray | None = None
        self.remap_y: np.ndarray | None = None
        self.input_calibration = [0.0] * 5
        self.output_calibration = [0.0] * 5
        self.input_width = self.input_height = 0
        self.output_width = self.output_height = 0

        l1, l2, l3, l4 = _read_lines(path, 4)

        calib = _scan(l1, 5, float)
        size = _scan(l2, 2, int)
        if calib is not None and size is not None:
            self.input_calibration = calib
            self.input_width, self.input_height = size
            logger.info("Input resolution: %d %d", *size)
        else:
            logger.warning(
                "Failed to read camera calibration (invalid format?) from %s", path
            )
            self.valid = False

        out_calib = _scan(l3, 5, float)
        if l3 == "crop":
            self.output_calibration[0] = _CROP
        elif l3 == "full":
            self.output_calibration[0] = _FULL
        elif l3 == "none":
            logger.info("NO RECTIFICATION")
            self.output_calibration = list(self.input_calibration)
        elif out_calib is not None:
            self.output_calibration = out_calib
        else:
            logger.warning("Failed to read output parameters; not rectifying.")
            self.valid = False

        out_size = _scan(l4, 2, int)
        if out_size is not None:
            self.output_width, self.output_height = out_size
        else:
            logger.warning("Failed to read output resolution; not rectifying.")
            self.valid = False

        if self.valid:
            self._prepare_warp()
        else:
            logger.info("Not rectifying")
            self.output_calibration = list(self.input_calibration)
            self.output_width = self.input_width
            self.output_height = self.input_height

        ic = self.input_calibration
        self.original_k = np.zeros((3, 3))
        self.original_k[0, 0] = ic[0]
        self.original_k[1, 1] = ic[1]
        self.original_k[2, 2] = 1.0
        self.original_k[2, 0] = ic[2]
        self.original_k[2, 1] = ic[3]

        oc = self.output_calibration
        self.k = np.zeros((3, 3))
        self.k[0, 0] = oc[0] * self.output_width
        self.k[1, 1] = oc[1] * self.output_height
        self.k[2, 2] = 1.0
        self.k[2, 0] = oc[2] * self.output_width - 0.5
        self.k[2, 1] = oc[3] * self.output_height - 0.5

    def _prepare_warp(self) -> None:
        ic = self.input_calibration
        in_w, in_h = self.input_width, self.input_height
        out_w, out_h = self.output_width, self.output_height
        dist = ic[4]
        d2t = 2.0 * math.tan(dist / 2.0)

        fx = ic[0] * in_w
        fy = ic[1] * in_h
        cx = ic[2] * in_w - 0.5
        cy = ic[3] * in_h - 0.5

        def trans(radius: float) -> float:
            return math.tan(radius * dist) / d2t

        if dist == 0:
            ofx = ic[0] * out_w
            ofy = ic[1] * out_h
            ocx = ic[2] * out_w - 0.5
            ocy = ic[3] * out_h - 0.5
        elif self.output_calibration[0] == _CROP:
            left = cx / fx
            right = (in_w - 1 - cx) / fx
            top = cy / fy
            bottom = (in_h - 1 - cy) / fy
            t_left, t_right, t_top, t_bottom = map(trans, (left, right, top, bottom))

            ofy = fy * ((top + bottom) / (t_top + t_bottom)) * (out_h / in_h)
            ocy = (t_top / top) * ofy * cy / fy
            ofx = fx * ((left + right) / (t_left + t_right)) * (out_w / in_w)
            ocx = (t_left / left) * ofx * cx / fx
            logger.info("new K: %f %f %f %f", ofx, ofy, ocx, ocy)
        elif self.output_calibration[0] == _FULL:
            left = cx / fx
            right = (in_w - 1 - cx) / fx
            top = cy / fy
            bottom = (in_h - 1 - cy) / fy
            tl = math.hypot(left, top)
            tr = math.hypot(right, top)
            bl = math.hypot(left, bottom)
            br = math.hypot(right, bottom)
            t_tl, t_tr, t_bl, t_br = map(trans, (tl, tr, bl, br))

            hor = max(br, tr) + max(bl, tl)
            vert = max(tr, tl) + max(bl, br)
            t_hor = max(t_br, t_tr) + max(t_bl, t_tl)
            t_vert = max(t_tr, t_tl) + max(t_bl, t_br)

            ofy = fy * (vert / t_vert) * (out_h / in_h)
            ocy = max(t_tl / tl, t_tr / tr) * ofy * cy / fy
            ofx = fx * (hor / t_hor) * (out_w / in_w)
            ocx = max(t_bl / bl, t_tl / tl) * ofx * cx / fx
            logger.info("new K: %f %f %f %f", ofx, ofy, ocx, ocy)
        else:
            oc = self.output_calibration
            ofx = oc[0] * out_w
            ofy = oc[1] * out_h
            ocx = oc[2] * out_w - 0.5
            ocy = oc[3] * out_h - 0.5

        self.output_calibration = [
            ofx / out_w,
            ofy / out_h,
            (ocx + 0.5) / out_w,
            (ocy + 0.5) / out_h,
            0.0,
        ]

        ys, xs = np.mgrid[0:out_h, 0:out_w].astype(float)
        ix = (xs - ocx) / ofx
        iy = (ys - ocy) / ofy
        r = np.hypot(ix, iy)
        if dist == 0:
            fac = np.ones_like(r)
        else:
            with np.errstate(divide="ignore", invalid="ignore"):
                fac = np.where(r == 0, 1.0, np.arctan(r * d2t) / (dist * r))
        ix = fx * fac * ix + cx
        iy = fy * fac * iy + cy

        # keep sample points strictly inside the image after rounding
        ix[ix == 0] = 0.01
        iy[iy == 0] = 0.01
        ix[ix == in_w - 1] = in_w - 1.01
        ix[iy == in_h - 1] = in_h - 1.01

        inside = (ix > 0) & (iy > 0) & (ix < in_w - 1) & (iy < in_h - 1)
        self.remap_x = np.where(inside, ix, -1.0)
        self.remap_y = np.where(inside, iy, -1.0)
        logger.info("Prepped warp matrices")

    def undistort(self, image: np.ndarray) -> np.ndarray:
        """Undistort by bilinear sampling; images of an unexpected size pass through."""
        image = np.asarray(image)
        if not self.valid:
            return image
        if image.shape[:2] != (self.input_height, self.input_width):
            logger.warning(
                "input image size differs from expected input size; not undistorting"
            )
            return image
        if (
            self.input_height == self.output_height
            and self.input_width == self.output_width
            and self.input_calibration[4] == 0
        ):
            return image

        valid = self.remap_x >= 0
        xx = np.where(valid, self.remap_x, 0.0)
        yy = np.where(valid, self.remap_y, 0.0)
        xi = xx.astype(int)
        yi = yy.astype(int)
        xx = xx - xi
        yy = yy - yi
        xxyy = xx * yy

        src = image.astype(float)
        weights = (
            (xxyy, yi + 1, xi + 1),
            (yy - xxyy, yi + 1, xi),
            (xx - xxyy, yi, xi + 1),
            (1 - xx - yy + xxyy, yi, xi),
        )
        result = None
        for weight, rows, cols in weights:
            if src.ndim == 3:
                weight = weight[..., None]
            term = weight * src[rows, cols]
            result = term if result is None else result + term
        mask = valid[..., None] if src.ndim == 3 else valid
        result = np.where(mask, result, 0.0)
        return _finish_integer(result, image.dtype, np.trunc)


def _undistort_points(xs, ys, camera: np.ndarray, coeffs) -> tuple[np.ndarray, np.ndarray]:
    """Normalised coordinates of distorted pixel positions, by fixed-point iteration."""
    k1, k2, p1, p2 = coeffs
    k3 = 0.0
    x0 = (xs - camera[0, 2]) / camera[0, 0]
    y0 = (ys - camera[1, 2]) / camera[1, 1]
    x, y = x0.copy(), y0.copy()
    for _ in range(_UNDISTORT_ITERATIONS):
        r2 = x * x + y * y
        icdist = 1.0 / (1.0 + ((k3 * r2 + k2) * r2 + k1) * r2)
        delta_x = 2 * p1 * x * y + p2 * (r2 + 2 * x * x)
        delta_y = p1 * (r2 + 2 * y * y) + 2 * p2 * x * y
        x = (x0 - delta_x) * icdist
        y = (y0 - delta_y) * icdist
    return x, y


def _optimal_new_camera_matrix(camera, coeffs, in_size, alpha, new_size) -> np.ndarray:
    in_w, in_h = in_size
    new_w, new_h = new_size
    steps = np.arange(_GRID_POINTS)
    gx, gy = np.meshgrid(
        steps * in_w / (_GRID_POINTS - 1), steps * in_h / (_GRID_POINTS - 1)
    )
    px, py = _undistort_points(gx, gy, camera, coeffs)

    inner_x0 = px[:, 0].max()
    inner_x1 = px[:, -1].min()
    inner_y0 = py[0, :].max()
    inner_y1 = py[-1, :].min()
    outer_x0, outer_x1 = px.min(), px.max()
    outer_y0, outer_y1 = py.min(), py.max()

    fx0 = (new_w - 1) / (inner_x1 - inner_x0)
    fy0 = (new_h - 1) / (inner_y1 - inner_y0)
    cx0 = -fx0 * inner_x0
    cy0 = -fy0 * inner_y0

    fx1 = (new_w - 1) / (outer_x1 - outer_x0)
    fy1 = (new_h - 1) / (outer_y1 - outer_y0)
    cx1 = -fx1 * outer_x0
    cy1 = -fy1 * outer_y0

    result = np.zeros((3, 3))
    result[0, 0] = fx0 * (1 - alpha) + fx1 * alpha
    result[1, 1] = fy0 * (1 - alpha) + fy1 * alpha
    result[0, 2] = cx0 * (1 - alpha) + cx1 * alpha
    result[1, 2] = cy0 * (1 - alpha) + cy1 * alpha
    result[2, 2] = 1.0
    return result


def _rectify_maps(camera, coeffs, new_camera, out_size) -> tuple[np.ndarray, np.ndarray]:
    out_w, out_h = out_size
    k1, k2, p1, p2 = coeffs
    vs, us = np.mgrid[0:out_h, 0:out_w].astype(float)
    x = (us - new_camera[0, 2]) / new_camera[0, 0]
    y = (vs - new_camera[1, 2]) / new_camera[1, 1]
    r2 = x * x + y * y
    kr = 1 + (k1 + k2 * r2) * r2
    xd = x * kr + 2 * p1 * x * y + p2 * (r2 + 2 * x * x)
    yd = y * kr + p1 * (r2 + 2 * y * y) + 2 * p2 * x * y
    return camera[0, 0] * xd + camera[0, 2], camera[1, 1] * yd + camera[1, 2]


def _remap_linear(image: np.ndarray, map_x: np.ndarray, map_y: np.ndarray) -> np.ndarray:
    """Bilinear sampling with a constant zero border."""
    height, width = image.shape[:2]
    finite = np.isfinite(map_x) & np.isfinite(map_y)
    mx = np.where(finite, map_x, -10.0)
    my = np.where(finite, map_y, -10.0)
    x0 = np.floor(mx).astype(int)
    y0 = np.floor(my).astype(int)
    fx = mx - x0
    fy = my - y0
    src = image.astype(float)

    result = np.zeros(map_x.shape + src.shape[2:])
    for dy, dx, weight in (
        (0, 0, (1 - fx) * (1 - fy)),
        (0, 1, fx * (1 - fy)),
        (1, 0, (1 - fx) * fy),
        (1, 1, fx * fy),
    ):
        xi = x0 + dx
        yi = y0 + dy
        inside = (xi >= 0) & (xi < width) & (yi >= 0) & (yi < height)
        values = src[np.clip(yi, 0, height - 1), np.clip(xi, 0, width - 1)]
        if src.ndim == 3:
            weight = weight[..., None]
            inside = inside[..., None]
        result += weight * np.where(inside, values, 0.0)
    return _finish_integer(result, image.dtype, np.rint)


class UndistorterOpenCV(Undistorter):
    """Undistorter for the radial-tangential model with four coefficients."""

    def __init__(self, path):
        self.valid = True
        self.input_calibration = [0.0] * 8
        self.output_calibration = 0.0
        self.input_width = self.input_height = 0
        self.output_width = self.output_height = 0
        self.map_x: np.ndarray | None = None
        self.map_y: np.ndarray | None = None

        l1, l2, l3, l4 = _read_lines(path, 4)

        calib = _scan(l1, 8, float)
        size = _scan(l2, 2, int)
        if calib is not None and size is not None:
            self.input_calibration = calib
            self.input_width, self.input_height = size
            logger.info("Input resolution: %d %d", *size)
        else:
            logger.warning(
                "Failed to read camera calibration (invalid format?) from %s", path
            )
            self.valid = False

        if l3 == "crop":
            self.output_calibration = _CROP
        elif l3 == "full":
            self.output_calibration = _FULL
        elif l3 == "none":
            logger.info("NO RECTIFICATION")
            self.valid = False
        else:
            logger.warning("Failed to read output parameters; not rectifying.")
            self.valid = False

        out_size = _scan(l4, 2, int)
        if out_size is not None:
            self.output_width, self.output_height = out_size
        else:
            logger.warning("Failed to read output resolution; not rectifying.")
            self.valid = False

        ic = self.input_calibration
        coeffs = ic[4:8]
        original = np.zeros((3, 3))
        original[0, 0] = ic[0] * self.input_width
        original[1, 1] = ic[1] * self.input_height
        original[2, 2] = 1.0
        original[0, 2] = ic[2] * self.input_width
        original[1, 2] = ic[3] * self.input_height

        new_k = None
        if self.valid:
            alpha = 1.0 if self.output_calibration == _FULL else 0.0
            new_k = _optimal_new_camera_matrix(
                original,
                coeffs,
                (self.input_width, self.input_height),
                alpha,
                (self.output_width, self.output_height),
            )
            self.map_x, self.map_y = _rectify_maps(
                original, coeffs, new_k, (self.output_width, self.output_height)
            )
            original[0, 0] /= self.input_width
            original[0, 2] /= self.input_width
            original[1, 1] /= self.input_height
            original[1, 2] /= self.input_height

        self.original_k = original.T.copy()
        self.k = None if new_k is None else new_k.T.copy()

    def undistort(self, image: np.ndarray) -> np.ndarray:
        """Undistort by bilinear remapping; pixels sampled outside the input are 0."""
        if not self.valid:
            raise CalibrationError("undistorter was not initialised with a valid calibration")
        return _remap_linear(np.asarray(image), self.map_x, self.map_y)


def _readable(path: Path) -> bool:
    try:
        with open(path, encoding="utf-8"):
            return True
    except OSError:
        return False


def undistorter_for_file(path, package_path="") -> Undistorter:
    """Build the undistorter a calibration file describes.

    When ``path`` cannot be opened, ``<package_path>calib/<path>`` is tried.
    Raises :class:`CalibrationError` when neither file exists or the
    calibration is not valid.
    """
    complete = Path(path)
    if not _readable(complete):
        complete = Path(f"{package_path}calib/{path}")
        if not _readable(complete):
            raise CalibrationError(
                f"calibration file {path!s} not found; cannot operate without calibration"
            )

    first_line = _read_lines(complete, 1)[0]
    if _scan(first_line, 8, float) is not None:
        logger.info("found OpenCV camera model, building rectifier.")
        undistorter: Undistorter = UndistorterOpenCV(complete)
    else:
        logger.info("found ATAN camera model, building rectifier.")
        undistorter = UndistorterPTAM(complete)
    if not undistorter.valid:
        raise CalibrationError(f"invalid calibration in {complete}")
    return undistorter