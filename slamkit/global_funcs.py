"""Pose conversion, sub-pixel interpolation and debug plots of depth maps.

Images are ``numpy`` arrays of shape (height, width, 3) and dtype uint8;
depth maps are float arrays of shape (height, width).
"""

from __future__ import annotations

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from slamkit.sophus import SE3, matrix_to_quaternion

_BACKGROUND = (255, 170, 168)
_TEXT_COLOR = (200, 200, 250)
_TEXT_HEIGHT = 10


def se3_from_cv(rotation, translation) -> SE3:
    """Pose from a 3x3 rotation matrix and translation, with the rotation inverted."""
    rot = np.asarray(rotation, dtype=float).reshape(3, 3)
    trans = np.asarray(translation, dtype=float).reshape(3)
    return SE3(matrix_to_quaternion(np.linalg.inv(rot)), trans)


def print_message_on_image(image: np.ndarray, line1: str, line2: str) -> None:
    """Darken the bottom 30 rows of ``image`` and write two lines of text there, in place."""
    rows = image.shape[0]
    band = image[max(rows - 30, 0):]
    band[...] = np.clip(np.rint(band * 0.5), 0, 255).astype(image.dtype)

    canvas = Image.fromarray(np.ascontiguousarray(image))
    draw = ImageDraw.Draw(canvas)
    font = ImageFont.load_default()
    for text, baseline in ((line2, rows - 5), (line1, rows - 18)):
        draw.text((10, baseline - _TEXT_HEIGHT), text, fill=_TEXT_COLOR, font=font)
    image[...] = np.asarray(canvas)


def _bilinear(mat: np.ndarray, x: float, y: float):
    ix = int(x)
    iy = int(y)
    dx = x - ix
    dy = y - iy
    dxdy = dx * dy
    return (
        dxdy * mat[iy + 1, ix + 1]
        + (dy - dxdy) * mat[iy + 1, ix]
        + (dx - dxdy) * mat[iy, ix + 1]
        + (1 - dx - dy + dxdy) * mat[iy, ix]
    )


def get_interpolated_element(mat, x: float, y: float) -> float:
    """Bilinearly interpolated value of a 2-D array at column ``x``, row ``y``."""
    return float(_bilinear(np.asarray(mat, dtype=float), x, y))


def get_interpolated_vector(mat, x: float, y: float, channels: int = 3) -> np.ndarray:
    """Bilinearly interpolated first ``channels`` components of a (H, W, C) array."""
    arr = np.asarray(mat, dtype=float)
    if arr.ndim != 3 or not 1 <= channels <= arr.shape[2]:
        raise ValueError("channels must lie between 1 and the array's channel count")
    return _bilinear(arr[:, :, :channels], x, y)


def fill_image(image: np.ndarray, color) -> None:
    """Set every pixel of ``image`` to ``color``."""
    image[:, :] = color


def set_pixel(image: np.ndarray, color, xx: int, yy: int, lvl_fac: int) -> None:
    """Paint the ``lvl_fac``-sized block of pyramid pixel (xx, yy), clipped to the image."""
    image[yy * lvl_fac:(yy + 1) * lvl_fac, xx * lvl_fac:(xx + 1) * lvl_fac] = color


def gray_pixel(val: float) -> tuple[int, int, int]:
    """A gray colour from a value clamped to 0..255."""
    v = int(min(max(val, 0.0), 255.0))
    return (v, v, v)


def _base_image(shape, gray) -> np.ndarray:
    height, width = shape
    if gray is None:
        res = np.empty((height, width, 3), dtype=np.uint8)
        res[...] = _BACKGROUND
        return res
    g = np.asarray(gray, dtype=float)
    if g.shape != (height, width):
        raise ValueError("gray image must have the same shape as the depth map")
    g8 = np.clip(np.rint(g), 0, 255).astype(np.uint8)
    return np.repeat(g8[:, :, None], 3, axis=2)


def _rainbow_channel(values: np.ndarray) -> np.ndarray:
    return np.minimum(np.abs(values) * 255.0, 255.0).astype(np.uint8)


def depth_rainbow_plot(idepth, idepth_var, gray=None) -> np.ndarray:
    """Colour valid inverse depths on a rainbow over ``gray`` (or a flat background)."""
    idepth = np.asarray(idepth, dtype=float)
    idepth_var = np.asarray(idepth_var, dtype=float)
    if idepth.ndim != 2 or idepth_var.shape != idepth.shape:
        raise ValueError("idepth and idepth_var must be 2-D arrays of the same shape")
    res = _base_image(idepth.shape, gray)

    with np.errstate(invalid="ignore"):
        mask = (idepth >= 0) & (idepth_var >= 0)
    ids = idepth[mask]
    rc = _rainbow_channel(0 - ids)
    gc = _rainbow_channel(1 - ids)
    bc = _rainbow_channel(2 - ids)
    res[mask] = np.stack([255 - rc, 255 - gc, 255 - bc], axis=-1)
    return res


def _smoothed_variance(var: np.ndarray) -> np.ndarray:
    height, width = var.shape
    ext = var.copy()
    if height <= 4 or width <= 4:
        return ext
    center = var[2:height - 2, 2:width - 2]
    sum_ivar = np.zeros_like(center)
    num_ivar = np.zeros_like(center)
    with np.errstate(invalid="ignore", divide="ignore"):
        for dy in range(-2, 3):
            for dx in range(-2, 3):
                nb = var[2 + dy:height - 2 + dy, 2 + dx:width - 2 + dx]
                valid = nb > 0
                dist_fac = (dx * dx + dy * dy) * (0.075 * 0.075) * 0.02
                sum_ivar += np.where(valid, 1.0 / (np.where(valid, nb, 1.0) + dist_fac), 0.0)
                num_ivar += valid
        ext[2:height - 2, 2:width - 2] = np.where(center <= 0, -1.0, num_ivar / sum_ivar)
    return ext


def var_red_green_plot(idepth_var, gray=None) -> np.ndarray:
    """Colour inverse-depth variance from green (certain) to red (uncertain)."""
    var = np.asarray(idepth_var, dtype=float)
    if var.ndim != 2:
        raise ValueError("idepth_var must be a 2-D array")
    ext = _smoothed_variance(var)
    res = _base_image(var.shape, gray)

    with np.errstate(invalid="ignore"):
        mask = ext > 0
    level = np.clip(np.sqrt(ext[mask]) * 60 * 255 * 0.5 - 20, 0.0, 255.0)
    res[mask] = np.stack(
        [np.zeros_like(level, dtype=np.uint8), (255 - level).astype(np.uint8), level.astype(np.uint8)],
        axis=-1,
    )
    return res