"""Rigid-body (SE3) and similarity (Sim3) transforms on quaternions.

Quaternions are stored in (x, y, z, w) order.
"""

from __future__ import annotations

import math

import numpy as np


def _normalized(q) -> np.ndarray:
    arr = np.asarray(q, dtype=float).reshape(4)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0 or not math.isfinite(norm):
        raise ValueError("quaternion must have a finite, non-zero norm")
    return arr / norm


def _quat_mul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return np.array(
        [
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
            aw * bw - ax * bx - ay * by - az * bz,
        ]
    )


def _conjugate(q: np.ndarray) -> np.ndarray:
    return np.array([-q[0], -q[1], -q[2], q[3]])


def _transform_points(rotation: np.ndarray, translation: np.ndarray, points) -> np.ndarray:
    pts = np.asarray(points, dtype=float)
    if pts.shape[-1] != 3:
        raise ValueError("points must have 3 coordinates")
    return pts @ rotation.T + translation


def quaternion_to_matrix(q) -> np.ndarray:
    """Rotation matrix of a quaternion (normalised first)."""
    x, y, z, w = _normalized(q)
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ]
    )


def matrix_to_quaternion(m) -> np.ndarray:
    """Unit quaternion of a rotation matrix, with a non-negative w."""
    m = np.asarray(m, dtype=float).reshape(3, 3)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0:
        s = math.sqrt(trace + 1.0) * 2
        q = [(m[2, 1] - m[1, 2]) / s, (m[0, 2] - m[2, 0]) / s, (m[1, 0] - m[0, 1]) / s, 0.25 * s]
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2
        q = [0.25 * s, (m[0, 1] + m[1, 0]) / s, (m[0, 2] + m[2, 0]) / s, (m[2, 1] - m[1, 2]) / s]
    elif m[1, 1] > m[2, 2]:
        s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2
        q = [(m[0, 1] + m[1, 0]) / s, 0.25 * s, (m[1, 2] + m[2, 1]) / s, (m[0, 2] - m[2, 0]) / s]
    else:
        s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2
        q = [(m[0, 2] + m[2, 0]) / s, (m[1, 2] + m[2, 1]) / s, 0.25 * s, (m[1, 0] - m[0, 1]) / s]
    quat = _normalized(q)
    return -quat if quat[3] < 0 else quat


class SE3:
    """Rotation plus translation."""

    def __init__(self, quaternion=(0.0, 0.0, 0.0, 1.0), translation=(0.0, 0.0, 0.0)):
        self.unit_quaternion = _normalized(quaternion)
        self.translation = np.asarray(translation, dtype=float).reshape(3).copy()

    def rotation_matrix(self) -> np.ndarray:
        return quaternion_to_matrix(self.unit_quaternion)

    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 matrix."""
        out = np.eye(4)
        out[:3, :3] = self.rotation_matrix()
        out[:3, 3] = self.translation
        return out

    def inverse(self) -> SE3:
        rot_t = self.rotation_matrix().T
        return SE3(_conjugate(self.unit_quaternion), -rot_t @ self.translation)

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                _quat_mul(self.unit_quaternion, other.unit_quaternion),
                self.rotation_matrix() @ other.translation + self.translation,
            )
        return _transform_points(self.rotation_matrix(), self.translation, other)

    def __repr__(self) -> str:
        return f"SE3(quaternion={self.unit_quaternion.tolist()}, translation={self.translation.tolist()})"


class Sim3:
    """Scaled rotation plus translation."""

    def __init__(self, quaternion=(0.0, 0.0, 0.0, 1.0), translation=(0.0, 0.0, 0.0), scale=1.0):
        scale = float(scale)
        if not scale > 0 or not math.isfinite(scale):
            raise ValueError("scale must be positive and finite")
        self.unit_quaternion = _normalized(quaternion)
        self.translation = np.asarray(translation, dtype=float).reshape(3).copy()
        self.scale = scale

    @classmethod
    def from_data(cls, data) -> Sim3:
        """Build from 7 values: a quaternion whose squared norm is the scale, then the translation."""
        arr = np.asarray(data, dtype=float).reshape(7)
        q = arr[:4]
        return cls(q, arr[4:], float(np.dot(q, q)))

    def data(self) -> np.ndarray:
        """The 7-value representation read by :meth:`from_data`."""
        return np.concatenate([self.unit_quaternion * math.sqrt(self.scale), self.translation])

    def rotation_matrix(self) -> np.ndarray:
        return quaternion_to_matrix(self.unit_quaternion)

    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 matrix with the scale folded into the rotation block."""
        out = np.eye(4)
        out[:3, :3] = self.scale * self.rotation_matrix()
        out[:3, 3] = self.translation
        return out

    def inverse(self) -> Sim3:
        inv_scale = 1.0 / self.scale
        rot_t = self.rotation_matrix().T
        return Sim3(
            _conjugate(self.unit_quaternion),
            -inv_scale * (rot_t @ self.translation),
            inv_scale,
        )

    def __mul__(self, other):
        if isinstance(other, Sim3):
            return Sim3(
                _quat_mul(self.unit_quaternion, other.unit_quaternion),
                self.scale * (self.rotation_matrix() @ other.translation) + self.translation,
                self.scale * other.scale,
            )
        return _transform_points(self.scale * self.rotation_matrix(), self.translation, other)

    def __repr__(self) -> str:
        return (
            f"Sim3(quaternion={self.unit_quaternion.tolist()}, "
            f"translation={self.translation.tolist()}, scale={self.scale})"
        )


def sim3_from_se3(se3: SE3, scale) -> Sim3:
    """Similarity transform with the pose of ``se3`` and the given scale."""
    return Sim3(se3.unit_quaternion, se3.translation, scale)


def se3_from_sim3(sim3: Sim3) -> SE3:
    """Rigid transform with the rotation and translation of ``sim3``; the scale is dropped."""
    return SE3(sim3.unit_quaternion, sim3.translation)