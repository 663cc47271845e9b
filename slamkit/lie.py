"""Rotation group SO(3) and rigid-motion group SE(3) helpers."""

from __future__ import annotations

import math

import numpy as np
from scipy.spatial.transform import Rotation

_SMALL_ANGLE = 1e-10


def hat(v) -> np.ndarray:
    """Return the skew-symmetric matrix of a 3-vector, so hat(v) @ w == v x w."""
    a = np.asarray(v, dtype=float)
    if a.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {a.shape}")
    return np.array(
        [
            [0.0, -a[2], a[1]],
            [a[2], 0.0, -a[0]],
            [-a[1], a[0], 0.0],
        ]
    )


def so3_exp(omega) -> np.ndarray:
    """Map a rotation vector to its rotation matrix."""
    w = np.asarray(omega, dtype=float)
    k = hat(w)
    theta = float(np.linalg.norm(w))
    if theta < _SMALL_ANGLE:
        return np.eye(3) + k + 0.5 * (k @ k)
    return (
        np.eye(3)
        + (math.sin(theta) / theta) * k
        + ((1.0 - math.cos(theta)) / (theta * theta)) * (k @ k)
    )


def so3_log(rotation) -> np.ndarray:
    """Map a rotation matrix to its rotation vector."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {r.shape}")
    return Rotation.from_matrix(r).as_rotvec()


def se3_exp(xi) -> SE3:
    """Map a twist (translation part first, rotation part last) to a rigid motion."""
    x = np.asarray(xi, dtype=float)
    if x.shape != (6,):
        raise ValueError(f"expected a 6-vector, got shape {x.shape}")
    upsilon, omega = x[:3], x[3:]
    k = hat(omega)
    theta = float(np.linalg.norm(omega))
    if theta < _SMALL_ANGLE:
        v = np.eye(3) + 0.5 * k + (k @ k) / 6.0
    else:
        theta2 = theta * theta
        v = (
            np.eye(3)
            + ((1.0 - math.cos(theta)) / theta2) * k
            + ((theta - math.sin(theta)) / (theta2 * theta)) * (k @ k)
        )
    return SE3(so3_exp(omega), v @ upsilon)


class SE3:
    """A rigid motion: rotation matrix and translation vector."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation=None, translation=None):
        self.rotation = np.eye(3) if rotation is None else np.array(rotation, dtype=float)
        self.translation = (
            np.zeros(3) if translation is None else np.array(translation, dtype=float)
        )
        if self.rotation.shape != (3, 3):
            raise ValueError(f"rotation must be 3x3, got shape {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(f"translation must be a 3-vector, got shape {self.translation.shape}")

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation @ other.rotation,
                self.rotation @ other.translation + self.translation,
            )
        return self.apply(other)

    def apply(self, point) -> np.ndarray:
        """Transform a point, or an (N, 3) array of points."""
        p = np.asarray(point, dtype=float)
        if p.shape == (3,):
            return self.rotation @ p + self.translation
        if p.ndim == 2 and p.shape[1] == 3:
            return p @ self.rotation.T + self.translation
        raise ValueError(f"expected a 3-vector or an (N, 3) array, got shape {p.shape}")

    def inverse(self) -> SE3:
        rt = self.rotation.T
        return SE3(rt, -rt @ self.translation)

    def matrix(self) -> np.ndarray:
        """Return the 4x4 homogeneous transformation matrix."""
        m = np.eye(4)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.translation
        return m

    def __repr__(self) -> str:
        return f"SE3(rotation={self.rotation.tolist()}, translation={self.translation.tolist()})"