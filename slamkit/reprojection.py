"""Reprojection model for BAL cameras with radial distortion."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from slamkit.rotation import angle_axis_rotate_point


def project_with_distortion(camera, point) -> np.ndarray:
    """Project a 3D point with a 9-parameter BAL camera.

    The camera holds angle-axis rotation [0:3], translation [3:6], focal
    length [6] and second and fourth order radial distortion [7:9].
    """
    cam = np.asarray(camera, dtype=float)
    if cam.shape != (9,):
        raise ValueError(f"camera must have 9 parameters, got shape {cam.shape}")
    p = angle_axis_rotate_point(cam[0:3], point) + cam[3:6]
    xp = -p[0] / p[2]
    yp = -p[1] / p[2]
    l1, l2, focal = cam[7], cam[8], cam[6]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (l1 + l2 * r2)
    return np.array([focal * distortion * xp, focal * distortion * yp])


@dataclass(frozen=True)
class SnavelyReprojectionError:
    """Residual between a camera's projection of a point and an observation."""

    observed_x: float
    observed_y: float

    def __call__(self, camera, point) -> np.ndarray:
        prediction = project_with_distortion(camera, point)
        return prediction - np.array([self.observed_x, self.observed_y])