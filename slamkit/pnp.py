"""Camera pose from 3D-2D correspondences by Gauss-Newton on SE(3)."""

from __future__ import annotations

import logging

import numpy as np

from slamkit.lie import SE3, se3_exp

logger = logging.getLogger(__name__)

_ITERATIONS = 10
_CONVERGED_STEP = 1e-6


def _intrinsics(K) -> tuple[float, float, float, float]:
    k = np.asarray(K, dtype=float)
    if k.shape != (3, 3):
        raise ValueError(f"camera matrix must be 3x3, got shape {k.shape}")
    return float(k[0, 0]), float(k[1, 1]), float(k[0, 2]), float(k[1, 2])


def pixel2cam(p, K) -> np.ndarray:
    """Convert pixel coordinates to normalised camera coordinates."""
    fx, fy, cx, cy = _intrinsics(K)
    pt = np.asarray(p, dtype=float)
    if pt.shape != (2,):
        raise ValueError(f"expected a 2-vector, got shape {pt.shape}")
    return np.array([(pt[0] - cx) / fx, (pt[1] - cy) / fy])


def projection_jacobian(point_cam, K) -> np.ndarray:
    """Jacobian (2x6) of the reprojection error with respect to a left SE(3) update.

    The error is observation minus projection; the update has its
    translation part first and its rotation part last.
    """
    fx, fy, _, _ = _intrinsics(K)
    pc = np.asarray(point_cam, dtype=float)
    if pc.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {pc.shape}")
    x, y, z = pc
    if z == 0.0:
        raise ValueError("point lies on the camera plane (zero depth)")
    z2 = z * z
    return np.array(
        [
            [-fx / z, 0.0, fx * x / z2, fx * x * y / z2, -fx - fx * x * x / z2, fx * y / z],
            [0.0, -fy / z, fy * y / z2, fy + fy * y * y / z2, -fy * x * y / z2, -fy * x / z],
        ]
    )


def _points(values, width: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr.reshape(0, width)
    if arr.ndim != 2 or arr.shape[1] != width:
        raise ValueError(f"{name} must be an (N, {width}) array, got shape {arr.shape}")
    return arr


def bundle_adjustment_gauss_newton(points_3d, points_2d, K, pose=None) -> SE3:
    """Refine the pose mapping world points to the camera so they project onto points_2d.

    Starts from pose (identity if None) and returns the refined pose.
    """
    p3 = _points(points_3d, 3, "points_3d")
    p2 = _points(points_2d, 2, "points_2d")
    if len(p3) != len(p2):
        raise ValueError(f"point counts differ: {len(p3)} and {len(p2)}")
    fx, fy, cx, cy = _intrinsics(K)
    pose = SE3() if pose is None else pose

    last_cost = 0.0
    for iteration in range(_ITERATIONS):
        pc = pose.apply(p3) if len(p3) else p3
        x, y, z = pc[:, 0], pc[:, 1], pc[:, 2]
        inv_z = 1.0 / z
        inv_z2 = inv_z * inv_z
        proj = np.stack([fx * x * inv_z + cx, fy * y * inv_z + cy], axis=1)
        e = p2 - proj
        cost = float((e * e).sum())

        jac = np.zeros((len(pc), 2, 6))
        jac[:, 0, 0] = -fx * inv_z
        jac[:, 0, 2] = fx * x * inv_z2
        jac[:, 0, 3] = fx * x * y * inv_z2
        jac[:, 0, 4] = -fx - fx * x * x * inv_z2
        jac[:, 0, 5] = fx * y * inv_z
        jac[:, 1, 1] = -fy * inv_z
        jac[:, 1, 2] = fy * y * inv_z2
        jac[:, 1, 3] = fy + fy * y * y * inv_z2
        jac[:, 1, 4] = -fy * x * y * inv_z2
        jac[:, 1, 5] = -fy * x * inv_z

        h = np.einsum("nij,nik->jk", jac, jac)
        b = -np.einsum("nij,ni->j", jac, e)

        try:
            dx = np.linalg.solve(h, b)
        except np.linalg.LinAlgError:
            logger.debug("result is nan!")
            break
        if np.isnan(dx[0]):
            logger.debug("result is nan!")
            break

        if iteration > 0 and cost >= last_cost:
            logger.debug("cost: %s, last cost: %s", cost, last_cost)
            break

        pose = se3_exp(dx) * pose
        last_cost = cost
        logger.debug("iteration %d cost=%.12g", iteration, cost)
        if np.linalg.norm(dx) < _CONVERGED_STEP:
            break

    return pose