"""Rigid alignment of 3D-3D correspondences by SVD and by Levenberg-Marquardt."""

from __future__ import annotations

import logging

import numpy as np

from slamkit.lie import SE3, hat, se3_exp
from slamkit.pnp import pixel2cam

logger = logging.getLogger(__name__)

_MAX_TRIES = 10


def depth_to_point(pixel, depth, K) -> np.ndarray:
    """Back-project a pixel with a known depth to a 3D point in the camera frame."""
    x, y = pixel2cam(pixel, K)
    d = float(depth)
    return np.array([x * d, y * d, d])


def _pairs(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(pts1, dtype=float)
    b = np.asarray(pts2, dtype=float)
    for name, arr in (("pts1", a), ("pts2", b)):
        if arr.ndim != 2 or arr.shape[1] != 3:
            raise ValueError(f"{name} must be an (N, 3) array, got shape {arr.shape}")
    if len(a) != len(b):
        raise ValueError(f"point counts differ: {len(a)} and {len(b)}")
    if len(a) == 0:
        raise ValueError("no point pairs given")
    return a, b


def pose_estimation_3d3d(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    """Return (R, t) with pts1 ~ R @ pts2 + t, from the SVD of the cross-covariance."""
    p1, p2 = _pairs(pts1, pts2)
    c1 = p1.mean(axis=0)
    c2 = p2.mean(axis=0)
    w = (p1 - c1).T @ (p2 - c2)
    u, _, vt = np.linalg.svd(w)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        rotation = -rotation
    translation = c1 - rotation @ c2
    return rotation, translation


def bundle_adjustment(pts1, pts2, max_iterations: int = 10) -> tuple[np.ndarray, np.ndarray]:
    """Refine (R, t) with pts1 ~ R @ pts2 + t by Levenberg-Marquardt from the identity."""
    p1, p2 = _pairs(pts1, pts2)
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")

    def residual(candidate: SE3) -> tuple[np.ndarray, np.ndarray, float]:
        transformed = candidate.apply(p2)
        err = p1 - transformed
        return err, transformed, float((err * err).sum())

    pose = SE3()
    err, transformed, cost = residual(pose)
    lam: float | None = None
    nu = 2.0

    for iteration in range(max_iterations):
        jac = np.zeros((len(p1), 3, 6))
        jac[:, :, :3] = -np.eye(3)
        jac[:, :, 3:] = np.array([hat(p) for p in transformed])
        h = np.einsum("nij,nik->jk", jac, jac)
        b = -np.einsum("nij,ni->j", jac, err)
        if lam is None:
            lam = 1e-5 * float(np.max(np.diag(h))) or 1e-5

        improved = False
        for _ in range(_MAX_TRIES):
            try:
                dx = np.linalg.solve(h + lam * np.eye(6), b)
            except np.linalg.LinAlgError:
                lam *= nu
                nu *= 2.0
                continue
            candidate = se3_exp(dx) * pose
            new_err, new_transformed, new_cost = residual(candidate)
            if np.isfinite(new_cost) and new_cost < cost:
                predicted = float(dx @ (lam * dx + b))
                rho = (cost - new_cost) / predicted if predicted > 0 else 1.0
                pose, err, transformed, cost = candidate, new_err, new_transformed, new_cost
                lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                nu = 2.0
                improved = True
                break
            lam *= nu
            nu *= 2.0

        logger.debug("iteration %d chi2=%g lambda=%g", iteration, cost, lam)
        if not improved:
            break

    return pose.rotation, pose.translation