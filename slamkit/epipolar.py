"""Two-view geometry: match filtering, epipolar matrices, relative pose and triangulation."""

from __future__ import annotations

import logging
import math

import numpy as np

from slamkit.lie import hat

logger = logging.getLogger(__name__)

_MIN_MATCH_DISTANCE_FLOOR = 30.0
_DEPTH_UPPER = 50.0
_DEPTH_LOWER = 10.0


def filter_matches(matches) -> list:
    """Keep matches whose distance is at most max(2 * smallest distance, 30)."""
    items = list(matches)
    if not items:
        return []
    distances = [m.distance for m in items]
    min_dist = min(distances)
    max_dist = max(distances)
    logger.debug("-- Max dist : %f", max_dist)
    logger.debug("-- Min dist : %f", min_dist)
    limit = max(2.0 * min_dist, _MIN_MATCH_DISTANCE_FLOOR)
    return [m for m in items if m.distance <= limit]


def skew(t) -> np.ndarray:
    """Return the cross-product matrix t^ of a 3-vector."""
    return hat(t)


def _points2(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"{name} must be an (N, 2) array, got shape {arr.shape}")
    return arr


def _pair(points1, points2, minimum: int) -> tuple[np.ndarray, np.ndarray]:
    p1 = _points2(points1, "points1")
    p2 = _points2(points2, "points2")
    if len(p1) != len(p2):
        raise ValueError(f"point counts differ: {len(p1)} and {len(p2)}")
    if len(p1) < minimum:
        raise ValueError(f"at least {minimum} correspondences are needed, got {len(p1)}")
    return p1, p2


def _normalizing_transform(points: np.ndarray) -> np.ndarray:
    centre = points.mean(axis=0)
    mean_dist = float(np.linalg.norm(points - centre, axis=1).mean())
    s = math.sqrt(2.0) / mean_dist if mean_dist > 0 else 1.0
    return np.array([[s, 0.0, -s * centre[0]], [0.0, s, -s * centre[1]], [0.0, 0.0, 1.0]])


def _homogeneous(points: np.ndarray) -> np.ndarray:
    return np.hstack([points, np.ones((len(points), 1))])


def _eight_point(p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    """Linear estimate of F with x2^T F x1 = 0, on Hartley-normalised points."""
    t1 = _normalizing_transform(p1)
    t2 = _normalizing_transform(p2)
    n1 = _homogeneous(p1) @ t1.T
    n2 = _homogeneous(p2) @ t2.T
    x1, y1 = n1[:, 0], n1[:, 1]
    x2, y2 = n2[:, 0], n2[:, 1]
    a = np.stack(
        [x2 * x1, x2 * y1, x2, y2 * x1, y2 * y1, y2, x1, y1, np.ones(len(p1))], axis=1
    )
    _, _, vt = np.linalg.svd(a)
    f = vt[-1].reshape(3, 3)
    return t2.T @ f @ t1


def fundamental_matrix_8point(points1, points2) -> np.ndarray:
    """Fundamental matrix F with x2^T F x1 = 0 by the normalised eight-point algorithm."""
    p1, p2 = _pair(points1, points2, 8)
    f = _eight_point(p1, p2)
    u, s, vt = np.linalg.svd(f)
    s[2] = 0.0
    f = u @ np.diag(s) @ vt
    if abs(f[2, 2]) > 1e-12:
        f = f / f[2, 2]
    return f


def _to_camera(points: np.ndarray, focal: float, principal_point) -> np.ndarray:
    if focal == 0:
        raise ValueError("focal length must be non-zero")
    pp = np.asarray(principal_point, dtype=float)
    if pp.shape != (2,):
        raise ValueError(f"principal point must be a 2-vector, got shape {pp.shape}")
    return (points - pp) / float(focal)


def essential_matrix(points1, points2, focal, principal_point) -> np.ndarray:
    """Essential matrix from pixel correspondences, fitted over all of them.

    The result has singular values (s, s, 0) and unit Frobenius norm.
    """
    p1, p2 = _pair(points1, points2, 8)
    n1 = _to_camera(p1, focal, principal_point)
    n2 = _to_camera(p2, focal, principal_point)
    e = _eight_point(n1, n2)
    u, _, vt = np.linalg.svd(e)
    return u @ np.diag([1.0, 1.0, 0.0]) @ vt / math.sqrt(2.0)


def triangulate(T1, T2, pts1, pts2) -> np.ndarray:
    """Triangulate corresponding normalised points seen by 3x4 projections T1 and T2.

    Returns an (N, 3) array of non-homogeneous points.
    """
    p_a = np.asarray(T1, dtype=float)
    p_b = np.asarray(T2, dtype=float)
    for name, p in (("T1", p_a), ("T2", p_b)):
        if p.shape != (3, 4):
            raise ValueError(f"{name} must be 3x4, got shape {p.shape}")
    a, b = _pair(pts1, pts2, 0)
    if len(a) == 0:
        return np.zeros((0, 3))
    rows = np.stack(
        [
            a[:, 0:1] * p_a[2] - p_a[0],
            a[:, 1:2] * p_a[2] - p_a[1],
            b[:, 0:1] * p_b[2] - p_b[0],
            b[:, 1:2] * p_b[2] - p_b[1],
        ],
        axis=1,
    )
    _, _, vt = np.linalg.svd(rows)
    x = vt[:, -1, :]
    with np.errstate(divide="ignore", invalid="ignore"):
        return x[:, :3] / x[:, 3:4]


def recover_pose(E, points1, points2, focal, principal_point) -> tuple[np.ndarray, np.ndarray]:
    """Recover (R, t) from an essential matrix by the cheirality check.

    t has unit length; points in camera 2 are R @ X + t.
    """
    e = np.asarray(E, dtype=float)
    if e.shape != (3, 3):
        raise ValueError(f"essential matrix must be 3x3, got shape {e.shape}")
    p1, p2 = _pair(points1, points2, 1)
    n1 = _to_camera(p1, focal, principal_point)
    n2 = _to_camera(p2, focal, principal_point)

    u, _, vt = np.linalg.svd(e)
    if np.linalg.det(u) < 0:
        u = -u
    if np.linalg.det(vt) < 0:
        vt = -vt
    w = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    r1 = u @ w @ vt
    r2 = u @ w.T @ vt
    t = u[:, 2] / np.linalg.norm(u[:, 2])

    first = np.hstack([np.eye(3), np.zeros((3, 1))])
    best, best_count = None, -1
    for rotation, translation in ((r1, t), (r1, -t), (r2, t), (r2, -t)):
        second = np.hstack([rotation, translation[:, None]])
        points = triangulate(first, second, n1, n2)
        in_second = points @ rotation.T + translation
        with np.errstate(invalid="ignore"):
            count = int(
                np.sum(np.isfinite(points[:, 2]) & (points[:, 2] > 0) & (in_second[:, 2] > 0))
            )
        if count > best_count:
            best, best_count = (rotation, translation), count
    return best[0].copy(), best[1].copy()


def epipolar_constraint(E, pt1, pt2) -> float:
    """Return y2^T E y1 for normalised camera points pt1 and pt2."""
    e = np.asarray(E, dtype=float)
    if e.shape != (3, 3):
        raise ValueError(f"matrix must be 3x3, got shape {e.shape}")
    a = np.asarray(pt1, dtype=float)
    b = np.asarray(pt2, dtype=float)
    if a.shape != (2,) or b.shape != (2,):
        raise ValueError("points must be 2-vectors")
    y1 = np.array([a[0], a[1], 1.0])
    y2 = np.array([b[0], b[1], 1.0])
    return float(y2 @ e @ y1)


def depth_color(depth) -> tuple[float, float, float]:
    """BGR colour for a depth, clamped to [10, 50]."""
    d = float(depth)
    d = min(d, _DEPTH_UPPER)
    d = max(d, _DEPTH_LOWER)
    th_range = _DEPTH_UPPER - _DEPTH_LOWER
    return (255.0 * d / th_range, 0.0, 255.0 * (1.0 - d / th_range))