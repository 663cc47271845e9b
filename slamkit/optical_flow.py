"""Lucas-Kanade optical flow by Gauss-Newton, single level and coarse-to-fine."""

from __future__ import annotations

import logging

import numpy as np

from slamkit.imaging import build_pyramid, get_pixel_value

logger = logging.getLogger(__name__)

_HALF_PATCH_SIZE = 4
_ITERATIONS = 10
_CONVERGED_STEP = 1e-2
_PYRAMIDS = 4
_PYRAMID_SCALE = 0.5

_offsets = np.arange(-_HALF_PATCH_SIZE, _HALF_PATCH_SIZE, dtype=float)
_OX, _OY = (g.ravel() for g in np.meshgrid(_offsets, _offsets))


def _as_points(points) -> np.ndarray:
    if not isinstance(points, np.ndarray):
        items = list(points)
        if items and hasattr(items[0], "x") and hasattr(items[0], "y"):
            return np.array([(p.x, p.y) for p in items], dtype=float)
        points = items
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        return arr.reshape(0, 2)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"points must be an (N, 2) array, got shape {arr.shape}")
    return arr


def _solve(h: np.ndarray, b: np.ndarray):
    try:
        return np.linalg.solve(h, b)
    except np.linalg.LinAlgError:
        return None


def _gradient(img: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    return np.stack(
        [
            0.5 * (get_pixel_value(img, xs + 1, ys) - get_pixel_value(img, xs - 1, ys)),
            0.5 * (get_pixel_value(img, xs, ys + 1) - get_pixel_value(img, xs, ys - 1)),
        ]
    )


def optical_flow_single_level(img1, img2, kp1, kp2=None, inverse=False, has_initial=False):
    """Track points of img1 into img2 on one image level.

    kp2 is the initial guess, used only when has_initial is true.
    Returns (tracked points as an (N, 2) array, boolean success array).
    """
    a = np.asarray(img1, dtype=float)
    b = np.asarray(img2, dtype=float)
    p1 = _as_points(kp1)
    if has_initial:
        if kp2 is None:
            raise ValueError("an initial guess is required when has_initial is set")
        p2 = _as_points(kp2)
        if p2.shape != p1.shape:
            raise ValueError(f"initial guess shape {p2.shape} does not match {p1.shape}")

    tracked = p1.copy()
    success = np.zeros(len(p1), dtype=bool)
    for i, (kx, ky) in enumerate(p1):
        dx, dy = (p2[i] - p1[i]) if has_initial else (0.0, 0.0)
        xs = kx + _OX
        ys = ky + _OY
        h = np.zeros((2, 2))
        jac = None
        last_cost = 0.0
        succ = True
        template = get_pixel_value(a, xs, ys)
        for iteration in range(_ITERATIONS):
            if not inverse:
                h = np.zeros((2, 2))
            sx = xs + dx
            sy = ys + dy
            error = template - get_pixel_value(b, sx, sy)
            if not inverse:
                jac = -_gradient(b, sx, sy)
            elif iteration == 0:
                # In the inverse formulation the Jacobian stays fixed.
                jac = -_gradient(a, xs, ys)
            bias = -(jac * error).sum(axis=1)
            cost = float((error * error).sum())
            if not inverse or iteration == 0:
                h = h + jac @ jac.T

            update = _solve(h, bias)
            if update is None or np.isnan(update[0]):
                logger.debug("update is nan")
                succ = False
                break
            if iteration > 0 and cost > last_cost:
                break

            dx += update[0]
            dy += update[1]
            last_cost = cost
            succ = True
            if np.linalg.norm(update) < _CONVERGED_STEP:
                break

        success[i] = succ
        tracked[i] = (kx + dx, ky + dy)
    return tracked, success


def optical_flow_multi_level(img1, img2, kp1, inverse=False):
    """Track points coarse-to-fine over a four-level half-scale pyramid.

    Returns (tracked points as an (N, 2) array, boolean success array).
    """
    pyr1 = build_pyramid(np.asarray(img1, dtype=float), _PYRAMIDS, _PYRAMID_SCALE)
    pyr2 = build_pyramid(np.asarray(img2, dtype=float), _PYRAMIDS, _PYRAMID_SCALE)

    top_scale = _PYRAMID_SCALE ** (_PYRAMIDS - 1)
    p1 = _as_points(kp1) * top_scale
    p2 = p1.copy()
    success = np.zeros(len(p1), dtype=bool)
    for level in range(_PYRAMIDS - 1, -1, -1):
        p2, success = optical_flow_single_level(pyr1[level], pyr2[level], p1, p2, inverse, True)
        logger.debug("tracked pyramid level %d", level)
        if level > 0:
            p1 = p1 / _PYRAMID_SCALE
            p2 = p2 / _PYRAMID_SCALE
    return p2, success