"""Camera motion between two images by the sparse direct (photometric) method."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

import numpy as np

from slamkit.imaging import bilinear_clamped, build_pyramid
from slamkit.lie import SE3, se3_exp

logger = logging.getLogger(__name__)

_HALF_PATCH_SIZE = 1
_ITERATIONS = 10
_CONVERGED_STEP = 1e-3
_PYRAMIDS = 4
_PYRAMID_SCALE = 0.5

_offsets = np.arange(-_HALF_PATCH_SIZE, _HALF_PATCH_SIZE + 1, dtype=float)
_OX, _OY = (g.ravel() for g in np.meshgrid(_offsets, _offsets))


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole camera focal lengths and principal point."""

    fx: float = 718.856
    fy: float = 718.856
    cx: float = 607.1928
    cy: float = 185.2157

    def scaled(self, factor: float) -> CameraIntrinsics:
        """Intrinsics for an image resized by factor."""
        return replace(
            self,
            fx=self.fx * factor,
            fy=self.fy * factor,
            cx=self.cx * factor,
            cy=self.cy * factor,
        )


def _inputs(img1, img2, px_ref, depth_ref):
    a = np.asarray(img1, dtype=float)
    b = np.asarray(img2, dtype=float)
    for arr in (a, b):
        if arr.ndim != 2:
            raise ValueError(f"expected a 2-D grayscale image, got shape {arr.shape}")
    px = np.asarray(px_ref, dtype=float)
    px = px.reshape(0, 2) if px.size == 0 else px
    if px.ndim != 2 or px.shape[1] != 2:
        raise ValueError(f"px_ref must be an (N, 2) array, got shape {px.shape}")
    depth = np.asarray(depth_ref, dtype=float).reshape(-1)
    if len(depth) != len(px):
        raise ValueError(f"{len(px)} pixels but {len(depth)} depths")
    return a, b, px, depth


class JacobianAccumulator:
    """Accumulates the photometric Hessian, bias and cost over reference pixels."""

    def __init__(self, img1, img2, px_ref, depth_ref, T21=None, camera=None):
        self.img1, self.img2, self.px_ref, self.depth_ref = _inputs(img1, img2, px_ref, depth_ref)
        self.T21 = SE3() if T21 is None else T21
        self.camera = CameraIntrinsics() if camera is None else camera
        self.projection = np.zeros((len(self.px_ref), 2))
        self.reset()

    def reset(self) -> None:
        """Set Hessian, bias and cost to zero."""
        self.H = np.zeros((6, 6))
        self.b = np.zeros(6)
        self.cost = 0.0

    def accumulate(self, start: int, stop: int) -> None:
        """Add the contribution of reference pixels start..stop-1."""
        if not 0 <= start <= stop <= len(self.px_ref):
            raise ValueError(f"invalid range {start}..{stop} for {len(self.px_ref)} pixels")
        idx = np.arange(start, stop)
        if len(idx) == 0:
            return
        cam = self.camera
        px = self.px_ref[idx]
        depth = self.depth_ref[idx]
        point_ref = depth[:, None] * np.stack(
            [(px[:, 0] - cam.cx) / cam.fx, (px[:, 1] - cam.cy) / cam.fy, np.ones(len(idx))],
            axis=1,
        )
        point_cur = self.T21.apply(point_ref)
        x_all, y_all, z_all = point_cur.T
        rows, cols = self.img2.shape
        with np.errstate(divide="ignore", invalid="ignore"):
            u_all = cam.fx * x_all / z_all + cam.cx
            v_all = cam.fy * y_all / z_all + cam.cy
            good = (
                (z_all >= 0)
                & (u_all >= _HALF_PATCH_SIZE)
                & (u_all <= cols - _HALF_PATCH_SIZE)
                & (v_all >= _HALF_PATCH_SIZE)
                & (v_all <= rows - _HALF_PATCH_SIZE)
            )
        if not good.any():
            return

        u, v = u_all[good], v_all[good]
        self.projection[idx[good]] = np.stack([u, v], axis=1)
        x, y, z = x_all[good], y_all[good], z_all[good]
        z_inv = 1.0 / z
        z2_inv = z_inv * z_inv

        j_pixel = np.zeros((len(u), 2, 6))
        j_pixel[:, 0, 0] = cam.fx * z_inv
        j_pixel[:, 0, 2] = -cam.fx * x * z2_inv
        j_pixel[:, 0, 3] = -cam.fx * x * y * z2_inv
        j_pixel[:, 0, 4] = cam.fx + cam.fx * x * x * z2_inv
        j_pixel[:, 0, 5] = -cam.fx * y * z_inv
        j_pixel[:, 1, 1] = cam.fy * z_inv
        j_pixel[:, 1, 2] = -cam.fy * y * z2_inv
        j_pixel[:, 1, 3] = -cam.fy - cam.fy * y * y * z2_inv
        j_pixel[:, 1, 4] = cam.fy * x * y * z2_inv
        j_pixel[:, 1, 5] = cam.fy * x * z_inv

        rx = px[good, 0][:, None] + _OX
        ry = px[good, 1][:, None] + _OY
        cx = u[:, None] + _OX
        cy = v[:, None] + _OY
        error = bilinear_clamped(self.img1, rx, ry) - bilinear_clamped(self.img2, cx, cy)
        grad = np.stack(
            [
                0.5 * (bilinear_clamped(self.img2, cx + 1, cy) - bilinear_clamped(self.img2, cx - 1, cy)),
                0.5 * (bilinear_clamped(self.img2, cx, cy + 1) - bilinear_clamped(self.img2, cx, cy - 1)),
            ],
            axis=-1,
        )
        jac = -np.einsum("nsk,nkj->nsj", grad, j_pixel)

        self.H += np.einsum("nsj,nsk->jk", jac, jac)
        self.b += -np.einsum("ns,nsj->j", error, jac)
        self.cost += float((error * error).sum()) / len(u)


def _solve(h: np.ndarray, b: np.ndarray):
    try:
        return np.linalg.solve(h, b)
    except np.linalg.LinAlgError:
        return None


def direct_pose_single_layer(img1, img2, px_ref, depth_ref, T21=None, camera=None):
    """Refine T21 on one image level.

    Returns (refined pose, projected pixels of the last evaluation; zeros
    where a pixel did not project into img2).
    """
    pose = SE3() if T21 is None else T21
    accumulator = JacobianAccumulator(img1, img2, px_ref, depth_ref, pose, camera)
    last_cost = 0.0
    for iteration in range(_ITERATIONS):
        accumulator.reset()
        accumulator.T21 = pose
        accumulator.accumulate(0, len(accumulator.px_ref))

        update = _solve(accumulator.H, accumulator.b)
        if update is None or np.isnan(update[0]):
            # Happens on black or white patches, where H cannot be inverted.
            logger.debug("update is nan")
            break
        pose = se3_exp(update) * pose
        cost = accumulator.cost

        if iteration > 0 and cost > last_cost:
            logger.debug("cost increased: %s, %s", cost, last_cost)
            break
        if np.linalg.norm(update) < _CONVERGED_STEP:
            break
        last_cost = cost
        logger.debug("iteration: %d, cost: %s", iteration, cost)
    return pose, accumulator.projection.copy()


def direct_pose_multi_layer(img1, img2, px_ref, depth_ref, T21=None, camera=None) -> SE3:
    """Refine T21 coarse-to-fine over a four-level half-scale pyramid."""
    a, b, px, depth = _inputs(img1, img2, px_ref, depth_ref)
    camera = CameraIntrinsics() if camera is None else camera
    pose = SE3() if T21 is None else T21
    pyr1 = build_pyramid(a, _PYRAMIDS, _PYRAMID_SCALE)
    pyr2 = build_pyramid(b, _PYRAMIDS, _PYRAMID_SCALE)
    for level in range(_PYRAMIDS - 1, -1, -1):
        factor = _PYRAMID_SCALE**level
        pose, _ = direct_pose_single_layer(
            pyr1[level], pyr2[level], px * factor, depth, pose, camera.scaled(factor)
        )
    return pose