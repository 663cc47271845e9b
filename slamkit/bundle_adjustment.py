"""Bundle adjustment of BAL problems with a Huber-robust sparse least-squares solver."""

from __future__ import annotations

import random
import sys
from dataclasses import dataclass, field

import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import coo_matrix

from slamkit.bal import BALProblem
from slamkit.lie import so3_exp, so3_log

_EPSILON = sys.float_info.epsilon


@dataclass
class PoseAndIntrinsics:
    """Camera rotation, translation, focal length and radial distortion."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    focal: float = 0.0
    k1: float = 0.0
    k2: float = 0.0

    def to_array(self) -> np.ndarray:
        """Return the 9 BAL camera parameters."""
        return np.concatenate(
            [so3_log(self.rotation), self.translation, [self.focal, self.k1, self.k2]]
        )

    def project(self, point) -> np.ndarray:
        """Project a 3D point with this camera.

        The squared radius is taken over the whole normalised vector, whose
        third component is -1.
        """
        pc = self.rotation @ np.asarray(point, dtype=float) + self.translation
        pc = -pc / pc[2]
        r2 = float(pc @ pc)
        distortion = 1.0 + r2 * (self.k1 + self.k2 * r2)
        return np.array([self.focal * distortion * pc[0], self.focal * distortion * pc[1]])


def pose_from_camera(camera) -> PoseAndIntrinsics:
    """Build a PoseAndIntrinsics from 9 BAL camera parameters."""
    c = np.asarray(camera, dtype=float)
    if c.shape != (9,):
        raise ValueError(f"camera must have 9 parameters, got shape {c.shape}")
    return PoseAndIntrinsics(
        rotation=so3_exp(c[0:3]),
        translation=c[3:6].copy(),
        focal=float(c[6]),
        k1=float(c[7]),
        k2=float(c[8]),
    )


def _project_all(cams: np.ndarray, pts: np.ndarray) -> np.ndarray:
    """Project each point with its paired camera; rows of cams and pts align."""
    aa = cams[:, 0:3]
    theta2 = np.einsum("ij,ij->i", aa, aa)
    big = theta2 > _EPSILON
    theta = np.sqrt(np.where(big, theta2, 1.0))
    w = aa / theta[:, None]
    cos_t = np.cos(theta)[:, None]
    sin_t = np.sin(theta)[:, None]
    dot = np.einsum("ij,ij->i", w, pts)[:, None]
    rotated_big = pts * cos_t + np.cross(w, pts) * sin_t + w * dot * (1.0 - cos_t)
    rotated_small = pts + np.cross(aa, pts)
    p = np.where(big[:, None], rotated_big, rotated_small) + cams[:, 3:6]

    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (cams[:, 7] + cams[:, 8] * r2)
    focal = cams[:, 6]
    return np.stack([focal * distortion * xp, focal * distortion * yp], axis=1)


def _jacobian_sparsity(problem: BALProblem) -> coo_matrix:
    n_obs = problem.num_observations
    n_cam_params = 9 * problem.num_cameras
    rows, cols = [], []
    obs = np.arange(n_obs)
    for r in range(2):
        row = 2 * obs + r
        for k in range(9):
            rows.append(row)
            cols.append(9 * problem.camera_index + k)
        for k in range(3):
            rows.append(row)
            cols.append(n_cam_params + 3 * problem.point_index + k)
    rows_arr = np.concatenate(rows)
    cols_arr = np.concatenate(cols)
    data = np.ones(len(rows_arr), dtype=int)
    return coo_matrix(
        (data, (rows_arr, cols_arr)), shape=(2 * n_obs, len(problem.parameters))
    )


def solve_bundle_adjustment(problem: BALProblem, max_iterations: int = 40) -> float:
    """Refine cameras and points in place; return the final robust cost.

    Residuals are reprojection errors under a Huber loss with scale 1;
    the cost is half the sum of the robustified squared residuals.
    """
    if problem.use_quaternions:
        raise ValueError("bundle adjustment needs angle-axis camera parameters")
    if problem.num_observations == 0:
        raise ValueError("problem has no observations")
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")

    n_cam_params = 9 * problem.num_cameras
    camera_index = problem.camera_index
    point_index = problem.point_index
    observed = problem.observations

    def residuals(x: np.ndarray) -> np.ndarray:
        cams = x[:n_cam_params].reshape(-1, 9)
        pts = x[n_cam_params:].reshape(-1, 3)
        predicted = _project_all(cams[camera_index], pts[point_index])
        return (predicted - observed).ravel()

    result = least_squares(
        residuals,
        problem.parameters.copy(),
        jac_sparsity=_jacobian_sparsity(problem),
        loss="huber",
        f_scale=1.0,
        method="trf",
        x_scale="jac",
        max_nfev=max_iterations,
    )
    problem.parameters[:] = result.x
    return float(result.cost)


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("usage: bundle_adjustment bal_data.txt")
        return 1

    problem = BALProblem(args[0])
    problem.normalize()
    problem.perturb(0.1, 0.5, 0.5, random.Random())
    problem.write_to_ply_file("initial.ply")

    print("bal problem file loaded...")
    print(
        f"bal problem have {problem.num_cameras} cameras and "
        f"{problem.num_points} points. "
    )
    print(f"Forming {problem.num_observations} observations. ")
    print("Solving BA ... ")
    cost = solve_bundle_adjustment(problem)
    print(f"final cost: {cost:g}")

    problem.write_to_ply_file("final.ply")
    return 0


if __name__ == "__main__":
    sys.exit(main())