"""Loading, normalising, perturbing and saving BAL bundle adjustment problems."""

from __future__ import annotations

import random
from collections.abc import Iterator

import numpy as np

from slamkit.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)
from slamkit.sampling import rand_normal


def median(data) -> float:
    """Return the element at position n // 2 of the sorted data."""
    values = sorted(float(v) for v in data)
    if not values:
        raise ValueError("median of empty data")
    return values[len(values) // 2]


def perturb_point3(sigma: float, point, rng: random.Random) -> np.ndarray:
    """Return the point with Gaussian noise of the given sigma added."""
    p = np.asarray(point, dtype=float)
    noise = np.array([rand_normal(rng) * sigma for _ in range(3)])
    return p + noise


def _take(tokens: Iterator[str], kind):
    try:
        token = next(tokens)
    except StopIteration:
        raise ValueError("Invalid BAL data file: unexpected end of data") from None
    try:
        return kind(token)
    except ValueError as exc:
        raise ValueError(f"Invalid BAL data file: bad value {token!r}") from exc


class BALProblem:
    """A bundle adjustment problem read from a BAL text file."""

    point_block_size = 3

    def __init__(self, filename, use_quaternions: bool = False):
        with open(filename, encoding="utf-8") as fh:
            tokens = iter(fh.read().split())

        self.num_cameras = _take(tokens, int)
        self.num_points = _take(tokens, int)
        self.num_observations = _take(tokens, int)

        camera_index, point_index, observations = [], [], []
        for _ in range(self.num_observations):
            camera_index.append(_take(tokens, int))
            point_index.append(_take(tokens, int))
            observations.append((_take(tokens, float), _take(tokens, float)))
        self.camera_index = np.array(camera_index, dtype=int)
        self.point_index = np.array(point_index, dtype=int)
        self.observations = np.array(observations, dtype=float).reshape(-1, 2)

        count = 9 * self.num_cameras + 3 * self.num_points
        parameters = np.array([_take(tokens, float) for _ in range(count)])

        self.use_quaternions = use_quaternions
        if use_quaternions:
            split = 9 * self.num_cameras
            cams = parameters[:split].reshape(self.num_cameras, 9)
            blocks = [
                np.concatenate([angle_axis_to_quaternion(cam[:3]), cam[3:]])
                for cam in cams
            ]
            parameters = np.concatenate(blocks + [parameters[split:]])
        self.parameters = parameters.astype(float)

    @property
    def camera_block_size(self) -> int:
        return 10 if self.use_quaternions else 9

    @property
    def num_parameters(self) -> int:
        return len(self.parameters)

    @property
    def cameras(self) -> np.ndarray:
        """Camera blocks, one row per camera; a view onto the parameters."""
        end = self.camera_block_size * self.num_cameras
        return self.parameters[:end].reshape(self.num_cameras, self.camera_block_size)

    @property
    def points(self) -> np.ndarray:
        """3D points, one row per point; a view onto the parameters."""
        start = self.camera_block_size * self.num_cameras
        return self.parameters[start:].reshape(self.num_points, self.point_block_size)

    def camera_for_observation(self, i: int) -> np.ndarray:
        return self.cameras[self.camera_index[i]]

    def point_for_observation(self, i: int) -> np.ndarray:
        return self.points[self.point_index[i]]

    def _translation_slice(self) -> slice:
        start = self.camera_block_size - 6
        return slice(start, start + 3)

    def _camera_to_angle_axis_and_center(self, camera) -> tuple[np.ndarray, np.ndarray]:
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(camera[:4])
        else:
            angle_axis = np.array(camera[:3], dtype=float)
        # c = -R' t
        center = -angle_axis_rotate_point(-angle_axis, camera[self._translation_slice()])
        return angle_axis, center

    def _angle_axis_and_center_to_camera(self, angle_axis, center, camera) -> None:
        if self.use_quaternions:
            camera[:4] = angle_axis_to_quaternion(angle_axis)
        else:
            camera[:3] = angle_axis
        # t = -R c
        camera[self._translation_slice()] = -angle_axis_rotate_point(angle_axis, center)

    def write_to_file(self, filename) -> None:
        """Save the problem as a BAL text file."""
        lines = [
            "%d %d %d %d"
            % (self.num_cameras, self.num_cameras, self.num_points, self.num_observations)
        ]
        for cam, pt, obs in zip(self.camera_index, self.point_index, self.observations):
            lines.append("%d %d" % (cam, pt) + "".join(" %g" % v for v in obs))
        for camera in self.cameras:
            if self.use_quaternions:
                values = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:10]])
            else:
                values = camera[:9]
            lines.extend("%.16g" % v for v in values)
        for point in self.points:
            lines.extend("%.16g" % v for v in point)
        with open(filename, "w", encoding="utf-8") as fh:
            fh.write("\n".join(lines) + "\n")

    def write_to_ply_file(self, filename) -> None:
        """Save camera centres (green) and points (white) as an ASCII PLY cloud."""
        header = [
            "ply",
            "format ascii 1.0",
            f"element vertex {self.num_cameras + self.num_points}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            "end_header",
        ]
        with open(filename, "w", encoding="utf-8") as fh:
            fh.write("\n".join(header) + "\n")
            for camera in self.cameras:
                _, center = self._camera_to_angle_axis_and_center(camera)
                fh.write(" ".join(f"{v:g}" for v in center) + " 0 255 0\n")
            for point in self.points:
                fh.write("".join(f"{v:g} " for v in point) + " 255 255 255\n")

    def normalize(self) -> None:
        """Centre on the median and scale so the median absolute deviation is 100."""
        points = self.points
        centre = np.array([median(points[:, axis]) for axis in range(3)])
        deviation = median(np.abs(points - centre).sum(axis=1))
        if deviation == 0.0:
            raise ValueError("cannot normalise: median absolute deviation is zero")
        scale = 100.0 / deviation

        points[:] = scale * (points - centre)
        for camera in self.cameras:
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            self._angle_axis_and_center_to_camera(angle_axis, scale * (center - centre), camera)

    def perturb(self, rotation_sigma, translation_sigma, point_sigma, rng=None) -> None:
        """Add Gaussian noise to points, camera rotations and camera translations."""
        if point_sigma < 0.0 or rotation_sigma < 0.0 or translation_sigma < 0.0:
            raise ValueError("noise sigmas must be non-negative")
        rng = rng if rng is not None else random.Random()

        points = self.points
        if point_sigma > 0:
            for i in range(self.num_points):
                points[i] = perturb_point3(point_sigma, points[i], rng)

        translation = self._translation_slice()
        for camera in self.cameras:
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = perturb_point3(rotation_sigma, angle_axis, rng)
            self._angle_axis_and_center_to_camera(angle_axis, center, camera)
            if translation_sigma > 0.0:
                camera[translation] = perturb_point3(translation_sigma, camera[translation], rng)