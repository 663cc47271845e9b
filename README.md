# slamkit

Building blocks for visual odometry and bundle adjustment, written on top of
NumPy, SciPy and Pillow.

## What is inside

- `slamkit.rotation` – `dot_product`, `cross_product`,
  `angle_axis_to_quaternion`, `quaternion_to_angle_axis` and
  `angle_axis_rotate_point` (Rodrigues' formula, with a first-order form near
  the identity).
- `slamkit.sampling` – `rand_double` and `rand_normal` (Marsaglia polar
  method) drawing from a `random.Random`.
- `slamkit.lie` – `hat`, `so3_exp`, `so3_log`, `se3_exp` and the `SE3` rigid
  transform (composition with `*`, `apply`, `inverse`, `matrix`).
- `slamkit.reprojection` – `project_with_distortion` for 9-parameter BAL
  cameras and the `SnavelyReprojectionError` residual.
- `slamkit.bal` – `BALProblem`: reads a BAL text file (optionally turning
  rotations into quaternions), `normalize`, `perturb`, `write_to_file` and
  `write_to_ply_file`; plus `median` and `perturb_point3`.
- `slamkit.bundle_adjustment` – `solve_bundle_adjustment`, which refines all
  cameras and points of an angle-axis `BALProblem` in place with SciPy's
  sparse least squares under a Huber loss and returns the final cost;
  `PoseAndIntrinsics` and `pose_from_camera`.
- `slamkit.orb` – `load_gray_image`, FAST-9 corners with non-maximum
  suppression (`fast_keypoints`), 256-bit steered BRIEF descriptors
  (`compute_orb`, `None` for keypoints within 16 pixels of the border),
  `hamming_distance` and `bf_match` (nearest neighbour under 40 bits).
- `slamkit.epipolar` – `filter_matches`, `skew`,
  `fundamental_matrix_8point`, `essential_matrix`, `recover_pose`,
  `triangulate`, `epipolar_constraint` and `depth_color`.
- `slamkit.pnp` – `pixel2cam`, `projection_jacobian` and
  `bundle_adjustment_gauss_newton` for 3D–2D pose refinement.
- `slamkit.icp` – `depth_to_point`, `pose_estimation_3d3d` (SVD) and
  `bundle_adjustment` (Levenberg–Marquardt) for 3D–3D alignment.
- `slamkit.imaging` – bilinear sampling (`get_pixel_value`,
  `bilinear_clamped`) and `build_pyramid`.
- `slamkit.optical_flow` – Lucas–Kanade tracking on one level
  (`optical_flow_single_level`) or coarse-to-fine over four half-scale levels
  (`optical_flow_multi_level`), forward or inverse formulation.
- `slamkit.direct` – `CameraIntrinsics`, `JacobianAccumulator`,
  `direct_pose_single_layer` and `direct_pose_multi_layer` for photometric
  pose estimation.

Iteration progress of the solvers is reported through the `logging` module
at debug level.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Command line

Solve a bundle adjustment problem stored in the BAL text format. The problem
is normalised and perturbed with random noise first; the reconstruction
before and after optimisation is written to `initial.ply` and `final.ply` in
the current directory:

```
slamkit-ba problem.txt
```

Detect FAST corners in two images, compute ORB descriptors and match them.
Without arguments the images `./1.png` and `./2.png` are used. The matches
are drawn side by side into `matches.png`:

```
slamkit-orb 1.png 2.png
```

## Library use

```python
import random
from slamkit.bal import BALProblem
from slamkit.bundle_adjustment import solve_bundle_adjustment

problem = BALProblem("problem.txt", False)
problem.normalize()
problem.perturb(0.1, 0.5, 0.5, random.Random(0))
problem.write_to_ply_file("initial.ply")
cost = solve_bundle_adjustment(problem, 40)
problem.write_to_ply_file("final.ply")
```

```python
from slamkit.orb import load_gray_image, fast_keypoints, compute_orb, bf_match

first = load_gray_image("1.png")
second = load_gray_image("2.png")
kp1 = fast_keypoints(first, 40)
kp2 = fast_keypoints(second, 40)
matches = bf_match(compute_orb(first, kp1), compute_orb(second, kp2))
```

## What it does not do

- Nothing is shown on screen. The only image output is the `matches.png`
  written by `slamkit-orb`.
- Optical flow, the direct method, two-view pose, PnP and ICP are library
  functions only; there is no command that runs them on image files, and no
  reader for depth maps beyond `load_gray_image`.
- `solve_bundle_adjustment` works on angle-axis cameras only; a
  `BALProblem` loaded with quaternions is rejected.