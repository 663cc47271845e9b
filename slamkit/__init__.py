"""Visual odometry and bundle adjustment building blocks: rotations, Lie groups,
ORB features, two-view geometry, PnP, ICP, optical flow, the direct method and
BAL bundle adjustment problems."""

__version__ = "0.1.0"

__all__ = [
    "bal",
    "bundle_adjustment",
    "direct",
    "epipolar",
    "icp",
    "imaging",
    "lie",
    "optical_flow",
    "orb",
    "pnp",
    "reprojection",
    "rotation",
    "sampling",
]