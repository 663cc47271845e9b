"""Oriented FAST corners, steered BRIEF descriptors and brute-force matching."""

from __future__ import annotations

import math
import sys
import time
from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageDraw

HALF_PATCH_SIZE = 8
HALF_BOUNDARY = 16
DESCRIPTOR_WORDS = 8
MAX_MATCH_DISTANCE = 40

# Sixteen pixels on a Bresenham circle of radius 3, in order around the circle.
_FAST_CIRCLE = (
    (0, -3), (1, -3), (2, -2), (3, -1), (3, 0), (3, 1), (2, 2), (1, 3),
    (0, 3), (-1, 3), (-2, 2), (-3, 1), (-3, 0), (-3, -1), (-2, -2), (-1, -3),
)
_FAST_ARC = 9

# Point pairs (px, py, qx, qy) compared to build the 256-bit descriptor.
_ORB_PATTERN = (
    (8, -3, 9, 5),
    (4, 2, 7, -12),
    (-11, 9, -8, 2),
    (7, -12, 12, -13),
    (2, -13, 2, 12),
    (1, -7, 1, 6),
    (-2, -10, -2, -4),
    (-13, -13, -11, -8),
    (-13, -3, -12, -9),
    (10, 4, 11, 9),
    (-13, -8, -8, -9),
    (-11, 7, -9, 12),
    (7, 7, 12, 6),
    (-4, -5, -3, 0),
    (-13, 2, -12, -3),
    (-9, 0, -7, 5),
    (12, -6, 12, -1),
    (-3, 6, -2, 12),
    (-6, -13, -4, -8),
    (11, -13, 12, -8),
    (4, 7, 5, 1),
    (5, -3, 10, -3),
    (3, -7, 6, 12),
    (-8, -7, -6, -2),
    (-2, 11, -1, -10),
    (-13, 12, -8, 10),
    (-7, 3, -5, -3),
    (-4, 2, -3, 7),
    (-10, -12, -6, 11),
    (5, -12, 6, -7),
    (5, -6, 7, -1),
    (1, 0, 4, -5),
    (9, 11, 11, -13),
    (4, 7, 4, 12),
    (2, -1, 4, 4),
    (-4, -12, -2, 7),
    (-8, -5, -7, -10),
    (4, 11, 9, 12),
    (0, -8, 1, -13),
    (-13, -2, -8, 2),
    (-3, -2, -2, 3),
    (-6, 9, -4, -9),
    (8, 12, 10, 7),
    (0, 9, 1, 3),
    (7, -5, 11, -10),
    (-13, -6, -11, 0),
    (10, 7, 12, 1),
    (-6, -3, -6, 12),
    (10, -9, 12, -4),
    (-13, 8, -8, -12),
    (-13, 0, -8, -4),
    (3, 3, 7, 8),
    (5, 7, 10, -7),
    (-1, 7, 1, -12),
    (3, -10, 5, 6),
    (2, -4, 3, -10),
    (-13, 0, -13, 5),
    (-13, -7, -12, 12),
    (-13, 3, -11, 8),
    (-7, 12, -4, 7),
    (6, -10, 12, 8),
    (-9, -1, -7, -6),
    (-2, -5, 0, 12),
    (-12, 5, -7, 5),
    (3, -10, 8, -13),
    (-7, -7, -4, 5),
    (-3, -2, -1, -7),
    (2, 9, 5, -11),
    (-11, -13, -5, -13),
    (-1, 6, 0, -1),
    (5, -3, 5, 2),
    (-4, -13, -4, 12),
    (-9, -6, -9, 6),
    (-12, -10, -8, -4),
    (10, 2, 12, -3),
    (7, 12, 12, 12),
    (-7, -13, -6, 5),
    (-4, 9, -3, 4),
    (7, -1, 12, 2),
    (-7, 6, -5, 1),
    (-13, 11, -12, 5),
    (-3, 7, -2, -6),
    (7, -8, 12, -7),
    (-13, -7, -11, -12),
    (1, -3, 12, 12),
    (2, -6, 3, 0),
    (-4, 3, -2, -13),
    (-1, -13, 1, 9),
    (7, 1, 8, -6),
    (1, -1, 3, 12),
    (9, 1, 12, 6),
    (-1, -9, -1, 3),
    (-13, -13, -10, 5),
    (7, 7, 10, 12),
    (12, -5, 12, 9),
    (6, 3, 7, 11),
    (5, -13, 6, 10),
    (2, -12, 2, 3),
    (3, 8, 4, -6),
    (2, 6, 12, -13),
    (9, -12, 10, 3),
    (-8, 4, -7, 9),
    (-11, 12, -4, -6),
    (1, 12, 2, -8),
    (6, -9, 7, -4),
    (2, 3, 3, -2),
    (6, 3, 11, 0),
    (3, -3, 8, -8),
    (7, 8, 9, 3),
    (-11, -5, -6, -4),
    (-10, 11, -5, 10),
    (-5, -8, -3, 12),
    (-10, 5, -9, 0),
    (8, -1, 12, -6),
    (4, -6, 6, -11),
    (-10, 12, -8, 7),
    (4, -2, 6, 7),
    (-2, 0, -2, 12),
    (-5, -8, -5, 2),
    (7, -6, 10, 12),
    (-9, -13, -8, -8),
    (-5, -13, -5, -2),
    (8, -8, 9, -13),
    (-9, -11, -9, 0),
    (1, -8, 1, -2),
    (7, -4, 9, 1),
    (-2, 1, -1, -4),
    (11, -6, 12, -11),
    (-12, -9, -6, 4),
    (3, 7, 7, 12),
    (5, 5, 10, 8),
    (0, -4, 2, 8),
    (-9, 12, -5, -13),
    (0, 7, 2, 12),
    (-1, 2, 1, 7),
    (5, 11, 7, -9),
    (3, 5, 6, -8),
    (-13, -4, -8, 9),
    (-5, 9, -3, -3),
    (-4, -7, -3, -12),
    (6, 5, 8, 0),
    (-7, 6, -6, 12),
    (-13, 6, -5, -2),
    (1, -10, 3, 10),
    (4, 1, 8, -4),
    (-2, -2, 2, -13),
    (2, -12, 12, 12),
    (-2, -13, 0, -6),
    (4, 1, 9, 3),
    (-6, -10, -3, -5),
    (-3, -13, -1, 1),
    (7, 5, 12, -11),
    (4, -2, 5, -7),
    (-13, 9, -9, -5),
    (7, 1, 8, 6),
    (7, -8, 7, 6),
    (-7, -4, -7, 1),
    (-8, 11, -7, -8),
    (-13, 6, -12, -8),
    (2, 4, 3, 9),
    (10, -5, 12, 3),
    (-6, -5, -6, 7),
    (8, -3, 9, -8),
    (2, -12, 2, 8),
    (-11, -2, -10, 3),
    (-12, -13, -7, -9),
    (-11, 0, -10, -5),
    (5, -3, 11, 8),
    (-2, -13, -1, 12),
    (-1, -8, 0, 9),
    (-13, -11, -12, -5),
    (-10, -2, -10, 11),
    (-3, 9, -2, -13),
    (2, -3, 3, 2),
    (-9, -13, -4, 0),
    (-4, 6, -3, -10),
    (-4, 12, -2, -7),
    (-6, -11, -4, 9),
    (6, -3, 6, 11),
    (-13, 11, -5, 5),
    (11, 11, 12, 6),
    (7, -5, 12, -2),
    (-1, 12, 0, 7),
    (-4, -8, -3, -2),
    (-7, 1, -6, 7),
    (-13, -12, -8, -13),
    (-7, -2, -6, -8),
    (-8, 5, -6, -9),
    (-5, -1, -4, 5),
    (-13, 7, -8, 10),
    (1, 5, 5, -13),
    (1, 0, 10, -13),
    (9, 12, 10, -1),
    (5, -8, 10, -9),
    (-1, 11, 1, -13),
    (-9, -3, -6, 2),
    (-1, -10, 1, 12),
    (-13, 1, -8, -10),
    (8, -11, 10, -6),
    (2, -13, 3, -6),
    (7, -13, 12, -9),
    (-10, -10, -5, -7),
    (-10, -8, -8, -13),
    (4, -6, 8, 5),
    (3, 12, 8, -13),
    (-4, 2, -3, -3),
    (5, -13, 10, -12),
    (4, -13, 5, -1),
    (-9, 9, -4, 3),
    (0, 3, 3, -9),
    (-12, 1, -6, 1),
    (3, 2, 4, -8),
    (-10, -10, -10, 9),
    (8, -13, 12, 12),
    (-8, -12, -6, -5),
    (2, 2, 3, 7),
    (10, 6, 11, -8),
    (6, 8, 8, -12),
    (-7, 10, -6, 5),
    (-3, -9, -3, 9),
    (-1, -13, -1, 5),
    (-3, -7, -3, 4),
    (-8, -2, -8, 3),
    (4, 2, 12, 12),
    (2, -5, 3, 11),
    (6, -9, 11, -13),
    (3, -1, 7, 12),
    (11, -1, 12, 4),
    (-3, 0, -3, 6),
    (4, -11, 4, 12),
    (2, -4, 2, 1),
    (-10, -6, -8, 1),
    (-13, 7, -11, 1),
    (-13, 12, -11, -13),
    (6, 0, 11, -13),
    (0, -1, 1, 4),
    (-13, 3, -9, -2),
    (-9, 8, -6, -3),
    (-13, -6, -8, -2),
    (5, -9, 8, 10),
    (2, 7, 3, -9),
    (-1, -6, -1, -1),
    (9, 5, 11, -2),
    (11, -3, 12, -8),
    (3, 0, 3, 5),
    (-1, 4, 0, 10),
    (3, -6, 4, 5),
    (-13, 0, -10, 5),
    (5, 8, 12, 11),
    (8, 9, 9, -6),
    (7, -4, 8, -12),
    (-10, 4, -10, 9),
    (7, 3, 12, 4),
    (9, -7, 10, -2),
    (7, 0, 12, -2),
    (-1, -6, 0, -11),
)

_PATTERN = np.array(_ORB_PATTERN, dtype=float)
_BIT_WEIGHTS = np.array([1 << k for k in range(32)], dtype=np.uint64)

Descriptor = tuple[int, ...]


@dataclass(frozen=True)
class KeyPoint:
    """A detected corner: column x, row y and its corner score."""

    x: float
    y: float
    response: float = 0.0


@dataclass(frozen=True)
class Match:
    """A pairing of descriptor query_idx in one set with train_idx in another."""

    query_idx: int
    train_idx: int
    distance: float


def load_gray_image(path) -> np.ndarray:
    """Read an image file as an 8-bit grayscale array."""
    with Image.open(path) as img:
        return np.array(img.convert("L"), dtype=np.uint8)


def _as_gray(image) -> np.ndarray:
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError(f"expected a 2-D grayscale image, got shape {img.shape}")
    return img


def fast_keypoints(image, threshold: int = 40) -> list[KeyPoint]:
    """Detect FAST-9 corners with 3x3 non-maximum suppression, in row-major order."""
    img = _as_gray(image).astype(np.int32)
    rows, cols = img.shape
    if rows < 7 or cols < 7:
        return []

    centre = img[3:rows - 3, 3:cols - 3]
    diffs = np.stack(
        [img[3 + dy:rows - 3 + dy, 3 + dx:cols - 3 + dx] - centre for dx, dy in _FAST_CIRCLE]
    )

    def best_arc(d: np.ndarray) -> np.ndarray:
        wrapped = np.concatenate([d, d[:_FAST_ARC - 1]])
        arc_min = wrapped[0:16]
        for k in range(1, _FAST_ARC):
            arc_min = np.minimum(arc_min, wrapped[k:k + 16])
        return arc_min.max(axis=0)

    score = np.maximum(best_arc(diffs), best_arc(-diffs))
    corner = score > threshold

    scores = np.zeros((rows, cols), dtype=np.int64)
    scores[3:rows - 3, 3:cols - 3] = np.where(corner, score, 0)
    padded = np.pad(scores, 1)
    keep = scores > 0
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dx == 0 and dy == 0:
                continue
            neighbour = padded[1 + dy:1 + dy + rows, 1 + dx:1 + dx + cols]
            keep &= scores > neighbour

    ys, xs = np.nonzero(keep)
    return [KeyPoint(float(x), float(y), float(scores[y, x])) for y, x in zip(ys, xs)]


def _describe(img: np.ndarray, kp: KeyPoint) -> Descriptor:
    rows, cols = img.shape
    offsets = np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE)
    row_idx = np.trunc(kp.y + offsets).astype(int)
    col_idx = np.trunc(kp.x + offsets).astype(int)
    patch = img[np.ix_(row_idx, col_idx)].astype(float)
    m10 = float((patch * offsets[None, :]).sum())
    m01 = float((patch * offsets[:, None]).sum())

    m_sqrt = math.sqrt(m01 * m01 + m10 * m10) + 1e-18
    sin_theta = m01 / m_sqrt
    cos_theta = m10 / m_sqrt

    px, py, qx, qy = _PATTERN.T

    def sample(ax: np.ndarray, ay: np.ndarray) -> np.ndarray:
        x = cos_theta * ax - sin_theta * ay + kp.x
        y = sin_theta * ax + cos_theta * ay + kp.y
        # Rotated pairs can reach slightly past the boundary margin; clamp to the image.
        r = np.clip(np.trunc(y).astype(int), 0, rows - 1)
        c = np.clip(np.trunc(x).astype(int), 0, cols - 1)
        return img[r, c]

    bits = (sample(px, py) < sample(qx, qy)).astype(np.uint64)
    words = (bits.reshape(DESCRIPTOR_WORDS, 32) * _BIT_WEIGHTS).sum(axis=1)
    return tuple(int(w) for w in words)


def compute_orb(image, keypoints) -> list[Descriptor | None]:
    """Compute a 256-bit descriptor (8 words of 32 bits) for each keypoint.

    Keypoints within 16 pixels of the image border get None.
    """
    img = _as_gray(image)
    rows, cols = img.shape
    descriptors: list[Descriptor | None] = []
    for kp in keypoints:
        if (
            kp.x < HALF_BOUNDARY
            or kp.y < HALF_BOUNDARY
            or kp.x >= cols - HALF_BOUNDARY
            or kp.y >= rows - HALF_BOUNDARY
        ):
            descriptors.append(None)
        else:
            descriptors.append(_describe(img, kp))
    return descriptors


def hamming_distance(a, b) -> int:
    """Number of differing bits between two descriptors."""
    if len(a) != len(b):
        raise ValueError(f"descriptor lengths differ: {len(a)} and {len(b)}")
    return sum((int(x) ^ int(y)).bit_count() for x, y in zip(a, b))


def bf_match(desc1, desc2) -> list[Match]:
    """Match each descriptor to its nearest neighbour if closer than 40 bits."""
    matches = []
    for i1, d1 in enumerate(desc1):
        if not d1:
            continue
        best_distance, best_index = 256, 0
        for i2, d2 in enumerate(desc2):
            if not d2:
                continue
            distance = hamming_distance(d1, d2)
            if distance < MAX_MATCH_DISTANCE and distance < best_distance:
                best_distance, best_index = distance, i2
        if best_distance < MAX_MATCH_DISTANCE:
            matches.append(Match(i1, best_index, float(best_distance)))
    return matches


def _draw_matches(img1, kps1, img2, kps2, matches) -> Image.Image:
    h = max(img1.shape[0], img2.shape[0])
    canvas = Image.new("RGB", (img1.shape[1] + img2.shape[1], h))
    canvas.paste(Image.fromarray(img1).convert("RGB"), (0, 0))
    canvas.paste(Image.fromarray(img2).convert("RGB"), (img1.shape[1], 0))
    draw = ImageDraw.Draw(canvas)
    offset = img1.shape[1]
    for m in matches:
        p, q = kps1[m.query_idx], kps2[m.train_idx]
        draw.line([(p.x, p.y), (q.x + offset, q.y)], fill=(0, 255, 0))
        for x, y in ((p.x, p.y), (q.x + offset, q.y)):
            draw.ellipse([x - 2, y - 2, x + 2, y + 2], outline=(0, 255, 0))
    return canvas


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    first_file, second_file = (args + ["./1.png", "./2.png"][len(args):])[:2]

    first_image = load_gray_image(first_file)
    second_image = load_gray_image(second_file)

    start = time.perf_counter()
    keypoints1 = fast_keypoints(first_image, 40)
    descriptor1 = compute_orb(first_image, keypoints1)
    keypoints2 = fast_keypoints(second_image, 40)
    descriptor2 = compute_orb(second_image, keypoints2)
    for kps, descs in ((keypoints1, descriptor1), (keypoints2, descriptor2)):
        bad = sum(d is None for d in descs)
        print(f"bad/total: {bad}/{len(kps)}")
    print(f"extract ORB cost = {time.perf_counter() - start} seconds. ")

    start = time.perf_counter()
    matches = bf_match(descriptor1, descriptor2)
    print(f"match ORB cost = {time.perf_counter() - start} seconds. ")
    print(f"matches: {len(matches)}")

    _draw_matches(first_image, keypoints1, second_image, keypoints2, matches).save("matches.png")
    print("done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())