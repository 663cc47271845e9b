"""Bilinear image sampling and image pyramids for grayscale arrays."""

from __future__ import annotations

import numpy as np


def _as_image(img) -> np.ndarray:
    a = np.asarray(img)
    if a.ndim != 2:
        raise ValueError(f"expected a 2-D grayscale image, got shape {a.shape}")
    if a.shape[0] < 2 or a.shape[1] < 2:
        raise ValueError(f"image must be at least 2x2, got shape {a.shape}")
    return a


def _result(values: np.ndarray):
    return float(values) if values.ndim == 0 else values


def _interpolate(a: np.ndarray, xs: np.ndarray, ys: np.ndarray):
    rows, cols = a.shape
    fx = np.floor(xs)
    fy = np.floor(ys)
    x0 = fx.astype(int)
    y0 = fy.astype(int)
    xx = xs - fx
    yy = ys - fy
    x1 = np.minimum(cols - 1, x0 + 1)
    y1 = np.minimum(rows - 1, y0 + 1)
    values = (
        (1 - xx) * (1 - yy) * a[y0, x0]
        + xx * (1 - yy) * a[y0, x1]
        + (1 - xx) * yy * a[y1, x0]
        + xx * yy * a[y1, x1]
    )
    return _result(np.asarray(values, dtype=float))


def get_pixel_value(img, x, y):
    """Bilinear sample at (x, y), used for optical flow.

    Coordinates below zero are moved to zero; coordinates at or past the
    last column (row) are moved to the one before it. Accepts scalars or
    arrays of coordinates.
    """
    a = _as_image(img)
    rows, cols = a.shape
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    xs = np.where(xs < 0, 0.0, xs)
    ys = np.where(ys < 0, 0.0, ys)
    xs = np.where(xs >= cols - 1, cols - 2.0, xs)
    ys = np.where(ys >= rows - 1, rows - 2.0, ys)
    return _interpolate(a, xs, ys)


def bilinear_clamped(img, x, y):
    """Bilinear sample at (x, y), used by the direct method.

    Coordinates are clamped into [0, cols - 1] and [0, rows - 1]; neighbours
    past the last column or row are taken from the border.
    """
    a = _as_image(img)
    rows, cols = a.shape
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    xs = np.where(xs < 0, 0.0, xs)
    ys = np.where(ys < 0, 0.0, ys)
    xs = np.where(xs >= cols, cols - 1.0, xs)
    ys = np.where(ys >= rows, rows - 1.0, ys)
    return _interpolate(a, xs, ys)


def _linear_coords(n_dst: int, n_src: int):
    src = (np.arange(n_dst) + 0.5) * (n_src / n_dst) - 0.5
    src = np.clip(src, 0.0, n_src - 1.0)
    i0 = np.floor(src).astype(int)
    i1 = np.minimum(i0 + 1, n_src - 1)
    return i0, i1, src - i0


def _resize_linear(a: np.ndarray, width: int, height: int) -> np.ndarray:
    rows, cols = a.shape
    y0, y1, fy = _linear_coords(height, rows)
    x0, x1, fx = _linear_coords(width, cols)
    f = a.astype(float)
    top = f[y0][:, x0] * (1 - fx) + f[y0][:, x1] * fx
    bottom = f[y1][:, x0] * (1 - fx) + f[y1][:, x1] * fx
    out = top * (1 - fy[:, None]) + bottom * fy[:, None]
    if np.issubdtype(a.dtype, np.integer):
        info = np.iinfo(a.dtype)
        return np.clip(np.rint(out), info.min, info.max).astype(a.dtype)
    return out.astype(a.dtype) if np.issubdtype(a.dtype, np.floating) else out


def build_pyramid(img, levels: int = 4, scale: float = 0.5) -> list[np.ndarray]:
    """Return the image followed by levels - 1 successively resized copies."""
    a = _as_image(img)
    if levels < 1:
        raise ValueError("levels must be at least 1")
    if scale <= 0:
        raise ValueError("scale must be positive")
    pyramid = [a]
    for _ in range(1, levels):
        prev = pyramid[-1]
        width = int(prev.shape[1] * scale)
        height = int(prev.shape[0] * scale)
        if width < 1 or height < 1:
            raise ValueError("image too small for the requested pyramid")
        pyramid.append(_resize_linear(prev, width, height))
    return pyramid