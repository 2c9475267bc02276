"""Trilinear sampling of volumes at voxel coordinates."""

from __future__ import annotations

import numpy as np

__all__ = ["trilinear_interpolation"]


def trilinear_interpolation(image, grid) -> np.ndarray:
    """Sample ``image`` [B, C, D, H, W] at ``grid`` [B, 3, D, H, W].

    The grid holds voxel coordinates in (z, y, x) order. Corner indices are
    clamped to the volume, so samples outside it take border values.
    """
    image = np.asarray(image, dtype=float)
    grid = np.asarray(grid, dtype=float)
    if image.ndim != 5:
        raise ValueError(f"image must be [B, C, D, H, W], got shape {image.shape}")
    b, c, d, h, w = image.shape
    if grid.shape != (b, 3, d, h, w):
        raise ValueError(f"grid must have shape {(b, 3, d, h, w)}, got {grid.shape}")

    z, y, x = grid[:, 0:1], grid[:, 1:2], grid[:, 2:3]
    z0, y0, x0 = np.floor(z), np.floor(y), np.floor(x)

    wz1, wy1, wx1 = z - z0, y - y0, x - x0
    wz0, wy0, wx0 = 1.0 - wz1, 1.0 - wy1, 1.0 - wx1

    def index(values: np.ndarray, size: int) -> np.ndarray:
        return np.clip(values, 0, size - 1).astype(np.intp)

    z0_off, z1_off = index(z0, d) * (h * w), index(z0 + 1, d) * (h * w)
    y0_off, y1_off = index(y0, h) * w, index(y0 + 1, h) * w
    x0_idx, x1_idx = index(x0, w), index(x0 + 1, w)

    flat = image.reshape(b, c, d * h * w)

    def gather(idx: np.ndarray) -> np.ndarray:
        values = np.take_along_axis(flat, idx.reshape(b, 1, d * h * w), axis=2)
        return values.reshape(b, c, d, h, w)

    w00 = gather(z0_off + y0_off + x0_idx) * wx0 + gather(z0_off + y0_off + x1_idx) * wx1
    w01 = gather(z0_off + y1_off + x0_idx) * wx0 + gather(z0_off + y1_off + x1_idx) * wx1
    w10 = gather(z1_off + y0_off + x0_idx) * wx0 + gather(z1_off + y0_off + x1_idx) * wx1
    w11 = gather(z1_off + y1_off + x0_idx) * wx0 + gather(z1_off + y1_off + x1_idx) * wx1

    w0 = w00 * wy0 + w01 * wy1
    w1 = w10 * wy0 + w11 * wy1
    return w0 * wz0 + w1 * wz1