"""Dense warping by displacement fields and scaling-and-squaring integration."""

from __future__ import annotations

import numpy as np

from voxreg.interpolation import trilinear_interpolation

__all__ = ["SpatialTransformer", "VecInt"]


class SpatialTransformer:
    """Warps [B, C, D, H, W] images by a [B, 3, D, H, W] voxel flow in (d, h, w) order."""

    def forward(self, image, flow) -> np.ndarray:
        image = np.asarray(image, dtype=float)
        flow = np.asarray(flow, dtype=float)
        if image.ndim != 5:
            raise ValueError(f"image must be [B, C, D, H, W], got shape {image.shape}")
        b, _, d, h, w = image.shape
        if flow.shape != (b, 3, d, h, w):
            raise ValueError(f"flow must have shape {(b, 3, d, h, w)}, got {flow.shape}")
        grid = flow + np.stack(
            np.meshgrid(
                np.arange(d, dtype=float),
                np.arange(h, dtype=float),
                np.arange(w, dtype=float),
                indexing="ij",
            )
        )[None]
        return trilinear_interpolation(image, grid)

    __call__ = forward


class VecInt:
    """Integrates a stationary velocity field into a displacement field."""

    def __init__(self, nsteps: int) -> None:
        if nsteps < 0:
            raise ValueError("nsteps must not be negative")
        self.nsteps = nsteps
        self.stn = SpatialTransformer()

    def forward(self, flow) -> np.ndarray:
        """Scale by 1/2**nsteps, then compose the field with itself nsteps times."""
        flow = np.asarray(flow, dtype=float) / 2.0**self.nsteps
        for _ in range(self.nsteps):
            flow = flow + self.stn.forward(flow, flow)
        return flow

    __call__ = forward