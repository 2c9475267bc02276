"""Affine registration: a CNN predicting a 3x4 matrix and the transform applying it."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from voxreg.interpolation import trilinear_interpolation
from voxreg.nn import BatchNorm, Conv3d, Linear, relu

__all__ = ["AffineNetworkConfig", "AffineNetwork", "AffineTransform", "IDENTITY"]

IDENTITY = np.array(
    [1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0]
)


class AffineNetwork:
    """Maps a [B, 2, D, H, W] fixed/moving pair to [B, 12] affine parameters."""

    def __init__(
        self,
        convs: Sequence[Conv3d],
        norms: Sequence[BatchNorm],
        fc: Linear,
    ) -> None:
        if len(convs) != len(norms):
            raise ValueError("one norm is needed per convolution")
        self.convs = list(convs)
        self.norms = list(norms)
        self.fc = fc

    def forward(self, x) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        for conv, norm in zip(self.convs, self.norms):
            x = relu(norm.forward(conv.forward(x)))
        pooled = x.reshape(x.shape[0], x.shape[1], -1).mean(axis=2)
        # Offset by the identity so training starts near the identity transform.
        return self.fc.forward(pooled) + IDENTITY

    __call__ = forward


@dataclass(frozen=True)
class AffineNetworkConfig:
    """Channel widths of the five stride-2 convolution stages."""

    channels: tuple[int, ...] = (16, 32, 64, 128, 256)

    def init(self, rng: np.random.Generator | None = None) -> AffineNetwork:
        if len(self.channels) != 5:
            raise ValueError(f"expected five channel widths, got {len(self.channels)}")
        rng = rng if rng is not None else np.random.default_rng()
        widths = [2, *self.channels]
        convs = [
            Conv3d(c_in, c_out, kernel_size=3, stride=2, padding=1, rng=rng)
            for c_in, c_out in zip(widths, widths[1:])
        ]
        norms = [BatchNorm(c) for c in self.channels]
        fc = Linear(self.channels[-1], 12, rng=rng)
        return AffineNetwork(convs, norms, fc)


class AffineTransform:
    """Resamples [B, C, D, H, W] images under an affine map in normalised [-1, 1] coordinates."""

    def forward(self, image, theta) -> np.ndarray:
        """Apply ``theta`` ([B, 12] or [B, 3, 4], rows acting on (d, h, w, 1))."""
        image = np.asarray(image, dtype=float)
        if image.ndim != 5:
            raise ValueError(f"image must be [B, C, D, H, W], got shape {image.shape}")
        b, _, d, h, w = image.shape
        if min(d, h, w) < 2:
            raise ValueError("spatial dimensions must be at least 2")
        theta = np.asarray(theta, dtype=float)
        if theta.size != b * 12:
            raise ValueError(f"theta must hold 12 values per batch item, got shape {theta.shape}")
        theta = theta.reshape(b, 3, 4)

        grid = self._normalized_meshgrid(d, h, w)
        warped = (theta @ grid).reshape(b, 3, d, h, w)
        return trilinear_interpolation(image, self._denormalize(warped, d, h, w))

    __call__ = forward

    @staticmethod
    def _normalized_meshgrid(d: int, h: int, w: int) -> np.ndarray:
        axes = [np.arange(n, dtype=float) * 2.0 / (n - 1) - 1.0 for n in (d, h, w)]
        zz, yy, xx = np.meshgrid(*axes, indexing="ij")
        return np.stack([zz, yy, xx, np.ones_like(zz)]).reshape(4, d * h * w)

    @staticmethod
    def _denormalize(grid: np.ndarray, d: int, h: int, w: int) -> np.ndarray:
        scales = np.array([d - 1, h - 1, w - 1], dtype=float).reshape(1, 3, 1, 1, 1) / 2.0
        return (grid + 1.0) * scales