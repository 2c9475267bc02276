"""Grid sampling in normalised coordinates and displacement-field composition."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

__all__ = [
    "GridPaddingMode",
    "InterpolationMode",
    "GridSamplerConfig",
    "GridSampler",
    "FlowComposer",
]


class GridPaddingMode(Enum):
    """How samples outside the volume are treated."""

    ZERO = "zero"
    BORDER = "border"
    REFLECTION = "reflection"


class InterpolationMode(Enum):
    """Sampling kernel."""

    NEAREST = "nearest"
    LINEAR = "linear"


@dataclass(frozen=True)
class GridSamplerConfig:
    """Options for :class:`GridSampler`.

    Reflection padding is sampled like border padding.
    """

    padding_mode: GridPaddingMode = GridPaddingMode.BORDER
    interpolation: InterpolationMode = InterpolationMode.LINEAR
    align_corners: bool = True


class GridSampler:
    """Samples [B, C, D, H, W] volumes at a [B, D', H', W', 3] grid of (x, y, z) in [-1, 1]."""

    def __init__(self, config: GridSamplerConfig | None = None) -> None:
        self.config = config if config is not None else GridSamplerConfig()

    def sample(self, input, grid) -> np.ndarray:
        input = np.asarray(input, dtype=float)
        grid = np.asarray(grid, dtype=float)
        if input.ndim != 5:
            raise ValueError(f"input must be [B, C, D, H, W], got shape {input.shape}")
        if grid.ndim != 5 or grid.shape[-1] != 3:
            raise ValueError(f"grid must be [B, D, H, W, 3], got shape {grid.shape}")
        if grid.shape[0] != input.shape[0]:
            raise ValueError("input and grid batch sizes differ")
        if self.config.interpolation is InterpolationMode.LINEAR:
            return self._sample_trilinear(input, grid)
        return self._sample_nearest(input, grid)

    def _sample_trilinear(self, input: np.ndarray, grid: np.ndarray) -> np.ndarray:
        _, _, d_in, h_in, w_in = input.shape
        ix, iy, iz = self._denormalize(grid, w_in, h_in, d_in)

        mask = None
        if self.config.padding_mode is GridPaddingMode.ZERO:
            mask = (
                (ix >= 0) & (ix <= w_in - 1)
                & (iy >= 0) & (iy <= h_in - 1)
                & (iz >= 0) & (iz <= d_in - 1)
            ).astype(float)

        ix = np.clip(ix, 0, w_in - 1)
        iy = np.clip(iy, 0, h_in - 1)
        iz = np.clip(iz, 0, d_in - 1)

        ix0, iy0, iz0 = np.floor(ix), np.floor(iy), np.floor(iz)
        ix1 = np.clip(ix0 + 1, 0, w_in - 1)
        iy1 = np.clip(iy0 + 1, 0, h_in - 1)
        iz1 = np.clip(iz0 + 1, 0, d_in - 1)

        wx1 = (ix - ix0)[:, None]
        wy1 = (iy - iy0)[:, None]
        wz1 = (iz - iz0)[:, None]
        wx0, wy0, wz0 = 1.0 - wx1, 1.0 - wy1, 1.0 - wz1

        ix0, iy0, iz0, ix1, iy1, iz1 = (
            a.astype(np.intp) for a in (ix0, iy0, iz0, ix1, iy1, iz1)
        )

        v000 = self._gather(input, iz0, iy0, ix0)
        v100 = self._gather(input, iz0, iy0, ix1)
        v010 = self._gather(input, iz0, iy1, ix0)
        v110 = self._gather(input, iz0, iy1, ix1)
        v001 = self._gather(input, iz1, iy0, ix0)
        v101 = self._gather(input, iz1, iy0, ix1)
        v011 = self._gather(input, iz1, iy1, ix0)
        v111 = self._gather(input, iz1, iy1, ix1)

        c00 = v000 * wx0 + v100 * wx1
        c10 = v010 * wx0 + v110 * wx1
        c01 = v001 * wx0 + v101 * wx1
        c11 = v011 * wx0 + v111 * wx1

        c0 = c00 * wy0 + c10 * wy1
        c1 = c01 * wy0 + c11 * wy1
        result = c0 * wz0 + c1 * wz1

        if mask is not None:
            result = result * mask[:, None]
        return result

    def _sample_nearest(self, input: np.ndarray, grid: np.ndarray) -> np.ndarray:
        _, _, d_in, h_in, w_in = input.shape
        ix, iy, iz = self._denormalize(grid, w_in, h_in, d_in)
        ix_n = np.clip(np.round(ix), 0, w_in - 1).astype(np.intp)
        iy_n = np.clip(np.round(iy), 0, h_in - 1).astype(np.intp)
        iz_n = np.clip(np.round(iz), 0, d_in - 1).astype(np.intp)
        return self._gather(input, iz_n, iy_n, ix_n)

    def _denormalize(
        self, grid: np.ndarray, w_in: int, h_in: int, d_in: int
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        x, y, z = grid[..., 0], grid[..., 1], grid[..., 2]
        if self.config.align_corners:
            return (
                (x + 1.0) * (w_in - 1) / 2.0,
                (y + 1.0) * (h_in - 1) / 2.0,
                (z + 1.0) * (d_in - 1) / 2.0,
            )
        return (
            ((x + 1.0) * w_in - 1.0) / 2.0,
            ((y + 1.0) * h_in - 1.0) / 2.0,
            ((z + 1.0) * d_in - 1.0) / 2.0,
        )

    @staticmethod
    def _gather(input: np.ndarray, iz: np.ndarray, iy: np.ndarray, ix: np.ndarray) -> np.ndarray:
        b, c, d_in, h_in, w_in = input.shape
        flat = input.reshape(b, c, d_in * h_in * w_in)
        idx = (iz * (h_in * w_in) + iy * w_in + ix).reshape(b, 1, -1)
        gathered = np.take_along_axis(flat, idx, axis=2)
        return gathered.reshape(b, c, *iz.shape[1:])


class FlowComposer:
    """Composes and applies displacement fields [B, 3, D, H, W] with (x, y, z) channels in voxels."""

    def compose(self, flow1, flow2) -> np.ndarray:
        """Return flow1 sampled at x + flow2(x), plus flow2."""
        flow1 = np.asarray(flow1, dtype=float)
        flow2 = np.asarray(flow2, dtype=float)
        sample_grid = self._sampling_grid(flow2)
        return GridSampler().sample(flow1, sample_grid) + flow2

    def warp(self, image, displacement) -> np.ndarray:
        """Sample ``image`` at x + displacement(x)."""
        image = np.asarray(image, dtype=float)
        displacement = np.asarray(displacement, dtype=float)
        sample_grid = self._sampling_grid(displacement)
        return GridSampler().sample(image, sample_grid)

    @staticmethod
    def _sampling_grid(flow: np.ndarray) -> np.ndarray:
        if flow.ndim != 5 or flow.shape[1] != 3:
            raise ValueError(f"flow must be [B, 3, D, H, W], got shape {flow.shape}")
        _, _, d, h, w = flow.shape
        if min(d, h, w) < 2:
            raise ValueError("spatial dimensions must be at least 2 to normalise a grid")
        z, y, x = np.meshgrid(
            np.arange(d, dtype=float),
            np.arange(h, dtype=float),
            np.arange(w, dtype=float),
            indexing="ij",
        )
        scales = np.array([2.0 / (w - 1), 2.0 / (h - 1), 2.0 / (d - 1)])
        base = np.stack([x, y, z], axis=-1) * scales - 1.0
        return base[None] + np.moveaxis(flow, 1, -1) * scales