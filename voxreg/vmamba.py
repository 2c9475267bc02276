"""VMamba blocks: depthwise convolution, cross-scan state space mixing and a feed-forward net."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from voxreg.cross_scan import CrossScan, CrossScanConfig, ScanDirection, merge_3d
from voxreg.nn import Conv3d, LayerNorm, Linear, gelu
from voxreg.state_space import SelectiveStateSpace, SelectiveStateSpaceConfig

__all__ = ["VMambaBlockConfig", "VMambaBlock", "VMambaStage"]


@dataclass(frozen=True)
class VMambaBlockConfig:
    """Dimensions and options of a :class:`VMambaBlock`."""

    dim: int
    expand_factor: int = 2
    state_dim: int = 16
    dropout: float = 0.0
    use_3d: bool = True
    drop_path_rate: float = 0.0

    @staticmethod
    def new_with_dim(dim: int) -> "VMambaBlockConfig":
        return VMambaBlockConfig(dim=dim)


def _norm_channels(norm: LayerNorm, x: np.ndarray) -> np.ndarray:
    """Apply a layer norm over axis 1 of a [B, C, ...] tensor."""
    return np.moveaxis(norm.forward(np.moveaxis(x, 1, -1)), -1, 1)


class VMambaBlock:
    """Residual block: SSM over cross-scanned sequences, then a channel FFN.

    Works on [B, C, D, H, W] volumes and keeps their shape.
    """

    def __init__(
        self,
        config: VMambaBlockConfig,
        rng: np.random.Generator | None = None,
    ) -> None:
        rng = rng if rng is not None else np.random.default_rng()
        dim = config.dim
        ssm_config = SelectiveStateSpaceConfig(
            input_dim=dim,
            output_dim=dim,
            state_dim=config.state_dim,
            expand_factor=config.expand_factor,
            dropout=config.dropout,
        )
        scan_config = CrossScanConfig.new_3d() if config.use_3d else CrossScanConfig.new_2d()
        inner_dim = dim * 4

        self.config = VMambaBlockConfig(dim=dim)
        self.norm1 = LayerNorm(dim)
        self.norm2 = LayerNorm(dim)
        self.dwconv = Conv3d(
            dim, dim, kernel_size=3, stride=1, padding=1, groups=dim, bias=True, rng=rng
        )
        self.cross_scan = CrossScan(scan_config)
        self.ssm = SelectiveStateSpace(ssm_config, rng=rng)
        self.ffn_expand = Linear(dim, inner_dim, bias=True, rng=rng)
        self.ffn_project = Linear(inner_dim, dim, bias=True, rng=rng)

    def forward(self, input) -> np.ndarray:
        x = np.asarray(input, dtype=float)
        if x.ndim != 5:
            raise ValueError(f"expected [B, C, D, H, W], got shape {x.shape}")
        _, _, d, h, w = x.shape

        x_conv = self.dwconv.forward(_norm_channels(self.norm1, x))
        directions = self.cross_scan.directions()
        sequences = self.cross_scan.apply(x_conv)
        processed = [self._process_sequence(seq) for seq in sequences]
        x = x + self._merge_directions(processed, (d, h, w), directions)

        x_norm2 = self.norm2.forward(np.moveaxis(x, 1, -1))
        ffn = self.ffn_project.forward(gelu(self.ffn_expand.forward(x_norm2)))
        return x + np.moveaxis(ffn, -1, 1)

    __call__ = forward

    def _process_sequence(self, seq: np.ndarray) -> np.ndarray:
        b, c, s = seq.shape
        flat = seq.transpose(0, 2, 1).reshape(b * s, c)
        processed = self.ssm.forward(flat)
        return processed.reshape(b, s, c).transpose(0, 2, 1)

    @staticmethod
    def _merge_directions(
        sequences: list[np.ndarray],
        spatial: tuple[int, int, int],
        directions: tuple[ScanDirection, ...],
    ) -> np.ndarray:
        depth, height, width = spatial
        merged = [
            merge_3d(seq, depth, height, width, direction)
            for seq, direction in zip(sequences, directions)
        ]
        return sum(merged[1:], merged[0]) / len(directions)

    def forward_4d(self, input) -> np.ndarray:
        """Process [B, C, H, W] as a volume of depth one."""
        x = np.asarray(input, dtype=float)
        if x.ndim != 4:
            raise ValueError(f"expected [B, C, H, W], got shape {x.shape}")
        return self.forward(x[:, :, None]).reshape(x.shape)


class VMambaStage:
    """A run of VMamba blocks, optionally followed by a stride-2 convolution doubling channels."""

    def __init__(
        self,
        dim: int,
        depth: int,
        downsample: bool,
        rng: np.random.Generator | None = None,
    ) -> None:
        rng = rng if rng is not None else np.random.default_rng()
        config = VMambaBlockConfig.new_with_dim(dim)
        self.blocks = [VMambaBlock(config, rng=rng) for _ in range(depth)]
        self.downsample = (
            Conv3d(dim, dim * 2, kernel_size=3, stride=2, padding=1, bias=False, rng=rng)
            if downsample
            else None
        )

    def forward(self, input) -> np.ndarray:
        x = np.asarray(input, dtype=float)
        for block in self.blocks:
            x = block.forward(x)
        if self.downsample is not None:
            x = self.downsample.forward(x)
        return x

    __call__ = forward