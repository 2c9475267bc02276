"""Hierarchical VMamba encoder producing multi-scale features and a bottleneck."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from voxreg.nn import Conv3d
from voxreg.vmamba import VMambaBlock, VMambaBlockConfig

__all__ = [
    "EncoderStageConfig",
    "SSMMorphEncoderConfig",
    "EncoderStage",
    "SSMMorphEncoder",
]


@dataclass(frozen=True)
class EncoderStageConfig:
    """Channels, block count and downsampling of one encoder stage."""

    in_channels: int = 0
    out_channels: int = 0
    depth: int = 0
    downsample: bool = False


@dataclass(frozen=True)
class SSMMorphEncoderConfig:
    """Shape of the whole encoder."""

    in_channels: int = 2
    base_channels: int = 32
    channel_mult: int = 2
    num_stages: int = 4
    blocks_per_stage: int = 2
    use_drop_path: bool = False

    @staticmethod
    def for_registration() -> "SSMMorphEncoderConfig":
        """Standard configuration for 3D registration."""
        return SSMMorphEncoderConfig(
            in_channels=2,
            base_channels=32,
            channel_mult=2,
            num_stages=4,
            blocks_per_stage=2,
            use_drop_path=False,
        )

    @staticmethod
    def lightweight() -> "SSMMorphEncoderConfig":
        """Smaller, faster configuration."""
        return SSMMorphEncoderConfig(
            in_channels=2,
            base_channels=16,
            channel_mult=2,
            num_stages=3,
            blocks_per_stage=1,
            use_drop_path=False,
        )

    @staticmethod
    def high_quality() -> "SSMMorphEncoderConfig":
        """Wider and deeper configuration."""
        return SSMMorphEncoderConfig(
            in_channels=2,
            base_channels=48,
            channel_mult=2,
            num_stages=4,
            blocks_per_stage=3,
            use_drop_path=True,
        )

    def stage_configs(self) -> list[EncoderStageConfig]:
        """Per-stage configurations; every stage downsamples."""
        configs = []
        in_ch, out_ch = self.in_channels, self.base_channels
        for _ in range(self.num_stages):
            # Downsampling at every stage leaves a bottleneck smaller than the
            # last skip feature, so the decoder can upsample back onto it.
            configs.append(
                EncoderStageConfig(
                    in_channels=in_ch,
                    out_channels=out_ch,
                    depth=self.blocks_per_stage,
                    downsample=True,
                )
            )
            in_ch, out_ch = out_ch, out_ch * self.channel_mult
        return configs

    def stage_channels(self) -> list[int]:
        """Output channels of each stage."""
        return [config.out_channels for config in self.stage_configs()]


class EncoderStage:
    """Optional channel projection, VMamba blocks, then an optional stride-2 convolution."""

    def __init__(
        self,
        config: EncoderStageConfig,
        rng: np.random.Generator | None = None,
    ) -> None:
        rng = rng if rng is not None else np.random.default_rng()
        self.proj = (
            Conv3d(
                config.in_channels,
                config.out_channels,
                kernel_size=3,
                stride=1,
                padding=1,
                bias=False,
                rng=rng,
            )
            if config.in_channels != config.out_channels
            else None
        )
        block_config = VMambaBlockConfig.new_with_dim(config.out_channels)
        self.blocks = [VMambaBlock(block_config, rng=rng) for _ in range(config.depth)]
        self.downsample = (
            Conv3d(
                config.out_channels,
                config.out_channels,
                kernel_size=3,
                stride=2,
                padding=1,
                bias=False,
                rng=rng,
            )
            if config.downsample
            else None
        )
        self.out_channels = config.out_channels
        self.has_downsample = config.downsample

    def forward(self, input) -> tuple[np.ndarray, np.ndarray | None]:
        """Return the features before downsampling and the downsampled output (or None)."""
        x = np.asarray(input, dtype=float)
        if self.proj is not None:
            x = self.proj.forward(x)
        for block in self.blocks:
            x = block.forward(x)
        output = self.downsample.forward(x) if self.downsample is not None else None
        return x, output

    __call__ = forward


class SSMMorphEncoder:
    """Stack of encoder stages; collects one skip feature per stage."""

    def __init__(
        self,
        config: SSMMorphEncoderConfig,
        rng: np.random.Generator | None = None,
    ) -> None:
        rng = rng if rng is not None else np.random.default_rng()
        self.stages = [EncoderStage(cfg, rng=rng) for cfg in config.stage_configs()]
        self._num_stages = config.num_stages
        self._stage_channels = tuple(config.stage_channels())

    def forward(self, input) -> tuple[list[np.ndarray], np.ndarray]:
        """Return the per-stage features and the bottleneck."""
        x = np.asarray(input, dtype=float)
        features = []
        for stage in self.stages:
            feat, out = stage.forward(x)
            features.append(feat)
            x = out if out is not None else feat
        return features, x

    __call__ = forward

    def num_stages(self) -> int:
        return self._num_stages

    def stage_channels(self) -> tuple[int, ...]:
        return self._stage_channels