"""Cross-scan: flatten 2D/3D feature maps into sequences along several directions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

__all__ = [
    "ScanDirection",
    "scan_2d",
    "merge_2d",
    "scan_3d",
    "merge_3d",
    "CrossScanConfig",
    "CrossScan",
]


class ScanDirection(Enum):
    """Order in which spatial positions are visited."""

    HORIZONTAL_FORWARD = "horizontal_forward"
    HORIZONTAL_REVERSE = "horizontal_reverse"
    VERTICAL_FORWARD = "vertical_forward"
    VERTICAL_REVERSE = "vertical_reverse"
    DEPTH_FORWARD = "depth_forward"
    DEPTH_REVERSE = "depth_reverse"

    @staticmethod
    def all_2d() -> tuple["ScanDirection", ...]:
        """The four in-plane directions."""
        return (
            ScanDirection.HORIZONTAL_FORWARD,
            ScanDirection.HORIZONTAL_REVERSE,
            ScanDirection.VERTICAL_FORWARD,
            ScanDirection.VERTICAL_REVERSE,
        )

    @staticmethod
    def all_3d() -> tuple["ScanDirection", ...]:
        """The in-plane directions followed by the two depth directions."""
        return ScanDirection.all_2d() + (
            ScanDirection.DEPTH_FORWARD,
            ScanDirection.DEPTH_REVERSE,
        )


def _require_ndim(tensor: np.ndarray, ndim: int, layout: str) -> np.ndarray:
    tensor = np.asarray(tensor, dtype=float)
    if tensor.ndim != ndim:
        raise ValueError(f"expected a {ndim}D tensor {layout}, got shape {tensor.shape}")
    return tensor


def _invalid_2d(direction: ScanDirection) -> ValueError:
    return ValueError(f"invalid 2D scan direction: {direction}")


def scan_2d(input, direction: ScanDirection) -> np.ndarray:
    """Flatten [B, C, H, W] into [B, C, H*W] along ``direction``."""
    x = _require_ndim(input, 4, "[B, C, H, W]")
    b, c, h, w = x.shape
    if direction is ScanDirection.HORIZONTAL_FORWARD:
        ordered = x
    elif direction is ScanDirection.HORIZONTAL_REVERSE:
        ordered = x[:, :, :, ::-1]
    elif direction is ScanDirection.VERTICAL_FORWARD:
        ordered = x.transpose(0, 1, 3, 2)
    elif direction is ScanDirection.VERTICAL_REVERSE:
        ordered = x[:, :, ::-1, :].transpose(0, 1, 3, 2)
    else:
        raise _invalid_2d(direction)
    return ordered.reshape(b, c, h * w)


def merge_2d(scanned, height: int, width: int, direction: ScanDirection) -> np.ndarray:
    """Undo :func:`scan_2d`: [B, C, H*W] back to [B, C, H, W]."""
    s = _require_ndim(scanned, 3, "[B, C, L]")
    b, c, _ = s.shape
    if direction is ScanDirection.HORIZONTAL_FORWARD:
        return s.reshape(b, c, height, width)
    if direction is ScanDirection.HORIZONTAL_REVERSE:
        return s.reshape(b, c, height, width)[:, :, :, ::-1]
    if direction is ScanDirection.VERTICAL_FORWARD:
        return s.reshape(b, c, width, height).transpose(0, 1, 3, 2)
    if direction is ScanDirection.VERTICAL_REVERSE:
        return s.reshape(b, c, width, height).transpose(0, 1, 3, 2)[:, :, ::-1, :]
    raise _invalid_2d(direction)


def scan_3d(input, direction: ScanDirection) -> np.ndarray:
    """Flatten [B, C, D, H, W] into [B, C, D*H*W] along ``direction``."""
    x = _require_ndim(input, 5, "[B, C, D, H, W]")
    b, c, d, h, w = x.shape
    if direction is ScanDirection.HORIZONTAL_FORWARD:
        ordered = x
    elif direction is ScanDirection.HORIZONTAL_REVERSE:
        ordered = x[..., ::-1]
    elif direction is ScanDirection.VERTICAL_FORWARD:
        ordered = x.transpose(0, 1, 2, 4, 3)
    elif direction is ScanDirection.VERTICAL_REVERSE:
        ordered = x[:, :, :, ::-1, :].transpose(0, 1, 2, 4, 3)
    elif direction is ScanDirection.DEPTH_FORWARD:
        ordered = x.transpose(0, 1, 3, 4, 2)
    else:
        ordered = x[:, :, ::-1].transpose(0, 1, 3, 4, 2)
    return ordered.reshape(b, c, d * h * w)


def merge_3d(
    scanned, depth: int, height: int, width: int, direction: ScanDirection
) -> np.ndarray:
    """Undo :func:`scan_3d`: [B, C, D*H*W] back to [B, C, D, H, W]."""
    s = _require_ndim(scanned, 3, "[B, C, L]")
    b, c, _ = s.shape
    if direction is ScanDirection.HORIZONTAL_FORWARD:
        return s.reshape(b, c, depth, height, width)
    if direction is ScanDirection.HORIZONTAL_REVERSE:
        return s.reshape(b, c, depth, height, width)[..., ::-1]
    if direction is ScanDirection.VERTICAL_FORWARD:
        return s.reshape(b, c, depth, width, height).transpose(0, 1, 2, 4, 3)
    if direction is ScanDirection.VERTICAL_REVERSE:
        merged = s.reshape(b, c, depth, width, height).transpose(0, 1, 2, 4, 3)
        return merged[:, :, :, ::-1, :]
    if direction is ScanDirection.DEPTH_FORWARD:
        return s.reshape(b, c, height, width, depth).transpose(0, 1, 4, 2, 3)
    merged = s.reshape(b, c, height, width, depth).transpose(0, 1, 4, 2, 3)
    return merged[:, :, ::-1]


@dataclass(frozen=True)
class CrossScanConfig:
    """Whether to scan volumes (3D) or planes (2D), and how many directions."""

    use_3d: bool = True
    num_directions: int = 6

    @staticmethod
    def new_2d() -> "CrossScanConfig":
        return CrossScanConfig(use_3d=False, num_directions=4)

    @staticmethod
    def new_3d() -> "CrossScanConfig":
        return CrossScanConfig(use_3d=True, num_directions=6)


def _average(tensors: list[np.ndarray]) -> np.ndarray:
    if not tensors:
        raise ValueError("at least one direction required")
    return sum(tensors[1:], tensors[0]) / len(tensors)


class CrossScan:
    """Scans a feature map along every configured direction and merges results back."""

    def __init__(self, config: CrossScanConfig | None = None) -> None:
        self.config = config if config is not None else CrossScanConfig()

    def use_3d(self) -> bool:
        return self.config.use_3d

    def directions(self) -> tuple[ScanDirection, ...]:
        return ScanDirection.all_3d() if self.config.use_3d else ScanDirection.all_2d()

    def apply(self, input) -> list[np.ndarray]:
        """Return one [B, C, L] sequence per direction."""
        x = np.asarray(input, dtype=float)
        if self.config.use_3d:
            if x.ndim != 5:
                raise ValueError("3D cross-scan requires 5D input [B, C, D, H, W]")
            return [scan_3d(x, direction) for direction in self.directions()]
        if x.ndim != 4:
            raise ValueError("2D cross-scan requires 4D input [B, C, H, W]")
        return [scan_2d(x, direction) for direction in self.directions()]

    def merge_2d(self, sequences, height: int, width: int, directions) -> np.ndarray:
        """Merge per-direction sequences into [B, C, H, W] by averaging."""
        sequences, directions = list(sequences), list(directions)
        if len(sequences) != len(directions):
            raise ValueError("one sequence is needed per direction")
        if self.config.use_3d:
            raise ValueError("cannot use merge_2d with a 3D config")
        return _average(
            [merge_2d(seq, height, width, d) for seq, d in zip(sequences, directions)]
        )

    def merge_3d(
        self, sequences, depth: int, height: int, width: int, directions
    ) -> np.ndarray:
        """Merge per-direction sequences into [B, C, D, H, W] by averaging."""
        sequences, directions = list(sequences), list(directions)
        if len(sequences) != len(directions):
            raise ValueError("one sequence is needed per direction")
        if not self.config.use_3d:
            raise ValueError("cannot use merge_3d with a 2D config")
        return _average(
            [
                merge_3d(seq, depth, height, width, d)
                for seq, d in zip(sequences, directions)
            ]
        )