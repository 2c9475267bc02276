"""Similarity and smoothness losses for image registration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from voxreg.nn import Conv3d

__all__ = [
    "GradientPenalty",
    "LocalNCCLoss",
    "GlobalNCCLoss",
    "GradLoss",
    "SimilarityMetric",
    "RegularizationType",
    "RegistrationLossConfig",
    "RegistrationLoss",
]


class GradientPenalty(Enum):
    """Norm used by :class:`GradLoss`."""

    L2 = "l2"
    L1 = "l1"


def _pair(y_true, y_pred) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(y_true, dtype=float)
    b = np.asarray(y_pred, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"image shapes differ: {a.shape} vs {b.shape}")
    return a, b


class LocalNCCLoss:
    """Negative squared local normalised cross-correlation over cubic windows.

    Inputs are [B, 1, D, H, W]; a perfect match gives -1.
    """

    def __init__(self, window_size: int = 9) -> None:
        if window_size < 1:
            raise ValueError("window_size must be positive")
        self.window_size = window_size
        self.epsilon = 1e-5
        self.window_conv = Conv3d(
            1,
            1,
            kernel_size=window_size,
            stride=1,
            padding=window_size // 2,
            bias=False,
            rng=np.random.default_rng(0),
        )
        self.window_conv.weight = np.full(
            (1, 1, window_size, window_size, window_size), 1.0 / window_size**3
        )

    def forward(self, y_true, y_pred) -> float:
        i, j = _pair(y_true, y_pred)
        mean = self.window_conv.forward
        i_mean, j_mean = mean(i), mean(j)
        cross = mean(i * j) - i_mean * j_mean
        i_var = mean(i * i) - i_mean**2
        j_var = mean(j * j) - j_mean**2
        cc = cross * cross / (i_var * j_var + self.epsilon)
        return -float(cc.mean())

    __call__ = forward


class GlobalNCCLoss:
    """Negative normalised cross-correlation over the whole image."""

    epsilon = 1e-5

    def forward(self, y_true, y_pred) -> float:
        i, j = _pair(y_true, y_pred)
        i_hat = i - i.mean()
        j_hat = j - j.mean()
        num = (i_hat * j_hat).mean()
        den = np.sqrt((i_hat**2).mean() * (j_hat**2).mean() + self.epsilon)
        return -float(num / den)

    __call__ = forward


class GradLoss:
    """Smoothness penalty on finite differences of a [B, 3, D, H, W] field."""

    def __init__(self, penalty: GradientPenalty = GradientPenalty.L2) -> None:
        self.penalty = penalty

    def forward(self, flow) -> float:
        flow = np.asarray(flow, dtype=float)
        if flow.ndim != 5:
            raise ValueError(f"flow must be [B, C, D, H, W], got shape {flow.shape}")
        diffs = [np.diff(flow, axis=axis) for axis in (2, 3, 4)]
        if self.penalty is GradientPenalty.L2:
            terms = [(d**2).mean() for d in diffs]
        else:
            terms = [np.abs(d).mean() for d in diffs]
        return float(sum(terms) / 3.0)

    __call__ = forward


class SimilarityMetric(Enum):
    """Image similarity term."""

    NCC = "ncc"
    MSE = "mse"
    GLOBAL_NCC = "global_ncc"


class RegularizationType(Enum):
    """Displacement smoothness term."""

    L2 = "l2"
    L1 = "l1"


@dataclass(frozen=True)
class RegistrationLossConfig:
    """Weights and choices for :class:`RegistrationLoss`."""

    reg_weight: float = 0.1
    similarity: SimilarityMetric = SimilarityMetric.NCC
    regularization: RegularizationType = RegularizationType.L2


class RegistrationLoss:
    """Similarity between images plus smoothness of the displacement field."""

    def __init__(self, config: RegistrationLossConfig | None = None) -> None:
        self.config = config if config is not None else RegistrationLossConfig()
        self.ncc_loss = LocalNCCLoss(9)
        self.global_ncc_loss = GlobalNCCLoss()
        penalty = (
            GradientPenalty.L2
            if self.config.regularization is RegularizationType.L2
            else GradientPenalty.L1
        )
        self.grad_loss = GradLoss(penalty)

    def similarity_loss(self, fixed, warped) -> float:
        metric = self.config.similarity
        if metric is SimilarityMetric.NCC:
            return self.ncc_loss.forward(fixed, warped)
        if metric is SimilarityMetric.GLOBAL_NCC:
            return self.global_ncc_loss.forward(fixed, warped)
        a, b = _pair(fixed, warped)
        return float(((a - b) ** 2).mean())

    def regularization_loss(self, displacement) -> float:
        return self.grad_loss.forward(displacement)