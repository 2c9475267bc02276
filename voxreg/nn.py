"""Small numpy implementations of the layers and activations the models use."""

from __future__ import annotations

import itertools
import math
from collections.abc import Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

__all__ = [
    "Conv3d",
    "ConvTranspose3d",
    "Linear",
    "LayerNorm",
    "BatchNorm",
    "relu",
    "gelu",
    "sigmoid",
    "softplus",
    "softmax",
]


def _triple(value: int | Sequence[int], name: str) -> tuple[int, int, int]:
    if isinstance(value, (int, np.integer)):
        return (int(value),) * 3
    result = tuple(int(v) for v in value)
    if len(result) != 3:
        raise ValueError(f"{name} must have three entries, got {value!r}")
    return result  # type: ignore[return-value]


def _generator(rng: np.random.Generator | None) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


def _uniform(rng: np.random.Generator, shape: tuple[int, ...], fan_in: int) -> np.ndarray:
    bound = 1.0 / math.sqrt(max(fan_in, 1))
    return rng.uniform(-bound, bound, size=shape)


def _as_volume(x, channels: int) -> np.ndarray:
    x = np.asarray(x, dtype=float)
    if x.ndim != 5:
        raise ValueError(f"expected a 5D tensor [B, C, D, H, W], got shape {x.shape}")
    if x.shape[1] != channels:
        raise ValueError(f"expected {channels} channels, got {x.shape[1]}")
    return x


class Conv3d:
    """3D convolution over [B, C, D, H, W] tensors with optional groups."""

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel_size: int | Sequence[int] = 3,
        stride: int | Sequence[int] = 1,
        padding: int | Sequence[int] = 0,
        groups: int = 1,
        bias: bool = True,
        rng: np.random.Generator | None = None,
    ) -> None:
        if groups < 1 or in_channels % groups or out_channels % groups:
            raise ValueError("channel counts must be divisible by groups")
        self.in_channels = in_channels
        self.out_channels = out_channels
        self.kernel_size = _triple(kernel_size, "kernel_size")
        self.stride = _triple(stride, "stride")
        self.padding = _triple(padding, "padding")
        self.groups = groups
        generator = _generator(rng)
        fan_in = (in_channels // groups) * math.prod(self.kernel_size)
        self.weight = _uniform(
            generator, (out_channels, in_channels // groups, *self.kernel_size), fan_in
        )
        self.bias = _uniform(generator, (out_channels,), fan_in) if bias else None

    def forward(self, x) -> np.ndarray:
        x = _as_volume(x, self.in_channels)
        pd, ph, pw = self.padding
        padded = np.pad(x, ((0, 0), (0, 0), (pd, pd), (ph, ph), (pw, pw)))
        if any(n < k for n, k in zip(padded.shape[2:], self.kernel_size)):
            raise ValueError("kernel is larger than the padded input")
        windows = sliding_window_view(padded, self.kernel_size, axis=(2, 3, 4))
        sd, sh, sw = self.stride
        windows = windows[:, :, ::sd, ::sh, ::sw]
        batch = x.shape[0]
        groups = self.groups
        windows = windows.reshape(batch, groups, self.in_channels // groups, *windows.shape[2:])
        weight = self.weight.reshape(
            groups, self.out_channels // groups, self.in_channels // groups, *self.kernel_size
        )
        out = np.einsum("bgcdhwijk,gocijk->bgodhw", windows, weight, optimize=True)
        out = out.reshape(batch, self.out_channels, *out.shape[3:])
        if self.bias is not None:
            out = out + self.bias[None, :, None, None, None]
        return out

    __call__ = forward


class ConvTranspose3d:
    """Transposed 3D convolution; weight layout is [in, out, kd, kh, kw]."""

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel_size: int | Sequence[int] = 4,
        stride: int | Sequence[int] = 1,
        padding: int | Sequence[int] = 0,
        bias: bool = True,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.in_channels = in_channels
        self.out_channels = out_channels
        self.kernel_size = _triple(kernel_size, "kernel_size")
        self.stride = _triple(stride, "stride")
        self.padding = _triple(padding, "padding")
        generator = _generator(rng)
        fan_in = out_channels * math.prod(self.kernel_size)
        self.weight = _uniform(
            generator, (in_channels, out_channels, *self.kernel_size), fan_in
        )
        self.bias = _uniform(generator, (out_channels,), fan_in) if bias else None

    def forward(self, x) -> np.ndarray:
        x = _as_volume(x, self.in_channels)
        batch, _, *spatial = x.shape
        full_shape = [
            (n - 1) * s + k for n, s, k in zip(spatial, self.stride, self.kernel_size)
        ]
        if any(f - 2 * p <= 0 for f, p in zip(full_shape, self.padding)):
            raise ValueError("padding removes the whole output")
        full = np.zeros((batch, self.out_channels, *full_shape))
        (d, h, w), (sd, sh, sw) = spatial, self.stride
        for i, j, k in itertools.product(*(range(n) for n in self.kernel_size)):
            contribution = np.einsum("bcdhw,co->bodhw", x, self.weight[:, :, i, j, k])
            full[
                :,
                :,
                i : i + (d - 1) * sd + 1 : sd,
                j : j + (h - 1) * sh + 1 : sh,
                k : k + (w - 1) * sw + 1 : sw,
            ] += contribution
        pd, ph, pw = self.padding
        out = full[
            :,
            :,
            pd : full_shape[0] - pd,
            ph : full_shape[1] - ph,
            pw : full_shape[2] - pw,
        ]
        if self.bias is not None:
            out = out + self.bias[None, :, None, None, None]
        return out

    __call__ = forward


class Linear:
    """Affine map applied to the last axis; weight layout is [in, out]."""

    def __init__(
        self,
        in_features: int,
        out_features: int,
        bias: bool = True,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.in_features = in_features
        self.out_features = out_features
        generator = _generator(rng)
        self.weight = _uniform(generator, (in_features, out_features), in_features)
        self.bias = _uniform(generator, (out_features,), in_features) if bias else None

    def forward(self, x) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        if x.shape[-1] != self.in_features:
            raise ValueError(f"expected last dimension {self.in_features}, got {x.shape[-1]}")
        out = x @ self.weight
        if self.bias is not None:
            out = out + self.bias
        return out

    __call__ = forward


class LayerNorm:
    """Normalisation over the last axis with learnable scale and shift."""

    def __init__(self, dim: int, epsilon: float = 1e-5) -> None:
        self.dim = dim
        self.epsilon = epsilon
        self.gamma = np.ones(dim)
        self.beta = np.zeros(dim)

    def forward(self, x) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        if x.shape[-1] != self.dim:
            raise ValueError(f"expected last dimension {self.dim}, got {x.shape[-1]}")
        mean = x.mean(axis=-1, keepdims=True)
        var = x.var(axis=-1, keepdims=True)
        return (x - mean) / np.sqrt(var + self.epsilon) * self.gamma + self.beta

    __call__ = forward


class BatchNorm:
    """Per-channel normalisation (axis 1) using the statistics of the batch."""

    def __init__(self, channels: int, epsilon: float = 1e-5) -> None:
        self.channels = channels
        self.epsilon = epsilon
        self.gamma = np.ones(channels)
        self.beta = np.zeros(channels)

    def forward(self, x) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        if x.ndim < 2 or x.shape[1] != self.channels:
            raise ValueError(f"expected {self.channels} channels on axis 1")
        axes = tuple(a for a in range(x.ndim) if a != 1)
        mean = x.mean(axis=axes, keepdims=True)
        var = x.var(axis=axes, keepdims=True)
        shape = [1] * x.ndim
        shape[1] = self.channels
        gamma = self.gamma.reshape(shape)
        beta = self.beta.reshape(shape)
        return (x - mean) / np.sqrt(var + self.epsilon) * gamma + beta

    __call__ = forward


def relu(x) -> np.ndarray:
    """Rectified linear unit."""
    return np.maximum(np.asarray(x, dtype=float), 0.0)


def _erf(x: np.ndarray) -> np.ndarray:
    # Abramowitz & Stegun 7.1.26, absolute error below 1.5e-7.
    sign = np.sign(x)
    a = np.abs(x)
    t = 1.0 / (1.0 + 0.3275911 * a)
    poly = t * (
        0.254829592
        + t * (-0.284496736 + t * (1.421413741 + t * (-1.453152027 + t * 1.061405429)))
    )
    return sign * (1.0 - poly * np.exp(-a * a))


def gelu(x) -> np.ndarray:
    """Gaussian error linear unit (erf form)."""
    x = np.asarray(x, dtype=float)
    return 0.5 * x * (1.0 + _erf(x / math.sqrt(2.0)))


def sigmoid(x) -> np.ndarray:
    """Logistic function, computed without overflow."""
    x = np.asarray(x, dtype=float)
    return np.exp(-np.logaddexp(0.0, -x))


def softplus(x, beta: float = 1.0) -> np.ndarray:
    """Smooth approximation of relu: log(1 + exp(beta * x)) / beta."""
    x = np.asarray(x, dtype=float)
    return np.logaddexp(0.0, beta * x) / beta


def softmax(x, axis: int = -1) -> np.ndarray:
    """Softmax along ``axis``."""
    x = np.asarray(x, dtype=float)
    shifted = np.exp(x - x.max(axis=axis, keepdims=True))
    return shifted / shifted.sum(axis=axis, keepdims=True)