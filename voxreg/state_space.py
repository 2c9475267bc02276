"""Selective state space (S6) layer with input-dependent step, input and output matrices."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from voxreg.nn import Linear, sigmoid, softplus

__all__ = ["StateSpaceParameters", "SelectiveStateSpaceConfig", "SelectiveStateSpace"]


@dataclass(frozen=True)
class StateSpaceParameters:
    """Hyper-parameters of a selective state space model."""

    state_dim: int = 16
    expand_factor: int = 2
    dt_rank: int = 16
    dt_min: float = 0.001
    dt_max: float = 0.1


@dataclass(frozen=True)
class SelectiveStateSpaceConfig:
    """Dimensions of a :class:`SelectiveStateSpace` layer."""

    input_dim: int
    output_dim: int
    state_dim: int = 16
    expand_factor: int = 2
    dt_rank: int = 16
    dropout: float = 0.0

    @staticmethod
    def new_with_dims(input_dim: int, output_dim: int) -> "SelectiveStateSpaceConfig":
        return SelectiveStateSpaceConfig(input_dim=input_dim, output_dim=output_dim)


class SelectiveStateSpace:
    """Maps [..., seq_len, input_dim] to [..., seq_len, output_dim].

    The recurrence h_t = exp(dt_t A) h_{t-1} + dt_t B_t x_t, y_t = C_t h_t is
    evaluated with a parallel prefix scan along the sequence axis.
    """

    def __init__(
        self,
        config: SelectiveStateSpaceConfig,
        rng: np.random.Generator | None = None,
    ) -> None:
        rng = rng if rng is not None else np.random.default_rng()
        self.input_dim = config.input_dim
        self.output_dim = config.output_dim
        self.state_dim = config.state_dim
        self.expand_factor = config.expand_factor
        self.dt_rank = config.dt_rank
        self.inner_dim = config.input_dim * config.expand_factor
        if self.dt_rank > self.inner_dim:
            raise ValueError(
                f"dt_rank {self.dt_rank} exceeds the inner dimension {self.inner_dim}"
            )

        inner = self.inner_dim
        self.in_proj = Linear(config.input_dim, inner * 2, rng=rng)
        self.out_proj = Linear(inner, config.output_dim, rng=rng)
        self.dt_proj = Linear(config.dt_rank, inner, rng=rng)
        self.b_proj = Linear(inner, config.state_dim, rng=rng)
        self.c_proj = Linear(inner, config.state_dim, rng=rng)

        # Real part of the HiPPO initialisation, stored as a log parameter.
        n = np.arange(inner * config.state_dim) % config.state_dim
        self.a_log = -np.log(n + 1.0)
        self.d = np.ones(inner)

    def forward(self, input) -> np.ndarray:
        x_in = np.asarray(input, dtype=float)
        if x_in.ndim < 2:
            raise ValueError(f"expected at least [seq_len, dim], got shape {x_in.shape}")
        *lead, seq_len, in_dim = x_in.shape
        if in_dim != self.input_dim:
            raise ValueError(f"expected last dimension {self.input_dim}, got {in_dim}")
        batch = math.prod(lead)
        flat = x_in.reshape(batch, seq_len, in_dim)

        proj = self.in_proj.forward(flat)
        x, residual = proj[..., : self.inner_dim], proj[..., self.inner_dim :]

        dt = softplus(self.dt_proj.forward(x[..., : self.dt_rank]), 1.0)
        b = self.b_proj.forward(x)
        c = self.c_proj.forward(x)

        y = self._selective_scan(x, dt, b, c)
        gated = y * sigmoid(residual) * self.d
        out = self.out_proj.forward(gated)
        return out.reshape(*lead, seq_len, self.output_dim)

    __call__ = forward

    def _selective_scan(
        self, x: np.ndarray, dt: np.ndarray, b: np.ndarray, c: np.ndarray
    ) -> np.ndarray:
        a = -np.exp(self.a_log).reshape(self.inner_dim, self.state_dim)
        dt_e = dt[..., None]
        a_bar = np.exp(dt_e * a[None, None])
        u = dt_e * b[:, :, None, :] * x[..., None]
        h = self._parallel_scan(a_bar, u)
        return (h * c[:, :, None, :]).sum(axis=3)

    @staticmethod
    def _parallel_scan(a: np.ndarray, u: np.ndarray) -> np.ndarray:
        """Hillis-Steele prefix scan of h_t = a_t * h_{t-1} + u_t along axis 1."""
        seq_len = a.shape[1]
        k = 1
        while k < seq_len:
            a_curr, u_curr = a[:, k:], u[:, k:]
            a_prev, u_prev = a[:, : seq_len - k], u[:, : seq_len - k]
            a = np.concatenate([a[:, :k], a_curr * a_prev], axis=1)
            u = np.concatenate([u[:, :k], a_curr * u_prev + u_curr], axis=1)
            k *= 2
        return u

    def forward_3d(self, input) -> np.ndarray:
        """Apply the layer to [B, C, D, H, W] as a flattened spatial sequence."""
        x = np.asarray(input, dtype=float)
        if x.ndim != 5:
            raise ValueError(f"expected [B, C, D, H, W], got shape {x.shape}")
        b, c, d, h, w = x.shape
        flat = x.transpose(0, 2, 3, 4, 1).reshape(b, d * h * w, c)
        out = self.forward(flat)
        return out.transpose(0, 2, 1).reshape(b, self.output_dim, d, h, w)