"""Scaling-and-squaring integration of stationary velocity fields."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from voxreg.sampling import FlowComposer

__all__ = ["IntegrationConfig", "VelocityFieldIntegrator", "TransformationComposer"]


@dataclass(frozen=True)
class IntegrationConfig:
    """Number of scaling-and-squaring steps."""

    num_steps: int = 7

    @staticmethod
    def with_steps(num_steps: int) -> "IntegrationConfig":
        return IntegrationConfig(num_steps=num_steps)


class VelocityFieldIntegrator:
    """Turns a velocity field into a displacement field by scaling and squaring."""

    def __init__(self, config: IntegrationConfig | None = None) -> None:
        self.num_steps = (config if config is not None else IntegrationConfig()).num_steps

    def integrate(self, velocity) -> np.ndarray:
        displacement = np.asarray(velocity, dtype=float) * 0.5**self.num_steps
        composer = FlowComposer()
        for _ in range(self.num_steps):
            displacement = composer.compose(displacement, displacement)
        return displacement


class TransformationComposer:
    """Helpers relating displacement and velocity fields."""

    def __init__(self, config: IntegrationConfig | None = None) -> None:
        self.num_steps = (config if config is not None else IntegrationConfig()).num_steps

    def approximate_velocity(self, displacement) -> np.ndarray:
        """Scale a displacement field down by 2**num_steps."""
        return np.asarray(displacement, dtype=float) * 0.5**self.num_steps