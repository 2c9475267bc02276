"""Layers, samplers, losses, state-space blocks and encoders for 3D image registration on NumPy arrays."""

__version__ = "0.1.0"