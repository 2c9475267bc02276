# voxreg

Building blocks for learning-based registration of 3D volumes, written with NumPy arrays.
Volumes use the `[batch, channels, depth, height, width]` layout. Layers are created with
random weights drawn from an optional `numpy.random.Generator` (`rng`). The package
evaluates forward passes only. It has no training loop and no gradients.

## Modules

- `voxreg.nn` provides the layers and activations the models are built from: `Conv3d` (with
  groups), `ConvTranspose3d`, `Linear`, `LayerNorm`, `BatchNorm`, and `relu`, `gelu`,
  `sigmoid`, `softplus` and `softmax`.
- `voxreg.interpolation` provides `trilinear_interpolation(image, grid)`. It samples a volume
  on a `[B, 3, D, H, W]` grid of voxel coordinates in (z, y, x) order. Samples outside the
  volume take the values at its border.
- `voxreg.sampling` provides the following:
  - `GridSampler`, which samples on a normalised `[-1, 1]` grid of shape `[B, D, H, W, 3]`
    holding (x, y, z). It is set up by a `GridSamplerConfig`:
    - `padding_mode` is a `GridPaddingMode`: `ZERO`, `BORDER` or `REFLECTION`.
      `REFLECTION` is sampled like `BORDER`.
    - `interpolation` is an `InterpolationMode`: `NEAREST` or `LINEAR`.
    - `align_corners` is a flag.
  - `FlowComposer`. Its `compose` method composes two displacement fields. Its `warp` method
    warps an image by a displacement field. Both fields are `[B, 3, D, H, W]` with (x, y, z)
    channels in voxels.
- `voxreg.velocity` provides `VelocityFieldIntegrator`, which integrates a velocity field by
  scaling and squaring. The number of steps comes from an `IntegrationConfig` and defaults to 7.
  It also provides `TransformationComposer.approximate_velocity`.
- `voxreg.spatial` provides `SpatialTransformer`, which warps by a voxel flow in (d, h, w)
  order, and `VecInt`, a scaling-and-squaring integrator built on `SpatialTransformer`.
- `voxreg.losses` provides the following:
  - `LocalNCCLoss`, which uses a cubic window (9 by default).
  - `GlobalNCCLoss`.
  - `GradLoss`, with an L2 or L1 `GradientPenalty`.
  - `RegistrationLoss`. Its `similarity_loss` and `regularization_loss` methods follow a
    `RegistrationLossConfig`:
    - `reg_weight`, default 0.1.
    - `similarity`, a `SimilarityMetric`: `NCC`, `MSE` or `GLOBAL_NCC`.
    - `regularization`, a `RegularizationType`: `L2` or `L1`.

  Every loss returns a Python float.
- `voxreg.cross_scan` provides `scan_2d`, `merge_2d`, `scan_3d` and `merge_3d`. These read a
  feature map along a `ScanDirection` and put it back. `CrossScan` applies every direction of a
  `CrossScanConfig` and averages the merged results.
- `voxreg.state_space` provides `SelectiveStateSpace`, a selective state-space layer with a
  parallel prefix scan. `forward` works on `[..., seq_len, dim]` and `forward_3d` works on
  volumes.
- `voxreg.vmamba` provides `VMambaBlock` and `VMambaStage`. A block applies depthwise
  convolution, then the state-space layer over cross-scanned sequences, then a feed-forward net.
- `voxreg.encoder` provides `SSMMorphEncoder`, which is built from `EncoderStage`s. It returns
  one skip feature per stage and a bottleneck. `SSMMorphEncoderConfig` has three presets:
  `for_registration()`, `lightweight()` and `high_quality()`.
- `voxreg.affine` provides `AffineNetworkConfig.init()`, which builds an `AffineNetwork`. The
  network maps a `[B, 2, D, H, W]` pair to 12 affine parameters, offset by the identity.
  `AffineTransform` resamples an image under such a matrix.

## What the package does not do

The package contains the encoder half of the state-space registration network, but no decoder.
It therefore has no end-to-end model that turns a fixed/moving pair into a displacement field.
`SSMMorphEncoder` stops at multi-scale features and a bottleneck.

There is also no reading or writing of image files, no training, and no command-line tool.

## Installation

```
pip install .
```

## Examples

Warping with a zero displacement leaves the image unchanged:

```python
import numpy as np

from voxreg.sampling import FlowComposer

image = np.random.default_rng(1).normal(size=(1, 1, 8, 8, 8))
displacement = np.zeros((1, 3, 8, 8, 8))

warped = FlowComposer().warp(image, displacement)
assert np.allclose(warped, image)
```

Integrating a velocity field and scoring the result:

```python
import numpy as np

from voxreg.losses import RegistrationLoss, RegistrationLossConfig, SimilarityMetric
from voxreg.velocity import IntegrationConfig, VelocityFieldIntegrator

rng = np.random.default_rng(0)
velocity = rng.normal(scale=0.5, size=(1, 3, 8, 8, 8))
displacement = VelocityFieldIntegrator(IntegrationConfig.with_steps(5)).integrate(velocity)

loss = RegistrationLoss(RegistrationLossConfig(similarity=SimilarityMetric.MSE))
fixed = rng.normal(size=(1, 1, 8, 8, 8))
total = loss.similarity_loss(fixed, fixed) + 0.1 * loss.regularization_loss(displacement)
```

Running the encoder:

```python
import numpy as np

from voxreg.encoder import SSMMorphEncoder, SSMMorphEncoderConfig

encoder = SSMMorphEncoder(SSMMorphEncoderConfig.lightweight(), np.random.default_rng(0))
features, bottleneck = encoder.forward(np.zeros((1, 2, 8, 8, 8)))
print([f.shape for f in features])  # [(1, 16, 8, 8, 8), (1, 32, 4, 4, 4), (1, 64, 2, 2, 2)]
print(bottleneck.shape)             # (1, 64, 1, 1, 1)
```

## Running the tests

```
pip install ".[test]"
pytest
```