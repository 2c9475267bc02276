import numpy as np
import pytest

from voxreg.interpolation import trilinear_interpolation


def _identity_grid(b, d, h, w):
    z, y, x = np.meshgrid(np.arange(d), np.arange(h), np.arange(w), indexing="ij")
    grid = np.stack([z, y, x]).astype(float)[None]
    return np.repeat(grid, b, axis=0)


@pytest.fixture
def image():
    return np.random.default_rng(1).normal(size=(2, 3, 4, 5, 6))


def test_identity_grid_returns_image(image):
    grid = _identity_grid(2, 4, 5, 6)
    np.testing.assert_allclose(trilinear_interpolation(image, grid), image)


def test_integer_shift_along_x_clamps_border(image):
    grid = _identity_grid(2, 4, 5, 6)
    grid[:, 2] += 1.0
    out = trilinear_interpolation(image, grid)
    np.testing.assert_allclose(out[..., :-1], image[..., 1:])
    np.testing.assert_allclose(out[..., -1], image[..., -1])


def test_negative_shift_along_z(image):
    grid = _identity_grid(2, 4, 5, 6)
    grid[:, 0] -= 1.0
    out = trilinear_interpolation(image, grid)
    np.testing.assert_allclose(out[:, :, 1:], image[:, :, :-1])
    np.testing.assert_allclose(out[:, :, 0], image[:, :, 0])


def test_half_voxel_is_average(image):
    grid = _identity_grid(2, 4, 5, 6)
    grid[:, 1] += 0.5
    out = trilinear_interpolation(image, grid)
    expected = 0.5 * (image[:, :, :, :-1] + image[:, :, :, 1:])
    np.testing.assert_allclose(out[:, :, :, :-1], expected)


def test_constant_image_stays_constant():
    image = np.full((1, 2, 3, 3, 3), 4.5)
    grid = np.random.default_rng(2).uniform(-2, 5, size=(1, 3, 3, 3, 3))
    np.testing.assert_allclose(trilinear_interpolation(image, grid), image)


def test_grid_shape_mismatch_raises(image):
    with pytest.raises(ValueError):
        trilinear_interpolation(image, np.zeros((2, 3, 4, 5, 5)))