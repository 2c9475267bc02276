import numpy as np

from voxreg.velocity import IntegrationConfig, TransformationComposer, VelocityFieldIntegrator


def test_default_steps():
    assert IntegrationConfig().num_steps == 7
    assert IntegrationConfig.with_steps(3).num_steps == 3


def test_zero_velocity_integrates_to_zero():
    out = VelocityFieldIntegrator().integrate(np.zeros((1, 3, 3, 3, 3)))
    np.testing.assert_allclose(out, 0.0)


def test_constant_velocity_integrates_to_itself():
    velocity = np.empty((2, 3, 3, 4, 3))
    velocity[:, 0], velocity[:, 1], velocity[:, 2] = 0.4, -0.1, 0.25
    out = VelocityFieldIntegrator(IntegrationConfig.with_steps(5)).integrate(velocity)
    np.testing.assert_allclose(out, velocity, atol=1e-12)


def test_zero_steps_returns_velocity():
    velocity = np.random.default_rng(5).normal(size=(1, 3, 3, 3, 3))
    out = VelocityFieldIntegrator(IntegrationConfig.with_steps(0)).integrate(velocity)
    np.testing.assert_allclose(out, velocity)


def test_integration_preserves_shape():
    velocity = np.random.default_rng(6).normal(scale=0.5, size=(1, 3, 4, 3, 5))
    out = VelocityFieldIntegrator().integrate(velocity)
    assert out.shape == velocity.shape
    assert np.all(np.isfinite(out))


def test_approximate_velocity_scales_down():
    composer = TransformationComposer(IntegrationConfig.with_steps(3))
    displacement = np.full((1, 3, 2, 2, 2), 8.0)
    np.testing.assert_allclose(composer.approximate_velocity(displacement), np.ones_like(displacement))


def test_approximate_velocity_inverts_scaling():
    displacement = np.random.default_rng(7).normal(size=(1, 3, 2, 2, 2))
    composer = TransformationComposer()
    velocity = composer.approximate_velocity(displacement)
    np.testing.assert_allclose(velocity * 2**composer.num_steps, displacement)