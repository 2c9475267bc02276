import numpy as np
import pytest

from voxreg.losses import (
    GlobalNCCLoss,
    GradientPenalty,
    GradLoss,
    LocalNCCLoss,
    RegistrationLoss,
    RegistrationLossConfig,
    RegularizationType,
    SimilarityMetric,
)


@pytest.fixture
def rng():
    return np.random.default_rng(0)


def _image(rng, size=8):
    return rng.normal(size=(1, 1, size, size, size))


def test_local_ncc_identical_images_near_minus_one(rng):
    img = _image(rng)
    loss = LocalNCCLoss(3).forward(img, img)
    assert loss == pytest.approx(-1.0, abs=0.01)


def test_local_ncc_is_symmetric_and_bounded(rng):
    a, b = _image(rng), _image(rng)
    ncc = LocalNCCLoss(3)
    assert ncc.forward(a, b) == pytest.approx(ncc.forward(b, a))
    assert -1.0 <= ncc.forward(a, b) <= 0.0
    assert ncc.forward(a, b) > ncc.forward(a, a)


def test_local_ncc_window_weights_average():
    ncc = LocalNCCLoss(5)
    assert ncc.window_conv.weight.shape == (1, 1, 5, 5, 5)
    assert ncc.window_conv.weight.sum() == pytest.approx(1.0)


def test_local_ncc_shape_mismatch_raises(rng):
    with pytest.raises(ValueError):
        LocalNCCLoss(3).forward(_image(rng, 8), _image(rng, 6))


def test_global_ncc_perfect_and_inverted_match(rng):
    img = _image(rng)
    ncc = GlobalNCCLoss()
    assert ncc.forward(img, img) == pytest.approx(-1.0, abs=1e-4)
    assert ncc.forward(img, -img) == pytest.approx(-ncc.forward(img, img))


def test_global_ncc_is_affine_invariant(rng):
    img = _image(rng)
    ncc = GlobalNCCLoss()
    assert ncc.forward(img, 2.0 * img + 3.0) == pytest.approx(ncc.forward(img, img), abs=1e-4)


def test_grad_loss_zero_for_constant_flow():
    flow = np.full((1, 3, 4, 4, 4), 2.5)
    assert GradLoss(GradientPenalty.L2).forward(flow) == 0.0
    assert GradLoss(GradientPenalty.L1).forward(flow) == 0.0


def test_grad_loss_scaling(rng):
    flow = rng.normal(size=(1, 3, 4, 5, 6))
    l1, l2 = GradLoss(GradientPenalty.L1), GradLoss(GradientPenalty.L2)
    assert l1.forward(2.0 * flow) == pytest.approx(2.0 * l1.forward(flow))
    assert l2.forward(2.0 * flow) == pytest.approx(4.0 * l2.forward(flow))


def test_grad_loss_translation_invariant(rng):
    flow = rng.normal(size=(1, 3, 4, 4, 4))
    loss = GradLoss()
    assert loss.forward(flow + 7.0) == pytest.approx(loss.forward(flow))
    assert loss.penalty is GradientPenalty.L2


def test_grad_loss_requires_5d():
    with pytest.raises(ValueError):
        GradLoss().forward(np.zeros((3, 4, 4, 4)))


def test_registration_config_defaults():
    config = RegistrationLossConfig()
    assert config.reg_weight == 0.1
    assert config.similarity is SimilarityMetric.NCC
    assert config.regularization is RegularizationType.L2


def test_registration_mse(rng):
    img = _image(rng)
    loss = RegistrationLoss(RegistrationLossConfig(similarity=SimilarityMetric.MSE))
    assert loss.similarity_loss(img, img) == 0.0
    assert loss.similarity_loss(img, img + 1.0) == pytest.approx(1.0)


def test_registration_dispatches_to_components(rng):
    a, b = _image(rng, 10), _image(rng, 10)
    ncc = RegistrationLoss()
    assert ncc.similarity_loss(a, b) == pytest.approx(LocalNCCLoss(9).forward(a, b))
    glob = RegistrationLoss(RegistrationLossConfig(similarity=SimilarityMetric.GLOBAL_NCC))
    assert glob.similarity_loss(a, b) == pytest.approx(GlobalNCCLoss().forward(a, b))


def test_registration_regularization_type(rng):
    flow = rng.normal(size=(1, 3, 4, 4, 4))
    l1 = RegistrationLoss(RegistrationLossConfig(regularization=RegularizationType.L1))
    l2 = RegistrationLoss()
    assert l1.regularization_loss(flow) == pytest.approx(GradLoss(GradientPenalty.L1).forward(flow))
    assert l2.regularization_loss(flow) == pytest.approx(GradLoss(GradientPenalty.L2).forward(flow))