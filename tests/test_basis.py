import numpy as np
import pytest

from VariationalInference.basis import Basis, create_basis


def test_rbf_design_matrix_has_bias_and_order_plus_one_columns():
    basis = Basis(family="rbf", order=4)
    H = basis.design_matrix(np.array([-1.0, 0.0, 0.3, 1.0]))
    assert basis.dimension == 5
    assert H.shape == (4, 5)
    assert np.all(H[:, 0] == 1.0)
    assert basis.gamma == pytest.approx(4.0)
    assert np.allclose(basis.centres, [-0.75, -0.25, 0.25, 0.75])


def test_rbf_peaks_at_centres():
    basis = Basis(family="rbf", order=4)
    H = basis.design_matrix(basis.centres)
    assert np.allclose(np.diag(H[:, 1:]), 1.0)


@pytest.mark.parametrize("family", ["rbf", "polynomial", "fourier"])
def test_every_family_has_same_dimension(family):
    basis = create_basis(family=family, order=3)
    H = basis.design_matrix(np.linspace(-1, 1, 7))
    assert H.shape == (7, 4)
    assert np.all(np.isfinite(H))


def test_polynomial_and_fourier_values():
    poly = Basis(family="polynomial", order=2).design_matrix(0.5)
    assert np.allclose(poly, [[1.0, 0.5, 0.25]])
    fourier = Basis(family="fourier", order=2).design_matrix(0.25)
    assert np.allclose(fourier, [[1.0, np.cos(np.pi / 4), np.sin(np.pi / 4)]])


def test_zero_order_polynomial_is_bias_only():
    H = Basis(family="polynomial", order=0).design_matrix([0.1, -0.2])
    assert np.allclose(H, 1.0)


@pytest.mark.parametrize(
    "kwargs",
    [{"family": "spline"}, {"order": -1}, {"order": 2.5}, {"family": "rbf", "order": 0}, {"gamma": -1.0}],
)
def test_invalid_basis_raises(kwargs):
    with pytest.raises(ValueError):
        Basis(**kwargs)
