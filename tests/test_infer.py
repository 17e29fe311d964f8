import itertools

import numpy as np
import pytest

from Evaluation.clustering import eval_cluster_performance
from Simulation.simulator import generate_synthetic_data
from VariationalInference import infer
from VariationalInference.basis import Basis
from VariationalInference.infer import (
    MelissaConfig,
    initial_responsibilities,
    mean_methylation_features,
    predict_profiles,
    run_melissa,
)
from VariationalInference.likelihood import jj_lambda, sigmoid


def _fast_config(**kwargs):
    params = dict(K=2, vb_max_iter=100, vb_init_nstart=2, vb_init_max_iter=5, seed=1)
    params.update(kwargs)
    return MelissaConfig(**params)


def test_result_invariants(tiny_data):
    result = run_melissa(tiny_data, Basis(order=3), _fast_config())
    assert result.r_nk.shape == (6, 2)
    assert np.allclose(result.r_nk.sum(axis=1), 1.0)
    assert np.all(result.pi_k >= 0)
    assert result.pi_k.sum() == pytest.approx(1.0)
    assert result.W.shape == (3, 4, 2)
    assert result.W_cov.shape == (3, 2, 4, 4)
    assert result.n_iter == len(result.lb_trace)
    assert len(result.restart_lbs) == 2
    assert result.cell_ids == tiny_data.cell_ids


def test_lower_bound_never_decreases(tiny_data):
    result = run_melissa(tiny_data, Basis(order=3), _fast_config(vb_init_nstart=1, epsilon_conv=1e-10))
    trace = np.asarray(result.lb_trace)
    assert np.all(np.diff(trace) >= -1e-6 * np.maximum(1.0, np.abs(trace[:-1])))


def test_separates_well_defined_clusters(separable_data):
    config = MelissaConfig(K=3, vb_max_iter=200, vb_init_nstart=3, vb_init_max_iter=10, seed=0)
    result = run_melissa(separable_data, Basis(order=4), config)
    metrics = eval_cluster_performance(result, separable_data.labels)
    assert metrics.ari == pytest.approx(1.0)
    assert metrics.error == pytest.approx(0.0)
    assert result.evaluation["clustering"]["ari"] == metrics.ari


def test_same_seed_is_reproducible(tiny_data):
    a = run_melissa(tiny_data, Basis(order=2), _fast_config(init="random"))
    b = run_melissa(tiny_data, Basis(order=2), _fast_config(init="random"))
    assert np.allclose(a.r_nk, b.r_nk)
    assert a.lb_trace == b.lb_trace


def test_single_cluster_assigns_every_cell(tiny_data):
    result = run_melissa(tiny_data, Basis(order=2), _fast_config(K=1))
    assert np.allclose(result.r_nk, 1.0)
    assert result.pi_k == pytest.approx([1.0])


def test_k_larger_than_cells_raises(tiny_data):
    with pytest.raises(ValueError):
        run_melissa(tiny_data, Basis(), _fast_config(K=7))


@pytest.mark.parametrize(
    "kwargs",
    [{"K": 0}, {"K": 1.5}, {"delta_0": 0.0}, {"vb_max_iter": 0}, {"init": "spectral"}, {"no_cores": 0}],
)
def test_invalid_config_raises(kwargs):
    with pytest.raises(ValueError):
        MelissaConfig(**kwargs)


def test_kmeans_initialisation_is_smoothed(tiny_data):
    features = mean_methylation_features(tiny_data)
    assert features.shape == (6, 3)
    assert not np.any(np.isnan(features))
    r = initial_responsibilities(features, 2, "kmeans", np.random.default_rng(0))
    assert np.allclose(r.sum(axis=1), 1.0)
    assert np.all(r > 0)
    assert np.unique(np.argmax(r, axis=1)[:3]).size == 1


def test_predicted_profiles_are_probabilities(tiny_data):
    result = run_melissa(tiny_data, Basis(order=3), _fast_config())
    x, profiles = predict_profiles(result, n_points=11)
    assert x.shape == (11,)
    assert profiles.shape == (3, 11, 2)
    assert np.all((profiles > 0) & (profiles < 1))


def test_jj_lambda_limit_at_zero():
    lam = jj_lambda(np.array([0.0, 1e-12, 2.0]))
    assert lam[0] == pytest.approx(0.125)
    assert lam[1] == pytest.approx(0.125)
    assert lam[2] == pytest.approx(np.tanh(1.0) / 8.0)
    assert sigmoid(np.array([0.0]))[0] == pytest.approx(0.5)


def test_parallel_restarts_match_sequential(tiny_data):
    sequential = run_melissa(tiny_data, Basis(order=2), _fast_config(vb_init_nstart=3))
    parallel = run_melissa(
        tiny_data, Basis(order=2), _fast_config(vb_init_nstart=3, is_parallel=True, no_cores=2)
    )
    assert np.allclose(parallel.r_nk, sequential.r_nk)
    assert parallel.restart_lbs == pytest.approx(sequential.restart_lbs)


def test_surplus_clusters_stay_valid():
    data = generate_synthetic_data(
        n_cells=30, n_regions=5, n_clusters=2, cluster_dissimilarity=1.0, weight_scale=4.0, random_seed=4
    )
    config = MelissaConfig(K=5, vb_max_iter=100, vb_init_nstart=2, vb_init_max_iter=10, seed=2)
    result = run_melissa(data, Basis(order=3), config)
    assert np.allclose(result.r_nk.sum(axis=1), 1.0)
    assert result.pi_k.sum() == pytest.approx(1.0)
    assert np.all(result.pi_k > 0)
    assert np.all(np.isfinite(result.W))
    # an emptied cluster keeps only its prior share of the proportions
    empty = result.r_nk.sum(axis=0) < 1e-6
    assert np.all(result.pi_k[empty] < 0.01)


def test_iteration_cap_returns_unconverged_state(tiny_data):
    config = _fast_config(vb_max_iter=2, vb_init_max_iter=5, epsilon_conv=1e-12)
    result = run_melissa(tiny_data, Basis(order=2), config)
    assert result.n_iter <= 2
    assert result.converged is False
    assert np.allclose(result.r_nk.sum(axis=1), 1.0)


def test_decreasing_bound_is_not_convergence(tiny_data, monkeypatch):
    steps = itertools.count()
    monkeypatch.setattr(infer, "evidence_lower_bound", lambda **kwargs: -float(next(steps)))
    config = _fast_config(vb_init_nstart=1, vb_init_max_iter=3, vb_max_iter=6)
    result = run_melissa(tiny_data, Basis(order=2), config)
    assert result.converged is False
    assert result.n_iter == 6
