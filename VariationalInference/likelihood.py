"""Bounded logistic likelihood and evidence lower bound.

The Bernoulli-logistic likelihood of a CpG call y given the linear predictor
t = h(x)^T w is bounded with the Jaakkola-Jordan inequality:

    log sigmoid((2y - 1) t) >= log sigmoid(xi) + (y - 1/2) t - xi / 2
                               - lambda(xi) (t^2 - xi^2)

    lambda(xi) = tanh(xi / 2) / (4 xi)

The bound is quadratic in w, so q(w) stays Gaussian with closed-form updates.
At the optimum xi^2 = E[t^2] the last term vanishes.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np
from scipy import linalg
from scipy.special import digamma, expit, gammaln, xlogy

from VariationalInference.data import RegionDesign

logger = logging.getLogger(__name__)


@dataclass
class RegionStats:
    """Per-observation quantities of one region under the current q(w).

    Attributes:
        xi: Optimal variational parameters (n_obs, K).
        lam: lambda(xi) (n_obs, K).
        ell: Bounded log-likelihood summed per cell (n_cells, K).
    """
    xi: np.ndarray
    lam: np.ndarray
    ell: np.ndarray


def sigmoid(t: np.ndarray) -> np.ndarray:
    return expit(t)


def log_sigmoid(t: np.ndarray) -> np.ndarray:
    return -np.logaddexp(0.0, -t)


def jj_lambda(xi: np.ndarray) -> np.ndarray:
    """Jaakkola-Jordan lambda(xi), with its limit 1/8 at xi = 0."""
    xi = np.abs(np.asarray(xi, dtype=np.float64))
    small = xi < 1e-6
    safe = np.where(small, 1.0, xi)
    return np.where(small, 0.125, np.tanh(0.5 * safe) / (4.0 * safe))


def predictor_moments(
    H: np.ndarray,
    W_m: np.ndarray,
    S_m: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Mean and second moment of t = h^T w for every observation and cluster.

    Args:
        H: Design matrix (n_obs, D).
        W_m: Posterior means (D, K).
        S_m: Posterior covariances (K, D, D).

    Returns:
        t_mean: E[t] (n_obs, K).
        t_sq: E[t^2] (n_obs, K).
    """
    t_mean = H @ W_m
    t_var = np.einsum("id,kde,ie->ik", H, S_m, H)
    return t_mean, t_var + t_mean * t_mean


def region_stats(
    design: RegionDesign,
    W_m: np.ndarray,
    S_m: np.ndarray,
) -> RegionStats:
    """Optimise xi for one region and sum the bound into per-cell terms."""
    t_mean, t_sq = predictor_moments(design.H, W_m, S_m)
    xi = np.sqrt(np.maximum(t_sq, 0.0))
    term = log_sigmoid(xi) + (design.y - 0.5)[:, None] * t_mean - 0.5 * xi
    ell = np.asarray(design.assign @ term, dtype=np.float64)
    return RegionStats(xi=xi, lam=jj_lambda(xi), ell=ell)


def _inverse_and_logdet(P: np.ndarray, max_tries: int = 6) -> tuple[np.ndarray, float]:
    """Invert a symmetric positive-definite precision matrix via Cholesky.

    Adds growing diagonal jitter when the factorisation fails.
    """
    D = P.shape[0]
    jitter = 0.0
    scale = max(float(np.mean(np.diag(P))), 1e-12)
    for attempt in range(max_tries):
        try:
            c, lower = linalg.cho_factor(P + jitter * np.eye(D), lower=True)
        except linalg.LinAlgError:
            jitter = scale * 10.0 ** (attempt - 8)
            logger.warning("Precision matrix not positive definite; adding jitter %.3g", jitter)
            continue
        S = linalg.cho_solve((c, lower), np.eye(D))
        logdet_S = -2.0 * float(np.sum(np.log(np.diag(c))))
        return 0.5 * (S + S.T), logdet_S
    raise RuntimeError("Failed to factorise weight precision matrix after adding jitter")


def update_region_weights(
    design: RegionDesign,
    r_nk: np.ndarray,
    lam: np.ndarray,
    E_tau: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Closed-form update of q(w_mk) = N(m_mk, S_mk) for every cluster.

    S_mk^-1 = E[tau_k] I + 2 sum_i r_{n(i)k} lambda(xi_ik) h_i h_i^T
    m_mk    = S_mk sum_i r_{n(i)k} (y_i - 1/2) h_i

    Args:
        design: Stacked observations of the region.
        r_nk: Responsibilities (n_cells, K).
        lam: lambda(xi) from the current variational parameters (n_obs, K).
        E_tau: Expected prior precision per cluster (K,).

    Returns:
        W_m: Posterior means (D, K).
        S_m: Posterior covariances (K, D, D).
        logdet: log|S_mk| per cluster (K,).
    """
    H = design.H
    D = H.shape[1]
    K = r_nk.shape[1]
    r_obs = r_nk[design.cell_idx]
    P = 2.0 * np.einsum("ik,id,ie->kde", r_obs * lam, H, H)
    P += E_tau[:, None, None] * np.eye(D)[None, :, :]
    b = H.T @ (r_obs * (design.y - 0.5)[:, None])

    W_m = np.zeros((D, K), dtype=np.float64)
    S_m = np.zeros((K, D, D), dtype=np.float64)
    logdet = np.zeros(K, dtype=np.float64)
    for k in range(K):
        S_m[k], logdet[k] = _inverse_and_logdet(P[k])
        W_m[:, k] = S_m[k] @ b[:, k]
    return W_m, S_m, logdet


def expected_log_pi(delta: np.ndarray) -> np.ndarray:
    return digamma(delta) - digamma(np.sum(delta))


def _log_dirichlet_norm(delta: np.ndarray) -> float:
    return float(gammaln(np.sum(delta)) - np.sum(gammaln(delta)))


def _gamma_log_expectations(alpha: np.ndarray, beta: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    return alpha / beta, digamma(alpha) - np.log(beta)


def evidence_lower_bound(
    ell: np.ndarray,
    r_nk: np.ndarray,
    delta: np.ndarray,
    delta_0: np.ndarray,
    quad_w: np.ndarray,
    logdet_S: np.ndarray,
    alpha: np.ndarray,
    beta: np.ndarray,
    alpha_0: float,
    beta_0: float,
    n_regions: int,
    D: int,
) -> float:
    """Evidence lower bound of the mixture of bounded logistic regressions.

    Args:
        ell: Bounded expected log-likelihood per cell and cluster (n_cells, K).
        r_nk: Responsibilities (n_cells, K).
        delta: Posterior Dirichlet parameters (K,).
        delta_0: Prior Dirichlet parameters (K,).
        quad_w: sum_m (m_mk^T m_mk + tr S_mk) per cluster (K,).
        logdet_S: log|S_mk| (n_regions, K).
        alpha, beta: Posterior Gamma parameters of tau (K,).
        alpha_0, beta_0: Prior Gamma parameters of tau.
        n_regions: Number of regions M.
        D: Basis dimension.
    """
    E_log_pi = expected_log_pi(delta)
    E_tau, E_log_tau = _gamma_log_expectations(alpha, beta)

    lb_lik = float(np.sum(r_nk * ell))
    lb_c = float(np.sum(r_nk * E_log_pi[None, :]) - np.sum(xlogy(r_nk, r_nk)))
    lb_pi = (
        _log_dirichlet_norm(delta_0)
        - _log_dirichlet_norm(delta)
        + float(np.sum((delta_0 - delta) * E_log_pi))
    )
    half_md = 0.5 * n_regions * D
    lb_w = float(
        np.sum(half_md * E_log_tau - 0.5 * E_tau * quad_w + half_md)
        + 0.5 * np.sum(logdet_S)
    )
    lb_tau = float(np.sum(
        alpha_0 * np.log(beta_0) - gammaln(alpha_0)
        + (alpha_0 - 1.0) * E_log_tau - beta_0 * E_tau
        - (alpha * np.log(beta) - gammaln(alpha) + (alpha - 1.0) * E_log_tau - beta * E_tau)
    ))
    return lb_lik + lb_c + lb_pi + lb_w + lb_tau


__all__ = [
    "RegionStats",
    "evidence_lower_bound",
    "expected_log_pi",
    "jj_lambda",
    "log_sigmoid",
    "predictor_moments",
    "region_stats",
    "sigmoid",
    "update_region_weights",
]
