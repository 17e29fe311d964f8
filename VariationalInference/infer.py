"""Variational Bayes for a mixture of basis-function logistic regressions.

Cells are clustered by their methylation profiles over M genomic regions.
Each cluster k owns, for every region m, a profile f_mk(x) = h(x)^T w_mk, and
every CpG call of a cell in cluster k is Bernoulli(sigmoid(f_mk(x))).

Generative model:
    pi ~ Dirichlet(delta_0)
    tau_k ~ Gamma(alpha_0, beta_0)
    w_mk | tau_k ~ N(0, tau_k^-1 I)
    c_n | pi ~ Categorical(pi)
    y_nmi | c_n = k ~ Bernoulli(sigmoid(h(x_nmi)^T w_mk))

The mean-field posterior q(c) q(pi) q(w) q(tau) is fitted by coordinate ascent
on the evidence lower bound, using the Jaakkola-Jordan bound for the logistic
likelihood (see likelihood.py). Every update is a closed-form maximiser, so
the bound never decreases.

Restarts are independent tasks with their own generators; the one with the
highest bound after the initial iterations is carried on to convergence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from time import perf_counter
from typing import Any

import numpy as np
from joblib import Parallel, delayed
from scipy.special import logsumexp
from sklearn.cluster import KMeans

from VariationalInference.basis import Basis
from VariationalInference.data import MethylationData, RegionDesign, build_region_designs
from VariationalInference.likelihood import (
    RegionStats,
    evidence_lower_bound,
    expected_log_pi,
    region_stats,
    sigmoid,
    update_region_weights,
)

logger = logging.getLogger(__name__)

_INIT_SMOOTHING = 1e-2
_INIT_METHODS = ("kmeans", "random")


@dataclass(frozen=True)
class MelissaConfig:
    """Configuration for variational inference.

    Attributes:
        K: Number of clusters.
        delta_0: Dirichlet concentration of the mixing proportions.
        alpha_0: Gamma shape of the weight precision prior.
        beta_0: Gamma rate of the weight precision prior.
        vb_max_iter: Maximum iterations of the selected run.
        epsilon_conv: Convergence threshold on the lower bound improvement.
        vb_init_nstart: Number of independent restarts.
        vb_init_max_iter: Iterations per restart before selection.
        init: Responsibility initialisation, "kmeans" or "random".
        is_parallel: Run restarts in parallel worker processes.
        no_cores: Worker count when parallel (None uses all cores).
        seed: Seed of the root SeedSequence.
    """
    K: int = 3
    delta_0: float = 1e-2
    alpha_0: float = 0.5
    beta_0: float = 10.0
    vb_max_iter: int = 300
    epsilon_conv: float = 1e-4
    vb_init_nstart: int = 10
    vb_init_max_iter: int = 20
    init: str = "kmeans"
    is_parallel: bool = False
    no_cores: int | None = None
    seed: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.K, bool) or int(self.K) != self.K or self.K < 1:
            raise ValueError(f"K must be a positive integer; got {self.K!r}")
        object.__setattr__(self, "K", int(self.K))
        if min(self.delta_0, self.alpha_0, self.beta_0) <= 0:
            raise ValueError("delta_0, alpha_0 and beta_0 must be positive")
        if self.vb_max_iter <= 0:
            raise ValueError("vb_max_iter must be positive")
        if self.epsilon_conv <= 0:
            raise ValueError("epsilon_conv must be positive")
        if self.vb_init_nstart <= 0:
            raise ValueError("vb_init_nstart must be positive")
        if self.vb_init_max_iter <= 0:
            raise ValueError("vb_init_max_iter must be positive")
        if self.init not in _INIT_METHODS:
            raise ValueError(f"init must be one of {_INIT_METHODS}; got {self.init!r}")
        if not isinstance(self.is_parallel, bool):
            raise ValueError("is_parallel must be boolean")
        if self.no_cores is not None and self.no_cores <= 0:
            raise ValueError("no_cores must be positive")

    def to_dict(self) -> dict[str, Any]:
        return {
            "K": self.K,
            "delta_0": self.delta_0,
            "alpha_0": self.alpha_0,
            "beta_0": self.beta_0,
            "vb_max_iter": self.vb_max_iter,
            "epsilon_conv": self.epsilon_conv,
            "vb_init_nstart": self.vb_init_nstart,
            "vb_init_max_iter": self.vb_init_max_iter,
            "init": self.init,
            "is_parallel": self.is_parallel,
            "no_cores": self.no_cores,
            "seed": self.seed,
        }


@dataclass
class MelissaResult:
    """Fitted model.

    Attributes:
        W: Posterior mean weights (n_regions, D, K).
        W_cov: Posterior weight covariances (n_regions, K, D, D).
        r_nk: Responsibilities (n_cells, K).
        pi_k: Expected mixing proportions (K,).
        delta: Posterior Dirichlet parameters (K,).
        alpha: Posterior Gamma shape of tau (K,).
        beta: Posterior Gamma rate of tau (K,).
        lb_trace: Lower bound after every iteration of the selected run.
        converged: Whether the bound improvement fell below epsilon_conv.
        n_iter: Iterations performed by the selected run.
        restart_lbs: Lower bound of every restart at selection time.
        basis: Basis used to expand CpG positions.
        config: Inference configuration.
        cell_ids: Cell identifiers.
        region_ids: Region identifiers.
        timings: Wall time per phase.
        evaluation: Metrics attached after fitting.
    """
    W: np.ndarray
    W_cov: np.ndarray
    r_nk: np.ndarray
    pi_k: np.ndarray
    delta: np.ndarray
    alpha: np.ndarray
    beta: np.ndarray
    lb_trace: list[float]
    converged: bool
    n_iter: int
    restart_lbs: list[float]
    basis: Basis
    config: MelissaConfig
    cell_ids: list[str] | None = None
    region_ids: list[str] | None = None
    timings: dict[str, float] = field(default_factory=dict)
    evaluation: dict[str, Any] = field(default_factory=dict)

    @property
    def labels(self) -> np.ndarray:
        """Hard cluster assignment (argmax of responsibilities)."""
        return np.argmax(self.r_nk, axis=1)

    @property
    def lower_bound(self) -> float:
        return float(self.lb_trace[-1]) if self.lb_trace else float("-inf")

    @property
    def K(self) -> int:
        return int(self.r_nk.shape[1])


@dataclass
class _VBState:
    """Mutable state of one VB run. Each restart owns its own copy."""
    r_nk: np.ndarray
    delta: np.ndarray
    W: np.ndarray
    W_cov: np.ndarray
    logdet_S: np.ndarray
    alpha: np.ndarray
    beta: np.ndarray
    stats: list[RegionStats]
    lb_trace: list[float] = field(default_factory=list)
    converged: bool = False

    @property
    def lower_bound(self) -> float:
        return self.lb_trace[-1] if self.lb_trace else float("-inf")


def mean_methylation_features(data: MethylationData) -> np.ndarray:
    """Per-cell per-region mean methylation, gaps filled with the region mean."""
    X = np.full((data.n_cells, data.n_regions), np.nan, dtype=np.float64)
    for n, m, obs in data.iter_observed():
        X[n, m] = float(np.mean(obs[:, 1]))
    counts = np.sum(~np.isnan(X), axis=0)
    sums = np.nansum(X, axis=0)
    region_mean = np.where(counts > 0, sums / np.maximum(counts, 1), 0.5)
    return np.where(np.isnan(X), region_mean[None, :], X)


def initial_responsibilities(
    features: np.ndarray,
    K: int,
    method: str,
    rng: np.random.Generator,
) -> np.ndarray:
    """Seed responsibilities from k-means on mean levels or from Dirichlet draws."""
    N = features.shape[0]
    if method == "random":
        return rng.dirichlet(np.ones(K), size=N)
    if K == 1:
        return np.ones((N, 1), dtype=np.float64)
    km = KMeans(n_clusters=K, n_init=10, random_state=int(rng.integers(0, 2**31 - 1)))
    assign = km.fit_predict(features)
    r = np.full((N, K), _INIT_SMOOTHING / K, dtype=np.float64)
    r[np.arange(N), assign] += 1.0 - _INIT_SMOOTHING
    return r


def _prior_state(
    designs: list[RegionDesign],
    r_nk: np.ndarray,
    config: MelissaConfig,
    D: int,
) -> _VBState:
    """State with q(w) equal to the prior, used before the first M-step."""
    K = config.K
    M = len(designs)
    alpha = np.full(K, config.alpha_0, dtype=np.float64)
    beta = np.full(K, config.beta_0, dtype=np.float64)
    W = np.zeros((M, D, K), dtype=np.float64)
    prior_cov = (beta / alpha)[:, None, None] * np.eye(D)[None, :, :]
    W_cov = np.broadcast_to(prior_cov, (M, K, D, D)).copy()
    logdet_S = np.tile(D * np.log(beta / alpha), (M, 1))
    stats = [region_stats(design, W[m], W_cov[m]) for m, design in enumerate(designs)]
    return _VBState(
        r_nk=r_nk,
        delta=np.full(K, config.delta_0, dtype=np.float64) + r_nk.sum(axis=0),
        W=W,
        W_cov=W_cov,
        logdet_S=logdet_S,
        alpha=alpha,
        beta=beta,
        stats=stats,
    )


def _vb_iterations(
    state: _VBState,
    designs: list[RegionDesign],
    config: MelissaConfig,
    n_iter: int,
) -> _VBState:
    """Run up to n_iter coordinate-ascent sweeps in place and return the state."""
    K = config.K
    M = len(designs)
    D = state.W.shape[1]
    delta_0 = np.full(K, config.delta_0, dtype=np.float64)

    for _ in range(n_iter):
        # M-step: mixing proportions, weights, weight precision
        state.delta = delta_0 + state.r_nk.sum(axis=0)
        E_tau = state.alpha / state.beta
        for m, design in enumerate(designs):
            W_m, S_m, logdet = update_region_weights(
                design, state.r_nk, state.stats[m].lam, E_tau
            )
            state.W[m] = W_m
            state.W_cov[m] = S_m
            state.logdet_S[m] = logdet
        quad_w = (
            np.einsum("mdk,mdk->k", state.W, state.W)
            + np.einsum("mkdd->k", state.W_cov)
        )
        state.alpha = np.full(K, config.alpha_0 + 0.5 * M * D, dtype=np.float64)
        state.beta = config.beta_0 + 0.5 * quad_w

        # Variational parameters of the logistic bound
        state.stats = [
            region_stats(design, state.W[m], state.W_cov[m])
            for m, design in enumerate(designs)
        ]
        ell = np.zeros_like(state.r_nk)
        for stats in state.stats:
            ell += stats.ell

        # E-step: responsibilities
        log_rho = expected_log_pi(state.delta)[None, :] + ell
        state.r_nk = np.exp(log_rho - logsumexp(log_rho, axis=1, keepdims=True))

        lb = evidence_lower_bound(
            ell=ell,
            r_nk=state.r_nk,
            delta=state.delta,
            delta_0=delta_0,
            quad_w=quad_w,
            logdet_S=state.logdet_S,
            alpha=state.alpha,
            beta=state.beta,
            alpha_0=config.alpha_0,
            beta_0=config.beta_0,
            n_regions=M,
            D=D,
        )
        prev = state.lower_bound
        state.lb_trace.append(lb)
        if prev > float("-inf"):
            if lb < prev - 1e-6 * max(1.0, abs(prev)):
                logger.warning("Lower bound decreased by %.4g", prev - lb)
            elif lb - prev < config.epsilon_conv:
                state.converged = True
                break
    return state


def _run_restart(
    designs: list[RegionDesign],
    features: np.ndarray,
    config: MelissaConfig,
    D: int,
    seed_seq: np.random.SeedSequence,
    n_iter: int,
) -> _VBState:
    rng = np.random.default_rng(seed_seq)
    r_nk = initial_responsibilities(features, config.K, config.init, rng)
    state = _prior_state(designs, r_nk, config, D)
    return _vb_iterations(state, designs, config, n_iter)


def run_melissa(
    data: MethylationData,
    basis: Basis | None = None,
    config: MelissaConfig | None = None,
) -> MelissaResult:
    """Cluster cells and infer per-cluster methylation profiles.

    Only data.met is used; a held-out test slot is never read.

    Args:
        data: Training observations.
        basis: Basis for the profiles (default rbf of order 4).
        config: Inference configuration.

    Returns:
        MelissaResult with responsibilities, mixing proportions and weights.
    """
    if basis is None:
        basis = Basis()
    if config is None:
        config = MelissaConfig()
    if config.K > data.n_cells:
        raise ValueError(f"K ({config.K}) cannot exceed the number of cells ({data.n_cells})")
    if data.n_cpgs() == 0:
        raise ValueError("training data contains no CpG observations")

    t_start = perf_counter()
    designs = build_region_designs(data, basis)
    features = mean_methylation_features(data)
    D = basis.dimension
    t_design = perf_counter()

    n_init = min(config.vb_init_max_iter, config.vb_max_iter)
    children = np.random.SeedSequence(config.seed).spawn(config.vb_init_nstart)
    n_jobs = (config.no_cores or -1) if config.is_parallel else 1
    logger.info(
        "Running %d restart(s) of %d iteration(s) with K=%d on %d cells x %d regions",
        config.vb_init_nstart, n_init, config.K, data.n_cells, data.n_regions,
    )
    states = Parallel(n_jobs=n_jobs)(
        delayed(_run_restart)(designs, features, config, D, seed_seq, n_init)
        for seed_seq in children
    )
    restart_lbs = [s.lower_bound for s in states]
    best = int(np.argmax(restart_lbs))
    state = states[best]
    logger.info("Selected restart %d with lower bound %.4f", best, state.lower_bound)
    t_init = perf_counter()

    remaining = config.vb_max_iter - len(state.lb_trace)
    if not state.converged and remaining > 0:
        state = _vb_iterations(state, designs, config, remaining)
    if state.converged:
        logger.info("Converged after %d iterations (lower bound %.4f)", len(state.lb_trace), state.lower_bound)
    else:
        logger.info(
            "Did not converge within %d iterations; returning lower bound %.4f",
            config.vb_max_iter, state.lower_bound,
        )
    t_end = perf_counter()

    return MelissaResult(
        W=state.W,
        W_cov=state.W_cov,
        r_nk=state.r_nk,
        pi_k=state.delta / np.sum(state.delta),
        delta=state.delta,
        alpha=state.alpha,
        beta=state.beta,
        lb_trace=list(state.lb_trace),
        converged=bool(state.converged),
        n_iter=len(state.lb_trace),
        restart_lbs=[float(lb) for lb in restart_lbs],
        basis=basis,
        config=config,
        cell_ids=list(data.cell_ids) if data.cell_ids is not None else None,
        region_ids=list(data.region_ids) if data.region_ids is not None else None,
        timings={
            "design_seconds": t_design - t_start,
            "init_seconds": t_init - t_design,
            "vb_seconds": t_end - t_init,
        },
    )


def predict_profiles(
    result: MelissaResult,
    x: np.ndarray | None = None,
    n_points: int = 50,
) -> tuple[np.ndarray, np.ndarray]:
    """Evaluate every cluster's methylation profile on a grid of positions.

    Returns:
        x: Positions (n_points,).
        profiles: Methylation probabilities (n_regions, n_points, K).
    """
    if x is None:
        x = np.linspace(-1.0, 1.0, n_points)
    H = result.basis.design_matrix(x)
    profiles = sigmoid(np.einsum("pd,mdk->mpk", H, result.W))
    return np.asarray(x, dtype=np.float64), profiles


__all__ = [
    "MelissaConfig",
    "MelissaResult",
    "initial_responsibilities",
    "mean_methylation_features",
    "predict_profiles",
    "run_melissa",
]
