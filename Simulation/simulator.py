"""Synthetic single-cell methylation data from a mixture of profiles.

For every region m a baseline weight vector w_m ~ N(0, s^2 I) is drawn on the
chosen basis. Cluster k uses its own draw w_mk with probability
cluster_dissimilarity and w_m otherwise. A cell of cluster k covering region m
gets a random number of CpGs at uniform positions in [-1, 1] with calls

    y ~ Bernoulli(sigmoid(h(x)^T w_mk))
"""

from __future__ import annotations

import logging

import numpy as np

from Simulation.config import SynthConfig
from VariationalInference.basis import Basis
from VariationalInference.data import MethylationData, RegionObs
from VariationalInference.likelihood import sigmoid

logger = logging.getLogger(__name__)


class MethylationSimulator:
    """Draws cluster profiles, cell labels and CpG calls."""

    def __init__(self, config: SynthConfig) -> None:
        self.config = config
        self.basis = Basis(family=config.basis_family, order=config.basis_order)
        if config.pi_k is None:
            self.pi_k = np.full(config.n_clusters, 1.0 / config.n_clusters)
        else:
            self.pi_k = np.asarray(config.pi_k, dtype=np.float64)

    def _draw_weights(self, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
        """Return weights (n_regions, D, K) and the (n_regions, K) dissimilarity mask."""
        cfg = self.config
        D = self.basis.dimension
        base = rng.normal(0.0, cfg.weight_scale, size=(cfg.n_regions, D))
        own = rng.normal(0.0, cfg.weight_scale, size=(cfg.n_regions, D, cfg.n_clusters))
        differs = rng.random((cfg.n_regions, cfg.n_clusters)) < cfg.cluster_dissimilarity
        W = np.where(differs[:, None, :], own, base[:, :, None])
        return W, differs

    def _draw_labels(self, rng: np.random.Generator) -> np.ndarray:
        """Draw labels, making sure every cluster with pi_k > 0 has a cell."""
        cfg = self.config
        labels = rng.choice(cfg.n_clusters, size=cfg.n_cells, p=self.pi_k)
        missing = np.setdiff1d(np.flatnonzero(self.pi_k > 0), labels)
        if missing.size:
            slots = rng.choice(cfg.n_cells, size=missing.size, replace=False)
            labels[slots] = missing
        return labels

    def _draw_region(
        self,
        rng: np.random.Generator,
        w: np.ndarray,
    ) -> np.ndarray:
        cfg = self.config
        n_cpg = int(rng.integers(cfg.cpg_min, cfg.cpg_max + 1))
        x = np.sort(rng.uniform(-1.0, 1.0, size=n_cpg))
        p = sigmoid(self.basis.design_matrix(x) @ w)
        y = (rng.random(n_cpg) < p).astype(np.float64)
        return np.column_stack([x, y])

    def run(self) -> MethylationData:
        """Generate a dataset; fully determined by random_seed."""
        cfg = self.config
        rng = np.random.default_rng(cfg.random_seed)
        W, differs = self._draw_weights(rng)
        labels = self._draw_labels(rng)

        met: list[list[RegionObs]] = []
        for n in range(cfg.n_cells):
            covered = rng.random(cfg.n_regions) < cfg.region_coverage
            if not np.any(covered):
                covered[int(rng.integers(0, cfg.n_regions))] = True
            row: list[RegionObs] = []
            for m in range(cfg.n_regions):
                row.append(self._draw_region(rng, W[m, :, labels[n]]) if covered[m] else None)
            met.append(row)

        logger.info(
            "Simulated %d cells x %d regions from %d clusters",
            cfg.n_cells, cfg.n_regions, cfg.n_clusters,
        )
        return MethylationData(
            met=met,
            cell_ids=[f"{cfg.cell_prefix}_{n}" for n in range(cfg.n_cells)],
            region_ids=[f"{cfg.region_prefix}_{m}" for m in range(cfg.n_regions)],
            labels=labels,
            extra={
                "true_weights": W,
                "differs": differs,
                "pi_k": self.pi_k.copy(),
                "basis": self.basis.to_dict(),
            },
        )


def generate_synthetic_data(config: SynthConfig | None = None, **kwargs) -> MethylationData:
    """Build a SynthConfig from keyword arguments if needed and simulate."""
    if config is None:
        config = SynthConfig(**kwargs)
    elif kwargs:
        raise ValueError("Pass either a SynthConfig or keyword arguments, not both")
    return MethylationSimulator(config).run()
