"""Configuration for synthetic single-cell methylation data.

Cells are drawn from n_clusters subpopulations. In every region each cluster
has its own methylation profile with probability cluster_dissimilarity and
shares the region's baseline profile otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SynthConfig:
    """Configuration parameters for synthetic data generation."""
    n_cells: int = 200
    n_regions: int = 100
    n_clusters: int = 4
    basis_family: str = "rbf"
    basis_order: int = 4
    cpg_min: int = 20
    cpg_max: int = 50
    region_coverage: float = 1.0
    cluster_dissimilarity: float = 0.5
    weight_scale: float = 2.0
    pi_k: tuple[float, ...] | None = None
    random_seed: int = 0
    cell_prefix: str = field(default="cell", repr=False)
    region_prefix: str = field(default="region", repr=False)

    def __post_init__(self) -> None:
        if self.n_cells <= 0:
            raise ValueError("n_cells must be positive")
        if self.n_regions <= 0:
            raise ValueError("n_regions must be positive")
        if self.n_clusters <= 0:
            raise ValueError("n_clusters must be positive")
        if self.n_clusters > self.n_cells:
            raise ValueError("n_clusters cannot exceed n_cells")
        if self.cpg_min <= 0:
            raise ValueError("cpg_min must be positive")
        if self.cpg_max < self.cpg_min:
            raise ValueError("cpg_max must be at least cpg_min")
        if not 0.0 < self.region_coverage <= 1.0:
            raise ValueError("region_coverage must lie in (0, 1]")
        if not 0.0 <= self.cluster_dissimilarity <= 1.0:
            raise ValueError("cluster_dissimilarity must lie in [0, 1]")
        if self.weight_scale <= 0:
            raise ValueError("weight_scale must be positive")
        if self.pi_k is not None:
            pi_k = tuple(float(p) for p in self.pi_k)
            if len(pi_k) != self.n_clusters:
                raise ValueError("pi_k must have one entry per cluster")
            if min(pi_k) < 0 or abs(sum(pi_k) - 1.0) > 1e-8:
                raise ValueError("pi_k must be non-negative and sum to 1")
            object.__setattr__(self, "pi_k", pi_k)
