"""Container for per-cell, per-region CpG methylation observations.

met[n][m] is either None (cell n has no coverage in region m) or a float
array of shape (n_cpg, 2) holding (relative position, methylation call).
Positions are normalised to [-1, 1] and calls are binary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional

import numpy as np
from scipy import sparse

from VariationalInference.basis import Basis


RegionObs = Optional[np.ndarray]


def validate_region(obs: np.ndarray, where: str = "") -> np.ndarray:
    """Coerce one region's observations to a checked (n_cpg, 2) float array."""
    arr = np.asarray(obs, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"region observations must have shape (n_cpg, 2){where}; got {arr.shape}")
    pos = arr[:, 0]
    if np.any(~np.isfinite(pos)) or np.any(np.abs(pos) > 1.0):
        raise ValueError(f"CpG positions must lie in [-1, 1]{where}")
    if np.any((arr[:, 1] != 0.0) & (arr[:, 1] != 1.0)):
        raise ValueError(f"methylation calls must be 0 or 1{where}")
    return arr


@dataclass
class MethylationData:
    """Single-cell methylation dataset.

    Attributes:
        met: Observations used for training, indexed [cell][region].
        cell_ids: Cell identifiers (n_cells,).
        region_ids: Region identifiers (n_regions,).
        labels: Optional ground-truth cluster label per cell.
        test: Optional held-out observations with the same layout as met.
        extra: Free-form metadata (e.g. true weights of synthetic data).
    """
    met: list[list[RegionObs]]
    cell_ids: list[str] | None = None
    region_ids: list[str] | None = None
    labels: np.ndarray | None = None
    test: list[list[RegionObs]] | None = None
    extra: dict = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if len(self.met) == 0:
            raise ValueError("met must contain at least one cell")
        n_regions = len(self.met[0])
        if n_regions == 0:
            raise ValueError("met must contain at least one region")
        self.met = self._check_layout(self.met, n_regions, "met")
        if self.test is not None:
            if len(self.test) != len(self.met):
                raise ValueError("test must have the same number of cells as met")
            self.test = self._check_layout(self.test, n_regions, "test")
        if self.cell_ids is None:
            self.cell_ids = [f"cell_{n}" for n in range(self.n_cells)]
        if self.region_ids is None:
            self.region_ids = [f"region_{m}" for m in range(self.n_regions)]
        if len(self.cell_ids) != self.n_cells:
            raise ValueError("cell_ids length must match the number of cells")
        if len(self.region_ids) != self.n_regions:
            raise ValueError("region_ids length must match the number of regions")
        if self.labels is not None:
            self.labels = np.asarray(self.labels)
            if self.labels.shape[0] != self.n_cells:
                raise ValueError("labels length must match the number of cells")

    @staticmethod
    def _check_layout(
        met: list[list[RegionObs]],
        n_regions: int,
        name: str,
    ) -> list[list[RegionObs]]:
        checked: list[list[RegionObs]] = []
        for n, cell in enumerate(met):
            if len(cell) != n_regions:
                raise ValueError(f"{name}[{n}] has {len(cell)} regions; expected {n_regions}")
            row: list[RegionObs] = []
            for m, obs in enumerate(cell):
                if obs is None or len(obs) == 0:
                    row.append(None)
                else:
                    row.append(validate_region(obs, where=f" in {name}[{n}][{m}]"))
            checked.append(row)
        return checked

    @property
    def n_cells(self) -> int:
        return len(self.met)

    @property
    def n_regions(self) -> int:
        return len(self.met[0])

    def coverage(self) -> np.ndarray:
        """Boolean (n_cells, n_regions) mask of covered regions in met."""
        return np.array(
            [[obs is not None for obs in cell] for cell in self.met], dtype=bool
        )

    def n_cpgs(self) -> int:
        return int(sum(obs.shape[0] for cell in self.met for obs in cell if obs is not None))

    def iter_observed(self) -> Iterator[tuple[int, int, np.ndarray]]:
        for n, cell in enumerate(self.met):
            for m, obs in enumerate(cell):
                if obs is not None:
                    yield n, m, obs


@dataclass
class RegionDesign:
    """All training observations of one region stacked across cells.

    H is the (n_obs, D) design matrix, y the calls and cell_idx the owning cell
    of each row. assign is a sparse (n_cells, n_obs) indicator used to sum
    per-observation terms into per-cell totals.
    """
    H: np.ndarray
    y: np.ndarray
    cell_idx: np.ndarray
    assign: sparse.csr_matrix


def build_region_designs(data: MethylationData, basis: Basis) -> list[RegionDesign]:
    """Precompute the basis expansion of every region once."""
    designs: list[RegionDesign] = []
    D = basis.dimension
    for m in range(data.n_regions):
        blocks = []
        cells = []
        for n in range(data.n_cells):
            obs = data.met[n][m]
            if obs is None:
                continue
            blocks.append(obs)
            cells.append(np.full(obs.shape[0], n, dtype=np.int64))
        if blocks:
            stacked = np.vstack(blocks)
            cell_idx = np.concatenate(cells)
            H = basis.design_matrix(stacked[:, 0])
            y = stacked[:, 1]
        else:
            cell_idx = np.empty(0, dtype=np.int64)
            H = np.empty((0, D), dtype=np.float64)
            y = np.empty(0, dtype=np.float64)
        n_obs = cell_idx.size
        assign = sparse.csr_matrix(
            (np.ones(n_obs, dtype=np.float64), (cell_idx, np.arange(n_obs))),
            shape=(data.n_cells, n_obs),
        )
        designs.append(RegionDesign(H=H, y=y, cell_idx=cell_idx, assign=assign))
    return designs


__all__ = [
    "MethylationData",
    "RegionDesign",
    "RegionObs",
    "build_region_designs",
    "validate_region",
]
