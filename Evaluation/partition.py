"""Held-out partitioning of methylation data for imputation benchmarks.

Partitioning is done per region within each cell; a cell is never held out as
a whole. For every cell:

1. A fraction region_train_prcg of its regions is selected for training.
   Unselected regions move entirely to the test slot.
2. A fraction data_train_prcg of the selected regions is kept whole in the
   training slot.
3. The CpGs of the remaining selected regions are split: a fraction
   cpg_train_prcg stays in training, the rest goes to test.

Regions whose split would leave either side empty are kept whole in training.
An existing test slot is merged back into training before splitting, so
partitioning a partitioned dataset never drops CpGs.
"""

from __future__ import annotations

import logging

import numpy as np

from VariationalInference.data import MethylationData, RegionObs

logger = logging.getLogger(__name__)


def _check_fraction(name: str, value: float) -> float:
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must lie in [0, 1]; got {value}")
    return value


def _merge_slots(data: MethylationData) -> list[list[RegionObs]]:
    """Training observations with any held-out CpGs merged back, sorted by position."""
    if data.test is None:
        return data.met
    merged: list[list[RegionObs]] = []
    n_restored = 0
    for met_row, test_row in zip(data.met, data.test):
        row: list[RegionObs] = []
        for train_obs, test_obs in zip(met_row, test_row):
            if test_obs is None:
                row.append(train_obs)
                continue
            n_restored += test_obs.shape[0]
            obs = test_obs if train_obs is None else np.vstack([train_obs, test_obs])
            row.append(obs[np.argsort(obs[:, 0], kind="stable")])
        merged.append(row)
    logger.info("Merged %d held-out CpGs back into training before partitioning", n_restored)
    return merged


def split_region(
    obs: np.ndarray,
    cpg_train_prcg: float,
    rng: np.random.Generator,
) -> tuple[RegionObs, RegionObs]:
    """Split one region's CpGs into (train, test).

    Returns (obs, None) when the split would empty either side.
    """
    n_cpg = obs.shape[0]
    n_train = int(round(cpg_train_prcg * n_cpg))
    if n_train == 0 or n_train == n_cpg:
        return obs, None
    idx = np.sort(rng.choice(n_cpg, size=n_train, replace=False))
    mask = np.zeros(n_cpg, dtype=bool)
    mask[idx] = True
    return obs[mask], obs[~mask]


def partition_dataset(
    data: MethylationData,
    data_train_prcg: float = 0.5,
    region_train_prcg: float = 0.95,
    cpg_train_prcg: float = 0.5,
    is_synth: bool = False,
    seed: int | np.random.Generator | None = 0,
) -> MethylationData:
    """Split the observations of every cell into training and test slots.

    Args:
        data: Input dataset; it is not modified.
        data_train_prcg: Fraction of selected regions kept whole for training.
        region_train_prcg: Fraction of regions selected for training.
        cpg_train_prcg: Fraction of CpGs kept for training in split regions.
        is_synth: Draw regions from all regions rather than only covered ones,
            as for synthetic data with full coverage.
        seed: Seed or generator; identical seeds give identical splits.

    Returns:
        New MethylationData with training data in met and held-out data in test.
    """
    data_train_prcg = _check_fraction("data_train_prcg", data_train_prcg)
    region_train_prcg = _check_fraction("region_train_prcg", region_train_prcg)
    cpg_train_prcg = _check_fraction("cpg_train_prcg", cpg_train_prcg)
    rng = seed if isinstance(seed, np.random.Generator) else np.random.default_rng(seed)

    M = data.n_regions
    train: list[list[RegionObs]] = []
    test: list[list[RegionObs]] = []
    n_kept_whole = 0
    n_split = 0
    n_unsplittable = 0

    for n, cell in enumerate(_merge_slots(data)):
        covered = np.array([m for m, obs in enumerate(cell) if obs is not None], dtype=np.int64)
        train_row: list[RegionObs] = [None] * M
        test_row: list[RegionObs] = [None] * M
        if covered.size == 0:
            train.append(train_row)
            test.append(test_row)
            continue
        if covered.size < 10 and not is_synth:
            logger.debug("Cell %s has low region coverage (%d regions)", data.cell_ids[n], covered.size)

        candidates = np.arange(M) if is_synth else covered
        n_select = int(round(region_train_prcg * candidates.size))
        selected = np.sort(rng.choice(candidates, size=n_select, replace=False))
        selected = selected[np.isin(selected, covered)]
        if selected.size == 0:
            selected = np.array([rng.choice(covered)], dtype=np.int64)

        for m in np.setdiff1d(covered, selected):
            test_row[m] = cell[m]

        n_whole = int(round(data_train_prcg * selected.size))
        whole = set(rng.choice(selected, size=n_whole, replace=False).tolist())
        for m in selected:
            obs = cell[m]
            if m in whole:
                train_row[m] = obs
                n_kept_whole += 1
                continue
            train_row[m], test_row[m] = split_region(obs, cpg_train_prcg, rng)
            if test_row[m] is None:
                n_unsplittable += 1
            else:
                n_split += 1

        train.append(train_row)
        test.append(test_row)

    if n_unsplittable:
        logger.debug("%d region(s) too small to split were kept whole in training", n_unsplittable)
    logger.info(
        "Partitioned %d cells: %d regions kept whole, %d split, %d too small to split",
        data.n_cells, n_kept_whole, n_split, n_unsplittable,
    )
    return MethylationData(
        met=train,
        cell_ids=list(data.cell_ids),
        region_ids=list(data.region_ids),
        labels=None if data.labels is None else data.labels.copy(),
        test=test,
        extra=dict(data.extra),
    )


__all__ = ["partition_dataset", "split_region"]
