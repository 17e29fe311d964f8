import numpy as np
import pytest

from Evaluation.partition import partition_dataset, split_region
from VariationalInference.data import MethylationData


def _single_region(n_cpg):
    x = np.linspace(-1, 1, n_cpg)
    y = (np.arange(n_cpg) % 2).astype(float)
    return MethylationData(met=[[np.column_stack([x, y])]])


def test_split_counts_follow_cpg_fraction():
    data = _single_region(50)
    out = partition_dataset(
        data, data_train_prcg=0.0, region_train_prcg=1.0, cpg_train_prcg=0.4, seed=1
    )
    assert out.met[0][0].shape[0] == 20
    assert out.test[0][0].shape[0] == 30


def test_split_preserves_every_cpg(tiny_data):
    out = partition_dataset(tiny_data, data_train_prcg=0.3, region_train_prcg=0.7, seed=4)
    for n in range(tiny_data.n_cells):
        for m in range(tiny_data.n_regions):
            orig = tiny_data.met[n][m]
            parts = [p for p in (out.met[n][m], out.test[n][m]) if p is not None]
            if orig is None:
                assert not parts
                continue
            merged = np.vstack(parts)
            assert merged.shape == orig.shape
            assert np.allclose(np.sort(merged[:, 0]), np.sort(orig[:, 0]))


def test_same_seed_gives_same_split(tiny_data):
    a = partition_dataset(tiny_data, seed=7)
    b = partition_dataset(tiny_data, seed=7)
    for n in range(tiny_data.n_cells):
        for m in range(tiny_data.n_regions):
            for x, y in ((a.met[n][m], b.met[n][m]), (a.test[n][m], b.test[n][m])):
                assert (x is None) == (y is None)
                if x is not None:
                    assert np.array_equal(x, y)


def test_no_cell_loses_all_training_regions(tiny_data):
    out = partition_dataset(tiny_data, region_train_prcg=0.0, seed=2)
    assert np.all(out.coverage().sum(axis=1) >= 1)


def test_small_region_is_kept_whole():
    rng = np.random.default_rng(0)
    obs = np.array([[0.0, 1.0]])
    train, test = split_region(obs, 0.5, rng)
    assert test is None
    assert train is obs


def test_labels_and_ids_are_carried(tiny_data):
    out = partition_dataset(tiny_data, seed=0)
    assert out.cell_ids == tiny_data.cell_ids
    assert np.array_equal(out.labels, tiny_data.labels)


@pytest.mark.parametrize("name", ["data_train_prcg", "region_train_prcg", "cpg_train_prcg"])
def test_fraction_outside_unit_interval_raises(tiny_data, name):
    with pytest.raises(ValueError):
        partition_dataset(tiny_data, **{name: 1.5})


def test_repartition_keeps_every_cpg(tiny_data):
    once = partition_dataset(tiny_data, seed=1)
    twice = partition_dataset(once, seed=2)

    def total(data):
        return sum(
            obs.shape[0]
            for layout in (data.met, data.test or [])
            for cell in layout
            for obs in cell
            if obs is not None
        )

    assert total(once) == tiny_data.n_cpgs()
    assert total(twice) == tiny_data.n_cpgs()
    for n in range(tiny_data.n_cells):
        for m in range(tiny_data.n_regions):
            if tiny_data.met[n][m] is None:
                continue
            parts = [p for p in (twice.met[n][m], twice.test[n][m]) if p is not None]
            merged = np.vstack(parts)
            assert np.allclose(np.sort(merged[:, 0]), tiny_data.met[n][m][:, 0])
