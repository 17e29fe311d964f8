import numpy as np
import pytest

from VariationalInference.basis import Basis
from VariationalInference.data import MethylationData, build_region_designs


def test_dataset_shapes_and_coverage(tiny_data):
    assert tiny_data.n_cells == 6
    assert tiny_data.n_regions == 3
    assert tiny_data.n_cpgs() == 17 * 8
    cov = tiny_data.coverage()
    assert not cov[0, 2]
    assert cov.sum() == 17
    assert tiny_data.cell_ids[0] == "cell_0"


def test_region_designs_stack_cells(tiny_data):
    designs = build_region_designs(tiny_data, Basis(order=3))
    assert len(designs) == 3
    assert designs[2].H.shape == (5 * 8, 4)
    assert designs[2].assign.shape == (6, 40)
    per_cell = np.asarray(designs[2].assign.sum(axis=1)).ravel()
    assert per_cell[0] == 0
    assert np.all(per_cell[1:] == 8)


@pytest.mark.parametrize(
    "obs",
    [
        np.array([[0.0, 0.5]]),
        np.array([[1.5, 1.0]]),
        np.array([0.0, 1.0]),
    ],
)
def test_invalid_observations_raise(obs):
    with pytest.raises(ValueError):
        MethylationData(met=[[obs]])


def test_ragged_layout_raises():
    obs = np.array([[0.0, 1.0]])
    with pytest.raises(ValueError):
        MethylationData(met=[[obs, obs], [obs]])
