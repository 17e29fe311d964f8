import numpy as np
import pytest

from Simulation.config import SynthConfig
from Simulation.simulator import generate_synthetic_data
from VariationalInference.data import MethylationData


@pytest.fixture
def separable_data():
    # Every region differs between clusters and profiles are sharp.
    cfg = SynthConfig(
        n_cells=60,
        n_regions=20,
        n_clusters=3,
        cpg_min=15,
        cpg_max=30,
        cluster_dissimilarity=1.0,
        weight_scale=5.0,
        random_seed=3,
    )
    return generate_synthetic_data(cfg)


@pytest.fixture
def tiny_data():
    rng = np.random.default_rng(0)
    met = []
    for n in range(6):
        row = []
        for m in range(3):
            if n == 0 and m == 2:
                row.append(None)
                continue
            x = np.sort(rng.uniform(-1, 1, size=8))
            y = (rng.random(8) < (0.9 if n < 3 else 0.1)).astype(float)
            row.append(np.column_stack([x, y]))
        met.append(row)
    return MethylationData(met=met, labels=np.array([0, 0, 0, 1, 1, 1]))
