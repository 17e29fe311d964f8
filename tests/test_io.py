import json

import numpy as np
import pytest

from Evaluation.partition import partition_dataset
from VariationalInference.basis import Basis
from VariationalInference.infer import MelissaConfig, run_melissa
from VariationalInference.io import (
    load_labels,
    load_methylation_csv,
    load_run_config,
    save_methylation_csv,
)
from VariationalInference.outputs import generate_report, save_inference_results, save_weights_npz


def test_csv_roundtrip_keeps_train_and_test(tiny_data, tmp_path):
    data = partition_dataset(tiny_data, seed=3)
    path = save_methylation_csv(data, tmp_path / "met.csv")
    loaded = load_methylation_csv(path, region_ids=data.region_ids)
    assert loaded.cell_ids == data.cell_ids
    assert loaded.region_ids == data.region_ids
    assert np.array_equal(loaded.coverage(), data.coverage())
    for n in range(data.n_cells):
        for m in range(data.n_regions):
            for a, b in ((loaded.met[n][m], data.met[n][m]), (loaded.test[n][m], data.test[n][m])):
                assert (a is None) == (b is None)
                if a is not None:
                    assert np.allclose(a, b)


def test_csv_missing_column_raises(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("cell_id,region_id,met\nc1,r1,1\n")
    with pytest.raises(ValueError):
        load_methylation_csv(path)


def test_csv_rows_are_grouped_and_sorted(tmp_path):
    path = tmp_path / "met.csv"
    path.write_text(
        "cell_id,region_id,position,met\n"
        "c1,r1,0.5,1\n"
        "c2,r2,-0.2,0\n"
        "c1,r1,-0.5,0\n"
    )
    data = load_methylation_csv(path)
    assert data.cell_ids == ["c1", "c2"]
    assert data.region_ids == ["r1", "r2"]
    assert np.allclose(data.met[0][0], [[-0.5, 0.0], [0.5, 1.0]])
    assert data.met[0][1] is None
    assert data.test is None


def test_labels_csv_follows_cell_order(tmp_path):
    path = tmp_path / "labels.csv"
    path.write_text("cell_id,label\nb,T\na,B\n")
    codes = load_labels(path, ["a", "b"])
    assert codes.tolist() == [0, 1]


def test_run_config_from_yaml(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text(
        "out_dir: results\n"
        "synth:\n  n_cells: 10\n  n_regions: 3\n  n_clusters: 2\n"
        "basis:\n  family: polynomial\n  order: 2\n"
        "inference:\n  K: 2\n  vb_init_nstart: 1\n"
        "partition:\n  cpg_train_prcg: 0.4\n"
        "impute:\n  use_mixture: true\n"
    )
    cfg = load_run_config(path)
    assert cfg.out_dir == str((tmp_path / "results").resolve())
    assert cfg.synth.n_cells == 10
    assert cfg.basis.family == "polynomial"
    assert cfg.inference.K == 2
    assert cfg.partition.cpg_train_prcg == pytest.approx(0.4)
    assert cfg.use_mixture is True
    assert cfg.data_path is None


def test_run_config_requires_one_data_source(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text("out_dir: results\n")
    with pytest.raises(ValueError):
        load_run_config(path)


def test_outputs_are_written(tiny_data, tmp_path):
    result = run_melissa(tiny_data, Basis(order=2), MelissaConfig(K=2, vb_init_nstart=1))
    json_path = save_inference_results(result, tmp_path / "model.json", extra_params={"run": 1})
    payload = json.loads(json_path.read_text())
    assert payload["K"] == 2
    assert len(payload["cells"]) == 6
    assert payload["extra"] == {"run": 1}

    npz_path = save_weights_npz(result, tmp_path / "weights")
    assert npz_path.suffix == ".npz"
    assert np.load(npz_path)["W"].shape == (3, 3, 2)

    report = generate_report(result, tmp_path / "report.txt")
    assert "Cluster 1" in report
    assert (tmp_path / "report.txt").read_text() == report


def test_undefined_auc_is_written_as_null(tiny_data, tmp_path):
    result = run_melissa(tiny_data, Basis(order=2), MelissaConfig(K=2, vb_init_nstart=1))
    result.evaluation["imputation"] = {"auc": float("nan"), "f_measure": np.float64(0.5), "n_test": 3}
    text = save_inference_results(result, tmp_path / "model.json").read_text()
    assert "NaN" not in text
    payload = json.loads(text)
    assert payload["evaluation"]["imputation"]["auc"] is None
    assert payload["evaluation"]["imputation"]["f_measure"] == 0.5
