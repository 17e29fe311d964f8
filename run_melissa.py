from __future__ import annotations

import argparse
import logging
import pathlib
from typing import Sequence

from Evaluation.clustering import eval_cluster_performance
from Evaluation.imputation import eval_imputation_performance, impute_test_met
from Evaluation.partition import partition_dataset
from Simulation.simulator import generate_synthetic_data
from VariationalInference.infer import run_melissa
from VariationalInference.io import (
    RunConfig,
    load_labels,
    load_methylation_csv,
    load_run_config,
    save_ids,
    save_methylation_csv,
)
from VariationalInference.outputs import generate_report, save_inference_results, save_weights_npz


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Cluster single cells and impute CpG methylation with variational Bayes."
    )
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to run YAML config (default: config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    return parser.parse_args(argv)


def _load_data(run_config: RunConfig, out_dir: pathlib.Path):
    if run_config.synth is not None:
        data = generate_synthetic_data(run_config.synth)
        synth_path = save_methylation_csv(data, out_dir / "synthetic_met.csv")
        save_ids(out_dir / "synthetic_labels.txt", data.labels.tolist())
        print(f"Wrote synthetic data to {synth_path}")
    else:
        data = load_methylation_csv(run_config.data_path)
    if run_config.labels_path is not None:
        data.labels = load_labels(run_config.labels_path, data.cell_ids)
    return data


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    run_config = load_run_config(args.config)
    out_dir = pathlib.Path(run_config.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    data = _load_data(run_config, out_dir)
    if run_config.partition is not None:
        settings = run_config.partition
        data = partition_dataset(
            data,
            data_train_prcg=settings.data_train_prcg,
            region_train_prcg=settings.region_train_prcg,
            cpg_train_prcg=settings.cpg_train_prcg,
            is_synth=settings.is_synth,
            seed=settings.seed,
        )

    result = run_melissa(data, run_config.basis, run_config.inference)

    if data.labels is not None:
        eval_cluster_performance(result, data.labels)
    if data.test is not None:
        imputation = impute_test_met(result, data, use_mixture=run_config.use_mixture)
        eval_imputation_performance(result, imputation, threshold=run_config.threshold)

    json_path = save_inference_results(result, out_dir / "melissa_result.json")
    npz_path = save_weights_npz(result, out_dir / "melissa_weights.npz")
    report = generate_report(result, out_dir / "melissa_report.txt")
    print(report)
    print(f"Wrote model to {json_path}")
    print(f"Wrote weights to {npz_path}")


if __name__ == "__main__":
    main()
