"""Output generation for fitted models.

This module provides functions to:
1. Save the fitted model (profiles, responsibilities, bound trace) to JSON
2. Save the weight tensors to NPZ
3. Render a plain-text summary of the fit and its evaluation metrics
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import numpy as np

from VariationalInference.infer import MelissaResult


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return _jsonable(value.tolist())
    if isinstance(value, np.generic):
        value = value.item()
    # NaN is not valid JSON
    if isinstance(value, float) and np.isnan(value):
        return None
    return value


def save_inference_results(
    result: MelissaResult,
    out_path: Path | str,
    extra_params: dict[str, Any] | None = None,
) -> Path:
    """Save a fitted model to a JSON file.

    Creates a JSON file containing:
    - Global parameters: K, basis, mixing proportions, Gamma posteriors
    - Per-cell responsibilities and hard assignments
    - Per-region, per-cluster posterior mean weights
    - Lower bound trace, restart bounds and evaluation metrics
    """
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    n_cells, K = result.r_nk.shape
    cell_ids = result.cell_ids or [str(n) for n in range(n_cells)]
    region_ids = result.region_ids or [str(m) for m in range(result.W.shape[0])]
    labels = result.labels

    cells = [
        {
            "cell_id": cell_ids[n],
            "cluster": int(labels[n]),
            "responsibilities": result.r_nk[n].tolist(),
        }
        for n in range(n_cells)
    ]
    regions = [
        {
            "region_id": region_ids[m],
            "weights": result.W[m].T.tolist(),
        }
        for m in range(result.W.shape[0])
    ]

    payload = {
        "K": int(K),
        "basis": result.basis.to_dict(),
        "config": result.config.to_dict(),
        "pi_k": result.pi_k.tolist(),
        "delta": result.delta.tolist(),
        "alpha": result.alpha.tolist(),
        "beta": result.beta.tolist(),
        "converged": bool(result.converged),
        "n_iter": int(result.n_iter),
        "lower_bound": result.lower_bound,
        "lb_trace": [float(v) for v in result.lb_trace],
        "restart_lbs": [float(v) for v in result.restart_lbs],
        "timings": result.timings,
        "cells": cells,
        "regions": regions,
        "evaluation": _jsonable(result.evaluation),
    }
    if extra_params:
        payload["extra"] = _jsonable(extra_params)

    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    return out_path


def save_weights_npz(result: MelissaResult, out_path: Path | str) -> Path:
    out_path = Path(out_path)
    if out_path.suffix != ".npz":
        out_path = out_path.with_suffix(".npz")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    np.savez(out_path, W=result.W, W_cov=result.W_cov, r_nk=result.r_nk, pi_k=result.pi_k)
    return out_path


def generate_report(
    result: MelissaResult,
    output_path: Path | str | None = None,
) -> str:
    """Generate a text report of the fit and any attached metrics."""
    n_cells, K = result.r_nk.shape
    sizes = np.bincount(result.labels, minlength=K)
    lines = [
        "=" * 60,
        "Methylation clustering and imputation",
        "=" * 60,
        "",
        f"Cells: {n_cells}   Regions: {result.W.shape[0]}   K: {K}",
        f"Basis: {result.basis.family} (order {result.basis.order})",
        f"Iterations: {result.n_iter}   Converged: {result.converged}",
        f"Lower bound: {result.lower_bound:.4f}",
        "",
        "CLUSTERS",
        "-" * 30,
    ]
    for k in range(K):
        lines.append(f"  Cluster {k}: pi={result.pi_k[k]:.4f}  cells={int(sizes[k])}")

    clustering = result.evaluation.get("clustering")
    if clustering:
        lines += [
            "",
            "CLUSTERING PERFORMANCE",
            "-" * 30,
            f"  ARI:   {clustering['ari']:.4f}",
            f"  Error: {clustering['error']:.4f}",
            "  Matched: " + ", ".join(
                f"{k}->{v}" for k, v in sorted(clustering.get("mapping", {}).items())
            ),
        ]
    imputation = result.evaluation.get("imputation")
    if imputation:
        lines += [
            "",
            "IMPUTATION PERFORMANCE",
            "-" * 30,
            f"  Test CpGs: {imputation['n_test']}",
            f"  AUC:       {imputation['auc']:.4f}",
            f"  F-measure: {imputation['f_measure']:.4f}",
        ]
    lines.append("=" * 60)

    report = "\n".join(lines)

    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(report)

    return report
