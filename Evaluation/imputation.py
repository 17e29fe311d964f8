"""Imputation of held-out CpGs and imputation quality metrics.

A held-out CpG of cell n in region m at position x is predicted as

    p = sigmoid(h(x)^T W[m, :, k_n]),   k_n = argmax_k r_nk

or, with use_mixture, as the responsibility-weighted average over clusters.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
import logging

import numpy as np
from sklearn.metrics import f1_score, precision_recall_curve, roc_auc_score, roc_curve

from VariationalInference.data import MethylationData, RegionObs
from VariationalInference.infer import MelissaResult
from VariationalInference.likelihood import sigmoid

logger = logging.getLogger(__name__)


@dataclass
class ImputationResult:
    """Predicted and observed calls for every held-out CpG.

    Attributes:
        act: Observed methylation calls (n_test,).
        pred: Predicted methylation probabilities (n_test,).
        cell_idx: Cell of each CpG (n_test,).
        region_idx: Region of each CpG (n_test,).
    """
    act: np.ndarray
    pred: np.ndarray
    cell_idx: np.ndarray
    region_idx: np.ndarray


@dataclass
class ImputationMetrics:
    """Imputation performance over all held-out CpGs."""
    auc: float
    f_measure: float
    threshold: float
    n_test: int
    roc_fpr: list[float]
    roc_tpr: list[float]
    roc_thresholds: list[float]
    pr_precision: list[float]
    pr_recall: list[float]
    pr_thresholds: list[float]

    def to_dict(self) -> dict:
        return asdict(self)


def impute_test_met(
    result: MelissaResult,
    test: MethylationData | list[list[RegionObs]],
    use_mixture: bool = False,
) -> ImputationResult:
    """Predict the methylation probability of every held-out CpG.

    Args:
        result: Fitted model.
        test: Partitioned dataset (its test slot is used) or a test layout.
        use_mixture: Average predictions over clusters weighted by r_nk
            instead of using the most likely cluster.
    """
    if isinstance(test, MethylationData):
        if test.test is None:
            raise ValueError("dataset has no test slot; run partition_dataset first")
        test = test.test
    n_cells, K = result.r_nk.shape
    n_regions = result.W.shape[0]
    if len(test) != n_cells:
        raise ValueError(f"test has {len(test)} cells; model has {n_cells}")

    labels = result.labels
    act_parts: list[np.ndarray] = []
    pred_parts: list[np.ndarray] = []
    cell_parts: list[np.ndarray] = []
    region_parts: list[np.ndarray] = []
    for n, cell in enumerate(test):
        if len(cell) != n_regions:
            raise ValueError(f"test[{n}] has {len(cell)} regions; model has {n_regions}")
        for m, obs in enumerate(cell):
            if obs is None or len(obs) == 0:
                continue
            obs = np.asarray(obs, dtype=np.float64)
            H = result.basis.design_matrix(obs[:, 0])
            if use_mixture:
                p = sigmoid(H @ result.W[m]) @ result.r_nk[n]
            else:
                p = sigmoid(H @ result.W[m, :, labels[n]])
            act_parts.append(obs[:, 1])
            pred_parts.append(p)
            cell_parts.append(np.full(obs.shape[0], n, dtype=np.int64))
            region_parts.append(np.full(obs.shape[0], m, dtype=np.int64))

    if not act_parts:
        logger.warning("No held-out CpGs to impute")
        empty_f = np.empty(0, dtype=np.float64)
        empty_i = np.empty(0, dtype=np.int64)
        return ImputationResult(act=empty_f, pred=empty_f.copy(), cell_idx=empty_i, region_idx=empty_i.copy())
    return ImputationResult(
        act=np.concatenate(act_parts),
        pred=np.concatenate(pred_parts),
        cell_idx=np.concatenate(cell_parts),
        region_idx=np.concatenate(region_parts),
    )


def imputation_metrics(
    act: np.ndarray,
    pred: np.ndarray,
    threshold: float = 0.5,
) -> ImputationMetrics:
    """AUC, F-measure at a threshold, and ROC / precision-recall curves."""
    act = np.asarray(act, dtype=np.float64).ravel()
    pred = np.asarray(pred, dtype=np.float64).ravel()
    if act.shape != pred.shape:
        raise ValueError("act and pred must have same length")
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("threshold must lie in [0, 1]")
    y_true = act.astype(np.int64)
    y_hat = (pred >= threshold).astype(np.int64)
    f_measure = float(f1_score(y_true, y_hat, zero_division=0)) if act.size else float("nan")

    if np.unique(y_true).size < 2:
        logger.warning("Held-out calls contain a single class; AUC is undefined")
        return ImputationMetrics(
            auc=float("nan"), f_measure=f_measure, threshold=float(threshold),
            n_test=int(act.size), roc_fpr=[], roc_tpr=[], roc_thresholds=[],
            pr_precision=[], pr_recall=[], pr_thresholds=[],
        )

    fpr, tpr, roc_thr = roc_curve(y_true, pred)
    precision, recall, pr_thr = precision_recall_curve(y_true, pred)
    return ImputationMetrics(
        auc=float(roc_auc_score(y_true, pred)),
        f_measure=f_measure,
        threshold=float(threshold),
        n_test=int(act.size),
        roc_fpr=fpr.tolist(),
        roc_tpr=tpr.tolist(),
        roc_thresholds=roc_thr.tolist(),
        pr_precision=precision.tolist(),
        pr_recall=recall.tolist(),
        pr_thresholds=pr_thr.tolist(),
    )


def eval_imputation_performance(
    result: MelissaResult,
    imputation: ImputationResult,
    threshold: float = 0.5,
) -> ImputationMetrics:
    """Score imputed CpGs and attach the metrics to the result."""
    metrics = imputation_metrics(imputation.act, imputation.pred, threshold=threshold)
    result.evaluation["imputation"] = metrics.to_dict()
    logger.info(
        "Imputation over %d CpGs: AUC=%.4f, F-measure=%.4f",
        metrics.n_test, metrics.auc, metrics.f_measure,
    )
    return metrics


__all__ = [
    "ImputationMetrics",
    "ImputationResult",
    "eval_imputation_performance",
    "impute_test_met",
    "imputation_metrics",
]
