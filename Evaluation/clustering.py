"""Clustering quality metrics.

Provides the Adjusted Rand Index and the assignment error under the best
one-to-one matching between inferred and true cluster indices.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
import logging

import numpy as np
from scipy.optimize import linear_sum_assignment
from sklearn.metrics import adjusted_rand_score
from sklearn.metrics.cluster import contingency_matrix

from VariationalInference.infer import MelissaResult

logger = logging.getLogger(__name__)


@dataclass
class ClusteringMetrics:
    """Clustering performance against ground truth.

    mapping sends each inferred cluster index to its matched true label.
    """
    ari: float
    error: float
    n_cells: int
    mapping: dict

    def to_dict(self) -> dict:
        return asdict(self)


def as_label_vector(labels: np.ndarray) -> np.ndarray:
    """Accept a label vector or an (n_cells, K) membership matrix."""
    labels = np.asarray(labels)
    if labels.ndim == 2:
        return np.argmax(labels, axis=1)
    if labels.ndim != 1:
        raise ValueError("labels must be a vector or an (n_cells, K) matrix")
    return labels


def adjusted_rand_index(labels_true: np.ndarray, labels_pred: np.ndarray) -> float:
    labels_true = as_label_vector(labels_true)
    labels_pred = as_label_vector(labels_pred)
    if labels_true.shape[0] != labels_pred.shape[0]:
        raise ValueError("labels_true and labels_pred must have same length")
    return float(adjusted_rand_score(labels_true, labels_pred))


def match_clusters(labels_true: np.ndarray, labels_pred: np.ndarray) -> dict:
    """Best one-to-one mapping from predicted to true cluster labels.

    Predicted clusters left unmatched (more predicted than true clusters) are
    absent from the mapping.
    """
    labels_true = as_label_vector(labels_true)
    labels_pred = as_label_vector(labels_pred)
    true_classes = np.unique(labels_true)
    pred_classes = np.unique(labels_pred)
    C = contingency_matrix(labels_true, labels_pred)
    rows, cols = linear_sum_assignment(-C)
    return {pred_classes[c].item(): true_classes[r].item() for r, c in zip(rows, cols)}


def cluster_assignment_error(labels_true: np.ndarray, labels_pred: np.ndarray) -> float:
    """Fraction of cells misassigned under the optimal label permutation."""
    labels_true = as_label_vector(labels_true)
    labels_pred = as_label_vector(labels_pred)
    if labels_true.shape[0] != labels_pred.shape[0]:
        raise ValueError("labels_true and labels_pred must have same length")
    n = labels_true.shape[0]
    if n == 0:
        raise ValueError("labels must not be empty")
    C = contingency_matrix(labels_true, labels_pred)
    rows, cols = linear_sum_assignment(-C)
    return float(1.0 - C[rows, cols].sum() / n)


def eval_cluster_performance(
    result: MelissaResult,
    labels_true: np.ndarray,
) -> ClusteringMetrics:
    """Score the fitted hard assignments and attach the metrics to the result."""
    labels_true = as_label_vector(labels_true)
    if labels_true.shape[0] != result.r_nk.shape[0]:
        raise ValueError("labels_true length must match the number of cells in the model")
    labels_pred = result.labels
    metrics = ClusteringMetrics(
        ari=adjusted_rand_index(labels_true, labels_pred),
        error=cluster_assignment_error(labels_true, labels_pred),
        n_cells=int(labels_true.shape[0]),
        mapping=match_clusters(labels_true, labels_pred),
    )
    result.evaluation["clustering"] = metrics.to_dict()
    logger.info("Clustering: ARI=%.4f, assignment error=%.4f", metrics.ari, metrics.error)
    return metrics


__all__ = [
    "ClusteringMetrics",
    "adjusted_rand_index",
    "as_label_vector",
    "cluster_assignment_error",
    "eval_cluster_performance",
    "match_clusters",
]
