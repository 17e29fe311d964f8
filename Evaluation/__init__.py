"""Evaluation of clustering and imputation performance.

Main components:
- partition: Held-out train/test splits of methylation data
- clustering: Adjusted Rand Index and assignment error
- imputation: Prediction of held-out CpGs, AUC and F-measure
"""

__all__ = [
    "partition",
    "clustering",
    "imputation",
]
