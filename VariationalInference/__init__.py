"""Variational Bayes clustering and imputation of single-cell methylation."""

__all__ = ["basis", "data", "likelihood", "infer", "io", "outputs"]
__version__ = "0.1.0"
