"""Basis function expansion of CpG positions.

A methylation profile over a region is modelled as a weighted sum of fixed
basis functions of the relative position x in [-1, 1]:

    f(x) = w_0 + sum_j w_j phi_j(x)

Every family prepends a constant bias column, so the design matrix always has
order + 1 columns.

Families:
- rbf: phi_j(x) = exp(-gamma (x - mu_j)^2), centres equally spaced over [-1, 1]
- polynomial: phi_j(x) = x^j
- fourier: alternating cos/sin harmonics of 2 pi x / period
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Literal

import numpy as np


BasisFamily = Literal["rbf", "polynomial", "fourier"]


def _rbf_centres(order: int) -> np.ndarray:
    idx = np.arange(1, order + 1, dtype=np.float64)
    return (2.0 * idx - 1.0) / order - 1.0


def _rbf_features(basis: "Basis", x: np.ndarray) -> np.ndarray:
    diff = x[:, None] - basis.centres[None, :]
    return np.exp(-basis.gamma * diff * diff)


def _polynomial_features(basis: "Basis", x: np.ndarray) -> np.ndarray:
    powers = np.arange(1, basis.order + 1, dtype=np.float64)
    return x[:, None] ** powers[None, :]


def _fourier_features(basis: "Basis", x: np.ndarray) -> np.ndarray:
    j = np.arange(1, basis.order + 1)
    harmonic = np.ceil(j / 2.0)
    arg = 2.0 * np.pi * x[:, None] * harmonic[None, :] / basis.period
    return np.where(j[None, :] % 2 == 1, np.cos(arg), np.sin(arg))


_FEATURE_MAPS: dict[str, Callable[["Basis", np.ndarray], np.ndarray]] = {
    "rbf": _rbf_features,
    "polynomial": _polynomial_features,
    "fourier": _fourier_features,
}


@dataclass(frozen=True)
class Basis:
    """Immutable basis configuration.

    Attributes:
        family: One of "rbf", "polynomial", "fourier".
        order: Number of non-bias basis functions M.
        gamma: RBF inverse width (default M^2 / 4).
        period: Fourier period (default 2, the width of the region).
    """
    family: BasisFamily = "rbf"
    order: int = 4
    gamma: float | None = None
    period: float = 2.0
    centres: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.family not in _FEATURE_MAPS:
            raise ValueError(
                f"family must be one of {sorted(_FEATURE_MAPS)}; got {self.family!r}"
            )
        if isinstance(self.order, bool) or int(self.order) != self.order or self.order < 0:
            raise ValueError(f"order must be a non-negative integer; got {self.order!r}")
        object.__setattr__(self, "order", int(self.order))
        if self.family == "rbf":
            if self.order == 0:
                raise ValueError("rbf basis requires order >= 1")
            gamma = self.gamma
            if gamma is None:
                gamma = self.order ** 2 / 4.0
            if gamma <= 0:
                raise ValueError("gamma must be positive")
            object.__setattr__(self, "gamma", float(gamma))
            object.__setattr__(self, "centres", _rbf_centres(self.order))
        else:
            object.__setattr__(self, "centres", np.empty(0, dtype=np.float64))
        if self.period <= 0:
            raise ValueError("period must be positive")

    @property
    def dimension(self) -> int:
        """Length of the feature vector, including the bias term."""
        return self.order + 1

    def design_matrix(self, x: np.ndarray | float) -> np.ndarray:
        """Return the (n, order + 1) design matrix for positions x."""
        x = np.atleast_1d(np.asarray(x, dtype=np.float64)).ravel()
        H = np.empty((x.size, self.dimension), dtype=np.float64)
        H[:, 0] = 1.0
        if self.order > 0:
            H[:, 1:] = _FEATURE_MAPS[self.family](self, x)
        return H

    def to_dict(self) -> dict:
        return {
            "family": self.family,
            "order": self.order,
            "gamma": self.gamma,
            "period": self.period,
        }


def create_basis(family: str = "rbf", order: int = 4, **kwargs) -> Basis:
    """Build a Basis from plain values (e.g. a parsed YAML mapping)."""
    return Basis(family=family, order=order, **kwargs)


__all__ = ["Basis", "BasisFamily", "create_basis"]
