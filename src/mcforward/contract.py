"""
Variable Domain

Defines the box [lower_i, upper_i] over which an expression is relaxed.
A box is the unit of work of a branch-and-bound or semi-infinite driver:
the evaluator is told about a box once (set_box) and then evaluated at
one or more points inside it.
"""

from dataclasses import dataclass
from typing import Any, Dict
import numpy as np

from .errors import ConfigurationError


@dataclass(eq=False)
class Box:
    """
    Variable bounds defining a box domain.

    Bounds may be infinite.

    Attributes:
        lower: Lower bounds for each variable
        upper: Upper bounds for each variable
    """
    lower: np.ndarray
    upper: np.ndarray

    def __post_init__(self):
        self.lower = np.asarray(self.lower, dtype=np.float64).reshape(-1)
        self.upper = np.asarray(self.upper, dtype=np.float64).reshape(-1)

        if len(self.lower) != len(self.upper):
            raise ConfigurationError("Lower and upper bounds must have same length")

        if np.any(np.isnan(self.lower)) or np.any(np.isnan(self.upper)):
            raise ConfigurationError("Bounds must not be NaN")

        if np.any(self.lower > self.upper):
            raise ConfigurationError("Lower bounds must be <= upper bounds")

    @property
    def n_vars(self) -> int:
        return len(self.lower)

    def contains(self, x: np.ndarray, tol: float = 1e-10) -> bool:
        """Check if a point is within bounds (with tolerance)."""
        return bool(
            np.all(x >= self.lower - tol) and
            np.all(x <= self.upper + tol)
        )

    def clip(self, x: np.ndarray) -> np.ndarray:
        """Project a point onto the box."""
        return np.minimum(np.maximum(x, self.lower), self.upper)

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "lower": self.lower.tolist(),
            "upper": self.upper.tolist()
        }

