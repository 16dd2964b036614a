"""
Linear Model Trainer

Ordinary least squares over a fixed-width numeric input:
    y = b0 + b1*x1 + ... + bn*xn

The trainer is domain-agnostic; callers pre-transform the target
(see log_target / views_from_log for the views scale).
"""
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy import linalg

from .exceptions import DimensionMismatchError, InsufficientDataError


@dataclass(frozen=True, eq=False)
class Model:
    """Immutable fitted model. coefficients[0] is the intercept."""
    coefficients: tuple[float, ...]
    training_inputs: np.ndarray
    training_targets: np.ndarray

    @property
    def dimension(self) -> int:
        return len(self.coefficients) - 1

    @property
    def intercept(self) -> float:
        return self.coefficients[0]

    @property
    def weights(self) -> tuple[float, ...]:
        return self.coefficients[1:]


def log_target(views: float) -> float:
    """Views -> model scale."""
    return float(np.log(views + 1.0))


def views_from_log(value: float) -> float:
    """Model scale -> views."""
    return float(np.exp(value) - 1.0)


def _as_matrix(inputs: Sequence[Sequence[float]]) -> np.ndarray:
    rows = [list(row) for row in inputs]
    if not rows:
        return np.empty((0, 0), dtype=float)
    width = len(rows[0])
    for i, row in enumerate(rows):
        if len(row) != width:
            raise DimensionMismatchError(
                f"Row {i} has {len(row)} values, expected {width}"
            )
    return np.asarray(rows, dtype=float)


def train(inputs: Sequence[Sequence[float]], targets: Sequence[float]) -> Model:
    """
    Fit a multivariate linear regression.

    Args:
        inputs: Rows of identical width
        targets: One scalar per row

    Returns:
        A new Model

    Raises:
        InsufficientDataError: if rows != targets or rows < dimension + 1
        DimensionMismatchError: if rows have different widths
    """
    X = _as_matrix(inputs)
    y = np.asarray(list(targets), dtype=float)

    if X.shape[0] != y.shape[0]:
        raise InsufficientDataError(
            f"Got {X.shape[0]} input rows but {y.shape[0]} targets"
        )
    dimension = X.shape[1]
    if X.shape[0] < dimension + 1:
        raise InsufficientDataError(
            f"Need at least {dimension + 1} rows for {dimension} inputs, got {X.shape[0]}"
        )

    design = np.column_stack([np.ones(X.shape[0]), X])
    # Minimum-norm solution keeps rank-deficient inputs (e.g. constant scores) solvable
    solution, _, _, _ = linalg.lstsq(design, y)

    X.setflags(write=False)
    y.setflags(write=False)
    return Model(
        coefficients=tuple(float(c) for c in solution),
        training_inputs=X,
        training_targets=y,
    )


def predict(model: Model, inputs: Sequence[Sequence[float]]) -> list[float]:
    """One prediction per input row: intercept + weights . row."""
    X = _as_matrix(inputs)
    if X.shape[0] == 0:
        return []
    if X.shape[1] != model.dimension:
        raise DimensionMismatchError(
            f"Model expects {model.dimension} inputs, got rows of {X.shape[1]}"
        )
    coefficients = np.asarray(model.coefficients, dtype=float)
    return [float(v) for v in coefficients[0] + X @ coefficients[1:]]
