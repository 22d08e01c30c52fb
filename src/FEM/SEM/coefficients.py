"""Coefficients weighting the diffusion and mass terms of a variational form."""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Callable

import numpy as np
from numpy.typing import NDArray


class Coefficient(ABC):
    """Point-wise coefficient evaluated at physical points."""

    @abstractmethod
    def evaluate(self, x: NDArray, y: NDArray) -> NDArray:
        """Return values of shape x.shape (scalar) or x.shape + (2, 2) (tensor)."""

    @property
    def is_tensor(self) -> bool:
        return False


class ConstantCoefficient(Coefficient):
    def __init__(self, value: float = 1.0):
        self.value = float(value)

    def evaluate(self, x, y):
        return np.full(np.shape(x), self.value)

    def __repr__(self):
        return f"ConstantCoefficient({self.value})"


class FunctionCoefficient(Coefficient):
    """Scalar coefficient given by a vectorized function f(x, y)."""

    def __init__(self, func: Callable[[NDArray, NDArray], NDArray]):
        self.func = func

    def evaluate(self, x, y):
        return np.broadcast_to(np.asarray(self.func(x, y), dtype=np.float64), np.shape(x))


class MatrixCoefficient(Coefficient):
    """Symmetric 2x2 tensor coefficient, either constant or a function of (x, y)."""

    def __init__(self, matrix: NDArray | Callable[[NDArray, NDArray], NDArray]):
        self.matrix = matrix

    @property
    def is_tensor(self) -> bool:
        return True

    def evaluate(self, x, y):
        if callable(self.matrix):
            return np.asarray(self.matrix(x, y), dtype=np.float64)
        K = np.asarray(self.matrix, dtype=np.float64)
        return np.broadcast_to(K, np.shape(x) + (2, 2))


def jump_coefficient() -> FunctionCoefficient:
    """Diffusion coefficient c(x, y) = 5x + 1 varying across the domain."""
    return FunctionCoefficient(lambda x, y: 5.0 * x + 1.0)


def as_coefficient(value) -> Coefficient:
    """Wrap plain numbers and callables as coefficients."""
    if isinstance(value, Coefficient):
        return value
    if callable(value):
        return FunctionCoefficient(value)
    if np.ndim(value) == 2:
        return MatrixCoefficient(value)
    return ConstantCoefficient(value)
