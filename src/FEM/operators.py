"""Linear operator interface shared by assembly, smoothers and solvers.

Every discrete object that acts on a vector (assembled or matrix-free
operators, smoothers, transfers, coarse solvers, the multigrid cycle itself)
implements the same small interface: ``apply``, ``height`` and ``width``,
plus an optional assembled matrix.
"""

from __future__ import annotations
from abc import ABC, abstractmethod

import numpy as np
from numpy.typing import NDArray
from scipy import sparse
from scipy.sparse.linalg import LinearOperator


class Operator(ABC):
    """Abstract linear map R^width -> R^height."""

    def __init__(self, height: int, width: int | None = None):
        self.height = int(height)
        self.width = int(height if width is None else width)

    @abstractmethod
    def apply(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return y = Op x."""

    def apply_transpose(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        raise NotImplementedError(f"{type(self).__name__} has no transpose")

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    def assembled_matrix(self) -> sparse.csr_matrix | None:
        """Assembled sparse matrix, or None for matrix-free operators."""
        return None

    def as_linear_operator(self) -> LinearOperator:
        """Wrap as a scipy LinearOperator (for scipy.sparse.linalg solvers)."""
        return LinearOperator(
            self.shape,
            matvec=lambda x: self.apply(np.ravel(x)),
            rmatvec=lambda x: self.apply_transpose(np.ravel(x)),
            dtype=np.float64,
        )

    def __matmul__(self, x):
        return self.apply(x)


class MatrixOperator(Operator):
    """Operator backed by a scipy sparse matrix."""

    def __init__(self, A: sparse.spmatrix):
        self.A = sparse.csr_matrix(A)
        super().__init__(*self.A.shape)

    def apply(self, x):
        return self.A @ x

    def apply_transpose(self, x):
        return self.A.T @ x

    def assembled_matrix(self):
        return self.A

    def diagonal(self) -> NDArray[np.float64]:
        return self.A.diagonal()


class IdentityOperator(Operator):
    def apply(self, x):
        return np.array(x, dtype=np.float64, copy=True)

    def apply_transpose(self, x):
        return self.apply(x)

    def assembled_matrix(self):
        return sparse.identity(self.height, format="csr")


class ProductOperator(Operator):
    """Composition A @ B, applied right to left."""

    def __init__(self, A: Operator, B: Operator):
        if A.width != B.height:
            raise ValueError(f"Cannot compose {A.shape} with {B.shape}")
        super().__init__(A.height, B.width)
        self.A, self.B = A, B

    def apply(self, x):
        return self.A.apply(self.B.apply(x))

    def apply_transpose(self, x):
        return self.B.apply_transpose(self.A.apply_transpose(x))
