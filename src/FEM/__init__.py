"""FEM package: discretization layer for the multigrid solvers.

Main components:
- operators: the Operator interface (apply, height, width, assembled matrix)
- SEM: quad meshes, H1 spectral element spaces, coefficients and assembly
- io: VTK export of nodal fields
"""

from .operators import Operator, MatrixOperator, IdentityOperator, ProductOperator

__all__ = [
    "Operator",
    "MatrixOperator",
    "IdentityOperator",
    "ProductOperator",
]
