"""Spectral Element Method for 2D elliptic problems on quad meshes.

Example
-------
>>> from FEM.SEM import QuadMesh, H1Space, VariationalForm, assemble_operator
>>>
>>> mesh = QuadMesh.unit_square(4)
>>> space = H1Space(mesh, order=3)
>>> A = assemble_operator(space, VariationalForm(), space.essential_dofs())
"""

from .spectral import (
    ReferenceQuad,
    legendre_gauss_lobatto_nodes,
    legendre_gauss_lobatto_weights,
    gauss_legendre,
    lagrange_basis,
)
from .mesh import QuadMesh, BOTTOM, RIGHT, TOP, LEFT
from .space import H1Space
from .coefficients import (
    Coefficient,
    ConstantCoefficient,
    FunctionCoefficient,
    MatrixCoefficient,
    jump_coefficient,
    as_coefficient,
)
from .assembly import (
    VariationalForm,
    PartialAssemblyOperator,
    AssembledOperator,
    assemble_operator,
    assemble_matrix,
    assemble_load_vector,
    eliminate_essential,
    form_linear_system,
    l2_error,
)

__all__ = [
    "ReferenceQuad",
    "legendre_gauss_lobatto_nodes",
    "legendre_gauss_lobatto_weights",
    "gauss_legendre",
    "lagrange_basis",
    "QuadMesh",
    "BOTTOM",
    "RIGHT",
    "TOP",
    "LEFT",
    "H1Space",
    "Coefficient",
    "ConstantCoefficient",
    "FunctionCoefficient",
    "MatrixCoefficient",
    "jump_coefficient",
    "as_coefficient",
    "VariationalForm",
    "PartialAssemblyOperator",
    "AssembledOperator",
    "assemble_operator",
    "assemble_matrix",
    "assemble_load_vector",
    "eliminate_essential",
    "form_linear_system",
    "l2_error",
]
