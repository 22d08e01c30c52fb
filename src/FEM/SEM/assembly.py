"""Global assembly for the Spectral Element Method.

Two interchangeable strategies for the bilinear form

    a(u, v) = int c grad(u) . grad(v) + m u v dx

- partial assembly: quadrature data w * detJ * J^-1 C J^-T (and w * detJ * m)
  is stored per element and applied with tensor-product sum factorization;
- full assembly: element matrices are scattered into a CSR matrix.

Essential dofs are eliminated: their rows and columns are zero except for a
unit diagonal.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable
import logging

import numpy as np
from numpy.typing import NDArray
from scipy import sparse

from FEM.operators import Operator, MatrixOperator
from .coefficients import Coefficient, ConstantCoefficient, as_coefficient
from .space import H1Space

log = logging.getLogger(__name__)


@dataclass
class VariationalForm:
    """Diffusion term weighted by ``diffusion`` plus optional mass term weighted by ``mass``.

    Plain numbers, 2x2 arrays and callables are wrapped as coefficients.
    """

    diffusion: Coefficient = field(default_factory=ConstantCoefficient)
    mass: Coefficient | None = None

    def __post_init__(self):
        self.diffusion = as_coefficient(self.diffusion)
        if self.mass is not None:
            self.mass = as_coefficient(self.mass)


@dataclass
class QuadratureData:
    """Per-element geometric factors at the Gauss-Legendre points.

    D : (noelms, nq, nq, 2, 2) diffusion factors w * detJ * J^-1 C J^-T
    M : (noelms, nq, nq) mass factors w * detJ * m, or None
    """

    D: NDArray[np.float64]
    M: NDArray[np.float64] | None = None


# =============================================================================
# Sum-factorization kernels
# =============================================================================


def _to_quad(A: NDArray, B: NDArray, u: NDArray) -> NDArray:
    """Evaluate sum_ij A[a, i] B[b, j] u[e, i, j] -> (noelms, nq, nq)."""
    return np.einsum("bj,eaj->eab", B, np.einsum("ai,eij->eaj", A, u))


def _from_quad(A: NDArray, B: NDArray, v: NDArray) -> NDArray:
    """Transpose of _to_quad: sum_ab A[a, i] B[b, j] v[e, a, b] -> (noelms, n, n)."""
    return np.einsum("bj,eib->eij", B, np.einsum("ai,eab->eib", A, v))


def _scatter(space: H1Space, y_e: NDArray) -> NDArray[np.float64]:
    """Sum element contributions into a global vector."""
    return np.bincount(
        space.loc2glb.ravel(), weights=y_e.reshape(space.mesh.noelms, -1).ravel(),
        minlength=space.ndofs,
    )


def geometric_factors(space: H1Space, form: VariationalForm) -> QuadratureData:
    """Compute the quadrature data of ``form`` on every element of ``space``."""
    mesh, ref = space.mesh, space.ref
    nq = ref.num_quadrature
    xi, eta, w = ref.tensor_quadrature()

    J = mesh.jacobian(xi, eta)
    detJ = np.linalg.det(J)
    if np.any(detJ <= 0):
        raise ValueError(f"Mesh has {np.sum(np.any(detJ <= 0, axis=1))} inverted elements")
    Jinv = np.linalg.inv(J)
    x, y = mesh.map_points(xi, eta)

    c = form.diffusion.evaluate(x, y)
    if not form.diffusion.is_tensor:
        c = c[..., None, None] * np.eye(2)
    D = (w * detJ)[..., None, None] * (Jinv @ c @ np.swapaxes(Jinv, -1, -2))

    M = None
    if form.mass is not None:
        M = (w * detJ * form.mass.evaluate(x, y)).reshape(-1, nq, nq)

    return QuadratureData(D=D.reshape(-1, nq, nq, 2, 2), M=M)


def element_apply(space: H1Space, qdata: QuadratureData, u_e: NDArray) -> NDArray:
    """Apply all element operators to element-local tensors u_e of shape (noelms, n, n)."""
    B, G = space.ref.B, space.ref.G
    D = qdata.D

    ux = _to_quad(G, B, u_e)
    uy = _to_quad(B, G, u_e)
    vx = D[..., 0, 0] * ux + D[..., 0, 1] * uy
    vy = D[..., 1, 0] * ux + D[..., 1, 1] * uy
    y_e = _from_quad(G, B, vx) + _from_quad(B, G, vy)

    if qdata.M is not None:
        y_e += _from_quad(B, B, qdata.M * _to_quad(B, B, u_e))
    return y_e


def element_diagonal(space: H1Space, qdata: QuadratureData) -> NDArray:
    """Diagonals of all element matrices, shape (noelms, n, n)."""
    B, G = space.ref.B, space.ref.G
    D = qdata.D
    B2, G2, GB = B**2, G**2, G * B

    def contract(A, C, v): return np.einsum("ai,bj,eab->eij", A, C, v)

    diag = (
        contract(G2, B2, D[..., 0, 0])
        + contract(GB, GB, D[..., 0, 1] + D[..., 1, 0])
        + contract(B2, G2, D[..., 1, 1])
    )
    if qdata.M is not None:
        diag += contract(B2, B2, qdata.M)
    return diag


def element_matrices(space: H1Space, qdata: QuadratureData) -> NDArray:
    """Dense element matrices, shape (noelms, nloc, nloc)."""
    B, G = space.ref.B, space.ref.G
    nq, n = B.shape
    Bx = np.einsum("ai,bj->abij", G, B).reshape(nq * nq, n * n)
    By = np.einsum("ai,bj->abij", B, G).reshape(nq * nq, n * n)
    D = qdata.D.reshape(len(qdata.D), nq * nq, 2, 2)

    def weighted(P, d, Q): return np.einsum("qk,eq,ql->ekl", P, d, Q)

    K = (
        weighted(Bx, D[..., 0, 0], Bx) + weighted(Bx, D[..., 0, 1], By)
        + weighted(By, D[..., 1, 0], Bx) + weighted(By, D[..., 1, 1], By)
    )
    if qdata.M is not None:
        Bm = np.einsum("ai,bj->abij", B, B).reshape(nq * nq, n * n)
        K += weighted(Bm, qdata.M.reshape(-1, nq * nq), Bm)
    return K


# =============================================================================
# Global assembly
# =============================================================================


def assemble_matrix(space: H1Space, form: VariationalForm,
                    qdata: QuadratureData | None = None) -> sparse.csr_matrix:
    """Assemble the global sparse matrix of ``form`` (no boundary conditions)."""
    if qdata is None:
        qdata = geometric_factors(space, form)
    K_all = element_matrices(space, qdata)

    noelms, nloc = space.mesh.noelms, space.nloc
    glb = space.loc2glb
    rows = np.broadcast_to(glb[:, :, np.newaxis], (noelms, nloc, nloc))
    cols = np.broadcast_to(glb[:, np.newaxis, :], (noelms, nloc, nloc))

    return sparse.csr_matrix(
        (K_all.ravel(), (rows.ravel(), cols.ravel())),
        shape=(space.ndofs, space.ndofs),
    )


def eliminate_essential(A: sparse.spmatrix, ess_dofs: NDArray[np.int64]) -> sparse.csr_matrix:
    """Zero rows/cols of essential dofs and set their diagonal to 1."""
    n = A.shape[0]
    A_mod = sparse.csr_matrix(A, copy=True)

    # Scale rows and columns to zero for essential dofs
    scale = np.ones(n, dtype=np.float64)
    scale[ess_dofs] = 0.0
    row_scale = np.repeat(scale, np.diff(A_mod.indptr))
    col_scale = scale[A_mod.indices]
    A_mod.data *= row_scale * col_scale

    # Set diagonal to 1
    diag = A_mod.diagonal()
    diag[ess_dofs] = 1.0
    A_mod.setdiag(diag)
    A_mod.eliminate_zeros()

    return A_mod


def assemble_load_vector(
    space: H1Space,
    f_func: Callable[[NDArray[np.float64], NDArray[np.float64]], NDArray[np.float64]],
) -> NDArray[np.float64]:
    """Assemble load vector b_i = int f phi_i dx."""
    mesh, ref = space.mesh, space.ref
    nq = ref.num_quadrature
    xi, eta, w = ref.tensor_quadrature()
    detJ = np.linalg.det(mesh.jacobian(xi, eta))
    x, y = mesh.map_points(xi, eta)

    fq = (w * detJ * np.broadcast_to(f_func(x, y), x.shape)).reshape(-1, nq, nq)
    return _scatter(space, _from_quad(ref.B, ref.B, fq))


def l2_error(space: H1Space, u: NDArray[np.float64],
             u_exact: Callable[[NDArray, NDArray], NDArray]) -> float:
    """L2 norm of u - u_exact computed with the element quadrature."""
    mesh, ref = space.mesh, space.ref
    xi, eta, w = ref.tensor_quadrature()
    detJ = np.linalg.det(mesh.jacobian(xi, eta))
    x, y = mesh.map_points(xi, eta)

    uq = _to_quad(ref.B, ref.B, space.element_values(u)).reshape(mesh.noelms, -1)
    return float(np.sqrt(np.sum(w * detJ * (uq - u_exact(x, y)) ** 2)))


# =============================================================================
# Operators
# =============================================================================


class PartialAssemblyOperator(Operator):
    """Matrix-free operator of ``form`` with essential dofs eliminated."""

    def __init__(self, space: H1Space, form: VariationalForm,
                 ess_dofs: NDArray[np.int64] | None = None):
        super().__init__(space.ndofs)
        self.space = space
        self.form = form
        self.ess_dofs = np.empty(0, dtype=np.int64) if ess_dofs is None else np.asarray(ess_dofs, dtype=np.int64)
        self.qdata = geometric_factors(space, form)

    def apply_unconstrained(self, x):
        return _scatter(self.space, element_apply(self.space, self.qdata, self.space.element_values(x)))

    def apply(self, x):
        xz = np.array(x, dtype=np.float64, copy=True)
        xz[self.ess_dofs] = 0.0
        y = self.apply_unconstrained(xz)
        y[self.ess_dofs] = x[self.ess_dofs]
        return y

    def apply_transpose(self, x):
        return self.apply(x)

    def diagonal(self) -> NDArray[np.float64]:
        diag = _scatter(self.space, element_diagonal(self.space, self.qdata))
        diag[self.ess_dofs] = 1.0
        return diag


class AssembledOperator(MatrixOperator):
    """Fully assembled operator of ``form`` with essential dofs eliminated."""

    def __init__(self, space: H1Space, form: VariationalForm,
                 ess_dofs: NDArray[np.int64] | None = None):
        self.space = space
        self.form = form
        self.ess_dofs = np.empty(0, dtype=np.int64) if ess_dofs is None else np.asarray(ess_dofs, dtype=np.int64)
        self.unconstrained = assemble_matrix(space, form)
        super().__init__(eliminate_essential(self.unconstrained, self.ess_dofs))

    def apply_unconstrained(self, x):
        return self.unconstrained @ x


def assemble_operator(space: H1Space, form: VariationalForm,
                      ess_dofs: NDArray[np.int64] | None = None,
                      partial: bool = True) -> PartialAssemblyOperator | AssembledOperator:
    """Build the operator of ``form`` with the requested assembly strategy."""
    op = PartialAssemblyOperator(space, form, ess_dofs) if partial else AssembledOperator(space, form, ess_dofs)
    log.debug(f"Assembled {'partial' if partial else 'full'} operator, order={space.order}, ndofs={space.ndofs}")
    return op


def form_linear_system(
    op: PartialAssemblyOperator | AssembledOperator,
    x: NDArray[np.float64],
    b: NDArray[np.float64],
    copy_interior: bool = False,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Move the essential values of ``x`` to the right-hand side.

    Returns (B, X) with B = b - A x_ess on free dofs and B[ess] = x[ess], so
    that the eliminated system op X = B carries the boundary data. X is the
    initial guess: x on essential dofs, zero elsewhere unless ``copy_interior``.
    """
    ess = op.ess_dofs
    x_ess = np.zeros_like(x, dtype=np.float64)
    x_ess[ess] = x[ess]

    B = b - op.apply_unconstrained(x_ess)
    B[ess] = x[ess]
    X = np.array(x, dtype=np.float64, copy=True) if copy_interior else x_ess
    return B, X
