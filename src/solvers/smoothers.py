"""Relaxation operators for the multigrid levels.

Three smoother kinds, chosen once per hierarchy through ``SmootherKind``:

- ``JACOBI``: damped point Jacobi, weight 1/theta from lambda_max(D^-1 A);
- ``CHEBYSHEV``: Chebyshev semi-iteration preconditioned by D^-1 on
  [fraction * upper, upper]; order 1 is damped Jacobi with the same bounds;
- ``SCHWARZ``: additive Schwarz with element-local inverses of the low-order
  refined (LOR) matrix, weighted by a separate estimate of lambda_max(S A).

Every smoother returns y[ess] = x[ess] on essential dofs.
"""

from __future__ import annotations
from enum import Enum
import logging

import numpy as np
from numba import njit
from numpy.typing import NDArray
from scipy import sparse

from FEM.operators import Operator, ProductOperator
from FEM.SEM.assembly import assemble_matrix, eliminate_essential
from .datastructures import MultigridParameters
from .eigen import EigenvalueEstimate, SpectralBounds, estimate_largest_eigenvalue
from .errors import ConfigurationError, NumericalBreakdown, ZeroDiagonalError

log = logging.getLogger(__name__)


class SmootherKind(Enum):
    """Available smoother families."""

    JACOBI = "jacobi"
    CHEBYSHEV = "chebyshev"
    SCHWARZ = "schwarz"

    @classmethod
    def from_name(cls, name: "str | SmootherKind") -> "SmootherKind":
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).lower())
        except ValueError:
            valid = [k.value for k in cls]
            raise ConfigurationError(f"Unknown smoother '{name}'. Use one of {valid}") from None


# =============================================================================
# Numba JIT-compiled kernels
# =============================================================================


@njit(cache=True, fastmath=True)
def _gather_element_blocks(indptr, indices, data, loc2glb):
    """Extract dense blocks A[dofs_e, dofs_e] of a CSR matrix for every element."""
    noelms, nloc = loc2glb.shape
    blocks = np.zeros((noelms, nloc, nloc))
    for e in range(noelms):
        for a in range(nloc):
            row = loc2glb[e, a]
            for b in range(nloc):
                col = loc2glb[e, b]
                for k in range(indptr[row], indptr[row + 1]):
                    if indices[k] == col:
                        blocks[e, a, b] = data[k]
                        break
    return blocks


def inverse_diagonal(diag: NDArray[np.float64], ess_dofs: NDArray[np.int64],
                     level: int | None = None) -> NDArray[np.float64]:
    """1/diag on free dofs, 1 on essential dofs."""
    free = np.ones(len(diag), dtype=bool)
    free[ess_dofs] = False
    zero = free & (np.abs(diag) <= np.finfo(np.float64).tiny)
    if np.any(zero):
        raise ZeroDiagonalError(
            f"Operator has {np.sum(zero)} zero diagonal entries on free dofs "
            f"(first: {np.flatnonzero(zero)[:5].tolist()})",
            level=level,
        )
    dinv = np.ones(len(diag))
    dinv[free] = 1.0 / diag[free]
    return dinv


# =============================================================================
# Smoothers
# =============================================================================


class Smoother(Operator):
    """Relaxation operator S approximating A^-1 for one level."""

    def __init__(self, n: int, ess_dofs: NDArray[np.int64]):
        super().__init__(n)
        self.ess_dofs = np.asarray(ess_dofs, dtype=np.int64)
        self.bounds: SpectralBounds | None = None
        self.estimate: EigenvalueEstimate | None = None

    def apply_transpose(self, x):
        return self.apply(x)


class JacobiSmoother(Smoother):
    """y = weight * D^-1 x."""

    def __init__(self, dinv: NDArray[np.float64], ess_dofs: NDArray[np.int64], weight: float = 1.0):
        super().__init__(len(dinv), ess_dofs)
        self.dinv = dinv
        self.weight = weight

    def apply(self, x):
        y = self.weight * self.dinv * x
        y[self.ess_dofs] = x[self.ess_dofs]
        return y


class ChebyshevSmoother(Smoother):
    """Chebyshev semi-iteration of ``order`` steps on D^-1 A.

    Three-term recurrence (Saad, Iterative Methods, Alg. 12.1) started from
    y = 0, using order - 1 applications of the operator.
    """

    def __init__(self, operator: Operator, dinv: NDArray[np.float64],
                 ess_dofs: NDArray[np.int64], order: int, bounds: SpectralBounds):
        if order < 1:
            raise ConfigurationError(f"Chebyshev order must be >= 1, got {order}")
        super().__init__(operator.height, ess_dofs)
        self.operator = operator
        self.dinv = dinv
        self.order = order
        self.bounds = bounds

    def apply(self, x):
        theta, delta = self.bounds.theta, self.bounds.delta
        sigma = theta / delta
        rho = 1.0 / sigma

        r = np.array(x, dtype=np.float64, copy=True)
        d = self.dinv * r / theta
        y = np.zeros_like(r)
        for _ in range(1, self.order):
            y += d
            r -= self.operator.apply(d)
            rho_new = 1.0 / (2.0 * sigma - rho)
            d = rho_new * rho * d + (2.0 * rho_new / delta) * (self.dinv * r)
            rho = rho_new
        y += d

        y[self.ess_dofs] = x[self.ess_dofs]
        return y


class AdditiveSchwarzLORSmoother(Smoother):
    """Additive Schwarz over elements with local inverses of the LOR matrix.

    y = weight * sum_e R_e^T (A_lor[dofs_e, dofs_e])^-1 R_e x
    """

    def __init__(self, lor_matrix: sparse.csr_matrix, loc2glb: NDArray[np.int64],
                 ess_dofs: NDArray[np.int64], weight: float = 1.0, level: int | None = None):
        super().__init__(lor_matrix.shape[0], ess_dofs)
        self.loc2glb = loc2glb
        self.weight = weight

        A = sparse.csr_matrix(lor_matrix)
        blocks = _gather_element_blocks(
            A.indptr, A.indices, A.data.astype(np.float64), np.ascontiguousarray(loc2glb)
        )
        try:
            self.inverses = np.linalg.inv(blocks)
        except np.linalg.LinAlgError as exc:
            raise NumericalBreakdown(f"Singular element block in LOR matrix: {exc}", level=level) from exc

    def apply(self, x):
        xe = x[self.loc2glb]
        ye = np.einsum("eab,eb->ea", self.inverses, xe)
        y = self.weight * np.bincount(self.loc2glb.ravel(), weights=ye.ravel(), minlength=self.height)
        y[self.ess_dofs] = x[self.ess_dofs]
        return y


# =============================================================================
# Factory
# =============================================================================


def _estimate(op: Operator, params: MultigridParameters, level: int | None) -> EigenvalueEstimate:
    return estimate_largest_eigenvalue(
        op,
        max_iters=params.power_iterations,
        tol=params.power_tolerance,
        seed=params.seed,
        level=level,
        strict=params.strict_eigenvalue_estimate,
    )


def lor_matrix(operator: Operator) -> sparse.csr_matrix:
    """Assembled LOR surrogate of a level operator, essential dofs eliminated."""
    lor = operator.space.lor_space()
    return eliminate_essential(assemble_matrix(lor, operator.form), operator.ess_dofs)


def build_smoother(kind: SmootherKind | str, operator: Operator, params: MultigridParameters,
                   level: int | None = None) -> Smoother:
    """Build the relaxation operator of one level.

    Parameters
    ----------
    kind : SmootherKind or str
    operator : level operator (partial or full assembly) exposing ``diagonal()``,
        ``space``, ``form`` and ``ess_dofs``
    params : MultigridParameters
    level : level index, for diagnostics

    Raises
    ------
    ZeroDiagonalError
        When the operator diagonal vanishes on a free dof.
    """
    kind = SmootherKind.from_name(kind)
    ess = operator.ess_dofs
    dinv = inverse_diagonal(operator.diagonal(), ess, level=level)

    if kind is SmootherKind.SCHWARZ:
        raw = AdditiveSchwarzLORSmoother(lor_matrix(operator), operator.space.loc2glb, ess, 1.0, level=level)
        estimate = _estimate(ProductOperator(raw, operator), params, level)
        bounds = SpectralBounds.from_estimate(estimate.value, params.eigenvalue_safety_factor, 0.0)
        raw.weight = bounds.weight
        smoother = raw
    else:
        estimate = _estimate(ProductOperator(JacobiSmoother(dinv, ess), operator), params, level)
        if kind is SmootherKind.JACOBI:
            bounds = SpectralBounds.from_estimate(estimate.value, params.eigenvalue_safety_factor, 0.0)
            smoother = JacobiSmoother(dinv, ess, bounds.weight)
        else:
            bounds = SpectralBounds.from_estimate(
                estimate.value, params.eigenvalue_safety_factor, params.chebyshev_lower_fraction
            )
            smoother = ChebyshevSmoother(operator, dinv, ess, params.chebyshev_order, bounds)

    smoother.bounds = bounds
    smoother.estimate = estimate
    log.info(
        f"Level {level}: {kind.value} smoother, lambda_max={estimate.value:.4e} "
        f"({estimate.iterations} it), bounds=[{bounds.lower:.3e}, {bounds.upper:.3e}], weight={bounds.weight:.4f}"
    )
    return smoother
