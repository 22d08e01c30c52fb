"""Coarse (bottom-of-hierarchy) solvers.

Decision table for the AMG matrix:

| base order | assembly | AMG built from                                 |
|------------|----------|------------------------------------------------|
| 1          | full     | the coarse operator's assembled matrix (reuse) |
| > 1        | any      | the LOR matrix of the coarse space             |
| any        | partial  | the LOR matrix of the coarse space             |

The AMG hierarchy either runs a fixed number of V-cycles, or preconditions a
capped GMRES solve on the coarse operator itself. A sparse LU of the
coarse operator is available as a direct alternative.
"""

from __future__ import annotations
import logging

import numpy as np
import pyamg
from numpy.typing import NDArray
from scipy import sparse
from scipy.sparse.linalg import splu, SuperLU

from FEM.operators import Operator
from FEM.SEM.assembly import assemble_matrix, eliminate_essential
from .datastructures import MultigridParameters
from .errors import ConfigurationError
from .krylov import solve as krylov_solve
from .smoothers import lor_matrix

log = logging.getLogger(__name__)

COARSE_SOLVERS = ("amg", "direct")


class CoarseSolver(Operator):
    """Approximate inverse of the coarsest operator; y[ess] = x[ess]."""

    def __init__(self, operator: Operator):
        super().__init__(operator.height)
        self.operator = operator
        self.ess_dofs = getattr(operator, "ess_dofs", np.empty(0, dtype=np.int64))
        self.calls = 0

    def _solve(self, b: NDArray[np.float64]) -> NDArray[np.float64]:
        raise NotImplementedError

    def apply(self, x):
        self.calls += 1
        y = self._solve(np.asarray(x, dtype=np.float64))
        y[self.ess_dofs] = x[self.ess_dofs]
        return y

    def apply_transpose(self, x):
        return self.apply(x)


class AMGCoarseSolver(CoarseSolver):
    """Fixed number of AMG V-cycles from a zero initial guess."""

    def __init__(self, operator: Operator, ml: pyamg.multilevel.MultilevelSolver, cycles: int):
        super().__init__(operator)
        self.ml = ml
        self.cycles = cycles

    def _solve(self, b):
        # tol=0 runs exactly ``cycles`` V-cycles
        return self.ml.solve(b, x0=np.zeros_like(b), tol=0.0, maxiter=self.cycles, cycle="V")


class KrylovCoarseSolver(CoarseSolver):
    """GMRES on the coarse operator preconditioned by one AMG V-cycle."""

    def __init__(self, operator: Operator, ml: pyamg.multilevel.MultilevelSolver,
                 max_iter: int = 2000, rtol: float = 1e-4, restart: int = 50):
        super().__init__(operator)
        self.ml = ml
        self.preconditioner = ml.aspreconditioner(cycle="V")
        self.max_iter = max_iter
        self.rtol = rtol
        self.restart = restart
        self.failures = 0
        self.iterations = 0

    def _solve(self, b):
        result = krylov_solve(
            self.operator, b, preconditioner=self.preconditioner,
            rtol=self.rtol, atol=0.0, max_iter=self.max_iter, restart=self.restart,
        )
        self.iterations += result.iterations
        if not result.converged:
            self.failures += 1
            log.warning(
                f"Coarse GMRES not converged after {result.iterations} iterations "
                f"(residual={result.final_residual:.3e})"
            )
        return result.x


class DirectCoarseSolver(CoarseSolver):
    """Sparse LU factorization of the assembled coarse operator."""

    def __init__(self, operator: Operator, A: sparse.spmatrix):
        super().__init__(operator)
        self.lu: SuperLU = splu(sparse.csc_matrix(A))

    def _solve(self, b):
        return self.lu.solve(b)


def coarse_matrix(operator: Operator, partial_assembly: bool) -> tuple[sparse.csr_matrix, bool]:
    """Matrix the AMG hierarchy is built from, and whether it is reused."""
    A = operator.assembled_matrix()
    if operator.space.order == 1 and not partial_assembly and A is not None:
        return A, True
    return lor_matrix(operator), False


def select_coarse_solver(
    operator: Operator,
    params: MultigridParameters,
    h_index: int = 0,
    expected_order: int | None = None,
) -> CoarseSolver:
    """Build the bottom-of-hierarchy solve for ``operator``.

    Parameters
    ----------
    operator : coarsest level operator (exposes ``space``, ``form``, ``ess_dofs``)
    params : MultigridParameters
    h_index : geometric refinement index of the coarse space
    expected_order : polynomial order the coarse space must have

    Raises
    ------
    ConfigurationError
        Unknown coarse solver, or a coarse space inconsistent with the
        requested geometric levels / order.
    """
    if params.coarse_solver not in COARSE_SOLVERS:
        raise ConfigurationError(f"Unknown coarse solver '{params.coarse_solver}'. Use one of {COARSE_SOLVERS}")
    if not 0 <= h_index < max(params.h_levels, 1):
        raise ConfigurationError(
            f"Coarse space has geometric index {h_index}, outside the {params.h_levels} requested levels"
        )
    if expected_order is not None and operator.space.order != expected_order:
        raise ConfigurationError(
            f"Coarse space has order {operator.space.order}, expected {expected_order}"
        )

    if params.coarse_solver == "direct":
        A = operator.assembled_matrix()
        if A is None:
            A = eliminate_essential(assemble_matrix(operator.space, operator.form), operator.ess_dofs)
        log.info(f"Coarse solver: sparse LU, ndofs={operator.height}")
        return DirectCoarseSolver(operator, A)

    A, reused = coarse_matrix(operator, params.partial_assembly)
    ml = pyamg.smoothed_aggregation_solver(A)
    log.info(
        f"Coarse solver: AMG from {'assembled' if reused else 'LOR'} matrix, "
        f"ndofs={operator.height}, amg_levels={len(ml.levels)}"
    )

    if params.use_iterative_coarse_solve:
        return KrylovCoarseSolver(
            operator, ml,
            max_iter=params.coarse_krylov_max_iter,
            rtol=params.coarse_krylov_rtol,
            restart=min(params.krylov_restart, max(operator.height, 1)),
        )
    return AMGCoarseSolver(operator, ml, params.coarse_solver_iters)
