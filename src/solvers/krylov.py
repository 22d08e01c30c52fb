"""Outer GMRES driver with a multigrid preconditioner.

Non-convergence is a reported outcome (``KrylovResult.converged``), never an
exception; the caller decides whether to treat it as a failure.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging
import math
import time

import numpy as np
from numpy.typing import NDArray
from scipy.sparse.linalg import LinearOperator, aslinearoperator, gmres

from FEM.operators import Operator

log = logging.getLogger(__name__)


@dataclass
class KrylovResult:
    """Outcome of a Krylov solve.

    Attributes
    ----------
    x : solution estimate
    iterations : number of inner (Arnoldi) iterations
    converged : whether the true residual met max(atol, rtol * ||b||)
    initial_residual, final_residual : true residual norms ||b - A x||
    history : preconditioned residual norm after every iteration (absolute,
        rescaled from the ||b||-relative value GMRES reports)
    wall_time : seconds spent in the solve
    """

    x: NDArray[np.float64] = field(repr=False)
    iterations: int
    converged: bool
    initial_residual: float
    final_residual: float
    history: NDArray[np.float64] = field(repr=False)
    wall_time: float = 0.0


def as_scipy_operator(op) -> LinearOperator:
    if isinstance(op, Operator):
        return op.as_linear_operator()
    return aslinearoperator(op)


def solve(
    operator,
    b: NDArray[np.float64],
    preconditioner=None,
    x0: NDArray[np.float64] | None = None,
    rtol: float = 1e-8,
    atol: float = 0.0,
    max_iter: int = 1000,
    restart: int = 50,
) -> KrylovResult:
    """Restarted GMRES with ``preconditioner`` applied as M^-1.

    Parameters
    ----------
    operator : Operator, sparse matrix or LinearOperator
    b : right-hand side
    preconditioner : Operator or LinearOperator, optional
        One application computes an approximation of A^-1 r (e.g. one V-cycle).
    x0 : initial guess (zero when None)
    rtol, atol : float
        Converged when ||b - A x|| <= max(atol, rtol * ||b||).
    max_iter : int
        Cap on inner iterations, rounded up to whole restart cycles.
    restart : int
        Krylov subspace dimension between restarts.
    """
    A = as_scipy_operator(operator)
    M = as_scipy_operator(preconditioner) if preconditioner is not None else None
    x0 = np.zeros(A.shape[1]) if x0 is None else np.asarray(x0, dtype=np.float64)

    initial = float(np.linalg.norm(b - A.matvec(x0)))
    history = []

    t0 = time.perf_counter()
    x, info = gmres(
        A, b, x0=x0, M=M,
        rtol=rtol, atol=atol,
        restart=restart, maxiter=max(1, math.ceil(max_iter / restart)),
        callback=history.append, callback_type="pr_norm",
    )
    wall_time = time.perf_counter() - t0

    # GMRES reports the residual relative to ||b||
    bnorm = float(np.linalg.norm(b))
    history = np.asarray(history, dtype=np.float64) * (bnorm if bnorm > 0 else 1.0)

    if info < 0:
        log.warning(f"GMRES reported illegal input or breakdown (info={info})")
    final = float(np.linalg.norm(b - A.matvec(x)))
    result = KrylovResult(
        x=x,
        iterations=len(history),
        converged=info == 0,
        initial_residual=initial,
        final_residual=final,
        history=history,
        wall_time=wall_time,
    )

    if result.converged:
        log.debug(f"GMRES converged in {result.iterations} iterations, residual={final:.3e}")
    else:
        log.warning(f"GMRES did not converge: {result.iterations} iterations, residual={final:.3e}")
    return result
