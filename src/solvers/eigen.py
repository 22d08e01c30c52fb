"""Power iteration for the dominant eigenvalue of (preconditioned) operators.

The estimate calibrates smoothers: it is never exact, so consumers turn it
into spectral bounds with a safety factor on the upper end.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging

import numpy as np
from numpy.typing import NDArray

from .errors import NumericalBreakdown

log = logging.getLogger(__name__)


@dataclass
class EigenvalueEstimate:
    """Result of a power iteration.

    Attributes
    ----------
    value : estimated dominant eigenvalue magnitude
    vector : normalized iterate belonging to ``value``
    iterations : number of operator applications in the loop
    converged : whether successive estimates met the tolerance
    residual : fixed-point residual ||A v - value v||
    history : Rayleigh quotient after every iteration
    """

    value: float
    vector: NDArray[np.float64] = field(repr=False)
    iterations: int
    converged: bool
    residual: float
    history: list = field(default_factory=list, repr=False)


@dataclass(frozen=True)
class SpectralBounds:
    """Interval [lower, upper] enclosing the spectrum seen by a smoother."""

    lower: float
    upper: float

    @classmethod
    def from_estimate(cls, eigenvalue: float, safety_factor: float = 1.1,
                      lower_fraction: float = 0.0) -> "SpectralBounds":
        upper = safety_factor * eigenvalue
        return cls(lower=lower_fraction * upper, upper=upper)

    @property
    def theta(self) -> float:
        return 0.5 * (self.upper + self.lower)

    @property
    def delta(self) -> float:
        return 0.5 * (self.upper - self.lower)

    @property
    def weight(self) -> float:
        return 1.0 / self.theta


def estimate_largest_eigenvalue(
    op,
    max_iters: int = 10,
    tol: float = 1e-8,
    seed: int = 12345,
    v0: NDArray[np.float64] | None = None,
    level: int | None = None,
    strict: bool = False,
) -> EigenvalueEstimate:
    """Estimate the dominant eigenvalue of ``op`` by power iteration.

    The iterate is normalized, mapped through ``op`` and the Rayleigh
    quotient <v, op v> is tracked until ``max_iters`` or until successive
    estimates differ by less than ``tol`` relative to the previous one.

    Parameters
    ----------
    op : Operator, sparse matrix or ndarray
        Anything supporting ``op @ v``.
    max_iters, tol : int, float
        Iteration cap and relative stopping tolerance.
    seed : int
        Seed for the uniform random start vector (ignored when ``v0`` given).
    v0 : ndarray, optional
        Start vector.
    level : int, optional
        Hierarchy level, for diagnostics.
    strict : bool
        Raise NumericalBreakdown when the estimate does not stabilize.

    Returns
    -------
    EigenvalueEstimate
    """
    if max_iters < 1:
        raise ValueError(f"max_iters must be positive, got {max_iters}")
    n = op.shape[1]
    if v0 is None:
        w = np.random.default_rng(seed).random(n)
    else:
        w = np.array(v0, dtype=np.float64, copy=True)

    eigenvalue = 0.0
    history = []
    converged = False

    for iterations in range(1, max_iters + 1):
        norm = np.sqrt(np.dot(w, w))
        if norm == 0.0 or not np.isfinite(norm):
            raise NumericalBreakdown("Power iteration produced a degenerate iterate", level=level)
        v = w / norm
        Av = op @ v
        eigenvalue_new = float(np.dot(v, Av))
        diff = abs(eigenvalue_new - eigenvalue) / abs(eigenvalue) if eigenvalue != 0.0 else np.inf
        eigenvalue = eigenvalue_new
        history.append(eigenvalue)
        log.debug(f"Power iteration {iterations}: lambda={eigenvalue:.8e}, rel. change={diff:.2e}")
        if diff < tol:
            converged = True
            break
        w = Av

    residual = float(np.linalg.norm(Av - eigenvalue * v))

    if not converged:
        log.info(
            f"Power iteration not stabilized after {iterations} iterations "
            f"(level={level}, lambda={eigenvalue:.6e}, residual={residual:.3e})"
        )
        if strict:
            raise NumericalBreakdown("Eigenvalue estimate did not stabilize", level=level, residual=residual)

    return EigenvalueEstimate(
        value=abs(eigenvalue),
        vector=v,
        iterations=iterations,
        converged=converged,
        residual=residual,
        history=history,
    )
