"""Multilevel (h/p) multigrid preconditioners for spectral element discretizations.

Components, leaf-first:
---------------------
eigen       power iteration and spectral bounds
smoothers   Jacobi / Chebyshev / additive Schwarz (LOR) smoothers
coarse      AMG, AMG-preconditioned GMRES and direct coarse solvers
transfer    prolongation between nested spaces
multigrid   level hierarchy and V-cycle
krylov      outer GMRES driver
solver      MultigridSolver (setup + solve + metrics)
"""

from .errors import MultigridError, ConfigurationError, NumericalBreakdown, ZeroDiagonalError
from .datastructures import MultigridParameters, Metrics, TimeSeries
from .eigen import EigenvalueEstimate, SpectralBounds, estimate_largest_eigenvalue
from .smoothers import (
    SmootherKind,
    JacobiSmoother,
    ChebyshevSmoother,
    AdditiveSchwarzLORSmoother,
    build_smoother,
)
from .krylov import KrylovResult, solve
from .coarse import (
    AMGCoarseSolver,
    KrylovCoarseSolver,
    DirectCoarseSolver,
    select_coarse_solver,
)
from .transfer import TransferOperator, prolongation_matrix
from .multigrid import Hierarchy, Level, RefinementKind, MultigridCycle, build_hierarchy
from .solver import MultigridSolver

__all__ = [
    # Errors
    "MultigridError",
    "ConfigurationError",
    "NumericalBreakdown",
    "ZeroDiagonalError",
    # Data structures
    "MultigridParameters",
    "Metrics",
    "TimeSeries",
    # Eigenvalues
    "EigenvalueEstimate",
    "SpectralBounds",
    "estimate_largest_eigenvalue",
    # Smoothers
    "SmootherKind",
    "JacobiSmoother",
    "ChebyshevSmoother",
    "AdditiveSchwarzLORSmoother",
    "build_smoother",
    # Krylov
    "KrylovResult",
    "solve",
    # Coarse solvers
    "AMGCoarseSolver",
    "KrylovCoarseSolver",
    "DirectCoarseSolver",
    "select_coarse_solver",
    # Transfers
    "TransferOperator",
    "prolongation_matrix",
    # Hierarchy
    "Hierarchy",
    "Level",
    "RefinementKind",
    "MultigridCycle",
    "build_hierarchy",
    # Driver
    "MultigridSolver",
]
