"""Multigrid-preconditioned GMRES solver for the model Helmholtz/Poisson problem.

Solves -div(c grad u) - omega^2 u = f with u = sin(omega (x + y) / sqrt(2))
on the essential boundary. For f = 0 this field is the exact solution.
"""

from __future__ import annotations
import logging
import time
from pathlib import Path
from typing import Callable

import numpy as np
import pyvista as pv

from FEM.io import save_vtk, to_pyvista
from FEM.SEM.assembly import assemble_load_vector, form_linear_system, l2_error
from FEM.SEM.mesh import QuadMesh
from solvers.datastructures import Metrics, MultigridParameters, TimeSeries
from solvers.krylov import KrylovResult, solve as gmres_solve
from solvers.multigrid import Hierarchy, MultigridCycle, build_hierarchy

log = logging.getLogger(__name__)


def plane_wave(omega: float) -> Callable[[np.ndarray, np.ndarray], np.ndarray]:
    """u(x, y) = sin(omega (x + y) / sqrt(2))."""
    return lambda x, y: np.sin(omega * (x + y) / np.sqrt(2.0))


class MultigridSolver:
    """Setup and solve driver.

    Handles:
    - Hierarchy and V-cycle construction (setup)
    - Linear system with boundary data, outer GMRES (solve)
    - Metrics and residual history

    Parameters
    ----------
    params : MultigridParameters, optional
        If not provided, kwargs are used to create params.
    mesh : QuadMesh, optional
        Base mesh (unit square with ``params.mesh_elements`` per direction by default).
    boundary : callable, optional
        Essential boundary data g(x, y) (plane wave by default).
    source : callable, optional
        Volume source f(x, y) (zero by default).
    """

    def __init__(self, params: MultigridParameters | None = None, mesh: QuadMesh | None = None,
                 boundary: Callable | None = None, source: Callable | None = None, **kwargs):
        self.params = params if params is not None else MultigridParameters(**kwargs)
        self.mesh = mesh
        self.boundary = boundary if boundary is not None else plane_wave(self.params.omega)
        self.source = source

        self.metrics = Metrics()
        self.time_series = None  # Populated after solve()
        self.hierarchy: Hierarchy | None = None
        self.preconditioner: MultigridCycle | None = None
        self.result: KrylovResult | None = None
        self.u: np.ndarray | None = None

    def setup(self) -> Hierarchy:
        t0 = time.perf_counter()
        self.hierarchy = build_hierarchy(self.params, self.mesh)
        self.preconditioner = MultigridCycle(
            self.hierarchy, self.params.pre_smoothing_steps, self.params.post_smoothing_steps
        )
        self.metrics.setup_time_seconds = time.perf_counter() - t0
        self.metrics.num_levels = self.hierarchy.num_levels
        self.metrics.ndofs = self.hierarchy.finest.ndofs
        self.metrics.coarse_ndofs = self.hierarchy.coarsest.ndofs

        log.info(
            f"Setup done in {self.metrics.setup_time_seconds:.2f}s: {self.hierarchy.num_levels} levels, "
            f"dofs per level {[level.ndofs for level in self.hierarchy]}"
        )
        return self.hierarchy

    def solve(self) -> KrylovResult:
        """Run the preconditioned GMRES solve (builds the hierarchy on first call)."""
        if self.hierarchy is None:
            self.setup()
        finest = self.hierarchy.finest
        space, op = finest.space, finest.operator

        x = space.project(self.boundary)
        b = assemble_load_vector(space, self.source) if self.source is not None else np.zeros(space.ndofs)
        B, X = form_linear_system(op, x, b)

        p = self.params
        self.preconditioner.reset_timings()
        self.result = gmres_solve(
            op, B, preconditioner=self.preconditioner, x0=X,
            rtol=p.krylov_rtol, atol=p.krylov_atol, max_iter=p.krylov_max_iter, restart=p.krylov_restart,
        )
        self.u = self.result.x

        self.metrics.iterations = self.result.iterations
        self.metrics.converged = self.result.converged
        self.metrics.initial_residual = self.result.initial_residual
        self.metrics.final_residual = self.result.final_residual
        self.metrics.wall_time_seconds = self.result.wall_time
        if self.source is None and not p.jump_coefficient:
            self.metrics.l2_error = l2_error(space, self.u, self.boundary)
        self.time_series = TimeSeries.from_history(self.result.history)

        log.info(
            f"GMRES: {self.result.iterations} iterations, converged={self.result.converged}, "
            f"residual={self.result.final_residual:.3e}, time={self.result.wall_time:.2f}s"
        )
        return self.result

    def fields(self) -> dict[str, np.ndarray]:
        """Solution and exact field on the finest space."""
        return {"u": self.u, "u_exact": self.hierarchy.finest.space.project(self.boundary)}

    def to_vtk(self) -> pv.UnstructuredGrid:
        return to_pyvista(self.hierarchy.finest.space, self.fields())

    def save_vtk(self, filepath: str | Path) -> Path:
        return save_vtk(self.hierarchy.finest.space, self.fields(), filepath)
