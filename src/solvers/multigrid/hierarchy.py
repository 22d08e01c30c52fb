"""Multigrid hierarchy: append-only arena of levels, and its construction.

Levels are stored coarsest first. Construction starts from the coarse level
(which owns the coarse solver), then appends geometric refinements (uniformly
refined mesh, same order) followed by order refinements (same mesh, order
doubled per level).
"""

from __future__ import annotations
import logging
from typing import Iterator

import numpy as np
import pandas as pd

from FEM.operators import IdentityOperator, Operator
from FEM.SEM.assembly import VariationalForm, assemble_operator
from FEM.SEM.coefficients import jump_coefficient
from FEM.SEM.mesh import QuadMesh
from FEM.SEM.space import H1Space
from ..coarse import select_coarse_solver
from ..datastructures import MultigridParameters
from ..errors import ConfigurationError
from ..smoothers import SmootherKind, build_smoother
from ..transfer import TransferOperator
from .level import Level, RefinementKind

log = logging.getLogger(__name__)

METHODS = ("mg", "lor", "lors")


class Hierarchy:
    """Ordered, append-only sequence of levels (index 0 = coarsest)."""

    def __init__(self):
        self.levels: list[Level] = []
        self.finalized = False

    def __len__(self) -> int:
        return len(self.levels)

    def __getitem__(self, index: int) -> Level:
        return self.levels[index]

    def __iter__(self) -> Iterator[Level]:
        return iter(self.levels)

    @property
    def num_levels(self) -> int:
        return len(self.levels)

    @property
    def coarsest(self) -> Level:
        return self.levels[0]

    @property
    def finest(self) -> Level:
        return self.levels[-1]

    def _check_open(self):
        if self.finalized:
            raise ConfigurationError("Hierarchy is finalized; levels can no longer be added")

    def add_coarsest_level(self, operator: Operator, coarse_solver: Operator, space: H1Space,
                           ess_dofs: np.ndarray, h_index: int = 0) -> Level:
        self._check_open()
        if self.levels:
            raise ConfigurationError("Hierarchy already has a coarsest level")
        if coarse_solver.shape != operator.shape:
            raise ConfigurationError(f"Coarse solver shape {coarse_solver.shape} != operator shape {operator.shape}")
        level = Level(
            index=0, operator=operator, space=space, ess_dofs=ess_dofs,
            order=space.order, h_index=h_index, kind=RefinementKind.COARSE,
            coarse_solver=coarse_solver,
        )
        self.levels.append(level)
        return level

    def add_level(self, operator: Operator, smoother: Operator, transfer: Operator, space: H1Space,
                  ess_dofs: np.ndarray, h_index: int, kind: RefinementKind) -> Level:
        """Append a finer level; ``transfer`` prolongates from the current finest level to it."""
        self._check_open()
        if not self.levels:
            raise ConfigurationError("Add the coarsest level before finer levels")
        coarse = self.finest
        if operator.height != operator.width:
            raise ConfigurationError(f"Level operator must be square, got {operator.shape}")
        if transfer.width != coarse.operator.width or transfer.height != operator.height:
            raise ConfigurationError(
                f"Transfer shape {transfer.shape} does not map level {coarse.index} "
                f"({coarse.ndofs} dofs) to the new level ({operator.height} dofs)"
            )
        if smoother.shape != operator.shape:
            raise ConfigurationError(f"Smoother shape {smoother.shape} != operator shape {operator.shape}")

        coarse.transfer = transfer
        level = Level(
            index=len(self.levels), operator=operator, space=space, ess_dofs=ess_dofs,
            order=space.order, h_index=h_index, kind=kind, smoother=smoother,
        )
        self.levels.append(level)
        return level

    def finalize(self) -> "Hierarchy":
        self.check_invariants()
        self.finalized = True
        return self

    def check_invariants(self):
        """Structural checks: one coarse solver, no dangling transfers, matching dimensions."""
        if not self.levels:
            raise ConfigurationError("Hierarchy has no levels")
        for k, level in enumerate(self.levels):
            if (level.coarse_solver is not None) != (k == 0):
                raise ConfigurationError(f"Level {k}: only the coarsest level owns a coarse solver")
            if (level.transfer is None) != (k == len(self.levels) - 1):
                raise ConfigurationError(f"Level {k}: only the finest level has no transfer")
            if level.transfer is not None:
                finer = self.levels[k + 1]
                if level.transfer.width != level.operator.width or level.transfer.height != finer.operator.width:
                    raise ConfigurationError(f"Level {k}: transfer shape {level.transfer.shape} mismatch")

    def summary(self) -> pd.DataFrame:
        """One row per level: kind, order, dofs and smoother calibration."""
        rows = []
        for level in self.levels:
            relax = level.smoother if level.smoother is not None else level.coarse_solver
            bounds = getattr(relax, "bounds", None)
            rows.append({
                "level": level.index,
                "kind": level.kind.value,
                "order": level.order,
                "h_index": level.h_index,
                "ndofs": level.ndofs,
                "n_ess": len(level.ess_dofs),
                "relaxation": type(relax).__name__,
                "lambda_upper": bounds.upper if bounds is not None else np.nan,
                "weight": bounds.weight if bounds is not None else np.nan,
            })
        return pd.DataFrame(rows)


# =============================================================================
# Construction
# =============================================================================


def build_form(params: MultigridParameters) -> VariationalForm:
    """Diffusion (constant or jump coefficient) plus mass -omega^2."""
    diffusion = jump_coefficient() if params.jump_coefficient else 1.0
    mass = -params.omega**2 if params.omega != 0.0 else None
    return VariationalForm(diffusion=diffusion, mass=mass)


def level_orders(params: MultigridParameters) -> list[int]:
    """Polynomial orders of the order-refinement levels: order, then 2, 4, ... ."""
    return [params.order] + [params.order * 2**k for k in range(1, params.o_levels)]


def assemble_level_operator(space: H1Space, form: VariationalForm, ess_dofs: np.ndarray,
                            params: MultigridParameters, o_index: int = 0) -> Operator:
    """Level operator with the configured assembly strategy.

    Raises
    ------
    ConfigurationError
        Order refinement requested on a base order > 1.
    """
    if o_index > 0 and params.order > 1:
        raise ConfigurationError(
            f"Order refinement requires base order 1, got order={params.order} with o_levels={params.o_levels}"
        )
    return assemble_operator(space, form, ess_dofs, partial=params.partial_assembly)


def validate_parameters(params: MultigridParameters):
    if params.method not in METHODS:
        raise ConfigurationError(f"Unknown preconditioner method '{params.method}'. Use one of {METHODS}")
    if params.h_levels < 1 or params.o_levels < 1:
        raise ConfigurationError(f"Need h_levels >= 1 and o_levels >= 1, got {params.h_levels}, {params.o_levels}")
    if params.order < 1:
        raise ConfigurationError(f"Polynomial order must be >= 1, got {params.order}")
    if params.o_levels > 1 and params.order > 1:
        raise ConfigurationError(
            f"Order refinement requires base order 1, got order={params.order} with o_levels={params.o_levels}"
        )
    SmootherKind.from_name(params.smoother)


def base_mesh(params: MultigridParameters, mesh: QuadMesh | None = None) -> QuadMesh:
    """Input mesh (unit square by default) after ``ref_levels`` uniform refinements."""
    mesh = mesh if mesh is not None else QuadMesh.unit_square(params.mesh_elements)
    for _ in range(params.ref_levels):
        mesh = mesh.uniformly_refined()
    return mesh


def build_hierarchy(params: MultigridParameters, mesh: QuadMesh | None = None,
                    form: VariationalForm | None = None) -> Hierarchy:
    """Build the level hierarchy for ``params.method``.

    - ``mg``: coarse level on the base mesh, then h_levels - 1 geometric and
      o_levels - 1 order refinements.
    - ``lor``: a single level on the finest space, solved by AMG on its LOR matrix.
    - ``lors``: the ``lor`` level plus a smoothing level with the same operator
      and an identity transfer.
    """
    validate_parameters(params)
    form = form if form is not None else build_form(params)
    kind = SmootherKind.from_name(params.smoother)
    attrs = params.essential_attributes
    orders = level_orders(params)

    mesh = base_mesh(params, mesh)
    hierarchy = Hierarchy()

    if params.method in ("lor", "lors"):
        for _ in range(params.h_levels - 1):
            mesh = mesh.uniformly_refined()
        space = H1Space(mesh, orders[-1])
        ess = space.essential_dofs(attrs)
        op = assemble_level_operator(space, form, ess, params, o_index=len(orders) - 1)
        coarse = select_coarse_solver(op, params, h_index=params.h_levels - 1, expected_order=orders[-1])
        hierarchy.add_coarsest_level(op, coarse, space, ess, h_index=params.h_levels - 1)
        log.info(f"Level 0 ({params.method}): order={space.order}, ndofs={space.ndofs}")

        if params.method == "lors":
            smoother = build_smoother(kind, op, params, level=1)
            hierarchy.add_level(op, smoother, IdentityOperator(op.height), space, ess,
                                h_index=params.h_levels - 1, kind=RefinementKind.IDENTITY)
        return hierarchy.finalize()

    space = H1Space(mesh, orders[0])
    ess = space.essential_dofs(attrs)
    op = assemble_level_operator(space, form, ess, params)
    coarse = select_coarse_solver(op, params, h_index=0, expected_order=params.order)
    hierarchy.add_coarsest_level(op, coarse, space, ess)
    log.info(f"Level 0: order={space.order}, ndofs={space.ndofs}")

    # Geometric refinements
    for h in range(1, params.h_levels):
        mesh = mesh.uniformly_refined()
        _append_level(hierarchy, H1Space(mesh, orders[0]), form, params, kind, h, 0, RefinementKind.GEOMETRIC)

    # Order refinements
    for o in range(1, params.o_levels):
        _append_level(hierarchy, H1Space(mesh, orders[o]), form, params, kind,
                      params.h_levels - 1, o, RefinementKind.ORDER)

    return hierarchy.finalize()


def _append_level(hierarchy: Hierarchy, space: H1Space, form: VariationalForm, params: MultigridParameters,
                  kind: SmootherKind, h_index: int, o_index: int, refinement: RefinementKind):
    index = hierarchy.num_levels
    ess = space.essential_dofs(params.essential_attributes)
    op = assemble_level_operator(space, form, ess, params, o_index=o_index)
    smoother = build_smoother(kind, op, params, level=index)
    transfer = TransferOperator(hierarchy.finest.space, space)
    hierarchy.add_level(op, smoother, transfer, space, ess, h_index=h_index, kind=refinement)
    log.info(f"Level {index} ({refinement.value}): order={space.order}, ndofs={space.ndofs}")
