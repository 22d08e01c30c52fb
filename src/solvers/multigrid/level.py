"""Level dataclass: everything one multigrid level owns."""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from FEM.operators import Operator
from FEM.SEM.space import H1Space


class RefinementKind(Enum):
    """How a level was obtained from the previous (coarser) one."""

    COARSE = "coarse"
    GEOMETRIC = "geometric"
    ORDER = "order"
    IDENTITY = "identity"


@dataclass
class Level:
    """One entry of the multigrid hierarchy.

    Attributes
    ----------
    index : int
        Level index (0 = coarsest, increasing = finer)
    operator : Operator
        Discrete operator with essential dofs eliminated
    space : H1Space
        Discretization the operator acts on
    ess_dofs : np.ndarray
        Essential dof indices (boundary mask)
    order : int
        Polynomial order
    h_index : int
        Number of geometric refinements above the hierarchy's base mesh
    kind : RefinementKind
        Refinement step that produced this level
    smoother : Operator, optional
        Relaxation operator (None on the coarsest level)
    coarse_solver : Operator, optional
        Bottom solve (only on the coarsest level)
    transfer : Operator, optional
        Prolongation to the next finer level (None on the finest level)
    """

    index: int
    operator: Operator
    space: H1Space
    ess_dofs: np.ndarray = field(repr=False)
    order: int
    h_index: int
    kind: RefinementKind
    smoother: Operator | None = None
    coarse_solver: Operator | None = None
    transfer: Operator | None = None

    @property
    def ndofs(self) -> int:
        return self.operator.width

    @property
    def is_coarsest(self) -> bool:
        return self.coarse_solver is not None
