"""Prolongation between nested H1 spaces.

The coarse space is embedded in the fine one (finer mesh and/or higher
order), so prolongation is nodal interpolation: every fine dof takes the
value of the coarse element polynomial at its node. Restriction is the
transpose.
"""

from __future__ import annotations
import logging

import numpy as np
from scipy import sparse

from FEM.operators import MatrixOperator
from FEM.SEM.space import H1Space
from FEM.SEM.spectral import lagrange_basis, legendre_gauss_lobatto_nodes

log = logging.getLogger(__name__)

# Entries below this magnitude are interpolation round-off
DROP_TOL = 1e-13


def local_interpolation(coarse_order: int, fine_order: int,
                        shift: tuple[float, float] = (0.0, 0.0), scale: float = 1.0) -> np.ndarray:
    """Element interpolation matrix (fine nodes x coarse nodes).

    Fine node (xi, eta) sits at (scale * xi + shift[0], scale * eta + shift[1])
    in the coarse reference element.
    """
    nodes_c = legendre_gauss_lobatto_nodes(coarse_order + 1)
    nodes_f = legendre_gauss_lobatto_nodes(fine_order + 1)
    Lx = lagrange_basis(nodes_c, scale * nodes_f + shift[0])
    Ly = lagrange_basis(nodes_c, scale * nodes_f + shift[1])
    # Local index i * n + j with i the xi-index
    return np.kron(Lx, Ly)


def prolongation_matrix(coarse: H1Space, fine: H1Space) -> sparse.csr_matrix:
    """Sparse prolongation from ``coarse`` to ``fine``.

    ``fine`` lives either on the same mesh (order refinement) or on the
    uniform refinement of the coarse mesh (geometric refinement).
    """
    if fine.mesh is coarse.mesh:
        parents = np.arange(coarse.mesh.noelms)
        codes = np.zeros(fine.mesh.noelms, dtype=np.int64)
        local = [local_interpolation(coarse.order, fine.order)]
    elif fine.mesh.parents is not None and fine.mesh.parents.max() < coarse.mesh.noelms:
        parents = fine.mesh.parents
        a, b = fine.mesh.offsets[:, 0], fine.mesh.offsets[:, 1]
        codes = 2 * a + b
        local = [
            local_interpolation(coarse.order, fine.order, shift=(ca - 0.5, cb - 0.5), scale=0.5)
            for ca in (0, 1) for cb in (0, 1)
        ]
    else:
        raise ValueError("Fine space is neither on the coarse mesh nor on its uniform refinement")
    local = np.stack(local)

    # Each fine dof is interpolated from the first element that contains it
    nfl = fine.nloc
    dofs, first = np.unique(fine.loc2glb.ravel(), return_index=True)
    e_idx, a_idx = np.divmod(first, nfl)
    rows_local = local[codes[e_idx], a_idx]  # (ndofs_fine, coarse nloc)
    cols = coarse.loc2glb[parents[e_idx]]

    rows_local[np.abs(rows_local) < DROP_TOL] = 0.0
    P = sparse.csr_matrix(
        (rows_local.ravel(), (np.repeat(dofs, coarse.nloc), cols.ravel())),
        shape=(fine.ndofs, coarse.ndofs),
    )
    P.eliminate_zeros()
    return P


class TransferOperator(MatrixOperator):
    """Prolongation P (apply) and restriction P^T (apply_transpose)."""

    def __init__(self, coarse: H1Space, fine: H1Space):
        self.kind = "order" if fine.mesh is coarse.mesh else "geometric"
        super().__init__(prolongation_matrix(coarse, fine))
        log.debug(f"{self.kind} transfer: {coarse.ndofs} -> {fine.ndofs} dofs, nnz={self.A.nnz}")
