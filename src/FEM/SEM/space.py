"""Continuous (H1) spectral element spaces on quad meshes."""

from __future__ import annotations
from typing import Callable, Iterable
import logging

import numpy as np
from numpy.typing import NDArray

from .mesh import QuadMesh
from .spectral import ReferenceQuad

log = logging.getLogger(__name__)


class H1Space:
    """C0 tensor-product Lagrange space of order p on a quad mesh.

    Dof numbering: vertex dofs carry the vertex id, then the p-1 interior dofs
    of every edge (ordered from the lower to the higher vertex id), then the
    (p-1)^2 element interiors.

    Parameters
    ----------
    mesh : QuadMesh
    order : polynomial order p (p+1 GLL nodes per direction)
    """

    def __init__(self, mesh: QuadMesh, order: int):
        self.mesh = mesh
        self.order = order
        self.ref = ReferenceQuad(order)
        self.nloc = self.ref.num_nodes
        self.loc2glb, self.edge_dofs, self.ndofs = self._build_c0_mapping()

        # Dof coordinates
        xi, eta = self.ref.tensor_nodes()
        x, y = mesh.map_points(xi, eta)
        self.X = np.zeros(self.ndofs)
        self.Y = np.zeros(self.ndofs)
        self.X[self.loc2glb] = x
        self.Y[self.loc2glb] = y

    def _build_c0_mapping(self) -> tuple[NDArray[np.int64], dict, int]:
        """Build local-to-global DOF map ensuring C0 continuity."""
        p, n = self.order, self.order + 1
        mesh = self.mesh
        loc2glb = -np.ones((mesh.noelms, self.nloc), dtype=np.int64)

        # Local index: (i, j) -> i * n + j  (i=xi-index, j=eta-index)
        def idx(i, j): return i * n + j

        # 1) Corners: SW, SE, NE, NW carry the vertex id
        corners = [idx(0, 0), idx(p, 0), idx(p, p), idx(0, p)]
        loc2glb[:, corners] = mesh.EToV
        next_dof = mesh.nonodes

        # 2) Edges, each local list running from corner k to corner k+1
        edges = [
            [idx(i, 0) for i in range(1, p)],       # bottom: j=0
            [idx(p, j) for j in range(1, p)],       # right: i=p
            [idx(i, p) for i in range(p-1, 0, -1)],  # top: j=p (reversed)
            [idx(0, j) for j in range(p-1, 0, -1)],  # left: i=0 (reversed)
        ]
        edge_dofs = {}
        if p > 1:
            for e in range(mesh.noelms):
                for k in range(4):
                    v0, v1 = mesh.EToV[e, k], mesh.EToV[e, (k + 1) % 4]
                    key = (min(v0, v1), max(v0, v1))
                    if key not in edge_dofs:
                        edge_dofs[key] = np.arange(next_dof, next_dof + p - 1)
                        next_dof += p - 1
                    dofs = edge_dofs[key]
                    loc2glb[e, edges[k]] = dofs if v0 < v1 else dofs[::-1]

            # 3) Interior: unique per element
            interior = [idx(i, j) for i in range(1, p) for j in range(1, p)]
            nint = len(interior)
            loc2glb[:, interior] = next_dof + np.arange(mesh.noelms * nint).reshape(-1, nint)
            next_dof += mesh.noelms * nint

        return loc2glb, edge_dofs, next_dof

    def edge_line(self, v0: int, v1: int) -> NDArray[np.int64]:
        """All dofs along the edge (v0, v1), ordered from v0 to v1."""
        inner = self.edge_dofs.get((min(v0, v1), max(v0, v1)), np.empty(0, dtype=np.int64))
        if v0 > v1:
            inner = inner[::-1]
        return np.concatenate(([v0], inner, [v1])).astype(np.int64)

    def essential_dofs(self, attributes: Iterable[int] | None = None) -> NDArray[np.int64]:
        """Resolve boundary attributes (all when None) to sorted essential dof indices."""
        bedges = self.mesh.boundary_edges(attributes)
        if len(bedges) == 0:
            return np.empty(0, dtype=np.int64)
        return np.unique(np.concatenate([self.edge_line(a, b) for a, b in bedges]))

    def project(self, func: Callable[[NDArray, NDArray], NDArray]) -> NDArray[np.float64]:
        """Nodal interpolant of func(x, y) (exact for fields in the space)."""
        return np.asarray(func(self.X, self.Y), dtype=np.float64) * np.ones(self.ndofs)

    def element_values(self, u: NDArray) -> NDArray:
        """Gather a global vector into element-local tensors, shape (noelms, p+1, p+1)."""
        n = self.order + 1
        return u[self.loc2glb].reshape(-1, n, n)

    def lor_space(self) -> "H1Space":
        """Low-order refined companion space.

        Every element is split into p x p bilinear quads along its GLL node
        lines. The LOR mesh vertices are the dofs of this space, so the
        order-1 LOR space shares this space's dof numbering.
        """
        p, n = self.order, self.order + 1
        g = self.loc2glb.reshape(-1, n, n)
        EToV = np.stack([
            g[:, :-1, :-1], g[:, 1:, :-1], g[:, 1:, 1:], g[:, :-1, 1:],
        ], axis=-1).reshape(-1, 4)

        bedges, battr = [], []
        for (a, b), attr in zip(self.mesh.bedges, self.mesh.battr):
            line = self.edge_line(a, b)
            bedges.extend(zip(line[:-1], line[1:]))
            battr.extend([attr] * p)

        lor_mesh = QuadMesh(
            self.X, self.Y, EToV,
            np.array(bedges, dtype=np.int64).reshape(-1, 2),
            np.array(battr, dtype=np.int64),
        )
        log.debug(f"LOR mesh: {lor_mesh.noelms} elements for order {p} on {self.mesh.noelms} elements")
        return H1Space(lor_mesh, 1)

    def __repr__(self):
        return f"H1Space(order={self.order}, noelms={self.mesh.noelms}, ndofs={self.ndofs})"
