"""Quadrilateral meshes for the spectral element method.

Structured rectangle generation, uniform refinement with parent bookkeeping,
and loading quad meshes through meshio. Quads store their corners
counter-clockwise as [SW, SE, NE, NW]; local edge k joins corners k and k+1.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
import logging

import numpy as np
from numpy.typing import NDArray
import meshio

log = logging.getLogger(__name__)

# Boundary attributes of the structured generator (Cartesian convention)
BOTTOM, RIGHT, TOP, LEFT = 1, 2, 3, 4

# Tolerance for boundary node detection (floating-point comparison)
BOUNDARY_TOL = 1e-10

# Child quadrant (a, b) of a refined quad, in child order 4 * e + k
CHILD_OFFSETS = np.array([[0, 0], [1, 0], [1, 1], [0, 1]], dtype=np.int64)


def bilinear_shape(xi: NDArray, eta: NDArray) -> NDArray:
    """Bilinear shape functions N[c, q] of the four corners at (xi_q, eta_q)."""
    return 0.25 * np.array([
        (1 - xi) * (1 - eta),  # SW
        (1 + xi) * (1 - eta),  # SE
        (1 + xi) * (1 + eta),  # NE
        (1 - xi) * (1 + eta),  # NW
    ])


def bilinear_shape_gradient(xi: NDArray, eta: NDArray) -> tuple[NDArray, NDArray]:
    """Reference derivatives (dN/dxi, dN/deta) of the bilinear shape functions."""
    dxi = 0.25 * np.array([-(1 - eta), (1 - eta), (1 + eta), -(1 + eta)])
    deta = 0.25 * np.array([-(1 - xi), -(1 + xi), (1 + xi), (1 - xi)])
    return dxi, deta


@dataclass
class QuadMesh:
    """Conforming quadrilateral mesh with attributed boundary edges.

    Parameters
    ----------
    VX, VY : vertex coordinates
    EToV : element-to-vertex table, shape (noelms, 4)
    bedges : boundary edges as vertex pairs, shape (nbedges, 2)
    battr : boundary attribute of every boundary edge
    parents : parent element of every element (set by refinement)
    offsets : quadrant (a, b) of every element inside its parent
    """

    VX: NDArray[np.float64]
    VY: NDArray[np.float64]
    EToV: NDArray[np.int64]
    bedges: NDArray[np.int64]
    battr: NDArray[np.int64]
    parents: NDArray[np.int64] | None = None
    offsets: NDArray[np.int64] | None = None

    noelms: int = field(init=False)
    nonodes: int = field(init=False)

    def __post_init__(self):
        self.VX = np.asarray(self.VX, dtype=np.float64)
        self.VY = np.asarray(self.VY, dtype=np.float64)
        self.EToV = np.asarray(self.EToV, dtype=np.int64).reshape(-1, 4)
        self.bedges = np.asarray(self.bedges, dtype=np.int64).reshape(-1, 2)
        self.battr = np.asarray(self.battr, dtype=np.int64)
        self.noelms = len(self.EToV)
        self.nonodes = len(self.VX)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def rectangle(cls, nx: int, ny: int, Lx: float = 1.0, Ly: float = 1.0,
                  x0: float = 0.0, y0: float = 0.0) -> "QuadMesh":
        """Structured nx x ny quad mesh of [x0, x0+Lx] x [y0, y0+Ly]."""
        if nx < 1 or ny < 1:
            raise ValueError(f"Need at least one element per direction, got {nx}x{ny}")
        xs = x0 + np.linspace(0.0, Lx, nx + 1)
        ys = y0 + np.linspace(0.0, Ly, ny + 1)
        X, Y = np.meshgrid(xs, ys, indexing="xy")  # vertex v(i, j) = j * (nx+1) + i

        def v(i, j): return j * (nx + 1) + i

        I, J = np.meshgrid(np.arange(nx), np.arange(ny), indexing="xy")
        I, J = I.ravel(), J.ravel()
        EToV = np.column_stack([v(I, J), v(I + 1, J), v(I + 1, J + 1), v(I, J + 1)])

        i, j = np.arange(nx), np.arange(ny)
        bedges = np.concatenate([
            np.column_stack([v(i, 0), v(i + 1, 0)]),                 # bottom
            np.column_stack([v(nx, j), v(nx, j + 1)]),               # right
            np.column_stack([v(i[::-1] + 1, ny), v(i[::-1], ny)]),   # top
            np.column_stack([v(0, j[::-1] + 1), v(0, j[::-1])]),     # left
        ])
        battr = np.concatenate([
            np.full(nx, BOTTOM), np.full(ny, RIGHT), np.full(nx, TOP), np.full(ny, LEFT),
        ])
        return cls(X.ravel(), Y.ravel(), EToV, bedges, battr)

    @classmethod
    def unit_square(cls, n: int) -> "QuadMesh":
        return cls.rectangle(n, n)

    @classmethod
    def from_meshio(cls, source: str | Path | meshio.Mesh) -> "QuadMesh":
        """Build a mesh from a meshio-readable file (or an already loaded mesh).

        Boundary attributes are taken from gmsh physical tags of line cells when
        present; otherwise boundary edges are classified against the bounding
        box with the BOTTOM/RIGHT/TOP/LEFT convention.
        """
        mesh = source if isinstance(source, meshio.Mesh) else meshio.read(source)
        points = mesh.points[:, :2].astype(np.float64)
        quads = np.concatenate(
            [c.data for c in mesh.cells if c.type == "quad"]
        ).astype(np.int64)

        # Drop unused points so that vertex ids are contiguous
        used = np.unique(quads)
        renumber = -np.ones(len(points), dtype=np.int64)
        renumber[used] = np.arange(len(used))
        points, quads = points[used], renumber[quads]

        # Enforce counter-clockwise orientation
        x, y = points[quads, 0], points[quads, 1]
        area = 0.5 * np.sum(x * np.roll(y, -1, axis=1) - np.roll(x, -1, axis=1) * y, axis=1)
        quads[area < 0] = quads[area < 0][:, ::-1]

        bedges = _boundary_edges(quads)
        tags = _physical_line_tags(mesh, renumber)
        if tags:
            battr = np.array([tags.get((min(a, b), max(a, b)), 0) for a, b in bedges], dtype=np.int64)
        else:
            battr = _bounding_box_attributes(points, bedges)

        log.info(f"Loaded quad mesh: {len(quads)} elements, {len(points)} vertices")
        return cls(points[:, 0], points[:, 1], quads, bedges, battr)

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def uniformly_refined(self) -> "QuadMesh":
        """Split every quad into four children.

        Child (a, b) of element e gets index 4 * e + k with CHILD_OFFSETS[k] = (a, b),
        and its reference coordinates map into the parent as
        xi_parent = 0.5 * xi_child + (a - 0.5) (same for eta with b).
        """
        VX, VY = list(self.VX), list(self.VY)
        midpoints = {}

        def midpoint(a, b):
            key = (min(a, b), max(a, b))
            if key not in midpoints:
                midpoints[key] = len(VX)
                VX.append(0.5 * (self.VX[a] + self.VX[b]))
                VY.append(0.5 * (self.VY[a] + self.VY[b]))
            return midpoints[key]

        EToV = np.empty((4 * self.noelms, 4), dtype=np.int64)
        for e, (v0, v1, v2, v3) in enumerate(self.EToV):
            m01, m12, m23, m30 = midpoint(v0, v1), midpoint(v1, v2), midpoint(v2, v3), midpoint(v3, v0)
            c = len(VX)
            VX.append(0.25 * (self.VX[v0] + self.VX[v1] + self.VX[v2] + self.VX[v3]))
            VY.append(0.25 * (self.VY[v0] + self.VY[v1] + self.VY[v2] + self.VY[v3]))
            EToV[4 * e + 0] = [v0, m01, c, m30]
            EToV[4 * e + 1] = [m01, v1, m12, c]
            EToV[4 * e + 2] = [c, m12, v2, m23]
            EToV[4 * e + 3] = [m30, c, m23, v3]

        bedges = []
        for a, b in self.bedges:
            m = midpoint(a, b)
            bedges.extend([(a, m), (m, b)])

        return QuadMesh(
            np.array(VX), np.array(VY), EToV,
            np.array(bedges, dtype=np.int64).reshape(-1, 2),
            np.repeat(self.battr, 2),
            parents=np.repeat(np.arange(self.noelms), 4),
            offsets=np.tile(CHILD_OFFSETS, (self.noelms, 1)),
        )

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def map_points(self, xi: NDArray, eta: NDArray) -> tuple[NDArray, NDArray]:
        """Physical coordinates of reference points in every element, shape (noelms, nq)."""
        N = bilinear_shape(xi, eta)
        return self.VX[self.EToV] @ N, self.VY[self.EToV] @ N

    def jacobian(self, xi: NDArray, eta: NDArray) -> NDArray:
        """Jacobian dx/dxi of the bilinear map, shape (noelms, nq, 2, 2)."""
        dxi, deta = bilinear_shape_gradient(xi, eta)
        cx, cy = self.VX[self.EToV], self.VY[self.EToV]
        J = np.empty((self.noelms, len(xi), 2, 2))
        J[..., 0, 0] = cx @ dxi
        J[..., 0, 1] = cx @ deta
        J[..., 1, 0] = cy @ dxi
        J[..., 1, 1] = cy @ deta
        return J

    @property
    def attributes(self) -> NDArray[np.int64]:
        return np.unique(self.battr)

    def boundary_edges(self, attributes=None) -> NDArray[np.int64]:
        """Boundary edges carrying one of the given attributes (all when None)."""
        if attributes is None:
            return self.bedges
        return self.bedges[np.isin(self.battr, list(attributes))]


def _boundary_edges(quads: NDArray[np.int64]) -> NDArray[np.int64]:
    """Edges that belong to exactly one quad, oriented as in that quad."""
    count = {}
    oriented = {}
    for quad in quads:
        for k in range(4):
            a, b = int(quad[k]), int(quad[(k + 1) % 4])
            key = (min(a, b), max(a, b))
            count[key] = count.get(key, 0) + 1
            oriented[key] = (a, b)
    return np.array([oriented[k] for k, n in count.items() if n == 1], dtype=np.int64).reshape(-1, 2)


def _physical_line_tags(mesh: meshio.Mesh, renumber: NDArray[np.int64]) -> dict:
    """Map sorted vertex pairs of tagged line cells to their gmsh physical tag."""
    physical = mesh.cell_data.get("gmsh:physical")
    if physical is None:
        return {}
    tags = {}
    for block, data in zip(mesh.cells, physical):
        if block.type != "line":
            continue
        for (a, b), tag in zip(renumber[block.data], data):
            tags[(min(a, b), max(a, b))] = int(tag)
    return tags


def _bounding_box_attributes(points: NDArray, bedges: NDArray[np.int64]) -> NDArray[np.int64]:
    x_min, y_min = points.min(axis=0)
    x_max, y_max = points.max(axis=0)
    mid = 0.5 * (points[bedges[:, 0]] + points[bedges[:, 1]])
    battr = np.zeros(len(bedges), dtype=np.int64)
    battr[np.abs(mid[:, 1] - y_min) < BOUNDARY_TOL] = BOTTOM
    battr[np.abs(mid[:, 0] - x_max) < BOUNDARY_TOL] = RIGHT
    battr[np.abs(mid[:, 1] - y_max) < BOUNDARY_TOL] = TOP
    battr[np.abs(mid[:, 0] - x_min) < BOUNDARY_TOL] = LEFT
    return battr
