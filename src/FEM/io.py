"""Export of spectral element fields for external rendering."""

from __future__ import annotations
from pathlib import Path
import logging

import numpy as np
import pyvista as pv

from FEM.SEM.space import H1Space

log = logging.getLogger(__name__)


def to_pyvista(space: H1Space, fields: dict[str, np.ndarray] | None = None) -> pv.UnstructuredGrid:
    """Unstructured grid over the LOR cells of ``space`` with nodal point data.

    The LOR mesh has one vertex per dof, so nodal values attach directly.
    """
    lor = space.lor_space().mesh
    points = np.column_stack([lor.VX, lor.VY, np.zeros(lor.nonodes)])

    # Build PyVista cell array format
    cell_sizes = np.full((lor.noelms, 1), 4)
    pv_cells = np.hstack([cell_sizes, lor.EToV]).astype(np.int64).ravel()
    celltypes = np.full(lor.noelms, pv.CellType.QUAD, dtype=np.uint8)

    grid = pv.UnstructuredGrid(pv_cells, celltypes, points)
    for name, values in (fields or {}).items():
        grid.point_data[name] = np.asarray(values)
    return grid


def save_vtk(space: H1Space, fields: dict[str, np.ndarray], path: str | Path) -> Path:
    """Write nodal fields on ``space`` to a .vtu file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    to_pyvista(space, fields).save(str(path))
    log.info(f"Saved VTU to {path}")
    return path
