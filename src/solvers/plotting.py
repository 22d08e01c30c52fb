"""Convergence and solution plots for a finished multigrid solve."""

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from matplotlib.tri import Triangulation

from FEM.plot_style import save_figure, setup_style
from solvers.datastructures import TimeSeries


def plot_convergence(time_series: TimeSeries, filepath: str | Path, title: str = ""):
    """Preconditioned residual per GMRES iteration relative to the first one (log scale)."""
    setup_style()
    df = time_series.to_dataframe().reset_index(names="iteration")

    fig, ax = plt.subplots(figsize=(7, 4.5))
    sns.lineplot(data=df, x="iteration", y="rel_residual", marker="o", ax=ax)
    ax.set_yscale("log")
    ax.set_xlabel("GMRES iteration")
    ax.set_ylabel(r"$\|r_k\| / \|r_1\|$")
    if title:
        ax.set_title(title)
    return save_figure(fig, filepath)


def plot_solution(space, u, filepath: str | Path, title: str = ""):
    """Nodal field on the LOR triangulation of ``space``."""
    setup_style()
    lor = space.lor_space().mesh
    # Split every LOR quad into two triangles
    quads = lor.EToV
    triangles = [quads[:, [0, 1, 2]], quads[:, [0, 2, 3]]]
    tri = Triangulation(lor.VX, lor.VY, np.concatenate(triangles))

    fig, ax = plt.subplots(figsize=(6, 5))
    contour = ax.tricontourf(tri, u, levels=30, cmap="viridis")
    fig.colorbar(contour, ax=ax)
    ax.set_aspect("equal")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    if title:
        ax.set_title(title)
    return save_figure(fig, filepath)
