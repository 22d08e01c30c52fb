"""Data structures for solver configuration and results.

Architecture: Params vs Metrics

             Params (input/config)         Metrics (output/results)
             ─────────────────────         ────────────────────────
Global       MultigridParameters           Metrics
             h_levels, order, smoother...  iterations, converged, wall time...

Timeseries   -                             TimeSeries
                                           residual history per Krylov iteration
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields

import numpy as np
import pandas as pd


# ============================================================================
# Parameters (Input Configuration) - logged to MLflow as params
# ============================================================================


@dataclass
class MultigridParameters:
    """Configuration of the hierarchy, smoothers, coarse solve and outer Krylov loop."""

    # Hierarchy
    method: str = "mg"  # "mg", "lor" or "lors"
    mesh_elements: int = 1  # elements per direction of the unit-square base mesh
    ref_levels: int = 0  # uniform refinements before the hierarchy starts
    h_levels: int = 2
    o_levels: int = 1
    order: int = 1
    partial_assembly: bool = True

    # Problem
    omega: float = 0.0  # mass term is -omega^2
    jump_coefficient: bool = False
    essential_attributes: list[int] | None = None  # None = whole boundary

    # Smoothing
    smoother: str = "schwarz"  # "jacobi", "chebyshev" or "schwarz"
    pre_smoothing_steps: int = 3
    post_smoothing_steps: int = 3
    chebyshev_order: int = 3
    power_iterations: int = 10
    power_tolerance: float = 1e-8
    eigenvalue_safety_factor: float = 1.1
    chebyshev_lower_fraction: float = 0.3
    strict_eigenvalue_estimate: bool = False
    seed: int = 12345

    # Coarse solve
    coarse_solver: str = "amg"  # "amg" or "direct"
    coarse_solver_iters: int = 2
    use_iterative_coarse_solve: bool = False
    coarse_krylov_max_iter: int = 2000
    coarse_krylov_rtol: float = 1e-4

    # Outer Krylov
    krylov_rtol: float = 0.0
    krylov_atol: float = 1e-8
    krylov_max_iter: int = 1000
    krylov_restart: int = 50

    @classmethod
    def from_dict(cls, cfg: dict) -> "MultigridParameters":
        """Build from a (Hydra) mapping, ignoring keys that are not parameters."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in cfg.items() if k in names})

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible params dict."""
        return {
            k: (int(v) if isinstance(v, bool) else v if v is not None else "all")
            for k, v in self.__dict__.items()
        }

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_mlflow()])


# ============================================================================
# Metrics (Output Results) - logged to MLflow as metrics
# ============================================================================


@dataclass
class Metrics:
    """Solver metrics - output results computed during/after solving."""

    iterations: int = 0
    converged: bool = False
    initial_residual: float = float("inf")
    final_residual: float = float("inf")
    setup_time_seconds: float = 0.0
    wall_time_seconds: float = 0.0
    num_levels: int = 0
    ndofs: int = 0
    coarse_ndofs: int = 0
    l2_error: float = float("inf")

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible dict (bools as int, skip inf)."""
        return {
            k: (int(v) if isinstance(v, bool) else v)
            for k, v in self.__dict__.items()
            if v != float("inf")  # Skip unset values
        }

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_mlflow()])


# ============================================================================
# TimeSeries (Convergence History) - logged to MLflow as step metrics
# ============================================================================


@dataclass
class TimeSeries:
    """Convergence history (one value per Krylov iteration)."""

    residual: list[float] = field(default_factory=list)
    rel_residual: list[float] = field(default_factory=list)

    @classmethod
    def from_history(cls, history: np.ndarray) -> "TimeSeries":
        """Absolute residuals and residuals relative to the first iteration."""
        history = [float(r) for r in history]
        scale = history[0] if history and history[0] > 0 else 1.0
        return cls(residual=history, rel_residual=[r / scale for r in history])

    def to_mlflow_batch(self) -> list:
        """Convert timeseries to MLflow Metric objects for batch logging."""
        from mlflow.entities import Metric

        return [
            Metric(key=name, value=value, timestamp=0, step=step)
            for name, values in self.__dict__.items()
            if values  # Skip empty lists
            for step, value in enumerate(values)
            if value is not None
        ]

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to DataFrame with one row per iteration."""
        return pd.DataFrame({k: v for k, v in self.__dict__.items() if v})
