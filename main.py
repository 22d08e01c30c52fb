"""
Multigrid preconditioned GMRES - entry point for solving and tracking runs.

Usage:
    uv run python main.py
    uv run python main.py multigrid.h_levels=3 multigrid.smoother=chebyshev
    uv run python main.py multigrid.method=lors multigrid.order=4 multigrid.h_levels=1
    uv run python main.py -m multigrid.h_levels=2,3,4 multigrid.smoother=jacobi,chebyshev,schwarz
"""

import logging
import os
import sys
import tempfile
from pathlib import Path

import hydra
import mlflow
from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()
sys.path.insert(0, str(Path(__file__).parent / "src"))

from FEM.SEM.mesh import QuadMesh  # noqa: E402
from solvers import ConfigurationError, MultigridParameters, MultigridSolver, NumericalBreakdown  # noqa: E402
from solvers.plotting import plot_convergence, plot_solution  # noqa: E402

log = logging.getLogger(__name__)


def get_experiment_name(cfg: DictConfig) -> str:
    """Build full experiment name with optional prefix."""
    name = cfg.experiment_name
    prefix = cfg.mlflow.get("project_prefix", "")
    if prefix and not name.startswith("/"):
        return f"{prefix}/{name}"
    return name


def setup_mlflow(cfg: DictConfig) -> str:
    """Setup MLflow tracking and return experiment name."""
    tracking_uri = cfg.mlflow.get("tracking_uri", "./mlruns")
    if str(cfg.mlflow.get("mode", "")).lower() in ("files", "local"):
        os.environ.pop("MLFLOW_TRACKING_URI", None)
    os.environ["MLFLOW_TRACKING_URI"] = str(tracking_uri)
    mlflow.set_tracking_uri(tracking_uri)

    experiment_name = get_experiment_name(cfg)
    mlflow.set_experiment(experiment_name)
    return experiment_name


def build_params(cfg: DictConfig) -> MultigridParameters:
    """Multigrid parameters from the top-level ``multigrid`` config group."""
    return MultigridParameters.from_dict(OmegaConf.to_container(cfg.multigrid, resolve=True))


def run_name(params: MultigridParameters) -> str:
    # Run name format: {method}_h{levels}_o{levels}_p{order}_{smoother}
    return f"{params.method}_h{params.h_levels}_o{params.o_levels}_p{params.order}_{params.smoother}"


def run_solver(cfg: DictConfig) -> MultigridSolver:
    """Set up hierarchy, solve and log everything to MLflow."""
    params = build_params(cfg)
    mesh = QuadMesh.from_meshio(cfg.mesh_file) if cfg.get("mesh_file") else None
    solver = MultigridSolver(params, mesh=mesh)

    # Parent run tagging for sweeps
    parent_run_id = os.environ.get("MLFLOW_PARENT_RUN_ID")
    tags = {"method": params.method, "smoother": params.smoother}
    if parent_run_id:
        tags.update({"mlflow.parentRunId": parent_run_id, "parent_run_id": parent_run_id, "sweep": "child"})

    with mlflow.start_run(run_name=run_name(params), tags=tags, nested=bool(parent_run_id)) as run:
        mlflow.log_params(params.to_mlflow())
        mlflow.log_dict(OmegaConf.to_container(cfg), "config.yaml")

        log.info(f"Setting up {params.method} hierarchy: h_levels={params.h_levels}, o_levels={params.o_levels}")
        solver.setup()
        mlflow.log_table(solver.hierarchy.summary(), "levels.json")

        solver.solve()
        mlflow.log_metrics(solver.metrics.to_mlflow())
        if solver.time_series:
            batch = solver.time_series.to_mlflow_batch()
            if batch:
                mlflow.tracking.MlflowClient().log_batch(run.info.run_id, metrics=batch)
        mlflow.log_table(solver.preconditioner.timings(), "cycle_timings.json")

        with tempfile.TemporaryDirectory() as tmpdir:
            tmpdir = Path(tmpdir)
            if cfg.get("save_vtk", True):
                solver.save_vtk(tmpdir / "solution.vtu")
                mlflow.log_artifact(str(tmpdir / "solution.vtu"))
            if cfg.get("plots", True):
                space = solver.hierarchy.finest.space
                mlflow.log_artifact(str(plot_convergence(solver.time_series, tmpdir / "convergence.png", run_name(params))))
                mlflow.log_artifact(str(plot_solution(space, solver.u, tmpdir / "solution.png")))

        log.info(
            f"Done: {solver.metrics.iterations} iter, converged={solver.metrics.converged}, "
            f"setup={solver.metrics.setup_time_seconds:.2f}s, solve={solver.metrics.wall_time_seconds:.2f}s"
        )
    return solver


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> float | None:
    """Main entry point.

    Returns
    -------
    float | None
        Final residual (objective for sweeps), None when the configuration is
        invalid or the setup broke down numerically.
    """
    log.info(f"MLflow experiment: {setup_mlflow(cfg)}")

    try:
        solver = run_solver(cfg)
    except ConfigurationError as exc:
        log.error(f"Invalid configuration: {exc}")
        return None
    except NumericalBreakdown as exc:
        log.error(f"Numerical breakdown on level {exc.level} (residual={exc.residual}): {exc}")
        return None

    return solver.metrics.final_residual


if __name__ == "__main__":
    main()
