"""Tests for the level hierarchy, the V-cycle and the outer GMRES driver.

Run with: uv run pytest tests/test_multigrid.py -v
"""

import numpy as np
import pandas as pd
import pytest

from FEM.operators import IdentityOperator, MatrixOperator
from FEM.SEM import H1Space, QuadMesh, VariationalForm, assemble_operator
from solvers import (
    ConfigurationError,
    Hierarchy,
    MultigridCycle,
    MultigridParameters,
    MultigridSolver,
    RefinementKind,
    TimeSeries,
    build_hierarchy,
    solve,
)
from solvers.multigrid import assemble_level_operator, level_orders
from solvers.plotting import plot_convergence, plot_solution


def poisson_source(x, y):
    return 2 * np.pi**2 * np.sin(np.pi * x) * np.sin(np.pi * y)


def zero_boundary(x, y):
    return np.zeros_like(x)


class TestHierarchy:
    """Test level construction and structural invariants."""

    def test_geometric_levels(self):
        params = MultigridParameters(mesh_elements=2, h_levels=3, smoother="jacobi")
        hierarchy = build_hierarchy(params)

        assert hierarchy.num_levels == 3
        assert [level.ndofs for level in hierarchy] == [9, 25, 81]
        assert [level.kind for level in hierarchy] == [
            RefinementKind.COARSE, RefinementKind.GEOMETRIC, RefinementKind.GEOMETRIC,
        ]
        assert hierarchy.coarsest.is_coarsest and hierarchy.coarsest.smoother is None
        assert hierarchy.finest.transfer is None
        for coarse, fine in zip(hierarchy.levels[:-1], hierarchy.levels[1:]):
            assert coarse.transfer.shape == (fine.ndofs, coarse.ndofs)
            assert fine.smoother.shape == fine.operator.shape

    def test_order_levels(self):
        params = MultigridParameters(mesh_elements=2, h_levels=2, o_levels=3, smoother="chebyshev")
        hierarchy = build_hierarchy(params)

        assert [level.order for level in hierarchy] == [1, 1, 2, 4]
        assert [level.h_index for level in hierarchy] == [0, 1, 1, 1]
        assert hierarchy[2].kind is RefinementKind.ORDER
        assert hierarchy[2].space.mesh is hierarchy[1].space.mesh
        assert hierarchy.finest.ndofs == (4 * 4 + 1) ** 2

    def test_level_orders(self):
        assert level_orders(MultigridParameters(o_levels=4)) == [1, 2, 4, 8]
        assert level_orders(MultigridParameters(order=3)) == [3]

    def test_ref_levels_refine_base_mesh(self):
        hierarchy = build_hierarchy(MultigridParameters(ref_levels=2, h_levels=1))
        assert hierarchy.coarsest.space.mesh.noelms == 16

    def test_single_level(self):
        hierarchy = build_hierarchy(MultigridParameters(mesh_elements=4, h_levels=1))
        assert hierarchy.num_levels == 1
        assert hierarchy.finest is hierarchy.coarsest
        assert hierarchy.finest.transfer is None

    def test_lor_method(self):
        params = MultigridParameters(method="lor", mesh_elements=2, h_levels=2, o_levels=2)
        hierarchy = build_hierarchy(params)
        assert hierarchy.num_levels == 1
        assert hierarchy.finest.order == 2
        assert hierarchy.finest.space.mesh.noelms == 16

    def test_lors_method(self):
        params = MultigridParameters(method="lors", mesh_elements=2, order=3)
        hierarchy = build_hierarchy(params)
        assert hierarchy.num_levels == 2
        assert hierarchy[1].kind is RefinementKind.IDENTITY
        assert hierarchy[1].operator is hierarchy[0].operator
        assert isinstance(hierarchy[0].transfer, IdentityOperator)

    def test_partial_and_full_assembly_agree(self):
        kwargs = dict(mesh_elements=2, h_levels=2, order=2, coarse_solver="direct")
        pa = build_hierarchy(MultigridParameters(partial_assembly=True, **kwargs))
        fa = build_hierarchy(MultigridParameters(partial_assembly=False, **kwargs))
        x = np.random.default_rng(0).standard_normal(pa.finest.ndofs)
        assert np.allclose(pa.finest.operator.apply(x), fa.finest.operator.apply(x), atol=1e-10)
        assert fa.finest.operator.assembled_matrix() is not None
        assert pa.finest.operator.assembled_matrix() is None

    def test_summary(self):
        summary = build_hierarchy(MultigridParameters(mesh_elements=2, h_levels=2)).summary()
        assert isinstance(summary, pd.DataFrame)
        assert list(summary["level"]) == [0, 1]
        assert summary.loc[1, "relaxation"] == "AdditiveSchwarzLORSmoother"

    @pytest.mark.parametrize("overrides", [
        {"method": "multigrid"},
        {"order": 2, "o_levels": 2},
        {"h_levels": 0},
        {"smoother": "sor"},
        {"coarse_solver": "pcg"},
    ])
    def test_invalid_configuration(self, overrides):
        with pytest.raises(ConfigurationError):
            build_hierarchy(MultigridParameters(mesh_elements=2, **overrides))

    def test_order_refinement_of_high_order_operator(self):
        space = H1Space(QuadMesh.unit_square(2), 2)
        with pytest.raises(ConfigurationError):
            assemble_level_operator(space, VariationalForm(), space.essential_dofs(),
                                    MultigridParameters(order=2), o_index=1)

    def test_finalized_hierarchy_is_closed(self):
        hierarchy = build_hierarchy(MultigridParameters(mesh_elements=2, h_levels=1))
        level = hierarchy.finest
        with pytest.raises(ConfigurationError):
            hierarchy.add_level(level.operator, IdentityOperator(level.ndofs), IdentityOperator(level.ndofs),
                                level.space, level.ess_dofs, 0, RefinementKind.IDENTITY)

    def test_transfer_dimension_mismatch(self):
        space = H1Space(QuadMesh.unit_square(2), 1)
        op = assemble_operator(space, VariationalForm(), space.essential_dofs())
        hierarchy = Hierarchy()
        hierarchy.add_coarsest_level(op, IdentityOperator(op.height), space, space.essential_dofs())

        bad_transfer = MatrixOperator(np.ones((op.height, op.height + 1)))
        with pytest.raises(ConfigurationError):
            hierarchy.add_level(op, IdentityOperator(op.height), bad_transfer,
                                space, space.essential_dofs(), 0, RefinementKind.IDENTITY)

    def test_empty_hierarchy_invalid(self):
        with pytest.raises(ConfigurationError):
            Hierarchy().finalize()


class TestMultigridCycle:
    """Test the V-cycle as an operator."""

    def test_single_level_is_coarse_solve(self):
        hierarchy = build_hierarchy(MultigridParameters(mesh_elements=4, h_levels=1, coarse_solver="direct"))
        cycle = MultigridCycle(hierarchy)
        b = np.random.default_rng(0).standard_normal(cycle.height)

        expected = hierarchy.coarsest.coarse_solver.apply(b)
        assert np.allclose(cycle.apply(b), expected)

    def test_cycle_is_linear_and_keeps_boundary(self):
        params = MultigridParameters(mesh_elements=2, h_levels=3, smoother="chebyshev", coarse_solver="direct")
        cycle = MultigridCycle(build_hierarchy(params))
        rng = np.random.default_rng(1)
        x, y = rng.standard_normal((2, cycle.height))

        assert np.allclose(cycle.apply(x + 2 * y), cycle.apply(x) + 2 * cycle.apply(y))
        ess = cycle.hierarchy.finest.ess_dofs
        assert np.array_equal(cycle.apply(x)[ess], x[ess])

    @pytest.mark.parametrize("smoother", ["jacobi", "chebyshev", "schwarz"])
    def test_stationary_iteration_converges(self, smoother):
        """x <- x + B (b - A x) converges with a geometric two-level cycle."""
        params = MultigridParameters(mesh_elements=4, h_levels=2, smoother=smoother, coarse_solver="direct",
                                     power_iterations=50)
        hierarchy = build_hierarchy(params)
        cycle = MultigridCycle(hierarchy, 3, 3)
        A = hierarchy.finest.operator

        b = np.random.default_rng(2).standard_normal(cycle.height)
        x = np.zeros_like(b)
        r0 = np.linalg.norm(b - A.apply(x))
        for _ in range(20):
            x += cycle.apply(b - A.apply(x))
        assert np.linalg.norm(b - A.apply(x)) < 1e-3 * r0

    def test_timings(self):
        params = MultigridParameters(mesh_elements=2, h_levels=2, smoother="jacobi")
        cycle = MultigridCycle(build_hierarchy(params), 2, 1)
        cycle.apply(np.ones(cycle.height))

        timings = cycle.timings()
        assert list(timings.columns) == ["level", "operation", "calls", "total_time", "mean_time"]
        calls = timings.set_index(["level", "operation"])["calls"]
        assert calls[(1, "smoother")] == 3
        assert calls[(0, "coarse_solve")] == 1
        assert cycle.cycles == 1

        cycle.reset_timings()
        assert cycle.timings().empty
        assert cycle.cycles == 0

    def test_negative_smoothing_steps(self):
        hierarchy = build_hierarchy(MultigridParameters(mesh_elements=2, h_levels=1))
        with pytest.raises(ValueError):
            MultigridCycle(hierarchy, -1, 1)


class TestKrylov:
    """Test the preconditioned GMRES driver."""

    @pytest.fixture
    def poisson(self):
        space = H1Space(QuadMesh.unit_square(8), 1)
        op = assemble_operator(space, VariationalForm(), space.essential_dofs(), partial=False)
        b = np.random.default_rng(0).standard_normal(space.ndofs)
        return op, b

    def test_unpreconditioned_solve(self, poisson):
        op, b = poisson
        result = solve(op, b, rtol=1e-10, max_iter=500)
        assert result.converged
        assert result.final_residual <= 1e-10 * np.linalg.norm(b) * 1.01
        assert len(result.history) == result.iterations

    def test_iteration_cap_reported(self, poisson):
        op, b = poisson
        result = solve(op, b, rtol=1e-14, max_iter=2, restart=2)
        assert not result.converged
        assert result.iterations == 2
        assert result.final_residual < result.initial_residual

    def test_preconditioned_poisson(self):
        """Two-level h-multigrid preconditioned GMRES on the Poisson problem."""
        params = MultigridParameters(mesh_elements=4, h_levels=2, order=1, smoother="chebyshev",
                                     krylov_rtol=1e-8, krylov_atol=0.0)
        solver = MultigridSolver(params, boundary=zero_boundary, source=poisson_source)
        result = solver.solve()

        assert result.converged
        assert result.iterations <= 50
        assert result.final_residual <= 1e-8 * result.initial_residual * 1.01
        assert np.all(np.diff(result.history) <= 0)


class TestMultigridSolver:
    """End-to-end tests of the setup and solve driver."""

    def test_plane_wave_scenario(self):
        """Refined coarse mesh, two geometric levels, Chebyshev smoothing, omega = 2."""
        params = MultigridParameters(
            mesh_elements=1, ref_levels=1, h_levels=2, order=1, omega=2.0,
            smoother="chebyshev", chebyshev_order=3, pre_smoothing_steps=3, post_smoothing_steps=3,
        )
        solver = MultigridSolver(params)
        result = solver.solve()

        assert result.converged
        assert result.final_residual <= 1e-8
        assert np.all(np.diff(result.history) < 0)
        assert solver.metrics.num_levels == 2
        assert solver.metrics.ndofs == 25
        assert solver.metrics.l2_error < 5e-2

    @pytest.mark.parametrize("smoother", ["jacobi", "chebyshev", "schwarz"])
    @pytest.mark.parametrize("partial_assembly", [True, False])
    def test_h_multigrid_poisson(self, smoother, partial_assembly):
        params = MultigridParameters(mesh_elements=4, h_levels=2, smoother=smoother,
                                     partial_assembly=partial_assembly, krylov_rtol=1e-8, krylov_atol=0.0)
        solver = MultigridSolver(params, boundary=zero_boundary, source=poisson_source)
        solver.solve()
        assert solver.metrics.converged
        assert solver.metrics.iterations <= 50

    def test_p_multigrid_helmholtz(self):
        params = MultigridParameters(mesh_elements=4, h_levels=1, o_levels=3, omega=3.0, krylov_max_iter=200)
        solver = MultigridSolver(params)
        solver.solve()
        assert solver.metrics.converged
        assert solver.hierarchy.finest.order == 4

    def test_jump_coefficient(self):
        params = MultigridParameters(mesh_elements=2, h_levels=3, jump_coefficient=True, krylov_max_iter=200)
        solver = MultigridSolver(params, source=poisson_source)
        solver.solve()
        assert solver.metrics.converged
        # No exact solution is available for this problem
        assert solver.metrics.l2_error == float("inf")

    @pytest.mark.parametrize("method", ["lor", "lors"])
    def test_lor_preconditioners(self, method):
        params = MultigridParameters(method=method, mesh_elements=4, order=3, h_levels=1, krylov_max_iter=300)
        solver = MultigridSolver(params, boundary=zero_boundary, source=poisson_source)
        solver.solve()
        assert solver.metrics.converged

    def test_iterative_coarse_solve(self):
        params = MultigridParameters(mesh_elements=2, h_levels=2, order=2, use_iterative_coarse_solve=True)
        solver = MultigridSolver(params, boundary=zero_boundary, source=poisson_source)
        solver.solve()
        assert solver.metrics.converged

    def test_metrics_and_time_series(self):
        solver = MultigridSolver(mesh_elements=2, h_levels=2, omega=1.0)
        solver.solve()

        metrics = solver.metrics.to_mlflow()
        assert metrics["converged"] == 1
        assert metrics["coarse_ndofs"] == 9
        assert isinstance(solver.time_series, TimeSeries)
        assert len(solver.time_series.residual) == solver.metrics.iterations
        assert solver.preconditioner.cycles >= solver.metrics.iterations

    def test_relative_residual_scale_invariant(self):
        """Scaling the boundary data scales the residuals but not their ratios."""
        params = MultigridParameters(mesh_elements=2, h_levels=2, omega=1.0, krylov_rtol=1e-8, krylov_atol=0.0)
        wave = lambda x, y: np.sin(x + y)  # noqa: E731
        series = {}
        for scale in (1.0, 1024.0):
            solver = MultigridSolver(params, boundary=lambda x, y, s=scale: s * wave(x, y))
            solver.solve()
            series[scale] = solver.time_series

        small, large = series[1.0], series[1024.0]
        assert len(small.residual) == len(large.residual) > 0
        np.testing.assert_allclose(large.residual, 1024.0 * np.array(small.residual), rtol=1e-8)
        np.testing.assert_allclose(large.rel_residual, small.rel_residual, rtol=1e-8)
        assert small.rel_residual[0] == pytest.approx(1.0)

    def test_vtk_export(self, tmp_path):
        solver = MultigridSolver(mesh_elements=2, h_levels=1, order=2, omega=1.0)
        solver.solve()
        grid = solver.to_vtk()
        assert grid.n_points == solver.hierarchy.finest.ndofs
        assert grid.n_cells == 4 * 4
        assert "u_exact" in grid.point_data

        path = tmp_path / "solution.vtu"
        assert solver.save_vtk(path) == path
        assert path.exists()

    def test_plots(self, tmp_path):
        solver = MultigridSolver(mesh_elements=2, h_levels=2, omega=1.0)
        solver.solve()
        space = solver.hierarchy.finest.space

        assert plot_convergence(solver.time_series, tmp_path / "convergence.png", "test").exists()
        assert plot_solution(space, solver.u, tmp_path / "solution.png").exists()


class TestParameters:
    def test_from_dict_ignores_unknown_keys(self):
        params = MultigridParameters.from_dict({"h_levels": 3, "smoother": "jacobi", "experiment_name": "x"})
        assert params.h_levels == 3
        assert params.smoother == "jacobi"

    def test_to_mlflow(self):
        logged = MultigridParameters(partial_assembly=False).to_mlflow()
        assert logged["partial_assembly"] == 0
        assert logged["essential_attributes"] == "all"
        assert logged["seed"] == 12345

    def test_time_series_relative_residual(self):
        series = TimeSeries.from_history(np.array([0.5, 0.1]))
        assert series.residual == [0.5, 0.1]
        assert series.rel_residual == [1.0, 0.2]
        assert len(series.to_dataframe()) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
