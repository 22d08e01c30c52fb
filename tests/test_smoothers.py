"""Tests for eigenvalue estimation and smoother construction.

Run with: uv run pytest tests/test_smoothers.py -v
"""

import numpy as np
import pytest
from scipy import sparse

from FEM.SEM import (
    ConstantCoefficient,
    H1Space,
    QuadMesh,
    VariationalForm,
    assemble_operator,
)
from solvers import (
    AdditiveSchwarzLORSmoother,
    ChebyshevSmoother,
    ConfigurationError,
    JacobiSmoother,
    MultigridParameters,
    NumericalBreakdown,
    SmootherKind,
    SpectralBounds,
    ZeroDiagonalError,
    build_smoother,
    estimate_largest_eigenvalue,
)
from solvers.smoothers import inverse_diagonal


def poisson_operator(order=2, n=4, partial=True, form=None):
    space = H1Space(QuadMesh.unit_square(n), order)
    return assemble_operator(space, form or VariationalForm(), space.essential_dofs(), partial=partial)


def energy(op, e):
    return e @ op.apply(e)


class TestPowerIteration:
    """Test the dominant eigenvalue estimate."""

    @pytest.fixture
    def spd_matrix(self):
        """Dense SPD matrix with eigenvalues 1..10."""
        Q, _ = np.linalg.qr(np.random.default_rng(3).standard_normal((10, 10)))
        return Q @ np.diag(np.arange(1.0, 11.0)) @ Q.T

    def test_converges_to_largest_eigenvalue(self, spd_matrix):
        est = estimate_largest_eigenvalue(spd_matrix, max_iters=500, tol=1e-12)
        assert est.converged
        assert np.isclose(est.value, 10.0, rtol=1e-8)
        assert est.iterations == len(est.history)
        assert np.isclose(np.linalg.norm(est.vector), 1.0)

    def test_rayleigh_quotients_increase_from_below(self, spd_matrix):
        est = estimate_largest_eigenvalue(spd_matrix, max_iters=50, tol=0.0)
        history = np.array(est.history)
        assert np.all(np.diff(history) >= -1e-12)
        assert np.all(history <= 10.0 + 1e-12)

    def test_more_iterations_improve_estimate(self, spd_matrix):
        errors = [
            abs(10.0 - estimate_largest_eigenvalue(spd_matrix, max_iters=k, tol=0.0).value)
            for k in (2, 10, 100)
        ]
        assert errors[0] >= errors[1] >= errors[2]

    def test_deterministic_seed(self, spd_matrix):
        a = estimate_largest_eigenvalue(spd_matrix, max_iters=5, tol=0.0)
        b = estimate_largest_eigenvalue(spd_matrix, max_iters=5, tol=0.0)
        assert a.value == b.value

    def test_singular_operator(self):
        """Semidefinite operators still return the dominant eigenvalue."""
        est = estimate_largest_eigenvalue(np.diag([0.0, 1.0, 3.0]), max_iters=200, tol=1e-12)
        assert np.isclose(est.value, 3.0)

    def test_not_converged_is_reported(self, spd_matrix):
        est = estimate_largest_eigenvalue(spd_matrix, max_iters=2, tol=1e-14)
        assert not est.converged
        assert est.residual > 0

    def test_strict_mode_raises(self, spd_matrix):
        with pytest.raises(NumericalBreakdown) as excinfo:
            estimate_largest_eigenvalue(spd_matrix, max_iters=2, tol=1e-14, level=3, strict=True)
        assert excinfo.value.level == 3
        assert "level=3" in str(excinfo.value)

    def test_zero_operator_breaks_down(self):
        with pytest.raises(NumericalBreakdown):
            estimate_largest_eigenvalue(np.zeros((4, 4)), max_iters=5)

    def test_invalid_iteration_count(self, spd_matrix):
        with pytest.raises(ValueError):
            estimate_largest_eigenvalue(spd_matrix, max_iters=0)


class TestSpectralBounds:
    def test_from_estimate(self):
        bounds = SpectralBounds.from_estimate(2.0, safety_factor=1.1, lower_fraction=0.3)
        assert np.isclose(bounds.upper, 2.2)
        assert np.isclose(bounds.lower, 0.66)
        assert np.isclose(bounds.theta, 1.43)
        assert np.isclose(bounds.delta, 0.77)
        assert np.isclose(bounds.weight, 1 / 1.43)

    def test_jacobi_weight(self):
        """With a zero lower bound the weight is 2 / upper."""
        bounds = SpectralBounds.from_estimate(4.0, safety_factor=1.0)
        assert np.isclose(bounds.weight, 0.5)


class TestSmoothers:
    """Test Jacobi, Chebyshev and additive Schwarz smoothers."""

    @pytest.fixture
    def params(self):
        return MultigridParameters(power_iterations=200, power_tolerance=1e-12)

    @pytest.fixture(params=[True, False], ids=["partial", "full"])
    def operator(self, request):
        return poisson_operator(order=2, n=4, partial=request.param)

    def test_kind_from_name(self):
        assert SmootherKind.from_name("Chebyshev") is SmootherKind.CHEBYSHEV
        assert SmootherKind.from_name(SmootherKind.JACOBI) is SmootherKind.JACOBI
        with pytest.raises(ConfigurationError):
            SmootherKind.from_name("gauss-seidel")

    @pytest.mark.parametrize("kind", ["jacobi", "chebyshev", "schwarz"])
    def test_smoothing_step_reduces_energy(self, operator, params, kind):
        """One step e <- e - S A e is a contraction in the energy norm."""
        smoother = build_smoother(kind, operator, params, level=1)
        e = np.random.default_rng(7).standard_normal(operator.height)
        e[operator.ess_dofs] = 0.0

        e_new = e - smoother.apply(operator.apply(e))
        assert energy(operator, e_new) < energy(operator, e)

    @pytest.mark.parametrize("kind", ["jacobi", "chebyshev", "schwarz"])
    def test_essential_dofs_pass_through(self, operator, params, kind):
        smoother = build_smoother(kind, operator, params)
        x = np.random.default_rng(2).standard_normal(operator.height)
        y = smoother.apply(x)
        assert np.array_equal(y[operator.ess_dofs], x[operator.ess_dofs])
        assert smoother.shape == operator.shape
        assert smoother.bounds is not None and smoother.estimate is not None

    def test_chebyshev_order_one_is_jacobi(self, operator):
        dinv = inverse_diagonal(operator.diagonal(), operator.ess_dofs)
        bounds = SpectralBounds(lower=0.5, upper=2.0)
        cheb = ChebyshevSmoother(operator, dinv, operator.ess_dofs, 1, bounds)
        jacobi = JacobiSmoother(dinv, operator.ess_dofs, bounds.weight)

        x = np.random.default_rng(4).standard_normal(operator.height)
        assert np.allclose(cheb.apply(x), jacobi.apply(x))

    def test_chebyshev_is_linear(self, operator, params):
        smoother = build_smoother("chebyshev", operator, params)
        rng = np.random.default_rng(5)
        x, y = rng.standard_normal((2, operator.height))
        assert np.allclose(smoother.apply(2 * x - y), 2 * smoother.apply(x) - smoother.apply(y))

    def test_chebyshev_bounds(self, operator, params):
        smoother = build_smoother("chebyshev", operator, params)
        assert np.isclose(smoother.bounds.lower, params.chebyshev_lower_fraction * smoother.bounds.upper)
        assert np.isclose(smoother.bounds.upper, params.eigenvalue_safety_factor * smoother.estimate.value)

    def test_chebyshev_order_validated(self, operator):
        dinv = np.ones(operator.height)
        with pytest.raises(ConfigurationError):
            ChebyshevSmoother(operator, dinv, operator.ess_dofs, 0, SpectralBounds(0.0, 1.0))

    def test_schwarz_is_symmetric(self, operator, params):
        smoother = build_smoother("schwarz", operator, params)
        assert isinstance(smoother, AdditiveSchwarzLORSmoother)
        assert smoother.weight > 0
        rng = np.random.default_rng(6)
        x, y = rng.standard_normal((2, operator.height))
        assert np.isclose(x @ smoother.apply(y), y @ smoother.apply(x))

    def test_schwarz_order_one(self, params):
        operator = poisson_operator(order=1, n=4)
        smoother = build_smoother("schwarz", operator, params)
        assert smoother.inverses.shape == (16, 4, 4)

    def test_schwarz_singular_block(self):
        lor = sparse.csr_matrix((4, 4))
        loc2glb = np.array([[0, 1, 2, 3]])
        with pytest.raises(NumericalBreakdown) as excinfo:
            AdditiveSchwarzLORSmoother(lor, loc2glb, np.array([], dtype=np.int64), level=3)
        assert excinfo.value.level == 3
        assert not isinstance(excinfo.value, ConfigurationError)

    def test_zero_diagonal_rejected(self, params):
        operator = poisson_operator(form=VariationalForm(diffusion=ConstantCoefficient(0.0)))
        with pytest.raises(ZeroDiagonalError) as excinfo:
            build_smoother("jacobi", operator, params, level=2)
        assert excinfo.value.level == 2
        assert isinstance(excinfo.value, ConfigurationError)

    def test_zero_diagonal_on_essential_dof_allowed(self):
        dinv = inverse_diagonal(np.array([0.0, 2.0, 4.0]), np.array([0]))
        assert np.allclose(dinv, [1.0, 0.5, 0.25])

    def test_unknown_kind(self, operator, params):
        with pytest.raises(ConfigurationError):
            build_smoother("sor", operator, params)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
