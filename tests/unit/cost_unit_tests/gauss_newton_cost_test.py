# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Unit tests for GaussNewtonCostAD

Tests cover:
1. Initialization (generate, load, errors)
2. Cost values and quadratic approximations
3. Gauss-Newton properties (value consistency, PSD Hessians)
4. Time derivatives and evaluation records
5. Input and parameter checks
6. Clones, info and alternative backends
"""

import numpy as np
import pytest
import sympy as sp

from gncost.ad.model_cache import InMemoryModelCache
from gncost.ad.residual_validator import ValidationError
from gncost.cost.gauss_newton_cost import GaussNewtonCostAD
from gncost.cost.residual_strategy import FunctionResidualStrategy, ResidualStrategy

# Conditional imports for backends
torch_available = True
try:
    import torch  # noqa: F401
except ImportError:
    torch_available = False

jax_available = True
try:
    import jax  # noqa: F401
except ImportError:
    jax_available = False


# ============================================================================
# Residual Strategies for Testing
# ============================================================================


class DifferenceResidual(ResidualStrategy):
    """r = x - u with nx = nu = 1, default (zero) final cost."""

    def intermediate_cost_function(self, time, state, input, parameters):
        return sp.Matrix([state[0] - input[0]])


class CartPoleResidual(ResidualStrategy):
    """
    Nonlinear, explicitly time-varying residual.

    x = [position, angle, velocity, rate], u = [force]; p = [target position].
    """

    def intermediate_cost_function(self, time, state, input, parameters):
        return sp.Matrix(
            [
                state[0] - parameters[0],
                sp.sin(state[1]) * sp.exp(-0.1 * time),
                state[2] * state[3],
                0.5 * input[0] * sp.cos(time),
            ]
        )

    def final_cost_function(self, time, state, parameters):
        return sp.Matrix([10 * (1 - sp.cos(state[1])), state[0] * time, state[2], state[3]])

    def get_num_intermediate_parameters(self):
        return 1

    def get_intermediate_parameters(self, time):
        return np.array([2.0])


X = np.array([0.5, 0.3, -1.2, 0.8])
U = np.array([1.5])


@pytest.fixture
def difference_cost(tmp_path):
    cost = GaussNewtonCostAD(DifferenceResidual(), state_dim=1, input_dim=1)
    cost.initialize("difference", str(tmp_path), verbose=False)
    return cost


@pytest.fixture
def cartpole_cost(tmp_path):
    cost = GaussNewtonCostAD(CartPoleResidual(), state_dim=4, input_dim=1)
    cost.initialize("cartpole", str(tmp_path), verbose=False)
    return cost


# ============================================================================
# Initialization
# ============================================================================


class TestInitialization:
    """Test model initialization"""

    def test_not_initialized(self):
        cost = GaussNewtonCostAD(DifferenceResidual(), state_dim=1, input_dim=1)
        assert not cost.is_initialized
        with pytest.raises(RuntimeError, match="not initialized"):
            cost.cost(0.0, [2.0], [1.0])
        with pytest.raises(RuntimeError, match="not initialized"):
            cost.final_cost_quadratic_approximation(0.0, [2.0])

    def test_strategy_type_checked(self):
        with pytest.raises(TypeError, match="FunctionResidualStrategy"):
            GaussNewtonCostAD(lambda t, x, u, p: [x[0]], state_dim=1, input_dim=1)

    def test_dimension_mismatch_raises(self, tmp_path):
        cost = GaussNewtonCostAD(DifferenceResidual(), state_dim=1, input_dim=0)
        with pytest.raises(ValidationError):
            cost.initialize("bad", str(tmp_path), verbose=False)

    def test_load_matches_compile(self, tmp_path, cartpole_cost):
        loaded = GaussNewtonCostAD(CartPoleResidual(), state_dim=4, input_dim=1)
        loaded.initialize("cartpole", str(tmp_path), recompile_libraries=False, verbose=False)
        assert loaded.lifecycle.sources == {"intermediate": "loaded", "final": "loaded"}

        expected = cartpole_cost.cost_quadratic_approximation(0.7, X, U)
        result = loaded.cost_quadratic_approximation(0.7, X, U)
        assert result.value == pytest.approx(expected.value)
        for block in ("dfdx", "dfdu", "dfdxx", "dfduu", "dfdux"):
            np.testing.assert_allclose(getattr(result, block), getattr(expected, block))
        assert loaded.final_cost(0.7, X) == pytest.approx(cartpole_cost.final_cost(0.7, X))

    def test_reinitialize_clears_records(self, tmp_path, difference_cost):
        difference_cost.cost_quadratic_approximation(0.0, [2.0], [1.0])
        difference_cost.initialize("difference", str(tmp_path), verbose=False)
        assert difference_cost.last_record("intermediate") is None

    def test_custom_cache(self, tmp_path):
        shared = InMemoryModelCache()
        cost = GaussNewtonCostAD(
            DifferenceResidual(), state_dim=1, input_dim=1, cache_factory=lambda folder: shared
        )
        cost.initialize("difference", str(tmp_path), verbose=False)
        assert len(shared) == 2

    def test_cache_class_as_factory(self, tmp_path):
        cost = GaussNewtonCostAD(
            DifferenceResidual(), state_dim=1, input_dim=1, cache_factory=InMemoryModelCache
        )
        cost.initialize("difference", str(tmp_path), verbose=False)
        cost.initialize("difference", str(tmp_path), recompile_libraries=False, verbose=False)
        assert cost.lifecycle.sources == {"intermediate": "loaded", "final": "loaded"}
        assert cost.cost(0.0, [2.0], [1.0]) == pytest.approx(0.5)

    def test_numpy_integer_dimensions(self, tmp_path):
        dims = np.array([4, 1])
        cost = GaussNewtonCostAD(CartPoleResidual(), state_dim=dims[0], input_dim=dims[1])
        cost.initialize("cartpole_int", str(tmp_path), verbose=False)
        assert cost.state_dim == 4
        assert cost.final_cost(1.0, X) >= 0.0


class TestStateAndInputResiduals:
    """Residual entries that are plain state or input coordinates"""

    @pytest.fixture
    def cost(self, tmp_path):
        strategy = FunctionResidualStrategy(
            lambda t, x, u, p: sp.Matrix([x[0], u[0]]),
            final=lambda t, x, p: sp.Matrix([x[1]]),
        )
        cost = GaussNewtonCostAD(strategy, state_dim=2, input_dim=1)
        cost.initialize("coordinates", str(tmp_path), verbose=False)
        return cost

    def test_cost(self, cost):
        assert cost.cost(0.0, [3.0, 5.0], [4.0]) == pytest.approx(12.5)
        assert cost.final_cost(0.0, [3.0, 5.0]) == pytest.approx(12.5)

    def test_approximation(self, cost):
        approx = cost.cost_quadratic_approximation(0.0, [3.0, 5.0], [4.0])
        np.testing.assert_allclose(approx.dfdx, [3.0, 0.0])
        np.testing.assert_allclose(approx.dfdu, [4.0])
        np.testing.assert_allclose(approx.dfdxx, [[1.0, 0.0], [0.0, 0.0]])
        np.testing.assert_allclose(approx.dfduu, [[1.0]])
        np.testing.assert_allclose(approx.dfdux, [[0.0, 0.0]])


# ============================================================================
# Costs and Approximations
# ============================================================================


class TestDifferenceScenario:
    """r = x - u, x = 2, u = 1"""

    def test_cost(self, difference_cost):
        assert difference_cost.cost(0.0, np.array([2.0]), np.array([1.0])) == pytest.approx(0.5)

    def test_approximation(self, difference_cost):
        approx = difference_cost.cost_quadratic_approximation(0.0, np.array([2.0]), np.array([1.0]))
        assert approx.value == pytest.approx(0.5)
        np.testing.assert_allclose(approx.dfdx, [1.0])
        np.testing.assert_allclose(approx.dfdu, [-1.0])
        np.testing.assert_allclose(approx.dfdxx, [[1.0]])
        np.testing.assert_allclose(approx.dfduu, [[1.0]])
        np.testing.assert_allclose(approx.dfdux, [[-1.0]])

    def test_default_final_cost_is_zero(self, difference_cost):
        assert difference_cost.final_cost(3.0, np.array([5.0])) == 0.0
        approx = difference_cost.final_cost_quadratic_approximation(3.0, np.array([5.0]))
        assert approx.value == 0.0
        np.testing.assert_array_equal(approx.dfdx, [0.0])
        np.testing.assert_array_equal(approx.dfdxx, [[0.0]])
        assert difference_cost.final_cost_derivative_time(3.0, np.array([5.0])) == 0.0

    def test_no_time_dependence(self, difference_cost):
        assert difference_cost.cost_derivative_time(0.0, [2.0], [1.0]) == 0.0


class TestGaussNewtonProperties:
    """Test properties that hold for every residual"""

    @pytest.mark.parametrize("t", [0.0, 0.7, 3.0])
    def test_cost_equals_approximation_value(self, cartpole_cost, t):
        approx = cartpole_cost.cost_quadratic_approximation(t, X, U)
        assert cartpole_cost.cost(t, X, U) == pytest.approx(approx.value)

    def test_final_cost_equals_approximation_value(self, cartpole_cost):
        approx = cartpole_cost.final_cost_quadratic_approximation(1.0, X)
        assert cartpole_cost.final_cost(1.0, X) == pytest.approx(approx.value)

    def test_hessians_symmetric_positive_semidefinite(self, cartpole_cost):
        approx = cartpole_cost.cost_quadratic_approximation(0.7, X, U)
        for H in (approx.dfdxx, approx.dfduu):
            np.testing.assert_allclose(H, H.T, atol=1e-14)
            assert np.min(np.linalg.eigvalsh(H)) >= -1e-12

    def test_gradient_matches_finite_differences(self, cartpole_cost):
        """The Gauss-Newton gradient is exact: dfdx = Jₓᵀr = ∂L/∂x."""
        t, eps = 0.7, 1e-6
        approx = cartpole_cost.cost_quadratic_approximation(t, X, U)
        for i in range(4):
            dx = np.zeros(4)
            dx[i] = eps
            upper, lower = cartpole_cost.cost(t, X + dx, U), cartpole_cost.cost(t, X - dx, U)
            numeric = (upper - lower) / (2 * eps)
            assert approx.dfdx[i] == pytest.approx(numeric, abs=1e-6)

    def test_final_approximation_shapes(self, cartpole_cost):
        approx = cartpole_cost.final_cost_quadratic_approximation(1.0, X)
        assert approx.dfdx.shape == (4,)
        assert approx.dfdxx.shape == (4, 4)
        assert approx.dfdu.shape == (0,)
        assert approx.dfduu.shape == (0, 0)
        assert approx.dfdux.shape == (0, 4)


# ============================================================================
# Time Derivatives and Records
# ============================================================================


class TestTimeDerivative:
    """Test ∂L/∂t and ∂Φ/∂t"""

    @staticmethod
    def _central_difference(f, t, eps=1e-6):
        return (f(t + eps) - f(t - eps)) / (2 * eps)

    def test_matches_finite_difference_after_approximation(self, cartpole_cost):
        t = 0.7
        cartpole_cost.cost_quadratic_approximation(t, X, U)
        numeric = self._central_difference(lambda s: cartpole_cost.cost(s, X, U), t)
        assert cartpole_cost.cost_derivative_time(t, X, U) == pytest.approx(numeric, abs=1e-6)

    def test_final_matches_finite_difference(self, cartpole_cost):
        t = 2.0
        cartpole_cost.final_cost_quadratic_approximation(t, X)
        numeric = self._central_difference(lambda s: cartpole_cost.final_cost(s, X), t)
        assert cartpole_cost.final_cost_derivative_time(t, X) == pytest.approx(numeric, abs=1e-6)

    def test_reuses_matching_record(self, cartpole_cost):
        cartpole_cost.cost_quadratic_approximation(0.7, X, U)
        model = cartpole_cost.intermediate_model
        calls = model.get_performance_stats()["jacobian"]["calls"]

        cartpole_cost.cost_derivative_time(0.7, X, U)
        assert model.get_performance_stats()["jacobian"]["calls"] == calls

    def test_stale_record_not_used(self, cartpole_cost):
        """A derivative at a new point is evaluated there, not read from the last record."""
        cartpole_cost.cost_quadratic_approximation(0.7, X, U)
        moved = cartpole_cost.cost_derivative_time(1.9, X + 0.1, U)

        fresh = cartpole_cost.clone()
        assert moved == pytest.approx(fresh.cost_derivative_time(1.9, X + 0.1, U))
        assert cartpole_cost.last_record("intermediate").matches(1.9, X + 0.1, U)

    def test_derivative_without_prior_approximation(self, cartpole_cost):
        numeric = self._central_difference(lambda s: cartpole_cost.cost(s, X, U), 0.3)
        assert cartpole_cost.cost_derivative_time(0.3, X, U) == pytest.approx(numeric, abs=1e-6)


class TestEvaluationRecords:
    """Test explicit evaluation records"""

    def test_intermediate_record(self, cartpole_cost):
        record = cartpole_cost.evaluate_intermediate(0.7, X, U)
        assert record.time == 0.7
        np.testing.assert_array_equal(record.state, X)
        np.testing.assert_array_equal(record.input, U)
        np.testing.assert_array_equal(record.parameters, [2.0])
        assert record.residual.shape == (4,)
        assert record.jacobian.shape == (4, 6)
        assert cartpole_cost.last_record("intermediate") is record

    def test_final_record(self, cartpole_cost):
        record = cartpole_cost.evaluate_final(1.0, X)
        assert record.is_final
        assert record.jacobian.shape == (4, 5)
        assert cartpole_cost.last_record("final") is record

    def test_derivative_from_record(self, cartpole_cost):
        record = cartpole_cost.evaluate_intermediate(0.7, X, U)
        expected = float(record.residual @ record.jacobian[:, 0])
        assert cartpole_cost.cost_derivative_time_from_record(record) == pytest.approx(expected)

    def test_record_kind_checked(self, cartpole_cost):
        intermediate = cartpole_cost.evaluate_intermediate(0.7, X, U)
        final = cartpole_cost.evaluate_final(0.7, X)
        with pytest.raises(ValueError, match="Expected a final evaluation record"):
            cartpole_cost.final_cost_derivative_time_from_record(intermediate)
        with pytest.raises(ValueError, match="Expected an intermediate evaluation record"):
            cartpole_cost.cost_derivative_time_from_record(final)

    def test_approximation_is_record_approximation(self, cartpole_cost):
        approx = cartpole_cost.cost_quadratic_approximation(0.7, X, U)
        assert cartpole_cost.last_record("intermediate").approximation is approx


# ============================================================================
# Input Checks
# ============================================================================


class TestInputChecks:
    """Test dimension and parameter checks at evaluation"""

    def test_wrong_state_length(self, cartpole_cost):
        with pytest.raises(ValueError, match="state has incorrect dimension"):
            cartpole_cost.cost(0.0, X[:3], U)

    def test_wrong_input_length(self, cartpole_cost):
        with pytest.raises(ValueError, match="input has incorrect dimension"):
            cartpole_cost.cost_quadratic_approximation(0.0, X, np.zeros(2))

    def test_parameter_count_drift(self, tmp_path):
        strategy = FunctionResidualStrategy(
            lambda t, x, u, p: sp.Matrix([x[0] - p[0], u[0]]),
            num_intermediate_parameters=1,
            intermediate_parameters=lambda t: np.array([1.0, 2.0]),
        )
        cost = GaussNewtonCostAD(strategy, state_dim=1, input_dim=1)
        cost.initialize("drift", str(tmp_path), verbose=False)
        with pytest.raises(ValueError, match="parameter count must match"):
            cost.cost(0.0, [1.0], [0.0])


# ============================================================================
# Clones and Information
# ============================================================================


class TestClone:
    """Test independent copies"""

    def test_clone_has_own_models_and_records(self, cartpole_cost):
        cartpole_cost.cost_quadratic_approximation(0.7, X, U)
        clone = cartpole_cost.clone()

        assert clone.intermediate_model is not cartpole_cost.intermediate_model
        assert clone.intermediate_model.artifact is cartpole_cost.intermediate_model.artifact
        assert clone.last_record("intermediate") is None

        clone.cost_quadratic_approximation(1.5, X, U)
        assert cartpole_cost.last_record("intermediate").matches(0.7, X, U)

    def test_clone_gives_same_values(self, cartpole_cost):
        clone = cartpole_cost.clone()
        assert clone.cost(0.7, X, U) == pytest.approx(cartpole_cost.cost(0.7, X, U))

    def test_clone_of_uninitialized_cost(self):
        cost = GaussNewtonCostAD(DifferenceResidual(), state_dim=1, input_dim=1)
        assert not cost.clone().is_initialized

    def test_initializing_clone_leaves_original(self, tmp_path, cartpole_cost):
        clone = cartpole_cost.clone()
        clone.initialize("cartpole_copy", str(tmp_path / "copy"), verbose=False)

        assert clone.lifecycle is not cartpole_cost.lifecycle
        assert cartpole_cost.lifecycle.model_name == "cartpole"
        assert cartpole_cost.lifecycle.model_folder == str(tmp_path)
        assert clone.lifecycle.model_name == "cartpole_copy"
        assert clone.cost(0.7, X, U) == pytest.approx(cartpole_cost.cost(0.7, X, U))


class TestInformation:
    def test_info(self, cartpole_cost):
        info = cartpole_cost.get_info()
        assert info["initialized"] is True
        assert info["num_intermediate_parameters"] == 1
        assert info["intermediate_model"]["residual_dim"] == 4
        assert info["lifecycle"]["model_name"] == "cartpole"

    def test_repr(self, cartpole_cost):
        assert repr(cartpole_cost) == (
            "GaussNewtonCostAD(nx=4, nu=1, backend='numpy', "
            "differentiation='symbolic', initialized=True)"
        )


# ============================================================================
# Other Backends
# ============================================================================


class TestBackends:
    """Test every backend against the NumPy reference"""

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_torch(self, tmp_path, cartpole_cost):
        cost = GaussNewtonCostAD(CartPoleResidual(), state_dim=4, input_dim=1, backend="torch")
        cost.initialize("cartpole_torch", str(tmp_path), verbose=False)
        expected = cartpole_cost.cost_quadratic_approximation(0.7, X, U)
        result = cost.cost_quadratic_approximation(0.7, X, U)
        np.testing.assert_allclose(result.dfdxx, expected.dfdxx, rtol=1e-10, atol=1e-12)
        assert cost.cost_derivative_time(0.7, X, U) == pytest.approx(
            cartpole_cost.cost_derivative_time(0.7, X, U)
        )

    @pytest.mark.skipif(not jax_available, reason="JAX not installed")
    @pytest.mark.parametrize("differentiation", ["symbolic", "autodiff"])
    def test_jax(self, tmp_path, cartpole_cost, differentiation):
        cost = GaussNewtonCostAD(
            CartPoleResidual(),
            state_dim=4,
            input_dim=1,
            backend="jax",
            differentiation=differentiation,
        )
        cost.initialize(f"cartpole_jax_{differentiation}", str(tmp_path), verbose=False)
        expected = cartpole_cost.cost_quadratic_approximation(0.7, X, U)
        result = cost.cost_quadratic_approximation(0.7, X, U)
        np.testing.assert_allclose(result.dfdx, expected.dfdx, rtol=1e-10, atol=1e-12)
        np.testing.assert_allclose(result.dfdux, expected.dfdux, rtol=1e-10, atol=1e-12)
        assert cost.final_cost(0.7, X) == pytest.approx(cartpole_cost.final_cost(0.7, X))
