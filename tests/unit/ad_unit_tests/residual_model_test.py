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
Unit tests for ResidualModel

Tests cover:
1. Residual and Jacobian evaluation (NumPy)
2. Input size checks
3. Jacobian verification against finite differences
4. Clones and performance statistics
5. Backend consistency (PyTorch, JAX) and JAX autodiff
"""

import numpy as np
import pytest
import sympy as sp

from gncost.ad.model_artifact import ModelArtifact
from gncost.ad.residual_model import ResidualModel, generate_model_artifact

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


def unicycle_residual(t, x, u, p):
    """Track a moving target p(t) with a unicycle; x = [px, py, heading], u = [v, w]."""
    return sp.Matrix(
        [
            x[0] - p[0] * sp.cos(t),
            x[1] - p[0] * sp.sin(t),
            sp.sin(x[2]) * u[0],
            0.1 * u[1] ** 2,
        ]
    )


TAPE = np.array([0.3, 1.0, -0.5, 0.7, 2.0, 0.4])
PARAMS = np.array([1.5])


@pytest.fixture
def model():
    return ResidualModel.build(unicycle_residual, "intermediate", 3, 2, 1)


# ============================================================================
# Evaluation
# ============================================================================


class TestEvaluation:
    """Test residual and Jacobian values"""

    def test_difference_residual(self):
        model = ResidualModel.build(
            lambda t, x, u, p: sp.Matrix([x[0] - u[0]]), "intermediate", 1, 1
        )
        np.testing.assert_allclose(model.evaluate(np.array([0.0, 2.0, 1.0])), [1.0])
        np.testing.assert_allclose(model.jacobian(np.array([0.0, 2.0, 1.0])), [[0.0, 1.0, -1.0]])

    def test_residual_values(self, model):
        t, px, py, heading, v, w = TAPE
        expected = [
            px - 1.5 * np.cos(t),
            py - 1.5 * np.sin(t),
            np.sin(heading) * v,
            0.1 * w**2,
        ]
        np.testing.assert_allclose(model.evaluate(TAPE, PARAMS), expected)

    def test_jacobian_shape_and_time_column(self, model):
        jac = model.jacobian(TAPE, PARAMS)
        assert jac.shape == (4, 6)
        t = TAPE[0]
        np.testing.assert_allclose(jac[:, 0], [1.5 * np.sin(t), -1.5 * np.cos(t), 0.0, 0.0])

    def test_outputs_are_float64(self, model):
        residual, jacobian = model.evaluate_with_jacobian(TAPE, PARAMS)
        assert residual.dtype == np.float64
        assert jacobian.dtype == np.float64

    def test_constant_jacobian(self):
        model = ResidualModel.build(
            lambda t, x, p: sp.Matrix([2 * x[0] + 3]), "final", state_dim=1
        )
        np.testing.assert_allclose(model.jacobian(np.array([5.0, 1.0])), [[0.0, 2.0]])

    def test_accepts_lists(self, model):
        np.testing.assert_allclose(
            model.evaluate(list(TAPE), list(PARAMS)), model.evaluate(TAPE, PARAMS)
        )


class TestInputChecks:
    """Test size validation of tape input and parameters"""

    def test_wrong_tape_size(self, model):
        with pytest.raises(ValueError, match="intermediate tape input has incorrect dimension"):
            model.evaluate(TAPE[:-1], PARAMS)

    def test_wrong_parameter_size(self, model):
        with pytest.raises(ValueError, match="intermediate parameters has incorrect dimension"):
            model.jacobian(TAPE, np.array([1.0, 2.0]))

    def test_missing_parameters(self, model):
        with pytest.raises(ValueError, match="intermediate parameters is required"):
            model.evaluate(TAPE)


# ============================================================================
# Verification
# ============================================================================


class TestVerification:
    """Test finite-difference checks"""

    def test_finite_difference_matches(self, model):
        np.testing.assert_allclose(
            model.finite_difference_jacobian(TAPE, PARAMS),
            model.jacobian(TAPE, PARAMS),
            atol=1e-6,
        )

    def test_verify_jacobian(self, model):
        results = model.verify_jacobian(TAPE, PARAMS)
        assert results["match"] is True
        assert results["max_error"] < 1e-4
        assert set(results) == {"match", "t_error", "x_error", "u_error", "max_error"}

    def test_verify_final_model(self):
        model = ResidualModel.build(
            lambda t, x, p: sp.Matrix([sp.exp(t) * x[0], x[1] ** 3]), "final", state_dim=2
        )
        results = model.verify_jacobian(np.array([0.2, 1.0, -1.0]))
        assert results["match"] is True
        assert results["u_error"] == 0.0


# ============================================================================
# Construction, Clones and Statistics
# ============================================================================


class TestConstruction:
    """Test building, compiling and cloning"""

    def test_from_serialized_artifact(self, model):
        restored = ModelArtifact.from_dict(model.artifact.to_dict())
        loaded = ResidualModel.from_artifact(restored)
        np.testing.assert_allclose(loaded.evaluate(TAPE, PARAMS), model.evaluate(TAPE, PARAMS))
        np.testing.assert_allclose(loaded.jacobian(TAPE, PARAMS), model.jacobian(TAPE, PARAMS))

    def test_autodiff_requires_jax(self):
        artifact = generate_model_artifact(
            unicycle_residual, "intermediate", 3, 2, 1, differentiation="autodiff"
        )
        with pytest.raises(ValueError, match="only supported for JAX"):
            ResidualModel.from_artifact(artifact, backend="numpy")

    def test_build_autodiff_requires_jax(self):
        with pytest.raises(ValueError, match="only supported for JAX"):
            ResidualModel.build(
                unicycle_residual, "intermediate", 3, 2, 1, differentiation="autodiff"
            )

    def test_properties(self, model):
        assert model.kind == "intermediate"
        assert model.backend == "numpy"
        assert (model.state_dim, model.input_dim, model.parameter_dim) == (3, 2, 1)
        assert model.residual_dim == 4
        assert model.tape_dim == 6

    def test_clone_shares_artifact_not_stats(self, model):
        model.evaluate(TAPE, PARAMS)
        clone = model.clone()
        assert clone is not model
        assert clone.artifact is model.artifact
        assert clone.get_performance_stats()["residual"]["calls"] == 0
        np.testing.assert_allclose(clone.evaluate(TAPE, PARAMS), model.evaluate(TAPE, PARAMS))

    def test_performance_stats(self, model):
        model.evaluate(TAPE, PARAMS)
        model.evaluate(TAPE, PARAMS)
        model.jacobian(TAPE, PARAMS)
        stats = model.get_performance_stats()
        assert stats["residual"]["calls"] == 2
        assert stats["jacobian"]["calls"] == 1
        assert stats["residual"]["avg_time"] >= 0.0

        model.reset_performance_stats()
        assert model.get_performance_stats()["residual"]["calls"] == 0

    def test_info_and_repr(self, model):
        info = model.get_info()
        assert info["kind"] == "intermediate"
        assert info["residual_dim"] == 4
        assert info["backend"] == "numpy"
        assert "ResidualModel(kind='intermediate'" in repr(model)


# ============================================================================
# Other Backends
# ============================================================================


class TestBackends:
    """Test that every backend returns the NumPy reference values"""

    @pytest.mark.skipif(not torch_available, reason="PyTorch not installed")
    def test_torch_matches_numpy(self, model):
        torch_model = ResidualModel.from_artifact(model.artifact, backend="torch")
        np.testing.assert_allclose(
            torch_model.evaluate(TAPE, PARAMS), model.evaluate(TAPE, PARAMS), rtol=1e-12
        )
        np.testing.assert_allclose(
            torch_model.jacobian(TAPE, PARAMS), model.jacobian(TAPE, PARAMS), rtol=1e-12
        )

    @pytest.mark.skipif(not jax_available, reason="JAX not installed")
    def test_jax_matches_numpy(self, model):
        jax_model = ResidualModel.from_artifact(model.artifact, backend="jax")
        np.testing.assert_allclose(
            jax_model.evaluate(TAPE, PARAMS), model.evaluate(TAPE, PARAMS), rtol=1e-12
        )
        np.testing.assert_allclose(
            jax_model.jacobian(TAPE, PARAMS), model.jacobian(TAPE, PARAMS), rtol=1e-12
        )

    @pytest.mark.skipif(not jax_available, reason="JAX not installed")
    def test_jax_autodiff_matches_symbolic(self, model):
        autodiff = ResidualModel.build(
            unicycle_residual, "intermediate", 3, 2, 1,
            backend="jax", differentiation="autodiff",
        )
        assert autodiff.artifact.jacobian is None
        np.testing.assert_allclose(
            autodiff.jacobian(TAPE, PARAMS), model.jacobian(TAPE, PARAMS), rtol=1e-10, atol=1e-12
        )
