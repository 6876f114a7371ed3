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
Unit tests for ModelSymbols and ModelArtifact

Tests cover:
1. Symbol layout of the tape input
2. Artifact generation (residual and Jacobian expressions)
3. Serialization to and from plain dictionaries
4. Consistency checks on malformed data
"""

import json

import pytest
import sympy as sp

from gncost.ad.model_artifact import ARTIFACT_FORMAT_VERSION, ModelArtifact, ModelKey, ModelSymbols
from gncost.ad.residual_model import generate_model_artifact
from gncost.ad.residual_validator import ValidationError


def pendulum_residual(t, x, u, p):
    return sp.Matrix([sp.sin(x[0]) - p[0] * t, x[1], u[0]])


@pytest.fixture
def artifact():
    return generate_model_artifact(
        pendulum_residual, "intermediate", state_dim=2, input_dim=1, parameter_dim=1
    )


class TestModelSymbols:
    """Test symbol creation and ordering"""

    def test_tape_order(self):
        s = ModelSymbols.create(2, 1, 0)
        assert [str(v) for v in s.tape] == ["t", "x_0", "x_1", "u_0"]

    def test_arguments_append_parameters(self):
        s = ModelSymbols.create(1, 0, 2)
        assert [str(v) for v in s.arguments] == ["t", "x_0", "p_0", "p_1"]

    def test_vectors_are_columns(self):
        s = ModelSymbols.create(3, 2, 0)
        assert s.state_vector().shape == (3, 1)
        assert s.input_vector().shape == (2, 1)
        assert s.parameter_vector().shape == (0, 1)

    def test_symbols_are_real(self):
        s = ModelSymbols.create(1, 1, 1)
        assert all(v.is_real for v in s.arguments)


class TestGeneration:
    """Test generate_model_artifact"""

    def test_signature(self, artifact):
        assert artifact.signature() == {
            "kind": "intermediate",
            "state_dim": 2,
            "input_dim": 1,
            "parameter_dim": 1,
            "differentiation": "symbolic",
        }
        assert artifact.residual_dim == 3
        assert artifact.tape_dim == 4

    def test_jacobian_expression(self, artifact):
        s = artifact.symbols
        t, x0 = s.time, s.state[0]
        p0 = s.parameters[0]
        expected = sp.Matrix(
            [
                [-p0, sp.cos(x0), 0, 0],
                [0, 0, 1, 0],
                [0, 0, 0, 1],
            ]
        )
        assert sp.simplify(artifact.jacobian - expected) == sp.zeros(3, 4)
        assert artifact.residual[0] == sp.sin(x0) - p0 * t

    def test_autodiff_has_no_symbolic_jacobian(self):
        artifact = generate_model_artifact(
            pendulum_residual, "intermediate", 2, 1, 1, differentiation="autodiff"
        )
        assert artifact.jacobian is None
        assert artifact.differentiation == "autodiff"

    def test_final_model_drops_input(self):
        artifact = generate_model_artifact(
            lambda t, x, p: [x[0] ** 2], "final", state_dim=1, input_dim=3
        )
        assert artifact.input_dim == 0
        assert artifact.jacobian.shape == (1, 2)

    def test_invalid_residual(self):
        with pytest.raises(ValidationError):
            generate_model_artifact(pendulum_residual, "intermediate", 1, 1, 1)

    def test_unknown_differentiation(self):
        with pytest.raises(ValueError, match="Invalid differentiation mode"):
            generate_model_artifact(pendulum_residual, "intermediate", 2, 1, 1, "numeric")

    def test_metadata(self, artifact):
        assert artifact.metadata["sympy_version"] == sp.__version__
        assert "created" in artifact.metadata

    def test_artifact_is_hashable(self, artifact):
        assert isinstance(hash(artifact), int)


class TestSerialization:
    """Test to_dict / from_dict"""

    def test_round_trip_through_json(self, artifact):
        data = json.loads(json.dumps(artifact.to_dict()))
        restored = ModelArtifact.from_dict(data)
        assert restored == artifact
        assert restored.symbols.time.is_real

    def test_format_version_recorded(self, artifact):
        assert artifact.to_dict()["format_version"] == ARTIFACT_FORMAT_VERSION

    def test_unsupported_version(self, artifact):
        data = artifact.to_dict()
        data["format_version"] = ARTIFACT_FORMAT_VERSION + 1
        with pytest.raises(ValueError, match="Unsupported artifact format version"):
            ModelArtifact.from_dict(data)

    def test_missing_field(self, artifact):
        data = artifact.to_dict()
        del data["residual"]
        with pytest.raises(KeyError):
            ModelArtifact.from_dict(data)

    def test_shape_mismatch(self, artifact):
        data = artifact.to_dict()
        data["residual_dim"] = 4
        with pytest.raises(ValueError, match="Residual has shape"):
            ModelArtifact.from_dict(data)

    def test_entry_count_mismatch(self, artifact):
        data = artifact.to_dict()
        data["jacobian"]["entries"] = data["jacobian"]["entries"][:-1]
        with pytest.raises(ValueError, match="Expected 12 entries"):
            ModelArtifact.from_dict(data)

    def test_unknown_symbols(self, artifact):
        data = artifact.to_dict()
        data["parameter_dim"] = 0
        with pytest.raises(ValueError, match="unknown symbols"):
            ModelArtifact.from_dict(data)


class TestModelKey:
    def test_key_fields(self):
        key = ModelKey("pendulum", "final")
        assert key.model_name == "pendulum"
        assert key.kind == "final"
        assert key == ("pendulum", "final")
