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
Residual Model Artifacts

A ModelArtifact is the generated, backend-independent form of a residual
model: the residual expression over the tape symbols [t, x(, u)] and the
parameter symbols, its Jacobian w.r.t. the tape symbols (symbolic mode),
and the signature it was generated for.

Artifacts are what model caches store. They serialize to plain JSON,
with every expression entry written as a SymPy ``srepr`` string so that
symbols keep their assumptions when read back.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional

import sympy as sp

from gncost.types.backends import (
    VALID_DIFFERENTIATION_MODES,
    DifferentiationMode,
    ModelKind,
    validate_model_kind,
)

ARTIFACT_FORMAT_VERSION = 1


class ModelKey(NamedTuple):
    """Cache key of a residual model: (model_name, kind)."""

    model_name: str
    kind: ModelKind


@dataclass(frozen=True)
class ModelSymbols:
    """
    Symbols a residual model is generated over.

    Attributes
    ----------
    time : sp.Symbol
        Time symbol t
    state : List[sp.Symbol]
        State symbols x_0 ... x_{nx-1}
    input : List[sp.Symbol]
        Input symbols u_0 ... u_{nu-1} (empty for final models)
    parameters : List[sp.Symbol]
        Parameter symbols p_0 ... p_{np-1}
    """

    time: sp.Symbol
    state: List[sp.Symbol]
    input: List[sp.Symbol]
    parameters: List[sp.Symbol]

    @classmethod
    def create(cls, state_dim: int, input_dim: int, parameter_dim: int) -> "ModelSymbols":
        """
        Create the standard real-valued symbol set.

        Examples
        --------
        >>> s = ModelSymbols.create(2, 1, 0)
        >>> s.tape
        [t, x_0, x_1, u_0]
        """
        return cls(
            time=sp.Symbol("t", real=True),
            state=[sp.Symbol(f"x_{i}", real=True) for i in range(state_dim)],
            input=[sp.Symbol(f"u_{i}", real=True) for i in range(input_dim)],
            parameters=[sp.Symbol(f"p_{i}", real=True) for i in range(parameter_dim)],
        )

    @property
    def tape(self) -> List[sp.Symbol]:
        """Differentiation variables [t, x, u]."""
        return [self.time] + self.state + self.input

    @property
    def arguments(self) -> List[sp.Symbol]:
        """Argument order of generated functions: tape symbols, then parameters."""
        return self.tape + self.parameters

    def state_vector(self) -> sp.Matrix:
        return sp.Matrix(len(self.state), 1, self.state)

    def input_vector(self) -> sp.Matrix:
        return sp.Matrix(len(self.input), 1, self.input)

    def parameter_vector(self) -> sp.Matrix:
        return sp.Matrix(len(self.parameters), 1, self.parameters)


@dataclass(frozen=True)
class ModelArtifact:
    """
    Generated residual model.

    Attributes
    ----------
    kind : ModelKind
        'intermediate' (tape [t, x, u]) or 'final' (tape [t, x])
    state_dim, input_dim, parameter_dim, residual_dim : int
        Model signature (input_dim is 0 for final models)
    differentiation : DifferentiationMode
        'symbolic' or 'autodiff'
    residual : sp.Matrix
        Residual expression, shape (residual_dim, 1)
    jacobian : Optional[sp.Matrix]
        ∂residual/∂tape, shape (residual_dim, 1 + state_dim + input_dim);
        None in autodiff mode
    metadata : Dict[str, Any]
        Generation information (SymPy version, creation time, timings)
    """

    kind: ModelKind
    state_dim: int
    input_dim: int
    parameter_dim: int
    residual_dim: int
    differentiation: DifferentiationMode
    residual: sp.Matrix
    jacobian: Optional[sp.Matrix] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def tape_dim(self) -> int:
        return 1 + self.state_dim + self.input_dim

    @property
    def symbols(self) -> ModelSymbols:
        return ModelSymbols.create(self.state_dim, self.input_dim, self.parameter_dim)

    def signature(self) -> Dict[str, Any]:
        """Dimensions and differentiation mode, used for compatibility checks."""
        return {
            "kind": self.kind,
            "state_dim": self.state_dim,
            "input_dim": self.input_dim,
            "parameter_dim": self.parameter_dim,
            "differentiation": self.differentiation,
        }

    # ========================================================================
    # Serialization
    # ========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to a JSON-serializable dictionary.

        Examples
        --------
        >>> data = artifact.to_dict()
        >>> ModelArtifact.from_dict(data) == artifact
        True
        """
        return {
            "format_version": ARTIFACT_FORMAT_VERSION,
            **self.signature(),
            "residual_dim": self.residual_dim,
            "residual": _matrix_to_data(self.residual),
            "jacobian": None if self.jacobian is None else _matrix_to_data(self.jacobian),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelArtifact":
        """
        Rebuild an artifact from ``to_dict`` output.

        Raises
        ------
        KeyError, ValueError, TypeError, sp.SympifyError
            If the data is incomplete or malformed
        """
        version = data["format_version"]
        if version != ARTIFACT_FORMAT_VERSION:
            raise ValueError(
                f"Unsupported artifact format version {version} "
                f"(expected {ARTIFACT_FORMAT_VERSION})"
            )

        differentiation = data["differentiation"]
        if differentiation not in VALID_DIFFERENTIATION_MODES:
            raise ValueError(f"Unknown differentiation mode '{differentiation}'")

        artifact = cls(
            kind=validate_model_kind(data["kind"]),
            state_dim=int(data["state_dim"]),
            input_dim=int(data["input_dim"]),
            parameter_dim=int(data["parameter_dim"]),
            residual_dim=int(data["residual_dim"]),
            differentiation=differentiation,
            residual=_matrix_from_data(data["residual"]),
            jacobian=None if data["jacobian"] is None else _matrix_from_data(data["jacobian"]),
            metadata=dict(data.get("metadata", {})),
        )
        artifact.check_consistency()
        return artifact

    def check_consistency(self):
        """
        Check that the stored expressions fit the stored signature.

        Raises
        ------
        ValueError
            If shapes or free symbols do not match the signature
        """
        if self.residual.shape != (self.residual_dim, 1):
            raise ValueError(
                f"Residual has shape {self.residual.shape}, "
                f"expected ({self.residual_dim}, 1)"
            )
        if self.differentiation == "symbolic":
            expected = (self.residual_dim, self.tape_dim)
            if self.jacobian is None or self.jacobian.shape != expected:
                shape = None if self.jacobian is None else self.jacobian.shape
                raise ValueError(f"Jacobian has shape {shape}, expected {expected}")

        allowed = set(self.symbols.arguments)
        unknown = self.residual.free_symbols - allowed
        if self.jacobian is not None:
            unknown |= self.jacobian.free_symbols - allowed
        if unknown:
            raise ValueError(f"Artifact references unknown symbols: {sorted(map(str, unknown))}")


def new_metadata(**extra) -> Dict[str, Any]:
    """Standard metadata attached to freshly generated artifacts."""
    return {
        "sympy_version": sp.__version__,
        "created": time.strftime("%Y-%m-%dT%H:%M:%S"),
        **extra,
    }


def _matrix_to_data(matrix: sp.Matrix) -> Dict[str, Any]:
    return {
        "shape": list(matrix.shape),
        "entries": [sp.srepr(entry) for entry in matrix],
    }


def _matrix_from_data(data: Dict[str, Any]) -> sp.ImmutableMatrix:
    rows, cols = (int(n) for n in data["shape"])
    entries = [sp.sympify(text) for text in data["entries"]]
    if len(entries) != rows * cols:
        raise ValueError(
            f"Expected {rows * cols} entries for shape ({rows}, {cols}), got {len(entries)}"
        )
    return sp.ImmutableMatrix(rows, cols, entries)


__all__ = [
    "ARTIFACT_FORMAT_VERSION",
    "ModelKey",
    "ModelSymbols",
    "ModelArtifact",
    "new_metadata",
]
