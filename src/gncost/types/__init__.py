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
Types Module - Type Definitions for gncost

Central import point for all type definitions across the package.
Organized into domain-specific modules but re-exported here for convenience.

Module Organization
------------------
- core: Basic arrays, vectors, matrices, residual signatures
- approximation: Quadratic approximation and evaluation records
- backends: Backend, device, differentiation and model configuration types
- protocols: Cost function contract
- utilities: Type guards, converters, execution statistics
"""

from .approximation import EvaluationRecord, ScalarFunctionQuadraticApproximation
from .backends import (
    DEFAULT_BACKEND,
    DEFAULT_DEVICE,
    DEFAULT_DIFFERENTIATION,
    DEFAULT_MODEL_FOLDER,
    Backend,
    Device,
    DifferentiationMode,
    ModelConfig,
    ModelKind,
    validate_backend,
    validate_device,
    validate_differentiation,
    validate_model_kind,
)
from .core import (
    ArrayLike,
    FinalResidualFunction,
    GradientVector,
    HessianMatrix,
    InputVector,
    IntermediateResidualFunction,
    JacobianMatrix,
    ParameterFunction,
    ParameterVector,
    ResidualVector,
    ScalarLike,
    StateVector,
    TapeInput,
    Time,
)
from .protocols import CostFunctionProtocol
from .utilities import ExecutionStats, as_vector, ensure_numpy, get_backend

__all__ = [
    # Core
    "ArrayLike",
    "ScalarLike",
    "Time",
    "StateVector",
    "InputVector",
    "ParameterVector",
    "ResidualVector",
    "TapeInput",
    "JacobianMatrix",
    "GradientVector",
    "HessianMatrix",
    "IntermediateResidualFunction",
    "FinalResidualFunction",
    "ParameterFunction",
    # Approximation
    "ScalarFunctionQuadraticApproximation",
    "EvaluationRecord",
    # Backends
    "Backend",
    "Device",
    "DifferentiationMode",
    "ModelKind",
    "ModelConfig",
    "DEFAULT_BACKEND",
    "DEFAULT_DEVICE",
    "DEFAULT_DIFFERENTIATION",
    "DEFAULT_MODEL_FOLDER",
    "validate_backend",
    "validate_device",
    "validate_differentiation",
    "validate_model_kind",
    # Protocols
    "CostFunctionProtocol",
    # Utilities
    "ExecutionStats",
    "as_vector",
    "ensure_numpy",
    "get_backend",
]
