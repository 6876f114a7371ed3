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
Core Types - Fundamental Building Blocks

Defines the most basic types used throughout the package:
- Multi-backend array types (NumPy, PyTorch, JAX)
- Semantic vector types (state, input, parameter, residual, tape input)
- Matrix types (Jacobians, Hessian blocks)
- Residual function signatures

Usage
-----
>>> from gncost.types.core import StateVector, InputVector, ResidualVector
>>>
>>> def tracking(t, x: StateVector, u: InputVector, p) -> ResidualVector:
...     return x - p
"""

from typing import TYPE_CHECKING, Callable, Union

import numpy as np

if TYPE_CHECKING:
    import jax.numpy as jnp
    import sympy as sp
    import torch


# ============================================================================
# Basic Array Types - Multi-Backend Support
# ============================================================================

ArrayLike = Union[np.ndarray, "torch.Tensor", "jnp.ndarray"]
"""
Array-like type supporting multiple backends.

Shape conventions:
- Scalars: ()
- Vectors: (n,)
- Matrices: (m, n)
"""

ScalarLike = Union[float, int, np.number, "torch.Tensor", "jnp.ndarray"]
"""Scalar value in any backend (Python float/int, NumPy scalar, 0-d tensor)."""

Time = float
"""Evaluation time t."""


# ============================================================================
# Vector Types - Semantic Naming by Role
# ============================================================================

StateVector = ArrayLike
"""State vector x ∈ ℝⁿˣ, shape (nx,)."""

InputVector = ArrayLike
"""Input vector u ∈ ℝⁿᵘ, shape (nu,)."""

ParameterVector = ArrayLike
"""
Cost parameter vector p ∈ ℝⁿᵖ.

Time-varying auxiliary input of a residual (references, weights, ...).
Parameters are not differentiated, and their dimension is frozen when a
residual model is generated.
"""

ResidualVector = ArrayLike
"""
Residual vector r, shape (nr,).

The cost is the half squared norm: L = 0.5 * rᵀr.
"""

TapeInput = np.ndarray
"""
Differentiation input of a residual model.

- Intermediate model: [t, x, u], shape (1 + nx + nu,)
- Final model: [t, x], shape (1 + nx,)
"""


# ============================================================================
# Matrix Types
# ============================================================================

JacobianMatrix = np.ndarray
"""
Residual Jacobian ∂r/∂[t, x(, u)], shape (nr, 1 + nx (+ nu)).

Column 0 is the time derivative, followed by the state block and,
for intermediate models, the input block.
"""

GradientVector = np.ndarray
"""Cost gradient block (∂L/∂x or ∂L/∂u)."""

HessianMatrix = np.ndarray
"""Gauss-Newton Hessian block (JₓᵀJₓ, JᵤᵀJᵤ or JᵤᵀJₓ)."""


# ============================================================================
# Function Types
# ============================================================================

IntermediateResidualFunction = Callable[
    ["sp.Symbol", "sp.Matrix", "sp.Matrix", "sp.Matrix"], "sp.Matrix"
]
"""
Symbolic intermediate residual: (t, x, u, p) → r.

Called once per model generation with SymPy symbols; must build
the residual from SymPy operations only.
"""

FinalResidualFunction = Callable[["sp.Symbol", "sp.Matrix", "sp.Matrix"], "sp.Matrix"]
"""Symbolic final residual: (t, x, p) → r."""

ParameterFunction = Callable[[Time], ParameterVector]
"""Numeric parameter provider: t → p."""


__all__ = [
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
]
