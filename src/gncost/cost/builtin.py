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
Built-in residual strategies.

- QuadraticTrackingResidual: weighted tracking of time-varying references
- LinearResidual: affine residual r = A x + B u + c(t)
"""

from typing import Callable, Optional

import numpy as np
import sympy as sp

from gncost.cost.residual_strategy import ResidualStrategy
from gncost.types.core import ArrayLike, ParameterVector


def _weights(values: ArrayLike, n: int, name: str) -> np.ndarray:
    values = np.asarray(values, dtype=float).reshape(-1)
    if values.shape != (n,):
        raise ValueError(f"{name} must have shape ({n},), got {values.shape}")
    if np.any(values < 0):
        raise ValueError(f"{name} must be non-negative, got {values}")
    return values


class QuadraticTrackingResidual(ResidualStrategy):
    """
    Weighted tracking of state and input references.

        r   = [√Q (x - x_ref(t)), √R (u - u_ref(t))]
        r_f = √Q_f (x - x_ref(t))

    so that L = ½ (x - x_ref)ᵀQ(x - x_ref) + ½ (u - u_ref)ᵀR(u - u_ref) for
    diagonal Q, R. References are passed to the models as parameters, so
    they can change without regenerating anything.

    Parameters
    ----------
    state_weights : ArrayLike
        Diagonal of Q, shape (nx,)
    input_weights : ArrayLike
        Diagonal of R, shape (nu,)
    final_state_weights : Optional[ArrayLike]
        Diagonal of Q_f (None = no final cost)
    state_reference : Optional[Callable]
        t → x_ref (None = zero)
    input_reference : Optional[Callable]
        t → u_ref (None = zero)

    Examples
    --------
    >>> residual = QuadraticTrackingResidual(
    ...     state_weights=[10.0, 1.0],
    ...     input_weights=[0.1],
    ...     state_reference=lambda t: np.array([np.sin(t), np.cos(t)]),
    ... )
    >>> cost = GaussNewtonCostAD(residual, state_dim=2, input_dim=1)
    """

    def __init__(
        self,
        state_weights: ArrayLike,
        input_weights: ArrayLike,
        final_state_weights: Optional[ArrayLike] = None,
        state_reference: Optional[Callable[[float], ArrayLike]] = None,
        input_reference: Optional[Callable[[float], ArrayLike]] = None,
    ):
        state_weights = np.asarray(state_weights, dtype=float).reshape(-1)
        self.nx = state_weights.shape[0]
        self.state_weights = _weights(state_weights, self.nx, "state_weights")
        self.nu = np.asarray(input_weights, dtype=float).reshape(-1).shape[0]
        self.input_weights = _weights(input_weights, self.nu, "input_weights")
        self.final_state_weights = (
            None
            if final_state_weights is None
            else _weights(final_state_weights, self.nx, "final_state_weights")
        )
        self.state_reference = state_reference
        self.input_reference = input_reference

    def intermediate_cost_function(self, time, state, input, parameters):
        x_ref = parameters[: self.nx, :]
        u_ref = parameters[self.nx :, :]
        sqrt_q = sp.diag(*[sp.sqrt(sp.Float(w)) for w in self.state_weights])
        sqrt_r = sp.diag(*[sp.sqrt(sp.Float(w)) for w in self.input_weights])
        return (sqrt_q * (state - x_ref)).col_join(sqrt_r * (input - u_ref))

    def final_cost_function(self, time, state, parameters):
        if self.final_state_weights is None:
            return super().final_cost_function(time, state, parameters)
        sqrt_qf = sp.diag(*[sp.sqrt(sp.Float(w)) for w in self.final_state_weights])
        return sqrt_qf * (state - parameters)

    def get_num_intermediate_parameters(self) -> int:
        return self.nx + self.nu

    def get_num_final_parameters(self) -> int:
        return 0 if self.final_state_weights is None else self.nx

    def get_intermediate_parameters(self, time: float) -> ParameterVector:
        return np.concatenate([self._state_reference(time), self._input_reference(time)])

    def get_final_parameters(self, time: float) -> ParameterVector:
        if self.final_state_weights is None:
            return np.zeros(0)
        return self._state_reference(time)

    def _state_reference(self, time: float) -> np.ndarray:
        if self.state_reference is None:
            return np.zeros(self.nx)
        return np.asarray(self.state_reference(time), dtype=float).reshape(-1)

    def _input_reference(self, time: float) -> np.ndarray:
        if self.input_reference is None:
            return np.zeros(self.nu)
        return np.asarray(self.input_reference(time), dtype=float).reshape(-1)


class LinearResidual(ResidualStrategy):
    """
    Affine residual r = A x + B u + c(t).

    The offset c(t) is passed as a parameter vector. With a final matrix
    A_f the final residual is r_f = A_f x.

    Parameters
    ----------
    A : ArrayLike
        Shape (nr, nx)
    B : ArrayLike
        Shape (nr, nu)
    offset : Optional[Callable]
        t → c, shape (nr,) (None = zero)
    A_final : Optional[ArrayLike]
        Shape (nr_f, nx) (None = no final cost)
    """

    def __init__(
        self,
        A: ArrayLike,
        B: ArrayLike,
        offset: Optional[Callable[[float], ArrayLike]] = None,
        A_final: Optional[ArrayLike] = None,
    ):
        self.A = np.atleast_2d(np.asarray(A, dtype=float))
        self.B = np.asarray(B, dtype=float).reshape(self.A.shape[0], -1)
        self.offset = offset
        self.A_final = None if A_final is None else np.atleast_2d(np.asarray(A_final, dtype=float))

    @property
    def residual_dim(self) -> int:
        return self.A.shape[0]

    def intermediate_cost_function(self, time, state, input, parameters):
        return sp.Matrix(self.A) * state + sp.Matrix(self.B) * input + parameters

    def final_cost_function(self, time, state, parameters):
        if self.A_final is None:
            return super().final_cost_function(time, state, parameters)
        return sp.Matrix(self.A_final) * state

    def get_num_intermediate_parameters(self) -> int:
        return self.residual_dim

    def get_intermediate_parameters(self, time: float) -> ParameterVector:
        if self.offset is None:
            return np.zeros(self.residual_dim)
        return np.asarray(self.offset(time), dtype=float).reshape(-1)


__all__ = ["QuadraticTrackingResidual", "LinearResidual"]
