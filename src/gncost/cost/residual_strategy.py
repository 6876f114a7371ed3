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
Residual Strategies
===================

A residual strategy tells the Gauss-Newton cost engine what to minimize.

Overview
--------
The cost of a Gauss-Newton cost function is half the squared norm of a
residual vector:

    L(t, x, u) = ½ ‖r(t, x, u, p(t))‖²       (intermediate)
    Φ(t, x)    = ½ ‖r_f(t, x, p_f(t))‖²      (final)

The strategy supplies
- the residual functions r and r_f, written with SymPy operations. They
  are called once per model, on symbols, while the models are generated.
- the parameter functions p(t) and p_f(t), called on every evaluation
  with a float time. Parameters carry anything that changes over time
  but is not differentiated (references, weights, gains).

Strategies are handed to GaussNewtonCostAD at construction.

Arguments of the residual functions
-----------------------------------
- time : sp.Symbol
- state : sp.Matrix, shape (nx, 1)
- input : sp.Matrix, shape (nu, 1) (intermediate only)
- parameters : sp.Matrix, shape (np, 1)

The return value may be an sp.Matrix (row or column), a list of
expressions, or a single expression.

Examples
--------
>>> class PendulumResidual(ResidualStrategy):
...     def intermediate_cost_function(self, time, state, input, parameters):
...         theta_ref = parameters[0]
...         return sp.Matrix([state[0] - theta_ref, state[1], 0.1 * input[0]])
...
...     def get_num_intermediate_parameters(self):
...         return 1
...
...     def get_intermediate_parameters(self, time):
...         return np.array([np.sin(time)])
"""

from typing import Callable, Optional

import numpy as np
import sympy as sp

from gncost.types.core import ParameterVector


class ResidualStrategy:
    """
    Base class for user-defined residuals.

    Subclasses MUST implement ``intermediate_cost_function``. Everything
    else has a default: no parameters, and a final residual with a single
    zero entry (so the final cost is identically 0).
    """

    def intermediate_cost_function(
        self,
        time: sp.Symbol,
        state: sp.Matrix,
        input: sp.Matrix,
        parameters: sp.Matrix,
    ):
        """Intermediate residual r(t, x, u, p)."""
        raise NotImplementedError(
            f"{type(self).__name__} must implement intermediate_cost_function"
        )

    def final_cost_function(self, time: sp.Symbol, state: sp.Matrix, parameters: sp.Matrix):
        """Final residual r_f(t, x, p). Defaults to a single zero entry."""
        return sp.Matrix([sp.Integer(0)])

    def get_num_intermediate_parameters(self) -> int:
        return 0

    def get_num_final_parameters(self) -> int:
        return 0

    def get_intermediate_parameters(self, time: float) -> ParameterVector:
        """Intermediate parameter vector p(t), shape (np,)."""
        return np.zeros(self.get_num_intermediate_parameters())

    def get_final_parameters(self, time: float) -> ParameterVector:
        """Final parameter vector p_f(t), shape (np_f,)."""
        return np.zeros(self.get_num_final_parameters())


class FunctionResidualStrategy(ResidualStrategy):
    """
    Residual strategy built from plain callables.

    Parameters
    ----------
    intermediate : Callable
        (t, x, u, p) → r
    final : Optional[Callable]
        (t, x, p) → r_f (None = zero final residual)
    num_intermediate_parameters, num_final_parameters : int
        Parameter dimensions
    intermediate_parameters, final_parameters : Optional[Callable]
        t → p (None = zero vector of the declared size)

    Examples
    --------
    >>> strategy = FunctionResidualStrategy(
    ...     lambda t, x, u, p: sp.Matrix([x[0] - u[0]]),
    ... )
    >>> cost = GaussNewtonCostAD(strategy, state_dim=1, input_dim=1)
    """

    def __init__(
        self,
        intermediate: Callable,
        final: Optional[Callable] = None,
        num_intermediate_parameters: int = 0,
        num_final_parameters: int = 0,
        intermediate_parameters: Optional[Callable[[float], ParameterVector]] = None,
        final_parameters: Optional[Callable[[float], ParameterVector]] = None,
    ):
        self._intermediate = intermediate
        self._final = final
        self._num_intermediate_parameters = num_intermediate_parameters
        self._num_final_parameters = num_final_parameters
        self._intermediate_parameters = intermediate_parameters
        self._final_parameters = final_parameters

    def intermediate_cost_function(self, time, state, input, parameters):
        return self._intermediate(time, state, input, parameters)

    def final_cost_function(self, time, state, parameters):
        if self._final is None:
            return super().final_cost_function(time, state, parameters)
        return self._final(time, state, parameters)

    def get_num_intermediate_parameters(self) -> int:
        return self._num_intermediate_parameters

    def get_num_final_parameters(self) -> int:
        return self._num_final_parameters

    def get_intermediate_parameters(self, time: float) -> ParameterVector:
        if self._intermediate_parameters is None:
            return super().get_intermediate_parameters(time)
        return self._intermediate_parameters(time)

    def get_final_parameters(self, time: float) -> ParameterVector:
        if self._final_parameters is None:
            return super().get_final_parameters(time)
        return self._final_parameters(time)


__all__ = ["ResidualStrategy", "FunctionResidualStrategy"]
