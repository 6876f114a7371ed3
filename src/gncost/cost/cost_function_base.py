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
Cost Function Base Class
========================

Abstract base class for costs consumed by a trajectory optimizer.

Overview
--------
An optimal control problem minimizes

    J = Φ(t_f, x(t_f)) + ∫ L(t, x(t), u(t)) dt

where L is the intermediate (running) cost and Φ the final cost. A
trajectory optimizer repeatedly needs, at candidate trajectory points,
the cost values, local quadratic models of them, and their partial
derivatives w.r.t. time.

Abstract Methods
---------------
Subclasses MUST implement:
- cost(t, x, u) → L
- final_cost(t, x) → Φ
- cost_quadratic_approximation(t, x, u)
- final_cost_quadratic_approximation(t, x)
- cost_derivative_time(t, x, u) → ∂L/∂t
- final_cost_derivative_time(t, x) → ∂Φ/∂t
- clone()

Mathematical Notation
--------------------
- t ∈ ℝ: Time
- x ∈ ℝⁿˣ: State
- u ∈ ℝⁿᵘ: Input
- L(t, x, u): Intermediate cost
- Φ(t, x): Final cost

See Also
--------
- GaussNewtonCostAD: Costs defined as half squared residual norms
- CostFunctionProtocol: Structural version of this interface
"""

from abc import ABC, abstractmethod

from gncost.types.approximation import ScalarFunctionQuadraticApproximation
from gncost.types.core import InputVector, StateVector, Time


class CostFunctionBase(ABC):
    """
    Abstract base class for intermediate/final cost functions.

    Attributes
    ----------
    state_dim : int
        State dimension nx
    input_dim : int
        Input dimension nu

    Notes
    -----
    Instances may keep scratch state between calls (e.g. the last
    evaluation), so a single instance is not meant to be shared between
    threads. Use ``clone()`` to get one instance per worker.
    """

    state_dim: int
    input_dim: int

    @abstractmethod
    def cost(self, t: Time, x: StateVector, u: InputVector) -> float:
        """Intermediate cost L(t, x, u)."""
        pass

    @abstractmethod
    def final_cost(self, t: Time, x: StateVector) -> float:
        """Final cost Φ(t, x)."""
        pass

    @abstractmethod
    def cost_quadratic_approximation(
        self, t: Time, x: StateVector, u: InputVector
    ) -> ScalarFunctionQuadraticApproximation:
        """Quadratic model of L around (t, x, u)."""
        pass

    @abstractmethod
    def final_cost_quadratic_approximation(
        self, t: Time, x: StateVector
    ) -> ScalarFunctionQuadraticApproximation:
        """Quadratic model of Φ around (t, x)."""
        pass

    @abstractmethod
    def cost_derivative_time(self, t: Time, x: StateVector, u: InputVector) -> float:
        """∂L/∂t at (t, x, u)."""
        pass

    @abstractmethod
    def final_cost_derivative_time(self, t: Time, x: StateVector) -> float:
        """∂Φ/∂t at (t, x)."""
        pass

    @abstractmethod
    def clone(self) -> "CostFunctionBase":
        """Independent copy, safe to use alongside the original."""
        pass

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"nx={getattr(self, 'state_dim', '?')}, nu={getattr(self, 'input_dim', '?')})"
        )


__all__ = ["CostFunctionBase"]
