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
Structural Subtyping Protocols for gncost
=========================================

Protocols describe what a trajectory optimizer needs from a cost, so
that any object with the right methods can be used in place of the
concrete classes in ``gncost.cost``.

Naming Convention
-----------------
- Import from ``gncost.types.protocols`` → interface/contract
- Import from ``gncost.cost`` → concrete implementation

Usage
-----
>>> from gncost.types.protocols import CostFunctionProtocol
>>>
>>> def total_cost(cost: CostFunctionProtocol, ts, xs, us) -> float:
...     running = sum(cost.cost(t, x, u) for t, x, u in zip(ts[:-1], xs[:-1], us))
...     return running + cost.final_cost(ts[-1], xs[-1])
"""

from typing import Protocol, runtime_checkable

from gncost.types.approximation import ScalarFunctionQuadraticApproximation
from gncost.types.core import InputVector, StateVector, Time


@runtime_checkable
class CostFunctionProtocol(Protocol):
    """
    Cost function consumed by a trajectory optimizer.

    Six operations: running and final cost values, their quadratic
    approximations, and their partial derivatives w.r.t. time.

    Notes
    -----
    The @runtime_checkable decorator allows isinstance() checks, but this
    only verifies that the methods exist, not their signatures.
    """

    def cost(self, t: Time, x: StateVector, u: InputVector) -> float:
        ...

    def final_cost(self, t: Time, x: StateVector) -> float:
        ...

    def cost_quadratic_approximation(
        self, t: Time, x: StateVector, u: InputVector
    ) -> ScalarFunctionQuadraticApproximation:
        ...

    def final_cost_quadratic_approximation(
        self, t: Time, x: StateVector
    ) -> ScalarFunctionQuadraticApproximation:
        ...

    def cost_derivative_time(self, t: Time, x: StateVector, u: InputVector) -> float:
        ...

    def final_cost_derivative_time(self, t: Time, x: StateVector) -> float:
        ...


__all__ = ["CostFunctionProtocol"]
