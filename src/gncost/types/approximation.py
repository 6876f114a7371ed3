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
Quadratic Approximation Types

Defines result containers for local cost models:
- ScalarFunctionQuadraticApproximation: value, gradient and Hessian blocks
- EvaluationRecord: residual, Jacobian and approximation of one evaluation

Mathematical Form
-----------------
About a point (t, x, u), with residual r and Jacobian J = [Jₜ, Jₓ, Jᵤ]:

    L(x + δx, u + δu) ≈ f + dfdxᵀδx + dfduᵀδu
                        + ½ δxᵀ dfdxx δx + ½ δuᵀ dfduu δu + δuᵀ dfdux δx

with the Gauss-Newton blocks

    f     = ½ rᵀr
    dfdx  = Jₓᵀr          dfdu  = Jᵤᵀr
    dfdxx = JₓᵀJₓ         dfduu = JᵤᵀJᵤ         dfdux = JᵤᵀJₓ

The Hessian blocks neglect the curvature of r itself, so they are always
symmetric positive semi-definite (but not necessarily positive definite).
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from gncost.types.core import (
    GradientVector,
    HessianMatrix,
    InputVector,
    JacobianMatrix,
    ParameterVector,
    ResidualVector,
    StateVector,
    Time,
)


@dataclass(frozen=True)
class ScalarFunctionQuadraticApproximation:
    """
    Local quadratic model of a scalar cost.

    Attributes
    ----------
    value : float
        Cost value f
    dfdx : np.ndarray
        Gradient w.r.t. state, shape (nx,)
    dfdu : np.ndarray
        Gradient w.r.t. input, shape (nu,) - (0,) for final costs
    dfdxx : np.ndarray
        State-state Hessian block, shape (nx, nx)
    dfduu : np.ndarray
        Input-input Hessian block, shape (nu, nu) - (0, 0) for final costs
    dfdux : np.ndarray
        Input-state Hessian block, shape (nu, nx) - (0, nx) for final costs

    Examples
    --------
    >>> approx = cost.cost_quadratic_approximation(0.0, x, u)
    >>> approx.value
    0.5
    >>> approx.dfdxx.shape
    (2, 2)
    """

    value: float
    dfdx: GradientVector
    dfdu: GradientVector
    dfdxx: HessianMatrix
    dfduu: HessianMatrix
    dfdux: HessianMatrix

    @property
    def nx(self) -> int:
        return int(self.dfdx.shape[0])

    @property
    def nu(self) -> int:
        return int(self.dfdu.shape[0])

    def evaluate(self, dx: StateVector, du: Optional[InputVector] = None) -> float:
        """
        Evaluate the quadratic model at a perturbation (δx, δu).

        Parameters
        ----------
        dx : StateVector
            State perturbation
        du : Optional[InputVector]
            Input perturbation (None = zero)

        Returns
        -------
        float
            Model value f + gradient terms + ½ curvature terms
        """
        dx = np.asarray(dx, dtype=float).reshape(-1)
        du = np.zeros(self.nu) if du is None else np.asarray(du, dtype=float).reshape(-1)
        return float(
            self.value
            + self.dfdx @ dx
            + self.dfdu @ du
            + 0.5 * dx @ self.dfdxx @ dx
            + 0.5 * du @ self.dfduu @ du
            + du @ self.dfdux @ dx
        )


@dataclass(frozen=True)
class EvaluationRecord:
    """
    Everything computed by one residual/Jacobian evaluation.

    Returned by ``GaussNewtonCostAD.evaluate_intermediate`` and
    ``GaussNewtonCostAD.evaluate_final``. Time derivatives of the cost
    are read from a record, so they always refer to the point the
    record was taken at.

    Attributes
    ----------
    time : float
        Evaluation time t
    state : np.ndarray
        Evaluation state x
    input : Optional[np.ndarray]
        Evaluation input u (None for final records)
    parameters : np.ndarray
        Parameters the residual was evaluated with
    residual : np.ndarray
        Residual r, shape (nr,)
    jacobian : np.ndarray
        Jacobian ∂r/∂[t, x(, u)], shape (nr, 1 + nx (+ nu))
    approximation : ScalarFunctionQuadraticApproximation
        Gauss-Newton approximation assembled from residual and jacobian
    """

    time: Time
    state: StateVector
    input: Optional[InputVector]
    parameters: ParameterVector
    residual: ResidualVector
    jacobian: JacobianMatrix
    approximation: ScalarFunctionQuadraticApproximation = field(repr=False)

    @property
    def is_final(self) -> bool:
        return self.input is None

    def matches(self, t: Time, x: StateVector, u: Optional[InputVector] = None) -> bool:
        """Check whether this record was taken at (t, x, u)."""
        if float(t) != self.time:
            return False
        if not np.array_equal(np.asarray(x, dtype=float).reshape(-1), self.state):
            return False
        if self.input is None:
            return u is None
        if u is None:
            return False
        return np.array_equal(np.asarray(u, dtype=float).reshape(-1), self.input)


__all__ = [
    "ScalarFunctionQuadraticApproximation",
    "EvaluationRecord",
]
