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
Gauss-Newton Quadratic Approximation

Reduces a residual r and its Jacobian J = ∂r/∂[t, x(, u)] to a local
quadratic model of L = ½ rᵀr:

    f     = ½ rᵀr
    dfdx  = Jₓᵀr,    dfdu  = Jᵤᵀr
    dfdxx = JₓᵀJₓ,   dfduu = JᵤᵀJᵤ,   dfdux = JᵤᵀJₓ

and gives the time derivative ∂L/∂t = rᵀJₜ.

All functions are pure: they take NumPy arrays and return new arrays.
"""

from typing import Tuple

import numpy as np

from gncost.types.approximation import EvaluationRecord, ScalarFunctionQuadraticApproximation
from gncost.types.core import JacobianMatrix, ResidualVector


def squared_norm_cost(residual: ResidualVector) -> float:
    """½ rᵀr"""
    residual = np.asarray(residual, dtype=float).reshape(-1)
    return float(0.5 * residual @ residual)


def partition_jacobian(
    jacobian: JacobianMatrix, state_dim: int, input_dim: int = 0
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Split J into (Jₜ, Jₓ, Jᵤ) following the tape layout [t, x, u].

    Returns:
        Jₜ with shape (nr,), Jₓ with shape (nr, nx), Jᵤ with shape (nr, nu)

    Raises:
        ValueError: If J does not have 1 + nx + nu columns
    """
    jacobian = np.asarray(jacobian, dtype=float)
    if jacobian.ndim != 2 or jacobian.shape[1] != 1 + state_dim + input_dim:
        raise ValueError(
            f"Jacobian must have shape (nr, {1 + state_dim + input_dim}), got {jacobian.shape}"
        )
    J_t = jacobian[:, 0]
    J_x = jacobian[:, 1 : 1 + state_dim]
    J_u = jacobian[:, 1 + state_dim : 1 + state_dim + input_dim]
    return J_t, J_x, J_u


def gauss_newton_approximation(
    residual: ResidualVector,
    jacobian: JacobianMatrix,
    state_dim: int,
    input_dim: int = 0,
) -> ScalarFunctionQuadraticApproximation:
    """
    Assemble the Gauss-Newton quadratic approximation.

    Args:
        residual: r, shape (nr,)
        jacobian: ∂r/∂[t, x, u], shape (nr, 1 + nx + nu)
        state_dim: nx
        input_dim: nu (0 for final costs)

    Returns:
        ScalarFunctionQuadraticApproximation; input blocks have zero size
        when input_dim is 0

    Example:
        >>> approx = gauss_newton_approximation(
        ...     np.array([1.0]), np.array([[0.0, 1.0, -1.0]]), 1, 1
        ... )
        >>> approx.value, approx.dfdux
        (0.5, array([[-1.]]))
    """
    r = np.asarray(residual, dtype=float).reshape(-1)
    _, J_x, J_u = partition_jacobian(jacobian, state_dim, input_dim)
    if J_x.shape[0] != r.shape[0]:
        raise ValueError(
            f"Residual has {r.shape[0]} entries but Jacobian has {J_x.shape[0]} rows"
        )

    return ScalarFunctionQuadraticApproximation(
        value=squared_norm_cost(r),
        dfdx=J_x.T @ r,
        dfdu=J_u.T @ r,
        dfdxx=J_x.T @ J_x,
        dfduu=J_u.T @ J_u,
        dfdux=J_u.T @ J_x,
    )


def time_derivative(record: EvaluationRecord) -> float:
    """
    ∂L/∂t = rᵀJₜ at the point the record was taken at.

    Example:
        >>> record = cost.evaluate_intermediate(0.0, x, u)
        >>> dLdt = time_derivative(record)
    """
    r = np.asarray(record.residual, dtype=float).reshape(-1)
    J_t = np.asarray(record.jacobian, dtype=float)[:, 0]
    return float(r @ J_t)


__all__ = [
    "squared_norm_cost",
    "partition_jacobian",
    "gauss_newton_approximation",
    "time_derivative",
]
