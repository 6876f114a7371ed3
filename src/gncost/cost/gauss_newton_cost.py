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
Gauss-Newton Cost with Differentiated Residuals
===============================================

Cost function whose intermediate and final costs are half squared norms
of residual vectors:

    L(t, x, u) = ½ ‖r(t, x, u, p(t))‖²
    Φ(t, x)    = ½ ‖r_f(t, x, p_f(t))‖²

Residuals come from a ResidualStrategy. ``initialize`` turns them into two
ResidualModels (generated, or loaded from a model cache) that return r
and J = ∂r/∂[t, x(, u)] for numerical inputs. Every quadratic
approximation is then assembled from r and J with the Gauss-Newton
Hessian JᵀJ, which is positive semi-definite by construction.

Workflow
--------
1. Construct with a strategy and the problem dimensions
2. ``initialize(model_name, ...)`` once
3. Evaluate costs, approximations and time derivatives at any point

Evaluation records
------------------
``evaluate_intermediate`` / ``evaluate_final`` return an EvaluationRecord
holding the point, parameters, r, J and the approximation. The
approximation methods return ``record.approximation`` and keep the
record as the last one of its kind. The time-derivative methods reuse
the last record when it was taken at the requested point and
re-evaluate otherwise.

Examples
--------
>>> strategy = FunctionResidualStrategy(lambda t, x, u, p: sp.Matrix([x[0] - u[0]]))
>>> cost = GaussNewtonCostAD(strategy, state_dim=1, input_dim=1)
>>> cost.initialize('tracking', verbose=False)
>>> cost.cost(0.0, np.array([2.0]), np.array([1.0]))
0.5
>>> approx = cost.cost_quadratic_approximation(0.0, np.array([2.0]), np.array([1.0]))
>>> approx.dfdux
array([[-1.]])
"""

import operator
from typing import Any, Dict, Optional

import numpy as np

from gncost.ad.model_lifecycle import CacheFactory, ModelLifecycleManager
from gncost.ad.residual_model import ResidualModel
from gncost.cost.cost_function_base import CostFunctionBase
from gncost.cost.gauss_newton import gauss_newton_approximation, squared_norm_cost, time_derivative
from gncost.cost.residual_strategy import ResidualStrategy
from gncost.types.approximation import EvaluationRecord, ScalarFunctionQuadraticApproximation
from gncost.types.backends import (
    DEFAULT_BACKEND,
    DEFAULT_DEVICE,
    DEFAULT_DIFFERENTIATION,
    DEFAULT_MODEL_FOLDER,
    Backend,
    Device,
    DifferentiationMode,
    ModelKind,
)
from gncost.types.core import InputVector, ParameterVector, StateVector, Time
from gncost.types.utilities import as_vector


class GaussNewtonCostAD(CostFunctionBase):
    """
    Gauss-Newton cost backed by generated residual models.

    Parameters
    ----------
    strategy : ResidualStrategy
        Residual and parameter functions
    state_dim : int
        State dimension nx
    input_dim : int
        Input dimension nu
    backend : Backend
        Backend the residual models run on ('numpy', 'torch', 'jax')
    differentiation : DifferentiationMode
        'symbolic' (any backend) or 'autodiff' (JAX only)
    device : Device
        Device for torch/jax
    cache_factory : Optional[CacheFactory]
        folder → ModelCache (default: FileSystemModelCache)

    Raises
    ------
    TypeError
        If strategy is not a ResidualStrategy
    ValueError
        If backend or differentiation mode is invalid
    """

    def __init__(
        self,
        strategy: ResidualStrategy,
        state_dim: int,
        input_dim: int,
        backend: Backend = DEFAULT_BACKEND,
        differentiation: DifferentiationMode = DEFAULT_DIFFERENTIATION,
        device: Device = DEFAULT_DEVICE,
        cache_factory: Optional[CacheFactory] = None,
    ):
        if not isinstance(strategy, ResidualStrategy):
            raise TypeError(
                f"strategy must be a ResidualStrategy, got {type(strategy).__name__}. "
                f"Wrap plain functions with FunctionResidualStrategy."
            )

        self.strategy = strategy
        self.state_dim = operator.index(state_dim)
        self.input_dim = operator.index(input_dim)
        self.num_intermediate_parameters = strategy.get_num_intermediate_parameters()
        self.num_final_parameters = strategy.get_num_final_parameters()

        self.lifecycle = ModelLifecycleManager(
            strategy.intermediate_cost_function,
            strategy.final_cost_function,
            state_dim=state_dim,
            input_dim=input_dim,
            num_intermediate_parameters=self.num_intermediate_parameters,
            num_final_parameters=self.num_final_parameters,
            backend=backend,
            differentiation=differentiation,
            device=device,
            cache_factory=cache_factory,
        )

        self._intermediate_model: Optional[ResidualModel] = None
        self._final_model: Optional[ResidualModel] = None
        self._last_records: Dict[str, Optional[EvaluationRecord]] = {
            "intermediate": None,
            "final": None,
        }

    # ========================================================================
    # Initialization
    # ========================================================================

    def initialize(
        self,
        model_name: str,
        model_folder: str = DEFAULT_MODEL_FOLDER,
        recompile_libraries: bool = True,
        verbose: bool = True,
    ):
        """
        Generate or load the residual models.

        Parameters
        ----------
        model_name : str
            Name of the models inside the model folder
        model_folder : str
            Folder of the model cache (default: <temp dir>/gncost)
        recompile_libraries : bool
            If True, always regenerate the models. If False, reuse cached
            models and regenerate only those that are missing or unusable.
        verbose : bool
            Print generation/loading progress

        Raises
        ------
        ValidationError
            If a residual function does not fit the declared dimensions
        """
        self._intermediate_model, self._final_model = self.lifecycle.initialize(
            model_name,
            model_folder=model_folder,
            recompile_libraries=recompile_libraries,
            verbose=verbose,
        )
        self._last_records = {"intermediate": None, "final": None}

    @property
    def is_initialized(self) -> bool:
        return self._intermediate_model is not None and self._final_model is not None

    @property
    def intermediate_model(self) -> ResidualModel:
        self._require_initialized()
        return self._intermediate_model

    @property
    def final_model(self) -> ResidualModel:
        self._require_initialized()
        return self._final_model

    def _require_initialized(self):
        if not self.is_initialized:
            raise RuntimeError(
                f"{self.__class__.__name__} is not initialized. Call initialize() first."
            )

    # ========================================================================
    # Costs
    # ========================================================================

    def cost(self, t: Time, x: StateVector, u: InputVector) -> float:
        """½ rᵀr of the intermediate residual."""
        tape, params = self._intermediate_inputs(t, x, u)
        return squared_norm_cost(self.intermediate_model.evaluate(tape, params))

    def final_cost(self, t: Time, x: StateVector) -> float:
        """½ rᵀr of the final residual."""
        tape, params = self._final_inputs(t, x)
        return squared_norm_cost(self.final_model.evaluate(tape, params))

    # ========================================================================
    # Evaluation Records
    # ========================================================================

    def evaluate_intermediate(self, t: Time, x: StateVector, u: InputVector) -> EvaluationRecord:
        """
        Evaluate r and J of the intermediate model at (t, x, u).

        The record is also kept as the last intermediate record.
        """
        tape, params = self._intermediate_inputs(t, x, u)
        residual, jacobian = self.intermediate_model.evaluate_with_jacobian(tape, params)

        nx = self.state_dim
        record = EvaluationRecord(
            time=float(tape[0]),
            state=tape[1 : 1 + nx],
            input=tape[1 + nx :],
            parameters=params,
            residual=residual,
            jacobian=jacobian,
            approximation=gauss_newton_approximation(residual, jacobian, nx, self.input_dim),
        )
        self._last_records["intermediate"] = record
        return record

    def evaluate_final(self, t: Time, x: StateVector) -> EvaluationRecord:
        """
        Evaluate r and J of the final model at (t, x).

        The record is also kept as the last final record.
        """
        tape, params = self._final_inputs(t, x)
        residual, jacobian = self.final_model.evaluate_with_jacobian(tape, params)

        record = EvaluationRecord(
            time=float(tape[0]),
            state=tape[1:],
            input=None,
            parameters=params,
            residual=residual,
            jacobian=jacobian,
            approximation=gauss_newton_approximation(residual, jacobian, self.state_dim, 0),
        )
        self._last_records["final"] = record
        return record

    def last_record(self, kind: ModelKind) -> Optional[EvaluationRecord]:
        """Last record of kind ('intermediate' or 'final'), None if there is none."""
        return self._last_records[kind]

    # ========================================================================
    # Quadratic Approximations
    # ========================================================================

    def cost_quadratic_approximation(
        self, t: Time, x: StateVector, u: InputVector
    ) -> ScalarFunctionQuadraticApproximation:
        """Gauss-Newton approximation of the intermediate cost around (t, x, u)."""
        return self.evaluate_intermediate(t, x, u).approximation

    def final_cost_quadratic_approximation(
        self, t: Time, x: StateVector
    ) -> ScalarFunctionQuadraticApproximation:
        """Gauss-Newton approximation of the final cost around (t, x); input blocks are empty."""
        return self.evaluate_final(t, x).approximation

    # ========================================================================
    # Time Derivatives
    # ========================================================================

    def cost_derivative_time(self, t: Time, x: StateVector, u: InputVector) -> float:
        """
        ∂L/∂t = rᵀJₜ at (t, x, u).

        Reads the last intermediate record if it was taken at (t, x, u),
        which is the case right after ``cost_quadratic_approximation(t, x, u)``.
        Otherwise the intermediate model is evaluated again.
        """
        record = self._last_records["intermediate"]
        if record is None or not record.matches(t, x, u):
            record = self.evaluate_intermediate(t, x, u)
        return time_derivative(record)

    def final_cost_derivative_time(self, t: Time, x: StateVector) -> float:
        """∂Φ/∂t = rᵀJₜ at (t, x); see cost_derivative_time."""
        record = self._last_records["final"]
        if record is None or not record.matches(t, x):
            record = self.evaluate_final(t, x)
        return time_derivative(record)

    def cost_derivative_time_from_record(self, record: EvaluationRecord) -> float:
        """∂L/∂t at the point of an intermediate record."""
        if record.is_final:
            raise ValueError("Expected an intermediate evaluation record, got a final one")
        return time_derivative(record)

    def final_cost_derivative_time_from_record(self, record: EvaluationRecord) -> float:
        """∂Φ/∂t at the point of a final record."""
        if not record.is_final:
            raise ValueError("Expected a final evaluation record, got an intermediate one")
        return time_derivative(record)

    # ========================================================================
    # Inputs
    # ========================================================================

    def _intermediate_inputs(self, t: Time, x: StateVector, u: InputVector):
        x = as_vector(x, self.state_dim, name="state")
        u = as_vector(u, self.input_dim, name="input")
        params = self._parameters(
            self.strategy.get_intermediate_parameters(float(t)),
            self.num_intermediate_parameters,
            "intermediate parameters",
        )
        return np.concatenate([[float(t)], x, u]), params

    def _final_inputs(self, t: Time, x: StateVector):
        x = as_vector(x, self.state_dim, name="state")
        params = self._parameters(
            self.strategy.get_final_parameters(float(t)),
            self.num_final_parameters,
            "final parameters",
        )
        return np.concatenate([[float(t)], x]), params

    @staticmethod
    def _parameters(values: ParameterVector, n: int, name: str) -> np.ndarray:
        try:
            return as_vector(values, n, name=name)
        except ValueError as e:
            raise ValueError(
                f"{e}. The parameter count must match the one the models were generated with."
            ) from e

    # ========================================================================
    # Copies & Information
    # ========================================================================

    def clone(self) -> "GaussNewtonCostAD":
        """
        Copy with its own residual models, evaluation records and lifecycle
        manager.

        The generated code is shared, so cloning an initialized cost does
        not regenerate anything. Calling ``initialize`` on the copy leaves
        the original untouched.
        """
        new = self.__class__.__new__(self.__class__)
        new.strategy = self.strategy
        new.state_dim = self.state_dim
        new.input_dim = self.input_dim
        new.num_intermediate_parameters = self.num_intermediate_parameters
        new.num_final_parameters = self.num_final_parameters
        new.lifecycle = self.lifecycle.copy()
        new._intermediate_model = (
            self._intermediate_model.clone() if self._intermediate_model is not None else None
        )
        new._final_model = self._final_model.clone() if self._final_model is not None else None
        new._last_records = {"intermediate": None, "final": None}
        return new

    def get_info(self) -> Dict[str, Any]:
        """
        Get configuration and model status.

        Example:
            >>> cost.get_info()['initialized']
            True
        """
        info = {
            "class": self.__class__.__name__,
            "state_dim": self.state_dim,
            "input_dim": self.input_dim,
            "num_intermediate_parameters": self.num_intermediate_parameters,
            "num_final_parameters": self.num_final_parameters,
            "initialized": self.is_initialized,
            "lifecycle": self.lifecycle.get_info(),
        }
        if self.is_initialized:
            info["intermediate_model"] = self._intermediate_model.get_info()
            info["final_model"] = self._final_model.get_info()
        return info

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(nx={self.state_dim}, nu={self.input_dim}, "
            f"backend='{self.lifecycle.backend}', "
            f"differentiation='{self.lifecycle.differentiation}', "
            f"initialized={self.is_initialized})"
        )


__all__ = ["GaussNewtonCostAD"]
