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
Residual Model - Differentiated Residual Evaluation

Wraps a residual function into a model that returns, for a concrete tape
input and parameter vector, the residual value and its Jacobian w.r.t.
the tape input.

Two stages:
1. generate_model_artifact: trace the residual function on SymPy symbols,
   validate it, and (symbolic mode) differentiate the expression graph.
   The result is a backend-independent, cacheable ModelArtifact.
2. ResidualModel.from_artifact: compile the artifact for a backend using
   codegen_utils.

Tape input layout:
    intermediate: [t, x_0 ... x_{nx-1}, u_0 ... u_{nu-1}]
    final:        [t, x_0 ... x_{nx-1}]

The Jacobian column order follows the tape input, so column 0 is ∂r/∂t.
"""

import time
from typing import Callable, Dict, Optional, Tuple, Union

import numpy as np
import sympy as sp

from gncost.ad.backend_manager import BackendManager
from gncost.ad.codegen_utils import generate_function, generate_jacobian_function
from gncost.ad.model_artifact import ModelArtifact, ModelSymbols, new_metadata
from gncost.ad.residual_validator import ResidualValidator
from gncost.types.backends import (
    DEFAULT_BACKEND,
    DEFAULT_DEVICE,
    DEFAULT_DIFFERENTIATION,
    VALID_DIFFERENTIATION_MODES,
    Backend,
    Device,
    DifferentiationMode,
    ModelKind,
    validate_backend,
    validate_differentiation,
    validate_model_kind,
)
from gncost.types.core import JacobianMatrix, ParameterVector, ResidualVector, TapeInput
from gncost.types.utilities import ExecutionStats, as_vector

# ============================================================================
# Artifact Generation
# ============================================================================


def generate_model_artifact(
    residual_function: Callable,
    kind: ModelKind,
    state_dim: int,
    input_dim: int = 0,
    parameter_dim: int = 0,
    differentiation: DifferentiationMode = DEFAULT_DIFFERENTIATION,
    residual_dim: Optional[int] = None,
    simplify: bool = False,
) -> ModelArtifact:
    """
    Trace and differentiate a residual function.

    Args:
        residual_function: (t, x, u, p) → r for intermediate models,
            (t, x, p) → r for final models, built from SymPy operations
        kind: 'intermediate' or 'final'
        state_dim: Number of states
        input_dim: Number of inputs (must be 0 for final models)
        parameter_dim: Number of parameters
        differentiation: 'symbolic' stores the SymPy Jacobian, 'autodiff'
            leaves differentiation to JAX at compile time
        residual_dim: Expected residual size (None = accept any size)
        simplify: Run sp.simplify on residual and Jacobian

    Returns:
        ModelArtifact ready to be cached or compiled

    Raises:
        ValidationError: If the residual function does not fit the signature

    Example:
        >>> artifact = generate_model_artifact(
        ...     lambda t, x, u, p: sp.Matrix([x[0] - u[0]]),
        ...     'intermediate', state_dim=1, input_dim=1,
        ... )
        >>> artifact.jacobian
        Matrix([[0, 1, -1]])
    """
    kind = validate_model_kind(kind)
    if differentiation not in VALID_DIFFERENTIATION_MODES:
        raise ValueError(
            f"Invalid differentiation mode '{differentiation}'. "
            f"Choose from: {VALID_DIFFERENTIATION_MODES}"
        )
    if kind == "final":
        input_dim = 0

    start = time.time()
    validator = ResidualValidator(kind, state_dim, input_dim, parameter_dim, residual_dim)
    state_dim, input_dim, parameter_dim = (
        validator.state_dim,
        validator.input_dim,
        validator.parameter_dim,
    )
    symbols = ModelSymbols.create(state_dim, input_dim, parameter_dim)

    residual = validator.trace(residual_function, symbols)
    validator.validate(residual, symbols)
    if simplify:
        residual = sp.simplify(residual)
    trace_time = time.time() - start

    jacobian = None
    diff_time = 0.0
    if differentiation == "symbolic":
        start = time.time()
        jacobian = residual.jacobian(symbols.tape)
        if simplify:
            jacobian = sp.simplify(jacobian)
        jacobian = sp.ImmutableMatrix(jacobian)
        diff_time = time.time() - start

    return ModelArtifact(
        kind=kind,
        state_dim=state_dim,
        input_dim=input_dim,
        parameter_dim=parameter_dim,
        residual_dim=residual.rows,
        differentiation=differentiation,
        residual=sp.ImmutableMatrix(residual),
        jacobian=jacobian,
        metadata=new_metadata(trace_time=trace_time, differentiation_time=diff_time),
    )


# ============================================================================
# Residual Model
# ============================================================================


class ResidualModel:
    """
    Compiled residual model: residual and Jacobian for concrete inputs.

    Example:
        >>> model = ResidualModel.build(
        ...     lambda t, x, u, p: sp.Matrix([x[0] - u[0]]),
        ...     'intermediate', state_dim=1, input_dim=1,
        ... )
        >>> model.evaluate(np.array([0.0, 2.0, 1.0]))
        array([1.])
        >>> model.jacobian(np.array([0.0, 2.0, 1.0]))
        array([[ 0.,  1., -1.]])
    """

    def __init__(
        self,
        artifact: ModelArtifact,
        backend_mgr: BackendManager,
        residual_func: Callable,
        jacobian_func: Callable,
    ):
        """
        Use ResidualModel.from_artifact or ResidualModel.build instead.

        Args:
            artifact: Model the functions were generated from
            backend_mgr: Backend the functions run on
            residual_func: Generated residual function (one scalar per argument)
            jacobian_func: Generated Jacobian function (one scalar per argument)
        """
        self.artifact = artifact
        self.backend_mgr = backend_mgr
        self._residual_func = residual_func
        self._jacobian_func = jacobian_func
        self._stats = {
            "residual_calls": 0,
            "residual_time": 0.0,
            "jacobian_calls": 0,
            "jacobian_time": 0.0,
        }

    # ========================================================================
    # Construction
    # ========================================================================

    @classmethod
    def from_artifact(
        cls,
        artifact: ModelArtifact,
        backend: Backend = DEFAULT_BACKEND,
        device: Device = DEFAULT_DEVICE,
        **kwargs,
    ) -> "ResidualModel":
        """
        Compile an artifact for a backend.

        Args:
            artifact: Generated (or loaded) model
            backend: 'numpy', 'torch' or 'jax'
            device: Device for torch/jax
            **kwargs: Backend-specific options (e.g. jit=False for JAX)

        Raises:
            ValueError: If the backend is invalid or 'autodiff' is used with a
                backend other than JAX
            RuntimeError: If the backend is not installed
        """
        backend = validate_backend(backend)
        validate_differentiation(artifact.differentiation, backend)
        backend_mgr = BackendManager(backend, device)

        symbols = artifact.symbols
        residual_func = generate_function(
            artifact.residual, symbols.arguments, backend=backend, **kwargs
        )
        if artifact.differentiation == "symbolic":
            # Compiled as a flat column so every backend returns a 1-D vector
            flat_jacobian = artifact.jacobian.reshape(len(artifact.jacobian), 1)
            jacobian_func = generate_function(
                flat_jacobian, symbols.arguments, backend=backend, **kwargs
            )
        else:
            jacobian_func = generate_jacobian_function(
                artifact.residual,
                symbols.arguments,
                symbols.tape,
                backend=backend,
                use_symbolic=False,
                **kwargs,
            )

        return cls(artifact, backend_mgr, residual_func, jacobian_func)

    @classmethod
    def build(
        cls,
        residual_function: Callable,
        kind: ModelKind,
        state_dim: int,
        input_dim: int = 0,
        parameter_dim: int = 0,
        backend: Backend = DEFAULT_BACKEND,
        differentiation: DifferentiationMode = DEFAULT_DIFFERENTIATION,
        **kwargs,
    ) -> "ResidualModel":
        """
        Generate and compile a model in one step.

        Raises:
            ValidationError: If the residual function does not fit the signature
            ValueError: If 'autodiff' is requested for a backend other than JAX
        """
        validate_differentiation(differentiation, validate_backend(backend))
        artifact = generate_model_artifact(
            residual_function,
            kind,
            state_dim,
            input_dim,
            parameter_dim,
            differentiation=differentiation,
        )
        return cls.from_artifact(artifact, backend=backend, **kwargs)

    def clone(self) -> "ResidualModel":
        """
        Independent model bound to the same artifact and generated code.

        Generated functions are pure, so they are shared; statistics are not.
        """
        return ResidualModel(
            self.artifact, self.backend_mgr, self._residual_func, self._jacobian_func
        )

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def kind(self) -> ModelKind:
        return self.artifact.kind

    @property
    def backend(self) -> Backend:
        return self.backend_mgr.backend

    @property
    def state_dim(self) -> int:
        return self.artifact.state_dim

    @property
    def input_dim(self) -> int:
        return self.artifact.input_dim

    @property
    def parameter_dim(self) -> int:
        return self.artifact.parameter_dim

    @property
    def residual_dim(self) -> int:
        return self.artifact.residual_dim

    @property
    def tape_dim(self) -> int:
        return self.artifact.tape_dim

    # ========================================================================
    # Evaluation
    # ========================================================================

    def evaluate(
        self, tape_input: TapeInput, parameters: Optional[ParameterVector] = None
    ) -> ResidualVector:
        """
        Evaluate the residual.

        Args:
            tape_input: [t, x(, u)], shape (tape_dim,)
            parameters: Parameter vector, shape (parameter_dim,); may be None
                when parameter_dim is 0

        Returns:
            Residual, float64 array of shape (residual_dim,)

        Raises:
            ValueError: If tape_input or parameters have the wrong size
        """
        args = self._pack(tape_input, parameters)

        start = time.time()
        result = self.backend_mgr.to_numpy(self._residual_func(*args)).reshape(-1)
        self._stats["residual_calls"] += 1
        self._stats["residual_time"] += time.time() - start

        return result

    def jacobian(
        self, tape_input: TapeInput, parameters: Optional[ParameterVector] = None
    ) -> JacobianMatrix:
        """
        Evaluate ∂residual/∂tape_input.

        Returns:
            Jacobian, float64 array of shape (residual_dim, tape_dim)

        Raises:
            ValueError: If tape_input or parameters have the wrong size
        """
        args = self._pack(tape_input, parameters)

        start = time.time()
        result = self.backend_mgr.to_numpy(self._jacobian_func(*args))
        self._stats["jacobian_calls"] += 1
        self._stats["jacobian_time"] += time.time() - start

        return result.reshape(self.residual_dim, self.tape_dim)

    def evaluate_with_jacobian(
        self, tape_input: TapeInput, parameters: Optional[ParameterVector] = None
    ) -> Tuple[ResidualVector, JacobianMatrix]:
        """Evaluate residual and Jacobian at the same point."""
        return self.evaluate(tape_input, parameters), self.jacobian(tape_input, parameters)

    def _pack(self, tape_input: TapeInput, parameters: Optional[ParameterVector]) -> list:
        """Check sizes and split [tape_input, parameters] into scalar arguments."""
        tape = as_vector(tape_input, self.tape_dim, name=f"{self.kind} tape input")
        params = as_vector(parameters, self.parameter_dim, name=f"{self.kind} parameters")
        return self.backend_mgr.pack_arguments(np.concatenate([tape, params]))

    # ========================================================================
    # Verification
    # ========================================================================

    def finite_difference_jacobian(
        self,
        tape_input: TapeInput,
        parameters: Optional[ParameterVector] = None,
        eps: float = 1e-6,
    ) -> JacobianMatrix:
        """
        Central finite-difference approximation of the Jacobian.

        Args:
            tape_input: [t, x(, u)]
            parameters: Parameter vector
            eps: Perturbation size

        Returns:
            Approximate Jacobian, shape (residual_dim, tape_dim)
        """
        tape = as_vector(tape_input, self.tape_dim, name=f"{self.kind} tape input")
        jac = np.zeros((self.residual_dim, self.tape_dim))

        for i in range(self.tape_dim):
            step = np.zeros(self.tape_dim)
            step[i] = eps
            r_plus = self.evaluate(tape + step, parameters)
            r_minus = self.evaluate(tape - step, parameters)
            jac[:, i] = (r_plus - r_minus) / (2 * eps)

        return jac

    def verify_jacobian(
        self,
        tape_input: TapeInput,
        parameters: Optional[ParameterVector] = None,
        tol: float = 1e-4,
        eps: float = 1e-6,
    ) -> Dict[str, Union[bool, float]]:
        """
        Verify the generated Jacobian against finite differences.

        Args:
            tape_input: Point at which to verify
            parameters: Parameter vector
            tol: Tolerance for considering Jacobians equal
            eps: Finite-difference step

        Returns:
            Dict with 'match' and per-block errors ('t_error', 'x_error',
            'u_error', 'max_error')

        Example:
            >>> results = model.verify_jacobian(np.array([0.0, 1.0, 0.5]))
            >>> assert results['match'] is True
        """
        analytic = self.jacobian(tape_input, parameters)
        numeric = self.finite_difference_jacobian(tape_input, parameters, eps=eps)
        error = np.abs(analytic - numeric)

        nx = self.state_dim
        t_error = float(np.max(error[:, :1])) if error.size else 0.0
        x_error = float(np.max(error[:, 1 : 1 + nx])) if nx > 0 else 0.0
        u_error = float(np.max(error[:, 1 + nx :])) if self.input_dim > 0 else 0.0
        max_error = max(t_error, x_error, u_error)

        return {
            "match": bool(max_error < tol),
            "t_error": t_error,
            "x_error": x_error,
            "u_error": u_error,
            "max_error": max_error,
        }

    # ========================================================================
    # Performance Tracking
    # ========================================================================

    def get_performance_stats(self) -> Dict[str, ExecutionStats]:
        """
        Get evaluation statistics.

        Returns:
            Dict with 'residual' and 'jacobian' ExecutionStats

        Example:
            >>> model.get_performance_stats()['residual']['calls']
            12
        """

        def _entry(name: str) -> ExecutionStats:
            calls = self._stats[f"{name}_calls"]
            total = self._stats[f"{name}_time"]
            return {
                "calls": calls,
                "total_time": total,
                "avg_time": total / max(1, calls),
            }

        return {"residual": _entry("residual"), "jacobian": _entry("jacobian")}

    def reset_performance_stats(self):
        """Reset evaluation counters"""
        for key in self._stats:
            self._stats[key] = 0 if key.endswith("calls") else 0.0

    # ========================================================================
    # Information
    # ========================================================================

    def get_info(self) -> Dict:
        """Model signature, backend and generation metadata."""
        return {
            **self.artifact.signature(),
            "residual_dim": self.residual_dim,
            "tape_dim": self.tape_dim,
            "backend": self.backend,
            "device": self.backend_mgr.device,
            "metadata": dict(self.artifact.metadata),
        }

    def __repr__(self) -> str:
        return (
            f"ResidualModel(kind='{self.kind}', nx={self.state_dim}, "
            f"nu={self.input_dim}, np={self.parameter_dim}, nr={self.residual_dim}, "
            f"backend='{self.backend}', differentiation='{self.artifact.differentiation}')"
        )


__all__ = ["generate_model_artifact", "ResidualModel"]
