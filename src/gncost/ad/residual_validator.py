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
Residual Validator

Validates that a residual function fits the model it is generated for.

Checks:
- Function arity (4 positional arguments for intermediate residuals,
  3 for final residuals)
- Tracing: the function runs on the model symbols without indexing past
  the declared state/input/parameter dimensions
- Output shape (non-empty vector, declared residual dimension if any)
- Expression validity (SymPy expressions, no relations, no non-finite
  constants, no symbols outside the model signature)
- Usage patterns (residual independent of the tape, unused parameters)

Any error is fatal: generation stops with a ValidationError.
"""

import inspect
import numbers
import warnings
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import sympy as sp

from gncost.ad.model_artifact import ModelSymbols
from gncost.types.backends import ModelKind

# ============================================================================
# Exceptions
# ============================================================================


class ValidationError(ValueError):
    """Raised when a residual function does not fit its model signature"""

    pass


# ============================================================================
# Validation Result Container
# ============================================================================


@dataclass(frozen=True)
class ValidationResult:
    """
    Container for validation results.

    Attributes
    ----------
    is_valid : bool
        True if the residual passed all validation checks
    errors : List[str]
        List of validation errors (empty if valid)
    warnings : List[str]
        List of validation warnings (non-fatal issues)
    info : Dict
        Additional information about the validated residual
    """

    is_valid: bool
    errors: List[str]
    warnings: List[str]
    info: Dict


# ============================================================================
# Residual Validator
# ============================================================================


class ResidualValidator:
    """
    Validates residual functions against a model signature.

    Examples
    --------
    >>> validator = ResidualValidator('intermediate', state_dim=2, input_dim=1)
    >>> residual = validator.trace(my_residual, symbols)
    >>> result = validator.validate(residual, symbols)
    >>> result.info['residual_dim']
    3
    """

    _ARITY = {"intermediate": 4, "final": 3}

    def __init__(
        self,
        kind: ModelKind,
        state_dim: int,
        input_dim: int = 0,
        parameter_dim: int = 0,
        residual_dim: Optional[int] = None,
    ):
        """
        Initialize validator with the model signature.

        Parameters
        ----------
        kind : ModelKind
            'intermediate' or 'final'
        state_dim, input_dim, parameter_dim : int
            Declared model dimensions
        residual_dim : Optional[int]
            Declared residual size (None = any size)

        Raises
        ------
        ValidationError
            If a dimension is negative or not an integer
        """
        self.kind = kind
        self.state_dim = state_dim
        self.input_dim = input_dim
        self.parameter_dim = parameter_dim
        self.residual_dim = residual_dim
        self._errors: List[str] = []
        self._warnings: List[str] = []

        for name in ("state_dim", "input_dim", "parameter_dim"):
            value = getattr(self, name)
            if not isinstance(value, numbers.Integral) or isinstance(value, bool) or value < 0:
                raise ValidationError(f"{name} must be a non-negative int, got {value!r}")
            setattr(self, name, int(value))
        if kind == "final" and input_dim != 0:
            raise ValidationError(f"Final models have no input, got input_dim={input_dim}")

    # ========================================================================
    # Public API
    # ========================================================================

    def check_arity(self, function: Callable):
        """
        Check that the function accepts the model's positional arguments.

        Raises
        ------
        ValidationError
            If the function cannot be called with (t, x, u, p) for
            intermediate residuals or (t, x, p) for final residuals
        """
        if not callable(function):
            raise ValidationError(
                f"{self.kind} residual must be callable, got {type(function).__name__}"
            )

        arity = self._ARITY[self.kind]
        try:
            signature = inspect.signature(function)
        except (TypeError, ValueError):
            # Builtins and some C extensions have no signature
            return

        try:
            signature.bind(*([None] * arity))
        except TypeError as e:
            expected = (
                "(time, state, input, parameters)" if arity == 4 else "(time, state, parameters)"
            )
            raise ValidationError(
                f"{self.kind} residual must accept {arity} positional arguments "
                f"{expected}, got signature {signature}: {e}"
            ) from e

    def trace(self, function: Callable, symbols: ModelSymbols) -> sp.Matrix:
        """
        Run the residual function on the model symbols.

        Returns
        -------
        sp.Matrix
            Residual expression as a column vector

        Raises
        ------
        ValidationError
            If the function fails on the symbols (typically by indexing past
            the declared dimensions) or returns something that is not a vector
        """
        self.check_arity(function)

        if self.kind == "intermediate":
            args = (
                symbols.time,
                symbols.state_vector(),
                symbols.input_vector(),
                symbols.parameter_vector(),
            )
        else:
            args = (symbols.time, symbols.state_vector(), symbols.parameter_vector())

        try:
            output = function(*args)
        except IndexError as e:
            raise ValidationError(
                f"{self.kind} residual indexes past the declared dimensions "
                f"(nx={self.state_dim}, nu={self.input_dim}, np={self.parameter_dim}): {e}"
            ) from e
        except Exception as e:
            raise ValidationError(
                f"{self.kind} residual failed on symbolic inputs "
                f"({type(e).__name__}: {e}). Residuals must be built from SymPy operations."
            ) from e

        return self._as_column(output)

    def validate(
        self,
        residual: sp.Matrix,
        symbols: ModelSymbols,
        raise_on_error: bool = True,
    ) -> ValidationResult:
        """
        Validate a traced residual expression.

        Parameters
        ----------
        residual : sp.Matrix
            Column-vector residual expression
        symbols : ModelSymbols
            Symbols the residual may depend on
        raise_on_error : bool
            If True, raise ValidationError on validation failure

        Returns
        -------
        ValidationResult
            Validation results with errors, warnings, and info

        Raises
        ------
        ValidationError
            If validation fails and raise_on_error=True
        """
        self._errors = []
        self._warnings = []

        self._validate_shape(residual)
        if not self._errors:
            self._validate_entries(residual)
        if not self._errors:
            self._validate_symbols(residual, symbols)
            self._check_usage_patterns(residual, symbols)

        result = ValidationResult(
            is_valid=len(self._errors) == 0,
            errors=self._errors.copy(),
            warnings=self._warnings.copy(),
            info=self._build_info(residual),
        )

        if result.warnings:
            self._issue_warnings(result.warnings)

        if not result.is_valid and raise_on_error:
            raise ValidationError(self._format_error_message())

        return result

    # ========================================================================
    # Validation Checks
    # ========================================================================

    def _as_column(self, output) -> sp.Matrix:
        """Normalize scalar, list, row or column output to a column Matrix."""
        if isinstance(output, sp.MatrixBase):
            matrix = sp.Matrix(output)
        elif isinstance(output, (list, tuple)):
            try:
                matrix = sp.Matrix([sp.sympify(entry) for entry in output])
            except (sp.SympifyError, TypeError, ValueError) as e:
                raise ValidationError(
                    f"{self.kind} residual entries are not expressions: {e}"
                ) from e
        elif isinstance(output, (sp.Basic, int, float)):
            matrix = sp.Matrix([sp.sympify(output)])
        else:
            raise ValidationError(
                f"{self.kind} residual must return a sp.Matrix, a list of expressions "
                f"or a scalar expression, got {type(output).__name__}"
            )

        if matrix.rows == 1 and matrix.cols > 1:
            matrix = matrix.T
        return matrix

    def _validate_shape(self, residual: sp.Matrix):
        """Check the residual is a non-empty column vector of the declared size"""
        if residual.cols != 1:
            self._errors.append(
                f"Residual must be a vector, got shape {residual.shape}"
            )
            return
        if residual.rows == 0:
            self._errors.append("Residual is empty - at least one entry required")
            return
        if self.residual_dim is not None and residual.rows != self.residual_dim:
            self._errors.append(
                f"Residual has {residual.rows} entries but {self.residual_dim} were declared"
            )

    def _validate_entries(self, residual: sp.Matrix):
        """Check every entry is a finite, non-relational SymPy expression"""
        for i, entry in enumerate(residual):
            # Symbol is also a Boolean subclass, so test for Expr instead
            if not isinstance(entry, sp.Expr):
                self._errors.append(
                    f"Residual entry {i} is a relation/boolean ({entry}), not an expression"
                )
                continue
            if entry.has(sp.zoo, sp.oo, -sp.oo, sp.nan):
                self._errors.append(f"Residual entry {i} contains a non-finite value: {entry}")

    def _validate_symbols(self, residual: sp.Matrix, symbols: ModelSymbols):
        """Check the residual only depends on the model symbols"""
        unknown = residual.free_symbols - set(symbols.arguments)
        if unknown:
            self._errors.append(
                f"Residual depends on symbols outside the model signature: "
                f"{sorted(map(str, unknown))}. Pass time-varying quantities as parameters."
            )

    def _check_usage_patterns(self, residual: sp.Matrix, symbols: ModelSymbols):
        """Non-fatal checks for suspicious definitions"""
        used = residual.free_symbols
        if self.kind == "intermediate" and not used & set(symbols.tape):
            self._warnings.append(
                "Residual does not depend on time, state or input - its Jacobian is zero"
            )
        unused = [p for p in symbols.parameters if p not in used]
        if unused:
            self._warnings.append(
                f"Parameters {[str(p) for p in unused]} are declared but not used"
            )

    def _build_info(self, residual: sp.Matrix) -> Dict:
        """Build info dictionary with residual characteristics."""
        return {
            "kind": self.kind,
            "state_dim": self.state_dim,
            "input_dim": self.input_dim,
            "parameter_dim": self.parameter_dim,
            "residual_dim": residual.rows if residual.cols == 1 else None,
            "num_free_symbols": len(residual.free_symbols),
        }

    def _issue_warnings(self, warnings_list: List[str]):
        """Issue Python warnings for validation warnings"""
        for warning in warnings_list:
            warnings.warn(f"Residual validation warning: {warning}", UserWarning, stacklevel=3)

    def _format_error_message(self) -> str:
        """Format error messages in a readable way"""
        msg = f"{self.kind.capitalize()} residual validation failed:\n\n"
        msg += "Errors:\n"
        msg += "\n".join(f"  • {error}" for error in self._errors)

        if self._warnings:
            msg += "\n\nWarnings:\n"
            msg += "\n".join(f"  • {warning}" for warning in self._warnings)

        msg += "\n\n" + "=" * 70
        msg += "\nCOMMON FIXES:"
        msg += "\n  1. Return an sp.Matrix column vector (or a list of expressions)"
        msg += "\n  2. Only index state/input/parameters within the declared dimensions"
        msg += "\n  3. Use sp.sin/sp.exp/... instead of numpy functions"
        msg += "\n  4. Pass references and weights that change over time as parameters"
        msg += "\n" + "=" * 70
        return msg


__all__ = ["ValidationError", "ValidationResult", "ResidualValidator"]
