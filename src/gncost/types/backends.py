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
Backend and Configuration Types

Defines types related to:
- Computational backends (NumPy, PyTorch, JAX)
- Device management (CPU, CUDA, MPS)
- Differentiation modes (symbolic Jacobians vs JAX autodiff)
- Residual model kinds (intermediate vs final)
- Model initialization configuration

These types standardize backend selection and model configuration
across the entire package.

Usage
-----
>>> from gncost.types.backends import Backend, DifferentiationMode
>>>
>>> def build(
...     backend: Backend = 'numpy',
...     differentiation: DifferentiationMode = 'symbolic'
... ):
...     pass
"""

import os
import tempfile
from typing import Literal

import numpy as np
from typing_extensions import TypedDict

# ============================================================================
# Backend Types
# ============================================================================

Backend = Literal["numpy", "torch", "jax"]
"""
Backend identifier for numerical computation.

Valid values:
- 'numpy': NumPy arrays (CPU-based, stable, universal)
- 'torch': PyTorch tensors (GPU support)
- 'jax': JAX arrays (JIT compilation, autodiff)

Generated residual models always hand NumPy arrays back to the caller;
the backend only selects how the generated code is executed.
"""

Device = str
"""
Device identifier for hardware acceleration.

Common values:
- 'cpu': CPU computation
- 'cuda', 'cuda:0', ...: NVIDIA GPU
- 'mps': Apple Metal (PyTorch only)
"""

DifferentiationMode = Literal["symbolic", "autodiff"]
"""
How the Jacobian of a residual is obtained.

- 'symbolic': SymPy differentiates the residual expression graph and the
  Jacobian is compiled alongside the residual (works with every backend).
- 'autodiff': only the residual is compiled; the Jacobian is taken with
  ``jax.jacobian`` on the compiled residual (JAX backend only).
"""

ModelKind = Literal["intermediate", "final"]
"""
Residual model kind.

- 'intermediate': tape input is [t, x, u]
- 'final': tape input is [t, x]
"""


class ModelConfig(TypedDict, total=False):
    """
    Residual model initialization configuration.

    Mirrors the arguments of ``GaussNewtonCostAD.initialize``. The last
    configuration is kept as ``ModelLifecycleManager.config``.

    Attributes
    ----------
    model_name : str
        Name of the generated models (cache key prefix)
    model_folder : str
        Folder that holds the cached model artifacts
    recompile_libraries : bool
        Regenerate models even if cached artifacts exist
    verbose : bool
        Print generation/loading progress

    Examples
    --------
    >>> config: ModelConfig = {
    ...     'model_name': 'double_integrator_cost',
    ...     'recompile_libraries': False,
    ... }
    >>> cost.initialize(**config)
    """

    model_name: str
    model_folder: str
    recompile_libraries: bool
    verbose: bool


# ============================================================================
# Constants
# ============================================================================

VALID_BACKENDS = ("numpy", "torch", "jax")
VALID_DEVICES = ("cpu", "cuda", "mps")
VALID_DIFFERENTIATION_MODES = ("symbolic", "autodiff")
MODEL_KINDS = ("intermediate", "final")

DEFAULT_BACKEND: Backend = "numpy"
DEFAULT_DEVICE: Device = "cpu"
DEFAULT_DIFFERENTIATION: DifferentiationMode = "symbolic"
DEFAULT_DTYPE = np.float64

DEFAULT_MODEL_FOLDER = os.path.join(tempfile.gettempdir(), "gncost")
"""
Default folder for cached residual models.

Lives under the system temporary directory, so cached models survive
between runs of the same session but are not meant to be permanent.
"""


def validate_backend(backend: str) -> Backend:
    """
    Validate and normalize backend string.

    Parameters
    ----------
    backend : str
        Backend name to validate

    Returns
    -------
    Backend
        Validated backend (typed)

    Raises
    ------
    ValueError
        If backend is not valid

    Examples
    --------
    >>> validate_backend('numpy')
    'numpy'
    >>> validate_backend('pytorch')  # ValueError
    """
    if backend not in VALID_BACKENDS:
        raise ValueError(f"Invalid backend '{backend}'. " f"Choose from: {VALID_BACKENDS}")
    return backend


def validate_device(device: str, backend: Backend) -> Device:
    """
    Validate device for given backend.

    Raises
    ------
    ValueError
        If device incompatible with backend

    Examples
    --------
    >>> validate_device('cuda', 'torch')
    'cuda'
    >>> validate_device('cuda', 'numpy')  # ValueError - NumPy is CPU-only
    """
    if backend == "numpy" and device not in ("cpu", "default"):
        raise ValueError(f"NumPy backend only supports CPU, got device='{device}'")

    if device.startswith("cuda"):
        if backend not in ("torch", "jax"):
            raise ValueError(f"CUDA device requires torch or jax backend, got '{backend}'")

    if device == "mps":
        if backend != "torch":
            raise ValueError(f"MPS device requires torch backend, got '{backend}'")

    return device


def validate_differentiation(differentiation: str, backend: Backend) -> DifferentiationMode:
    """
    Validate a differentiation mode against the selected backend.

    Raises
    ------
    ValueError
        If the mode is unknown, or 'autodiff' is requested for a backend
        other than JAX

    Examples
    --------
    >>> validate_differentiation('symbolic', 'torch')
    'symbolic'
    >>> validate_differentiation('autodiff', 'numpy')  # ValueError
    """
    if differentiation not in VALID_DIFFERENTIATION_MODES:
        raise ValueError(
            f"Invalid differentiation mode '{differentiation}'. "
            f"Choose from: {VALID_DIFFERENTIATION_MODES}"
        )
    if differentiation == "autodiff" and backend != "jax":
        raise ValueError("Automatic differentiation only supported for JAX backend")
    return differentiation


def validate_model_kind(kind: str) -> ModelKind:
    """Validate a residual model kind."""
    if kind not in MODEL_KINDS:
        raise ValueError(f"Invalid model kind '{kind}'. Choose from: {MODEL_KINDS}")
    return kind


__all__ = [
    # Types
    "Backend",
    "Device",
    "DifferentiationMode",
    "ModelKind",
    "ModelConfig",
    # Constants
    "VALID_BACKENDS",
    "VALID_DEVICES",
    "VALID_DIFFERENTIATION_MODES",
    "MODEL_KINDS",
    "DEFAULT_BACKEND",
    "DEFAULT_DEVICE",
    "DEFAULT_DIFFERENTIATION",
    "DEFAULT_DTYPE",
    "DEFAULT_MODEL_FOLDER",
    # Utilities
    "validate_backend",
    "validate_device",
    "validate_differentiation",
    "validate_model_kind",
]
