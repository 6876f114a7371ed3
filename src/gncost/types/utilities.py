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
Utility Types and Functions

Defines utility types and helper functions for:
- Backend detection (type guards)
- Conversion to NumPy
- Vector shape validation
- Execution statistics

Usage
-----
>>> from gncost.types.utilities import ensure_numpy, as_vector
>>>
>>> x = as_vector(torch.tensor([1.0, 2.0]), 2, name="state")
"""

from typing import Optional

import numpy as np
from typing_extensions import TypedDict

from gncost.types.backends import Backend
from gncost.types.core import ArrayLike

# ============================================================================
# Type Guards
# ============================================================================


def is_numpy(x: ArrayLike) -> bool:
    """
    Check if array is NumPy ndarray.

    Examples
    --------
    >>> is_numpy(np.array([1, 2, 3]))
    True
    """
    return isinstance(x, np.ndarray)


def is_torch(x: ArrayLike) -> bool:
    """
    Check if array is PyTorch tensor.

    Returns False when PyTorch is not installed.
    """
    try:
        import torch

        return isinstance(x, torch.Tensor)
    except ImportError:
        return False


def is_jax(x: ArrayLike) -> bool:
    """
    Check if array is JAX array.

    Returns False when JAX is not installed.
    """
    try:
        import jax.numpy as jnp

        return isinstance(x, jnp.ndarray)
    except ImportError:
        return False


def get_backend(x: ArrayLike) -> Backend:
    """
    Detect backend from array type.

    Raises
    ------
    TypeError
        If backend cannot be determined

    Examples
    --------
    >>> get_backend(np.array([1, 2, 3]))
    'numpy'
    """
    if is_numpy(x):
        return "numpy"
    elif is_torch(x):
        return "torch"
    elif is_jax(x):
        return "jax"
    else:
        raise TypeError(f"Unknown backend for type {type(x)}")


# ============================================================================
# Type Conversion Functions
# ============================================================================


def ensure_numpy(x: ArrayLike) -> np.ndarray:
    """
    Convert to NumPy array regardless of backend.

    Handles conversion from PyTorch tensors (detached, moved to CPU),
    JAX arrays, Python scalars and sequences.

    Examples
    --------
    >>> import torch
    >>> type(ensure_numpy(torch.tensor([1.0, 2.0])))
    <class 'numpy.ndarray'>
    """
    if isinstance(x, np.ndarray):
        return x

    try:
        import torch

        if isinstance(x, torch.Tensor):
            return x.detach().cpu().numpy()
    except ImportError:
        pass

    try:
        import jax.numpy as jnp

        if isinstance(x, jnp.ndarray):
            return np.array(x)
    except ImportError:
        pass

    return np.asarray(x)


def as_vector(x: Optional[ArrayLike], n: int, name: str = "vector") -> np.ndarray:
    """
    Convert to a 1-D float64 NumPy vector of length n.

    Scalars are accepted for n == 1; None is accepted for n == 0.

    Parameters
    ----------
    x : Optional[ArrayLike]
        Vector in any backend
    n : int
        Expected dimension
    name : str, optional
        Parameter name for error messages, by default "vector"

    Returns
    -------
    np.ndarray
        Float64 array of shape (n,)

    Raises
    ------
    ValueError
        If the vector has the wrong size

    Examples
    --------
    >>> as_vector([1, 2], 2, name="state")
    array([1., 2.])
    >>> as_vector([1, 2], 3, name="state")  # ValueError
    """
    if x is None:
        if n == 0:
            return np.zeros(0)
        raise ValueError(f"{name} is required. Expected ({n},), got None")

    x_arr = np.asarray(ensure_numpy(x), dtype=np.float64).reshape(-1)
    if x_arr.shape[0] != n:
        raise ValueError(
            f"{name} has incorrect dimension. " f"Expected ({n},), got shape {x_arr.shape}"
        )
    return x_arr


# ============================================================================
# Performance Types
# ============================================================================


class ExecutionStats(TypedDict):
    """Execution statistics for tracking function performance.

    Tracks runtime performance of any callable component:
    - Function evaluation time
    - Call frequency
    - Average execution time
    """

    calls: int
    total_time: float
    avg_time: float


__all__ = [
    "is_numpy",
    "is_torch",
    "is_jax",
    "get_backend",
    "ensure_numpy",
    "as_vector",
    "ExecutionStats",
]
