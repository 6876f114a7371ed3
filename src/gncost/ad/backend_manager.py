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
Backend Manager for Generated Residual Models

Handles:
- Backend availability checking
- Backend detection from array types
- Packing NumPy inputs into per-backend scalar arguments
- Converting generated outputs back to NumPy
- Device placement and 64-bit precision setup

Generated functions take one scalar argument per symbol, so the manager
turns a tape input vector into a list of backend scalars and turns
whatever the backend returns into a float64 NumPy array.
"""

import warnings
from typing import List

import numpy as np

from gncost.types.backends import (
    DEFAULT_BACKEND,
    DEFAULT_DEVICE,
    Backend,
    Device,
    validate_backend,
    validate_device,
)
from gncost.types.core import ArrayLike
from gncost.types.utilities import ensure_numpy, is_jax, is_numpy, is_torch


class BackendManager:
    """
    Manages backend detection, argument packing and output conversion.

    Supports NumPy, PyTorch, and JAX backends.

    Example:
        >>> mgr = BackendManager('torch')
        >>> args = mgr.pack_arguments(np.array([0.0, 1.0, 2.0]))
        >>> out = generated_func(*args)
        >>> mgr.to_numpy(out)  # float64 ndarray
    """

    def __init__(
        self,
        backend: Backend = DEFAULT_BACKEND,
        device: Device = DEFAULT_DEVICE,
    ):
        """
        Initialize backend manager.

        Args:
            backend: Backend that generated functions run on
            device: Device for GPU backends

        Raises:
            ValueError: If backend/device is invalid
            RuntimeError: If backend is not installed
        """
        self._backend: Backend = validate_backend(backend)
        self._device: Device = validate_device(device, self._backend)

        self._available_backends = self._detect_available_backends()
        self.require_backend(self._backend)

        if self._backend == "jax":
            self._enable_jax_x64()

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def backend(self) -> Backend:
        """Backend generated functions run on"""
        return self._backend

    @property
    def device(self) -> Device:
        """Preferred device"""
        return self._device

    @property
    def available_backends(self) -> List[Backend]:
        """Get list of available backends"""
        return self._available_backends.copy()

    # ========================================================================
    # Backend Detection
    # ========================================================================

    @staticmethod
    def _detect_available_backends() -> List[Backend]:
        """
        Detect which backends are available in the current environment.

        Returns:
            List of available backend names
        """
        available: List[Backend] = ["numpy"]  # NumPy is always available

        try:
            import torch  # noqa: F401

            available.append("torch")
        except ImportError:
            pass

        try:
            import jax  # noqa: F401

            available.append("jax")
        except ImportError:
            pass

        return available

    @staticmethod
    def _enable_jax_x64():
        """Residual models are evaluated in double precision."""
        import jax

        jax.config.update("jax_enable_x64", True)

    def detect(self, array: ArrayLike) -> Backend:
        """
        Detect backend from array type.

        Raises:
            TypeError: If array type is not recognized
        """
        if is_torch(array):
            return "torch"
        if is_jax(array):
            return "jax"
        if is_numpy(array):
            return "numpy"
        raise TypeError(
            f"Unknown input type: {type(array)}. "
            f"Expected np.ndarray, torch.Tensor, or jax.numpy.ndarray",
        )

    def check_available(self, backend: Backend) -> bool:
        """Check if a backend is available."""
        return backend in self._available_backends

    def require_backend(self, backend: Backend):
        """
        Raise error if backend is not available.

        Raises:
            RuntimeError: If backend is not available
        """
        if not self.check_available(backend):
            if backend == "torch":
                msg = "PyTorch backend not available. Install with: pip install torch"
            elif backend == "jax":
                msg = "JAX backend not available. Install with: pip install jax jaxlib"
            else:
                msg = f"Backend '{backend}' not available"

            raise RuntimeError(msg)

    # ========================================================================
    # Argument Packing / Output Conversion
    # ========================================================================

    def pack_arguments(self, values: np.ndarray) -> list:
        """
        Split a float vector into scalar arguments for a generated function.

        Args:
            values: 1-D float64 array, one entry per function symbol

        Returns:
            List of Python floats (NumPy), 0-d float64 tensors (PyTorch)
            or 0-d JAX arrays (JAX)
        """
        values = np.asarray(values, dtype=np.float64).reshape(-1)

        if self._backend == "numpy":
            return [float(v) for v in values]

        if self._backend == "torch":
            import torch

            tensor = torch.as_tensor(values, dtype=torch.float64, device=self._device)
            return list(tensor.unbind(0))

        import jax.numpy as jnp

        array = self._place_jax(jnp.asarray(values))
        return [array[i] for i in range(array.shape[0])]

    def to_numpy(self, output: ArrayLike) -> np.ndarray:
        """Convert a generated function's output to a float64 NumPy array."""
        return np.asarray(ensure_numpy(output), dtype=np.float64)

    def _place_jax(self, array):
        """Put a JAX array on the preferred device (default device on failure)."""
        if self._device == "cpu":
            return array

        from jax import device_put, devices

        try:
            if ":" in self._device:
                device_idx = int(self._device.split(":")[1])
            elif self._device in ("gpu", "cuda"):
                device_idx = 0
            else:
                warnings.warn(
                    f"Unknown JAX device format '{self._device}'. "
                    f"Expected format: 'cpu', 'gpu', 'cuda', 'gpu:N', or 'cuda:N'. "
                    f"Array will be placed on default JAX device.",
                    UserWarning,
                    stacklevel=2,
                )
                return array
            jax_devices = devices("gpu")
            if device_idx < len(jax_devices):
                return device_put(array, jax_devices[device_idx])
        except (IndexError, RuntimeError, ValueError):
            pass
        return array

    # ========================================================================
    # Information & Debugging
    # ========================================================================

    def get_extended_info(self) -> dict:
        """
        Get backend information including versions.

        Example:
            >>> info = BackendManager().get_extended_info()
            >>> info['backend']
            'numpy'
        """
        info = {
            "backend": self._backend,
            "device": self._device,
            "available_backends": self.available_backends,
            "numpy_version": np.__version__,
            "torch_version": None,
            "jax_version": None,
        }

        if self.check_available("torch"):
            import torch

            info["torch_version"] = torch.__version__

        if self.check_available("jax"):
            import jax

            info["jax_version"] = jax.__version__

        return info

    def __repr__(self) -> str:
        """String representation for debugging"""
        return (
            f"BackendManager("
            f"backend='{self._backend}', "
            f"device='{self._device}', "
            f"available={self.available_backends})"
        )


__all__ = ["BackendManager", "DEFAULT_BACKEND", "DEFAULT_DEVICE"]
