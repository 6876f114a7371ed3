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
Model Lifecycle Manager

Decides, per residual model (intermediate and final), whether to generate
it from the residual functions or to load it from a model cache, and
compiles the result for the selected backend.

Policy:
- recompile_libraries=True: always generate and store both models
- recompile_libraries=False: load each model from the cache; a missing,
  unreadable or incompatible entry is regenerated and stored

A cached model is compatible when its stored signature (kind, state,
input and parameter dimensions, differentiation mode) equals the one the
manager was configured with. The residual expression itself is not
compared, so changing a residual function without changing its
dimensions requires recompile_libraries=True.
"""

import operator
import time
import warnings
from typing import Any, Callable, Dict, Optional, Tuple

from gncost.ad.model_artifact import ModelArtifact, ModelKey
from gncost.ad.model_cache import FileSystemModelCache, ModelCache, ModelLoadError
from gncost.ad.residual_model import ResidualModel, generate_model_artifact
from gncost.types.backends import (
    DEFAULT_BACKEND,
    DEFAULT_DEVICE,
    DEFAULT_DIFFERENTIATION,
    DEFAULT_MODEL_FOLDER,
    MODEL_KINDS,
    Backend,
    Device,
    DifferentiationMode,
    ModelConfig,
    ModelKind,
    validate_backend,
    validate_differentiation,
)

CacheFactory = Callable[[str], ModelCache]
"""Creates the model cache for a model folder."""


class ModelLifecycleManager:
    """
    Generates or loads the intermediate and final residual models.

    Example:
        >>> manager = ModelLifecycleManager(
        ...     intermediate_function, final_function,
        ...     state_dim=2, input_dim=1,
        ... )
        >>> intermediate, final = manager.initialize(
        ...     'double_integrator', recompile_libraries=False, verbose=True
        ... )
        Loading intermediate model 'double_integrator'...
          loaded: 0.004s
        Loading final model 'double_integrator'...
          not cached, generating...
          final: 0.021s
    """

    def __init__(
        self,
        intermediate_function: Callable,
        final_function: Callable,
        state_dim: int,
        input_dim: int,
        num_intermediate_parameters: int = 0,
        num_final_parameters: int = 0,
        backend: Backend = DEFAULT_BACKEND,
        differentiation: DifferentiationMode = DEFAULT_DIFFERENTIATION,
        device: Device = DEFAULT_DEVICE,
        cache_factory: Optional[CacheFactory] = None,
    ):
        """
        Args:
            intermediate_function: (t, x, u, p) → r
            final_function: (t, x, p) → r
            state_dim: Number of states
            input_dim: Number of inputs
            num_intermediate_parameters: Parameter dimension of the intermediate model
            num_final_parameters: Parameter dimension of the final model
            backend: Backend the models are compiled for
            differentiation: 'symbolic' or 'autodiff' (JAX only)
            device: Device for torch/jax
            cache_factory: folder → ModelCache (default: FileSystemModelCache)
                Called once per folder; the manager keeps the cache it returns.

        Raises:
            ValueError: If backend or differentiation mode is invalid
            TypeError: If a dimension is not an integer
        """
        self.backend = validate_backend(backend)
        self.differentiation = validate_differentiation(differentiation, self.backend)
        self.device = device
        self.cache_factory = cache_factory if cache_factory is not None else FileSystemModelCache

        self._functions = {"intermediate": intermediate_function, "final": final_function}
        state_dim, input_dim = operator.index(state_dim), operator.index(input_dim)
        self._dims = {
            "intermediate": (state_dim, input_dim, operator.index(num_intermediate_parameters)),
            "final": (state_dim, 0, operator.index(num_final_parameters)),
        }
        self._caches: Dict[str, ModelCache] = {}

        self.model_name: Optional[str] = None
        self.model_folder: Optional[str] = None
        self.cache: Optional[ModelCache] = None
        self.config: Optional[ModelConfig] = None
        self.timings: Dict[str, float] = {}
        self.sources: Dict[str, str] = {}

    # ========================================================================
    # Public API
    # ========================================================================

    def initialize(
        self,
        model_name: str,
        model_folder: str = DEFAULT_MODEL_FOLDER,
        recompile_libraries: bool = True,
        verbose: bool = True,
    ) -> Tuple[ResidualModel, ResidualModel]:
        """
        Produce the (intermediate, final) models.

        Args:
            model_name: Cache key prefix for both models
            model_folder: Folder handed to the cache factory
            recompile_libraries: Regenerate even if cached models exist
            verbose: Print progress and timings

        Returns:
            (intermediate_model, final_model)

        Raises:
            ValidationError: If a residual function does not fit its signature
            OSError: If a generated model cannot be stored
        """
        if not model_name:
            raise ValueError("model_name must be a non-empty string")

        self.model_name = model_name
        self.model_folder = model_folder
        self.config = ModelConfig(
            model_name=model_name,
            model_folder=model_folder,
            recompile_libraries=recompile_libraries,
            verbose=verbose,
        )
        if model_folder not in self._caches:
            self._caches[model_folder] = self.cache_factory(model_folder)
        self.cache = self._caches[model_folder]
        self.timings = {}
        self.sources = {}

        if recompile_libraries:
            return self.create_models(verbose)
        return self.load_models_if_available(verbose)

    def create_models(self, verbose: bool = True) -> Tuple[ResidualModel, ResidualModel]:
        """Generate, store and compile both models."""
        self._require_initialized()
        models = {}
        for kind in MODEL_KINDS:
            if verbose:
                print(f"Generating {kind} model '{self.model_name}'...")
            models[kind] = self._create(kind, verbose)
        return models["intermediate"], models["final"]

    def load_models_if_available(
        self, verbose: bool = True
    ) -> Tuple[ResidualModel, ResidualModel]:
        """Load both models, regenerating any that cannot be used."""
        self._require_initialized()
        models = {}
        for kind in MODEL_KINDS:
            if verbose:
                print(f"Loading {kind} model '{self.model_name}'...")

            start = time.time()
            artifact = self._load(kind, verbose)
            if artifact is None:
                models[kind] = self._create(kind, verbose)
                continue

            models[kind] = ResidualModel.from_artifact(artifact, self.backend, self.device)
            self.timings[kind] = time.time() - start
            self.sources[kind] = "loaded"
            if verbose:
                print(f"  loaded: {self.timings[kind]:.3f}s")

        return models["intermediate"], models["final"]

    def copy(self) -> "ModelLifecycleManager":
        """
        Independent manager with the same configuration and current state.

        Caches created so far are shared; initializing the copy does not
        change this manager.
        """
        new = self.__class__.__new__(self.__class__)
        new.__dict__.update(self.__dict__)
        new._caches = dict(self._caches)
        new.timings = dict(self.timings)
        new.sources = dict(self.sources)
        return new

    def expected_signature(self, kind: ModelKind) -> Dict[str, Any]:
        """Signature a cached model must have to be reused."""
        state_dim, input_dim, parameter_dim = self._dims[kind]
        return {
            "kind": kind,
            "state_dim": state_dim,
            "input_dim": input_dim,
            "parameter_dim": parameter_dim,
            "differentiation": self.differentiation,
        }

    # ========================================================================
    # Internals
    # ========================================================================

    def _create(self, kind: ModelKind, verbose: bool) -> ResidualModel:
        state_dim, input_dim, parameter_dim = self._dims[kind]

        start = time.time()
        artifact = generate_model_artifact(
            self._functions[kind],
            kind,
            state_dim,
            input_dim,
            parameter_dim,
            differentiation=self.differentiation,
        )
        self.cache.store(ModelKey(self.model_name, kind), artifact)
        model = ResidualModel.from_artifact(artifact, self.backend, self.device)
        self.timings[kind] = time.time() - start
        self.sources[kind] = "generated"

        if verbose:
            print(f"  {kind}: {self.timings[kind]:.3f}s")
        return model

    def _load(self, kind: ModelKind, verbose: bool) -> Optional[ModelArtifact]:
        """Cached artifact for kind, or None if it must be regenerated."""
        key = ModelKey(self.model_name, kind)
        try:
            artifact = self.cache.load(key)
        except ModelLoadError as e:
            warnings.warn(f"{e}. Regenerating {kind} model.", UserWarning, stacklevel=3)
            return None

        if artifact is None:
            if verbose:
                print("  not cached, generating...")
            return None

        expected = self.expected_signature(kind)
        if artifact.signature() != expected:
            if verbose:
                print(
                    f"  cached signature {artifact.signature()} does not match "
                    f"{expected}, generating..."
                )
            return None

        return artifact

    def _require_initialized(self):
        if self.cache is None:
            raise RuntimeError("Call initialize() before creating or loading models")

    # ========================================================================
    # Information
    # ========================================================================

    def get_info(self) -> Dict[str, Any]:
        """
        Get lifecycle status.

        Example:
            >>> manager.get_info()['sources']
            {'intermediate': 'loaded', 'final': 'generated'}
        """
        return {
            "model_name": self.model_name,
            "model_folder": self.model_folder,
            "config": dict(self.config) if self.config is not None else None,
            "backend": self.backend,
            "differentiation": self.differentiation,
            "cache": repr(self.cache) if self.cache is not None else None,
            "timings": dict(self.timings),
            "sources": dict(self.sources),
        }

    def __repr__(self) -> str:
        return (
            f"ModelLifecycleManager(model_name={self.model_name!r}, "
            f"backend='{self.backend}', differentiation='{self.differentiation}')"
        )


__all__ = ["CacheFactory", "ModelLifecycleManager"]
