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
Differentiated residual models: generation, caching and compilation.
"""

from .backend_manager import BackendManager
from .model_artifact import ModelArtifact, ModelKey, ModelSymbols
from .model_cache import FileSystemModelCache, InMemoryModelCache, ModelCache, ModelLoadError
from .model_lifecycle import CacheFactory, ModelLifecycleManager
from .residual_model import ResidualModel, generate_model_artifact
from .residual_validator import ResidualValidator, ValidationError, ValidationResult

__all__ = [
    "BackendManager",
    "ModelArtifact",
    "ModelKey",
    "ModelSymbols",
    "ModelCache",
    "FileSystemModelCache",
    "InMemoryModelCache",
    "ModelLoadError",
    "CacheFactory",
    "ModelLifecycleManager",
    "ResidualModel",
    "generate_model_artifact",
    "ResidualValidator",
    "ValidationError",
    "ValidationResult",
]
