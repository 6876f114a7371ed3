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
Model Caches

Generate-or-load storage for ModelArtifacts, keyed by ModelKey.

Implementations:
- FileSystemModelCache: one JSON file per model under
  ``folder/model_name/kind.json`` (atomic writes)
- InMemoryModelCache: dictionary storage, for tests and for sharing
  generated models inside one process

The lifecycle manager only talks to the ModelCache interface, so other
stores can be plugged in through the ``cache_factory`` argument of the
cost engine.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, Optional

from gncost.ad.model_artifact import ModelArtifact, ModelKey


class ModelLoadError(RuntimeError):
    """Raised when a cached model exists but cannot be read back."""

    pass


class ModelCache(ABC):
    """
    Abstract key/value store for generated residual models.

    ``load`` returns None for missing entries and raises ModelLoadError for
    entries that exist but are unreadable.
    """

    @abstractmethod
    def load(self, key: ModelKey) -> Optional[ModelArtifact]:
        pass

    @abstractmethod
    def store(self, key: ModelKey, artifact: ModelArtifact):
        pass

    @abstractmethod
    def contains(self, key: ModelKey) -> bool:
        pass

    @abstractmethod
    def clear(self, model_name: Optional[str] = None):
        """Remove cached models (all of them, or only those of model_name)."""
        pass


class FileSystemModelCache(ModelCache):
    """
    Stores artifacts as JSON files below a folder.

    Layout::

        folder/
            model_name/
                intermediate.json
                final.json

    Example:
        >>> cache = FileSystemModelCache('/tmp/gncost')
        >>> cache.store(ModelKey('pendulum', 'final'), artifact)
        >>> cache.path_for(ModelKey('pendulum', 'final'))
        '/tmp/gncost/pendulum/final.json'
    """

    def __init__(self, folder: str):
        self.folder = os.fspath(folder)

    def path_for(self, key: ModelKey) -> str:
        return os.path.join(self.folder, key.model_name, f"{key.kind}.json")

    def load(self, key: ModelKey) -> Optional[ModelArtifact]:
        path = self.path_for(key)
        if not os.path.isfile(path):
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return ModelArtifact.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            # json.JSONDecodeError and sp.SympifyError are ValueErrors
            raise ModelLoadError(f"Cannot read cached model '{path}': {e}") from e

    def store(self, key: ModelKey, artifact: ModelArtifact):
        """
        Write the artifact atomically.

        The JSON is written to a temporary file in the target folder and
        renamed over the destination, so readers never see a partial file.
        """
        path = self.path_for(key)
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=f".{key.kind}-", suffix=".json.tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(artifact.to_dict(), f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def contains(self, key: ModelKey) -> bool:
        return os.path.isfile(self.path_for(key))

    def clear(self, model_name: Optional[str] = None):
        names = [model_name] if model_name is not None else self._model_names()
        for name in names:
            model_dir = os.path.join(self.folder, name)
            if not os.path.isdir(model_dir):
                continue
            for entry in os.listdir(model_dir):
                if entry.endswith(".json"):
                    os.remove(os.path.join(model_dir, entry))

    def _model_names(self):
        if not os.path.isdir(self.folder):
            return []
        return [
            name
            for name in os.listdir(self.folder)
            if os.path.isdir(os.path.join(self.folder, name))
        ]

    def __repr__(self) -> str:
        return f"FileSystemModelCache(folder='{self.folder}')"


class InMemoryModelCache(ModelCache):
    """
    Dictionary-backed cache.

    The ``folder`` argument is accepted so the class can be passed directly
    as a ``cache_factory``. A lifecycle manager keeps one cache per folder,
    so models stored by one ``initialize`` call can be loaded by the next.
    Entries are never written to disk.
    """

    def __init__(self, folder: Optional[str] = None):
        self.folder = folder
        self._entries: Dict[ModelKey, ModelArtifact] = {}

    def load(self, key: ModelKey) -> Optional[ModelArtifact]:
        return self._entries.get(key)

    def store(self, key: ModelKey, artifact: ModelArtifact):
        self._entries[key] = artifact

    def contains(self, key: ModelKey) -> bool:
        return key in self._entries

    def clear(self, model_name: Optional[str] = None):
        if model_name is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k.model_name == model_name]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"InMemoryModelCache(entries={len(self._entries)})"


__all__ = [
    "ModelLoadError",
    "ModelCache",
    "FileSystemModelCache",
    "InMemoryModelCache",
]
