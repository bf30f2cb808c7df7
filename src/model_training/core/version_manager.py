# /forecast-training/src/model_training/core/version_manager.py

"""
ModelVersionManager: Versioned Training Outputs with a Single Active Version

Every completed training job produces one version of its model. Versions are
numbered per model name in creation order (`v1.0.0`, `v2.0.0`, ...), are
never deleted, and at most one of them is active at any time.

All mutations for a model name run under that name's lock, so activation
is atomic with respect to concurrent creation and activation; different
model names never contend.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ModelVersion:
    """
    One recorded output of a training job.
    """
    version_id: str
    model_name: str
    version: str
    accuracy: float
    artifact_path: str
    created_at: datetime = field(default_factory=datetime.now)
    is_active: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version_id': self.version_id,
            'model_name': self.model_name,
            'version': self.version,
            'accuracy': self.accuracy,
            'artifact_path': self.artifact_path,
            'created_at': self.created_at.isoformat(),
            'is_active': self.is_active,
            'metadata': copy.deepcopy(self.metadata)
        }


class ModelVersionManager:
    """
    Per-model version lists with atomic activation.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

        self._versions: Dict[str, List[ModelVersion]] = {}
        self._model_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, model_name: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._model_locks.get(model_name)
            if lock is None:
                lock = threading.Lock()
                self._model_locks[model_name] = lock
            return lock

    def create_version(self, model_name: str, accuracy: float, artifact_path: str,
                       metadata: Optional[Dict[str, Any]] = None) -> ModelVersion:
        """
        Append a new inactive version for `model_name`.

        Returns:
            Copy of the created version
        """
        with self._lock_for(model_name):
            versions = self._versions.setdefault(model_name, [])
            number = len(versions) + 1
            version = ModelVersion(
                version_id=f"{model_name}-v{number}.0.0",
                model_name=model_name,
                version=f"v{number}.0.0",
                accuracy=float(accuracy),
                artifact_path=artifact_path,
                metadata=copy.deepcopy(metadata or {})
            )
            versions.append(version)

        self.logger.info("model_version.created", extra={
            'component': 'ModelVersionManager',
            'action': 'create_version',
            'model_name': model_name,
            'version_id': version.version_id,
            'accuracy': version.accuracy
        })

        return copy.deepcopy(version)

    def activate_version(self, model_name: str, version_id: str) -> ModelVersion:
        """
        Make `version_id` the only active version of `model_name`.

        Raises:
            VersionNotFoundError: If the version does not exist; nothing changes
        """
        with self._lock_for(model_name):
            activated = self._activate_locked(model_name, version_id)

        self.logger.info("model_version.activated", extra={
            'component': 'ModelVersionManager',
            'action': 'activate_version',
            'model_name': model_name,
            'version_id': version_id
        })

        return copy.deepcopy(activated)

    def activate_if_best(self, model_name: str, version_id: str) -> bool:
        """
        Activate `version_id` if it is the first version to reach the
        highest accuracy recorded for `model_name`.

        Comparison and activation happen under the same lock, so concurrent
        completions cannot both win.

        Returns:
            True if the version was activated
        """
        with self._lock_for(model_name):
            versions = self._versions.get(model_name, [])
            if not any(v.version_id == version_id for v in versions):
                raise VersionNotFoundError(f"Version {version_id} not found for model {model_name}")

            best = versions[0]
            for candidate in versions[1:]:
                if candidate.accuracy > best.accuracy:
                    best = candidate

            if best.version_id != version_id:
                return False

            if not best.is_active:
                self._activate_locked(model_name, version_id)

        self.logger.info("model_version.best_activated", extra={
            'component': 'ModelVersionManager',
            'action': 'activate_if_best',
            'model_name': model_name,
            'version_id': version_id,
            'accuracy': best.accuracy
        })

        return True

    def get_active_version(self, model_name: str) -> Optional[ModelVersion]:
        with self._lock_for(model_name):
            for version in self._versions.get(model_name, []):
                if version.is_active:
                    return copy.deepcopy(version)
        return None

    def get_all_versions(self, model_name: str) -> List[ModelVersion]:
        """All versions of `model_name`, oldest first."""
        with self._lock_for(model_name):
            return copy.deepcopy(self._versions.get(model_name, []))

    def _activate_locked(self, model_name: str, version_id: str) -> ModelVersion:
        """Swap the active flag; caller holds the model lock."""
        versions = self._versions.get(model_name, [])
        if not any(v.version_id == version_id for v in versions):
            raise VersionNotFoundError(f"Version {version_id} not found for model {model_name}")

        updated = [replace(v, is_active=(v.version_id == version_id)) for v in versions]
        self._versions[model_name] = updated

        for version in updated:
            if version.is_active:
                return version
        raise VersionNotFoundError(f"Version {version_id} not found for model {model_name}")


# Custom exceptions
class VersionNotFoundError(Exception):
    """Raised when activating a version that does not exist."""
    pass
