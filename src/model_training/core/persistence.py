# /forecast-training/src/model_training/core/persistence.py

"""
Persistence for weight checkpoints and training metrics.

The training loop only needs two calls: `store_weights` on every improving
epoch and `record_metric` at the end of every epoch. Both are best-effort
from the loop's point of view; callers catch and log failures. Backends:

- InMemoryPersistence: process-local, used by default and in tests
- FileSystemPersistence: atomic JSON checkpoints plus a JSONL metrics log
- RedisPersistence: checkpoints and metric series in Redis
"""

import json
import logging
import os
import shutil
import tempfile
import threading
from collections import deque
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import redis

from ..config.training_config import PersistenceConfig, ConfigurationError


Weights = Sequence[np.ndarray]


def serialize_weights(weights: Weights) -> List[List[List[float]]]:
    """Convert per-layer weight matrices to nested lists."""
    return [np.asarray(layer).tolist() for layer in weights]


@dataclass
class MetricRecord:
    """One recorded metric value."""
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'value': self.value,
            'tags': self.tags,
            'timestamp': self.timestamp.isoformat()
        }


class TrainingPersistence(ABC):
    """
    Interface consumed by the training loop and orchestrator.
    """

    @abstractmethod
    def store_weights(self, model_name: str, epoch: int, weights: Weights) -> None:
        """Persist a weight checkpoint for `model_name` at `epoch`."""

    @abstractmethod
    def record_metric(self, name: str, value: float,
                      tags: Optional[Dict[str, str]] = None) -> None:
        """Record a single metric value."""


class InMemoryPersistence(TrainingPersistence):
    """
    Thread-safe in-process store. Checkpoints are copied on write.

    Only the `max_checkpoints_per_model` most recently written checkpoints
    of each model and the newest `max_metric_records` metrics are kept;
    None disables a bound.
    """

    def __init__(self, max_checkpoints_per_model: Optional[int] = 3,
                 max_metric_records: Optional[int] = 10_000):
        self._lock = threading.Lock()
        self.max_checkpoints_per_model = max_checkpoints_per_model
        self.checkpoints: Dict[Tuple[str, int], List[np.ndarray]] = {}
        self.metrics: Deque[MetricRecord] = deque(maxlen=max_metric_records)

    def store_weights(self, model_name: str, epoch: int, weights: Weights) -> None:
        with self._lock:
            key = (model_name, epoch)
            # Re-insert so dict order tracks write order
            self.checkpoints.pop(key, None)
            self.checkpoints[key] = [np.array(layer, copy=True) for layer in weights]

            if self.max_checkpoints_per_model is not None:
                keys = [k for k in self.checkpoints if k[0] == model_name]
                for stale in keys[:-self.max_checkpoints_per_model]:
                    del self.checkpoints[stale]

    def record_metric(self, name: str, value: float,
                      tags: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self.metrics.append(MetricRecord(name=name, value=float(value), tags=dict(tags or {})))

    def checkpoint_epochs(self, model_name: str) -> List[int]:
        """Epochs checkpointed for `model_name`, ascending."""
        with self._lock:
            return sorted(epoch for name, epoch in self.checkpoints if name == model_name)

    def metric_values(self, name: str) -> List[float]:
        with self._lock:
            return [m.value for m in self.metrics if m.name == name]


class FileSystemPersistence(TrainingPersistence):
    """
    Checkpoints as JSON files written atomically (temp file + move), metrics
    appended to a JSONL file.

    Layout::

        <base_dir>/checkpoints/<model_name>/epoch_<epoch>.json
        <base_dir>/metrics.jsonl
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)
        self.checkpoints_dir = self.base_dir / "checkpoints"
        self.metrics_file = self.base_dir / "metrics.jsonl"
        self.logger = logging.getLogger(__name__)

        self.checkpoints_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

    def store_weights(self, model_name: str, epoch: int, weights: Weights) -> None:
        model_dir = self.checkpoints_dir / model_name
        final_path = model_dir / f"epoch_{epoch}.json"

        payload = {
            'model_name': model_name,
            'epoch': epoch,
            'layer_shapes': [list(np.asarray(layer).shape) for layer in weights],
            'weights': serialize_weights(weights),
            'saved_at': datetime.now().isoformat()
        }

        with self._lock:
            model_dir.mkdir(parents=True, exist_ok=True)
            temp_path = self._create_temp_file(".json")
            try:
                with open(temp_path, 'w') as f:
                    json.dump(payload, f)
                shutil.move(str(temp_path), str(final_path))
            except Exception:
                temp_path.unlink(missing_ok=True)
                raise

        self.logger.debug("checkpoint.saved", extra={
            'component': 'FileSystemPersistence',
            'action': 'store_weights',
            'model_name': model_name,
            'epoch': epoch,
            'path': str(final_path)
        })

    def record_metric(self, name: str, value: float,
                      tags: Optional[Dict[str, str]] = None) -> None:
        record = MetricRecord(name=name, value=float(value), tags=dict(tags or {}))
        with self._lock:
            with open(self.metrics_file, 'a') as f:
                f.write(json.dumps(record.to_dict()) + '\n')

    def load_weights(self, model_name: str, epoch: int) -> Optional[List[np.ndarray]]:
        """Load a checkpoint written by `store_weights`, or None if absent."""
        path = self.checkpoints_dir / model_name / f"epoch_{epoch}.json"
        if not path.exists():
            return None
        with open(path, 'r') as f:
            payload = json.load(f)
        return [np.asarray(layer, dtype=np.float64) for layer in payload['weights']]

    def list_checkpoints(self, model_name: str) -> List[int]:
        model_dir = self.checkpoints_dir / model_name
        if not model_dir.exists():
            return []
        return sorted(int(p.stem.split("_", 1)[1]) for p in model_dir.glob("epoch_*.json"))

    def _create_temp_file(self, suffix: str) -> Path:
        fd, path = tempfile.mkstemp(suffix=suffix, dir=self.base_dir)
        os.close(fd)
        return Path(path)


class RedisPersistence(TrainingPersistence):
    """
    Checkpoints stored as JSON strings under `model_weights:<model>:<epoch>`;
    metrics appended to the list `training_metrics:<name>`.
    """

    def __init__(self, client: redis.Redis, key_prefix: str = ""):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_config(cls, config: PersistenceConfig) -> 'RedisPersistence':
        client = redis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            db=config.redis_db,
            password=config.redis_password,
            decode_responses=True
        )
        return cls(client)

    def weights_key(self, model_name: str, epoch: int) -> str:
        return f"{self.key_prefix}model_weights:{model_name}:{epoch}"

    def metric_key(self, name: str) -> str:
        return f"{self.key_prefix}training_metrics:{name}"

    def store_weights(self, model_name: str, epoch: int, weights: Weights) -> None:
        payload = {
            'model_name': model_name,
            'epoch': epoch,
            'weights': serialize_weights(weights),
            'saved_at': datetime.now().isoformat()
        }
        self.client.set(self.weights_key(model_name, epoch), json.dumps(payload))

    def record_metric(self, name: str, value: float,
                      tags: Optional[Dict[str, str]] = None) -> None:
        record = MetricRecord(name=name, value=float(value), tags=dict(tags or {}))
        self.client.rpush(self.metric_key(name), json.dumps(record.to_dict()))


def create_persistence(config: PersistenceConfig) -> TrainingPersistence:
    """Build the persistence backend named by `config.backend`."""
    backend = config.backend.lower()
    if backend == "memory":
        return InMemoryPersistence(
            max_checkpoints_per_model=config.max_checkpoints_per_model,
            max_metric_records=config.max_metric_records
        )
    if backend == "filesystem":
        return FileSystemPersistence(config.base_dir)
    if backend == "redis":
        return RedisPersistence.from_config(config)
    raise ConfigurationError(f"Unknown persistence backend: {config.backend}")
