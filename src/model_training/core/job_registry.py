# /forecast-training/src/model_training/core/job_registry.py

"""
Training job records and the thread-safe registry that owns them.

The registry is the only writer of job state. Its transition methods enforce
the job lifecycle:

- progress never decreases, and reaches 100 only through `mark_completed`
- a job leaves `pending`/`running` exactly once, to `completed` or `failed`
- once terminal, every further update is ignored

Readers always receive deep copies, so a snapshot never changes under them.
"""

import copy
import logging
import secrets
import string
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .training_loop import CANCELLATION_MESSAGE, CancellationToken, EpochResult


_JOB_ID_ALPHABET = string.digits + string.ascii_lowercase


class JobStatus(str, Enum):
    """Training job lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class TrainingMetricsSnapshot:
    loss: float = 0.0
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    validation_loss: float = 0.0
    validation_accuracy: float = 0.0
    learning_rate: float = 0.0

    @classmethod
    def from_epoch(cls, result: EpochResult) -> 'TrainingMetricsSnapshot':
        return cls(**result.metrics())

    def to_dict(self) -> Dict[str, float]:
        return {
            'loss': self.loss,
            'accuracy': self.accuracy,
            'precision': self.precision,
            'recall': self.recall,
            'f1_score': self.f1_score,
            'validation_loss': self.validation_loss,
            'validation_accuracy': self.validation_accuracy,
            'learning_rate': self.learning_rate,
        }


@dataclass
class TrainingJob:
    """
    State of one training job as seen by callers.
    """
    job_id: str
    model_name: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    current_epoch: int = 0
    total_epochs: int = 0
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    dataset_size: int = 0
    validation_split: float = 0.2
    errors: List[str] = field(default_factory=list)
    metrics: TrainingMetricsSnapshot = field(default_factory=TrainingMetricsSnapshot)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    cross_validation: Optional[Any] = None
    version_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        cv = self.cross_validation
        return {
            'job_id': self.job_id,
            'model_name': self.model_name,
            'status': self.status.value,
            'progress': self.progress,
            'current_epoch': self.current_epoch,
            'total_epochs': self.total_epochs,
            'hyperparameters': copy.deepcopy(self.hyperparameters),
            'dataset_size': self.dataset_size,
            'validation_split': self.validation_split,
            'errors': list(self.errors),
            'metrics': self.metrics.to_dict(),
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'cross_validation': cv.to_dict() if hasattr(cv, 'to_dict') else cv,
            'version_id': self.version_id,
        }


def generate_job_id() -> str:
    """`job-<epoch milliseconds>-<9 random base36 characters>`."""
    suffix = ''.join(secrets.choice(_JOB_ID_ALPHABET) for _ in range(9))
    return f"job-{int(time.time() * 1000)}-{suffix}"


class JobRegistry:
    """
    Thread-safe store of training jobs and their cancellation tokens.

    Every mutator returns False, without changing anything, when the job is
    unknown or already terminal.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

        self._jobs: Dict[str, TrainingJob] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._lock = threading.RLock()

    def create(self, model_name: str, dataset_size: int, total_epochs: int,
               validation_split: float,
               hyperparameters: Optional[Dict[str, Any]] = None) -> TrainingJob:
        """Register a new `pending` job and return a snapshot of it."""
        with self._lock:
            job_id = generate_job_id()
            while job_id in self._jobs:
                job_id = generate_job_id()

            job = TrainingJob(
                job_id=job_id,
                model_name=model_name,
                total_epochs=total_epochs,
                dataset_size=dataset_size,
                validation_split=validation_split,
                hyperparameters=copy.deepcopy(hyperparameters or {})
            )
            self._jobs[job_id] = job
            self._tokens[job_id] = CancellationToken()
            return copy.deepcopy(job)

    def get(self, job_id: str) -> Optional[TrainingJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def all(self) -> List[TrainingJob]:
        with self._lock:
            return [copy.deepcopy(job) for job in self._jobs.values()]

    def active(self) -> List[TrainingJob]:
        """Jobs still `pending` or `running`."""
        with self._lock:
            return [copy.deepcopy(job) for job in self._jobs.values() if job.is_active]

    def cancellation_token(self, job_id: str) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.get(job_id)

    def mark_running(self, job_id: str) -> bool:
        with self._lock:
            job = self._live_job(job_id)
            if job is None:
                return False
            job.status = JobStatus.RUNNING
            return True

    def set_progress(self, job_id: str, progress: int) -> bool:
        """
        Raise progress to `progress`; lower values are ignored and values
        are capped at 99 until the job completes.
        """
        with self._lock:
            job = self._live_job(job_id)
            if job is None:
                return False
            job.progress = max(job.progress, min(int(progress), 99))
            return True

    def update(self, job_id: str, **changes: Any) -> bool:
        """
        Set plain attributes (hyperparameters, cross_validation, ...).

        Lifecycle fields must go through their dedicated methods.
        """
        protected = {'job_id', 'status', 'progress', 'errors', 'end_time'}
        with self._lock:
            job = self._live_job(job_id)
            if job is None:
                return False
            for key, value in changes.items():
                if key in protected or not hasattr(job, key):
                    raise AttributeError(f"Cannot update job field: {key}")
                setattr(job, key, copy.deepcopy(value))
            return True

    def record_epoch(self, job_id: str, result: EpochResult, progress: int) -> bool:
        """Store an epoch's metrics and advance progress in one step."""
        with self._lock:
            job = self._live_job(job_id)
            if job is None:
                return False
            job.current_epoch = result.epoch
            job.metrics = TrainingMetricsSnapshot.from_epoch(result)
            job.progress = max(job.progress, min(int(progress), 99))
            return True

    def mark_completed(self, job_id: str, version_id: Optional[str] = None) -> bool:
        with self._lock:
            job = self._live_job(job_id)
            if job is None:
                return False
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.version_id = version_id
            job.end_time = datetime.now()

        self.logger.info("training_job.status_changed", extra={
            'component': 'JobRegistry',
            'action': 'mark_completed',
            'job_id': job_id,
            'status': JobStatus.COMPLETED.value
        })
        return True

    def complete_with(self, job_id: str, finalize: Callable[[], str]) -> Optional[str]:
        """
        Run `finalize` and mark the job completed as one step.

        `finalize` runs under the registry lock, so a concurrent `cancel`
        either lands before it (nothing is finalized) or after the job is
        already completed (the cancel is refused).

        Returns:
            Version id returned by `finalize`, or None if the job was
            already terminal
        """
        with self._lock:
            if self._live_job(job_id) is None:
                return None
            version_id = finalize()
            self.mark_completed(job_id, version_id)
            return version_id

    def mark_failed(self, job_id: str, message: str) -> bool:
        """Append `message` and make the job terminal at its current progress."""
        with self._lock:
            job = self._live_job(job_id)
            if job is None:
                return False
            job.errors.append(message)
            job.status = JobStatus.FAILED
            job.end_time = datetime.now()

        self.logger.info("training_job.status_changed", extra={
            'component': 'JobRegistry',
            'action': 'mark_failed',
            'job_id': job_id,
            'status': JobStatus.FAILED.value,
            'error': message
        })
        return True

    def cancel(self, job_id: str) -> bool:
        """
        Fail the job with the cancellation message and signal its worker.

        Returns:
            False if the job is unknown or already terminal
        """
        with self._lock:
            if not self.mark_failed(job_id, CANCELLATION_MESSAGE):
                return False
            self._tokens[job_id].cancel()
            return True

    def _live_job(self, job_id: str) -> Optional[TrainingJob]:
        job = self._jobs.get(job_id)
        if job is None or job.status.is_terminal:
            return None
        return job
