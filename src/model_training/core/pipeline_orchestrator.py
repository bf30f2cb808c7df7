# /forecast-training/src/model_training/core/pipeline_orchestrator.py

"""
TrainingJobOrchestrator: Staged Training Jobs on a Worker Pool

Public entry point of the training engine. Each `start_training` call
registers a job and runs its stages on a worker thread:

    hyperparameter optimization (optional)   -> progress 10
    cross-validation (optional)              -> progress 30
    training loop                            -> progress 50..90 by epoch
    versioning and activation                -> progress 90, then 100

Key Features:
- Jobs are observed only by polling snapshots; no exception ever reaches
  the caller from a running job
- Invalid options fail the job synchronously without scheduling work
- Cooperative cancellation through a per-job token, honoured between
  trials, folds, epochs and batches
- Per-job random generators spawned from one seedable SeedSequence

Architecture:
- JobRegistry owns job state and enforces the lifecycle
- ModelVersionManager owns versions and the single-active invariant
- Stage boundaries are logged through `stage_logging`
- Persistence failures are logged and never fail a job
"""

import copy
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np

from ..config.training_config import (
    ConfigurationError,
    PipelineConfig,
    TrainingOptions,
)
from ..utils.logging import stage_logging
from .cross_validation import CrossValidationEngine, CrossValidationResult
from .dataset import Record, records_from_dataset, train_validation_split
from .hyperparameter_optimizer import HyperparameterOptimizer
from .job_registry import JobRegistry, TrainingJob
from .persistence import TrainingPersistence, create_persistence
from .training_loop import (
    CANCELLATION_MESSAGE,
    CancellationToken,
    EpochResult,
    TrainingCancelledError,
    TrainingLoopEngine,
    TrainingRunResult,
)
from .version_manager import ModelVersion, ModelVersionManager


class JobStage(Enum):
    """Stages of a training job, in execution order."""
    HYPERPARAMETER_OPTIMIZATION = "hyperparameter_optimization"
    CROSS_VALIDATION = "cross_validation"
    TRAINING = "training"
    VERSIONING = "versioning"


STAGE_PROGRESS = {
    JobStage.HYPERPARAMETER_OPTIMIZATION: 10,
    JobStage.CROSS_VALIDATION: 30,
    JobStage.TRAINING: 50,
    JobStage.VERSIONING: 90,
}

TRAINING_PROGRESS_SPAN = 40


def training_progress(epoch: int, total_epochs: int) -> int:
    """Progress after `epoch` of `total_epochs`: 50 at the start, 90 at the end."""
    start = STAGE_PROGRESS[JobStage.TRAINING]
    return start + (TRAINING_PROGRESS_SPAN * epoch) // total_epochs


@dataclass
class JobContext:
    """
    Worker-side state carried between the stages of one job.
    """
    job_id: str
    model_name: str
    records: List[Record]
    options: TrainingOptions
    rng: np.random.Generator
    cancellation: CancellationToken
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    cross_validation: Optional[CrossValidationResult] = None
    run_result: Optional[TrainingRunResult] = None
    version: Optional[ModelVersion] = None


class TrainingJobOrchestrator:
    """
    Creates, runs and tracks training jobs.

    Collaborators are injectable; anything not supplied is built from
    `config`.
    """

    def __init__(self, config: Optional[PipelineConfig] = None,
                 persistence: Optional[TrainingPersistence] = None,
                 optimizer: Optional[HyperparameterOptimizer] = None,
                 version_manager: Optional[ModelVersionManager] = None,
                 job_registry: Optional[JobRegistry] = None):
        self.config = config or PipelineConfig()
        self.logger = logging.getLogger(__name__)

        self.persistence = persistence if persistence is not None else create_persistence(
            self.config.persistence)
        self.training_engine = TrainingLoopEngine(self.persistence, self.config.training)
        self.cv_engine = CrossValidationEngine(self.training_engine)
        self.optimizer = optimizer or HyperparameterOptimizer()
        self.version_manager = version_manager or ModelVersionManager()
        self.jobs = job_registry or JobRegistry()

        self._seed_sequence = np.random.SeedSequence(self.config.orchestrator.random_seed)
        self._seed_lock = threading.Lock()

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.orchestrator.max_concurrent_jobs,
            thread_name_prefix="training-job"
        )
        # Guards _futures and _shutdown; submit happens under it
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._shutdown = False

        self.logger.info("training_orchestrator.initialized", extra={
            'component': 'TrainingJobOrchestrator',
            'action': 'initialize',
            'max_concurrent_jobs': self.config.orchestrator.max_concurrent_jobs,
            'random_seed': self.config.orchestrator.random_seed,
            'persistence': type(self.persistence).__name__
        })

    def __enter__(self) -> 'TrainingJobOrchestrator':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)

    # Job lifecycle

    def start_training(self, model_name: str, dataset: Any,
                       options: Optional[Union[TrainingOptions, Mapping[str, Any]]] = None) -> str:
        """
        Register a training job and schedule it.

        Invalid options or an unusable dataset do not raise: the job is
        registered, failed immediately with the configuration error, and its
        id returned.

        Args:
            model_name: Model to train; selects the network architecture
            dataset: Records, DataFrame or 2-D array (last column target)
            options: TrainingOptions or an equivalent mapping

        Returns:
            Job id

        Raises:
            OrchestratorShutdownError: If the orchestrator has been shut down
        """
        with self._lock:
            if self._shutdown:
                raise OrchestratorShutdownError("Orchestrator has been shut down")

        errors: List[str] = []
        records: List[Record] = []
        try:
            records = records_from_dataset(dataset, self.config.training.target_field)
        except (ConfigurationError, TypeError) as e:
            errors.append(str(e))

        resolved = TrainingOptions().resolve(self.config.orchestrator, self.config.training)
        try:
            if options is None:
                parsed = TrainingOptions()
            elif isinstance(options, TrainingOptions):
                parsed = options
            else:
                parsed = TrainingOptions.from_dict(options)
            resolved = parsed.resolve(self.config.orchestrator, self.config.training)
            errors.extend(resolved.validate(len(records)))
        except ConfigurationError as e:
            errors.append(str(e))
        except (AttributeError, TypeError, ValueError) as e:
            errors.append(f"Invalid training options: {e}")

        hyperparameters = {
            **self.config.training.default_hyperparameters,
            'epochs': resolved.epochs,
            **resolved.hyperparameters
        }

        job = self.jobs.create(
            model_name=model_name,
            dataset_size=len(records),
            total_epochs=resolved.epochs if isinstance(resolved.epochs, int) else 0,
            validation_split=resolved.validation_split,
            hyperparameters=hyperparameters
        )

        self.logger.info("training_job.created", extra={
            'component': 'TrainingJobOrchestrator',
            'action': 'start_training',
            'job_id': job.job_id,
            'model_name': model_name,
            'dataset_size': len(records),
            'total_epochs': job.total_epochs,
            'optimize_hyperparameters': resolved.optimize_hyperparameters,
            'cross_validation': resolved.cross_validation
        })

        if errors:
            message = f"Configuration error: {'; '.join(errors)}"
            self.jobs.mark_failed(job.job_id, message)
            self.logger.warning("training_job.rejected", extra={
                'component': 'TrainingJobOrchestrator',
                'action': 'start_training',
                'job_id': job.job_id,
                'errors': errors
            })
            self._record_job_metrics(job.job_id, model_name, 0.0)
            return job.job_id

        context = JobContext(
            job_id=job.job_id,
            model_name=model_name,
            records=records,
            options=resolved,
            rng=self._spawn_rng(),
            cancellation=self.jobs.cancellation_token(job.job_id),
            hyperparameters=hyperparameters
        )

        try:
            with self._lock:
                if self._shutdown:
                    raise OrchestratorShutdownError("Orchestrator has been shut down")
                future = self._executor.submit(self._run_job, context)
                self._futures[job.job_id] = future
        except (OrchestratorShutdownError, RuntimeError) as e:
            self.jobs.mark_failed(job.job_id, f"Job could not be scheduled: {e}")
            self._record_job_metrics(job.job_id, model_name, 0.0)
            raise OrchestratorShutdownError(f"Job {job.job_id} could not be scheduled: {e}") from e

        # Outside the lock: runs inline if the job already finished
        future.add_done_callback(lambda done: self._forget_future(job.job_id, done))

        return job.job_id

    def stop_training_job(self, job_id: str) -> bool:
        """
        Cancel a pending or running job.

        The job is failed immediately with the cancellation message; its
        worker stops at the next batch, fold or trial boundary.

        Returns:
            False if the job is unknown or already terminal
        """
        stopped = self.jobs.cancel(job_id)

        if stopped:
            self.logger.info("training_job.stopped", extra={
                'component': 'TrainingJobOrchestrator',
                'action': 'stop_training',
                'job_id': job_id
            })

        return stopped

    def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> Optional[TrainingJob]:
        """
        Block until the job's worker finishes or `timeout` elapses.

        Returns:
            Latest job snapshot, or None for an unknown job
        """
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            wait_for_futures([future], timeout=timeout)
        return self.jobs.get(job_id)

    def shutdown(self, wait: bool = True, cancel_jobs: bool = False) -> None:
        """Stop accepting jobs; optionally cancel every active one."""
        with self._lock:
            self._shutdown = True

        if cancel_jobs:
            for job in self.jobs.active():
                self.stop_training_job(job.job_id)

        self._executor.shutdown(wait=wait)

        self.logger.info("training_orchestrator.shutdown", extra={
            'component': 'TrainingJobOrchestrator',
            'action': 'shutdown',
            'cancel_jobs': cancel_jobs
        })

    # Queries

    def get_training_job(self, job_id: str) -> Optional[TrainingJob]:
        return self.jobs.get(job_id)

    def get_all_training_jobs(self) -> List[TrainingJob]:
        return self.jobs.all()

    def get_active_training_jobs(self) -> List[TrainingJob]:
        return self.jobs.active()

    def get_model_versions(self, model_name: str) -> List[ModelVersion]:
        return self.version_manager.get_all_versions(model_name)

    def activate_model_version(self, model_name: str, version_id: str) -> ModelVersion:
        """
        Raises:
            VersionNotFoundError: If `version_id` does not exist for `model_name`
        """
        return self.version_manager.activate_version(model_name, version_id)

    def get_active_model_version(self, model_name: str) -> Optional[ModelVersion]:
        return self.version_manager.get_active_version(model_name)

    # Worker

    def _run_job(self, context: JobContext) -> None:
        """Execute every stage of one job; never raises."""
        job_id = context.job_id
        start_time = time.time()

        try:
            if not self.jobs.mark_running(job_id):
                return

            self.logger.info("training_job.started", extra={
                'component': 'TrainingJobOrchestrator',
                'action': 'run_job',
                'job_id': job_id,
                'model_name': context.model_name
            })

            if context.options.optimize_hyperparameters:
                self._execute_hyperparameter_optimization(context)

            if context.options.cross_validation:
                self._execute_cross_validation(context)

            self._execute_training(context)
            self._execute_versioning(context)

            self.logger.info("training_job.completed", extra={
                'component': 'TrainingJobOrchestrator',
                'action': 'run_job',
                'job_id': job_id,
                'model_name': context.model_name,
                'version_id': context.version.version_id if context.version else None,
                'duration': time.time() - start_time
            })

        except TrainingCancelledError:
            self.jobs.mark_failed(job_id, CANCELLATION_MESSAGE)
            self.logger.info("training_job.cancelled", extra={
                'component': 'TrainingJobOrchestrator',
                'action': 'run_job',
                'job_id': job_id,
                'model_name': context.model_name
            })

        except Exception as e:
            message = str(e) or type(e).__name__
            self.jobs.mark_failed(job_id, message)
            self.logger.error("training_job.failed", extra={
                'component': 'TrainingJobOrchestrator',
                'action': 'run_job',
                'job_id': job_id,
                'model_name': context.model_name,
                'error': message,
                'error_type': type(e).__name__
            }, exc_info=True)

        finally:
            self._record_job_metrics(job_id, context.model_name, time.time() - start_time)

    def _execute_hyperparameter_optimization(self, context: JobContext) -> None:
        stage = JobStage.HYPERPARAMETER_OPTIMIZATION
        with stage_logging(self.logger, stage.value, job_id=context.job_id):
            context.cancellation.raise_if_cancelled()
            self.jobs.set_progress(context.job_id, STAGE_PROGRESS[stage])

            result = self.optimizer.optimize(
                model_name=context.model_name,
                config=context.options.hyperparameter_config,
                max_trials=context.options.max_trials,
                rng=context.rng,
                job_id=context.job_id,
                cancellation=context.cancellation
            )

            # Explicit per-job overrides win over sampled values
            context.hyperparameters = {
                **context.hyperparameters,
                **result.best_params,
                **context.options.hyperparameters
            }
            self.jobs.update(context.job_id, hyperparameters=context.hyperparameters)

            self._record_metric(f"hyperopt_{context.model_name}_best_score", result.best_score,
                                {'job_id': context.job_id})

    def _execute_cross_validation(self, context: JobContext) -> None:
        stage = JobStage.CROSS_VALIDATION
        with stage_logging(self.logger, stage.value, job_id=context.job_id):
            context.cancellation.raise_if_cancelled()
            self.jobs.set_progress(context.job_id, STAGE_PROGRESS[stage])

            result = self.cv_engine.cross_validate(
                model_name=context.model_name,
                records=context.records,
                k=context.options.folds,
                hyperparameters=context.hyperparameters,
                rng=context.rng,
                epochs=context.options.fold_epochs,
                shuffle=context.options.shuffle_folds,
                job_id=context.job_id,
                cancellation=context.cancellation
            )

            context.cross_validation = result
            self.jobs.update(context.job_id, cross_validation=result)

            self._record_metric(f"cross_validation_{context.model_name}_mean_accuracy",
                                result.mean_accuracy, {'job_id': context.job_id})

    def _execute_training(self, context: JobContext) -> None:
        stage = JobStage.TRAINING
        total_epochs = context.options.epochs
        job_id = context.job_id

        with stage_logging(self.logger, stage.value, job_id=job_id, total_epochs=total_epochs):
            context.cancellation.raise_if_cancelled()
            self.jobs.set_progress(job_id, STAGE_PROGRESS[stage])

            train_records, validation_records = train_validation_split(
                context.records, context.options.validation_split, context.rng)

            def on_epoch_end(result: EpochResult) -> None:
                self.jobs.record_epoch(job_id, result, training_progress(result.epoch, total_epochs))

            context.run_result = self.training_engine.train(
                model_name=context.model_name,
                train_records=train_records,
                validation_records=validation_records,
                hyperparameters=context.hyperparameters,
                total_epochs=total_epochs,
                rng=context.rng,
                job_id=job_id,
                cancellation=context.cancellation,
                on_epoch_end=on_epoch_end,
                persist=True
            )

    def _execute_versioning(self, context: JobContext) -> None:
        stage = JobStage.VERSIONING
        job_id = context.job_id
        run = context.run_result

        with stage_logging(self.logger, stage.value, job_id=job_id):
            context.cancellation.raise_if_cancelled()
            self.jobs.set_progress(job_id, STAGE_PROGRESS[stage])

            artifact_path = str(Path(self.config.orchestrator.artifact_root)
                                / context.model_name / job_id)
            metadata = {
                'job_id': job_id,
                'hyperparameters': copy.deepcopy(context.hyperparameters),
                'cross_validation': (context.cross_validation.to_dict()
                                     if context.cross_validation else None),
                'epochs_run': run.epochs_run,
                'stopped_early': run.stopped_early,
                'best_epoch': run.best_epoch,
                'best_validation_loss': run.best_validation_loss,
                'metrics': run.final.metrics()
            }

            activated = False

            def finalize() -> str:
                nonlocal activated
                version = self.version_manager.create_version(
                    context.model_name,
                    accuracy=run.final.validation_accuracy,
                    artifact_path=artifact_path,
                    metadata=metadata
                )
                activated = self.version_manager.activate_if_best(context.model_name, version.version_id)
                context.version = version
                return version.version_id

            # A stop that wins the race leaves no version behind
            if self.jobs.complete_with(job_id, finalize) is None:
                raise TrainingCancelledError(CANCELLATION_MESSAGE)

            self.logger.info("model_version.recorded", extra={
                'component': 'TrainingJobOrchestrator',
                'action': 'versioning',
                'job_id': job_id,
                'version_id': context.version.version_id,
                'accuracy': context.version.accuracy,
                'activated': activated
            })

    # Helpers

    def _forget_future(self, job_id: str, future: Future) -> None:
        with self._lock:
            if self._futures.get(job_id) is future:
                del self._futures[job_id]

    def _spawn_rng(self) -> np.random.Generator:
        with self._seed_lock:
            child = self._seed_sequence.spawn(1)[0]
        return np.random.default_rng(child)

    def _record_metric(self, name: str, value: float, tags: Dict[str, str]) -> None:
        try:
            self.persistence.record_metric(name, value, tags)
        except Exception as e:
            self.logger.warning("metrics.store_failed", extra={
                'component': 'TrainingJobOrchestrator',
                'action': 'record_metric',
                'metric_name': name,
                'error': str(e)
            })

    def _record_job_metrics(self, job_id: str, model_name: str, duration: float) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            return
        tags = {'job_id': job_id, 'model_name': model_name, 'status': job.status.value}
        self._record_metric("training_job.duration_seconds", duration, tags)
        self._record_metric(f"training_job.{job.status.value}", 1.0, tags)


# Custom exceptions
class PipelineExecutionError(Exception):
    """Base for orchestrator errors raised to callers."""
    pass


class OrchestratorShutdownError(PipelineExecutionError):
    """Raised when a job is submitted to an orchestrator that is shut down."""
    pass
