# /forecast-training/src/model_training/core/__init__.py

"""
Core training components: job orchestration, optimization, cross-validation,
the training loop, versioning and persistence.
"""

from .cross_validation import CrossValidationEngine, CrossValidationResult, FoldResult
from .dataset import (
    encode_features,
    encode_records,
    generate_synthetic_records,
    records_from_dataset,
    train_validation_split,
)
from .hyperparameter_optimizer import (
    HyperparameterOptimizer,
    OptimizationError,
    OptimizationResult,
    StudyHandle,
    proxy_score,
)
from .job_registry import JobRegistry, JobStatus, TrainingJob, TrainingMetricsSnapshot
from .persistence import (
    FileSystemPersistence,
    InMemoryPersistence,
    RedisPersistence,
    TrainingPersistence,
    create_persistence,
)
from .pipeline_orchestrator import (
    JobStage,
    OrchestratorShutdownError,
    PipelineExecutionError,
    TrainingJobOrchestrator,
)
from .training_loop import (
    ARCHITECTURES,
    CANCELLATION_MESSAGE,
    CancellationToken,
    EpochResult,
    TrainingCancelledError,
    TrainingLoopEngine,
    TrainingRunResult,
)
from .version_manager import ModelVersion, ModelVersionManager, VersionNotFoundError

__all__ = [
    "CrossValidationEngine",
    "CrossValidationResult",
    "FoldResult",
    "encode_features",
    "encode_records",
    "generate_synthetic_records",
    "records_from_dataset",
    "train_validation_split",
    "HyperparameterOptimizer",
    "OptimizationError",
    "OptimizationResult",
    "StudyHandle",
    "proxy_score",
    "JobRegistry",
    "JobStatus",
    "TrainingJob",
    "TrainingMetricsSnapshot",
    "FileSystemPersistence",
    "InMemoryPersistence",
    "RedisPersistence",
    "TrainingPersistence",
    "create_persistence",
    "JobStage",
    "PipelineExecutionError",
    "OrchestratorShutdownError",
    "TrainingJobOrchestrator",
    "ARCHITECTURES",
    "CANCELLATION_MESSAGE",
    "CancellationToken",
    "EpochResult",
    "TrainingCancelledError",
    "TrainingLoopEngine",
    "TrainingRunResult",
    "ModelVersion",
    "ModelVersionManager",
    "VersionNotFoundError",
]
