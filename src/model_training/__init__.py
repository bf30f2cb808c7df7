# /forecast-training/src/model_training/__init__.py

"""
Model Training Orchestration for Forecast Models

Job-based training engine: hyperparameter search, k-fold cross-validation,
an epoch loop with early stopping and learning-rate decay, and model
versioning with a single active version per model.

Key Features:
- Jobs run on a worker pool and are observed by polling snapshots
- Cooperative cancellation at batch, fold and trial boundaries
- Seedable randomness with an independent generator per job
- Pluggable persistence for checkpoints and metrics (memory, files, Redis)
- Configuration management for multiple environments

Core Components:
- HyperparameterOptimizer: Optuna random search over a declared space
- CrossValidationEngine: contiguous-block k-fold diagnostics
- TrainingLoopEngine: batching, weight updates, early stopping, LR decay
- ModelVersionManager: version history and atomic activation
- TrainingJobOrchestrator: job lifecycle and stage sequencing
"""

from typing import Optional

from .core.cross_validation import CrossValidationEngine, CrossValidationResult
from .core.hyperparameter_optimizer import HyperparameterOptimizer, OptimizationError, OptimizationResult
from .core.job_registry import JobRegistry, JobStatus, TrainingJob
from .core.persistence import (
    FileSystemPersistence,
    InMemoryPersistence,
    RedisPersistence,
    TrainingPersistence,
    create_persistence,
)
from .core.pipeline_orchestrator import (
    OrchestratorShutdownError,
    PipelineExecutionError,
    TrainingJobOrchestrator,
)
from .core.training_loop import TrainingCancelledError, TrainingLoopEngine
from .core.version_manager import ModelVersion, ModelVersionManager, VersionNotFoundError

from .config.hyperparameters import ContinuousRange, DiscreteChoice, HyperparameterConfig, IntegerRange
from .config.training_config import (
    ConfigurationError,
    MonitoringConfig,
    OrchestratorConfig,
    PersistenceConfig,
    PipelineConfig,
    TrainingLoopConfig,
    TrainingOptions,
    load_pipeline_config,
)

from .utils.logging import TrainingLogger, setup_training_logging

__version__ = "1.0.0"
__author__ = "Forecast Training Development Team"

__all__ = [
    # Core components
    "CrossValidationEngine",
    "CrossValidationResult",
    "HyperparameterOptimizer",
    "OptimizationError",
    "OptimizationResult",
    "JobRegistry",
    "JobStatus",
    "TrainingJob",
    "FileSystemPersistence",
    "InMemoryPersistence",
    "RedisPersistence",
    "TrainingPersistence",
    "create_persistence",
    "PipelineExecutionError",
    "OrchestratorShutdownError",
    "TrainingJobOrchestrator",
    "TrainingCancelledError",
    "TrainingLoopEngine",
    "ModelVersion",
    "ModelVersionManager",
    "VersionNotFoundError",

    # Configuration
    "ContinuousRange",
    "DiscreteChoice",
    "HyperparameterConfig",
    "IntegerRange",
    "ConfigurationError",
    "MonitoringConfig",
    "OrchestratorConfig",
    "PersistenceConfig",
    "PipelineConfig",
    "TrainingLoopConfig",
    "TrainingOptions",
    "load_pipeline_config",

    # Utilities
    "TrainingLogger",
    "setup_training_logging",
    "create_orchestrator",
]


def create_orchestrator(config_path: Optional[str] = None,
                        environment: str = "development") -> TrainingJobOrchestrator:
    """
    Factory function to create a fully configured orchestrator.

    Args:
        config_path: Path to custom configuration file
        environment: Environment name (development, testing, production)

    Returns:
        TrainingJobOrchestrator with persistence built from configuration

    Examples:
        # Development orchestrator with defaults
        orchestrator = create_orchestrator()

        # Production orchestrator with custom config
        orchestrator = create_orchestrator("config/custom.yaml", "production")
    """
    config = load_pipeline_config(config_path, environment)

    setup_training_logging(**config.monitoring.to_logging_dict())

    persistence = create_persistence(config.persistence)

    return TrainingJobOrchestrator(config=config, persistence=persistence)
