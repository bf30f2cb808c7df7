# /forecast-training/src/model_training/config/__init__.py

"""
Configuration for the training job orchestrator.
"""

from .hyperparameters import (
    ContinuousRange,
    DiscreteChoice,
    HyperparameterConfig,
    IntegerRange,
)
from .training_config import (
    ConfigurationError,
    ConfigurationValidator,
    DEFAULT_HYPERPARAMETERS,
    MonitoringConfig,
    OrchestratorConfig,
    PersistenceConfig,
    PipelineConfig,
    TrainingLoopConfig,
    TrainingOptions,
    load_pipeline_config,
)

__all__ = [
    "ContinuousRange",
    "DiscreteChoice",
    "HyperparameterConfig",
    "IntegerRange",
    "ConfigurationError",
    "ConfigurationValidator",
    "DEFAULT_HYPERPARAMETERS",
    "MonitoringConfig",
    "OrchestratorConfig",
    "PersistenceConfig",
    "PipelineConfig",
    "TrainingLoopConfig",
    "TrainingOptions",
    "load_pipeline_config",
]
