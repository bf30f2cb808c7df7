# /forecast-training/src/model_training/config/training_config.py

"""
Training Configuration Management

Hierarchical configuration for the training job orchestrator with
environment-specific overrides and validation.

Key Features:
- YAML-based configuration with environment-specific overrides
- Environment variable overrides for deployment knobs
- Immutable configuration objects with `validate()` error reporting
- Per-job `TrainingOptions` accepted either as a dataclass or a plain dict

Architecture:
- Section dataclasses (orchestrator, training loop, persistence, monitoring)
  aggregated by `PipelineConfig`
- Hierarchical merging: defaults <- YAML file <- environment <- env vars
"""

import os
import math
import logging
import numbers
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from .hyperparameters import HyperparameterConfig


DEFAULT_HYPERPARAMETERS: Dict[str, Any] = {
    "learning_rate": 0.001,
    "batch_size": 32,
    "dropout": 0.2,
    "hidden_size": 256,
    "num_layers": 3,
}


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Configuration for job scheduling and version artifacts.
    """
    max_concurrent_jobs: int = 4
    random_seed: Optional[int] = None
    artifact_root: str = "models"
    default_epochs: int = 100
    default_validation_split: float = 0.2

    def validate(self) -> List[str]:
        """Validate orchestrator configuration parameters."""
        errors = []

        if self.max_concurrent_jobs <= 0:
            errors.append(f"Max concurrent jobs must be positive: {self.max_concurrent_jobs}")

        if self.random_seed is not None and self.random_seed < 0:
            errors.append(f"Random seed must be non-negative: {self.random_seed}")

        if self.default_epochs <= 0:
            errors.append(f"Default epochs must be positive: {self.default_epochs}")

        if not 0 < self.default_validation_split < 1:
            errors.append(f"Validation split must be between 0 and 1: {self.default_validation_split}")

        return errors


@dataclass(frozen=True)
class TrainingLoopConfig:
    """
    Configuration for the epoch loop.
    """
    patience: int = 10
    lr_decay_interval: int = 10
    lr_decay_factor: float = 0.9
    accuracy_tolerance: float = 0.5
    target_field: str = "target"
    fold_epochs: int = 5
    default_hyperparameters: Dict[str, Any] = field(
        default_factory=lambda: dict(DEFAULT_HYPERPARAMETERS)
    )

    def validate(self) -> List[str]:
        """Validate training loop configuration parameters."""
        errors = []

        if self.patience <= 0:
            errors.append(f"Early stopping patience must be positive: {self.patience}")

        if self.lr_decay_interval <= 0:
            errors.append(f"Learning rate decay interval must be positive: {self.lr_decay_interval}")

        if not 0 < self.lr_decay_factor <= 1:
            errors.append(f"Learning rate decay factor must be in (0, 1]: {self.lr_decay_factor}")

        if self.accuracy_tolerance <= 0:
            errors.append(f"Accuracy tolerance must be positive: {self.accuracy_tolerance}")

        if not self.target_field:
            errors.append("Target field cannot be empty")

        if self.fold_epochs <= 0:
            errors.append(f"Fold epochs must be positive: {self.fold_epochs}")

        return errors


@dataclass(frozen=True)
class PersistenceConfig:
    """
    Configuration for checkpoint and metric persistence.
    """
    backend: str = "memory"  # memory, filesystem, redis
    base_dir: str = "models/training_state"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    max_checkpoints_per_model: Optional[int] = 3  # memory backend; None keeps all
    max_metric_records: Optional[int] = 10_000

    def validate(self) -> List[str]:
        """Validate persistence configuration parameters."""
        errors = []

        valid_backends = ["memory", "filesystem", "redis"]
        if self.backend.lower() not in valid_backends:
            errors.append(f"Invalid persistence backend: {self.backend}")

        if not 0 < self.redis_port < 65536:
            errors.append(f"Redis port out of range: {self.redis_port}")

        if self.redis_db < 0:
            errors.append(f"Redis db must be non-negative: {self.redis_db}")

        for name in ("max_checkpoints_per_model", "max_metric_records"):
            bound = getattr(self, name)
            if bound is not None and bound < 1:
                errors.append(f"{name} must be at least 1: {bound}")

        return errors


@dataclass(frozen=True)
class MonitoringConfig:
    """
    Configuration for logging.
    """
    log_level: str = "INFO"
    log_format: str = "text"  # json, text
    log_dir: str = "logs/training"
    log_file_prefix: str = "training"
    log_rotation_size_mb: int = 100
    log_retention_count: int = 10
    enable_console: bool = True
    enable_file: bool = False

    def validate(self) -> List[str]:
        """Validate monitoring configuration parameters."""
        errors = []

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            errors.append(f"Invalid log level: {self.log_level}")

        valid_log_formats = ["json", "text"]
        if self.log_format.lower() not in valid_log_formats:
            errors.append(f"Invalid log format: {self.log_format}")

        if self.log_rotation_size_mb <= 0:
            errors.append(f"Log rotation size must be positive: {self.log_rotation_size_mb}")

        if self.log_retention_count < 0:
            errors.append(f"Log retention count must be non-negative: {self.log_retention_count}")

        return errors

    def to_logging_dict(self) -> Dict[str, Any]:
        """Flatten into the dictionary consumed by TrainingLogger."""
        return {
            'log_level': self.log_level.upper(),
            'log_format': self.log_format.lower(),
            'log_dir': self.log_dir,
            'log_file_prefix': self.log_file_prefix,
            'log_rotation_size_mb': self.log_rotation_size_mb,
            'log_retention_count': self.log_retention_count,
            'enable_console': self.enable_console,
            'enable_file': self.enable_file,
        }


@dataclass(frozen=True)
class PipelineConfig:
    """
    Master configuration combining all section configurations.
    """
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    training: TrainingLoopConfig = field(default_factory=TrainingLoopConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    environment: str = "development"
    version: str = "1.0.0"

    def validate(self) -> List[str]:
        """Validate complete pipeline configuration."""
        errors = []

        errors.extend(self.orchestrator.validate())
        errors.extend(self.training.validate())
        errors.extend(self.persistence.validate())
        errors.extend(self.monitoring.validate())

        if self.environment.lower() not in ["development", "testing", "production"]:
            errors.append(f"Unknown environment: {self.environment}")

        return errors

    def is_production_environment(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"



def _validate_loop_hyperparameters(hyperparameters: Mapping[str, Any]) -> List[str]:
    """Type-check the explicit values the training loop consumes."""
    errors = []

    if 'learning_rate' in hyperparameters:
        learning_rate = hyperparameters['learning_rate']
        if (isinstance(learning_rate, bool) or not isinstance(learning_rate, numbers.Real)
                or not math.isfinite(learning_rate) or learning_rate <= 0):
            errors.append(f"Learning rate must be a positive number: {learning_rate!r}")

    if 'batch_size' in hyperparameters:
        batch_size = hyperparameters['batch_size']
        if (isinstance(batch_size, bool) or not isinstance(batch_size, numbers.Integral)
                or batch_size < 1):
            errors.append(f"Batch size must be an integer of at least 1: {batch_size!r}")

    return errors

@dataclass(frozen=True)
class TrainingOptions:
    """
    Per-job options accepted by `TrainingJobOrchestrator.start_training`.

    `epochs` and `validation_split` fall back to the orchestrator defaults
    when left as None.
    """
    epochs: Optional[int] = None
    optimize_hyperparameters: bool = False
    hyperparameter_config: Optional[HyperparameterConfig] = None
    max_trials: int = 50
    cross_validation: bool = False
    folds: int = 5
    shuffle_folds: bool = False
    fold_epochs: Optional[int] = None
    validation_split: Optional[float] = None
    hyperparameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> 'TrainingOptions':
        """
        Build options from a plain mapping.

        Accepts camelCase aliases (`crossValidation`, `maxTrials`, ...) so
        callers can forward request payloads unchanged. Unknown keys raise
        ConfigurationError.
        """
        aliases = {
            'optimizeHyperparameters': 'optimize_hyperparameters',
            'hyperparameterConfig': 'hyperparameter_config',
            'maxTrials': 'max_trials',
            'crossValidation': 'cross_validation',
            'shuffleFolds': 'shuffle_folds',
            'foldEpochs': 'fold_epochs',
            'validationSplit': 'validation_split',
        }
        if not isinstance(options, Mapping):
            raise ConfigurationError(
                f"Training options must be a mapping, got {type(options).__name__}")

        known = {f.name for f in fields(cls)}

        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            name = aliases.get(key, key)
            if name not in known:
                raise ConfigurationError(f"Unknown training option: {key}")
            kwargs[name] = value

        # Nested cross-validation block: {"cross_validation": {"folds": 3, "shuffle": true}}
        cv = kwargs.get('cross_validation')
        if isinstance(cv, Mapping):
            kwargs['cross_validation'] = True
            if 'folds' in cv:
                kwargs['folds'] = cv['folds']
            if 'shuffle' in cv:
                kwargs['shuffle_folds'] = cv['shuffle']
            if 'epochs' in cv:
                kwargs['fold_epochs'] = cv['epochs']

        if 'hyperparameters' in kwargs and not isinstance(kwargs['hyperparameters'], Mapping):
            raise ConfigurationError(
                f"Hyperparameters must be a mapping, got {type(kwargs['hyperparameters']).__name__}")

        hp_config = kwargs.get('hyperparameter_config')
        if isinstance(hp_config, Mapping):
            try:
                kwargs['hyperparameter_config'] = HyperparameterConfig.from_dict(hp_config)
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid hyperparameter config: {e}") from e

        return cls(**kwargs)

    def resolve(self, orchestrator: OrchestratorConfig,
                training: TrainingLoopConfig) -> 'TrainingOptions':
        """Fill unset values from the configured defaults."""
        return TrainingOptions(
            epochs=self.epochs if self.epochs is not None else orchestrator.default_epochs,
            optimize_hyperparameters=self.optimize_hyperparameters,
            hyperparameter_config=self.hyperparameter_config,
            max_trials=self.max_trials,
            cross_validation=self.cross_validation,
            folds=self.folds,
            shuffle_folds=self.shuffle_folds,
            fold_epochs=self.fold_epochs if self.fold_epochs is not None else training.fold_epochs,
            validation_split=(self.validation_split if self.validation_split is not None
                              else orchestrator.default_validation_split),
            hyperparameters=dict(self.hyperparameters),
        )

    def validate(self, dataset_size: int) -> List[str]:
        """Validate options against the dataset they will run on."""
        errors = []

        if dataset_size <= 0:
            errors.append("Dataset is empty")

        if self.epochs is not None and (not isinstance(self.epochs, int) or self.epochs <= 0):
            errors.append(f"Epochs must be a positive integer: {self.epochs}")

        if self.validation_split is not None and not 0 < self.validation_split < 1:
            errors.append(f"Validation split must be between 0 and 1: {self.validation_split}")

        if self.optimize_hyperparameters:
            if self.hyperparameter_config is None:
                errors.append("Hyperparameter optimization requested without a hyperparameter config")
            else:
                errors.extend(self.hyperparameter_config.validate())
            if self.max_trials < 1:
                errors.append(f"Max trials must be at least 1: {self.max_trials}")

        if self.cross_validation:
            if not isinstance(self.folds, int) or self.folds < 1:
                errors.append(f"Cross-validation folds must be at least 1: {self.folds}")
            elif dataset_size > 0 and self.folds > dataset_size:
                errors.append(
                    f"Cross-validation folds ({self.folds}) exceed dataset size ({dataset_size})"
                )
            if self.fold_epochs is not None and self.fold_epochs <= 0:
                errors.append(f"Fold epochs must be positive: {self.fold_epochs}")

        errors.extend(_validate_loop_hyperparameters(self.hyperparameters))

        return errors


class ConfigurationValidator:
    """
    Cross-section configuration validation with detailed error reporting.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def validate_configuration(self, config: PipelineConfig) -> Tuple[bool, List[str]]:
        """
        Comprehensive configuration validation.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = config.validate()

        errors.extend(self._validate_directories(config))
        errors.extend(self._validate_environment_compatibility(config))

        is_valid = len(errors) == 0

        if not is_valid:
            self.logger.error("configuration.validation_failed", extra={
                "error_count": len(errors),
                "errors": errors
            })

        return is_valid, errors

    def _validate_directories(self, config: PipelineConfig) -> List[str]:
        """Validate that directories the pipeline writes to are writable."""
        errors = []

        dirs_to_check = []
        if config.persistence.backend.lower() == "filesystem":
            dirs_to_check.append(config.persistence.base_dir)
        if config.monitoring.enable_file:
            dirs_to_check.append(config.monitoring.log_dir)

        for dir_path in dirs_to_check:
            path = Path(dir_path)
            try:
                path.mkdir(parents=True, exist_ok=True)
                test_file = path / ".permission_test"
                test_file.touch()
                test_file.unlink()
            except OSError as e:
                errors.append(f"Cannot write to directory {dir_path}: {e}")

        return errors

    def _validate_environment_compatibility(self, config: PipelineConfig) -> List[str]:
        """Validate environment-specific requirements."""
        errors = []

        if config.is_production_environment():
            if config.monitoring.log_level.upper() == "DEBUG":
                errors.append("DEBUG logging not recommended in production")

            if config.persistence.backend.lower() == "memory":
                errors.append("In-memory persistence loses checkpoints in production")

        return errors


def load_pipeline_config(config_path: Optional[Union[str, Path]] = None,
                         environment: str = "development") -> PipelineConfig:
    """
    Load pipeline configuration with environment-specific overrides.

    Args:
        config_path: Path to custom configuration file
        environment: Environment name (development, testing, production)

    Returns:
        Validated PipelineConfig object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    logger = logging.getLogger(__name__)

    try:
        base_config = _load_base_config(config_path)
        env_config = _apply_environment_overrides(base_config, environment)
        config = _create_config_object(env_config, environment)

        validator = ConfigurationValidator()
        is_valid, errors = validator.validate_configuration(config)

        if not is_valid:
            raise ConfigurationError(f"Configuration validation failed: {errors}")

        logger.info("pipeline_config.loaded", extra={
            "environment": environment,
            "config_path": str(config_path) if config_path else None,
            "persistence_backend": config.persistence.backend
        })

        return config

    except ConfigurationError:
        raise
    except Exception as e:
        logger.error("pipeline_config.load_failed", extra={
            "environment": environment,
            "config_path": str(config_path) if config_path else None,
            "error": str(e)
        })
        raise ConfigurationError(f"Failed to load pipeline configuration: {e}") from e


def _load_base_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load base configuration from YAML file."""
    if config_path is None:
        config_paths = [
            "config/training/pipeline.yaml",
            "training_pipeline.yaml"
        ]

        for path in config_paths:
            if Path(path).exists():
                config_path = path
                break
        else:
            return {}

    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_file}")

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML configuration: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_file}")

    return config


def _apply_environment_overrides(base_config: Dict[str, Any],
                                 environment: str) -> Dict[str, Any]:
    """Apply environment-specific configuration overrides."""
    env_defaults = {
        "development": {
            "monitoring": {
                "log_level": "DEBUG"
            }
        },
        "testing": {
            "orchestrator": {
                "max_concurrent_jobs": 2,
                "random_seed": 42
            },
            "monitoring": {
                "log_level": "WARNING",
                "enable_file": False
            }
        },
        "production": {
            "persistence": {
                "backend": "filesystem"
            },
            "monitoring": {
                "log_level": "INFO",
                "log_format": "json",
                "enable_file": True
            }
        }
    }

    # File values win over environment defaults
    config = _deep_merge_dicts(env_defaults.get(environment.lower(), {}), base_config)

    return _apply_environment_variables(config)


def _deep_merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value

    return result


def _apply_environment_variables(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides."""
    env_mapping = {
        "MODEL_TRAINING_LOG_LEVEL": ("monitoring", "log_level", str),
        "MODEL_TRAINING_MAX_CONCURRENT_JOBS": ("orchestrator", "max_concurrent_jobs", int),
        "MODEL_TRAINING_RANDOM_SEED": ("orchestrator", "random_seed", int),
        "MODEL_TRAINING_PERSISTENCE_BACKEND": ("persistence", "backend", str),
        "MODEL_TRAINING_ARTIFACT_ROOT": ("orchestrator", "artifact_root", str),
    }

    for env_var, (section, key, cast) in env_mapping.items():
        value = os.getenv(env_var)
        if value is not None:
            try:
                config.setdefault(section, {})[key] = cast(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value}") from e

    return config


def _create_config_object(config_dict: Dict[str, Any], environment: str) -> PipelineConfig:
    """Create PipelineConfig object from dictionary."""
    try:
        return PipelineConfig(
            orchestrator=OrchestratorConfig(**config_dict.get("orchestrator", {})),
            training=TrainingLoopConfig(**config_dict.get("training", {})),
            persistence=PersistenceConfig(**config_dict.get("persistence", {})),
            monitoring=MonitoringConfig(**config_dict.get("monitoring", {})),
            environment=environment,
        )
    except TypeError as e:
        raise ConfigurationError(f"Unknown configuration key: {e}") from e


# Custom exceptions
class ConfigurationError(Exception):
    """Raised for invalid pipeline configuration, job options or inputs."""
    pass
