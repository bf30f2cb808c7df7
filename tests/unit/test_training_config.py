"""
Unit Tests for Configuration Management

Tests YAML loading with environment overrides, environment variables,
section validation, hyperparameter search spaces and per-job options.
"""

import pytest
import yaml
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).parent.parent.parent / "src"))

from model_training.config.hyperparameters import (
    ContinuousRange,
    DiscreteChoice,
    HyperparameterConfig,
    IntegerRange,
)
from model_training.config.training_config import (
    ConfigurationError,
    OrchestratorConfig,
    PipelineConfig,
    TrainingLoopConfig,
    TrainingOptions,
    load_pipeline_config,
)


class TestLoadPipelineConfig:

    def _write(self, tmp_path, data):
        path = tmp_path / "pipeline.yaml"
        path.write_text(yaml.safe_dump(data))
        return path

    def test_file_values_override_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MODEL_TRAINING_MAX_CONCURRENT_JOBS", raising=False)
        path = self._write(tmp_path, {
            'orchestrator': {'max_concurrent_jobs': 8, 'default_epochs': 20},
            'training': {'patience': 4}
        })

        config = load_pipeline_config(path, "development")

        assert config.orchestrator.max_concurrent_jobs == 8
        assert config.orchestrator.default_epochs == 20
        assert config.training.patience == 4
        assert config.training.lr_decay_factor == 0.9
        # Development environment default
        assert config.monitoring.log_level == "DEBUG"

    def test_testing_environment_seeds_randomness(self, tmp_path):
        config = load_pipeline_config(self._write(tmp_path, {}), "testing")

        assert config.orchestrator.random_seed == 42
        assert config.monitoring.log_level == "WARNING"

    def test_environment_variables_win(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MODEL_TRAINING_MAX_CONCURRENT_JOBS", "3")
        monkeypatch.setenv("MODEL_TRAINING_RANDOM_SEED", "7")
        path = self._write(tmp_path, {'orchestrator': {'max_concurrent_jobs': 8}})

        config = load_pipeline_config(path, "development")

        assert config.orchestrator.max_concurrent_jobs == 3
        assert config.orchestrator.random_seed == 7

    def test_invalid_environment_variable(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MODEL_TRAINING_RANDOM_SEED", "not-a-number")

        with pytest.raises(ConfigurationError, match="MODEL_TRAINING_RANDOM_SEED"):
            load_pipeline_config(self._write(tmp_path, {}), "development")

    def test_unknown_key_rejected(self, tmp_path):
        path = self._write(tmp_path, {'training': {'patients': 4}})

        with pytest.raises(ConfigurationError):
            load_pipeline_config(path, "development")

    def test_invalid_values_rejected(self, tmp_path):
        path = self._write(tmp_path, {'training': {'lr_decay_factor': 1.5}})

        with pytest.raises(ConfigurationError, match="decay factor"):
            load_pipeline_config(path, "development")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_pipeline_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("orchestrator: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_pipeline_config(path)

    def test_production_uses_filesystem_persistence(self, tmp_path):
        path = self._write(tmp_path, {
            'persistence': {'base_dir': str(tmp_path / "state")},
            'monitoring': {'log_dir': str(tmp_path / "logs")}
        })

        config = load_pipeline_config(path, "production")

        assert config.persistence.backend == "filesystem"
        assert config.monitoring.log_format == "json"
        assert config.is_production_environment()


class TestSectionValidation:

    def test_defaults_are_valid(self):
        assert PipelineConfig().validate() == []

    def test_orchestrator_errors_reported(self):
        errors = OrchestratorConfig(max_concurrent_jobs=0, default_validation_split=1.0).validate()
        assert len(errors) == 2

    def test_training_loop_defaults(self):
        config = TrainingLoopConfig()
        assert config.patience == 10
        assert config.lr_decay_interval == 10
        assert config.default_hyperparameters['batch_size'] == 32


class TestHyperparameterConfig:

    def test_defaults_are_valid(self):
        assert HyperparameterConfig().validate() == []

    def test_from_dict(self):
        config = HyperparameterConfig.from_dict({
            'learning_rate': {'min': 1e-4, 'max': 1e-2, 'type': 'log'},
            'batch_size': {'values': [32, 64]},
            'epochs': {'min': 5, 'max': 10},
        })

        assert config.learning_rate == ContinuousRange(1e-4, 1e-2, "log")
        assert config.batch_size == DiscreteChoice((32, 64))
        assert config.epochs == IntegerRange(5, 10)
        assert config.hidden_size == HyperparameterConfig().hidden_size

    def test_from_dict_rejects_unknown_parameter(self):
        with pytest.raises(ValueError):
            HyperparameterConfig.from_dict({'momentum': {'min': 0, 'max': 1}})

    def test_from_dict_accepts_camel_case_parameters(self):
        config = HyperparameterConfig.from_dict({
            'learningRate': {'min': 1e-3, 'max': 1e-2},
            'batchSize': {'values': [8]},
            'hiddenSize': {'values': [64, 128]},
            'numLayers': {'min': 2, 'max': 3},
        })

        assert config.learning_rate == ContinuousRange(1e-3, 1e-2)
        assert config.batch_size == DiscreteChoice((8,))
        assert config.hidden_size == DiscreteChoice((64, 128))
        assert config.num_layers == IntegerRange(2, 3)

    def test_validation_collects_every_error(self):
        config = HyperparameterConfig(
            batch_size=DiscreteChoice(()),
            hidden_size=DiscreteChoice(()),
            learning_rate=ContinuousRange(-1.0, 0.1, "log"),
        )
        assert len(config.validate()) == 3


class TestTrainingOptions:

    def test_from_dict_accepts_camel_case(self):
        options = TrainingOptions.from_dict({
            'epochs': 5,
            'optimizeHyperparameters': True,
            'hyperparameterConfig': {'batch_size': {'values': [32]}},
            'maxTrials': 7,
            'validationSplit': 0.25,
        })

        assert options.optimize_hyperparameters
        assert options.hyperparameter_config.batch_size == DiscreteChoice((32,))
        assert options.max_trials == 7
        assert options.validation_split == 0.25

    def test_nested_cross_validation_block(self):
        options = TrainingOptions.from_dict({'cross_validation': {'folds': 3, 'shuffle': True}})

        assert options.cross_validation is True
        assert options.folds == 3
        assert options.shuffle_folds is True

    def test_unknown_option_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown training option"):
            TrainingOptions.from_dict({'epoch': 5})

    @pytest.mark.parametrize("options", [None, [("epochs", 5)], "epochs=5"])
    def test_non_mapping_options_rejected(self, options):
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            TrainingOptions.from_dict(options)

    @pytest.mark.parametrize("hyperparameters", [None, [0.01], "fast"])
    def test_non_mapping_hyperparameters_rejected(self, hyperparameters):
        with pytest.raises(ConfigurationError, match="Hyperparameters must be a mapping"):
            TrainingOptions.from_dict({'hyperparameters': hyperparameters})

    def test_invalid_hyperparameter_config_wrapped(self):
        with pytest.raises(ConfigurationError):
            TrainingOptions.from_dict({'hyperparameter_config': {'batch_size': {}}})

    def test_resolve_fills_defaults(self):
        resolved = TrainingOptions().resolve(OrchestratorConfig(), TrainingLoopConfig())

        assert resolved.epochs == 100
        assert resolved.validation_split == 0.2
        assert resolved.fold_epochs == 5

    @pytest.mark.parametrize("options, fragment", [
        (TrainingOptions(cross_validation=True, folds=0), "folds"),
        (TrainingOptions(cross_validation=True, folds=11), "exceed"),
        (TrainingOptions(epochs=0), "Epochs"),
        (TrainingOptions(validation_split=1.0), "Validation split"),
        (TrainingOptions(optimize_hyperparameters=True), "without a hyperparameter config"),
        (TrainingOptions(hyperparameters={'batch_size': 0}), "Batch size"),
        (TrainingOptions(hyperparameters={'batch_size': 2.5}), "Batch size"),
        (TrainingOptions(hyperparameters={'batch_size': "32"}), "Batch size"),
        (TrainingOptions(hyperparameters={'learning_rate': "fast"}), "Learning rate"),
        (TrainingOptions(hyperparameters={'learning_rate': 0.0}), "Learning rate"),
        (TrainingOptions(hyperparameters={'learning_rate': float("nan")}), "Learning rate"),
    ])
    def test_validate_reports_errors(self, options, fragment):
        errors = options.validate(dataset_size=10)
        assert any(fragment in e for e in errors)

    def test_valid_explicit_hyperparameters_accepted(self):
        options = TrainingOptions(hyperparameters={'learning_rate': 0.01, 'batch_size': 16})
        assert options.validate(dataset_size=10) == []

    def test_empty_dataset_reported(self):
        assert "Dataset is empty" in TrainingOptions().validate(dataset_size=0)
