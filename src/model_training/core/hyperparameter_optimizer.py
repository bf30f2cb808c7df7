# /forecast-training/src/model_training/core/hyperparameter_optimizer.py

"""
HyperparameterOptimizer: Random Search over a Declared Search Space

Samples candidate hyperparameter sets through an in-memory Optuna study and
keeps only the best one seen.

Key Features:
- Optuna `RandomSampler` seeded from the job's random source, so every
  parameter is drawn independently: log-uniform or uniform floats, uniform
  picks from discrete sets, and uniform integers inclusive of both bounds
- Pluggable candidate evaluator; the default is a cheap proxy score
- Search space validated before the first trial
- Cooperative cancellation checked before every trial

Architecture:
- A `StudyHandle` callback tracks the best candidate; a later trial replaces
  it only with a strictly greater score, so the first best wins ties
- No trial history is retained beyond the best candidate
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import numpy as np
import optuna
from optuna.samplers import RandomSampler

from ..config.hyperparameters import ContinuousRange, HyperparameterConfig
from ..config.training_config import ConfigurationError
from .training_loop import CancellationToken, TrainingCancelledError


Evaluator = Callable[[Dict[str, Any], np.random.Generator], float]


def proxy_score(params: Dict[str, Any], rng: np.random.Generator) -> float:
    """
    Cheap stand-in for training a candidate.

    Starts at 0.8, rewards a moderate learning rate (+0.05), a batch size of
    32 or 64 (+0.03) and moderate dropout (+0.02), adds uniform noise in
    [-0.05, 0.05) and caps the result at 0.95.
    """
    score = 0.8

    if 0.001 < params['learning_rate'] < 0.01:
        score += 0.05
    if params['batch_size'] in (32, 64):
        score += 0.03
    if 0.1 < params['dropout'] < 0.5:
        score += 0.02

    score += rng.uniform(-0.05, 0.05)

    return min(score, 0.95)


@dataclass
class StudyHandle:
    """
    Best-candidate tracking for one Optuna study.
    """
    study: optuna.Study
    study_id: str
    model_name: str
    creation_timestamp: datetime = field(default_factory=datetime.now)
    n_trials_completed: int = 0
    best_score: float = float('-inf')
    best_params: Optional[Dict[str, Any]] = None

    def update_progress(self, study: optuna.Study, trial: optuna.trial.FrozenTrial) -> None:
        """Optuna callback run after each completed trial."""
        self.n_trials_completed += 1

        if trial.value is not None and trial.value > self.best_score:
            self.best_score = trial.value
            self.best_params = dict(trial.params)

    @property
    def progress_summary(self) -> Dict[str, Any]:
        return {
            'study_id': self.study_id,
            'model_name': self.model_name,
            'n_trials_completed': self.n_trials_completed,
            'best_score': self.best_score,
            'best_params': self.best_params
        }


@dataclass
class OptimizationResult:
    best_params: Dict[str, Any]
    best_score: float
    trials_run: int
    optimization_time: float
    study_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'study_id': self.study_id,
            'best_params': dict(self.best_params),
            'best_score': self.best_score,
            'trials_run': self.trials_run,
            'optimization_time': self.optimization_time
        }


class HyperparameterOptimizer:
    """
    Random-search optimizer for training hyperparameters.
    """

    def __init__(self, evaluator: Optional[Evaluator] = None):
        self.evaluator = evaluator or proxy_score
        self.logger = logging.getLogger(__name__)

        optuna.logging.set_verbosity(optuna.logging.WARNING)

    def optimize(self, model_name: str,
                 config: HyperparameterConfig,
                 max_trials: int,
                 rng: np.random.Generator,
                 job_id: Optional[str] = None,
                 cancellation: Optional[CancellationToken] = None) -> OptimizationResult:
        """
        Run `max_trials` random-search trials and return the best candidate.

        Raises:
            ConfigurationError: If the search space or trial budget is invalid
            TrainingCancelledError: If cancelled between trials
            OptimizationError: If a trial fails unexpectedly
        """
        errors = config.validate()
        if not isinstance(max_trials, int) or max_trials < 1:
            errors.append(f"Max trials must be at least 1: {max_trials}")
        if errors:
            raise ConfigurationError(f"Invalid hyperparameter configuration: {errors}")

        study_handle = self._create_study(model_name, rng)

        def objective(trial: optuna.Trial) -> float:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            params = self.suggest(trial, config)
            return float(self.evaluator(params, rng))

        start_time = time.time()
        self.logger.info("optimization.started", extra={
            'component': 'HyperparameterOptimizer',
            'action': 'optimize',
            'job_id': job_id,
            'model_name': model_name,
            'study_id': study_handle.study_id,
            'max_trials': max_trials
        })

        try:
            study_handle.study.optimize(
                objective,
                n_trials=max_trials,
                callbacks=[study_handle.update_progress],
                gc_after_trial=False,
                show_progress_bar=False
            )
        except (ConfigurationError, TrainingCancelledError):
            raise
        except Exception as e:
            self.logger.error("optimization.failed", extra={
                'component': 'HyperparameterOptimizer',
                'action': 'optimize',
                'job_id': job_id,
                'study_id': study_handle.study_id,
                'error': str(e)
            }, exc_info=True)
            raise OptimizationError(f"Hyperparameter optimization failed: {e}") from e

        if study_handle.best_params is None:
            raise OptimizationError(f"No trial produced a score for {model_name}")

        result = OptimizationResult(
            best_params=study_handle.best_params,
            best_score=study_handle.best_score,
            trials_run=study_handle.n_trials_completed,
            optimization_time=time.time() - start_time,
            study_id=study_handle.study_id
        )

        self.logger.info("optimization.completed", extra={
            'component': 'HyperparameterOptimizer',
            'action': 'optimize',
            'job_id': job_id,
            **study_handle.progress_summary,
            'optimization_time': result.optimization_time
        })

        return result

    @staticmethod
    def suggest(trial: optuna.Trial, config: HyperparameterConfig) -> Dict[str, Any]:
        """Draw one candidate, every parameter independently."""
        return {
            'learning_rate': _suggest_continuous(trial, 'learning_rate', config.learning_rate),
            'batch_size': trial.suggest_categorical('batch_size', list(config.batch_size.values)),
            'epochs': trial.suggest_int('epochs', int(config.epochs.min), int(config.epochs.max)),
            'dropout': _suggest_continuous(trial, 'dropout', config.dropout),
            'hidden_size': trial.suggest_categorical('hidden_size', list(config.hidden_size.values)),
            'num_layers': trial.suggest_int('num_layers', int(config.num_layers.min),
                                            int(config.num_layers.max)),
        }

    def _create_study(self, model_name: str, rng: np.random.Generator) -> StudyHandle:
        study_id = f"{model_name}_{uuid.uuid4().hex[:8]}"
        sampler = RandomSampler(seed=int(rng.integers(0, 2**32 - 1)))
        study = optuna.create_study(
            study_name=study_id,
            direction='maximize',
            sampler=sampler
        )
        return StudyHandle(study=study, study_id=study_id, model_name=model_name)


def _suggest_continuous(trial: optuna.Trial, name: str, spec: ContinuousRange) -> float:
    return trial.suggest_float(name, float(spec.min), float(spec.max), log=spec.is_log)


# Custom exceptions
class OptimizationError(Exception):
    """Raised when optimization fails for a reason other than configuration."""
    pass
