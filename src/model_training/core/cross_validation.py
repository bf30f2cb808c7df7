# /forecast-training/src/model_training/core/cross_validation.py

"""
CrossValidationEngine: K-Fold Diagnostic Scoring

Splits the records into `k` contiguous validation blocks of
`fold_size = n // k` records. Fold `i` validates on
`records[i * fold_size:(i + 1) * fold_size]` and trains on everything else;
the `n % k` trailing records therefore always train and never validate.

Blocks follow input order unless `shuffle=True`, in which case the records
are permuted once with the injected random source before splitting. With
ordered input and no shuffling, fold scores are biased by that ordering.

Each fold trains a fresh network through TrainingLoopEngine with
persistence disabled; the result is diagnostic only and never feeds the
main training run.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..config.training_config import ConfigurationError
from .dataset import Record
from .training_loop import CancellationToken, TrainingLoopEngine


@dataclass(frozen=True)
class FoldResult:
    fold: int
    accuracy: float
    loss: float
    precision: float
    recall: float
    f1_score: float
    train_size: int
    validation_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fold': self.fold,
            'accuracy': self.accuracy,
            'loss': self.loss,
            'precision': self.precision,
            'recall': self.recall,
            'f1_score': self.f1_score,
            'train_size': self.train_size,
            'validation_size': self.validation_size,
        }


@dataclass(frozen=True)
class CrossValidationResult:
    """Aggregate of all folds; std values are population standard deviations."""
    folds: int
    mean_accuracy: float
    std_accuracy: float
    mean_loss: float
    std_loss: float
    fold_results: List[FoldResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'folds': self.folds,
            'mean_accuracy': self.mean_accuracy,
            'std_accuracy': self.std_accuracy,
            'mean_loss': self.mean_loss,
            'std_loss': self.std_loss,
            'fold_results': [f.to_dict() for f in self.fold_results],
        }


def fold_bounds(n: int, k: int) -> List[range]:
    """Validation index ranges for each of the `k` folds over `n` records."""
    if not isinstance(k, (int, np.integer)) or isinstance(k, bool) or k < 1:
        raise ConfigurationError(f"Fold count must be at least 1: {k}")
    if k > n:
        raise ConfigurationError(f"Fold count ({k}) exceeds dataset size ({n})")

    fold_size = n // k
    return [range(i * fold_size, (i + 1) * fold_size) for i in range(k)]


class CrossValidationEngine:
    """
    Runs k-fold cross-validation on top of a TrainingLoopEngine.
    """

    def __init__(self, training_engine: TrainingLoopEngine):
        self.training_engine = training_engine
        self.logger = logging.getLogger(__name__)

    def cross_validate(self, model_name: str,
                       records: Sequence[Record],
                       k: int,
                       hyperparameters: Mapping[str, Any],
                       rng: np.random.Generator,
                       epochs: Optional[int] = None,
                       shuffle: bool = False,
                       job_id: Optional[str] = None,
                       cancellation: Optional[CancellationToken] = None) -> CrossValidationResult:
        """
        Train and score one model per fold.

        Args:
            model_name: Architecture to train
            records: Full dataset in order
            k: Number of folds, 1 <= k <= len(records)
            hyperparameters: Passed to every fold's training run
            rng: Random source for shuffling and network initialisation
            epochs: Epochs per fold; defaults to the engine's `fold_epochs`
            shuffle: Permute records before splitting
            job_id: Log correlation only
            cancellation: Checked before each fold and inside fold training

        Raises:
            ConfigurationError: If `k` is out of range, before any fold runs
            TrainingCancelledError: If cancelled mid-run
        """
        n = len(records)
        bounds = fold_bounds(n, k)
        fold_epochs = epochs if epochs is not None else self.training_engine.config.fold_epochs

        if shuffle:
            order = rng.permutation(n)
            records = [records[i] for i in order]
        else:
            records = list(records)

        start_time = time.time()
        self.logger.info("cross_validation.started", extra={
            'component': 'CrossValidationEngine',
            'action': 'cross_validate',
            'job_id': job_id,
            'model_name': model_name,
            'folds': k,
            'fold_size': n // k,
            'fold_epochs': fold_epochs,
            'shuffle': shuffle
        })

        fold_results: List[FoldResult] = []
        for fold, block in enumerate(bounds):
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            validation = records[block.start:block.stop]
            training = records[:block.start] + records[block.stop:]

            # k == 1 leaves nothing else to train on; train on the block itself
            if not training:
                training = validation

            run = self.training_engine.train(
                model_name=model_name,
                train_records=training,
                validation_records=validation,
                hyperparameters=hyperparameters,
                total_epochs=fold_epochs,
                rng=rng,
                job_id=job_id,
                cancellation=cancellation,
                persist=False
            )

            scores = run.validation
            fold_result = FoldResult(
                fold=fold,
                accuracy=scores.accuracy,
                loss=scores.loss,
                precision=scores.precision,
                recall=scores.recall,
                f1_score=scores.f1_score,
                train_size=len(training),
                validation_size=len(validation)
            )
            fold_results.append(fold_result)

            self.logger.debug("cross_validation.fold_completed", extra={
                'component': 'CrossValidationEngine',
                'action': 'fold',
                'job_id': job_id,
                **fold_result.to_dict()
            })

        accuracies = np.array([f.accuracy for f in fold_results])
        losses = np.array([f.loss for f in fold_results])

        result = CrossValidationResult(
            folds=k,
            mean_accuracy=float(np.mean(accuracies)),
            std_accuracy=float(np.std(accuracies)),
            mean_loss=float(np.mean(losses)),
            std_loss=float(np.std(losses)),
            fold_results=fold_results
        )

        self.logger.info("cross_validation.completed", extra={
            'component': 'CrossValidationEngine',
            'action': 'cross_validate',
            'job_id': job_id,
            'model_name': model_name,
            'mean_accuracy': result.mean_accuracy,
            'std_accuracy': result.std_accuracy,
            'mean_loss': result.mean_loss,
            'duration': time.time() - start_time
        })

        return result
