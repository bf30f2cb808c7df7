# /forecast-training/src/model_training/core/training_loop.py

"""
TrainingLoopEngine: Epoch Loop with Early Stopping and Learning-Rate Decay

Trains a small feed-forward network on encoded records. The network and its
update rule are intentionally simplified:

- Hidden layers use ReLU, the final layer is linear, and the prediction is
  the first unit of the final layer.
- Loss is the mean squared error between prediction and target.
- Only the final layer's output-unit weights receive a gradient
  (`error * penultimate_activation`); intermediate layers keep their
  initial weights. This is an approximation, not backpropagation, and the
  reported accuracies are illustrative.

Per epoch the engine batches the training split (contiguous fixed-size
batches; the last short batch is kept and its update is divided by its own
length), evaluates on the validation split, checkpoints on improvement,
records metrics, and applies early stopping and step learning-rate decay.
Cancellation is cooperative and checked before every batch.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import f1_score, precision_score, recall_score

from ..config.training_config import ConfigurationError, TrainingLoopConfig
from .dataset import Record, encode_records
from .persistence import TrainingPersistence


@dataclass(frozen=True)
class NetworkArchitecture:
    """Input width and per-layer output widths."""
    input_size: int
    layers: Tuple[int, ...]


ARCHITECTURES: Dict[str, NetworkArchitecture] = {
    'career-trajectory': NetworkArchitecture(input_size=50, layers=(128, 64, 32, 16)),
    'skill-demand': NetworkArchitecture(input_size=100, layers=(256, 128, 64, 1)),
    'resume-matching': NetworkArchitecture(input_size=200, layers=(512, 256, 128, 64, 1)),
}

DEFAULT_ARCHITECTURE = 'career-trajectory'


def get_architecture(model_name: str) -> NetworkArchitecture:
    """Architecture for `model_name`, falling back to the default one."""
    return ARCHITECTURES.get(model_name, ARCHITECTURES[DEFAULT_ARCHITECTURE])


def initialize_weights(architecture: NetworkArchitecture,
                       rng: np.random.Generator) -> List[np.ndarray]:
    """
    Xavier-uniform initialisation.

    Layer `i` is a `(fan_out, fan_in)` matrix drawn from `U(-a, a)` with
    `a = sqrt(6 / (fan_in + fan_out))`.
    """
    weights = []
    fan_in = architecture.input_size
    for fan_out in architecture.layers:
        limit = math.sqrt(6.0 / (fan_in + fan_out))
        weights.append(rng.uniform(-limit, limit, size=(fan_out, fan_in)))
        fan_in = fan_out
    return weights


def forward_pass(X: np.ndarray, weights: Sequence[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Run a batch through the network.

    Returns:
        Tuple of (predictions, penultimate activations feeding the final layer)
    """
    activation = X
    last = len(weights) - 1
    with np.errstate(over='ignore', invalid='ignore'):
        for idx, layer in enumerate(weights):
            if idx == last:
                output = activation @ layer.T
                return output[:, 0], activation
            activation = np.maximum(activation @ layer.T, 0.0)
    raise ConfigurationError("Network has no layers")


def classification_scores(predictions: np.ndarray, targets: np.ndarray,
                          threshold: float = 0.5) -> Tuple[float, float, float]:
    """Precision, recall and F1 of thresholded predictions against thresholded targets."""
    y_true = (targets >= threshold).astype(int)
    with np.errstate(invalid='ignore'):
        y_pred = (np.nan_to_num(predictions, nan=-np.inf) >= threshold).astype(int)
    return (
        float(precision_score(y_true, y_pred, zero_division=0)),
        float(recall_score(y_true, y_pred, zero_division=0)),
        float(f1_score(y_true, y_pred, zero_division=0)),
    )


CANCELLATION_MESSAGE = "Training cancelled: stopped by user"


class CancellationToken:
    """
    Cooperative cancellation flag shared between a job and its worker.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TrainingCancelledError(CANCELLATION_MESSAGE)


@dataclass(frozen=True)
class EpochResult:
    """Metrics snapshot produced at the end of one epoch."""
    epoch: int
    loss: float
    accuracy: float
    precision: float
    recall: float
    f1_score: float
    validation_loss: float
    validation_accuracy: float
    learning_rate: float
    improved: bool = False

    def metrics(self) -> Dict[str, float]:
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
class TrainingRunResult:
    """Outcome of one `TrainingLoopEngine.train` call."""
    model_name: str
    epochs_run: int
    total_epochs: int
    best_validation_loss: float
    best_epoch: Optional[int]
    stopped_early: bool
    weights: List[np.ndarray]
    history: List[EpochResult] = field(default_factory=list)
    validation: Optional['EvaluationResult'] = None

    @property
    def final(self) -> EpochResult:
        return self.history[-1]


@dataclass(frozen=True)
class EvaluationResult:
    loss: float
    accuracy: float
    precision: float
    recall: float
    f1_score: float


class TrainingLoopEngine:
    """
    Runs the epoch loop for one model.

    The engine is stateless between calls; weights, learning rate and
    early-stopping state live in a single `train` invocation, so one engine
    can serve concurrent jobs.
    """

    def __init__(self, persistence: Optional[TrainingPersistence] = None,
                 config: Optional[TrainingLoopConfig] = None):
        self.persistence = persistence
        self.config = config or TrainingLoopConfig()
        self.logger = logging.getLogger(__name__)

    def train(self, model_name: str,
              train_records: Sequence[Record],
              validation_records: Sequence[Record],
              hyperparameters: Mapping[str, Any],
              total_epochs: int,
              rng: np.random.Generator,
              job_id: Optional[str] = None,
              cancellation: Optional[CancellationToken] = None,
              on_epoch_end: Optional[Callable[[EpochResult], None]] = None,
              persist: bool = True) -> TrainingRunResult:
        """
        Train a freshly initialised network.

        Args:
            model_name: Selects the architecture and tags checkpoints/metrics
            train_records: Training split
            validation_records: Validation split
            hyperparameters: Uses `learning_rate` and `batch_size`
            total_epochs: Upper bound on epochs run
            rng: Random source for initialisation and missing targets
            job_id: Tag attached to recorded metrics
            cancellation: Checked before every batch
            on_epoch_end: Called with each epoch's metrics snapshot
            persist: When False no checkpoints or metrics are written

        Returns:
            TrainingRunResult with per-epoch history and final weights

        Raises:
            ConfigurationError: On empty splits or invalid loop parameters
            TrainingCancelledError: When `cancellation` is set mid-run
        """
        if total_epochs < 1:
            raise ConfigurationError(f"Total epochs must be at least 1: {total_epochs}")
        if not train_records:
            raise ConfigurationError("Training split is empty")
        if not validation_records:
            raise ConfigurationError("Validation split is empty")

        defaults = self.config.default_hyperparameters
        try:
            learning_rate = float(hyperparameters.get('learning_rate', defaults['learning_rate']))
            batch_size = int(hyperparameters.get('batch_size', defaults['batch_size']))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid loop hyperparameters: {e}") from e
        if batch_size < 1:
            raise ConfigurationError(f"Batch size must be positive: {batch_size}")
        if not learning_rate > 0:
            raise ConfigurationError(f"Learning rate must be positive: {learning_rate}")

        architecture = get_architecture(model_name)
        target_field = self.config.target_field
        X_train, y_train = encode_records(train_records, architecture.input_size, rng, target_field)
        X_val, y_val = encode_records(validation_records, architecture.input_size, rng, target_field)

        weights = initialize_weights(architecture, rng)
        best_validation_loss = math.inf
        best_epoch: Optional[int] = None
        patience_counter = 0
        stopped_early = False
        history: List[EpochResult] = []
        last_validation: Optional[EvaluationResult] = None

        start_time = time.time()
        self.logger.info("training_loop.started", extra={
            'component': 'TrainingLoopEngine',
            'action': 'train',
            'job_id': job_id,
            'model_name': model_name,
            'train_size': len(train_records),
            'validation_size': len(validation_records),
            'total_epochs': total_epochs,
            'batch_size': batch_size,
            'learning_rate': learning_rate
        })

        for epoch in range(1, total_epochs + 1):
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            train_eval = self._train_epoch(X_train, y_train, weights, learning_rate,
                                           batch_size, cancellation)
            val_eval = self.evaluate(X_val, y_val, weights)
            last_validation = val_eval

            improved = val_eval.loss < best_validation_loss
            if improved:
                best_validation_loss = val_eval.loss
                best_epoch = epoch
                patience_counter = 0
                if persist:
                    self._store_checkpoint(model_name, epoch, weights, job_id)
            else:
                patience_counter += 1

            result = EpochResult(
                epoch=epoch,
                loss=train_eval.loss,
                accuracy=train_eval.accuracy,
                precision=train_eval.precision,
                recall=train_eval.recall,
                f1_score=train_eval.f1_score,
                validation_loss=val_eval.loss,
                validation_accuracy=val_eval.accuracy,
                learning_rate=learning_rate,
                improved=improved
            )
            history.append(result)

            if persist:
                self._record_epoch_metrics(model_name, result, job_id)

            self.logger.debug("epoch.completed", extra={
                'component': 'TrainingLoopEngine',
                'action': 'epoch',
                'job_id': job_id,
                'model_name': model_name,
                **result.metrics(),
                'epoch': epoch
            })

            if on_epoch_end is not None:
                on_epoch_end(result)

            if patience_counter >= self.config.patience:
                stopped_early = True
                self.logger.info("training_loop.early_stopping", extra={
                    'component': 'TrainingLoopEngine',
                    'action': 'early_stopping',
                    'job_id': job_id,
                    'epoch': epoch,
                    'best_validation_loss': best_validation_loss,
                    'best_epoch': best_epoch
                })
                break

            if epoch % self.config.lr_decay_interval == 0:
                learning_rate *= self.config.lr_decay_factor

        self.logger.info("training_loop.completed", extra={
            'component': 'TrainingLoopEngine',
            'action': 'train',
            'job_id': job_id,
            'model_name': model_name,
            'epochs_run': len(history),
            'stopped_early': stopped_early,
            'best_validation_loss': best_validation_loss,
            'duration': time.time() - start_time
        })

        return TrainingRunResult(
            model_name=model_name,
            epochs_run=len(history),
            total_epochs=total_epochs,
            best_validation_loss=best_validation_loss,
            best_epoch=best_epoch,
            stopped_early=stopped_early,
            weights=weights,
            history=history,
            validation=last_validation
        )

    def evaluate(self, X: np.ndarray, y: np.ndarray,
                 weights: Sequence[np.ndarray]) -> EvaluationResult:
        """Loss, accuracy and classification scores of `weights` on `(X, y)`."""
        predictions, _ = forward_pass(X, weights)
        with np.errstate(over='ignore', invalid='ignore'):
            errors = predictions - y
            loss = float(np.mean(errors ** 2))
            accuracy = float(np.mean(np.abs(errors) < self.config.accuracy_tolerance))
        precision, recall, f1 = classification_scores(predictions, y)
        return EvaluationResult(loss, accuracy, precision, recall, f1)

    def _train_epoch(self, X: np.ndarray, y: np.ndarray, weights: List[np.ndarray],
                     learning_rate: float, batch_size: int,
                     cancellation: Optional[CancellationToken]) -> EvaluationResult:
        """One pass over the training split; returns metrics of the pre-update predictions."""
        n = len(X)
        all_predictions = np.empty(n, dtype=np.float64)
        total_loss = 0.0
        correct = 0

        for start in range(0, n, batch_size):
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            X_batch = X[start:start + batch_size]
            y_batch = y[start:start + batch_size]
            predictions, batch_loss, batch_correct = self._train_batch(
                X_batch, y_batch, weights, learning_rate)

            all_predictions[start:start + len(X_batch)] = predictions
            total_loss += batch_loss * len(X_batch)
            correct += batch_correct

        precision, recall, f1 = classification_scores(all_predictions, y)
        return EvaluationResult(total_loss / n, correct / n, precision, recall, f1)

    def _train_batch(self, X_batch: np.ndarray, y_batch: np.ndarray,
                     weights: List[np.ndarray],
                     learning_rate: float) -> Tuple[np.ndarray, float, int]:
        predictions, penultimate = forward_pass(X_batch, weights)

        with np.errstate(over='ignore', invalid='ignore'):
            errors = predictions - y_batch
            batch_loss = float(np.mean(errors ** 2))
            correct = int(np.sum(np.abs(errors) < self.config.accuracy_tolerance))

            # Final layer, output unit only
            gradient = errors @ penultimate
            weights[-1][0] -= learning_rate * gradient / len(X_batch)

        return predictions, batch_loss, correct

    def _store_checkpoint(self, model_name: str, epoch: int,
                          weights: Sequence[np.ndarray], job_id: Optional[str]) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.store_weights(model_name, epoch, weights)
        except Exception as e:
            self.logger.warning("checkpoint.save_failed", extra={
                'component': 'TrainingLoopEngine',
                'action': 'save_weights',
                'job_id': job_id,
                'model_name': model_name,
                'epoch': epoch,
                'error': str(e)
            })

    def _record_epoch_metrics(self, model_name: str, result: EpochResult,
                              job_id: Optional[str]) -> None:
        if self.persistence is None:
            return
        tags = {'job_id': job_id or '', 'epoch': str(result.epoch)}
        try:
            self.persistence.record_metric(f"training_{model_name}_loss", result.loss, tags)
            self.persistence.record_metric(f"training_{model_name}_accuracy", result.accuracy, tags)
            self.persistence.record_metric(
                f"training_{model_name}_validation_loss", result.validation_loss, tags)
            self.persistence.record_metric(
                f"training_{model_name}_validation_accuracy", result.validation_accuracy, tags)
            self.persistence.record_metric(
                f"training_{model_name}_learning_rate", result.learning_rate, tags)
        except Exception as e:
            self.logger.warning("metrics.store_failed", extra={
                'component': 'TrainingLoopEngine',
                'action': 'store_metrics',
                'job_id': job_id,
                'model_name': model_name,
                'epoch': result.epoch,
                'error': str(e)
            })


# Custom exceptions
class TrainingCancelledError(Exception):
    """Raised inside a worker when its job has been cancelled."""
    pass
