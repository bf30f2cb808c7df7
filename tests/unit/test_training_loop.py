"""
Unit Tests for the Training Loop Engine

Tests the epoch loop including:
- Architecture lookup and Xavier initialisation
- Final-layer-only weight updates
- Batching with a kept short final batch
- Checkpointing, metric recording and persistence failures
- Early stopping, learning-rate decay and cancellation
"""

import math
import pytest
import numpy as np
from unittest.mock import MagicMock, patch
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).parent.parent.parent / "src"))

from model_training.config.training_config import ConfigurationError, TrainingLoopConfig
from model_training.core.dataset import generate_synthetic_records
from model_training.core.persistence import InMemoryPersistence
from model_training.core.training_loop import (
    ARCHITECTURES,
    CANCELLATION_MESSAGE,
    CancellationToken,
    EvaluationResult,
    TrainingCancelledError,
    TrainingLoopEngine,
    classification_scores,
    forward_pass,
    get_architecture,
    initialize_weights,
)


HYPERPARAMETERS = {'learning_rate': 0.001, 'batch_size': 32}


class TestArchitecture:
    """Architecture table and weight initialisation."""

    def test_unknown_model_falls_back_to_default(self):
        assert get_architecture("no-such-model") == ARCHITECTURES['career-trajectory']

    @pytest.mark.parametrize("model_name", sorted(ARCHITECTURES))
    def test_xavier_initialisation_shapes_and_bounds(self, model_name):
        architecture = ARCHITECTURES[model_name]
        weights = initialize_weights(architecture, np.random.default_rng(0))

        assert len(weights) == len(architecture.layers)
        fan_in = architecture.input_size
        for layer, fan_out in zip(weights, architecture.layers):
            assert layer.shape == (fan_out, fan_in)
            limit = math.sqrt(6.0 / (fan_in + fan_out))
            assert np.all(np.abs(layer) <= limit)
            fan_in = fan_out

    def test_forward_pass_returns_first_output_unit(self):
        architecture = ARCHITECTURES['skill-demand']
        weights = initialize_weights(architecture, np.random.default_rng(1))
        X = np.random.default_rng(2).normal(size=(7, architecture.input_size))

        predictions, penultimate = forward_pass(X, weights)

        assert predictions.shape == (7,)
        assert penultimate.shape == (7, architecture.layers[-2])
        assert np.all(penultimate >= 0)
        np.testing.assert_allclose(predictions, (penultimate @ weights[-1].T)[:, 0])


class TestClassificationScores:

    def test_perfect_predictions(self):
        targets = np.array([0.9, 0.1, 0.8, 0.2])
        assert classification_scores(targets, targets) == (1.0, 1.0, 1.0)

    def test_no_positive_predictions_scores_zero(self):
        targets = np.array([0.9, 0.8])
        predictions = np.array([0.1, 0.2])
        assert classification_scores(predictions, targets) == (0.0, 0.0, 0.0)


class TestTrainingLoopEngine:
    """Epoch loop behaviour."""

    def setup_method(self):
        self.persistence = InMemoryPersistence(max_checkpoints_per_model=None)
        self.engine = TrainingLoopEngine(self.persistence, TrainingLoopConfig())
        records = generate_synthetic_records(120, seed=3)
        self.train_records = records[:96]
        self.validation_records = records[96:]

    def _train(self, total_epochs=5, **kwargs):
        params = dict(
            model_name="demo",
            train_records=self.train_records,
            validation_records=self.validation_records,
            hyperparameters=HYPERPARAMETERS,
            total_epochs=total_epochs,
            rng=np.random.default_rng(5),
            job_id="job-test"
        )
        params.update(kwargs)
        return self.engine.train(**params)

    def test_run_produces_bounded_metrics(self):
        result = self._train(total_epochs=5)

        assert 1 <= result.epochs_run <= 5
        assert len(result.history) == result.epochs_run
        assert [r.epoch for r in result.history] == list(range(1, result.epochs_run + 1))
        final = result.final
        for value in (final.accuracy, final.validation_accuracy, final.precision,
                      final.recall, final.f1_score):
            assert 0.0 <= value <= 1.0
        assert final.loss >= 0.0

    def test_only_final_output_unit_is_updated(self):
        result = self._train(total_epochs=3)

        architecture = get_architecture("demo")
        initial = initialize_weights(architecture, np.random.default_rng(5))

        for trained, original in zip(result.weights[:-1], initial[:-1]):
            np.testing.assert_array_equal(trained, original)
        np.testing.assert_array_equal(result.weights[-1][1:], initial[-1][1:])
        assert not np.array_equal(result.weights[-1][0], initial[-1][0])

    def test_short_final_batch_is_kept(self):
        records = generate_synthetic_records(12, seed=4)

        with patch.object(self.engine, '_train_batch', wraps=self.engine._train_batch) as batch:
            self.engine.train("demo", records[:10], records[10:], {'learning_rate': 0.001, 'batch_size': 4},
                              total_epochs=1, rng=np.random.default_rng(0))

        sizes = [len(call.args[0]) for call in batch.call_args_list]
        assert sizes == [4, 4, 2]

    def test_checkpoints_follow_validation_improvements(self):
        result = self._train(total_epochs=6)

        improved_epochs = [r.epoch for r in result.history if r.improved]
        assert self.persistence.checkpoint_epochs("demo") == improved_epochs
        assert improved_epochs[0] == 1

    def test_metrics_recorded_every_epoch_with_tags(self):
        result = self._train(total_epochs=4)

        losses = self.persistence.metric_values("training_demo_loss")
        accuracies = self.persistence.metric_values("training_demo_accuracy")
        assert len(losses) == result.epochs_run
        assert len(accuracies) == result.epochs_run

        tagged = [m for m in self.persistence.metrics if m.name == "training_demo_loss"]
        assert tagged[0].tags == {'job_id': 'job-test', 'epoch': '1'}

    def test_persist_false_writes_nothing(self):
        self._train(total_epochs=3, persist=False)

        assert self.persistence.checkpoints == {}
        assert len(self.persistence.metrics) == 0

    def test_persistence_failures_do_not_abort_training(self):
        failing = MagicMock()
        failing.store_weights.side_effect = IOError("disk full")
        failing.record_metric.side_effect = ConnectionError("redis down")
        engine = TrainingLoopEngine(failing, TrainingLoopConfig())

        result = engine.train("demo", self.train_records, self.validation_records,
                              HYPERPARAMETERS, total_epochs=3, rng=np.random.default_rng(0))

        assert result.epochs_run == 3
        assert failing.store_weights.called
        assert failing.record_metric.called

    def test_early_stopping_after_patience_non_improving_epochs(self):
        flat = EvaluationResult(loss=1.0, accuracy=0.5, precision=0.0, recall=0.0, f1_score=0.0)

        with patch.object(self.engine, 'evaluate', return_value=flat):
            result = self._train(total_epochs=50)

        assert result.stopped_early
        assert result.epochs_run == 1 + self.engine.config.patience
        assert result.best_epoch == 1
        assert self.persistence.checkpoint_epochs("demo") == [1]
        # The stopping epoch still records its metrics
        assert len(self.persistence.metric_values("training_demo_loss")) == result.epochs_run

    def test_no_early_stop_when_epochs_within_patience(self):
        flat = EvaluationResult(loss=1.0, accuracy=0.5, precision=0.0, recall=0.0, f1_score=0.0)

        with patch.object(self.engine, 'evaluate', return_value=flat):
            result = self._train(total_epochs=10)

        assert not result.stopped_early
        assert result.epochs_run == 10

    def test_learning_rate_decays_every_interval(self):
        engine = TrainingLoopEngine(self.persistence, TrainingLoopConfig(patience=100))
        flat = EvaluationResult(loss=1.0, accuracy=0.5, precision=0.0, recall=0.0, f1_score=0.0)

        with patch.object(engine, 'evaluate', return_value=flat):
            result = engine.train("demo", self.train_records, self.validation_records,
                                  HYPERPARAMETERS, total_epochs=25, rng=np.random.default_rng(0))

        rates = [r.learning_rate for r in result.history]
        assert rates[0] == pytest.approx(0.001)
        assert rates[9] == pytest.approx(0.001)
        assert rates[10] == pytest.approx(0.0009)
        assert rates[20] == pytest.approx(0.00081)

    def test_callback_receives_every_epoch(self):
        seen = []
        result = self._train(total_epochs=4, on_epoch_end=seen.append)

        assert [r.epoch for r in seen] == [r.epoch for r in result.history]

    def test_cancelled_token_stops_before_first_epoch(self):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(TrainingCancelledError, match=CANCELLATION_MESSAGE):
            self._train(cancellation=token)
        assert len(self.persistence.metrics) == 0

    def test_cancellation_mid_run_stops_at_next_batch(self):
        token = CancellationToken()
        seen = []

        def cancel_after_second(result):
            seen.append(result.epoch)
            if result.epoch == 2:
                token.cancel()

        with pytest.raises(TrainingCancelledError):
            self._train(total_epochs=10, cancellation=token, on_epoch_end=cancel_after_second)
        assert seen == [1, 2]

    def test_empty_validation_split_rejected(self):
        with pytest.raises(ConfigurationError):
            self._train(validation_records=[])

    def test_non_positive_batch_size_rejected(self):
        with pytest.raises(ConfigurationError):
            self._train(hyperparameters={'learning_rate': 0.001, 'batch_size': 0})

    def test_non_numeric_learning_rate_rejected(self):
        with pytest.raises(ConfigurationError, match="Invalid loop hyperparameters"):
            self._train(hyperparameters={'learning_rate': "fast", 'batch_size': 32})
