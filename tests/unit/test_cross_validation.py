"""
Unit Tests for K-Fold Cross-Validation

Covers fold boundaries, remainder handling, aggregation, shuffling and
configuration errors raised before any fold trains.
"""

import pytest
import numpy as np
from unittest.mock import patch
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).parent.parent.parent / "src"))

from model_training.config.training_config import ConfigurationError, TrainingLoopConfig
from model_training.core.cross_validation import CrossValidationEngine, fold_bounds
from model_training.core.dataset import generate_synthetic_records
from model_training.core.persistence import InMemoryPersistence
from model_training.core.training_loop import CancellationToken, TrainingCancelledError, TrainingLoopEngine


HYPERPARAMETERS = {'learning_rate': 0.001, 'batch_size': 16}


class TestFoldBounds:

    def test_equal_contiguous_blocks(self):
        assert fold_bounds(10, 5) == [range(0, 2), range(2, 4), range(4, 6), range(6, 8), range(8, 10)]

    def test_remainder_never_validates(self):
        bounds = fold_bounds(11, 3)
        assert [len(b) for b in bounds] == [3, 3, 3]
        assert bounds[-1].stop == 9

    @pytest.mark.parametrize("k", [0, -1, 11])
    def test_out_of_range_fold_count(self, k):
        with pytest.raises(ConfigurationError):
            fold_bounds(10, k)


class TestCrossValidationEngine:

    def setup_method(self):
        self.persistence = InMemoryPersistence()
        self.training_engine = TrainingLoopEngine(self.persistence, TrainingLoopConfig())
        self.engine = CrossValidationEngine(self.training_engine)
        self.records = generate_synthetic_records(53, seed=9)

    def test_fold_sizes_and_aggregates(self):
        result = self.engine.cross_validate("demo", self.records, 5, HYPERPARAMETERS,
                                            np.random.default_rng(0), epochs=2)

        assert result.folds == 5
        assert len(result.fold_results) == 5
        for fold in result.fold_results:
            assert fold.validation_size == 53 // 5
            assert fold.train_size == 53 - 53 // 5
            assert 0.0 <= fold.accuracy <= 1.0

        accuracies = [f.accuracy for f in result.fold_results]
        losses = [f.loss for f in result.fold_results]
        assert result.mean_accuracy == pytest.approx(sum(accuracies) / 5)
        assert result.mean_loss == pytest.approx(sum(losses) / 5)
        assert result.std_accuracy == pytest.approx(float(np.std(accuracies)))

    def test_folds_train_without_persistence(self):
        self.engine.cross_validate("demo", self.records, 3, HYPERPARAMETERS,
                                   np.random.default_rng(0), epochs=2)

        assert self.persistence.checkpoints == {}
        assert len(self.persistence.metrics) == 0

    def test_validation_blocks_follow_input_order(self):
        with patch.object(self.training_engine, 'train', wraps=self.training_engine.train) as train:
            self.engine.cross_validate("demo", self.records, 4, HYPERPARAMETERS,
                                       np.random.default_rng(0), epochs=1)

        fold_size = 53 // 4
        for i, call in enumerate(train.call_args_list):
            expected = self.records[i * fold_size:(i + 1) * fold_size]
            assert call.kwargs['validation_records'] == expected
            assert call.kwargs['total_epochs'] == 1
            assert call.kwargs['persist'] is False
            # Remainder records always land in training
            assert self.records[-1] in call.kwargs['train_records']

    def test_shuffle_permutes_before_splitting(self):
        with patch.object(self.training_engine, 'train', wraps=self.training_engine.train) as train:
            self.engine.cross_validate("demo", self.records, 4, HYPERPARAMETERS,
                                       np.random.default_rng(0), epochs=1, shuffle=True)

        first_block = train.call_args_list[0].kwargs['validation_records']
        assert first_block != self.records[:53 // 4]

    def test_default_fold_epochs_from_config(self):
        with patch.object(self.training_engine, 'train', wraps=self.training_engine.train) as train:
            self.engine.cross_validate("demo", self.records, 2, HYPERPARAMETERS,
                                       np.random.default_rng(0))

        assert all(c.kwargs['total_epochs'] == 5 for c in train.call_args_list)

    def test_invalid_fold_count_rejected_before_training(self):
        with patch.object(self.training_engine, 'train') as train:
            with pytest.raises(ConfigurationError):
                self.engine.cross_validate("demo", self.records, 0, HYPERPARAMETERS,
                                           np.random.default_rng(0))
        train.assert_not_called()

    def test_cancellation_between_folds(self):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(TrainingCancelledError):
            self.engine.cross_validate("demo", self.records, 3, HYPERPARAMETERS,
                                       np.random.default_rng(0), cancellation=token)
