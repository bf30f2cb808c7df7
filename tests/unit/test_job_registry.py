"""
Unit Tests for the Job Registry

Tests job lifecycle enforcement: monotone progress, single terminal
transition, cancellation and snapshot isolation.
"""

import re
import pytest
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).parent.parent.parent / "src"))

from model_training.core.job_registry import JobRegistry, JobStatus, generate_job_id
from model_training.core.training_loop import CANCELLATION_MESSAGE, EpochResult


def _epoch(epoch, loss=0.5):
    return EpochResult(epoch=epoch, loss=loss, accuracy=0.6, precision=0.5, recall=0.4,
                       f1_score=0.45, validation_loss=loss, validation_accuracy=0.55,
                       learning_rate=0.001)


class TestJobRegistry:

    def setup_method(self):
        self.registry = JobRegistry()
        self.job = self.registry.create("demo", dataset_size=100, total_epochs=10,
                                        validation_split=0.2)

    def test_job_id_format(self):
        assert re.fullmatch(r"job-\d+-[0-9a-z]{9}", generate_job_id())
        assert re.fullmatch(r"job-\d+-[0-9a-z]{9}", self.job.job_id)

    def test_new_job_is_pending(self):
        assert self.job.status == JobStatus.PENDING
        assert self.job.progress == 0
        assert self.job.errors == []
        assert [j.job_id for j in self.registry.active()] == [self.job.job_id]

    def test_progress_never_decreases(self):
        self.registry.mark_running(self.job.job_id)
        self.registry.set_progress(self.job.job_id, 30)
        self.registry.set_progress(self.job.job_id, 10)

        assert self.registry.get(self.job.job_id).progress == 30

    def test_progress_reaches_100_only_on_completion(self):
        self.registry.set_progress(self.job.job_id, 100)
        assert self.registry.get(self.job.job_id).progress == 99

        self.registry.mark_completed(self.job.job_id, "demo-v1.0.0")
        job = self.registry.get(self.job.job_id)
        assert job.progress == 100
        assert job.status == JobStatus.COMPLETED
        assert job.version_id == "demo-v1.0.0"
        assert job.end_time is not None

    def test_record_epoch_updates_metrics_and_progress(self):
        self.registry.record_epoch(self.job.job_id, _epoch(3), 62)

        job = self.registry.get(self.job.job_id)
        assert job.current_epoch == 3
        assert job.progress == 62
        assert job.metrics.validation_accuracy == 0.55

    def test_failed_job_is_terminal(self):
        self.registry.set_progress(self.job.job_id, 50)
        assert self.registry.mark_failed(self.job.job_id, "boom")

        assert not self.registry.mark_completed(self.job.job_id)
        assert not self.registry.mark_failed(self.job.job_id, "again")
        assert not self.registry.set_progress(self.job.job_id, 80)
        assert not self.registry.record_epoch(self.job.job_id, _epoch(5), 70)

        job = self.registry.get(self.job.job_id)
        assert job.status == JobStatus.FAILED
        assert job.progress == 50
        assert job.errors == ["boom"]
        assert self.registry.active() == []

    def test_cancel_sets_token_and_message(self):
        token = self.registry.cancellation_token(self.job.job_id)

        assert self.registry.cancel(self.job.job_id)
        assert token.is_cancelled
        assert self.registry.get(self.job.job_id).errors == [CANCELLATION_MESSAGE]

    def test_cancel_completed_job_is_noop(self):
        self.registry.mark_completed(self.job.job_id)

        assert not self.registry.cancel(self.job.job_id)
        assert not self.registry.cancellation_token(self.job.job_id).is_cancelled
        assert self.registry.get(self.job.job_id).status == JobStatus.COMPLETED

    def test_complete_with_runs_finalize_and_completes(self):
        job_id = self.job.job_id

        assert self.registry.complete_with(job_id, lambda: "demo-v1.0.0") == "demo-v1.0.0"

        job = self.registry.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.version_id == "demo-v1.0.0"

    def test_complete_with_skips_finalize_after_cancel(self):
        job_id = self.job.job_id
        calls = []
        self.registry.cancel(job_id)

        assert self.registry.complete_with(job_id, lambda: calls.append(1) or "demo-v1.0.0") is None
        assert calls == []
        assert self.registry.get(job_id).errors == [CANCELLATION_MESSAGE]

    def test_failed_finalize_leaves_job_live(self):
        job_id = self.job.job_id

        def finalize():
            raise RuntimeError("version store unavailable")

        with pytest.raises(RuntimeError):
            self.registry.complete_with(job_id, finalize)
        assert self.registry.get(job_id).is_active

    def test_unknown_job(self):
        assert self.registry.get("job-missing") is None
        assert not self.registry.cancel("job-missing")
        assert not self.registry.mark_running("job-missing")

    def test_snapshots_are_isolated(self):
        snapshot = self.registry.get(self.job.job_id)
        snapshot.errors.append("tampered")
        snapshot.hyperparameters['learning_rate'] = 1.0

        fresh = self.registry.get(self.job.job_id)
        assert fresh.errors == []
        assert 'learning_rate' not in fresh.hyperparameters

    def test_update_rejects_lifecycle_fields(self):
        with pytest.raises(AttributeError):
            self.registry.update(self.job.job_id, status=JobStatus.COMPLETED)

    def test_to_dict_is_serialisable(self):
        data = self.registry.get(self.job.job_id).to_dict()
        assert data['status'] == "pending"
        assert data['metrics']['loss'] == 0.0
        assert data['end_time'] is None
