"""
Test Configuration and Fixtures for the Training Orchestrator

Shared fixtures for unit and integration tests: synthetic records,
deterministic random sources, in-memory persistence and a seeded
orchestrator that is always shut down after the test.

Key features:
- No external services; Redis is mocked where it appears
- Seeded randomness so every run is reproducible
- Small epoch counts to keep worker-thread tests fast
"""

import pytest
import numpy as np
from pathlib import Path
from typing import Any, Dict, Generator, List

import sys
sys.path.append(str(Path(__file__).parent.parent / "src"))

from model_training.config.training_config import (
    OrchestratorConfig,
    PipelineConfig,
    TrainingLoopConfig,
)
from model_training.core.dataset import generate_synthetic_records
from model_training.core.persistence import InMemoryPersistence
from model_training.core.pipeline_orchestrator import TrainingJobOrchestrator
from model_training.core.training_loop import TrainingLoopEngine


@pytest.fixture
def synthetic_records() -> List[Dict[str, Any]]:
    """500 labelled records with a learnable target in [0, 1]."""
    return generate_synthetic_records(500, seed=7)


@pytest.fixture
def small_records() -> List[Dict[str, Any]]:
    return generate_synthetic_records(60, seed=11)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def training_engine(persistence) -> TrainingLoopEngine:
    return TrainingLoopEngine(persistence, TrainingLoopConfig())


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(
        orchestrator=OrchestratorConfig(max_concurrent_jobs=4, random_seed=42),
        environment="testing"
    )


@pytest.fixture
def orchestrator(pipeline_config, persistence) -> Generator[TrainingJobOrchestrator, None, None]:
    """Seeded orchestrator with in-memory persistence."""
    orchestrator = TrainingJobOrchestrator(config=pipeline_config, persistence=persistence)
    try:
        yield orchestrator
    finally:
        orchestrator.shutdown(wait=True, cancel_jobs=True)
