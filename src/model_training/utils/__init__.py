# /forecast-training/src/model_training/utils/__init__.py

"""
Training Utilities

Logging infrastructure shared by the orchestrator components.
"""

from .logging import (
    PerformanceLogFilter,
    StructuredFormatter,
    TextFormatter,
    TrainingLogger,
    setup_training_logging,
    stage_logging,
)

__all__ = [
    "PerformanceLogFilter",
    "StructuredFormatter",
    "TextFormatter",
    "TrainingLogger",
    "setup_training_logging",
    "stage_logging",
]
