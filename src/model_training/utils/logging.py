# /forecast-training/src/model_training/utils/logging.py

"""
Training Logging Infrastructure

Structured logging for the training job orchestrator. Components log through
`logging.getLogger(__name__)` with dotted event names as messages and an
`extra` dict carrying `component`, `action` and event metadata; this module
configures where those records go and how they are rendered.

Key Features:
- JSON and human-readable text formatters sharing one record schema
- Process memory/CPU annotation via psutil
- Rotating file output alongside console output
- Stage timing context manager used by the orchestrator
"""

import json
import logging
import logging.handlers
import os
import sys
import threading
import time
import traceback
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import psutil


PACKAGE_LOGGER = "model_training"

# Attributes every LogRecord carries; anything else came in through `extra`.
_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_ATTRS and not key.startswith('_')
    }


class StructuredFormatter(logging.Formatter):
    """
    JSON-structured log formatter with consistent schema.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra
        self.hostname = os.uname().nodename if hasattr(os, 'uname') else 'unknown'

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'thread_name': record.threadName,
            'process': record.process,
            'hostname': self.hostname
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            extra = {}
            for key, value in _extra_fields(record).items():
                try:
                    json.dumps(value)
                    extra[key] = value
                except (TypeError, ValueError):
                    extra[key] = str(value)

            if extra:
                log_entry['extra'] = extra

        return json.dumps(log_entry)


class TextFormatter(logging.Formatter):
    """
    Human-readable text formatter; extra fields are appended as key=value.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        base_message = super().format(record)

        if self.include_extra:
            extra_fields = [f"{key}={value}" for key, value in _extra_fields(record).items()]
            if extra_fields:
                base_message += f" [{', '.join(extra_fields)}]"

        return base_message


class PerformanceLogFilter(logging.Filter):
    """
    Annotates records with the current process memory and CPU usage.
    """

    def __init__(self):
        super().__init__()
        self._process = psutil.Process()

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'memory_usage_mb'):
            try:
                record.memory_usage_mb = round(self._process.memory_info().rss / (1024 * 1024), 1)
                record.cpu_percent = self._process.cpu_percent()
            except psutil.Error:
                record.memory_usage_mb = None
                record.cpu_percent = None

        return True


class TrainingLogger:
    """
    Logger wrapper that owns handler setup and carries persistent context.

    Context set through `context()` is merged into the `extra` of every
    message logged through this wrapper; plain module loggers are unaffected.
    """

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None):
        self.name = name
        self.config = config or {}
        self.logger = logging.getLogger(name)

        self._context: Dict[str, Any] = {}
        self._context_lock = threading.RLock()

        if not self.logger.handlers:
            self._configure_logger()

    def _configure_logger(self) -> None:
        """Configure logger with handlers and formatters."""
        log_level = self.config.get('log_level', 'INFO').upper()
        self.logger.setLevel(getattr(logging, log_level))

        if self.config.get('include_performance', False):
            self.logger.addFilter(PerformanceLogFilter())

        if self.config.get('enable_console', True):
            console_handler = logging.StreamHandler(sys.stdout)

            if self.config.get('log_format', 'text') == 'json':
                console_handler.setFormatter(StructuredFormatter())
            else:
                console_handler.setFormatter(TextFormatter())

            self.logger.addHandler(console_handler)

        if self.config.get('enable_file', False):
            log_dir = Path(self.config.get('log_dir', 'logs/training'))
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"{self.config.get('log_file_prefix', 'training')}.log"

            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=self.config.get('log_rotation_size_mb', 100) * 1024 * 1024,
                backupCount=self.config.get('log_retention_count', 10)
            )
            file_handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(file_handler)

    @contextmanager
    def context(self, **kwargs) -> Iterator['TrainingLogger']:
        """Temporarily add fields to every message logged through this wrapper."""
        with self._context_lock:
            old_context = self._context.copy()
            self._context.update(kwargs)
        try:
            yield self
        finally:
            with self._context_lock:
                self._context = old_context

    def _log_with_context(self, level: int, message: str,
                          extra: Optional[Dict[str, Any]] = None,
                          exc_info: bool = False) -> None:
        with self._context_lock:
            combined_extra = dict(self._context)
        if extra:
            combined_extra.update(extra)

        self.logger.log(level, message, extra=combined_extra or None, exc_info=exc_info)

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context(logging.WARNING, message, extra)

    def error(self, message: str, extra: Optional[Dict[str, Any]] = None,
              exc_info: bool = True) -> None:
        self._log_with_context(logging.ERROR, message, extra, exc_info=exc_info)


def setup_training_logging(level: str = "INFO",
                           log_format: str = "text",
                           log_dir: str = "logs/training",
                           enable_console: bool = True,
                           enable_file: bool = False,
                           **overrides: Any) -> TrainingLogger:
    """
    Configure the package root logger.

    Every component logger (`model_training.core.*`) propagates to it, so a
    single call configures the whole pipeline. Calling again is a no-op for
    an already-configured package logger.

    Returns:
        TrainingLogger bound to the package root logger
    """
    config = {
        'log_level': level.upper(),
        'log_format': log_format.lower(),
        'log_dir': log_dir,
        'enable_console': enable_console,
        'enable_file': enable_file,
        'log_file_prefix': 'training',
        'log_rotation_size_mb': 100,
        'log_retention_count': 10,
    }
    config.update(overrides)

    root_logger = TrainingLogger(PACKAGE_LOGGER, config)

    root_logger.debug("training_logging.initialized", extra={
        'component': 'logging',
        'action': 'setup',
        'log_level': config['log_level'],
        'log_format': config['log_format']
    })

    return root_logger


@contextmanager
def stage_logging(logger: logging.Logger, stage_name: str, **context: Any) -> Iterator[None]:
    """
    Log start, completion and failure of one pipeline stage.

    Failures are logged and re-raised; the caller decides what a failed
    stage means for the job.
    """
    stage_context = {'component': 'TrainingJobOrchestrator', 'stage': stage_name, **context}

    logger.info(f"stage.{stage_name}.started", extra={**stage_context, 'action': 'stage_started'})

    start_time = time.time()
    try:
        yield
    except Exception as e:
        logger.warning(f"stage.{stage_name}.failed", extra={
            **stage_context,
            'action': 'stage_failed',
            'error': str(e),
            'duration': time.time() - start_time
        })
        raise

    logger.info(f"stage.{stage_name}.completed", extra={
        **stage_context,
        'action': 'stage_completed',
        'duration': time.time() - start_time
    })
