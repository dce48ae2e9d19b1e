"""Observability utilities for the note store.

Provides logging configuration with rotation, timing of repository
operations, and in-process metrics that can be persisted to disk.
"""
import json
import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

# Root of the package logger hierarchy
ROOT_LOGGER_NAME = "note_store"

# Default log directory (can be overridden via configure_logging)
DEFAULT_LOG_DIR = Path.home() / ".note_store" / "logs"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Sets up a rotating file handler on the ``note_store`` logger hierarchy.
    Log files are rotated when they reach max_bytes, keeping backup_count
    old files.

    Args:
        log_dir: Directory for log files. Defaults to ~/.note_store/logs/
        level: Logging level (default: INFO)
        max_bytes: Maximum size per log file before rotation (default: 10 MB)
        backup_count: Number of rotated files to keep (default: 5)
        console: Also log to console (default: True)

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "note_store.log"
    already_attached = any(
        isinstance(h, RotatingFileHandler)
        and Path(h.baseFilename) == log_file.resolve()
        for h in root_logger.handlers
    )
    if not already_attached:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    root_logger.info(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")

    return log_path


@dataclass
class OperationStats:
    """Running totals for one repository operation."""
    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    last_error: Optional[str] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "success_count": self.count - self.error_count,
            "error_count": self.error_count,
            "avg_duration_ms": round(self.total_ms / self.count, 2) if self.count else 0.0,
            "last_error": self.last_error,
        }


class MetricsCollector:
    """Thread-safe per-operation counters, fed by ``timed_operation``."""

    def __init__(self):
        self._stats: Dict[str, OperationStats] = defaultdict(OperationStats)
        self._lock = Lock()

    def record_operation(
        self, operation: str, duration_ms: float, success: bool, error: Optional[str] = None
    ) -> None:
        with self._lock:
            stats = self._stats[operation]
            stats.count += 1
            stats.total_ms += duration_ms
            if not success:
                stats.error_count += 1
                stats.last_error = error

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation's counters, keyed by operation name."""
        with self._lock:
            return {op: stats.snapshot() for op, stats in self._stats.items()}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()

    def save_metrics(self, path: Union[str, Path]) -> bool:
        """Write the snapshot to ``path`` as JSON.

        Returns:
            True if saved successfully, False otherwise.
        """
        target = Path(path)
        data = {
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": self.get_metrics(),
        }
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            temp_file = target.with_suffix(".tmp")
            temp_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_file.replace(target)
            return True
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save metrics to {target}: {e}")
            return False


# Process-wide collector used by the repositories and the CLI
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time one repository call and record it in ``metrics``.

    Yields a dict for result details such as ``result_count``. Setting
    ``op["error"]`` marks the call failed without raising.
    """
    op: Dict[str, Any] = {}
    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield op
    except Exception as e:
        error = str(e) or type(e).__name__
        raise
    finally:
        if error is None and op.get("error") is not None:
            error = str(op["error"])
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, elapsed_ms, error is None, error)
        details = ", ".join(
            f"{k}={v}" for k, v in {**context, **op}.items() if k != "error"
        )
        logger.debug(
            f"{operation} {'OK' if error is None else 'FAILED'} "
            f"in {elapsed_ms:.2f}ms ({details})"
        )
