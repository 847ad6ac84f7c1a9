"""Logging setup and in-process operation metrics.

Store operations that matter for latency (``execute_batch`` and
``resolve_ancestor_properties``) run under ``timed_operation``, which logs a
START/END pair tagged with a short correlation id and feeds the module level
``metrics`` collector.
"""
import functools
import logging
import re
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".notetree" / "logs"
LOG_FILE_NAME = "notetree.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar("F", bound=Callable[..., Any])

_logging_configured = False


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating log file (and optionally stderr) to the ``notetree`` logger.

    Every module logger lives under ``notetree``, so one handler pair covers
    the store, the resolver and the batch engine.

    Args:
        log_dir: Directory for ``notetree.log``. Defaults to ~/.notetree/logs.
        level: Level for the logger and its handlers.
        max_bytes: Size at which the log file is rotated.
        backup_count: Rotated files to keep.
        console: Also log to stderr, unless a console handler is already set.

    Returns:
        The log directory.
    """
    global _logging_configured

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    package_logger = logging.getLogger("notetree")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    has_console = any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    )
    if console and not has_console:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(formatter)
        package_logger.addHandler(stream_handler)

    _logging_configured = True
    package_logger.info(f"Logging to {log_file} (rotating at {max_bytes} bytes)")
    return log_path


def is_logging_configured() -> bool:
    return _logging_configured


def _sanitize_error_message(message: Optional[str], max_length: int = 200) -> Optional[str]:
    """Shorten an error message for metrics: home dir as ``~``, one line, truncated."""
    if message is None:
        return None
    text = re.sub(r"\s+", " ", message.replace(str(Path.home()), "~")).strip()
    if len(text) > max_length:
        text = text[: max_length - 3] + "..."
    return text


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def add(self, duration_ms: float, error: Optional[str]) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)
        if error is not None:
            self.error_count += 1
            self.last_error = error
            self.last_error_time = datetime.now(timezone.utc)

    def as_dict(self) -> Dict[str, Any]:
        successes = self.count - self.error_count
        return {
            "count": self.count,
            "success_count": successes,
            "error_count": self.error_count,
            "success_rate": successes / self.count if self.count else 0,
            "avg_duration_ms": round(self.total_ms / self.count, 2) if self.count else 0,
            "min_duration_ms": round(self.min_ms or 0, 2),
            "max_duration_ms": round(self.max_ms, 2),
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
        }


class MetricsCollector:
    """Thread-safe per-operation timing and failure counts, kept in memory."""

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        failure = None if success else (_sanitize_error_message(error) or "unknown error")
        with self._lock:
            self._stats.setdefault(operation, OperationStats()).add(duration_ms, failure)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation seen so far, keyed by operation name."""
        with self._lock:
            return {name: stats.as_dict() for name, stats in self._stats.items()}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time a block, log it and record it in ``metrics``.

    Yields a dict the block may fill with result details; they are appended
    to the END log line.

    Example:
        with timed_operation("execute_batch", operation_count=3) as op:
            results = run()
            op["result_count"] = len(results)
    """
    correlation_id = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {}
    described = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({described})")

    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield details
    except Exception as e:
        error = str(e) or e.__class__.__name__
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, elapsed_ms, error is None, error)
        outcome = "OK" if error is None else f"ERROR: {error}"
        summary = ", ".join(f"{k}={v}" for k, v in details.items())
        logger.debug(
            f"[{correlation_id}] END {operation} ({elapsed_ms:.2f}ms) [{outcome}] {summary}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a method under ``timed_operation``.

    The note id (keyword ``note_id`` or the first positional argument after
    ``self``) goes into the log context.
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            note_id = kwargs.get("note_id")
            if note_id is None and len(args) > 1 and isinstance(args[1], str):
                note_id = args[1]
            context = {"note_id": note_id} if note_id is not None else {}

            with timed_operation(name, **context) as op:
                result = func(*args, **kwargs)
                if hasattr(result, "__len__"):
                    op["result_count"] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
