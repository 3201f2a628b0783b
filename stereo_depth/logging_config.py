"""
Logging configuration for the stereo depth core.

All modules log through a ``DepthLogger`` obtained from ``get_logger``. Loggers
live under the ``stereo_depth`` hierarchy so a single ``configure_logging``
call controls level and handlers for the whole package.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime
import traceback
import time


ROOT_LOGGER_NAME = "stereo_depth"

_CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
_FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class DepthLogger:
    """
    Structured logger wrapper.

    Keyword arguments passed to the logging methods are appended to the
    message as ``key=value`` pairs, e.g.::

        logger.info("Correspondences computed", valid=120, total=150)
        # Correspondences computed | valid=120 | total=150
    """

    def __init__(self, name: str = ROOT_LOGGER_NAME):
        """
        Wrap the standard library logger called ``name``.

        Args:
            name: Logger name (typically module name)
        """
        self.logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self.logger.name

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with optional context."""
        self._log_with_context(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message with optional context."""
        self._log_with_context(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with optional context."""
        self._log_with_context(logging.WARNING, message, kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        """Log error message with optional exception info and context."""
        self._log_with_context(logging.ERROR, message, kwargs, exc_info=exc_info)

    def critical(self, message: str, exc_info: bool = False, **kwargs) -> None:
        """Log critical message with optional exception info and context."""
        self._log_with_context(logging.CRITICAL, message, kwargs, exc_info=exc_info)

    def is_enabled_for(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    def _log_with_context(self, level: int, message: str, context: Dict[str, Any],
                         exc_info: bool = False) -> None:
        """Log message with structured context information."""
        if not self.logger.isEnabledFor(level):
            return

        if context:
            context_str = " | ".join(f"{k}={v}" for k, v in context.items())
            full_message = f"{message} | {context_str}"
        else:
            full_message = message

        self.logger.log(level, full_message, exc_info=exc_info)

    def log_exception(self, exception: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Log an exception with full traceback and context.

        Args:
            exception: The exception to log
            context: Optional context information
        """
        exc_type = type(exception).__name__
        exc_traceback = ''.join(traceback.format_tb(exception.__traceback__))

        error_msg = f"{exc_type}: {exception}\nTraceback:\n{exc_traceback}"
        self.error(error_msg, **(context or {}))


class PerformanceTimer:
    """Context manager for timing code execution."""

    def __init__(self, logger: DepthLogger, operation_name: str,
                 level: int = logging.DEBUG):
        """
        Initialize performance timer.

        Args:
            logger: DepthLogger instance
            operation_name: Name of the operation being timed
            level: Level used for the completion message
        """
        self.logger = logger
        self.operation_name = operation_name
        self.level = level
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        """Start timing."""
        self.start_time = time.perf_counter()
        self.logger.debug(f"Starting: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """End timing and log duration."""
        self.end_time = time.perf_counter()
        duration = self.end_time - self.start_time

        if exc_type is None:
            self.logger._log_with_context(
                self.level,
                f"Completed: {self.operation_name}",
                {"duration_seconds": f"{duration:.3f}"}
            )
        else:
            self.logger.error(
                f"Failed: {self.operation_name}",
                duration_seconds=f"{duration:.3f}",
                error=str(exc_val)
            )

        return False  # Don't suppress exceptions

    @property
    def elapsed(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0
        if self.end_time is None:
            return time.perf_counter() - self.start_time
        return self.end_time - self.start_time


_loggers: Dict[str, DepthLogger] = {}


def get_logger(name: str = ROOT_LOGGER_NAME) -> DepthLogger:
    """
    Get or create the DepthLogger for ``name``.

    Module names outside the package (e.g. ``__main__``) are nested under the
    package root so that ``configure_logging`` still applies to them.

    Args:
        name: Logger name

    Returns:
        DepthLogger instance
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    if name not in _loggers:
        _loggers[name] = DepthLogger(name)

    return _loggers[name]


def configure_logging(log_level: str = "INFO", log_dir: Optional[str] = None) -> DepthLogger:
    """
    Configure handlers and level of the package root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files. If None, logs only to console.

    Returns:
        The package root DepthLogger
    """
    root = get_logger(ROOT_LOGGER_NAME)
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Remove existing handlers to avoid duplicates
    root.logger.handlers.clear()
    root.logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
    root.logger.addHandler(console_handler)

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        log_file = log_path / f"stereo_depth_{timestamp}.log"

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
        root.logger.addHandler(file_handler)

        root.info("Logging initialized", log_file=str(log_file))

    return root
