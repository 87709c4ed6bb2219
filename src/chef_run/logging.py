"""Logging setup for chef-run.

Module code logs through ``logging.getLogger(__name__)``. The CLI uses
``get_logger`` to obtain a StructuredLogger, which appends key=value
context to each message and can time blocks of work.

Example:
    >>> configure_logging(level=logging.INFO, log_file=Path("/tmp/chef-run.log"))
    >>> logger = get_logger("chef_run.cli")
    >>> logger.add_context(targets=3)
    >>> with logger.performance("Converge"):
    ...     pass
"""

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(filename)s:%(lineno)d - %(message)s"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def level_from_name(name: str) -> int:
    """Translate a configuration level name into a logging level."""
    return LEVELS.get(name.lower(), logging.WARNING)


def configure_logging(
    level: int = logging.WARNING,
    debug: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure the ``chef_run`` logger hierarchy.

    Args:
        level: Level for the console handler
        debug: Use the verbose format with source locations
        log_file: Optional file receiving everything at DEBUG level
    """
    root = logging.getLogger("chef_run")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    fmt = DEBUG_FORMAT if debug else LOG_FORMAT

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(fmt))
    root.addHandler(console)

    if log_file is not None:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        root.addHandler(file_handler)

    root.setLevel(logging.DEBUG if log_file is not None else level)
    root.propagate = False


class StructuredLogger:
    """Logger wrapper that renders context as trailing key=value pairs."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._context: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def add_context(self, **context: Any) -> None:
        """Attach context rendered on every subsequent message."""
        self._context.update(context)

    def _render(self, message: str, extra: dict[str, Any]) -> str:
        merged = {**self._context, **extra}
        if not merged:
            return message
        pairs = " ".join(f"{key}={value}" for key, value in merged.items())
        return f"{message} [{pairs}]"

    def debug(self, message: str, **extra: Any) -> None:
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(self._render(message, extra))

    def info(self, message: str, **extra: Any) -> None:
        if self._logger.isEnabledFor(logging.INFO):
            self._logger.info(self._render(message, extra))

    def warning(self, message: str, **extra: Any) -> None:
        self._logger.warning(self._render(message, extra))

    def error(self, message: str, **extra: Any) -> None:
        self._logger.error(self._render(message, extra))

    @contextmanager
    def performance(self, label: str, **extra: Any) -> Iterator[None]:
        """Log how long the enclosed block took."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            self.info(f"{label} finished", duration=f"{elapsed:.3f}s", **extra)

    @contextmanager
    def scope(self, label: str) -> Iterator[None]:
        """Log entry to and exit from a block of work."""
        self.debug(f"Entering {label}")
        try:
            yield
        except Exception:
            self.debug(f"{label} raised")
            raise
        self.debug(f"Leaving {label}")


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name))
