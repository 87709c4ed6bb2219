"""Per-target progress reporting for chef-run.

Each target gets its own Reporter from a ReporterFactory. Reporters of
one run share an output stream and a lock, so lines from concurrent
targets interleave but never tear.
"""

import json
import sys
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any


class Reporter(ABC):
    """Status sink for one target."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def update(self, message: str) -> None:
        """Report an intermediate status."""

    @abstractmethod
    def success(self, message: str) -> None:
        """Report a successful terminal status."""

    @abstractmethod
    def error(self, message: str) -> None:
        """Report a failed terminal status."""


class TextReporter(Reporter):
    """Reports progress as ``[target] message`` lines."""

    MARKERS = {"update": "-", "success": "✓", "error": "✗"}

    def __init__(self, name: str, output: Any = None, lock: "threading.Lock | None" = None) -> None:
        super().__init__(name)
        self.output = output or sys.stdout
        self.lock = lock or threading.Lock()

    def _emit(self, kind: str, message: str) -> None:
        line = f"[{self.name}] {self.MARKERS[kind]} {message}"
        with self.lock:
            print(line, file=self.output, flush=True)

    def update(self, message: str) -> None:
        self._emit("update", message)

    def success(self, message: str) -> None:
        self._emit("success", message)

    def error(self, message: str) -> None:
        self._emit("error", message)


class JsonReporter(Reporter):
    """Reports progress as NDJSON (newline-delimited JSON) events."""

    def __init__(self, name: str, output: Any = None, lock: "threading.Lock | None" = None) -> None:
        super().__init__(name)
        self.output = output or sys.stdout
        self.lock = lock or threading.Lock()

    def _emit(self, status: str, message: str) -> None:
        record = {
            "target": self.name,
            "status": status,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        with self.lock:
            print(json.dumps(record), file=self.output, flush=True)

    def update(self, message: str) -> None:
        self._emit("update", message)

    def success(self, message: str) -> None:
        self._emit("success", message)

    def error(self, message: str) -> None:
        self._emit("error", message)


class ReporterFactory:
    """Create reporters that share one output stream and lock.

    Args:
        json_format: Use NDJSON instead of text
        output: Output stream (defaults to sys.stdout)
    """

    def __init__(self, json_format: bool = False, output: Any = None) -> None:
        self.json_format = json_format
        self.output = output
        self.lock = threading.Lock()

    def for_target(self, name: str) -> Reporter:
        if self.json_format:
            return JsonReporter(name, self.output, self.lock)
        return TextReporter(name, self.output, self.lock)
