"""Rendering of run failures for the terminal and the stack trace log."""

import logging
import traceback
from datetime import datetime, timezone
from pathlib import Path

from .exceptions import ChefRunError, MultiJobFailure
from .types import JobOutcome

logger = logging.getLogger(__name__)


def format_outcome(outcome: JobOutcome) -> str:
    """Describe one failed job."""
    failure = outcome.failure
    if failure is None:
        return f"{outcome.target}: succeeded"
    label = f"{failure.kind} [{failure.error_id}]" if failure.error_id else failure.kind
    lines = [f"{outcome.target} (during {outcome.phase.value}): {label}", f"    {failure.message}"]
    for suggestion in failure.context.get("suggestions", []):
        lines.append(f"    - {suggestion}")
    return "\n".join(lines)


def format_multi_job_failure(failure: MultiJobFailure) -> str:
    lines = [f"{len(failure.failed)} target(s) failed:", ""]
    for outcome in failure.failed:
        lines.append(format_outcome(outcome))
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def format_error(exc: BaseException) -> str:
    """Text shown to the user for an error that ended the run."""
    if isinstance(exc, MultiJobFailure):
        return format_multi_job_failure(exc)
    if isinstance(exc, ChefRunError):
        return exc.context.format_text() + "\n"
    return f"Unexpected error: {type(exc).__name__}: {exc}\n"


def write_backtrace(exc: BaseException, path: Path) -> Path:
    """Append the backtrace(s) of ``exc`` to ``path``.

    For a MultiJobFailure the captured backtrace of every failed job is
    written, each under its target name.
    """
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).isoformat()
    with open(path, "a") as f:
        f.write(f"=== {stamp} ===\n")
        if isinstance(exc, MultiJobFailure):
            for outcome in exc.failed:
                f.write(f"--- {outcome.target} ---\n")
                if outcome.failure is not None:
                    f.write(outcome.failure.backtrace or f"{outcome.failure.message}\n")
        else:
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
        f.write("\n")
    logger.debug("Wrote backtrace to %s", path)
    return path
