"""Shared value types for chef-run.

These are plain, mostly frozen dataclasses and enums passed between the
resolver, the per-target actions, the job runner and the aggregator.
"""

import re
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .exceptions import ChefRunError

VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")


@dataclass(frozen=True, order=True)
class AgentVersion:
    """A comparable ``major.minor.patch`` version.

    Example:
        >>> AgentVersion.parse("Chef Infra Client: 15.8.23") >= AgentVersion.parse("14.1.1")
        True
    """

    major: int
    minor: int
    patch: int = 0

    @classmethod
    def parse(cls, text: str) -> "AgentVersion":
        """Extract the first version number found in ``text``.

        Raises:
            ValueError: If ``text`` holds no version number
        """
        match = VERSION_RE.search(text or "")
        if match is None:
            raise ValueError(f"No version number in {text!r}")
        major, minor, patch = match.groups()
        return cls(int(major), int(minor), int(patch or 0))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class VersionCheck:
    """Outcome of probing a target for its installed chef-client.

    An absent client is a normal result, not an error: ``installed`` is
    False and ``version`` is None.
    """

    installed: bool
    version: AgentVersion | None = None

    @classmethod
    def not_installed(cls) -> "VersionCheck":
        return cls(installed=False)

    @classmethod
    def found(cls, version: AgentVersion) -> "VersionCheck":
        return cls(installed=True, version=version)

    def satisfies(self, minimum: AgentVersion) -> bool:
        return self.installed and self.version is not None and self.version >= minimum


class ConnectionState(str, Enum):
    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    FAILED = "failed"


class InstallDecision(str, Enum):
    """What the installer will do for one target."""

    ALREADY_SATISFIED = "already-satisfied"
    UPGRADE = "upgrade"
    FRESH_INSTALL = "fresh-install"
    CHECK_ONLY_SKIP = "check-only-skip"


class JobPhase(str, Enum):
    """Furthest pipeline phase a job reached."""

    PENDING = "pending"
    CONNECT = "connect"
    INSTALL = "install"
    CONVERGE = "converge"
    COMPLETE = "complete"


class ConvergeResult(str, Enum):
    SUCCESS = "success"
    REBOOT = "reboot"


@dataclass(frozen=True)
class Platform:
    """Operating system facts of a target."""

    name: str
    family: str
    release: str = ""
    arch: str = "x86_64"

    @property
    def is_windows(self) -> bool:
        return self.family == "windows"


@dataclass(frozen=True)
class ArtifactInfo:
    """Location and checksum of a chef-client installer package."""

    url: str
    version: str
    sha256: str = ""
    platform: str = ""
    arch: str = ""


@dataclass
class CommandResult:
    """Result of a command run on a target."""

    command: str
    stdout: str
    stderr: str
    returncode: int

    @property
    def success(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class FailureDetail:
    """Captured failure of a job: kind, message and optional backtrace."""

    kind: str
    message: str
    error_id: str = ""
    backtrace: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "FailureDetail":
        backtrace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        if isinstance(exc, ChefRunError):
            return cls(
                kind=exc.error_type,
                message=str(exc),
                error_id=exc.error_id,
                backtrace=backtrace,
                context=exc.context.to_dict(),
            )
        return cls(
            kind=type(exc).__name__,
            message=str(exc) or type(exc).__name__,
            backtrace=backtrace,
        )


@dataclass(frozen=True)
class JobOutcome:
    """Terminal result of one target's job.

    Attributes:
        target: Target name (hostname as written in the target spec)
        phase: Furthest phase the job reached
        success: Whether the job finished without error
        converge_result: SUCCESS or REBOOT when the converge completed
        failure: Captured failure when ``success`` is False
    """

    target: str
    phase: JobPhase
    success: bool
    converge_result: ConvergeResult | None = None
    failure: FailureDetail | None = None

    @classmethod
    def succeeded(cls, target: str, converge_result: ConvergeResult) -> "JobOutcome":
        return cls(
            target=target,
            phase=JobPhase.COMPLETE,
            success=True,
            converge_result=converge_result,
        )

    @classmethod
    def failed(cls, target: str, phase: JobPhase, exc: BaseException) -> "JobOutcome":
        return cls(
            target=target,
            phase=phase,
            success=False,
            failure=FailureDetail.from_exception(exc),
        )

    @property
    def reboot_required(self) -> bool:
        return self.converge_result is ConvergeResult.REBOOT
