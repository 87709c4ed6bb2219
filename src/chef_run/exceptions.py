"""Exception classes for chef-run.

Provides structured exception types with rich context for diagnosis
and actionable error messages. Every error raised on purpose by chef-run
derives from ChefRunError so that the CLI can render it uniformly.
"""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import JobOutcome


@dataclass
class ErrorContext:
    """Rich context for error diagnosis.

    Attributes:
        host: Target name where the error occurred
        host_address: Target address and port
        user: Remote username
        action: Phase being executed (connect, install, converge)
        error_type: Classification of error (e.g., "ConnectionTimeout")
        error_id: Stable identifier shown to users (e.g., "CHEFVAL003")
        message: Human-readable error message
        exit_code: Exit code if applicable
        suggestions: List of actionable suggestions
        debug_command: Command to run for debugging
        related_errors: Other targets that failed the same way
    """

    host: str = ""
    host_address: str = ""
    user: str = ""
    action: str = ""
    error_type: str = "Unknown"
    error_id: str = ""
    message: str = ""
    exit_code: int | None = None
    suggestions: list[str] = field(default_factory=list)
    debug_command: str = ""
    related_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "error_type": self.error_type,
            "message": self.message,
        }
        if self.error_id:
            result["error_id"] = self.error_id
        if self.host:
            result["host"] = self.host
        if self.host_address:
            result["host_address"] = self.host_address
        if self.user:
            result["user"] = self.user
        if self.action:
            result["action"] = self.action
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.suggestions:
            result["suggestions"] = self.suggestions
        if self.debug_command:
            result["debug_command"] = self.debug_command
        if self.related_errors:
            result["related_hosts"] = self.related_errors
        return result

    def format_text(self) -> str:
        """Format as human-readable text."""
        lines = []

        header = f"Error on host '{self.host}'" if self.host else "Error"
        if self.error_id:
            header = f"{header} [{self.error_id}]"
        lines.append(header)

        lines.append(f"  Type: {self.error_type}")
        lines.append(f"  Message: {self.message}")

        if self.host_address or self.user or self.action or self.exit_code is not None:
            lines.append("")
            lines.append("  Context:")
            if self.host_address:
                lines.append(f"    Host: {self.host_address}")
            if self.user:
                lines.append(f"    User: {self.user}")
            if self.action:
                lines.append(f"    Action: {self.action}")
            if self.exit_code is not None:
                lines.append(f"    Exit Code: {self.exit_code}")

        if self.suggestions:
            lines.append("")
            lines.append("  Suggested Actions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"    {i}. {suggestion}")

        if self.debug_command:
            lines.append("")
            lines.append(f"  Debug Command: {self.debug_command}")

        if self.related_errors:
            lines.append("")
            lines.append(f"  Related Hosts (same error): {', '.join(self.related_errors)}")

        return "\n".join(lines)


class ErrorTypes:
    """Standard error type classifications."""

    CONNECTION_TIMEOUT = "ConnectionTimeout"
    CONNECTION_REFUSED = "ConnectionRefused"
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    HOST_UNREACHABLE = "HostUnreachable"
    CONNECTION_LOST = "ConnectionLost"
    RESOLUTION_ERROR = "ResolutionError"
    UNSUPPORTED_PROTOCOL = "UnsupportedProtocol"
    INVALID_RANGE = "InvalidRange"
    TOO_MANY_TARGETS = "TooManyTargets"
    VALIDATION_ERROR = "ValidationError"
    CONFIG_ERROR = "ConfigError"
    COOKBOOK_NOT_FOUND = "CookbookNotFound"
    RECIPE_NOT_FOUND = "RecipeNotFound"
    ARTIFACT_LOOKUP_FAILED = "ArtifactLookupFailed"
    DOWNLOAD_FAILED = "DownloadFailed"
    REMOTE_COMMAND_FAILED = "RemoteCommandFailed"
    UNSUPPORTED_PLATFORM = "UnsupportedPlatform"
    INSTALL_FAILED = "InstallFailed"
    CLIENT_NOT_INSTALLED = "ClientNotInstalled"
    CLIENT_OUTDATED = "ClientOutdated"
    CONVERGE_FAILED = "ConvergeFailed"
    MULTI_JOB_FAILURE = "MultiJobFailure"
    UNKNOWN = "Unknown"


ERROR_SUGGESTIONS: dict[str, list[str]] = {
    ErrorTypes.CONNECTION_TIMEOUT: [
        "Verify host is reachable: ping {host_address}",
        "Check if SSH port is open: nc -zv {host} {port}",
        "Verify firewall allows connections on port {port}",
    ],
    ErrorTypes.CONNECTION_REFUSED: [
        "Verify SSH daemon is running on target: systemctl status sshd",
        "Check SSH is listening on port {port}: ss -tlnp | grep {port}",
        "Verify the port in the target specification (current: {port})",
    ],
    ErrorTypes.AUTHENTICATION_FAILED: [
        "Verify SSH credentials are correct",
        "Check SSH key is in authorized_keys: ssh-copy-id {user}@{host}",
        "Pass the key explicitly: chef-run -i {key_file} ...",
    ],
    ErrorTypes.HOST_UNREACHABLE: [
        "Verify host is powered on and connected to network",
        "Check DNS resolution: nslookup {host}",
    ],
    ErrorTypes.CONNECTION_LOST: [
        "Check whether the target rebooted or dropped the SSH session",
        "Re-run chef-run against {host}",
    ],
    ErrorTypes.UNSUPPORTED_PROTOCOL: [
        "Use one of the supported protocols: {supported}",
    ],
    ErrorTypes.TOO_MANY_TARGETS: [
        "Narrow the target ranges to at most {limit} hosts",
    ],
    ErrorTypes.CLIENT_NOT_INSTALLED: [
        "Re-run without --no-install to let chef-run install chef-client",
        "Install chef-client {minimum} or later on the target manually",
    ],
    ErrorTypes.CLIENT_OUTDATED: [
        "Re-run without --no-install to let chef-run upgrade chef-client",
        "Upgrade chef-client on the target to {minimum} or later",
    ],
    ErrorTypes.CONVERGE_FAILED: [
        "Review the chef-client output above for the failing resource",
        "Run with --debug for the full remote output",
    ],
    ErrorTypes.COOKBOOK_NOT_FOUND: [
        "Check the cookbook name spelling",
        "Add the repository with --cookbook-repo-paths",
    ],
}


def get_suggestions(error_type: str, **context: Any) -> list[str]:
    """Get suggestions for an error type with context substitution.

    Args:
        error_type: The error type classification
        **context: Variables for substitution (host, port, user, etc.)

    Returns:
        List of actionable suggestions
    """
    templates = ERROR_SUGGESTIONS.get(error_type, [])
    suggestions = []
    for template in templates:
        try:
            suggestions.append(template.format(**context))
        except KeyError:
            suggestions.append(re.sub(r"\{[^}]+\}", "<value>", template))
    return suggestions


class ChefRunError(Exception):
    """Base exception for all chef-run errors.

    Attributes:
        context: Rich error context for diagnosis
    """

    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(message)
        self.context = context or ErrorContext(message=message)

    @property
    def error_type(self) -> str:
        return self.context.error_type

    @property
    def error_id(self) -> str:
        return self.context.error_id

    def with_context(self, **kwargs: Any) -> "ChefRunError":
        """Add context to this error."""
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
        return self


# Resolution and validation errors abort the run before any job starts.


class ResolutionError(ChefRunError):
    """Raised when a target specification cannot be expanded."""

    def __init__(
        self,
        message: str,
        error_type: str = ErrorTypes.RESOLUTION_ERROR,
        suggestions: list[str] | None = None,
    ):
        context = ErrorContext(
            error_type=error_type,
            message=message,
            suggestions=suggestions or [],
        )
        super().__init__(message, context)


class UnsupportedTargetProtocol(ResolutionError):
    """Raised when a target names a protocol without a backend."""

    def __init__(self, protocol: str, supported: list[str]):
        super().__init__(
            f"Unsupported protocol '{protocol}'",
            error_type=ErrorTypes.UNSUPPORTED_PROTOCOL,
            suggestions=get_suggestions(
                ErrorTypes.UNSUPPORTED_PROTOCOL, supported=", ".join(supported)
            ),
        )
        self.protocol = protocol


class InvalidRange(ResolutionError):
    """Raised when a bracketed host range is malformed."""

    def __init__(self, spec: str, reason: str):
        super().__init__(
            f"Invalid range in '{spec}': {reason}",
            error_type=ErrorTypes.INVALID_RANGE,
        )
        self.spec = spec


class TooManyTargets(ResolutionError):
    """Raised when a target specification expands past the allowed limit."""

    def __init__(self, count: int, limit: int):
        super().__init__(
            f"Target specification expands to {count} hosts; the limit is {limit}",
            error_type=ErrorTypes.TOO_MANY_TARGETS,
            suggestions=get_suggestions(ErrorTypes.TOO_MANY_TARGETS, limit=limit),
        )
        self.count = count
        self.limit = limit


class OptionValidationError(ChefRunError):
    """Raised when command-line arguments are invalid."""

    def __init__(self, error_id: str, message: str):
        context = ErrorContext(
            error_type=ErrorTypes.VALIDATION_ERROR,
            error_id=error_id,
            message=message,
        )
        super().__init__(message, context)


class ConfigError(ChefRunError):
    """Raised when the configuration file cannot be used."""

    def __init__(self, message: str):
        context = ErrorContext(error_type=ErrorTypes.CONFIG_ERROR, message=message)
        super().__init__(message, context)


class CookbookNotFound(ChefRunError):
    """Raised when a named cookbook is not present in any repository."""

    def __init__(self, name: str, search_paths: list[str] | None = None):
        message = f"Cookbook '{name}' not found"
        if search_paths:
            message = f"{message} in {', '.join(search_paths)}"
        context = ErrorContext(
            error_type=ErrorTypes.COOKBOOK_NOT_FOUND,
            message=message,
            suggestions=get_suggestions(ErrorTypes.COOKBOOK_NOT_FOUND),
        )
        super().__init__(message, context)
        self.name = name
        self.search_paths = search_paths or []


class RecipeNotFound(ChefRunError):
    """Raised when a cookbook has no recipe with the requested name."""

    def __init__(self, cookbook_path: str, recipe_name: str, available: list[str] | None = None):
        message = f"Recipe '{recipe_name}' not found in cookbook {cookbook_path}"
        if available:
            message = f"{message} (available: {', '.join(sorted(available))})"
        context = ErrorContext(error_type=ErrorTypes.RECIPE_NOT_FOUND, message=message)
        super().__init__(message, context)
        self.recipe_name = recipe_name


# Per-target errors are captured by the job that raised them.


class ConnectionError(ChefRunError):
    """Raised when a target cannot be reached."""

    def __init__(
        self,
        message: str,
        host: str = "",
        host_address: str = "",
        port: int = 22,
        user: str = "",
        error_type: str = ErrorTypes.CONNECTION_TIMEOUT,
    ):
        suggestions = get_suggestions(
            error_type,
            host=host,
            host_address=host_address,
            port=port,
            user=user,
        )
        context = ErrorContext(
            error_type=error_type,
            message=message,
            host=host,
            host_address=f"{host_address}:{port}",
            user=user,
            action="connect",
            suggestions=suggestions,
        )
        super().__init__(message, context)


class AuthenticationError(ChefRunError):
    """Raised when a target rejects the supplied credentials."""

    def __init__(
        self,
        message: str,
        host: str = "",
        host_address: str = "",
        port: int = 22,
        user: str = "",
        key_file: str = "",
    ):
        suggestions = get_suggestions(
            ErrorTypes.AUTHENTICATION_FAILED,
            host=host_address,
            port=port,
            user=user,
            key_file=key_file or "~/.ssh/id_rsa",
        )
        context = ErrorContext(
            error_type=ErrorTypes.AUTHENTICATION_FAILED,
            message=message,
            host=host,
            host_address=f"{host_address}:{port}",
            user=user,
            action="connect",
            suggestions=suggestions,
        )
        super().__init__(message, context)


class RemoteCommandError(ChefRunError):
    """Raised when a remote command exits non-zero."""

    def __init__(
        self,
        message: str,
        host: str = "",
        command: str = "",
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        context = ErrorContext(
            error_type=ErrorTypes.REMOTE_COMMAND_FAILED,
            message=message,
            host=host,
            exit_code=exit_code,
            debug_command=command,
        )
        super().__init__(message, context)
        self.command = command
        self.stdout = stdout
        self.stderr = stderr


class UnsupportedPlatform(ChefRunError):
    """Raised when no installer exists for a target's platform."""

    def __init__(self, message: str, host: str = ""):
        context = ErrorContext(
            error_type=ErrorTypes.UNSUPPORTED_PLATFORM,
            message=message,
            host=host,
            action="install",
        )
        super().__init__(message, context)


class ArtifactLookupError(ChefRunError):
    """Raised when no installer package can be located for a platform."""

    def __init__(self, message: str, host: str = ""):
        context = ErrorContext(
            error_type=ErrorTypes.ARTIFACT_LOOKUP_FAILED,
            message=message,
            host=host,
            action="install",
        )
        super().__init__(message, context)


class DownloadError(ChefRunError):
    """Raised when an installer package cannot be downloaded."""

    def __init__(self, message: str, url: str = ""):
        context = ErrorContext(
            error_type=ErrorTypes.DOWNLOAD_FAILED,
            message=message,
            action="install",
            debug_command=f"curl -fLO {url}" if url else "",
        )
        super().__init__(message, context)
        self.url = url


class InstallError(ChefRunError):
    """Raised when the remote package installation fails."""

    def __init__(self, message: str, host: str = "", exit_code: int | None = None):
        context = ErrorContext(
            error_type=ErrorTypes.INSTALL_FAILED,
            message=message,
            host=host,
            action="install",
            exit_code=exit_code,
        )
        super().__init__(message, context)


class MinimumVersionNotMet(ChefRunError):
    """Base for check-only failures: chef-client is absent or too old."""

    error_kind = ErrorTypes.UNKNOWN

    def __init__(self, message: str, host: str = "", minimum: str = ""):
        context = ErrorContext(
            error_type=self.error_kind,
            message=message,
            host=host,
            action="install",
            suggestions=get_suggestions(self.error_kind, minimum=minimum),
        )
        super().__init__(message, context)
        self.minimum = minimum


class ClientNotInstalled(MinimumVersionNotMet):
    """Raised in check-only mode when chef-client is not installed."""

    error_kind = ErrorTypes.CLIENT_NOT_INSTALLED


class ClientOutdated(MinimumVersionNotMet):
    """Raised in check-only mode when chef-client is below the minimum."""

    error_kind = ErrorTypes.CLIENT_OUTDATED


class ConvergeError(ChefRunError):
    """Raised when chef-client fails on the target."""

    def __init__(
        self,
        message: str,
        host: str = "",
        exit_code: int | None = None,
        output: str = "",
    ):
        context = ErrorContext(
            error_type=ErrorTypes.CONVERGE_FAILED,
            message=message,
            host=host,
            action="converge",
            exit_code=exit_code,
            suggestions=get_suggestions(ErrorTypes.CONVERGE_FAILED),
        )
        super().__init__(message, context)
        self.output = output


class MultiJobFailure(ChefRunError):
    """Raised when one or more jobs of a multi-target run failed.

    A single failed job is reported through this same type so the
    multi-target output looks the same regardless of the failure count.
    """

    def __init__(self, failed: list["JobOutcome"]):
        self.failed = list(failed)
        names = [outcome.target for outcome in self.failed]
        message = f"{len(self.failed)} target(s) failed: {', '.join(names)}"
        context = ErrorContext(
            error_type=ErrorTypes.MULTI_JOB_FAILURE,
            message=message,
            related_errors=names,
        )
        super().__init__(message, context)
