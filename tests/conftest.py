"""Pytest configuration and shared fixtures.

FakeBackend stands in for a remote machine: commands are answered from a
table of scripted responses keyed by a substring of the command, and
every command and upload is recorded for assertions.
"""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from chef_run.backends import TargetBackend
from chef_run.bundle import ConfigurationBundle
from chef_run.config import ChefConfig, LogConfig, RunConfig
from chef_run.exceptions import ConnectionError as TargetConnectionError
from chef_run.exceptions import ErrorTypes
from chef_run.progress import Reporter
from chef_run.target_host import TargetHost
from chef_run.types import ArtifactInfo, CommandResult

Response = tuple[int, str, str] | Callable[[str], tuple[int, str, str]]

UBUNTU_OS_RELEASE = 'NAME="Ubuntu"\nID=ubuntu\nVERSION_ID="22.04"\n'


class FakeBackend(TargetBackend):
    """Scripted backend recording every interaction."""

    protocol = "fake"

    def __init__(self, chef_version: str | None = "14.1.1", connect_error: Exception | None = None):
        self.connect_error = connect_error
        self.commands: list[str] = []
        self.uploads: list[tuple[Path, str]] = []
        self.uploaded_content: dict[str, bytes] = {}
        self.connected = False
        self.close_calls = 0
        self.responses: list[tuple[str, Response]] = []
        self.chef_version = chef_version
        self.respond("uname -s", stdout="Linux\n")
        self.respond("uname -m", stdout="x86_64\n")
        self.respond("cat /etc/os-release", stdout=UBUNTU_OS_RELEASE)
        self.respond("mktemp -d", stdout="/tmp/chef-run.abc123\n")
        self.respond("chef-client -v", self._version_response)

    def _version_response(self, command: str) -> tuple[int, str, str]:
        if self.chef_version is None:
            return 127, "", "chef-client: command not found"
        return 0, f"Chef Infra Client: {self.chef_version}\n", ""

    def respond(self, pattern: str, response: Response | None = None, stdout: str = "", returncode: int = 0, stderr: str = ""):
        """Answer commands containing ``pattern``; later registrations win."""
        self.responses.insert(0, (pattern, response or (returncode, stdout, stderr)))

    def ran(self, pattern: str) -> list[str]:
        return [c for c in self.commands if pattern in c]

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def run(self, command: str, input: str | None = None) -> CommandResult:
        self.commands.append(command)
        for pattern, response in self.responses:
            if pattern in command:
                rc, stdout, stderr = response(command) if callable(response) else response
                return CommandResult(command=command, stdout=stdout, stderr=stderr, returncode=rc)
        return CommandResult(command=command, stdout="", stderr="", returncode=0)

    async def put(self, local_path: Path, remote_path: str) -> None:
        self.uploads.append((Path(local_path), remote_path))
        self.uploaded_content[remote_path] = Path(local_path).read_bytes()

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False


class RecordingReporter(Reporter):
    """Reporter keeping every message as a (kind, message) pair."""

    def __init__(self, name: str = "test") -> None:
        super().__init__(name)
        self.messages: list[tuple[str, str]] = []

    def update(self, message: str) -> None:
        self.messages.append(("update", message))

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.messages]


def unreachable(name: str) -> TargetConnectionError:
    return TargetConnectionError(
        f"Connection timed out connecting to {name}",
        host=name,
        host_address=name,
        error_type=ErrorTypes.CONNECTION_TIMEOUT,
    )


def make_target(name: str = "web01", backend: TargetBackend | None = None, **kwargs) -> TargetHost:
    return TargetHost(name, backend=backend or FakeBackend(), **kwargs)


@pytest.fixture
def run_config(tmp_path) -> RunConfig:
    """Run configuration rooted in a temporary directory."""
    return RunConfig(
        log=LogConfig(level="debug", location=tmp_path / "logs" / "default.log"),
        chef=ChefConfig(minimum_version="14.1.1"),
        cache_path=tmp_path / "cache",
    )


@pytest.fixture
def bundle():
    """A resource bundle removed after the test."""
    b = ConfigurationBundle.from_resource("file", "/tmp/hello", {"content": "hello"})
    yield b
    b.delete()


@pytest.fixture
def artifact() -> ArtifactInfo:
    return ArtifactInfo(
        url="https://packages.example.com/chef_18.2.7-1_amd64.deb",
        version="18.2.7",
        sha256="",
        platform="ubuntu",
        arch="x86_64",
    )


@pytest.fixture
def artifacts(artifact):
    """ArtifactLookup stand-in returning ``artifact``."""
    lookup = MagicMock()
    lookup.lookup = AsyncMock(return_value=artifact)
    return lookup


@pytest.fixture
def fetcher(tmp_path):
    """FileFetcher stand-in returning a local package file."""
    package = tmp_path / "chef_18.2.7-1_amd64.deb"
    package.write_bytes(b"package")
    fake = MagicMock()
    fake.fetch = AsyncMock(return_value=package)
    return fake
