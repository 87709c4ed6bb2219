"""Run-scoped configuration for chef-run.

Configuration is read once from a YAML file into frozen dataclasses and
then passed explicitly to the resolver, installer and converger. Command
line flags are layered on top with ``RunConfig.with_overrides``.

Example:
    >>> config = load_config(Path("~/.chef-workstation/config.yaml"))
    >>> config = config.with_overrides(install=False, default_user="deploy")
    >>> config.chef.install
    False
"""

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError
from .types import AgentVersion

logger = logging.getLogger(__name__)

WORKSTATION_DIR = Path.home() / ".chef-workstation"
DEFAULT_CONFIG_PATH = WORKSTATION_DIR / "config.yaml"
DEFAULT_MINIMUM_VERSION = "14.1.1"

DEFAULT_CONFIG_TEXT = """\
# chef-run configuration
log:
  level: warning
  location: ~/.chef-workstation/logs/default.log
cache:
  path: ~/.chef-workstation/cache
connection:
  default_protocol: ssh
  sudo: true
  connect_timeout: 30
chef:
  minimum_version: "14.1.1"
  install: true
  channel: stable
  cookbook_repo_paths: []
"""


@dataclass(frozen=True)
class LogConfig:
    level: str = "warning"
    location: Path = WORKSTATION_DIR / "logs" / "default.log"


@dataclass(frozen=True)
class ConnectionConfig:
    """Connection defaults applied to every resolved target.

    Attributes:
        default_protocol: Protocol used when a target names none
        default_user: Remote user when a target names none
        password: Password when a target names none
        port: Port override; None uses the protocol default
        identity_files: Private keys offered for SSH authentication
        sudo: Run privileged commands through sudo for non-root users
        connect_timeout: Seconds allowed for establishing a connection
        host_key_checking: Verify SSH host keys against known_hosts
    """

    default_protocol: str = "ssh"
    default_user: str | None = None
    password: str | None = None
    port: int | None = None
    identity_files: tuple[str, ...] = ()
    sudo: bool = True
    connect_timeout: float = 30.0
    host_key_checking: bool = False


@dataclass(frozen=True)
class ChefConfig:
    """Settings that shape the install and converge phases."""

    minimum_version: str = DEFAULT_MINIMUM_VERSION
    install: bool = True
    channel: str = "stable"
    artifact_url: str = "https://omnitruck.chef.io"
    cookbook_repo_paths: tuple[str, ...] = ()

    @property
    def minimum(self) -> AgentVersion:
        return AgentVersion.parse(self.minimum_version)


@dataclass(frozen=True)
class RunConfig:
    """Immutable configuration for one chef-run invocation."""

    log: LogConfig = field(default_factory=LogConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    chef: ChefConfig = field(default_factory=ChefConfig)
    cache_path: Path = WORKSTATION_DIR / "cache"

    @property
    def stack_trace_path(self) -> Path:
        return self.log.location.parent / "stack-trace.log"

    def with_overrides(self, **overrides: Any) -> "RunConfig":
        """Return a copy with flat overrides applied to the owning section.

        Keys are matched against the fields of ``connection``, ``chef`` and
        ``log`` in that order. ``None`` values are ignored so that unset
        command-line options keep the file value.

        Raises:
            ConfigError: If a key matches no configuration field
        """
        sections = {"connection": {}, "chef": {}, "log": {}}
        top: dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key == "cache_path":
                top[key] = Path(value).expanduser()
                continue
            for name in sections:
                if key in {f.name for f in fields(getattr(self, name))}:
                    sections[name][key] = value
                    break
            else:
                raise ConfigError(f"Unknown configuration override '{key}'")

        for name, values in sections.items():
            if values:
                top[name] = replace(getattr(self, name), **values)
        return replace(self, **top)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Configuration section '{name}' must be a mapping")
    return value


def _expect(value: Any, expected: type | tuple[type, ...], key: str) -> Any:
    if not isinstance(value, expected):
        raise ConfigError(f"Configuration key '{key}' has invalid value {value!r}")
    return value


def parse_config(data: dict[str, Any]) -> RunConfig:
    """Build a RunConfig from a parsed YAML mapping.

    Unknown keys are ignored; keys with the wrong type raise ConfigError.
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    defaults = RunConfig()

    log_data = _section(data, "log")
    log = LogConfig(
        level=str(log_data.get("level", defaults.log.level)).lower(),
        location=Path(str(log_data.get("location", defaults.log.location))).expanduser(),
    )

    conn_data = _section(data, "connection")
    identity_files = conn_data.get("identity_files", [])
    if isinstance(identity_files, str):
        identity_files = [identity_files]
    port = conn_data.get("port")
    connection = ConnectionConfig(
        default_protocol=str(conn_data.get("default_protocol", "ssh")),
        default_user=conn_data.get("default_user"),
        password=conn_data.get("password"),
        port=_expect(port, int, "connection.port") if port is not None else None,
        identity_files=tuple(str(Path(p).expanduser()) for p in identity_files),
        sudo=_expect(conn_data.get("sudo", True), bool, "connection.sudo"),
        connect_timeout=float(
            _expect(conn_data.get("connect_timeout", 30), (int, float), "connection.connect_timeout")
        ),
        host_key_checking=_expect(
            conn_data.get("host_key_checking", False), bool, "connection.host_key_checking"
        ),
    )

    chef_data = _section(data, "chef")
    repo_paths = chef_data.get("cookbook_repo_paths", [])
    if isinstance(repo_paths, str):
        repo_paths = repo_paths.split(",")
    chef = ChefConfig(
        minimum_version=str(chef_data.get("minimum_version", DEFAULT_MINIMUM_VERSION)),
        install=_expect(chef_data.get("install", True), bool, "chef.install"),
        channel=str(chef_data.get("channel", "stable")),
        artifact_url=str(chef_data.get("artifact_url", defaults.chef.artifact_url)).rstrip("/"),
        cookbook_repo_paths=tuple(str(Path(p).expanduser()) for p in repo_paths),
    )
    try:
        chef.minimum
    except ValueError:
        raise ConfigError(
            f"Configuration key 'chef.minimum_version' has invalid value {chef.minimum_version!r}"
        ) from None

    cache_data = _section(data, "cache")
    cache_path = Path(str(cache_data.get("path", defaults.cache_path))).expanduser()

    return RunConfig(log=log, connection=connection, chef=chef, cache_path=cache_path)


def load_config(path: Path) -> RunConfig:
    """Load configuration from a YAML file.

    A missing file yields the defaults.

    Raises:
        ConfigError: If the file is not valid YAML or has invalid values
    """
    path = Path(path).expanduser()
    if not path.exists():
        logger.debug("No configuration at %s, using defaults", path)
        return RunConfig()
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: {e}") from e
    logger.debug("Loaded configuration from %s", path)
    return parse_config(data)


def create_default_config_file(path: Path = DEFAULT_CONFIG_PATH) -> Path:
    """Write the default configuration file, creating parent directories."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TEXT)
    return path
