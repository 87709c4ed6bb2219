"""Connection handle for one chef-run target.

A TargetHost carries the address and credentials produced by the
resolver, owns the backend connection, and caches facts discovered about
the target (platform and installed chef-client version). Each TargetHost
is used by exactly one job.
"""

import logging
import re
import shlex
from pathlib import Path, PurePosixPath, PureWindowsPath

from .backends import TargetBackend, create_backend
from .exceptions import ConnectionError as TargetConnectionError
from .exceptions import ChefRunError, ErrorTypes, RemoteCommandError, UnsupportedPlatform
from .types import AgentVersion, CommandResult, ConnectionState, Platform, VersionCheck

logger = logging.getLogger(__name__)

LINUX_CHEF_CLIENT = "/opt/chef/bin/chef-client"
WINDOWS_CHEF_CLIENT = "C:\\opscode\\chef\\bin\\chef-client.bat"

# Exit codes chef-client uses when the run succeeded but a reboot is due.
REBOOT_EXIT_CODES = (35, 37)

OS_FAMILIES = {
    "debian": "debian",
    "ubuntu": "debian",
    "linuxmint": "debian",
    "rhel": "rhel",
    "centos": "rhel",
    "fedora": "fedora",
    "amzn": "amazon",
    "rocky": "rhel",
    "almalinux": "rhel",
    "ol": "rhel",
    "sles": "suse",
    "opensuse": "suse",
    "opensuse-leap": "suse",
}


def _parse_os_release(text: str) -> dict[str, str]:
    values = {}
    for line in text.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip('"')
    return values


class TargetHost:
    """A remote machine addressed by chef-run.

    Attributes:
        hostname: Address used to connect
        protocol: Backend protocol ("ssh" or "local")
        user: Remote user, or None for the backend default
        password: Password, or None
        port: Port, or None for the protocol default
        identity_files: Private keys offered to SSH
        sudo: Prefix privileged commands with sudo for non-root users
        connection_state: unconnected, connected or failed
        label: Display name used instead of hostname when set

    Example:
        >>> target = TargetHost("web01", user="deploy")
        >>> await target.connect()
        >>> check = await target.installed_agent_version()
        >>> check.installed
        True
    """

    def __init__(
        self,
        hostname: str,
        protocol: str = "ssh",
        user: str | None = None,
        password: str | None = None,
        port: int | None = None,
        identity_files: tuple[str, ...] = (),
        sudo: bool = True,
        connect_timeout: float = 30.0,
        host_key_checking: bool = False,
        backend: TargetBackend | None = None,
        label: str | None = None,
    ) -> None:
        self.hostname = hostname
        self.protocol = protocol
        self.user = user
        self.password = password
        self.port = port
        self.identity_files = tuple(identity_files)
        self.sudo = sudo
        self.connect_timeout = connect_timeout
        self.host_key_checking = host_key_checking
        self.label = label
        self.connection_state = ConnectionState.UNCONNECTED
        self._backend = backend
        self._platform: Platform | None = None
        self._version_check: VersionCheck | None = None

    def __repr__(self) -> str:
        return f"TargetHost({self.protocol}://{self.hostname}, state={self.connection_state.value})"

    @property
    def name(self) -> str:
        return self.label or self.hostname

    @property
    def backend(self) -> TargetBackend:
        if self._backend is None:
            self._backend = create_backend(self)
        return self._backend

    @property
    def is_connected(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED

    # Connection lifecycle

    async def connect(self) -> "TargetHost":
        """Open the connection to the target.

        Raises:
            ConnectionError: If the target cannot be reached
            AuthenticationError: If the credentials are rejected
        """
        if self.is_connected:
            return self
        try:
            await self.backend.connect()
        except ChefRunError:
            self.connection_state = ConnectionState.FAILED
            raise
        self.connection_state = ConnectionState.CONNECTED
        return self

    async def disconnect(self) -> None:
        if self._backend is not None:
            await self._backend.close()
        if self.connection_state is ConnectionState.CONNECTED:
            self.connection_state = ConnectionState.UNCONNECTED

    # Command execution

    def _privileged(self, command: str) -> str:
        if self.sudo and self.user != "root" and not self._is_windows_cached():
            return f"sudo -n {command}"
        return command

    def _is_windows_cached(self) -> bool:
        return self._platform is not None and self._platform.is_windows

    async def run_command(self, command: str, input: str | None = None) -> CommandResult:
        """Run a command on the target and return its result."""
        if not self.is_connected:
            raise TargetConnectionError(
                f"{self.hostname} is not connected",
                host=self.hostname,
                host_address=self.hostname,
                port=self.port or 22,
                user=self.user or "",
                error_type=ErrorTypes.HOST_UNREACHABLE,
            )
        logger.debug("[%s] run: %s", self.hostname, command)
        result = await self.backend.run(command, input=input)
        logger.debug("[%s] rc=%d", self.hostname, result.returncode)
        return result

    async def run_command_checked(self, command: str) -> CommandResult:
        """Run a command and raise RemoteCommandError on a non-zero exit."""
        result = await self.run_command(command)
        if not result.success:
            raise RemoteCommandError(
                f"Command failed on {self.hostname} with exit code {result.returncode}: "
                f"{(result.stderr or result.stdout).strip()[:200]}",
                host=self.hostname,
                command=command,
                exit_code=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    # Facts

    async def platform(self) -> Platform:
        """Discover and cache the target's operating system."""
        if self._platform is not None:
            return self._platform

        uname = await self.run_command("uname -s")
        if not uname.success:
            ver = await self.run_command("cmd /c ver")
            if ver.success and "windows" in ver.stdout.lower():
                match = re.search(r"(\d+\.\d+[.\d]*)", ver.stdout)
                self._platform = Platform(
                    name="windows",
                    family="windows",
                    release=match.group(1) if match else "",
                    arch="x86_64",
                )
                return self._platform
            raise UnsupportedPlatform(
                f"Unable to determine the operating system of {self.hostname}",
                host=self.hostname,
            )

        kernel = uname.stdout.strip().lower()
        arch = (await self.run_command("uname -m")).stdout.strip() or "x86_64"
        if kernel == "darwin":
            release = (await self.run_command("sw_vers -productVersion")).stdout.strip()
            self._platform = Platform(name="mac_os_x", family="mac_os_x", release=release, arch=arch)
        elif kernel == "linux":
            os_release = _parse_os_release((await self.run_command("cat /etc/os-release")).stdout)
            name = os_release.get("ID", "linux")
            self._platform = Platform(
                name=name,
                family=OS_FAMILIES.get(name, name),
                release=os_release.get("VERSION_ID", ""),
                arch=arch,
            )
        elif kernel.startswith(("mingw", "msys", "cygwin")):
            self._platform = Platform(name="windows", family="windows", arch=arch)
        else:
            self._platform = Platform(name=kernel, family=kernel, arch=arch)
        logger.debug("[%s] platform: %s", self.hostname, self._platform)
        return self._platform

    async def installed_agent_version(self) -> VersionCheck:
        """Report the installed chef-client version.

        A missing chef-client is returned as ``VersionCheck.not_installed()``.
        """
        if self._version_check is not None:
            return self._version_check

        platform = await self.platform()
        if platform.is_windows:
            command = f"cmd /c {WINDOWS_CHEF_CLIENT} -v"
        else:
            command = f"{LINUX_CHEF_CLIENT} -v"
        result = await self.run_command(command)
        check = VersionCheck.not_installed()
        if result.success:
            try:
                check = VersionCheck.found(AgentVersion.parse(result.stdout))
            except ValueError:
                logger.warning(
                    "[%s] unrecognized chef-client version output: %r",
                    self.hostname,
                    result.stdout.strip(),
                )
        self._version_check = check
        return check

    def forget_installed_version(self) -> None:
        """Drop the cached version so the next probe asks the target again."""
        self._version_check = None

    # File transfer and remote directories

    async def mktemp(self) -> str:
        """Create a temporary directory on the target and return its path."""
        platform = await self.platform()
        if platform.is_windows:
            script = (
                "$p = Join-Path $env:TEMP ([guid]::NewGuid().ToString()); "
                "New-Item -ItemType Directory -Path $p | Out-Null; Write-Output $p"
            )
            result = await self.run_command_checked(f'powershell -NoProfile -Command "{script}"')
        else:
            result = await self.run_command_checked("mktemp -d")
        return result.stdout.strip()

    async def remove_dir(self, path: str) -> None:
        platform = await self.platform()
        if platform.is_windows:
            command = f"powershell -NoProfile -Command \"Remove-Item -Recurse -Force '{path}'\""
        else:
            command = self._privileged(f"rm -rf {shlex.quote(path)}")
        await self.run_command_checked(command)

    def remote_join(self, directory: str, name: str) -> str:
        if self._is_windows_cached():
            return str(PureWindowsPath(directory) / name)
        return str(PurePosixPath(directory) / name)

    async def upload(self, local_path: Path, remote_dir: str | None = None) -> str:
        """Copy a local file to the target.

        Args:
            local_path: File to copy
            remote_dir: Destination directory; a fresh temporary directory
                is created when omitted

        Returns:
            Full remote path of the uploaded file
        """
        local_path = Path(local_path)
        if remote_dir is None:
            remote_dir = await self.mktemp()
        remote_path = self.remote_join(remote_dir, local_path.name)
        logger.debug("[%s] upload %s -> %s", self.hostname, local_path, remote_path)
        await self.backend.put(local_path, remote_path)
        return remote_path

    # chef-client specific operations

    async def run_remote_install(self, remote_path: str) -> CommandResult:
        """Install an uploaded chef-client package with the platform's tool.

        Raises:
            UnsupportedPlatform: If the package type has no installer
            RemoteCommandError: If the installer exits non-zero
        """
        platform = await self.platform()
        if platform.is_windows:
            command = f'cmd /c msiexec /package "{remote_path}" /quiet /norestart'
            return await self.run_command_checked(command)

        quoted = shlex.quote(remote_path)
        if remote_path.endswith(".deb"):
            command = f"dpkg -i {quoted}"
        elif remote_path.endswith(".rpm"):
            command = f"rpm -Uvh {quoted}"
        elif remote_path.endswith(".pkg"):
            command = f"installer -pkg {quoted} -target /"
        elif remote_path.endswith(".dmg"):
            mount = "/Volumes/chef_software"
            command = (
                f"sh -c 'hdiutil attach {quoted} -mountpoint {mount} -quiet && "
                f"installer -pkg {mount}/*.pkg -target / ; rc=$?; "
                f"hdiutil detach {mount} -quiet; exit $rc'"
            )
        elif remote_path.endswith(".sh"):
            command = f"sh {quoted}"
        else:
            raise UnsupportedPlatform(
                f"Don't know how to install {remote_path} on {platform.name}",
                host=self.hostname,
            )
        return await self.run_command_checked(self._privileged(command))

    async def run_agent(self, config_path: str, policy_path: str, run_list: str) -> CommandResult:
        """Run chef-client in local mode against an uploaded policy archive.

        The result is returned as-is; interpreting the exit code is up to
        the caller.
        """
        platform = await self.platform()
        if platform.is_windows:
            command = (
                f'cmd /c {WINDOWS_CHEF_CLIENT} -z --config "{config_path}" '
                f'--recipe-url "{policy_path}" -o "{run_list}" --no-color'
            )
        else:
            command = self._privileged(
                f"{LINUX_CHEF_CLIENT} -z --config {shlex.quote(config_path)} "
                f"--recipe-url {shlex.quote(policy_path)} -o {shlex.quote(run_list)} --no-color"
            )
        return await self.run_command(command)
