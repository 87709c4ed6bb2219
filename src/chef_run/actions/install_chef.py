"""Ensure chef-client is installed on a target at the minimum version."""

import logging
from enum import Enum
from pathlib import Path

from ..artifacts import ArtifactLookup
from ..config import RunConfig
from ..events import EmitFn, InstallPhase
from ..exceptions import (
    ChefRunError,
    ClientNotInstalled,
    ClientOutdated,
    InstallError,
    RemoteCommandError,
)
from ..file_fetcher import FileFetcher
from ..target_host import TargetHost
from ..types import AgentVersion, ArtifactInfo, InstallDecision, VersionCheck
from .base import Action

logger = logging.getLogger(__name__)


class InstallState(str, Enum):
    CHECKING = "checking"
    ALREADY_SATISFIED = "already-satisfied"
    UPGRADE_NEEDED = "upgrade-needed"
    NOT_INSTALLED = "not-installed"
    LOCATING_ARTIFACT = "locating-artifact"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    INSTALLING = "installing"
    INSTALLED = "installed"
    FAILED = "failed"


def decide_install(check: VersionCheck, minimum: AgentVersion, install_enabled: bool) -> InstallDecision:
    """Decide what the installer does for a target.

    Args:
        check: Result of probing the target
        minimum: Lowest acceptable chef-client version
        install_enabled: Whether chef-run may install or upgrade

    Returns:
        ALREADY_SATISFIED when the installed version is at least
        ``minimum``, CHECK_ONLY_SKIP when installation is disabled and the
        target falls short, otherwise UPGRADE or FRESH_INSTALL.
    """
    if check.satisfies(minimum):
        return InstallDecision.ALREADY_SATISFIED
    if not install_enabled:
        return InstallDecision.CHECK_ONLY_SKIP
    if check.installed:
        return InstallDecision.UPGRADE
    return InstallDecision.FRESH_INSTALL


class AgentInstaller(Action):
    """Install state machine for one target.

    ``perform_action`` probes the installed version and, when needed,
    walks through ``perform_local_install``: locate the package, download
    it to the workstation, upload it and install it on the target. Each
    step is its own method.

    Attributes:
        state: Current InstallState
        decision: InstallDecision once the check has run
        upgrading: True when replacing an older installed version
        installed_version: Version found before installing, if any
        version_to_install: Version of the located package
    """

    error_phase = InstallPhase.ERROR

    def __init__(
        self,
        target_host: TargetHost,
        config: RunConfig,
        emit: EmitFn | None = None,
        artifacts: ArtifactLookup | None = None,
        fetcher: FileFetcher | None = None,
    ):
        super().__init__(target_host, config, emit)
        self.artifacts = artifacts or ArtifactLookup(config)
        self.fetcher = fetcher or FileFetcher(config.cache_path)
        self.state = InstallState.CHECKING
        self.decision: InstallDecision | None = None
        self.upgrading = False
        self.installed_version: AgentVersion | None = None
        self.version_to_install: str | None = None
        self.artifact: ArtifactInfo | None = None
        self._remote_dir: str | None = None

    @property
    def minimum(self) -> AgentVersion:
        return self.config.chef.minimum

    async def perform_action(self) -> InstallDecision:
        try:
            return await self._install_if_needed()
        except Exception:
            self.state = InstallState.FAILED
            raise

    async def _install_if_needed(self) -> InstallDecision:
        host = self.target_host
        self.state = InstallState.CHECKING
        check = await host.installed_agent_version()
        self.installed_version = check.version
        self.decision = decide_install(check, self.minimum, self.config.chef.install)
        logger.debug("[%s] install decision %s (found %s)", host.name, self.decision.value, check.version)

        if self.decision is InstallDecision.ALREADY_SATISFIED:
            self.state = InstallState.ALREADY_SATISFIED
            self.notify(InstallPhase.ALREADY_INSTALLED, version=str(check.version))
            return self.decision

        if self.decision is InstallDecision.CHECK_ONLY_SKIP:
            if check.installed:
                raise ClientOutdated(
                    f"chef-client {check.version} on {host.name} is older than "
                    f"the required {self.minimum}",
                    host=host.name,
                    minimum=str(self.minimum),
                )
            raise ClientNotInstalled(
                f"chef-client is not installed on {host.name}",
                host=host.name,
                minimum=str(self.minimum),
            )

        self.upgrading = self.decision is InstallDecision.UPGRADE
        self.state = InstallState.UPGRADE_NEEDED if self.upgrading else InstallState.NOT_INSTALLED
        await self.perform_local_install()

        host.forget_installed_version()
        refreshed = await host.installed_agent_version()
        if not refreshed.satisfies(self.minimum):
            raise InstallError(
                f"chef-client {refreshed.version or 'is not present'} after installation on "
                f"{host.name}; {self.minimum} or later is required",
                host=host.name,
            )
        self.state = InstallState.INSTALLED
        self.notify(InstallPhase.INSTALL_COMPLETE, **self._version_data(str(refreshed.version)))
        return self.decision

    def _version_data(self, version: str | None) -> dict:
        data = {"version": version}
        if self.upgrading:
            data["upgrading_from"] = str(self.installed_version)
        return data

    async def perform_local_install(self) -> None:
        artifact = await self.lookup_artifact()
        local_path = await self.download_to_workstation(artifact.url)
        try:
            remote_path = await self.upload_to_target(local_path)
            await self.install_chef_to_target(remote_path)
        finally:
            await self._cleanup_remote()

    async def lookup_artifact(self) -> ArtifactInfo:
        self.state = InstallState.LOCATING_ARTIFACT
        platform = await self.target_host.platform()
        self.artifact = await self.artifacts.lookup(platform, host=self.target_host.name)
        self.version_to_install = self.artifact.version
        logger.debug("[%s] located %s", self.target_host.name, self.artifact.url)
        return self.artifact

    async def download_to_workstation(self, url: str) -> Path:
        self.state = InstallState.DOWNLOADING
        self.notify(InstallPhase.DOWNLOADING)
        sha256 = self.artifact.sha256 if self.artifact and self.artifact.url == url else ""
        return await self.fetcher.fetch(url, sha256=sha256)

    async def upload_to_target(self, local_path: Path) -> str:
        self.state = InstallState.UPLOADING
        self.notify(InstallPhase.UPLOADING)
        self._remote_dir = await self.target_host.mktemp()
        return await self.target_host.upload(local_path, self._remote_dir)

    async def install_chef_to_target(self, remote_path: str) -> None:
        self.state = InstallState.INSTALLING
        self.notify(InstallPhase.INSTALLING, **self._version_data(self.version_to_install))
        try:
            await self.target_host.run_remote_install(remote_path)
        except RemoteCommandError as e:
            raise InstallError(
                f"Installing {remote_path} on {self.target_host.name} failed: {e}",
                host=self.target_host.name,
                exit_code=e.context.exit_code,
            ) from e

    async def _cleanup_remote(self) -> None:
        if self._remote_dir is None:
            return
        remote_dir, self._remote_dir = self._remote_dir, None
        try:
            await self.target_host.remove_dir(remote_dir)
        except ChefRunError as e:
            logger.warning("[%s] could not remove %s: %s", self.target_host.name, remote_dir, e)
