"""Converge a target against the run's configuration bundle."""

import asyncio
import logging
import re
import shutil
import tarfile
import tempfile
from enum import Enum
from pathlib import Path

from ..bundle import ConfigurationBundle
from ..config import RunConfig
from ..events import ConvergePhase, EmitFn
from ..exceptions import ChefRunError, ConvergeError
from ..target_host import REBOOT_EXIT_CODES, TargetHost
from ..types import ConvergeResult
from .base import Action

logger = logging.getLogger(__name__)

CLIENT_CONFIG_NAME = "workstation.rb"
OUTPUT_TAIL_LINES = 20


class ConvergeState(str, Enum):
    CREATING_REMOTE_POLICY = "creating-remote-policy"
    RUNNING_AGENT = "running-agent"
    SUCCESS = "success"
    REBOOT_REQUIRED = "reboot-required"
    CONVERGE_ERROR = "converge-error"


def client_config(remote_dir: str) -> str:
    """chef-client configuration for a local-mode run rooted at ``remote_dir``."""
    root = remote_dir.replace("\\", "/")
    return (
        "local_mode true\n"
        "color false\n"
        f"cache_path '{root}/cache'\n"
        f"chef_repo_path '{root}/repo'\n"
        "log_location STDOUT\n"
    )


def output_tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join(text.rstrip().splitlines()[-lines:])


class Converger(Action):
    """Converge state machine for one target.

    Archives the shared bundle into a per-target policy, uploads it with a
    generated client configuration, runs chef-client in local mode and
    classifies its exit code. The remote directory and the local archive
    are removed whatever the outcome.
    """

    error_phase = ConvergePhase.ERROR

    def __init__(
        self,
        target_host: TargetHost,
        config: RunConfig,
        bundle: ConfigurationBundle,
        emit: EmitFn | None = None,
    ):
        super().__init__(target_host, config, emit)
        self.bundle = bundle
        self.state = ConvergeState.CREATING_REMOTE_POLICY
        self.result: ConvergeResult | None = None

    async def perform_action(self) -> ConvergeResult:
        host = self.target_host
        local_dir = Path(tempfile.mkdtemp(prefix="chef-run-policy-"))
        remote_dir: str | None = None
        try:
            self.state = ConvergeState.CREATING_REMOTE_POLICY
            self.notify(ConvergePhase.CREATING_REMOTE_POLICY)
            policy = await asyncio.to_thread(self.create_policy_archive, local_dir)
            config_file = local_dir / CLIENT_CONFIG_NAME
            remote_dir = await host.mktemp()
            await asyncio.to_thread(config_file.write_text, client_config(remote_dir))
            remote_policy = await host.upload(policy, remote_dir)
            remote_config = await host.upload(config_file, remote_dir)

            self.state = ConvergeState.RUNNING_AGENT
            self.notify(ConvergePhase.RUNNING_CHEF)
            result = await host.run_agent(remote_config, remote_policy, self.bundle.run_list)
            return self.handle_exit(result.returncode, result.stdout + result.stderr)
        except Exception:
            self.state = ConvergeState.CONVERGE_ERROR
            raise
        finally:
            if remote_dir is not None:
                await self._remove_remote(remote_dir)
            await asyncio.to_thread(shutil.rmtree, local_dir, ignore_errors=True)

    def create_policy_archive(self, directory: Path) -> Path:
        """Write the bundle as ``<policy>-<target>.tgz`` into ``directory``."""
        safe_name = re.sub(r"[^\w.-]", "_", self.target_host.name)
        archive = directory / f"{self.bundle.policy_name}-{safe_name}.tgz"
        with tarfile.open(archive, "w:gz") as tar:
            tar.add(self.bundle.path / "cookbooks", arcname="cookbooks")
        return archive

    def handle_exit(self, exit_code: int, output: str) -> ConvergeResult:
        if exit_code == 0:
            self.state = ConvergeState.SUCCESS
            self.result = ConvergeResult.SUCCESS
            self.notify(ConvergePhase.SUCCESS)
        elif exit_code in REBOOT_EXIT_CODES:
            self.state = ConvergeState.REBOOT_REQUIRED
            self.result = ConvergeResult.REBOOT
            self.notify(ConvergePhase.REBOOT, exit_code=exit_code)
        else:
            self.state = ConvergeState.CONVERGE_ERROR
            tail = output_tail(output)
            logger.debug("[%s] chef-client output:\n%s", self.target_host.name, output)
            error = ConvergeError(
                f"chef-client exited with code {exit_code} on {self.target_host.name}",
                host=self.target_host.name,
                exit_code=exit_code,
                output=tail,
            )
            self.notify(ConvergePhase.CONVERGE_ERROR, exit_code=exit_code, output=tail)
            raise error
        return self.result

    async def run(self) -> ConvergeResult:
        try:
            return await self.perform_action()
        except ConvergeError:
            raise
        except Exception as e:
            self.notify(self.error_phase, exception=e)
            raise

    async def _remove_remote(self, remote_dir: str) -> None:
        try:
            await self.target_host.remove_dir(remote_dir)
        except ChefRunError as e:
            logger.warning("[%s] could not remove %s: %s", self.target_host.name, remote_dir, e)
