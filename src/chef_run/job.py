"""One target's pipeline: connect, install chef-client, converge."""

import logging

from . import messages
from .actions.converge_target import Converger
from .actions.install_chef import AgentInstaller
from .artifacts import ArtifactLookup
from .bundle import ConfigurationBundle
from .config import RunConfig
from .events import ActionEvent, ConvergePhase, InstallPhase
from .exceptions import ChefRunError
from .file_fetcher import FileFetcher
from .messages import status_message
from .progress import Reporter
from .target_host import TargetHost
from .types import ConvergeResult, JobOutcome, JobPhase

logger = logging.getLogger(__name__)

INSTALL_TERMINAL = (InstallPhase.ALREADY_INSTALLED, InstallPhase.INSTALL_COMPLETE)
CONVERGE_TERMINAL = (ConvergePhase.SUCCESS, ConvergePhase.REBOOT)


class Job:
    """Runs the install and converge actions for a single target.

    Events from both actions are translated into status lines on the
    target's own reporter, in the order they were emitted.

    Attributes:
        target_host: Target owned by this job
        phase: Furthest JobPhase reached so far
        multi: Whether the job is one of several running concurrently;
            install milestones are then shown as updates so that only the
            converge result is marked as the final status

    Example:
        >>> job = Job(target, config, bundle, factory.for_target(target.name))
        >>> outcome = await job.run()
        >>> outcome.success
        True
    """

    def __init__(
        self,
        target_host: TargetHost,
        config: RunConfig,
        bundle: ConfigurationBundle,
        reporter: Reporter,
        multi: bool = False,
        artifacts: ArtifactLookup | None = None,
        fetcher: FileFetcher | None = None,
        converge_status: str = "",
    ) -> None:
        self.target_host = target_host
        self.config = config
        self.bundle = bundle
        self.reporter = reporter
        self.multi = multi
        self.artifacts = artifacts
        self.fetcher = fetcher
        self.converge_status = converge_status or messages.converging_recipe(bundle.run_list)
        self.phase = JobPhase.PENDING

    @property
    def name(self) -> str:
        return self.target_host.name

    def _on_install_event(self, event: ActionEvent) -> None:
        message = status_message(event)
        if event.is_error:
            self.reporter.error(message)
        elif event.phase in INSTALL_TERMINAL and not self.multi:
            self.reporter.success(message)
        else:
            self.reporter.update(message)

    def _on_converge_event(self, event: ActionEvent) -> None:
        message = status_message(event, self.bundle.run_list)
        if event.is_error:
            self.reporter.error(message)
        elif event.phase in CONVERGE_TERMINAL:
            self.reporter.success(message)
        else:
            self.reporter.update(message)

    async def execute(self) -> ConvergeResult:
        """Run the pipeline, raising the first failure."""
        try:
            self.phase = JobPhase.CONNECT
            self.reporter.update(messages.CONNECTING)
            try:
                await self.target_host.connect()
            except ChefRunError as e:
                self.reporter.error(f"Connection failed: {e}")
                raise
            self.reporter.update(messages.CONNECTED)

            self.phase = JobPhase.INSTALL
            self.reporter.update(messages.VERIFYING)
            installer = AgentInstaller(
                self.target_host,
                self.config,
                self._on_install_event,
                artifacts=self.artifacts,
                fetcher=self.fetcher,
            )
            await installer.run()

            self.phase = JobPhase.CONVERGE
            self.reporter.update(self.converge_status)
            converger = Converger(self.target_host, self.config, self.bundle, self._on_converge_event)
            result = await converger.run()

            self.phase = JobPhase.COMPLETE
            return result
        except ChefRunError as e:
            if not e.context.host:
                e.with_context(host=self.name)
            raise
        finally:
            await self.target_host.disconnect()

    async def run(self) -> JobOutcome:
        """Run the pipeline and capture any failure in the outcome."""
        try:
            result = await self.execute()
        except Exception as e:
            logger.debug("[%s] job failed during %s: %s", self.name, self.phase.value, e)
            return JobOutcome.failed(self.name, self.phase, e)
        return JobOutcome.succeeded(self.name, result)
