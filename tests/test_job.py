"""Tests for the per-target job pipeline."""

import pytest

from chef_run.exceptions import ArtifactLookupError, ClientOutdated, ConnectionError, ConvergeError, ErrorTypes
from chef_run.job import Job
from chef_run.types import ConvergeResult, JobPhase

from .conftest import FakeBackend, RecordingReporter, make_target, unreachable


def make_job(backend, run_config, bundle, artifacts, fetcher, multi=False, **kwargs):
    reporter = RecordingReporter(name="web01")
    job = Job(
        make_target(backend=backend, **kwargs),
        run_config,
        bundle,
        reporter,
        multi=multi,
        artifacts=artifacts,
        fetcher=fetcher,
    )
    return job, reporter


class TestExecute:
    """Tests for Job.execute."""

    @pytest.mark.asyncio
    async def test_happy_path(self, run_config, bundle, artifacts, fetcher):
        """Test the job connects, verifies, converges and disconnects."""
        backend = FakeBackend(chef_version="14.1.1")
        job, reporter = make_job(backend, run_config, bundle, artifacts, fetcher)

        assert await job.execute() is ConvergeResult.SUCCESS

        assert job.phase is JobPhase.COMPLETE
        assert backend.close_calls == 1
        messages = [message for _, message in reporter.messages]
        assert messages[:3] == ["Connecting...", "Connected.", "Checking for Chef Infra Client..."]
        assert "Chef Infra Client 14.1.1 is already installed" in messages
        assert f"Converging recipe {bundle.run_list}..." in messages
        assert reporter.messages[-1] == ("success", f"Successfully converged {bundle.run_list}")

    @pytest.mark.asyncio
    async def test_install_milestone_is_success_in_single_mode(self, run_config, bundle, artifacts, fetcher):
        job, reporter = make_job(FakeBackend(), run_config, bundle, artifacts, fetcher)
        await job.execute()
        assert ("success", "Chef Infra Client 14.1.1 is already installed") in reporter.messages

    @pytest.mark.asyncio
    async def test_install_milestone_is_update_in_multi_mode(self, run_config, bundle, artifacts, fetcher):
        """Test only the converge result is marked final when several jobs run."""
        job, reporter = make_job(FakeBackend(), run_config, bundle, artifacts, fetcher, multi=True)
        await job.execute()
        assert ("update", "Chef Infra Client 14.1.1 is already installed") in reporter.messages
        assert reporter.kinds().count("success") == 1

    @pytest.mark.asyncio
    async def test_custom_converge_status(self, run_config, bundle, artifacts, fetcher):
        reporter = RecordingReporter()
        job = Job(
            make_target(),
            run_config,
            bundle,
            reporter,
            artifacts=artifacts,
            fetcher=fetcher,
            converge_status="Converging resource file[/tmp/hello]...",
        )
        await job.execute()
        assert ("update", "Converging resource file[/tmp/hello]...") in reporter.messages

    @pytest.mark.asyncio
    async def test_connect_failure(self, run_config, bundle, artifacts, fetcher):
        """Test a connection failure stops the job before installing."""
        backend = FakeBackend(connect_error=unreachable("web01"))
        job, reporter = make_job(backend, run_config, bundle, artifacts, fetcher)

        with pytest.raises(ConnectionError):
            await job.execute()

        assert job.phase is JobPhase.CONNECT
        assert backend.commands == []
        assert reporter.messages[-1][0] == "error"
        assert "Connection failed" in reporter.messages[-1][1]

    @pytest.mark.asyncio
    async def test_install_failure_skips_converge(self, run_config, bundle, artifacts, fetcher):
        backend = FakeBackend(chef_version="12.0.0")
        config = run_config.with_overrides(install=False)
        job, reporter = make_job(backend, config, bundle, artifacts, fetcher)

        with pytest.raises(ClientOutdated):
            await job.execute()

        assert job.phase is JobPhase.INSTALL
        assert not backend.ran("chef-client -z")
        assert reporter.kinds()[-1] == "error"
        assert backend.close_calls == 1

    @pytest.mark.asyncio
    async def test_reboot(self, run_config, bundle, artifacts, fetcher):
        backend = FakeBackend()
        backend.respond("chef-client -z", returncode=37)
        job, reporter = make_job(backend, run_config, bundle, artifacts, fetcher)

        assert await job.execute() is ConvergeResult.REBOOT
        assert reporter.messages[-1][0] == "success"
        assert "reboot is required" in reporter.messages[-1][1]


class TestRun:
    """Tests for Job.run capturing failures."""

    @pytest.mark.asyncio
    async def test_success_outcome(self, run_config, bundle, artifacts, fetcher):
        job, _ = make_job(FakeBackend(), run_config, bundle, artifacts, fetcher)
        outcome = await job.run()
        assert outcome.success
        assert outcome.target == "web01"
        assert outcome.converge_result is ConvergeResult.SUCCESS

    @pytest.mark.asyncio
    async def test_failure_captured(self, run_config, bundle, artifacts, fetcher):
        """Test run returns the failure instead of raising it."""
        backend = FakeBackend()
        backend.respond("chef-client -z", returncode=1)
        job, reporter = make_job(backend, run_config, bundle, artifacts, fetcher)

        outcome = await job.run()

        assert not outcome.success
        assert outcome.phase is JobPhase.CONVERGE
        assert outcome.failure.kind == ErrorTypes.CONVERGE_FAILED
        assert "ConvergeError" in outcome.failure.backtrace
        assert reporter.kinds()[-1] == "error"

    @pytest.mark.asyncio
    async def test_unexpected_error_captured(self, run_config, bundle, artifacts, fetcher):
        """Test errors outside the chef-run taxonomy are captured too."""
        artifacts.lookup.side_effect = RuntimeError("metadata service exploded")
        job, _ = make_job(FakeBackend(chef_version=None), run_config, bundle, artifacts, fetcher)

        outcome = await job.run()

        assert not outcome.success
        assert outcome.phase is JobPhase.INSTALL
        assert outcome.failure.kind == "RuntimeError"
        assert outcome.failure.message == "metadata service exploded"

    @pytest.mark.asyncio
    async def test_converge_error_reported_once(self, run_config, bundle, artifacts, fetcher):
        backend = FakeBackend()
        backend.respond("chef-client -z", returncode=1)
        job, reporter = make_job(backend, run_config, bundle, artifacts, fetcher)

        with pytest.raises(ConvergeError):
            await job.execute()

        assert reporter.kinds().count("error") == 1

    @pytest.mark.asyncio
    async def test_error_tagged_with_target(self, run_config, bundle, artifacts, fetcher):
        """Test errors raised without a host are labelled with the job's target."""
        artifacts.lookup.side_effect = ArtifactLookupError("no package for this platform")
        job, _ = make_job(FakeBackend(chef_version=None), run_config, bundle, artifacts, fetcher)

        with pytest.raises(ArtifactLookupError) as exc_info:
            await job.execute()

        assert exc_info.value.context.host == "web01"
