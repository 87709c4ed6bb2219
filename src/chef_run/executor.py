"""Job orchestration across all targets of a run.

A single job runs directly on the caller's path and raises its failure.
Several jobs run concurrently as asyncio tasks; every job's failure is
captured into its JobOutcome and the outcomes are aggregated into one
AggregateResult.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .bundle import ConfigurationBundle
from .exceptions import MultiJobFailure
from .job import Job
from .types import JobOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateResult:
    """Outcomes of a run, one per resolved target in target order.

    Example:
        >>> result = aggregate(outcomes)
        >>> if not result.is_success():
        ...     raise result.failure
    """

    outcomes: tuple[JobOutcome, ...]

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def successful(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    @property
    def failed_outcomes(self) -> list[JobOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def reboot_required(self) -> list[str]:
        return [o.target for o in self.outcomes if o.reboot_required]

    @property
    def failure(self) -> MultiJobFailure | None:
        """MultiJobFailure listing every failed outcome, or None."""
        failed = self.failed_outcomes
        if not failed:
            return None
        return MultiJobFailure(failed)

    def is_success(self) -> bool:
        """Check if all jobs succeeded."""
        return self.failed == 0

    def raise_on_failure(self) -> None:
        failure = self.failure
        if failure is not None:
            raise failure


def aggregate(outcomes: Sequence[JobOutcome]) -> AggregateResult:
    return AggregateResult(tuple(outcomes))


class JobRunner:
    """Runs jobs and releases the shared bundle once they are done.

    Attributes:
        bundle: Configuration bundle shared by all jobs
    """

    def __init__(self, bundle: ConfigurationBundle) -> None:
        self.bundle = bundle

    async def run_single(self, job: Job) -> AggregateResult:
        """Run one job directly; its failure propagates to the caller."""
        try:
            result = await job.execute()
        finally:
            self.bundle.delete()
        return aggregate([JobOutcome.succeeded(job.name, result)])

    async def run_parallel(self, jobs: Sequence[Job]) -> AggregateResult:
        """Run all jobs concurrently and aggregate their outcomes.

        Every task is created before any is awaited. A failing job never
        cancels its siblings.
        """
        try:
            tasks = [asyncio.create_task(job.run(), name=f"chef-run:{job.name}") for job in jobs]
            results = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self.bundle.delete()

        outcomes = []
        for job, result in zip(jobs, results):
            if isinstance(result, JobOutcome):
                outcomes.append(result)
            elif isinstance(result, Exception):
                logger.error("Job for %s raised outside its capture: %s", job.name, result)
                outcomes.append(JobOutcome.failed(job.name, job.phase, result))
            else:
                raise result
        return aggregate(outcomes)

    async def run(self, jobs: Sequence[Job]) -> AggregateResult:
        if len(jobs) == 1 and not jobs[0].multi:
            return await self.run_single(jobs[0])
        return await self.run_parallel(jobs)
