"""
fp-harness: worker pool executor

File: src/fp_harness/execution/executor.py

Purpose
- Run a fixed job list with a bounded pool of asyncio worker tasks and turn
  each job into exactly one :class:`JobOutcome`.

Functional requirements
- Exactly ``workers`` tasks drain one pre-filled queue.
- The executor never builds: artifacts come from a read-only
  :class:`ArtifactIndex`; a job whose platform or program failed to build is
  an ``error`` and is not executed.
- Status mapping: exit code == fixture ``expected_status`` -> pass; other exit
  code -> fail; launch/preparation failure -> error; timeout -> timeout.
- A failing job never cancels or blocks another.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path

from fp_harness.execution.invocation import (
    HostInputs,
    InvocationError,
    platform_runner,
    program_convention,
)
from fp_harness.execution.process import CommandResult, LocalSubprocessExecutor
from fp_harness.execution.results import JobOutcome, JobStatus, ResultAggregator
from fp_harness.fixtures.store import MaterializedFixture
from fp_harness.matrix.resolver import Job
from fp_harness.observability.logging import correlation_scope
from fp_harness.registry.model import Registry
from fp_harness.utils.fs import temp_directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ArtifactIndex:
    """Built artifact paths per platform/program name, plus build failures."""

    platforms: Mapping[str, Mapping[str, Path]] = field(default_factory=dict)
    programs: Mapping[str, Mapping[str, Path]] = field(default_factory=dict)
    platform_failures: Mapping[str, str] = field(default_factory=dict)
    program_failures: Mapping[str, str] = field(default_factory=dict)

    def failure_for(self, job: Job) -> str | None:
        if job.platform in self.platform_failures:
            return f"platform {job.platform!r} failed to build: {self.platform_failures[job.platform]}"
        if job.program in self.program_failures:
            return f"program {job.program!r} failed to build: {self.program_failures[job.program]}"
        return None


class MatrixExecutor:
    """Execute jobs concurrently and record their outcomes."""

    def __init__(
        self,
        registry: Registry,
        *,
        workers: int = 4,
        timeout_seconds: float = 1800.0,
        output_tail_chars: int = 4000,
        executor: LocalSubprocessExecutor | None = None,
        aggregator: ResultAggregator | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._registry = registry
        self._workers = workers
        self._timeout_seconds = timeout_seconds
        self._output_tail_chars = output_tail_chars
        self._executor = executor or LocalSubprocessExecutor()
        self.aggregator = aggregator or ResultAggregator()

    async def run(
        self,
        jobs: Sequence[Job],
        artifacts: ArtifactIndex,
        fixtures: Mapping[str, MaterializedFixture],
    ) -> tuple[JobOutcome, ...]:
        queue: asyncio.Queue[Job] = asyncio.Queue()
        for job in jobs:
            queue.put_nowait(job)

        logger.info("running %d job(s) with %d worker(s)", len(jobs), self._workers)
        tasks = [
            asyncio.create_task(self._worker(queue, artifacts, fixtures), name=f"fpt-worker-{i}")
            for i in range(self._workers)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return self.aggregator.outcomes()

    async def _worker(
        self,
        queue: asyncio.Queue[Job],
        artifacts: ArtifactIndex,
        fixtures: Mapping[str, MaterializedFixture],
    ) -> None:
        while True:
            try:
                job = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            outcome = await self.run_job(job, artifacts, fixtures)
            self.aggregator.record(outcome)

    async def run_job(
        self,
        job: Job,
        artifacts: ArtifactIndex,
        fixtures: Mapping[str, MaterializedFixture],
    ) -> JobOutcome:
        started = time.monotonic()
        with correlation_scope(platform=job.platform, program=job.program, fixture=job.fixture):
            try:
                outcome = await self._execute(job, artifacts, fixtures, started)
            except (InvocationError, KeyError, OSError) as exc:
                outcome = self._outcome(job, JobStatus.ERROR, started, detail=f"harness error: {exc}")
            except Exception as exc:
                logger.exception("unexpected failure while running %s", job.key)
                outcome = self._outcome(job, JobStatus.ERROR, started, detail=f"harness error: {exc!r}")

            log = logger.info if outcome.passed else logger.warning
            log(
                "%s %s in %.2fs (exit %s)",
                outcome.status.value.upper(),
                job.key,
                outcome.duration_ms / 1000,
                outcome.exit_code,
            )
        return outcome

    async def _execute(
        self,
        job: Job,
        artifacts: ArtifactIndex,
        fixtures: Mapping[str, MaterializedFixture],
        started: float,
    ) -> JobOutcome:
        failure = artifacts.failure_for(job)
        if failure is not None:
            return self._outcome(job, JobStatus.ERROR, started, detail=failure)

        materialized = fixtures.get(job.fixture)
        if materialized is None:
            return self._outcome(
                job, JobStatus.ERROR, started, detail=f"fixture {job.fixture!r} is not available"
            )

        platform = self._registry.platform(job.platform)
        program = self._registry.program(job.program)
        runner = platform_runner(platform.invocation)
        convention = program_convention(program.invocation)

        with temp_directory(prefix=f"fpt-{job.platform}-{job.program}-") as workdir:
            inputs = HostInputs(
                fixture_name=materialized.fixture.name,
                inputs=materialized.fixture.inputs,
                datadir=materialized.datadir,
                rollup_config=materialized.rollup_config,
                genesis=materialized.genesis,
            )
            plan = runner.plan(
                artifacts.platforms.get(job.platform, {}),
                artifacts.programs[job.program],
                convention,
                inputs,
                workdir,
            )

            for step in plan.prepare:
                result = await self._executor.run(
                    replace(step, timeout_seconds=self._remaining(started))
                )
                if result.timed_out:
                    return self._from_timeout(job, started, result)
                if not result.is_success():
                    return self._outcome(
                        job,
                        JobStatus.ERROR,
                        started,
                        exit_code=result.exit_code,
                        detail=self._describe_failure("preparation step failed", result),
                    )

            result = await self._executor.run(
                replace(plan.main, timeout_seconds=self._remaining(started))
            )

        if result.timed_out:
            return self._from_timeout(job, started, result)
        if result.exit_code is None:
            return self._outcome(
                job,
                JobStatus.ERROR,
                started,
                detail=self._describe_failure("unable to launch", result),
            )

        expected = materialized.fixture.expected_status
        if result.exit_code == expected:
            return self._outcome(job, JobStatus.PASS, started, exit_code=result.exit_code)
        return self._outcome(
            job,
            JobStatus.FAIL,
            started,
            exit_code=result.exit_code,
            detail=self._describe_failure(
                f"exit status {result.exit_code}, expected {expected}", result
            ),
        )

    def _remaining(self, started: float) -> float:
        # Preparation steps and the main command share one job deadline.
        return max(self._timeout_seconds - (time.monotonic() - started), 0.001)

    def _from_timeout(self, job: Job, started: float, result: CommandResult) -> JobOutcome:
        return self._outcome(
            job,
            JobStatus.TIMEOUT,
            started,
            detail=self._describe_failure(
                f"timed out after {self._timeout_seconds:g}s", result
            ),
        )

    def _describe_failure(self, headline: str, result: CommandResult) -> str:
        lines = [f"{headline}: {' '.join(result.argv[:2])}"]
        if result.error and not result.timed_out:
            lines.append(result.error)
        tail = result.output_tail(self._output_tail_chars)
        if tail.strip():
            lines.append(tail.rstrip())
        return "\n".join(lines)

    def _outcome(
        self,
        job: Job,
        status: JobStatus,
        started: float,
        *,
        exit_code: int | None = None,
        detail: str | None = None,
    ) -> JobOutcome:
        return JobOutcome(
            job=job,
            status=status,
            duration_ms=int((time.monotonic() - started) * 1000),
            exit_code=exit_code,
            detail=detail,
        )


__all__ = ["ArtifactIndex", "MatrixExecutor"]
