"""
fp-harness: test pipeline

File: src/fp_harness/pipeline.py

Purpose
- Drive one test run in three stages: setup (build every platform/program the
  shard needs, unpack fixtures), run (hand the job list to the worker pool),
  teardown (remove unpacked fixture files).

Functional requirements
- The job list is computed once from the registry and fixture store, then
  partitioned; it is never modified afterwards.
- All builds finish before the first job is queued.
- A failed build turns the dependent jobs into ``error`` outcomes; jobs on
  other platforms/programs still run.
- Teardown runs even when the run stage raises.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from fp_harness.build.orchestrator import BuildError, BuildOrchestrator, BuildReport
from fp_harness.execution.executor import ArtifactIndex, MatrixExecutor
from fp_harness.execution.process import LocalSubprocessExecutor
from fp_harness.execution.results import JobOutcome, ResultAggregator, RunSummary
from fp_harness.fixtures.model import TestFixture
from fp_harness.fixtures.store import FixtureStore, MaterializedFixture
from fp_harness.matrix.partition import partition
from fp_harness.matrix.resolver import Job, MatrixFilters, resolve_jobs
from fp_harness.registry.model import BuildSpec, NoBuild, Registry
from fp_harness.utils.fs import temp_directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunResult:
    jobs: tuple[Job, ...]
    outcomes: tuple[JobOutcome, ...]
    summary: RunSummary
    build_errors: tuple[BuildError, ...] = field(default=())

    def to_dict(self) -> dict[str, object]:
        return {
            "jobs": len(self.jobs),
            "summary": self.summary.to_dict(),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "build_errors": [
                {
                    "build": error.spec.describe(),
                    "command": error.spec.command,
                    "exit_code": error.exit_code,
                    "missing_artifact": error.missing_artifact,
                    "reason": error.reason,
                }
                for error in self.build_errors
            ],
        }


class TestPipeline:
    """Setup, run and teardown of a single test run."""

    __test__ = False

    def __init__(
        self,
        registry: Registry,
        store: FixtureStore,
        orchestrator: BuildOrchestrator,
        *,
        workers: int = 4,
        timeout_seconds: float = 1800.0,
        output_tail_chars: int = 4000,
        executor: LocalSubprocessExecutor | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._orchestrator = orchestrator
        self._workers = workers
        self._timeout_seconds = timeout_seconds
        self._output_tail_chars = output_tail_chars
        self._executor = executor
        self._fixtures: dict[str, TestFixture] = {}

    def plan(
        self,
        filters: MatrixFilters | None = None,
        shard: tuple[int, int] | None = None,
    ) -> tuple[Job, ...]:
        """Resolve the job list for this run (and shard) without building anything."""
        fixtures = self._store.load_all(filters.name_pattern if filters else None)
        self._fixtures = {fixture.name: fixture for fixture in fixtures}
        jobs = resolve_jobs(self._registry, fixtures, filters)
        total = len(jobs)
        if shard is not None:
            index, count = shard
            jobs = partition(jobs, index, count)
            logger.info("shard %d/%d selected %d of %d job(s)", index, count, len(jobs), total)
        else:
            logger.info("resolved %d job(s) from %d fixture(s)", total, len(fixtures))
        return jobs

    async def run(self, jobs: Sequence[Job]) -> RunResult:
        aggregator = ResultAggregator()
        if not jobs:
            logger.warning("no jobs matched the selection")
            return RunResult(jobs=(), outcomes=(), summary=aggregator.summary())

        report = await self.setup_builds(jobs)
        artifacts = self._artifact_index(jobs, report)

        executor = MatrixExecutor(
            self._registry,
            workers=self._workers,
            timeout_seconds=self._timeout_seconds,
            output_tail_chars=self._output_tail_chars,
            executor=self._executor,
            aggregator=aggregator,
        )
        with temp_directory(prefix="fpt-fixtures-") as scratch:
            materialized = self._materialize(jobs, scratch)
            try:
                outcomes = await executor.run(jobs, artifacts, materialized)
            finally:
                self._teardown(materialized.values(), scratch)

        return RunResult(
            jobs=tuple(jobs),
            outcomes=outcomes,
            summary=aggregator.summary(),
            build_errors=tuple(dict.fromkeys(report.failed.values())),
        )

    async def setup_builds(self, jobs: Iterable[Job]) -> BuildReport:
        specs = self._required_builds(jobs)
        if not specs:
            return BuildReport()
        logger.info("ensuring %d build(s)", len(specs))
        report = await self._orchestrator.ensure_all(specs)
        for error in dict.fromkeys(report.failed.values()):
            logger.error("%s", error)
        return report

    def _required_builds(self, jobs: Iterable[Job]) -> list[BuildSpec]:
        unique: dict[BuildSpec, None] = {}
        for job in jobs:
            for build in (
                self._registry.platform(job.platform).build,
                self._registry.program(job.program).build,
            ):
                if isinstance(build, BuildSpec):
                    unique.setdefault(build)
        return list(unique)

    def _artifact_index(self, jobs: Iterable[Job], report: BuildReport) -> ArtifactIndex:
        platforms: dict[str, Mapping[str, Path]] = {}
        programs: dict[str, Mapping[str, Path]] = {}
        platform_failures: dict[str, str] = {}
        program_failures: dict[str, str] = {}

        def resolve(build: BuildSpec | NoBuild) -> Mapping[str, Path] | str:
            if isinstance(build, NoBuild):
                return {}
            error = report.error_for(build)
            if error is not None:
                return error.reason
            built = report.artifacts_for(build)
            if built is None:
                return "build was not attempted"
            return {name: artifact.path for name, artifact in built.items()}

        for job in jobs:
            if job.platform not in platforms and job.platform not in platform_failures:
                resolved = resolve(self._registry.platform(job.platform).build)
                if isinstance(resolved, str):
                    platform_failures[job.platform] = resolved
                else:
                    platforms[job.platform] = resolved
            if job.program not in programs and job.program not in program_failures:
                resolved = resolve(self._registry.program(job.program).build)
                if isinstance(resolved, str):
                    program_failures[job.program] = resolved
                else:
                    programs[job.program] = resolved

        return ArtifactIndex(
            platforms=platforms,
            programs=programs,
            platform_failures=platform_failures,
            program_failures=program_failures,
        )

    def _materialize(self, jobs: Iterable[Job], scratch: Path) -> dict[str, MaterializedFixture]:
        names = sorted({job.fixture for job in jobs})
        materialized: dict[str, MaterializedFixture] = {}
        try:
            for name in names:
                fixture = self._fixtures.get(name) or self._store.load(name)
                materialized[name] = self._store.materialize(fixture, scratch)
        except BaseException:
            self._teardown(materialized.values(), scratch)
            raise
        logger.info("unpacked %d fixture(s)", len(materialized))
        return materialized

    def _teardown(self, materialized: Iterable[MaterializedFixture], scratch: Path) -> None:
        for item in materialized:
            try:
                self._store.teardown(item, scratch)
            except OSError as exc:
                logger.warning("unable to remove unpacked fixture %s: %s", item.root, exc)


__all__ = ["RunResult", "TestPipeline"]
