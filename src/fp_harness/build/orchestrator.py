"""
fp-harness: build orchestrator

File: src/fp_harness/build/orchestrator.py

Purpose
- Ensure each build recipe's artifacts exist, building at most once per
  recipe and reusing cached builds across runs.

Functional requirements
- Cache hit returns immediately; no fetch or build process is started.
- A miss takes the per-recipe lock, re-checks the cache, fetches the pinned
  revision into a fresh directory and runs the build command through the
  shell in ``<checkout>/<workdir>``.
- A non-zero exit, a timeout or a failed fetch raises :class:`BuildError`
  and records no manifest. A declared artifact the successful build did not
  produce raises :class:`BuildError` for the spec that declared it.
- Specs that differ only in their artifacts share one build; ``ensure_all``
  reports artifacts and errors per spec.
- Unrelated recipes build concurrently (bounded by ``max_parallel``).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from fp_harness.build.cache import Artifact, ArtifactCache, cache_key
from fp_harness.build.source import GitSourceFetcher, SourceFetcher, SourceFetchError
from fp_harness.execution.process import CommandSpec, LocalSubprocessExecutor, tail_text
from fp_harness.registry.model import BuildSpec
from fp_harness.utils.concurrency import BoundedSemaphore, KeyedLocks

logger = logging.getLogger(__name__)

_BUILD_OUTPUT_TAIL_CHARS = 8000


class BuildError(RuntimeError):
    """Raised when a recipe cannot produce its declared artifacts."""

    def __init__(
        self,
        spec: BuildSpec,
        *,
        exit_code: int | None = None,
        output: str = "",
        missing_artifact: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.spec = spec
        self.exit_code = exit_code
        self.output = output
        self.missing_artifact = missing_artifact
        if reason is None:
            if missing_artifact is not None:
                reason = f"build succeeded but did not produce artifact {missing_artifact!r}"
            else:
                reason = f"build command exited with status {exit_code}"
        self.reason = reason
        message = f"build of {spec.describe()} ({spec.command!r}) failed: {reason}"
        if output.strip():
            message = f"{message}\n{tail_text(output.strip(), 2000)}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class BuildReport:
    """Results of building a set of specs; failures do not abort siblings."""

    built: Mapping[BuildSpec, Mapping[str, Artifact]] = field(default_factory=dict)
    failed: Mapping[BuildSpec, BuildError] = field(default_factory=dict)

    def artifacts_for(self, spec: BuildSpec) -> Mapping[str, Artifact] | None:
        return self.built.get(spec)

    def error_for(self, spec: BuildSpec) -> BuildError | None:
        return self.failed.get(spec)


class BuildOrchestrator:
    """Resolve build recipes to artifacts through the cache."""

    def __init__(
        self,
        cache: ArtifactCache,
        *,
        fetcher: SourceFetcher | None = None,
        executor: LocalSubprocessExecutor | None = None,
        timeout_seconds: float | None = None,
        max_parallel: int = 2,
    ) -> None:
        self._cache = cache
        self._fetcher = fetcher or GitSourceFetcher()
        self._executor = executor or LocalSubprocessExecutor(max_output_chars=None)
        self._timeout_seconds = timeout_seconds
        self._locks = KeyedLocks()
        self._slots = BoundedSemaphore(max_parallel)

    async def ensure_built(self, spec: BuildSpec) -> dict[str, Artifact]:
        cached = self._cache.resolve(spec)
        if cached is not None:
            logger.debug("cache hit for %s", spec.describe())
            return dict(cached.artifacts)

        async with self._locks.hold(cache_key(spec)):
            # Another task may have finished this recipe while we waited.
            cached = self._cache.resolve(spec)
            if cached is not None:
                return dict(cached.artifacts)
            async with self._slots.permit():
                return await self._build(spec)

    async def ensure_all(self, specs: Iterable[BuildSpec]) -> BuildReport:
        groups: dict[str, list[BuildSpec]] = {}
        for spec in specs:
            group = groups.setdefault(cache_key(spec), [])
            if spec not in group:
                group.append(spec)

        results = await asyncio.gather(
            *(self._ensure_group(group) for group in groups.values()), return_exceptions=True
        )

        built: dict[BuildSpec, Mapping[str, Artifact]] = {}
        failed: dict[BuildSpec, BuildError] = {}
        for result in results:
            if isinstance(result, BaseException):
                raise result
            for spec, outcome in result:
                if isinstance(outcome, BuildError):
                    failed[spec] = outcome
                else:
                    built[spec] = outcome
        return BuildReport(built=built, failed=failed)

    async def _ensure_group(
        self, group: list[BuildSpec]
    ) -> list[tuple[BuildSpec, Mapping[str, Artifact] | BuildError]]:
        # One build per recipe; every spec sharing it is checked for its own artifacts.
        first, *siblings = group
        fresh = self._cache.resolve(first) is None
        results: list[tuple[BuildSpec, Mapping[str, Artifact] | BuildError]] = []
        shared_error: BuildError | None = None
        try:
            results.append((first, await self.ensure_built(first)))
        except BuildError as exc:
            results.append((first, exc))
            if exc.missing_artifact is None:
                shared_error = exc
        for spec in siblings:
            if shared_error is not None:
                results.append((spec, shared_error))
            elif fresh:
                # A build from this call that lacks the file will not produce it on a retry.
                results.append((spec, self._verify(spec)))
            else:
                try:
                    results.append((spec, await self.ensure_built(spec)))
                except BuildError as exc:
                    results.append((spec, exc))
        return results

    def _verify(self, spec: BuildSpec) -> Mapping[str, Artifact] | BuildError:
        entry = self._cache.resolve(spec)
        if entry is not None:
            return dict(entry.artifacts)
        missing = self._cache.missing_artifacts(spec)
        if missing:
            return BuildError(spec, exit_code=0, missing_artifact=missing[0])
        return BuildError(spec, reason="no recorded build for this recipe")

    async def _build(self, spec: BuildSpec) -> dict[str, Artifact]:
        self._cache.invalidate(spec)
        source_dir = self._cache.source_dir(spec)
        try:
            await self._fetcher.fetch(spec.repo, spec.revision, source_dir)
        except SourceFetchError as exc:
            self._cache.invalidate(spec)
            raise BuildError(spec, reason=f"unable to fetch source: {exc}") from exc

        build_dir = self._cache.build_dir(spec)
        if not build_dir.is_dir():
            self._cache.invalidate(spec)
            raise BuildError(spec, reason=f"workdir {spec.workdir!r} does not exist in checkout")

        logger.info("building %s in %s: %s", spec.describe(), spec.workdir, spec.command)
        result = await self._executor.run(
            CommandSpec(
                argv=("sh", "-c", spec.command),
                cwd=str(build_dir),
                timeout_seconds=self._timeout_seconds,
                merge_stderr=True,
            )
        )
        output = tail_text(result.stdout, _BUILD_OUTPUT_TAIL_CHARS)
        if result.timed_out:
            raise BuildError(spec, output=output, reason=result.error)
        if result.error is not None:
            raise BuildError(spec, reason=f"unable to start build: {result.error}")
        if result.exit_code != 0:
            raise BuildError(spec, exit_code=result.exit_code, output=output)

        entry = self._cache.record(spec)
        logger.info("built %s in %.1fs", spec.describe(), result.duration_ms / 1000)
        missing = self._cache.missing_artifacts(spec)
        if missing:
            raise BuildError(spec, exit_code=0, output=output, missing_artifact=missing[0])
        return dict(entry.artifacts)


__all__ = ["BuildError", "BuildOrchestrator", "BuildReport"]
