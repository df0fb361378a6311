"""
fp-harness: unit tests for the build orchestrator

File: tests/unit/build/test_build_orchestrator.py

Purpose
- Validate build idempotence, per-recipe deduplication under concurrency,
  and the BuildError paths, using a fake source fetcher and real shell builds.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path

import pytest

from fp_harness.build.cache import ArtifactCache
from fp_harness.build.orchestrator import BuildError, BuildOrchestrator
from fp_harness.build.source import SourceFetchError
from fp_harness.registry.model import BuildSpec


class FakeFetcher:
    """Writes a tiny source tree instead of talking to git."""

    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[tuple[str, str, Path]] = []
        self.fail = fail

    async def fetch(self, repo: str, revision: str, destination: Path) -> None:
        self.calls.append((repo, revision, destination))
        if self.fail:
            raise SourceFetchError(f"cannot reach {repo}")
        destination.mkdir(parents=True, exist_ok=True)
        (destination / "README").write_text(f"{repo}@{revision}\n", encoding="utf-8")
        (destination / "tools").mkdir(exist_ok=True)


def _spec(command: str, *, revision: str = "v1", artifacts: dict[str, str] | None = None) -> BuildSpec:
    return BuildSpec(
        repo="org/tool",
        revision=revision,
        workdir="tools",
        command=command,
        artifacts=artifacts or {"host": "bin/tool"},
    )


def _counting_command(log: Path) -> str:
    return f"echo build >> {log} && mkdir -p bin && printf '#!/bin/sh\\nexit 0\\n' > bin/tool"


async def test_second_ensure_built_is_a_cache_hit(tmp_path: Path) -> None:
    log = tmp_path / "builds.log"
    fetcher = FakeFetcher()
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=fetcher)
    spec = _spec(_counting_command(log))

    first = await orchestrator.ensure_built(spec)
    second = await orchestrator.ensure_built(spec)

    assert len(fetcher.calls) == 1
    assert log.read_text(encoding="utf-8").splitlines() == ["build"]
    assert first["host"].path == second["host"].path
    assert first["host"].path.is_file()
    assert first["host"].revision == "v1"


async def test_fresh_orchestrator_reuses_recorded_build(tmp_path: Path) -> None:
    log = tmp_path / "builds.log"
    cache = ArtifactCache(tmp_path / "cache")
    spec = _spec(_counting_command(log))
    await BuildOrchestrator(cache, fetcher=FakeFetcher()).ensure_built(spec)

    fetcher = FakeFetcher()
    await BuildOrchestrator(cache, fetcher=fetcher).ensure_built(spec)

    assert fetcher.calls == []
    assert log.read_text(encoding="utf-8").splitlines() == ["build"]


async def test_concurrent_requests_for_one_recipe_build_once(tmp_path: Path) -> None:
    log = tmp_path / "builds.log"
    fetcher = FakeFetcher()
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=fetcher)
    spec = _spec(f"sleep 0.2 && {_counting_command(log)}")

    results = await asyncio.gather(*(orchestrator.ensure_built(spec) for _ in range(4)))

    assert len(fetcher.calls) == 1
    assert log.read_text(encoding="utf-8").splitlines() == ["build"]
    assert len({result["host"].path for result in results}) == 1


async def test_deleted_artifact_triggers_rebuild(tmp_path: Path) -> None:
    log = tmp_path / "builds.log"
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=FakeFetcher())
    spec = _spec(_counting_command(log))
    built = await orchestrator.ensure_built(spec)

    built["host"].path.unlink()
    rebuilt = await orchestrator.ensure_built(spec)

    assert rebuilt["host"].path.is_file()
    assert log.read_text(encoding="utf-8").splitlines() == ["build", "build"]


async def test_exit_zero_without_declared_artifact_raises(tmp_path: Path) -> None:
    cache = ArtifactCache(tmp_path / "cache")
    orchestrator = BuildOrchestrator(cache, fetcher=FakeFetcher())
    spec = _spec("mkdir -p bin && touch bin/tool", artifacts={"host": "bin/tool", "client": "bin/client"})

    with pytest.raises(BuildError) as excinfo:
        await orchestrator.ensure_built(spec)

    assert excinfo.value.missing_artifact == "client"
    assert excinfo.value.exit_code == 0
    assert cache.resolve(spec) is None


async def test_nonzero_exit_raises_with_output(tmp_path: Path) -> None:
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=FakeFetcher())
    spec = _spec("echo compiler exploded >&2; exit 3")

    with pytest.raises(BuildError) as excinfo:
        await orchestrator.ensure_built(spec)

    assert excinfo.value.exit_code == 3
    assert "compiler exploded" in excinfo.value.output
    assert "exited with status 3" in str(excinfo.value)


async def test_build_timeout_raises(tmp_path: Path) -> None:
    orchestrator = BuildOrchestrator(
        ArtifactCache(tmp_path / "cache"), fetcher=FakeFetcher(), timeout_seconds=0.3
    )

    with pytest.raises(BuildError) as excinfo:
        await orchestrator.ensure_built(_spec("sleep 5"))

    assert "timed out" in excinfo.value.reason


async def test_missing_workdir_raises(tmp_path: Path) -> None:
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=FakeFetcher())
    spec = BuildSpec(
        repo="org/tool",
        revision="v1",
        workdir="does-not-exist",
        command="true",
        artifacts={"host": "bin/tool"},
    )

    with pytest.raises(BuildError, match="does not exist"):
        await orchestrator.ensure_built(spec)


async def test_fetch_failure_becomes_build_error(tmp_path: Path) -> None:
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=FakeFetcher(fail=True))

    with pytest.raises(BuildError, match="unable to fetch source"):
        await orchestrator.ensure_built(_spec("true"))


async def test_ensure_all_separates_failures_from_successes(tmp_path: Path) -> None:
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=FakeFetcher())
    good = _spec("mkdir -p bin && touch bin/tool")
    bad = _spec("exit 1", revision="v2")

    report = await orchestrator.ensure_all([good, bad, good])

    assert report.artifacts_for(good) is not None
    assert report.artifacts_for(bad) is None
    error = report.error_for(bad)
    assert isinstance(error, BuildError)
    assert error.exit_code == 1
    assert len(report.built) == 1 and len(report.failed) == 1


def _monorepo_specs(log: Path) -> tuple[BuildSpec, BuildSpec]:
    command = f"echo build >> {log} && mkdir -p bin && touch bin/vm bin/host"
    vm = BuildSpec(
        repo="org/mono", revision="v1", workdir="tools", command=command, artifacts={"vm": "bin/vm"}
    )
    program = replace(vm, artifacts={"host": "bin/host"})
    return vm, program


async def test_specs_sharing_a_recipe_build_once_and_keep_their_artifacts(tmp_path: Path) -> None:
    log = tmp_path / "builds.log"
    fetcher = FakeFetcher()
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=fetcher)
    vm, program = _monorepo_specs(log)

    for spec in (vm, program, vm, program):
        await orchestrator.ensure_built(spec)
    report = await orchestrator.ensure_all([vm, program])

    assert len(fetcher.calls) == 1
    assert log.read_text(encoding="utf-8").splitlines() == ["build"]
    vm_artifacts = report.artifacts_for(vm)
    program_artifacts = report.artifacts_for(program)
    assert vm_artifacts is not None and set(vm_artifacts) == {"vm"}
    assert program_artifacts is not None and set(program_artifacts) == {"host"}


@pytest.mark.parametrize("program_first", [False, True])
async def test_shared_recipe_reports_missing_artifact_for_the_declaring_spec(
    tmp_path: Path, program_first: bool
) -> None:
    log = tmp_path / "builds.log"
    fetcher = FakeFetcher()
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=fetcher)
    vm, _ = _monorepo_specs(log)
    program = BuildSpec(
        repo=vm.repo,
        revision=vm.revision,
        workdir=vm.workdir,
        command=vm.command,
        artifacts={"host": "bin/host", "client": "bin/missing"},
    )
    specs = [program, vm] if program_first else [vm, program]

    report = await orchestrator.ensure_all(specs)

    assert len(fetcher.calls) == 1
    assert report.artifacts_for(program) is None
    error = report.error_for(program)
    assert isinstance(error, BuildError)
    assert error.missing_artifact == "client"
    vm_artifacts = report.artifacts_for(vm)
    assert vm_artifacts is not None and set(vm_artifacts) == {"vm"}
    assert report.error_for(vm) is None


async def test_sibling_with_deleted_artifact_rebuilds_after_cache_hit(tmp_path: Path) -> None:
    log = tmp_path / "builds.log"
    fetcher = FakeFetcher()
    orchestrator = BuildOrchestrator(ArtifactCache(tmp_path / "cache"), fetcher=fetcher)
    vm, program = _monorepo_specs(log)
    first = await orchestrator.ensure_all([vm, program])
    host = first.artifacts_for(program)
    assert host is not None
    host["host"].path.unlink()

    second = await orchestrator.ensure_all([vm, program])

    assert len(fetcher.calls) == 2
    rebuilt = second.artifacts_for(program)
    assert rebuilt is not None and rebuilt["host"].path.is_file()
    assert second.failed == {}
