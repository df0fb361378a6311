"""Compute the (platform, program, fixture) job list for a run."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from fp_harness.fixtures.model import TestFixture
from fp_harness.registry.model import Registry


class MatrixFilterError(ValueError):
    """Raised when a filter names a platform or program the registry does not have."""


@dataclass(frozen=True, slots=True, order=True)
class Job:
    platform: str
    program: str
    fixture: str

    @property
    def key(self) -> str:
        return f"{self.platform}::{self.program}::{self.fixture}"


@dataclass(frozen=True, slots=True)
class MatrixFilters:
    """User selection; empty name tuples mean "no restriction"."""

    name_pattern: str | None = None
    platform_names: tuple[str, ...] = ()
    program_names: tuple[str, ...] = ()
    defaults_only: bool = False


def resolve_jobs(
    registry: Registry,
    fixtures: Iterable[TestFixture],
    filters: MatrixFilters | None = None,
) -> tuple[Job, ...]:
    """Return every compatible, filter-matching job.

    Ordering is platforms then programs in registry declaration order, then
    fixtures by name. The result is the run's complete, immutable job set.
    """

    active = filters or MatrixFilters()
    platforms = _select(
        "platform",
        tuple(registry.platforms),
        registry.default_platforms(),
        active.platform_names,
        active.defaults_only,
    )
    programs = _select(
        "program",
        tuple(registry.programs),
        registry.default_programs(),
        active.program_names,
        active.defaults_only,
    )
    fixture_names = sorted(
        fixture.name
        for fixture in fixtures
        if active.name_pattern is None or fnmatch.fnmatchcase(fixture.name, active.name_pattern)
    )

    jobs: list[Job] = []
    for platform in platforms:
        for program in programs:
            if not registry.programs[program].supports(platform):
                continue
            jobs.extend(Job(platform, program, name) for name in fixture_names)
    return tuple(jobs)


def compatibility_matrix(registry: Registry) -> dict[str, tuple[str, ...]]:
    """Platform name -> compatible program names, in declaration order."""
    return {
        platform: tuple(
            name for name, program in registry.programs.items() if program.supports(platform)
        )
        for platform in registry.platforms
    }


def _select(
    kind: str,
    declared: Sequence[str],
    defaults: Sequence[str],
    requested: Sequence[str],
    defaults_only: bool,
) -> tuple[str, ...]:
    if requested:
        unknown = sorted(set(requested) - set(declared))
        if unknown:
            raise MatrixFilterError(
                f"unknown {kind}(s): {', '.join(unknown)}; "
                f"registry declares: {', '.join(declared) or '<none>'}"
            )
        wanted = set(requested)
        return tuple(name for name in declared if name in wanted)
    if defaults_only:
        return tuple(defaults)
    return tuple(declared)


__all__ = ["Job", "MatrixFilterError", "MatrixFilters", "compatibility_matrix", "resolve_jobs"]
