"""
fp-harness: invocation names a registry may declare.

File: src/fp_harness/registry/invocations.py

Purpose
- Name the program conventions and platform runners the executor knows, with
  the build artifacts each one needs, so a registry can be checked without
  constructing any command line.

Functional requirements
- Every program convention runs an explicit ``host`` artifact.
- ``cannon`` / ``asterisc`` need a ``vm`` artifact on the platform and a
  ``client`` artifact on every program compatible with it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Final

from fp_harness.registry.model import BuildSpec, PlatformSpec, ProgramSpec


@dataclass(frozen=True, slots=True)
class PlatformInvocation:
    name: str
    platform_artifacts: tuple[str, ...] = ()
    program_artifacts: tuple[str, ...] = ()


PLATFORM_INVOCATIONS: Final[Mapping[str, PlatformInvocation]] = MappingProxyType(
    {
        invocation.name: invocation
        for invocation in (
            PlatformInvocation("native"),
            PlatformInvocation("cannon", ("vm",), ("client",)),
            PlatformInvocation("asterisc", ("vm",), ("client",)),
        )
    }
)

PROGRAM_INVOCATIONS: Final[Mapping[str, tuple[str, ...]]] = MappingProxyType(
    {
        "env": ("host",),
        "op-program": ("host",),
        "kona": ("host",),
    }
)


def validate_invocations(
    platforms: Mapping[str, PlatformSpec], programs: Mapping[str, ProgramSpec]
) -> list[tuple[str, str]]:
    """Return ``(path, message)`` issues for invocations a registry cannot satisfy."""

    issues: list[tuple[str, str]] = []

    for platform in platforms.values():
        path = f"platform.{platform.name}.invocation"
        runner = PLATFORM_INVOCATIONS.get(platform.invocation)
        if runner is None:
            issues.append((path, _unknown(platform.invocation, PLATFORM_INVOCATIONS)))
            continue
        declared = platform.build.artifacts if isinstance(platform.build, BuildSpec) else {}
        missing = [name for name in runner.platform_artifacts if name not in declared]
        if missing:
            issues.append(
                (path, f"runner {runner.name!r} requires build artifact(s): {', '.join(missing)}")
            )

    for program in programs.values():
        path = f"program.{program.name}.invocation"
        required = PROGRAM_INVOCATIONS.get(program.invocation)
        if required is None:
            issues.append((path, _unknown(program.invocation, PROGRAM_INVOCATIONS)))
            continue
        artifacts_path = f"program.{program.name}.build.artifacts"
        missing = [name for name in required if name not in program.build.artifacts]
        if missing:
            issues.append(
                (
                    artifacts_path,
                    f"invocation {program.invocation!r} requires artifact(s): {', '.join(missing)}",
                )
            )
        for platform_name in program.platform_compat:
            platform = platforms.get(platform_name)
            runner = PLATFORM_INVOCATIONS.get(platform.invocation) if platform else None
            if runner is None:
                continue
            declared = program.build.artifacts
            missing = [name for name in runner.program_artifacts if name not in declared]
            if missing:
                issues.append(
                    (
                        artifacts_path,
                        f"platform {platform_name!r} requires artifact(s): {', '.join(missing)}",
                    )
                )
    return issues


def _unknown(name: str, known: Mapping[str, object]) -> str:
    return f"unknown invocation {name!r}; expected one of: {', '.join(sorted(known))}"


__all__ = [
    "PLATFORM_INVOCATIONS",
    "PROGRAM_INVOCATIONS",
    "PlatformInvocation",
    "validate_invocations",
]
