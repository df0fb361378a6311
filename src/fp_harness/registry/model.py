"""Immutable registry value objects: platforms, programs and their build recipes."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Final, NoReturn

NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


@dataclass(frozen=True, slots=True)
class NoBuild:
    """Marker for a platform that is already available and needs no build."""

    def describe(self) -> str:
        return "pre-available"


NO_BUILD: Final[NoBuild] = NoBuild()


@dataclass(frozen=True, slots=True)
class BuildSpec:
    """How to obtain one or more artifacts from a pinned source revision."""

    repo: str
    revision: str
    workdir: str
    command: str
    artifacts: Mapping[str, str]

    def __post_init__(self) -> None:
        for name in ("repo", "revision", "workdir", "command"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                _fail(f"BuildSpec.{name}", "must be a non-empty string")
        if not self.artifacts:
            _fail("BuildSpec.artifacts", "must declare at least one artifact")
        for artifact_name, rel_path in self.artifacts.items():
            if not is_safe_relative_path(rel_path):
                _fail(f"BuildSpec.artifacts.{artifact_name}", f"unsafe relative path {rel_path!r}")
        object.__setattr__(self, "artifacts", MappingProxyType(dict(sorted(self.artifacts.items()))))

    def __hash__(self) -> int:
        return hash((*self.identity().values(), *self.artifacts.items()))

    def identity(self) -> dict[str, str]:
        """Fields that determine what gets built; artifact names are excluded."""
        return {
            "repo": self.repo,
            "revision": self.revision,
            "workdir": self.workdir,
            "command": self.command,
        }

    def describe(self) -> str:
        return f"{self.repo}@{self.revision}"


@dataclass(frozen=True, slots=True)
class PlatformSpec:
    name: str
    is_default: bool = False
    build: NoBuild | BuildSpec = NO_BUILD
    invocation: str = "native"

    def __post_init__(self) -> None:
        if not NAME_PATTERN.fullmatch(self.name):
            _fail("PlatformSpec.name", f"invalid name {self.name!r}")


@dataclass(frozen=True, slots=True)
class ProgramSpec:
    name: str
    platform_compat: tuple[str, ...]
    build: BuildSpec
    is_default: bool = False
    invocation: str = "env"

    def __post_init__(self) -> None:
        if not NAME_PATTERN.fullmatch(self.name):
            _fail("ProgramSpec.name", f"invalid name {self.name!r}")
        if not self.platform_compat:
            _fail("ProgramSpec.platform_compat", "must not be empty")
        if len(set(self.platform_compat)) != len(self.platform_compat):
            _fail("ProgramSpec.platform_compat", "must not contain duplicates")

    def supports(self, platform: str) -> bool:
        return platform in self.platform_compat


@dataclass(frozen=True, slots=True)
class Registry:
    """Validated set of platforms and programs, in declaration order."""

    platforms: Mapping[str, PlatformSpec]
    programs: Mapping[str, ProgramSpec]
    warnings: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "platforms", MappingProxyType(dict(self.platforms)))
        object.__setattr__(self, "programs", MappingProxyType(dict(self.programs)))

    def platform(self, name: str) -> PlatformSpec:
        try:
            return self.platforms[name]
        except KeyError:
            raise KeyError(f"unknown platform {name!r}") from None

    def program(self, name: str) -> ProgramSpec:
        try:
            return self.programs[name]
        except KeyError:
            raise KeyError(f"unknown program {name!r}") from None

    def default_platforms(self) -> tuple[str, ...]:
        return tuple(name for name, spec in self.platforms.items() if spec.is_default)

    def default_programs(self) -> tuple[str, ...]:
        return tuple(name for name, spec in self.programs.items() if spec.is_default)


def is_safe_relative_path(raw: object) -> bool:
    """True for a non-empty relative POSIX path that stays inside its root."""
    if not isinstance(raw, str) or not raw.strip() or "\x00" in raw or "\\" in raw:
        return False
    path = PurePosixPath(raw)
    if path.is_absolute():
        return False
    return ".." not in path.parts


__all__ = [
    "BuildSpec",
    "NAME_PATTERN",
    "NO_BUILD",
    "NoBuild",
    "PlatformSpec",
    "ProgramSpec",
    "Registry",
    "is_safe_relative_path",
]
