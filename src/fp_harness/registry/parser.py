"""
fp-harness: registry parsing and validation.

File: src/fp_harness/registry/parser.py

Purpose
- Turn ``registry.toml`` into an immutable :class:`Registry`.

Source format
- ``[platform.<name>]``: ``default``, ``invocation``, optional ``build`` table.
- ``[program.<name>]``: ``default``, ``platform-compat``, ``invocation``,
  required ``build`` table.
- ``build``: ``repo``, ``rev``, ``workdir``, ``cmd``, ``artifacts.<name> = <relative path>``.

Functional requirements
- Collect every violation before failing; ``RegistryValidationError.issues``
  lists all of them with a dotted path.
- A registry without a default platform or program is valid but warned about.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from fp_harness.registry.invocations import validate_invocations
from fp_harness.registry.model import (
    NAME_PATTERN,
    NO_BUILD,
    BuildSpec,
    NoBuild,
    PlatformSpec,
    ProgramSpec,
    Registry,
    is_safe_relative_path,
)

logger = logging.getLogger(__name__)

_ROOT_KEYS: Final[frozenset[str]] = frozenset({"platform", "program"})
_PLATFORM_KEYS: Final[frozenset[str]] = frozenset({"default", "build", "invocation"})
_PROGRAM_KEYS: Final[frozenset[str]] = frozenset(
    {"default", "build", "invocation", "platform-compat"}
)
_BUILD_KEYS: Final[frozenset[str]] = frozenset({"repo", "rev", "workdir", "cmd", "artifacts"})


@dataclass(frozen=True, slots=True)
class RegistryIssue:
    path: str
    message: str


class RegistryValidationError(ValueError):
    """Raised when the registry source is malformed; carries every issue found."""

    def __init__(self, issues: Sequence[RegistryIssue]) -> None:
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid registry:\n{rendered or '- unknown validation failure'}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[RegistryIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(RegistryIssue(path=path, message=message))

    def items(self) -> tuple[RegistryIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def load_registry(path: str | os.PathLike[str]) -> Registry:
    """Read and parse a registry file."""

    registry_path = Path(path)
    try:
        text = registry_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RegistryValidationError(
            (RegistryIssue(str(registry_path), f"unable to read registry: {exc}"),)
        ) from exc
    return parse_registry(text)


def parse_registry(source: str | Mapping[str, object]) -> Registry:
    """Parse TOML text (or an already-decoded mapping) into a validated registry."""

    issues = _IssueCollector()
    if isinstance(source, str):
        try:
            payload: Mapping[str, object] = tomllib.loads(source)
        except tomllib.TOMLDecodeError as exc:
            # Duplicate [platform.x] / [program.x] tables surface here.
            raise RegistryValidationError((RegistryIssue("<toml>", str(exc)),)) from exc
    else:
        payload = source

    for key in sorted(set(payload) - _ROOT_KEYS):
        issues.add(key, "unknown field")

    platforms: dict[str, PlatformSpec] = {}
    for name, raw in _entries(payload, "platform", issues):
        spec = _parse_platform(name, raw, issues)
        if spec is not None:
            platforms[name] = spec

    programs: dict[str, ProgramSpec] = {}
    for name, raw in _entries(payload, "program", issues):
        spec = _parse_program(name, raw, issues)
        if spec is not None:
            programs[name] = spec

    # Entries that failed to parse still take part in compat reference checks.
    declared_platforms = {name for name, _ in _entries(payload, "platform", _IssueCollector())}
    for name, raw in _entries(payload, "program", _IssueCollector()):
        for index, platform_name in enumerate(_compat_names(raw.get("platform-compat")) or ()):
            if platform_name not in declared_platforms:
                issues.add(
                    f"program.{name}.platform-compat[{index}]",
                    f"program {name!r} references nonexistent platform {platform_name!r}",
                )

    for path, message in validate_invocations(platforms, programs):
        issues.add(path, message)

    if issues.has_issues:
        raise RegistryValidationError(issues.items())

    warnings: list[str] = []
    if platforms and not any(spec.is_default for spec in platforms.values()):
        warnings.append("no platform is marked default = true")
    if programs and not any(spec.is_default for spec in programs.values()):
        warnings.append("no program is marked default = true")
    if not platforms:
        warnings.append("registry declares no platforms")
    if not programs:
        warnings.append("registry declares no programs")
    for warning in warnings:
        logger.warning("registry: %s", warning)

    return Registry(platforms=platforms, programs=programs, warnings=tuple(warnings))


def _entries(
    payload: Mapping[str, object], section: str, issues: _IssueCollector
) -> list[tuple[str, Mapping[str, Any]]]:
    raw = payload.get(section)
    if raw is None:
        return []
    if not isinstance(raw, Mapping):
        issues.add(section, f"expected table, got {type(raw).__name__}")
        return []
    entries: list[tuple[str, Mapping[str, Any]]] = []
    for name, body in raw.items():
        path = f"{section}.{name}"
        if not isinstance(name, str) or not NAME_PATTERN.fullmatch(name):
            issues.add(path, f"invalid name {name!r}; expected {NAME_PATTERN.pattern}")
            continue
        if not isinstance(body, Mapping):
            issues.add(path, f"expected table, got {type(body).__name__}")
            continue
        entries.append((name, body))
    return entries


def _parse_platform(
    name: str, raw: Mapping[str, Any], issues: _IssueCollector
) -> PlatformSpec | None:
    path = f"platform.{name}"
    before = len(issues.items())
    _reject_unknown(raw, _PLATFORM_KEYS, path, issues)

    is_default = _as_bool(raw.get("default", False), f"{path}.default", issues)
    build: NoBuild | BuildSpec | None = NO_BUILD
    if "build" in raw:
        build = _parse_build(raw["build"], f"{path}.build", issues)
    default_invocation = "native" if isinstance(build, NoBuild) else name
    invocation = _as_name(raw.get("invocation", default_invocation), f"{path}.invocation", issues)

    if len(issues.items()) != before or build is None or invocation is None:
        return None
    return PlatformSpec(name=name, is_default=bool(is_default), build=build, invocation=invocation)


def _parse_program(
    name: str, raw: Mapping[str, Any], issues: _IssueCollector
) -> ProgramSpec | None:
    path = f"program.{name}"
    before = len(issues.items())
    _reject_unknown(raw, _PROGRAM_KEYS, path, issues)

    is_default = _as_bool(raw.get("default", False), f"{path}.default", issues)
    invocation = _as_name(raw.get("invocation", "env"), f"{path}.invocation", issues)

    compat: tuple[str, ...] = ()
    compat_path = f"{path}.platform-compat"
    raw_compat = raw.get("platform-compat")
    names = _compat_names(raw_compat)
    if raw_compat is None:
        issues.add(compat_path, "missing required field")
    elif names is None:
        issues.add(compat_path, "expected a list of platform names")
    elif not names:
        issues.add(compat_path, "must list at least one platform")
    else:
        duplicates = sorted({v for v in names if names.count(v) > 1})
        if duplicates:
            issues.add(compat_path, f"duplicate platform(s): {', '.join(duplicates)}")
        compat = tuple(names)

    build: BuildSpec | None = None
    if "build" not in raw:
        issues.add(f"{path}.build", "missing required field")
    else:
        build = _parse_build(raw["build"], f"{path}.build", issues)

    if len(issues.items()) != before or build is None or invocation is None:
        return None
    return ProgramSpec(
        name=name,
        platform_compat=compat,
        build=build,
        is_default=bool(is_default),
        invocation=invocation,
    )


def _parse_build(raw: object, path: str, issues: _IssueCollector) -> BuildSpec | None:
    if not isinstance(raw, Mapping):
        issues.add(path, f"expected table, got {type(raw).__name__}")
        return None
    before = len(issues.items())
    _reject_unknown(raw, _BUILD_KEYS, path, issues)

    fields: dict[str, str] = {}
    for key in ("repo", "rev", "workdir", "cmd"):
        value = raw.get(key)
        if value is None:
            issues.add(f"{path}.{key}", "missing required field")
        elif not isinstance(value, str) or not value.strip():
            issues.add(f"{path}.{key}", "must be a non-empty string")
        else:
            fields[key] = value.strip()

    workdir = fields.get("workdir")
    if workdir is not None and workdir != "." and not is_safe_relative_path(workdir):
        issues.add(f"{path}.workdir", f"must be a relative path inside the checkout, got {workdir!r}")

    artifacts: dict[str, str] = {}
    raw_artifacts = raw.get("artifacts")
    if raw_artifacts is None:
        issues.add(f"{path}.artifacts", "missing required field")
    elif not isinstance(raw_artifacts, Mapping):
        issues.add(f"{path}.artifacts", "expected table of artifact name -> relative path")
    elif not raw_artifacts:
        issues.add(f"{path}.artifacts", "must declare at least one artifact")
    else:
        for artifact_name, rel_path in raw_artifacts.items():
            artifact_path = f"{path}.artifacts.{artifact_name}"
            if not is_safe_relative_path(rel_path):
                issues.add(artifact_path, f"must be a relative path inside workdir, got {rel_path!r}")
            else:
                artifacts[str(artifact_name)] = rel_path

    if len(issues.items()) != before:
        return None
    return BuildSpec(
        repo=fields["repo"],
        revision=fields["rev"],
        workdir=fields["workdir"],
        command=fields["cmd"],
        artifacts=artifacts,
    )


def _compat_names(raw: object) -> list[str] | None:
    if isinstance(raw, list) and all(isinstance(value, str) for value in raw):
        return raw
    return None


def _reject_unknown(
    payload: Mapping[str, object], allowed: frozenset[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(set(payload) - allowed):
        issues.add(f"{path}.{key}", "unknown field")


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str) or not value.strip():
        issues.add(path, "must be a non-empty string")
        return None
    return value.strip()


__all__ = [
    "RegistryIssue",
    "RegistryValidationError",
    "load_registry",
    "parse_registry",
]
