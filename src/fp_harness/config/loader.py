"""
fp-harness: runtime config loader.

File: src/fp_harness/config/loader.py

Purpose
- Produce the effective runtime config for one ``fpt`` invocation from the
  built-in defaults, ``fpt.toml``, ``FPT_*`` environment variables and CLI
  overrides.

Functional requirements
- Config file: ``--config`` when given, else ``$FPT_CONFIG``, else the nearest
  ``fpt.toml`` in the working directory or one of its parents. Only a file
  that was named explicitly has to exist.
- Precedence: CLI > env (FPT_<SECTION>_<KEY>) > file > defaults.
- Environment values are coerced to the type of the built-in default.
- Path fields are resolved against the directory holding the config file,
  or the working directory when no file was found.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from fp_harness.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)
from fp_harness.constants import DEFAULT_CONFIG_FILE

ENV_PREFIX: Final[str] = "FPT_"
CONFIG_ENV_VAR: Final[str] = "FPT_CONFIG"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

# Sections that cannot be overridden from the environment.
_ENV_EXCLUDED_SECTIONS: Final[frozenset[str]] = frozenset({"meta"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with precedence CLI > env > file > defaults."""

    env_map = os.environ if environ is None else environ
    source = locate_config_file(config_path, environ=env_map)
    base_dir = source.parent if source is not None else Path.cwd().resolve()

    file_payload = _read_toml(source) if source is not None else {}
    config = assert_valid_config(merge_config(default_config(), file_payload))

    layered = merge_config(config, env_overrides(env_map))
    layered = merge_config(layered, _nest_cli_overrides(cli_overrides or {}))
    return normalize_paths(assert_valid_config(layered), base_dir=base_dir)


def locate_config_file(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    start: Path | None = None,
) -> Path | None:
    """Return the config file to read, or ``None`` when there is none."""

    env_map = os.environ if environ is None else environ
    explicit = config_path if config_path is not None else env_map.get(CONFIG_ENV_VAR) or None
    if explicit is not None:
        path = Path(explicit).expanduser().resolve()
        if not path.is_file():
            raise ConfigLoadError(f"config file not found: {path}")
        return path

    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        candidate = directory / DEFAULT_CONFIG_FILE
        if candidate.is_file():
            return candidate
    return None


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``FPT_<SECTION>_<KEY>`` overrides for every known config field."""

    overrides: dict[str, Any] = {}
    for section, fields in sorted(default_config().items()):
        if section in _ENV_EXCLUDED_SECTIONS:
            continue
        for key, default in sorted(fields.items()):
            env_name = f"{ENV_PREFIX}{section.upper()}_{key.upper()}"
            raw = environ.get(env_name)
            if raw is None:
                continue
            value = _coerce(raw, default, env_name=env_name, field=f"{section}.{key}")
            overrides.setdefault(section, {})[key] = value
    return overrides


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve configured path fields against ``base_dir``."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        fields = normalized.get(section)
        if isinstance(fields, dict) and isinstance(fields.get(key), str):
            fields[key] = _resolve_path(fields[key], base_dir)
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return a deterministic JSON dump of the effective config."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _coerce(raw: str, default: object, *, env_name: str, field: str) -> object:
    value = raw.strip()
    if isinstance(default, bool):
        lowered = value.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ConfigLoadError(
            f"{env_name} -> {field} must be a boolean (true/false/1/0/yes/no/on/off)"
        )
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {field} must be an integer") from exc
    return value


def _nest_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for dotted, value in sorted(cli_overrides.items()):
        if value is None:
            continue
        section, _, key = dotted.partition(".")
        if not section or not key or "." in key:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}; expected 'section.key'")
        nested.setdefault(section, {})[key] = value
    return nested


def _resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigLoadError",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "locate_config_file",
    "normalize_paths",
]
