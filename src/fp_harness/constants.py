"""Shared constants for the fault-proof test harness."""

from __future__ import annotations

from typing import Final

CONFIG_SCHEMA_VERSION: Final[int] = 1

DEFAULT_CONFIG_FILE: Final[str] = "fpt.toml"
DEFAULT_REGISTRY_FILE: Final[str] = "registry.toml"
DEFAULT_FIXTURES_DIR: Final[str] = "fixtures"
DEFAULT_CACHE_ROOT: Final[str] = "~/.fpt/cache"

DEFAULT_WORKERS: Final[int] = 4
DEFAULT_JOB_TIMEOUT_SECONDS: Final[int] = 1800
DEFAULT_BUILD_TIMEOUT_SECONDS: Final[int] = 3600
DEFAULT_OUTPUT_TAIL_CHARS: Final[int] = 4000

# Distance between an output's L1 origin and the L1 head used for fixtures.
L1_HEAD_CONFIRMATION_DEPTH: Final[int] = 25

FIXTURE_MANIFEST: Final[str] = "fixture.yaml"
LEGACY_FIXTURE_MANIFEST: Final[str] = "fixture.toml"
ROLLUP_CONFIG_FILE: Final[str] = "rollup.json"
GENESIS_ARCHIVE: Final[str] = "genesis.json.gz"
WITNESS_ARCHIVE: Final[str] = "witness-db.tar.gz"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BUILD_TIMEOUT_SECONDS",
    "DEFAULT_CACHE_ROOT",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_FIXTURES_DIR",
    "DEFAULT_JOB_TIMEOUT_SECONDS",
    "DEFAULT_OUTPUT_TAIL_CHARS",
    "DEFAULT_REGISTRY_FILE",
    "DEFAULT_WORKERS",
    "FIXTURE_MANIFEST",
    "GENESIS_ARCHIVE",
    "L1_HEAD_CONFIRMATION_DEPTH",
    "LEGACY_FIXTURE_MANIFEST",
    "ROLLUP_CONFIG_FILE",
    "WITNESS_ARCHIVE",
]
