"""
fp-harness: content-addressed artifact cache

File: src/fp_harness/build/cache.py

Purpose
- Map a :class:`BuildSpec` to the directory holding its checkout and build
  outputs, and decide whether a previous build can be reused.

Layout
- ``<cache_root>/builds/<key>/src/``      revision-pinned checkout (build runs here)
- ``<cache_root>/builds/<key>/build.json`` manifest, written last and atomically

Functional requirements
- ``key`` is the SHA-256 of the canonical JSON of (repo, revision, workdir, command),
  so registry entries with identical recipes share one build.
- The manifest records the recipe identity once its command has exited 0.
  Specs sharing a recipe may declare different artifacts; a hit requires a
  matching manifest and every artifact declared by the requesting spec still
  on disk. Anything else is a miss.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType

from fp_harness.registry.model import BuildSpec
from fp_harness.utils.fs import atomic_write, safe_delete
from fp_harness.utils.hashing import sha256_canonical_json

logger = logging.getLogger(__name__)

MANIFEST_NAME = "build.json"


@dataclass(frozen=True, slots=True)
class Artifact:
    """A built file and the source it came from."""

    name: str
    path: Path
    repo: str
    revision: str


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    directory: Path
    artifacts: Mapping[str, Artifact]

    def paths(self) -> dict[str, Path]:
        return {name: artifact.path for name, artifact in self.artifacts.items()}


def cache_key(spec: BuildSpec) -> str:
    return sha256_canonical_json(spec.identity())


class ArtifactCache:
    """Filesystem cache of build outputs keyed by build recipe."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root).expanduser()
        self.builds_dir = self.root / "builds"

    def entry_dir(self, spec: BuildSpec) -> Path:
        return self.builds_dir / cache_key(spec)

    def source_dir(self, spec: BuildSpec) -> Path:
        return self.entry_dir(spec) / "src"

    def build_dir(self, spec: BuildSpec) -> Path:
        return self.source_dir(spec) / spec.workdir

    def artifact_paths(self, spec: BuildSpec) -> dict[str, Path]:
        base = self.build_dir(spec)
        return {name: (base / rel_path).resolve() for name, rel_path in spec.artifacts.items()}

    def resolve(self, spec: BuildSpec) -> CacheEntry | None:
        """Return the cached entry for ``spec``, or ``None`` on a miss."""
        key = cache_key(spec)
        manifest_path = self.entry_dir(spec) / MANIFEST_NAME
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable build manifest %s: %s", manifest_path, exc)
            return None

        expected = spec.identity()
        if not isinstance(manifest, dict) or any(
            manifest.get(field) != value for field, value in expected.items()
        ):
            logger.info("build manifest for %s does not match its recipe; rebuilding", spec.describe())
            return None

        missing = self.missing_artifacts(spec)
        if missing:
            logger.info(
                "cached build of %s lost artifact(s) %s; rebuilding",
                spec.describe(),
                ", ".join(missing),
            )
            return None
        return self._entry(spec, key, self.artifact_paths(spec))

    def missing_artifacts(self, spec: BuildSpec) -> list[str]:
        """Names of artifacts declared by ``spec`` that are not on disk."""
        paths = self.artifact_paths(spec)
        return sorted(name for name, path in paths.items() if not path.is_file())

    def record(self, spec: BuildSpec) -> CacheEntry:
        """Write the manifest once the recipe's build command has succeeded."""
        entry_dir = self.entry_dir(spec)
        payload: dict[str, object] = dict(spec.identity())
        payload["built_at"] = datetime.now(tz=UTC).isoformat(timespec="seconds")
        atomic_write(
            entry_dir / MANIFEST_NAME,
            json.dumps(payload, sort_keys=True, indent=2) + "\n",
        )
        return self._entry(spec, cache_key(spec), self.artifact_paths(spec))

    def invalidate(self, spec: BuildSpec) -> None:
        """Remove any (partial) entry for ``spec``."""
        entry_dir = self.entry_dir(spec)
        if entry_dir.exists():
            safe_delete(entry_dir, self.builds_dir)

    def _entry(self, spec: BuildSpec, key: str, paths: Mapping[str, Path]) -> CacheEntry:
        artifacts = {
            name: Artifact(name=name, path=path, repo=spec.repo, revision=spec.revision)
            for name, path in paths.items()
        }
        return CacheEntry(
            key=key, directory=self.entry_dir(spec), artifacts=MappingProxyType(artifacts)
        )


__all__ = ["Artifact", "ArtifactCache", "CacheEntry", "MANIFEST_NAME", "cache_key"]
