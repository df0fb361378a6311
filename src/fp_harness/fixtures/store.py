"""
fp-harness: fixture store

File: src/fp_harness/fixtures/store.py

Purpose
- Persist and enumerate test fixtures under a fixtures directory, one
  sub-directory per fixture.

Layout
- ``<root>/<name>/fixture.yaml``       name, expected-status, inputs (kebab-case keys)
- ``<root>/<name>/rollup.json``        optional rollup configuration
- ``<root>/<name>/genesis.json.gz``    optional L2 genesis, gzip-compressed
- ``<root>/<name>/witness-db.tar.gz``  optional witness database archive

Functional requirements
- Fixtures are immutable once stored; replacing one requires ``overwrite``.
- A fixture directory is assembled in a hidden staging directory and renamed
  into place, so readers never see a half-written fixture.
- Enumeration is sorted by fixture name. A name pattern is applied before any
  manifest is read, so an unselected fixture cannot fail a load.
- ``fixture.toml`` manifests are accepted when reading.
"""

from __future__ import annotations

import fnmatch
import gzip
import logging
import os
import shutil
import tarfile
import tempfile
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path

import yaml

from fp_harness.constants import (
    FIXTURE_MANIFEST,
    GENESIS_ARCHIVE,
    LEGACY_FIXTURE_MANIFEST,
    ROLLUP_CONFIG_FILE,
    WITNESS_ARCHIVE,
)
from fp_harness.fixtures.model import FixtureFormatError, TestFixture
from fp_harness.utils.fs import atomic_write, safe_delete

logger = logging.getLogger(__name__)


class FixtureError(ValueError):
    """Raised when a fixture cannot be read, written or materialized."""


@dataclass(frozen=True, slots=True)
class MaterializedFixture:
    """Fixture files unpacked into a scratch directory, ready for a program run."""

    fixture: TestFixture
    root: Path
    datadir: Path
    rollup_config: Path | None
    genesis: Path | None


class FixtureStore:
    """Filesystem-backed fixture collection."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)

    def names(self, pattern: str | None = None) -> tuple[str, ...]:
        if not self.root.is_dir():
            return ()
        return tuple(
            sorted(
                entry.name
                for entry in self.root.iterdir()
                if entry.is_dir()
                and not entry.name.startswith(".")
                and (pattern is None or fnmatch.fnmatchcase(entry.name, pattern))
            )
        )

    def exists(self, name: str) -> bool:
        return (self.root / name).is_dir()

    def load_all(self, pattern: str | None = None) -> tuple[TestFixture, ...]:
        return tuple(self.load(name) for name in self.names(pattern))

    def load(self, name: str) -> TestFixture:
        directory = self.root / name
        manifest = directory / FIXTURE_MANIFEST
        legacy = directory / LEGACY_FIXTURE_MANIFEST
        try:
            if manifest.is_file():
                raw = yaml.safe_load(manifest.read_text(encoding="utf-8"))
            elif legacy.is_file():
                with legacy.open("rb") as handle:
                    raw = tomllib.load(handle)
            else:
                raise FixtureError(f"fixture {name!r}: missing {FIXTURE_MANIFEST} in {directory}")
        except (OSError, yaml.YAMLError, tomllib.TOMLDecodeError) as exc:
            raise FixtureError(f"fixture {name!r}: unreadable manifest: {exc}") from exc

        if not isinstance(raw, dict):
            raise FixtureError(f"fixture {name!r}: manifest root must be a mapping")
        try:
            fixture = TestFixture.from_dict(raw)
        except FixtureFormatError as exc:
            raise FixtureError(f"fixture {name!r}: {exc}") from exc
        if fixture.name != name:
            raise FixtureError(
                f"fixture {name!r}: manifest name {fixture.name!r} does not match its directory"
            )

        return replace(
            fixture,
            directory=directory,
            rollup_config=_present(directory, ROLLUP_CONFIG_FILE),
            genesis=_present(directory, GENESIS_ARCHIVE),
            witness_db=_present(directory, WITNESS_ARCHIVE),
        )

    def save(
        self,
        fixture: TestFixture,
        *,
        rollup_config: Path | None = None,
        genesis: Path | None = None,
        witness_db: Path | None = None,
        overwrite: bool = False,
    ) -> TestFixture:
        """Persist ``fixture`` with optional auxiliary files and return the stored view.

        ``genesis`` may be plain JSON or already gzip-compressed. ``witness_db``
        may be a directory (archived here) or an existing ``.tar.gz`` file.
        """
        target = self.root / fixture.name
        if target.exists() and not overwrite:
            raise FixtureError(f"fixture {fixture.name!r} already exists at {target}")

        self.root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{fixture.name}.", dir=self.root))
        try:
            manifest = yaml.safe_dump(fixture.to_dict(), sort_keys=False)
            atomic_write(staging / FIXTURE_MANIFEST, manifest)
            if rollup_config is not None:
                shutil.copyfile(rollup_config, staging / ROLLUP_CONFIG_FILE)
            if genesis is not None:
                _store_genesis(genesis, staging / GENESIS_ARCHIVE)
            if witness_db is not None:
                _store_witness(witness_db, staging / WITNESS_ARCHIVE)

            if target.exists():
                safe_delete(target, self.root)
            os.replace(staging, target)
        except OSError as exc:
            raise FixtureError(f"fixture {fixture.name!r}: unable to store: {exc}") from exc
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        logger.info("stored fixture %s at %s", fixture.name, target)
        return self.load(fixture.name)

    def materialize(self, fixture: TestFixture, scratch_root: Path) -> MaterializedFixture:
        """Unpack a stored fixture's archives below ``scratch_root/<name>``."""
        if fixture.directory is None:
            raise FixtureError(f"fixture {fixture.name!r} has not been stored")

        dest = scratch_root / fixture.name
        datadir = dest / "datadir"
        try:
            datadir.mkdir(parents=True, exist_ok=True)

            genesis_path: Path | None = None
            genesis_archive = fixture.aux_path(fixture.genesis)
            if genesis_archive is not None:
                genesis_path = dest / "genesis.json"
                with gzip.open(genesis_archive, "rb") as src, genesis_path.open("wb") as dst:
                    shutil.copyfileobj(src, dst)

            witness_archive = fixture.aux_path(fixture.witness_db)
            if witness_archive is not None:
                with tarfile.open(witness_archive, "r:gz") as archive:
                    archive.extractall(datadir, filter="data")
        except (OSError, tarfile.TarError, EOFError) as exc:
            raise FixtureError(f"fixture {fixture.name!r}: unable to unpack: {exc}") from exc

        logger.debug("materialized fixture %s into %s", fixture.name, dest)
        return MaterializedFixture(
            fixture=fixture,
            root=dest,
            datadir=datadir,
            rollup_config=fixture.aux_path(fixture.rollup_config),
            genesis=genesis_path,
        )

    def teardown(self, materialized: MaterializedFixture, scratch_root: Path) -> None:
        """Remove files unpacked by :meth:`materialize`."""
        safe_delete(materialized.root, scratch_root)


def _present(directory: Path, file_name: str) -> str | None:
    return file_name if (directory / file_name).is_file() else None


def _store_genesis(source: Path, target: Path) -> None:
    with source.open("rb") as handle:
        magic = handle.read(2)
    if magic == b"\x1f\x8b":
        shutil.copyfile(source, target)
        return
    with source.open("rb") as src, gzip.open(target, "wb") as dst:
        shutil.copyfileobj(src, dst)


def _store_witness(source: Path, target: Path) -> None:
    if source.is_file():
        if not tarfile.is_tarfile(source):
            raise FixtureError(f"witness database {source} is not a tar archive")
        shutil.copyfile(source, target)
        return
    with tarfile.open(target, "w:gz") as archive:
        for entry in sorted(source.iterdir()):
            archive.add(entry, arcname=entry.name)


__all__ = ["FixtureError", "FixtureStore", "MaterializedFixture"]
