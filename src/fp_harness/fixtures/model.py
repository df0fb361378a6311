"""Test fixture value objects and their on-disk mapping (kebab-case keys)."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Final, NoReturn

from fp_harness.registry.model import NAME_PATTERN

_B256_PATTERN: Final[re.Pattern[str]] = re.compile(r"^0x[0-9a-fA-F]{64}$")

HASH_FIELDS: Final[tuple[str, ...]] = ("l1_head", "l2_head", "l2_output_root", "l2_claim")
INTEGER_FIELDS: Final[tuple[str, ...]] = ("l2_block_number", "l2_chain_id")


class FixtureFormatError(ValueError):
    """Raised when fixture data does not match the persisted format."""


def _fail(path: str, message: str) -> NoReturn:
    raise FixtureFormatError(f"{path}: {message}")


def normalize_b256(value: object, path: str) -> str:
    """Return a lower-case ``0x``-prefixed 32-byte hex string."""
    if not isinstance(value, str) or not _B256_PATTERN.fullmatch(value.strip()):
        _fail(path, f"expected 0x-prefixed 32-byte hex string, got {value!r}")
    return value.strip().lower()


def _as_uint(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected non-negative integer, got {type(value).__name__}")
    if value < 0:
        _fail(path, "must be >= 0")
    return value


def _hash_text(value: object) -> str:
    # Unquoted 0x literals load as integers under YAML 1.1.
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return f"0x{value:064x}"
    return value if isinstance(value, str) else repr(value)


@dataclass(frozen=True, slots=True)
class FixtureInputs:
    """Chain values handed to the fault-proof program."""

    l1_head: str
    l2_head: str
    l2_output_root: str
    l2_claim: str
    l2_block_number: int
    l2_chain_id: int

    def __post_init__(self) -> None:
        for name in HASH_FIELDS:
            object.__setattr__(self, name, normalize_b256(getattr(self, name), f"inputs.{name}"))
        for name in INTEGER_FIELDS:
            _as_uint(getattr(self, name), f"inputs.{name}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "l1-head": self.l1_head,
            "l2-head": self.l2_head,
            "l2-output-root": self.l2_output_root,
            "l2-claim": self.l2_claim,
            "l2-block-number": self.l2_block_number,
            "l2-chain-id": self.l2_chain_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object], path: str = "inputs") -> FixtureInputs:
        allowed = {"l1-head", "l2-head", "l2-output-root", "l2-claim", "l2-block-number", "l2-chain-id"}
        unknown = sorted(set(data) - allowed)
        if unknown:
            _fail(path, f"unknown field(s): {', '.join(unknown)}")
        missing = sorted(allowed - set(data))
        if missing:
            _fail(path, f"missing field(s): {', '.join(missing)}")
        return cls(
            l1_head=_hash_text(data["l1-head"]),
            l2_head=_hash_text(data["l2-head"]),
            l2_output_root=_hash_text(data["l2-output-root"]),
            l2_claim=_hash_text(data["l2-claim"]),
            l2_block_number=_as_uint(data["l2-block-number"], f"{path}.l2-block-number"),
            l2_chain_id=_as_uint(data["l2-chain-id"], f"{path}.l2-chain-id"),
        )


@dataclass(frozen=True, slots=True)
class TestFixture:
    """One persisted test case: program inputs plus the expected exit status.

    ``directory`` is set once the fixture has been stored; the optional file
    names refer to auxiliary files inside that directory.
    """

    __test__: ClassVar[bool] = False

    name: str
    inputs: FixtureInputs
    expected_status: int = 0
    directory: Path | None = None
    rollup_config: str | None = None
    genesis: str | None = None
    witness_db: str | None = None

    def __post_init__(self) -> None:
        if not NAME_PATTERN.fullmatch(self.name):
            _fail("name", f"invalid fixture name {self.name!r}")
        status = _as_uint(self.expected_status, "expected-status")
        if status > 255:
            _fail("expected-status", "must be an exit status in 0..255")

    def aux_path(self, file_name: str | None) -> Path | None:
        if file_name is None or self.directory is None:
            return None
        return self.directory / file_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "expected-status": self.expected_status,
            "inputs": self.inputs.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> TestFixture:
        allowed = {"name", "expected-status", "inputs"}
        unknown = sorted(set(data) - allowed)
        if unknown:
            _fail("<root>", f"unknown field(s): {', '.join(unknown)}")
        name = data.get("name")
        if not isinstance(name, str):
            _fail("name", "missing or not a string")
        inputs = data.get("inputs")
        if not isinstance(inputs, Mapping):
            _fail("inputs", "missing or not a table")
        return cls(
            name=name,
            inputs=FixtureInputs.from_dict(inputs),
            expected_status=_as_uint(data.get("expected-status", 0), "expected-status"),
        )


__all__ = [
    "FixtureFormatError",
    "FixtureInputs",
    "HASH_FIELDS",
    "INTEGER_FIELDS",
    "TestFixture",
    "normalize_b256",
]
