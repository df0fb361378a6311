"""Deterministic sharding of the job list across CI machines."""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Final, TypeVar

T = TypeVar("T")

_PARTITION_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*(\d+)\s*/\s*(\d+)\s*$")


class InvalidPartition(ValueError):
    """Raised for a shard index outside ``1..total`` or a malformed ``i/n`` string."""


def parse_partition(raw: str) -> tuple[int, int]:
    """Parse ``"i/n"`` into ``(index, total)``."""
    match = _PARTITION_PATTERN.fullmatch(raw)
    if match is None:
        raise InvalidPartition(f"partition must look like 'index/total', got {raw!r}")
    index, total = int(match.group(1)), int(match.group(2))
    _validate(index, total)
    return index, total


def partition(jobs: Sequence[T], index: int, total: int) -> tuple[T, ...]:
    """Return shard ``index`` of ``total``.

    The job at position ``k`` belongs to shard ``(k mod total) + 1``, so every
    job lands in exactly one shard and shard sizes differ by at most one.
    """
    _validate(index, total)
    return tuple(job for position, job in enumerate(jobs) if position % total + 1 == index)


def _validate(index: int, total: int) -> None:
    if total < 1:
        raise InvalidPartition(f"partition total must be >= 1, got {total}")
    if not 1 <= index <= total:
        raise InvalidPartition(f"partition index must be in 1..{total}, got {index}")


__all__ = ["InvalidPartition", "parse_partition", "partition"]
