"""Deterministic SHA-256 helpers for cache keys."""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "sha256_canonical_json",
    "sha256_text",
]


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return hashlib.sha256(text.encode(encoding)).hexdigest()


def sha256_canonical_json(payload: Mapping[str, object]) -> str:
    """Hash a mapping through its canonical JSON form (sorted keys, no whitespace)."""

    return sha256_text(
        json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    )
