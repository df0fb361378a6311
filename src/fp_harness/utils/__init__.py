"""Utility exports for filesystem, hashing, and concurrency helpers."""

from fp_harness.utils.concurrency import BoundedSemaphore, KeyedLocks
from fp_harness.utils.fs import atomic_write, is_within, safe_delete, temp_directory
from fp_harness.utils.hashing import sha256_canonical_json, sha256_text

__all__ = [
    "BoundedSemaphore",
    "KeyedLocks",
    "atomic_write",
    "is_within",
    "safe_delete",
    "sha256_canonical_json",
    "sha256_text",
    "temp_directory",
]
