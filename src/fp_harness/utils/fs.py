"""
fp-harness: filesystem utilities

File: src/fp_harness/utils/fs.py

Purpose
- Atomic writes for manifests, guarded deletion inside a known root, and
  scratch directories for job execution.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Deletion refuses paths outside the given root.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "is_within",
    "safe_delete",
    "temp_directory",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The parent directory must exist. Data is written to a sibling temp file,
    fsynced, then moved over the target with ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)
    payload = data if isinstance(data, bytes) else data.encode(encoding)

    try:
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    try:
        Path(child).resolve().relative_to(Path(parent).resolve())
    except ValueError:
        return False
    return True


def safe_delete(path: PathLike, root: PathLike) -> None:
    """
    Delete ``path`` (file or tree) only if it lies inside ``root``.

    Missing paths are ignored. Symlinks are unlinked without following them.
    """

    target = Path(path)
    if not target.exists() and not target.is_symlink():
        return
    candidate = target.parent.resolve() / target.name
    if not is_within(candidate, root) or candidate == Path(root).resolve():
        raise ValueError(f"refusing to delete path outside {root!s}: {target!s}")

    if target.is_symlink() or not target.is_dir():
        target.unlink()
        return
    shutil.rmtree(target)


@contextmanager
def temp_directory(prefix: str = "fpt-") -> Iterator[Path]:
    """Yield a temporary directory path and clean it up on exit."""

    with tempfile.TemporaryDirectory(prefix=prefix) as tmp:
        yield Path(tmp)
