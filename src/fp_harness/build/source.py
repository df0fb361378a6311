"""Revision-pinned source checkout via the ``git`` CLI."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from fp_harness.execution.process import CommandSpec, LocalSubprocessExecutor

logger = logging.getLogger(__name__)

_GIT_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_CONFIG_NOSYSTEM": "1",
    "GIT_ADVICE": "0",
}


class SourceFetchError(RuntimeError):
    """Base error for source checkout failures."""


class GitCommandError(SourceFetchError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(self, *, command: Sequence[str], returncode: int | None, output: str) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.output = output
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if output.strip():
            message = f"{message}: {output.strip()}"
        super().__init__(message)


@runtime_checkable
class SourceFetcher(Protocol):
    async def fetch(self, repo: str, revision: str, destination: Path) -> None: ...


def resolve_remote(repo: str, remote_template: str) -> str:
    """Expand ``org/name`` shorthands; URLs pass through and local paths become ``file://`` URLs."""

    if "://" in repo or repo.startswith("git@"):
        return repo
    candidate = Path(repo).expanduser()
    if candidate.is_absolute() or repo.startswith(("./", "../")):
        return candidate.resolve().as_uri()
    return remote_template.format(repo=repo)


class GitSourceFetcher:
    """Fetch exactly one revision into an empty directory with a shallow fetch."""

    def __init__(
        self,
        *,
        remote_template: str = "https://github.com/{repo}.git",
        timeout_seconds: float | None = 900.0,
        executor: LocalSubprocessExecutor | None = None,
    ) -> None:
        self._remote_template = remote_template
        self._timeout_seconds = timeout_seconds
        self._executor = executor or LocalSubprocessExecutor(max_output_chars=20_000)

    async def fetch(self, repo: str, revision: str, destination: Path) -> None:
        remote = resolve_remote(repo, self._remote_template)
        destination.mkdir(parents=True, exist_ok=True)
        logger.info("fetching %s@%s", repo, revision)

        await self._git(destination, "init", "--quiet")
        await self._git(destination, "remote", "add", "origin", remote)
        try:
            await self._git(destination, "fetch", "--quiet", "--depth", "1", "origin", revision)
            target = "FETCH_HEAD"
        except GitCommandError as exc:
            # Servers may refuse shallow fetches of bare commit ids.
            logger.debug("shallow fetch of %s failed, fetching full history: %s", revision, exc)
            await self._git(destination, "fetch", "--quiet", "--tags", "origin")
            target = revision
        await self._git(destination, "-c", "advice.detachedHead=false", "checkout", "--quiet", "--detach", target)
        await self._git(destination, "submodule", "update", "--init", "--recursive", "--depth", "1")

    async def _git(self, cwd: Path, *args: str) -> str:
        command = ("git", *args)
        result = await self._executor.run(
            CommandSpec(
                argv=command,
                cwd=str(cwd),
                env=_GIT_ENV,
                timeout_seconds=self._timeout_seconds,
                merge_stderr=True,
            )
        )
        if not result.is_success():
            raise GitCommandError(
                command=command,
                returncode=result.exit_code,
                output=result.error or result.stdout,
            )
        return result.stdout


__all__ = [
    "GitCommandError",
    "GitSourceFetcher",
    "SourceFetchError",
    "SourceFetcher",
    "resolve_remote",
]
