"""Output rendering for the fpt CLI.

File: src/fp_harness/ui/render.py

Purpose
- Provide a thin rendering layer over ``rich`` for the matrix listing, job
  lists and the end-of-run summary table.
- Respect NO_COLOR environment variable and --no-color CLI flag.

Functional requirements
- Every job of the run appears in the final table with its status.
- Output is deterministic for a given set of outcomes (rows sorted by job).
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

from rich.console import Console
from rich.table import Table
from rich.text import Text

from fp_harness.execution.results import JobStatus

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from fp_harness.build.orchestrator import BuildError
    from fp_harness.execution.results import JobOutcome, RunSummary
    from fp_harness.matrix.resolver import Job
    from fp_harness.registry.model import Registry

_STATUS_STYLES: dict[JobStatus, str] = {
    JobStatus.PASS: "bold green",
    JobStatus.FAIL: "bold red",
    JobStatus.ERROR: "bold magenta",
    JobStatus.TIMEOUT: "bold yellow",
}


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    return not os.environ.get("NO_COLOR", "")


class CLIRenderer:
    """CLI output renderer backed by a ``rich`` console."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        file: TextIO | None = None,
    ) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color)
        self.console = Console(
            file=file or sys.stdout,
            no_color=not self._color,
            highlight=False,
            soft_wrap=True,
        )

    def text(self, line: str) -> None:
        self.console.print(line, markup=False)

    def section(self, title: str) -> None:
        self.console.print()
        self.console.print(Text(title, style="bold"))

    def warning(self, text: str) -> None:
        self.console.print(Text(f"warning: {text}", style="yellow"))

    def matrix(self, registry: Registry, matrix: Mapping[str, Sequence[str]]) -> None:
        """Platforms with their compatible programs; ``*`` marks defaults."""

        table = Table(title="Compatibility matrix", title_justify="left")
        table.add_column("Platform")
        table.add_column("Build")
        table.add_column("Programs")
        for platform_name, programs in matrix.items():
            platform = registry.platform(platform_name)
            label = f"{platform_name} *" if platform.is_default else platform_name
            names = [
                f"{name} *" if registry.program(name).is_default else name for name in programs
            ]
            table.add_row(label, platform.build.describe(), ", ".join(names) or "-")
        self.console.print(table)
        self.console.print("* default", style="dim")

    def jobs(self, jobs: Sequence[Job]) -> None:
        table = Table(title=f"{len(jobs)} job(s)", title_justify="left")
        table.add_column("#", justify="right")
        table.add_column("Platform")
        table.add_column("Program")
        table.add_column("Fixture")
        for position, job in enumerate(jobs, start=1):
            table.add_row(str(position), job.platform, job.program, job.fixture)
        self.console.print(table)

    def build_errors(self, errors: Sequence[BuildError]) -> None:
        if not errors:
            return
        self.section("Build failures:")
        for error in errors:
            self.console.print(Text(f"- {error.spec.describe()}: {error.reason}", style="red"))
            if self.verbose and error.output.strip():
                self.console.print(error.output.rstrip(), markup=False, style="dim")

    def outcomes(self, outcomes: Sequence[JobOutcome], summary: RunSummary) -> None:
        table = Table(title="Results", title_justify="left")
        table.add_column("Platform")
        table.add_column("Program")
        table.add_column("Fixture")
        table.add_column("Status")
        table.add_column("Exit", justify="right")
        table.add_column("Duration", justify="right")
        for outcome in outcomes:
            table.add_row(
                outcome.job.platform,
                outcome.job.program,
                outcome.job.fixture,
                Text(outcome.status.value.upper(), style=_STATUS_STYLES[outcome.status]),
                "-" if outcome.exit_code is None else str(outcome.exit_code),
                f"{outcome.duration_ms / 1000:.2f}s",
            )
        self.console.print(table)

        if summary.failing_jobs:
            self.section("Failures:")
            for outcome in summary.failing_jobs:
                self.console.print(
                    Text(f"{outcome.job.key} [{outcome.status.value}]", style=_STATUS_STYLES[outcome.status])
                )
                if outcome.detail:
                    detail = outcome.detail if self.verbose else outcome.detail.splitlines()[0]
                    self.console.print(f"  {detail}", markup=False)

        line = (
            f"{summary.passed} passed, {summary.failed} failed, "
            f"{summary.errored} errored, {summary.timed_out} timed out ({summary.total} total)"
        )
        self.console.print()
        self.console.print(Text(line, style="bold green" if summary.ok else "bold red"))


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
