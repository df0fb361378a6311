"""Job outcomes and the thread-safe aggregator that summarizes a run."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from fp_harness.matrix.resolver import Job


class JobStatus(StrEnum):
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """Result of one job, produced once by the worker that handled it."""

    job: Job
    status: JobStatus
    duration_ms: int
    exit_code: int | None = None
    detail: str | None = None

    @property
    def passed(self) -> bool:
        return self.status is JobStatus.PASS

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.job.platform,
            "program": self.job.program,
            "fixture": self.job.fixture,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "exit_code": self.exit_code,
            "detail": self.detail,
        }


@dataclass(frozen=True, slots=True)
class RunSummary:
    passed: int
    failed: int
    errored: int
    timed_out: int
    failing_jobs: tuple[JobOutcome, ...]

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.errored + self.timed_out

    @property
    def ok(self) -> bool:
        return self.failed + self.errored + self.timed_out == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "errored": self.errored,
            "timed_out": self.timed_out,
            "total": self.total,
            "failing_jobs": [outcome.to_dict() for outcome in self.failing_jobs],
        }


class ResultAggregator:
    """Collects outcomes from concurrent workers.

    ``record`` may be called from any thread or task; the summary does not
    depend on the order in which outcomes arrive.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outcomes: list[JobOutcome] = []

    def record(self, outcome: JobOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def outcomes(self) -> tuple[JobOutcome, ...]:
        """All outcomes sorted by job key."""
        with self._lock:
            snapshot = list(self._outcomes)
        return tuple(sorted(snapshot, key=lambda outcome: outcome.job))

    def summary(self) -> RunSummary:
        outcomes = self.outcomes()
        counts = {status: 0 for status in JobStatus}
        for outcome in outcomes:
            counts[outcome.status] += 1
        return RunSummary(
            passed=counts[JobStatus.PASS],
            failed=counts[JobStatus.FAIL],
            errored=counts[JobStatus.ERROR],
            timed_out=counts[JobStatus.TIMEOUT],
            failing_jobs=tuple(outcome for outcome in outcomes if not outcome.passed),
        )


__all__ = ["JobOutcome", "JobStatus", "ResultAggregator", "RunSummary"]
