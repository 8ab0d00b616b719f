"""Data models for post-deployment verification.

A verification suite produces one :class:`VerificationResult` per check and
aggregates them into a :class:`SuiteReport`.  The deployment coordinator only
looks at :attr:`SuiteReport.passed`; the individual results are forwarded into
the deployment report for operators.
"""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, Field


class VerificationStatus(str, Enum):
    """Outcome of a single verification check."""

    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


class VerificationResult(BaseModel):
    """The outcome of a single verification check."""

    name: str = Field(..., description="Name of the check that produced this result.")
    status: VerificationStatus = Field(..., description="Outcome of the check.")
    duration_ms: int = Field(default=0, description="Execution time in milliseconds.")
    details: str = Field(default="", description="Human-readable detail about the result.")


class SuiteReport(BaseModel):
    """Aggregated results of a verification suite run.

    Warnings never fail a suite; a single ``failed`` result does.
    """

    passed: bool = Field(..., description="True when no result has status failed.")
    results: list[VerificationResult] = Field(default_factory=list)
    duration_ms: int = Field(default=0, description="Total execution time in milliseconds.")

    @property
    def failed_checks(self) -> list[str]:
        return [r.name for r in self.results if r.status == VerificationStatus.FAILED]

    @property
    def warnings(self) -> list[str]:
        return [r.name for r in self.results if r.status == VerificationStatus.WARNING]

    @staticmethod
    def from_results(results: list[VerificationResult], duration_ms: int = 0) -> SuiteReport:
        """Build a report from check results, preserving execution order."""
        passed = all(r.status != VerificationStatus.FAILED for r in results)
        return SuiteReport(passed=passed, results=list(results), duration_ms=duration_ms)


class Timer:
    """Simple monotonic timer for measuring check execution duration."""

    def __init__(self) -> None:
        self._start: float = 0.0

    def start(self) -> None:
        self._start = time.monotonic()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)
