"""Post-deployment verification.

The coordinator depends only on the :class:`TestHarness` protocol.
:class:`VerificationSuite` is a ready-made harness running named checks in
registration order; a check that raises produces a ``failed`` result instead
of aborting the suite.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from update_engine.verification.models import (
    SuiteReport,
    Timer,
    VerificationResult,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

VerificationCheck = Callable[[], VerificationResult | bool | None]


class TestHarness(Protocol):
    """Structural interface for a verification suite runner."""

    def run_suite(self) -> SuiteReport:
        """Run the suite and report whether the deployed system is healthy."""
        ...


class VerificationSuite:
    """Ordered collection of named verification checks.

    A check may return:

    * a :class:`VerificationResult`, used as-is (its name is replaced by the
      registered name);
    * ``True`` or ``None`` for ``passed``, ``False`` for ``failed``.
    """

    def __init__(self) -> None:
        self._checks: dict[str, VerificationCheck] = {}

    def register(self, name: str, check: VerificationCheck) -> None:
        """Register *check* under *name*.

        Raises
        ------
        ValueError
            If a check with the same name is already registered.
        """
        if name in self._checks:
            raise ValueError(f"Verification check {name} is already registered.")
        self._checks[name] = check
        logger.debug("Registered verification check: %s", name)

    def unregister(self, name: str) -> None:
        if name not in self._checks:
            raise KeyError(f"Verification check {name} is not registered.")
        del self._checks[name]

    def names(self) -> list[str]:
        return list(self._checks)

    def run_suite(self) -> SuiteReport:
        suite_timer = Timer()
        suite_timer.start()
        results: list[VerificationResult] = []

        for name, check in list(self._checks.items()):
            timer = Timer()
            timer.start()
            try:
                outcome = check()
            except Exception as exc:
                logger.error("Verification check %s raised an unhandled exception: %s", name, exc)
                results.append(
                    VerificationResult(
                        name=name,
                        status=VerificationStatus.FAILED,
                        duration_ms=timer.elapsed_ms(),
                        details=f"Unhandled error in {name}: {exc}",
                    )
                )
                continue
            results.append(self._to_result(name, outcome, timer.elapsed_ms()))

        report = SuiteReport.from_results(results, duration_ms=suite_timer.elapsed_ms())
        if report.passed:
            logger.info("Verification suite passed (%d check(s))", len(results))
        else:
            logger.warning("Verification suite failed: %s", ", ".join(report.failed_checks))
        return report

    @staticmethod
    def _to_result(name: str, outcome: object, elapsed_ms: int) -> VerificationResult:
        if isinstance(outcome, VerificationResult):
            return outcome.model_copy(update={"name": name, "duration_ms": outcome.duration_ms or elapsed_ms})
        if outcome is None or outcome is True:
            return VerificationResult(name=name, status=VerificationStatus.PASSED, duration_ms=elapsed_ms)
        if outcome is False:
            return VerificationResult(
                name=name,
                status=VerificationStatus.FAILED,
                duration_ms=elapsed_ms,
                details="Check returned False",
            )
        return VerificationResult(
            name=name,
            status=VerificationStatus.FAILED,
            duration_ms=elapsed_ms,
            details=f"Check returned unsupported value of type {type(outcome).__name__}",
        )
