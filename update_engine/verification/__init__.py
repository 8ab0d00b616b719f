"""Post-deployment verification: result models and a check-based suite.

Quick start::

    from update_engine.verification import VerificationSuite

    suite = VerificationSuite()
    suite.register("api_health", lambda: api.ping())
    report = suite.run_suite()
    print(report.passed, report.failed_checks)
"""

from update_engine.verification.models import (
    SuiteReport,
    Timer,
    VerificationResult,
    VerificationStatus,
)
from update_engine.verification.harness import TestHarness, VerificationCheck, VerificationSuite

__all__ = [
    "SuiteReport",
    "TestHarness",
    "Timer",
    "VerificationCheck",
    "VerificationResult",
    "VerificationStatus",
    "VerificationSuite",
]
