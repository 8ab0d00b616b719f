"""Per-call deadlines for external collaborators.

Component updaters and the verification harness are external code; any of
them may hang.  :func:`call_with_deadline` runs the call on a worker thread
and stops waiting once the deadline passes.  Python threads cannot be
killed, so a timed-out call keeps running in the background; its eventual
result is discarded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from typing import TypeVar

from update_engine.errors import ComponentTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_deadline(
    func: Callable[[], T],
    timeout_seconds: float | None,
    *,
    description: str,
    run_id: str | None = None,
    update_id: str | None = None,
    component: str | None = None,
) -> T:
    """Invoke *func* and return its result, or raise once the deadline passes.

    Parameters
    ----------
    func:
        Zero-argument callable to invoke.
    timeout_seconds:
        Deadline in seconds.  ``None`` or a value <= 0 disables the deadline
        and calls *func* on the current thread.
    description:
        Human-readable name of the call, used in the timeout message.

    Raises
    ------
    ComponentTimeoutError
        If *func* has not returned within *timeout_seconds*.
    """
    if timeout_seconds is None or timeout_seconds <= 0:
        return func()

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="update-engine-call")
    try:
        future = executor.submit(func)
        done, _ = wait([future], timeout=timeout_seconds)
        if not done:
            future.cancel()
            logger.error(
                "%s exceeded its %.3fs deadline",
                description,
                timeout_seconds,
                extra={"run_id": run_id, "update_id": update_id, "component": component},
            )
            raise ComponentTimeoutError(
                f"{description} timed out after {timeout_seconds:g}s",
                run_id=run_id,
                update_id=update_id,
                component=component,
            )
        return future.result()
    finally:
        executor.shutdown(wait=False)
