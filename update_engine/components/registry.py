"""Registry of component updaters.

Maps component names to :class:`~update_engine.components.base.ComponentUpdater`
implementations and invokes them under a per-call deadline.  Every failure of
an updater, including a timeout, is re-raised as the matching
:class:`~update_engine.errors.ComponentError` subclass with the original
exception as its cause.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from update_engine.components.base import (
    ApplyFn,
    CallbackUpdater,
    ComponentUpdater,
    DescribeFn,
    RestoreFn,
)
from update_engine.deadline import call_with_deadline
from update_engine.errors import (
    ComponentApplyError,
    ComponentDescribeError,
    ComponentRestoreError,
)
from update_engine.models.snapshot import ComponentState
from update_engine.models.update import UpdateDescriptor

logger = logging.getLogger(__name__)


class ComponentUpdaterRegistry:
    """Registry for component updaters.

    Parameters
    ----------
    call_timeout_seconds:
        Deadline applied to every updater call.  ``0`` disables it.
    """

    def __init__(self, call_timeout_seconds: float = 30.0) -> None:
        self._updaters: dict[str, ComponentUpdater] = {}
        self._lock = threading.Lock()
        self.call_timeout_seconds = call_timeout_seconds

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, updater: ComponentUpdater) -> None:
        """Register an updater under *name*.

        Raises
        ------
        ValueError
            If *name* is empty or already registered.
        """
        if not name or not name.strip():
            raise ValueError("Component name must not be empty.")
        with self._lock:
            if name in self._updaters:
                raise ValueError(
                    f"Component {name} is already registered. Unregister the existing updater first."
                )
            self._updaters[name] = updater
        logger.debug("Registered component updater: %s", name)

    def register_callbacks(
        self,
        name: str,
        *,
        describe_state: DescribeFn,
        apply: ApplyFn,
        restore_state: RestoreFn,
    ) -> None:
        """Register three plain callables as the updater for *name*."""
        self.register(name, CallbackUpdater(describe_state, apply, restore_state))

    def unregister(self, name: str) -> None:
        """Remove the updater for *name*.

        Raises
        ------
        KeyError
            If *name* is not registered.
        """
        with self._lock:
            if name not in self._updaters:
                raise KeyError(f"Component {name} is not registered.")
            del self._updaters[name]
        logger.debug("Unregistered component updater: %s", name)

    def get(self, name: str) -> ComponentUpdater | None:
        with self._lock:
            return self._updaters.get(name)

    def names(self) -> list[str]:
        """Return all registered component names, sorted."""
        with self._lock:
            return sorted(self._updaters)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._updaters

    def __len__(self) -> int:
        with self._lock:
            return len(self._updaters)

    # ------------------------------------------------------------------
    # Guarded calls
    # ------------------------------------------------------------------

    def describe_state(self, name: str, *, run_id: str | None = None) -> ComponentState:
        """Return the current state of component *name*.

        Raises
        ------
        ComponentDescribeError
            If the component is unknown, the call fails or times out, or the
            returned state is malformed.
        """
        updater = self.get(name)
        if updater is None:
            raise ComponentDescribeError(f"Component {name} is not registered", run_id=run_id, component=name)

        try:
            raw = call_with_deadline(
                updater.describe_state,
                self.call_timeout_seconds,
                description=f"describe_state({name})",
                run_id=run_id,
                component=name,
            )
        except Exception as exc:
            raise ComponentDescribeError(
                f"Component {name} failed to describe its state: {exc}",
                run_id=run_id,
                component=name,
                cause=exc,
            ) from exc

        return self._coerce_state(name, raw, run_id=run_id)

    def apply(self, name: str, update: UpdateDescriptor, *, run_id: str | None = None) -> None:
        """Apply *update* to component *name*.

        Raises
        ------
        ComponentApplyError
            If the component is unknown or the call fails or times out.
        """
        updater = self.get(name)
        if updater is None:
            raise ComponentApplyError(
                f"Component {name} is not registered",
                run_id=run_id,
                update_id=update.id,
                component=name,
            )

        try:
            call_with_deadline(
                lambda: updater.apply(update),
                self.call_timeout_seconds,
                description=f"apply({name}, {update.id})",
                run_id=run_id,
                update_id=update.id,
                component=name,
            )
        except Exception as exc:
            raise ComponentApplyError(
                f"Component {name} failed to apply update {update.id}: {exc}",
                run_id=run_id,
                update_id=update.id,
                component=name,
                cause=exc,
            ) from exc

    def restore_state(self, state: ComponentState, *, run_id: str | None = None) -> None:
        """Restore the component named by *state*.

        Raises
        ------
        ComponentRestoreError
            If the component is unknown or the call fails or times out.
        """
        name = state.name
        updater = self.get(name)
        if updater is None:
            raise ComponentRestoreError(f"Component {name} is not registered", run_id=run_id, component=name)

        try:
            call_with_deadline(
                lambda: updater.restore_state(state),
                self.call_timeout_seconds,
                description=f"restore_state({name})",
                run_id=run_id,
                component=name,
            )
        except Exception as exc:
            raise ComponentRestoreError(
                f"Component {name} failed to restore its state: {exc}",
                run_id=run_id,
                component=name,
                cause=exc,
            ) from exc

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_state(name: str, raw: Any, *, run_id: str | None) -> ComponentState:
        if isinstance(raw, ComponentState):
            raw = raw.model_dump()
        elif not isinstance(raw, dict):
            raise ComponentDescribeError(
                f"Component {name} returned {type(raw).__name__}, expected ComponentState or dict",
                run_id=run_id,
                component=name,
            )

        # The captured state must not share containers with the live component.
        try:
            data = copy.deepcopy(raw)
        except (TypeError, copy.Error) as exc:
            raise ComponentDescribeError(
                f"Component {name} returned a state that cannot be copied: {exc}",
                run_id=run_id,
                component=name,
                cause=exc,
            ) from exc

        reported = data.get("name")
        if reported and reported != name:
            logger.warning(
                "Component %s reported its name as %s; using the registered name",
                name,
                reported,
                extra={"component": name},
            )
        data["name"] = name

        try:
            return ComponentState.model_validate(data)
        except PydanticValidationError as exc:
            raise ComponentDescribeError(
                f"Component {name} returned an invalid state: {exc}",
                run_id=run_id,
                component=name,
                cause=exc,
            ) from exc
