"""Structural interface for component updaters.

The engine never knows *how* a component is reconfigured.  Every component
of the managed system is driven through an object satisfying
:class:`ComponentUpdater` so that the coordinator and snapshot store remain
component-agnostic.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from update_engine.models.snapshot import ComponentState
from update_engine.models.update import UpdateDescriptor


class ComponentUpdater(Protocol):
    """Structural interface for a single component's updater.

    Implementations are **not** required to subclass this protocol; they only
    need to expose methods with matching signatures (duck typing).
    """

    def describe_state(self) -> ComponentState | dict[str, Any]:
        """Return the component's current state.

        A plain dict is accepted and validated into a :class:`ComponentState`;
        its ``name`` defaults to the name the updater was registered under.
        """
        ...

    def apply(self, update: UpdateDescriptor) -> None:
        """Apply *update* to the component.  Raise on failure."""
        ...

    def restore_state(self, state: ComponentState) -> None:
        """Restore the component to *state*.  Raise on failure."""
        ...


DescribeFn = Callable[[], ComponentState | dict[str, Any]]
ApplyFn = Callable[[UpdateDescriptor], None]
RestoreFn = Callable[[ComponentState], None]


class CallbackUpdater:
    """Adapts three plain callables to the :class:`ComponentUpdater` interface."""

    def __init__(self, describe_state: DescribeFn, apply: ApplyFn, restore_state: RestoreFn) -> None:
        self._describe_state = describe_state
        self._apply = apply
        self._restore_state = restore_state

    def describe_state(self) -> ComponentState | dict[str, Any]:
        return self._describe_state()

    def apply(self, update: UpdateDescriptor) -> None:
        self._apply(update)

    def restore_state(self, state: ComponentState) -> None:
        self._restore_state(state)
