"""Connection state machine shared by the notification and caller threads.

The state lives in a single cell guarded by a ``threading.Condition``.
The notification thread moves it forward (or back to
``NOT_CONNECTED``) and every change wakes all waiters.  Callers block on
:meth:`StateCell.wait_for` with an optional deadline.

``threading.Condition`` is released by its ``with`` block when an
exception unwinds through it, so a failure inside a transition never
leaves the cell locked for later waiters.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import IntEnum

_LOGGER = logging.getLogger(__name__)


class ConnectionState(IntEnum):
    """Lifecycle of a peripheral, ordered from least to most ready."""

    NOT_CONNECTED = 0
    CONNECTED = 1
    SERVICES_RESOLVED = 2


class _Transition:
    """Handle passed to the body of :meth:`StateCell.transition`."""

    def __init__(self, cell: StateCell) -> None:
        self._cell = cell

    @property
    def state(self) -> ConnectionState:
        return self._cell._state

    @state.setter
    def state(self, value: ConnectionState) -> None:
        self._cell._set_locked(value)


class StateCell:
    """A :class:`ConnectionState` value plus a broadcast wake primitive."""

    def __init__(
        self,
        initial: ConnectionState = ConnectionState.NOT_CONNECTED,
        owner: str = "",
    ) -> None:
        self._owner = owner
        self._cond = threading.Condition(threading.Lock())
        self._state = initial

    def get(self) -> ConnectionState:
        """Return the current state without blocking on waiters."""
        with self._cond:
            return self._state

    def set(self, state: ConnectionState) -> None:
        """Store *state* and wake every waiter."""
        with self._cond:
            self._set_locked(state)
            self._cond.notify_all()

    def notify(self) -> None:
        """Wake every waiter without changing the state."""
        with self._cond:
            self._cond.notify_all()

    @contextmanager
    def transition(self) -> Iterator[_Transition]:
        """Hold the state lock for a compound update, then notify all.

        Work done inside the block happens-before the wake-up, so a
        waiter that observes the new state also observes everything the
        block wrote::

            with cell.transition() as t:
                registry.rebuild()
                t.state = ConnectionState.SERVICES_RESOLVED
        """
        with self._cond:
            try:
                yield _Transition(self)
            finally:
                self._cond.notify_all()

    def wait_for(
        self,
        predicate: Callable[[ConnectionState], bool],
        timeout: float | None = None,
    ) -> tuple[bool, ConnectionState]:
        """Block until ``predicate(state)`` holds or *timeout* elapses.

        Returns ``(satisfied, observed_state)``.  ``timeout=None`` waits
        forever.  A non-positive timeout only checks the predicate once.
        """
        with self._cond:
            if timeout is not None and timeout <= 0:
                return predicate(self._state), self._state
            satisfied = self._cond.wait_for(
                lambda: predicate(self._state), timeout=timeout
            )
            return bool(satisfied), self._state

    def _set_locked(self, state: ConnectionState) -> None:
        if state != self._state:
            _LOGGER.debug(
                "%s: State %s -> %s",
                self._owner,
                self._state.name,
                state.name,
            )
        self._state = state
