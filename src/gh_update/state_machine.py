"""
Operation state machine for the update engine.

The engine runs one long operation at a time against the project tree.
This module guards that exclusivity:

- idle → checking → idle
- idle → downloading → idle
- idle → installing → idle (install and rollback)

A busy state is entered by a single synchronous check-and-set. Because
the engine runs on one asyncio event loop, a coroutine that calls begin()
before its first await cannot be interleaved with another coroutine doing
the same; the loser sees the busy state and fails immediately with
StateConflictError. There is no queueing.

Maintenance operations (clear downloads, clear backups) never change the
state; they only check that no conflicting operation is running.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum

from gh_update.errors import StateConflictError
from gh_update.logging import get_logger

logger = get_logger(__name__)


class OperationState(str, Enum):
    """Process-wide engine state."""

    IDLE = "idle"
    CHECKING = "checking"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"


class Operation(str, Enum):
    """Operations exposed by the engine."""

    CHECK = "check"
    DOWNLOAD = "download"
    INSTALL = "install"
    ROLLBACK = "rollback"
    CLEAR_DOWNLOADS = "clear_downloads"
    CLEAR_BACKUPS = "clear_backups"


# Busy state occupied while a primary operation runs
_OPERATION_STATES: dict[Operation, OperationState] = {
    Operation.CHECK: OperationState.CHECKING,
    Operation.DOWNLOAD: OperationState.DOWNLOADING,
    Operation.INSTALL: OperationState.INSTALLING,
    Operation.ROLLBACK: OperationState.INSTALLING,
}

# States in which a maintenance operation is rejected
_BLOCKING_STATES: dict[Operation, frozenset[OperationState]] = {
    Operation.CLEAR_DOWNLOADS: frozenset(
        {OperationState.DOWNLOADING, OperationState.INSTALLING}
    ),
    Operation.CLEAR_BACKUPS: frozenset({OperationState.INSTALLING}),
}

# Valid state transitions
_VALID_TRANSITIONS: dict[OperationState, set[OperationState]] = {
    OperationState.IDLE: {
        OperationState.CHECKING,
        OperationState.DOWNLOADING,
        OperationState.INSTALLING,
    },
    OperationState.CHECKING: {OperationState.IDLE},
    OperationState.DOWNLOADING: {OperationState.IDLE},
    OperationState.INSTALLING: {OperationState.IDLE},
}

StateListener = Callable[[OperationState, OperationState, "Operation | None"], None]


class OperationStateMachine:
    """
    Guards mutual exclusion between engine operations.

    Attributes:
        state: Current state.
        operation: Operation occupying the current busy state, if any.
        since: When the current state was entered.
    """

    def __init__(self) -> None:
        self._state = OperationState.IDLE
        self._operation: Operation | None = None
        self._since = datetime.now(UTC)
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> OperationState:
        """Get the current state."""
        return self._state

    @property
    def operation(self) -> Operation | None:
        """Get the operation occupying the current state."""
        return self._operation

    @property
    def since(self) -> datetime:
        return self._since

    @property
    def is_idle(self) -> bool:
        return self._state is OperationState.IDLE

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback notified as (old_state, new_state, operation)."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        self._listeners.remove(listener)

    def begin(self, operation: Operation) -> OperationState:
        """
        Atomically check for idle and enter the operation's busy state.

        Args:
            operation: A primary operation (check, download, install, rollback).

        Returns:
            The busy state entered.

        Raises:
            StateConflictError: If another operation is in progress.
            ValueError: If `operation` is a maintenance operation.
        """
        if operation not in _OPERATION_STATES:
            raise ValueError(f"{operation.value} does not occupy a state")

        if self._state is not OperationState.IDLE:
            raise self._conflict(operation)

        new_state = _OPERATION_STATES[operation]
        self._transition_to(new_state, operation)
        return new_state

    def finish(self, operation: Operation) -> None:
        """
        Return to idle after `operation` completed or failed.

        Calling finish for an operation that does not own the current
        state is ignored with a warning.
        """
        if self._operation is not operation:
            logger.warning(
                "Ignoring finish for an operation that is not running",
                extra={
                    "operation": operation.value,
                    "running": self._operation.value if self._operation else None,
                },
            )
            return
        self._transition_to(OperationState.IDLE, None)

    @contextmanager
    def guard(self, operation: Operation) -> Iterator[OperationState]:
        """
        Hold the operation's busy state for the duration of a block.

        The state returns to idle whether the block succeeds or raises.

        Example:
            >>> with state_machine.guard(Operation.CHECK):
            ...     releases = await source.list_releases()
        """
        state = self.begin(operation)
        try:
            yield state
        finally:
            self.finish(operation)

    def ensure_permitted(self, operation: Operation) -> None:
        """
        Check that a maintenance operation may run now.

        Raises:
            StateConflictError: If the current state blocks `operation`.
        """
        blocking = _BLOCKING_STATES.get(operation)
        if blocking is None:
            raise ValueError(f"{operation.value} is not a maintenance operation")
        if self._state in blocking:
            raise self._conflict(operation)

    def _conflict(self, requested: Operation) -> StateConflictError:
        running = self._operation.value if self._operation else self._state.value
        return StateConflictError(
            f"Cannot start {requested.value} while {running} is in progress",
            details={
                "requested_operation": requested.value,
                "running_operation": running,
                "state": self._state.value,
                "since": self._since.isoformat(),
            },
        )

    def _transition_to(
        self,
        new_state: OperationState,
        operation: Operation | None,
    ) -> None:
        current = self._state

        if new_state not in _VALID_TRANSITIONS.get(current, set()):
            raise StateConflictError(
                f"Invalid state transition from {current.value} to {new_state.value}",
                details={
                    "current_state": current.value,
                    "target_state": new_state.value,
                    "valid_transitions": sorted(
                        s.value for s in _VALID_TRANSITIONS.get(current, set())
                    ),
                },
            )

        # On the way back to idle, report the operation that just finished
        notified_operation = operation or self._operation

        logger.info(
            f"State transition: {current.value} -> {new_state.value}",
            extra={
                "old_state": current.value,
                "new_state": new_state.value,
                "operation": notified_operation.value if notified_operation else None,
            },
        )

        self._state = new_state
        self._operation = operation
        self._since = datetime.now(UTC)
        self._notify(current, new_state, notified_operation)

    def _notify(
        self,
        old_state: OperationState,
        new_state: OperationState,
        operation: Operation | None,
    ) -> None:
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state, operation)
            except Exception as e:
                logger.warning(f"State listener failed: {e}")
