"""
FlowDeck Execution Lock

Two-state gate over graph mutations, driven only by the flow's run status
as acknowledged by the runtime.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional


class FlowStatus(str, Enum):
    STOPPED = 'stopped'
    RUNNING = 'running'


class LockState(str, Enum):
    EDITABLE = 'editable'
    LOCKED = 'locked'


class Mutation(str, Enum):
    SELECT = 'select'
    REMOVE = 'remove'
    DISCONNECT = 'disconnect'
    ADD = 'add'
    CONNECT = 'connect'
    MOVE = 'move'
    CONFIGURE = 'configure'


# Mutations still permitted while the flow is running.
LOCKED_ALLOWED = frozenset({Mutation.SELECT, Mutation.REMOVE, Mutation.DISCONNECT})


class ExecutionLockController:
    """Decides which graph mutations are permitted right now."""

    def __init__(self, status: str = FlowStatus.STOPPED, logger=None):
        self.logger = logger or logging.getLogger(__name__)
        self.state = LockState.EDITABLE
        self._listeners: List[Callable[[LockState], None]] = []
        self.sync(status)

    def add_listener(self, callback: Callable[[LockState], None]):
        """Register a callback invoked with the new state on every change."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[LockState], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    @property
    def locked(self) -> bool:
        return self.state == LockState.LOCKED

    def sync(self, status: Optional[str]) -> LockState:
        """
        Align the lock with an acknowledged flow status.

        Only call this with a status the runtime has confirmed: a start or
        stop response, or a freshly loaded flow.
        """
        new_state = LockState.LOCKED if status == FlowStatus.RUNNING else LockState.EDITABLE
        if new_state != self.state:
            self.state = new_state
            self.logger.debug(f"Execution lock now {new_state.value}")
            for callback in list(self._listeners):
                callback(new_state)
        return self.state

    def permits(self, mutation: Mutation) -> bool:
        if self.state == LockState.EDITABLE:
            return True
        return mutation in LOCKED_ALLOWED


__all__ = [
    'ExecutionLockController',
    'FlowStatus',
    'LockState',
    'Mutation',
    'LOCKED_ALLOWED',
]
