"""Protocol states of a client session and the legality of moving between them."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from langclient.errors import ProtocolStateError
from langclient.logging import VERBOSE, get_logger

_log = get_logger("state")


class ProtocolState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
    CRASHED = "crashed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProtocolState.STOPPED, ProtocolState.CRASHED)


_TRANSITIONS: dict[ProtocolState, frozenset[ProtocolState]] = {
    ProtocolState.UNINITIALIZED: frozenset(
        {ProtocolState.INITIALIZING, ProtocolState.STOPPED, ProtocolState.CRASHED}
    ),
    ProtocolState.INITIALIZING: frozenset(
        {ProtocolState.INITIALIZED, ProtocolState.STOPPED, ProtocolState.CRASHED}
    ),
    ProtocolState.INITIALIZED: frozenset({ProtocolState.SHUTTING_DOWN, ProtocolState.CRASHED}),
    ProtocolState.SHUTTING_DOWN: frozenset({ProtocolState.STOPPED, ProtocolState.CRASHED}),
    ProtocolState.STOPPED: frozenset(),
    ProtocolState.CRASHED: frozenset(),
}

# Control messages and the only states they may be written in
CONTROL_METHODS: dict[str, frozenset[ProtocolState]] = {
    "initialize": frozenset({ProtocolState.INITIALIZING}),
    "shutdown": frozenset({ProtocolState.SHUTTING_DOWN}),
    "exit": frozenset({ProtocolState.SHUTTING_DOWN}),
}


class ProtocolStateMachine:
    """Current protocol state plus the send gate derived from it.

    Args:
        on_transition: Called with (previous, current) after every change.
    """

    def __init__(
        self,
        on_transition: Callable[[ProtocolState, ProtocolState], None] | None = None,
    ) -> None:
        self._state = ProtocolState.UNINITIALIZED
        self._on_transition = on_transition

    @property
    def current(self) -> ProtocolState:
        return self._state

    def can_transition(self, target: ProtocolState) -> bool:
        return target in _TRANSITIONS[self._state]

    def transition(self, target: ProtocolState) -> ProtocolState:
        """Move to ``target``.

        Returns:
            The previous state.

        Raises:
            ProtocolStateError: If the move is not legal from the current state.
        """
        if not self.can_transition(target):
            raise ProtocolStateError(
                f"Illegal transition {self._state.value} -> {target.value}"
            )
        previous = self._state
        self._state = target
        _log.log(VERBOSE, "Protocol state %s -> %s", previous.value, target.value)
        if self._on_transition is not None:
            self._on_transition(previous, target)
        return previous

    def require(self, *states: ProtocolState, action: str) -> None:
        """Raise ProtocolStateError unless the current state is one of ``states``."""
        if self._state not in states:
            allowed = ", ".join(s.value for s in states)
            raise ProtocolStateError(
                f"Cannot {action} while {self._state.value} (requires {allowed})"
            )

    def can_send(self, method: str) -> bool:
        """Whether a request or notification named ``method`` may be written now.

        initialize is only legal while INITIALIZING, shutdown and exit only
        while SHUTTING_DOWN; everything else needs INITIALIZED.
        """
        allowed = CONTROL_METHODS.get(method)
        if allowed is not None:
            return self._state in allowed
        return self._state is ProtocolState.INITIALIZED

    def can_respond(self) -> bool:
        """Responses to server requests are fine until the session ends."""
        return self._state in (
            ProtocolState.INITIALIZING,
            ProtocolState.INITIALIZED,
            ProtocolState.SHUTTING_DOWN,
        )
