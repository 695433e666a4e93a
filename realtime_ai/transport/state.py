"""Transport state machine.

Transports own one of these rather than inheriting from a base class. The
machine validates each transition and notifies the owning session
synchronously, before the setter returns.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from realtime_ai.errors import InvalidStateTransition

log = logging.getLogger(__name__)


class TransportState(str, Enum):
    IDLE = "idle"
    HANDSHAKING = "handshaking"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


TERMINAL_STATES = frozenset({TransportState.DISCONNECTED, TransportState.ERROR})

# disconnected/error are terminal for an attempt; a fresh start() re-enters
# handshaking from them.
TRANSITIONS: dict[TransportState, frozenset[TransportState]] = {
    TransportState.IDLE: frozenset({TransportState.HANDSHAKING}),
    TransportState.HANDSHAKING: frozenset(
        {TransportState.CONNECTING, TransportState.DISCONNECTED, TransportState.ERROR}
    ),
    TransportState.CONNECTING: frozenset(
        {TransportState.CONNECTED, TransportState.DISCONNECTED, TransportState.ERROR}
    ),
    TransportState.CONNECTED: frozenset(
        {TransportState.DISCONNECTED, TransportState.ERROR}
    ),
    TransportState.DISCONNECTED: frozenset({TransportState.HANDSHAKING}),
    TransportState.ERROR: frozenset({TransportState.HANDSHAKING}),
}


def can_transition(current: TransportState, requested: TransportState) -> bool:
    return requested in TRANSITIONS[current]


class TransportStateMachine:
    def __init__(
        self,
        on_change: Callable[[TransportState], None] | None = None,
        initial: TransportState = TransportState.IDLE,
    ):
        self._state = initial
        self._on_change = on_change

    @property
    def state(self) -> TransportState:
        return self._state

    def bind(self, on_change: Callable[[TransportState], None]) -> None:
        self._on_change = on_change

    def set(self, requested: TransportState | str) -> None:
        requested = TransportState(requested)
        if requested == self._state:
            return
        if not can_transition(self._state, requested):
            raise InvalidStateTransition(self._state.value, requested.value)
        log.debug(f"Transport state {self._state.value} -> {requested.value}")
        self._state = requested
        if self._on_change:
            self._on_change(requested)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES
