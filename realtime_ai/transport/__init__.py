"""Transport contract, state machine and the default WebSocket transport."""

from realtime_ai.transport.ports import (
    ConnectionDescriptor,
    MessageHandler,
    Participant,
    ParticipantTracks,
    Track,
    TrackKind,
    Tracks,
    Transport,
    TransportCallbacks,
)
from realtime_ai.transport.state import (
    TransportState,
    TransportStateMachine,
    can_transition,
)
from realtime_ai.transport.websocket import WebSocketTransport

__all__ = [
    "ConnectionDescriptor",
    "MessageHandler",
    "Participant",
    "ParticipantTracks",
    "Track",
    "TrackKind",
    "Tracks",
    "Transport",
    "TransportCallbacks",
    "TransportState",
    "TransportStateMachine",
    "WebSocketTransport",
    "can_transition",
]
