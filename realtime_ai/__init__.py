"""Realtime AI voice session client."""

from realtime_ai.client import SessionClient, VoiceClient
from realtime_ai.config import (
    ConfigOption,
    Configuration,
    ServiceConfig,
    VoiceClientOptions,
    config_from_options,
    config_to_options,
    deep_merge,
    load_env,
)
from realtime_ai.errors import (
    CapacityError,
    HandshakeError,
    HandshakeTimeoutError,
    OperationNotPermittedError,
    ProvisioningError,
    RateLimitError,
    RealtimeAIError,
    TransportConnectionError,
    TransportError,
)
from realtime_ai.events import EventBus, VoiceEvent, VoiceEventCallbacks
from realtime_ai.messages import MESSAGE_TAG, ControlMessage, MessageType, Transcript
from realtime_ai.transport import (
    ConnectionDescriptor,
    Participant,
    Track,
    TrackKind,
    Tracks,
    Transport,
    TransportCallbacks,
    TransportState,
    TransportStateMachine,
    WebSocketTransport,
)

__all__ = [
    "CapacityError",
    "ConfigOption",
    "Configuration",
    "ConnectionDescriptor",
    "ControlMessage",
    "EventBus",
    "HandshakeError",
    "HandshakeTimeoutError",
    "MESSAGE_TAG",
    "MessageType",
    "OperationNotPermittedError",
    "Participant",
    "ProvisioningError",
    "RateLimitError",
    "RealtimeAIError",
    "ServiceConfig",
    "SessionClient",
    "Track",
    "TrackKind",
    "Tracks",
    "Transcript",
    "Transport",
    "TransportCallbacks",
    "TransportConnectionError",
    "TransportError",
    "TransportState",
    "TransportStateMachine",
    "VoiceClient",
    "VoiceClientOptions",
    "VoiceEvent",
    "VoiceEventCallbacks",
    "WebSocketTransport",
    "config_from_options",
    "config_to_options",
    "deep_merge",
    "load_env",
]
