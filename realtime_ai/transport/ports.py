"""Ports (interfaces) for transport implementations.

The session client depends on these contracts rather than on a concrete
media/data transport. Transports must invoke the supplied callbacks
synchronously, at the point each lifecycle event occurs.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from realtime_ai.messages import ControlMessage
from realtime_ai.transport.state import TransportState


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Opaque room/token pair required to join the transport session."""

    url: str
    token: str


@dataclass(frozen=True)
class Participant:
    id: str
    name: str = ""
    local: bool = False


class TrackKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


@dataclass(frozen=True)
class Track:
    id: str
    kind: TrackKind
    participant_id: str | None = None
    # Transport-specific media handle (e.g. a native track object).
    handle: Any = None


@dataclass(frozen=True)
class ParticipantTracks:
    audio: Track | None = None
    video: Track | None = None


@dataclass(frozen=True)
class Tracks:
    local: ParticipantTracks = ParticipantTracks()
    bot: ParticipantTracks = ParticipantTracks()


MessageHandler = Callable[[ControlMessage], None]


@dataclass(frozen=True)
class TransportCallbacks:
    """Lifecycle hooks a transport reports into its owning session."""

    on_transport_state_changed: Callable[[TransportState], None]
    on_connected: Callable[[], None]
    on_disconnected: Callable[[], None]
    on_participant_joined: Callable[[Participant], None]
    on_participant_left: Callable[[Participant], None]
    on_bot_connected: Callable[[Participant], None]
    on_bot_disconnected: Callable[[Participant], None]
    on_track_started: Callable[..., None]  # (track, participant=None)
    on_track_stopped: Callable[..., None]  # (track, participant=None)
    on_bot_started_talking: Callable[[Participant], None]
    on_bot_stopped_talking: Callable[[Participant], None]
    on_local_started_talking: Callable[[], None]
    on_local_stopped_talking: Callable[[], None]
    on_local_audio_level: Callable[[float], None]
    on_remote_audio_level: Callable[[float, Participant], None]


class Transport(Protocol):
    """A pluggable real-time media/data transport."""

    def attach(self, callbacks: TransportCallbacks, on_message: MessageHandler) -> None:
        ...

    async def connect(self, descriptor: ConnectionDescriptor) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    def send_message(self, message: ControlMessage) -> None:
        ...

    def enable_mic(self, enable: bool) -> None:
        ...

    @property
    def is_mic_enabled(self) -> bool:
        ...

    @property
    def state(self) -> TransportState:
        ...

    @state.setter
    def state(self, value: TransportState) -> None:
        ...

    def tracks(self) -> Tracks:
        ...
