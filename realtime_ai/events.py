"""Typed event registry for session lifecycle and protocol events.

Each VoiceEvent key has a fixed positional payload (see EVENT_PAYLOADS), one
"global" handler supplied at construction and any number of runtime
subscribers. The global handler runs first, then subscribers in registration
order. A failing or slow handler never blocks the others.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

log = logging.getLogger(__name__)


class VoiceEvent(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TRANSPORT_STATE_CHANGED = "transportStateChanged"

    CONFIG_UPDATED = "configUpdated"

    PARTICIPANT_CONNECTED = "participantConnected"
    PARTICIPANT_LEFT = "participantLeft"
    BOT_CONNECTED = "botConnected"
    BOT_DISCONNECTED = "botDisconnected"
    TRACK_STARTED = "trackStarted"
    TRACK_STOPPED = "trackStopped"

    BOT_STARTED_TALKING = "botStartedTalking"
    BOT_STOPPED_TALKING = "botStoppedTalking"
    REMOTE_AUDIO_LEVEL = "remoteAudioLevel"

    LOCAL_STARTED_TALKING = "localStartedTalking"
    LOCAL_STOPPED_TALKING = "localStoppedTalking"
    LOCAL_AUDIO_LEVEL = "localAudioLevel"

    # Inbound control messages
    TRANSCRIPT = "transcript"
    JSON_COMPLETION = "jsonCompletion"
    LLM_CONTEXT = "llmContext"
    REMOTE_CONFIG_UPDATED = "remoteConfigUpdated"
    CONFIG_ERROR = "configError"
    TOOL_CALL = "toolCall"


@dataclass(frozen=True)
class Payload:
    required: tuple[str, ...] = ()
    optional: tuple[str, ...] = ()

    def accepts(self, count: int) -> bool:
        return len(self.required) <= count <= len(self.required) + len(self.optional)


EVENT_PAYLOADS: dict[VoiceEvent, Payload] = {
    VoiceEvent.CONNECTED: Payload(),
    VoiceEvent.DISCONNECTED: Payload(),
    VoiceEvent.TRANSPORT_STATE_CHANGED: Payload(("state",)),
    VoiceEvent.CONFIG_UPDATED: Payload(("config",)),
    VoiceEvent.PARTICIPANT_CONNECTED: Payload(("participant",)),
    VoiceEvent.PARTICIPANT_LEFT: Payload(("participant",)),
    VoiceEvent.BOT_CONNECTED: Payload(("participant",)),
    VoiceEvent.BOT_DISCONNECTED: Payload(("participant",)),
    VoiceEvent.TRACK_STARTED: Payload(("track",), ("participant",)),
    VoiceEvent.TRACK_STOPPED: Payload(("track",), ("participant",)),
    VoiceEvent.BOT_STARTED_TALKING: Payload(("participant",)),
    VoiceEvent.BOT_STOPPED_TALKING: Payload(("participant",)),
    VoiceEvent.REMOTE_AUDIO_LEVEL: Payload(("level", "participant")),
    VoiceEvent.LOCAL_STARTED_TALKING: Payload(),
    VoiceEvent.LOCAL_STOPPED_TALKING: Payload(),
    VoiceEvent.LOCAL_AUDIO_LEVEL: Payload(("level",)),
    VoiceEvent.TRANSCRIPT: Payload(("text", "final")),
    VoiceEvent.JSON_COMPLETION: Payload(("json_string",)),
    VoiceEvent.LLM_CONTEXT: Payload(("data",)),
    VoiceEvent.REMOTE_CONFIG_UPDATED: Payload(("data",)),
    VoiceEvent.CONFIG_ERROR: Payload(("data",)),
    VoiceEvent.TOOL_CALL: Payload(("data",)),
}

EventHandler = Callable[..., Any]


@dataclass
class VoiceEventCallbacks:
    """Optional global handlers, one per event key."""

    on_connected: EventHandler | None = None
    on_disconnected: EventHandler | None = None
    on_transport_state_changed: EventHandler | None = None
    on_config_updated: EventHandler | None = None
    on_participant_joined: EventHandler | None = None
    on_participant_left: EventHandler | None = None
    on_bot_connected: EventHandler | None = None
    on_bot_disconnected: EventHandler | None = None
    on_track_started: EventHandler | None = None
    on_track_stopped: EventHandler | None = None
    on_bot_started_talking: EventHandler | None = None
    on_bot_stopped_talking: EventHandler | None = None
    on_remote_audio_level: EventHandler | None = None
    on_local_started_talking: EventHandler | None = None
    on_local_stopped_talking: EventHandler | None = None
    on_local_audio_level: EventHandler | None = None
    on_transcript: EventHandler | None = None
    on_json_completion: EventHandler | None = None
    on_llm_context: EventHandler | None = None
    on_remote_config_updated: EventHandler | None = None
    on_config_error: EventHandler | None = None
    on_tool_call: EventHandler | None = None


CALLBACK_NAMES: dict[VoiceEvent, str] = {
    VoiceEvent.CONNECTED: "on_connected",
    VoiceEvent.DISCONNECTED: "on_disconnected",
    VoiceEvent.TRANSPORT_STATE_CHANGED: "on_transport_state_changed",
    VoiceEvent.CONFIG_UPDATED: "on_config_updated",
    VoiceEvent.PARTICIPANT_CONNECTED: "on_participant_joined",
    VoiceEvent.PARTICIPANT_LEFT: "on_participant_left",
    VoiceEvent.BOT_CONNECTED: "on_bot_connected",
    VoiceEvent.BOT_DISCONNECTED: "on_bot_disconnected",
    VoiceEvent.TRACK_STARTED: "on_track_started",
    VoiceEvent.TRACK_STOPPED: "on_track_stopped",
    VoiceEvent.BOT_STARTED_TALKING: "on_bot_started_talking",
    VoiceEvent.BOT_STOPPED_TALKING: "on_bot_stopped_talking",
    VoiceEvent.REMOTE_AUDIO_LEVEL: "on_remote_audio_level",
    VoiceEvent.LOCAL_STARTED_TALKING: "on_local_started_talking",
    VoiceEvent.LOCAL_STOPPED_TALKING: "on_local_stopped_talking",
    VoiceEvent.LOCAL_AUDIO_LEVEL: "on_local_audio_level",
    VoiceEvent.TRANSCRIPT: "on_transcript",
    VoiceEvent.JSON_COMPLETION: "on_json_completion",
    VoiceEvent.LLM_CONTEXT: "on_llm_context",
    VoiceEvent.REMOTE_CONFIG_UPDATED: "on_remote_config_updated",
    VoiceEvent.CONFIG_ERROR: "on_config_error",
    VoiceEvent.TOOL_CALL: "on_tool_call",
}


class EventBus:
    def __init__(self, callbacks: VoiceEventCallbacks | None = None):
        callbacks = callbacks or VoiceEventCallbacks()
        self._global: dict[VoiceEvent, EventHandler | None] = {
            event: getattr(callbacks, CALLBACK_NAMES[event]) for event in VoiceEvent
        }
        self._subscribers: dict[VoiceEvent, list[EventHandler]] = {
            event: [] for event in VoiceEvent
        }
        self._pending: set[asyncio.Task] = set()

    @staticmethod
    def _key(event: VoiceEvent | str) -> VoiceEvent:
        try:
            return VoiceEvent(event)
        except ValueError:
            raise ValueError(f"Unknown event: {event!r}") from None

    def on(self, event: VoiceEvent | str, handler: EventHandler) -> EventHandler:
        self._subscribers[self._key(event)].append(handler)
        return handler

    def off(self, event: VoiceEvent | str, handler: EventHandler) -> bool:
        handlers = self._subscribers[self._key(event)]
        try:
            handlers.remove(handler)
        except ValueError:
            return False
        return True

    def once(self, event: VoiceEvent | str, handler: EventHandler) -> EventHandler:
        key = self._key(event)

        def _once(*args: Any) -> Any:
            self.off(key, _once)
            return handler(*args)

        return self.on(key, _once)

    def listener_count(self, event: VoiceEvent | str) -> int:
        key = self._key(event)
        return len(self._subscribers[key]) + (1 if self._global[key] else 0)

    def emit(self, event: VoiceEvent | str, *args: Any) -> None:
        key = self._key(event)
        payload = EVENT_PAYLOADS[key]
        if not payload.accepts(len(args)):
            raise TypeError(
                f"{key.value} expects {payload.required + payload.optional}, got {len(args)} args"
            )

        handlers: list[EventHandler] = []
        if self._global[key]:
            handlers.append(self._global[key])
        # Snapshot so once() handlers can unsubscribe mid-emit.
        handlers.extend(list(self._subscribers[key]))

        for handler in handlers:
            self._call(key, handler, args)

    def _call(self, key: VoiceEvent, handler: EventHandler, args: tuple) -> None:
        try:
            result = handler(*args)
        except Exception:
            log.exception(f"{key.value} handler {handler!r} failed")
            return

        if inspect.isawaitable(result):
            self._schedule(key, result)

    def _schedule(self, key: VoiceEvent, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning(f"{key.value} handler returned an awaitable outside a running loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._await_handler(key, awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _await_handler(self, key: VoiceEvent, awaitable: Any) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception(f"{key.value} async handler failed")

    async def drain(self) -> None:
        """Wait for async handlers scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
