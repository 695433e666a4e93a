"""SessionClient.

Owns the handshake -> provisioning -> connect sequence, the pipeline
configuration and the mapping between control messages and events. Transport
work is delegated through the Transport port; events go out through the
EventBus.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from realtime_ai.config import Configuration, VoiceClientOptions, clone, deep_merge
from realtime_ai.errors import (
    CapacityError,
    HandshakeError,
    HandshakeTimeoutError,
    OperationNotPermittedError,
)
from realtime_ai.events import EventBus, EventHandler, VoiceEvent
from realtime_ai.handshake import HandshakeClient, parse_descriptor
from realtime_ai.messages import ControlMessage, MessageType, Transcript
from realtime_ai.transport.ports import (
    ConnectionDescriptor,
    Tracks,
    Transport,
    TransportCallbacks,
)
from realtime_ai.transport.state import TERMINAL_STATES, TransportState
from realtime_ai.transport.websocket import WebSocketTransport

log = logging.getLogger(__name__)

_STARTABLE_STATES = frozenset({TransportState.IDLE}) | TERMINAL_STATES


def _build_transport_callbacks(bus: EventBus) -> TransportCallbacks:
    """Fan each transport occurrence out to the event bus.

    The bus runs the caller's global handler first, then subscribers.
    """

    def forward(event: VoiceEvent):
        def _emit(*args: Any) -> None:
            bus.emit(event, *args)

        return _emit

    return TransportCallbacks(
        on_transport_state_changed=forward(VoiceEvent.TRANSPORT_STATE_CHANGED),
        on_connected=forward(VoiceEvent.CONNECTED),
        on_disconnected=forward(VoiceEvent.DISCONNECTED),
        on_participant_joined=forward(VoiceEvent.PARTICIPANT_CONNECTED),
        on_participant_left=forward(VoiceEvent.PARTICIPANT_LEFT),
        on_bot_connected=forward(VoiceEvent.BOT_CONNECTED),
        on_bot_disconnected=forward(VoiceEvent.BOT_DISCONNECTED),
        on_track_started=forward(VoiceEvent.TRACK_STARTED),
        on_track_stopped=forward(VoiceEvent.TRACK_STOPPED),
        on_bot_started_talking=forward(VoiceEvent.BOT_STARTED_TALKING),
        on_bot_stopped_talking=forward(VoiceEvent.BOT_STOPPED_TALKING),
        on_local_started_talking=forward(VoiceEvent.LOCAL_STARTED_TALKING),
        on_local_stopped_talking=forward(VoiceEvent.LOCAL_STOPPED_TALKING),
        on_local_audio_level=forward(VoiceEvent.LOCAL_AUDIO_LEVEL),
        on_remote_audio_level=forward(VoiceEvent.REMOTE_AUDIO_LEVEL),
    )


class SessionClient:
    def __init__(self, options: VoiceClientOptions | None = None):
        self._options = options or VoiceClientOptions()
        self._base_url = self._options.resolve_base_url()
        self._config: Configuration = clone(self._options.config or {})

        self.events = EventBus(self._options.callbacks)
        self._transport: Transport = self._options.transport or WebSocketTransport()
        self._transport.attach(_build_transport_callbacks(self.events), self.handle_message)

        self._handshake_task: asyncio.Task | None = None
        self._handshake_aborted = False

    # ------------------------------------------------------------------
    # Transport methods
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.state not in _STARTABLE_STATES:
            raise OperationNotPermittedError(
                f"start() called while transport is {self.state.value}"
            )

        self._transport.state = TransportState.HANDSHAKING
        self._handshake_aborted = False

        task = asyncio.create_task(self._handshake())
        self._handshake_task = task
        try:
            descriptor = await asyncio.wait_for(
                task, timeout=self._options.resolve_timeout()
            )
        except asyncio.TimeoutError:
            log.warning(f"Handshake with {self._base_url} timed out")
            self._set_state(TransportState.ERROR)
            raise HandshakeTimeoutError(
                f"Handshake with {self._base_url} timed out"
            ) from None
        except asyncio.CancelledError:
            if not self._handshake_aborted:
                self._set_state(TransportState.ERROR)
                raise
            log.info("Handshake aborted by disconnect()")
            raise HandshakeTimeoutError("Handshake aborted") from None
        except HandshakeError:
            self._set_state(TransportState.ERROR)
            raise
        except Exception as e:
            # A custom auth handler may fail with anything.
            log.warning(f"Handshake with {self._base_url} failed: {type(e).__name__}: {e}")
            self._set_state(TransportState.ERROR)
            raise
        finally:
            self._handshake_task = None

        if self._handshake_aborted or self.state != TransportState.HANDSHAKING:
            raise HandshakeTimeoutError("Handshake aborted")

        self._transport.enable_mic(self._options.resolve_enable_mic())
        await self._transport.connect(descriptor)

    async def _handshake(self) -> ConnectionDescriptor:
        params = dict(self._options.start_params or {})
        client = HandshakeClient(self._base_url, headers=self._options.start_headers)

        async with aiohttp.ClientSession() as session:
            if self._options.custom_auth_handler:
                response = await self._options.custom_auth_handler(self._base_url, params)
            else:
                try:
                    response = await client.authenticate(session, params)
                except aiohttp.ClientError as e:
                    raise HandshakeError(
                        f"Authenticate request to {self._base_url} failed: {type(e).__name__}: {e}"
                    ) from e

            descriptor = parse_descriptor(response)
            if descriptor is None:
                raise CapacityError()

            log.info(f"Starting bot in room {descriptor.url}")
            await client.start_bot(
                session, room=descriptor.url, config=self._config, params=params
            )
        return descriptor

    def _set_state(self, state: TransportState) -> None:
        if self.state != state and self.state not in TERMINAL_STATES:
            self._transport.state = state

    async def disconnect(self) -> None:
        task = self._handshake_task
        if task is not None and not task.done():
            self._handshake_aborted = True
            task.cancel()
        await self._transport.disconnect()

    def enable_mic(self, enable: bool) -> None:
        self._transport.enable_mic(enable)

    @property
    def is_mic_enabled(self) -> bool:
        return self._transport.is_mic_enabled

    @property
    def state(self) -> TransportState:
        return self._transport.state

    def tracks(self) -> Tracks:
        return self._transport.tracks()

    # ------------------------------------------------------------------
    # Config methods
    # ------------------------------------------------------------------

    @property
    def config(self) -> Configuration:
        return clone(self._config)

    def update_config(
        self,
        config: Mapping[str, Any],
        use_deep_merge: bool = False,
        send_partial: bool = False,
    ) -> None:
        if use_deep_merge:
            self._config = deep_merge(self._config, config)
        else:
            self._config = clone(config)

        if self.state == TransportState.CONNECTED:
            self._transport.send_message(
                ControlMessage.config(config if send_partial else self._config)
            )

        self.events.emit(VoiceEvent.CONFIG_UPDATED, clone(self._config))

    def send_config(self) -> None:
        self._require_connected("push configuration")
        self._transport.send_message(ControlMessage.config(self._config))

    # ------------------------------------------------------------------
    # LLM context methods
    # ------------------------------------------------------------------

    @property
    def llm_context(self) -> dict[str, Any] | None:
        return clone(self._config.get("llm"))

    @llm_context.setter
    def llm_context(self, llm_config: Mapping[str, Any]) -> None:
        self._config = {
            **self._config,
            "llm": {**(self._config.get("llm") or {}), **clone(llm_config)},
        }

        if self.state == TransportState.CONNECTED:
            self._transport.send_message(ControlMessage.update_llm_context(llm_config))

        self.events.emit(VoiceEvent.CONFIG_UPDATED, clone(self._config))

    def append_llm_context(self, message: Mapping[str, str]) -> None:
        """Append a {role, content} message to the live LLM context."""
        self._require_connected("update LLM context")
        self._transport.send_message(ControlMessage.append_llm_context(message))

    def request_llm_context(self) -> None:
        """Ask the agent for its current LLM context (answered by llmContext)."""
        self._require_connected("request LLM context")
        self._transport.send_message(ControlMessage.get_llm_context())

    # ------------------------------------------------------------------
    # Utility methods
    # ------------------------------------------------------------------

    def say(self, text: str, interrupt: bool = False) -> None:
        """Send text to the TTS service; interrupt cuts off current speech."""
        self._require_connected("speak")
        self._transport.send_message(ControlMessage.speak(text, interrupt))

    def interrupt(self) -> None:
        self._require_connected("interrupt bot TTS")
        self._transport.send_message(ControlMessage.interrupt())

    def _require_connected(self, action: str) -> None:
        if self.state != TransportState.CONNECTED:
            raise OperationNotPermittedError(
                f"Attempted to {action} while transport not in connected state ({self.state.value})"
            )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: VoiceEvent | str, handler: EventHandler) -> EventHandler:
        return self.events.on(event, handler)

    def off(self, event: VoiceEvent | str, handler: EventHandler) -> bool:
        return self.events.off(event, handler)

    def once(self, event: VoiceEvent | str, handler: EventHandler) -> EventHandler:
        return self.events.once(event, handler)

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def handle_message(self, message: ControlMessage) -> None:
        message_type = message.type
        if message_type == MessageType.TRANSCRIPT:
            transcript = Transcript.from_message(message)
            self.events.emit(VoiceEvent.TRANSCRIPT, transcript.text, transcript.final)
        elif message_type == MessageType.LLM_CONTEXT:
            self.events.emit(VoiceEvent.LLM_CONTEXT, message.data)
        elif message_type == MessageType.CONFIG_UPDATED:
            self.events.emit(VoiceEvent.REMOTE_CONFIG_UPDATED, message.data)
        elif message_type == MessageType.CONFIG_ERROR:
            self.events.emit(VoiceEvent.CONFIG_ERROR, message.data)
        elif message_type == MessageType.TOOL_CALL:
            self.events.emit(VoiceEvent.TOOL_CALL, message.data)
        elif message_type == MessageType.JSON_COMPLETION:
            self.events.emit(VoiceEvent.JSON_COMPLETION, _json_string(message.data))
        else:
            log.debug(f"Ignoring inbound message type {message_type!r}")


def _json_string(data: object) -> str:
    if isinstance(data, str):
        return data
    return json.dumps(data)


class VoiceClient(SessionClient):
    """Voice session client; the microphone is enabled unless disabled."""

    def __init__(self, options: VoiceClientOptions | None = None):
        options = options or VoiceClientOptions()
        if options.enable_mic is None:
            options = dataclasses.replace(options, enable_mic=True)
        super().__init__(options)
