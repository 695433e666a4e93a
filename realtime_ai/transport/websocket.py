"""WebSocket control-channel transport.

Default transport when the caller does not inject one. It carries control
messages over an aiohttp WebSocket opened against the descriptor URL and does
no media work: tracks() is empty and the mic flag is only recorded.
"""

from __future__ import annotations

import asyncio
import logging
import os

import aiohttp

from realtime_ai.errors import TransportConnectionError, TransportError
from realtime_ai.messages import ControlMessage, decode
from realtime_ai.transport.ports import (
    ConnectionDescriptor,
    MessageHandler,
    Participant,
    TransportCallbacks,
    Tracks,
)
from realtime_ai.transport.state import TransportState, TransportStateMachine

log = logging.getLogger(__name__)

LOCAL_PARTICIPANT = Participant(id="local", name="local", local=True)


def build_connect_timeout(*, total_s: float | None = None) -> aiohttp.ClientTimeout:
    connect_timeout_s = (
        float(total_s)
        if total_s is not None
        else float(os.getenv("REALTIME_AI_WS_CONNECT_TIMEOUT_S", "15"))
    )
    return aiohttp.ClientTimeout(total=connect_timeout_s)


class WebSocketTransport:
    def __init__(
        self,
        *,
        connect_timeout_s: float | None = None,
        heartbeat_s: float | None = 30.0,
    ):
        self._machine = TransportStateMachine()
        self._callbacks: TransportCallbacks | None = None
        self._on_message: MessageHandler | None = None
        self._connect_timeout_s = connect_timeout_s
        self._heartbeat_s = heartbeat_s

        self._client_session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task | None = None
        self._send_tasks: set[asyncio.Task] = set()
        self._mic_enabled = True
        self._closing = False

    def attach(self, callbacks: TransportCallbacks, on_message: MessageHandler) -> None:
        if self._callbacks is not None:
            raise TransportError("Transport is already attached to a session")
        self._callbacks = callbacks
        self._on_message = on_message
        self._machine.bind(callbacks.on_transport_state_changed)

    @property
    def state(self) -> TransportState:
        return self._machine.state

    @state.setter
    def state(self, value: TransportState) -> None:
        self._machine.set(value)

    @property
    def is_mic_enabled(self) -> bool:
        return self._mic_enabled

    def enable_mic(self, enable: bool) -> None:
        self._mic_enabled = bool(enable)

    def tracks(self) -> Tracks:
        return Tracks()

    async def connect(self, descriptor: ConnectionDescriptor) -> None:
        self.state = TransportState.CONNECTING
        self._closing = False
        session = aiohttp.ClientSession()
        try:
            self._ws = await session.ws_connect(
                descriptor.url,
                headers={"Authorization": f"Bearer {descriptor.token}"},
                heartbeat=self._heartbeat_s,
                timeout=build_connect_timeout(total_s=self._connect_timeout_s),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await session.close()
            self.state = TransportState.ERROR
            raise TransportConnectionError(
                f"WebSocket connect to {descriptor.url} failed: {type(e).__name__}: {e}"
            ) from e
        except asyncio.CancelledError:
            await session.close()
            if self.state == TransportState.CONNECTING:
                self.state = TransportState.DISCONNECTED
            raise

        if self.state != TransportState.CONNECTING:
            # disconnect() landed while the socket was opening.
            await self._ws.close()
            await session.close()
            self._ws = None
            return

        self._client_session = session
        self._reader_task = asyncio.create_task(self._read_loop(self._ws))

        self.state = TransportState.CONNECTED
        assert self._callbacks is not None
        self._callbacks.on_connected()
        self._callbacks.on_participant_joined(LOCAL_PARTICIPANT)
        log.info(f"Connected to {descriptor.url}")

    async def disconnect(self) -> None:
        if self.state in {
            TransportState.IDLE,
            TransportState.DISCONNECTED,
            TransportState.ERROR,
        }:
            return

        was_connected = self.state == TransportState.CONNECTED
        self._closing = True
        await self._close_socket()

        if self._reader_task and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._reader_task = None

        self._finish_disconnect(was_connected)

    def send_message(self, message: ControlMessage) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            log.warning(f"Dropping {message.type.value}: WebSocket not open")
            return
        task = asyncio.get_running_loop().create_task(ws.send_str(message.serialize()))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_done)

    def _send_done(self, task: asyncio.Task) -> None:
        self._send_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            log.warning(f"Control message send failed: {type(exc).__name__}: {exc}")

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._dispatch(msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                self._dispatch(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                log.warning(f"WebSocket error: {ws.exception()}")
                break

        if self._closing:
            return

        # Remote side went away.
        log.info("WebSocket closed by remote")
        await self._close_socket()
        self._reader_task = None
        self._finish_disconnect(self.state == TransportState.CONNECTED)

    def _dispatch(self, payload: str | bytes) -> None:
        message = decode(payload)
        if message is None or self._on_message is None:
            return
        try:
            self._on_message(message)
        except Exception:
            # Reader keeps running after a handler failure.
            log.exception(f"Failed to handle inbound {message.type.value}")

    async def _close_socket(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._client_session is not None and not self._client_session.closed:
            await self._client_session.close()
        self._client_session = None

    def _finish_disconnect(self, was_connected: bool) -> None:
        if self.state in {TransportState.DISCONNECTED, TransportState.ERROR}:
            return
        self.state = TransportState.DISCONNECTED
        if was_connected and self._callbacks:
            self._callbacks.on_participant_left(LOCAL_PARTICIPANT)
            self._callbacks.on_disconnected()
        log.info("Disconnected")
