import asyncio
import dataclasses
import json
from dataclasses import dataclass, field

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from realtime_ai.errors import TransportError
from realtime_ai.messages import ControlMessage, decode
from realtime_ai.transport import (
    ConnectionDescriptor,
    Tracks,
    TransportCallbacks,
    TransportState,
    TransportStateMachine,
)


class FakeTransport:
    """In-memory transport that records everything the session asks of it."""

    def __init__(self, *, tracks: Tracks | None = None):
        self._machine = TransportStateMachine()
        self.callbacks: TransportCallbacks | None = None
        self.on_message = None
        self.sent: list[ControlMessage] = []
        self.connect_calls: list[ConnectionDescriptor] = []
        self.disconnect_calls = 0
        self.mic_enabled = False
        self._tracks = tracks or Tracks()

    def attach(self, callbacks, on_message):
        if self.callbacks is not None:
            raise TransportError("already attached")
        self.callbacks = callbacks
        self.on_message = on_message
        self._machine.bind(callbacks.on_transport_state_changed)

    @property
    def state(self) -> TransportState:
        return self._machine.state

    @state.setter
    def state(self, value: TransportState) -> None:
        self._machine.set(value)

    async def connect(self, descriptor: ConnectionDescriptor) -> None:
        self.connect_calls.append(descriptor)
        self.state = TransportState.CONNECTING
        self.state = TransportState.CONNECTED
        self.callbacks.on_connected()

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.state in {
            TransportState.IDLE,
            TransportState.DISCONNECTED,
            TransportState.ERROR,
        }:
            return
        was_connected = self.state == TransportState.CONNECTED
        self.state = TransportState.DISCONNECTED
        if was_connected:
            self.callbacks.on_disconnected()

    def send_message(self, message: ControlMessage) -> None:
        self.sent.append(message)

    def enable_mic(self, enable: bool) -> None:
        self.mic_enabled = enable

    @property
    def is_mic_enabled(self) -> bool:
        return self.mic_enabled

    def tracks(self) -> Tracks:
        return self._tracks

    def receive(self, payload) -> None:
        message = decode(payload)
        if message is not None:
            self.on_message(message)


class CallbackRecorder:
    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []

    def callbacks(self) -> TransportCallbacks:
        def make(name):
            return lambda *args: self.calls.append((name, args))

        return TransportCallbacks(
            **{f.name: make(f.name) for f in dataclasses.fields(TransportCallbacks)}
        )

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@dataclass
class BotServer:
    base_url: str = ""
    ws_url: str = ""
    token: str = "tok"
    auth_status: int = 200
    auth_response: object = None
    start_status: int = 200
    auth_requests: list[dict] = field(default_factory=list)
    start_requests: list[dict] = field(default_factory=list)
    ws_received: asyncio.Queue = field(default_factory=asyncio.Queue)
    sockets: list[web.WebSocketResponse] = field(default_factory=list)
    ws_ready: asyncio.Event = field(default_factory=asyncio.Event)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@pytest_asyncio.fixture
async def bot_server():
    """authenticate/start_bot endpoints plus a /ws control channel."""
    state = BotServer()
    app = web.Application()

    async def authenticate(request: web.Request) -> web.Response:
        body = await request.text()
        state.auth_requests.append(
            {"headers": dict(request.headers), "body": json.loads(body) if body else None}
        )
        return web.json_response(state.auth_response, status=state.auth_status)

    async def start_bot(request: web.Request) -> web.Response:
        state.start_requests.append(
            {"headers": dict(request.headers), "body": await request.json()}
        )
        if state.start_status >= 400:
            return web.Response(status=state.start_status, text="bot unavailable")
        return web.json_response({"ok": True})

    async def control_channel(request: web.Request) -> web.WebSocketResponse:
        if request.headers.get("Authorization") != f"Bearer {state.token}":
            raise web.HTTPUnauthorized()
        ws = web.WebSocketResponse()
        state.sockets.append(ws)
        await ws.prepare(request)
        state.ws_ready.set()
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await state.ws_received.put(json.loads(msg.data))
        return ws

    app.router.add_post("/authenticate", authenticate)
    app.router.add_post("/start_bot", start_bot)
    app.router.add_get("/ws", control_channel)

    server = TestServer(app)
    await server.start_server()
    state.base_url = str(server.make_url("")).rstrip("/")
    state.ws_url = str(server.make_url("/ws"))
    state.auth_response = {"room": state.ws_url, "token": state.token}
    try:
        yield state
    finally:
        for ws in state.sockets:
            if not ws.closed:
                await ws.close()
        await server.close()
