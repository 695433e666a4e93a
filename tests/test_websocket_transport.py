import asyncio
import json
from dataclasses import replace

import pytest

from realtime_ai import (
    ConnectionDescriptor,
    SessionClient,
    TransportConnectionError,
    TransportError,
    TransportState,
    VoiceClientOptions,
    VoiceEvent,
    WebSocketTransport,
)
from realtime_ai.messages import MESSAGE_TAG, ControlMessage
from realtime_ai.transport.websocket import LOCAL_PARTICIPANT


async def _wait(event: asyncio.Event, timeout: float = 5.0) -> None:
    await asyncio.wait_for(event.wait(), timeout=timeout)


@pytest.mark.asyncio
async def test_connect_exchange_and_disconnect(bot_server, recorder):
    received = []
    got_message = asyncio.Event()

    def on_message(message):
        received.append(message)
        got_message.set()

    transport = WebSocketTransport(heartbeat_s=None)
    transport.attach(recorder.callbacks(), on_message)
    transport.state = TransportState.HANDSHAKING

    await transport.connect(ConnectionDescriptor(url=bot_server.ws_url, token="tok"))

    assert transport.state == TransportState.CONNECTED
    assert recorder.calls[:4] == [
        ("on_transport_state_changed", (TransportState.HANDSHAKING,)),
        ("on_transport_state_changed", (TransportState.CONNECTING,)),
        ("on_transport_state_changed", (TransportState.CONNECTED,)),
        ("on_connected", ()),
    ]
    assert ("on_participant_joined", (LOCAL_PARTICIPANT,)) in recorder.calls

    await _wait(bot_server.ws_ready)
    server_ws = bot_server.sockets[0]
    await server_ws.send_str("not json")
    await server_ws.send_str(
        json.dumps({"type": "transcript", "tag": MESSAGE_TAG, "data": {"text": "hi", "final": False}})
    )
    await _wait(got_message)
    assert [m.data for m in received] == [{"text": "hi", "final": False}]

    transport.send_message(ControlMessage.speak("hello", True))
    sent = await asyncio.wait_for(bot_server.ws_received.get(), timeout=5)
    assert sent == {
        "type": "tts-speak",
        "tag": MESSAGE_TAG,
        "data": {"tts": {"text": "hello", "interrupt": True}},
    }

    await transport.disconnect()
    await transport.disconnect()

    assert transport.state == TransportState.DISCONNECTED
    assert recorder.names().count("on_disconnected") == 1
    assert ("on_participant_left", (LOCAL_PARTICIPANT,)) in recorder.calls


@pytest.mark.asyncio
async def test_bad_token_fails_connect(bot_server, recorder):
    transport = WebSocketTransport(heartbeat_s=None)
    transport.attach(recorder.callbacks(), lambda m: None)
    transport.state = TransportState.HANDSHAKING

    with pytest.raises(TransportConnectionError):
        await transport.connect(ConnectionDescriptor(url=bot_server.ws_url, token="wrong"))

    assert transport.state == TransportState.ERROR
    assert "on_connected" not in recorder.names()


@pytest.mark.asyncio
async def test_remote_close_moves_to_disconnected(bot_server, recorder):
    transport = WebSocketTransport(heartbeat_s=None)
    callbacks = recorder.callbacks()
    gone = asyncio.Event()

    def on_disconnected():
        callbacks.on_disconnected()
        gone.set()

    transport.attach(replace(callbacks, on_disconnected=on_disconnected), lambda m: None)
    transport.state = TransportState.HANDSHAKING
    await transport.connect(ConnectionDescriptor(url=bot_server.ws_url, token="tok"))
    await _wait(bot_server.ws_ready)

    await bot_server.sockets[0].close()
    await _wait(gone)

    assert transport.state == TransportState.DISCONNECTED
    # Sends after the channel is gone are dropped, not raised.
    transport.send_message(ControlMessage.interrupt())
    await transport.disconnect()


def test_attach_only_once(recorder):
    transport = WebSocketTransport()
    transport.attach(recorder.callbacks(), lambda m: None)
    with pytest.raises(TransportError):
        transport.attach(recorder.callbacks(), lambda m: None)


def test_no_media():
    transport = WebSocketTransport()
    assert transport.tracks().bot.audio is None
    assert transport.is_mic_enabled is True
    transport.enable_mic(False)
    assert transport.is_mic_enabled is False


@pytest.mark.asyncio
async def test_session_client_end_to_end(bot_server):
    transcripts = []
    heard = asyncio.Event()

    client = SessionClient(
        VoiceClientOptions(base_url=bot_server.base_url, config={"tts": {"voice": "v1"}})
    )

    def on_transcript(text, final):
        transcripts.append((text, final))
        heard.set()

    client.on(VoiceEvent.TRANSCRIPT, on_transcript)

    await client.start()
    assert client.state == TransportState.CONNECTED

    client.update_config({"tts": {"voice": "v2"}}, use_deep_merge=True, send_partial=True)
    config_msg = await asyncio.wait_for(bot_server.ws_received.get(), timeout=5)
    assert config_msg["type"] == "config-update"
    assert config_msg["data"] == {"config": {"tts": {"voice": "v2"}}}

    await _wait(bot_server.ws_ready)
    await bot_server.sockets[0].send_str(
        json.dumps({"type": "transcript", "tag": MESSAGE_TAG, "data": {"text": "ok", "final": True}})
    )
    await _wait(heard)
    assert transcripts == [("ok", True)]

    await client.disconnect()
    assert client.state == TransportState.DISCONNECTED


@pytest.mark.asyncio
async def test_reader_survives_bad_payloads_and_handler_errors(bot_server, recorder):
    received = []
    got_second = asyncio.Event()

    def on_message(message):
        received.append(message.data["text"])
        if message.data["text"] == "boom":
            raise RuntimeError("handler failed")
        got_second.set()

    transport = WebSocketTransport(heartbeat_s=None)
    transport.attach(recorder.callbacks(), on_message)
    transport.state = TransportState.HANDSHAKING
    await transport.connect(ConnectionDescriptor(url=bot_server.ws_url, token="tok"))
    await _wait(bot_server.ws_ready)

    server_ws = bot_server.sockets[0]
    depth = 200_000
    await server_ws.send_str(
        '{"type": "transcript", "tag": "%s", "data": ' % MESSAGE_TAG
        + "[" * depth
        + "]" * depth
        + "}"
    )
    for text in ("boom", "still here"):
        await server_ws.send_str(
            json.dumps({"type": "transcript", "tag": MESSAGE_TAG, "data": {"text": text, "final": True}})
        )
    await _wait(got_second)

    assert received == ["boom", "still here"]
    assert transport.state == TransportState.CONNECTED
    await transport.disconnect()
