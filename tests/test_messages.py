import json

import pytest

from realtime_ai.errors import MalformedMessageError
from realtime_ai.messages import (
    MESSAGE_TAG,
    ControlMessage,
    MessageType,
    Transcript,
    decode,
    parse_envelope,
)


def test_speak_envelope():
    msg = ControlMessage.speak("hello", True)
    assert msg.to_dict() == {
        "type": "tts-speak",
        "tag": MESSAGE_TAG,
        "data": {"tts": {"text": "hello", "interrupt": True}},
    }
    assert json.loads(msg.serialize()) == msg.to_dict()


def test_config_carries_only_pipeline_services():
    config = {
        "llm": {"model": "A"},
        "tts": {"voice": "v1"},
        "stt": {"language": "en"},
        "vad": {"enabled": True},
    }
    msg = ControlMessage.config(config)
    assert msg.type == MessageType.CONFIG
    assert msg.data == {"config": {"llm": {"model": "A"}, "tts": {"voice": "v1"}}}


def test_config_omits_absent_services():
    msg = ControlMessage.config({"tts": {"voice": "v2"}})
    assert msg.data == {"config": {"tts": {"voice": "v2"}}}
    assert "llm" not in msg.data["config"]


def test_llm_constructors():
    assert ControlMessage.get_llm_context().to_dict()["type"] == "llm-get-context"
    assert ControlMessage.interrupt().to_dict() == {
        "type": "tts-interrupt",
        "tag": MESSAGE_TAG,
        "data": {},
    }

    update = ControlMessage.update_llm_context({"model": "B"})
    assert update.type == MessageType.LLM_UPDATE_CONTEXT
    assert update.data == {"llm": {"model": "B"}}

    append = ControlMessage.append_llm_context(
        {"role": "user", "content": "hi", "extra": "dropped"}
    )
    assert append.type == MessageType.LLM_APPEND_CONTEXT
    assert append.data == {"llm": {"messages": [{"role": "user", "content": "hi"}]}}


def test_decode_accepts_text_bytes_and_mappings():
    envelope = {"type": "transcript", "tag": MESSAGE_TAG, "data": {"text": "hi", "final": True}}
    for payload in (json.dumps(envelope), json.dumps(envelope).encode(), envelope):
        msg = decode(payload)
        assert msg is not None
        assert msg.type == MessageType.TRANSCRIPT
        assert msg.data == {"text": "hi", "final": True}


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[1, 2, 3]",
        json.dumps({"type": "transcript", "data": {}}),
        json.dumps({"type": "transcript", "tag": "other-protocol", "data": {}}),
        json.dumps({"type": "brand-new-kind", "tag": MESSAGE_TAG, "data": {}}),
        json.dumps({"tag": MESSAGE_TAG, "data": {}}),
    ],
)
def test_decode_drops_malformed_without_raising(payload):
    assert decode(payload) is None


def test_parse_envelope_reports_unknown_type():
    with pytest.raises(MalformedMessageError, match="unknown type"):
        parse_envelope({"type": "brand-new-kind", "tag": MESSAGE_TAG})


def test_transcript_view_tolerates_missing_fields():
    msg = ControlMessage(MessageType.TRANSCRIPT, {"text": "partial"})
    assert Transcript.from_message(msg) == Transcript(text="partial", final=False)
    assert Transcript.from_message(ControlMessage(MessageType.TRANSCRIPT, None)).text == ""


def test_decode_drops_deeply_nested_payload():
    depth = 200_000
    payload = (
        '{"type": "transcript", "tag": "%s", "data": ' % MESSAGE_TAG
        + "[" * depth
        + "]" * depth
        + "}"
    )
    assert decode(payload) is None

    with pytest.raises(MalformedMessageError, match="undecodable JSON"):
        parse_envelope(payload)
