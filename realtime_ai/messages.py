"""Control message envelope exchanged with the remote agent.

Wire shape: {"type": <MessageType>, "tag": "realtime-ai", "data": <payload>}.

Decoding is lenient: anything that is not a well-formed envelope of this
protocol family (bad JSON, missing/foreign tag, unknown type) is dropped and
reported as None so newer servers can add message kinds without breaking
older clients.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from realtime_ai.errors import MalformedMessageError

log = logging.getLogger(__name__)

MESSAGE_TAG = "realtime-ai"

# Services forwarded in config-update messages; the rest stay client-side.
PIPELINE_SERVICES = ("llm", "tts")


class MessageType(str, Enum):
    # Outbound
    CONFIG = "config-update"
    LLM_GET_CONTEXT = "llm-get-context"
    LLM_UPDATE_CONTEXT = "llm-update-context"
    LLM_APPEND_CONTEXT = "llm-append-context"
    SPEAK = "tts-speak"
    INTERRUPT = "tts-interrupt"

    # Inbound
    LLM_CONTEXT = "llm-context"
    TRANSCRIPT = "transcript"  # flagged partial/final
    CONFIG_UPDATED = "config-updated"
    CONFIG_ERROR = "config-error"
    TOOL_CALL = "tool-call"  # serialized method name + params
    JSON_COMPLETION = "json-completion"


@dataclass
class ControlMessage:
    type: MessageType
    data: Any = field(default_factory=dict)
    tag: str = MESSAGE_TAG

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "tag": self.tag, "data": self.data}

    def serialize(self) -> str:
        return json.dumps(self.to_dict())

    # ------------------------------------------------------------------
    # Outbound constructors
    # ------------------------------------------------------------------

    @classmethod
    def config(cls, configuration: Mapping[str, Any]) -> ControlMessage:
        # Only the pipeline services go on the wire, never the whole config.
        pipeline = {
            service: configuration[service]
            for service in PIPELINE_SERVICES
            if configuration.get(service) is not None
        }
        return cls(MessageType.CONFIG, {"config": pipeline})

    @classmethod
    def speak(cls, text: str, interrupt: bool = False) -> ControlMessage:
        return cls(MessageType.SPEAK, {"tts": {"text": text, "interrupt": interrupt}})

    @classmethod
    def interrupt(cls) -> ControlMessage:
        return cls(MessageType.INTERRUPT, {})

    @classmethod
    def get_llm_context(cls) -> ControlMessage:
        return cls(MessageType.LLM_GET_CONTEXT, {})

    @classmethod
    def update_llm_context(cls, llm_config: Mapping[str, Any]) -> ControlMessage:
        return cls(MessageType.LLM_UPDATE_CONTEXT, {"llm": dict(llm_config)})

    @classmethod
    def append_llm_context(cls, message: Mapping[str, str]) -> ControlMessage:
        entry = {"role": message["role"], "content": message["content"]}
        return cls(MessageType.LLM_APPEND_CONTEXT, {"llm": {"messages": [entry]}})


@dataclass(frozen=True)
class Transcript:
    text: str
    final: bool

    @classmethod
    def from_message(cls, message: ControlMessage) -> Transcript:
        data = message.data if isinstance(message.data, Mapping) else {}
        text = data.get("text")
        return cls(text=text if isinstance(text, str) else "", final=bool(data.get("final")))


def _preview(payload: object, limit: int = 120) -> str:
    text = payload if isinstance(payload, str) else repr(payload)
    return text[:limit]


def parse_envelope(payload: str | bytes | Mapping[str, Any]) -> ControlMessage:
    """Strict parse; raises MalformedMessageError."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        try:
            obj = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MalformedMessageError(
                f"invalid JSON ({e.msg})", payload_preview=_preview(payload)
            ) from e
        except (ValueError, RecursionError) as e:
            # Nesting too deep for the decoder, or invalid surrogates.
            raise MalformedMessageError(
                f"undecodable JSON ({type(e).__name__})", payload_preview=_preview(payload)
            ) from None
    else:
        obj = payload

    if not isinstance(obj, Mapping):
        raise MalformedMessageError("envelope is not an object", payload_preview=_preview(obj))

    tag = obj.get("tag")
    if tag != MESSAGE_TAG:
        raise MalformedMessageError(f"unexpected tag {tag!r}", payload_preview=_preview(obj))

    raw_type = obj.get("type")
    try:
        message_type = MessageType(raw_type)
    except ValueError:
        raise MalformedMessageError(
            f"unknown type {raw_type!r}", payload_preview=_preview(obj)
        ) from None

    return ControlMessage(type=message_type, data=obj.get("data"), tag=tag)


def decode(payload: str | bytes | Mapping[str, Any]) -> ControlMessage | None:
    """Lenient parse used at the wire boundary. Never raises."""
    try:
        return parse_envelope(payload)
    except MalformedMessageError as e:
        log.debug(f"Dropping inbound message: {e}")
        return None
