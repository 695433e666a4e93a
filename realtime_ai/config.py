"""Client options and pipeline configuration helpers."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

if TYPE_CHECKING:
    from realtime_ai.events import VoiceEventCallbacks
    from realtime_ai.transport.ports import ConnectionDescriptor, Transport

DEFAULT_BASE_URL = "https://rtvi.pipecat.bot"

# Service name -> option name -> value. Nested values may be structured.
Configuration = dict[str, dict[str, Any]]

# Custom authenticate step: (base_url, start_params) -> {room, token} or a descriptor.
AuthHandler = Callable[
    [str, dict[str, Any]],
    Awaitable[Union["ConnectionDescriptor", Mapping[str, Any], None]],
]


@dataclass(frozen=True)
class ConfigOption:
    name: str
    value: Any


@dataclass(frozen=True)
class ServiceConfig:
    service: str
    options: tuple[ConfigOption, ...] = ()


def config_from_options(services: list[ServiceConfig]) -> Configuration:
    """Convert the list form ([{service, options: [{name, value}]}]) to a mapping."""
    config: Configuration = {}
    for entry in services:
        if entry.service in config:
            raise ValueError(f"Duplicate service in configuration: {entry.service}")
        config[entry.service] = {opt.name: opt.value for opt in entry.options}
    return config


def config_to_options(config: Mapping[str, Mapping[str, Any]]) -> list[ServiceConfig]:
    return [
        ServiceConfig(
            service=service,
            options=tuple(ConfigOption(name, value) for name, value in options.items()),
        )
        for service, options in config.items()
    ]


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new mapping with `override` merged into `base`.

    Mappings merge key by key; lists and scalars are replaced wholesale by the
    newer value. A None in `override` means "no override". Inputs are not
    mutated and the result shares no mutable containers with them.
    """
    merged: dict[str, Any] = {key: clone(value) for key, value in base.items()}
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = clone(value)
    return merged


def clone(value: Any) -> Any:
    """Deep-copy plain mapping/list trees."""
    if isinstance(value, Mapping):
        return {k: clone(v) for k, v in value.items()}
    if isinstance(value, list):
        return [clone(v) for v in value]
    return value


def _parse_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class VoiceClientOptions:
    # Base URL for the authenticate/start_bot handlers.
    base_url: str | None = None

    # Injected transport; a WebSocketTransport is used when omitted.
    transport: Transport | None = None

    callbacks: VoiceEventCallbacks | None = None

    # Initial pipeline configuration (service -> options).
    config: Configuration = field(default_factory=dict)

    # Extra JSON body params for the handshake requests.
    start_params: dict[str, Any] = field(default_factory=dict)

    # Extra HTTP headers for the handshake requests.
    start_headers: dict[str, str] = field(default_factory=dict)

    # Handshake/provisioning deadline in seconds. None = wait forever.
    timeout: float | None = None

    enable_mic: bool | None = None

    custom_auth_handler: AuthHandler | None = None

    def resolve_base_url(self) -> str:
        url = self.base_url or os.getenv("REALTIME_AI_BASE_URL") or DEFAULT_BASE_URL
        return url.rstrip("/")

    def resolve_timeout(self) -> float | None:
        if self.timeout is not None:
            return float(self.timeout)
        raw = (os.getenv("REALTIME_AI_TIMEOUT_S") or "").strip()
        return float(raw) if raw else None

    def resolve_enable_mic(self) -> bool:
        if self.enable_mic is not None:
            return self.enable_mic
        return _parse_bool(os.getenv("REALTIME_AI_ENABLE_MIC"), default=True)


def load_env(env_path: Path | None = None, *, override: bool = True) -> dict[str, str]:
    """Read KEY=VALUE lines from a .env file into os.environ.

    Comments, blank lines and an optional `export` prefix are skipped; matching
    quotes around a value are removed. Returns the pairs read from the file.
    """
    path = env_path or Path.cwd() / ".env"
    loaded: dict[str, str] = {}
    if not path.is_file():
        return loaded

    for raw in path.read_text().splitlines():
        entry = raw.strip()
        if entry.startswith("export "):
            entry = entry[len("export ") :].lstrip()
        if not entry or entry.startswith("#"):
            continue
        key, sep, value = entry.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        loaded[key] = value
        if override or key not in os.environ:
            os.environ[key] = value
    return loaded
