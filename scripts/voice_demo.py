#!/usr/bin/env python3
"""Console demo for the realtime-ai session client.

Starts a session against a bot server, prints every event to stdout and,
once connected, optionally asks the bot to speak. JSON completions are
answered by appending a user message to the LLM context.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Iterable

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from realtime_ai import (
    CapacityError,
    HandshakeError,
    TransportState,
    VoiceClient,
    VoiceClientOptions,
    VoiceEvent,
    VoiceEventCallbacks,
    load_env,
)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def _parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="realtime-ai voice client demo")
    parser.add_argument("--base-url", default=None, help="Bot server base URL")
    parser.add_argument("--timeout", type=float, default=None)
    parser.add_argument("--say", default=None, help="Text to speak once connected")
    parser.add_argument("--voice", default=None, help="Initial TTS voice")
    parser.add_argument("--model", default=None, help="Initial LLM model")
    parser.add_argument("--duration", type=float, default=30.0, help="Seconds to stay connected")
    parser.add_argument("--no-mic", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(list(argv))


def _initial_config(args: argparse.Namespace) -> dict:
    config: dict = {}
    if args.model:
        config["llm"] = {"model": args.model}
    if args.voice:
        config["tts"] = {"voice": args.voice}
    return config


async def _run(args: argparse.Namespace) -> int:
    connected = asyncio.Event()

    callbacks = VoiceEventCallbacks(
        on_transport_state_changed=lambda state: print(f"[state] {state.value}"),
        on_config_updated=lambda config: print(f"[config] {json.dumps(config)}"),
        on_transcript=lambda text, final: print(f"[transcript{'*' if final else ''}] {text}"),
        on_config_error=lambda data: print(f"[config-error] {data}"),
    )
    client = VoiceClient(
        VoiceClientOptions(
            base_url=args.base_url,
            callbacks=callbacks,
            config=_initial_config(args),
            timeout=args.timeout,
            enable_mic=not args.no_mic,
        )
    )

    client.on(VoiceEvent.CONNECTED, connected.set)
    client.on(VoiceEvent.PARTICIPANT_CONNECTED, lambda p: print(f"[joined] {p.id} local={p.local}"))
    client.on(VoiceEvent.PARTICIPANT_LEFT, lambda p: print(f"[left] {p.id} local={p.local}"))

    def _on_json_completion(json_string: str) -> None:
        print(f"[json] {json_string}")
        client.append_llm_context({"role": "user", "content": '{"baz": "quox"}'})

    client.on(VoiceEvent.JSON_COMPLETION, _on_json_completion)

    try:
        await client.start()
    except CapacityError:
        print("Demo is currently at capacity. Please try again later.", file=sys.stderr)
        return 2
    except HandshakeError as e:
        print(f"Handshake failed: {e}", file=sys.stderr)
        return 1

    try:
        await asyncio.wait_for(connected.wait(), timeout=10)
        if args.say and client.state == TransportState.CONNECTED:
            client.say(args.say, interrupt=True)
        await asyncio.sleep(args.duration)
    except asyncio.TimeoutError:
        print("Transport never reported connected", file=sys.stderr)
        return 1
    finally:
        await client.disconnect()
    return 0


def main(argv: Iterable[str]) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)
    load_env()
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
