"""HTTP client for the authenticate/start_bot handshake."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from realtime_ai.errors import HandshakeHTTPError, ProvisioningError
from realtime_ai.transport.ports import ConnectionDescriptor

log = logging.getLogger(__name__)


def parse_descriptor(response: object) -> ConnectionDescriptor | None:
    """Return the {room, token} pair, or None if either is absent."""
    if isinstance(response, ConnectionDescriptor):
        room, token = response.url, response.token
    elif isinstance(response, Mapping):
        room, token = response.get("room"), response.get("token")
    else:
        return None

    if not isinstance(room, str) or not room:
        return None
    if not isinstance(token, str) or not token:
        return None
    return ConnectionDescriptor(url=room, token=token)


class HandshakeClient:
    """Authenticate + provision requests against the bot server."""

    def __init__(self, base_url: str, *, headers: Mapping[str, str] | None = None):
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})

    def _make_url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def request_json(
        self, session: aiohttp.ClientSession, method: str, url: str, **kwargs
    ) -> object | None:
        async with session.request(method, url, **kwargs) as resp:
            if resp.status == 204:
                return None
            text = await resp.text()
            if resp.status >= 400:
                raise HandshakeHTTPError(url, resp.status, text or (resp.reason or ""))
            if not text:
                return None
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                return text

    async def authenticate(
        self, session: aiohttp.ClientSession, params: Mapping[str, Any]
    ) -> object | None:
        url = self._make_url("/authenticate")
        kwargs: dict[str, Any] = {"headers": self.headers}
        if params:
            kwargs["json"] = dict(params)
        try:
            return await self.request_json(session, "POST", url, **kwargs)
        except HandshakeHTTPError as e:
            # A refused authenticate is indistinguishable from a busy server.
            log.warning(f"Authenticate failed: {e}")
            return None

    async def start_bot(
        self,
        session: aiohttp.ClientSession,
        *,
        room: str,
        config: Mapping[str, Any],
        params: Mapping[str, Any] | None = None,
    ) -> object | None:
        url = self._make_url("/start_bot")
        body = {**(params or {}), "room": room, "config": dict(config)}
        headers = {**self.headers, "Content-Type": "application/json"}
        try:
            return await self.request_json(
                session, "POST", url, data=json.dumps(body), headers=headers
            )
        except HandshakeHTTPError as e:
            raise ProvisioningError(room, detail=str(e)) from e
        except aiohttp.ClientError as e:
            raise ProvisioningError(room, detail=f"{type(e).__name__}: {e}") from e
