"""Realtime AI client exceptions.

These exception types let callers tell handshake, provisioning and transport
failures apart without scraping strings. Nothing in this package retries; the
caller decides what to do with each failure.
"""

from __future__ import annotations


class RealtimeAIError(RuntimeError):
    """Base class for session client errors."""


class HandshakeError(RealtimeAIError):
    """The authenticate/provisioning phase of start() failed."""


class CapacityError(HandshakeError):
    """Authentication completed but yielded no usable connection descriptor.

    In lieu of proper error codes, the server signals that it is busy by
    omitting the room or token.
    """

    def __init__(self, message: str = "Server busy: no room/token returned"):
        super().__init__(message)


RateLimitError = CapacityError


class ProvisioningError(HandshakeError):
    """The start_bot request failed for the given room."""

    def __init__(self, room: str, *, detail: str | None = None):
        self.room = room
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        if self.detail:
            return f"Failed to start bot at URL {self.room}: {self.detail}"
        return f"Failed to start bot at URL {self.room}"


class HandshakeTimeoutError(HandshakeError, TimeoutError):
    """Handshake/provisioning was aborted by timeout or by disconnect()."""


class HandshakeHTTPError(HandshakeError):
    """The bot backend answered a handshake request with a non-2xx status."""

    def __init__(self, url: str, status: int, body: str = ""):
        self.url = url
        self.status = status
        self.body = body
        excerpt = body.strip()[:200]
        summary = f"{url} returned {status}"
        super().__init__(f"{summary} ({excerpt})" if excerpt else summary)


class OperationNotPermittedError(RealtimeAIError):
    """A connected-only operation was invoked while not connected."""


class TransportError(RealtimeAIError):
    """Base class for transport failures."""


class TransportConnectionError(TransportError):
    """The transport could not establish the session."""


class InvalidStateTransition(TransportError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid transport state transition: {current} -> {requested}")


class MalformedMessageError(RealtimeAIError):
    """Inbound envelope failed validation. Dropped at the protocol boundary."""

    def __init__(self, reason: str, *, payload_preview: str | None = None):
        self.reason = reason
        self.payload_preview = payload_preview
        text = f"Malformed control message: {reason}"
        if payload_preview:
            text = f"{text} [{payload_preview!r}]"
        super().__init__(text)
