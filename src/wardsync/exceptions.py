"""Custom exception hierarchy for wardsync."""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for all wardsync errors."""


class SyncConfigError(SyncError):
    """Invalid or missing configuration."""


class SyncProtocolError(SyncError):
    """A frame could not be decoded into a known message shape."""

    def __init__(self, message: str, *, frame: str = "") -> None:
        self.frame = frame
        super().__init__(message)


class SyncTransportError(SyncError):
    """WebSocket-level failure (connect refused, send on a dead socket)."""

    def __init__(self, message: str, *, url: str = "") -> None:
        self.url = url
        super().__init__(message)


class SyncReconnectExhaustedError(SyncTransportError):
    """Reconnection gave up after the configured number of attempts.

    Delivered as the payload of the ``max_reconnect_reached`` client event;
    no further attempts are made after it fires.
    """

    def __init__(self, message: str, *, attempts: int, url: str = "") -> None:
        self.attempts = attempts
        super().__init__(message, url=url)
