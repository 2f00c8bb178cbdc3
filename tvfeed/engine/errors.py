"""Exception hierarchy for quote feed operations."""

from __future__ import annotations


class FeedError(Exception):
    """Base exception for all quote feed errors."""


class ConnectTimeout(FeedError):
    """Raised when the transport does not open within the connect timeout."""


class SessionTimeout(FeedError):
    """Raised when the transport opened but no handshake frame arrived in time."""


class FeedClosed(FeedError):
    """Raised when the feed is disconnected while a connect() wait is pending."""


class FramingError(FeedError):
    """A received frame could not be decoded.

    `raw` holds the offending payload (or the unparseable remainder of the
    message when the header itself is corrupt).
    """

    def __init__(self, message: str, raw: bytes = b""):
        super().__init__(message)
        self.raw = raw
