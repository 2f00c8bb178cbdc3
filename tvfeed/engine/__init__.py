"""tvfeed engine layer — protocol and session logic with no UI dependency.

All modules use ``from __future__ import annotations`` and modern
Python typing (``str | None``, ``@dataclass(slots=True)``, etc.).

Modules
-------
framing
    Wire codec for ``~m~<len>~m~<payload>`` frames.
    - ``encode``: (function name, args) -> one JSON call frame
    - ``encodeKeepaliveEcho``: reply frame for a ``~h~`` probe
    - ``decodeBatch``: raw message -> ``DecodedBatch(frames, errors)``
    - ``decode``: same, but logs and drops errors
    - ``Frame``: ``isKeepAlive`` + ``payload`` (token str or JSON object)

session
    - ``SessionState``: auth token, quote session id, subscription set
    - ``generateQuoteSessionId``: ``"qs_"`` + 12 random letters

protocols
    - ``Transport``: duplex channel contract (open/message/close events, send, close)

transport
    - ``WebSocketTransport``: ``Transport`` over the ``websockets`` client

feed
    - ``QuoteFeed``: connect/handshake/subscriptions/keepalive state machine
    - ``QuoteUpdate``: ``(symbol, status, values)`` emitted per ``qsd`` frame
    - ``FeedStatus``: DISCONNECTED -> AWAITING_TRANSPORT -> AWAITING_HANDSHAKE -> READY

errors
    ``FeedError`` and subclasses ``ConnectTimeout``, ``SessionTimeout``,
    ``FeedClosed``, ``FramingError``.

defaults
    ``DEFAULT_QUOTE_FIELDS`` requested when no field list is configured.
"""

# Convenience re-exports for common usage:
# from tvfeed.engine import QuoteFeed, QuoteUpdate
from tvfeed.engine.errors import (
    ConnectTimeout,
    FeedClosed,
    FeedError,
    FramingError,
    SessionTimeout,
)
from tvfeed.engine.feed import FeedStatus, QuoteFeed, QuoteUpdate
from tvfeed.engine.framing import Frame, decode, encode, encodeKeepaliveEcho
from tvfeed.engine.transport import WebSocketTransport

__all__ = [
    "ConnectTimeout",
    "FeedClosed",
    "FeedError",
    "FramingError",
    "SessionTimeout",
    "FeedStatus",
    "QuoteFeed",
    "QuoteUpdate",
    "Frame",
    "decode",
    "encode",
    "encodeKeepaliveEcho",
    "WebSocketTransport",
]
