"""Shared test fixtures for tvfeed test suite.

FakeTransport provides a test double for the WebSocket transport, allowing
headless testing of the quote feed without a live server.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from io import StringIO
from typing import Any

import orjson
import pytest
from loguru import logger
from pyee import EventEmitter

from tvfeed.engine import framing
from tvfeed.engine.feed import QuoteFeed

# what the server sends as its first frame on every new connection
HANDSHAKE = {
    "session_id": "<0.4242.17>_sfo-charts-free-5-webchart-3@sfo-compute-5",
    "timestamp": 1700000000,
    "release": "registry.xtools.tv/tvbs_release/webchart:release_206-21",
    "protocol": "json",
}


@dataclass(eq=False)
class FakeTransport:
    """Test double for WebSocketTransport.

    open() schedules the "open" event on the next loop iteration (like a real
    connection completing) and, unless disabled, the server handshake right
    after it. Everything the feed sends is recorded in `sent`.
    """

    # emit "open" after open() is called
    autoOpen: bool = True

    # send the session handshake right after "open"
    handshakeOnOpen: bool = True

    events: EventEmitter = field(default_factory=EventEmitter)
    sent: list[bytes] = field(default_factory=list)

    connected: bool = False
    openCalls: int = 0
    closed: bool = False

    # ── Transport interface ──

    def open(self) -> None:
        self.openCalls += 1
        if self.autoOpen:
            asyncio.get_running_loop().call_soon(self.serverOpen)

    def isOpen(self) -> bool:
        return self.connected

    def send(self, data: bytes) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        if self.connected:
            self.connected = False
            self.events.emit("close")

    # ── Server side helpers ──

    def serverOpen(self) -> None:
        self.connected = True
        self.events.emit("open")
        if self.handshakeOnOpen:
            self.serverHandshake()

    def serverSend(self, *payloads: dict[str, Any] | str | bytes) -> None:
        """Deliver one message holding every payload as its own frame."""
        raw = b"".join(
            framing.wrap(orjson.dumps(p) if isinstance(p, dict) else p)
            for p in payloads
        )
        self.events.emit("message", raw.decode())

    def serverRaw(self, raw: str | bytes) -> None:
        self.events.emit("message", raw)

    def serverHandshake(self) -> None:
        self.serverSend(HANDSHAKE)

    def serverQuote(
        self, sessionId: str | None, symbol: str, values: dict[str, Any], status: str = "ok"
    ) -> None:
        self.serverSend({"m": "qsd", "p": [sessionId, {"n": symbol, "s": status, "v": values}]})

    def serverDrop(self) -> None:
        self.connected = False
        self.events.emit("close")

    # ── Inspection ──

    def frames(self) -> list[framing.Frame]:
        return [frame for data in self.sent for frame in framing.decode(data)]

    def calls(self) -> list[dict[str, Any]]:
        """Every non-keepalive frame sent, as parsed {"m": ..., "p": [...]} objects."""
        return [f.payload for f in self.frames() if not f.isKeepAlive]  # type: ignore

    def methods(self) -> list[str]:
        return [c["m"] for c in self.calls()]


# ── Fixtures ──


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def feed(transport) -> QuoteFeed:
    """Feed wired to the shared FakeTransport with short timeouts."""
    return QuoteFeed(transportFactory=lambda: transport, fields=("lp", "ch"), timeout=0.05)


@pytest.fixture
def log_capture():
    """Capture loguru output for assertion. Yields a StringIO buffer."""
    buf = StringIO()
    handler_id = logger.add(buf, format="{level} {message}", level="INFO")
    yield buf
    logger.remove(handler_id)
