"""Narrow protocols for the quote feed's collaborators.

The session manager only needs a duplex message channel, so anything that
provides these events and methods can stand in for the WebSocket transport
(tests use an in-memory fake).
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from pyee import EventEmitter


@runtime_checkable
class Transport(Protocol):
    """Duplex message channel.

    `events` emits "open" once the channel is usable, "message" (raw) for each
    inbound message, and "close" once when the channel ends.
    """

    events: EventEmitter

    def open(self) -> None: ...
    def isOpen(self) -> bool: ...
    def send(self, data: bytes) -> None: ...
    async def close(self) -> None: ...
